"""
CRUD helpers for workspace membership rows and the per-user workspace index.

Membership writes are single conditional statements so that two requests
racing for the same (workspace, user) can never produce two rows, and the
owner's row can never be rewritten by a member-level mutation.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import asyncpg

from app.core.errors import DatabaseInteractionError
from app.core.permissions import PermissionSet
from app.crud.crud_helpers import affected_rows

logger = logging.getLogger(__name__)

_MEMBER_COLUMNS = (
    "m.workspace_id, m.user_id, m.role, m.can_view, m.can_edit, m.can_add, "
    "m.can_delete, m.can_invite, m.joined_at"
)


# --------------------------------------------------------------------------- #
#  Reads                                                                      #
# --------------------------------------------------------------------------- #
async def get_member(db: asyncpg.Connection, workspace_id: int, user_id: int) -> Optional[Dict[str, Any]]:
    """The membership row for (workspace, user), or `None`."""
    try:
        rec = await db.fetchrow(
            f"SELECT {_MEMBER_COLUMNS} FROM workspace_members m WHERE m.workspace_id = $1 AND m.user_id = $2",
            workspace_id,
            user_id,
        )
        return dict(rec) if rec is not None else None
    except Exception as exc:  # pragma: no cover
        logger.error("Error fetching member %s of workspace %s: %s", user_id, workspace_id, exc, exc_info=True)
        raise DatabaseInteractionError("Database error fetching member.") from exc


async def list_members(db: asyncpg.Connection, workspace_id: int) -> List[Dict[str, Any]]:
    """All members with their user email/display name; owner first."""
    try:
        rows = await db.fetch(
            f"""
            SELECT {_MEMBER_COLUMNS}, u.email, u.display_name, (w.owner_id = m.user_id) AS is_owner
            FROM workspace_members m
            JOIN users u ON u.id = m.user_id
            JOIN workspaces w ON w.id = m.workspace_id
            WHERE m.workspace_id = $1
            ORDER BY (w.owner_id = m.user_id) DESC, m.joined_at, m.user_id
            """,
            workspace_id,
        )
        return [dict(r) for r in rows]
    except Exception as exc:  # pragma: no cover
        logger.error("Error listing members of workspace %s: %s", workspace_id, exc, exc_info=True)
        raise DatabaseInteractionError("Database error listing members.") from exc


async def get_user_workspace_index(db: asyncpg.Connection, user_id: int) -> List[Dict[str, Any]]:
    """The user's index rows joined with the workspace name, newest first."""
    try:
        rows = await db.fetch(
            """
            SELECT i.workspace_id, w.name, i.role, i.joined_at
            FROM user_workspace_index i
            JOIN workspaces w ON w.id = i.workspace_id
            WHERE i.user_id = $1
            ORDER BY i.joined_at DESC, i.workspace_id DESC
            """,
            user_id,
        )
        return [dict(r) for r in rows]
    except Exception as exc:  # pragma: no cover
        logger.error("Error reading workspace index for user %s: %s", user_id, exc, exc_info=True)
        raise DatabaseInteractionError("Database error reading workspace index.") from exc


# --------------------------------------------------------------------------- #
#  Writes                                                                     #
# --------------------------------------------------------------------------- #
async def insert_owner_member(
    db: asyncpg.Connection, workspace_id: int, owner_id: int, permissions: PermissionSet
) -> None:
    """Seed the owner's membership row; called once, in the create transaction."""
    try:
        await db.execute(
            """
            INSERT INTO workspace_members
                (workspace_id, user_id, role, can_view, can_edit, can_add, can_delete, can_invite, joined_at)
            VALUES ($1, $2, 'admin', $3, $4, $5, $6, $7, now())
            """,
            workspace_id,
            owner_id,
            *permissions.as_columns(),
        )
    except Exception as exc:  # pragma: no cover
        logger.error("Error seeding owner %s of workspace %s: %s", owner_id, workspace_id, exc, exc_info=True)
        raise DatabaseInteractionError("Database error seeding workspace owner.") from exc


async def upsert_member(
    db: asyncpg.Connection,
    workspace_id: int,
    user_id: int,
    role: str,
    permissions: PermissionSet,
) -> Optional[bool]:
    """
    Insert or update the (workspace, user) membership in one statement.

    Returns True when a row was inserted, False when an existing row was
    updated in place, and None when the target is the workspace owner (whose
    row is never rewritten).
    """
    try:
        rec = await db.fetchrow(
            """
            INSERT INTO workspace_members AS m
                (workspace_id, user_id, role, can_view, can_edit, can_add, can_delete, can_invite, joined_at)
            SELECT $1::int, $2::int, $3::text, $4::boolean, $5::boolean, $6::boolean, $7::boolean, $8::boolean, now()
            FROM workspaces w
            WHERE w.id = $1 AND w.owner_id <> $2
            ON CONFLICT (workspace_id, user_id) DO UPDATE
               SET role       = EXCLUDED.role,
                   can_view   = EXCLUDED.can_view,
                   can_edit   = EXCLUDED.can_edit,
                   can_add    = EXCLUDED.can_add,
                   can_delete = EXCLUDED.can_delete,
                   can_invite = EXCLUDED.can_invite,
                   updated_at = now()
            RETURNING (xmax = 0) AS inserted
            """,
            workspace_id,
            user_id,
            role,
            *permissions.as_columns(),
        )
        if rec is None:
            return None
        return bool(rec["inserted"])
    except Exception as exc:  # pragma: no cover
        logger.error("Error upserting member %s in workspace %s: %s", user_id, workspace_id, exc, exc_info=True)
        raise DatabaseInteractionError("Database error adding member.") from exc


async def upsert_index_entry(db: asyncpg.Connection, user_id: int, workspace_id: int, role: str) -> None:
    """Mirror a membership into the per-user index; never duplicates."""
    try:
        await db.execute(
            """
            INSERT INTO user_workspace_index (user_id, workspace_id, role, joined_at)
            VALUES ($1, $2, $3, now())
            ON CONFLICT (user_id, workspace_id) DO UPDATE SET role = EXCLUDED.role
            """,
            user_id,
            workspace_id,
            role,
        )
    except Exception as exc:  # pragma: no cover
        logger.error("Error updating workspace index for user %s: %s", user_id, exc, exc_info=True)
        raise DatabaseInteractionError("Database error updating workspace index.") from exc


async def update_member(
    db: asyncpg.Connection,
    workspace_id: int,
    user_id: int,
    role: str,
    permissions: PermissionSet,
) -> Optional[Dict[str, Any]]:
    """Rewrite a non-owner member's role/permissions; `None` if no such member."""
    try:
        rec = await db.fetchrow(
            """
            UPDATE workspace_members AS m
            SET role = $3, can_view = $4, can_edit = $5, can_add = $6, can_delete = $7, can_invite = $8,
                updated_at = now()
            FROM workspaces w
            WHERE m.workspace_id = $1 AND m.user_id = $2
              AND w.id = m.workspace_id AND w.owner_id <> m.user_id
            RETURNING m.workspace_id, m.user_id, m.role, m.can_view, m.can_edit, m.can_add,
                      m.can_delete, m.can_invite, m.joined_at
            """,
            workspace_id,
            user_id,
            role,
            *permissions.as_columns(),
        )
        return dict(rec) if rec is not None else None
    except Exception as exc:  # pragma: no cover
        logger.error("Error updating member %s in workspace %s: %s", user_id, workspace_id, exc, exc_info=True)
        raise DatabaseInteractionError("Database error updating member.") from exc


async def delete_member(db: asyncpg.Connection, workspace_id: int, user_id: int) -> bool:
    """Remove a non-owner membership and its index row. False if nothing was removed."""
    try:
        status = await db.execute(
            """
            DELETE FROM workspace_members m
            USING workspaces w
            WHERE m.workspace_id = $1 AND m.user_id = $2
              AND w.id = m.workspace_id AND w.owner_id <> m.user_id
            """,
            workspace_id,
            user_id,
        )
        if affected_rows(status) == 0:
            return False
        await db.execute(
            "DELETE FROM user_workspace_index WHERE user_id = $1 AND workspace_id = $2",
            user_id,
            workspace_id,
        )
        return True
    except Exception as exc:  # pragma: no cover
        logger.error("Error removing member %s from workspace %s: %s", user_id, workspace_id, exc, exc_info=True)
        raise DatabaseInteractionError("Database error removing member.") from exc
