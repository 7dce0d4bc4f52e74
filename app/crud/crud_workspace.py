"""
CRUD helpers for workspace rows.

Every public function:
• takes an `asyncpg.Connection`
• returns plain Python data (dict / list / bool) or raises a custom error
• never commits/rolls back – the calling layer controls transactions
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

import asyncpg

from app.core.errors import ConflictError, DatabaseInteractionError
from app.crud.crud_helpers import affected_rows

logger = logging.getLogger(__name__)

_WS_COLUMNS = "id, name, description, owner_id, is_public, allow_member_invites, created_at, updated_at"

# columns a PATCH may touch
_UPDATABLE = ("name", "description", "is_public", "allow_member_invites")


# --------------------------------------------------------------------------- #
#  Core CRUD                                                                  #
# --------------------------------------------------------------------------- #
async def create_workspace(
    db: asyncpg.Connection,
    owner_id: int,
    name: str,
    description: Optional[str],
    is_public: bool,
    allow_member_invites: bool,
) -> Optional[Dict[str, Any]]:
    """
    Insert a workspace unless the owner already owns or belongs to one with
    the same name.

    The name check and the insert are one statement. Returns `None` when the
    name is taken.
    """
    try:
        rec = await db.fetchrow(
            f"""
            INSERT INTO workspaces (name, description, owner_id, is_public, allow_member_invites,
                                    created_at, updated_at)
            SELECT $1::varchar, $2::varchar, $3::int, $4::boolean, $5::boolean, now(), now()
            WHERE NOT EXISTS (
                SELECT 1
                FROM workspaces w
                WHERE w.name = $1::varchar
                  AND (w.owner_id = $3::int
                       OR EXISTS (SELECT 1 FROM workspace_members m
                                  WHERE m.workspace_id = w.id AND m.user_id = $3::int))
            )
            RETURNING {_WS_COLUMNS}
            """,
            name,
            description,
            owner_id,
            is_public,
            allow_member_invites,
        )
        if rec is None:
            logger.info("Workspace name %r already in use for user %s", name, owner_id)
            return None

        logger.info("Created workspace %s for owner %s", rec["id"], owner_id)
        return dict(rec)

    except asyncpg.exceptions.UniqueViolationError:
        # lost a race with a concurrent create of the same (owner, name)
        logger.info("Concurrent create for workspace name %r by owner %s", name, owner_id)
        return None
    except asyncpg.PostgresError as pg:  # pragma: no cover
        logger.error("PostgresError creating workspace: %s", pg, exc_info=True)
        raise DatabaseInteractionError("Database error creating workspace.") from pg
    except Exception as exc:  # pragma: no cover
        logger.error("Unexpected error creating workspace: %s", exc, exc_info=True)
        raise DatabaseInteractionError("Unexpected error creating workspace.") from exc


async def get_workspace_by_id(db: asyncpg.Connection, workspace_id: int) -> Optional[Dict[str, Any]]:
    """Fetch a workspace row by primary key; returns `None` if absent."""
    try:
        rec = await db.fetchrow(f"SELECT {_WS_COLUMNS} FROM workspaces WHERE id = $1", workspace_id)
        return dict(rec) if rec is not None else None
    except Exception as exc:  # pragma: no cover
        logger.error("Error fetching workspace %s: %s", workspace_id, exc, exc_info=True)
        raise DatabaseInteractionError("Database error fetching workspace by ID.") from exc


async def name_in_use(
    db: asyncpg.Connection, user_id: int, name: str, exclude_workspace_id: Optional[int] = None
) -> bool:
    """True if `user_id` owns or belongs to another workspace called `name`."""
    try:
        return bool(
            await db.fetchval(
                """
                SELECT EXISTS (
                    SELECT 1
                    FROM workspaces w
                    WHERE w.name = $2
                      AND ($3::int IS NULL OR w.id <> $3::int)
                      AND (w.owner_id = $1
                           OR EXISTS (SELECT 1 FROM workspace_members m
                                      WHERE m.workspace_id = w.id AND m.user_id = $1))
                )
                """,
                user_id,
                name,
                exclude_workspace_id,
            )
        )
    except Exception as exc:  # pragma: no cover
        logger.error("Error checking workspace name for user %s: %s", user_id, exc, exc_info=True)
        raise DatabaseInteractionError("Database error checking workspace name.") from exc


async def update_workspace(
    db: asyncpg.Connection, workspace_id: int, fields: Dict[str, Any]
) -> Optional[Dict[str, Any]]:
    """PATCH a workspace row with the given column values; returns the updated row."""
    fields = {k: v for k, v in fields.items() if k in _UPDATABLE}
    if not fields:
        # nothing to change – echo current state
        return await get_workspace_by_id(db, workspace_id)

    sets: list[str] = []
    params: list[Any] = []
    for idx, (column, value) in enumerate(fields.items(), start=1):
        sets.append(f"{column} = ${idx}")
        params.append(value)
    params.append(workspace_id)  # WHERE param

    try:
        rec = await db.fetchrow(
            f"""
            UPDATE workspaces
            SET {', '.join(sets)}, updated_at = now()
            WHERE id = ${len(params)}
            RETURNING {_WS_COLUMNS}
            """,
            *params,
        )
        return dict(rec) if rec is not None else None
    except asyncpg.exceptions.UniqueViolationError as exc:
        raise ConflictError("Workspace with this name already exists.") from exc
    except Exception as exc:  # pragma: no cover
        logger.error("Error updating workspace %s: %s", workspace_id, exc, exc_info=True)
        raise DatabaseInteractionError("Database error updating workspace.") from exc


async def delete_workspace(db: asyncpg.Connection, workspace_id: int) -> bool:
    """Delete a workspace; members, index rows and invitations cascade."""
    try:
        status = await db.execute("DELETE FROM workspaces WHERE id = $1", workspace_id)
        deleted = affected_rows(status) == 1
        if deleted:
            logger.info("Deleted workspace %s", workspace_id)
        return deleted
    except Exception as exc:  # pragma: no cover
        logger.error("Error deleting workspace %s: %s", workspace_id, exc, exc_info=True)
        raise DatabaseInteractionError("Database error deleting workspace.") from exc


# --------------------------------------------------------------------------- #
#  Listing / stats                                                            #
# --------------------------------------------------------------------------- #
_ORDER_BY = "ORDER BY i.joined_at DESC, w.id DESC"  # stable secondary key


async def get_user_workspaces_paginated(
    db: asyncpg.Connection,
    user_id: int,
    page: int,
    page_size: int,
    search: Optional[str] = None,
) -> Tuple[List[Dict[str, Any]], int]:
    """Return (rows, total) for workspaces the user owns or belongs to, via the index."""
    offset = (page - 1) * page_size
    pattern = f"%{search}%" if search else None
    try:
        total: int = await db.fetchval(
            """
            SELECT COUNT(*)
            FROM user_workspace_index i
            JOIN workspaces w ON w.id = i.workspace_id
            WHERE i.user_id = $1
              AND ($2::text IS NULL OR w.name ILIKE $2::text OR w.description ILIKE $2::text)
            """,
            user_id,
            pattern,
        ) or 0
        if total == 0:
            return [], 0

        rows = await db.fetch(
            f"""
            SELECT w.id,
                   w.name,
                   w.description,
                   w.owner_id,
                   i.role,
                   i.joined_at,
                   (w.owner_id = $1) AS is_owner,
                   (SELECT COUNT(*) FROM workspace_members m WHERE m.workspace_id = w.id) AS member_count
            FROM user_workspace_index i
            JOIN workspaces w ON w.id = i.workspace_id
            WHERE i.user_id = $1
              AND ($2::text IS NULL OR w.name ILIKE $2::text OR w.description ILIKE $2::text)
            {_ORDER_BY}
            LIMIT $3 OFFSET $4
            """,
            user_id,
            pattern,
            page_size,
            offset,
        )
        return [dict(r) for r in rows], total
    except Exception as exc:  # pragma: no cover
        logger.error("Error paginating workspaces for user %s: %s", user_id, exc, exc_info=True)
        raise DatabaseInteractionError("Database error fetching user workspaces.") from exc


async def get_role_breakdown(db: asyncpg.Connection, workspace_id: int) -> Dict[str, int]:
    """Member counts per role label (the owner counts as admin)."""
    try:
        rows = await db.fetch(
            "SELECT role, COUNT(*) AS n FROM workspace_members WHERE workspace_id = $1 GROUP BY role",
            workspace_id,
        )
        return {r["role"]: r["n"] for r in rows}
    except Exception as exc:  # pragma: no cover
        logger.error("Error counting members for workspace %s: %s", workspace_id, exc, exc_info=True)
        raise DatabaseInteractionError("Database error fetching workspace stats.") from exc
