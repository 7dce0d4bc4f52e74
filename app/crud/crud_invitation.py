"""
CRUD helpers for workspace invitations.

Status transitions are conditional UPDATE/DELETE statements keyed on the
current status (and expiry), so repeated or concurrent calls act at most once:
a row flips from `pending` exactly one time no matter how many callers race.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import asyncpg

from app.core.errors import DatabaseInteractionError
from app.core.permissions import PermissionSet
from app.crud.crud_helpers import affected_rows

logger = logging.getLogger(__name__)

_INV_COLUMNS = (
    "id, workspace_id, inviter_id, invitee_email, invitee_user_id, role, "
    "can_view, can_edit, can_add, can_delete, can_invite, token, status, message, "
    "expires_at, accepted_at, rejected_at, created_at"
)


def _as_dict(record: Optional[asyncpg.Record]) -> Optional[Dict[str, Any]]:
    return dict(record) if record is not None else None


# --------------------------------------------------------------------------- #
#  Create                                                                     #
# --------------------------------------------------------------------------- #
async def create_invitation(
    db: asyncpg.Connection,
    *,
    workspace_id: int,
    inviter_id: int,
    invitee_email: str,
    invitee_user_id: Optional[int],
    role: str,
    permissions: PermissionSet,
    token: str,
    message: Optional[str],
    expires_at: datetime,
) -> Optional[Dict[str, Any]]:
    """
    Insert a pending invitation.

    Returns `None` if a pending invitation already exists for
    (workspace, email); the partial unique index arbitrates concurrent sends.
    """
    try:
        rec = await db.fetchrow(
            f"""
            INSERT INTO workspace_invitations
                (workspace_id, inviter_id, invitee_email, invitee_user_id, role,
                 can_view, can_edit, can_add, can_delete, can_invite,
                 token, status, message, expires_at, created_at, updated_at)
            VALUES ($1, $2, lower($3), $4, $5, $6, $7, $8, $9, $10, $11, 'pending', $12, $13, now(), now())
            ON CONFLICT (workspace_id, invitee_email) WHERE status = 'pending' DO NOTHING
            RETURNING {_INV_COLUMNS}
            """,
            workspace_id,
            inviter_id,
            invitee_email,
            invitee_user_id,
            role,
            *permissions.as_columns(),
            token,
            message,
            expires_at,
        )
        if rec is None:
            logger.info("Pending invitation already exists for %s in workspace %s", invitee_email, workspace_id)
            return None
        logger.info("Created invitation %s for %s in workspace %s", rec["id"], invitee_email, workspace_id)
        return dict(rec)
    except asyncpg.PostgresError as pg:  # pragma: no cover
        logger.error("PostgresError creating invitation: %s", pg, exc_info=True)
        raise DatabaseInteractionError("Database error creating invitation.") from pg
    except Exception as exc:  # pragma: no cover
        logger.error("Unexpected error creating invitation: %s", exc, exc_info=True)
        raise DatabaseInteractionError("Unexpected error creating invitation.") from exc


# --------------------------------------------------------------------------- #
#  Reads                                                                      #
# --------------------------------------------------------------------------- #
async def get_invitation_by_token(db: asyncpg.Connection, token: str) -> Optional[Dict[str, Any]]:
    try:
        return _as_dict(
            await db.fetchrow(f"SELECT {_INV_COLUMNS} FROM workspace_invitations WHERE token = $1", token)
        )
    except Exception as exc:  # pragma: no cover
        logger.error("Error fetching invitation by token: %s", exc, exc_info=True)
        raise DatabaseInteractionError("Database error fetching invitation.") from exc


async def get_invitation_by_id(db: asyncpg.Connection, invitation_id: int) -> Optional[Dict[str, Any]]:
    try:
        return _as_dict(
            await db.fetchrow(f"SELECT {_INV_COLUMNS} FROM workspace_invitations WHERE id = $1", invitation_id)
        )
    except Exception as exc:  # pragma: no cover
        logger.error("Error fetching invitation %s: %s", invitation_id, exc, exc_info=True)
        raise DatabaseInteractionError("Database error fetching invitation.") from exc


async def list_workspace_invitations(
    db: asyncpg.Connection,
    workspace_id: int,
    status: Optional[str],
    page: int,
    page_size: int,
) -> Tuple[List[Dict[str, Any]], int]:
    """(rows, total) for a workspace, newest first, optionally filtered by status."""
    offset = (page - 1) * page_size
    try:
        total: int = await db.fetchval(
            """
            SELECT COUNT(*) FROM workspace_invitations
            WHERE workspace_id = $1 AND ($2::text IS NULL OR status = $2::text)
            """,
            workspace_id,
            status,
        ) or 0
        if total == 0:
            return [], 0
        rows = await db.fetch(
            f"""
            SELECT {_INV_COLUMNS}
            FROM workspace_invitations
            WHERE workspace_id = $1 AND ($2::text IS NULL OR status = $2::text)
            ORDER BY created_at DESC, id DESC
            LIMIT $3 OFFSET $4
            """,
            workspace_id,
            status,
            page_size,
            offset,
        )
        return [dict(r) for r in rows], total
    except Exception as exc:  # pragma: no cover
        logger.error("Error listing invitations for workspace %s: %s", workspace_id, exc, exc_info=True)
        raise DatabaseInteractionError("Database error listing invitations.") from exc


async def list_pending_for_email(db: asyncpg.Connection, email: str, now: datetime) -> List[Dict[str, Any]]:
    """Live pending invitations addressed to `email`, with workspace and inviter names."""
    try:
        rows = await db.fetch(
            """
            SELECT i.id, i.token, i.workspace_id, w.name AS workspace_name,
                   u.display_name AS inviter_name, i.role, i.message, i.expires_at
            FROM workspace_invitations i
            JOIN workspaces w ON w.id = i.workspace_id
            JOIN users u ON u.id = i.inviter_id
            WHERE i.invitee_email = lower($1)
              AND i.status = 'pending'
              AND i.expires_at > $2
            ORDER BY i.created_at DESC, i.id DESC
            """,
            email,
            now,
        )
        return [dict(r) for r in rows]
    except Exception as exc:  # pragma: no cover
        logger.error("Error listing pending invitations for %s: %s", email, exc, exc_info=True)
        raise DatabaseInteractionError("Database error listing pending invitations.") from exc


async def count_pending(db: asyncpg.Connection, workspace_id: int, now: datetime) -> int:
    try:
        return await db.fetchval(
            """
            SELECT COUNT(*) FROM workspace_invitations
            WHERE workspace_id = $1 AND status = 'pending' AND expires_at > $2
            """,
            workspace_id,
            now,
        ) or 0
    except Exception as exc:  # pragma: no cover
        logger.error("Error counting invitations for workspace %s: %s", workspace_id, exc, exc_info=True)
        raise DatabaseInteractionError("Database error counting invitations.") from exc


# --------------------------------------------------------------------------- #
#  Conditional transitions                                                    #
# --------------------------------------------------------------------------- #
async def expire_stale_for_email(
    db: asyncpg.Connection, workspace_id: int, email: str, now: datetime
) -> int:
    """Flip elapsed pending invitations for (workspace, email) to expired."""
    try:
        status = await db.execute(
            """
            UPDATE workspace_invitations
            SET status = 'expired', updated_at = now()
            WHERE workspace_id = $1 AND invitee_email = lower($2)
              AND status = 'pending' AND expires_at <= $3
            """,
            workspace_id,
            email,
            now,
        )
        return affected_rows(status)
    except Exception as exc:  # pragma: no cover
        logger.error("Error expiring stale invitations: %s", exc, exc_info=True)
        raise DatabaseInteractionError("Database error expiring invitations.") from exc


async def mark_expired(db: asyncpg.Connection, invitation_id: int, now: datetime) -> bool:
    """pending-and-elapsed → expired. True only for the call that flipped it."""
    try:
        status = await db.execute(
            """
            UPDATE workspace_invitations
            SET status = 'expired', updated_at = now()
            WHERE id = $1 AND status = 'pending' AND expires_at <= $2
            """,
            invitation_id,
            now,
        )
        return affected_rows(status) == 1
    except Exception as exc:  # pragma: no cover
        logger.error("Error expiring invitation %s: %s", invitation_id, exc, exc_info=True)
        raise DatabaseInteractionError("Database error expiring invitation.") from exc


async def claim_for_acceptance(
    db: asyncpg.Connection, invitation_id: int, user_id: int, now: datetime
) -> Optional[Dict[str, Any]]:
    """live pending → accepted. `None` if another caller got there first or it lapsed."""
    try:
        return _as_dict(
            await db.fetchrow(
                f"""
                UPDATE workspace_invitations
                SET status = 'accepted', accepted_at = $3, invitee_user_id = $2, updated_at = now()
                WHERE id = $1 AND status = 'pending' AND expires_at > $3
                RETURNING {_INV_COLUMNS}
                """,
                invitation_id,
                user_id,
                now,
            )
        )
    except Exception as exc:  # pragma: no cover
        logger.error("Error accepting invitation %s: %s", invitation_id, exc, exc_info=True)
        raise DatabaseInteractionError("Database error accepting invitation.") from exc


async def mark_rejected(db: asyncpg.Connection, invitation_id: int, now: datetime) -> Optional[Dict[str, Any]]:
    """live pending → rejected; `None` if the invitation was no longer live-pending."""
    try:
        return _as_dict(
            await db.fetchrow(
                f"""
                UPDATE workspace_invitations
                SET status = 'rejected', rejected_at = $2, updated_at = now()
                WHERE id = $1 AND status = 'pending' AND expires_at > $2
                RETURNING {_INV_COLUMNS}
                """,
                invitation_id,
                now,
            )
        )
    except Exception as exc:  # pragma: no cover
        logger.error("Error rejecting invitation %s: %s", invitation_id, exc, exc_info=True)
        raise DatabaseInteractionError("Database error rejecting invitation.") from exc


async def delete_pending(db: asyncpg.Connection, invitation_id: int) -> bool:
    """Delete the invitation only while it is still pending."""
    try:
        status = await db.execute(
            "DELETE FROM workspace_invitations WHERE id = $1 AND status = 'pending'",
            invitation_id,
        )
        return affected_rows(status) == 1
    except Exception as exc:  # pragma: no cover
        logger.error("Error cancelling invitation %s: %s", invitation_id, exc, exc_info=True)
        raise DatabaseInteractionError("Database error cancelling invitation.") from exc


async def extend_expiry(
    db: asyncpg.Connection, invitation_id: int, expires_at: datetime
) -> Optional[Dict[str, Any]]:
    """Push out expires_at on a pending invitation; token and status are left alone."""
    try:
        return _as_dict(
            await db.fetchrow(
                f"""
                UPDATE workspace_invitations
                SET expires_at = $2, updated_at = now()
                WHERE id = $1 AND status = 'pending'
                RETURNING {_INV_COLUMNS}
                """,
                invitation_id,
                expires_at,
            )
        )
    except Exception as exc:  # pragma: no cover
        logger.error("Error resending invitation %s: %s", invitation_id, exc, exc_info=True)
        raise DatabaseInteractionError("Database error resending invitation.") from exc


# --------------------------------------------------------------------------- #
#  Sweep                                                                      #
# --------------------------------------------------------------------------- #
async def expire_elapsed(db: asyncpg.Connection, now: datetime) -> int:
    """Every pending invitation past its expiry → expired."""
    try:
        status = await db.execute(
            """
            UPDATE workspace_invitations
            SET status = 'expired', updated_at = now()
            WHERE status = 'pending' AND expires_at <= $1
            """,
            now,
        )
        return affected_rows(status)
    except Exception as exc:  # pragma: no cover
        logger.error("Error expiring elapsed invitations: %s", exc, exc_info=True)
        raise DatabaseInteractionError("Database error expiring invitations.") from exc


async def purge_terminal(db: asyncpg.Connection, cutoff: datetime) -> int:
    """Delete expired/rejected invitations created before `cutoff`."""
    try:
        status = await db.execute(
            """
            DELETE FROM workspace_invitations
            WHERE status IN ('expired', 'rejected') AND created_at < $1
            """,
            cutoff,
        )
        return affected_rows(status)
    except Exception as exc:  # pragma: no cover
        logger.error("Error purging old invitations: %s", exc, exc_info=True)
        raise DatabaseInteractionError("Database error purging invitations.") from exc
