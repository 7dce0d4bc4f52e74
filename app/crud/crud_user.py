# app/crud/crud_user.py
import asyncpg
import logging
from typing import Optional, Dict, Any

from app.core.errors import DatabaseInteractionError

logger = logging.getLogger(__name__)

_USER_COLUMNS = "id, email, firebase_uid, display_name, role"


def _as_dict(record: Optional[asyncpg.Record]) -> Optional[Dict[str, Any]]:
    return dict(record) if record is not None else None


async def get_user_by_id(db: asyncpg.Connection, user_id: int) -> Optional[Dict[str, Any]]:
    """Fetches a user row by database ID."""
    logger.debug(f"Fetching user by ID: {user_id}")
    try:
        return _as_dict(await db.fetchrow(f"SELECT {_USER_COLUMNS} FROM users WHERE id = $1", user_id))
    except Exception as e:
        logger.error(f"Error fetching user by ID {user_id}: {e}", exc_info=True)
        raise DatabaseInteractionError("Database error fetching user by ID.") from e


async def get_user_by_firebase_uid(db: asyncpg.Connection, firebase_uid: str) -> Optional[Dict[str, Any]]:
    """Return the user row for a given Firebase UID, or None."""
    logger.debug("Fetching user by Firebase UID: %s", firebase_uid)
    try:
        return _as_dict(
            await db.fetchrow(f"SELECT {_USER_COLUMNS} FROM users WHERE firebase_uid = $1", firebase_uid)
        )
    except Exception as e:
        logger.error("Error fetching user by Firebase UID %s: %s", firebase_uid, e, exc_info=True)
        raise DatabaseInteractionError("Database error fetching user by Firebase UID.") from e


async def get_user_by_email(db: asyncpg.Connection, email: str) -> Optional[Dict[str, Any]]:
    """Fetches a user row by email, case-insensitively."""
    logger.debug(f"Fetching user by email: {email}")
    try:
        return _as_dict(
            await db.fetchrow(f"SELECT {_USER_COLUMNS} FROM users WHERE lower(email) = lower($1)", email)
        )
    except Exception as e:
        logger.error(f"Error fetching user by email {email}: {e}", exc_info=True)
        raise DatabaseInteractionError("Database error fetching user by email.") from e

