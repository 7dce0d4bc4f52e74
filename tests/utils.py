# tests/utils.py

import os
from typing import Any, Dict, Optional
from unittest.mock import MagicMock  # For mocking records

import asyncpg
import pytest  # For pytest.fail

from app.schemas.token import Principal

API_V1 = "/api/v1"


# --- Mocking Helpers ---

def create_mock_record(data: Dict[str, Any]) -> MagicMock:
    """ Creates a mock asyncpg.Record for unit testing CRUD functions. """
    mock = MagicMock(spec=asyncpg.Record)
    mock.__getitem__.side_effect = lambda key: data.get(key)
    mock.get.side_effect = lambda key, default=None: data.get(key, default)
    for key, value in data.items():
        setattr(mock, key, value)
    # dict(record) goes through keys() + __getitem__
    mock.items.return_value = data.items()
    mock.keys.return_value = data.keys()
    mock._asdict = lambda: data
    return mock


def principal_of(user: Dict[str, Any]) -> Principal:
    """The Principal the auth dependency would build for `user`."""
    return Principal(
        id=user["id"],
        email=user["email"],
        role=user.get("role") or "user",
        display_name=user.get("display_name"),
    )


# --- Direct DB Data Creation Helpers (for Postgres integration tests) ---

async def create_test_user_direct(
    db_conn: asyncpg.Connection, suffix: str, make_unique: bool = True, role: str = "user"
) -> Dict[str, Any]:
    """Creates a user directly in the DB for test setup."""
    unique_part = f"_{os.urandom(3).hex()}" if make_unique else ""
    email = f"test_{suffix}{unique_part}@example.com"
    fb_uid = f"test_fb_uid_{suffix}{unique_part}"
    try:
        record = await db_conn.fetchrow(
            """
            INSERT INTO users (email, firebase_uid, display_name, role, created_at, updated_at)
            VALUES ($1, $2, $3, $4, NOW(), NOW())
            RETURNING id, email, firebase_uid, display_name, role
            """,
            email, fb_uid, f"Test User {suffix}", role,
        )
    except asyncpg.PostgresError as e:
        pytest.fail(f"Error in create_test_user_direct helper for {suffix}: {e}")
    return dict(record)


async def create_document_direct(db_conn: asyncpg.Connection, workspace_id: int, title: Optional[str] = None) -> int:
    """Documents belong to another service; tests insert them directly."""
    return await db_conn.fetchval(
        "INSERT INTO documents (workspace_id, title) VALUES ($1, $2) RETURNING id",
        workspace_id, title or "doc",
    )
