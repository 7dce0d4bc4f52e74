# app/services/document_store.py
"""Read-only view onto the documents owned by the document service."""
import logging
from typing import Protocol

import asyncpg

from app.core.errors import DatabaseInteractionError

logger = logging.getLogger(__name__)


class DocumentStore(Protocol):
    async def count_documents(self, db: asyncpg.Connection, workspace_id: int) -> int:
        ...


class PostgresDocumentStore:
    """Counts rows in the shared `documents` table."""

    async def count_documents(self, db: asyncpg.Connection, workspace_id: int) -> int:
        try:
            return await db.fetchval("SELECT COUNT(*) FROM documents WHERE workspace_id = $1", workspace_id) or 0
        except Exception as exc:  # pragma: no cover
            logger.error("Error counting documents for workspace %s: %s", workspace_id, exc, exc_info=True)
            raise DatabaseInteractionError("Database error counting documents.") from exc
