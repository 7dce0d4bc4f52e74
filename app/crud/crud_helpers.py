# app/crud/crud_helpers.py
"""Small helpers shared by the crud_* modules."""


def affected_rows(status: str) -> int:
    """Row count from an asyncpg command tag: 'UPDATE 3' / 'DELETE 1' → 3 / 1."""
    try:
        return int(status.split()[-1])
    except (AttributeError, ValueError, IndexError):
        return 0
