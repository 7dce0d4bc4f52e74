# app/db/schema.py
"""
Relational layout for workspaces, memberships, invitations and the per-user
workspace index.

The statements are plain SQL so the Alembic migration and the Postgres
integration tests apply exactly the same schema. Most of the data invariants
live here as constraints, so a racing writer hits a constraint instead of
leaving bad rows behind:

* one membership row per (workspace, user)                → UNIQUE
* edit ⇒ view, delete ⇒ edit, add ⇒ view                  → CHECK
* one *pending* invitation per (workspace, email)         → partial UNIQUE index
* invitation tokens unique and never rewritten            → UNIQUE + trigger
"""
from typing import List

from sqlalchemy.engine.url import make_url

_PERMISSION_CHECKS = """
    CONSTRAINT {prefix}_edit_requires_view   CHECK (NOT can_edit   OR can_view),
    CONSTRAINT {prefix}_delete_requires_edit CHECK (NOT can_delete OR can_edit),
    CONSTRAINT {prefix}_add_requires_view    CHECK (NOT can_add    OR can_view)
"""

_PERMISSION_COLUMNS = """
    can_view    BOOLEAN NOT NULL DEFAULT FALSE,
    can_edit    BOOLEAN NOT NULL DEFAULT FALSE,
    can_add     BOOLEAN NOT NULL DEFAULT FALSE,
    can_delete  BOOLEAN NOT NULL DEFAULT FALSE,
    can_invite  BOOLEAN NOT NULL DEFAULT FALSE,
"""

CREATE_STATEMENTS: List[str] = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id            SERIAL PRIMARY KEY,
        email         TEXT NOT NULL,
        firebase_uid  TEXT UNIQUE,
        display_name  TEXT,
        role          TEXT NOT NULL DEFAULT 'user' CHECK (role IN ('user', 'admin')),
        created_at    TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at    TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS uq_users_email_lower ON users (lower(email))",
    """
    CREATE TABLE IF NOT EXISTS workspaces (
        id                    SERIAL PRIMARY KEY,
        name                  VARCHAR(100) NOT NULL CHECK (length(btrim(name)) > 0),
        description           VARCHAR(500),
        owner_id              INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        is_public             BOOLEAN NOT NULL DEFAULT FALSE,
        allow_member_invites  BOOLEAN NOT NULL DEFAULT FALSE,
        created_at            TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at            TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS uq_workspaces_owner_name ON workspaces (owner_id, name)",
    f"""
    CREATE TABLE IF NOT EXISTS workspace_members (
        id            SERIAL PRIMARY KEY,
        workspace_id  INTEGER NOT NULL REFERENCES workspaces(id) ON DELETE CASCADE,
        user_id       INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        role          TEXT NOT NULL CHECK (role IN ('admin', 'editor', 'viewer')),
        {_PERMISSION_COLUMNS}
        joined_at     TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at    TIMESTAMPTZ NOT NULL DEFAULT now(),
        CONSTRAINT uq_workspace_member UNIQUE (workspace_id, user_id),
        {_PERMISSION_CHECKS.format(prefix="ck_member")}
    )
    """,
    "CREATE INDEX IF NOT EXISTS ix_workspace_members_user_id ON workspace_members (user_id)",
    f"""
    CREATE TABLE IF NOT EXISTS workspace_invitations (
        id               SERIAL PRIMARY KEY,
        workspace_id     INTEGER NOT NULL REFERENCES workspaces(id) ON DELETE CASCADE,
        inviter_id       INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        invitee_email    TEXT NOT NULL CHECK (invitee_email = lower(invitee_email)),
        invitee_user_id  INTEGER REFERENCES users(id) ON DELETE SET NULL,
        role             TEXT NOT NULL CHECK (role IN ('admin', 'editor', 'viewer')),
        {_PERMISSION_COLUMNS}
        token            CHAR(64) NOT NULL,
        status           TEXT NOT NULL DEFAULT 'pending'
                         CHECK (status IN ('pending', 'accepted', 'rejected', 'expired')),
        message          VARCHAR(500),
        expires_at       TIMESTAMPTZ NOT NULL,
        accepted_at      TIMESTAMPTZ,
        rejected_at      TIMESTAMPTZ,
        created_at       TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at       TIMESTAMPTZ NOT NULL DEFAULT now(),
        CONSTRAINT uq_invitation_token UNIQUE (token),
        {_PERMISSION_CHECKS.format(prefix="ck_invitation")}
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_invitation_pending_email
        ON workspace_invitations (workspace_id, invitee_email)
        WHERE status = 'pending'
    """,
    "CREATE INDEX IF NOT EXISTS ix_invitations_status_expires ON workspace_invitations (status, expires_at)",
    "CREATE INDEX IF NOT EXISTS ix_invitations_invitee_email ON workspace_invitations (invitee_email)",
    """
    CREATE OR REPLACE FUNCTION workspace_invitations_token_immutable() RETURNS trigger AS $$
    BEGIN
        IF NEW.token IS DISTINCT FROM OLD.token THEN
            RAISE EXCEPTION 'invitation token is immutable';
        END IF;
        RETURN NEW;
    END;
    $$ LANGUAGE plpgsql
    """,
    "DROP TRIGGER IF EXISTS trg_invitation_token_immutable ON workspace_invitations",
    """
    CREATE TRIGGER trg_invitation_token_immutable
        BEFORE UPDATE OF token ON workspace_invitations
        FOR EACH ROW EXECUTE FUNCTION workspace_invitations_token_immutable()
    """,
    """
    CREATE TABLE IF NOT EXISTS user_workspace_index (
        user_id       INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        workspace_id  INTEGER NOT NULL REFERENCES workspaces(id) ON DELETE CASCADE,
        role          TEXT NOT NULL CHECK (role IN ('admin', 'editor', 'viewer')),
        joined_at     TIMESTAMPTZ NOT NULL DEFAULT now(),
        PRIMARY KEY (user_id, workspace_id)
    )
    """,
    # Documents belong to another service; only the count is read here.
    """
    CREATE TABLE IF NOT EXISTS documents (
        id            SERIAL PRIMARY KEY,
        workspace_id  INTEGER NOT NULL REFERENCES workspaces(id) ON DELETE RESTRICT,
        title         TEXT NOT NULL,
        created_at    TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    "CREATE INDEX IF NOT EXISTS ix_documents_workspace_id ON documents (workspace_id)",
]

DROP_STATEMENTS: List[str] = [
    "DROP TABLE IF EXISTS documents",
    "DROP TABLE IF EXISTS user_workspace_index",
    "DROP TABLE IF EXISTS workspace_invitations",
    "DROP FUNCTION IF EXISTS workspace_invitations_token_immutable()",
    "DROP TABLE IF EXISTS workspace_members",
    "DROP TABLE IF EXISTS workspaces",
    "DROP TABLE IF EXISTS users",
]

# Data-bearing tables in FK-safe truncate order (used by integration tests)
TABLES: List[str] = [
    "documents",
    "user_workspace_index",
    "workspace_invitations",
    "workspace_members",
    "workspaces",
    "users",
]

# asyncpg rejects libpq-only query keys; the app pool passes SSL its own way
_LIBPQ_ONLY_KEYS = {"sslmode", "sslrootcert", "sslcert", "sslkey"}


def migration_url(dsn: str) -> str:
    """The app's libpq-style DSN rewritten for Alembic's async engine."""
    url = make_url(dsn)
    query = {k: v for k, v in url.query.items() if k not in _LIBPQ_ONLY_KEYS}
    return url.set(drivername="postgresql+asyncpg", query=query).render_as_string(hide_password=False)
