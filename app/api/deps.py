# app/api/deps.py
import logging
from typing import AsyncGenerator, Optional

import asyncpg
from fastapi import Depends, Header, HTTPException, Request, status

# Firebase Admin SDK (initialized in main.py)
from firebase_admin import auth as firebase_auth
from firebase_admin._auth_utils import InvalidIdTokenError

from app.core.config import settings
from app.core.errors import WorkspaceAccessError
from app.crud import crud_user
from app.db import base
from app.schemas.token import FirebaseTokenData, Principal
from app.services.document_store import DocumentStore, PostgresDocumentStore
from app.services.notifier import Notifier

logger = logging.getLogger(__name__)

UNAUTH_TEXT = "Could not validate credentials"

InvalidTokenError = InvalidIdTokenError


# --- Database Dependency ---
async def get_db() -> AsyncGenerator[asyncpg.Connection, None]:
    """
    FastAPI dependency that provides an asyncpg connection from the pool.
    Handles acquiring and releasing the connection.
    """
    pool = base.get_pool()
    if not pool:
        # This should ideally not happen if lifespan startup succeeded
        logger.error("Database pool is not available when trying to get connection.")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database service is not available.",
        )

    try:
        async with pool.acquire() as conn:
            yield conn
    except (HTTPException, WorkspaceAccessError):
        # raised by the endpoint itself; let the app handlers map them
        raise
    except asyncpg.PostgresError as db_err:
        logger.error(
            f"Database connection error during request processing: SQLSTATE={db_err.sqlstate} - {db_err}",
            exc_info=True,
        )
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="A database error occurred.")


# --- Injected services ---
def get_notifier(request: Request) -> Optional[Notifier]:
    """The notifier built in the lifespan; None means emails are not sent."""
    return getattr(request.app.state, "notifier", None)


def get_document_store(request: Request) -> DocumentStore:
    store = getattr(request.app.state, "documents", None)
    return store if store is not None else PostgresDocumentStore()


# --- Authentication Dependencies ---
def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=UNAUTH_TEXT,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _is_stub_token(token: str) -> bool:
    """Test runs authenticate with the bare uid; everywhere else every token is verified."""
    return settings.ENVIRONMENT == "test" and "." not in token


async def get_verified_token_data(request: Request) -> FirebaseTokenData:
    auth_header: Optional[str] = request.headers.get("Authorization")

    # Header must exist
    if not auth_header:
        raise _unauthorized()

    try:
        scheme, token = auth_header.split(" ", 1)
    except ValueError:
        raise _unauthorized()

    if scheme.lower() != "bearer" or not token:
        raise _unauthorized()

    if _is_stub_token(token):
        return FirebaseTokenData(uid=token, email=None)

    try:
        return await firebase_verify_token(token)
    except InvalidTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid Firebase token",
        )


async def get_optional_verified_token_data(
    authorization: Optional[str] = Header(None, alias="Authorization")
) -> Optional[FirebaseTokenData]:
    """
    Dependency that attempts to verify the Firebase token if provided,
    but returns None if the header is missing or verification fails.
    Does NOT raise HTTPExceptions for auth errors.
    """
    if not authorization or not authorization.startswith("Bearer "):
        return None

    token = authorization.split("Bearer ", 1)[1].strip()
    if not token:
        return None
    if _is_stub_token(token):
        return FirebaseTokenData(uid=token, email=None)
    try:
        return await firebase_verify_token(token)
    except InvalidTokenError as e:
        logger.warning(f"Optional token verification failed: {e}")
        return None


async def _principal_for(db: asyncpg.Connection, token_data: FirebaseTokenData) -> Optional[Principal]:
    user_record = await crud_user.get_user_by_firebase_uid(db=db, firebase_uid=token_data.uid)
    if user_record is None:
        return None
    return Principal(
        id=user_record["id"],
        email=user_record["email"],
        role=user_record.get("role") or "user",
        display_name=user_record.get("display_name"),
    )


async def get_current_principal(
    db: asyncpg.Connection = Depends(get_db),
    token_data: FirebaseTokenData = Depends(get_verified_token_data),
) -> Principal:
    """
    Resolve the verified Firebase uid to our `users` row.
    Pure lookup, no auto-create: unknown uids get 403.
    """
    principal = await _principal_for(db, token_data)
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User no longer exists",
        )
    return principal


async def get_optional_principal(
    db: asyncpg.Connection = Depends(get_db),
    token_data: Optional[FirebaseTokenData] = Depends(get_optional_verified_token_data),
) -> Optional[Principal]:
    """Like `get_current_principal`, but anonymous (or unknown) callers get None."""
    if token_data is None:
        return None
    return await _principal_for(db, token_data)


async def require_system_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    if not principal.is_system_admin:
        logger.warning(f"User {principal.id} attempted a system-admin operation")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="System administrator access required")
    return principal


# ------------------------------------------------------------------
# Helper: verify a Firebase ID-token and return our Pydantic model
# ------------------------------------------------------------------
async def firebase_verify_token(token: str) -> FirebaseTokenData:
    """
    Verifies a Firebase ID token and converts the decoded claims into our
    FirebaseTokenData schema.  Raises InvalidTokenError on any failure so the
    caller can respond with 401.
    """
    try:
        claims = firebase_auth.verify_id_token(token)
    except Exception as exc:          # all errors → InvalidTokenError
        raise InvalidTokenError(str(exc)) from exc

    return FirebaseTokenData(
        uid=claims.get("uid") or claims.get("user_id"),
        email=claims.get("email"),
        name=claims.get("name"),
    )
