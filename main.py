# main.py
import os
import uuid
from contextlib import asynccontextmanager

import asyncpg
import firebase_admin
import sentry_sdk
from fastapi import FastAPI, HTTPException, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from firebase_admin import credentials
from sentry_sdk.integrations.asyncpg import AsyncPGIntegration
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.core.config import settings, BASE_DIR
# configures logging before the app modules below create their loggers
import app.core.logging

logger = app.core.logging.get_logger(__name__)

from app.core.errors import InternalError, WorkspaceAccessError
from app.core.rate_limit import limiter
from app.db import base as db_base
from app.services.document_store import PostgresDocumentStore
from app.services.notifier import EmailNotifier
from app.services.sweeper import InvitationSweeper
from app.api.endpoints import invitations as invitations_router
from app.api.endpoints import members as members_router
from app.api.endpoints import users as users_router
from app.api.endpoints import workspaces as workspaces_router


def _init_sentry() -> None:
    if not settings.SENTRY_DSN or settings.ENVIRONMENT == "development":
        logger.warning("Sentry disabled (no DSN or development environment).")
        return
    try:
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            environment=settings.ENVIRONMENT,
            traces_sample_rate=0.2,
            profiles_sample_rate=0.1,
            integrations=[StarletteIntegration(), FastApiIntegration(), AsyncPGIntegration()],
            send_default_pii=False,  # invitee emails stay out of events
        )
        logger.info(f"Sentry initialized for environment: {settings.ENVIRONMENT}")
    except Exception as e:
        logger.error(f"Failed to initialize Sentry: {e}", exc_info=True)


def _init_firebase() -> None:
    """Bearer tokens are Firebase ID tokens; tests stub verification instead."""
    if settings.ENVIRONMENT == "test":
        logger.warning("Skipping Firebase Admin SDK initialization in 'test' environment.")
        return
    if firebase_admin._apps:
        return

    cred_path = os.path.join(BASE_DIR, settings.FIREBASE_SERVICE_ACCOUNT_KEY_PATH)
    if not os.path.exists(cred_path):
        logger.critical(f"Firebase service account key not found at: {cred_path}")
        raise RuntimeError(f"Could not initialize Firebase Admin SDK: missing {cred_path}")
    try:
        firebase_admin.initialize_app(credentials.Certificate(cred_path))
    except Exception as e:
        logger.critical(f"Failed during Firebase Admin SDK setup: {e}", exc_info=True)
        raise RuntimeError("Could not initialize Firebase Admin SDK.") from e
    logger.info("Firebase Admin SDK initialized.")


logger.info(f"Starting workspace access service in {settings.ENVIRONMENT} mode...")
_init_sentry()
_init_firebase()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: notifier and document store, then (outside tests) the DB pool and
    the invitation sweeper. Shutdown runs in reverse order.
    """
    app.state.notifier = EmailNotifier.from_settings(settings)
    app.state.documents = PostgresDocumentStore()
    if not app.state.notifier.configured:
        logger.warning("SENDGRID_API_KEY not set; invitation emails will not be delivered.")

    # pytest fixtures own the pool in tests
    if settings.ENVIRONMENT == "test":
        yield
        await app.state.notifier.aclose()
        return

    try:
        await db_base.init_db_pool()
    except Exception as e:
        logger.critical(f"Database pool initialization failed, exiting: {e}", exc_info=True)
        raise SystemExit(1)

    sweeper = InvitationSweeper(db_base.get_pool, settings.SWEEP_INTERVAL_SECONDS)
    await sweeper.start()
    app.state.sweeper = sweeper
    logger.info("Workspace access service ready.")

    yield

    await sweeper.stop()
    await app.state.notifier.aclose()
    await db_base.close_db_pool()
    logger.info("Workspace access service stopped.")


app = FastAPI(
    title="Workspace Access API",
    version="1.0.0",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.middleware("http")
async def log_request_middleware(request: Request, call_next):
    """Tags each request with an ID (client-supplied or generated) and logs start/end."""
    request_id = request.headers.get("x-request-id", str(uuid.uuid4()))
    request.state.request_id = request_id

    logger.info(f"RID:{request_id} START {request.method} {request.url.path}")
    try:
        response: Response = await call_next(request)
    except Exception as e:
        logger.error(f"RID:{request_id} Error during {request.method} {request.url.path}: {e}", exc_info=True)
        raise
    response.headers["X-Request-ID"] = request_id
    logger.info(f"RID:{request_id} END {request.method} {request.url.path} Status: {response.status_code}")
    return response


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response: Response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    return response


def _rid(request: Request) -> str:
    return getattr(request.state, "request_id", "N/A")


@app.exception_handler(WorkspaceAccessError)
async def workspace_access_exception_handler(request: Request, exc: WorkspaceAccessError):
    """Typed domain errors carry their own status and {detail, code, ...} body."""
    log = logger.error if isinstance(exc, InternalError) else logger.warning
    log(
        f"RID:{_rid(request)} {type(exc).__name__} ({exc.status_code}): {exc.message} "
        f"for {request.method} {request.url.path}"
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    logger.warning(
        f"RID:{_rid(request)} HTTPException ({exc.status_code}): {exc.detail} for {request.method} {request.url.path}"
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = jsonable_encoder(exc.errors())
    logger.warning(f"RID:{_rid(request)} Request validation failed for {request.method} {request.url.path}: {errors}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": "Validation Error", "code": "request_validation_error", "errors": errors},
    )


@app.exception_handler(asyncpg.PostgresError)
async def db_exception_handler(request: Request, exc: asyncpg.PostgresError):
    """
    Constraint violations that slip past the services: duplicate membership or
    pending invitation rows map to 409, permission-implication CHECKs to 400.
    """
    logger.error(
        f"RID:{_rid(request)} Database error during {request.method} {request.url.path}: "
        f"SQLSTATE={exc.sqlstate} - {exc}",
        exc_info=True,
    )
    if isinstance(exc, asyncpg.exceptions.UniqueViolationError):
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={"detail": "A conflicting membership or invitation already exists.", "code": "conflict"},
        )
    if isinstance(exc, asyncpg.exceptions.CheckViolationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": "Permission set violates its implication rules.", "code": "validation_error"},
        )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "A database error occurred processing your request.", "code": "database_error"},
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    logger.error(
        f"RID:{_rid(request)} Unhandled {type(exc).__name__} during {request.method} {request.url.path}: {exc}",
        exc_info=True,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "An internal server error occurred.", "code": "internal_error"},
    )


app.include_router(users_router.router, prefix=settings.API_V1_STR)
app.include_router(workspaces_router.router, prefix=settings.API_V1_STR)
app.include_router(members_router.router, prefix=settings.API_V1_STR)
app.include_router(invitations_router.router, prefix=settings.API_V1_STR)


@app.get("/", include_in_schema=False)
async def read_root():
    return {"message": f"Welcome to the {app.title}!"}


@app.get("/health", include_in_schema=False)
async def health():
    return {"status": "ok"}

# Run with: uvicorn main:app --reload --host 0.0.0.0 --port 8000
