# app/api/endpoints/workspaces.py
import logging

import asyncpg
from fastapi import APIRouter, Depends, Path, Query, Request, Response, status

from app.api import deps
from app.core.rate_limit import limiter
from app.schemas import workspace as ws_schemas
from app.schemas.token import Principal
from app.services import workspaces as workspace_service
from app.services.document_store import DocumentStore
from app.utils.workspace_helpers import build_workspace, build_workspace_detail, build_workspace_page

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/workspaces", tags=["Workspaces"])

# Domain errors (NotFoundError, PermissionDeniedError, ConflictError, ...)
# propagate to the WorkspaceAccessError handler registered in main.py.


# === Workspace CRUD ===
@router.post("", response_model=ws_schemas.WorkspaceResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")
async def create_workspace(
    request: Request,  # For limiter state
    workspace_in: ws_schemas.WorkspaceCreate,
    principal: Principal = Depends(deps.get_current_principal),
    db: asyncpg.Connection = Depends(deps.get_db),
):
    """
    Create a workspace owned by the authenticated user.
    The owner is seeded as an admin member holding every capability.
    """
    workspace = await workspace_service.create_workspace(
        db,
        principal,
        name=workspace_in.name,
        description=workspace_in.description,
        settings=workspace_in.settings,
    )
    return build_workspace(workspace, requester_id=principal.id)


@router.get("", response_model=ws_schemas.PaginatedWorkspaceResponse)
@limiter.limit("30/minute")
async def list_workspaces(
    request: Request,
    page: int = Query(1, ge=1, description="Page number to retrieve"),
    page_size: int = Query(20, ge=1, le=100, description="Number of workspaces per page"),
    search: str = Query(None, max_length=100, description="Filter by name or description"),
    principal: Principal = Depends(deps.get_current_principal),
    db: asyncpg.Connection = Depends(deps.get_db),
):
    """Workspaces the authenticated user owns or has joined (paginated)."""
    rows, total = await workspace_service.list_workspaces(db, principal, page=page, page_size=page_size, search=search)
    return build_workspace_page(rows, total, page, page_size)


@router.get("/{workspace_id}", response_model=ws_schemas.WorkspaceDetailResponse)
@limiter.limit("30/minute")
async def get_workspace(
    request: Request,
    workspace_id: int = Path(..., description="The ID of the workspace"),
    principal: Principal = Depends(deps.get_current_principal),
    db: asyncpg.Connection = Depends(deps.get_db),
    documents: DocumentStore = Depends(deps.get_document_store),
):
    """Workspace metadata, caller permissions and members. Requires canView."""
    detail = await workspace_service.get_workspace(db, principal, workspace_id, documents=documents)
    return build_workspace_detail(detail, requester_id=principal.id)


@router.patch("/{workspace_id}", response_model=ws_schemas.WorkspaceResponse)
@limiter.limit("10/minute")
async def update_workspace(
    request: Request,
    update_data: ws_schemas.WorkspaceUpdate,
    workspace_id: int = Path(..., description="The ID of the workspace to update"),
    principal: Principal = Depends(deps.get_current_principal),
    db: asyncpg.Connection = Depends(deps.get_db),
):
    """Rename, re-describe or change settings. Requires admin-level access."""
    updated = await workspace_service.update_workspace(db, principal, workspace_id, update_data)
    return build_workspace(updated, requester_id=principal.id)


@router.delete("/{workspace_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("10/minute")
async def delete_workspace(
    request: Request,
    workspace_id: int = Path(..., description="The ID of the workspace to delete"),
    principal: Principal = Depends(deps.get_current_principal),
    db: asyncpg.Connection = Depends(deps.get_db),
    documents: DocumentStore = Depends(deps.get_document_store),
):
    """Delete an empty workspace. Requires admin-level access."""
    await workspace_service.delete_workspace(db, principal, workspace_id, documents)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{workspace_id}/stats", response_model=ws_schemas.WorkspaceStatsResponse)
@limiter.limit("30/minute")
async def get_workspace_stats(
    request: Request,
    workspace_id: int = Path(...),
    principal: Principal = Depends(deps.get_current_principal),
    db: asyncpg.Connection = Depends(deps.get_db),
    documents: DocumentStore = Depends(deps.get_document_store),
):
    stats = await workspace_service.get_workspace_stats(db, principal, workspace_id, documents)
    return ws_schemas.WorkspaceStatsResponse(**stats)


@router.post("/{workspace_id}/leave", response_model=ws_schemas.MessageResponse)
@limiter.limit("10/minute")
async def leave_workspace(
    request: Request,
    workspace_id: int = Path(...),
    principal: Principal = Depends(deps.get_current_principal),
    db: asyncpg.Connection = Depends(deps.get_db),
):
    """Remove yourself from a workspace. The owner cannot leave."""
    await workspace_service.leave_workspace(db, principal, workspace_id)
    return ws_schemas.MessageResponse(message="You have left the workspace")
