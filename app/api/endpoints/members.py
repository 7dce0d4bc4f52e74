# app/api/endpoints/members.py
import logging
from typing import List

import asyncpg
from fastapi import APIRouter, Body, Depends, Path, Request, Response, status

from app.api import deps
from app.core.rate_limit import limiter
from app.schemas import workspace as ws_schemas
from app.schemas.token import Principal
from app.services import workspaces as workspace_service
from app.utils.workspace_helpers import build_member, build_workspace_detail

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/workspaces/{workspace_id}/members",
    tags=["Members", "Workspaces"],
)


# --------------------------------------------------------------------------- #
#  GET /workspaces/{id}/members                                               #
# --------------------------------------------------------------------------- #
@router.get("", response_model=List[ws_schemas.MemberResponse])
@limiter.limit("30/minute")
async def list_members(
    request: Request,
    workspace_id: int = Path(...),
    principal: Principal = Depends(deps.get_current_principal),
    db: asyncpg.Connection = Depends(deps.get_db),
):
    """All members (owner first) with their permissions in both vocabularies."""
    rows = await workspace_service.list_members(db, principal, workspace_id)
    return [build_member(r) for r in rows]


# --------------------------------------------------------------------------- #
#  POST /workspaces/{id}/members  (disabled)                                  #
# --------------------------------------------------------------------------- #
@router.post("", response_model=ws_schemas.MessageResponse)
async def add_member(
    workspace_id: int = Path(...),
    _body: ws_schemas.MemberAddRequest = Body(None),
    _principal: Principal = Depends(deps.get_current_principal),
):
    """Members join only by accepting an invitation."""
    workspace_service.add_member_directly()


# --------------------------------------------------------------------------- #
#  PATCH /workspaces/{id}/members/{member_id}                                 #
# --------------------------------------------------------------------------- #
@router.patch("/{member_id}", response_model=ws_schemas.WorkspaceDetailResponse)
@limiter.limit("20/minute")
async def update_member(
    request: Request,
    update: ws_schemas.MemberRoleUpdate,
    workspace_id: int = Path(...),
    member_id: int = Path(..., description="User ID of the member"),
    principal: Principal = Depends(deps.get_current_principal),
    db: asyncpg.Connection = Depends(deps.get_db),
):
    """
    Change a member's role and/or permissions. Requires admin-level access.

    `permissions` may use canView/canEdit/... or read/write/... keys.
    """
    detail = await workspace_service.update_member_role(
        db, principal, workspace_id, member_id, role=update.role, permissions=update.permissions
    )
    return build_workspace_detail(detail, requester_id=principal.id)


# --------------------------------------------------------------------------- #
#  DELETE /workspaces/{id}/members/{member_id}                                #
# --------------------------------------------------------------------------- #
@router.delete("/{member_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("20/minute")
async def remove_member(
    request: Request,
    workspace_id: int = Path(...),
    member_id: int = Path(...),
    principal: Principal = Depends(deps.get_current_principal),
    db: asyncpg.Connection = Depends(deps.get_db),
):
    await workspace_service.remove_member(db, principal, workspace_id, member_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
