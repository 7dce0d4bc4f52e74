# app/api/endpoints/invitations.py
import logging
from typing import List, Optional

import asyncpg
from fastapi import APIRouter, Depends, Path, Query, Request, Response, status

from app.api import deps
from app.core.rate_limit import limiter
from app.schemas import invitation as inv_schemas
from app.schemas.permission import permissions_view
from app.schemas.token import Principal
from app.services import invitations as invitation_service
from app.services.notifier import Notifier
from app.utils.workspace_helpers import build_invitation, build_invitation_page

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/invitations", tags=["Invitations"])

# Token paths are public: the token itself is the credential.


# === Inviter side ===
@router.post("", response_model=inv_schemas.InvitationSendResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
async def send_invitation(
    request: Request,
    invitation_in: inv_schemas.InvitationCreate,
    principal: Principal = Depends(deps.get_current_principal),
    db: asyncpg.Connection = Depends(deps.get_db),
    notifier: Optional[Notifier] = Depends(deps.get_notifier),
):
    """Invite an email address to a workspace. Requires canInvite."""
    result = await invitation_service.send_invitation(
        db,
        principal,
        invitation_in.workspace_id,
        invitation_in.email,
        invitation_in.role,
        invitation_in.message,
        notifier=notifier,
    )
    return inv_schemas.InvitationSendResponse(
        invitation=build_invitation(result["invitation"]),
        email_sent=result["email_sent"],
    )


@router.post("/bulk", response_model=inv_schemas.BulkInvitationResponse)
@limiter.limit("3/minute")
async def send_bulk_invitations(
    request: Request,
    bulk_in: inv_schemas.BulkInvitationCreate,
    principal: Principal = Depends(deps.get_current_principal),
    db: asyncpg.Connection = Depends(deps.get_db),
    notifier: Optional[Notifier] = Depends(deps.get_notifier),
):
    """Up to 50 invitations in one call; each entry succeeds or fails on its own."""
    result = await invitation_service.send_bulk_invitations(
        db,
        principal,
        bulk_in.workspace_id,
        [item.model_dump() for item in bulk_in.invitations],
        notifier=notifier,
    )
    return inv_schemas.BulkInvitationResponse(
        successful=[inv_schemas.BulkInvitationResult(**r) for r in result["successful"]],
        failed=[inv_schemas.BulkInvitationResult(**r) for r in result["failed"]],
        total_sent=len(result["successful"]),
        total_failed=len(result["failed"]),
    )


@router.get("/pending", response_model=List[inv_schemas.PendingInvitationItem])
@limiter.limit("30/minute")
async def list_my_pending_invitations(
    request: Request,
    principal: Principal = Depends(deps.get_current_principal),
    db: asyncpg.Connection = Depends(deps.get_db),
):
    """Live invitations addressed to the authenticated user's email."""
    rows = await invitation_service.list_pending_invitations(db, principal)
    return [inv_schemas.PendingInvitationItem(**r) for r in rows]


@router.get("/workspace/{workspace_id}", response_model=inv_schemas.PaginatedInvitationResponse)
@limiter.limit("30/minute")
async def list_workspace_invitations(
    request: Request,
    workspace_id: int = Path(...),
    invitation_status: Optional[inv_schemas.InvitationStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    principal: Principal = Depends(deps.get_current_principal),
    db: asyncpg.Connection = Depends(deps.get_db),
):
    """Invitations of one workspace, newest first. Requires canInvite."""
    rows, total = await invitation_service.list_workspace_invitations(
        db, principal, workspace_id, invitation_status, page, page_size
    )
    return build_invitation_page(rows, total, page, page_size)


@router.post("/cleanup", response_model=inv_schemas.SweepResponse)
@limiter.limit("5/minute")
async def run_cleanup(
    request: Request,
    _admin: Principal = Depends(deps.require_system_admin),
    db: asyncpg.Connection = Depends(deps.get_db),
):
    """Run the expiry/retention sweep now. System administrators only."""
    result = await invitation_service.sweep(db)
    return inv_schemas.SweepResponse(**result)


@router.delete("/{invitation_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("20/minute")
async def cancel_invitation(
    request: Request,
    invitation_id: int = Path(...),
    principal: Principal = Depends(deps.get_current_principal),
    db: asyncpg.Connection = Depends(deps.get_db),
):
    await invitation_service.cancel_invitation(db, principal, invitation_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{invitation_id}/resend", response_model=inv_schemas.ResendInvitationResponse)
@limiter.limit("5/minute")
async def resend_invitation(
    request: Request,
    invitation_id: int = Path(...),
    principal: Principal = Depends(deps.get_current_principal),
    db: asyncpg.Connection = Depends(deps.get_db),
    notifier: Optional[Notifier] = Depends(deps.get_notifier),
):
    """Extend a pending invitation's expiry and send the email again."""
    result = await invitation_service.resend_invitation(db, principal, invitation_id, notifier=notifier)
    return inv_schemas.ResendInvitationResponse(**result)


# === Invitee side (token) ===
@router.get("/token/{token}", response_model=inv_schemas.InvitationDetailsResponse)
@limiter.limit("30/minute")
async def get_invitation_details(
    request: Request,
    token: str = Path(..., min_length=1, max_length=128),
    db: asyncpg.Connection = Depends(deps.get_db),
):
    details = await invitation_service.get_invitation_details(db, token)
    details["permissions"] = permissions_view(details["permissions"])
    return inv_schemas.InvitationDetailsResponse(**details)


@router.post("/token/{token}/accept", response_model=inv_schemas.AcceptInvitationResponse)
@limiter.limit("10/minute")
async def accept_invitation(
    request: Request,
    token: str = Path(..., min_length=1, max_length=128),
    principal: Optional[Principal] = Depends(deps.get_optional_principal),
    db: asyncpg.Connection = Depends(deps.get_db),
):
    """
    Join the workspace. Signed-in callers must be the invitee; anonymous callers
    are matched to an existing account by email, or told to register first.
    """
    result = await invitation_service.accept_invitation(db, token, principal)
    return inv_schemas.AcceptInvitationResponse(**result)


@router.post("/token/{token}/reject", response_model=inv_schemas.InvitationResponse)
@limiter.limit("10/minute")
async def reject_invitation(
    request: Request,
    token: str = Path(..., min_length=1, max_length=128),
    db: asyncpg.Connection = Depends(deps.get_db),
):
    rejected = await invitation_service.reject_invitation(db, token)
    return build_invitation(rejected)
