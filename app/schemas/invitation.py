# app/schemas/invitation.py
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from app.schemas.permission import PermissionsView
from app.schemas.workspace import MemberRole

InvitationStatus = Literal["pending", "accepted", "rejected", "expired"]


class _ModelCfgMixin:
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


# --------------------------------------------------------------------------- #
#                               Requests                                      #
# --------------------------------------------------------------------------- #

class InvitationCreate(_ModelCfgMixin, BaseModel):
    """POST /invitations body."""
    workspace_id: int = Field(..., alias="workspaceId", gt=0)
    email: EmailStr
    role: MemberRole = "viewer"
    message: Optional[str] = Field(None, max_length=500)

    @field_validator("message", mode="before")
    @classmethod
    def _trim_message(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v


class BulkInvitationItem(BaseModel):
    email: EmailStr
    role: MemberRole = "viewer"
    message: Optional[str] = Field(None, max_length=500)


class BulkInvitationCreate(_ModelCfgMixin, BaseModel):
    workspace_id: int = Field(..., alias="workspaceId", gt=0)
    invitations: List[BulkInvitationItem] = Field(..., min_length=1, max_length=50)


# --------------------------------------------------------------------------- #
#                               Responses                                     #
# --------------------------------------------------------------------------- #

class InvitationResponse(_ModelCfgMixin, BaseModel):
    id: int
    workspace_id: int = Field(..., alias="workspaceId")
    inviter_id: int = Field(..., alias="inviterId")
    invitee_email: str = Field(..., alias="inviteeEmail")
    invitee_user_id: Optional[int] = Field(None, alias="inviteeUserId")
    role: MemberRole
    permissions: PermissionsView
    status: InvitationStatus
    message: Optional[str] = None
    expires_at: datetime = Field(..., alias="expiresAt")
    accepted_at: Optional[datetime] = Field(None, alias="acceptedAt")
    rejected_at: Optional[datetime] = Field(None, alias="rejectedAt")
    created_at: Optional[datetime] = Field(None, alias="createdAt")


class InvitationSendResponse(_ModelCfgMixin, BaseModel):
    invitation: InvitationResponse
    email_sent: bool = Field(..., alias="emailSent")


class BulkInvitationResult(_ModelCfgMixin, BaseModel):
    email: str
    success: bool
    invitation_id: Optional[int] = Field(None, alias="invitationId")
    expires_at: Optional[datetime] = Field(None, alias="expiresAt")
    email_sent: Optional[bool] = Field(None, alias="emailSent")
    error: Optional[str] = None


class BulkInvitationResponse(_ModelCfgMixin, BaseModel):
    successful: List[BulkInvitationResult]
    failed: List[BulkInvitationResult]
    total_sent: int = Field(..., alias="totalSent")
    total_failed: int = Field(..., alias="totalFailed")


class AcceptInvitationResponse(_ModelCfgMixin, BaseModel):
    status: Literal["accepted", "already_member"]
    workspace_id: int = Field(..., alias="workspaceId")
    workspace_name: Optional[str] = Field(None, alias="workspaceName")
    role: MemberRole
    membership: Optional[Literal["added", "updated", "unchanged"]] = None


class ResendInvitationResponse(_ModelCfgMixin, BaseModel):
    invitation_id: int = Field(..., alias="invitationId")
    expires_at: datetime = Field(..., alias="expiresAt")
    email_sent: bool = Field(..., alias="emailSent")


class InvitationDetailsResponse(_ModelCfgMixin, BaseModel):
    """Public view of an invitation, looked up by token."""
    workspace_id: int = Field(..., alias="workspaceId")
    workspace_name: str = Field(..., alias="workspaceName")
    workspace_description: Optional[str] = Field(None, alias="workspaceDescription")
    inviter_name: Optional[str] = Field(None, alias="inviterName")
    inviter_email: Optional[str] = Field(None, alias="inviterEmail")
    invitee_email: str = Field(..., alias="inviteeEmail")
    role: MemberRole
    permissions: PermissionsView
    message: Optional[str] = None
    expires_at: datetime = Field(..., alias="expiresAt")


class PendingInvitationItem(_ModelCfgMixin, BaseModel):
    id: int
    token: str
    workspace_id: int = Field(..., alias="workspaceId")
    workspace_name: str = Field(..., alias="workspaceName")
    inviter_name: Optional[str] = Field(None, alias="inviterName")
    role: MemberRole
    message: Optional[str] = None
    expires_at: datetime = Field(..., alias="expiresAt")


class PaginatedInvitationResponse(_ModelCfgMixin, BaseModel):
    items: List[InvitationResponse]

    page: int
    page_size: int
    total_items: int
    total_pages: int


class SweepResponse(BaseModel):
    expired: int
    purged: int
