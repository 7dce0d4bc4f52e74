# app/schemas/workspace.py
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.schemas.permission import PermissionsView

MemberRole = Literal["admin", "editor", "viewer"]


# --------------------------------------------------------------------------- #
#                              Base / mix-in                                  #
# --------------------------------------------------------------------------- #

class _ModelCfgMixin:
    """Common config so schemas accept either alias or raw-DB field names."""
    model_config = ConfigDict(
        populate_by_name=True,   # source=snake_case, output=camelCase
        from_attributes=True
    )


def _strip(value: Optional[str]) -> Optional[str]:
    return value.strip() if isinstance(value, str) else value


# --------------------------------------------------------------------------- #
#                               Requests                                      #
# --------------------------------------------------------------------------- #

class WorkspaceSettings(_ModelCfgMixin, BaseModel):
    is_public: bool = Field(False, alias="isPublic")
    allow_member_invites: bool = Field(False, alias="allowMemberInvites")


class WorkspaceSettingsPatch(_ModelCfgMixin, BaseModel):
    is_public: Optional[bool] = Field(None, alias="isPublic")
    allow_member_invites: Optional[bool] = Field(None, alias="allowMemberInvites")


class WorkspaceCreate(BaseModel):
    """POST /workspaces body."""
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    settings: WorkspaceSettings = Field(default_factory=WorkspaceSettings)

    @field_validator("name", "description", mode="before")
    @classmethod
    def _trim(cls, v):
        return _strip(v)

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, v: str) -> str:
        if not v:
            raise ValueError("Workspace name is required")
        return v


class WorkspaceUpdate(BaseModel):
    """PATCH /workspaces/{id} body (all optional)."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    settings: Optional[WorkspaceSettingsPatch] = None

    @field_validator("name", "description", mode="before")
    @classmethod
    def _trim(cls, v):
        return _strip(v)


class MemberRoleUpdate(BaseModel):
    """
    PATCH /workspaces/{id}/members/{member_id} body.

    `permissions` may use canonical keys (canView…) or aliases (read/write…);
    the service normalises and validates them before storage.
    """
    role: Optional[MemberRole] = None
    permissions: Optional[Dict[str, Any]] = None


class MemberAddRequest(BaseModel):
    email: Optional[str] = None
    role: Optional[str] = None


# --------------------------------------------------------------------------- #
#                               Responses                                     #
# --------------------------------------------------------------------------- #

class MemberResponse(_ModelCfgMixin, BaseModel):
    user_id: int = Field(..., alias="userId")
    email: Optional[str] = None
    display_name: Optional[str] = Field(None, alias="displayName")
    role: MemberRole
    permissions: PermissionsView
    is_owner: bool = Field(False, alias="isOwner")
    joined_at: Optional[datetime] = Field(None, alias="joinedAt")


class WorkspaceResponse(_ModelCfgMixin, BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    owner_id: int = Field(..., alias="ownerId")
    settings: WorkspaceSettings
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")

    # caller's view of the workspace
    is_owner: bool = Field(False, alias="isOwner")
    role: Optional[MemberRole] = None
    permissions: Optional[PermissionsView] = None


class WorkspaceDetailResponse(WorkspaceResponse):
    members: List[MemberResponse] = Field(default_factory=list)
    document_count: Optional[int] = Field(None, alias="documentCount")


class WorkspaceListItem(_ModelCfgMixin, BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    owner_id: int = Field(..., alias="ownerId")
    role: MemberRole
    is_owner: bool = Field(False, alias="isOwner")
    member_count: int = Field(0, alias="memberCount")
    joined_at: Optional[datetime] = Field(None, alias="joinedAt")


class PaginatedWorkspaceResponse(_ModelCfgMixin, BaseModel):
    items: List[WorkspaceListItem]

    page: int
    page_size: int
    total_items: int
    total_pages: int


class WorkspaceStatsResponse(_ModelCfgMixin, BaseModel):
    workspace_id: int = Field(..., alias="workspaceId")
    total_members: int = Field(..., alias="totalMembers")
    role_breakdown: Dict[str, int] = Field(default_factory=dict, alias="roleBreakdown")
    pending_invitations: int = Field(0, alias="pendingInvitations")
    total_documents: int = Field(0, alias="totalDocuments")


class WorkspaceIndexEntry(_ModelCfgMixin, BaseModel):
    """One row of the per-user workspace index (GET /users/me/workspaces)."""
    workspace_id: int = Field(..., alias="workspaceId")
    name: Optional[str] = None
    role: MemberRole
    joined_at: Optional[datetime] = Field(None, alias="joinedAt")


class MessageResponse(BaseModel):
    message: str
