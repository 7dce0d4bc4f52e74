# app/utils/workspace_helpers.py
"""
Utilities for turning CRUD/service dicts into the Pydantic response models
declared in `app/schemas/workspace.py` and `app/schemas/invitation.py`.

Stored permissions are `can_*` columns; responses carry them in both key
vocabularies via `permissions_view`.
"""
import math
from typing import Any, Dict, List, Mapping, Optional

from app.core import permissions as perms
from app.schemas import invitation as inv_schemas
from app.schemas import workspace as ws_schemas
from app.schemas.permission import permissions_view


def total_pages(total_items: int, page_size: int) -> int:
    return math.ceil(total_items / page_size) if page_size > 0 else 0


def _settings(workspace: Mapping[str, Any]) -> ws_schemas.WorkspaceSettings:
    return ws_schemas.WorkspaceSettings(
        is_public=bool(workspace.get("is_public")),
        allow_member_invites=bool(workspace.get("allow_member_invites")),
    )


def build_member(row: Mapping[str, Any]) -> ws_schemas.MemberResponse:
    return ws_schemas.MemberResponse(
        user_id=row["user_id"],
        email=row.get("email"),
        display_name=row.get("display_name"),
        role=row["role"],
        permissions=permissions_view(perms.from_row(row)),
        is_owner=bool(row.get("is_owner")),
        joined_at=row.get("joined_at"),
    )


def build_workspace(
    workspace: Mapping[str, Any],
    *,
    requester_id: int,
    role: Optional[str] = None,
    permissions: Optional[perms.PermissionSet] = None,
) -> ws_schemas.WorkspaceResponse:
    """
    Convert a workspace row into `WorkspaceResponse`.

    The creator of a brand-new workspace gets the owner view without another
    lookup: `role` defaults to "admin" and `permissions` to the full set when
    `requester_id` is the owner.
    """
    is_owner = workspace["owner_id"] == requester_id
    if is_owner:
        role = role or "admin"
        permissions = permissions or perms.OWNER_PERMISSIONS
    return ws_schemas.WorkspaceResponse(
        id=workspace["id"],
        name=workspace["name"],
        description=workspace.get("description"),
        owner_id=workspace["owner_id"],
        settings=_settings(workspace),
        created_at=workspace.get("created_at"),
        updated_at=workspace.get("updated_at"),
        is_owner=is_owner,
        role=role,
        permissions=permissions_view(permissions) if permissions is not None else None,
    )


def build_workspace_detail(detail: Mapping[str, Any], *, requester_id: int) -> ws_schemas.WorkspaceDetailResponse:
    """`detail` is the dict returned by `services.workspaces.get_workspace`."""
    base = build_workspace(
        detail["workspace"],
        requester_id=requester_id,
        role=detail.get("role"),
        permissions=detail.get("permissions"),
    )
    return ws_schemas.WorkspaceDetailResponse(
        **base.model_dump(),
        members=[build_member(m) for m in detail.get("members", [])],
        document_count=detail.get("document_count"),
    )


def build_workspace_page(
    rows: List[Dict[str, Any]], total: int, page: int, page_size: int
) -> ws_schemas.PaginatedWorkspaceResponse:
    return ws_schemas.PaginatedWorkspaceResponse(
        items=[ws_schemas.WorkspaceListItem(**row) for row in rows],
        page=page,
        page_size=page_size,
        total_items=total,
        total_pages=total_pages(total, page_size),
    )


def build_invitation(row: Mapping[str, Any]) -> inv_schemas.InvitationResponse:
    data = {k: v for k, v in row.items() if not k.startswith("can_") and k != "token"}
    data["permissions"] = permissions_view(perms.from_row(row))
    return inv_schemas.InvitationResponse(**data)


def build_invitation_page(
    rows: List[Dict[str, Any]], total: int, page: int, page_size: int
) -> inv_schemas.PaginatedInvitationResponse:
    return inv_schemas.PaginatedInvitationResponse(
        items=[build_invitation(r) for r in rows],
        page=page,
        page_size=page_size,
        total_items=total,
        total_pages=total_pages(total, page_size),
    )
