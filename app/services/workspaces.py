# app/services/workspaces.py
"""
Workspace registry: create/read/update/delete workspaces and manage their
members.

Every gated operation goes through `app.services.access`; every write that
touches more than one row runs in a single transaction owned here.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import asyncpg

from app.core import permissions as perms
from app.core.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    StateError,
    ValidationError,
)
from app.crud import crud_invitation, crud_membership, crud_workspace
from app.schemas.token import Principal
from app.schemas.workspace import WorkspaceSettings, WorkspaceUpdate
from app.services import access, membership
from app.services.document_store import DocumentStore

logger = logging.getLogger(__name__)

NAME_MAX = 100
DESCRIPTION_MAX = 500
DIRECT_ADD_DISABLED = (
    "Adding members directly is disabled. Send an invitation with POST /invitations instead."
)


def _clean_name(name: Optional[str]) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError("Workspace name is required.")
    if len(cleaned) > NAME_MAX:
        raise ValidationError(f"Workspace name cannot exceed {NAME_MAX} characters.")
    return cleaned


def _clean_description(description: Optional[str]) -> Optional[str]:
    if description is None:
        return None
    cleaned = description.strip()
    if len(cleaned) > DESCRIPTION_MAX:
        raise ValidationError(f"Description cannot exceed {DESCRIPTION_MAX} characters.")
    return cleaned


# --------------------------------------------------------------------------- #
#  Workspace CRUD                                                             #
# --------------------------------------------------------------------------- #
async def create_workspace(
    db: asyncpg.Connection,
    owner: Principal,
    name: str,
    description: Optional[str] = None,
    settings: Optional[WorkspaceSettings] = None,
) -> Dict[str, Any]:
    """Create a workspace with its owner seeded as an all-capability admin member."""
    name = _clean_name(name)
    description = _clean_description(description)
    settings = settings or WorkspaceSettings()

    async with db.transaction():
        workspace = await crud_workspace.create_workspace(
            db,
            owner_id=owner.id,
            name=name,
            description=description,
            is_public=settings.is_public,
            allow_member_invites=settings.allow_member_invites,
        )
        if workspace is None:
            raise ConflictError("Workspace with this name already exists.")
        await crud_membership.insert_owner_member(db, workspace["id"], owner.id, perms.OWNER_PERMISSIONS)
        await crud_membership.upsert_index_entry(db, owner.id, workspace["id"], "admin")

    logger.info("User %s created workspace %s (%r)", owner.id, workspace["id"], name)
    return workspace


async def get_workspace(
    db: asyncpg.Connection,
    principal: Principal,
    workspace_id: int,
    documents: Optional[DocumentStore] = None,
) -> Dict[str, Any]:
    """Workspace row, caller permissions, member list and (optionally) document count."""
    workspace, ps = await access.require_capability(db, principal, workspace_id, access.Capability.VIEW)
    members = await crud_membership.list_members(db, workspace_id)
    document_count = await documents.count_documents(db, workspace_id) if documents else None
    return {
        "workspace": workspace,
        "permissions": ps,
        "role": _caller_role(principal, workspace, members),
        "members": members,
        "document_count": document_count,
    }


def _caller_role(principal: Principal, workspace: Dict[str, Any], members: List[Dict[str, Any]]) -> Optional[str]:
    if workspace["owner_id"] == principal.id:
        return "admin"
    for member in members:
        if member["user_id"] == principal.id:
            return member["role"]
    return None


async def list_workspaces(
    db: asyncpg.Connection,
    principal: Principal,
    page: int = 1,
    page_size: int = 20,
    search: Optional[str] = None,
) -> Tuple[List[Dict[str, Any]], int]:
    """Owned and joined workspaces, read from the per-user index."""
    search = search.strip() if search else None
    return await crud_workspace.get_user_workspaces_paginated(
        db, user_id=principal.id, page=page, page_size=page_size, search=search or None
    )


async def update_workspace(
    db: asyncpg.Connection,
    principal: Principal,
    workspace_id: int,
    patch: WorkspaceUpdate,
) -> Dict[str, Any]:
    """Rename / re-describe / change settings. Admin-level only."""
    workspace, _ = await access.require_admin_level(db, principal, workspace_id)

    provided = patch.model_dump(exclude_unset=True)
    fields: Dict[str, Any] = {}

    if "name" in provided:
        name = _clean_name(patch.name)
        if name != workspace["name"]:
            if await crud_workspace.name_in_use(db, principal.id, name, exclude_workspace_id=workspace_id):
                raise ConflictError("Workspace with this name already exists.")
            fields["name"] = name
    if "description" in provided:
        fields["description"] = _clean_description(patch.description)
    if patch.settings is not None:
        for key, value in patch.settings.model_dump(exclude_unset=True, exclude_none=True).items():
            fields[key] = value

    updated = await crud_workspace.update_workspace(db, workspace_id, fields)
    if updated is None:
        raise NotFoundError("Workspace not found.")
    logger.info("User %s updated workspace %s: %s", principal.id, workspace_id, sorted(fields))
    return updated


async def delete_workspace(
    db: asyncpg.Connection,
    principal: Principal,
    workspace_id: int,
    documents: DocumentStore,
) -> None:
    """Irreversibly delete an empty workspace. Admin-level only."""
    await access.require_admin_level(db, principal, workspace_id)

    count = await documents.count_documents(db, workspace_id)
    if count > 0:
        raise ConflictError(
            f"Cannot delete workspace with {count} document(s). Delete all documents first."
        )
    if not await crud_workspace.delete_workspace(db, workspace_id):
        raise NotFoundError("Workspace not found.")
    logger.info("User %s deleted workspace %s", principal.id, workspace_id)


async def get_workspace_stats(
    db: asyncpg.Connection,
    principal: Principal,
    workspace_id: int,
    documents: DocumentStore,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    await access.require_capability(db, principal, workspace_id, access.Capability.VIEW)
    now = now or datetime.now(timezone.utc)

    breakdown = await crud_workspace.get_role_breakdown(db, workspace_id)
    return {
        "workspace_id": workspace_id,
        "total_members": sum(breakdown.values()),
        "role_breakdown": breakdown,
        "pending_invitations": await crud_invitation.count_pending(db, workspace_id, now),
        "total_documents": await documents.count_documents(db, workspace_id),
    }


# --------------------------------------------------------------------------- #
#  Members                                                                    #
# --------------------------------------------------------------------------- #
async def list_members(db: asyncpg.Connection, principal: Principal, workspace_id: int) -> List[Dict[str, Any]]:
    await access.require_capability(db, principal, workspace_id, access.Capability.VIEW)
    return await crud_membership.list_members(db, workspace_id)


def add_member_directly() -> None:
    """Always refused: invitation acceptance is the only way in."""
    raise StateError(DIRECT_ADD_DISABLED)


async def update_member_role(
    db: asyncpg.Connection,
    principal: Principal,
    workspace_id: int,
    member_id: int,
    role: Optional[str] = None,
    permissions: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Change a member's role label and/or permissions. Admin-level only.

    role only         → permissions reset to the role's defaults
    permissions given → normalised (either vocabulary), validated, stored canonically;
                        the role label is `role` if given, else unchanged
    """
    workspace, _ = await access.require_admin_level(db, principal, workspace_id)

    if member_id == workspace["owner_id"]:
        raise StateError("Cannot change the workspace owner's role or permissions.")
    if role is None and permissions is None:
        raise ValidationError("Provide a role, permissions, or both.")

    existing = await crud_membership.get_member(db, workspace_id, member_id)
    if existing is None:
        raise NotFoundError("Member not found in this workspace.")

    if permissions is not None:
        new_permissions = perms.normalize(permissions)
        if role is not None:
            perms.defaults_for_role(role)  # rejects unknown roles
        new_role = role or existing["role"]
    else:
        new_permissions = perms.defaults_for_role(role)
        new_role = role

    async with db.transaction():
        if not await membership.update_member_entry(db, workspace_id, member_id, new_role, new_permissions):
            raise NotFoundError("Member not found in this workspace.")

    logger.info(
        "User %s set member %s in workspace %s to %s %s",
        principal.id, member_id, workspace_id, new_role, new_permissions.as_canonical(),
    )
    return await get_workspace(db, principal, workspace_id)


async def remove_member(db: asyncpg.Connection, principal: Principal, workspace_id: int, member_id: int) -> None:
    workspace, _ = await access.require_admin_level(db, principal, workspace_id)
    if member_id == workspace["owner_id"]:
        raise StateError("Cannot remove the workspace owner.")

    async with db.transaction():
        removed = await membership.remove_member_entry(db, workspace_id, member_id)
    if not removed:
        raise NotFoundError("Member not found in this workspace.")
    logger.info("User %s removed member %s from workspace %s", principal.id, member_id, workspace_id)


async def leave_workspace(db: asyncpg.Connection, principal: Principal, workspace_id: int) -> None:
    """Membership is the only requirement; the owner can't leave."""
    workspace = await crud_workspace.get_workspace_by_id(db, workspace_id)
    if workspace is None:
        raise NotFoundError("Workspace not found.")
    if workspace["owner_id"] == principal.id:
        raise StateError("Workspace owner cannot leave. Delete the workspace instead.")

    async with db.transaction():
        removed = await membership.remove_member_entry(db, workspace_id, principal.id)
    if not removed:
        raise PermissionDeniedError("You are not a member of this workspace.")
    logger.info("User %s left workspace %s", principal.id, workspace_id)
