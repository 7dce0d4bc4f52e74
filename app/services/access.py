# app/services/access.py
"""
The one place that decides what a principal may do inside a workspace.

Owner ⇒ every capability, regardless of what is stored. Member ⇒ the stored
permission set (the role label is informational). Anyone else ⇒ no access.
Registry and invitation operations call `require_capability` /
`require_admin_level` rather than re-deriving this.
"""
import logging
from typing import Any, Dict, Mapping, Optional, Tuple, Union

import asyncpg

from app.core import permissions as perms
from app.core.errors import NotFoundError, PermissionDeniedError
from app.crud import crud_membership, crud_workspace
from app.schemas.token import Principal

logger = logging.getLogger(__name__)

Capability = perms.Capability


def effective_permissions(
    principal: Principal,
    workspace: Mapping[str, Any],
    member: Optional[Mapping[str, Any]],
) -> Optional[perms.PermissionSet]:
    """Owner bypass, else the member's stored set, else None."""
    if workspace["owner_id"] == principal.id:
        return perms.OWNER_PERMISSIONS
    if member is None:
        return None
    return perms.from_row(member)


def has_capability(
    principal: Principal,
    workspace: Mapping[str, Any],
    member: Optional[Mapping[str, Any]],
    capability: Union[Capability, str],
) -> bool:
    ps = effective_permissions(principal, workspace, member)
    return ps is not None and ps.has(capability)


async def load_access(
    db: asyncpg.Connection, principal: Principal, workspace_id: int
) -> Tuple[Dict[str, Any], Optional[perms.PermissionSet]]:
    """Fetch the workspace and the caller's effective permissions (NotFoundError if absent)."""
    workspace = await crud_workspace.get_workspace_by_id(db, workspace_id)
    if workspace is None:
        raise NotFoundError("Workspace not found.")
    member = None
    if workspace["owner_id"] != principal.id:
        member = await crud_membership.get_member(db, workspace_id, principal.id)
    return workspace, effective_permissions(principal, workspace, member)


async def require_capability(
    db: asyncpg.Connection,
    principal: Principal,
    workspace_id: int,
    capability: Union[Capability, str],
) -> Tuple[Dict[str, Any], perms.PermissionSet]:
    """Return (workspace, permissions) or raise PermissionDeniedError / NotFoundError."""
    workspace, ps = await load_access(db, principal, workspace_id)
    if ps is None or not ps.has(capability):
        logger.warning(
            "Capability check failed: user %s lacks %s on workspace %s",
            principal.id, Capability(capability).value, workspace_id,
        )
        raise PermissionDeniedError("You do not have permission to perform this action.")
    return workspace, ps


async def require_admin_level(
    db: asyncpg.Connection, principal: Principal, workspace_id: int
) -> Tuple[Dict[str, Any], perms.PermissionSet]:
    """Like `require_capability`, but every capability must be held."""
    workspace, ps = await load_access(db, principal, workspace_id)
    if ps is None or not perms.is_admin_level(ps):
        logger.warning("Admin check failed: user %s on workspace %s", principal.id, workspace_id)
        raise PermissionDeniedError("Admin access required for this workspace.")
    return workspace, ps
