# app/services/membership.py
"""
Single entry point for adding, updating and removing non-owner members.

Invitation acceptance is the only path in; direct adds are disabled in the
registry. Everything here runs inside the caller's transaction so that the
membership row and its index mirror commit together.
"""
import logging
from typing import Literal

import asyncpg

from app.core.permissions import PermissionSet
from app.crud import crud_membership

logger = logging.getLogger(__name__)

MembershipOutcome = Literal["added", "updated", "unchanged"]


async def add_member_safely(
    db: asyncpg.Connection,
    workspace_id: int,
    user_id: int,
    role: str,
    permissions: PermissionSet,
) -> MembershipOutcome:
    """
    Upsert the (workspace, user) membership and mirror it into the user index.

    Returns "added" or "updated". "unchanged" means the user is the workspace
    owner, whose entry is never rewritten.
    """
    inserted = await crud_membership.upsert_member(db, workspace_id, user_id, role, permissions)
    if inserted is None:
        logger.info("User %s owns workspace %s; membership left unchanged", user_id, workspace_id)
        return "unchanged"

    await crud_membership.upsert_index_entry(db, user_id, workspace_id, role)
    outcome: MembershipOutcome = "added" if inserted else "updated"
    logger.info("Membership %s: user %s in workspace %s as %s", outcome, user_id, workspace_id, role)
    return outcome


async def update_member_entry(
    db: asyncpg.Connection,
    workspace_id: int,
    user_id: int,
    role: str,
    permissions: PermissionSet,
) -> bool:
    """Rewrite an existing member's role and permissions. False if there is no such member."""
    updated = await crud_membership.update_member(db, workspace_id, user_id, role, permissions)
    if updated is None:
        return False
    await crud_membership.upsert_index_entry(db, user_id, workspace_id, role)
    logger.info("Membership updated: user %s in workspace %s as %s", user_id, workspace_id, role)
    return True


async def remove_member_entry(db: asyncpg.Connection, workspace_id: int, user_id: int) -> bool:
    removed = await crud_membership.delete_member(db, workspace_id, user_id)
    if removed:
        logger.info("Membership removed: user %s from workspace %s", user_id, workspace_id)
    return removed
