# app/services/invitations.py
"""
Invitation lifecycle.

    pending ──accept──▶ accepted
       │  ├──reject──▶ rejected
       │  └──expiry──▶ expired   (lazily on access, or by the sweep)
       └──cancel──▶ (row deleted)

Every transition is a conditional statement in `crud_invitation`, so a
transition happens at most once however many requests race for it. Emails
go out after the database work has committed; a failed or slow delivery
never undoes an invitation or a membership, it only reports
`email_sent=False`.
"""
import asyncio
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

import asyncpg

from app.core import permissions as perms
from app.core.config import settings
from app.core.errors import (
    ConflictError,
    ExpiredError,
    NotFoundError,
    PermissionDeniedError,
    RegistrationRequiredError,
    StateError,
    ValidationError,
    WorkspaceAccessError,
)
from app.crud import crud_invitation, crud_membership, crud_user, crud_workspace
from app.schemas.notification import InvitationEmail
from app.schemas.token import Principal
from app.services import access, membership
from app.services.notifier import Notifier

logger = logging.getLogger(__name__)

MESSAGE_MAX = 500
TOKEN_BYTES = 32  # 64 hex chars


def generate_token() -> str:
    return secrets.token_hex(TOKEN_BYTES)


def _utcnow(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


def _ttl() -> timedelta:
    return timedelta(days=settings.INVITATION_TTL_DAYS)


def _clean_message(message: Optional[str]) -> Optional[str]:
    if message is None:
        return None
    cleaned = message.strip()
    if len(cleaned) > MESSAGE_MAX:
        raise ValidationError(f"Message cannot exceed {MESSAGE_MAX} characters.")
    return cleaned or None


async def _notify(notifier: Optional[Notifier], payload: InvitationEmail, *, reminder: bool = False) -> bool:
    """Deliver one invitation email with a bounded wait. Never raises."""
    if notifier is None:
        logger.warning("No notifier configured; invitation email to %s not sent", payload.recipient_email)
        return False
    try:
        result = await asyncio.wait_for(
            notifier.send_invitation(payload, reminder=reminder),
            timeout=settings.NOTIFIER_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError:
        logger.error("Invitation email to %s timed out", payload.recipient_email)
        return False
    except Exception as exc:
        # delivery is best-effort; the invitation is already committed
        logger.error("Invitation email to %s failed: %s", payload.recipient_email, exc, exc_info=True)
        return False
    return bool(result.success)


def _email_payload(invitation: Dict[str, Any], workspace_name: str, inviter_name: str) -> InvitationEmail:
    return InvitationEmail(
        recipient_email=invitation["invitee_email"],
        inviter_name=inviter_name,
        workspace_name=workspace_name,
        role=invitation["role"],
        permissions=perms.from_row(invitation).as_canonical(),
        token=invitation["token"],
        expires_at=invitation["expires_at"],
        custom_message=invitation.get("message"),
    )


async def _ensure_live(db: asyncpg.Connection, invitation: Dict[str, Any], now: datetime) -> None:
    """
    Raise ExpiredError unless the invitation is pending and unexpired.

    A pending invitation found past its expiry is flipped to `expired` here;
    the conditional update makes that happen once even under repeated calls.
    """
    status = invitation["status"]
    if status == "pending":
        if invitation["expires_at"] > now:
            return
        if await crud_invitation.mark_expired(db, invitation["id"], now):
            logger.info("Invitation %s expired on access", invitation["id"])
        raise ExpiredError("Invitation has expired.")
    if status == "expired":
        raise ExpiredError("Invitation has expired.")
    if status == "accepted":
        raise StateError("Invitation has already been accepted.")
    raise ExpiredError(f"Invitation has been {status}.")


async def _load_by_token(db: asyncpg.Connection, token: str) -> Dict[str, Any]:
    invitation = await crud_invitation.get_invitation_by_token(db, token)
    if invitation is None:
        raise NotFoundError("Invitation not found or invalid.")
    return invitation


async def _load_by_id(db: asyncpg.Connection, invitation_id: int) -> Dict[str, Any]:
    invitation = await crud_invitation.get_invitation_by_id(db, invitation_id)
    if invitation is None:
        raise NotFoundError("Invitation not found.")
    return invitation


# --------------------------------------------------------------------------- #
#  Send                                                                       #
# --------------------------------------------------------------------------- #
async def send_invitation(
    db: asyncpg.Connection,
    principal: Principal,
    workspace_id: int,
    email: str,
    role: str = "viewer",
    message: Optional[str] = None,
    *,
    notifier: Optional[Notifier] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Issue a pending invitation for `email` at `role`.

    Requires canInvite (owners always have it). Fails with ConflictError if
    the email already belongs to a member or has a live pending invitation.
    Returns ``{"invitation": row, "email_sent": bool}``.
    """
    now = _utcnow(now)
    invitee_email = (email or "").strip().lower()
    if not invitee_email:
        raise ValidationError("Invitee email is required.")
    role_permissions = perms.defaults_for_role(role)
    message = _clean_message(message)

    workspace, _ = await access.require_capability(db, principal, workspace_id, access.Capability.INVITE)

    invitee = await crud_user.get_user_by_email(db, invitee_email)
    if invitee is not None:
        if invitee["id"] == workspace["owner_id"] or await crud_membership.get_member(db, workspace_id, invitee["id"]):
            raise ConflictError("User is already a member of this workspace.")

    async with db.transaction():
        stale = await crud_invitation.expire_stale_for_email(db, workspace_id, invitee_email, now)
        if stale:
            logger.info("Expired %s stale invitation(s) for %s in workspace %s", stale, invitee_email, workspace_id)
        invitation = await crud_invitation.create_invitation(
            db,
            workspace_id=workspace_id,
            inviter_id=principal.id,
            invitee_email=invitee_email,
            invitee_user_id=invitee["id"] if invitee else None,
            role=role,
            permissions=role_permissions,
            token=generate_token(),
            message=message,
            expires_at=now + _ttl(),
        )
        if invitation is None:
            raise ConflictError("A pending invitation already exists for this email.")

    email_sent = await _notify(
        notifier,
        _email_payload(invitation, workspace["name"], principal.display_name or principal.email),
    )
    logger.info(
        "User %s invited %s to workspace %s as %s (email sent: %s)",
        principal.id, invitee_email, workspace_id, role, email_sent,
    )
    return {"invitation": invitation, "email_sent": email_sent}


async def send_bulk_invitations(
    db: asyncpg.Connection,
    principal: Principal,
    workspace_id: int,
    items: Sequence[Dict[str, Any]],
    *,
    notifier: Optional[Notifier] = None,
    now: Optional[datetime] = None,
) -> Dict[str, List[Dict[str, Any]]]:
    """
    Send several invitations; one bad entry never blocks the rest.

    The caller's canInvite is checked once up front so an unauthorised bulk
    request fails as a whole.
    """
    await access.require_capability(db, principal, workspace_id, access.Capability.INVITE)

    successful: List[Dict[str, Any]] = []
    failed: List[Dict[str, Any]] = []
    for item in items:
        try:
            result = await send_invitation(
                db,
                principal,
                workspace_id,
                item["email"],
                item.get("role") or "viewer",
                item.get("message"),
                notifier=notifier,
                now=now,
            )
        except WorkspaceAccessError as exc:
            failed.append({"email": item["email"], "success": False, "error": exc.message})
            continue
        invitation = result["invitation"]
        successful.append(
            {
                "email": item["email"],
                "success": True,
                "invitation_id": invitation["id"],
                "expires_at": invitation["expires_at"],
                "email_sent": result["email_sent"],
            }
        )

    logger.info(
        "Bulk invitation to workspace %s by user %s: %s sent, %s failed",
        workspace_id, principal.id, len(successful), len(failed),
    )
    return {"successful": successful, "failed": failed}


# --------------------------------------------------------------------------- #
#  Accept / reject                                                            #
# --------------------------------------------------------------------------- #
def _accept_result(status: str, invitation: Dict[str, Any], workspace_name: Optional[str], outcome=None) -> Dict[str, Any]:
    return {
        "status": status,
        "workspace_id": invitation["workspace_id"],
        "workspace_name": workspace_name,
        "role": invitation["role"],
        "membership": outcome,
    }


async def accept_invitation(
    db: asyncpg.Connection,
    token: str,
    principal: Optional[Principal] = None,
    *,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Redeem an invitation token.

    A signed-in caller must be the invitee, whatever state the invitation is
    in. Already-accepted tokens then succeed with status "already_member". An
    anonymous caller is matched to an existing account by email, or gets
    RegistrationRequiredError.
    """
    now = _utcnow(now)
    invitation = await _load_by_token(db, token)
    workspace = await crud_workspace.get_workspace_by_id(db, invitation["workspace_id"])
    if workspace is None:
        raise NotFoundError("Workspace for this invitation no longer exists.")

    if principal is not None and principal.email.strip().lower() != invitation["invitee_email"]:
        logger.warning(
            "User %s tried to accept invitation %s addressed to another email", principal.id, invitation["id"]
        )
        raise PermissionDeniedError("This invitation was sent to a different email address.")

    if invitation["status"] == "accepted":
        return _accept_result("already_member", invitation, workspace["name"])
    await _ensure_live(db, invitation, now)

    if principal is not None:
        user_id = principal.id
    else:
        user = await crud_user.get_user_by_email(db, invitation["invitee_email"])
        if user is None:
            raise RegistrationRequiredError(invitation["invitee_email"], workspace["name"])
        user_id = user["id"]

    outcome = None
    async with db.transaction():
        claimed = await crud_invitation.claim_for_acceptance(db, invitation["id"], user_id, now)
        if claimed is not None:
            outcome = await membership.add_member_safely(
                db, invitation["workspace_id"], user_id, invitation["role"], perms.from_row(invitation)
            )

    if claimed is None:
        # lost a race: someone else accepted, rejected, cancelled, or it lapsed
        current = await crud_invitation.get_invitation_by_id(db, invitation["id"])
        if current is None:
            raise NotFoundError("Invitation not found or invalid.")
        if current["status"] == "accepted":
            return _accept_result("already_member", current, workspace["name"])
        await _ensure_live(db, current, now)
        raise StateError("Invitation could not be accepted. Please try again.")

    logger.info("User %s accepted invitation %s (%s)", user_id, invitation["id"], outcome)
    return _accept_result("accepted", invitation, workspace["name"], outcome)


async def reject_invitation(
    db: asyncpg.Connection, token: str, *, now: Optional[datetime] = None
) -> Dict[str, Any]:
    """pending → rejected, for live pending invitations only."""
    now = _utcnow(now)
    invitation = await _load_by_token(db, token)
    await _ensure_live(db, invitation, now)

    rejected = await crud_invitation.mark_rejected(db, invitation["id"], now)
    if rejected is None:
        current = await crud_invitation.get_invitation_by_id(db, invitation["id"])
        if current is None:
            raise NotFoundError("Invitation not found or invalid.")
        await _ensure_live(db, current, now)
        raise StateError("Invitation could not be rejected. Please try again.")

    logger.info("Invitation %s rejected", invitation["id"])
    return rejected


# --------------------------------------------------------------------------- #
#  Inviter-side management                                                    #
# --------------------------------------------------------------------------- #
async def cancel_invitation(db: asyncpg.Connection, principal: Principal, invitation_id: int) -> None:
    """Delete a pending invitation. canInvite or ownership required."""
    invitation = await _load_by_id(db, invitation_id)
    await access.require_capability(db, principal, invitation["workspace_id"], access.Capability.INVITE)

    if invitation["status"] != "pending":
        raise StateError(f"Only pending invitations can be cancelled (current status: {invitation['status']}).")
    if not await crud_invitation.delete_pending(db, invitation_id):
        current = await _load_by_id(db, invitation_id)
        raise StateError(f"Only pending invitations can be cancelled (current status: {current['status']}).")
    logger.info("User %s cancelled invitation %s", principal.id, invitation_id)


async def resend_invitation(
    db: asyncpg.Connection,
    principal: Principal,
    invitation_id: int,
    *,
    notifier: Optional[Notifier] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Give a pending invitation a fresh expiry window and email it again. Token and status are untouched."""
    now = _utcnow(now)
    invitation = await _load_by_id(db, invitation_id)
    workspace, _ = await access.require_capability(
        db, principal, invitation["workspace_id"], access.Capability.INVITE
    )

    if invitation["status"] != "pending":
        raise StateError(f"Only pending invitations can be resent (current status: {invitation['status']}).")
    updated = await crud_invitation.extend_expiry(db, invitation_id, now + _ttl())
    if updated is None:
        current = await _load_by_id(db, invitation_id)
        raise StateError(f"Only pending invitations can be resent (current status: {current['status']}).")

    inviter = await crud_user.get_user_by_id(db, updated["inviter_id"])
    inviter_name = (inviter or {}).get("display_name") or (inviter or {}).get("email") or principal.email
    email_sent = await _notify(notifier, _email_payload(updated, workspace["name"], inviter_name), reminder=True)

    logger.info("User %s resent invitation %s (email sent: %s)", principal.id, invitation_id, email_sent)
    return {"invitation_id": invitation_id, "expires_at": updated["expires_at"], "email_sent": email_sent}


# --------------------------------------------------------------------------- #
#  Reads                                                                      #
# --------------------------------------------------------------------------- #
async def get_invitation_details(
    db: asyncpg.Connection, token: str, *, now: Optional[datetime] = None
) -> Dict[str, Any]:
    """What an invitee sees before deciding; only live pending invitations are shown."""
    now = _utcnow(now)
    invitation = await _load_by_token(db, token)
    await _ensure_live(db, invitation, now)

    workspace = await crud_workspace.get_workspace_by_id(db, invitation["workspace_id"])
    if workspace is None:
        raise NotFoundError("Workspace for this invitation no longer exists.")
    inviter = await crud_user.get_user_by_id(db, invitation["inviter_id"]) or {}
    return {
        "workspace_id": workspace["id"],
        "workspace_name": workspace["name"],
        "workspace_description": workspace.get("description"),
        "inviter_name": inviter.get("display_name"),
        "inviter_email": inviter.get("email"),
        "invitee_email": invitation["invitee_email"],
        "role": invitation["role"],
        "permissions": perms.from_row(invitation),
        "message": invitation.get("message"),
        "expires_at": invitation["expires_at"],
    }


async def list_workspace_invitations(
    db: asyncpg.Connection,
    principal: Principal,
    workspace_id: int,
    status: Optional[str] = None,
    page: int = 1,
    page_size: int = 20,
):
    await access.require_capability(db, principal, workspace_id, access.Capability.INVITE)
    return await crud_invitation.list_workspace_invitations(db, workspace_id, status, page, page_size)


async def list_pending_invitations(
    db: asyncpg.Connection, principal: Principal, *, now: Optional[datetime] = None
) -> List[Dict[str, Any]]:
    """Live invitations addressed to the caller's email."""
    return await crud_invitation.list_pending_for_email(db, principal.email, _utcnow(now))


# --------------------------------------------------------------------------- #
#  Sweep                                                                      #
# --------------------------------------------------------------------------- #
async def sweep(db: asyncpg.Connection, *, now: Optional[datetime] = None) -> Dict[str, int]:
    """
    Expire elapsed pending invitations and purge old terminal ones.

    Both statements only touch rows matching a strict predicate, so the sweep
    is idempotent and safe alongside live traffic.
    """
    now = _utcnow(now)
    expired = await crud_invitation.expire_elapsed(db, now)
    purged = await crud_invitation.purge_terminal(db, now - timedelta(days=settings.INVITATION_RETENTION_DAYS))
    if expired or purged:
        logger.info("Invitation sweep: %s expired, %s purged", expired, purged)
    else:
        logger.debug("Invitation sweep: nothing to do")
    return {"expired": expired, "purged": purged}
