# app/services/notifier.py
"""
Invitation emails via the SendGrid v3 HTTP API.

Constructed once at startup (see `main.lifespan`) and injected wherever an
invitation is sent, so tests can swap in any object with the same
`send_invitation` coroutine. Delivery is best-effort: failures come back as
`DeliveryResult(success=False)`, never as exceptions.
"""
import html
import logging
from typing import Optional, Protocol

import httpx

from app.core.config import Settings
from app.schemas.notification import DeliveryResult, InvitationEmail

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def send_invitation(self, email: InvitationEmail, *, reminder: bool = False) -> DeliveryResult:
        ...


def _permission_lines(permissions: dict) -> str:
    labels = {
        "canView": "View documents",
        "canEdit": "Edit documents",
        "canAdd": "Upload documents",
        "canDelete": "Delete documents",
        "canInvite": "Invite members",
    }
    return "".join(f"<li>{label}</li>" for key, label in labels.items() if permissions.get(key))


def render_invitation(email: InvitationEmail, *, app_name: str, accept_url: str, reminder: bool) -> tuple[str, str]:
    """(subject, html body) for one invitation."""
    workspace = html.escape(email.workspace_name)
    inviter = html.escape(email.inviter_name)
    prefix = "Reminder: " if reminder else ""
    subject = f'{prefix}You\'re invited to join "{email.workspace_name}" on {app_name}'

    message_block = ""
    if email.custom_message:
        message_block = f"<blockquote>{html.escape(email.custom_message)}</blockquote>"

    body = f"""
    <p>{inviter} has invited you to join <strong>{workspace}</strong> as <strong>{html.escape(email.role)}</strong>.</p>
    {message_block}
    <p>You will be able to:</p>
    <ul>{_permission_lines(email.permissions)}</ul>
    <p><a href="{accept_url}">Accept invitation</a></p>
    <p>This invitation expires on {email.expires_at:%B %d, %Y %H:%M} UTC.</p>
    <p>If you didn't expect this email, you can ignore it.</p>
    """
    return subject, body


class EmailNotifier:
    def __init__(
        self,
        *,
        api_key: Optional[str],
        from_email: str,
        frontend_url: str,
        app_name: str,
        api_url: str,
        timeout: float,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = (api_key or "").strip() or None
        self.from_email = from_email
        self.frontend_url = frontend_url.rstrip("/")
        self.app_name = app_name
        self.api_url = api_url
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmailNotifier":
        return cls(
            api_key=settings.SENDGRID_API_KEY,
            from_email=settings.EMAIL_FROM,
            frontend_url=settings.FRONTEND_URL,
            app_name=settings.APP_NAME,
            api_url=settings.SENDGRID_API_URL,
            timeout=settings.NOTIFIER_TIMEOUT_SECONDS,
        )

    @property
    def configured(self) -> bool:
        return self.api_key is not None

    def accept_url(self, token: str) -> str:
        return f"{self.frontend_url}/invitations/{token}"

    async def send_invitation(self, email: InvitationEmail, *, reminder: bool = False) -> DeliveryResult:
        if not self.configured:
            logger.warning("SENDGRID_API_KEY not set; skipping invitation email to %s", email.recipient_email)
            return DeliveryResult(success=False, error="Email service not configured")

        subject, body = render_invitation(
            email, app_name=self.app_name, accept_url=self.accept_url(email.token), reminder=reminder
        )
        payload = {
            "personalizations": [{"to": [{"email": email.recipient_email.strip().lower()}]}],
            "from": {"email": self.from_email, "name": self.app_name},
            "subject": subject,
            "content": [{"type": "text/html", "value": body}],
        }
        headers = {
            "authorization": f"Bearer {self.api_key}",
            "content-type": "application/json",
        }
        try:
            resp = await self._client.post(self.api_url, headers=headers, json=payload)
        except httpx.HTTPError as exc:
            logger.error("Invitation email to %s failed: %s", email.recipient_email, exc)
            return DeliveryResult(success=False, error=str(exc) or type(exc).__name__)

        if resp.status_code in (200, 201, 202):
            message_id = resp.headers.get("x-message-id")
            logger.info("Invitation email sent to %s (message id %s)", email.recipient_email, message_id)
            return DeliveryResult(success=True, message_id=message_id)

        logger.error("Mail API rejected invitation email to %s: HTTP %s", email.recipient_email, resp.status_code)
        return DeliveryResult(success=False, error=f"Mail API returned HTTP {resp.status_code}")

    async def aclose(self) -> None:
        await self._client.aclose()
