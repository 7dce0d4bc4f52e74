# tests/services/test_email_notifier.py
import json
from datetime import datetime, timezone

import httpx
import pytest

from app.schemas.notification import InvitationEmail
from app.services.notifier import EmailNotifier, render_invitation


def _email(**overrides):
    data = dict(
        recipient_email="Alice@Example.com",
        inviter_name="Olivia <Owner>",
        workspace_name="Research",
        role="editor",
        permissions={"canView": True, "canEdit": True, "canAdd": True, "canDelete": False, "canInvite": False},
        token="t" * 64,
        expires_at=datetime(2026, 3, 8, 12, 0, tzinfo=timezone.utc),
        custom_message="See you there",
    )
    data.update(overrides)
    return InvitationEmail(**data)


def _notifier(handler, api_key="SG.test"):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return EmailNotifier(
        api_key=api_key,
        from_email="no-reply@example.com",
        frontend_url="https://app.example.com/",
        app_name="Workspace Hub",
        api_url="https://mail.test/v3/mail/send",
        timeout=5.0,
        client=client,
    )


def test_render_escapes_and_lists_capabilities():
    subject, body = render_invitation(
        _email(), app_name="Workspace Hub", accept_url="https://app/invitations/x", reminder=True
    )
    assert subject.startswith("Reminder: ")
    assert '"Research"' in subject
    assert "Olivia &lt;Owner&gt;" in body
    assert "<li>Edit documents</li>" in body
    assert "Delete documents" not in body
    assert "See you there" in body
    assert "https://app/invitations/x" in body


async def test_send_posts_to_mail_api():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(202, headers={"x-message-id": "abc123"})

    notifier = _notifier(handler)
    result = await notifier.send_invitation(_email())
    await notifier.aclose()

    assert result.success is True
    assert result.message_id == "abc123"
    assert seen["auth"] == "Bearer SG.test"
    assert seen["body"]["personalizations"][0]["to"][0]["email"] == "alice@example.com"
    assert "https://app.example.com/invitations/" + "t" * 64 in seen["body"]["content"][0]["value"]


async def test_rejected_request_is_reported_not_raised():
    notifier = _notifier(lambda request: httpx.Response(401))
    result = await notifier.send_invitation(_email())
    assert result.success is False
    assert "401" in result.error


async def test_transport_error_is_reported_not_raised():
    def handler(request):
        raise httpx.ConnectError("boom", request=request)

    notifier = _notifier(handler)
    result = await notifier.send_invitation(_email())
    assert result.success is False
    assert "boom" in result.error


async def test_unconfigured_notifier_skips_delivery():
    def handler(request):  # pragma: no cover
        pytest.fail("no request expected")

    notifier = _notifier(handler, api_key="  ")
    assert notifier.configured is False
    result = await notifier.send_invitation(_email())
    assert result.success is False
