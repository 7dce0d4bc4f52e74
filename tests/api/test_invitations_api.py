# tests/api/test_invitations_api.py
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

from fastapi import status
from httpx import AsyncClient

from tests.utils import API_V1


async def _workspace(client: AsyncClient, headers: Dict[str, str], name: str = "Research") -> Dict[str, Any]:
    resp = await client.post(f"{API_V1}/workspaces", json={"name": name}, headers=headers)
    assert resp.status_code == status.HTTP_201_CREATED, resp.text
    return resp.json()


async def _invite(client: AsyncClient, headers, workspace_id: int, email: str, role: str = "viewer", **extra):
    return await client.post(
        f"{API_V1}/invitations",
        json={"workspaceId": workspace_id, "email": email, "role": role, **extra},
        headers=headers,
    )


def _token(store, invitation_id: int) -> str:
    return store.invitations[invitation_id]["token"]


# =====================================================
# Sending
# =====================================================

async def test_send_invitation(client: AsyncClient, owner, make_auth_header, notifier):
    owner_h = make_auth_header(owner)
    ws = await _workspace(client, owner_h)

    resp = await _invite(client, owner_h, ws["id"], "New.Person@Example.com", "editor", message="  welcome ")

    assert resp.status_code == status.HTTP_201_CREATED
    body = resp.json()
    assert body["emailSent"] is True
    inv = body["invitation"]
    assert inv["status"] == "pending"
    assert inv["inviteeEmail"] == "new.person@example.com"
    assert inv["message"] == "welcome"
    assert inv["permissions"]["canonical"]["canEdit"] is True
    assert "token" not in inv
    assert notifier.sent[0][0].recipient_email == "new.person@example.com"


async def test_send_invitation_requires_auth(client: AsyncClient):
    resp = await client.post(f"{API_V1}/invitations", json={"workspaceId": 1, "email": "a@example.com"})
    assert resp.status_code == status.HTTP_401_UNAUTHORIZED
    assert resp.json()["detail"] == "Could not validate credentials"


async def test_send_invitation_validation(client: AsyncClient, owner, make_auth_header):
    owner_h = make_auth_header(owner)
    ws = await _workspace(client, owner_h)

    assert (await _invite(client, owner_h, ws["id"], "not-an-email")).status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert (await _invite(client, owner_h, ws["id"], "a@example.com", "owner")).status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    resp = await _invite(client, owner_h, ws["id"], "a@example.com", message="x" * 501)
    assert resp.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


async def test_duplicate_and_member_invites_conflict(client: AsyncClient, owner, make_auth_header):
    owner_h = make_auth_header(owner)
    ws = await _workspace(client, owner_h)
    await _invite(client, owner_h, ws["id"], "dup@example.com")

    resp = await _invite(client, owner_h, ws["id"], "DUP@example.com")
    assert resp.status_code == status.HTTP_409_CONFLICT
    assert resp.json() == {"detail": "A pending invitation already exists for this email.", "code": "conflict"}

    resp = await _invite(client, owner_h, ws["id"], owner["email"])
    assert resp.status_code == status.HTTP_409_CONFLICT


async def test_non_inviter_is_forbidden(client: AsyncClient, owner, bob, make_auth_header):
    ws = await _workspace(client, make_auth_header(owner))
    resp = await _invite(client, make_auth_header(bob), ws["id"], "x@example.com")
    assert resp.status_code == status.HTTP_403_FORBIDDEN


async def test_email_failure_still_creates_invitation(client: AsyncClient, owner, make_auth_header, notifier, store):
    notifier.succeed = False
    ws = await _workspace(client, make_auth_header(owner))

    resp = await _invite(client, make_auth_header(owner), ws["id"], "x@example.com")

    assert resp.status_code == status.HTTP_201_CREATED
    assert resp.json()["emailSent"] is False
    assert store.invitations[resp.json()["invitation"]["id"]]["status"] == "pending"


async def test_bulk_invitations(client: AsyncClient, owner, alice, make_auth_header):
    owner_h = make_auth_header(owner)
    ws = await _workspace(client, owner_h)

    resp = await client.post(
        f"{API_V1}/invitations/bulk",
        json={
            "workspaceId": ws["id"],
            "invitations": [
                {"email": alice["email"], "role": "editor"},
                {"email": owner["email"]},
                {"email": "c@example.com"},
            ],
        },
        headers=owner_h,
    )

    assert resp.status_code == status.HTTP_200_OK
    body = resp.json()
    assert body["totalSent"] == 2
    assert body["totalFailed"] == 1
    assert body["failed"][0]["email"] == owner["email"]
    assert body["failed"][0]["success"] is False
    assert {s["email"] for s in body["successful"]} == {alice["email"], "c@example.com"}


async def test_bulk_rejects_empty_list(client: AsyncClient, owner, make_auth_header):
    resp = await client.post(
        f"{API_V1}/invitations/bulk", json={"workspaceId": 1, "invitations": []}, headers=make_auth_header(owner)
    )
    assert resp.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


# =====================================================
# Invitee side
# =====================================================

async def test_details_and_accept(client: AsyncClient, owner, alice, make_auth_header, store):
    owner_h, alice_h = make_auth_header(owner), make_auth_header(alice)
    ws = await _workspace(client, owner_h)
    inv = (await _invite(client, owner_h, ws["id"], alice["email"], "editor", message="hi")).json()["invitation"]
    token = _token(store, inv["id"])

    resp = await client.get(f"{API_V1}/invitations/token/{token}")  # public
    assert resp.status_code == status.HTTP_200_OK
    details = resp.json()
    assert details["workspaceName"] == "Research"
    assert details["inviterName"] == "Olivia Owner"
    assert details["permissions"]["aliases"]["write"] is True
    assert details["message"] == "hi"

    resp = await client.post(f"{API_V1}/invitations/token/{token}/accept", headers=alice_h)
    assert resp.status_code == status.HTTP_200_OK
    assert resp.json() == {
        "status": "accepted",
        "workspaceId": ws["id"],
        "workspaceName": "Research",
        "role": "editor",
        "membership": "added",
    }

    resp = await client.post(f"{API_V1}/invitations/token/{token}/accept", headers=alice_h)
    assert resp.status_code == status.HTTP_200_OK
    assert resp.json()["status"] == "already_member"

    resp = await client.get(f"{API_V1}/users/me/workspaces", headers=alice_h)
    assert [(e["workspaceId"], e["role"]) for e in resp.json()] == [(ws["id"], "editor")]


async def test_pending_list_for_invitee(client: AsyncClient, owner, alice, make_auth_header):
    owner_h = make_auth_header(owner)
    ws = await _workspace(client, owner_h)
    await _invite(client, owner_h, ws["id"], alice["email"])

    resp = await client.get(f"{API_V1}/invitations/pending", headers=make_auth_header(alice))
    assert resp.status_code == status.HTTP_200_OK
    (item,) = resp.json()
    assert item["workspaceName"] == "Research"
    assert item["inviterName"] == "Olivia Owner"
    assert len(item["token"]) == 64


async def test_accept_by_other_account_is_forbidden(client: AsyncClient, owner, alice, bob, make_auth_header, store):
    owner_h = make_auth_header(owner)
    ws = await _workspace(client, owner_h)
    inv = (await _invite(client, owner_h, ws["id"], alice["email"])).json()["invitation"]

    resp = await client.post(
        f"{API_V1}/invitations/token/{_token(store, inv['id'])}/accept", headers=make_auth_header(bob)
    )
    assert resp.status_code == status.HTTP_403_FORBIDDEN
    assert resp.json()["code"] == "permission_denied"


async def test_anonymous_accept_of_unregistered_email(client: AsyncClient, owner, make_auth_header, store):
    owner_h = make_auth_header(owner)
    ws = await _workspace(client, owner_h)
    inv = (await _invite(client, owner_h, ws["id"], "newbie@example.com")).json()["invitation"]

    resp = await client.post(f"{API_V1}/invitations/token/{_token(store, inv['id'])}/accept")

    assert resp.status_code == status.HTTP_404_NOT_FOUND
    body = resp.json()
    assert body["code"] == "registration_required"
    assert body["requiresRegistration"] is True
    assert body["inviteeEmail"] == "newbie@example.com"
    assert body["workspaceName"] == "Research"


async def test_anonymous_accept_of_registered_email(client: AsyncClient, owner, alice, make_auth_header, store):
    owner_h = make_auth_header(owner)
    ws = await _workspace(client, owner_h)
    inv = (await _invite(client, owner_h, ws["id"], alice["email"])).json()["invitation"]

    resp = await client.post(f"{API_V1}/invitations/token/{_token(store, inv['id'])}/accept")

    assert resp.status_code == status.HTTP_200_OK
    assert (ws["id"], alice["id"]) in store.members


async def test_expired_invitation_is_gone(client: AsyncClient, owner, alice, make_auth_header, store):
    owner_h = make_auth_header(owner)
    ws = await _workspace(client, owner_h)
    inv = (await _invite(client, owner_h, ws["id"], alice["email"])).json()["invitation"]
    token = _token(store, inv["id"])
    store.invitations[inv["id"]]["expires_at"] = datetime.now(timezone.utc) - timedelta(minutes=1)

    resp = await client.post(f"{API_V1}/invitations/token/{token}/accept", headers=make_auth_header(alice))
    assert resp.status_code == status.HTTP_410_GONE
    assert resp.json()["code"] == "expired"
    assert store.invitations[inv["id"]]["status"] == "expired"

    resp = await client.get(f"{API_V1}/invitations/token/{token}")
    assert resp.status_code == status.HTTP_410_GONE


async def test_reject(client: AsyncClient, owner, alice, make_auth_header, store):
    owner_h = make_auth_header(owner)
    ws = await _workspace(client, owner_h)
    inv = (await _invite(client, owner_h, ws["id"], alice["email"])).json()["invitation"]
    token = _token(store, inv["id"])

    resp = await client.post(f"{API_V1}/invitations/token/{token}/reject")
    assert resp.status_code == status.HTTP_200_OK
    assert resp.json()["status"] == "rejected"
    assert resp.json()["rejectedAt"] is not None

    resp = await client.post(f"{API_V1}/invitations/token/{token}/accept", headers=make_auth_header(alice))
    assert resp.status_code == status.HTTP_410_GONE


async def test_unknown_token(client: AsyncClient):
    resp = await client.get(f"{API_V1}/invitations/token/{'0' * 64}")
    assert resp.status_code == status.HTTP_404_NOT_FOUND
    assert resp.json()["code"] == "not_found"


# =====================================================
# Inviter-side management
# =====================================================

async def test_cancel_invitation(client: AsyncClient, owner, alice, bob, make_auth_header, store):
    owner_h = make_auth_header(owner)
    ws = await _workspace(client, owner_h)
    inv = (await _invite(client, owner_h, ws["id"], alice["email"])).json()["invitation"]

    resp = await client.delete(f"{API_V1}/invitations/{inv['id']}", headers=make_auth_header(bob))
    assert resp.status_code == status.HTTP_403_FORBIDDEN

    resp = await client.delete(f"{API_V1}/invitations/{inv['id']}", headers=owner_h)
    assert resp.status_code == status.HTTP_204_NO_CONTENT
    assert inv["id"] not in store.invitations

    resp = await client.delete(f"{API_V1}/invitations/{inv['id']}", headers=owner_h)
    assert resp.status_code == status.HTTP_404_NOT_FOUND


async def test_cancel_accepted_invitation_is_refused(client: AsyncClient, owner, alice, make_auth_header, store):
    owner_h = make_auth_header(owner)
    ws = await _workspace(client, owner_h)
    inv = (await _invite(client, owner_h, ws["id"], alice["email"])).json()["invitation"]
    await client.post(f"{API_V1}/invitations/token/{_token(store, inv['id'])}/accept", headers=make_auth_header(alice))

    resp = await client.delete(f"{API_V1}/invitations/{inv['id']}", headers=owner_h)
    assert resp.status_code == status.HTTP_400_BAD_REQUEST
    assert resp.json()["code"] == "invalid_state"


async def test_resend_invitation(client: AsyncClient, owner, make_auth_header, notifier, store):
    owner_h = make_auth_header(owner)
    ws = await _workspace(client, owner_h)
    inv = (await _invite(client, owner_h, ws["id"], "x@example.com")).json()["invitation"]
    token = _token(store, inv["id"])

    resp = await client.post(f"{API_V1}/invitations/{inv['id']}/resend", headers=owner_h)

    assert resp.status_code == status.HTTP_200_OK
    assert resp.json()["invitationId"] == inv["id"]
    assert resp.json()["emailSent"] is True
    assert _token(store, inv["id"]) == token
    assert [reminder for _, reminder in notifier.sent] == [False, True]


async def test_list_workspace_invitations(client: AsyncClient, owner, alice, make_auth_header, store):
    owner_h = make_auth_header(owner)
    ws = await _workspace(client, owner_h)
    first = (await _invite(client, owner_h, ws["id"], "a@example.com")).json()["invitation"]
    await _invite(client, owner_h, ws["id"], "b@example.com")
    await client.post(f"{API_V1}/invitations/token/{_token(store, first['id'])}/reject")

    resp = await client.get(f"{API_V1}/invitations/workspace/{ws['id']}", headers=owner_h)
    assert resp.status_code == status.HTTP_200_OK
    assert resp.json()["total_items"] == 2

    resp = await client.get(
        f"{API_V1}/invitations/workspace/{ws['id']}", params={"status": "pending"}, headers=owner_h
    )
    assert [i["inviteeEmail"] for i in resp.json()["items"]] == ["b@example.com"]

    resp = await client.get(f"{API_V1}/invitations/workspace/{ws['id']}", headers=make_auth_header(alice))
    assert resp.status_code == status.HTTP_403_FORBIDDEN

    resp = await client.get(
        f"{API_V1}/invitations/workspace/{ws['id']}", params={"status": "bogus"}, headers=owner_h
    )
    assert resp.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


async def test_cleanup_is_for_system_admins(client: AsyncClient, owner, sysadmin, make_auth_header, store):
    owner_h = make_auth_header(owner)
    ws = await _workspace(client, owner_h)
    inv = (await _invite(client, owner_h, ws["id"], "x@example.com")).json()["invitation"]
    store.invitations[inv["id"]]["expires_at"] = datetime.now(timezone.utc) - timedelta(days=1)

    resp = await client.post(f"{API_V1}/invitations/cleanup", headers=owner_h)
    assert resp.status_code == status.HTTP_403_FORBIDDEN

    resp = await client.post(f"{API_V1}/invitations/cleanup", headers=make_auth_header(sysadmin))
    assert resp.status_code == status.HTTP_200_OK
    assert resp.json() == {"expired": 1, "purged": 0}
