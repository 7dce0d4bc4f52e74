# tests/services/test_workspace_registry.py
import pytest

from app.core import permissions as perms
from app.core.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    StateError,
    ValidationError,
)
from app.schemas.workspace import WorkspaceSettings, WorkspaceSettingsPatch, WorkspaceUpdate
from app.services import membership
from app.services import workspaces as svc
from tests.utils import principal_of


async def _join(db, workspace_id, user, role):
    async with db.transaction():
        return await membership.add_member_safely(db, workspace_id, user["id"], role, perms.defaults_for_role(role))


async def test_create_seeds_owner_membership_and_index(db, store, owner):
    ws = await svc.create_workspace(db, principal_of(owner), "  Research  ", "notes")

    assert ws["name"] == "Research"
    member = store.members[(ws["id"], owner["id"])]
    assert member["role"] == "admin"
    assert all(member[c] for c in ("can_view", "can_edit", "can_add", "can_delete", "can_invite"))
    assert store.index[(owner["id"], ws["id"])]["role"] == "admin"


async def test_create_rejects_blank_and_duplicate_names(db, owner, alice):
    with pytest.raises(ValidationError):
        await svc.create_workspace(db, principal_of(owner), "   ")
    with pytest.raises(ValidationError):
        await svc.create_workspace(db, principal_of(owner), "x" * 101)

    await svc.create_workspace(db, principal_of(owner), "Research")
    with pytest.raises(ConflictError):
        await svc.create_workspace(db, principal_of(owner), "Research")

    # different owner, no membership: same name is fine
    other = await svc.create_workspace(db, principal_of(alice), "Research")
    assert other["owner_id"] == alice["id"]


async def test_name_collision_covers_joined_workspaces(db, owner, alice):
    ws = await svc.create_workspace(db, principal_of(owner), "Shared")
    await _join(db, ws["id"], alice, "viewer")

    with pytest.raises(ConflictError):
        await svc.create_workspace(db, principal_of(alice), "Shared")


async def test_create_keeps_settings(db, owner):
    ws = await svc.create_workspace(
        db, principal_of(owner), "Public", settings=WorkspaceSettings(isPublic=True, allowMemberInvites=True)
    )
    assert ws["is_public"] is True
    assert ws["allow_member_invites"] is True


async def test_get_workspace_requires_view(db, owner, alice, bob, documents):
    ws = await svc.create_workspace(db, principal_of(owner), "Team")
    await _join(db, ws["id"], alice, "viewer")
    documents.counts[ws["id"]] = 3

    detail = await svc.get_workspace(db, principal_of(alice), ws["id"], documents)
    assert detail["role"] == "viewer"
    assert detail["permissions"].has("canView")
    assert not detail["permissions"].has("canEdit")
    assert [m["user_id"] for m in detail["members"]] == [owner["id"], alice["id"]]
    assert detail["document_count"] == 3

    with pytest.raises(PermissionDeniedError):
        await svc.get_workspace(db, principal_of(bob), ws["id"])
    with pytest.raises(NotFoundError):
        await svc.get_workspace(db, principal_of(owner), 999)


async def test_list_workspaces_reads_index(db, owner, alice):
    mine = await svc.create_workspace(db, principal_of(alice), "Alpha")
    theirs = await svc.create_workspace(db, principal_of(owner), "Beta project")
    await _join(db, theirs["id"], alice, "editor")

    rows, total = await svc.list_workspaces(db, principal_of(alice))
    assert total == 2
    by_id = {r["id"]: r for r in rows}
    assert by_id[mine["id"]]["is_owner"] is True
    assert by_id[theirs["id"]]["role"] == "editor"
    assert by_id[theirs["id"]]["member_count"] == 2

    rows, total = await svc.list_workspaces(db, principal_of(alice), search="  beta ")
    assert total == 1 and rows[0]["id"] == theirs["id"]


async def test_update_requires_admin_level(db, owner, alice):
    ws = await svc.create_workspace(db, principal_of(owner), "Team")
    await _join(db, ws["id"], alice, "editor")

    with pytest.raises(PermissionDeniedError):
        await svc.update_workspace(db, principal_of(alice), ws["id"], WorkspaceUpdate(name="Mine now"))

    updated = await svc.update_workspace(
        db,
        principal_of(owner),
        ws["id"],
        WorkspaceUpdate(name="Renamed", settings=WorkspaceSettingsPatch(isPublic=True)),
    )
    assert updated["name"] == "Renamed"
    assert updated["is_public"] is True
    assert updated["allow_member_invites"] is False


async def test_update_name_conflict(db, owner):
    await svc.create_workspace(db, principal_of(owner), "One")
    two = await svc.create_workspace(db, principal_of(owner), "Two")

    with pytest.raises(ConflictError):
        await svc.update_workspace(db, principal_of(owner), two["id"], WorkspaceUpdate(name="One"))
    # renaming to its own name is a no-op, not a conflict
    same = await svc.update_workspace(db, principal_of(owner), two["id"], WorkspaceUpdate(name="Two"))
    assert same["name"] == "Two"


async def test_admin_level_member_may_update(db, owner, alice):
    ws = await svc.create_workspace(db, principal_of(owner), "Team")
    await _join(db, ws["id"], alice, "admin")

    updated = await svc.update_workspace(db, principal_of(alice), ws["id"], WorkspaceUpdate(description="by alice"))
    assert updated["description"] == "by alice"


async def test_delete_refuses_while_documents_exist(db, store, owner, alice, documents):
    ws = await svc.create_workspace(db, principal_of(owner), "Team")
    await _join(db, ws["id"], alice, "viewer")
    documents.counts[ws["id"]] = 2

    with pytest.raises(ConflictError) as exc:
        await svc.delete_workspace(db, principal_of(owner), ws["id"], documents)
    assert "2 document" in exc.value.message

    documents.counts[ws["id"]] = 0
    with pytest.raises(PermissionDeniedError):
        await svc.delete_workspace(db, principal_of(alice), ws["id"], documents)

    await svc.delete_workspace(db, principal_of(owner), ws["id"], documents)
    assert ws["id"] not in store.workspaces
    assert not any(k[1] == ws["id"] for k in store.index)


async def test_stats(db, owner, alice, bob, documents):
    ws = await svc.create_workspace(db, principal_of(owner), "Team")
    await _join(db, ws["id"], alice, "editor")
    await _join(db, ws["id"], bob, "viewer")
    documents.counts[ws["id"]] = 5

    stats = await svc.get_workspace_stats(db, principal_of(bob), ws["id"], documents)
    assert stats["total_members"] == 3
    assert stats["role_breakdown"] == {"admin": 1, "editor": 1, "viewer": 1}
    assert stats["pending_invitations"] == 0
    assert stats["total_documents"] == 5


def test_direct_add_is_disabled():
    with pytest.raises(StateError) as exc:
        svc.add_member_directly()
    assert "invitation" in exc.value.message.lower()


async def test_update_member_role_resets_to_role_defaults(db, store, owner, alice):
    ws = await svc.create_workspace(db, principal_of(owner), "Team")
    await _join(db, ws["id"], alice, "viewer")

    await svc.update_member_role(db, principal_of(owner), ws["id"], alice["id"], role="editor")

    member = store.members[(ws["id"], alice["id"])]
    assert member["role"] == "editor"
    assert perms.from_row(member) == perms.defaults_for_role("editor")
    assert store.index[(alice["id"], ws["id"])]["role"] == "editor"


async def test_update_member_custom_permissions_in_alias_vocabulary(db, store, owner, alice):
    ws = await svc.create_workspace(db, principal_of(owner), "Team")
    await _join(db, ws["id"], alice, "viewer")

    await svc.update_member_role(
        db, principal_of(owner), ws["id"], alice["id"], permissions={"read": True, "invite": True}
    )

    member = store.members[(ws["id"], alice["id"])]
    assert member["role"] == "viewer"  # label unchanged
    assert member["can_invite"] is True
    assert member["can_edit"] is False


async def test_update_member_rejects_invalid_input(db, owner, alice, bob):
    ws = await svc.create_workspace(db, principal_of(owner), "Team")
    await _join(db, ws["id"], alice, "viewer")

    with pytest.raises(ValidationError):
        await svc.update_member_role(db, principal_of(owner), ws["id"], alice["id"], permissions={"canDelete": True})
    with pytest.raises(ValidationError):
        await svc.update_member_role(db, principal_of(owner), ws["id"], alice["id"])
    with pytest.raises(StateError):
        await svc.update_member_role(db, principal_of(owner), ws["id"], owner["id"], role="viewer")
    with pytest.raises(NotFoundError):
        await svc.update_member_role(db, principal_of(owner), ws["id"], bob["id"], role="viewer")


async def test_non_admin_cannot_change_roles(db, owner, alice, bob):
    ws = await svc.create_workspace(db, principal_of(owner), "Team")
    await _join(db, ws["id"], alice, "editor")
    await _join(db, ws["id"], bob, "viewer")

    with pytest.raises(PermissionDeniedError):
        await svc.update_member_role(db, principal_of(alice), ws["id"], bob["id"], role="admin")


async def test_remove_member_and_owner_protection(db, store, owner, alice):
    ws = await svc.create_workspace(db, principal_of(owner), "Team")
    await _join(db, ws["id"], alice, "viewer")

    with pytest.raises(StateError):
        await svc.remove_member(db, principal_of(owner), ws["id"], owner["id"])

    await svc.remove_member(db, principal_of(owner), ws["id"], alice["id"])
    assert (ws["id"], alice["id"]) not in store.members
    assert (alice["id"], ws["id"]) not in store.index

    with pytest.raises(NotFoundError):
        await svc.remove_member(db, principal_of(owner), ws["id"], alice["id"])


async def test_leave_workspace(db, store, owner, alice, bob):
    ws = await svc.create_workspace(db, principal_of(owner), "Team")
    await _join(db, ws["id"], alice, "viewer")

    with pytest.raises(StateError):
        await svc.leave_workspace(db, principal_of(owner), ws["id"])
    with pytest.raises(PermissionDeniedError):
        await svc.leave_workspace(db, principal_of(bob), ws["id"])
    with pytest.raises(NotFoundError):
        await svc.leave_workspace(db, principal_of(alice), 404)

    await svc.leave_workspace(db, principal_of(alice), ws["id"])
    assert (ws["id"], alice["id"]) not in store.members
    assert (alice["id"], ws["id"]) not in store.index
