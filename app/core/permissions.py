# app/core/permissions.py
"""
Role presets, validation, and the two permission-key vocabularies.

Internally a permission set is always the canonical five-key form
``{canView, canEdit, canAdd, canDelete, canInvite}``. Some clients speak the
alias form ``{read, write, manage, delete, invite}``; translation happens at
the edge via `to_internal` / `to_external` and never reaches storage.

Everything here is pure: no I/O, no database, no settings.
"""
from enum import Enum
from typing import Any, Dict, List, Mapping, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBool, model_validator

from app.core.errors import ValidationError


class Capability(str, Enum):
    VIEW = "canView"
    EDIT = "canEdit"
    ADD = "canAdd"
    DELETE = "canDelete"
    INVITE = "canInvite"


CANONICAL_KEYS: Tuple[str, ...] = tuple(c.value for c in Capability)

ALIAS_TO_CANONICAL: Dict[str, str] = {
    "read": Capability.VIEW.value,
    "write": Capability.EDIT.value,
    "manage": Capability.ADD.value,
    "delete": Capability.DELETE.value,
    "invite": Capability.INVITE.value,
}
CANONICAL_TO_ALIAS: Dict[str, str] = {v: k for k, v in ALIAS_TO_CANONICAL.items()}

ROLES: Tuple[str, ...] = ("admin", "editor", "viewer")

# (capability, capability it requires)
_IMPLICATIONS: Tuple[Tuple[str, str, str], ...] = (
    ("canEdit", "canView", "Cannot have edit permission without view permission"),
    ("canDelete", "canEdit", "Cannot have delete permission without edit permission"),
    ("canAdd", "canView", "Cannot have add permission without view permission"),
)


def _implication_errors(values: Mapping[str, Any]) -> List[str]:
    return [msg for key, required, msg in _IMPLICATIONS if values.get(key) and not values.get(required)]


class PermissionSet(BaseModel):
    """Immutable, always-monotonic capability set."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    can_view: StrictBool = Field(False, alias="canView")
    can_edit: StrictBool = Field(False, alias="canEdit")
    can_add: StrictBool = Field(False, alias="canAdd")
    can_delete: StrictBool = Field(False, alias="canDelete")
    can_invite: StrictBool = Field(False, alias="canInvite")

    @model_validator(mode="after")
    def _check_implications(self) -> "PermissionSet":
        errors = _implication_errors(self.as_canonical())
        if errors:
            raise ValueError("; ".join(errors))
        return self

    def as_canonical(self) -> Dict[str, bool]:
        return {
            "canView": self.can_view,
            "canEdit": self.can_edit,
            "canAdd": self.can_add,
            "canDelete": self.can_delete,
            "canInvite": self.can_invite,
        }

    def has(self, capability: Union[Capability, str]) -> bool:
        return bool(self.as_canonical()[Capability(capability).value])

    def as_columns(self) -> Tuple[bool, bool, bool, bool, bool]:
        """Column order used by the workspace_members / workspace_invitations tables."""
        return (self.can_view, self.can_edit, self.can_add, self.can_delete, self.can_invite)


OWNER_PERMISSIONS = PermissionSet(canView=True, canEdit=True, canAdd=True, canDelete=True, canInvite=True)

_ROLE_DEFAULTS: Dict[str, PermissionSet] = {
    "admin": PermissionSet(canView=True, canEdit=True, canAdd=True, canDelete=True, canInvite=True),
    "editor": PermissionSet(canView=True, canEdit=True, canAdd=True, canDelete=False, canInvite=False),
    "viewer": PermissionSet(canView=True, canEdit=False, canAdd=False, canDelete=False, canInvite=False),
}


def defaults_for_role(role: str) -> PermissionSet:
    """Preset capability set for a member role. Unknown roles are rejected."""
    try:
        return _ROLE_DEFAULTS[role]
    except KeyError:
        raise ValidationError(f"Invalid role '{role}'. Must be one of: {', '.join(ROLES)}") from None


def is_admin_level(permissions: PermissionSet) -> bool:
    """Admin-level means holding every capability; the role label is not consulted."""
    return all(permissions.as_canonical().values())


# --------------------------------------------------------------------------- #
#  Vocabulary translation                                                     #
# --------------------------------------------------------------------------- #
def to_external(permissions: Union[PermissionSet, Mapping[str, Any]]) -> Dict[str, Any]:
    """Canonical → alias keys. Unknown keys raise `ValidationError`."""
    source = permissions.as_canonical() if isinstance(permissions, PermissionSet) else permissions
    unknown = [k for k in source if k not in CANONICAL_TO_ALIAS]
    if unknown:
        raise ValidationError("Unknown permission keys", errors=[f"Invalid permission keys: {', '.join(unknown)}"])
    return {CANONICAL_TO_ALIAS[k]: v for k, v in source.items()}


def to_internal(permissions: Mapping[str, Any]) -> Dict[str, Any]:
    """Alias → canonical keys. Unknown keys raise `ValidationError`."""
    unknown = [k for k in permissions if k not in ALIAS_TO_CANONICAL]
    if unknown:
        raise ValidationError("Unknown permission keys", errors=[f"Invalid permission keys: {', '.join(unknown)}"])
    return {ALIAS_TO_CANONICAL[k]: v for k, v in permissions.items()}


# --------------------------------------------------------------------------- #
#  Validation / normalisation                                                 #
# --------------------------------------------------------------------------- #
def validate(permissions: Any) -> List[str]:
    """
    Return every problem with a canonical-keyed permission mapping.

    Checks unknown keys, non-boolean values and the implication rules
    (edit ⇒ view, delete ⇒ edit, add ⇒ view). Missing keys count as False.
    An empty list means the mapping is safe to store.
    """
    if not isinstance(permissions, Mapping):
        return ["Permissions must be an object"]

    errors: List[str] = []
    unknown = [k for k in permissions if k not in CANONICAL_KEYS]
    if unknown:
        errors.append(f"Invalid permission keys: {', '.join(unknown)}")

    for key, value in permissions.items():
        # bool is a subclass of int, but ints are not bools
        if not isinstance(value, bool):
            errors.append(f"Permission '{key}' must be a boolean value")

    errors.extend(_implication_errors(permissions))
    return errors


def normalize(permissions: Any) -> PermissionSet:
    """
    Accept either vocabulary and return a stored-form `PermissionSet`.

    Mixing both vocabularies in one object is rejected. Missing capabilities
    default to False. Invalid input raises `ValidationError` rather than being
    coerced into something storable.
    """
    if not isinstance(permissions, Mapping) or not permissions:
        raise ValidationError("Invalid permissions", errors=["Permissions must be a non-empty object"])

    keys = set(permissions)
    canonical_keys = keys & set(CANONICAL_KEYS)
    alias_keys = keys & set(ALIAS_TO_CANONICAL)
    if canonical_keys and alias_keys:
        raise ValidationError(
            "Invalid permissions",
            errors=["Permission keys must use a single vocabulary (canView… or read/write…)"],
        )

    canonical = to_internal(permissions) if alias_keys and not canonical_keys else dict(permissions)

    filled = {key: False for key in CANONICAL_KEYS}
    filled.update(canonical)
    errors = validate(filled)
    if errors:
        raise ValidationError("Invalid permissions", errors=errors)
    return PermissionSet.model_validate(filled)


def from_row(row: Mapping[str, Any]) -> PermissionSet:
    """Build a `PermissionSet` from a DB row carrying `can_*` columns."""
    return PermissionSet(
        canView=bool(row["can_view"]),
        canEdit=bool(row["can_edit"]),
        canAdd=bool(row["can_add"]),
        canDelete=bool(row["can_delete"]),
        canInvite=bool(row["can_invite"]),
    )
