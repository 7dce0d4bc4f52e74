# app/schemas/permission.py
from typing import Dict

from pydantic import BaseModel

from app.core import permissions as perms


class PermissionsView(BaseModel):
    """A capability set rendered in both vocabularies for clients."""
    canonical: Dict[str, bool]
    aliases: Dict[str, bool]


def permissions_view(ps: perms.PermissionSet) -> PermissionsView:
    return PermissionsView(canonical=ps.as_canonical(), aliases=perms.to_external(ps))


