# app/api/endpoints/users.py
import logging
from typing import List

import asyncpg
from fastapi import APIRouter, Depends, Request

from app.api import deps
from app.core.rate_limit import limiter
from app.crud import crud_membership
from app.schemas import user as user_schemas
from app.schemas import workspace as ws_schemas
from app.schemas.token import Principal

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["User"])


@router.get("/me", response_model=user_schemas.UserBase)
async def read_users_me(principal: Principal = Depends(deps.get_current_principal)):
    """
    Get profile of the currently authenticated user.
    """
    return user_schemas.UserBase(
        id=principal.id,
        email=principal.email,
        display_name=principal.display_name,
        role=principal.role,
    )


@router.get("/me/workspaces", response_model=List[ws_schemas.WorkspaceIndexEntry])
@limiter.limit("30/minute")
async def read_my_workspace_index(
    request: Request,
    principal: Principal = Depends(deps.get_current_principal),
    db: asyncpg.Connection = Depends(deps.get_db),
):
    """
    Every workspace the user owns or belongs to, with the role held there,
    read from the per-user index in one query.
    """
    rows = await crud_membership.get_user_workspace_index(db, principal.id)
    return [ws_schemas.WorkspaceIndexEntry(**r) for r in rows]
