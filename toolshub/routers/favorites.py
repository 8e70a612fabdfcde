"""
Favorite tools per user.

GET    /api/favorites              -> {"favorites": [tool_id, ...]}
POST   /api/favorites              {"toolId": "..."}; 409 if already a favorite
DELETE /api/favorites/{tool_id}
"""

import logging

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from toolshub.auth.jwt_auth import AccountUser, get_current_account
from toolshub.config import settings
from toolshub.core.async_utils import run_sync
from toolshub.core.database import get_session_context
from toolshub.core.errors import ToolsHubError
from toolshub.models.favorite import Favorite
from toolshub.models.responses import success_body

logger = logging.getLogger(__name__)

router = APIRouter()


class AddFavoriteRequest(BaseModel):
    tool_id: str = Field(..., alias="toolId", min_length=1, max_length=64)


def _list_favorites(user_id: str) -> list:
    with get_session_context() as session:
        stmt = select(Favorite.tool_id).where(Favorite.user_id == user_id).order_by(Favorite.created_at)
        return list(session.exec(stmt).all())


def _add_favorite(user_id: str, tool_id: str) -> dict:
    favorite = Favorite(user_id=user_id, tool_id=tool_id)
    with get_session_context() as session:
        session.add(favorite)
        session.commit()
        session.refresh(favorite)
        return {
            "id": favorite.id,
            "toolId": favorite.tool_id,
            "createdAt": favorite.created_at.isoformat(),
        }


def _remove_favorite(user_id: str, tool_id: str) -> bool:
    with get_session_context() as session:
        stmt = select(Favorite).where(Favorite.user_id == user_id, Favorite.tool_id == tool_id)
        favorite = session.exec(stmt).first()
        if favorite is None:
            return False
        session.delete(favorite)
        session.commit()
        return True


@router.get("", summary="List favorite tools")
async def get_favorites(user: AccountUser = Depends(get_current_account)):
    favorites = await run_sync(_list_favorites, user.user_id, timeout=settings.store_timeout_s)
    return success_body({"favorites": favorites})


@router.post("", status_code=status.HTTP_201_CREATED, summary="Add a favorite tool")
async def add_favorite(body: AddFavoriteRequest, user: AccountUser = Depends(get_current_account)):
    try:
        favorite = await run_sync(_add_favorite, user.user_id, body.tool_id, timeout=settings.store_timeout_s)
    except IntegrityError:
        raise ToolsHubError("CONFLICT", "Tool already in favorites")
    return success_body({"favorite": favorite})


@router.delete("/{tool_id}", summary="Remove a favorite tool")
async def remove_favorite(tool_id: str, user: AccountUser = Depends(get_current_account)):
    removed = await run_sync(_remove_favorite, user.user_id, tool_id, timeout=settings.store_timeout_s)
    if not removed:
        raise ToolsHubError("NOT_FOUND", "Tool is not in favorites")
    return success_body({"toolId": tool_id, "removed": True})
