"""Request-scoped wiring for engagement services."""

from __future__ import annotations

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from engage_api.db.session import get_session
from engage_api.models.user import User
from engage_api.services.engagement import IdentityService
from engage_api.services.notifications import NotificationDispatcher


def get_notification_dispatcher(request: Request) -> NotificationDispatcher | None:
    return getattr(request.app.state, "notification_dispatcher", None)


async def lookup_line_user(line_user_id: str, db: AsyncSession = Depends(get_session)) -> User | None:
    """Customer addressed by the ``line_user_id`` path segment; read routes never create users."""

    return await IdentityService(db).get_user_by_line_id(line_user_id)
