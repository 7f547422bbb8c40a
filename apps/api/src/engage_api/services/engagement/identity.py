"""LINE identity resolution and staff authorization lookups."""

from __future__ import annotations

from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from engage_api.domain.errors import InvalidRequest
from engage_api.models.store import StoreStaffAuthorization
from engage_api.models.user import User, UserRoleEnum


def default_username(line_user_id: str) -> str:
    return f"user_{line_user_id[-8:]}"


class IdentityService:
    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def get_user_by_line_id(self, line_user_id: str) -> User | None:
        result = await self._db.execute(select(User).where(User.line_user_id == line_user_id))
        return result.scalar_one_or_none()

    async def get_user(self, user_id: UUID) -> User | None:
        return await self._db.get(User, user_id)

    async def ensure_line_user(self, line_user_id: str) -> User:
        """Fetch or create the customer record for a LINE user id."""

        line_user_id = (line_user_id or "").strip()
        if not line_user_id:
            raise InvalidRequest("缺少用户标识")

        user = await self.get_user_by_line_id(line_user_id)
        if user is not None:
            return user

        user = User(
            line_user_id=line_user_id,
            username=default_username(line_user_id),
            role=UserRoleEnum.USER.value,
        )
        self._db.add(user)
        try:
            await self._db.flush()
        except IntegrityError:
            await self._db.rollback()
            logger.warning("Detected race when creating LINE user", line_user_id=line_user_id)
            existing = await self.get_user_by_line_id(line_user_id)
            if existing is None:
                raise
            return existing

        await self._db.commit()
        logger.info("Created LINE user", line_user_id=line_user_id, user_id=str(user.id))
        return user

    async def is_staff_authorized(self, user_id: UUID, store_id: UUID) -> bool:
        stmt = select(StoreStaffAuthorization.id).where(
            StoreStaffAuthorization.user_id == user_id,
            StoreStaffAuthorization.store_id == store_id,
            StoreStaffAuthorization.can_verify.is_(True),
        )
        result = await self._db.execute(stmt)
        return result.first() is not None


__all__ = ["IdentityService", "default_username"]
