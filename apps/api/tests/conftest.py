import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from engage_api.app import create_app  # noqa: E402
from engage_api.db.base import Base  # noqa: E402
from engage_api.db.session import get_session  # noqa: E402
import engage_api.models  # noqa: E402,F401
from engage_api.models.activity import (  # noqa: E402
    Activity,
    ActivityStatusEnum,
    ActivityTypeEnum,
    GroupConfig,
    activity_stores,
)
from engage_api.models.store import Store, StoreStaffAuthorization  # noqa: E402
from engage_api.models.user import User, UserRoleEnum  # noqa: E402
from engage_api.observability.engagement import get_engagement_store  # noqa: E402
from engage_api.services.notifications import NotificationDispatcher  # noqa: E402


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def concurrent_session_factory(tmp_path):
    """File-backed database so parallel sessions get their own connections."""

    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'engage.db'}",
        future=True,
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.state.notification_dispatcher = NotificationDispatcher(None)

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_engagement_store():
    get_engagement_store().reset()
    yield
    get_engagement_store().reset()


class EngagementFactory:
    """Seed rows for engagement tests; every helper commits its own session."""

    def __init__(self, session_factory) -> None:
        self._session_factory = session_factory

    async def user(self, *, line_user_id: str | None = None, role: UserRoleEnum = UserRoleEnum.USER) -> User:
        line_user_id = line_user_id or f"U{uuid4().hex}"
        async with self._session_factory() as session:
            user = User(line_user_id=line_user_id, username=f"user_{line_user_id[-8:]}", role=role.value)
            session.add(user)
            await session.commit()
            return user

    async def store(
        self,
        *,
        name: str = "Siam Square",
        latitude: float | None = 13.7456,
        longitude: float | None = 100.5347,
        weight: int = 0,
        place_id: str | None = None,
    ) -> Store:
        async with self._session_factory() as session:
            store = Store(
                name=name,
                address=f"{name} address",
                latitude=latitude,
                longitude=longitude,
                weight=weight,
                place_id=place_id,
            )
            session.add(store)
            await session.commit()
            return store

    async def staff(self, *stores: Store, line_user_id: str | None = None) -> User:
        staff = await self.user(line_user_id=line_user_id or f"S{uuid4().hex}", role=UserRoleEnum.STAFF)
        async with self._session_factory() as session:
            for store in stores:
                session.add(StoreStaffAuthorization(store_id=store.id, user_id=staff.id, can_verify=True))
            await session.commit()
        return staff

    async def activity(
        self,
        *,
        type: ActivityTypeEnum = ActivityTypeEnum.COUPON,
        status: ActivityStatusEnum = ActivityStatusEnum.PUBLISHED,
        stock_total: int = 0,
        per_user_limit: int = 1,
        start_at: datetime | None = None,
        end_at: datetime | None = None,
        coupon_valid_until: datetime | None = None,
        stores: tuple[Store, ...] = (),
        title: str = "Songkran Coupon",
    ) -> Activity:
        now = datetime.now(timezone.utc)
        async with self._session_factory() as session:
            activity = Activity(
                title=title,
                type=type,
                status=status,
                stock_total=stock_total,
                stock_consumed=0,
                per_user_limit=per_user_limit,
                start_at=start_at or now - timedelta(days=1),
                end_at=end_at or now + timedelta(days=7),
                coupon_valid_until=coupon_valid_until,
            )
            session.add(activity)
            await session.flush()
            if stores:
                await session.execute(
                    activity_stores.insert(),
                    [{"activity_id": activity.id, "store_id": store.id} for store in stores],
                )
            await session.commit()
            return activity

    async def group_activity(
        self,
        *,
        n_required: int = 2,
        time_limit_hours: int = 24,
        use_valid_hours: int = 72,
        allow_cross_store: bool = True,
        stores: tuple[Store, ...] = (),
        end_at: datetime | None = None,
    ) -> Activity:
        activity = await self.activity(
            type=ActivityTypeEnum.GROUP,
            stores=stores,
            end_at=end_at,
            title="Mango Sticky Rice Group Buy",
        )
        async with self._session_factory() as session:
            session.add(
                GroupConfig(
                    activity_id=activity.id,
                    n_required=n_required,
                    time_limit_hours=time_limit_hours,
                    use_valid_hours=use_valid_hours,
                    allow_cross_store=allow_cross_store,
                )
            )
            await session.commit()
        return activity


@pytest.fixture
def factory(session_factory) -> EngagementFactory:
    return EngagementFactory(session_factory)


@pytest.fixture
def concurrent_factory(concurrent_session_factory) -> EngagementFactory:
    return EngagementFactory(concurrent_session_factory)
