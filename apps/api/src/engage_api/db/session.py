from collections.abc import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from engage_api.core.settings import settings


def _engine_kwargs(database_url: str) -> dict:
    kwargs: dict = {"echo": settings.database_echo, "future": True}
    if database_url.startswith("sqlite"):
        # Writers serialize on the database lock; wait instead of failing fast.
        kwargs["connect_args"] = {"timeout": 30}
    else:
        kwargs["pool_pre_ping"] = True
    return kwargs


engine = create_async_engine(settings.database_url, **_engine_kwargs(settings.database_url))
async_session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session
