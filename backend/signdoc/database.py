from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from signdoc.config import settings

_engine_kwargs: dict = dict(
    echo=settings.debug,
)
if "sqlite" not in settings.database_url:
    _engine_kwargs.update(pool_size=20, max_overflow=10, pool_pre_ping=True)

engine = create_async_engine(settings.database_url, **_engine_kwargs)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    """Session factory for operations that own their transactions.

    Lifecycle mutations commit (and retry) inside a per-document critical
    section, so they open sessions themselves instead of sharing the
    request-scoped one from ``get_db``.
    """
    return async_session


async def init_models() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
