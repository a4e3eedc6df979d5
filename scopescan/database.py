from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from scopescan.config import settings

SQLITE_BUSY_TIMEOUT_MS = 5000


def _get_database_url(url: str) -> str:
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # One connection per session, so overlapping queue callers behave like separate workers.
        return {"echo": False, "poolclass": NullPool}
    return {"echo": False, "pool_size": 5, "max_overflow": 10, "pool_pre_ping": True}


def _configure_sqlite(engine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        # Writers queue behind each other instead of failing with "database is locked".
        cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
        if ":memory:" not in settings.database_url:
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()


engine = create_async_engine(_get_database_url(settings.database_url), **_engine_options(settings.database_url))
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

if settings.database_url.startswith("sqlite"):
    _configure_sqlite(engine)


class Base(DeclarativeBase):
    pass


async def create_tables():
    async with engine.begin() as conn:
        from scopescan.models import job, photo, embedding  # noqa: F401
        await conn.run_sync(Base.metadata.create_all)
