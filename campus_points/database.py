"""
Database connection module
"""
import asyncio
from pathlib import Path
from alembic import command
from alembic.config import Config
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from campus_points.config import get_settings

settings = get_settings()

database_url = settings.async_database_url

# pool sizing only applies to server databases; SQLite uses a static pool
_engine_options = {"echo": False, "pool_pre_ping": True}
if database_url.startswith("postgresql"):
    _engine_options.update(pool_size=10, max_overflow=20)

engine = create_async_engine(database_url, **_engine_options)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base"""
    pass


async def get_db():
    """Request-scoped session; one ledger operation commits or rolls back as a whole"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def run_migrations() -> None:
    """Run Alembic migrations up to head"""
    config_path = Path(__file__).resolve().parents[1] / "alembic.ini"
    alembic_cfg = Config(str(config_path))
    command.upgrade(alembic_cfg, "head")


async def init_db():
    """Create tables and apply migrations"""
    # register every model on Base.metadata
    from campus_points.models import user, transaction, promotion, event, transfer  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await asyncio.to_thread(run_migrations)
