"""
Async database engine and session management.

Purpose:
- Create SQLAlchemy async engine (MySQL with aiomysql in production, aiosqlite in tests)
- Provide async session factory for the stores (one short session per store operation)
- Provide Base declarative class for ORM models

Production notes:
- Use connection pooling with appropriate pool_size and max_overflow
- Seat reservation relies on row-level locking from the conditional UPDATE; keep InnoDB
"""
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from config.settings import settings

logger = logging.getLogger(__name__)

Base = declarative_base()

engine: Optional[AsyncEngine] = None
async_session_maker: Optional[async_sessionmaker[AsyncSession]] = None


def create_engine_for(url: str, echo: bool = False) -> AsyncEngine:
	"""Build an async engine; sqlite gets a generous busy timeout for concurrent writers."""
	kwargs = {"echo": echo, "future": True}
	if url.startswith("sqlite"):
		kwargs["connect_args"] = {"timeout": 30}
	return create_async_engine(url, **kwargs)


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
	return async_sessionmaker(bind, expire_on_commit=False, class_=AsyncSession)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
	"""
	Return the process-wide session factory, creating the engine on first use.
	"""
	global engine, async_session_maker
	if async_session_maker is None:
		engine = create_engine_for(settings.DATABASE_URL, echo=settings.DEBUG)
		async_session_maker = create_session_factory(engine)
		logger.info("Async DB engine created for %s", engine.url.render_as_string(hide_password=True))
	return async_session_maker


async def create_all(bind: AsyncEngine) -> None:
	"""Create tables (development/test convenience). In production use Alembic migrations."""
	import models.db_models  # noqa: F401  (registers tables on Base.metadata)

	async with bind.begin() as conn:
		await conn.run_sync(Base.metadata.create_all)
