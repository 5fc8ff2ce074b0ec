from __future__ import annotations

import datetime as dt

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from corpsync.config import DATABASE_URL

# SQLAlchemy engine & session
engine = create_async_engine(DATABASE_URL, echo=False, future=True)
AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False)

# Declarative base for models
Base = declarative_base()


def utcnow() -> dt.datetime:
    """Naive UTC timestamp, matching what SQLite hands back from DateTime columns."""
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)


async def init_models(bind: AsyncEngine = engine) -> None:
    """Create every table registered on ``Base``."""
    # Import models so metadata is populated before create_all
    from corpsync.models import corporation_record, corporation_token, setup_status  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
