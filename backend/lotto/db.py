from __future__ import annotations
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncEngine, AsyncSession
from sqlalchemy.orm import DeclarativeBase
from lotto.config import settings

class Base(DeclarativeBase):
    pass

def make_engine(url: str | None = None) -> AsyncEngine:
    return create_async_engine(url or settings.database_url, future=True, echo=False)

def make_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)

engine = make_engine()
SessionLocal = make_sessionmaker(engine)

def register_models() -> None:
    # ensure every model is registered on Base.metadata
    import lotto.models.identity  # noqa: F401
    import lotto.models.link  # noqa: F401
    import lotto.models.round  # noqa: F401
    import lotto.models.claim  # noqa: F401

async def create_all(target: AsyncEngine) -> None:
    """Create tables straight from the metadata (tests / local sqlite). Deployments use alembic."""
    register_models()
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
