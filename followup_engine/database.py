from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.orm import sessionmaker
from .config import settings

# Create Async Engine
engine = create_async_engine(settings.DATABASE_URL, echo=settings.DB_ECHO, future=True)


def create_session_factory(bind: AsyncEngine = engine) -> sessionmaker:
    """Session factory used by request handlers and background workers."""
    return sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


async_session = create_session_factory()


async def init_db(bind: AsyncEngine = engine):
    # Register every table on the metadata before create_all
    import followup_engine.models

    async with bind.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def get_session() -> AsyncSession:
    async with async_session() as session:
        yield session
