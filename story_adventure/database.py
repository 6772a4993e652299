from sqlmodel import SQLModel
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from story_adventure.core.config import settings
from story_adventure.models import story  # noqa: F401  registers the tables

# Create an async engine
async_engine = create_async_engine(settings.DATABASE_URL, echo=False, future=True)

# Create a configured "Session" class
AsyncSessionLocal = async_sessionmaker(
    bind=async_engine, class_=AsyncSession, expire_on_commit=False
)

async def init_db(engine=async_engine):
    """
    Initializes the database and creates tables.
    """
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

async def get_session() -> AsyncSession:
    """
    Dependency to get an async database session.
    """
    async with AsyncSessionLocal() as session:
        yield session
