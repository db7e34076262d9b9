# app/database/postgres.py
import functools

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from app.core.config import settings
from app.core.exceptions import StorageUnavailableException
from app.core.log_config import logger
from app.models.base import Base
import app.models.user  # noqa: F401
import app.models.room  # noqa: F401
import app.models.message  # noqa: F401

engine = create_async_engine(
    settings.database_url,
    echo=False,
    pool_pre_ping=True,
)

async_session = async_sessionmaker(
    engine, expire_on_commit=False, class_=AsyncSession
)

async def get_db_session():
    """
    Provide a database session for dependency injection.

    """
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise

async def initialize_db():
    """
    Initialize the database by creating all tables defined in SQLAlchemy models.
    This method is idempotent and safe to run at startup.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

def storage_call(func):
    """
    Translates driver/ORM failures raised by a service method into
    StorageUnavailableException. Domain exceptions pass through untouched.
    """
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except SQLAlchemyError as e:
            logger.error(f"Storage call {func.__qualname__} failed: {e}", exc_info=True)
            raise StorageUnavailableException() from e
    return wrapper
