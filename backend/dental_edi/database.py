import logging
from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import AsyncAdaptedQueuePool

from dental_edi.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()

# ---------------------------------------------------------------------------
# Connection pool tuning
# ---------------------------------------------------------------------------
# pool_size:       Persistent connections.  ERA batches are processed one
#                  practice at a time, so the pool mostly serves eligibility.
# max_overflow:    Extra connections allowed when the pool is exhausted.
# pool_recycle:    Recycle connections after N seconds to avoid stale TCP.
# pool_pre_ping:   Issue a lightweight "SELECT 1" before handing out a
#                  connection.
# ---------------------------------------------------------------------------
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,
    poolclass=AsyncAdaptedQueuePool,
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW,
    pool_timeout=settings.DB_POOL_TIMEOUT,
    pool_recycle=1800,
    pool_pre_ping=True,
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a database session scoped to one unit of work.

    Callers are responsible for ``await db.commit()`` after writes; the
    insurance services only flush.  On exception the session is rolled back.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
