"""PostgreSQL connection pool and schema management."""
import asyncpg
from typing import Optional
import logging

from .config import Settings

logger = logging.getLogger(__name__)


SCHEMA = """
    CREATE TABLE IF NOT EXISTS candidates (
        seq BIGSERIAL UNIQUE,
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        party TEXT NOT NULL,
        description TEXT NOT NULL,
        image_url TEXT NOT NULL,
        vote_count INTEGER NOT NULL DEFAULT 0 CHECK (vote_count >= 0)
    );

    CREATE TABLE IF NOT EXISTS voters (
        cnp VARCHAR(13) PRIMARY KEY CHECK (cnp ~ '^[0-9]{13}$'),
        has_voted BOOLEAN NOT NULL DEFAULT FALSE,
        voted_candidate_id TEXT NULL
    );
"""

DROP_SCHEMA = """
    DROP TABLE IF EXISTS voters;
    DROP TABLE IF EXISTS candidates;
"""


class Database:
    """Async PostgreSQL database manager."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.pool: Optional[asyncpg.Pool] = None

    async def initialize(self):
        """Initialize database connection pool and create tables."""
        try:
            self.pool = await asyncpg.create_pool(
                self.settings.postgres_dsn,
                min_size=self.settings.POSTGRES_POOL_MIN_SIZE,
                max_size=self.settings.POSTGRES_POOL_MAX_SIZE,
                command_timeout=60
            )
            logger.info("PostgreSQL connection pool initialized successfully")

            async with self.pool.acquire() as conn:
                if self.settings.POSTGRES_RESET_ON_START:
                    await conn.execute(DROP_SCHEMA)
                    logger.warning("PostgreSQL tables dropped (POSTGRES_RESET_ON_START)")
                await conn.execute(SCHEMA)
                logger.info("PostgreSQL schema verified")

        except Exception as e:
            logger.error(f"Failed to initialize PostgreSQL connection pool: {e}")
            raise

    async def check_health(self) -> bool:
        """Check database connection health."""
        try:
            if not self.pool:
                return False
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except Exception as e:
            logger.error(f"PostgreSQL health check failed: {e}")
            return False

    async def close(self):
        """Close database connection pool."""
        try:
            if self.pool:
                await self.pool.close()
                logger.info("PostgreSQL connection pool closed successfully")
        except Exception as e:
            logger.error(f"Error closing PostgreSQL connection pool: {e}")
