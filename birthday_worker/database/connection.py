# birthday_worker/database/connection.py
import asyncpg
from typing import Optional
from contextlib import asynccontextmanager
from birthday_worker.config import Settings, settings as default_settings
import logging

logger = logging.getLogger(__name__)

class Database:
    """Owns the asyncpg pool for one process; opened at startup, closed at shutdown"""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings
        self._pool: Optional[asyncpg.Pool] = None

    @property
    def is_connected(self) -> bool:
        return self._pool is not None

    async def connect(self) -> asyncpg.Pool:
        """Create the connection pool if it does not exist yet"""
        if self._pool is None:
            try:
                if not self.settings.database_url:
                    raise ValueError("DATABASE_URL environment variable not set")

                self._pool = await asyncpg.create_pool(
                    self.settings.database_url,
                    min_size=self.settings.db_pool_min_size,
                    max_size=self.settings.db_pool_max_size,
                    command_timeout=self.settings.db_command_timeout
                )
                logger.info("Database connection pool created")
            except Exception as e:
                logger.error(f"Failed to create database pool: {e}")
                raise
        return self._pool

    async def close(self):
        """Close database connection pool"""
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("Database connection pool closed")

    @asynccontextmanager
    async def acquire(self):
        """Borrow a connection from the pool and give it back afterwards"""
        pool = await self.connect()
        connection = await pool.acquire()
        try:
            yield connection
        finally:
            await pool.release(connection)

    async def ping(self) -> bool:
        try:
            async with self.acquire() as conn:
                await conn.fetchval('SELECT 1')
            return True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False
