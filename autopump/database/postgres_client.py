"""
PostgreSQL Async Client with Connection Pooling.

Provides async database access with:
- Connection pooling (asyncpg)
- Retry on initial connection failure
- Health checking
- Transaction support
- Query metrics

Usage:
    from autopump.database.postgres_client import PostgresClient

    client = PostgresClient(database_url, pool_size=5)
    await client.connect()

    rows = await client.fetch("SELECT * FROM claims WHERE status = $1", "pending")

    async with client.transaction() as conn:
        await conn.execute("INSERT INTO claims ...")
        await conn.execute("UPDATE system_status ...")
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import asyncpg

logger = logging.getLogger(__name__)

CONNECT_ERRORS = (asyncpg.PostgresError, OSError, asyncio.TimeoutError)


@dataclass
class PoolMetrics:
    """Connection pool metrics for monitoring."""
    pool_size: int = 0
    active_connections: int = 0
    wait_time_ms: float = 0.0
    queries_executed: int = 0
    errors: int = 0
    last_health_check: Optional[datetime] = None


class PostgresClient:
    """
    Async PostgreSQL client over a bounded asyncpg pool.

    The pool is shared by every caller in the process.
    """

    def __init__(
        self,
        connection_url: str,
        pool_size: int = 5,
        max_overflow: int = 5,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        command_timeout: float = 30.0,
    ):
        """
        Args:
            connection_url: PostgreSQL connection URL
            pool_size: Minimum number of connections in pool
            max_overflow: Maximum connections above pool_size
            max_retries: Number of connection retry attempts
            retry_delay: Delay between retry attempts
            command_timeout: Default per-statement timeout in seconds
        """
        if not connection_url:
            raise ValueError("No connection URL provided. Set DATABASE_URL")
        self.connection_url = connection_url
        self.pool_size = pool_size
        self.max_overflow = max_overflow
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.command_timeout = command_timeout

        self._pool: Optional[asyncpg.Pool] = None
        self._metrics = PoolMetrics()
        self._connected = False
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """
        Create the connection pool.

        Raises:
            ConnectionError: If connection fails after all retries
        """
        async with self._lock:
            if self._connected:
                return

            for attempt in range(self.max_retries):
                try:
                    self._pool = await asyncpg.create_pool(
                        self.connection_url,
                        min_size=1,
                        max_size=self.pool_size + self.max_overflow,
                        command_timeout=self.command_timeout,
                    )
                    self._connected = True
                    self._metrics.pool_size = self.pool_size
                    logger.info(f"PostgreSQL connection pool created (size={self.pool_size})")
                    return
                except CONNECT_ERRORS as e:
                    logger.warning(f"Connection attempt {attempt + 1} failed: {type(e).__name__}")
                    if attempt < self.max_retries - 1:
                        await asyncio.sleep(self.retry_delay * (attempt + 1))
                    else:
                        raise ConnectionError(
                            f"Failed to connect after {self.max_retries} attempts: {type(e).__name__}"
                        ) from e

    async def close(self) -> None:
        """Close connection pool."""
        async with self._lock:
            if self._pool:
                await self._pool.close()
                self._pool = None
                self._connected = False
                logger.info("PostgreSQL connection pool closed")

    @asynccontextmanager
    async def acquire(self):
        """
        Acquire a connection from the pool.

        Usage:
            async with client.acquire() as conn:
                await conn.execute("SELECT 1")
        """
        if not self._connected:
            await self.connect()

        start_time = time.time()
        async with self._pool.acquire() as conn:
            self._metrics.wait_time_ms = (time.time() - start_time) * 1000
            self._metrics.active_connections += 1
            try:
                yield conn
            finally:
                self._metrics.active_connections -= 1

    @asynccontextmanager
    async def transaction(self):
        """
        Start a transaction.

        Usage:
            async with client.transaction() as conn:
                await conn.execute("INSERT INTO ...")
                await conn.execute("UPDATE ...")
        """
        async with self.acquire() as conn:
            async with conn.transaction():
                yield conn

    async def fetch(self, query: str, *args, timeout: Optional[float] = None) -> List[Dict[str, Any]]:
        """Execute query and fetch all rows as dictionaries."""
        async with self.acquire() as conn:
            try:
                rows = await conn.fetch(query, *args, timeout=timeout)
                self._metrics.queries_executed += 1
                return [dict(row) for row in rows]
            except Exception as e:
                self._metrics.errors += 1
                logger.error(f"Query failed: {e}")
                raise

    async def fetchrow(self, query: str, *args, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """Execute query and fetch one row, or None."""
        async with self.acquire() as conn:
            try:
                row = await conn.fetchrow(query, *args, timeout=timeout)
                self._metrics.queries_executed += 1
                return dict(row) if row else None
            except Exception as e:
                self._metrics.errors += 1
                logger.error(f"Query failed: {e}")
                raise

    async def fetchval(self, query: str, *args, column: int = 0, timeout: Optional[float] = None) -> Any:
        async with self.acquire() as conn:
            try:
                value = await conn.fetchval(query, *args, column=column, timeout=timeout)
                self._metrics.queries_executed += 1
                return value
            except Exception as e:
                self._metrics.errors += 1
                logger.error(f"Query failed: {e}")
                raise

    async def execute(self, query: str, *args, timeout: Optional[float] = None) -> str:
        """
        Execute a statement (INSERT, UPDATE, DELETE, DDL).

        Returns:
            Status string (e.g., "UPDATE 1")
        """
        async with self.acquire() as conn:
            try:
                result = await conn.execute(query, *args, timeout=timeout)
                self._metrics.queries_executed += 1
                return result
            except Exception as e:
                self._metrics.errors += 1
                logger.error(f"Query failed: {e}")
                raise

    async def health_check(self) -> bool:
        try:
            async with self.acquire() as conn:
                result = await conn.fetchval("SELECT 1")
                self._metrics.last_health_check = datetime.now(timezone.utc)
                return result == 1
        except (ConnectionError, *CONNECT_ERRORS) as e:
            logger.error(f"Health check failed: {e}")
            return False

    def get_pool_metrics(self) -> Dict[str, Any]:
        metrics = {
            "pool_size": self._metrics.pool_size,
            "active_connections": self._metrics.active_connections,
            "wait_time_ms": self._metrics.wait_time_ms,
            "queries_executed": self._metrics.queries_executed,
            "errors": self._metrics.errors,
        }
        if self._metrics.last_health_check:
            metrics["last_health_check"] = self._metrics.last_health_check.isoformat()
        if self._pool is not None:
            metrics["actual_pool_size"] = self._pool.get_size()
            metrics["actual_idle"] = self._pool.get_idle_size()
        return metrics
