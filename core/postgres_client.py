"""
PostgreSQL Client Wrapper

Centralized PostgreSQL access using an asyncpg connection pool.
Provides a consistent query interface and configuration from InfraConfig.

Usage:
    from core.postgres_client import get_postgres_client

    db = await get_postgres_client("inventory_service")

    rows = await db.query("SELECT * FROM inventory.stock_levels WHERE item_id = $1", [item_id])

    async with db.transaction() as conn:
        await conn.execute("UPDATE ...", ...)
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import asyncpg

from core.config.infra_config import InfraConfig

logger = logging.getLogger(__name__)


class PostgresClientWrapper:
    """
    PostgreSQL client wrapper around an asyncpg pool.

    Provides:
    - Lazy pool creation from InfraConfig
    - Dict rows for query/query_row
    - Transaction context manager yielding a raw connection
    """

    def __init__(
        self,
        service_name: str,
        config: Optional[InfraConfig] = None,
        dsn: Optional[str] = None,
    ):
        """
        Initialize PostgreSQL client wrapper.

        Args:
            service_name: Name of the service using this client
            config: Infrastructure configuration (defaults to environment)
            dsn: Explicit DSN overriding the configured host/port/database
        """
        self.service_name = service_name
        self.config = config or InfraConfig.from_env()
        self.dsn = dsn or self.config.postgres_dsn
        self._pool: Optional[asyncpg.Pool] = None

        logger.info(
            f"PostgreSQL client initialized for {service_name}: "
            f"{self.config.postgres_host}:{self.config.postgres_port}/{self.config.postgres_db}"
        )

    async def connect(self) -> asyncpg.Pool:
        """Create the connection pool if needed"""
        if self._pool is None:
            self._pool = await asyncpg.create_pool(
                dsn=self.dsn,
                min_size=self.config.postgres_pool_min_size,
                max_size=self.config.postgres_pool_max_size,
                command_timeout=self.config.postgres_command_timeout,
            )
            logger.info(f"PostgreSQL pool created for {self.service_name}")
        return self._pool

    async def __aenter__(self):
        """Async context manager entry"""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit (the pool stays open for reuse)"""
        return False

    async def query(self, sql: str, params: Optional[List[Any]] = None) -> List[Dict[str, Any]]:
        """Execute query and return results"""
        pool = await self.connect()
        rows = await pool.fetch(sql, *(params or []))
        return [dict(row) for row in rows]

    async def query_row(self, sql: str, params: Optional[List[Any]] = None) -> Optional[Dict[str, Any]]:
        """Execute query and return single row"""
        pool = await self.connect()
        row = await pool.fetchrow(sql, *(params or []))
        return dict(row) if row is not None else None

    async def execute(self, sql: str, params: Optional[List[Any]] = None) -> str:
        """Execute SQL statement and return the command status"""
        pool = await self.connect()
        return await pool.execute(sql, *(params or []))

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """Run statements on one connection inside a transaction"""
        pool = await self.connect()
        async with pool.acquire() as conn:
            async with conn.transaction():
                yield conn

    async def health_check(self) -> Dict[str, Any]:
        """Check database health"""
        try:
            value = await self.query_row("SELECT 1 AS ok")
            return {"healthy": bool(value and value.get("ok") == 1)}
        except (asyncpg.PostgresError, OSError) as e:
            return {"healthy": False, "error": str(e)}

    async def close(self):
        """Close connection pool"""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info(f"PostgreSQL pool closed for {self.service_name}")


# Singleton instances per service
_postgres_clients: Dict[str, PostgresClientWrapper] = {}


async def get_postgres_client(
    service_name: str,
    config: Optional[InfraConfig] = None,
    **kwargs,
) -> PostgresClientWrapper:
    """
    Get or create PostgreSQL client for a service.

    Args:
        service_name: Service name
        config: Optional infrastructure configuration
        **kwargs: Additional client options

    Returns:
        PostgresClientWrapper instance
    """
    if service_name not in _postgres_clients:
        _postgres_clients[service_name] = PostgresClientWrapper(
            service_name=service_name,
            config=config,
            **kwargs,
        )

    return _postgres_clients[service_name]
