"""
Database client.

Supabase PostgreSQL client with async query execution and retry.
"""

import asyncio
from typing import Any, Callable, Optional
from supabase import create_client, Client
from shared.config import settings
from shared.errors import RetryableError, ConfigError
from shared.logging import get_logger

logger = get_logger("database")


class DatabaseClient:
    """Supabase database client wrapper with retry logic."""

    def __init__(self, client: Optional[Client] = None):
        """Initialize database client."""
        try:
            self.client: Client = client or create_client(
                settings.supabase_url,
                settings.supabase_service_key
            )
        except Exception as e:
            raise ConfigError(f"Failed to initialize database client: {str(e)}") from e

    async def _execute_sync(self, func: Callable[[], Any], max_attempts: int = 3) -> Any:
        """
        Execute a synchronous Supabase operation in an async context.

        Args:
            func: Synchronous function to execute
            max_attempts: Maximum number of retry attempts

        Returns:
            Function result

        Raises:
            RetryableError: If operation fails after all retries
        """
        loop = asyncio.get_running_loop()
        for attempt in range(max_attempts):
            try:
                return await loop.run_in_executor(None, func)
            except Exception as e:
                if attempt < max_attempts - 1:
                    # Exponential backoff: 2s, 4s, 8s
                    delay = 2 ** (attempt + 1)
                    logger.warning(
                        f"Database operation failed, retrying in {delay}s",
                        extra={"error": str(e), "attempt": attempt + 1}
                    )
                    await asyncio.sleep(delay)
                else:
                    raise RetryableError(
                        f"Database operation failed after {max_attempts} attempts: {str(e)}"
                    ) from e
        raise RetryableError("Database operation failed: no attempts made")

    def table(self, table_name: str) -> "AsyncTableQueryBuilder":
        """
        Get a table query builder with async execution support.

        Args:
            table_name: Name of the table

        Returns:
            AsyncTableQueryBuilder wrapper
        """
        return AsyncTableQueryBuilder(self, table_name)

    async def health_check(self) -> bool:
        """Check database connection health."""
        try:
            await self._execute_sync(
                lambda: self.client.table("jobs").select("id").limit(1).execute(),
                max_attempts=1
            )
            return True
        except RetryableError:
            return False


class AsyncTableQueryBuilder:
    """Async wrapper for Supabase table query builder."""

    def __init__(self, db_client: DatabaseClient, table_name: str):
        self.db_client = db_client
        self.table_name = table_name
        self._query_builder = db_client.client.table(table_name)

    def _chain(self, method: str, *args, **kwargs) -> "AsyncTableQueryBuilder":
        self._query_builder = getattr(self._query_builder, method)(*args, **kwargs)
        return self

    def select(self, *args, **kwargs):
        """Chain select operation."""
        return self._chain("select", *args, **kwargs)

    def insert(self, *args, **kwargs):
        """Chain insert operation."""
        return self._chain("insert", *args, **kwargs)

    def update(self, *args, **kwargs):
        """Chain update operation."""
        return self._chain("update", *args, **kwargs)

    def delete(self, *args, **kwargs):
        """Chain delete operation."""
        return self._chain("delete", *args, **kwargs)

    def eq(self, *args, **kwargs):
        """Chain eq filter."""
        return self._chain("eq", *args, **kwargs)

    def neq(self, *args, **kwargs):
        """Chain neq filter."""
        return self._chain("neq", *args, **kwargs)

    def in_(self, *args, **kwargs):
        """Chain in filter."""
        return self._chain("in_", *args, **kwargs)

    def limit(self, *args, **kwargs):
        """Chain limit operation."""
        return self._chain("limit", *args, **kwargs)

    def order(self, *args, **kwargs):
        """Chain order operation."""
        return self._chain("order", *args, **kwargs)

    async def execute(self, max_attempts: int = 3) -> Any:
        """
        Execute the query asynchronously.

        Args:
            max_attempts: Maximum number of retry attempts

        Returns:
            Query result
        """
        query_builder = self._query_builder
        return await self.db_client._execute_sync(
            lambda: query_builder.execute(),
            max_attempts
        )


_db: Optional[DatabaseClient] = None


def get_db() -> DatabaseClient:
    """Shared database client, created on first use."""
    global _db
    if _db is None:
        _db = DatabaseClient()
    return _db
