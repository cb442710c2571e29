"""
PostgreSQL Connection Helper

psycopg2 wrapper for the Neon destination with the same hook-style
interface as the MySQL helper.
"""

from typing import Any, List, Optional, Tuple
import contextlib
import logging

import psycopg2

from mysql_pg_migration.config import NeonSettings
from mysql_pg_migration.errors import ConnectivityError

logger = logging.getLogger(__name__)


class PostgresConnectionHelper:
    """Helper for PostgreSQL destination connections."""

    def __init__(self, settings: NeonSettings):
        """
        Initialize the PostgreSQL connection helper.

        Args:
            settings: Destination connection parameters
        """
        self.settings = settings

    def get_conn(self):
        """Open a new psycopg2 connection."""
        return psycopg2.connect(**self.settings.connect_kwargs())

    @contextlib.contextmanager
    def connection(self):
        """
        Context manager yielding a connection that is rolled back on error
        and always closed.
        """
        conn = self.get_conn()
        try:
            yield conn
        except Exception:
            try:
                conn.rollback()
            except psycopg2.Error:
                logger.exception("Exception occurred during PostgreSQL connection rollback")
            raise
        finally:
            conn.close()

    def check_connection(self) -> None:
        """
        Verify the destination is reachable with a trivial query.

        Raises:
            ConnectivityError: If the connection or query fails
        """
        try:
            with self.connection() as conn:
                with conn.cursor() as cursor:
                    cursor.execute("SELECT 1")
                    cursor.fetchone()
        except psycopg2.Error as e:
            raise ConnectivityError(
                f"PostgreSQL connection failed ({self.settings.host}): {e}",
                phase="connectivity",
            ) from e

    def get_records(self, sql, parameters: Optional[List[Any]] = None) -> List[Tuple[Any, ...]]:
        """
        Execute a query and return all rows as a list of tuples.

        Args:
            sql: SQL string or psycopg2.sql Composable
            parameters: Optional query parameters

        Returns:
            List of tuples, one per row
        """
        with self.connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute(sql, parameters)
                return cursor.fetchall()

    def get_first(self, sql, parameters: Optional[List[Any]] = None) -> Optional[Tuple[Any, ...]]:
        """
        Execute a query and return the first row as a tuple.

        Args:
            sql: SQL string or psycopg2.sql Composable
            parameters: Optional query parameters

        Returns:
            First row as a tuple, or None if no rows
        """
        with self.connection() as conn:
            with conn.cursor() as cursor:
                # Disable statement timeout for COUNT on large tables
                cursor.execute("SET statement_timeout = 0")
                cursor.execute(sql, parameters)
                return cursor.fetchone()

