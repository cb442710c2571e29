"""
MySQL Connection Helper

Thin wrapper around pymysql exposing the small hook-style interface the
migration modules use (get_records, get_first, check_connection) plus an
unbuffered streaming query for large tables.
"""

from typing import Any, Iterator, List, Optional, Tuple
from decimal import Decimal
import contextlib
import logging

import pymysql
import pymysql.cursors
from pymysql.constants import FIELD_TYPE
from pymysql.converters import conversions

from mysql_pg_migration.config import MySqlSettings
from mysql_pg_migration.errors import ConnectivityError

logger = logging.getLogger(__name__)


def _decode_decimal(value):
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("ascii")
    return Decimal(value)


# With use_unicode=False pymysql hands DECIMAL values to the decoder as bytes
SOURCE_CONVERSIONS = dict(conversions)
SOURCE_CONVERSIONS[FIELD_TYPE.DECIMAL] = _decode_decimal
SOURCE_CONVERSIONS[FIELD_TYPE.NEWDECIMAL] = _decode_decimal


def quote_mysql_identifier(identifier: str) -> str:
    """Quote a MySQL identifier with backticks, doubling embedded backticks."""
    escaped = identifier.replace('`', '``')
    return f"`{escaped}`"


class MySqlConnectionHelper:
    """Helper for MySQL source connections."""

    def __init__(self, settings: MySqlSettings):
        """
        Initialize the MySQL connection helper.

        Args:
            settings: Source connection parameters
        """
        self.settings = settings

    def get_conn(self, cursorclass=pymysql.cursors.Cursor) -> pymysql.connections.Connection:
        """
        Open a new pymysql connection.

        Args:
            cursorclass: Cursor class for the connection; SSCursor gives an
                unbuffered cursor that streams rows as they arrive

        Returns:
            pymysql Connection object
        """
        return pymysql.connect(
            cursorclass=cursorclass,
            conv=SOURCE_CONVERSIONS,
            **self.settings.connect_kwargs(),
        )

    def check_connection(self) -> None:
        """
        Verify the source is reachable with a trivial query.

        Raises:
            ConnectivityError: If the connection or query fails
        """
        conn = None
        try:
            conn = self.get_conn()
            with conn.cursor() as cursor:
                cursor.execute("SELECT 1")
                cursor.fetchone()
        except pymysql.Error as e:
            raise ConnectivityError(
                f"MySQL connection failed ({self.settings.host}:{self.settings.port}): {e}",
                phase="connectivity",
            ) from e
        finally:
            if conn:
                conn.close()

    def get_records(
        self,
        sql: str,
        parameters: Optional[List[Any]] = None
    ) -> List[Tuple[Any, ...]]:
        """
        Execute a query and return all rows as a list of tuples.

        Args:
            sql: SQL query to execute
            parameters: Optional list of parameters for the query

        Returns:
            List of tuples, one per row
        """
        conn = None
        try:
            conn = self.get_conn()
            with conn.cursor() as cursor:
                cursor.execute(sql, parameters)
                return list(cursor.fetchall())
        except Exception as e:
            logger.error(f"Error executing query: {e}")
            logger.error(f"Query: {sql}")
            if parameters:
                logger.error(f"Parameters: {parameters}")
            raise
        finally:
            if conn:
                conn.close()

    def get_first(
        self,
        sql: str,
        parameters: Optional[List[Any]] = None
    ) -> Optional[Tuple[Any, ...]]:
        """
        Execute a query and return the first row as a tuple.

        Args:
            sql: SQL query to execute
            parameters: Optional list of parameters for the query

        Returns:
            First row as a tuple, or None if no rows
        """
        conn = None
        try:
            conn = self.get_conn()
            with conn.cursor() as cursor:
                cursor.execute(sql, parameters)
                return cursor.fetchone()
        except Exception as e:
            logger.error(f"Error executing query: {e}")
            logger.error(f"Query: {sql}")
            if parameters:
                logger.error(f"Parameters: {parameters}")
            raise
        finally:
            if conn:
                conn.close()

    @contextlib.contextmanager
    def stream_query(self, sql: str, fetch_size: int = 10000) -> Iterator[Iterator[Tuple[Any, ...]]]:
        """
        Run a query on an unbuffered cursor and yield a lazy row iterator.

        Rows are pulled from the server fetch_size at a time; the full result
        set is never materialised client side. The connection stays open
        until the context exits.

        Args:
            sql: SELECT statement to stream
            fetch_size: Rows per fetchmany() round trip

        Yields:
            Iterator over row tuples
        """
        conn = self.get_conn(cursorclass=pymysql.cursors.SSCursor)
        cursor = None
        completed = False
        try:
            cursor = conn.cursor()
            cursor.execute(sql)

            def rows() -> Iterator[Tuple[Any, ...]]:
                while True:
                    batch = cursor.fetchmany(fetch_size)
                    if not batch:
                        return
                    yield from batch

            yield rows()
            completed = True
        finally:
            # SSCursor.close() reads the rest of the result set; after a failure only the connection is closed
            if completed and cursor is not None:
                cursor.close()
            if conn.open:
                conn.close()
