"""
MySQL Schema Extraction Module

This module reads table and column metadata from MySQL's
information_schema and turns it into the table_schema dicts consumed by
type_mapping.map_table_schema.
"""

from typing import List, Dict, Any, Optional
import logging

from mysql_pg_migration.errors import SchemaLookupError
from mysql_pg_migration.mysql_helper import MySqlConnectionHelper, quote_mysql_identifier

logger = logging.getLogger(__name__)


def _to_str(value: Any) -> Any:
    # Source connections run with use_unicode=False, so metadata strings arrive as bytes
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode('utf-8')
    return value


class SchemaExtractor:
    """Extract schema information from a MySQL database."""

    def __init__(self, mysql_helper: MySqlConnectionHelper):
        """
        Initialize the schema extractor.

        Args:
            mysql_helper: Connection helper for the source database
        """
        self.mysql_hook = mysql_helper
        self.database = mysql_helper.settings.database

    def get_tables(self) -> List[str]:
        """
        Get all base table names in the source database.

        Returns:
            Sorted list of table names
        """
        query = """
        SELECT TABLE_NAME
        FROM information_schema.TABLES
        WHERE TABLE_SCHEMA = %s
          AND TABLE_TYPE = 'BASE TABLE'
        ORDER BY TABLE_NAME
        """
        rows = self.mysql_hook.get_records(query, parameters=[self.database])
        tables = [_to_str(row[0]) for row in rows]
        logger.info(f"Found {len(tables)} tables in database '{self.database}'")
        return tables

    def get_columns(self, table_name: str) -> List[Dict[str, Any]]:
        """
        Get all columns for a table in ordinal order.

        Args:
            table_name: Source table name

        Returns:
            List of column information dictionaries
        """
        query = """
        SELECT
            COLUMN_NAME,
            DATA_TYPE,
            COLUMN_TYPE,
            CHARACTER_MAXIMUM_LENGTH,
            COALESCE(NUMERIC_PRECISION, DATETIME_PRECISION),
            NUMERIC_SCALE,
            IS_NULLABLE,
            COLUMN_DEFAULT,
            EXTRA
        FROM information_schema.COLUMNS
        WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s
        ORDER BY ORDINAL_POSITION
        """
        rows = self.mysql_hook.get_records(query, parameters=[self.database, table_name])

        result = []
        for row in rows:
            row = [_to_str(value) for value in row]
            extra = (row[8] or '').lower()
            result.append({
                'column_name': row[0],
                'data_type': row[1],
                'column_type': row[2],
                'max_length': int(row[3]) if row[3] is not None else None,
                'precision': int(row[4]) if row[4] is not None else None,
                'scale': int(row[5]) if row[5] is not None else None,
                'is_nullable': row[6] == 'YES',
                'default_value': row[7],
                'is_identity': 'auto_increment' in extra,
            })

        return result

    def get_primary_key(self, table_name: str) -> List[str]:
        """
        Get primary key column names for a table in key order.

        Args:
            table_name: Source table name

        Returns:
            List of column names, empty if the table has no primary key
        """
        query = """
        SELECT COLUMN_NAME
        FROM information_schema.KEY_COLUMN_USAGE
        WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s AND CONSTRAINT_NAME = 'PRIMARY'
        ORDER BY ORDINAL_POSITION
        """
        rows = self.mysql_hook.get_records(query, parameters=[self.database, table_name])
        return [_to_str(row[0]) for row in rows]

    def get_table_schema(self, table_name: str) -> Dict[str, Any]:
        """
        Get the complete schema for one table.

        Args:
            table_name: Source table name

        Returns:
            Table schema dictionary with table_name, columns and primary_key

        Raises:
            SchemaLookupError: If the table does not exist or has no columns
        """
        columns = self.get_columns(table_name)
        if not columns:
            raise SchemaLookupError(
                f"Table {table_name} does not exist or has no columns",
                table_name=table_name,
                phase="schema_lookup",
            )

        primary_key = self.get_primary_key(table_name)
        logger.info(
            f"Columns for {table_name}: {', '.join(col['column_name'] for col in columns)}"
        )
        return {
            'table_name': table_name,
            'columns': columns,
            'primary_key': primary_key,
        }

    def get_row_count(self, table_name: str) -> int:
        """
        Exact row count of a source table.

        Args:
            table_name: Source table name

        Returns:
            Row count
        """
        query = f"SELECT COUNT(*) FROM {quote_mysql_identifier(table_name)}"
        result = self.mysql_hook.get_first(query)
        return int(result[0] or 0) if result else 0
