"""
PostgreSQL DDL Generation Module

This module generates and executes the destination DDL for a streamed
table: schema, table, owned identity sequence, and the post-load sequence
synchronisation.
"""

from typing import Dict, Any, List, Optional
import logging

import psycopg2

from mysql_pg_migration.errors import DDLError
from mysql_pg_migration.pg_helper import PostgresConnectionHelper

logger = logging.getLogger(__name__)

# PostgreSQL truncates identifiers longer than this
MAX_IDENTIFIER_LENGTH = 63


class DDLGenerator:
    """Generate and execute PostgreSQL DDL for a TableSpec."""

    def __init__(self, pg_helper: Optional[PostgresConnectionHelper] = None):
        """
        Initialize the DDL generator.

        Args:
            pg_helper: Destination connection helper. Only needed for the
                methods that execute SQL; statement generation works without it.
        """
        self.postgres_hook = pg_helper

    def generate_create_schema(self, schema_name: str) -> str:
        """Generate CREATE SCHEMA IF NOT EXISTS statement."""
        return f"CREATE SCHEMA IF NOT EXISTS {self._quote_identifier(schema_name)}"

    def generate_drop_table(self, table_name: str, schema_name: str = 'public', cascade: bool = True) -> str:
        """
        Generate DROP TABLE statement.

        Args:
            table_name: Table name to drop
            schema_name: Schema name
            cascade: Whether to use CASCADE option

        Returns:
            DROP TABLE DDL statement
        """
        cascade_clause = " CASCADE" if cascade else ""
        return f"DROP TABLE IF EXISTS {self._qualified_name(schema_name, table_name)}{cascade_clause}"

    def generate_create_table(self, table_spec: Dict[str, Any], schema_name: str = 'public') -> str:
        """
        Generate CREATE TABLE statement.

        Args:
            table_spec: Mapped TableSpec (see type_mapping.map_table_schema)
            schema_name: Target PostgreSQL schema name

        Returns:
            CREATE TABLE DDL statement
        """
        qualified_name = self._qualified_name(schema_name, table_spec['table_name'])

        column_definitions = [
            self._generate_column_definition(column) for column in table_spec['columns']
        ]

        if table_spec.get('primary_key'):
            pk_columns = ', '.join(self._quote_identifier(col) for col in table_spec['primary_key'])
            column_definitions.append(f"    PRIMARY KEY ({pk_columns})")

        return '\n'.join([
            f"CREATE TABLE {qualified_name} (",
            ',\n'.join(column_definitions),
            ')',
        ])

    def sequence_name(self, table_spec: Dict[str, Any]) -> Optional[str]:
        """
        Name of the identity sequence for a table, or None if it has no
        identity column. Follows the <table>_<column>_seq serial convention.
        """
        identity_column = table_spec.get('identity_column')
        if not identity_column:
            return None
        return f"{table_spec['table_name']}_{identity_column}_seq"[:MAX_IDENTIFIER_LENGTH]

    def generate_sequence_ddl(self, table_spec: Dict[str, Any], schema_name: str = 'public') -> List[str]:
        """
        Generate the owned sequence and column default for the identity column.

        Args:
            table_spec: Mapped TableSpec
            schema_name: Target PostgreSQL schema name

        Returns:
            List of DDL statements, empty if the table has no identity column
        """
        sequence_name = self.sequence_name(table_spec)
        if not sequence_name:
            return []

        identity_column = self._quote_identifier(table_spec['identity_column'])
        qualified_table = self._qualified_name(schema_name, table_spec['table_name'])
        qualified_sequence = self._qualified_name(schema_name, sequence_name)

        return [
            f"CREATE SEQUENCE IF NOT EXISTS {qualified_sequence} "
            f"OWNED BY {qualified_table}.{identity_column}",
            f"ALTER TABLE {qualified_table} ALTER COLUMN {identity_column} "
            f"SET DEFAULT nextval({self._quote_literal(qualified_sequence)})",
        ]

    def generate_provision_ddl(self, table_spec: Dict[str, Any], schema_name: str = 'public') -> List[str]:
        """
        Generate the full destructive provisioning sequence for a table.

        Returns:
            List of DDL statements in execution order
        """
        ddl_statements = [
            self.generate_create_schema(schema_name),
            self.generate_drop_table(table_spec['table_name'], schema_name, cascade=True),
            self.generate_create_table(table_spec, schema_name),
        ]
        ddl_statements.extend(self.generate_sequence_ddl(table_spec, schema_name))
        return ddl_statements

    def provision(self, table_spec: Dict[str, Any], schema_name: str = 'public') -> None:
        """
        Replace the destination table with an empty one matching table_spec.

        Any existing table of the same name is dropped with CASCADE; the
        run owns the destination table exclusively.

        Args:
            table_spec: Mapped TableSpec
            schema_name: Target PostgreSQL schema name

        Raises:
            DDLError: If any statement fails
        """
        table_name = table_spec['table_name']
        logger.info(f"Provisioning {schema_name}.{table_name} (drop and recreate)")
        try:
            self.execute_ddl(self.generate_provision_ddl(table_spec, schema_name))
        except psycopg2.Error as e:
            raise DDLError(
                f"Failed to provision {schema_name}.{table_name}: {e}",
                table_name=table_name,
                phase="provision",
            ) from e

        if table_spec.get('identity_column'):
            logger.info(f"Created sequence {schema_name}.{self.sequence_name(table_spec)}")
        else:
            logger.info("No identity column, skipping sequence creation")

    def sync_sequence(self, table_spec: Dict[str, Any], schema_name: str = 'public') -> Optional[Dict[str, Any]]:
        """
        Advance the identity sequence past the largest loaded key.

        With rows present the next nextval() returns MAX(col) + 1; on an
        empty table it returns 1. Must run after the load has completed.

        Args:
            table_spec: Mapped TableSpec
            schema_name: Target PostgreSQL schema name

        Returns:
            Dict with sequence name, value set and next value, or None if the
            table has no identity column

        Raises:
            DDLError: If setval fails
        """
        sequence_name = self.sequence_name(table_spec)
        if not sequence_name:
            return None

        table_name = table_spec['table_name']
        column = self._quote_identifier(table_spec['identity_column'])
        qualified_sequence = self._qualified_name(schema_name, sequence_name)

        # is_called=false on an empty table so the first nextval() yields 1
        sync_sql = (
            f"SELECT setval({self._quote_literal(qualified_sequence)}, "
            f"COALESCE(MAX({column}), 1), MAX({column}) IS NOT NULL) "
            f"FROM {self._qualified_name(schema_name, table_name)}"
        )

        try:
            with self.postgres_hook.connection() as conn:
                with conn.cursor() as cursor:
                    cursor.execute("SET statement_timeout = 0")
                    cursor.execute(sync_sql)
                    value = cursor.fetchone()[0]
                    cursor.execute(f"SELECT is_called FROM {qualified_sequence}")
                    is_called = cursor.fetchone()[0]
                conn.commit()
        except psycopg2.Error as e:
            raise DDLError(
                f"Failed to synchronise sequence {qualified_sequence}: {e}",
                table_name=table_name,
                phase="sequence_sync",
            ) from e

        next_value = value + 1 if is_called else value
        logger.info(f"Reset sequence {schema_name}.{sequence_name}: next value {next_value:,}")
        return {
            'sequence_name': sequence_name,
            'value': value,
            'next_value': next_value,
        }

    def execute_ddl(self, ddl_statements: List[str]) -> None:
        """
        Execute DDL statements in a single transaction.

        Args:
            ddl_statements: List of DDL statements to execute
        """
        with self.postgres_hook.connection() as conn:
            with conn.cursor() as cursor:
                for ddl in ddl_statements:
                    logger.info(f"Executing DDL: {ddl[:100]}...")
                    cursor.execute(ddl)
            conn.commit()

    def _generate_column_definition(self, column: Dict[str, Any]) -> str:
        """
        Generate a column definition for CREATE TABLE.

        Args:
            column: Mapped column information

        Returns:
            Column definition string
        """
        parts = [
            self._quote_identifier(column['column_name']),
            column['data_type']
        ]

        # NOT NULL is left off: MySQL zero dates and legacy rows routinely violate it

        if column.get('default_value'):
            parts.append(f"DEFAULT {column['default_value']}")

        return '    ' + ' '.join(parts)

    def _qualified_name(self, schema_name: str, object_name: str) -> str:
        return f"{self._quote_identifier(schema_name)}.{self._quote_identifier(object_name)}"

    def _quote_identifier(self, identifier: str) -> str:
        """
        Quote a PostgreSQL identifier safely.

        Always quotes and escapes identifiers to handle reserved words,
        mixed case, and special characters.

        Args:
            identifier: Identifier to quote

        Returns:
            Safely quoted identifier
        """
        escaped = identifier.replace('"', '""')
        return f'"{escaped}"'

    def _quote_literal(self, value: str) -> str:
        escaped = value.replace("'", "''")
        return f"'{escaped}'"
