"""
Data Transfer Module

Streams oversized MySQL tables into PostgreSQL without materialising the
result set. This is the path for tables whose per-row size times row count
exhausts pgloader's in-memory batching.

Pipeline for one table:
    PROVISIONED -> STREAMING (+ sanitizing) -> LOADED -> SEQUENCE_SYNCED -> VERIFIED

Rows are read from an unbuffered pymysql SSCursor, encoded to COPY text
format, passed through the UTF-8 sanitizer, and pulled by psycopg2's
copy_expert. copy_expert reads from the stream only as fast as the server
consumes it, so the producer never runs ahead of the consumer.

Nothing is resumable: any failure before LOADED means the next run drops
and reloads the whole table.
"""

from typing import Dict, Any, Optional, List, Iterable, Tuple
from datetime import datetime, date, time as dt_time, timedelta
from decimal import Decimal
from io import RawIOBase
import logging
import time

import psycopg2
import pymysql
from psycopg2 import sql

from mysql_pg_migration.config import MigrationConfig
from mysql_pg_migration.ddl_generator import DDLGenerator
from mysql_pg_migration.encoding import Utf8Sanitizer
from mysql_pg_migration.errors import (
    ConfigurationError,
    ConnectivityError,
    MigrationError,
    SchemaLookupError,
    StreamError,
    VerificationError,
)
from mysql_pg_migration.mysql_helper import MySqlConnectionHelper, quote_mysql_identifier
from mysql_pg_migration.pg_helper import PostgresConnectionHelper
from mysql_pg_migration.schema_extractor import SchemaExtractor
from mysql_pg_migration.type_mapping import bit_width, map_table_schema
from mysql_pg_migration.validation import MigrationValidator, PASS, WARN

logger = logging.getLogger(__name__)

# Transfer phases, in order
PENDING = 'PENDING'
PROVISIONED = 'PROVISIONED'
STREAMING = 'STREAMING'
LOADED = 'LOADED'
SEQUENCE_SYNCED = 'SEQUENCE_SYNCED'
VERIFIED = 'VERIFIED'
FAILED = 'FAILED'

# Error phases for failures outside the streaming states
SCHEMA_LOOKUP = 'schema_lookup'
VERIFICATION = 'verification'

NULL_MARKER = b'\\N'

TEMPORAL_SOURCE_TYPES = {'date', 'datetime', 'timestamp'}

BINARY_KIND = 'BINARY'
BOOLEAN_KIND = 'BOOLEAN'
BIT_KIND = 'BIT'
TEMPORAL_KIND = 'TEMPORAL'

# COPY text format escapes; backslash must be handled first
_COPY_ESCAPES = (
    (b'\\', b'\\\\'),
    (b'\t', b'\\t'),
    (b'\n', b'\\n'),
    (b'\r', b'\\r'),
)


def escape_copy_text(value: bytes) -> bytes:
    """Escape a raw field for COPY ... WITH (FORMAT text)."""
    for raw, escaped in _COPY_ESCAPES:
        value = value.replace(raw, escaped)
    return value


def _format_timedelta(value: timedelta) -> str:
    # pymysql returns MySQL TIME columns as timedelta, which may be negative
    sign = '-' if value < timedelta(0) else ''
    value = abs(value)
    hours, remainder = divmod(value.days * 86400 + value.seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    text = f"{sign}{hours:02d}:{minutes:02d}:{seconds:02d}"
    if value.microseconds:
        text += f".{value.microseconds:06d}"
    return text


def column_kind(column: Dict[str, Any]) -> Optional[str]:
    """Classify a ColumnDef for encoding: BINARY, BOOLEAN, BIT, TEMPORAL or None."""
    if column.get('is_binary'):
        return BINARY_KIND
    if column.get('data_type') == 'BOOLEAN':
        return BOOLEAN_KIND
    if column.get('data_type', '').startswith('BIT('):
        return BIT_KIND
    if column.get('source_type') in TEMPORAL_SOURCE_TYPES:
        return TEMPORAL_KIND
    return None


class CopyTextEncoder:
    """
    Encodes source rows as PostgreSQL COPY text-format lines.

    Fields are tab separated, rows newline terminated, NULL written as \\N.
    Output is bytes: text columns pass through untouched apart from COPY
    escaping so the sanitizer sees the original source bytes.
    """

    def __init__(self, columns: List[Dict[str, Any]]):
        """
        Args:
            columns: Mapped ColumnDefs in SELECT order
        """
        self.columns = columns
        self._kinds = [column_kind(col) for col in columns]
        self._bit_widths = [
            bit_width(col['data_type']) if kind == BIT_KIND else None
            for col, kind in zip(columns, self._kinds)
        ]

    def encode_row(self, row: Tuple[Any, ...]) -> bytes:
        if len(row) != len(self.columns):
            raise ValueError(f"Row has {len(row)} fields, expected {len(self.columns)}")
        fields = [
            self.encode_value(value, self._kinds[i], self._bit_widths[i])
            for i, value in enumerate(row)
        ]
        return b'\t'.join(fields) + b'\n'

    def encode_value(self, value: Any, kind: Optional[str] = None, width: Optional[int] = None) -> bytes:
        """
        Encode one field value.

        Args:
            value: Value as returned by pymysql with use_unicode=False
            kind: BINARY, BOOLEAN, BIT, TEMPORAL or None (see column_kind)
            width: Declared width for BIT columns

        Returns:
            Escaped field bytes
        """
        if value is None:
            return NULL_MARKER

        if kind == BOOLEAN_KIND and not isinstance(value, str):
            # BIT columns arrive as bytes, tinyint(1) as int
            if isinstance(value, (bytes, bytearray)):
                value = int.from_bytes(value, 'big')
            return b't' if value else b'f'

        if kind == BIT_KIND and isinstance(value, (bytes, bytearray, int)):
            # BIT(n) as a string of n binary digits
            if not isinstance(value, int):
                value = int.from_bytes(value, 'big')
            return format(value, f'0{width or 1}b').encode('ascii')

        if isinstance(value, (bytes, bytearray, memoryview)):
            value = bytes(value)
            if kind == BINARY_KIND:
                # bytea hex input; the backslash itself needs COPY escaping
                return b'\\\\x' + value.hex().encode('ascii')
            if kind == TEMPORAL_KIND and value.startswith(b'0000-00-00'):
                return NULL_MARKER
            return escape_copy_text(value)

        if isinstance(value, str):
            # pymysql returns zero dates unparsed; PostgreSQL has no equivalent
            if kind == TEMPORAL_KIND and value.startswith('0000-00-00'):
                return NULL_MARKER
            return escape_copy_text(value.encode('utf-8', errors='surrogateescape'))

        if isinstance(value, bool):
            return b't' if value else b'f'
        if isinstance(value, datetime):
            return value.isoformat(sep=' ').encode('ascii')
        if isinstance(value, (date, dt_time)):
            return value.isoformat().encode('ascii')
        if isinstance(value, timedelta):
            return _format_timedelta(value).encode('ascii')
        if isinstance(value, Decimal):
            return str(value).encode('ascii')
        if isinstance(value, (set, frozenset)):
            # MySQL SET columns
            members = sorted(
                m.decode('utf-8', errors='surrogateescape') if isinstance(m, bytes) else str(m)
                for m in value
            )
            return escape_copy_text(','.join(members).encode('utf-8', errors='surrogateescape'))

        return escape_copy_text(str(value).encode('utf-8'))


class CopyRowStream(RawIOBase):
    """
    Lazy byte stream feeding COPY FROM STDIN.

    Each read() pulls just enough rows from the source iterator to satisfy
    the request; the full result set is never buffered.

    Usage:
        stream = CopyRowStream(rows, encoder, sanitizer)
        cursor.copy_expert("COPY t (a, b) FROM STDIN WITH (FORMAT text)", stream)
    """

    def __init__(
        self,
        rows: Iterable[Tuple[Any, ...]],
        encoder: CopyTextEncoder,
        sanitizer: Utf8Sanitizer,
        key_index: Optional[int] = None,
    ):
        """
        Args:
            rows: Iterable of source row tuples
            encoder: Encoder for the table's columns
            sanitizer: UTF-8 filter applied to every encoded row
            key_index: Position of the identity column, used to label rows
                that lost bytes; falls back to the row number
        """
        self._iterator = iter(rows)
        self._encoder = encoder
        self._sanitizer = sanitizer
        self._key_index = key_index
        self._buffer = bytearray()
        self._exhausted = False
        self._row_count = 0

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        """Read up to size bytes from the stream."""
        while (size is None or size < 0 or len(self._buffer) < size) and not self._exhausted:
            try:
                row = next(self._iterator)
            except StopIteration:
                self._exhausted = True
                break
            self._row_count += 1
            key = row[self._key_index] if self._key_index is not None else self._row_count
            self._buffer += self._sanitizer.sanitize_row(self._encoder.encode_row(row), key)

        if size is None or size < 0:
            size = len(self._buffer)

        data = bytes(self._buffer[:size])
        del self._buffer[:size]
        return data

    @property
    def rows_encoded(self) -> int:
        """Number of source rows consumed so far."""
        return self._row_count


def format_elapsed(seconds: float) -> str:
    """Render elapsed seconds as 'Xm Ys'."""
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}m {secs}s"


class DataTransfer:
    """Streaming transfer of one MySQL table into PostgreSQL."""

    def __init__(
        self,
        config: MigrationConfig,
        mysql_helper: Optional[MySqlConnectionHelper] = None,
        pg_helper: Optional[PostgresConnectionHelper] = None,
    ):
        """
        Initialize the transfer.

        Args:
            config: Validated migration configuration
            mysql_helper: Source helper (built from config if omitted)
            pg_helper: Destination helper (built from config if omitted)
        """
        self.config = config
        self.mysql_hook = mysql_helper or MySqlConnectionHelper(config.mysql)
        self.postgres_hook = pg_helper or PostgresConnectionHelper(config.neon)
        self.schema_extractor = SchemaExtractor(self.mysql_hook)
        self.ddl_generator = DDLGenerator(self.postgres_hook)
        self.validator = MigrationValidator(self.mysql_hook, self.postgres_hook)

    def check_connectivity(self) -> None:
        """
        Verify both databases are reachable before any DDL is issued.

        Raises:
            ConnectivityError: If either side is unreachable
        """
        logger.info("Testing PostgreSQL connection...")
        self.postgres_hook.check_connection()
        logger.info("✓ PostgreSQL connection OK")

        logger.info("Testing MySQL connection...")
        self.mysql_hook.check_connection()
        logger.info("✓ MySQL connection OK")

    def build_table_spec(self, table_name: str) -> Dict[str, Any]:
        """Read source metadata and map it to a TableSpec."""
        table_schema = self.schema_extractor.get_table_schema(table_name)
        return map_table_schema(table_schema)

    def stream_rows(self, table_spec: Dict[str, Any], schema_name: str) -> Dict[str, Any]:
        """
        Stream every source row into the destination table via COPY.

        The SELECT column list and the COPY column list are built from the
        same ordered table_spec['columns']; the match is positional.

        Args:
            table_spec: Mapped TableSpec
            schema_name: Target PostgreSQL schema

        Returns:
            Dict with rows_transferred and sanitizer statistics

        Raises:
            StreamError: On any read or write failure
        """
        table_name = table_spec['table_name']
        columns = table_spec['columns']
        column_names = [col['column_name'] for col in columns]

        select_sql = "SELECT {} FROM {}".format(
            ', '.join(quote_mysql_identifier(name) for name in column_names),
            quote_mysql_identifier(table_name),
        )
        copy_sql = sql.SQL('COPY {}.{} ({}) FROM STDIN WITH (FORMAT text)').format(
            sql.Identifier(schema_name),
            sql.Identifier(table_name),
            sql.SQL(', ').join([sql.Identifier(name) for name in column_names]),
        )

        identity_column = table_spec.get('identity_column')
        key_index = column_names.index(identity_column) if identity_column else None

        encoder = CopyTextEncoder(columns)
        sanitizer = Utf8Sanitizer(policy=self.config.encoding_policy)

        logger.info(f"Streaming {table_name} ({len(column_names)} columns, fetch size {self.config.fetch_size:,})")
        try:
            with self.mysql_hook.stream_query(select_sql, self.config.fetch_size) as rows, \
                    self.postgres_hook.connection() as conn:
                stream = CopyRowStream(rows, encoder, sanitizer, key_index)
                with conn.cursor() as cursor:
                    cursor.execute("SET statement_timeout = 0")
                    cursor.copy_expert(copy_sql, stream)
                conn.commit()
        except (pymysql.Error, psycopg2.Error, OSError, ValueError, TypeError) as e:
            # ValueError and TypeError come from driver value converters and the row encoder
            raise StreamError(
                f"Stream failed after {sanitizer.bytes_in:,} bytes: {e}",
                table_name=table_name,
                phase=STREAMING,
            ) from e

        sanitizer.log_summary(table_name)
        result = {'rows_transferred': stream.rows_encoded}
        result.update(sanitizer.stats())
        return result

    def transfer_table(self, table_name: str, check_connectivity: bool = True) -> Dict[str, Any]:
        """
        Transfer one table: provision, stream, sync sequence, verify.

        Args:
            table_name: Source table name (also used as the destination name)
            check_connectivity: Test both connections first

        Returns:
            Transfer session dict with per-phase results

        Raises:
            ConnectivityError: If a database is unreachable (before any DDL)
            SchemaLookupError: If the source table or its metadata cannot be read
            DDLError: If provisioning or sequence sync fails
            StreamError: If the row stream fails
            VerificationError: If row counts cannot be read after the load
        """
        schema_name = self.config.target_schema
        start_time = time.time()
        session: Dict[str, Any] = {
            'table_name': table_name,
            'target_schema': schema_name,
            'phase': PENDING,
            'source_row_count': None,
            'target_row_count': None,
            'rows_transferred': 0,
            'dropped_bytes': 0,
            'affected_rows': 0,
            'sequence': None,
            'verification': None,
            'started_at': datetime.now().isoformat(),
        }
        logger.info(f"▶ Starting transfer of {table_name} ({datetime.now():%Y-%m-%d %H:%M:%S})")

        if check_connectivity:
            self.check_connectivity()

        try:
            table_spec = self.build_table_spec(table_name)
            session['source_row_count'] = self.schema_extractor.get_row_count(table_name)
        except (pymysql.Error, ValueError) as e:
            raise SchemaLookupError(
                f"Could not read source schema for {table_name}: {e}",
                table_name=table_name,
                phase=SCHEMA_LOOKUP,
            ) from e
        logger.info(f"Source table has {session['source_row_count']:,} rows")

        self.ddl_generator.provision(table_spec, schema_name)
        session['phase'] = PROVISIONED

        session['phase'] = STREAMING
        stream_result = self.stream_rows(table_spec, schema_name)
        session.update(stream_result)
        session['phase'] = LOADED
        logger.info(f"✓ Loaded {session['rows_transferred']:,} rows into {schema_name}.{table_name}")

        session['sequence'] = self.ddl_generator.sync_sequence(table_spec, schema_name)
        session['phase'] = SEQUENCE_SYNCED

        try:
            verification = self.validator.validate_row_count(
                table_name,
                schema_name,
                table_name,
                source_count=session['source_row_count'],
            )
        except psycopg2.Error as e:
            raise VerificationError(
                f"Could not count rows in {schema_name}.{table_name}: {e}",
                table_name=table_name,
                phase=VERIFICATION,
            ) from e
        session['target_row_count'] = verification['target_count']
        session['verification'] = verification['status']
        session['phase'] = VERIFIED

        elapsed = time.time() - start_time
        session['ended_at'] = datetime.now().isoformat()
        session['elapsed_time_seconds'] = elapsed
        session['rows_per_second'] = session['rows_transferred'] / elapsed if elapsed > 0 else 0

        logger.info(
            f"{'✓' if session['verification'] == PASS else '⚠'} {table_name} transfer finished "
            f"in {format_elapsed(elapsed)}: {session['rows_transferred']:,} rows "
            f"at {session['rows_per_second']:,.0f} rows/sec"
        )
        return session


def transfer_table(config: MigrationConfig, table_name: str) -> Dict[str, Any]:
    """
    Convenience function to transfer a single table.

    Args:
        config: Validated migration configuration
        table_name: Source table name

    Returns:
        Transfer session dict
    """
    return DataTransfer(config).transfer_table(table_name)


def transfer_tables(
    config: MigrationConfig,
    table_names: List[str],
    transfer: Optional[DataTransfer] = None,
) -> List[Dict[str, Any]]:
    """
    Transfer several tables one after another.

    Connectivity is checked once up front and is fatal for the whole run.
    Other failures are isolated per table: the failed table is recorded
    with its phase and error, and the next table proceeds.

    Args:
        config: Validated migration configuration
        table_names: Source tables, transferred in the given order
        transfer: Optional pre-built DataTransfer

    Returns:
        One session dict per table
    """
    transfer = transfer or DataTransfer(config)
    transfer.check_connectivity()

    results = []
    for table_name in table_names:
        try:
            results.append(transfer.transfer_table(table_name, check_connectivity=False))
        except (ConfigurationError, ConnectivityError):
            raise
        except MigrationError as e:
            logger.error(f"✗ Transfer of {table_name} failed: {e}")
            results.append({
                'table_name': table_name,
                'target_schema': config.target_schema,
                'phase': FAILED,
                'failed_phase': e.phase,
                'error': str(e),
                'verification': None,
                'rows_transferred': 0,
            })

    warned = [r['table_name'] for r in results if r.get('verification') == WARN]
    failed = [r['table_name'] for r in results if r['phase'] == FAILED]
    logger.info(
        f"Transferred {len(results) - len(failed)}/{len(results)} tables "
        f"({len(warned)} with row count warnings, {len(failed)} failed)"
    )
    return results
