"""
MySQL to PostgreSQL Type Mapping Module

This module maps MySQL column metadata (as read from information_schema)
to PostgreSQL column definitions for the streaming large-table path.
"""

from typing import Optional, Dict, Any, List
import logging
import re

logger = logging.getLogger(__name__)


# Mapping of MySQL base data types to PostgreSQL
TYPE_MAPPING = {
    # Integer Types
    "tinyint": "SMALLINT",
    "smallint": "SMALLINT",
    "mediumint": "INTEGER",
    "int": "INTEGER",
    "integer": "INTEGER",
    "bigint": "BIGINT",
    "bool": "BOOLEAN",
    "boolean": "BOOLEAN",

    # Fixed and Approximate Numeric Types
    "decimal": "NUMERIC({precision},{scale})",
    "numeric": "NUMERIC({precision},{scale})",
    "float": "REAL",
    "double": "DOUBLE PRECISION",
    "real": "DOUBLE PRECISION",

    # Character String Types
    "char": "CHAR({length})",
    "varchar": "VARCHAR({length})",
    "tinytext": "TEXT",
    "text": "TEXT",
    "mediumtext": "TEXT",
    "longtext": "TEXT",
    "enum": "TEXT",
    "set": "TEXT",

    # Binary String Types
    "binary": "BYTEA",
    "varbinary": "BYTEA",
    "tinyblob": "BYTEA",
    "blob": "BYTEA",
    "mediumblob": "BYTEA",
    "longblob": "BYTEA",

    # Date and Time Types
    "date": "DATE",
    "time": "TIME({precision})",
    "datetime": "TIMESTAMP({precision})",
    "timestamp": "TIMESTAMP({precision})",
    "year": "SMALLINT",

    # Other Data Types
    "json": "JSONB",
}

BINARY_TYPES = {"binary", "varbinary", "tinyblob", "blob", "mediumblob", "longblob"}

# Unsigned integer types widened so the full unsigned range fits
UNSIGNED_WIDENING = {
    "smallint": "INTEGER",
    "mediumint": "INTEGER",
    "int": "BIGINT",
    "integer": "BIGINT",
    "bigint": "NUMERIC(20)",
}

ZERO_DATE_PREFIX = "0000-00-00"

# Matches the parenthesised modifier of a MySQL COLUMN_TYPE, e.g. "(1)" or "(10,2)"
_TYPE_ARGS_RE = re.compile(r'\(([^)]*)\)')

_BIT_LITERAL_RE = re.compile(r"^b'([01]*)'$", re.IGNORECASE)


def bit_width(column_type: Optional[str], precision: Optional[int] = None) -> int:
    """Declared width of a MySQL BIT column; bit without a width is bit(1)."""
    match = _TYPE_ARGS_RE.search((column_type or '').lower())
    if match and match.group(1).strip().isdigit():
        return int(match.group(1))
    return precision or 1


def map_type(
    mysql_type: str,
    max_length: Optional[int] = None,
    precision: Optional[int] = None,
    scale: Optional[int] = None,
    column_type: Optional[str] = None,
) -> str:
    """
    Map a MySQL data type to its PostgreSQL equivalent.

    Args:
        mysql_type: MySQL DATA_TYPE (base type name, e.g. 'varchar')
        max_length: CHARACTER_MAXIMUM_LENGTH for character types
        precision: NUMERIC_PRECISION or DATETIME_PRECISION
        scale: NUMERIC_SCALE for fixed-point types
        column_type: Full MySQL COLUMN_TYPE (e.g. 'tinyint(1) unsigned'),
            used to recognise tinyint(1) booleans, bit widths and unsigned
            integers

    Returns:
        The PostgreSQL equivalent data type
    """
    sql_type = mysql_type.lower().strip()
    full_type = (column_type or '').lower()

    # tinyint(1) is MySQL's boolean convention
    if sql_type == 'tinyint':
        match = _TYPE_ARGS_RE.search(full_type)
        if match and match.group(1).strip() == '1':
            return "BOOLEAN"

    if sql_type == 'bit':
        width = bit_width(full_type, precision)
        return "BOOLEAN" if width == 1 else f"BIT({width})"

    if 'unsigned' in full_type and sql_type in UNSIGNED_WIDENING:
        return UNSIGNED_WIDENING[sql_type]

    if sql_type not in TYPE_MAPPING:
        logger.warning(f"Unknown MySQL type '{mysql_type}', using TEXT as fallback")
        return "TEXT"

    pg_type = TYPE_MAPPING[sql_type]

    if "{length}" in pg_type:
        if max_length:
            pg_type = pg_type.replace("{length}", str(max_length))
        else:
            pg_type = pg_type.replace("({length})", "(255)")

    if "{precision}" in pg_type:
        if sql_type in ('datetime', 'timestamp', 'time'):
            # MySQL DATETIME without fractional seconds has precision 0
            pg_type = pg_type.replace("{precision}", str(precision or 0))
        elif precision is not None:
            pg_type = pg_type.replace("{precision}", str(precision))
        else:
            pg_type = pg_type.replace("{precision}", "10")

    if "{scale}" in pg_type:
        pg_type = pg_type.replace("{scale}", str(scale if scale is not None else 0))

    return pg_type


def map_default_value(mysql_default: Optional[str], pg_type: str = '') -> Optional[str]:
    """
    Map a MySQL COLUMN_DEFAULT to a PostgreSQL default expression.

    information_schema reports string defaults unquoted on MySQL 5.7 and
    quoted on 8.0; both forms are accepted.

    Args:
        mysql_default: MySQL default value as reported by information_schema
        pg_type: Mapped PostgreSQL type, used to decide literal quoting

    Returns:
        PostgreSQL default expression or None if unmappable
    """
    if mysql_default is None:
        return None

    default = mysql_default.strip()
    if not default or default.upper() == 'NULL':
        return None

    # CURRENT_TIMESTAMP(3) -> CURRENT_TIMESTAMP; ON UPDATE is never carried over
    if re.match(r'^(current_timestamp|now)(\(\d*\))?$', default, re.IGNORECASE):
        return "CURRENT_TIMESTAMP"

    upper_type = pg_type.upper()
    unquoted = default.strip("'")

    # Zero dates have no PostgreSQL equivalent; such values load as NULL
    if upper_type.startswith(('DATE', 'TIMESTAMP')) and unquoted.startswith(ZERO_DATE_PREFIX):
        return None

    if upper_type == 'BOOLEAN':
        if unquoted == '0' or default.lower() == "b'0'":
            return "FALSE"
        if unquoted == '1' or default.lower() == "b'1'":
            return "TRUE"

    if upper_type.startswith('BIT('):
        width = bit_width(upper_type)
        bit_match = _BIT_LITERAL_RE.match(default)
        if bit_match:
            value = int(bit_match.group(1) or '0', 2)
        elif unquoted.isdigit():
            value = int(unquoted)
        else:
            logger.warning(f"Cannot map BIT default '{mysql_default}', skipping")
            return None
        return f"B'{value:0{width}b}'"

    if re.match(r'^-?\d+(\.\d+)?$', unquoted) and not upper_type.startswith(('CHAR', 'VARCHAR', 'TEXT')):
        return unquoted

    if default.startswith("'") and default.endswith("'") and len(default) >= 2:
        return default

    if default.startswith('(') or default.endswith(')'):
        # Expression defaults (MySQL 8.0.13+) are not portable
        logger.warning(f"Cannot map default expression '{mysql_default}', skipping")
        return None

    escaped = default.replace("'", "''")
    return f"'{escaped}'"


def map_column(column_info: Dict[str, Any]) -> Dict[str, Any]:
    """
    Map a MySQL column definition to PostgreSQL.

    Args:
        column_info: Dictionary containing column metadata
            Expected keys: column_name, data_type, column_type, max_length,
                         precision, scale, is_nullable, is_identity, default_value

    Returns:
        Dictionary with PostgreSQL column definition (a ColumnDef)
    """
    source_type = column_info['data_type'].lower()
    data_type = map_type(
        source_type,
        column_info.get('max_length'),
        column_info.get('precision'),
        column_info.get('scale'),
        column_info.get('column_type'),
    )

    # Sequences are bigint; an unsigned bigint AUTO_INCREMENT column stays BIGINT
    if column_info.get('is_identity') and data_type == UNSIGNED_WIDENING['bigint']:
        data_type = 'BIGINT'

    result = {
        'column_name': column_info['column_name'],
        'data_type': data_type,
        'source_type': source_type,
        'is_nullable': column_info.get('is_nullable', True),
        'is_identity': column_info.get('is_identity', False),
        'is_binary': source_type in BINARY_TYPES,
        'default_value': None,
    }

    # Identity columns take their default from the owned sequence
    if not result['is_identity'] and column_info.get('default_value') is not None:
        result['default_value'] = map_default_value(column_info['default_value'], data_type)

    return result


def map_table_schema(table_schema: Dict[str, Any]) -> Dict[str, Any]:
    """
    Map an entire MySQL table schema to a PostgreSQL TableSpec.

    Args:
        table_schema: Table schema information with table_name, columns
                     and primary_key from the schema extractor

    Returns:
        TableSpec dict: table_name, columns, primary_key, identity_column
    """
    columns: List[Dict[str, Any]] = [map_column(column) for column in table_schema.get('columns', [])]

    identity_columns = [col['column_name'] for col in columns if col['is_identity']]
    if len(identity_columns) > 1:
        # MySQL allows only one AUTO_INCREMENT column per table
        raise ValueError(
            f"Table {table_schema['table_name']} reports multiple identity columns: "
            f"{', '.join(identity_columns)}"
        )

    return {
        'table_name': table_schema['table_name'],
        'columns': columns,
        'primary_key': list(table_schema.get('primary_key') or []),
        'identity_column': identity_columns[0] if identity_columns else None,
    }

