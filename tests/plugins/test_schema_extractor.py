"""
Tests for MySQL Schema Extraction and Connection Helper Modules

These tests validate information_schema parsing, missing table handling,
and connection error translation.
"""

from decimal import Decimal

import pytest
from unittest.mock import Mock, MagicMock, patch
import pymysql
from pymysql.constants import FIELD_TYPE
from pymysql.converters import conversions
from mysql_pg_migration.config import MySqlSettings
from mysql_pg_migration.errors import ConnectivityError, SchemaLookupError
from mysql_pg_migration.mysql_helper import MySqlConnectionHelper, quote_mysql_identifier
from mysql_pg_migration.schema_extractor import SchemaExtractor


@pytest.fixture
def mysql_helper():
    """Mock MySqlConnectionHelper."""
    helper = Mock()
    helper.settings = MySqlSettings('mysql.internal', 3306, 'migrator', 'secret', 'appdb')
    helper.get_records = Mock()
    helper.get_first = Mock()
    return helper


class TestSchemaExtractor:
    """Test SchemaExtractor with a mocked helper."""

    def test_get_columns_decodes_bytes(self, mysql_helper):
        """Metadata arrives as bytes on use_unicode=False connections."""
        mysql_helper.get_records.return_value = [
            (b'id', b'bigint', b'bigint(20) unsigned', None, 20, 0, b'NO', None, b'auto_increment'),
            (b'body', b'longtext', b'longtext', 4294967295, None, None, b'YES', None, b''),
            (b'created_at', b'datetime', b'datetime(3)', None, 3, None, b'NO',
             b'CURRENT_TIMESTAMP(3)', b'DEFAULT_GENERATED'),
        ]

        columns = SchemaExtractor(mysql_helper).get_columns('text_content')

        assert [c['column_name'] for c in columns] == ['id', 'body', 'created_at']
        assert columns[0]['is_identity'] is True
        assert columns[0]['is_nullable'] is False
        assert columns[0]['column_type'] == 'bigint(20) unsigned'
        assert columns[1]['is_identity'] is False
        assert columns[1]['max_length'] == 4294967295
        assert columns[2]['precision'] == 3
        assert columns[2]['default_value'] == 'CURRENT_TIMESTAMP(3)'

        query, = mysql_helper.get_records.call_args[0]
        assert 'ORDER BY ORDINAL_POSITION' in query
        assert mysql_helper.get_records.call_args[1]['parameters'] == ['appdb', 'text_content']

    def test_get_primary_key(self, mysql_helper):
        mysql_helper.get_records.return_value = [(b'tenant_id',), (b'id',)]

        assert SchemaExtractor(mysql_helper).get_primary_key('t') == ['tenant_id', 'id']

    def test_get_table_schema(self, mysql_helper):
        mysql_helper.get_records.side_effect = [
            [('id', 'int', 'int(11)', None, 10, 0, 'NO', None, 'auto_increment')],
            [('id',)],
        ]

        schema = SchemaExtractor(mysql_helper).get_table_schema('pipeline')

        assert schema['table_name'] == 'pipeline'
        assert schema['primary_key'] == ['id']
        assert len(schema['columns']) == 1

    def test_missing_table_raises_schema_lookup_error(self, mysql_helper):
        """A table with no columns does not exist."""
        mysql_helper.get_records.return_value = []

        with pytest.raises(SchemaLookupError) as exc_info:
            SchemaExtractor(mysql_helper).get_table_schema('nope')

        assert exc_info.value.table_name == 'nope'
        assert exc_info.value.phase == 'schema_lookup'

    def test_get_tables(self, mysql_helper):
        mysql_helper.get_records.return_value = [(b'pipeline',), (b'text_content',)]

        assert SchemaExtractor(mysql_helper).get_tables() == ['pipeline', 'text_content']

    def test_get_row_count_quotes_identifier(self, mysql_helper):
        mysql_helper.get_first.return_value = (1234,)

        assert SchemaExtractor(mysql_helper).get_row_count('order') == 1234
        mysql_helper.get_first.assert_called_once_with("SELECT COUNT(*) FROM `order`")


class TestQuoteMysqlIdentifier:
    """Test backtick quoting."""

    def test_simple(self):
        assert quote_mysql_identifier('users') == '`users`'

    def test_embedded_backtick(self):
        assert quote_mysql_identifier('we`ird') == '`we``ird`'


class TestMySqlConnectionHelper:
    """Test pymysql connection handling."""

    @pytest.fixture
    def helper(self):
        return MySqlConnectionHelper(MySqlSettings('mysql.internal', 3306, 'migrator', 'secret', 'appdb'))

    def test_check_connection_failure(self, helper):
        """Driver errors become ConnectivityError."""
        with patch('mysql_pg_migration.mysql_helper.pymysql.connect') as mock_connect:
            mock_connect.side_effect = pymysql.err.OperationalError(2003, "Can't connect")

            with pytest.raises(ConnectivityError) as exc_info:
                helper.check_connection()

        assert exc_info.value.phase == 'connectivity'
        assert 'mysql.internal:3306' in str(exc_info.value)

    def test_get_records_closes_connection(self, helper):
        mock_conn = MagicMock()
        mock_cursor = MagicMock()
        mock_cursor.fetchall.return_value = [(1,), (2,)]
        mock_conn.cursor.return_value.__enter__.return_value = mock_cursor

        with patch('mysql_pg_migration.mysql_helper.pymysql.connect', return_value=mock_conn):
            assert helper.get_records("SELECT 1", parameters=['x']) == [(1,), (2,)]

        mock_cursor.execute.assert_called_once_with("SELECT 1", ['x'])
        mock_conn.close.assert_called_once()

    def test_get_first_reraises_and_closes(self, helper):
        mock_conn = MagicMock()
        mock_conn.cursor.return_value.__enter__.return_value.execute.side_effect = \
            pymysql.err.ProgrammingError(1146, "Table doesn't exist")

        with patch('mysql_pg_migration.mysql_helper.pymysql.connect', return_value=mock_conn):
            with pytest.raises(pymysql.err.ProgrammingError):
                helper.get_first("SELECT COUNT(*) FROM `missing`")

        mock_conn.close.assert_called_once()

    def test_stream_query_uses_unbuffered_cursor(self, helper):
        """Rows are fetched fetch_size at a time on an SSCursor."""
        mock_conn = MagicMock()
        mock_cursor = MagicMock()
        mock_cursor.fetchmany.side_effect = [[(1,), (2,)], [(3,)], []]
        mock_conn.cursor.return_value = mock_cursor

        with patch('mysql_pg_migration.mysql_helper.pymysql.connect', return_value=mock_conn) as mock_connect:
            with helper.stream_query("SELECT `id` FROM `t`", fetch_size=2) as rows:
                assert list(rows) == [(1,), (2,), (3,)]

        assert mock_connect.call_args[1]['cursorclass'] is pymysql.cursors.SSCursor
        assert mock_connect.call_args[1]['use_unicode'] is False
        mock_cursor.fetchmany.assert_called_with(2)
        mock_cursor.close.assert_called_once()
        mock_conn.close.assert_called_once()

    def test_stream_query_closes_on_error(self, helper):
        mock_conn = MagicMock()
        mock_cursor = MagicMock()
        mock_cursor.fetchmany.side_effect = pymysql.err.OperationalError(2013, "Lost connection")
        mock_conn.cursor.return_value = mock_cursor

        with patch('mysql_pg_migration.mysql_helper.pymysql.connect', return_value=mock_conn):
            with pytest.raises(pymysql.err.OperationalError):
                with helper.stream_query("SELECT 1") as rows:
                    list(rows)

        # Closing the cursor would read the rest of the result set
        mock_cursor.close.assert_not_called()
        mock_conn.close.assert_called_once()

    def test_stream_query_skips_close_on_dropped_connection(self, helper):
        mock_conn = MagicMock()
        mock_conn.open = False
        mock_cursor = MagicMock()
        mock_cursor.fetchmany.side_effect = pymysql.err.OperationalError(2013, "Lost connection")
        mock_conn.cursor.return_value = mock_cursor

        with patch('mysql_pg_migration.mysql_helper.pymysql.connect', return_value=mock_conn):
            with pytest.raises(pymysql.err.OperationalError):
                with helper.stream_query("SELECT 1") as rows:
                    list(rows)

        mock_conn.close.assert_not_called()

    def test_get_conn_decodes_decimals_from_bytes(self, helper):
        """Decimal columns arrive as bytes when use_unicode is off."""
        with patch('mysql_pg_migration.mysql_helper.pymysql.connect') as mock_connect:
            helper.get_conn()

        conv = mock_connect.call_args[1]['conv']
        assert conv[FIELD_TYPE.NEWDECIMAL](b'12.50') == Decimal('12.50')
        assert conv[FIELD_TYPE.DECIMAL](b'-0.001') == Decimal('-0.001')
        # Other decoders are the driver defaults
        assert conv[FIELD_TYPE.LONG] is conversions[FIELD_TYPE.LONG]
