"""
Tests for the mysql-pg-migrate command line

These tests validate exit codes and argument handling with the transfer,
pgloader and database layers patched out.
"""

import pytest
from unittest.mock import patch
from typer.testing import CliRunner
from mysql_pg_migration.cli import EXIT_ERROR, EXIT_WARN, app
from mysql_pg_migration.config import MigrationConfig
from mysql_pg_migration.errors import ConfigurationError, ConnectivityError


runner = CliRunner()


def session(table_name, verification='PASS', source=10, target=10, phase='VERIFIED'):
    return {
        'table_name': table_name,
        'phase': phase,
        'verification': verification,
        'source_row_count': source,
        'target_row_count': target,
        'rows_transferred': target,
        'dropped_bytes': 0,
        'sequence': {'sequence_name': f'{table_name}_id_seq', 'value': target, 'next_value': target + 1},
        'elapsed_time_seconds': 1.5,
    }


@pytest.fixture
def config(migration_config):
    with patch.object(MigrationConfig, 'from_env', return_value=migration_config):
        yield migration_config


class TestTransferCommand:
    """Test the transfer command."""

    def test_all_pass_exits_zero(self, config):
        with patch('mysql_pg_migration.cli.transfer_tables', return_value=[session('text_content')]) as mock_transfer:
            result = runner.invoke(app, ["transfer", "text_content"])

        assert result.exit_code == 0
        mock_transfer.assert_called_once_with(config, ["text_content"])

    def test_all_expands_to_large_tables(self, config):
        with patch('mysql_pg_migration.cli.transfer_tables', return_value=[]) as mock_transfer:
            runner.invoke(app, ["transfer", "all"])

        assert mock_transfer.call_args[0][1] == ["text_content", "pipeline_snapshot"]

    def test_warn_exits_two(self, config):
        results = [session('text_content'), session('pipeline_snapshot', 'WARN', source=10, target=9)]

        with patch('mysql_pg_migration.cli.transfer_tables', return_value=results):
            result = runner.invoke(app, ["transfer", "text_content", "pipeline_snapshot"])

        assert result.exit_code == EXIT_WARN

    def test_failed_table_exits_one(self, config):
        failed = {
            'table_name': 'text_content',
            'phase': 'FAILED',
            'failed_phase': 'STREAMING',
            'verification': None,
            'rows_transferred': 0,
            'error': 'Stream failed [table=text_content, phase=STREAMING]',
        }

        with patch('mysql_pg_migration.cli.transfer_tables', return_value=[failed]):
            result = runner.invoke(app, ["transfer", "text_content"])

        assert result.exit_code == EXIT_ERROR
        assert 'phase=STREAMING' in result.output

    def test_connectivity_error_exits_one(self, config):
        error = ConnectivityError("Cannot connect to PostgreSQL", phase="connectivity")

        with patch('mysql_pg_migration.cli.transfer_tables', side_effect=error):
            result = runner.invoke(app, ["transfer", "text_content"])

        assert result.exit_code == EXIT_ERROR
        assert 'Cannot connect to PostgreSQL' in result.output

    def test_missing_config_exits_one(self):
        error = ConfigurationError("Missing required configuration", missing_keys=['PG_PASSWORD'])

        with patch.object(MigrationConfig, 'from_env', side_effect=error), \
                patch('mysql_pg_migration.cli.transfer_tables') as mock_transfer:
            result = runner.invoke(app, ["transfer", "text_content"])

        assert result.exit_code == EXIT_ERROR
        assert 'PG_PASSWORD' in result.output
        mock_transfer.assert_not_called()


class TestBatchCommands:
    """Test the pgloader commands."""

    def test_batch_all(self, config):
        with patch('mysql_pg_migration.cli.run_batches',
                   return_value=[{'batch': n, 'success': True} for n in (2, 3, 4, 5)]) as mock_run:
            result = runner.invoke(app, ["batch"])

        assert result.exit_code == 0
        mock_run.assert_called_once_with("all", config)

    def test_batch_failure_exits_one(self, config):
        failed = {'batch': 3, 'success': False, 'config_file': '/tmp/pgloader-batch3-x.load'}

        with patch('mysql_pg_migration.cli.run_batches', return_value=[{'batch': 2, 'success': True}, failed]):
            result = runner.invoke(app, ["batch", "all"])

        assert result.exit_code == EXIT_ERROR
        assert 'Batch 3 failed' in result.output

    def test_unknown_batch_prints_usage(self, config):
        with patch('mysql_pg_migration.cli.run_batches') as mock_run:
            result = runner.invoke(app, ["batch", "7"])

        assert result.exit_code == EXIT_ERROR
        assert 'Usage' in result.output
        mock_run.assert_not_called()

    def test_batches_lists_definitions(self):
        result = runner.invoke(app, ["batches"])

        assert result.exit_code == 0
        assert 'pgloader Batches' in result.output


class TestCheckCommand:
    """Test the partition check command."""

    def test_clean_partition(self, config):
        with patch('mysql_pg_migration.cli.MySqlConnectionHelper'), \
                patch('mysql_pg_migration.cli.SchemaExtractor') as mock_extractor:
            mock_extractor.return_value.get_tables.return_value = ["pipeline", "user_account", "text_content"]
            result = runner.invoke(app, ["check"])

        assert result.exit_code == 0
        assert 'accounted for' in result.output

    def test_unreachable_source(self, config):
        with patch('mysql_pg_migration.cli.MySqlConnectionHelper') as mock_helper:
            mock_helper.return_value.check_connection.side_effect = ConnectivityError("Cannot connect to MySQL")
            result = runner.invoke(app, ["check"])

        assert result.exit_code == EXIT_ERROR
        assert 'Cannot connect to MySQL' in result.output
