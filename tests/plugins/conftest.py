"""Shared fixtures for plugin tests."""

import pytest
from unittest.mock import MagicMock

from mysql_pg_migration.config import MigrationConfig, MySqlSettings, NeonSettings


VALID_ENV = {
    'MYSQL_DB': 'appdb',
    'MYSQL_HOST': 'mysql.internal',
    'MYSQL_PASSWORD': 'secret',
    'MYSQL_PORT': '3306',
    'MYSQL_USER': 'migrator',
    'PG_DB': 'neondb',
    'PG_ENDPOINT_ID': 'ep-cool-river-123456',
    'PG_PASSWORD': 'pgsecret',
    'PG_REGION': 'us-east-2',
    'PG_USER': 'neon_owner',
}


@pytest.fixture
def valid_env():
    """A complete environment mapping."""
    return dict(VALID_ENV)


@pytest.fixture
def migration_config():
    """A MigrationConfig built without touching the environment."""
    return MigrationConfig(
        mysql=MySqlSettings('mysql.internal', 3306, 'migrator', 'secret', 'appdb'),
        neon=NeonSettings('neon_owner', 'pgsecret', 'ep-cool-river-123456', 'us-east-2', 'neondb'),
    )


@pytest.fixture
def make_pg_connection():
    """
    Factory for mock psycopg2 connections. The cursor context manager
    returns a single cursor; fetchone() yields fetchone_results in order.
    """
    def _make(fetchone_results=None):
        conn = MagicMock()
        cursor = MagicMock()
        if fetchone_results is not None:
            cursor.fetchone.side_effect = list(fetchone_results)
        conn.cursor.return_value.__enter__.return_value = cursor
        return conn, cursor
    return _make
