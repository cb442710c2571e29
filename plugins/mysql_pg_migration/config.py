"""
Migration Configuration Module

Builds the connection settings for the MySQL source and the Neon
PostgreSQL destination from environment variables. The configuration is
validated once at startup and then passed explicitly to every component;
nothing below this module reads the process environment.

Required environment variables:
- MYSQL_DB, MYSQL_HOST, MYSQL_PASSWORD, MYSQL_PORT, MYSQL_USER
- PG_DB, PG_ENDPOINT_ID, PG_PASSWORD, PG_REGION, PG_USER

Optional:
- PG_HOST: override the derived <endpoint>.<region>.aws.neon.tech host
- PG_SSLMODE: defaults to 'require'
- PG_SCHEMA: destination schema, defaults to the MySQL database name
- FETCH_SIZE: rows fetched per round trip from the unbuffered cursor
- ENCODING_POLICY: 'drop' (default) or 'replace' for invalid UTF-8
- PGLOADER_BASE_CONFIG: pgloader template path for batch migrations
"""

from typing import Dict, Any, Mapping, Optional
import logging
import os

from mysql_pg_migration.errors import ConfigurationError

logger = logging.getLogger(__name__)


REQUIRED_VARS = (
    'MYSQL_DB',
    'MYSQL_HOST',
    'MYSQL_PASSWORD',
    'MYSQL_PORT',
    'MYSQL_USER',
    'PG_DB',
    'PG_ENDPOINT_ID',
    'PG_PASSWORD',
    'PG_REGION',
    'PG_USER',
)

ENCODING_POLICIES = ('drop', 'replace')

DEFAULT_FETCH_SIZE = 10000
DEFAULT_PGLOADER_BASE_CONFIG = '/app/pgloader-config-base.load'


class MySqlSettings:
    """Connection parameters for the MySQL source."""

    def __init__(self, host: str, port: int, user: str, password: str, database: str):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.database = database

    def connect_kwargs(self) -> Dict[str, Any]:
        """
        Keyword arguments for pymysql.connect().

        Text columns come back as raw bytes (use_unicode=False) so that
        invalid UTF-8 reaches the sanitizer instead of failing in the driver.
        """
        return {
            'host': self.host,
            'port': self.port,
            'user': self.user,
            'password': self.password,
            'database': self.database,
            'charset': 'utf8mb4',
            'use_unicode': False,
            'connect_timeout': 30,
        }

    def __repr__(self) -> str:
        return f"MySqlSettings({self.user}@{self.host}:{self.port}/{self.database})"


class NeonSettings:
    """Connection parameters for the Neon PostgreSQL destination."""

    def __init__(
        self,
        user: str,
        password: str,
        endpoint_id: str,
        region: str,
        database: str,
        host: Optional[str] = None,
        sslmode: str = 'require',
        port: int = 5432,
    ):
        self.user = user
        self.password = password
        self.endpoint_id = endpoint_id
        self.region = region
        self.database = database
        self.host = host or f"{endpoint_id}.{region}.aws.neon.tech"
        self.sslmode = sslmode
        self.port = port

    def connect_kwargs(self) -> Dict[str, Any]:
        """
        Keyword arguments for psycopg2.connect().

        Neon routes by SNI; clients without SNI support pass the endpoint ID
        through the libpq 'options' parameter instead.
        """
        return {
            'host': self.host,
            'port': self.port,
            'user': self.user,
            'password': self.password,
            'dbname': self.database,
            'sslmode': self.sslmode,
            'options': f"endpoint={self.endpoint_id}",
            'connect_timeout': 30,
        }

    def __repr__(self) -> str:
        return f"NeonSettings({self.user}@{self.host}/{self.database})"


class MigrationConfig:
    """Validated configuration shared by every migration component."""

    def __init__(
        self,
        mysql: MySqlSettings,
        neon: NeonSettings,
        target_schema: Optional[str] = None,
        fetch_size: int = DEFAULT_FETCH_SIZE,
        encoding_policy: str = 'drop',
        pgloader_base_config: str = DEFAULT_PGLOADER_BASE_CONFIG,
    ):
        if encoding_policy not in ENCODING_POLICIES:
            raise ConfigurationError(
                f"Invalid ENCODING_POLICY '{encoding_policy}': "
                f"must be one of {', '.join(ENCODING_POLICIES)}"
            )
        if fetch_size < 1:
            raise ConfigurationError(f"Invalid FETCH_SIZE {fetch_size}: must be positive")

        self.mysql = mysql
        self.neon = neon
        # Tables land in a schema named after the MySQL database unless overridden
        self.target_schema = target_schema or mysql.database
        self.fetch_size = fetch_size
        self.encoding_policy = encoding_policy
        self.pgloader_base_config = pgloader_base_config

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> 'MigrationConfig':
        """
        Build configuration from environment variables.

        Args:
            env: Mapping to read from (defaults to os.environ)

        Returns:
            Validated MigrationConfig

        Raises:
            ConfigurationError: If any required variable is missing or empty,
                or an optional variable has an invalid value
        """
        if env is None:
            env = os.environ

        missing = [var for var in REQUIRED_VARS if not env.get(var, '').strip()]
        if missing:
            raise ConfigurationError(
                f"Missing required env var(s): {', '.join(missing)}",
                missing_keys=missing,
            )

        try:
            mysql_port = int(env['MYSQL_PORT'])
        except ValueError:
            raise ConfigurationError(f"Invalid MYSQL_PORT '{env['MYSQL_PORT']}': must be an integer")

        try:
            fetch_size = int(env.get('FETCH_SIZE') or DEFAULT_FETCH_SIZE)
        except ValueError:
            raise ConfigurationError(f"Invalid FETCH_SIZE '{env.get('FETCH_SIZE')}': must be an integer")

        mysql = MySqlSettings(
            host=env['MYSQL_HOST'],
            port=mysql_port,
            user=env['MYSQL_USER'],
            password=env['MYSQL_PASSWORD'],
            database=env['MYSQL_DB'],
        )
        neon = NeonSettings(
            user=env['PG_USER'],
            password=env['PG_PASSWORD'],
            endpoint_id=env['PG_ENDPOINT_ID'],
            region=env['PG_REGION'],
            database=env['PG_DB'],
            host=env.get('PG_HOST') or None,
            sslmode=env.get('PG_SSLMODE') or 'require',
        )

        config = cls(
            mysql=mysql,
            neon=neon,
            target_schema=env.get('PG_SCHEMA') or None,
            fetch_size=fetch_size,
            encoding_policy=(env.get('ENCODING_POLICY') or 'drop').lower(),
            pgloader_base_config=env.get('PGLOADER_BASE_CONFIG') or DEFAULT_PGLOADER_BASE_CONFIG,
        )
        logger.debug(f"Loaded configuration: {config.mysql!r} -> {config.neon!r}")
        return config

    def template_values(self) -> Dict[str, str]:
        """Values substituted for ${VAR} placeholders in pgloader templates."""
        return {
            'MYSQL_DB': self.mysql.database,
            'MYSQL_HOST': self.mysql.host,
            'MYSQL_PASSWORD': self.mysql.password,
            'MYSQL_PORT': str(self.mysql.port),
            'MYSQL_USER': self.mysql.user,
            'PG_DB': self.neon.database,
            'PG_ENDPOINT_ID': self.neon.endpoint_id,
            'PG_PASSWORD': self.neon.password,
            'PG_REGION': self.neon.region,
            'PG_USER': self.neon.user,
        }
