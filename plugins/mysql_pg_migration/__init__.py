"""
MySQL to PostgreSQL (Neon) Migration Utilities

This package moves a MySQL database into Neon. Most tables go through
pgloader in fixed batches; a few oversized tables are streamed row by row
with COPY, sanitized to valid UTF-8 on the way.

Modules:
- config: Environment-driven configuration and Neon connection parameters
- errors: Exception hierarchy for fatal migration failures
- mysql_helper / pg_helper: Source and destination connection helpers
- schema_extractor: Read table metadata from MySQL information_schema
- type_mapping: Map MySQL types and defaults to PostgreSQL
- ddl_generator: Provision destination tables and sync identity sequences
- encoding: Lossy UTF-8 sanitizer with drop accounting
- data_transfer: Streaming COPY transfer for oversized tables
- validation: Row count verification and migration report
- table_config: pgloader batch partition and large table registry
- pgloader: Generate load files and run pgloader batches
- cli: mysql-pg-migrate command line

Settings:
- ENCODING_POLICY=drop|replace: Drop invalid UTF-8 bytes or replace with U+FFFD
- FETCH_SIZE=N: Rows fetched per round trip from the unbuffered cursor
"""

__version__ = "1.0.0"

# Core modules
from mysql_pg_migration import config
from mysql_pg_migration import errors
from mysql_pg_migration import schema_extractor
from mysql_pg_migration import type_mapping
from mysql_pg_migration import ddl_generator
from mysql_pg_migration import encoding
from mysql_pg_migration import data_transfer
from mysql_pg_migration import validation

# Batch loading modules
from mysql_pg_migration import table_config
from mysql_pg_migration import pgloader

__all__ = [
    "config",
    "errors",
    "schema_extractor",
    "type_mapping",
    "ddl_generator",
    "encoding",
    "data_transfer",
    "validation",
    "table_config",
    "pgloader",
]
