"""
pgloader Batch Driver

Generates per-batch pgloader load files from the operator's base template
and runs pgloader on them. Regular-sized tables go through this path; the
oversized ones are handled by data_transfer.
"""

from typing import Dict, Any, List, Optional, Union
import logging
import os
import subprocess
import tempfile
import time

import psycopg2

from mysql_pg_migration.config import MigrationConfig
from mysql_pg_migration.errors import ConfigurationError, MigrationError
from mysql_pg_migration.pg_helper import PostgresConnectionHelper
from mysql_pg_migration.table_config import BATCHES, Batch, get_batch

logger = logging.getLogger(__name__)

# Marker line in the base template replaced by the batch filter
FILTER_PLACEHOLDER = "-- 表过滤条件（由脚本动态添加）"

PGLOADER_COMMAND = [
    "pgloader",
    "--load-lisp-file", "ms-transforms.lisp",
    "--no-ssl-cert-verification",
    "--dynamic-space-size", "16384",
]

BATCH_PAUSE_SECONDS = 2


class PgloaderError(MigrationError):
    """pgloader could not be started."""


def substitute_env_vars(template: str, values: Dict[str, str]) -> str:
    """Replace ${VAR} placeholders; unknown placeholders are left alone."""
    for name, value in values.items():
        template = template.replace(f"${{{name}}}", value)
    return template


def read_base_template(config: MigrationConfig) -> str:
    """
    Read the operator's base load file.

    Raises:
        ConfigurationError: If the file does not exist
    """
    path = config.pgloader_base_config
    if not os.path.isfile(path):
        raise ConfigurationError(f"Base pgloader config {path} does not exist")
    with open(path, encoding='utf-8') as f:
        return f.read()


def generate_pgloader_config(batch: Batch, config: MigrationConfig, base_template: str) -> str:
    """
    Render the load file for one batch.

    Args:
        batch: Batch to render
        config: Migration configuration (supplies ${VAR} values)
        base_template: Contents of the base load file

    Returns:
        Complete load file text
    """
    if FILTER_PLACEHOLDER not in base_template:
        logger.warning("Base template has no table filter placeholder; batch filter not applied")

    batch_clause = f"-- Batch {batch.number}: {batch.description}\n{batch.table_filter.render()}"
    template = base_template.replace(FILTER_PLACEHOLDER, batch_clause)

    template = (
        f"{template}\n\n"
        f"AFTER LOAD DO\n"
        f"    $$ SELECT 'Batch {batch.number} completed. Tables in {config.target_schema}: ' || COUNT(*) "
        f"FROM information_schema.tables WHERE table_schema = '{config.target_schema}'; $$;"
    )

    return substitute_env_vars(template, config.template_values())


def run_batch(
    batch_number: int,
    config: MigrationConfig,
    base_template: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Run pgloader for one batch.

    The generated load file holds credentials; it is removed on success and
    kept on failure so the operator can rerun it by hand.

    Args:
        batch_number: Batch to run (2-5)
        config: Migration configuration
        base_template: Base load file text (read from config path if omitted)

    Returns:
        Dict with batch, success, returncode, config_file and elapsed_time_seconds

    Raises:
        PgloaderError: If the pgloader executable cannot be run
    """
    batch = get_batch(batch_number)
    if base_template is None:
        base_template = read_base_template(config)

    logger.info("=" * 44)
    logger.info(f"▶ Starting batch {batch.number}: {batch.display_tables} ({batch.description})")
    logger.info("=" * 44)

    fd, config_file = tempfile.mkstemp(prefix=f"pgloader-batch{batch.number}-", suffix=".load")
    with os.fdopen(fd, 'w', encoding='utf-8') as f:
        f.write(generate_pgloader_config(batch, config, base_template) + "\n")
    logger.info(f"▶ Load file: {config_file}")

    start_time = time.time()
    try:
        completed = subprocess.run(PGLOADER_COMMAND + [config_file])
    except OSError as e:
        raise PgloaderError(f"Could not run pgloader: {e}", phase=f"batch {batch.number}") from e
    elapsed = time.time() - start_time

    success = completed.returncode == 0
    if success:
        logger.info(f"✓ Batch {batch.number} succeeded in {elapsed:.1f}s")
        os.remove(config_file)
    else:
        logger.error(f"✗ Batch {batch.number} failed (exit code {completed.returncode})")
        logger.warning(f"Load file kept at: {config_file}")

    return {
        'batch': batch.number,
        'success': success,
        'returncode': completed.returncode,
        'config_file': None if success else config_file,
        'elapsed_time_seconds': elapsed,
    }


def run_batches(target: Union[str, int], config: MigrationConfig) -> List[Dict[str, Any]]:
    """
    Run one batch or all of them in order.

    With target 'all' the batches run 2, 3, 4, 5 with a short pause between
    them, stopping at the first failure.

    Args:
        target: 'all' or a batch number
        config: Migration configuration

    Returns:
        List of run_batch results, in execution order
    """
    base_template = read_base_template(config)

    if str(target) == 'all':
        numbers = sorted(BATCHES)
        logger.info(f"▶ Running all batches ({', '.join(str(n) for n in numbers)})")
    else:
        try:
            numbers = [int(target)]
        except ValueError:
            raise ValueError(f"Unknown batch '{target}': must be 'all' or one of {sorted(BATCHES)}")

    results = []
    for i, number in enumerate(numbers):
        result = run_batch(number, config, base_template)
        results.append(result)
        if not result['success']:
            break
        if i < len(numbers) - 1:
            logger.info(f"▶ Waiting {BATCH_PAUSE_SECONDS} seconds before next batch...")
            time.sleep(BATCH_PAUSE_SECONDS)

    if len(results) == len(numbers) and all(r['success'] for r in results):
        logger.info(f"✓ {len(results)} batch(es) completed")
    return results


def cleanup_connections(config: MigrationConfig, pg_helper: Optional[PostgresConnectionHelper] = None) -> int:
    """
    Terminate other backends connected to the destination database.

    Only needed when connecting through a pooler that keeps stale sessions;
    failures are logged and ignored.

    Returns:
        Number of backends terminated
    """
    pg_helper = pg_helper or PostgresConnectionHelper(config.neon)
    logger.info("▶ Terminating leftover connections...")
    try:
        rows = pg_helper.get_records(
            "SELECT pg_terminate_backend(pid) FROM pg_stat_activity "
            "WHERE datname = current_database() AND pid != pg_backend_pid()"
        )
    except psycopg2.Error as e:
        logger.warning(f"Could not terminate connections: {e}")
        return 0

    terminated = sum(1 for row in rows if row[0])
    logger.info(f"Terminated {terminated} connection(s)")
    time.sleep(BATCH_PAUSE_SECONDS)
    return terminated
