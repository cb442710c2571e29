"""
MySQL to Neon Migration DAG

This DAG runs the MySQL to PostgreSQL (Neon) migration:
1. Configuration and connectivity check (both databases)
2. Optional pgloader batches for the regular-sized tables
3. Streaming COPY transfer of each oversized table (one mapped task per table)
4. Migration report with row count verification and encoding cleanup totals

Connection details come from environment variables:
- MYSQL_HOST, MYSQL_PORT, MYSQL_DB, MYSQL_USER, MYSQL_PASSWORD
- PG_ENDPOINT_ID, PG_REGION, PG_DB, PG_USER, PG_PASSWORD

Only one run may be active: two transfers into the same table would drop
each other's data.
"""

from airflow.sdk import dag, task
from airflow.models.param import Param
from pendulum import datetime
from datetime import timedelta
from typing import List, Dict, Any
import logging

from mysql_pg_migration.config import MigrationConfig
from mysql_pg_migration.data_transfer import DataTransfer
from mysql_pg_migration.errors import MigrationError
from mysql_pg_migration.pgloader import run_batches
from mysql_pg_migration.table_config import LARGE_TABLES
from mysql_pg_migration.validation import generate_migration_report, summarize_transfers

logger = logging.getLogger(__name__)


@dag(
    start_date=datetime(2025, 1, 1),
    schedule=None,  # Run manually
    catchup=False,
    max_active_runs=1,
    is_paused_upon_creation=False,
    doc_md=__doc__,
    default_args={
        "owner": "data-team",
        "retries": 1,
        "retry_delay": timedelta(minutes=2),
    },
    params={
        "tables": Param(
            default=list(LARGE_TABLES),
            type="array",
            description="Tables to stream with COPY"
        ),
        "run_pgloader": Param(
            default=False,
            type="boolean",
            description="Run the pgloader batches before streaming"
        ),
        "batches": Param(
            default="all",
            type="string",
            enum=["all", "2", "3", "4", "5"],
            description="pgloader batch to run when run_pgloader is set"
        ),
    },
    tags=["migration", "mysql", "postgres", "neon"],
)
def mysql_to_neon_migration():
    """
    Main DAG for MySQL to Neon migration.
    """

    @task(retries=0)
    def check_connectivity() -> str:
        """Validate configuration and reach both databases before any DDL."""
        config = MigrationConfig.from_env()
        DataTransfer(config).check_connectivity()
        logger.info(f"✓ Target schema: {config.target_schema}")
        return config.target_schema

    @task(retries=0)
    def run_pgloader_batches(target_schema: str, **context) -> List[Dict[str, Any]]:
        """Run the configured pgloader batches, if enabled."""
        params = context["params"]
        if not params["run_pgloader"]:
            logger.info("pgloader batches disabled, skipping")
            return []

        results = run_batches(params["batches"], MigrationConfig.from_env())
        for result in results:
            if not result["success"]:
                raise MigrationError(
                    f"pgloader batch {result['batch']} failed; load file kept at {result['config_file']}",
                    phase=f"batch {result['batch']}",
                )
        return results

    @task
    def get_tables(batch_results: List[Dict[str, Any]], **context) -> List[str]:
        """List the tables to stream."""
        tables = context["params"]["tables"]
        logger.info(f"Streaming {len(tables)} tables: {', '.join(tables)}")
        return tables

    @task(max_active_tis_per_dag=1)
    def transfer_table(table_name: str) -> Dict[str, Any]:
        """
        Stream one table: provision, COPY, sync sequence, verify.

        Reruns are safe; the destination table is dropped and reloaded.
        """
        return DataTransfer(MigrationConfig.from_env()).transfer_table(table_name)

    @task(trigger_rule="all_done")
    def generate_report(transfer_results: List[Dict[str, Any]]) -> str:
        """Render the migration report from the transfer sessions."""
        transfer_results = [r for r in (transfer_results or []) if r]
        validation_results = summarize_transfers(transfer_results)
        report = generate_migration_report(validation_results, transfer_results)
        logger.info("\n" + report)

        if validation_results["overall_success"]:
            status = f"✓ Migration completed for all {validation_results['total_tables']} streamed tables"
            logger.info(status)
        else:
            status = (
                f"⚠ Migration completed with row count warnings: "
                f"{validation_results['warned_count']}/{validation_results['total_tables']} tables"
            )
            logger.warning(status)
        return status

    target_schema = check_connectivity()
    batch_results = run_pgloader_batches(target_schema)
    tables = get_tables(batch_results)
    transfer_results = transfer_table.expand(table_name=tables)
    generate_report(transfer_results)


# Instantiate the DAG
mysql_to_neon_migration()
