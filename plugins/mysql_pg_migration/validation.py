"""
Data Migration Validation Module

This module compares source and destination row counts after a transfer
and renders the human-readable migration report.

A count mismatch is a WARN, never an error: lossy encoding cleanup and
concurrent source writes can both produce small differences, and the
operator decides what to do about them.
"""

from typing import Dict, Any, List, Optional
from datetime import datetime
import logging

from psycopg2 import sql

from mysql_pg_migration.mysql_helper import MySqlConnectionHelper, quote_mysql_identifier
from mysql_pg_migration.pg_helper import PostgresConnectionHelper

logger = logging.getLogger(__name__)

PASS = 'PASS'
WARN = 'WARN'


class MigrationValidator:
    """Validate data migration from MySQL to PostgreSQL."""

    def __init__(self, mysql_helper: MySqlConnectionHelper, pg_helper: PostgresConnectionHelper):
        """
        Initialize the migration validator.

        Args:
            mysql_helper: Source connection helper
            pg_helper: Destination connection helper
        """
        self.mysql_hook = mysql_helper
        self.postgres_hook = pg_helper

    def count_source_rows(self, table_name: str) -> int:
        result = self.mysql_hook.get_first(f"SELECT COUNT(*) FROM {quote_mysql_identifier(table_name)}")
        return int(result[0] or 0) if result else 0

    def count_target_rows(self, schema_name: str, table_name: str) -> int:
        query = sql.SQL('SELECT COUNT(*) FROM {}.{}').format(
            sql.Identifier(schema_name),
            sql.Identifier(table_name),
        )
        result = self.postgres_hook.get_first(query)
        return int(result[0] or 0) if result else 0

    def validate_row_count(
        self,
        source_table: str,
        target_schema: str,
        target_table: Optional[str] = None,
        source_count: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Compare row counts between source and target tables.

        Args:
            source_table: Source table name in MySQL
            target_schema: Target schema name in PostgreSQL
            target_table: Target table name (defaults to source_table)
            source_count: Source count taken earlier in the run; counted
                now if omitted

        Returns:
            Validation result dictionary with status PASS or WARN
        """
        target_table = target_table or source_table

        if source_count is None:
            source_count = self.count_source_rows(source_table)
        target_count = self.count_target_rows(target_schema, target_table)

        # Calculate difference
        row_difference = target_count - source_count
        percentage_difference = (row_difference / source_count * 100) if source_count > 0 else 0
        passed = source_count == target_count

        validation_result = {
            'table_name': source_table,
            'target_table': f"{target_schema}.{target_table}",
            'source_count': source_count,
            'target_count': target_count,
            'row_difference': row_difference,
            'percentage_difference': percentage_difference,
            'validation_passed': passed,
            'status': PASS if passed else WARN,
            'validation_time': datetime.now().isoformat(),
        }

        if passed:
            logger.info(f"✓ Row count validation passed for {source_table}: {source_count:,} rows")
        else:
            logger.warning(
                f"⚠ Row count mismatch for {source_table}: "
                f"Source={source_count:,}, Target={target_count:,}, "
                f"Difference={row_difference:+,} ({percentage_difference:+.2f}%)"
            )

        return validation_result


def summarize_transfers(transfer_results: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Build batch validation results from transfer sessions.

    Each completed session already carries both counts, so nothing is
    counted again. Failed sessions are left out of the row count results.
    """
    row_count_results = []
    for session in transfer_results:
        if session.get('verification') not in (PASS, WARN):
            continue
        source_count = session['source_row_count']
        target_count = session['target_row_count']
        row_difference = target_count - source_count
        row_count_results.append({
            'table_name': session['table_name'],
            'source_count': source_count,
            'target_count': target_count,
            'row_difference': row_difference,
            'percentage_difference': (row_difference / source_count * 100) if source_count > 0 else 0,
            'validation_passed': session['verification'] == PASS,
            'status': session['verification'],
        })

    passed = [r['table_name'] for r in row_count_results if r['validation_passed']]
    warned = [r['table_name'] for r in row_count_results if not r['validation_passed']]
    total = len(transfer_results)
    return {
        'total_tables': total,
        'passed_tables': passed,
        'warned_tables': warned,
        'row_count_results': row_count_results,
        'passed_count': len(passed),
        'warned_count': len(warned),
        'success_rate': len(passed) / total * 100 if total > 0 else 0,
        'overall_success': len(passed) == total,
        'validation_time': datetime.now().isoformat(),
    }


def generate_migration_report(
    validation_results: Dict[str, Any],
    transfer_results: Optional[List[Dict[str, Any]]] = None
) -> str:
    """
    Generate a human-readable migration report.

    Args:
        validation_results: Validation results from summarize_transfers
        transfer_results: Optional transfer session dicts from data_transfer

    Returns:
        Formatted report string
    """
    report_lines = [
        "=" * 80,
        "DATA MIGRATION REPORT",
        "=" * 80,
        f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        "",
    ]

    # Overall Summary
    report_lines.extend([
        "SUMMARY",
        "-" * 40,
        f"Total Tables: {validation_results.get('total_tables', 0)}",
        f"Matching: {validation_results.get('passed_count', 0)}",
        f"Warnings: {validation_results.get('warned_count', 0)}",
        f"Success Rate: {validation_results.get('success_rate', 0):.1f}%",
        "",
    ])

    if transfer_results:
        total_rows = sum(r.get('rows_transferred', 0) for r in transfer_results)
        total_time = sum(r.get('elapsed_time_seconds', 0) for r in transfer_results)
        total_dropped = sum(r.get('dropped_bytes', 0) for r in transfer_results)
        avg_rate = total_rows / total_time if total_time > 0 else 0

        report_lines.extend([
            "TRANSFER STATISTICS",
            "-" * 40,
            f"Total Rows Transferred: {total_rows:,}",
            f"Total Time: {total_time:.2f} seconds",
            f"Average Transfer Rate: {avg_rate:,.0f} rows/second",
            f"Invalid UTF-8 Bytes Removed: {total_dropped:,}",
            "",
        ])

    # Table Details
    report_lines.extend([
        "TABLE DETAILS",
        "-" * 40,
    ])

    for result in validation_results.get('row_count_results', []):
        status = "✓ PASS" if result['validation_passed'] else "⚠ WARN"
        table_name = result['table_name']
        source_count = result['source_count']
        target_count = result['target_count']
        diff = result['row_difference']

        if result['validation_passed']:
            report_lines.append(
                f"{status} | {table_name:<30} | {source_count:>10,} rows"
            )
        else:
            report_lines.append(
                f"{status} | {table_name:<30} | Source: {source_count:>10,} | "
                f"Target: {target_count:>10,} | Diff: {diff:>+10,}"
            )

    if validation_results.get('warned_tables'):
        report_lines.extend([
            "",
            "TABLES WITH ROW COUNT DIFFERENCES",
            "-" * 40,
        ])
        for table in validation_results['warned_tables']:
            report_lines.append(f"  • {table}")

    if transfer_results:
        encoding_issues = [r for r in transfer_results if r.get('dropped_bytes')]
        if encoding_issues:
            report_lines.extend([
                "",
                "ENCODING CLEANUP",
                "-" * 40,
            ])
            for result in encoding_issues:
                report_lines.append(
                    f"  • {result['table_name']}: {result['dropped_bytes']:,} bytes "
                    f"in {result.get('affected_rows', 0):,} rows"
                )

        failures = [r for r in transfer_results if r.get('error')]
        if failures:
            report_lines.extend([
                "",
                "FAILED TRANSFERS",
                "-" * 40,
            ])
            for result in failures:
                report_lines.append(f"  • {result['table_name']}: {result['error']}")

    # Footer
    report_lines.extend([
        "",
        "=" * 80,
        "END OF REPORT",
        "=" * 80,
    ])

    return "\n".join(report_lines)
