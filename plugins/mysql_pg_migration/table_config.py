"""
Table Configuration Utility Module

This module holds the static partition of source tables into pgloader
batches, the list of oversized tables moved by the streaming path, and the
checks that keep both in step with the live MySQL table list.
"""

import re
from typing import Dict, Iterable, List, Optional
import logging

logger = logging.getLogger(__name__)

# Tables pgloader never touches. text_content goes through the streaming
# path; the rest are not migrated.
ALWAYS_EXCLUDE = (
    "text_content",
    "project_data",
    "token_usage",
    "pipeline_step",
    "project_index_v2",
    "project_deploy_key",
    "benchmark_case_run",
    "style_config_learn_task",
    "predefined_style",
    "user_style_configs",
    "gaia_benchmark_case_result",
    "benchmark_run",
    "ask_user_response",
    "gaia_benchmark_round_result",
    "dbpaas_upsert_record",
    "env_config",
    "project_notion_auth",
    "signup_invite_code",
)

# Tables moved by data_transfer instead of (or in addition to) pgloader
LARGE_TABLES = (
    "text_content",
    "pipeline_snapshot",
)


def tables_to_regex(tables: Iterable[str]) -> str:
    """
    Convert table names to a pgloader regex list.

    Example:
        tables_to_regex(["a", "b"]) -> "~/^a$/, ~/^b$/"
    """
    return ', '.join(f"~/^{table}$/" for table in tables)


class TableFilter:
    """
    A pgloader table filter built from exact names and regex patterns.

    Renders as INCLUDING ONLY TABLE NAMES MATCHING ... or, with
    exclude=True, EXCLUDING TABLE NAMES MATCHING ...
    """

    def __init__(self, names: Iterable[str] = (), patterns: Iterable[str] = (), exclude: bool = False):
        """
        Args:
            names: Exact table names
            patterns: Regular expressions, unanchored as in pgloader
            exclude: Match every table except the listed ones
        """
        self.names = list(names)
        self.patterns = list(patterns)
        self.exclude = exclude
        self._compiled = [re.compile(pattern) for pattern in self.patterns]

        if not self.names and not self.patterns:
            raise ValueError("TableFilter needs at least one table name or pattern")

    def _listed(self, table_name: str) -> bool:
        return table_name in self.names or any(p.search(table_name) for p in self._compiled)

    def matches(self, table_name: str) -> bool:
        """Whether pgloader would load table_name under this filter."""
        listed = self._listed(table_name)
        return not listed if self.exclude else listed

    def render(self) -> str:
        """Render the pgloader load-file clause."""
        parts = [tables_to_regex(self.names)] if self.names else []
        parts.extend(f"~/{pattern}/" for pattern in self.patterns)
        keyword = "EXCLUDING TABLE NAMES MATCHING" if self.exclude else "INCLUDING ONLY TABLE NAMES MATCHING"
        return f"{keyword} {', '.join(parts)}"

    def __repr__(self) -> str:
        mode = "exclude" if self.exclude else "include"
        return f"TableFilter({mode}, names={self.names}, patterns={self.patterns})"


class Batch:
    """One pgloader batch: a number, a description and a table filter."""

    def __init__(self, number: int, description: str, table_filter: TableFilter):
        self.number = number
        self.description = description
        self.table_filter = table_filter

    @property
    def display_tables(self) -> str:
        if self.table_filter.exclude:
            return "all remaining tables"
        return ' '.join(self.table_filter.names + self.table_filter.patterns)

    def __repr__(self) -> str:
        return f"Batch({self.number}, {self.description!r}, {self.table_filter!r})"


BATCH_2_TABLES = ("pipeline_snapshot",)
BATCH_3_TABLES = ("pipeline_result_snippet",)
BATCH_4_TABLES = ("pipeline_result_event", "project_index", "pipeline")


def build_batches() -> Dict[int, Batch]:
    """
    Build the batch map.

    Batch 5 is everything left over: it excludes ALWAYS_EXCLUDE plus the
    tables of batches 2-4, so every table is defined in exactly one place.

    Raises:
        ValueError: If the explicit table lists overlap
    """
    explicit = {
        'ALWAYS_EXCLUDE': ALWAYS_EXCLUDE,
        'batch 2': BATCH_2_TABLES,
        'batch 3': BATCH_3_TABLES,
        'batch 4': BATCH_4_TABLES,
    }
    validate_disjoint(explicit)

    return {
        2: Batch(2, "large table (455MB)", TableFilter(BATCH_2_TABLES)),
        3: Batch(3, "large table (397MB)", TableFilter(BATCH_3_TABLES)),
        4: Batch(4, "medium-large tables (~180MB)", TableFilter(BATCH_4_TABLES)),
        5: Batch(
            5,
            "all remaining small tables (~170MB)",
            TableFilter(ALWAYS_EXCLUDE + BATCH_2_TABLES + BATCH_3_TABLES + BATCH_4_TABLES, exclude=True),
        ),
    }


def validate_disjoint(table_lists: Dict[str, Iterable[str]]) -> None:
    """
    Ensure no table name appears in more than one list.

    Args:
        table_lists: Mapping of list label to table names

    Raises:
        ValueError: Naming every table defined twice
    """
    seen: Dict[str, str] = {}
    duplicates = []
    for label, tables in table_lists.items():
        for table in tables:
            if table in seen:
                duplicates.append(f"{table} ({seen[table]}, {label})")
            else:
                seen[table] = label

    if duplicates:
        raise ValueError(f"Tables defined in more than one batch list: {', '.join(duplicates)}")


BATCHES = build_batches()


def get_batch(batch_number: int) -> Batch:
    """
    Look up a batch by number.

    Raises:
        ValueError: If no such batch exists
    """
    try:
        return BATCHES[batch_number]
    except KeyError:
        raise ValueError(
            f"Unknown batch {batch_number}: must be one of {', '.join(str(n) for n in sorted(BATCHES))}"
        )


def check_partition(
    live_tables: Iterable[str],
    batches: Optional[Dict[int, Batch]] = None,
) -> Dict[str, List[str]]:
    """
    Check the batch definitions against the live source table list.

    Every live table should be loaded by exactly one batch, be streamed,
    or be deliberately excluded.

    Args:
        live_tables: Table names currently in the source database
        batches: Batch map (defaults to BATCHES)

    Returns:
        Dict with:
        - uncovered: live tables no batch, streaming list or exclusion covers
        - duplicated: live tables loaded by more than one batch
        - streamed_and_batched: LARGE_TABLES also loaded by a batch
        - not_migrated: excluded tables that the streaming path skips too
        - missing: configured table names that do not exist live
    """
    batches = batches or BATCHES
    live = list(live_tables)
    live_set = set(live)

    uncovered = []
    duplicated = []
    streamed_and_batched = []
    not_migrated = []

    for table in live:
        loaded_by = [n for n, batch in sorted(batches.items()) if batch.table_filter.matches(table)]
        streamed = table in LARGE_TABLES
        excluded = table in ALWAYS_EXCLUDE

        if len(loaded_by) > 1:
            duplicated.append(table)
        if loaded_by and streamed:
            streamed_and_batched.append(table)
        if not loaded_by and not streamed and not excluded:
            uncovered.append(table)
        if excluded and not streamed:
            not_migrated.append(table)

    configured = set(ALWAYS_EXCLUDE) | set(LARGE_TABLES)
    for batch in batches.values():
        if not batch.table_filter.exclude:
            configured.update(batch.table_filter.names)
    missing = sorted(configured - live_set)

    result = {
        'uncovered': uncovered,
        'duplicated': duplicated,
        'streamed_and_batched': streamed_and_batched,
        'not_migrated': not_migrated,
        'missing': missing,
    }

    if uncovered or duplicated:
        logger.warning(
            f"✗ Batch partition incomplete: {len(uncovered)} uncovered, {len(duplicated)} duplicated"
        )
    else:
        logger.info(f"✓ Batch partition covers all {len(live):,} live tables")
    if missing:
        logger.warning(f"Configured tables not found in source: {', '.join(missing)}")

    return result
