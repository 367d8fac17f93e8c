#!/usr/bin/env python3
"""
Uniqueness Resolver
Pre-computes one unique value tuple per source row for tables with unique
indexes, letting the engine's unique index reject collisions.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

from .connection import SqlExecutor
from .exceptions import UniqueViolationError, UniquenessExhaustedError
from .literals import canonical_key, qualified_name, quote_identifier, to_sql_literal
from .masking_config import MaskingColumnSpec, MaskingTableSpec


@dataclass
class RetryResult:
    """Outcome of a bounded retry loop."""
    value: Any
    attempts: int
    accepted: bool


def retry_until_accepted(
    generate: Callable[[], Any],
    attempt: Callable[[Any], Any],
    is_retryable: Callable[[Exception], bool],
    limit: int
) -> RetryResult:
    """
    Generate candidates until one is accepted or the limit is reached.

    Errors rejected by is_retryable propagate unchanged.
    """
    attempts = 0
    while attempts < limit:
        attempts += 1
        candidate = generate()
        try:
            attempt(candidate)
        except Exception as e:
            if is_retryable(e):
                continue
            raise
        return RetryResult(value=candidate, attempts=attempts, accepted=True)

    return RetryResult(value=None, attempts=attempts, accepted=False)


class UniquenessResolver:
    """
    Builds the per-table unique assignment scratch table.

    Rows are numbered 1..N in fetch order; row N of the masked table receives
    the tuple stored under RowNr N.
    """

    def __init__(
        self,
        executor: SqlExecutor,
        database: str,
        value_factory: Callable[[MaskingColumnSpec], Any],
        work_database: str = "tempdb",
        dry_run: bool = False
    ):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.executor = executor
        self.database = database
        self.value_factory = value_factory
        self.work_database = work_database
        self.dry_run = dry_run
        self._assignments: Dict[str, Dict[int, Dict[str, Any]]] = {}

    def scratch_table_name(self, table_spec: MaskingTableSpec) -> str:
        return qualified_name(
            self.work_database, 'dbo',
            f"{self.database}_{table_spec.schema_name}_{table_spec.name}_unique"
        )

    def _execute(self, sql: str) -> None:
        if self.dry_run:
            self.logger.debug(f"What if: {sql}")
            return
        self.executor.execute_non_query(sql)

    def build_unique_assignments(
        self,
        table_spec: MaskingTableSpec,
        unique_columns: List[MaskingColumnSpec],
        row_count: int,
        retry_limit: int = 1000,
        index_groups: Optional[Sequence[Sequence[str]]] = None
    ) -> str:
        """
        Create and fill the scratch table for one table.

        Args:
            table_spec: Table being masked
            unique_columns: Masked columns taking part in a unique index
            row_count: Number of rows that will be masked
            retry_limit: Consecutive collisions tolerated per row
            index_groups: Column groups that must be unique together,
                defaults to all unique columns as one group

        Returns:
            Qualified scratch table name

        Raises:
            UniquenessExhaustedError: a row could not get a unique tuple
        """
        name = self.scratch_table_name(table_spec)
        column_names = [column.name for column in unique_columns]
        groups = [list(group) for group in (index_groups or [column_names]) if group]

        self.drop(name)

        definitions = ', '.join(
            f"{quote_identifier(column.name)} {column.column_type} NULL" for column in unique_columns
        )
        self._execute(f"CREATE TABLE {name} ([RowNr] BIGINT NOT NULL, {definitions});")

        for number, group in enumerate(groups, start=1):
            self._execute(
                f"CREATE UNIQUE NONCLUSTERED INDEX [UIX_{table_spec.name}_unique_{number}] ON {name} "
                f"({', '.join(quote_identifier(column) for column in group)});"
            )

        seen: List[Set[Tuple]] = [set() for _ in groups]
        assignments: Dict[int, Dict[str, Any]] = {}
        insert_columns = ', '.join(['[RowNr]'] + [quote_identifier(column) for column in column_names])

        def generate() -> Dict[str, Any]:
            return {column.name: self.value_factory(column) for column in unique_columns}

        for row_number in range(1, row_count + 1):

            def attempt(values: Dict[str, Any], row_number: int = row_number) -> None:
                keys = [tuple(canonical_key(values[column]) for column in group) for group in groups]
                if any(key in seen[index] for index, key in enumerate(keys)):
                    raise UniqueViolationError(f"Duplicate generated tuple for row {row_number}")

                literals = ', '.join(
                    [str(row_number)] + [to_sql_literal(values[column.name], column.column_type) for column in unique_columns]
                )
                self._execute(f"INSERT INTO {name} ({insert_columns}) VALUES ({literals});")

                for index, key in enumerate(keys):
                    seen[index].add(key)

            result = retry_until_accepted(
                generate, attempt,
                lambda e: isinstance(e, UniqueViolationError),
                retry_limit
            )
            if not result.accepted:
                raise UniquenessExhaustedError(table_spec.full_name, row_number, result.attempts)

            if result.attempts > 1:
                self.logger.debug(f"Row {row_number} of {table_spec.full_name} needed {result.attempts} attempts")
            assignments[row_number] = result.value

        self._execute(
            f"CREATE NONCLUSTERED INDEX [NIX_{table_spec.name}_unique_RowNr] ON {name} ([RowNr]);"
        )

        self._assignments[name] = assignments
        self.logger.info(f"Generated {row_count} unique value rows for {table_spec.full_name}")
        return name

    def load_assignments(self, name: str) -> Dict[int, Dict[str, Any]]:
        """Row number -> column -> generated value."""
        if self.dry_run:
            return dict(self._assignments.get(name, {}))

        rows = self.executor.execute_query(f"SELECT * FROM {name} ORDER BY [RowNr]")
        return {
            int(row['RowNr']): {column: value for column, value in row.items() if column != 'RowNr'}
            for row in rows
        }

    def drop(self, name: str) -> None:
        self._execute(f"IF OBJECT_ID(N'{name}') IS NOT NULL DROP TABLE {name};")
        self._assignments.pop(name, None)
