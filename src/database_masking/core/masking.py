#!/usr/bin/env python3
"""
Data Masking Executor
Masks live SQL Server tables in place from a masking configuration using
batched row-by-row UPDATE statements, Action and Composite expressions,
deterministic mappings and pre-computed unique assignments.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .config import InstanceConfig
from .connection import SqlExecutor, connect
from .dictionary import DeterministicValueStore
from .exceptions import (
    BatchExecutionError, ConfigLoadError, DatabaseConnectionError, SqlExecutionError,
    UniquenessExhaustedError, UnsupportedColumnTypeError, ValueConversionError
)
from .literals import canonical_key, qualified_name, quote_identifier, to_sql_literal
from .masking_config import (
    UNSUPPORTED_TYPE, ColumnGenerationStrategy, MaskingColumnSpec, MaskingDocument,
    MaskingTableSpec, new_column_value, validate_config
)
from .randomizer import DEFAULT_CHARACTER_STRING, RandomizedValueService
from .schema import SchemaReader, TableSchema
from .uniqueness import UniquenessResolver


TEMPORARY_IDENTITY_COLUMN = "MaskingID"


class MaskingStatus(str, Enum):
    """Outcome of masking one table."""
    SUCCESSFUL = "Successful"
    FAILED = "Failed"
    WHATIF = "WhatIf"
    SKIPPED = "Skipped"


@dataclass
class MaskingOptions:
    """Run wide masking settings."""
    batch_size: int = 1000
    retry: int = 1000
    modulus_factor: int = 10
    max_value: Optional[int] = None
    exact_length: bool = False
    character_string: str = DEFAULT_CHARACTER_STRING
    locale: str = "en_US"
    command_timeout: int = 300
    tables: List[str] = field(default_factory=list)
    columns: List[str] = field(default_factory=list)
    exclude_tables: List[str] = field(default_factory=list)
    exclude_columns: List[str] = field(default_factory=list)
    dictionary_file_path: List[str] = field(default_factory=list)
    dictionary_export_path: Optional[str] = None
    dry_run: bool = False
    confirm: Optional[Callable[[str], bool]] = None
    work_database: str = "tempdb"
    allowed_types: List[str] = field(default_factory=list)
    seed: Optional[int] = None


@dataclass
class TableMaskResult:
    computer_name: str
    instance_name: str
    sql_instance: str
    database: str
    schema: str
    table: str
    columns: List[str]
    rows: int
    elapsed: float
    status: MaskingStatus
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'ComputerName': self.computer_name,
            'InstanceName': self.instance_name,
            'SqlInstance': self.sql_instance,
            'Database': self.database,
            'Schema': self.schema,
            'Table': self.table,
            'Columns': ', '.join(self.columns),
            'Rows': self.rows,
            'Elapsed': f"{self.elapsed:.2f}s",
            'Status': self.status.value,
        }


@dataclass
class MaskingContext:
    """Per invocation masking state."""
    document: MaskingDocument
    options: MaskingOptions = field(default_factory=MaskingOptions)
    service: Optional[RandomizedValueService] = None
    results: List[TableMaskResult] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def __post_init__(self):
        if self.service is None:
            self.service = RandomizedValueService(
                locale=self.options.locale,
                character_string=self.options.character_string,
                seed=self.options.seed
            )


def _selected(name: str, full_name: Optional[str], include: List[str], exclude: List[str]) -> bool:
    names = {name.lower()}
    if full_name:
        names.add(full_name.lower())
    if include and not names & {entry.lower() for entry in include}:
        return False
    return not names & {entry.lower() for entry in exclude}


class DataMaskingExecutor:
    """
    In-place masking of one database at a time.

    Features:
    - Temporary identity column for unambiguous row updates
    - Static, deterministic, unique and randomized values per row
    - Action and Composite columns as single UPDATE statements
    - Batched execution with per-column failure isolation
    - Cleanup of temporary schema state on success and failure
    """

    def __init__(self, context: MaskingContext):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.context = context
        self.options = context.options
        self.service = context.service

    def select_tables(self, tables: Optional[Iterable[MaskingTableSpec]] = None) -> List[MaskingTableSpec]:
        """Configured tables and columns after the include/exclude filters."""
        selected = []
        for table in tables if tables is not None else self.context.document.tables:
            if not _selected(table.name, table.full_name, self.options.tables, self.options.exclude_tables):
                continue
            columns = [
                column for column in table.columns
                if _selected(column.name, None, self.options.columns, self.options.exclude_columns)
            ]
            if not columns:
                self.logger.info(f"No columns left to mask for table {table.full_name}")
                continue
            selected.append(table.model_copy(update={'columns': columns}))
        return selected

    def preflight(self, table_specs: List[MaskingTableSpec], schemas: Dict[Tuple[str, str], TableSchema]) -> None:
        """
        Reject columns that can never be masked before anything is changed.

        Raises:
            UnsupportedColumnTypeError: computed, identity, foreign key or
                unsupported data type columns in the configuration
        """
        allowed = {entry.lower() for entry in self.options.allowed_types}
        problems = []
        for table_spec in table_specs:
            table_schema = schemas.get((table_spec.schema_name.lower(), table_spec.name.lower()))
            if table_schema is None:
                continue
            for column in table_spec.columns:
                column_schema = table_schema.get_column(column.name)
                if column_schema is None:
                    continue
                reason = column_schema.unsupported_reason
                if reason is None:
                    continue
                if reason == column_schema.data_type.lower() and (
                        column.name.lower() in allowed or f"{table_spec.full_name}.{column.name}".lower() in allowed):
                    continue
                problems.append(f"{table_spec.full_name}.{column.name} ({reason})")

        if problems:
            raise UnsupportedColumnTypeError(
                f"Unsupported columns in masking configuration: {', '.join(problems)}", problems
            )

    def mask_database(
        self,
        executor: SqlExecutor,
        database: str,
        tables: Optional[Iterable[MaskingTableSpec]] = None,
        store: Optional[DeterministicValueStore] = None,
        schema_reader: Optional[SchemaReader] = None
    ) -> List[TableMaskResult]:
        """
        Mask the configured tables of one database.

        Args:
            executor: Connection to the instance
            database: Database to mask
            tables: Table specs, defaults to the context document
            store: Deterministic value store for the instance run; when
                omitted a store is created for this call and dropped after it
            schema_reader: Catalog reader, defaults to one over the executor

        Returns:
            One result per table, also appended to the context

        Raises:
            UnsupportedColumnTypeError: before any table is touched
            UniquenessExhaustedError: after cleanup of the failing table
            DatabaseConnectionError: after cleanup of the failing table
        """
        table_specs = self.select_tables(tables)
        reader = schema_reader or SchemaReader(executor)
        schemas = {
            (schema.schema.lower(), schema.name.lower()): schema
            for schema in reader.get_tables(database, [spec.full_name for spec in table_specs])
        }

        self.preflight(table_specs, schemas)

        owns_store = store is None
        if owns_store:
            store = DeterministicValueStore(executor, self.options.work_database, self.options.dry_run)
            store.ensure_store()

        results = []
        try:
            for table_spec in table_specs:
                table_schema = schemas.get((table_spec.schema_name.lower(), table_spec.name.lower()))
                if table_schema is None:
                    message = f"Table {table_spec.full_name} is not present in {database}"
                    self.logger.warning(message)
                    self.context.errors.append(message)
                    continue

                result = self.mask_table(executor, database, table_spec, table_schema, store)
                results.append(result)
        finally:
            if owns_store:
                store.drop_store()

        return results

    def _new_result(self, executor: SqlExecutor, database: str, table_spec: MaskingTableSpec,
                    columns: List[str], rows: int, started: float, status: MaskingStatus,
                    errors: Optional[List[str]] = None) -> TableMaskResult:
        result = TableMaskResult(
            computer_name=executor.computer_name,
            instance_name=executor.instance_name,
            sql_instance=executor.server,
            database=database,
            schema=table_spec.schema_name,
            table=table_spec.name,
            columns=columns,
            rows=rows,
            elapsed=time.monotonic() - started,
            status=status,
            errors=errors or []
        )
        self.context.results.append(result)
        return result

    def mask_table(
        self,
        executor: SqlExecutor,
        database: str,
        table_spec: MaskingTableSpec,
        table_schema: TableSchema,
        store: DeterministicValueStore
    ) -> TableMaskResult:
        started = time.monotonic()
        columns = [column for column in table_spec.columns if table_schema.get_column(column.name) is not None]
        for column in table_spec.columns:
            if column not in columns:
                self.logger.warning(f"Column {column.name} is not present in {table_spec.full_name}, skipping")
        column_names = [column.name for column in columns]
        table_name = qualified_name(database, table_spec.schema_name, table_spec.name)

        if self.options.dry_run:
            self.logger.info(f"What if: masking {len(columns)} columns of {database}.{table_spec.full_name}")
            return self._new_result(executor, database, table_spec, column_names, table_schema.row_count,
                                    started, MaskingStatus.WHATIF)

        if self.options.confirm is not None and not self.options.confirm(
                f"Mask {len(columns)} columns of {database}.{table_spec.full_name} on {executor.server}"):
            self.logger.info(f"Masking of {table_spec.full_name} not confirmed, skipping")
            return self._new_result(executor, database, table_spec, column_names, 0, started, MaskingStatus.SKIPPED)

        self.logger.info(f"Masking table {database}.{table_spec.full_name}")

        errors: List[str] = []
        identity_added = False
        index_added = False
        scratch_table = None
        resolver = UniquenessResolver(
            executor, database,
            lambda column: new_column_value(
                self.service, column,
                max_value=self.options.max_value,
                character_string=self.options.character_string
            ),
            work_database=self.options.work_database
        )
        identity = table_schema.identity_column.name if table_schema.identity_column else TEMPORARY_IDENTITY_COLUMN
        rows: List[Dict[str, Any]] = []

        try:
            if table_schema.identity_column is None:
                self._add_identity(executor, table_name)
                identity_added = True
                self._add_identity_index(executor, table_spec, table_name)
                index_added = True

            row_columns = [
                column for column in columns
                if column.strategy in (ColumnGenerationStrategy.STATIC, ColumnGenerationStrategy.RANDOMIZED)
            ]
            rows = self._fetch_rows(executor, table_spec, table_name, identity, row_columns)

            unique_values: Dict[int, Dict[str, Any]] = {}
            unique_names = set()
            if table_spec.has_unique_index or table_schema.unique_indexes:
                unique_columns, groups = self._unique_columns(table_schema, row_columns)
                if unique_columns and rows:
                    scratch_table = resolver.scratch_table_name(table_spec)
                    resolver.build_unique_assignments(
                        table_spec, unique_columns, len(rows), self.options.retry, groups
                    )
                    unique_values = resolver.load_assignments(scratch_table)
                    unique_names = {column.name.lower() for column in unique_columns}

            for column in row_columns:
                error = self._mask_column(
                    executor, table_spec, table_name, identity, column, rows, unique_values, unique_names, store
                )
                if error:
                    errors.append(error)

            for column in columns:
                if column.strategy == ColumnGenerationStrategy.ACTION:
                    build_expression = self.action_expression
                elif column.strategy == ColumnGenerationStrategy.COMPOSITE:
                    build_expression = self.composite_expression
                else:
                    continue

                try:
                    expression = build_expression(column)
                except ValueConversionError as e:
                    message = f"Column {table_spec.full_name}.{column.name} abandoned: {e}"
                    self.logger.error(message)
                    errors.append(message)
                    continue

                error = self._run_single_update(executor, table_spec, table_name, identity, column, expression)
                if error:
                    errors.append(error)

        except (UniquenessExhaustedError, DatabaseConnectionError) as e:
            self.logger.error(f"Masking of {database}.{table_spec.full_name} aborted: {e}")
            errors.append(str(e))
            self._new_result(executor, database, table_spec, column_names, len(rows), started,
                             MaskingStatus.FAILED, errors)
            raise
        except (SqlExecutionError, ValueConversionError) as e:
            self.logger.error(f"Masking of {database}.{table_spec.full_name} failed: {e}")
            errors.append(str(e))
        finally:
            self._cleanup(executor, table_spec, table_name, scratch_table, identity_added, index_added)

        status = MaskingStatus.FAILED if errors else MaskingStatus.SUCCESSFUL
        self.logger.info(f"Masked {len(rows)} rows of {database}.{table_spec.full_name}: {status.value}")
        return self._new_result(executor, database, table_spec, column_names, len(rows), started, status, errors)

    def _add_identity(self, executor: SqlExecutor, table_name: str) -> None:
        self.logger.debug(f"Adding temporary identity column to {table_name}")
        executor.execute_non_query(
            f"ALTER TABLE {table_name} ADD {quote_identifier(TEMPORARY_IDENTITY_COLUMN)} BIGINT IDENTITY(1, 1) NOT NULL;",
            self.options.command_timeout
        )

    def _add_identity_index(self, executor: SqlExecutor, table_spec: MaskingTableSpec, table_name: str) -> None:
        executor.execute_non_query(
            f"CREATE NONCLUSTERED INDEX {quote_identifier(f'NIX_{table_spec.name}_{TEMPORARY_IDENTITY_COLUMN}')} "
            f"ON {table_name} ({quote_identifier(TEMPORARY_IDENTITY_COLUMN)});",
            self.options.command_timeout
        )

    def _fetch_rows(self, executor: SqlExecutor, table_spec: MaskingTableSpec, table_name: str,
                    identity: str, columns: List[MaskingColumnSpec]) -> List[Dict[str, Any]]:
        if table_spec.filter_query:
            rows = executor.execute_query(table_spec.filter_query, self.options.command_timeout)
            if rows and identity not in rows[0]:
                raise SqlExecutionError(f"FilterQuery for {table_spec.full_name} does not return column {identity}")
            return rows

        projection = ', '.join([quote_identifier(identity)] + [quote_identifier(column.name) for column in columns])
        return executor.execute_query(f"SELECT {projection} FROM {table_name}", self.options.command_timeout)

    @staticmethod
    def _unique_columns(table_schema: TableSchema,
                        columns: List[MaskingColumnSpec]) -> Tuple[List[MaskingColumnSpec], List[List[str]]]:
        """Masked randomized columns covered by unique indexes, plus one group per index."""
        by_name = {
            column.name.lower(): column for column in columns
            if column.strategy == ColumnGenerationStrategy.RANDOMIZED
        }
        groups = []
        for index_columns in table_schema.unique_indexes.values():
            group = [by_name[name.lower()].name for name in index_columns if name.lower() in by_name]
            if group and group not in groups:
                groups.append(group)

        names = []
        for group in groups:
            for name in group:
                if name not in names:
                    names.append(name)
        return [by_name[name.lower()] for name in names], groups

    def column_value(
        self,
        column: MaskingColumnSpec,
        original: Any,
        row_number: int,
        unique_row: Optional[Dict[str, Any]],
        store: DeterministicValueStore
    ) -> Any:
        """
        Replacement value for one row, by priority: static, kept null,
        unique assignment, deterministic mapping, modulus null, fresh value.
        """
        if column.strategy == ColumnGenerationStrategy.STATIC:
            return column.static_value

        if column.keep_null and column.nullable and original is None:
            return None

        if unique_row is not None:
            for name, value in unique_row.items():
                if name.lower() == column.name.lower():
                    return value

        if column.deterministic and original is not None:
            existing = store.lookup(original, column.column_type)
            if existing is not None:
                return existing

        modulus = self.options.modulus_factor
        if column.nullable and column.keep_null and modulus and row_number % modulus == 0:
            return None

        value = new_column_value(
            self.service, column,
            value=original,
            max_value=self.options.max_value,
            exact_length=self.options.exact_length,
            character_string=self.options.character_string
        )

        if column.deterministic and original is not None:
            value = canonical_key(value)
            store.store(original, value, column.column_type)

        return value

    def _mask_column(
        self,
        executor: SqlExecutor,
        table_spec: MaskingTableSpec,
        table_name: str,
        identity: str,
        column: MaskingColumnSpec,
        rows: List[Dict[str, Any]],
        unique_values: Dict[int, Dict[str, Any]],
        unique_names: set,
        store: DeterministicValueStore
    ) -> Optional[str]:
        """Row by row masking of one column; returns an error message on failure."""
        self.logger.debug(f"Masking column {table_spec.full_name}.{column.name}")
        column_identifier = quote_identifier(column.name)
        batch: List[str] = []
        failed_batches = 0
        is_unique = column.name.lower() in unique_names

        try:
            for row_number, row in enumerate(rows, start=1):
                value = self.column_value(
                    column,
                    row.get(column.name),
                    row_number,
                    unique_values.get(row_number) if is_unique else None,
                    store
                )
                if value is None and not column.nullable:
                    raise ValueConversionError(
                        f"NULL is not allowed for column {column.name}", value, column.column_type
                    )

                batch.append(
                    f"UPDATE {table_name} SET {column_identifier} = {to_sql_literal(value, column.column_type)} "
                    f"WHERE {quote_identifier(identity)} = {int(row[identity])};"
                )

                if len(batch) >= self.options.batch_size:
                    failed_batches += self._flush(executor, table_spec, column, batch)
                    batch = []

            if batch:
                failed_batches += self._flush(executor, table_spec, column, batch)

        except ValueConversionError as e:
            message = f"Column {table_spec.full_name}.{column.name} abandoned: {e}"
            self.logger.error(message)
            return message

        if failed_batches:
            return f"{failed_batches} batch(es) failed for column {table_spec.full_name}.{column.name}"
        return None

    def _flush(self, executor: SqlExecutor, table_spec: MaskingTableSpec,
               column: MaskingColumnSpec, batch: List[str]) -> int:
        """Execute one batch; returns 1 when it failed."""
        try:
            try:
                executor.execute_non_query('\n'.join(batch), self.options.command_timeout)
            except SqlExecutionError as e:
                raise BatchExecutionError(
                    f"Batch of {len(batch)} updates for {table_spec.full_name}.{column.name} failed: {e}",
                    len(batch)
                ) from e
        except BatchExecutionError as e:
            self.logger.error(str(e))
            return 1
        return 0

    def _restriction(self, table_spec: MaskingTableSpec, identity: str) -> str:
        if not table_spec.filter_query:
            return ""
        quoted = quote_identifier(identity)
        return f" WHERE {quoted} IN (SELECT {quoted} FROM ({table_spec.filter_query}) AS [filter])"

    def _run_single_update(self, executor: SqlExecutor, table_spec: MaskingTableSpec, table_name: str,
                           identity: str, column: MaskingColumnSpec, expression: str) -> Optional[str]:
        statement = (
            f"UPDATE {table_name} SET {quote_identifier(column.name)} = {expression}"
            f"{self._restriction(table_spec, identity)};"
        )
        try:
            executor.execute_non_query(statement, self.options.command_timeout)
        except SqlExecutionError as e:
            message = f"{column.strategy.value} update for {table_spec.full_name}.{column.name} failed: {e}"
            self.logger.error(message)
            return message
        return None

    def action_expression(self, column: MaskingColumnSpec) -> str:
        """SQL expression applying a column action to the current value."""
        action = column.action
        category = action.category.lower()
        action_type = action.type.lower()
        current = quote_identifier(column.name)

        if action_type == 'nullify':
            return 'NULL'
        if action_type == 'set':
            return to_sql_literal(action.value, column.column_type)

        if category == 'datetime':
            part = (action.sub_category or 'day').lower()
            amount = int(to_sql_literal(action.value, 'int'))
            if action_type == 'subtract':
                amount = -amount
            return f"DATEADD({part}, {amount}, {current})"

        if category == 'string':
            return f"{current} + {to_sql_literal(action.value, column.column_type)}"

        operators = {'add': '+', 'subtract': '-', 'multiply': '*', 'divide': '/'}
        return f"{current} {operators[action_type]} {to_sql_literal(action.value, 'decimal')}"

    def composite_expression(self, column: MaskingColumnSpec) -> str:
        """Concatenation of column references, literals and generated values."""
        parts = []
        for item in column.composite:
            item_type = item.type.lower()
            if item_type == 'column':
                parts.append(f"ISNULL(CAST({quote_identifier(str(item.value))} AS NVARCHAR(MAX)), '')")
                continue
            if item_type == 'static':
                value = item.value
            else:
                value = new_column_value(
                    self.service, column,
                    max_value=self.options.max_value,
                    character_string=self.options.character_string,
                    masking_type=item.type,
                    sub_type=item.sub_type
                )
            parts.append(f"ISNULL({to_sql_literal(canonical_key(value), 'nvarchar')}, '')")
        return ' + '.join(parts)

    def _cleanup(self, executor: SqlExecutor, table_spec: MaskingTableSpec, table_name: str,
                 scratch_table: Optional[str], identity_added: bool, index_added: bool) -> None:
        statements = []
        if scratch_table:
            statements.append(f"IF OBJECT_ID(N'{scratch_table}') IS NOT NULL DROP TABLE {scratch_table};")
        if index_added:
            index = quote_identifier(f"NIX_{table_spec.name}_{TEMPORARY_IDENTITY_COLUMN}")
            statements.append(f"DROP INDEX {index} ON {table_name};")
        if identity_added:
            statements.append(f"ALTER TABLE {table_name} DROP COLUMN {quote_identifier(TEMPORARY_IDENTITY_COLUMN)};")

        for statement in statements:
            try:
                executor.execute_non_query(statement, self.options.command_timeout)
            except (SqlExecutionError, DatabaseConnectionError) as e:
                message = f"Cleanup of {table_spec.full_name} failed: {statement} ({e})"
                self.logger.error(message)
                self.context.errors.append(message)


def check_document(context: MaskingContext) -> None:
    """
    Validate the configuration before any connection is made.

    Raises:
        UnsupportedColumnTypeError: unsupported column types
        ConfigLoadError: any other configuration problem
    """
    errors = validate_config(context.document, context.options.allowed_types, context.service)
    if not errors:
        return

    unsupported = [str(error) for error in errors if error.code == UNSUPPORTED_TYPE]
    if unsupported:
        raise UnsupportedColumnTypeError(f"Unsupported column types: {'; '.join(unsupported)}", unsupported)
    raise ConfigLoadError(f"Invalid masking configuration: {'; '.join(str(error) for error in errors)}")


def invoke_data_masking(
    context: MaskingContext,
    instances: Iterable[InstanceConfig],
    databases: Optional[List[str]] = None,
    connector: Callable[[InstanceConfig], SqlExecutor] = connect
) -> List[TableMaskResult]:
    """
    Mask the configured databases on every instance.

    The deterministic value store lives for one instance run: it is created
    and filled from the dictionary files before the first database and
    dropped after the last one.

    Args:
        context: Masking context with document and options
        instances: Target instances
        databases: Databases to mask, defaults to the document name
        connector: Opens an executor for an instance

    Returns:
        All table results of the run
    """
    logger = logging.getLogger(__name__)
    check_document(context)

    databases = databases or ([context.document.name] if context.document.name else [])
    if not databases:
        raise ConfigLoadError("No database given and the masking configuration has no Name")

    masking_executor = DataMaskingExecutor(context)

    for instance in instances:
        executor = None
        store = None
        try:
            executor = connector(instance)
            store = DeterministicValueStore(executor, context.options.work_database, context.options.dry_run)
            store.ensure_store()
            for path in context.options.dictionary_file_path:
                store.import_dictionary(path)

            reader = SchemaReader(executor)
            for database in databases:
                if not reader.database_exists(database):
                    message = f"Database {database} not found on {executor.server}"
                    logger.warning(message)
                    context.errors.append(message)
                    continue

                masking_executor.mask_database(executor, database, store=store, schema_reader=reader)

                if context.options.dictionary_export_path:
                    store.export_dictionary(context.options.dictionary_export_path, executor.server, database)

        except DatabaseConnectionError as e:
            message = f"Failure on {instance.name}: {e}"
            logger.error(message)
            context.errors.append(message)
        finally:
            if store is not None:
                try:
                    store.drop_store()
                except (SqlExecutionError, DatabaseConnectionError) as e:
                    logger.error(f"Could not drop deterministic value store: {e}")
            if executor is not None:
                executor.close()

    return context.results
