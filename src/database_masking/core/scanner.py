#!/usr/bin/env python3
"""
PII Scanner
Classifies columns as PII by column name (known-name rules), by sampled data
(pattern rules) or by data type, without modifying the target database.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from .config import InstanceConfig
from .connection import SqlExecutor, connect
from .exceptions import DatabaseConnectionError, SqlExecutionError
from .literals import qualified_name, quote_identifier
from .rules import RuleCatalog
from .schema import ColumnSchema, SchemaReader, TableSchema


FOUND_WITH_KNOWN_NAME = "KnownName"
FOUND_WITH_PATTERN = "Pattern"
FOUND_WITH_DATA_TYPE = "DataType"

# TRIM cannot be applied to the legacy LOB types
TRIMMABLE_TYPES = {'char', 'varchar', 'nchar', 'nvarchar'}


@dataclass(frozen=True)
class ClassificationResult:
    """Why a column was flagged as PII."""
    computer_name: str
    instance_name: str
    sql_instance: str
    database: str
    schema: str
    table: str
    column: str
    found_with: str
    pii_category: str
    pii_name: str
    masking_type: Optional[str] = None
    masking_sub_type: Optional[str] = None
    pattern: Optional[str] = None
    country: Optional[str] = None
    country_code: Optional[str] = None
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Report layout used by the CLI and JSON output."""
        return {
            'ComputerName': self.computer_name,
            'InstanceName': self.instance_name,
            'SqlInstance': self.sql_instance,
            'Database': self.database,
            'Schema': self.schema,
            'Table': self.table,
            'Column': self.column,
            'PII Category': self.pii_category,
            'PII Name': self.pii_name,
            'FoundWith': self.found_with,
            'MaskingType': self.masking_type,
            'MaskingSubType': self.masking_sub_type,
            'Pattern': self.pattern,
            'Country': self.country,
            'CountryCode': self.country_code,
            'Description': self.description,
        }


@dataclass
class ScanContext:
    """Per invocation scan state; results only grow through add_result."""
    catalog: RuleCatalog
    sample_size: int = 100
    results: List[ClassificationResult] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    _seen: set = field(default_factory=set, repr=False)

    def add_result(self, result: ClassificationResult) -> bool:
        if result in self._seen:
            return False
        self._seen.add(result)
        self.results.append(result)
        return True


class PiiScanner:
    """
    Column classifier for SQL Server databases.

    Features:
    - Known-name rules matched against column names
    - Pattern rules matched against sampled values
    - Data type classification for geography columns
    - Per-column failure isolation
    """

    def __init__(self, context: ScanContext):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.context = context

    def scan_database(
        self,
        executor: SqlExecutor,
        database: str,
        tables: Optional[List[str]] = None,
        exclude_tables: Optional[List[str]] = None,
        columns: Optional[List[str]] = None,
        exclude_columns: Optional[List[str]] = None,
        sample_size: Optional[int] = None,
        schema_reader: Optional[SchemaReader] = None
    ) -> List[ClassificationResult]:
        """
        Classify every column of a database.

        Args:
            executor: Connection to the instance
            database: Database to scan
            tables: Only scan these tables
            exclude_tables: Skip these tables
            columns: Only scan these columns
            exclude_columns: Skip these columns
            sample_size: Overrides the context sample size
            schema_reader: Catalog reader, defaults to one over the executor

        Returns:
            Classification results accumulated in the context
        """
        if sample_size is None:
            sample_size = self.context.sample_size

        reader = schema_reader or SchemaReader(executor)
        table_schemas = reader.get_tables(database, tables)

        excluded_tables = {name.lower() for name in exclude_tables or []}
        wanted_columns = {name.lower() for name in columns or []}
        excluded_columns = {name.lower() for name in exclude_columns or []}

        for table in table_schemas:
            if table.name.lower() in excluded_tables or table.full_name.lower() in excluded_tables:
                self.logger.debug(f"Skipping excluded table {table.full_name}")
                continue

            self.logger.info(f"Scanning table {database}.{table.full_name}")

            for column in table.columns:
                name = column.name.lower()
                if wanted_columns and name not in wanted_columns:
                    continue
                if name in excluded_columns:
                    continue

                self._scan_column(executor, database, table, column, sample_size)

        return self.context.results

    def _result(
        self,
        executor: SqlExecutor,
        database: str,
        table: TableSchema,
        column: ColumnSchema,
        **values: Any
    ) -> ClassificationResult:
        return ClassificationResult(
            computer_name=executor.computer_name,
            instance_name=executor.instance_name,
            sql_instance=executor.server,
            database=database,
            schema=table.schema,
            table=table.name,
            column=column.name,
            **values
        )

    def _scan_column(
        self,
        executor: SqlExecutor,
        database: str,
        table: TableSchema,
        column: ColumnSchema,
        sample_size: int
    ) -> None:
        if column.data_type.lower() == 'geography':
            self.context.add_result(self._result(
                executor, database, table, column,
                found_with=FOUND_WITH_DATA_TYPE,
                pii_category="Location",
                pii_name="Geography",
                masking_type="Address",
                masking_sub_type="Latitude"
            ))
            return

        for rule in self.context.catalog.known_names:
            if rule.matches(column.name):
                self.context.add_result(self._result(
                    executor, database, table, column,
                    found_with=FOUND_WITH_KNOWN_NAME,
                    pii_category=rule.category,
                    pii_name=rule.name,
                    masking_type=rule.masking_type,
                    masking_sub_type=rule.masking_sub_type
                ))

        if not self.context.catalog.patterns:
            return

        if table.row_count == 0:
            self.logger.info(f"Table {table.full_name} does not contain any rows, skipping pattern matching for column {column.name}")
            return

        try:
            values = self.sample_values(executor, database, table, column, sample_size)
        except (SqlExecutionError, DatabaseConnectionError) as e:
            message = f"Failed to sample {database}.{table.full_name}.{column.name}: {e}"
            self.logger.warning(message)
            self.context.errors.append(message)
            return

        if not values:
            self.logger.info(f"No sample data for column {table.full_name}.{column.name}, skipping pattern matching")
            return

        for rule in self.context.catalog.patterns:
            if rule.matches_any(values):
                self.context.add_result(self._result(
                    executor, database, table, column,
                    found_with=FOUND_WITH_PATTERN,
                    pii_category=rule.category,
                    pii_name=rule.name,
                    masking_type=rule.masking_type,
                    masking_sub_type=rule.masking_sub_type,
                    pattern=rule.pattern,
                    country=rule.country,
                    country_code=rule.country_code,
                    description=rule.description
                ))

    def sample_values(
        self,
        executor: SqlExecutor,
        database: str,
        table: TableSchema,
        column: ColumnSchema,
        sample_size: Optional[int] = None
    ) -> List[Any]:
        """Up to sample_size values from the column, trimmed when textual."""
        if sample_size is None:
            sample_size = self.context.sample_size
        expression = quote_identifier(column.name)
        if column.data_type.lower() in TRIMMABLE_TYPES:
            expression = f"LTRIM(RTRIM({expression}))"

        rows = executor.execute_query(
            f"SELECT TOP ({int(sample_size)}) {expression} AS [Value] "
            f"FROM {qualified_name(database, table.schema, table.name)}"
        )
        return [row['Value'] for row in rows if row['Value'] is not None]


def scan_instances(
    context: ScanContext,
    instances: Iterable[InstanceConfig],
    databases: Optional[List[str]] = None,
    exclude_databases: Optional[List[str]] = None,
    connector: Callable[[InstanceConfig], SqlExecutor] = connect,
    **filters: Any
) -> List[ClassificationResult]:
    """
    Scan several instances one after another.

    Databases default to every user database. A connection failure on one
    instance is recorded and the remaining instances are still scanned.
    Results are returned once all instances have been processed.
    """
    logger = logging.getLogger(__name__)
    scanner = PiiScanner(context)
    excluded = {name.lower() for name in exclude_databases or []}

    for instance in instances:
        executor = None
        try:
            executor = connector(instance)
            reader = SchemaReader(executor)
            names = databases or reader.list_databases()
            for database in names:
                if database.lower() in excluded:
                    continue
                if databases and not reader.database_exists(database):
                    logger.warning(f"Database {database} not found on {executor.server}")
                    continue
                logger.info(f"Scanning database {executor.server}.{database}")
                scanner.scan_database(executor, database, schema_reader=reader, **filters)
        except DatabaseConnectionError as e:
            message = f"Failure connecting to {instance.name}: {e}"
            logger.error(message)
            context.errors.append(message)
        finally:
            if executor is not None:
                executor.close()

    return context.results


def results_as_dicts(results: List[ClassificationResult]) -> List[Dict[str, Any]]:
    return [result.to_dict() for result in results]
