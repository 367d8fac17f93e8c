#!/usr/bin/env python3
"""
Masking Configuration Builder
Derives a masking configuration document from a PII scan of a database.
"""

import logging
from typing import Dict, List, Optional, Tuple

from .connection import SqlExecutor
from .literals import is_string_type
from .masking_config import MaskingColumnSpec, MaskingDocument, MaskingTableSpec
from .rules import load_rules
from .scanner import ClassificationResult, PiiScanner, ScanContext
from .schema import SchemaReader


logger = logging.getLogger(__name__)


def _first_results(results: List[ClassificationResult], database: str) -> Dict[Tuple[str, str, str], ClassificationResult]:
    """First classification per column; known-name results come before pattern results."""
    found: Dict[Tuple[str, str, str], ClassificationResult] = {}
    for result in results:
        if result.database.lower() != database.lower():
            continue
        key = (result.schema.lower(), result.table.lower(), result.column.lower())
        found.setdefault(key, result)
    return found


def build_masking_config(
    executor: SqlExecutor,
    database: str,
    scan_results: Optional[List[ClassificationResult]] = None,
    tables: Optional[List[str]] = None,
    exclude_tables: Optional[List[str]] = None,
    columns: Optional[List[str]] = None,
    exclude_columns: Optional[List[str]] = None,
    sample_size: int = 100,
    schema_reader: Optional[SchemaReader] = None
) -> MaskingDocument:
    """
    Build a masking configuration for the PII columns of a database.

    Args:
        executor: Connection to the instance
        database: Database to describe
        scan_results: Classification results, a scan with the built-in rules
            is run when omitted
        tables: Only include these tables
        exclude_tables: Leave these tables out
        columns: Only include these columns
        exclude_columns: Leave these columns out
        sample_size: Rows sampled per column when scanning
        schema_reader: Catalog reader, defaults to one over the executor

    Returns:
        MaskingDocument named after the database
    """
    reader = schema_reader or SchemaReader(executor)

    if scan_results is None:
        scan_context = ScanContext(catalog=load_rules(), sample_size=sample_size)
        scan_results = PiiScanner(scan_context).scan_database(
            executor, database, tables=tables, exclude_tables=exclude_tables,
            columns=columns, exclude_columns=exclude_columns, schema_reader=reader
        )

    found = _first_results(scan_results, database)
    excluded_tables = {name.lower() for name in exclude_tables or []}
    wanted_columns = {name.lower() for name in columns or []}
    excluded_columns = {name.lower() for name in exclude_columns or []}

    document = MaskingDocument(name=database)

    for table in reader.get_tables(database, tables):
        if table.name.lower() in excluded_tables or table.full_name.lower() in excluded_tables:
            continue

        table_spec = MaskingTableSpec(
            name=table.name,
            schema_name=table.schema,
            has_unique_index=bool(table.unique_indexes)
        )

        for column in table.columns:
            name = column.name.lower()
            if (wanted_columns and name not in wanted_columns) or name in excluded_columns:
                continue

            result = found.get((table.schema.lower(), table.name.lower(), name))
            if result is None:
                continue

            reason = column.unsupported_reason
            if reason is not None:
                logger.info(f"Skipping column {table.full_name}.{column.name}: {reason} columns cannot be masked")
                continue

            max_value = None
            if is_string_type(column.data_type) and column.max_length not in (None, -1):
                max_value = column.max_length

            table_spec.columns.append(MaskingColumnSpec(
                name=column.name,
                column_type=column.column_type,
                max_value=max_value,
                masking_type=result.masking_type,
                sub_type=result.masking_sub_type,
                nullable=column.nullable,
                keep_null=True
            ))

        if table_spec.columns:
            document.tables.append(table_spec)

    logger.info(f"Built masking configuration for {database} with {len(document.tables)} tables")
    return document
