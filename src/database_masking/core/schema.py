#!/usr/bin/env python3
"""
Schema Catalog Reader
Reads table, column and unique index metadata for a SQL Server database
through the SQL execution boundary.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .connection import SqlExecutor
from .literals import qualified_name, quote_string


# Column types the masking executor can never write to
UNSUPPORTED_DATA_TYPES = {'hierarchyid', 'geography', 'geometry', 'xml'}

SYSTEM_DATABASES = {'master', 'model', 'msdb', 'tempdb', 'distribution', 'ssisdb'}


@dataclass
class ColumnSchema:
    """Represents column schema information."""
    name: str
    data_type: str
    max_length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    nullable: bool = True
    is_identity: bool = False
    is_computed: bool = False
    is_foreign_key: bool = False

    @property
    def column_type(self) -> str:
        """Declared type including length/precision, e.g. nvarchar(50)."""
        data_type = self.data_type.lower()
        if data_type in ('varchar', 'char', 'varbinary', 'binary', 'nvarchar', 'nchar'):
            if self.max_length in (None, -1):
                return f"{data_type}(max)"
            return f"{data_type}({self.max_length})"
        if data_type in ('decimal', 'numeric'):
            return f"{data_type}({self.precision},{self.scale})"
        if data_type in ('datetime2', 'time', 'datetimeoffset') and self.scale is not None:
            return f"{data_type}({self.scale})"
        return data_type

    @property
    def unsupported_reason(self) -> Optional[str]:
        if self.is_computed:
            return "computed"
        if self.is_identity:
            return "identity"
        if self.is_foreign_key:
            return "foreign key"
        if self.data_type.lower() in UNSUPPORTED_DATA_TYPES:
            return self.data_type.lower()
        return None


@dataclass
class TableSchema:
    """Represents table schema information."""
    schema: str
    name: str
    columns: List[ColumnSchema] = field(default_factory=list)
    unique_indexes: Dict[str, List[str]] = field(default_factory=dict)
    row_count: int = 0

    @property
    def full_name(self) -> str:
        return f"{self.schema}.{self.name}"

    @property
    def identity_column(self) -> Optional[ColumnSchema]:
        for column in self.columns:
            if column.is_identity:
                return column
        return None

    @property
    def unique_columns(self) -> List[str]:
        """Columns taking part in any unique index, in index order."""
        result = []
        for columns in self.unique_indexes.values():
            for column in columns:
                if column not in result:
                    result.append(column)
        return result

    def get_column(self, column_name: str) -> Optional[ColumnSchema]:
        for column in self.columns:
            if column.name.lower() == column_name.lower():
                return column
        return None


class SchemaReader:
    """Catalog queries for one database."""

    def __init__(self, executor: SqlExecutor):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.executor = executor

    def list_databases(self, include_system: bool = False) -> List[str]:
        rows = self.executor.execute_query(
            "SELECT name AS DatabaseName FROM sys.databases WHERE state = 0 ORDER BY name"
        )
        names = [row['DatabaseName'] for row in rows]
        if not include_system:
            names = [name for name in names if name.lower() not in SYSTEM_DATABASES]
        return names

    def database_exists(self, database: str) -> bool:
        rows = self.executor.execute_query(
            f"SELECT name AS DatabaseName FROM sys.databases WHERE name = {quote_string(database, unicode=True)}"
        )
        return len(rows) > 0

    def get_tables(self, database: str, tables: Optional[List[str]] = None) -> List[TableSchema]:
        """
        Extract table schemas for a database.

        Args:
            database: Database name
            tables: Optional filter of table names ('table' or 'schema.table')

        Returns:
            Table schemas with columns, unique indexes and row counts
        """
        db = qualified_name(database)

        table_rows = self.executor.execute_query(
            "SELECT s.name AS SchemaName, t.name AS TableName, "
            f"ISNULL((SELECT SUM(p.rows) FROM {db}.sys.partitions p "
            "WHERE p.object_id = t.object_id AND p.index_id IN (0, 1)), 0) AS TableRowCount "
            f"FROM {db}.sys.tables t JOIN {db}.sys.schemas s ON s.schema_id = t.schema_id "
            "WHERE t.is_ms_shipped = 0 ORDER BY s.name, t.name"
        )

        schemas: Dict[tuple, TableSchema] = {}
        for row in table_rows:
            table = TableSchema(
                schema=row['SchemaName'],
                name=row['TableName'],
                row_count=int(row['TableRowCount'] or 0)
            )
            if tables and not table_matches(table, tables):
                continue
            schemas[(table.schema, table.name)] = table

        if not schemas:
            return []

        column_rows = self.executor.execute_query(
            "SELECT s.name AS SchemaName, t.name AS TableName, c.name AS ColumnName, "
            "CASE WHEN ty.is_user_defined = 1 THEN bt.name ELSE ty.name END AS DataType, "
            "CASE WHEN c.max_length > 0 AND bt.name IN ('nchar', 'nvarchar') THEN c.max_length / 2 ELSE c.max_length END AS MaxLength, "
            "c.precision AS NumericPrecision, c.scale AS NumericScale, c.is_nullable AS IsNullable, "
            "c.is_identity AS IsIdentity, c.is_computed AS IsComputed, "
            f"CASE WHEN EXISTS (SELECT 1 FROM {db}.sys.foreign_key_columns fkc "
            "WHERE fkc.parent_object_id = c.object_id AND fkc.parent_column_id = c.column_id) "
            "THEN 1 ELSE 0 END AS IsForeignKey "
            f"FROM {db}.sys.columns c "
            f"JOIN {db}.sys.tables t ON t.object_id = c.object_id "
            f"JOIN {db}.sys.schemas s ON s.schema_id = t.schema_id "
            f"JOIN {db}.sys.types ty ON ty.user_type_id = c.user_type_id "
            f"JOIN {db}.sys.types bt ON bt.user_type_id = c.system_type_id "
            "WHERE t.is_ms_shipped = 0 ORDER BY s.name, t.name, c.column_id"
        )

        for row in column_rows:
            table = schemas.get((row['SchemaName'], row['TableName']))
            if table is None:
                continue
            table.columns.append(ColumnSchema(
                name=row['ColumnName'],
                data_type=row['DataType'],
                max_length=row['MaxLength'],
                precision=row['NumericPrecision'],
                scale=row['NumericScale'],
                nullable=bool(row['IsNullable']),
                is_identity=bool(row['IsIdentity']),
                is_computed=bool(row['IsComputed']),
                is_foreign_key=bool(row['IsForeignKey'])
            ))

        index_rows = self.executor.execute_query(
            "SELECT s.name AS SchemaName, t.name AS TableName, i.name AS IndexName, c.name AS ColumnName "
            f"FROM {db}.sys.indexes i "
            f"JOIN {db}.sys.index_columns ic ON ic.object_id = i.object_id AND ic.index_id = i.index_id "
            f"JOIN {db}.sys.columns c ON c.object_id = ic.object_id AND c.column_id = ic.column_id "
            f"JOIN {db}.sys.tables t ON t.object_id = i.object_id "
            f"JOIN {db}.sys.schemas s ON s.schema_id = t.schema_id "
            "WHERE i.is_unique = 1 AND ic.is_included_column = 0 AND t.is_ms_shipped = 0 "
            "ORDER BY s.name, t.name, i.name, ic.key_ordinal"
        )

        for row in index_rows:
            table = schemas.get((row['SchemaName'], row['TableName']))
            if table is None:
                continue
            table.unique_indexes.setdefault(row['IndexName'], []).append(row['ColumnName'])

        self.logger.debug(f"Read schema for {len(schemas)} tables in {database}")
        return list(schemas.values())


def table_matches(table: TableSchema, names: List[str]) -> bool:
    """Match 'table' or 'schema.table' (case insensitive)."""
    wanted = {name.lower() for name in names}
    return table.name.lower() in wanted or table.full_name.lower() in wanted
