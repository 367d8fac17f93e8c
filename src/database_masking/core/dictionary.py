#!/usr/bin/env python3
"""
Deterministic Value Store
Keeps original value -> masked value mappings in a scratch table so that
deterministic columns mask the same input to the same output, with CSV
dictionary import and export.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd

from .connection import SqlExecutor
from .exceptions import ConfigLoadError
from .literals import canonical_key, qualified_name, quote_string


DICTIONARY_TABLE = "DeterministicValues"
DICTIONARY_COLUMNS = ['ValueKey', 'NewValue']

# Rows per INSERT ... VALUES statement, the engine limit
IMPORT_CHUNK_SIZE = 1000


def value_key(value: Any, column_type: Optional[str] = None) -> Optional[str]:
    """
    Store key for a source value.

    Keys carry the normalized column type, "varchar(20)|1", so a mapping is
    only reused for columns whose type and length can hold the masked value.
    """
    key = canonical_key(value)
    if key is None or not column_type:
        return key
    return f"{''.join(column_type.split()).lower()}|{key}"


def dictionary_file_name(server: str, database: str) -> str:
    safe_server = server.replace("\\", "$")
    return f"{safe_server}.{database}.Dictionary.csv"


class DeterministicValueStore:
    """
    Mapping store for deterministic masking.

    Features:
    - Scratch table with a unique key per column type and canonical source value
    - Write-through in-memory cache for lookups
    - CSV dictionary import and export
    """

    def __init__(self, executor: SqlExecutor, work_database: str = "tempdb", dry_run: bool = False):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.executor = executor
        self.work_database = work_database
        self.dry_run = dry_run
        self.table_name = qualified_name(work_database, 'dbo', DICTIONARY_TABLE)
        self._cache: Dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._cache)

    def _execute(self, sql: str) -> None:
        if self.dry_run:
            self.logger.debug(f"What if: {sql}")
            return
        self.executor.execute_non_query(sql)

    def ensure_store(self) -> None:
        """Drop and recreate the store table."""
        self._cache.clear()
        self._execute(
            f"IF OBJECT_ID(N'{self.table_name}') IS NOT NULL DROP TABLE {self.table_name};"
        )
        self._execute(
            f"CREATE TABLE {self.table_name} ("
            "[ValueKey] NVARCHAR(900) NOT NULL, "
            "[NewValue] NVARCHAR(MAX) NULL, "
            f"CONSTRAINT [UQ_{DICTIONARY_TABLE}_ValueKey] UNIQUE ([ValueKey]));"
        )
        self.logger.debug(f"Created deterministic value store {self.table_name}")

    def drop_store(self) -> None:
        self._execute(
            f"IF OBJECT_ID(N'{self.table_name}') IS NOT NULL DROP TABLE {self.table_name};"
        )
        self._cache.clear()

    def lookup(self, value: Any, column_type: Optional[str] = None) -> Optional[str]:
        """Masked value stored for a source value of a column type, None when unknown."""
        key = value_key(value, column_type)
        if key is None:
            return None
        return self._cache.get(key)

    def store(self, value: Any, new_value: Any, column_type: Optional[str] = None) -> bool:
        """
        Persist a mapping unless the source value already has one.

        Returns:
            True when a new mapping was written
        """
        key = value_key(value, column_type)
        if key is None or key in self._cache:
            return False

        new_key = canonical_key(new_value)
        self._execute(
            f"INSERT INTO {self.table_name} ([ValueKey], [NewValue]) "
            f"VALUES ({quote_string(key, unicode=True)}, {self._literal(new_key)});"
        )
        self._cache[key] = new_key
        return True

    @staticmethod
    def _literal(value: Optional[str]) -> str:
        return 'NULL' if value is None else quote_string(value, unicode=True)

    def import_dictionary(self, path: str) -> int:
        """
        Load ValueKey,NewValue pairs from a CSV file into the store.

        Raises:
            ConfigLoadError: missing file or missing columns
        """
        file_path = Path(path)
        if not file_path.exists():
            raise ConfigLoadError(f"Dictionary file not found: {path}", str(path))

        try:
            frame = pd.read_csv(file_path, dtype=str, keep_default_na=False, encoding='utf-8-sig')
        except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
            raise ConfigLoadError(f"Failed to read dictionary file {path}: {e}", str(path)) from e

        missing = [column for column in DICTIONARY_COLUMNS if column not in frame.columns]
        if missing:
            raise ConfigLoadError(f"Dictionary file {path} is missing columns: {', '.join(missing)}", str(path))

        rows: List[tuple] = []
        for key, new_value in zip(frame['ValueKey'], frame['NewValue']):
            if key in self._cache:
                continue
            self._cache[key] = new_value
            rows.append((key, new_value))

        for start in range(0, len(rows), IMPORT_CHUNK_SIZE):
            chunk = rows[start:start + IMPORT_CHUNK_SIZE]
            values = ', '.join(
                f"({quote_string(key, unicode=True)}, {self._literal(new_value)})" for key, new_value in chunk
            )
            self._execute(f"INSERT INTO {self.table_name} ([ValueKey], [NewValue]) VALUES {values};")

        self.logger.info(f"Imported {len(rows)} dictionary entries from {path}")
        return len(rows)

    def export_dictionary(self, directory: str, server: str, database: str) -> Optional[Path]:
        """
        Write the store to <server>.<database>.Dictionary.csv.

        Returns:
            Path of the written file, None when the store is empty
        """
        if self.dry_run:
            rows = [{'ValueKey': key, 'NewValue': value} for key, value in self._cache.items()]
        else:
            rows = self.executor.execute_query(f"SELECT [ValueKey], [NewValue] FROM {self.table_name}")

        if not rows:
            self.logger.info("Deterministic value store is empty, no dictionary exported")
            return None

        target_dir = Path(directory)
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / dictionary_file_name(server, database)

        frame = pd.DataFrame(rows, columns=DICTIONARY_COLUMNS)
        frame.to_csv(target, index=False, encoding='utf-8')

        self.logger.info(f"Exported {len(frame)} dictionary entries to {target}")
        return target
