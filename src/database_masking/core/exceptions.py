#!/usr/bin/env python3
"""
Masking Error Hierarchy
Error kinds raised by the rule catalog, scanner and masking executor.
"""

from typing import List, Optional


class MaskingError(Exception):
    """Base class for all toolkit errors."""


class ConfigLoadError(MaskingError):
    """Rule or configuration file is missing, unparsable or invalid."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class DatabaseConnectionError(MaskingError):
    """Target instance cannot be reached, authenticated or is too old."""

    def __init__(self, message: str, instance: Optional[str] = None):
        super().__init__(message)
        self.instance = instance


class UnsupportedColumnTypeError(MaskingError):
    """Configuration references columns that can never be masked."""

    def __init__(self, message: str, columns: Optional[List[str]] = None):
        super().__init__(message)
        self.columns = columns or []


class ValueConversionError(MaskingError):
    """Generated value cannot be expressed as a literal for the column type."""

    def __init__(self, message: str, value=None, column_type: Optional[str] = None):
        super().__init__(message)
        self.value = value
        self.column_type = column_type


class UniquenessExhaustedError(MaskingError):
    """Retry budget exhausted while building unique tuples for a table."""

    def __init__(self, table: str, row_number: int, attempts: int):
        super().__init__(
            f"Could not generate a unique value set for row {row_number} of {table} "
            f"after {attempts} attempts; the configured value domain is too narrow"
        )
        self.table = table
        self.row_number = row_number
        self.attempts = attempts


class BatchExecutionError(MaskingError):
    """A flushed UPDATE batch failed against the engine."""

    def __init__(self, message: str, statements: int = 0):
        super().__init__(message)
        self.statements = statements


class SqlExecutionError(MaskingError):
    """Statement failed inside the SQL engine."""


class UniqueViolationError(SqlExecutionError):
    """Statement violated a unique index or constraint."""
