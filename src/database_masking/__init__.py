"""
Database Masking for SQL Server

This package discovers and masks Personal Identifiable Information (PII) in
SQL Server databases:
- PII scanning by column name, sampled data and data type
- Masking configuration documents derived from a scan
- In-place masking with deterministic and unique value guarantees

Features:
- Built-in and user supplied PII rule files
- Faker backed randomized values
- Dictionary import/export for stable masking across runs
"""

from .core.exceptions import (
    BatchExecutionError,
    ConfigLoadError,
    DatabaseConnectionError,
    MaskingError,
    UniquenessExhaustedError,
    UnsupportedColumnTypeError,
    ValueConversionError,
)
from .core.masking import DataMaskingExecutor, MaskingContext, MaskingOptions, invoke_data_masking
from .core.masking_config import load_masking_config, save_masking_config, validate_config
from .core.rules import load_rules
from .core.scanner import PiiScanner, ScanContext, scan_instances

__all__ = [
    'BatchExecutionError',
    'ConfigLoadError',
    'DatabaseConnectionError',
    'MaskingError',
    'UniquenessExhaustedError',
    'UnsupportedColumnTypeError',
    'ValueConversionError',
    'DataMaskingExecutor',
    'MaskingContext',
    'MaskingOptions',
    'invoke_data_masking',
    'load_masking_config',
    'save_masking_config',
    'validate_config',
    'load_rules',
    'PiiScanner',
    'ScanContext',
    'scan_instances',
]

__version__ = '1.0.0'
