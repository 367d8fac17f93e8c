#!/usr/bin/env python3
"""
T-SQL Literal Encoder
Single place where identifiers and values are turned into SQL text for the
masking statements.
"""

import math
import re
import uuid
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from .exceptions import ValueConversionError


INTEGER_TYPES = {'bigint', 'int', 'smallint', 'tinyint'}
DECIMAL_TYPES = {'decimal', 'numeric', 'money', 'smallmoney', 'float', 'real'}
NUMERIC_TYPES = INTEGER_TYPES | DECIMAL_TYPES | {'bit'}
DATE_TYPES = {'date', 'datetime', 'datetime2', 'smalldatetime', 'datetimeoffset', 'time'}
UNICODE_TYPES = {'nchar', 'nvarchar', 'ntext'}
STRING_TYPES = {'char', 'varchar', 'text'} | UNICODE_TYPES
BINARY_TYPES = {'binary', 'varbinary', 'image'}
GUID_TYPES = {'uniqueidentifier'}

INTEGER_RANGES = {
    'tinyint': (0, 255),
    'smallint': (-32768, 32767),
    'int': (-2147483648, 2147483647),
    'bigint': (-9223372036854775808, 9223372036854775807),
}

_TYPE_NAME = re.compile(r'^\s*([a-zA-Z0-9_]+)')


def base_type(column_type: Optional[str]) -> str:
    """'NVARCHAR(50)' -> 'nvarchar'."""
    if not column_type:
        return ''
    match = _TYPE_NAME.match(column_type)
    return match.group(1).lower() if match else column_type.strip().lower()


def is_string_type(column_type: Optional[str]) -> bool:
    return base_type(column_type) in STRING_TYPES


def is_date_type(column_type: Optional[str]) -> bool:
    return base_type(column_type) in DATE_TYPES


def is_numeric_type(column_type: Optional[str]) -> bool:
    return base_type(column_type) in NUMERIC_TYPES


def quote_identifier(name: str) -> str:
    return '[' + name.replace(']', ']]') + ']'


def qualified_name(*parts: str) -> str:
    """[db].[schema].[table] from the given parts."""
    return '.'.join(quote_identifier(part) for part in parts)


def quote_string(value: str, unicode: bool = False) -> str:
    prefix = 'N' if unicode else ''
    return prefix + "'" + value.replace("'", "''") + "'"


def _format_temporal(value: Any, type_name: str) -> str:
    if isinstance(value, datetime):
        if type_name == 'date':
            return value.strftime('%Y-%m-%d')
        if type_name == 'time':
            return value.time().isoformat()
        if type_name == 'datetimeoffset':
            return value.isoformat(sep=' ')
        if type_name in ('datetime', 'smalldatetime'):
            # datetime only stores milliseconds
            return value.strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]
        return value.strftime('%Y-%m-%d %H:%M:%S.%f')
    if isinstance(value, date):
        return value.strftime('%Y-%m-%d')
    if isinstance(value, time):
        return value.isoformat()
    if isinstance(value, str):
        text = value.strip()
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            try:
                parsed_time = time.fromisoformat(text)
            except ValueError as e:
                raise ValueConversionError(f"'{value}' is not a valid {type_name} value", value, type_name) from e
            return parsed_time.isoformat()
        return _format_temporal(parsed, type_name)
    raise ValueConversionError(f"Cannot convert {type(value).__name__} to {type_name}", value, type_name)


def _format_number(value: Any, type_name: str) -> str:
    if isinstance(value, bool):
        return '1' if value else '0'

    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise ValueConversionError(f"{value} cannot be stored in {type_name}", value, type_name)
        number = Decimal(repr(value))
    else:
        try:
            number = Decimal(str(value).strip())
        except InvalidOperation as e:
            raise ValueConversionError(f"'{value}' is not a valid {type_name} value", value, type_name) from e

    if not number.is_finite():
        raise ValueConversionError(f"{value} cannot be stored in {type_name}", value, type_name)

    if type_name == 'bit':
        if number not in (0, 1):
            raise ValueConversionError(f"'{value}' is not a valid bit value", value, type_name)
        return str(int(number))

    if type_name in INTEGER_TYPES:
        if number != number.to_integral_value():
            raise ValueConversionError(f"'{value}' is not an integer", value, type_name)
        low, high = INTEGER_RANGES[type_name]
        if not low <= int(number) <= high:
            raise ValueConversionError(f"{value} is out of range for {type_name}", value, type_name)
        return str(int(number))

    return format(number, 'f')


def to_sql_literal(value: Any, column_type: str) -> str:
    """
    Encode a value as a T-SQL literal for a column of the given type.

    Args:
        value: Python value (None produces NULL)
        column_type: Declared SQL type name, with or without length

    Returns:
        Literal text ready to be embedded in a statement

    Raises:
        ValueConversionError: value cannot be represented in the type
    """
    if value is None:
        return 'NULL'

    type_name = base_type(column_type)

    if type_name in NUMERIC_TYPES:
        return _format_number(value, type_name)

    if type_name in DATE_TYPES:
        return quote_string(_format_temporal(value, type_name))

    if type_name in GUID_TYPES:
        try:
            return quote_string(str(uuid.UUID(str(value))))
        except ValueError as e:
            raise ValueConversionError(f"'{value}' is not a valid uniqueidentifier", value, type_name) from e

    if type_name in BINARY_TYPES:
        if isinstance(value, (bytes, bytearray)):
            return '0x' + bytes(value).hex().upper()
        if isinstance(value, str) and re.fullmatch(r'0x[0-9a-fA-F]*', value):
            return value
        raise ValueConversionError(f"Cannot convert {type(value).__name__} to {type_name}", value, type_name)

    if isinstance(value, (bytes, bytearray)):
        raise ValueConversionError(f"Binary value cannot be stored in {type_name}", value, type_name)

    if isinstance(value, (datetime, date, time)):
        text = _format_temporal(value, 'datetime2' if isinstance(value, datetime) else type_name)
    else:
        text = str(value)

    return quote_string(text, unicode=type_name in UNICODE_TYPES or not type_name)


def canonical_key(value: Any) -> Optional[str]:
    """Dialect independent key for the deterministic value store."""
    if value is None:
        return None
    if isinstance(value, bool):
        return '1' if value else '0'
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        if value == value.to_integral_value():
            return str(int(value))
        return format(value.normalize(), 'f')
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else repr(value)
    if isinstance(value, (bytes, bytearray)):
        return '0x' + bytes(value).hex().upper()
    if isinstance(value, uuid.UUID):
        return str(value)
    return str(value)


def declared_length(column_type: Optional[str]) -> Optional[int]:
    """Character length of a string type, None for (max) or non-string types."""
    if not is_string_type(column_type):
        return None
    match = re.search(r'\(\s*(\d+)\s*\)', column_type)
    return int(match.group(1)) if match else None
