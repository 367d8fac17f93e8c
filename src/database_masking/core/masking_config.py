#!/usr/bin/env python3
"""
Masking Configuration Model
Pydantic models for masking configuration documents (the Tables/Columns JSON
or YAML files), their validation rules and file I/O.
"""

import json
import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, ValidationError

from .exceptions import ConfigLoadError, ValueConversionError
from .literals import base_type, declared_length, is_string_type
from .randomizer import RandomizedValueService
from .schema import UNSUPPORTED_DATA_TYPES


logger = logging.getLogger(__name__)

ACTION_CATEGORIES = {
    'number': {'add', 'subtract', 'multiply', 'divide', 'set', 'nullify'},
    'datetime': {'add', 'subtract', 'set', 'nullify'},
    'string': {'add', 'set', 'nullify'},
}

UNSUPPORTED_TYPE = "unsupported-type"

DATE_PARTS = {
    'year', 'quarter', 'month', 'dayofyear', 'day', 'week', 'weekday',
    'hour', 'minute', 'second', 'millisecond'
}


class ColumnGenerationStrategy(str, Enum):
    """How a column obtains its new values."""
    STATIC = "Static"
    ACTION = "Action"
    COMPOSITE = "Composite"
    RANDOMIZED = "Randomized"


class _ConfigModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra='ignore')


class ColumnAction(_ConfigModel):
    """Arithmetic / date / string operation on the current column value."""
    category: str = Field(..., alias='Category', description="Number, DateTime or String")
    type: str = Field(..., alias='Type', description="Add, Subtract, Multiply, Divide, Set or Nullify")
    value: Any = Field(None, alias='Value')
    sub_category: Optional[str] = Field(None, alias='SubCategory', description="Date part for DateTime actions")


class CompositeItem(_ConfigModel):
    """One part of a composite value."""
    type: str = Field(..., alias='Type', description="Column, Static or a masking type")
    sub_type: Optional[str] = Field(None, alias='SubType')
    value: Any = Field(None, alias='Value')


class MaskingColumnSpec(_ConfigModel):
    name: str = Field(..., alias='Name')
    column_type: str = Field('varchar', alias='ColumnType')
    character_string: Optional[str] = Field(None, alias='CharacterString')
    min_value: Any = Field(None, alias='MinValue')
    max_value: Any = Field(None, alias='MaxValue')
    masking_type: Optional[str] = Field(None, alias='MaskingType')
    sub_type: Optional[str] = Field(None, alias='SubType')
    format: Optional[str] = Field(None, alias='Format')
    separator: Optional[str] = Field(None, alias='Separator')
    deterministic: bool = Field(False, alias='Deterministic')
    nullable: bool = Field(False, alias='Nullable')
    keep_null: bool = Field(False, alias='KeepNull')
    static_value: Any = Field(None, alias='StaticValue')
    action: Optional[ColumnAction] = Field(None, alias='Action')
    composite: Optional[List[CompositeItem]] = Field(None, alias='Composite')

    _strategy: ColumnGenerationStrategy = PrivateAttr(default=ColumnGenerationStrategy.RANDOMIZED)

    def model_post_init(self, __context: Any) -> None:
        if self.action is not None:
            self._strategy = ColumnGenerationStrategy.ACTION
        elif self.composite:
            self._strategy = ColumnGenerationStrategy.COMPOSITE
        elif self.static_value is not None:
            self._strategy = ColumnGenerationStrategy.STATIC
        else:
            self._strategy = ColumnGenerationStrategy.RANDOMIZED

    @property
    def strategy(self) -> ColumnGenerationStrategy:
        return self._strategy

    @property
    def is_shuffle(self) -> bool:
        return (self.sub_type or '').lower() == 'shuffle'


class MaskingTableSpec(_ConfigModel):
    name: str = Field(..., alias='Name')
    schema_name: str = Field('dbo', alias='Schema')
    has_unique_index: bool = Field(False, alias='HasUniqueIndex')
    filter_query: Optional[str] = Field(None, alias='FilterQuery')
    columns: List[MaskingColumnSpec] = Field(default_factory=list, alias='Columns')

    @property
    def full_name(self) -> str:
        return f"{self.schema_name}.{self.name}"

    def get_column(self, name: str) -> Optional[MaskingColumnSpec]:
        for column in self.columns:
            if column.name.lower() == name.lower():
                return column
        return None


class MaskingDocument(_ConfigModel):
    """Root of a masking configuration file."""
    name: Optional[str] = Field(None, alias='Name')
    type: str = Field('DataMaskingConfiguration', alias='Type')
    tables: List[MaskingTableSpec] = Field(default_factory=list, alias='Tables')

    def get_table(self, schema: str, name: str) -> Optional[MaskingTableSpec]:
        for table in self.tables:
            if table.schema_name.lower() == schema.lower() and table.name.lower() == name.lower():
                return table
        return None


@dataclass(frozen=True)
class ConfigError:
    """One validation finding."""
    table: str
    column: Optional[str]
    reason: str
    code: str = "invalid"

    def __str__(self) -> str:
        location = f"{self.table}.{self.column}" if self.column else self.table
        return f"{location}: {self.reason}"


def _validate_action(table: MaskingTableSpec, column: MaskingColumnSpec) -> List[ConfigError]:
    errors = []
    action = column.action
    category = action.category.lower()
    action_type = action.type.lower()

    allowed = ACTION_CATEGORIES.get(category)
    if allowed is None:
        errors.append(ConfigError(table.full_name, column.name, f"unknown action category '{action.category}'"))
        return errors

    if action_type not in allowed:
        errors.append(ConfigError(
            table.full_name, column.name,
            f"action type '{action.type}' is not valid for category '{action.category}'"
        ))
    elif action_type != 'nullify' and action.value is None:
        errors.append(ConfigError(table.full_name, column.name, f"action {action.type} requires a value"))

    if category == 'datetime' and action_type in ('add', 'subtract'):
        if (action.sub_category or 'day').lower() not in DATE_PARTS:
            errors.append(ConfigError(table.full_name, column.name, f"unknown date part '{action.sub_category}'"))
        if action.value is not None:
            try:
                int(str(action.value).strip())
            except ValueError:
                errors.append(ConfigError(
                    table.full_name, column.name, f"action value '{action.value}' is not a whole number"
                ))

    if category == 'number' and action_type in ('add', 'subtract', 'multiply', 'divide') and action.value is not None:
        try:
            float(action.value)
        except (TypeError, ValueError):
            errors.append(ConfigError(table.full_name, column.name, f"action value '{action.value}' is not a number"))

    return errors


def _is_allowed(table: MaskingTableSpec, column: MaskingColumnSpec, allowed_types: Iterable[str]) -> bool:
    allowed = {entry.lower() for entry in allowed_types}
    return column.name.lower() in allowed or f"{table.full_name}.{column.name}".lower() in allowed


def validate_config(
    document: MaskingDocument,
    allowed_types: Iterable[str] = (),
    service: Optional[RandomizedValueService] = None
) -> List[ConfigError]:
    """
    Check a masking document before any statement is issued.

    Args:
        document: Parsed masking configuration
        allowed_types: Columns ('column' or 'schema.table.column') allowed to
            keep an otherwise unsupported data type
        service: Randomized value service used to check masking types

    Returns:
        List of findings, empty when the document is valid
    """
    service = service or RandomizedValueService()
    allowed_types = list(allowed_types)
    errors: List[ConfigError] = []

    for table in document.tables:
        seen = set()
        for column in table.columns:
            key = column.name.lower()
            if key in seen:
                errors.append(ConfigError(table.full_name, column.name, "column is listed more than once"))
            seen.add(key)

            if base_type(column.column_type) in UNSUPPORTED_DATA_TYPES and not _is_allowed(table, column, allowed_types):
                errors.append(ConfigError(
                    table.full_name, column.name,
                    f"data type '{column.column_type}' is not supported",
                    code=UNSUPPORTED_TYPE
                ))

            if column.action is not None and column.composite:
                errors.append(ConfigError(table.full_name, column.name, "Action and Composite cannot be combined"))

            if column.action is not None:
                errors.extend(_validate_action(table, column))

            if column.strategy == ColumnGenerationStrategy.RANDOMIZED and not service.is_supported(column.masking_type, column.sub_type):
                if not column.is_shuffle:
                    errors.append(ConfigError(
                        table.full_name, column.name,
                        f"unknown masking type '{column.masking_type}' / sub type '{column.sub_type}'"
                    ))

            if column.composite:
                for item in column.composite:
                    if item.type.lower() == 'column' and not item.value:
                        errors.append(ConfigError(table.full_name, column.name, "composite Column item requires a Value"))
                        continue
                    if item.type.lower() in ('column', 'static'):
                        continue
                    if not service.is_supported(item.type, item.sub_type):
                        errors.append(ConfigError(
                            table.full_name, column.name,
                            f"unknown composite masking type '{item.type}' / sub type '{item.sub_type}'"
                        ))

            if column.min_value is not None and column.max_value is not None:
                try:
                    if _comparable(column.min_value) > _comparable(column.max_value):
                        errors.append(ConfigError(table.full_name, column.name, "MinValue is greater than MaxValue"))
                except TypeError:
                    errors.append(ConfigError(table.full_name, column.name, "MinValue and MaxValue are not comparable"))

    for error in errors:
        logger.debug(f"Masking configuration error: {error}")

    return errors


def _comparable(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return value
    return value


def load_masking_config(path: str) -> MaskingDocument:
    """
    Read a masking configuration from JSON or YAML.

    Raises:
        ConfigLoadError: missing file, parse failure or invalid document
    """
    if not os.path.exists(path):
        raise ConfigLoadError(f"Masking configuration not found: {path}", str(path))

    try:
        with open(path, 'r', encoding='utf-8-sig') as file:
            if str(path).lower().endswith(('.yml', '.yaml')):
                data = yaml.safe_load(file)
            else:
                data = json.load(file)
    except (json.JSONDecodeError, yaml.YAMLError, UnicodeDecodeError) as e:
        raise ConfigLoadError(f"Failed to parse masking configuration {path}: {e}", str(path)) from e

    if not isinstance(data, dict):
        raise ConfigLoadError(f"Masking configuration {path} must contain an object with Tables", str(path))

    try:
        document = MaskingDocument.model_validate(data)
    except ValidationError as e:
        raise ConfigLoadError(f"Invalid masking configuration {path}: {e}", str(path)) from e

    logger.info(f"Loaded masking configuration with {len(document.tables)} tables from {path}")
    return document


def config_file_name(server: str, database: str) -> str:
    safe_server = server.replace("\\", "$")
    return f"{safe_server}.{database}.DataMaskingConfig.json"


def save_masking_config(
    document: MaskingDocument,
    path: str,
    server: Optional[str] = None,
    database: Optional[str] = None
) -> Path:
    """
    Write a masking configuration as JSON.

    When path is a directory the file is named
    <server>.<database>.DataMaskingConfig.json.
    """
    target = Path(path)
    if target.is_dir():
        target = target / config_file_name(server or 'localhost', database or document.name or 'database')
    target.parent.mkdir(parents=True, exist_ok=True)

    with open(target, 'w', encoding='utf-8') as file:
        json.dump(document.model_dump(by_alias=True, exclude_none=True, mode='json'), file, indent=4)

    logger.info(f"Masking configuration written to {target}")
    return target


def new_column_value(
    service: RandomizedValueService,
    column: MaskingColumnSpec,
    value: Any = None,
    max_value: Optional[int] = None,
    exact_length: bool = False,
    character_string: Optional[str] = None,
    masking_type: Optional[str] = None,
    sub_type: Optional[str] = None
) -> Any:
    """
    Generate one replacement value for a column.

    String lengths are capped by the column's MaxValue, the declared column
    length and the global max_value, whichever is tightest.

    Raises:
        ValueConversionError: the column type cannot be generated
    """
    upper = column.max_value
    lower = column.min_value
    if is_string_type(column.column_type):
        limits = [int(limit) for limit in (column.max_value, max_value, declared_length(column.column_type)) if limit is not None]
        upper = min(limits) if limits else None
        if upper is not None and lower is not None and int(lower) > upper:
            lower = upper

    try:
        return service.generate(
            masking_type=masking_type or column.masking_type,
            sub_type=sub_type or column.sub_type,
            column_type=column.column_type,
            min_value=lower,
            max_value=upper,
            character_string=column.character_string or character_string,
            format=column.format,
            separator=column.separator,
            value=value,
            exact_length=exact_length
        )
    except ValueError as e:
        raise ValueConversionError(f"Cannot generate a value for column {column.name}: {e}", value, column.column_type) from e
