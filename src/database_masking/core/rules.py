#!/usr/bin/env python3
"""
PII Rule Catalog
Loads and merges known-name rules (column name regexes) and pattern rules
(regexes over sampled values) from the built-in and user supplied rule files.
"""

import json
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

import yaml

from .config import BUILTIN_KNOWN_NAMES_PATH, BUILTIN_PATTERNS_PATH
from .exceptions import ConfigLoadError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KnownNameRule:
    """Flags a column as PII by its name."""
    name: str
    category: str
    name_patterns: Tuple[str, ...]
    masking_type: Optional[str] = None
    masking_sub_type: Optional[str] = None

    def matches(self, column_name: str) -> bool:
        return any(re.search(pattern, column_name) for pattern in self.name_patterns)


@dataclass(frozen=True)
class PatternRule:
    """Flags a column as PII when sampled values match a regex."""
    name: str
    category: str
    pattern: str
    masking_type: Optional[str] = None
    masking_sub_type: Optional[str] = None
    country: Optional[str] = None
    country_code: Optional[str] = None
    description: Optional[str] = None

    def matches_any(self, values: Iterable[Any]) -> bool:
        regex = re.compile(self.pattern)
        return any(value is not None and regex.search(str(value)) for value in values)


@dataclass
class RuleCatalog:
    """Loaded rule sets used by the PII scanner."""
    known_names: List[KnownNameRule] = field(default_factory=list)
    patterns: List[PatternRule] = field(default_factory=list)


def _read_rule_file(path: str) -> List[Dict[str, Any]]:
    """Parse a JSON or YAML rule file into a list of rule objects."""
    try:
        with open(path, 'r', encoding='utf-8-sig') as file:
            if str(path).lower().endswith(('.yml', '.yaml')):
                data = yaml.safe_load(file)
            else:
                data = json.load(file)
    except (json.JSONDecodeError, yaml.YAMLError, UnicodeDecodeError) as e:
        raise ConfigLoadError(f"Failed to parse rule file {path}: {e}", str(path)) from e
    except OSError as e:
        raise ConfigLoadError(f"Failed to read rule file {path}: {e}", str(path)) from e

    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list) or not all(isinstance(entry, dict) for entry in data):
        raise ConfigLoadError(f"Rule file {path} must contain an array of objects", str(path))

    return data


def _validate_regex(pattern: str, path: str, rule_name: str) -> str:
    try:
        re.compile(pattern)
    except re.error as e:
        raise ConfigLoadError(f"Invalid regex '{pattern}' in rule {rule_name} ({path}): {e}", str(path)) from e
    return pattern


def parse_known_names(entries: List[Dict[str, Any]], path: str = "<memory>") -> List[KnownNameRule]:
    rules = []
    for entry in entries:
        name = entry.get('Name')
        patterns = entry.get('Pattern')
        if not name or not patterns:
            raise ConfigLoadError(f"Known name rule without Name/Pattern in {path}: {entry}", str(path))
        if isinstance(patterns, str):
            patterns = [patterns]

        rules.append(KnownNameRule(
            name=name,
            category=entry.get('Category', ''),
            name_patterns=tuple(_validate_regex(p, path, name) for p in patterns),
            masking_type=entry.get('MaskingType'),
            masking_sub_type=entry.get('MaskingSubType'),
        ))
    return rules


def parse_patterns(entries: List[Dict[str, Any]], path: str = "<memory>") -> List[PatternRule]:
    rules = []
    for entry in entries:
        name = entry.get('Name')
        pattern = entry.get('Pattern')
        if not name or not pattern:
            raise ConfigLoadError(f"Pattern rule without Name/Pattern in {path}: {entry}", str(path))

        rules.append(PatternRule(
            name=name,
            category=entry.get('Category', ''),
            pattern=_validate_regex(pattern, path, name),
            masking_type=entry.get('MaskingType'),
            masking_sub_type=entry.get('MaskingSubType'),
            country=entry.get('Country'),
            country_code=entry.get('CountryCode'),
            description=entry.get('Description'),
        ))
    return rules


def _unique(rules: list) -> list:
    seen = set()
    result = []
    for rule in rules:
        if rule not in seen:
            seen.add(rule)
            result.append(rule)
    return result


def load_rules(
    builtin_known_names_path: str = str(BUILTIN_KNOWN_NAMES_PATH),
    builtin_patterns_path: str = str(BUILTIN_PATTERNS_PATH),
    extra_known_names_path: Optional[str] = None,
    extra_patterns_path: Optional[str] = None,
    exclude_builtin_known_names: bool = False,
    exclude_builtin_patterns: bool = False,
    countries: Optional[List[str]] = None,
    country_codes: Optional[List[str]] = None
) -> RuleCatalog:
    """
    Load built-in and user supplied PII rules.

    Args:
        builtin_known_names_path: Built-in known name rule file
        builtin_patterns_path: Built-in pattern rule file
        extra_known_names_path: Additional known name rules, appended
        extra_patterns_path: Additional pattern rules, appended
        exclude_builtin_known_names: Skip the built-in known name rules
        exclude_builtin_patterns: Skip the built-in pattern rules
        countries: Keep only pattern rules for these countries
        country_codes: Keep only pattern rules for these country codes

    Returns:
        RuleCatalog with de-duplicated rules

    Raises:
        ConfigLoadError: missing extra file or unparsable rule file
    """
    for extra_path in (extra_known_names_path, extra_patterns_path):
        if extra_path and not os.path.exists(extra_path):
            raise ConfigLoadError(f"Rule file not found: {extra_path}", extra_path)

    known_names: List[KnownNameRule] = []
    patterns: List[PatternRule] = []

    if not exclude_builtin_known_names:
        known_names.extend(parse_known_names(_read_rule_file(builtin_known_names_path), builtin_known_names_path))
    if extra_known_names_path:
        known_names.extend(parse_known_names(_read_rule_file(extra_known_names_path), extra_known_names_path))

    if not exclude_builtin_patterns:
        patterns.extend(parse_patterns(_read_rule_file(builtin_patterns_path), builtin_patterns_path))
    if extra_patterns_path:
        patterns.extend(parse_patterns(_read_rule_file(extra_patterns_path), extra_patterns_path))

    if countries or country_codes:
        countries = set(countries or [])
        country_codes = set(country_codes or [])
        patterns = [
            rule for rule in patterns
            if rule.country in countries or rule.country_code in country_codes
        ]

    catalog = RuleCatalog(known_names=_unique(known_names), patterns=_unique(patterns))
    logger.info(f"Loaded {len(catalog.known_names)} known name rules and {len(catalog.patterns)} pattern rules")
    return catalog
