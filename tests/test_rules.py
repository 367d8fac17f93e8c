"""Tests for the PII rule catalog."""

import json

import pytest

from database_masking.core.exceptions import ConfigLoadError
from database_masking.core.rules import KnownNameRule, PatternRule, load_rules


def _write(path, data):
    path.write_text(json.dumps(data), encoding='utf-8')
    return str(path)


KNOWN_NAMES = [
    {"Name": "Email", "Category": "Contact", "Pattern": ["(?i)e_?mail"],
     "MaskingType": "Internet", "MaskingSubType": "Email"},
    {"Name": "Firstname", "Category": "Personal", "Pattern": ["^FirstName$"],
     "MaskingType": "Name", "MaskingSubType": "FirstName"},
]

PATTERNS = [
    {"Name": "Zipcode", "Category": "Location", "Country": "United States", "CountryCode": "US",
     "Pattern": "^[0-9]{5}$", "MaskingType": "Address", "MaskingSubType": "ZipCode"},
    {"Name": "Postcode", "Category": "Location", "Country": "Netherlands", "CountryCode": "NL",
     "Pattern": "^[1-9][0-9]{3} ?[A-Z]{2}$", "MaskingType": "Address", "MaskingSubType": "ZipCode"},
]


class TestLoadRules:
    """Tests for load_rules."""

    def test_builtin_rules_load(self):
        catalog = load_rules()
        assert len(catalog.known_names) > 0
        assert len(catalog.patterns) > 0
        assert all(isinstance(rule, KnownNameRule) for rule in catalog.known_names)
        assert all(isinstance(rule, PatternRule) for rule in catalog.patterns)

    def test_same_file_twice_has_no_duplicates(self, tmp_path):
        known_names = _write(tmp_path / "names.json", KNOWN_NAMES)
        patterns = _write(tmp_path / "patterns.json", PATTERNS)

        catalog = load_rules(
            builtin_known_names_path=known_names,
            builtin_patterns_path=patterns,
            extra_known_names_path=known_names,
            extra_patterns_path=patterns,
        )

        assert [rule.name for rule in catalog.known_names] == ["Email", "Firstname"]
        assert [rule.name for rule in catalog.patterns] == ["Zipcode", "Postcode"]

    def test_exclude_builtin_keeps_only_user_rules(self, tmp_path):
        known_names = _write(tmp_path / "names.json", KNOWN_NAMES)

        catalog = load_rules(
            extra_known_names_path=known_names,
            exclude_builtin_known_names=True,
            exclude_builtin_patterns=True,
        )

        assert len(catalog.known_names) == 2
        assert catalog.patterns == []

    def test_country_filter(self, tmp_path):
        patterns = _write(tmp_path / "patterns.json", PATTERNS)

        by_code = load_rules(builtin_patterns_path=patterns, country_codes=["NL"])
        by_name = load_rules(builtin_patterns_path=patterns, countries=["United States"])

        assert [rule.name for rule in by_code.patterns] == ["Postcode"]
        assert [rule.name for rule in by_name.patterns] == ["Zipcode"]

    def test_yaml_rule_file(self, tmp_path):
        path = tmp_path / "names.yaml"
        path.write_text(
            "- Name: Iban\n"
            "  Category: Financial\n"
            "  Pattern: '(?i)^iban$'\n"
            "  MaskingType: Finance\n"
            "  MaskingSubType: Iban\n",
            encoding='utf-8'
        )

        catalog = load_rules(extra_known_names_path=str(path), exclude_builtin_known_names=True)

        assert len(catalog.known_names) == 1
        assert catalog.known_names[0].matches("IBAN")

    def test_missing_extra_file_raises(self, tmp_path):
        with pytest.raises(ConfigLoadError):
            load_rules(extra_patterns_path=str(tmp_path / "missing.json"))

    def test_unparsable_file_raises(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{ not json", encoding='utf-8')

        with pytest.raises(ConfigLoadError):
            load_rules(extra_known_names_path=str(path))

    def test_invalid_regex_raises(self, tmp_path):
        path = _write(tmp_path / "bad.json", [{"Name": "Bad", "Pattern": ["("]}])

        with pytest.raises(ConfigLoadError):
            load_rules(extra_known_names_path=path)


class TestRuleMatching:
    """Tests for rule matching."""

    def test_known_name_match_is_case_sensitive_without_flag(self):
        rule = KnownNameRule(name="Firstname", category="Personal", name_patterns=("^FirstName$",))
        assert rule.matches("FirstName")
        assert not rule.matches("firstname")

    def test_pattern_matches_any_sample(self):
        rule = PatternRule(name="Zipcode", category="Location", pattern="^[0-9]{5}$")
        assert rule.matches_any(["abc", None, "12345"])
        assert not rule.matches_any(["abc", "1234"])
