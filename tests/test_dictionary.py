"""Tests for the deterministic value store."""

from decimal import Decimal

import pytest

from database_masking.core.dictionary import DeterministicValueStore, dictionary_file_name, value_key
from database_masking.core.exceptions import ConfigLoadError

from fakes import FakeExecutor


@pytest.fixture
def store(fake_executor):
    value_store = DeterministicValueStore(fake_executor)
    value_store.ensure_store()
    return value_store


class TestStore:
    """Tests for store and lookup."""

    def test_ensure_store_recreates_table(self, fake_executor, store):
        assert fake_executor.statements[0].startswith("IF OBJECT_ID(N'[tempdb].[dbo].[DeterministicValues]')")
        assert "UNIQUE ([ValueKey])" in fake_executor.statements[1]
        assert fake_executor.rows('tempdb', 'dbo', 'DeterministicValues') == []

    def test_store_then_lookup(self, fake_executor, store):
        assert store.store('alice@example.com', 'kq@fake.org')
        assert store.lookup('alice@example.com') == 'kq@fake.org'
        assert fake_executor.rows('tempdb', 'dbo', 'DeterministicValues') == [
            {'ValueKey': 'alice@example.com', 'NewValue': 'kq@fake.org'}
        ]

    def test_first_mapping_wins(self, store):
        store.store('alice', 'first')
        assert not store.store('alice', 'second')
        assert store.lookup('alice') == 'first'
        assert len(store) == 1

    def test_keys_ignore_numeric_representation(self, store):
        store.store(Decimal('10.00'), 42)
        assert store.lookup(10) == '42'

    def test_mappings_are_kept_per_column_type(self, store):
        store.store('1', 'bVrp', 'varchar(20)')

        assert store.lookup(1, 'int') is None
        assert store.lookup('1', 'VARCHAR (20)') == 'bVrp'
        assert store.lookup('1', 'varchar(3)') is None
        assert value_key(Decimal('10.00'), 'decimal(10, 2)') == 'decimal(10,2)|10'

    def test_null_is_never_stored(self, fake_executor, store):
        assert not store.store(None, 'x')
        assert store.lookup(None) is None
        assert len(fake_executor.non_queries('INSERT')) == 0

    def test_dry_run_issues_no_statements(self, fake_executor):
        dry = DeterministicValueStore(fake_executor, dry_run=True)
        dry.ensure_store()
        dry.store('a', 'b')

        assert fake_executor.statements == []
        assert dry.lookup('a') == 'b'


class TestDictionaryFiles:
    """Tests for CSV import and export."""

    def test_file_name(self):
        assert dictionary_file_name('sql01\\inst', 'testdb') == 'sql01$inst.testdb.Dictionary.csv'

    def test_empty_store_exports_nothing(self, tmp_path, store):
        assert store.export_dictionary(str(tmp_path), 'sql01', 'testdb') is None
        assert list(tmp_path.iterdir()) == []

    def test_export_then_import(self, tmp_path, store):
        store.store('alice@example.com', 'kq@fake.org')
        store.store("O'Brien", 'Smith')

        path = store.export_dictionary(str(tmp_path), 'sql01', 'testdb')
        assert path.name == 'sql01.testdb.Dictionary.csv'

        other = DeterministicValueStore(FakeExecutor())
        other.ensure_store()
        assert other.import_dictionary(str(path)) == 2
        assert other.lookup("O'Brien") == 'Smith'
        assert other.lookup('alice@example.com') == 'kq@fake.org'

    def test_import_skips_known_keys(self, tmp_path, store):
        path = tmp_path / "dictionary.csv"
        path.write_text("ValueKey,NewValue\nalice,first\nbob,second\n", encoding='utf-8')
        store.store('alice', 'existing')

        assert store.import_dictionary(str(path)) == 1
        assert store.lookup('alice') == 'existing'
        assert store.lookup('bob') == 'second'

    def test_import_missing_columns(self, tmp_path, store):
        path = tmp_path / "dictionary.csv"
        path.write_text("Key,Value\nalice,first\n", encoding='utf-8')

        with pytest.raises(ConfigLoadError):
            store.import_dictionary(str(path))

    def test_import_missing_file(self, tmp_path, store):
        with pytest.raises(ConfigLoadError):
            store.import_dictionary(str(tmp_path / "missing.csv"))
