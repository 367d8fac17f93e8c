"""Tests for the PII scanner."""

from database_masking.core.exceptions import DatabaseConnectionError
from database_masking.core.config import InstanceConfig
from database_masking.core.rules import KnownNameRule, PatternRule, RuleCatalog
from database_masking.core.scanner import (
    FOUND_WITH_DATA_TYPE, FOUND_WITH_KNOWN_NAME, FOUND_WITH_PATTERN, PiiScanner, ScanContext, scan_instances
)
from database_masking.core.schema import ColumnSchema, TableSchema

from fakes import FakeExecutor


EMAIL_NAME = KnownNameRule(
    name="Email", category="Contact", name_patterns=("(?i)e_?mail",),
    masking_type="Internet", masking_sub_type="Email"
)
EMAIL_PATTERN = PatternRule(
    name="Email", category="Contact", pattern=r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$",
    masking_type="Internet", masking_sub_type="Email", country="All", country_code="All",
    description="E-mail address"
)


def _catalog() -> RuleCatalog:
    return RuleCatalog(known_names=[EMAIL_NAME], patterns=[EMAIL_PATTERN])


class TestPiiScanner:
    """Tests for PiiScanner.scan_database."""

    def test_geography_column_classified_by_data_type(self, fake_executor):
        fake_executor.add_table('geo', TableSchema(
            schema='dbo', name='Places',
            columns=[ColumnSchema(name='Position', data_type='geography')]
        ), [{'Position': 'POINT(1 1)'}])

        results = PiiScanner(ScanContext(catalog=RuleCatalog())).scan_database(fake_executor, 'geo')

        assert len(results) == 1
        assert results[0].pii_category == "Location"
        assert results[0].pii_name == "Geography"
        assert results[0].found_with == FOUND_WITH_DATA_TYPE
        assert not any('TOP' in query for query in fake_executor.queries)

    def test_empty_table_only_known_name_results(self, fake_executor):
        fake_executor.add_table('testdb', TableSchema(
            schema='dbo', name='Empty',
            columns=[
                ColumnSchema(name='Email', data_type='varchar', max_length=100),
                ColumnSchema(name='Remarks', data_type='varchar', max_length=100),
            ]
        ), [])

        results = PiiScanner(ScanContext(catalog=_catalog())).scan_database(fake_executor, 'testdb')

        assert [result.found_with for result in results] == [FOUND_WITH_KNOWN_NAME]
        assert not any(result.found_with == FOUND_WITH_PATTERN for result in results)
        assert not any(query.startswith('SELECT TOP') for query in fake_executor.queries)

    def test_pattern_match_on_sampled_values(self, customer_executor):
        context = ScanContext(catalog=_catalog(), sample_size=10)
        results = PiiScanner(context).scan_database(customer_executor, 'testdb')

        by_column = {(result.column, result.found_with) for result in results}
        assert ('Email', FOUND_WITH_KNOWN_NAME) in by_column
        assert ('Email', FOUND_WITH_PATTERN) in by_column
        assert ('Notes', FOUND_WITH_PATTERN) not in by_column

        pattern_result = next(result for result in results if result.found_with == FOUND_WITH_PATTERN)
        assert pattern_result.country == "All"
        assert pattern_result.description == "E-mail address"
        assert pattern_result.to_dict()['PII Category'] == "Contact"

    def test_sample_query_trims_text_columns(self, customer_executor):
        PiiScanner(ScanContext(catalog=_catalog(), sample_size=7)).scan_database(customer_executor, 'testdb')

        samples = [query for query in customer_executor.queries if query.startswith('SELECT TOP')]
        assert "SELECT TOP (7) LTRIM(RTRIM([Email])) AS [Value] FROM [testdb].[dbo].[Customer]" in samples
        assert "SELECT TOP (7) [Salary] AS [Value] FROM [testdb].[dbo].[Customer]" in samples

    def test_sample_size_override_leaves_context_alone(self, customer_executor):
        context = ScanContext(catalog=_catalog(), sample_size=7)

        PiiScanner(context).scan_database(customer_executor, 'testdb', sample_size=3)

        assert context.sample_size == 7
        samples = [query for query in customer_executor.queries if query.startswith('SELECT TOP')]
        assert samples and all(query.startswith('SELECT TOP (3)') for query in samples)

    def test_rescan_suppresses_duplicates(self, customer_executor):
        scanner = PiiScanner(ScanContext(catalog=_catalog()))
        first = len(scanner.scan_database(customer_executor, 'testdb'))
        second = len(scanner.scan_database(customer_executor, 'testdb'))

        assert first == second

    def test_sampling_failure_continues(self, customer_executor):
        customer_executor.fail_on.append('LTRIM(RTRIM([Email]))')
        context = ScanContext(catalog=_catalog())

        results = PiiScanner(context).scan_database(customer_executor, 'testdb')

        assert [result.found_with for result in results] == [FOUND_WITH_KNOWN_NAME]
        assert len(context.errors) == 1
        assert any('[Notes]' in query for query in customer_executor.queries)

    def test_table_and_column_filters(self, customer_executor):
        context = ScanContext(catalog=_catalog())

        results = PiiScanner(context).scan_database(
            customer_executor, 'testdb', exclude_columns=['Email']
        )

        assert results == []


class TestScanInstances:
    """Tests for scan_instances."""

    def test_connection_failure_does_not_stop_other_instances(self, customer_executor):
        def connector(instance):
            if instance.name == 'down':
                raise DatabaseConnectionError("unreachable", instance.name)
            return customer_executor

        context = ScanContext(catalog=_catalog())
        results = scan_instances(
            context,
            [InstanceConfig(name='down'), InstanceConfig(name='sql01')],
            connector=connector
        )

        assert {result.database for result in results} == {'testdb'}
        assert len(context.errors) == 1
        assert customer_executor.closed

    def test_system_databases_skipped(self):
        executor = FakeExecutor()
        executor.add_table('master', TableSchema(
            schema='dbo', name='Users', columns=[ColumnSchema(name='Email', data_type='varchar', max_length=50)]
        ), [{'Email': 'a@b.com'}])

        results = scan_instances(ScanContext(catalog=_catalog()), [InstanceConfig(name='sql01')],
                                 connector=lambda instance: executor)

        assert results == []
