"""Tests for the masking configuration model."""

import json

import pytest

from database_masking.core.exceptions import ConfigLoadError, ValueConversionError
from database_masking.core.masking_config import (
    UNSUPPORTED_TYPE, ColumnGenerationStrategy, MaskingColumnSpec, MaskingDocument, load_masking_config,
    new_column_value, save_masking_config, validate_config
)


def _document(*columns, table='Customer'):
    return MaskingDocument.model_validate({
        'Name': 'testdb',
        'Tables': [{'Name': table, 'Schema': 'dbo', 'Columns': list(columns)}]
    })


class TestStrategies:
    """Tests for strategy resolution at load time."""

    def test_strategy_per_column(self):
        document = _document(
            {'Name': 'A', 'ColumnType': 'varchar', 'StaticValue': 'x'},
            {'Name': 'B', 'ColumnType': 'int', 'Action': {'Category': 'Number', 'Type': 'Add', 'Value': 1}},
            {'Name': 'C', 'ColumnType': 'varchar', 'Composite': [{'Type': 'Static', 'Value': 'x'}]},
            {'Name': 'D', 'ColumnType': 'varchar', 'MaskingType': 'Name', 'SubType': 'FirstName'},
        )
        strategies = [column.strategy for column in document.tables[0].columns]

        assert strategies == [
            ColumnGenerationStrategy.STATIC,
            ColumnGenerationStrategy.ACTION,
            ColumnGenerationStrategy.COMPOSITE,
            ColumnGenerationStrategy.RANDOMIZED,
        ]

    def test_pascal_case_keys(self):
        document = _document({'Name': 'Email', 'ColumnType': 'varchar(100)', 'Deterministic': True,
                              'KeepNull': True, 'Nullable': True, 'MaxValue': 20})
        column = document.tables[0].columns[0]

        assert column.deterministic and column.keep_null and column.nullable
        assert column.max_value == 20
        assert document.tables[0].schema_name == 'dbo'


class TestValidateConfig:
    """Tests for validate_config."""

    def test_valid_document(self, service):
        document = _document({'Name': 'FirstName', 'ColumnType': 'nvarchar(50)',
                              'MaskingType': 'Name', 'SubType': 'FirstName'})
        assert validate_config(document, service=service) == []

    def test_unsupported_type_rejected(self, service):
        document = _document({'Name': 'Shape', 'ColumnType': 'geometry'})
        errors = validate_config(document, service=service)

        assert len(errors) == 1
        assert errors[0].code == UNSUPPORTED_TYPE

    def test_allow_list_override(self, service):
        document = _document({'Name': 'Shape', 'ColumnType': 'geometry'})

        assert validate_config(document, ['dbo.Customer.Shape'], service=service) == []
        assert validate_config(document, ['Shape'], service=service) == []

    def test_action_and_composite_conflict(self, service):
        document = _document({
            'Name': 'A', 'ColumnType': 'varchar',
            'Action': {'Category': 'String', 'Type': 'Set', 'Value': 'x'},
            'Composite': [{'Type': 'Static', 'Value': 'y'}]
        })
        errors = validate_config(document, service=service)

        assert any('cannot be combined' in error.reason for error in errors)

    def test_invalid_actions(self, service):
        document = _document(
            {'Name': 'A', 'ColumnType': 'int', 'Action': {'Category': 'Number', 'Type': 'Add'}},
            {'Name': 'B', 'ColumnType': 'varchar', 'Action': {'Category': 'String', 'Type': 'Divide', 'Value': 2}},
            {'Name': 'C', 'ColumnType': 'date',
             'Action': {'Category': 'DateTime', 'Type': 'Add', 'Value': 1, 'SubCategory': 'fortnight'}},
            {'Name': 'D', 'ColumnType': 'int', 'Action': {'Category': 'Colour', 'Type': 'Set', 'Value': 1}},
        )
        errors = validate_config(document, service=service)

        assert {error.column for error in errors} == {'A', 'B', 'C', 'D'}

    def test_unknown_masking_type(self, service):
        document = _document({'Name': 'A', 'ColumnType': 'varchar', 'MaskingType': 'Spaceship'})
        assert len(validate_config(document, service=service)) == 1

    def test_min_greater_than_max(self, service):
        document = _document({'Name': 'A', 'ColumnType': 'int', 'MinValue': 10, 'MaxValue': 5})
        assert 'MinValue' in validate_config(document, service=service)[0].reason

    def test_duplicate_column(self, service):
        document = _document({'Name': 'A', 'ColumnType': 'int'}, {'Name': 'a', 'ColumnType': 'int'})
        assert 'more than once' in validate_config(document, service=service)[0].reason

    def test_date_action_needs_whole_number(self, service):
        document = _document(
            {'Name': 'Hired', 'ColumnType': 'date', 'Action': {'Category': 'DateTime', 'Type': 'Add', 'Value': 'abc'}},
            {'Name': 'Left', 'ColumnType': 'date', 'Action': {'Category': 'DateTime', 'Type': 'Subtract', 'Value': '2'}},
        )
        errors = validate_config(document, service=service)

        assert [error.column for error in errors] == ['Hired']
        assert 'whole number' in errors[0].reason

    def test_composite_column_item_needs_value(self, service):
        document = _document({'Name': 'Notes', 'ColumnType': 'varchar(200)',
                              'Composite': [{'Type': 'Column'}, {'Type': 'Static', 'Value': '-'}]})
        errors = validate_config(document, service=service)

        assert len(errors) == 1
        assert 'requires a Value' in errors[0].reason


class TestConfigFiles:
    """Tests for loading and saving masking configurations."""

    def test_load_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            'Name': 'testdb',
            'Tables': [{'Name': 'Customer', 'Schema': 'dbo', 'HasUniqueIndex': True,
                        'Columns': [{'Name': 'Email', 'ColumnType': 'varchar(100)'}]}]
        }), encoding='utf-8')

        document = load_masking_config(str(path))

        assert document.tables[0].has_unique_index
        assert document.get_table('DBO', 'customer').get_column('EMAIL').name == 'Email'

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "Name: testdb\n"
            "Tables:\n"
            "  - Name: Customer\n"
            "    Columns:\n"
            "      - Name: Email\n"
            "        ColumnType: varchar(100)\n",
            encoding='utf-8'
        )

        assert load_masking_config(str(path)).tables[0].schema_name == 'dbo'

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigLoadError):
            load_masking_config(str(tmp_path / "missing.json"))

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{", encoding='utf-8')
        with pytest.raises(ConfigLoadError):
            load_masking_config(str(path))

    def test_schema_violation(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({'Tables': [{'Columns': []}]}), encoding='utf-8')
        with pytest.raises(ConfigLoadError):
            load_masking_config(str(path))

    def test_save_into_directory(self, tmp_path):
        document = _document({'Name': 'Email', 'ColumnType': 'varchar(100)', 'MaskingType': 'Internet'})

        target = save_masking_config(document, str(tmp_path), 'sql01\\inst', 'testdb')

        assert target.name == 'sql01$inst.testdb.DataMaskingConfig.json'
        reloaded = load_masking_config(str(target))
        assert reloaded.tables[0].columns[0].masking_type == 'Internet'
        assert 'StaticValue' not in target.read_text(encoding='utf-8')


class TestNewColumnValue:
    """Tests for new_column_value."""

    def test_tightest_length_wins(self, service):
        column = MaskingColumnSpec(name='Code', column_type='varchar(10)', max_value=8)
        for _ in range(30):
            assert len(new_column_value(service, column, max_value=5)) <= 5

    def test_declared_length_caps_generation(self, service):
        column = MaskingColumnSpec(name='Code', column_type='varchar(3)', masking_type='Name', sub_type='LastName')
        for _ in range(10):
            assert len(new_column_value(service, column)) <= 3

    def test_unsupported_type_becomes_conversion_error(self, service):
        column = MaskingColumnSpec(name='Data', column_type='sql_variant')
        with pytest.raises(ValueConversionError):
            new_column_value(service, column)
