"""Tests for the db-masking command line interface."""

import json

import pytest
from click.testing import CliRunner

from database_masking.cli import masking_cli
from database_masking.cli.masking_cli import cli


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def masking_file(tmp_path):
    path = tmp_path / "testdb.json"
    path.write_text(json.dumps({
        'Name': 'testdb',
        'Tables': [{'Name': 'Customer', 'Schema': 'dbo', 'Columns': [
            {'Name': 'FirstName', 'ColumnType': 'nvarchar(50)', 'StaticValue': 'REDACTED'}
        ]}]
    }), encoding='utf-8')
    return str(path)


@pytest.fixture
def connected(monkeypatch, customer_executor):
    monkeypatch.setattr(masking_cli, 'connect', lambda instance, **kwargs: customer_executor)
    return customer_executor


class TestInformationCommands:
    """Tests for commands that need no database."""

    def test_version(self, runner):
        result = runner.invoke(cli, ['version'])

        assert result.exit_code == 0
        assert 'Database Masking v1.0.0' in result.output

    def test_types_filter(self, runner):
        result = runner.invoke(cli, ['types', '--masking-type', 'Name'])

        assert result.exit_code == 0
        assert 'firstname' in result.output
        assert 'internet' not in result.output


class TestConfigCommands:
    """Tests for the config command group."""

    def test_create_default(self, runner, tmp_path):
        output = tmp_path / "tool.yaml"

        result = runner.invoke(cli, ['config', 'create-default', '-o', str(output)])

        assert result.exit_code == 0
        assert output.exists()

    def test_validate_ok(self, runner, masking_file):
        result = runner.invoke(cli, ['config', 'validate', masking_file])

        assert result.exit_code == 0
        assert 'Configuration is valid' in result.output

    def test_validate_reports_errors(self, runner, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({'Name': 'testdb', 'Tables': [{'Name': 'Places', 'Columns': [
            {'Name': 'Shape', 'ColumnType': 'geography'}
        ]}]}), encoding='utf-8')

        failed = runner.invoke(cli, ['config', 'validate', str(path)])
        allowed = runner.invoke(cli, ['config', 'validate', str(path), '--allowed-type', 'Shape'])

        assert failed.exit_code == 1
        assert allowed.exit_code == 0

    def test_new_writes_configuration(self, runner, tmp_path, connected):
        result = runner.invoke(cli, ['config', 'new', '-s', 'sql01', '-d', 'testdb', '-p', str(tmp_path)])

        assert result.exit_code == 0
        assert (tmp_path / 'sql01.testdb.DataMaskingConfig.json').exists()
        assert connected.closed


class TestScanCommand:
    """Tests for the scan command."""

    def test_json_output(self, runner, connected):
        result = runner.invoke(cli, ['scan', '-s', 'sql01', '--exclude-default-patterns', '--format', 'json'])

        assert result.exit_code == 0
        columns = {entry['Column'] for entry in json.loads(result.stdout)}
        assert {'FirstName', 'Email'} <= columns

    def test_no_instance(self, runner, monkeypatch):
        monkeypatch.delenv('DBMASK_SQL_INSTANCES', raising=False)
        monkeypatch.delenv('DBMASK_CONNECTION', raising=False)

        result = runner.invoke(cli, ['scan'])

        assert result.exit_code == 1


class TestMaskCommand:
    """Tests for the mask command."""

    def test_what_if(self, runner, masking_file, connected):
        result = runner.invoke(cli, ['mask', '-s', 'sql01', '-f', masking_file, '--what-if'])

        assert result.exit_code == 0
        assert 'WhatIf' in result.output
        assert not connected.non_queries('UPDATE')

    def test_forced_run(self, runner, masking_file, connected):
        result = runner.invoke(cli, ['mask', '-s', 'sql01', '-f', masking_file, '--force'])

        assert result.exit_code == 0
        assert 'Successful' in result.output
        assert [row['FirstName'] for row in connected.rows('testdb', 'dbo', 'Customer')] == ['REDACTED'] * 5

    def test_declined_prompt(self, runner, masking_file, connected):
        result = runner.invoke(cli, ['mask', '-s', 'sql01', '-f', masking_file], input='n\n')

        assert result.exit_code == 0
        assert 'Skipped' in result.output
        assert connected.rows('testdb', 'dbo', 'Customer')[0]['FirstName'] == 'Alice'
