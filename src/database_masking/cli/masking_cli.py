#!/usr/bin/env python3
"""
Database Masking CLI Tool
Command-line interface for PII scanning, masking configuration and in-place
data masking of SQL Server databases.
"""

import functools
import json
import logging
import sys
from typing import List, Optional

import click
from tabulate import tabulate

from .. import __version__
from ..core.config import ConfigManager, InstanceConfig, ToolConfig, create_default_config_file
from ..core.config_builder import build_masking_config
from ..core.connection import connect
from ..core.exceptions import MaskingError
from ..core.masking import MaskingContext, MaskingOptions, invoke_data_masking
from ..core.masking_config import load_masking_config, save_masking_config, validate_config
from ..core.randomizer import RandomizedValueService
from ..core.rules import load_rules
from ..core.scanner import ScanContext, scan_instances


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def _load_tool_config(ctx) -> ToolConfig:
    return ConfigManager(ctx.obj.get('config_path')).load_config()


def _resolve_instances(tool_config: ToolConfig, sql_instances: List[str],
                       username: Optional[str], password: Optional[str]) -> List[InstanceConfig]:
    """Named instances from the command line, falling back to the configured ones."""
    if not sql_instances:
        return list(tool_config.instances)

    instances = []
    for name in sql_instances:
        configured = next((instance for instance in tool_config.instances if instance.name == name), None)
        instances.append(configured or InstanceConfig(name=name, server=name, username=username, password=password))
    return instances


def _connector(tool_config: ToolConfig):
    return functools.partial(
        connect,
        minimum_version=tool_config.minimum_version,
        encryption_key=tool_config.encryption_key
    )


def instance_options(command):
    """Connection options shared by commands that talk to SQL Server."""
    command = click.option('--password', envvar='DBMASK_SQL_PASSWORD', help='SQL login password')(command)
    command = click.option('--username', envvar='DBMASK_SQL_USERNAME', help='SQL login, integrated security when omitted')(command)
    command = click.option('--sql-instance', '-s', 'sql_instances', multiple=True,
                           help='Target SQL Server instance (repeatable)')(command)
    return command


@click.group()
@click.option('--config', '-c', type=click.Path(exists=True), help='Configuration file path')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
@click.pass_context
def cli(ctx, config, verbose):
    """Database Masking - PII discovery and data masking for SQL Server."""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config


@cli.command('scan')
@instance_options
@click.option('--database', '-d', 'databases', multiple=True, help='Database to scan (repeatable)')
@click.option('--exclude-database', 'exclude_databases', multiple=True, help='Database to skip')
@click.option('--table', 'tables', multiple=True, help='Only scan this table')
@click.option('--exclude-table', 'exclude_tables', multiple=True, help='Skip this table')
@click.option('--column', 'columns', multiple=True, help='Only scan this column')
@click.option('--exclude-column', 'exclude_columns', multiple=True, help='Skip this column')
@click.option('--sample-count', type=int, help='Rows sampled per column')
@click.option('--known-names-path', type=click.Path(), help='Additional known name rule file')
@click.option('--patterns-path', type=click.Path(), help='Additional pattern rule file')
@click.option('--exclude-default-known-names', is_flag=True, help='Skip the built-in known name rules')
@click.option('--exclude-default-patterns', is_flag=True, help='Skip the built-in pattern rules')
@click.option('--country', 'countries', multiple=True, help='Only use patterns for this country')
@click.option('--country-code', 'country_codes', multiple=True, help='Only use patterns for this country code')
@click.option('--format', 'output_format', type=click.Choice(['table', 'json']), default='table',
              help='Output format')
@click.pass_context
def scan(ctx, sql_instances, username, password, databases, exclude_databases, tables, exclude_tables,
         columns, exclude_columns, sample_count, known_names_path, patterns_path,
         exclude_default_known_names, exclude_default_patterns, countries, country_codes, output_format):
    """Scan databases for columns containing PII."""
    try:
        tool_config = _load_tool_config(ctx)
        catalog = load_rules(
            builtin_known_names_path=tool_config.known_names_path,
            builtin_patterns_path=tool_config.patterns_path,
            extra_known_names_path=known_names_path or tool_config.extra_known_names_path,
            extra_patterns_path=patterns_path or tool_config.extra_patterns_path,
            exclude_builtin_known_names=exclude_default_known_names,
            exclude_builtin_patterns=exclude_default_patterns,
            countries=list(countries),
            country_codes=list(country_codes)
        )

        instances = _resolve_instances(tool_config, list(sql_instances), username, password)
        if not instances:
            click.echo("❌ No SQL Server instance given or configured", err=True)
            sys.exit(1)

        context = ScanContext(catalog=catalog, sample_size=sample_count or tool_config.sample_count)
        results = scan_instances(
            context, instances,
            databases=list(databases),
            exclude_databases=list(exclude_databases),
            connector=_connector(tool_config),
            tables=list(tables),
            exclude_tables=list(exclude_tables),
            columns=list(columns),
            exclude_columns=list(exclude_columns)
        )
    except MaskingError as e:
        click.echo(f"❌ Scan failed: {e}", err=True)
        sys.exit(1)

    for error in context.errors:
        click.echo(f"⚠️  {error}", err=True)

    if output_format == 'json':
        click.echo(json.dumps([result.to_dict() for result in results], indent=2))
        return

    if not results:
        click.echo("No PII found.")
        return

    table_data = [
        [result.sql_instance, result.database, result.schema, result.table, result.column,
         result.pii_category, result.pii_name, result.found_with, result.country or '']
        for result in results
    ]
    headers = ['SqlInstance', 'Database', 'Schema', 'Table', 'Column', 'PII Category', 'PII Name',
               'FoundWith', 'Country']
    click.echo(tabulate(table_data, headers=headers, tablefmt='grid'))


@cli.command('mask')
@instance_options
@click.option('--database', '-d', 'databases', multiple=True, help='Database to mask (repeatable)')
@click.option('--file-path', '-f', 'file_path', required=True, type=click.Path(exists=True),
              help='Masking configuration file')
@click.option('--table', 'tables', multiple=True, help='Only mask this table')
@click.option('--exclude-table', 'exclude_tables', multiple=True, help='Skip this table')
@click.option('--column', 'columns', multiple=True, help='Only mask this column')
@click.option('--exclude-column', 'exclude_columns', multiple=True, help='Skip this column')
@click.option('--batch-size', type=int, help='UPDATE statements per batch')
@click.option('--retry', type=int, help='Attempts per row when generating unique values')
@click.option('--modulus-factor', type=int, help='Every Nth row of a KeepNull column is set to NULL')
@click.option('--max-value', type=int, help='Global maximum length for generated strings')
@click.option('--exact-length', is_flag=True, help='Generated strings keep the length of the original value')
@click.option('--character-string', help='Characters used for random strings')
@click.option('--locale', help='Faker locale')
@click.option('--command-timeout', type=int, help='Seconds per statement')
@click.option('--dictionary-file-path', 'dictionary_file_path', multiple=True, type=click.Path(exists=True),
              help='Dictionary CSV to import before masking (repeatable)')
@click.option('--dictionary-export-path', type=click.Path(), help='Directory for the dictionary export')
@click.option('--allowed-type', 'allowed_types', multiple=True,
              help='Column (column or schema.table.column) allowed to keep an unsupported type')
@click.option('--what-if', is_flag=True, help='Show what would be masked without changing data')
@click.option('--force', is_flag=True, help='Do not ask for confirmation')
@click.pass_context
def mask(ctx, sql_instances, username, password, databases, file_path, tables, exclude_tables, columns,
         exclude_columns, batch_size, retry, modulus_factor, max_value, exact_length, character_string,
         locale, command_timeout, dictionary_file_path, dictionary_export_path, allowed_types, what_if, force):
    """Mask databases in place from a masking configuration."""
    try:
        tool_config = _load_tool_config(ctx)
        document = load_masking_config(file_path)

        options = MaskingOptions(
            batch_size=batch_size or tool_config.batch_size,
            retry=retry or tool_config.retry,
            modulus_factor=modulus_factor if modulus_factor is not None else tool_config.modulus_factor,
            max_value=max_value,
            exact_length=exact_length,
            character_string=character_string or tool_config.character_string,
            locale=locale or tool_config.locale,
            command_timeout=command_timeout or 300,
            tables=list(tables),
            columns=list(columns),
            exclude_tables=list(exclude_tables),
            exclude_columns=list(exclude_columns),
            dictionary_file_path=list(dictionary_file_path),
            dictionary_export_path=dictionary_export_path,
            dry_run=what_if,
            confirm=None if (force or what_if) else (lambda message: click.confirm(f"{message}?", default=False)),
            work_database=tool_config.work_database,
            allowed_types=list(allowed_types)
        )

        instances = _resolve_instances(tool_config, list(sql_instances), username, password)
        if not instances:
            click.echo("❌ No SQL Server instance given or configured", err=True)
            sys.exit(1)
        if command_timeout:
            for instance in instances:
                instance.command_timeout = command_timeout

        context = MaskingContext(document=document, options=options)
        results = invoke_data_masking(context, instances, list(databases) or None, _connector(tool_config))
    except MaskingError as e:
        click.echo(f"❌ Masking failed: {e}", err=True)
        sys.exit(1)

    for error in context.errors:
        click.echo(f"⚠️  {error}", err=True)

    if results:
        rows = [result.to_dict() for result in results]
        headers = ['SqlInstance', 'Database', 'Schema', 'Table', 'Columns', 'Rows', 'Elapsed', 'Status']
        click.echo(tabulate([[row[header] for header in headers] for row in rows], headers=headers, tablefmt='grid'))
    else:
        click.echo("No tables were masked.")

    if any(result.status.value == 'Failed' for result in results):
        sys.exit(1)


# Configuration Commands
@cli.group()
def config():
    """Configuration management commands."""
    pass


@config.command('create-default')
@click.option('--output', '-o', default='masking_config.yaml', help='Output file path')
def create_default_config(output):
    """Create default tool configuration file."""
    try:
        create_default_config_file(output)
        click.echo(f"✅ Default configuration created: {output}")
    except OSError as e:
        click.echo(f"❌ Error creating configuration: {e}", err=True)
        sys.exit(1)


@config.command('new')
@instance_options
@click.option('--database', '-d', required=True, help='Database to describe')
@click.option('--path', '-p', 'output_path', default='.', type=click.Path(), help='Output directory or file')
@click.option('--table', 'tables', multiple=True, help='Only include this table')
@click.option('--exclude-table', 'exclude_tables', multiple=True, help='Leave this table out')
@click.option('--column', 'columns', multiple=True, help='Only include this column')
@click.option('--exclude-column', 'exclude_columns', multiple=True, help='Leave this column out')
@click.option('--sample-count', type=int, help='Rows sampled per column')
@click.pass_context
def new_config(ctx, sql_instances, username, password, database, output_path, tables, exclude_tables,
               columns, exclude_columns, sample_count):
    """Create a masking configuration from a PII scan."""
    executor = None
    try:
        tool_config = _load_tool_config(ctx)
        instances = _resolve_instances(tool_config, list(sql_instances), username, password)
        if len(instances) != 1:
            click.echo("❌ Exactly one SQL Server instance is required", err=True)
            sys.exit(1)

        executor = _connector(tool_config)(instances[0])
        document = build_masking_config(
            executor, database,
            tables=list(tables) or None,
            exclude_tables=list(exclude_tables),
            columns=list(columns),
            exclude_columns=list(exclude_columns),
            sample_size=sample_count or tool_config.sample_count
        )
        target = save_masking_config(document, output_path, executor.server, database)
        click.echo(f"✅ Masking configuration created: {target}")
    except MaskingError as e:
        click.echo(f"❌ Error creating masking configuration: {e}", err=True)
        sys.exit(1)
    finally:
        if executor is not None:
            executor.close()


@config.command('validate')
@click.argument('config_file', type=click.Path(exists=True))
@click.option('--allowed-type', 'allowed_types', multiple=True,
              help='Column (column or schema.table.column) allowed to keep an unsupported type')
def validate_masking_config(config_file, allowed_types):
    """Validate a masking configuration file."""
    try:
        document = load_masking_config(config_file)
    except MaskingError as e:
        click.echo(f"❌ Configuration validation failed: {e}", err=True)
        sys.exit(1)

    errors = validate_config(document, allowed_types)
    if errors:
        for error in errors:
            click.echo(f"❌ {error}", err=True)
        sys.exit(1)

    click.echo(f"✅ Configuration is valid: {config_file}")


@cli.command('types')
@click.option('--masking-type', help='Only show this masking type')
def types(masking_type):
    """List the supported masking types and sub types."""
    supported = RandomizedValueService().supported_types()
    table_data = [
        [name, ', '.join(sub_types)]
        for name, sub_types in supported.items()
        if not masking_type or name == masking_type.lower()
    ]
    click.echo(tabulate(table_data, headers=['Type', 'SubTypes'], tablefmt='grid'))


@cli.command('version')
def version():
    """Show version information."""
    click.echo(f"Database Masking v{__version__}")
    click.echo("PII discovery and data masking for SQL Server")
    click.echo("\nComponents:")
    click.echo("  - PII Scanner")
    click.echo("  - Masking Configuration Builder")
    click.echo("  - Deterministic Value Store")
    click.echo("  - Uniqueness Resolver")
    click.echo("  - Data Masking Executor")


if __name__ == '__main__':
    cli()
