"""Shared test fixtures."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent))
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from fakes import FakeExecutor  # noqa: E402
from database_masking.core.randomizer import RandomizedValueService  # noqa: E402
from database_masking.core.schema import ColumnSchema, TableSchema  # noqa: E402


@pytest.fixture
def fake_executor() -> FakeExecutor:
    """Empty in-memory SQL Server."""
    return FakeExecutor()


@pytest.fixture
def service() -> RandomizedValueService:
    """Seeded randomized value service."""
    return RandomizedValueService(seed=1234)


@pytest.fixture
def customer_executor(fake_executor) -> FakeExecutor:
    """Database 'testdb' with a customer table without identity column."""
    table = TableSchema(
        schema='dbo',
        name='Customer',
        columns=[
            ColumnSchema(name='FirstName', data_type='nvarchar', max_length=50, nullable=False),
            ColumnSchema(name='Email', data_type='varchar', max_length=100, nullable=True),
            ColumnSchema(name='Notes', data_type='varchar', max_length=200, nullable=True),
            ColumnSchema(name='Salary', data_type='decimal', precision=10, scale=2, nullable=True),
        ]
    )
    fake_executor.add_table('testdb', table, [
        {'FirstName': 'Alice', 'Email': 'alice@example.com', 'Notes': 'vip', 'Salary': 1000},
        {'FirstName': 'Bob', 'Email': 'bob@example.com', 'Notes': None, 'Salary': 2000},
        {'FirstName': 'Carol', 'Email': 'alice@example.com', 'Notes': 'call back', 'Salary': None},
        {'FirstName': 'Dave', 'Email': None, 'Notes': None, 'Salary': 3000},
        {'FirstName': 'Erin', 'Email': 'bob@example.com', 'Notes': 'none', 'Salary': 4000},
    ])
    return fake_executor
