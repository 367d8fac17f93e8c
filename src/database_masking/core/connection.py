#!/usr/bin/env python3
"""
SQL Execution Boundary
Generic "execute query, get rows" / "execute statement" interface used by the
scanner and masking executor, with a SQLAlchemy + pyodbc implementation for
SQL Server.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError

from .config import InstanceConfig
from .exceptions import DatabaseConnectionError, SqlExecutionError, UniqueViolationError


# Duplicate key row in unique index / violation of UNIQUE KEY constraint
UNIQUE_VIOLATION_ERRORS = ('2601', '2627')

# ODBC timeout state, reported as OperationalError by pyodbc
TIMEOUT_SQLSTATE = 'HYT00'


class SqlExecutor(ABC):
    """Connection to one SQL Server instance."""

    server: str = ""
    computer_name: str = ""
    instance_name: str = ""
    command_timeout: int = 300

    @abstractmethod
    def execute_query(self, sql: str, timeout: Optional[int] = None) -> List[Dict[str, Any]]:
        """Run a read statement and return rows as dictionaries."""

    @abstractmethod
    def execute_non_query(self, sql: str, timeout: Optional[int] = None) -> int:
        """Run DDL/DML and return the affected row count."""

    def execute_scalar(self, sql: str, timeout: Optional[int] = None) -> Any:
        rows = self.execute_query(sql, timeout)
        if not rows:
            return None
        return next(iter(rows[0].values()))

    def close(self) -> None:
        pass


def translate_driver_error(error: DBAPIError, instance: str = "") -> Exception:
    """Map a SQLAlchemy/pyodbc error onto the toolkit error kinds."""
    message = str(error.orig) if error.orig is not None else str(error)

    if isinstance(error, IntegrityError) and any(code in message for code in UNIQUE_VIOLATION_ERRORS):
        return UniqueViolationError(message)

    if isinstance(error, (OperationalError, InterfaceError)) and TIMEOUT_SQLSTATE not in message:
        return DatabaseConnectionError(message, instance)

    if error.connection_invalidated:
        return DatabaseConnectionError(message, instance)

    return SqlExecutionError(message)


class SqlAlchemyExecutor(SqlExecutor):
    """SQL Server connection backed by a SQLAlchemy engine."""

    def __init__(self, engine: Engine, server: str, command_timeout: int = 300):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.engine = engine
        self.server = server
        self.computer_name = server.split('\\')[0]
        self.instance_name = server.split('\\')[1] if '\\' in server else 'MSSQLSERVER'
        self.command_timeout = command_timeout

    def _apply_timeout(self, conn, timeout: Optional[int]) -> None:
        # pyodbc exposes the query timeout on the DBAPI connection
        dbapi_connection = conn.connection.dbapi_connection
        if hasattr(dbapi_connection, 'timeout'):
            dbapi_connection.timeout = timeout if timeout is not None else self.command_timeout

    def execute_query(self, sql: str, timeout: Optional[int] = None) -> List[Dict[str, Any]]:
        self.logger.debug(f"Query on {self.server}: {sql}")
        try:
            with self.engine.connect() as conn:
                self._apply_timeout(conn, timeout)
                result = conn.exec_driver_sql(sql)
                return [dict(row._mapping) for row in result.fetchall()]
        except DBAPIError as e:
            raise translate_driver_error(e, self.server) from e

    def execute_non_query(self, sql: str, timeout: Optional[int] = None) -> int:
        self.logger.debug(f"Statement on {self.server}: {sql[:500]}")
        try:
            with self.engine.connect() as conn:
                self._apply_timeout(conn, timeout)
                result = conn.exec_driver_sql(sql)
                return result.rowcount
        except DBAPIError as e:
            raise translate_driver_error(e, self.server) from e

    def close(self) -> None:
        self.engine.dispose()


def connect(
    instance: InstanceConfig,
    minimum_version: int = 9,
    encryption_key: Optional[str] = None
) -> SqlAlchemyExecutor:
    """
    Connect to a SQL Server instance and verify its engine version.

    Args:
        instance: Instance configuration
        minimum_version: Lowest accepted major version (9 = SQL Server 2005)
        encryption_key: Fernet key for encrypted connection strings

    Returns:
        Executor bound to the instance

    Raises:
        DatabaseConnectionError: unreachable instance or engine too old
    """
    logger = logging.getLogger(__name__)

    try:
        engine = create_engine(
            instance.build_url(encryption_key),
            pool_pre_ping=True,
            isolation_level="AUTOCOMMIT",
            connect_args={"timeout": instance.connection_timeout}
        )
    except Exception as e:
        raise DatabaseConnectionError(f"Invalid connection settings for {instance.name}: {e}", instance.name) from e

    executor = SqlAlchemyExecutor(engine, instance.server or instance.name, instance.command_timeout)

    try:
        rows = executor.execute_query(
            "SELECT CAST(SERVERPROPERTY('ProductVersion') AS NVARCHAR(128)) AS ProductVersion, "
            "CAST(SERVERPROPERTY('MachineName') AS NVARCHAR(128)) AS ComputerName, "
            "CAST(ISNULL(SERVERPROPERTY('InstanceName'), 'MSSQLSERVER') AS NVARCHAR(128)) AS InstanceName, "
            "CAST(@@SERVERNAME AS NVARCHAR(128)) AS ServerName"
        )
    except (DatabaseConnectionError, SqlExecutionError) as e:
        engine.dispose()
        raise DatabaseConnectionError(f"Failure connecting to {instance.name}: {e}", instance.name) from e

    info = rows[0]
    major_version = int(str(info['ProductVersion']).split('.')[0])
    if major_version < minimum_version:
        engine.dispose()
        raise DatabaseConnectionError(
            f"{instance.name} is version {info['ProductVersion']}, minimum supported major version is {minimum_version}",
            instance.name
        )

    executor.server = info['ServerName'] or executor.server
    executor.computer_name = info['ComputerName'] or executor.computer_name
    executor.instance_name = info['InstanceName'] or executor.instance_name

    logger.info(f"Connected to {executor.server} (version {info['ProductVersion']})")
    return executor
