#!/usr/bin/env python
# dbmigrate/sqlalchemy/executor.py

"""
===============================================================================

    Copyright (C) 2024 the dbmigrate authors.

    This file is part of dbmigrate.

    Licensed under the Apache License, Version 2.0 (the "License");
    you may not use this file except in compliance with the License.
    You may obtain a copy of the License at

        https://www.apache.org/licenses/LICENSE-2.0

    Unless required by applicable law or agreed to in writing, software
    distributed under the License is distributed on an "AS IS" BASIS,
    WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
    See the License for the specific language governing permissions and
    limitations under the License.

===============================================================================

**Running SQL against one side of a migration.**

:class:`SqlExecutor` is the narrow interface the migration engines use:

- :meth:`SqlExecutor.execute` runs a statement and returns the row count;
- :meth:`SqlExecutor.execute_scalar` returns the first column of the first
  row;
- :meth:`SqlExecutor.open_cursor` streams rows forward-only, as tuples in
  SELECT-list order;
- :meth:`SqlExecutor.inspect_tables` describes tables, keys and columns;
- :meth:`SqlExecutor.close`.

Parameters are passed as a dictionary and bound by name (``:p0``, ``:p1``,
...), never spliced into the SQL.

:class:`SqlaExecutor` implements this over an SQLAlchemy :class:`Engine`. It
holds ONE connection for its lifetime, so that identity read-back queries
(``SELECT @@IDENTITY`` and friends) run in the same session as the insert that
generated the identity, and it commits after every statement.

"""

from contextlib import contextmanager
from typing import (
    Any,
    Dict,
    Generator,
    Iterable,
    Iterator,
    List,
    Optional,
    Sequence,
    TYPE_CHECKING,
)

from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql.expression import text

from dbmigrate.exceptions import add_info_to_exception
from dbmigrate.logs import get_brace_style_log_with_null_handler
from dbmigrate.sqlalchemy.dialect import (
    DatabaseType,
    DialectSql,
    get_dialect_sql,
)
from dbmigrate.sqlalchemy.schema import (
    gen_table_inspection_info,
    TableInspectionInfo,
)
from dbmigrate.sqlalchemy.session import get_safe_url_from_engine

if TYPE_CHECKING:
    from sqlalchemy.engine.interfaces import Dialect

log = get_brace_style_log_with_null_handler(__name__)

SqlParams = Optional[Dict[str, Any]]


# =============================================================================
# Interface
# =============================================================================

class SqlExecutor(object):
    """
    Executes SQL for one database. Subclass this to run migrations over
    something other than SQLAlchemy, or to record SQL in tests.
    """
    #: strategy for the dialect of this database
    sql = None  # type: DialectSql

    @property
    def database_type(self) -> DatabaseType:
        return self.sql.database_type

    def execute(self, sql: str, params: SqlParams = None,
                timeout: int = None) -> int:
        """
        Executes a statement; returns the number of rows affected (which may
        be -1 if the driver doesn't know).
        """
        raise NotImplementedError

    def execute_scalar(self, sql: str, params: SqlParams = None,
                       timeout: int = None) -> Any:
        """
        Executes a query and returns the first column of the first row, or
        ``None`` if there are no rows.
        """
        raise NotImplementedError

    @contextmanager
    def open_cursor(self, sql: str, params: SqlParams = None,
                    timeout: int = None
                    ) -> Generator[Iterator[Sequence[Any]], None, None]:
        """
        Context manager yielding a forward-only iterator of rows (as
        tuples, in the order of the SELECT list). The cursor is closed on
        exit.
        """
        raise NotImplementedError
        # noinspection PyUnreachableCode
        yield

    def inspect_tables(self, table_names: Iterable[str] = None
                       ) -> List[TableInspectionInfo]:
        """
        Describes the tables (all, or just those named): columns, primary
        keys, foreign keys.
        """
        raise NotImplementedError

    def close(self) -> None:
        pass

    def __enter__(self) -> "SqlExecutor":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


# =============================================================================
# SQLAlchemy implementation
# =============================================================================

class SqlaExecutor(SqlExecutor):
    """
    :class:`SqlExecutor` over an SQLAlchemy :class:`Engine`.
    """
    def __init__(self, engine: Engine,
                 database_type: DatabaseType = None) -> None:
        """
        Args:
            engine:
                the SQLAlchemy engine
            database_type:
                override the :class:`DatabaseType` deduced from the engine's
                dialect
        """
        self.engine = engine
        self.sql = get_dialect_sql(engine, database_type)
        self._connection = None  # type: Optional[Connection]
        self._timeout = None  # type: Optional[int]

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__}("
            f"{get_safe_url_from_engine(self.engine)}, "
            f"{self.database_type.value})>"
        )

    @property
    def dialect(self) -> "Dialect":
        return self.engine.dialect

    @property
    def connection(self) -> Connection:
        """
        The connection, opened on first use.
        """
        if self._connection is None or self._connection.closed:
            log.debug("Connecting: {!r}", self)
            self._connection = self.engine.connect()
        return self._connection

    def _apply_timeout(self, timeout: Optional[int]) -> None:
        """
        Some DBAPI drivers (e.g. ``pyodbc``) expose a per-connection query
        timeout as a ``timeout`` attribute; set it if there is one.
        """
        if timeout is None or timeout == self._timeout:
            return
        dbapi_connection = self.connection.connection.dbapi_connection
        if hasattr(dbapi_connection, "timeout"):
            try:
                dbapi_connection.timeout = timeout
            except (AttributeError, TypeError):
                log.debug("Driver won't accept a query timeout")
        self._timeout = timeout

    def _fail(self, exc: SQLAlchemyError, sql: str,
              params: SqlParams) -> None:
        # Leave the connection usable for the next statement.
        self.connection.rollback()
        add_info_to_exception(exc, {"sql": sql, "params": params})

    def execute(self, sql: str, params: SqlParams = None,
                timeout: int = None) -> int:
        self._apply_timeout(timeout)
        try:
            result = self.connection.execute(text(sql), params or {})
            rowcount = result.rowcount
            result.close()
            self.connection.commit()
        except SQLAlchemyError as exc:
            self._fail(exc, sql, params)
            raise
        return rowcount

    def execute_scalar(self, sql: str, params: SqlParams = None,
                       timeout: int = None) -> Any:
        self._apply_timeout(timeout)
        try:
            value = self.connection.execute(text(sql), params or {}).scalar()
            self.connection.commit()
        except SQLAlchemyError as exc:
            self._fail(exc, sql, params)
            raise
        return value

    @contextmanager
    def open_cursor(self, sql: str, params: SqlParams = None,
                    timeout: int = None
                    ) -> Generator[Iterator[Sequence[Any]], None, None]:
        self._apply_timeout(timeout)
        try:
            result = self.connection.execute(
                text(sql), params or {},
                execution_options={"stream_results": True})
        except SQLAlchemyError as exc:
            self._fail(exc, sql, params)
            raise
        try:
            yield iter(result)
        finally:
            result.close()
            self.connection.commit()

    def inspect_tables(self, table_names: Iterable[str] = None
                       ) -> List[TableInspectionInfo]:
        infos = list(gen_table_inspection_info(self.connection, table_names))
        self.connection.commit()
        return infos

    def close(self) -> None:
        if self._connection is not None:
            log.debug("Closing connection: {!r}", self)
            self._connection.close()
            self._connection = None
            self._timeout = None
