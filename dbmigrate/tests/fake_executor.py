#!/usr/bin/env python
# dbmigrate/tests/fake_executor.py

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

**Test helpers: an executor that records SQL instead of running it,
builders for table descriptions, and a mixin for in-memory SQLite source and
destination databases.**

The recording executor is used for dialects we have no local server for
(e.g. SQL Server).

"""

from contextlib import contextmanager
from typing import Any, Callable, Dict, List, Sequence, Tuple, Type

from sqlalchemy.dialects import mssql, sqlite
from sqlalchemy.dialects.mysql.base import MySQLDialect
from sqlalchemy.dialects.postgresql.base import PGDialect
from sqlalchemy.engine import create_engine
from sqlalchemy.engine.base import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.sql.expression import text
from sqlalchemy.sql.sqltypes import Integer, String

from dbmigrate.events import MigrationListener
from dbmigrate.operation import BulkDataOperation
from dbmigrate.options import MigrationOptions
from dbmigrate.schema import Schema
from dbmigrate.sqlalchemy.dialect import (
    DialectSql,
    MySqlSql,
    PostgresSql,
    SqliteSql,
    SqlServerSql,
)
from dbmigrate.sqlalchemy.executor import SqlExecutor
from dbmigrate.sqlalchemy.schema import (
    ForeignKeyInspectionInfo,
    SqlaColumnInspectionInfo,
    TableInspectionInfo,
)
from dbmigrate.sqlalchemy.session import SQLITE_MEMORY_URL


# =============================================================================
# Table descriptions
# =============================================================================

def col(name: str, type_: Any = None, nullable: bool = True,
        autoincrement: Any = "auto") -> Dict[str, Any]:
    return {
        "name": name,
        "type": type_ if type_ is not None else Integer(),
        "nullable": nullable,
        "default": None,
        "autoincrement": autoincrement,
    }


def text_col(name: str, nullable: bool = True) -> Dict[str, Any]:
    return col(name, String(50), nullable=nullable, autoincrement=False)


def fk(colname: str, referred_table: str,
       referred_column: str = "id") -> Dict[str, Any]:
    return {
        "name": None,
        "constrained_columns": [colname],
        "referred_table": referred_table,
        "referred_columns": [referred_column],
    }


def table_info(name: str,
               columns: List[Dict[str, Any]],
               pk: Sequence[str] = ("id", ),
               fks: Sequence[Dict[str, Any]] = ()) -> TableInspectionInfo:
    return TableInspectionInfo(
        name,
        [
            SqlaColumnInspectionInfo(d, ordinal=i,
                                     primary_key=d["name"] in pk)
            for i, d in enumerate(columns)
        ],
        list(pk),
        [ForeignKeyInspectionInfo(d) for d in fks],
    )


def customers_and_orders() -> List[TableInspectionInfo]:
    """
    ``orders.customer_id`` refers to ``customers.id``; both keys are
    auto-increment.
    """
    return [
        table_info("orders", [
            col("id"),
            col("customer_id"),
            text_col("item"),
        ], fks=[fk("customer_id", "customers")]),
        table_info("customers", [
            col("id"),
            text_col("name"),
        ]),
    ]


# =============================================================================
# Recording executor
# =============================================================================

class RecordingExecutor(SqlExecutor):
    """
    Records every statement. ``SELECT`` queries return the rows given for the
    table they read from; ``COUNT(*)`` returns the number of such rows (0 for
    anything with a WHERE clause unless ``existing`` says otherwise); identity
    queries return 1, 2, 3...

    Statements starting with any of ``fail_prefixes`` raise
    :exc:`sqlalchemy.exc.OperationalError`.
    """
    def __init__(self, dialect_sql: DialectSql,
                 rows: Dict[str, List[Tuple]] = None,
                 fail_prefixes: Sequence[str] = (),
                 existing: int = 0,
                 on_execute: Callable[[str], None] = None) -> None:
        self.sql = dialect_sql
        self.rows = rows or {}
        self.fail_prefixes = list(fail_prefixes)
        self.existing = existing
        self.on_execute = on_execute
        self.statements = []  # type: List[Tuple[str, Dict[str, Any]]]
        self.identity = 0

    def _table_for(self, sql: str) -> str:
        for name in self.rows:
            if f"FROM {self.sql.quote(name)}" in sql:
                return name
        return ""

    def _record(self, sql: str, params: Dict[str, Any] = None) -> None:
        self.statements.append((sql, dict(params or {})))
        if any(sql.startswith(p) for p in self.fail_prefixes):
            raise OperationalError(sql, params, Exception("refused"))

    @property
    def sql_text(self) -> List[str]:
        return [s for s, _ in self.statements]

    def execute(self, sql: str, params: Dict[str, Any] = None,
                timeout: int = None) -> int:
        self._record(sql, params)
        if self.on_execute:
            self.on_execute(sql)
        return 1

    def execute_scalar(self, sql: str, params: Dict[str, Any] = None,
                       timeout: int = None) -> Any:
        self._record(sql, params)
        if sql.startswith("SELECT COUNT(*)"):
            if " WHERE " in sql:
                return self.existing
            return len(self.rows.get(self._table_for(sql), []))
        if sql.startswith("SELECT MAX("):
            return None
        if "IDENT_CURRENT" in sql or "last_insert_rowid" in sql:
            self.identity += 1
            return self.identity
        return None

    @contextmanager
    def open_cursor(self, sql: str, params: Dict[str, Any] = None,
                    timeout: int = None):
        self._record(sql, params)
        yield iter(self.rows.get(self._table_for(sql), []))


def sqlserver_schema(infos: List[TableInspectionInfo],
                     **kwargs: Any) -> Schema:
    schema = Schema(RecordingExecutor(SqlServerSql(mssql.dialect()),
                                      **kwargs))
    schema.load(infos)
    return schema


def sqlite_schema(infos: List[TableInspectionInfo],
                  **kwargs: Any) -> Schema:
    schema = Schema(RecordingExecutor(SqliteSql(sqlite.dialect()),
                                      **kwargs))
    schema.load(infos)
    return schema


def postgres_schema(infos: List[TableInspectionInfo],
                    **kwargs: Any) -> Schema:
    schema = Schema(RecordingExecutor(PostgresSql(PGDialect()), **kwargs))
    schema.load(infos)
    return schema


def mysql_schema(infos: List[TableInspectionInfo],
                 **kwargs: Any) -> Schema:
    schema = Schema(RecordingExecutor(MySqlSql(MySQLDialect()), **kwargs))
    schema.load(infos)
    return schema


# =============================================================================
# Recording listener
# =============================================================================

class RecordingListener(MigrationListener):
    """
    Keeps every event as a ``(name, args)`` tuple.
    """
    def __init__(self) -> None:
        self.events = []  # type: List[Tuple[str, Tuple]]

    def table_progress(self, *args: Any) -> None:
        self.events.append(("table_progress", args))

    def row_progress(self, *args: Any) -> None:
        self.events.append(("row_progress", args))

    def overall_progress(self, *args: Any) -> None:
        self.events.append(("overall_progress", args))

    def sql_failure(self, *args: Any) -> None:
        self.events.append(("sql_failure", args))

    def table_cleared(self, *args: Any) -> None:
        self.events.append(("table_cleared", args))

    def bulk_insert_executing(self, *args: Any) -> None:
        self.events.append(("bulk_insert_executing", args))

    def bulk_insert_completed(self, *args: Any) -> None:
        self.events.append(("bulk_insert_completed", args))

    def bulk_insert_exception(self, *args: Any) -> None:
        self.events.append(("bulk_insert_exception", args))

    def of(self, name: str) -> List[Tuple]:
        return [args for event, args in self.events if event == name]

    def processed_tables(self) -> List[str]:
        return [
            args[0] for args in self.of("table_progress")
            if args[0] and args[1]
        ]


# =============================================================================
# SQLite databases
# =============================================================================

CUSTOMERS_DDL = (
    "CREATE TABLE customers ("
    "id INTEGER PRIMARY KEY, "
    "name VARCHAR(50) NOT NULL)"
)
ORDERS_DDL = (
    "CREATE TABLE orders ("
    "id INTEGER PRIMARY KEY, "
    "customer_id INTEGER REFERENCES customers(id), "
    "item VARCHAR(50))"
)


class SqliteMigrationMixin(object):
    """
    Mixin to create source/destination databases as in-memory SQLite
    databases. Set ``operation_class`` in the test class. Results should be
    checked after the operation is closed.
    """
    operation_class = None  # type: Type[BulkDataOperation]

    def setUp(self) -> None:
        super().setUp()
        self.src_engine = create_engine(
            SQLITE_MEMORY_URL, future=True
        )  # type: Engine
        self.dst_engine = create_engine(
            SQLITE_MEMORY_URL, future=True
        )  # type: Engine
        self.listener = RecordingListener()

    @staticmethod
    def run_sql(engine: Engine, *statements: str) -> None:
        with engine.begin() as conn:
            for statement in statements:
                conn.execute(text(statement))

    @staticmethod
    def fetch(engine: Engine, sql: str) -> List[Tuple]:
        with engine.connect() as conn:
            return [tuple(row) for row in conn.execute(text(sql))]

    def both(self, *statements: str) -> None:
        self.run_sql(self.src_engine, *statements)
        self.run_sql(self.dst_engine, *statements)

    def make_operation(self, **option_kwargs: Any) -> BulkDataOperation:
        source = Schema.from_engine(self.src_engine)
        destination = Schema.from_engine(self.dst_engine)
        return self.operation_class(source, destination,
                                    MigrationOptions(**option_kwargs),
                                    listeners=[self.listener])

    def run_operation(self, **option_kwargs: Any) -> BulkDataOperation:
        with self.make_operation(**option_kwargs) as op:
            op.execute()
        return op
