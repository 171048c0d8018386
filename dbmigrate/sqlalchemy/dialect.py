#!/usr/bin/env python
# dbmigrate/sqlalchemy/dialect.py

"""
===============================================================================

    Original code copyright (C) 2009-2022 Rudolf Cardinal (rudolf@pobox.com).

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

**SQL dialect strategies.**

Everything that differs between database vendors lives here, in one
:class:`DialectSql` subclass per :class:`DatabaseType`:

- identifier quoting (via the SQLAlchemy :class:`IdentifierPreparer`);
- whether ``TRUNCATE TABLE`` is usable;
- how to read back the identity value just generated;
- how to switch on/off explicit writes to identity columns;
- how to reset an identity counter;
- how a self-referencing foreign key column sorts with NULLs first;
- the bulk-load statement, if the dialect has one.

"""

from enum import Enum
from typing import Dict, List, Optional, Type, TYPE_CHECKING, Union

from sqlalchemy.engine import Connection, Engine
from sqlalchemy.engine.interfaces import Dialect
from sqlalchemy.sql.compiler import IdentifierPreparer

from dbmigrate.logs import get_brace_style_log_with_null_handler
from dbmigrate.sql.literals import sql_string_literal

if TYPE_CHECKING:
    from dbmigrate.sqlalchemy.executor import SqlExecutor

log = get_brace_style_log_with_null_handler(__name__)


# =============================================================================
# Constants
# =============================================================================

class SqlaDialectName(object):
    """
    Dialect names used by SQLAlchemy.
    """
    MARIADB = "mariadb"
    MYSQL = "mysql"
    MSSQL = "mssql"
    ORACLE = "oracle"
    POSTGRES = "postgresql"
    SQLITE = "sqlite"
    SQLSERVER = MSSQL  # synonym


class DatabaseType(Enum):
    """
    The database families whose SQL we know how to speak.
    """
    SQLSERVER = "SQLServer"
    MYSQL = "MySQL"
    SQLITE = "SQLite"
    POSTGRESQL = "PostgreSQL"
    ORACLE = "Oracle"
    OTHER = "Other"


_DIALECT_NAME_TO_DATABASE_TYPE = {
    SqlaDialectName.MARIADB: DatabaseType.MYSQL,
    SqlaDialectName.MYSQL: DatabaseType.MYSQL,
    SqlaDialectName.MSSQL: DatabaseType.SQLSERVER,
    SqlaDialectName.ORACLE: DatabaseType.ORACLE,
    SqlaDialectName.POSTGRES: DatabaseType.POSTGRESQL,
    SqlaDialectName.SQLITE: DatabaseType.SQLITE,
}


# =============================================================================
# Dialect lookup
# =============================================================================

def get_dialect(mixed: Union[Engine, Connection, Dialect]) -> Dialect:
    """
    Finds the SQLAlchemy dialect in use.

    Args:
        mixed: an SQLAlchemy engine, connection, or Dialect object

    Returns: the SQLAlchemy :class:`Dialect` being used
    """
    if isinstance(mixed, Dialect):
        return mixed
    elif isinstance(mixed, (Engine, Connection)):
        return mixed.dialect
    else:
        raise ValueError(
            f"get_dialect: 'mixed' parameter of wrong type: {mixed!r}")


def get_dialect_name(mixed: Union[Engine, Connection, Dialect]) -> str:
    """
    Finds the name of the SQLAlchemy dialect in use.
    """
    # noinspection PyUnresolvedReferences
    return get_dialect(mixed).name


def get_database_type(mixed: Union[Engine, Connection, Dialect]
                      ) -> DatabaseType:
    """
    Maps an SQLAlchemy dialect to a :class:`DatabaseType`.
    """
    return _DIALECT_NAME_TO_DATABASE_TYPE.get(get_dialect_name(mixed),
                                              DatabaseType.OTHER)


def get_preparer(mixed: Union[Engine, Connection, Dialect]
                 ) -> IdentifierPreparer:
    """
    Returns the SQLAlchemy :class:`IdentifierPreparer` in use for the dialect
    being used.
    """
    dialect = get_dialect(mixed)
    # noinspection PyUnresolvedReferences
    return dialect.preparer(dialect)  # type: IdentifierPreparer


def quote_identifier(identifier: str,
                     mixed: Union[Engine, Connection, Dialect]) -> str:
    """
    Converts an SQL identifier to a quoted version, via the SQL dialect in
    use.
    """
    return get_preparer(mixed).quote(identifier)


# =============================================================================
# Dialect strategies
# =============================================================================

class DialectSql(object):
    """
    Generic SQL. Subclasses override what their vendor does differently.
    """
    database_type = DatabaseType.OTHER
    supports_truncate = False
    supports_bulk_load = False
    # Can explicit values be written to identity columns without any special
    # statement?
    identity_insert_always_allowed = False
    # Do NULLs sort after non-NULL values in ascending order?
    nulls_sort_high = False
    # Character the bulk loader treats as an escape in staged data, if any.
    bulk_escape_character = None  # type: Optional[str]

    def __init__(self, dialect: Dialect) -> None:
        self.dialect = dialect
        self.preparer = get_preparer(dialect)

    def quote(self, identifier: str) -> str:
        return self.preparer.quote(identifier)

    def column_list(self, colnames: List[str]) -> str:
        return ", ".join(self.quote(c) for c in colnames)

    # -------------------------------------------------------------------------
    # Clearing
    # -------------------------------------------------------------------------

    def truncate_table_sql(self, tablename: str) -> str:
        return f"TRUNCATE TABLE {self.quote(tablename)}"

    def delete_all_sql(self, tablename: str) -> str:
        return f"DELETE FROM {self.quote(tablename)}"

    # -------------------------------------------------------------------------
    # Identity columns
    # -------------------------------------------------------------------------

    def identity_sql(self, tablename: str, colname: str = None) -> str:
        """
        SQL returning the identity value most recently generated on this
        connection for this table.
        """
        return "SELECT @@IDENTITY"

    def identity_insert_sql(self, tablename: str, on: bool) -> Optional[str]:
        """
        SQL to permit (or stop permitting) explicit values in the identity
        column; ``None`` if there's no such statement.
        """
        return None

    def reset_identity_sql(self, tablename: str,
                           colname: str) -> Optional[str]:
        """
        SQL to bring the identity counter back into line with the table's
        contents; ``None`` if unsupported.
        """
        return None

    def reset_identity(self, executor: "SqlExecutor", tablename: str,
                       colname: str, timeout: int = None) -> Optional[str]:
        """
        Resets the identity counter for a table.

        Returns:
            the SQL executed, or ``None`` if nothing was needed

        Raises:
            whatever the executor raises
        """
        sql = self.reset_identity_sql(tablename, colname)
        if sql:
            executor.execute(sql, timeout=timeout)
        return sql

    # -------------------------------------------------------------------------
    # Ordering
    # -------------------------------------------------------------------------

    def self_reference_order_term(self, colname: str) -> str:
        """
        ORDER BY term for a self-referencing foreign key column, such that
        rows with a NULL parent come first.
        """
        if self.nulls_sort_high:
            return f"COALESCE({self.quote(colname)}, 0)"
        return self.quote(colname)

    # -------------------------------------------------------------------------
    # Bulk loading
    # -------------------------------------------------------------------------

    def bulk_load_sql(self, tablename: str, filename: str, settings: str,
                      field_terminator: str, row_terminator: str,
                      colnames: List[str]) -> Optional[str]:
        """
        Statement to load a staging file into a table, or ``None`` if the
        dialect has no bulk load.
        """
        return None


class SqlServerSql(DialectSql):
    database_type = DatabaseType.SQLSERVER
    supports_truncate = True
    supports_bulk_load = True

    def identity_sql(self, tablename: str, colname: str = None) -> str:
        return f"SELECT IDENT_CURRENT({sql_string_literal(tablename)})"

    def identity_insert_sql(self, tablename: str, on: bool) -> Optional[str]:
        state = "ON" if on else "OFF"
        return f"SET IDENTITY_INSERT {self.quote(tablename)} {state}"

    def reset_identity_sql(self, tablename: str,
                           colname: str) -> Optional[str]:
        return (
            f"DBCC CHECKIDENT ({sql_string_literal(self.quote(tablename))}, "
            f"RESEED)"
        )

    def bulk_load_sql(self, tablename: str, filename: str, settings: str,
                      field_terminator: str, row_terminator: str,
                      colnames: List[str]) -> Optional[str]:
        sql = (
            f"BULK INSERT {self.quote(tablename)} "
            f"FROM {sql_string_literal(filename)}"
        )
        if settings:
            sql += f" WITH ({settings})"
        return sql


class MySqlSql(DialectSql):
    database_type = DatabaseType.MYSQL
    supports_truncate = True
    supports_bulk_load = True
    bulk_escape_character = "\\"
    identity_insert_always_allowed = True

    def identity_sql(self, tablename: str, colname: str = None) -> str:
        return "SELECT LAST_INSERT_ID()"

    def reset_identity_sql(self, tablename: str,
                           colname: str) -> Optional[str]:
        # MySQL silently raises this to MAX() + 1 if rows remain.
        return f"ALTER TABLE {self.quote(tablename)} AUTO_INCREMENT = 1"

    def bulk_load_sql(self, tablename: str, filename: str, settings: str,
                      field_terminator: str, row_terminator: str,
                      colnames: List[str]) -> Optional[str]:
        return (
            f"LOAD DATA LOCAL INFILE {sql_string_literal(filename)} "
            f"INTO TABLE {self.quote(tablename)} "
            f"FIELDS TERMINATED BY {sql_string_literal(field_terminator)} "
            f"LINES TERMINATED BY {sql_string_literal(row_terminator)} "
            f"({self.column_list(colnames)})"
        )


class SqliteSql(DialectSql):
    database_type = DatabaseType.SQLITE
    identity_insert_always_allowed = True

    def identity_sql(self, tablename: str, colname: str = None) -> str:
        return "SELECT last_insert_rowid()"

    def reset_identity_sql(self, tablename: str,
                           colname: str) -> Optional[str]:
        return (
            f"DELETE FROM sqlite_sequence "
            f"WHERE name = {sql_string_literal(tablename)}"
        )

    def reset_identity(self, executor: "SqlExecutor", tablename: str,
                       colname: str, timeout: int = None) -> Optional[str]:
        # sqlite_sequence only exists once some table has been declared
        # AUTOINCREMENT; plain INTEGER PRIMARY KEY tables need no reset.
        n = executor.execute_scalar(
            "SELECT COUNT(*) FROM sqlite_master "
            "WHERE type = 'table' AND name = 'sqlite_sequence'",
            timeout=timeout)
        if not n:
            return None
        return super().reset_identity(executor, tablename, colname,
                                      timeout=timeout)


class PostgresSql(DialectSql):
    database_type = DatabaseType.POSTGRESQL
    supports_truncate = True
    supports_bulk_load = True
    bulk_escape_character = "\\"
    identity_insert_always_allowed = True
    nulls_sort_high = True

    def _serial_sequence(self, tablename: str, colname: str) -> str:
        # The table name is quoted inside the string; the column name must
        # not be.
        return (
            f"pg_get_serial_sequence("
            f"{sql_string_literal(self.quote(tablename))}, "
            f"{sql_string_literal(colname.lower())})"
        )

    def identity_sql(self, tablename: str, colname: str = None) -> str:
        if colname:
            return f"SELECT currval({self._serial_sequence(tablename, colname)})"  # noqa
        return "SELECT lastval()"

    def reset_identity_sql(self, tablename: str,
                           colname: str) -> Optional[str]:
        return (
            f"SELECT setval({self._serial_sequence(tablename, colname)}, "
            f"COALESCE(MAX({self.quote(colname)}), 0) + 1, false) "
            f"FROM {self.quote(tablename)}"
        )

    def bulk_load_sql(self, tablename: str, filename: str, settings: str,
                      field_terminator: str, row_terminator: str,
                      colnames: List[str]) -> Optional[str]:
        # COPY only supports newline row terminators.
        return (
            f"COPY {self.quote(tablename)} ({self.column_list(colnames)}) "
            f"FROM {sql_string_literal(filename)} "
            f"WITH (FORMAT text, "
            f"DELIMITER {sql_string_literal(field_terminator)}, "
            f"NULL '')"
        )


class OracleSql(DialectSql):
    database_type = DatabaseType.ORACLE
    supports_truncate = True
    nulls_sort_high = True

    def identity_sql(self, tablename: str, colname: str = None) -> str:
        return f"SELECT {self.quote('SEQ_' + tablename)}.CURRVAL FROM dual"


_DIALECT_SQL_CLASSES = {
    DatabaseType.SQLSERVER: SqlServerSql,
    DatabaseType.MYSQL: MySqlSql,
    DatabaseType.SQLITE: SqliteSql,
    DatabaseType.POSTGRESQL: PostgresSql,
    DatabaseType.ORACLE: OracleSql,
    DatabaseType.OTHER: DialectSql,
}  # type: Dict[DatabaseType, Type[DialectSql]]


def get_dialect_sql(mixed: Union[Engine, Connection, Dialect],
                    database_type: DatabaseType = None) -> DialectSql:
    """
    Returns the :class:`DialectSql` strategy for an engine/connection/dialect.

    Args:
        mixed:
            an SQLAlchemy engine, connection, or Dialect object (used for
            identifier quoting)
        database_type:
            override the :class:`DatabaseType` deduced from the dialect name
            (e.g. for an ODBC dialect that SQLAlchemy doesn't recognize)
    """
    dialect = get_dialect(mixed)
    if database_type is None:
        database_type = get_database_type(dialect)
    cls = _DIALECT_SQL_CLASSES[database_type]
    log.debug("Dialect {!r} -> {}", dialect.name, cls.__name__)
    return cls(dialect)
