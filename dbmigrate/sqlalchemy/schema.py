#!/usr/bin/env python
# dbmigrate/sqlalchemy/schema.py

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

**Schema introspection via SQLAlchemy reflection.**

This is the "what tables, columns, keys are there?" interface. It reflects a
live database with :func:`sqlalchemy.inspect` and returns plain objects
(:class:`TableInspectionInfo`, :class:`SqlaColumnInspectionInfo`,
:class:`ForeignKeyInspectionInfo`) that are clearer to work with than the
dictionaries SQLAlchemy returns.

"""

from typing import Any, Dict, Generator, Iterable, List, Optional, Set, Union

from sqlalchemy import inspect
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.engine.reflection import Inspector
from sqlalchemy.sql import sqltypes
from sqlalchemy.sql.sqltypes import TypeEngine

from dbmigrate.logs import get_brace_style_log_with_null_handler

log = get_brace_style_log_with_null_handler(__name__)

Connectable = Union[Engine, Connection]


# =============================================================================
# Questions about SQLAlchemy column types
# =============================================================================

def is_sqlatype_binary(coltype: TypeEngine) -> bool:
    """
    Is the SQLAlchemy column type a binary type?
    """
    # Several binary types inherit internally from _Binary, making that the
    # easiest to check.
    # noinspection PyProtectedMember
    return isinstance(coltype, sqltypes._Binary)


def is_sqlatype_boolean(coltype: TypeEngine) -> bool:
    """
    Is the SQLAlchemy column type a boolean type?
    """
    return isinstance(coltype, sqltypes.Boolean)


def is_sqlatype_datetime(coltype: TypeEngine) -> bool:
    """
    Is the SQLAlchemy column type a date-and-time type?
    """
    return isinstance(coltype, sqltypes.DateTime)


def is_sqlatype_date(coltype: TypeEngine) -> bool:
    """
    Is the SQLAlchemy column type a date-only type?
    """
    return isinstance(coltype, sqltypes.Date)


def is_sqlatype_time(coltype: TypeEngine) -> bool:
    """
    Is the SQLAlchemy column type a time-of-day type?
    """
    return isinstance(coltype, sqltypes.Time)


def is_sqlatype_float(coltype: TypeEngine) -> bool:
    """
    Is the SQLAlchemy column type a floating-point type?
    """
    return isinstance(coltype, sqltypes.Float)


def is_sqlatype_integer(coltype: TypeEngine) -> bool:
    """
    Is the SQLAlchemy column type an integer type?
    """
    return isinstance(coltype, sqltypes.Integer)


def is_sqlatype_numeric(coltype: TypeEngine) -> bool:
    """
    Is the SQLAlchemy column type one that inherits from :class:`Numeric`,
    such as :class:`Float`, :class:`Decimal`?

    Note that integers don't count as Numeric!
    """
    return isinstance(coltype, sqltypes.Numeric)  # includes Float, Decimal


def is_sqlatype_string(coltype: TypeEngine) -> bool:
    """
    Is the SQLAlchemy column type a string type?
    """
    return isinstance(coltype, sqltypes.String)


def is_sqlatype_uuid(coltype: TypeEngine) -> bool:
    """
    Is the SQLAlchemy column type a UUID/GUID type?
    """
    return isinstance(coltype, sqltypes.Uuid)


# =============================================================================
# Inspection results
# =============================================================================

class SqlaColumnInspectionInfo(object):
    """
    Class to represent information from inspecting a database column.

    A clearer way of getting information than the plain ``dict`` that
    SQLAlchemy uses.
    """

    def __init__(self, sqla_info_dict: Dict[str, Any], ordinal: int,
                 primary_key: bool = False) -> None:
        """
        Args:
            sqla_info_dict:
                see
                https://docs.sqlalchemy.org/en/latest/core/reflection.html#sqlalchemy.engine.reflection.Inspector.get_columns
            ordinal:
                zero-based position of the column in its table
            primary_key:
                is the column part of the primary key?
        """  # noqa: E501
        self.name = sqla_info_dict["name"]  # type: str
        self.type = sqla_info_dict["type"]  # type: TypeEngine
        self.nullable = sqla_info_dict["nullable"]  # type: bool
        self.default = sqla_info_dict.get(
            "default")  # type: Optional[str]  # SQL string expression
        # True, False, or "auto" if the dialect doesn't say
        self.autoincrement_flag = sqla_info_dict.get("autoincrement", "auto")
        self.identity = sqla_info_dict.get("identity")  # type: Optional[Dict]
        self.ordinal = ordinal
        self.primary_key = primary_key
        self.autoincrement = False  # set by TableInspectionInfo

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__}({self.name!r}, {self.type!r}, "
            f"nullable={self.nullable}, pk={self.primary_key}, "
            f"autoincrement={self.autoincrement})>"
        )


class ForeignKeyInspectionInfo(object):
    """
    One foreign key constraint, from
    :meth:`sqlalchemy.engine.reflection.Inspector.get_foreign_keys`.
    """

    def __init__(self, sqla_info_dict: Dict[str, Any]) -> None:
        self.name = sqla_info_dict.get("name")  # type: Optional[str]
        self.constrained_columns = list(
            sqla_info_dict["constrained_columns"])  # type: List[str]
        self.referred_table = sqla_info_dict["referred_table"]  # type: str
        self.referred_columns = list(
            sqla_info_dict["referred_columns"])  # type: List[str]

    def column_pairs(self) -> List[tuple]:
        """
        Returns ``(constrained_column, referred_column)`` tuples.
        """
        return list(zip(self.constrained_columns, self.referred_columns))

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__}({self.constrained_columns!r} -> "
            f"{self.referred_table}.{self.referred_columns!r})>"
        )


class TableInspectionInfo(object):
    """
    Everything we need to know about one table.
    """

    def __init__(self, name: str,
                 columns: List[SqlaColumnInspectionInfo],
                 pk_colnames: List[str],
                 foreign_keys: List[ForeignKeyInspectionInfo]) -> None:
        self.name = name
        self.columns = columns
        self.pk_colnames = pk_colnames
        self.foreign_keys = foreign_keys
        self.fk_colnames = {
            colname.lower()
            for fk in foreign_keys
            for colname in fk.constrained_columns
        }  # type: Set[str]
        for c in self.columns:
            c.autoincrement = is_int_autoincrement_column(c, self)

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__}({self.name!r}, "
            f"{len(self.columns)} columns, pk={self.pk_colnames!r}, "
            f"{len(self.foreign_keys)} foreign keys)>"
        )


def is_int_autoincrement_column(c: SqlaColumnInspectionInfo,
                                t: TableInspectionInfo) -> bool:
    """
    Is this an integer AUTOINCREMENT (IDENTITY, SERIAL...) column?

    Dialects that know (SQL Server, MySQL, PostgreSQL) report it through the
    reflected ``autoincrement`` key. Otherwise we follow SQLAlchemy's
    ``"auto"`` rule: a single-column integer primary key with no default,
    which isn't also a foreign key, gets autoincrement semantics.
    """
    if not is_sqlatype_integer(c.type):
        return False
    if c.identity:
        return True
    a = c.autoincrement_flag
    if isinstance(a, bool):
        return a
    # https://docs.sqlalchemy.org/en/20/core/metadata.html#sqlalchemy.schema.Column.params.autoincrement  # noqa: E501
    if not c.primary_key or len(t.pk_colnames) != 1 or c.default is not None:
        return False
    return c.name.lower() not in t.fk_colnames


# =============================================================================
# Inspect tables (SQLAlchemy Core)
# =============================================================================

def get_table_names(connectable: Connectable) -> List[str]:
    """
    Returns a list of database table names from the
    :class:`Engine`/:class:`Connection`.
    """
    insp = inspect(connectable)  # type: Inspector
    return insp.get_table_names()


def get_table_inspection_info(insp: Inspector,
                              tablename: str) -> TableInspectionInfo:
    """
    Reflects one table.
    """
    pk_colnames = list(
        insp.get_pk_constraint(tablename).get("constrained_columns") or []
    )
    pk_lower = {x.lower() for x in pk_colnames}
    columns = [
        SqlaColumnInspectionInfo(d, ordinal=i,
                                 primary_key=d["name"].lower() in pk_lower)
        for i, d in enumerate(insp.get_columns(tablename))
    ]
    foreign_keys = [
        ForeignKeyInspectionInfo(d)
        for d in insp.get_foreign_keys(tablename)
        if d.get("referred_table")
    ]
    return TableInspectionInfo(tablename, columns, pk_colnames, foreign_keys)


def gen_table_inspection_info(
        connectable: Connectable,
        tablenames: Iterable[str] = None) \
        -> Generator[TableInspectionInfo, None, None]:
    """
    Generates :class:`TableInspectionInfo` for every table (or just the ones
    named), in the order the database reports them.

    Pass the :class:`Connection` you'll use for data if you have one; with
    in-memory SQLite, every connection must be the same one.
    """
    insp = inspect(connectable)  # type: Inspector
    all_tablenames = insp.get_table_names()
    if tablenames is None:
        wanted = all_tablenames
    else:
        lookup = {t.lower(): t for t in all_tablenames}
        wanted = []  # type: List[str]
        for t in tablenames:
            actual = lookup.get(t.lower())
            if actual is None:
                log.warning("Table {!r} not found; ignored", t)
            else:
                wanted.append(actual)
    for tablename in wanted:
        info = get_table_inspection_info(insp, tablename)
        log.debug("Inspected: {!r}", info)
        yield info
