#!/usr/bin/env python
# dbmigrate/schema.py

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

**In-memory model of one side of a migration.**

A :class:`Schema` owns the :class:`Table` objects for one database; each
table owns its :class:`Field` objects. Foreign keys link fields together:

- a foreign key field's ``referenced_field`` is the (primary key) field it
  points at;
- that field's ``foreign_keys`` lists a :class:`ForeignKeyField` for every
  field pointing at it.

:meth:`Schema.analyze` reflects the database (see
:mod:`dbmigrate.sqlalchemy.schema`), builds the model and assigns table
priorities (see :mod:`dbmigrate.ordering`). After that the model is
read-only, apart from per-table working state (``process``, ``row_count``)
and the auto-increment translation maps.

"""

from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import URL
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql.sqltypes import TypeEngine

from dbmigrate.encoding import FieldType
from dbmigrate.logs import get_brace_style_log_with_null_handler
from dbmigrate.ordering import assign_priorities
from dbmigrate.sqlalchemy.dialect import DatabaseType, DialectSql
from dbmigrate.sqlalchemy.executor import SqlaExecutor, SqlExecutor
from dbmigrate.sqlalchemy.schema import (
    is_sqlatype_binary,
    is_sqlatype_boolean,
    is_sqlatype_date,
    is_sqlatype_datetime,
    is_sqlatype_float,
    is_sqlatype_integer,
    is_sqlatype_numeric,
    is_sqlatype_string,
    is_sqlatype_time,
    is_sqlatype_uuid,
    TableInspectionInfo,
)
from dbmigrate.sqlalchemy.session import get_engine

log = get_brace_style_log_with_null_handler(__name__)


def field_type_from_sqlatype(coltype: TypeEngine) -> FieldType:
    """
    Maps an SQLAlchemy column type to a :class:`FieldType`.
    """
    # Order matters: Boolean before Integer (some dialects), DateTime before
    # Date, Float before Numeric, Uuid before String.
    if is_sqlatype_boolean(coltype):
        return FieldType.BOOLEAN
    if is_sqlatype_integer(coltype):
        return FieldType.INTEGER
    if is_sqlatype_float(coltype):
        return FieldType.FLOAT
    if is_sqlatype_numeric(coltype):
        return FieldType.DECIMAL
    if is_sqlatype_datetime(coltype):
        return FieldType.DATETIME
    if is_sqlatype_date(coltype):
        return FieldType.DATE
    if is_sqlatype_time(coltype):
        return FieldType.TIME
    if is_sqlatype_uuid(coltype):
        return FieldType.GUID
    if is_sqlatype_string(coltype):
        return FieldType.STRING
    if is_sqlatype_binary(coltype):
        return FieldType.BINARY
    return FieldType.OTHER


# =============================================================================
# Field
# =============================================================================

class Field(object):
    """
    One column.
    """
    def __init__(self,
                 name: str,
                 field_type: FieldType,
                 ordinal: int = 0,
                 auto_increment: bool = False,
                 allows_nulls: bool = True,
                 is_primary_key: bool = False) -> None:
        self.name = name
        self.type = field_type
        self.ordinal = ordinal
        self.auto_increment = auto_increment
        self.allows_nulls = allows_nulls
        self.is_primary_key = is_primary_key
        self.table = None  # type: Optional[Table]
        # The field this one refers to, if it's a foreign key:
        self.referenced_field = None  # type: Optional[Field]
        # Foreign keys elsewhere that refer to this field:
        self.foreign_keys = []  # type: List[ForeignKeyField]
        # Source value -> destination value, while this field is being tracked
        self.auto_increment_translations = None  # type: Optional[Dict[str, Any]]  # noqa

    def __repr__(self) -> str:
        return (
            f"<Field {self.qualified_name} {self.type.value}"
            f"{' PK' if self.is_primary_key else ''}"
            f"{' AUTOINC' if self.auto_increment else ''}"
            f"{' NULL' if self.allows_nulls else ' NOT NULL'}>"
        )

    @property
    def qualified_name(self) -> str:
        tablename = self.table.name if self.table else "?"
        return f"{tablename}.{self.name}"

    @property
    def is_foreign_key(self) -> bool:
        return self.referenced_field is not None

    @property
    def is_binary(self) -> bool:
        return self.type == FieldType.BINARY

    @property
    def sql_escaped_name(self) -> str:
        return self.table.schema.sql.quote(self.name)


class ForeignKeyField(object):
    """
    Associates a primary key field with a foreign key field that refers to
    it.
    """
    def __init__(self, primary_key: Field, foreign_key: Field) -> None:
        self.primary_key = primary_key
        self.foreign_key = foreign_key

    def __repr__(self) -> str:
        return (
            f"<ForeignKeyField {self.foreign_key.qualified_name} -> "
            f"{self.primary_key.qualified_name}>"
        )


# =============================================================================
# Table
# =============================================================================

class Table(object):
    """
    One table.
    """
    def __init__(self, name: str, map_name: str = None) -> None:
        self.name = name
        self.map_name = map_name or name
        self.schema = None  # type: Optional[Schema]
        self.fields = []  # type: List[Field]
        self._field_lookup = {}  # type: Dict[str, Field]
        self.priority = 0
        self.process = False
        self.row_count = 0

    def __repr__(self) -> str:
        return (
            f"<Table {self.name!r} priority={self.priority} "
            f"fields={[f.name for f in self.fields]!r}>"
        )

    def add_field(self, field: Field) -> None:
        field.table = self
        self.fields.append(field)
        self._field_lookup[field.name.lower()] = field

    def get_field(self, name: str) -> Optional[Field]:
        """
        Finds a field by name, case-insensitively.
        """
        return self._field_lookup.get(name.lower())

    @property
    def field_names(self) -> List[str]:
        return [f.name for f in self.fields]

    @property
    def primary_key_fields(self) -> List[Field]:
        return [f for f in self.fields if f.is_primary_key]

    @property
    def primary_key_field_count(self) -> int:
        return len(self.primary_key_fields)

    @property
    def auto_inc_field(self) -> Optional[Field]:
        """
        The first auto-increment field, if any.
        """
        for f in self.fields:
            if f.auto_increment:
                return f
        return None

    @property
    def has_auto_inc_field(self) -> bool:
        return self.auto_inc_field is not None

    @property
    def referenced_by_foreign_keys(self) -> bool:
        """
        Does any foreign key (anywhere) refer to this table's primary key?
        """
        return any(f.foreign_keys for f in self.primary_key_fields)

    @property
    def foreign_key_fields(self) -> List[Field]:
        return [f for f in self.fields if f.is_foreign_key]

    @property
    def referenced_tables(self) -> List["Table"]:
        """
        Tables this one refers to via foreign keys (possibly including
        itself), without duplicates, in field order.
        """
        tables = []  # type: List[Table]
        for f in self.foreign_key_fields:
            t = f.referenced_field.table
            if t not in tables:
                tables.append(t)
        return tables

    def is_referenced_by(self, other: "Table") -> bool:
        """
        Does some foreign key in ``other`` refer to this table?
        """
        return any(
            fk.foreign_key.table is other
            for f in self.fields
            for fk in f.foreign_keys
        )

    @property
    def is_self_referencing(self) -> bool:
        return self.is_referenced_by(self)

    @property
    def self_referencing_fields(self) -> List[Field]:
        """
        Fields of this table that are foreign keys to this table.
        """
        return [
            fk.foreign_key
            for f in self.fields
            for fk in f.foreign_keys
            if fk.foreign_key.table is self
        ]

    @property
    def sql(self) -> DialectSql:
        return self.schema.sql

    @property
    def executor(self) -> SqlExecutor:
        return self.schema.executor

    @property
    def sql_escaped_name(self) -> str:
        return self.sql.quote(self.name)

    @property
    def identity_sql(self) -> str:
        """
        SQL to read back the identity value just generated in this table.
        """
        autoinc = self.auto_inc_field
        return self.sql.identity_sql(self.name,
                                     autoinc.name if autoinc else None)

    def calculate_row_count(self, timeout: int = None) -> int:
        """
        Counts (and caches) the rows in the table. A failed count is logged
        and treated as zero.
        """
        sql = f"SELECT COUNT(*) FROM {self.sql_escaped_name}"
        try:
            self.row_count = int(self.executor.execute_scalar(
                sql, timeout=timeout) or 0)
        except SQLAlchemyError as exc:
            log.warning("Can't count rows in {!r}: {}", self.name, exc)
            self.row_count = 0
        return self.row_count


# =============================================================================
# Schema
# =============================================================================

class Schema(object):
    """
    All the tables of one database.
    """
    def __init__(self,
                 executor: SqlExecutor,
                 table_names: Iterable[str] = None,
                 allow_numeric_nulls: bool = False,
                 allow_text_nulls: bool = False,
                 map_names: Dict[str, str] = None) -> None:
        """
        Args:
            executor:
                runs SQL against this database
            table_names:
                restrict the model to these tables (default: all)
            allow_numeric_nulls:
                blank or unparseable numbers read for this side's fields
                become NULL, rather than zero?
            allow_text_nulls:
                empty strings become NULL, rather than ``''``?
            map_names:
                optional ``{table_name: map_name}`` dictionary; tables pair
                up across schemas by map name, which defaults to the table
                name
        """
        self.executor = executor
        self.table_names = list(table_names) if table_names else None
        self.allow_numeric_nulls = allow_numeric_nulls
        self.allow_text_nulls = allow_text_nulls
        self.map_names = {
            k.lower(): v for k, v in (map_names or {}).items()
        }
        self.tables = []  # type: List[Table]
        self._table_lookup = {}  # type: Dict[str, Table]
        self.analyzed = False

    @classmethod
    def from_engine(cls,
                    engine_or_url: Union[Engine, str, URL],
                    database_type: DatabaseType = None,
                    **kwargs: Any) -> "Schema":
        """
        Creates a :class:`Schema` using a :class:`SqlaExecutor`.

        Args:
            engine_or_url: SQLAlchemy engine, or URL to create one
            database_type: override the deduced :class:`DatabaseType`
            kwargs: passed to the constructor
        """
        executor = SqlaExecutor(get_engine(engine_or_url),
                                database_type=database_type)
        return cls(executor, **kwargs)

    def __repr__(self) -> str:
        return f"<Schema {self.executor!r}: {len(self.tables)} tables>"

    @property
    def sql(self) -> DialectSql:
        return self.executor.sql

    @property
    def database_type(self) -> DatabaseType:
        return self.executor.database_type

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def add_table(self, table: Table) -> None:
        table.schema = self
        self.tables.append(table)
        self._table_lookup[table.name.lower()] = table

    def find_by_name(self, name: str) -> Optional[Table]:
        return self._table_lookup.get(name.lower())

    def find_by_map_name(self, map_name: str) -> Optional[Table]:
        """
        Finds a table by map name, case-insensitively.
        """
        wanted = map_name.lower()
        for table in self.tables:
            if table.map_name.lower() == wanted:
                return table
        return None

    # -------------------------------------------------------------------------
    # Analysis
    # -------------------------------------------------------------------------

    def analyze(self) -> None:
        """
        Reflects the database and builds the model.

        Raises:
            :exc:`dbmigrate.exceptions.CircularDependencyError`
        """
        self.tables = []
        self._table_lookup = {}
        self.load(self.executor.inspect_tables(self.table_names))

    def load(self, infos: List[TableInspectionInfo]) -> None:
        """
        Builds the model from table descriptions, then links foreign keys and
        assigns priorities.
        """
        for info in infos:
            table = Table(info.name,
                          map_name=self.map_names.get(info.name.lower()))
            for c in info.columns:
                table.add_field(Field(
                    name=c.name,
                    field_type=field_type_from_sqlatype(c.type),
                    ordinal=c.ordinal,
                    auto_increment=c.autoincrement,
                    allows_nulls=bool(c.nullable),
                    is_primary_key=c.primary_key,
                ))
            self.add_table(table)
        for info in infos:
            self._link_foreign_keys(self.find_by_name(info.name), info)
        assign_priorities(self.tables)
        self.analyzed = True
        log.info("Analyzed {!r}", self)

    def _link_foreign_keys(self, table: Table,
                           info: TableInspectionInfo) -> None:
        for fk in info.foreign_keys:
            referred = self.find_by_name(fk.referred_table)
            if referred is None:
                log.debug("Table {!r}: ignoring foreign key to table {!r} "
                          "outside this schema", table.name,
                          fk.referred_table)
                continue
            for colname, refcolname in fk.column_pairs():
                fk_field = table.get_field(colname)
                pk_field = referred.get_field(refcolname)
                if fk_field is None or pk_field is None:
                    continue
                fk_field.referenced_field = pk_field
                pk_field.foreign_keys.append(
                    ForeignKeyField(primary_key=pk_field,
                                    foreign_key=fk_field))

    def close(self) -> None:
        self.executor.close()
