#!/usr/bin/env python
# dbmigrate/operation.py

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

**Machinery shared by the insert, update and delete operations.**

An operation pairs a source :class:`dbmigrate.schema.Schema` with a
destination one. :meth:`BulkDataOperation.analyze` reflects both and pairs up
tables by map name; :meth:`BulkDataOperation.execute` counts the source rows
and walks the tables in priority order (ascending, or descending for
:attr:`BulkDataOperation.reverse_order`), calling
:meth:`BulkDataOperation.process_table` for each.

Individual statement failures never stop an operation: they are logged and
passed to every listener's ``sql_failure()``. Only configuration problems
(circular foreign keys, no tables in common) raise, and they do so before any
statement runs against the destination.

"""

from collections import namedtuple
import threading
from typing import Any, Dict, Generator, Iterable, List, Sequence

from dbmigrate.encoding import encode_value
from dbmigrate.events import MigrationListener
from dbmigrate.exceptions import NoTablesToProcessError
from dbmigrate.logs import get_brace_style_log_with_null_handler
from dbmigrate.options import MigrationOptions
from dbmigrate.ordering import sort_by_priority
from dbmigrate.schema import Schema, Table
from dbmigrate.translation import AutoIncrementTranslator

log = get_brace_style_log_with_null_handler(__name__)


# =============================================================================
# Helpers
# =============================================================================

CommonField = namedtuple("CommonField", [
    "name",           # destination column name
    "source",         # Field in the source table
    "destination",    # Field in the destination table
    "authoritative",  # whichever of the two supplies keys/nullability
])


class StatementParams(object):
    """
    Collects bound parameters for one statement, named ``p0``, ``p1``...
    """
    def __init__(self) -> None:
        self.params = {}  # type: Dict[str, Any]

    def add(self, value: Any) -> str:
        """
        Adds a value; returns its placeholder, e.g. ``:p3``.
        """
        name = f"p{len(self.params)}"
        self.params[name] = value
        return ":" + name


class TablePair(object):
    """
    A source table and the destination table with the same map name.
    """
    def __init__(self, source: Table, destination: Table,
                 use_source_referential_integrity: bool = True) -> None:
        self.source = source
        self.destination = destination
        self.authoritative = (
            source if use_source_referential_integrity else destination
        )
        self.common_fields = self._get_common_fields()

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__}({self.source.name!r} -> "
            f"{self.destination.name!r}, "
            f"{len(self.common_fields)} common fields)>"
        )

    def _get_common_fields(self) -> List[CommonField]:
        """
        Fields present (case-insensitively) in both tables, in source order.
        Binary fields aren't copied.
        """
        common = []  # type: List[CommonField]
        for sf in self.source.fields:
            df = self.destination.get_field(sf.name)
            if df is None or sf.is_binary or df.is_binary:
                continue
            af = sf if self.authoritative is self.source else df
            common.append(CommonField(df.name, sf, df, af))
        return common

    @property
    def name(self) -> str:
        return self.source.name

    def select_sql(self, order_by: Sequence[str] = None) -> str:
        """
        SELECT for the common fields of the source table.

        Args:
            order_by: ORDER BY terms, already quoted for the source
        """
        sql = self.source.sql
        colnames = [cf.source.name for cf in self.common_fields]
        select = (
            f"SELECT {sql.column_list(colnames)} "
            f"FROM {self.source.sql_escaped_name}"
        )
        if order_by:
            select += " ORDER BY " + ", ".join(order_by)
        return select


# =============================================================================
# BulkDataOperation
# =============================================================================

class BulkDataOperation(object):
    """
    Base class for operations that push every row of the source tables
    through some statement at the destination.
    """
    #: process tables in descending priority (children first)?
    reverse_order = False
    #: for log messages
    verb = "Processing"

    def __init__(self,
                 source: Schema,
                 destination: Schema,
                 options: MigrationOptions = None,
                 listeners: Iterable[MigrationListener] = None) -> None:
        """
        Args:
            source: schema to read rows from
            destination: schema to write to
            options: :class:`MigrationOptions` (defaults if not given)
            listeners: :class:`MigrationListener` objects to notify
        """
        self.source = source
        self.destination = destination
        self.options = options or MigrationOptions()
        self.listeners = list(listeners or [])  # type: List[MigrationListener]
        self.translator = AutoIncrementTranslator()
        self.table_pairs = []  # type: List[TablePair]
        self.analyzed = False
        self.overall_progress = 0
        self.overall_total = 0
        self.work_table_count = 0
        self._cancel_event = threading.Event()

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__}({self.source!r} -> "
            f"{self.destination!r})>"
        )

    # -------------------------------------------------------------------------
    # Listeners
    # -------------------------------------------------------------------------

    def add_listener(self, listener: MigrationListener) -> None:
        self.listeners.append(listener)

    def notify(self, event: str, *args: Any) -> None:
        """
        Calls ``event(*args)`` on every listener.
        """
        for listener in self.listeners:
            getattr(listener, event)(*args)

    def report_failure(self, sql: str, error: Exception) -> None:
        """
        A statement failed; log it, tell the listeners, carry on.
        """
        log.error("{}: statement failed: {}\n... SQL: {}",
                  self.__class__.__name__, error, sql)
        self.notify("sql_failure", sql, error)

    # -------------------------------------------------------------------------
    # Cancellation
    # -------------------------------------------------------------------------

    def cancel(self) -> None:
        """
        Asks the operation to stop at the next row boundary. Safe to call
        from a listener or another thread.
        """
        log.info("Cancellation requested")
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    # -------------------------------------------------------------------------
    # Analysis
    # -------------------------------------------------------------------------

    def analyze(self) -> None:
        """
        Analyzes both schemas (if not done already) and pairs source tables
        with destination tables by map name.

        Raises:
            :exc:`dbmigrate.exceptions.CircularDependencyError`
        """
        for schema in (self.source, self.destination):
            if not schema.analyzed:
                schema.analyze()
        use_source_ri = self.options.use_source_referential_integrity
        self.table_pairs = []
        for table in self.source.tables:
            table.process = False
            if self.options.is_excluded(table.map_name):
                log.info("Table {!r} excluded", table.name)
                continue
            dest = self.destination.find_by_map_name(table.map_name)
            if dest is None:
                log.info("Table {!r} has no destination counterpart; "
                         "ignored", table.name)
                continue
            table.process = True
            if not use_source_ri:
                table.priority = dest.priority
            self.table_pairs.append(TablePair(table, dest, use_source_ri))
        self.analyzed = True
        log.debug("Table pairs: {!r}", self.table_pairs)

    def find_pair(self, table: Table) -> TablePair:
        for pair in self.table_pairs:
            if pair.source is table:
                return pair
        raise ValueError(f"No table pair for {table!r}")

    def ordered_pairs(self, pairs: List[TablePair] = None,
                      reverse: bool = None) -> List[TablePair]:
        """
        Table pairs in processing order.
        """
        pairs = self.table_pairs if pairs is None else pairs
        reverse = self.reverse_order if reverse is None else reverse
        tables = sort_by_priority([p.source for p in pairs], reverse=reverse)
        return [self.find_pair(t) for t in tables]

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def execute(self) -> None:
        """
        Runs the operation.

        Raises:
            :exc:`dbmigrate.exceptions.NoTablesToProcessError`,
            :exc:`dbmigrate.exceptions.CircularDependencyError`
        """
        if not self.analyzed:
            self.analyze()
        if not self.table_pairs:
            raise NoTablesToProcessError(
                "No source tables have a destination counterpart")
        self._cancel_event.clear()
        self.translator.clear(self.source.tables + self.destination.tables)

        self.before_tables()

        timeout = self.options.timeout_seconds
        work = []  # type: List[TablePair]
        for pair in self.table_pairs:
            if not pair.source.process or self.cancelled:
                continue
            if pair.source.calculate_row_count(timeout) > 0:
                work.append(pair)
        work = self.ordered_pairs(work)
        self.work_table_count = n = len(work)
        self.overall_progress = 0
        self.overall_total = sum(p.source.row_count for p in work)
        log.info("{} {} tables ({} rows)", self.verb, n, self.overall_total)

        for i, pair in enumerate(work):
            if self.cancelled:
                log.warning("Cancelled before table {!r}", pair.name)
                break
            processing = self.can_process(pair)
            self.notify("table_progress", pair.name, processing, i + 1, n)
            if processing:
                log.info("{} table {!r} ({} of {})", self.verb, pair.name,
                         i + 1, n)
                self.process_table(pair)
            else:
                self.credit_table(pair)
        self.notify("table_progress", "", False, n, n)
        log.info("{}: done", self.__class__.__name__)

    def before_tables(self) -> None:
        """
        Hook run after analysis, before any rows are counted.
        """
        pass

    def can_process(self, pair: TablePair) -> bool:
        """
        Should this table be processed? If not, it's skipped and its rows
        credited to overall progress.
        """
        if not pair.common_fields:
            log.info("Table {!r}: no fields in common with {!r}; skipped",
                     pair.name, pair.destination.name)
            return False
        return True

    def process_table(self, pair: TablePair) -> None:
        raise NotImplementedError

    def credit_table(self, pair: TablePair) -> None:
        self.overall_progress += pair.source.row_count
        self.notify("overall_progress", self.overall_progress,
                    self.overall_total)

    # -------------------------------------------------------------------------
    # Rows
    # -------------------------------------------------------------------------

    def _report_rows(self, pair: TablePair, current: int) -> None:
        self.notify("row_progress", pair.name, current,
                    pair.source.row_count)
        self.notify("overall_progress", self.overall_progress,
                    self.overall_total)

    def gen_source_rows(self, pair: TablePair, select_sql: str
                        ) -> Generator[Sequence[Any], None, None]:
        """
        Streams the source rows for a table, reporting progress and stopping
        early if cancelled. Each row is counted once the caller has finished
        with it.
        """
        interval = self.options.row_report_interval
        total = pair.source.row_count
        self._report_rows(pair, 0)
        n = 0
        last_reported = 0
        with pair.source.executor.open_cursor(
                select_sql, timeout=self.options.timeout_seconds) as rows:
            for row in rows:
                if self.cancelled:
                    log.warning("Cancelled during table {!r} after {} rows",
                                pair.name, n)
                    break
                yield row
                n += 1
                self.overall_progress += 1
                if n % interval == 0:
                    self._report_rows(pair, n)
                    last_reported = n
        if self.cancelled:
            final = n
        else:
            if n < total:
                # Rows vanished since we counted; keep the totals consistent.
                self.overall_progress += total - n
            final = max(n, total)
        if final != last_reported:
            self._report_rows(pair, final)

    def encode_field(self, pair: TablePair, cf: CommonField,
                     raw: Any) -> Any:
        """
        Dereferences (auto-increment translation) and coerces one value,
        using the authoritative field's type.
        """
        table = pair.authoritative
        schema = table.schema
        value = self.translator.dereference(table, cf.authoritative.name,
                                            raw)
        return encode_value(value, cf.authoritative.type,
                            allow_numeric_nulls=schema.allow_numeric_nulls,
                            allow_text_nulls=schema.allow_text_nulls)

    def build_where(self, pair: TablePair, row: Sequence[Any],
                    params: StatementParams) -> List[str]:
        """
        ``column = :pN`` terms for every non-NULL primary key value.
        """
        terms = []  # type: List[str]
        for cf, raw in zip(pair.common_fields, row):
            if not cf.authoritative.is_primary_key:
                continue
            value = self.encode_field(pair, cf, raw)
            if value is None:
                continue
            terms.append(f"{cf.destination.sql_escaped_name} = "
                         f"{params.add(value)}")
        return terms

    # -------------------------------------------------------------------------
    # Cleanup
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """
        Closes both schemas' connections.
        """
        self.source.close()
        self.destination.close()

    def __enter__(self) -> "BulkDataOperation":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
