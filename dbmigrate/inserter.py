#!/usr/bin/env python
# dbmigrate/inserter.py

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

**Copy rows from a source database to a destination database.**

Tables are copied parents first. For each table:

- the common fields are selected from the source, ordered so that rows that
  others refer to come first;
- each value is dereferenced (foreign keys to auto-increment keys are
  rewritten to the destination's values) and coerced to the authoritative
  field type;
- the row is inserted; or, if it has a primary key and a row with that key
  already exists at the destination (e.g. created by a trigger), updated;
- if the table has an auto-increment key that other tables refer to, the
  destination's value for each row is recorded for translating later tables.

Optionally, destination tables are emptied first, and rows may be loaded via
a bulk-load staging file instead (see :mod:`dbmigrate.bulk`).

Example:

.. code-block:: python

    from dbmigrate.inserter import DataInserter
    from dbmigrate.options import MigrationOptions
    from dbmigrate.schema import Schema

    source = Schema.from_engine("mssql+pyodbc://...")
    destination = Schema.from_engine("postgresql://...")
    options = MigrationOptions(clear_destination_tables=True)
    with DataInserter(source, destination, options) as inserter:
        inserter.execute()

"""

from typing import Any, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from dbmigrate.bulk import BulkLoadWriter
from dbmigrate.encoding import non_null_default, values_equal
from dbmigrate.logs import get_brace_style_log_with_null_handler
from dbmigrate.operation import (
    BulkDataOperation,
    CommonField,
    StatementParams,
    TablePair,
)
from dbmigrate.schema import Field, Table

log = get_brace_style_log_with_null_handler(__name__)

SYNC_REPORT_INTERVAL = 50


# =============================================================================
# Row statements
# =============================================================================

class InsertRow(object):
    """
    The pieces of INSERT/UPDATE/COUNT statements for one source row.
    """
    def __init__(self) -> None:
        self.params = StatementParams()
        self.insert_columns = []  # type: List[str]
        self.insert_values = []  # type: List[str]
        self.set_terms = []  # type: List[str]
        self.where_terms = []  # type: List[str]
        self.autoinc_source_value = None  # type: Any

    def add(self, cf: CommonField, value: Any, is_key: bool) -> None:
        placeholder = self.params.add(value)
        colname = cf.destination.sql_escaped_name
        self.insert_columns.append(colname)
        self.insert_values.append(placeholder)
        if value is None:
            return
        if is_key:
            self.where_terms.append(f"{colname} = {placeholder}")
        else:
            self.set_terms.append(f"{colname} = {placeholder}")

    def insert_sql(self, table: Table) -> str:
        if not self.insert_columns:
            return f"INSERT INTO {table.sql_escaped_name} DEFAULT VALUES"
        return (
            f"INSERT INTO {table.sql_escaped_name} "
            f"({', '.join(self.insert_columns)}) "
            f"VALUES ({', '.join(self.insert_values)})"
        )

    @property
    def where_sql(self) -> str:
        return " WHERE " + " AND ".join(self.where_terms)

    def update_sql(self, table: Table) -> str:
        return (
            f"UPDATE {table.sql_escaped_name} "
            f"SET {', '.join(self.set_terms)}{self.where_sql}"
        )

    def count_sql(self, table: Table) -> str:
        return f"SELECT COUNT(*) FROM {table.sql_escaped_name}{self.where_sql}"


# =============================================================================
# DataInserter
# =============================================================================

class DataInserter(BulkDataOperation):
    """
    Copies (inserts or reconciles) every row of the source tables into the
    matching destination tables.
    """
    verb = "Copying"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        # Switched off for the rest of the run if TRUNCATE is refused.
        self.attempt_truncate = self.options.attempt_truncate_table
        self.force_truncate = self.options.force_truncate_table

    # -------------------------------------------------------------------------
    # Clearing the destination
    # -------------------------------------------------------------------------

    def before_tables(self) -> None:
        if self.options.clear_destination_tables:
            self.clear_destination_tables()

    def clear_destination_tables(self) -> None:
        """
        Empties every destination table that has a source counterpart,
        children first.
        """
        for pair in self.ordered_pairs(reverse=True):
            if self.cancelled:
                return
            if self.clear_table(pair.destination):
                autoinc = pair.destination.auto_inc_field
                if autoinc is not None:
                    self.reset_identity(pair.destination, autoinc)

    def _use_truncate(self, table: Table) -> bool:
        if self.force_truncate:
            return True
        return (
            self.attempt_truncate and
            table.sql.supports_truncate and
            not table.referenced_by_foreign_keys
        )

    def clear_table(self, table: Table) -> bool:
        """
        Deletes all rows from a destination table, with ``TRUNCATE TABLE``
        where permitted, falling back to ``DELETE``.

        Returns:
            success?
        """
        timeout = self.options.timeout_seconds
        if self._use_truncate(table):
            sql = table.sql.truncate_table_sql(table.name)
            try:
                table.executor.execute(sql, timeout=timeout)
                log.info("Truncated table {!r}", table.name)
                self.notify("table_cleared", table.name)
                return True
            except SQLAlchemyError as exc:
                log.warning("TRUNCATE TABLE refused for {!r} ({}); using "
                            "DELETE from now on", table.name, exc)
                self.attempt_truncate = False
                self.force_truncate = False
        sql = table.sql.delete_all_sql(table.name)
        try:
            table.executor.execute(sql, timeout=timeout)
        except SQLAlchemyError as exc:
            self.report_failure(sql, exc)
            return False
        log.info("Deleted all rows from table {!r}", table.name)
        self.notify("table_cleared", table.name)
        return True

    def reset_identity(self, table: Table, field: Field) -> None:
        """
        Brings a destination table's identity counter into line with its
        contents. Failure is reported, not raised.
        """
        try:
            sql = table.sql.reset_identity(
                table.executor, table.name, field.name,
                timeout=self.options.timeout_seconds)
            if sql:
                log.debug("Reset identity for {!r}: {}", table.name, sql)
        except SQLAlchemyError as exc:
            log.warning("Failed to reset auto-increment seed for table {!r}",
                        table.name)
            self.report_failure(
                table.sql.reset_identity_sql(table.name, field.name) or "",
                exc)

    # -------------------------------------------------------------------------
    # Per-table setup
    # -------------------------------------------------------------------------

    @staticmethod
    def tracked_field(pair: TablePair) -> Optional[CommonField]:
        """
        The common field whose auto-increment translations we must record:
        the first auto-increment field (authoritative side) that foreign keys
        refer to. The identity read-back only returns one value per insert,
        so any other such field is ignored (with a warning).
        """
        candidates = [
            cf for cf in pair.common_fields
            if (cf.authoritative.auto_increment and
                cf.authoritative.foreign_keys)
        ]
        if not candidates:
            return None
        for cf in candidates[1:]:
            log.warning("Table {!r}: auto-increment field {!r} is referenced "
                        "by foreign keys but can't be translated; only {!r} "
                        "is tracked", pair.name, cf.name, candidates[0].name)
        return candidates[0]

    @staticmethod
    def order_by(pair: TablePair,
                 tracked: Optional[CommonField]) -> List[str]:
        """
        ORDER BY terms for the source query. A self-referencing table is
        ordered by its self-referencing columns, NULLs first, so that parent
        rows precede their children; otherwise we order by the tracked
        auto-increment field, to help keep the original values.
        """
        sql = pair.source.sql
        auth = pair.authoritative
        if auth.is_self_referencing:
            terms = []  # type: List[str]
            for f in auth.self_referencing_fields:
                sf = pair.source.get_field(f.name)
                if sf is not None:
                    terms.append(sql.self_reference_order_term(sf.name))
            return terms
        if tracked is not None:
            return [sql.quote(tracked.source.name)]
        return []

    def use_bulk_insert(self, pair: TablePair,
                        tracked: Optional[CommonField]) -> bool:
        """
        Should this table be loaded via a staging file? Only where no
        translations need recording (or only one table is being copied),
        unless forced.
        """
        options = self.options
        if not (options.attempt_bulk_insert or options.force_bulk_insert):
            return False
        if not pair.destination.sql.supports_bulk_load:
            if options.force_bulk_insert:
                log.warning("{} destination has no bulk load; inserting "
                            "rows one at a time",
                            pair.destination.schema.database_type.value)
            return False
        return (
            options.force_bulk_insert or
            tracked is None or
            self.work_table_count == 1
        )

    def enable_identity_insert(self, table: Table) -> bool:
        """
        Allows explicit values to be written to the identity column, if the
        destination needs (and permits) a statement for that.

        Returns:
            are we writing explicit identity values?
        """
        sql = table.sql
        if sql.identity_insert_always_allowed:
            return True
        statement = sql.identity_insert_sql(table.name, True)
        if not statement:
            return False
        try:
            table.executor.execute(statement,
                                   timeout=self.options.timeout_seconds)
        except SQLAlchemyError as exc:
            # e.g. no ALTER permission
            log.warning("Can't enable identity insert for {!r} ({}); "
                        "synchronizing identity values manually",
                        table.name, exc)
            return False
        return True

    def disable_identity_insert(self, table: Table) -> None:
        statement = table.sql.identity_insert_sql(table.name, False)
        if statement:
            try:
                table.executor.execute(statement,
                                       timeout=self.options.timeout_seconds)
            except SQLAlchemyError as exc:
                log.warning("Failed to turn off identity inserts on table "
                            "{!r}", table.name)
                self.report_failure(statement, exc)
        autoinc = table.auto_inc_field
        if autoinc is not None:
            self.reset_identity(table, autoinc)

    # -------------------------------------------------------------------------
    # Per-table copying
    # -------------------------------------------------------------------------

    def process_table(self, pair: TablePair) -> None:
        options = self.options
        tracked = self.tracked_field(pair)
        if tracked is not None:
            self.translator.start_tracking(tracked.authoritative)
        preserve_keys = not pair.authoritative.is_self_referencing
        select_sql = pair.select_sql(self.order_by(pair, tracked))

        if self.use_bulk_insert(pair, tracked):
            self.bulk_copy_table(pair, select_sql)
            return

        identity_insert = (
            preserve_keys and
            options.preserve_auto_increment_values and
            tracked is not None and
            self.enable_identity_insert(pair.destination)
        )
        try:
            self.copy_rows(pair, select_sql, tracked, identity_insert,
                           preserve_keys)
        finally:
            if identity_insert:
                self.disable_identity_insert(pair.destination)

    def build_insert_row(self, pair: TablePair, row: Sequence[Any],
                         tracked: Optional[CommonField],
                         identity_insert: bool) -> InsertRow:
        """
        Builds the statements for one source row.
        """
        ir = InsertRow()
        for cf, raw in zip(pair.common_fields, row):
            af = cf.authoritative
            value = self.encode_field(pair, cf, raw)
            if tracked is not None and cf is tracked:
                ir.autoinc_source_value = value
            if af.auto_increment and not identity_insert:
                continue
            if value is None and not af.allows_nulls:
                value = non_null_default(af.type)
            if (value is not None and af.allows_nulls and af.is_foreign_key
                    and values_equal(value, non_null_default(af.type))):
                value = None
            ir.add(cf, value, af.is_primary_key)
        return ir

    def copy_rows(self, pair: TablePair, select_sql: str,
                  tracked: Optional[CommonField],
                  identity_insert: bool,
                  preserve_keys: bool) -> None:
        dest = pair.destination
        sync = (
            tracked is not None and
            preserve_keys and
            not identity_insert and
            self.options.preserve_auto_increment_values
        )
        for row in self.gen_source_rows(pair, select_sql):
            ir = self.build_insert_row(pair, row, tracked, identity_insert)
            if tracked is None:
                if ir.where_terms:
                    self.insert_or_update(dest, ir)
                    continue
                if not ir.insert_columns:
                    # only auto-increment columns; nothing to write
                    continue
            insert_sql = ir.insert_sql(dest)
            try:
                if sync:
                    self.synchronize_identity(dest, tracked, ir)
                if ir.where_terms:
                    self.insert_or_update(dest, ir)
                else:
                    dest.executor.execute(insert_sql, ir.params.params,
                                          timeout=self.options.timeout_seconds)
            except SQLAlchemyError as exc:
                self.report_failure(insert_sql, exc)
                continue
            if tracked is not None:
                self.record_translation(dest, tracked, ir,
                                        explicit=identity_insert or
                                        bool(ir.where_terms))

    def record_translation(self, table: Table, tracked: CommonField,
                           ir: InsertRow, explicit: bool) -> None:
        """
        Records source value -> destination value for the tracked field. If
        we wrote the value explicitly it's unchanged; otherwise we ask the
        destination what it generated.
        """
        source_value = ir.autoinc_source_value
        if source_value is None:
            return
        if explicit:
            self.translator.record(tracked.authoritative, source_value,
                                   source_value)
            return
        try:
            new_value = table.executor.execute_scalar(
                table.identity_sql, timeout=self.options.timeout_seconds)
        except SQLAlchemyError as exc:
            self.report_failure(table.identity_sql, exc)
            return
        self.translator.record(tracked.authoritative, source_value, new_value)

    def synchronize_identity(self, table: Table, tracked: CommonField,
                             ir: InsertRow) -> None:
        """
        Without identity insert, makes the destination's next identity value
        equal to the source value, by inserting and deleting placeholder
        copies of the row until it gets there.

        Raises:
            :exc:`sqlalchemy.exc.SQLAlchemyError`
        """
        timeout = self.options.timeout_seconds
        executor = table.executor
        colname = tracked.destination.sql_escaped_name
        max_value = executor.execute_scalar(
            f"SELECT MAX({colname}) FROM {table.sql_escaped_name}",
            timeout=timeout)
        next_value = int(max_value or 0) + 1
        try:
            target = int(ir.autoinc_source_value or 0)
        except (TypeError, ValueError):
            log.warning("Table {!r}: can't synchronize identity to "
                        "non-integer value {!r}",
                        table.name, ir.autoinc_source_value)
            return
        insert_sql = ir.insert_sql(table)
        delete_sql = (
            f"DELETE FROM {table.sql_escaped_name} WHERE {colname} = :p0"
        )
        synchronizations = 0
        for _ in range(next_value, target):
            executor.execute(insert_sql, ir.params.params, timeout=timeout)
            identity = executor.execute_scalar(table.identity_sql,
                                               timeout=timeout)
            executor.execute(delete_sql, {"p0": identity}, timeout=timeout)
            synchronizations += 1
            if synchronizations % SYNC_REPORT_INTERVAL == 0:
                self.notify(
                    "table_progress",
                    f"Processed {synchronizations} auto-increment identity "
                    f"synchronizations...",
                    False, 0, 0)
        if synchronizations:
            log.debug("Table {!r}: {} identity synchronizations",
                      table.name, synchronizations)

    def insert_or_update(self, table: Table, ir: InsertRow) -> None:
        """
        Updates the row with this primary key if it already exists (e.g. a
        trigger created it); otherwise inserts it.
        """
        timeout = self.options.timeout_seconds
        executor = table.executor
        params = ir.params.params
        count_sql = ir.count_sql(table)
        try:
            count = int(executor.execute_scalar(count_sql, params,
                                                timeout=timeout) or 0)
        except SQLAlchemyError as exc:
            self.report_failure(count_sql, exc)
            return
        if count > 0:
            if not ir.set_terms:
                return
            sql = ir.update_sql(table)
        else:
            sql = ir.insert_sql(table)
        try:
            executor.execute(sql, params, timeout=timeout)
        except SQLAlchemyError as exc:
            self.report_failure(sql, exc)

    # -------------------------------------------------------------------------
    # Bulk loading
    # -------------------------------------------------------------------------

    def bulk_copy_table(self, pair: TablePair, select_sql: str) -> None:
        """
        Writes every source row to a staging file and loads it in one
        statement. The file is always removed afterwards. Failure to write
        the file is reported, not raised; the table's rows are then credited
        to overall progress.
        """
        dest = pair.destination
        writer = BulkLoadWriter(dest, self.options)
        positions = {
            cf.destination.name.lower(): i
            for i, cf in enumerate(pair.common_fields)
        }
        progress_before = self.overall_progress
        rows = self.gen_source_rows(pair, select_sql)
        try:
            try:
                writer.open()
                for row in rows:
                    encoded = [
                        self.encode_field(pair, cf, raw)
                        for cf, raw in zip(pair.common_fields, row)
                    ]
                    writer.write_row([
                        encoded[positions[f.name.lower()]]
                        if f.name.lower() in positions else None
                        for f in dest.fields
                    ])
                writer.close()
            except (OSError, LookupError) as exc:
                rows.close()
                log.error("Can't write staging file {!r} for {!r}: {}",
                          writer.filename, dest.name, exc)
                self.notify("bulk_insert_exception", dest.name, writer.sql,
                            exc)
                self.overall_progress = (progress_before +
                                         pair.source.row_count)
                self.notify("overall_progress", self.overall_progress,
                            self.overall_total)
                return
            if self.cancelled:
                log.warning("Cancelled; bulk load of {!r} not run", dest.name)
                return
            self.notify("bulk_insert_executing", dest.name)
            try:
                elapsed = writer.load(dest.executor,
                                      timeout=self.options.timeout_seconds)
            except SQLAlchemyError as exc:
                log.error("Bulk load of {!r} failed: {}", dest.name, exc)
                self.notify("bulk_insert_exception", dest.name, writer.sql,
                            exc)
            else:
                log.info("Bulk loaded {} rows into {!r} in {:.3f} s",
                         writer.rows, dest.name, elapsed)
                self.notify("bulk_insert_completed", dest.name, writer.rows,
                            elapsed)
                autoinc = dest.auto_inc_field
                if autoinc is not None:
                    # Loaded rows carry explicit keys.
                    self.reset_identity(dest, autoinc)
        finally:
            self._remove_staging_file(writer)

    def _remove_staging_file(self, writer: BulkLoadWriter) -> None:
        try:
            writer.cleanup()
        except OSError as exc:
            msg = (
                f"Failed to delete bulk insert staging file "
                f"{writer.filename!r}; it must be manually deleted: {exc}"
            )
            log.error("{}", msg)
            self.notify("bulk_insert_exception", writer.table.name,
                        writer.sql, OSError(msg))
