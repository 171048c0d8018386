#!/usr/bin/env python
# dbmigrate/events.py

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

**Progress and failure notifications.**

Pass one or more :class:`MigrationListener` objects to an operation's
constructor. Override the methods you care about; the others do nothing.
Listeners are called synchronously, on the thread running the migration.

"""

import logging

from dbmigrate.logs import get_brace_style_log_with_null_handler

log = get_brace_style_log_with_null_handler(__name__)


# =============================================================================
# Listener interface
# =============================================================================

class MigrationListener(object):
    """
    Receives notifications from a migration. All methods are no-ops.
    """

    def table_progress(self, table_name: str, processing: bool,
                       index: int, total: int) -> None:
        """
        A table is starting (``processing``) or being skipped. ``index`` is
        one-based. After the last table, this is called once more with an
        empty name and ``index == total``. Also used, with ``total == 0``,
        for free-text status messages.
        """
        pass

    def row_progress(self, table_name: str, current: int,
                     total: int) -> None:
        pass

    def overall_progress(self, current: int, total: int) -> None:
        pass

    def sql_failure(self, sql: str, error: Exception) -> None:
        """
        A statement failed. The migration continues.
        """
        pass

    def table_cleared(self, table_name: str) -> None:
        pass

    def bulk_insert_executing(self, table_name: str) -> None:
        pass

    def bulk_insert_completed(self, table_name: str, rows: int,
                              elapsed_seconds: float) -> None:
        pass

    def bulk_insert_exception(self, table_name: str, sql: str,
                              error: Exception) -> None:
        """
        A bulk load failed, or its staging file couldn't be cleaned up.
        """
        pass


# =============================================================================
# Logging listener
# =============================================================================

class LoggingMigrationListener(MigrationListener):
    """
    Reports everything to the log. Row progress is reported every
    ``report_every`` rows (and at the start and end of each table).
    """

    def __init__(self, report_every: int = 1000,
                 loglevel: int = logging.INFO) -> None:
        """
        Args:
            report_every:
                Report row progress every n rows.
            loglevel:
                Log level to use for progress.
        """
        self.report_every = report_every
        self.loglevel = loglevel

    def table_progress(self, table_name: str, processing: bool,
                       index: int, total: int) -> None:
        if not table_name:
            log.log(self.loglevel, "Finished: {} tables", total)
        elif total == 0:
            log.log(self.loglevel, "{}", table_name)
        elif processing:
            log.log(self.loglevel, "Processing table {!r} ({} of {})",
                    table_name, index, total)
        else:
            log.log(self.loglevel, "Skipping table {!r} ({} of {})",
                    table_name, index, total)

    def row_progress(self, table_name: str, current: int,
                     total: int) -> None:
        if current in (0, total) or current % self.report_every == 0:
            log.log(self.loglevel, "{}: row {} of {}",
                    table_name, current, total)

    def overall_progress(self, current: int, total: int) -> None:
        log.debug("Overall: {} of {} rows", current, total)

    def sql_failure(self, sql: str, error: Exception) -> None:
        log.error("SQL failed: {}\n... error: {}", sql, error)

    def table_cleared(self, table_name: str) -> None:
        log.log(self.loglevel, "Cleared table {!r}", table_name)

    def bulk_insert_executing(self, table_name: str) -> None:
        log.log(self.loglevel, "Bulk loading table {!r}", table_name)

    def bulk_insert_completed(self, table_name: str, rows: int,
                              elapsed_seconds: float) -> None:
        log.log(self.loglevel, "Bulk loaded {} rows into {!r} in {:.3f} s",
                rows, table_name, elapsed_seconds)

    def bulk_insert_exception(self, table_name: str, sql: str,
                              error: Exception) -> None:
        log.error("Bulk load problem for table {!r}: {}\n... SQL: {}",
                  table_name, error, sql)
