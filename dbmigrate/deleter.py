#!/usr/bin/env python
# dbmigrate/deleter.py

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

**Delete, from the destination, every row present in the source.**

Tables are processed children first (the exact reverse of the insert order),
so foreign keys are never left dangling. Rows are matched on primary key
only; a table whose authoritative side has no primary key is skipped.

"""

from sqlalchemy.exc import SQLAlchemyError

from dbmigrate.exceptions import MigrationError
from dbmigrate.logs import get_brace_style_log_with_null_handler
from dbmigrate.operation import BulkDataOperation, StatementParams, TablePair

log = get_brace_style_log_with_null_handler(__name__)


class DataDeleter(BulkDataOperation):
    """
    Deletes matching rows from the destination tables.
    """
    reverse_order = True
    verb = "Deleting from"

    def can_process(self, pair: TablePair) -> bool:
        if not super().can_process(pair):
            return False
        if pair.authoritative.primary_key_field_count == 0:
            log.info("Table {!r} has no primary key; skipped", pair.name)
            return False
        return True

    def process_table(self, pair: TablePair) -> None:
        dest = pair.destination
        timeout = self.options.timeout_seconds
        for row in self.gen_source_rows(pair, pair.select_sql()):
            params = StatementParams()
            where = self.build_where(pair, row, params)
            if not where:
                self.report_failure(
                    f"DELETE FROM {dest.sql_escaped_name}",
                    MigrationError(
                        f"Table {dest.name!r}: no primary key value to "
                        f"match; row not deleted"))
                continue
            sql = (
                f"DELETE FROM {dest.sql_escaped_name} "
                f"WHERE {' AND '.join(where)}"
            )
            try:
                dest.executor.execute(sql, params.params, timeout=timeout)
            except SQLAlchemyError as exc:
                self.report_failure(sql, exc)
