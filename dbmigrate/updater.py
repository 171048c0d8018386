#!/usr/bin/env python
# dbmigrate/updater.py

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

**Update destination rows from the source, matching on primary key.**

Rows that don't exist at the destination are not created; use
:class:`dbmigrate.inserter.DataInserter` for that.

"""

from typing import List

from sqlalchemy.exc import SQLAlchemyError

from dbmigrate.exceptions import MigrationError
from dbmigrate.logs import get_brace_style_log_with_null_handler
from dbmigrate.operation import BulkDataOperation, StatementParams, TablePair

log = get_brace_style_log_with_null_handler(__name__)


class DataUpdater(BulkDataOperation):
    """
    Updates the non-key columns of destination rows.
    """
    verb = "Updating"

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
            set_terms = []  # type: List[str]
            for cf, raw in zip(pair.common_fields, row):
                if cf.authoritative.is_primary_key:
                    continue
                value = self.encode_field(pair, cf, raw)
                if value is not None:
                    set_terms.append(f"{cf.destination.sql_escaped_name} = "
                                     f"{params.add(value)}")
            if not where:
                self.report_failure(
                    f"UPDATE {dest.sql_escaped_name}",
                    MigrationError(
                        f"Table {dest.name!r}: no primary key value to "
                        f"match; row not updated"))
                continue
            if not set_terms:
                continue
            sql = (
                f"UPDATE {dest.sql_escaped_name} "
                f"SET {', '.join(set_terms)} WHERE {' AND '.join(where)}"
            )
            try:
                dest.executor.execute(sql, params.params, timeout=timeout)
            except SQLAlchemyError as exc:
                self.report_failure(sql, exc)
