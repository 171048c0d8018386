#!/usr/bin/env python
# dbmigrate/bulk.py

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

**Bulk loading via a delimited staging file.**

Instead of one INSERT per row, rows can be written to a delimited text file
which the destination server then loads in one statement (``BULK INSERT``,
``LOAD DATA INFILE``, ``COPY``). The field and row terminators come from the
``FIELDTERMINATOR`` and ``ROWTERMINATOR`` entries of the bulk insert settings
string, e.g.

.. code-block:: none

    FIELDTERMINATOR = '\\t', ROWTERMINATOR = '\\n', CODEPAGE = 'OEM'

Every destination column gets a field in every row (empty if the source has
no such column), and terminator characters inside values are replaced, so
that the loader always sees the right number of columns.

"""

import datetime
import os
import time
from typing import Any, List, Optional, Sequence, Tuple, TYPE_CHECKING
import uuid

from dbmigrate.datetimefunc import format_bulk_datetime, format_bulk_time
from dbmigrate.fileops import delete_file_if_exists, wait_until_unlocked
from dbmigrate.logs import get_brace_style_log_with_null_handler
from dbmigrate.sql.literals import strip_optional_quotes

if TYPE_CHECKING:
    from dbmigrate.options import MigrationOptions
    from dbmigrate.schema import Table
    from dbmigrate.sqlalchemy.executor import SqlExecutor

log = get_brace_style_log_with_null_handler(__name__)

DEFAULT_FIELD_TERMINATOR = "\t"
DEFAULT_ROW_TERMINATOR = "\n"
STAGING_FILE_EXTENSION = ".tmp"

_ESCAPES = {
    "\\": "\\",
    "'": "'",
    '"': '"',
    "t": "\t",
    "n": "\n",
    "r": "\r",
}


# =============================================================================
# Settings
# =============================================================================

def unescape_terminator(value: str) -> str:
    """
    Strips optional quotes from a terminator setting and decodes backslash
    escapes: ``'\\t'`` becomes a tab, ``'\\n'`` a newline, ``\\\\`` a
    backslash. Unknown escapes are left alone.
    """
    s = strip_optional_quotes(value)
    out = []  # type: List[str]
    i = 0
    while i < len(s):
        c = s[i]
        if c == "\\" and i + 1 < len(s) and s[i + 1] in _ESCAPES:
            out.append(_ESCAPES[s[i + 1]])
            i += 2
        else:
            out.append(c)
            i += 1
    return "".join(out)


def parse_bulk_insert_settings(settings: str) -> Tuple[str, str]:
    """
    Extracts the field and row terminators from a settings string such as
    ``FIELDTERMINATOR = '|', ROWTERMINATOR = '\\n', KEEPNULLS``.

    Returns:
        tuple: ``(field_terminator, row_terminator)``, defaulting to tab and
        newline
    """
    field_terminator = DEFAULT_FIELD_TERMINATOR
    row_terminator = DEFAULT_ROW_TERMINATOR
    for item in (settings or "").split(","):
        if "=" not in item:
            continue
        key, _, value = item.partition("=")
        key = key.strip().upper()
        if key == "FIELDTERMINATOR":
            field_terminator = unescape_terminator(value) or field_terminator
        elif key == "ROWTERMINATOR":
            row_terminator = unescape_terminator(value) or row_terminator
    return field_terminator, row_terminator


# =============================================================================
# Values
# =============================================================================

def format_bulk_value(value: Any) -> str:
    """
    Text form of a value in a staging file. ``None`` is an empty field.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, datetime.datetime):
        return format_bulk_datetime(value)
    if isinstance(value, datetime.date):
        return format_bulk_datetime(value)
    if isinstance(value, datetime.time):
        return format_bulk_time(value)
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).hex()
    return str(value)


# =============================================================================
# Staging file
# =============================================================================

class BulkLoadWriter(object):
    """
    Writes rows for one destination table to a staging file, loads it, and
    cleans up.

    Usage:

    .. code-block:: python

        writer = BulkLoadWriter(dest_table, options)
        writer.open()
        for values in rows:
            writer.write_row(values)
        writer.close()
        elapsed = writer.load(dest_table.executor, timeout)
        writer.cleanup()
    """

    def __init__(self, table: "Table", options: "MigrationOptions") -> None:
        self.table = table
        self.options = options
        self.field_terminator, self.row_terminator = \
            parse_bulk_insert_settings(options.bulk_insert_settings)
        self.filename = os.path.join(
            options.bulk_insert_staging_path,
            f"{uuid.uuid4()}{STAGING_FILE_EXTENSION}"
        )
        self.colnames = table.field_names
        self.rows = 0
        self._file = None

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__}({self.table.name!r}, "
            f"{self.filename!r}, rows={self.rows})>"
        )

    @property
    def sql(self) -> Optional[str]:
        """
        The load statement, or ``None`` if the destination has none.
        """
        return self.table.sql.bulk_load_sql(
            tablename=self.table.name,
            filename=self.filename,
            settings=self.options.bulk_insert_settings,
            field_terminator=self.field_terminator,
            row_terminator=self.row_terminator,
            colnames=self.colnames,
        )

    def open(self) -> None:
        log.debug("Opening staging file {!r}", self.filename)
        self._file = open(self.filename, "wb")

    def escape(self, text: str) -> str:
        """
        Replaces terminators found inside a value, then doubles the loader's
        escape character (backslash for MySQL and PostgreSQL) so it is read
        back literally.
        """
        replacement = self.options.delimiter_replacement
        for terminator in (self.field_terminator, self.row_terminator):
            if terminator:
                text = text.replace(terminator, replacement)
        esc = self.table.sql.bulk_escape_character
        if esc:
            text = text.replace(esc, esc + esc)
        return text

    def format_row(self, values: Sequence[Any]) -> str:
        return self.field_terminator.join(
            self.escape(format_bulk_value(v)) for v in values
        ) + self.row_terminator

    def write_row(self, values: Sequence[Any]) -> None:
        """
        Writes one row; ``values`` is aligned with the destination table's
        fields.
        """
        line = self.format_row(values)
        self._file.write(line.encode(self.options.bulk_insert_encoding,
                                     errors="replace"))
        self.rows += 1

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def load(self, executor: "SqlExecutor", timeout: int = None) -> float:
        """
        Waits for the file to be free, then runs the load statement.

        Returns:
            elapsed time in seconds

        Raises:
            whatever the executor raises
        """
        self.close()
        wait_until_unlocked(self.filename,
                            self.options.bulk_insert_lock_wait_seconds)
        start = time.perf_counter()
        executor.execute(self.sql, timeout=timeout)
        return time.perf_counter() - start

    def cleanup(self) -> None:
        """
        Deletes the staging file, once the server has let go of it.

        Raises:
            :exc:`OSError` if it can't be deleted
        """
        self.close()
        wait_until_unlocked(self.filename,
                            self.options.bulk_insert_lock_wait_seconds)
        delete_file_if_exists(self.filename)
