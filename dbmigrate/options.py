#!/usr/bin/env python
# dbmigrate/options.py

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

**Options controlling a migration.**

Options can be set as constructor keyword arguments or read from a section
of an ``.INI`` file:

.. code-block:: ini

    [migration]
    attempt_bulk_insert = false
    bulk_insert_settings = FIELDTERMINATOR = '\\t', ROWTERMINATOR = '\\n'
    clear_destination_tables = true
    attempt_truncate_table = true
    preserve_auto_increment_values = true
    row_report_interval = 100
    timeout_seconds = 300
    excluded_tables =
        audit_log
        sessions

"""

from configparser import ConfigParser
import tempfile
from typing import Any, Iterable, List

from dbmigrate.configfiles import (
    get_config_parameter,
    get_config_parameter_boolean,
    get_config_parameter_multiline,
)
from dbmigrate.logs import get_brace_style_log_with_null_handler

log = get_brace_style_log_with_null_handler(__name__)


# =============================================================================
# Defaults
# =============================================================================

DEFAULT_BULK_INSERT_SETTINGS = (
    "FIELDTERMINATOR = '\\t', ROWTERMINATOR = '\\n', CODEPAGE = 'OEM', "
    "FIRE_TRIGGERS, KEEPNULLS"
)
DEFAULT_BULK_INSERT_ENCODING = "ascii"
DEFAULT_BULK_INSERT_LOCK_WAIT_S = 15
DEFAULT_DELIMITER_REPLACEMENT = " - "
DEFAULT_ROW_REPORT_INTERVAL = 5
DEFAULT_TIMEOUT_S = 120

BOOLEAN_OPTIONS = (
    "attempt_bulk_insert",
    "force_bulk_insert",
    "clear_destination_tables",
    "attempt_truncate_table",
    "force_truncate_table",
    "preserve_auto_increment_values",
    "use_source_referential_integrity",
)


# =============================================================================
# MigrationOptions
# =============================================================================

class MigrationOptions(object):
    """
    Options for :class:`dbmigrate.inserter.DataInserter` and friends.
    """

    def __init__(self,
                 attempt_bulk_insert: bool = False,
                 force_bulk_insert: bool = False,
                 bulk_insert_settings: str = DEFAULT_BULK_INSERT_SETTINGS,
                 bulk_insert_encoding: str = DEFAULT_BULK_INSERT_ENCODING,
                 bulk_insert_staging_path: str = None,
                 bulk_insert_lock_wait_seconds: float = DEFAULT_BULK_INSERT_LOCK_WAIT_S,  # noqa
                 delimiter_replacement: str = DEFAULT_DELIMITER_REPLACEMENT,
                 clear_destination_tables: bool = False,
                 attempt_truncate_table: bool = False,
                 force_truncate_table: bool = False,
                 preserve_auto_increment_values: bool = True,
                 use_source_referential_integrity: bool = True,
                 row_report_interval: int = DEFAULT_ROW_REPORT_INTERVAL,
                 timeout_seconds: int = DEFAULT_TIMEOUT_S,
                 excluded_tables: Iterable[str] = None) -> None:
        """
        Args:
            attempt_bulk_insert:
                use the destination's bulk-load statement where it's safe
                (no auto-increment translation needed)
            force_bulk_insert:
                use bulk load whenever the destination supports it
            bulk_insert_settings:
                SQL Server ``WITH (...)`` settings for ``BULK INSERT``; the
                ``FIELDTERMINATOR`` and ``ROWTERMINATOR`` here are used to
                write the staging file for every dialect
            bulk_insert_encoding:
                text encoding of the staging file
            bulk_insert_staging_path:
                directory for staging files (default: the system temporary
                directory); must be readable by the database server
            bulk_insert_lock_wait_seconds:
                how long to wait for the server to release the staging file
                before deleting it
            delimiter_replacement:
                replaces terminator characters found inside data values
            clear_destination_tables:
                empty matching destination tables before copying
            attempt_truncate_table:
                clear with ``TRUNCATE TABLE`` where the dialect supports it
                and nothing refers to the table
            force_truncate_table:
                always try ``TRUNCATE TABLE`` first
            preserve_auto_increment_values:
                keep source key values in destination auto-increment columns
            use_source_referential_integrity:
                take keys, nullability and foreign keys from the source schema
                (otherwise from the destination)
            row_report_interval:
                rows between row-progress notifications
            timeout_seconds:
                per-statement timeout, where the driver supports one
            excluded_tables:
                map names of tables not to process
        """
        self.attempt_bulk_insert = attempt_bulk_insert
        self.force_bulk_insert = force_bulk_insert
        self.bulk_insert_settings = bulk_insert_settings
        self.bulk_insert_encoding = bulk_insert_encoding
        self.bulk_insert_staging_path = (
            bulk_insert_staging_path or tempfile.gettempdir()
        )
        self.bulk_insert_lock_wait_seconds = bulk_insert_lock_wait_seconds
        self.delimiter_replacement = delimiter_replacement
        self.clear_destination_tables = clear_destination_tables
        self.attempt_truncate_table = attempt_truncate_table
        self.force_truncate_table = force_truncate_table
        self.preserve_auto_increment_values = preserve_auto_increment_values
        self.use_source_referential_integrity = use_source_referential_integrity  # noqa
        self.row_report_interval = max(1, int(row_report_interval))
        self.timeout_seconds = timeout_seconds
        self.excluded_tables = list(excluded_tables or [])  # type: List[str]

    def __repr__(self) -> str:
        return "{}({})".format(
            self.__class__.__name__,
            ", ".join(f"{k}={v!r}" for k, v in sorted(vars(self).items()))
        )

    def is_excluded(self, map_name: str) -> bool:
        """
        Is the table with this map name excluded (case-insensitively)?
        """
        wanted = map_name.lower()
        return any(x.lower() == wanted for x in self.excluded_tables)

    @classmethod
    def from_config(cls, config: ConfigParser,
                    section: str,
                    **overrides: Any) -> "MigrationOptions":
        """
        Reads options from a section of a ``configparser`` ``.INI`` file.
        Missing or malformed values fall back to defaults (with a warning).

        Args:
            config: the :class:`ConfigParser`
            section: section name
            overrides: keyword arguments that take precedence over the file
        """
        defaults = cls()
        kwargs = {}
        for name in BOOLEAN_OPTIONS:
            kwargs[name] = get_config_parameter_boolean(
                config, section, name, getattr(defaults, name))
        for name in ("bulk_insert_settings", "bulk_insert_encoding",
                     "bulk_insert_staging_path"):
            kwargs[name] = get_config_parameter(
                config, section, name, str, getattr(defaults, name))
        kwargs["delimiter_replacement"] = get_config_parameter(
            config, section, "delimiter_replacement", _unquote,
            defaults.delimiter_replacement)
        kwargs["bulk_insert_lock_wait_seconds"] = get_config_parameter(
            config, section, "bulk_insert_lock_wait_seconds", float,
            defaults.bulk_insert_lock_wait_seconds)
        kwargs["row_report_interval"] = get_config_parameter(
            config, section, "row_report_interval", int,
            defaults.row_report_interval)
        kwargs["timeout_seconds"] = get_config_parameter(
            config, section, "timeout_seconds", int,
            defaults.timeout_seconds)
        kwargs["excluded_tables"] = get_config_parameter_multiline(
            config, section, "excluded_tables", defaults.excluded_tables)
        kwargs.update(overrides)
        options = cls(**kwargs)
        log.debug("Options from [{}]: {!r}", section, options)
        return options


def _unquote(x: str) -> str:
    """
    ConfigParser strips surrounding whitespace, so values that need it (like
    ``" - "``) may be written in double quotes.
    """
    if len(x) >= 2 and x[0] == x[-1] == '"':
        return x[1:-1]
    return x
