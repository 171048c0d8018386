#!/usr/bin/env python
# dbmigrate/datetimefunc.py

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

**Support functions for date/time values travelling between databases.**

Source drivers hand back dates as ``datetime`` objects, ``date`` objects or
(e.g. SQLite) strings. Strings are parsed with ``dateutil`` before they are
bound as parameters or written to a bulk-load file.

"""

import datetime
from typing import Any, Optional

import dateutil.parser

from dbmigrate.logs import get_brace_style_log_with_null_handler

log = get_brace_style_log_with_null_handler(__name__)

# Date/time formats used in bulk-load staging files (SQL Server style).
BULK_DATETIME_FORMAT = "%m/%d/%Y %H:%M:%S"
BULK_TIME_FORMAT = "%H:%M:%S"


# =============================================================================
# Now
# =============================================================================

def get_now_utc_notz_datetime() -> datetime.datetime:
    """
    Get the UTC time now, but with no timezone information,
    in :class:`datetime.datetime` format.
    """
    now = datetime.datetime.now(datetime.timezone.utc)
    return now.replace(tzinfo=None)


# =============================================================================
# Coercion
# =============================================================================

def coerce_to_datetime(x: Any) -> Optional[datetime.datetime]:
    """
    Ensure an object is a :class:`datetime.datetime`, or coerce to one, or
    raise :exc:`ValueError` or :exc:`OverflowError` (as per
    https://dateutil.readthedocs.org/en/latest/parser.html).

    Blank strings are treated as ``None``.
    """
    if x is None:
        return None
    elif isinstance(x, datetime.datetime):
        return x
    elif isinstance(x, datetime.date):
        return datetime.datetime(x.year, x.month, x.day)
    elif isinstance(x, str) and not x.strip():
        return None
    else:
        return dateutil.parser.parse(str(x))  # may raise


def coerce_to_date(x: Any) -> Optional[datetime.date]:
    """
    Ensure an object is a :class:`datetime.date`, or coerce to one.
    """
    if isinstance(x, datetime.date) and not isinstance(x, datetime.datetime):
        return x
    dt = coerce_to_datetime(x)
    if dt is None:
        return None
    return dt.date()


def coerce_to_time(x: Any) -> Optional[datetime.time]:
    """
    Ensure an object is a :class:`datetime.time`, or coerce to one.
    """
    if x is None or isinstance(x, datetime.time):
        return x
    if isinstance(x, datetime.timedelta):  # e.g. MySQL TIME via mysqlclient
        return (datetime.datetime.min + x).time()
    dt = coerce_to_datetime(x)
    if dt is None:
        return None
    return dt.time()


# =============================================================================
# Formatting for bulk loads
# =============================================================================

def format_bulk_datetime(x: Any) -> str:
    """
    Formats a date/datetime as ``MM/dd/yyyy HH:mm:ss``; ``None`` becomes
    ``""``.
    """
    dt = coerce_to_datetime(x)
    if dt is None:
        return ""
    return dt.strftime(BULK_DATETIME_FORMAT)


def format_bulk_time(x: Any) -> str:
    """
    Formats a time of day as ``HH:mm:ss``; ``None`` becomes ``""``.
    """
    t = coerce_to_time(x)
    if t is None:
        return ""
    return t.strftime(BULK_TIME_FORMAT)
