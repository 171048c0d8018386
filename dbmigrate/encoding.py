#!/usr/bin/env python
# dbmigrate/encoding.py

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

**Coercing source values into parameters for the destination.**

A value read from the source is coerced according to the provider-neutral
type of its field before it is bound as a parameter. ``None`` means SQL
``NULL``. Values that can't be coerced become ``NULL`` (or, for empty
numeric/text values, ``0``/``''`` unless the schema allows NULLs for them).

"""

import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any
import uuid

from dbmigrate.datetimefunc import (
    coerce_to_date,
    coerce_to_datetime,
    coerce_to_time,
    get_now_utc_notz_datetime,
)
from dbmigrate.logs import get_brace_style_log_with_null_handler

log = get_brace_style_log_with_null_handler(__name__)

ZERO_GUID = str(uuid.UUID(int=0))
ZERO_DECIMAL = Decimal("0.00")

TRUE_INITIALS = ("Y", "T")
FALSE_INITIALS = ("N", "F")


# =============================================================================
# Field types
# =============================================================================

class FieldType(Enum):
    """
    Provider-neutral column type tags.
    """
    INTEGER = "integer"
    FLOAT = "float"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    STRING = "string"
    DATETIME = "datetime"
    DATE = "date"
    TIME = "time"
    GUID = "guid"
    BINARY = "binary"
    OTHER = "other"


NUMERIC_FIELD_TYPES = (
    FieldType.INTEGER, FieldType.FLOAT, FieldType.DECIMAL, FieldType.BOOLEAN
)


# =============================================================================
# Non-NULL defaults
# =============================================================================

def non_null_default(field_type: FieldType) -> Any:
    """
    The value we write instead of NULL into a column that doesn't accept
    NULL. Also used to spot "NULL in disguise" values in nullable foreign
    keys.

    Date/time defaults are "now" (UTC). There's no sensible default for
    binary or unknown types, so they return ``None``.
    """
    if field_type == FieldType.INTEGER:
        return 0
    if field_type == FieldType.BOOLEAN:
        return False
    if field_type == FieldType.FLOAT:
        return 0.0
    if field_type == FieldType.DECIMAL:
        return ZERO_DECIMAL
    if field_type == FieldType.STRING:
        return ""
    if field_type == FieldType.DATETIME:
        return get_now_utc_notz_datetime()
    if field_type == FieldType.DATE:
        return get_now_utc_notz_datetime().date()
    if field_type == FieldType.TIME:
        return get_now_utc_notz_datetime().time().replace(microsecond=0)
    if field_type == FieldType.GUID:
        return ZERO_GUID
    return None


# =============================================================================
# Coercion
# =============================================================================

def _is_blank(value: Any) -> bool:
    return isinstance(value, str) and not value.strip()


def _encode_integer(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, (float, Decimal)):
        if value != int(value):
            raise ValueError(f"Not an integer: {value!r}")
        return int(value)
    return int(str(value).strip())


def _encode_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float, Decimal)):
        return value != 0
    s = str(value).strip()
    try:
        return int(s) != 0
    except ValueError:
        pass
    initial = s[0].upper()
    if initial in TRUE_INITIALS:
        return True
    if initial in FALSE_INITIALS:
        return False
    raise ValueError(f"Not a boolean: {value!r}")


def encode_value(value: Any,
                 field_type: FieldType,
                 allow_numeric_nulls: bool = False,
                 allow_text_nulls: bool = False) -> Any:
    """
    Coerces a source value for binding to a destination column of type
    ``field_type``.

    Args:
        value: the source value
        field_type: the destination (or authoritative) field's type
        allow_numeric_nulls: blank or unparseable numbers become NULL (rather
            than zero)?
        allow_text_nulls: empty strings become NULL (rather than ``''``)?

    Returns:
        the value to bind, or ``None`` for NULL
    """
    if value is None:
        return None
    if field_type in NUMERIC_FIELD_TYPES:
        numeric_fallback = (
            None if allow_numeric_nulls else non_null_default(field_type)
        )
        if _is_blank(value):
            return numeric_fallback
        try:
            if field_type == FieldType.INTEGER:
                return _encode_integer(value)
            if field_type == FieldType.BOOLEAN:
                return _encode_boolean(value)
            if field_type == FieldType.FLOAT:
                return float(value)
            return Decimal(str(value).strip())
        except (TypeError, ValueError, OverflowError, InvalidOperation):
            log.debug("Can't encode {!r} as {}", value, field_type.value)
            return numeric_fallback
    try:
        if field_type == FieldType.STRING:
            if isinstance(value, bytes):
                value = value.decode("utf-8", errors="replace")
            s = str(value)
            if not s:
                return None if allow_text_nulls else ""
            return s
        if field_type == FieldType.DATETIME:
            return coerce_to_datetime(value)
        if field_type == FieldType.DATE:
            return coerce_to_date(value)
        if field_type == FieldType.TIME:
            return coerce_to_time(value)
        if field_type == FieldType.GUID:
            if _is_blank(value):
                return ZERO_GUID
            return str(uuid.UUID(str(value).strip()))
    except (TypeError, ValueError, OverflowError):
        log.debug("Can't encode {!r} as {}", value, field_type.value)
        return None
    return value


def values_equal(a: Any, b: Any) -> bool:
    """
    Compares two encoded values, treating strings case-insensitively.
    """
    if a is None or b is None:
        return False
    if isinstance(a, str) and isinstance(b, str):
        return a.lower() == b.lower()
    if isinstance(a, (datetime.date, datetime.time)) != \
            isinstance(b, (datetime.date, datetime.time)):
        return False
    try:
        return a == b
    except TypeError:
        return False
