#!/usr/bin/env python
# dbmigrate/tests/datetimefunc_tests.py

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

**Unit tests.**

"""

import datetime
import logging
import unittest

from dbmigrate.datetimefunc import (
    coerce_to_date,
    coerce_to_datetime,
    coerce_to_time,
    format_bulk_datetime,
    format_bulk_time,
    get_now_utc_notz_datetime,
)

log = logging.getLogger(__name__)


# =============================================================================
# Unit testing
# =============================================================================

class TestCoerceToDatetime(unittest.TestCase):
    def test_returns_none_if_none_or_blank(self) -> None:
        self.assertIsNone(coerce_to_datetime(None))
        self.assertIsNone(coerce_to_datetime("  "))

    def test_returns_input_if_datetime(self) -> None:
        datetime_in = datetime.datetime(2020, 6, 15, hour=15, minute=42)
        self.assertIs(coerce_to_datetime(datetime_in), datetime_in)

    def test_converts_date(self) -> None:
        self.assertEqual(coerce_to_datetime(datetime.date(2020, 6, 15)),
                         datetime.datetime(2020, 6, 15))

    def test_parses_string(self) -> None:
        self.assertEqual(coerce_to_datetime("2020-06-15T15:42:07"),
                         datetime.datetime(2020, 6, 15, 15, 42, 7))

    def test_raises_for_garbage(self) -> None:
        with self.assertRaises(ValueError):
            coerce_to_datetime("not a date")


class TestCoerceToDateAndTime(unittest.TestCase):
    def test_date(self) -> None:
        d = datetime.date(2020, 6, 15)
        self.assertIs(coerce_to_date(d), d)
        self.assertEqual(coerce_to_date("2020-06-15 12:00"), d)
        self.assertIsNone(coerce_to_date(""))

    def test_time(self) -> None:
        self.assertEqual(coerce_to_time("2020-06-15 12:34:56"),
                         datetime.time(12, 34, 56))
        self.assertEqual(
            coerce_to_time(datetime.timedelta(hours=23, seconds=5)),
            datetime.time(23, 0, 5))
        self.assertIsNone(coerce_to_time(None))


class TestBulkFormats(unittest.TestCase):
    def test_datetime(self) -> None:
        self.assertEqual(
            format_bulk_datetime(datetime.datetime(2020, 6, 5, 3, 4, 5)),
            "06/05/2020 03:04:05")
        self.assertEqual(format_bulk_datetime(None), "")

    def test_time(self) -> None:
        self.assertEqual(format_bulk_time(datetime.time(3, 4, 5)),
                         "03:04:05")
        self.assertEqual(format_bulk_time(None), "")


class TestNow(unittest.TestCase):
    def test_naive(self) -> None:
        self.assertIsNone(get_now_utc_notz_datetime().tzinfo)
