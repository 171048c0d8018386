#!/usr/bin/env python
# dbmigrate/tests/deleter_tests.py

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

import logging
import unittest

from dbmigrate.deleter import DataDeleter
from dbmigrate.exceptions import MigrationError
from dbmigrate.tests.fake_executor import (
    CUSTOMERS_DDL,
    ORDERS_DDL,
    SqliteMigrationMixin,
)

log = logging.getLogger(__name__)


class DeleterTestMixin(SqliteMigrationMixin):
    operation_class = DataDeleter


# =============================================================================
# Unit tests
# =============================================================================

class DeleteMatchingRowsTests(DeleterTestMixin, unittest.TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.both(CUSTOMERS_DDL, ORDERS_DDL)
        self.run_sql(
            self.src_engine,
            "INSERT INTO customers (id, name) VALUES (1, 'Alice')",
            "INSERT INTO customers (id, name) VALUES (2, 'Bob')",
            "INSERT INTO orders (id, customer_id, item) VALUES (1, 1, 'a')",
        )
        self.run_sql(
            self.dst_engine,
            "INSERT INTO customers (id, name) VALUES (1, 'Alice')",
            "INSERT INTO customers (id, name) VALUES (2, 'Bob')",
            "INSERT INTO customers (id, name) VALUES (3, 'Carol')",
            "INSERT INTO orders (id, customer_id, item) VALUES (1, 1, 'a')",
            "INSERT INTO orders (id, customer_id, item) VALUES (2, 3, 'b')",
        )

    def test_only_source_rows_deleted(self) -> None:
        self.run_operation()
        self.assertEqual(
            self.fetch(self.dst_engine, "SELECT id FROM customers"),
            [(3, )])
        self.assertEqual(
            self.fetch(self.dst_engine, "SELECT id, customer_id FROM orders"),
            [(2, 3)])
        self.assertEqual(self.listener.of("sql_failure"), [])

    def test_children_processed_first(self) -> None:
        self.run_operation()
        self.assertEqual(self.listener.processed_tables(),
                         ["orders", "customers"])
        self.assertEqual(self.listener.of("overall_progress")[-1], (3, 3))


class DeleteWithoutKeyTests(DeleterTestMixin, unittest.TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.both(
            "CREATE TABLE log (stamp VARCHAR(30), message VARCHAR(100))",
            # SQLite allows NULL in a non-integer primary key
            "CREATE TABLE settings ("
            "name VARCHAR(20) PRIMARY KEY, "
            "value VARCHAR(50))",
        )
        self.run_sql(
            self.src_engine,
            "INSERT INTO log VALUES ('2020-01-01', 'started')",
            "INSERT INTO settings VALUES (NULL, 'orphan')",
            "INSERT INTO settings VALUES ('colour', 'red')",
        )
        self.run_sql(
            self.dst_engine,
            "INSERT INTO log VALUES ('2020-01-01', 'started')",
            "INSERT INTO settings VALUES ('colour', 'red')",
            "INSERT INTO settings VALUES ('size', 'large')",
        )

    def test_table_without_primary_key_skipped(self) -> None:
        self.run_operation()
        progress = self.listener.of("table_progress")
        self.assertIn(("log", False), [args[:2] for args in progress])
        self.assertEqual(
            self.fetch(self.dst_engine, "SELECT COUNT(*) FROM log"),
            [(1, )])
        self.assertEqual(self.listener.of("overall_progress")[-1], (3, 3))

    def test_null_key_reported_and_other_rows_deleted(self) -> None:
        self.run_operation()
        failures = self.listener.of("sql_failure")
        self.assertEqual(len(failures), 1)
        sql, error = failures[0]
        self.assertEqual(sql, "DELETE FROM settings")
        self.assertIsInstance(error, MigrationError)
        self.assertEqual(
            self.fetch(self.dst_engine, "SELECT name FROM settings"),
            [("size", )])
