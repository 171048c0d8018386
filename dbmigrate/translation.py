#!/usr/bin/env python
# dbmigrate/translation.py

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

**Translating auto-increment key values from source to destination.**

When a row is copied into a table whose primary key is generated by the
destination, the new key usually differs from the source key. Every foreign
key elsewhere that refers to the old value must be rewritten to the new one.

While a table is being copied, its tracked auto-increment field holds a map
``str(source value) -> destination value``. Because parents are copied before
children, the map is complete by the time any child row refers to it.

Example: source ``Customers`` has ``id`` 10 and 20; the destination assigns 1
and 2. A source ``Orders`` row with ``customerId = 20`` is written with
``customerId = 2``.

"""

from typing import Any, Dict, List, Optional, TYPE_CHECKING

from dbmigrate.logs import get_brace_style_log_with_null_handler

if TYPE_CHECKING:
    from dbmigrate.schema import Field, Table

log = get_brace_style_log_with_null_handler(__name__)


def translation_key(value: Any) -> str:
    """
    Translation maps are keyed by the string form of the source value, so
    an integer ``10`` and a string ``"10"`` match.
    """
    return str(value)


class AutoIncrementTranslator(object):
    """
    Records and applies auto-increment translations.
    """

    def start_tracking(self, field: "Field") -> Dict[str, Any]:
        """
        Gives ``field`` a fresh, empty translation map (discarding any from a
        previous run) and returns it.
        """
        field.auto_increment_translations = {}
        log.debug("Tracking auto-increment translations for {}",
                  field.qualified_name)
        return field.auto_increment_translations

    @staticmethod
    def record(field: "Field", source_value: Any,
               destination_value: Any) -> None:
        """
        Records that ``source_value`` became ``destination_value``.
        """
        if field.auto_increment_translations is None:
            field.auto_increment_translations = {}
        field.auto_increment_translations[
            translation_key(source_value)] = destination_value

    @staticmethod
    def lookup(field: "Field", source_value: Any) -> Optional[Any]:
        """
        Returns the translated value, or ``None`` if there isn't one.
        """
        if field.auto_increment_translations is None:
            return None
        return field.auto_increment_translations.get(
            translation_key(source_value))

    def dereference(self, table: "Table", field_name: str, value: Any,
                    visited: List["Field"] = None) -> Any:
        """
        Returns the value to write for ``table.field_name`` in place of the
        source ``value``.

        - ``None`` stays ``None``.
        - If the field is a foreign key to an auto-increment field, the
          translated value is returned if there is one; otherwise the
          original value.
        - If the field is a foreign key to a field that is itself a foreign
          key (e.g. a one-to-one extension table whose key is also a foreign
          key to an auto-increment key), we follow the chain. If the chain
          loops, the value is returned unchanged.
        - Anything else is returned unchanged.

        Args:
            table: the table the value came from (authoritative side)
            field_name: the field's name
            value: the source value
            visited: referenced fields seen so far along the chain
        """
        if value is None:
            return None
        field = table.get_field(field_name)
        if field is None or not field.is_foreign_key:
            return value
        referenced = field.referenced_field
        if referenced.auto_increment:
            translated = self.lookup(referenced, value)
            return value if translated is None else translated
        visited = visited or []
        if any(referenced is f for f in visited):
            return value
        visited.append(referenced)
        return self.dereference(referenced.table, referenced.name, value,
                                visited)

    @staticmethod
    def clear(tables: List["Table"]) -> None:
        """
        Discards all translation maps.
        """
        for table in tables:
            for field in table.fields:
                field.auto_increment_translations = None
