#!/usr/bin/env python
# dbmigrate/sql/literals.py

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

**Functions to manipulate raw SQL literals.**

Row values are always bound as parameters. Literals are needed only where a
statement cannot take parameters, e.g. a table name passed as a string to
``DBCC CHECKIDENT`` or a file name in ``BULK INSERT``.

"""

SQUOTE = "'"
DOUBLE_SQUOTE = "''"
DQUOTE = '"'


# =============================================================================
# SQL elements: literals
# =============================================================================

def sql_string_literal(text: str) -> str:
    """
    Transforms text into its ANSI SQL-quoted version, e.g. (in Python
    ``repr()`` format):

    .. code-block:: none

        "some string"   -> "'some string'"
        "Jack's dog"    -> "'Jack''s dog'"
    """
    return SQUOTE + text.replace(SQUOTE, DOUBLE_SQUOTE) + SQUOTE


def sql_dequote_string(s: str) -> str:
    """
    Reverses :func:`sql_string_literal`.
    """
    if len(s) < 2 or s[0] != SQUOTE or s[-1] != SQUOTE:
        raise ValueError("Not an SQL string literal")
    s = s[1:-1]  # strip off the surrounding quotes
    return s.replace(DOUBLE_SQUOTE, SQUOTE)


def strip_optional_quotes(s: str) -> str:
    """
    Removes one layer of matching single or double quotes, if present.
    ``"'\\t'"`` becomes ``"\\t"``; ``"abc"`` is unchanged.
    """
    s = s.strip()
    if len(s) >= 2 and s[0] == s[-1] and s[0] in (SQUOTE, DQUOTE):
        if s[0] == SQUOTE:
            return sql_dequote_string(s)
        return s[1:-1]
    return s
