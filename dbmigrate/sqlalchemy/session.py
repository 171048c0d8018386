#!/usr/bin/env python
# dbmigrate/sqlalchemy/session.py

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

**Functions to work with SQLAlchemy engines and URLs.**

"""

from typing import Union

from sqlalchemy.engine import create_engine
from sqlalchemy.engine.base import Engine
from sqlalchemy.engine.url import URL, make_url

from dbmigrate.logs import get_brace_style_log_with_null_handler

log = get_brace_style_log_with_null_handler(__name__)


# =============================================================================
# Database URLs
# =============================================================================

SQLITE_MEMORY_URL = "sqlite://"


def get_safe_url_from_engine(engine: Engine) -> str:
    """
    Gets a URL from an :class:`Engine`, obscuring the password.
    """
    url_obj = make_url(engine.url)  # type: URL
    return url_obj.render_as_string(hide_password=True)


# =============================================================================
# Engines
# =============================================================================

def get_engine(engine_or_url: Union[Engine, str, URL],
               echo: bool = False) -> Engine:
    """
    Returns an :class:`Engine`, creating one if we were given a URL.
    """
    if isinstance(engine_or_url, Engine):
        return engine_or_url
    engine = create_engine(engine_or_url, echo=echo, future=True)
    log.debug("Created engine for {}", get_safe_url_from_engine(engine))
    return engine
