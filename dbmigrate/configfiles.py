#!/usr/bin/env python
# dbmigrate/configfiles.py

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

**Support functions for config (.INI) file reading.**

Each getter falls back to a default (with a warning) if the parameter is
absent or malformed, so a partial config file is always usable.

"""

from configparser import ConfigParser, NoOptionError, NoSectionError
from typing import Any, Callable, List

from dbmigrate.logs import get_brace_style_log_with_null_handler

log = get_brace_style_log_with_null_handler(__name__)

_LOOKUP_ERRORS = (TypeError, ValueError, NoOptionError, NoSectionError)


# =============================================================================
# Reading config files
# =============================================================================

def _warn_default(section: str, param: str, default: Any) -> None:
    log.warning("Config parameter [{}] {} missing or invalid; using default "
                "{!r}", section, param, default)


def get_config_parameter(config: ConfigParser,
                         section: str,
                         param: str,
                         fn: Callable[[Any], Any],
                         default: Any) -> Any:
    """
    Reads ``param`` from ``section`` and converts it with ``fn`` (e.g.
    ``int``).

    Returns:
        the converted value; else ``fn(default)``, or ``None`` if ``default``
        is ``None``
    """
    try:
        return fn(config.get(section, param))
    except _LOOKUP_ERRORS:
        _warn_default(section, param, default)
        return None if default is None else fn(default)


def get_config_parameter_boolean(config: ConfigParser,
                                 section: str,
                                 param: str,
                                 default: bool) -> bool:
    """
    Reads a Boolean (``yes``/``no``, ``true``/``false``, ``1``/``0``...).
    """
    try:
        return config.getboolean(section, param)
    except _LOOKUP_ERRORS:
        _warn_default(section, param, default)
        return default


def get_config_parameter_multiline(config: ConfigParser,
                                   section: str,
                                   param: str,
                                   default: List[str]) -> List[str]:
    """
    Reads a multi-line value as a list of stripped, non-blank lines.
    """
    try:
        multiline = config.get(section, param)
    except _LOOKUP_ERRORS:
        _warn_default(section, param, default)
        return default
    return [x.strip() for x in multiline.splitlines() if x.strip()]
