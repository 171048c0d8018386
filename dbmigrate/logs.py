#!/usr/bin/env python
# dbmigrate/logs.py

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

**Logging for dbmigrate.**

Every module in this package logs through

.. code-block:: python

    from dbmigrate.logs import get_brace_style_log_with_null_handler
    log = get_brace_style_log_with_null_handler(__name__)

    log.info("Copying table {!r}: {} rows", tablename, n_rows)

which is silent until the application sets up logging, e.g. with
:func:`main_only_quicksetup_rootlogger`, which writes coloured output to
stderr.

"""

from inspect import Parameter, signature
import logging
from typing import Any, Dict, TextIO, Tuple

from colorlog import ColoredFormatter

# =============================================================================
# Coloured console output
# =============================================================================

LOG_DATEFMT = '%Y-%m-%d %H:%M:%S'

LOG_COLORS = {'DEBUG': 'cyan',
              'INFO': 'green',
              'WARNING': 'bold_yellow',
              'ERROR': 'bold_red',
              'CRITICAL': 'bold_white,bg_red'}

COLOUR_FORMAT = (
    "%(white)s%(asctime)s.%(msecs)03d %(name)s:%(levelname)s: "
    "%(reset)s%(log_color)s%(message)s"
)


def get_colour_handler(stream: TextIO = None) -> logging.StreamHandler:
    """
    Returns a stream handler (default: stderr) with a
    :class:`colorlog.ColoredFormatter` attached.
    """
    formatter = ColoredFormatter(COLOUR_FORMAT,
                                 datefmt=LOG_DATEFMT,
                                 reset=True,
                                 log_colors=LOG_COLORS,
                                 style='%')
    handler = logging.StreamHandler(stream)
    handler.setFormatter(formatter)
    return handler


def main_only_quicksetup_rootlogger(level: int = logging.DEBUG,
                                    stream: TextIO = None) -> None:
    """
    Replaces the root logger's handlers with a single colour handler.

    Only for applications (the ``__main__`` script); library code must not
    configure logging.
    """
    rootlogger = logging.getLogger()
    rootlogger.handlers = []
    handler = get_colour_handler(stream)
    handler.setLevel(level)
    rootlogger.addHandler(handler)
    rootlogger.setLevel(level)


# =============================================================================
# Brace-style logging
# =============================================================================

class BraceMessage(object):
    """
    A log message formatted lazily with ``fmt.format(*args, **kwargs)``.
    """
    def __init__(self,
                 fmt: str,
                 args: Tuple[Any, ...],
                 kwargs: Dict[str, Any]) -> None:
        self.fmt = fmt
        self.args = args
        self.kwargs = kwargs

    def __str__(self) -> str:
        return self.fmt.format(*self.args, **self.kwargs)


class BraceStyleAdapter(logging.LoggerAdapter):
    """
    Lets a logger take ``{}``-style format strings. Keyword arguments that
    the logger itself understands (``exc_info``, ``stack_info``...) go to the
    logger; the rest go to the formatter.
    """
    def __init__(self, logger: logging.Logger) -> None:
        super().__init__(logger=logger, extra=None)
        # noinspection PyProtectedMember
        sig = signature(self.logger._log)
        self.logargnames = [p.name for p in sig.parameters.values()
                            if p.kind == Parameter.POSITIONAL_OR_KEYWORD]

    def log(self, level: int, msg: str, *args: Any, **kwargs: Any) -> None:
        if self.isEnabledFor(level):
            msg, log_kwargs = self.process(msg, kwargs)
            # noinspection PyProtectedMember
            self.logger._log(level, BraceMessage(msg, args, kwargs), (),
                             **log_kwargs)

    def process(self, msg: str,
                kwargs: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
        log_kwargs = {k: kwargs.pop(k) for k in list(kwargs.keys())
                      if k in self.logargnames}
        return msg, log_kwargs


def get_brace_style_log_with_null_handler(name: str) -> BraceStyleAdapter:
    """
    Returns a :class:`BraceStyleAdapter` around the named logger, which gets
    a :class:`logging.NullHandler`.
    """
    log = logging.getLogger(name)
    log.addHandler(logging.NullHandler())
    return BraceStyleAdapter(log)
