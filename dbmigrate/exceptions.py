#!/usr/bin/env python
# dbmigrate/exceptions.py

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

**Exceptions raised by migration operations.**

Only configuration problems are raised. Failures of individual statements
are reported to listeners (see :mod:`dbmigrate.events`) and the operation
carries on.

"""

from typing import Dict, List


# =============================================================================
# Exception classes
# =============================================================================

class MigrationError(Exception):
    """
    Base class for exceptions raised by this package.
    """
    pass


class MigrationConfigurationError(MigrationError):
    """
    The migration cannot start: the schemas or options are unusable. Raised
    before any statement is executed against the destination.
    """
    pass


class CircularDependencyError(MigrationConfigurationError):
    """
    Foreign keys form a cycle between distinct tables, so there is no order in
    which the tables can be safely written.
    """
    def __init__(self, chain: List[str]) -> None:
        self.chain = list(chain)
        super().__init__(
            "Circular foreign key dependency: " + " -> ".join(self.chain))


class NoTablesToProcessError(MigrationConfigurationError):
    """
    No source table could be paired with a destination table.
    """
    pass


# =============================================================================
# Exception helpers
# =============================================================================

def add_info_to_exception(err: Exception, info: Dict) -> None:
    """
    Adds an information dictionary to an exception, e.g. the SQL and
    parameters that were being executed when it occurred.

    See
    http://stackoverflow.com/questions/9157210/how-do-i-raise-the-same-exception-with-a-custom-message-in-python

    Args:
        err: the exception to be modified
        info: the information to add
    """  # noqa
    if not err.args:
        err.args = ('', )
    err.args += (info, )


def recover_info_from_exception(err: Exception) -> Dict:
    """
    Retrieves the information added to an exception by
    :func:`add_info_to_exception`.
    """
    if len(err.args) < 1:
        return {}
    info = err.args[-1]
    if not isinstance(info, dict):
        return {}
    return info
