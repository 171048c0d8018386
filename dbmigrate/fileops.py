#!/usr/bin/env python
# dbmigrate/fileops.py

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

**File operations used for bulk-load staging files.**

"""

import os
import time
from typing import Tuple

from dbmigrate.logs import get_brace_style_log_with_null_handler

log = get_brace_style_log_with_null_handler(__name__)

LOCK_POLL_INTERVAL_S = 0.25


# =============================================================================
# File locking
# =============================================================================

def exists_locked(filepath: str) -> Tuple[bool, bool]:
    """
    Checks if a file is locked by opening it in append mode.
    (If no exception is thrown in that situation, then the file is not locked.)

    Args:
        filepath: file to check

    Returns:
        tuple: ``(exists, locked)``

    See https://www.calazan.com/how-to-check-if-a-file-is-locked-in-python/.
    """
    exists = False
    locked = None
    file_object = None
    if os.path.exists(filepath):
        exists = True
        locked = True
        try:
            buffer_size = 8
            file_object = open(filepath, 'a', buffer_size)
            if file_object:
                locked = False  # exists and not locked
        except IOError:
            pass
        finally:
            if file_object:
                file_object.close()
    return exists, locked


def wait_until_unlocked(filepath: str, timeout_s: float) -> bool:
    """
    Polls until a file is absent or no longer locked, for at most
    ``timeout_s`` seconds.

    Returns:
        ``True`` if the file is (now) free; ``False`` if we gave up.
    """
    deadline = time.monotonic() + max(timeout_s, 0)
    while True:
        exists, locked = exists_locked(filepath)
        if not exists or not locked:
            return True
        if time.monotonic() >= deadline:
            log.warning("Gave up waiting for lock on {!r} after {} s",
                        filepath, timeout_s)
            return False
        time.sleep(LOCK_POLL_INTERVAL_S)


def delete_file_if_exists(filepath: str) -> None:
    """
    Deletes a file, if it exists.

    Raises:
        OSError: if the file exists but can't be deleted
    """
    if os.path.isfile(filepath):
        log.debug("Deleting {!r}", filepath)
        os.remove(filepath)
