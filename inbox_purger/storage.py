"""
Shelf access shared by the property store and the trigger scheduler
"""

import shelve
import threading
from contextlib import contextmanager
from pathlib import Path

from filelock import FileLock


LOCK_TIMEOUT = 30.0

# Serializes shelf access between the dispatcher thread and request threads
_thread_lock = threading.Lock()


@contextmanager
def open_shelf(path: Path):
    """Open a shelf while holding the in-process lock and a sidecar file lock.

    The file lock covers separate processes, e.g. `inbox-purger run` while
    `inbox-purger serve` is up. Raises filelock.Timeout if another process
    holds the shelf for longer than LOCK_TIMEOUT seconds.
    """
    with _thread_lock, FileLock(f"{path}.lock", timeout=LOCK_TIMEOUT):
        with shelve.open(str(path)) as shelf:
            yield shelf
