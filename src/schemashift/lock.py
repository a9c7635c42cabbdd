"""Exclusive advisory lock around migration batches."""

import json
import logging
import os
import socket
from datetime import datetime, timezone
from pathlib import Path

from .constants import LOCK_FILE_SUFFIX, LOCK_RETRY_BACKOFF_BASE, LOCK_RETRY_MAX_DELAY
from .errors import LockContentionError
from .utils import ensure_dir, exponential_backoff, retry

logger = logging.getLogger(__name__)


def lock_path_for(state_file: Path) -> Path:
    """Return the lock file that guards ``state_file``."""
    return state_file.with_name(state_file.name + LOCK_FILE_SUFFIX)


class MigrationLock:
    """
    Lock file created with O_CREAT | O_EXCL.

    Only one runner at a time can create the file; the others retry until
    ``timeout`` seconds have passed and then raise LockContentionError. The
    lock is re-entrant within one instance so nested batches (``redo``) do
    not contend with themselves.
    """

    def __init__(self, path: Path, timeout: float = 0.0):
        """
        Initialize lock.

        Args:
            path: Lock file path
            timeout: Seconds to wait for a held lock (0 fails fast)
        """
        self.path = path
        self.timeout = timeout
        self._depth = 0

    @property
    def held(self) -> bool:
        return self._depth > 0

    def read_holder(self) -> dict:
        """Return the holder information written into the lock file, if readable."""
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return {}
        return data if isinstance(data, dict) else {}

    def _create(self) -> None:
        fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        holder = {
            "pid": os.getpid(),
            "host": socket.gethostname(),
            "acquired_at": datetime.now(timezone.utc).isoformat(timespec="seconds"),
        }
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(holder, f)

    def acquire(self) -> None:
        """
        Acquire the lock.

        Raises:
            LockContentionError: If another runner still holds it after the timeout
        """
        if self._depth:
            self._depth += 1
            return

        ensure_dir(self.path.parent)

        def _log_retry(error: Exception, attempt: int) -> None:
            logger.debug(f"Lock {self.path} busy, retry #{attempt}")

        attempt_create = retry(
            timeout=self.timeout,
            backoff=lambda attempt: exponential_backoff(
                attempt, base=LOCK_RETRY_BACKOFF_BASE, max_delay=LOCK_RETRY_MAX_DELAY
            ),
            exceptions=(FileExistsError,),
            on_retry=_log_retry,
        )(self._create)

        try:
            attempt_create()
        except FileExistsError:
            raise LockContentionError(self.path, self.read_holder()) from None

        self._depth = 1
        logger.debug(f"Acquired lock {self.path}")

    def release(self) -> None:
        """Release the lock if this instance holds it."""
        if not self._depth:
            return
        self._depth -= 1
        if self._depth == 0:
            self.path.unlink(missing_ok=True)
            logger.debug(f"Released lock {self.path}")

    def __enter__(self) -> "MigrationLock":
        self.acquire()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()
