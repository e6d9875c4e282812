"""Cross-process locks guarding cache entries.

Locks are exclusive OS file locks taken with portalocker, so they are
released automatically when the holding process exits. The lock file keeps
the holder's pid for diagnostics and is never deleted.
"""
from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import ContextManager, Iterator, Optional, Protocol

import portalocker

from constants import Constants
from common.errors import CacheLockTimeoutError
from common.logging_utils import extra_context, is_debug_enabled, Timer

logger = logging.getLogger(__name__)


class LockProvider(Protocol):
    """Acquires an exclusive lock for a cache entry."""

    def acquire(self, lock_path: Path, timeout: float) -> ContextManager[None]:
        """Block until the lock is held or ``timeout`` seconds passed.

        Raises:
            CacheLockTimeoutError: the lock could not be acquired in time.
        """


def read_lock_holder(lock_path: Path) -> Optional[int]:
    """Pid recorded in ``lock_path`` by the current or last holder."""
    try:
        text = Path(lock_path).read_text(encoding="utf-8").strip()
    except OSError:
        return None
    try:
        return int(text.splitlines()[0]) if text else None
    except ValueError:
        return None


class FileLockProvider:
    """``LockProvider`` backed by portalocker exclusive file locks."""

    def __init__(self, poll_interval: float = Constants.LOCK_POLL_INTERVAL_SEC) -> None:
        self.poll_interval = poll_interval

    @contextmanager
    def acquire(self, lock_path: Path, timeout: float) -> Iterator[None]:
        lock_path = Path(lock_path)
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        lock = portalocker.Lock(
            str(lock_path),
            mode="a+",
            timeout=timeout,
            check_interval=self.poll_interval,
            fail_when_locked=False,
            flags=portalocker.LOCK_EX | portalocker.LOCK_NB,
        )
        with Timer() as t:
            try:
                handle = lock.acquire()
            except portalocker.exceptions.LockException as exc:
                holder = read_lock_holder(lock_path)
                logger.warning(
                    "Timed out waiting for cache lock %s",
                    lock_path,
                    extra=extra_context(
                        event="lock_timeout",
                        component="package_cache",
                        lock_path=str(lock_path),
                        holder=holder,
                    ),
                )
                raise CacheLockTimeoutError(lock_path, timeout, holder) from exc
        if is_debug_enabled(logger):
            logger.debug(
                "Acquired cache lock",
                extra=extra_context(
                    event="lock_acquired",
                    component="package_cache",
                    lock_path=str(lock_path),
                    duration_ms=t.duration_ms(),
                ),
            )
        try:
            handle.seek(0)
            handle.truncate()
            handle.write(f"{os.getpid()}\n")
            handle.flush()
            yield
        finally:
            lock.release()
