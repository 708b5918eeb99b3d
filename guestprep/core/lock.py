# SPDX-License-Identifier: LGPL-3.0-or-later
# guestprep/core/lock.py
from __future__ import annotations

import fcntl
import json
import logging
import os
from pathlib import Path
from types import TracebackType
from typing import IO, Optional, Type

from .exceptions import LockError
from .utils import U


class RunLock:
    """
    Exclusive, non-blocking flock on a lock file for the duration of a run.

    The file is left behind on release; its pid/timestamp content helps when
    debugging a stale holder.
    """

    def __init__(self, logger: logging.Logger, path: Path):
        self.logger = logger
        self.path = Path(path)
        self._fp: Optional[IO[str]] = None

    def acquire(self) -> "RunLock":
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fp = self.path.open("a+", encoding="utf-8")
        except OSError as e:
            raise LockError(
                msg=f"Cannot open lock file {self.path}: {e.strerror or e}",
                cause=e,
                context={"path": str(self.path)},
            ) from e

        try:
            fcntl.flock(fp.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as e:
            fp.seek(0)
            holder = fp.read().strip()
            fp.close()
            raise LockError(
                msg=f"Another run holds {self.path}",
                cause=e,
                context={"path": str(self.path), "holder": holder},
            ) from e

        fp.seek(0)
        fp.truncate(0)
        fp.write(json.dumps({"pid": os.getpid(), "ts": U.now_ts()}))
        fp.flush()
        self._fp = fp
        self.logger.debug("Acquired run lock: %s", self.path)
        return self

    def release(self) -> None:
        if self._fp is None:
            return
        try:
            fcntl.flock(self._fp.fileno(), fcntl.LOCK_UN)
        finally:
            self._fp.close()
            self._fp = None
        self.logger.debug("Released run lock: %s", self.path)

    def __enter__(self) -> "RunLock":
        return self.acquire()

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.release()
