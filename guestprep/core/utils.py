# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# guestprep/core/utils.py
from __future__ import annotations

import datetime as _dt
import hashlib
import json
import logging
import shlex
import subprocess
import sys
from pathlib import Path
from typing import Any, BinaryIO, Iterator, List, Optional, Sequence

from rich.progress import (
    BarColumn,
    Progress,
    TextColumn,
    TimeElapsedColumn,
    TransferSpeedColumn,
)

# ramdisk images above this size get a progress bar while hashing
_PROGRESS_MIN_BYTES = 64 * 1024 * 1024
_HASH_CHUNK = 1024 * 1024

RC_NOT_FOUND = 127
RC_TIMEOUT = 124


def _blocks(f: BinaryIO) -> Iterator[bytes]:
    while True:
        b = f.read(_HASH_CHUNK)
        if not b:
            return
        yield b


class U:
    @staticmethod
    def ensure_dir(p: Path) -> None:
        p.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def now_ts() -> str:
        return _dt.datetime.now().strftime("%Y%m%d-%H%M%S")

    @staticmethod
    def json_dump(obj: Any) -> str:
        return json.dumps(obj, indent=2, sort_keys=True, default=str)

    @staticmethod
    def pretty_cmd(cmd: Sequence[str]) -> str:
        return " ".join(shlex.quote(str(x)) for x in cmd)

    @staticmethod
    def tail(text: str, limit: int = 1200) -> str:
        text = (text or "").strip()
        return text if len(text) <= limit else "..." + text[-limit:]

    @staticmethod
    def run_cmd(
        logger: logging.Logger,
        cmd: List[str],
        *,
        timeout: Optional[int] = None,
    ) -> subprocess.CompletedProcess:
        """Run cmd with captured text output. Never raises on a non-zero exit."""
        logger.debug("Running: %s", U.pretty_cmd(cmd))
        return subprocess.run(cmd, check=False, capture_output=True, text=True, timeout=timeout)

    @staticmethod
    def sha256_file(path: Path) -> str:
        h = hashlib.sha256()
        size = path.stat().st_size

        with open(path, "rb") as f:
            if size < _PROGRESS_MIN_BYTES or not sys.stderr.isatty():
                for blk in _blocks(f):
                    h.update(blk)
                return h.hexdigest()

            with Progress(
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
                TransferSpeedColumn(),
                TimeElapsedColumn(),
                transient=True,
            ) as progress:
                task = progress.add_task(f"Hashing {path.name}", total=size)
                for blk in _blocks(f):
                    h.update(blk)
                    progress.update(task, advance=len(blk))
        return h.hexdigest()


class CommandRunner:
    """
    Executes external tools on behalf of the pipeline components.

    Results are always returned as CompletedProcess; callers check the
    return code themselves and then re-query state independently. A missing
    binary comes back as rc=127. The timeout only bounds read-only queries
    (mutating=False); one that expires comes back as rc=124, like coreutils
    ``timeout``.
    """

    def __init__(self, logger: logging.Logger, *, dry_run: bool = False, timeout: Optional[int] = None):
        self.logger = logger
        self.dry_run = bool(dry_run)
        self.timeout = timeout

    def run(self, cmd: List[str], *, mutating: bool = True) -> subprocess.CompletedProcess:
        if self.dry_run and mutating:
            self.logger.info("DRY-RUN: would run: %s", U.pretty_cmd(cmd))
            return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")
        try:
            cp = U.run_cmd(self.logger, cmd, timeout=None if mutating else self.timeout)
        except FileNotFoundError as e:
            return subprocess.CompletedProcess(cmd, RC_NOT_FOUND, stdout="", stderr=str(e))
        except subprocess.TimeoutExpired:
            self.logger.error("Command timed out after %ss: %s", self.timeout, U.pretty_cmd(cmd))
            return subprocess.CompletedProcess(cmd, RC_TIMEOUT, stdout="", stderr=f"timed out after {self.timeout}s")
        if cp.returncode != 0:
            self.logger.debug(
                "Command rc=%s: %s stderr=%s", cp.returncode, U.pretty_cmd(cmd), U.tail(cp.stderr or "", 400)
            )
        return cp

    def chroot(self, root: Path, cmd: List[str]) -> subprocess.CompletedProcess:
        return self.run(["chroot", str(root), *cmd])
