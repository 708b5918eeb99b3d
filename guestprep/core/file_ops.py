# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# guestprep/core/file_ops.py
"""
Atomic write and verified backup helpers.

Nothing in the target tree is rewritten before a backup of its previous
content exists on disk and reads back identical to the original.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, List, Optional, Tuple

from .exceptions import FileIOError
from .utils import U

BACKUP_TAG = "guestprep"


@contextmanager
def atomic_write(
    target_path: Path,
    *,
    suffix: str = ".part",
    delete_on_error: bool = True,
) -> Generator[Path, None, None]:
    """
    Context manager for atomic file writes using temporary file + rename.

    Creates a temporary file next to the target, yields its path for writing,
    then renames it over the target on success. The temp file is removed on
    failure.

    Example:
        with atomic_write(Path("/mnt/guestprep/etc/default/grub")) as tmp:
            tmp.write_text(new_content, encoding="utf-8")
    """
    target_path = Path(target_path)
    target_path.parent.mkdir(parents=True, exist_ok=True)

    fd, temp_name = tempfile.mkstemp(
        suffix=suffix,
        prefix=f".{target_path.name}.",
        dir=str(target_path.parent),
    )
    temp_path = Path(temp_name)
    os.close(fd)

    try:
        yield temp_path
        if target_path.exists():
            shutil.copymode(target_path, temp_path)
        _fsync_path(temp_path)
        os.replace(temp_path, target_path)
    except BaseException:
        if delete_on_error:
            temp_path.unlink(missing_ok=True)
        raise


def _fsync_path(path: Path) -> None:
    with open(path, "rb") as f:
        os.fsync(f.fileno())


def verified_copy(logger: logging.Logger, src: Path, dst: Path) -> Path:
    """
    Copy src to dst, flush it to disk and confirm dst reads back identical.

    Raises FileIOError when the copy fails or does not verify.
    """
    src = Path(src)
    dst = Path(dst)
    try:
        shutil.copy2(src, dst)
        _fsync_path(dst)
        src_sum = U.sha256_file(src)
        dst_sum = U.sha256_file(dst)
    except OSError as e:
        raise FileIOError(
            msg=f"Backup copy failed: {src} -> {dst}: {e.strerror or e}",
            cause=e,
            context={"source": str(src), "backup": str(dst)},
        ) from e

    if src_sum != dst_sum:
        raise FileIOError(
            msg=f"Backup copy does not match original: {dst}",
            context={"source": str(src), "backup": str(dst), "sha256_src": src_sum, "sha256_dst": dst_sum},
        )

    logger.info("Backup: %s -> %s (sha256=%s)", src, dst, src_sum[:16])
    return dst


def timestamped_backup_path(path: Path, *, tag: str = BACKUP_TAG) -> Path:
    """<name>.bak.<tag>.<YYYYmmdd-HHMMSS>, with a -N suffix if that name is taken."""
    path = Path(path)
    base = path.with_name(f"{path.name}.bak.{tag}.{U.now_ts()}")
    candidate = base
    n = 1
    while candidate.exists():
        candidate = base.with_name(f"{base.name}-{n}")
        n += 1
    return candidate


_STAMP_RE = re.compile(r"^(\d{8}-\d{6})(?:-(\d+))?$")


def _backup_order(prefix: str, p: Path) -> Tuple[str, int, str]:
    # creation order lives in the name; copy2 carries the source mtime over
    m = _STAMP_RE.match(p.name[len(prefix):])
    if m is None:
        return ("", 0, p.name)
    return (m.group(1), int(m.group(2) or 0), p.name)


def list_backups(path: Path, *, tag: str = BACKUP_TAG) -> List[Path]:
    """Backups of `path`, oldest first, by the timestamp in their names."""
    path = Path(path)
    prefix = f"{path.name}.bak.{tag}."
    found = [p for p in path.parent.glob(f"{prefix}*") if p.is_file()]
    return sorted(found, key=lambda p: _backup_order(prefix, p))


def latest_backup(path: Path, *, tag: str = BACKUP_TAG) -> Optional[Path]:
    backups = list_backups(path, tag=tag)
    return backups[-1] if backups else None


def restore_from_backup(logger: logging.Logger, backup: Path, target: Path) -> None:
    """Atomically replace target with the content of backup and verify it."""
    backup = Path(backup)
    target = Path(target)
    data = backup.read_bytes()
    try:
        with atomic_write(target) as tmp:
            tmp.write_bytes(data)
    except OSError as e:
        raise FileIOError(
            msg=f"Restore failed: {backup} -> {target}: {e.strerror or e}",
            cause=e,
            context={"backup": str(backup), "target": str(target)},
        ) from e

    if target.read_bytes() != data:
        raise FileIOError(msg=f"Restored file does not match backup: {target}", context={"backup": str(backup)})
    logger.info("Restored %s from %s", target, backup)
