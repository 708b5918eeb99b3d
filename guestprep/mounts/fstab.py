# SPDX-License-Identifier: LGPL-3.0-or-later
# guestprep/mounts/fstab.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Tuple, Union

from ..core.exceptions import NotFoundError
from .models import MountEntry, MountPlan
from .mount_table import unescape_octal

# API filesystems: bound from the host for chroot work, never mounted from the guest table
IGNORE_MOUNTPOINTS = {"/proc", "/sys", "/dev", "/run", "/dev/pts", "/dev/shm", "/sys/fs/cgroup"}

_LOG = logging.getLogger("guestprep.fstab")


def parse_fstab_line(line: str) -> Optional[MountEntry]:
    """
    One fstab line -> MountEntry, or None for blanks, comments and short lines.
    Swap is returned like anything else; filtering is the planner's job.
    """
    body = line.strip()
    if not body or body.startswith("#"):
        return None

    fields = body.split()
    if len(fields) < 3:
        _LOG.warning("⚠️  fstab: malformed line skipped: %r", line.rstrip("\n"))
        return None

    options: Tuple[str, ...] = ("defaults",)
    if len(fields) > 3 and fields[3].strip(","):
        options = tuple(o for o in fields[3].split(",") if o)

    return MountEntry(
        source=unescape_octal(fields[0]),
        target_relative_path=unescape_octal(fields[1]),
        fs_type=fields[2],
        options=options,
    )


def _skip_reason(entry: MountEntry, *, include_noauto: bool) -> Optional[str]:
    if entry.fs_type == "swap":
        return "swap"
    mp = entry.target_relative_path.rstrip("/") or "/"
    if mp == "/":
        return "root (mounted separately)"
    if mp == "none" or not mp.startswith("/"):
        return "no mount point"
    if mp in IGNORE_MOUNTPOINTS:
        return "api filesystem"
    if "noauto" in entry.options and not include_noauto:
        return "noauto"
    return None


def parse_fstab(path: Union[str, Path], *, include_noauto: bool = False) -> MountPlan:
    """
    Read the guest's fstab and return the secondary mounts in file order.

    A missing file is fatal: without it nothing else can be planned.
    """
    p = Path(path)
    if not p.is_file():
        raise NotFoundError(msg=f"fstab not found: {p}", context={"path": str(p)})

    entries: List[MountEntry] = []
    with open(p, "r", encoding="utf-8", errors="replace") as f:
        for lineno, line in enumerate(f, 1):
            entry = parse_fstab_line(line)
            if entry is None:
                continue
            reason = _skip_reason(entry, include_noauto=include_noauto)
            if reason:
                _LOG.debug("⏭️  fstab:%d skip %s %s (%s)", lineno, entry.source, entry.target_relative_path, reason)
                continue
            _LOG.debug("🧩 fstab:%d plan %s -> %s (%s)", lineno, entry.source, entry.target_relative_path, entry.fs_type)
            entries.append(entry)

    return MountPlan(entries=tuple(entries), source_path=str(p))
