# SPDX-License-Identifier: LGPL-3.0-or-later
# guestprep/mounts/models.py
from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Tuple, Union


# Link hops allowed while walking a guest path, as the kernel's MAXSYMLINKS
_MAX_LINK_HOPS = 40


def resolve_in_root(target_root: Union[str, os.PathLike], guest_path: str) -> Path:
    """
    Map a guest path onto the host the way a chroot at target_root sees it.

    Each component is walked inside the root. Symlinks are followed, an
    absolute link restarts at target_root and `..` inside a link stops at
    target_root. The caller's own path must not contain `..` or a null byte.

    Raises ValueError if the path is rejected or its result is not under
    target_root.
    """
    if "\x00" in guest_path:
        raise ValueError(f"null byte in guest path {guest_path!r}")
    parts = [p for p in guest_path.split("/") if p not in ("", ".")]
    if ".." in parts:
        raise ValueError(f"'..' in guest path {guest_path!r}")

    root = Path(os.path.realpath(target_root))
    cur = root
    hops = 0
    while parts:
        part = parts.pop(0)
        if part == "..":
            if cur != root:
                cur = cur.parent
            continue
        nxt = cur / part
        if not nxt.is_symlink():
            cur = nxt
            continue
        hops += 1
        if hops > _MAX_LINK_HOPS:
            raise ValueError(f"too many symlinks resolving {guest_path!r}")
        link = os.readlink(nxt)
        if link.startswith("/"):
            cur = root
        parts = [p for p in link.split("/") if p not in ("", ".")] + parts

    if os.path.commonpath([str(root), str(cur)]) != str(root):
        raise ValueError(f"{guest_path!r} resolves to {cur}, outside {root}")
    return cur


@dataclass(frozen=True)
class MountEntry:
    """One fstab record: `source mountPoint fsType [options]`."""
    source: str
    target_relative_path: str
    fs_type: str
    options: Tuple[str, ...] = ("defaults",)

    @property
    def is_bind(self) -> bool:
        return "bind" in self.options or "rbind" in self.options

    def full_target(self, target_root: Path) -> Path:
        """Host path of this mount point; ValueError if it escapes target_root."""
        return resolve_in_root(target_root, self.target_relative_path)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "target": self.target_relative_path,
            "fs_type": self.fs_type,
            "options": list(self.options),
        }


@dataclass(frozen=True)
class MountPlan:
    """fstab entries in file order; parents come before the children nested under them."""
    entries: Tuple[MountEntry, ...]
    source_path: str = ""

    def __iter__(self) -> Iterator[MountEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)


class MountOutcome(str, Enum):
    ALREADY_MOUNTED = "already_mounted"
    MOUNTED = "mounted"
    FAILED = "failed"


@dataclass(frozen=True)
class MountResult:
    entry: MountEntry
    outcome: MountOutcome
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome is not MountOutcome.FAILED

    def to_dict(self) -> Dict[str, Any]:
        return {"entry": self.entry.to_dict(), "outcome": self.outcome.value, "detail": self.detail}


@dataclass
class MountReport:
    """Aggregate of per-entry results; secondary mount errors surface only through this."""
    target_root: str
    results: List[MountResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results)

    @property
    def failed(self) -> List[MountResult]:
        return [r for r in self.results if not r.ok]

    def count(self, outcome: MountOutcome) -> int:
        return sum(1 for r in self.results if r.outcome is outcome)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target_root": self.target_root,
            "ok": self.ok,
            "results": [r.to_dict() for r in self.results],
            "failed": [r.entry.target_relative_path for r in self.failed],
        }
