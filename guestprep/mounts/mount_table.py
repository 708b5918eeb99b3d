# SPDX-License-Identifier: LGPL-3.0-or-later
# guestprep/mounts/mount_table.py
from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple, Union

PROC_MOUNTS = Path("/proc/self/mounts")
DEV_DISK = Path("/dev/disk")

# fstab(5) / proc mounts escape whitespace and backslash as \ooo
_OCTAL_ESCAPE = re.compile(r"\\([0-7]{3})")

# Tag prefixes understood by mount(8) and the /dev/disk/by-* directory each maps to
_TAG_DIRS = {
    "UUID": "by-uuid",
    "LABEL": "by-label",
    "PARTUUID": "by-partuuid",
    "PARTLABEL": "by-partlabel",
}


def unescape_octal(s: str) -> str:
    return _OCTAL_ESCAPE.sub(lambda m: chr(int(m.group(1), 8)), s)


def split_tag(spec: str) -> Optional[Tuple[str, str]]:
    """'UUID=abc' -> ('UUID', 'abc'); None for anything that is not a tag."""
    if "=" not in spec:
        return None
    key, _, value = spec.partition("=")
    key = key.strip().upper()
    value = value.strip().strip('"')
    if key in _TAG_DIRS and value:
        return key, value
    return None


def normalize_path(p: Union[str, os.PathLike]) -> str:
    s = os.path.normpath(str(p))
    return s if s != "//" else "/"


@dataclass(frozen=True)
class MountTableEntry:
    source: str
    target: str
    fs_type: str
    options: Tuple[str, ...]


class MountTable:
    """
    Read-only view of the kernel mount table.

    Every query re-reads the file: the table is the independent source of
    truth used to confirm that a mount command actually did something.
    """

    def __init__(self, path: Path = PROC_MOUNTS, *, dev_disk: Path = DEV_DISK):
        self.path = Path(path)
        self.dev_disk = Path(dev_disk)

    def entries(self) -> List[MountTableEntry]:
        out: List[MountTableEntry] = []
        text = self.path.read_text(encoding="utf-8", errors="replace")
        for line in text.splitlines():
            fields = line.split()
            if len(fields) < 3:
                continue
            out.append(
                MountTableEntry(
                    source=unescape_octal(fields[0]),
                    target=normalize_path(unescape_octal(fields[1])),
                    fs_type=fields[2],
                    options=tuple(fields[3].split(",")) if len(fields) > 3 else (),
                )
            )
        return out

    def find_target(self, target: Union[str, os.PathLike]) -> Optional[MountTableEntry]:
        """Top-most mount at exactly `target` (later entries stack over earlier ones)."""
        want = normalize_path(target)
        hit: Optional[MountTableEntry] = None
        for e in self.entries():
            if e.target == want:
                hit = e
        return hit

    def mounts_under(self, root: Union[str, os.PathLike]) -> List[MountTableEntry]:
        base = normalize_path(root)
        prefix = base.rstrip("/") + "/"
        return [e for e in self.entries() if e.target == base or e.target.startswith(prefix)]

    def count_at(self, target: Union[str, os.PathLike]) -> int:
        want = normalize_path(target)
        return sum(1 for e in self.entries() if e.target == want)

    # -----------------------
    # device resolution
    # -----------------------

    def tag_path(self, key: str, value: str) -> Path:
        return self.dev_disk / _TAG_DIRS[key] / value

    def resolve_device(self, spec: str) -> str:
        """
        Map a mount source to a comparable device path.

        UUID=/LABEL=/PARTUUID=/PARTLABEL= go through /dev/disk/by-*; /dev paths
        have symlinks resolved; pseudo sources (tmpfs, proc, bind dirs) are
        returned unchanged.
        """
        spec = (spec or "").strip()
        tag = split_tag(spec)
        if tag is not None:
            link = self.tag_path(*tag)
            if link.exists():
                return os.path.realpath(link)
            return spec
        if spec.startswith("/dev/"):
            return os.path.realpath(spec)
        return spec
