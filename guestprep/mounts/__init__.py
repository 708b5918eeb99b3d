# SPDX-License-Identifier: LGPL-3.0-or-later
# guestprep/mounts/__init__.py
from .binds import CHROOT_BINDS, ChrootBinds, release_binds
from .executor import MountExecutor
from .fstab import parse_fstab
from .models import MountEntry, MountOutcome, MountPlan, MountReport, MountResult
from .mount_table import MountTable
from .resolver import MountResolver

__all__ = [
    "CHROOT_BINDS",
    "ChrootBinds",
    "release_binds",
    "MountExecutor",
    "parse_fstab",
    "MountEntry",
    "MountOutcome",
    "MountPlan",
    "MountReport",
    "MountResult",
    "MountTable",
    "MountResolver",
]
