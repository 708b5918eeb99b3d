# SPDX-License-Identifier: LGPL-3.0-or-later
# guestprep/mounts/resolver.py
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, Optional, Union

from ..core.exceptions import MountError, ResolutionError
from ..core.utils import CommandRunner, U
from .models import MountOutcome
from .mount_table import MountTable

_BLKID_KEYS = ("UUID", "PARTUUID", "LABEL", "PARTLABEL", "TYPE")

PathLike = Union[str, os.PathLike]


class MountResolver:
    """
    Finds the guest root filesystem and mounts it at the target tree.

    All "is it mounted?" answers come from re-reading the mount table, never
    from a mount command's exit status.
    """

    def __init__(self, logger: logging.Logger, runner: CommandRunner, table: Optional[MountTable] = None):
        self.logger = logger
        self.runner = runner
        self.table = table or MountTable()

    # -----------------------
    # resolution
    # -----------------------

    def resolve_root_source(self, *, root_device: Optional[str] = None, root_uuid: Optional[str] = None) -> str:
        """
        Device (or source string) that holds the guest root filesystem.

        Order: explicit device, explicit filesystem UUID, then whatever the
        live mount table has mounted at '/'.
        """
        if root_device:
            if not Path(root_device).exists():
                raise ResolutionError(msg=f"Root device does not exist: {root_device}", context={"device": root_device})
            self.logger.debug("Root source from configuration: %s", root_device)
            return root_device

        if root_uuid:
            return self._resolve_uuid(root_uuid)

        try:
            hit = self.table.find_target("/")
        except OSError as e:
            raise ResolutionError(
                msg=f"Cannot read mount table {self.table.path}: {e.strerror or e}",
                cause=e,
                context={"mount_table": str(self.table.path)},
            ) from e

        if hit is None or not hit.source:
            raise ResolutionError(
                msg="No filesystem is mounted at / in the mount table",
                context={"mount_table": str(self.table.path)},
            )
        self.logger.debug("Root source from mount table: %s (%s)", hit.source, hit.fs_type)
        return hit.source

    def _resolve_uuid(self, uuid: str) -> str:
        link = self.table.tag_path("UUID", uuid)
        if link.exists():
            dev = os.path.realpath(link)
            self.logger.debug("Root UUID %s -> %s (via %s)", uuid, dev, link)
            return dev

        cp = self.runner.run(["blkid", "-U", uuid], mutating=False)
        dev = (cp.stdout or "").strip()
        if cp.returncode == 0 and dev:
            self.logger.debug("Root UUID %s -> %s (via blkid)", uuid, dev)
            return dev

        raise ResolutionError(
            msg=f"No block device carries filesystem UUID {uuid}",
            context={"uuid": uuid, "by_uuid": str(link), "blkid_rc": cp.returncode},
        )

    def partition_identifiers(self, device: str) -> Dict[str, str]:
        """Stable identifiers (UUID, PARTUUID, LABEL, ...) for a block device, via blkid."""
        if not device.startswith("/dev/"):
            return {}
        cp = self.runner.run(["blkid", "-o", "export", device], mutating=False)
        if cp.returncode != 0:
            return {}
        ids: Dict[str, str] = {}
        for line in (cp.stdout or "").splitlines():
            key, sep, value = line.partition("=")
            if sep and key in _BLKID_KEYS and value:
                ids[key] = value
        return ids

    # -----------------------
    # mount state
    # -----------------------

    def is_mounted(self, source: str, target: PathLike) -> bool:
        """True only if `source` is mounted exactly at `target`, not merely somewhere."""
        want = os.path.realpath(target)
        hit = self.table.find_target(want)
        if hit is None:
            return False

        src = str(source)
        if hit.source == src:
            return True

        # bind mounts show the backing filesystem, not the directory that was bound
        if os.path.isdir(src):
            try:
                return os.stat(src).st_dev == os.stat(want).st_dev
            except OSError:
                return False

        return self.table.resolve_device(src) == self.table.resolve_device(hit.source)

    def mount_root(self, source: str, target: PathLike) -> MountOutcome:
        """
        Mount the guest root at `target`, idempotently.

        Already mounted -> no mount call at all. Otherwise mount, then re-read
        the mount table; a mount that exits 0 but is not visible is an error.
        """
        target = Path(target)
        log = self.logger

        if self.is_mounted(source, target):
            log.info("Root %s already mounted at %s", source, target)
            return MountOutcome.ALREADY_MOUNTED

        if self.runner.dry_run:
            self.runner.run(["mount", source, str(target)])
            return MountOutcome.MOUNTED

        try:
            U.ensure_dir(target)
        except OSError as e:
            raise MountError(
                msg=f"Cannot create mount point {target}: {e.strerror or e}",
                cause=e,
                context={"target": str(target)},
            ) from e

        cp = self.runner.run(["mount", source, str(target)])
        if cp.returncode != 0:
            raise MountError(
                msg=f"mount {source} {target} failed (rc={cp.returncode}): {U.tail(cp.stderr or '', 400)}",
                context={"source": source, "target": str(target), "rc": cp.returncode},
            )

        if not self.is_mounted(source, target):
            raise MountError(
                msg=f"mount {source} {target} reported success but the mount table does not show it",
                context={"source": source, "target": str(target), "mount_table": str(self.table.path)},
            )

        ids = self.partition_identifiers(source)
        log.info("Mounted root %s at %s", source, target, extra={"ctx": ids} if ids else None)
        return MountOutcome.MOUNTED
