# SPDX-License-Identifier: LGPL-3.0-or-later
# guestprep/mounts/binds.py
from __future__ import annotations

import logging
from pathlib import Path
from types import TracebackType
from typing import List, Optional, Sequence, Tuple, Type, Union

from ..core.exceptions import MountError
from ..core.utils import CommandRunner, U
from .models import resolve_in_root
from .resolver import MountResolver

# (host path, path relative to the target root)
CHROOT_BINDS: Tuple[Tuple[str, str], ...] = (("/dev", "dev"), ("/proc", "proc"), ("/sys", "sys"))


def release_binds(
    logger: logging.Logger,
    runner: CommandRunner,
    resolver: MountResolver,
    target_root: Union[str, Path],
    binds: Sequence[Tuple[str, str]] = CHROOT_BINDS,
) -> List[str]:
    """
    Unmount the chroot binds under target_root, innermost-last-acquired first.

    Returns the targets that are still mounted afterwards (empty on success).
    Only binds that are actually mounted are touched.
    """
    root = Path(target_root)
    leftovers: List[str] = []
    for host, rel in reversed(list(binds)):
        try:
            dst = resolve_in_root(root, rel)
        except ValueError as e:
            logger.warning("⚠️  Skipping bind %s: %s", rel, e)
            continue
        if not resolver.is_mounted(host, dst):
            logger.debug("Bind %s not mounted; nothing to release", dst)
            continue

        cp = runner.run(["umount", str(dst)])
        if cp.returncode != 0:
            logger.warning("⚠️  umount %s failed (rc=%s); retrying lazily", dst, cp.returncode)
            runner.run(["umount", "-l", str(dst)])

        if not runner.dry_run and resolver.is_mounted(host, dst):
            logger.error("💥 Bind still mounted after release: %s", dst)
            leftovers.append(str(dst))
        else:
            logger.info("Released bind %s", dst)
    return leftovers


class ChrootBinds:
    """
    Scoped bind mounts of the host's /dev, /proc and /sys into the target.

    Only binds acquired by this scope are released on exit, on the failure
    path too; binds that were already in place are left for their owner.

        with ChrootBinds(logger, runner, resolver, target):
            runner.chroot(target, ["update-grub"])
    """

    def __init__(
        self,
        logger: logging.Logger,
        runner: CommandRunner,
        resolver: MountResolver,
        target_root: Union[str, Path],
        binds: Sequence[Tuple[str, str]] = CHROOT_BINDS,
    ):
        self.logger = logger
        self.runner = runner
        self.resolver = resolver
        self.target_root = Path(target_root)
        self.binds = tuple(binds)
        self.acquired: List[Tuple[str, str]] = []
        self.leftovers: List[str] = []

    def acquire(self) -> "ChrootBinds":
        for host, rel in self.binds:
            try:
                dst = resolve_in_root(self.target_root, rel)
            except ValueError as e:
                self.release()
                raise MountError(
                    msg=f"Bind target escapes {self.target_root}: {e}",
                    context={"source": host, "target": rel},
                ) from e
            if self.resolver.is_mounted(host, dst):
                self.logger.debug("Bind %s -> %s already in place", host, dst)
                continue

            if self.runner.dry_run:
                self.runner.run(["mount", "--bind", host, str(dst)])
                self.acquired.append((host, rel))
                continue

            try:
                U.ensure_dir(dst)
            except OSError as e:
                self.release()
                raise MountError(
                    msg=f"Cannot create bind target {dst}: {e.strerror or e}",
                    cause=e,
                    context={"source": host, "target": str(dst)},
                ) from e

            cp = self.runner.run(["mount", "--bind", host, str(dst)])
            if cp.returncode != 0 or not self.resolver.is_mounted(host, dst):
                self.release()
                raise MountError(
                    msg=f"Bind mount {host} -> {dst} failed (rc={cp.returncode}): {U.tail(cp.stderr or '', 400)}",
                    context={"source": host, "target": str(dst), "rc": cp.returncode},
                )

            self.acquired.append((host, rel))
            self.logger.debug("Bound %s -> %s", host, dst)

        return self

    def release(self) -> List[str]:
        if not self.acquired:
            return []
        self.leftovers = release_binds(self.logger, self.runner, self.resolver, self.target_root, self.acquired)
        self.acquired = []
        return self.leftovers

    def __enter__(self) -> "ChrootBinds":
        return self.acquire()

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.release()
