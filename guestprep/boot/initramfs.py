# SPDX-License-Identifier: LGPL-3.0-or-later
# guestprep/boot/initramfs.py
from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from ..core.exceptions import NotFoundError, RebuildError
from ..core.file_ops import verified_copy
from ..core.utils import CommandRunner, U
from ..mounts.binds import ChrootBinds
from ..mounts.resolver import MountResolver

# Per-distro image names, tried in this order
IMAGE_PATTERNS: Tuple[str, ...] = (
    "initrd.img-{kver}",  # Debian/Ubuntu
    "initramfs-{kver}.img",  # RHEL/Fedora/Arch
    "initrd-{kver}",  # SUSE
)

# Directories searched inside the guest for a tool
GUEST_BIN_DIRS: Tuple[str, ...] = ("usr/sbin", "usr/bin", "sbin", "bin", "usr/local/sbin")

TOOL_NAMES: Tuple[str, ...] = ("update-initramfs", "dracut", "mkinitrd", "mkinitcpio")


def initramfs_command(tool: str, kver: str, image: Optional[str] = None) -> List[str]:
    """
    The rebuild command as run inside the guest. `image` is the ramdisk path
    as the guest sees it; mkinitcpio and mkinitrd write to it explicitly.
    """
    out = image or f"/boot/initramfs-{kver}.img"
    if tool == "update-initramfs":
        return ["update-initramfs", "-u", "-k", kver]
    if tool == "dracut":
        return ["dracut", "-f", "--kver", kver]
    if tool == "mkinitcpio":
        return ["mkinitcpio", "-k", kver, "-g", out]
    if tool == "mkinitrd":
        return ["mkinitrd", "-f", out, kver]
    raise RebuildError(msg=f"Unknown initramfs tool: {tool}", context={"tool": tool, "known": list(TOOL_NAMES)})


def guest_has_tool(target_root: Union[str, Path], name: str) -> bool:
    root = Path(target_root)
    for d in GUEST_BIN_DIRS:
        p = root / d / name
        if p.is_file() and os.access(p, os.X_OK):
            return True
    return False


def _version_key(v: str) -> Tuple[Any, ...]:
    out: List[Any] = []
    for part in v.replace("-", ".").replace("_", ".").split("."):
        out.append((0, int(part), "") if part.isdigit() else (1, 0, part))
    return tuple(out)


def guest_kernel_versions(target_root: Union[str, Path]) -> List[str]:
    """Kernel versions installed in the guest (from lib/modules), newest first."""
    mods = Path(target_root) / "lib" / "modules"
    if not mods.is_dir():
        return []
    names = [p.name for p in mods.iterdir() if p.is_dir()]
    return sorted(names, key=_version_key, reverse=True)


def find_boot_image(boot_dir: Union[str, Path], kernel_version: str) -> Optional[Path]:
    base = Path(boot_dir)
    for pat in IMAGE_PATTERNS:
        cand = base / pat.format(kver=kernel_version)
        if cand.is_file():
            return cand
    return None


@dataclass
class RebuildResult:
    kernel_version: str
    image: str
    backup: str
    tool: str
    command: List[str]
    size_before: int = 0
    size_after: int = 0
    dry_run: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class BootImageRebuilder:
    """
    Back up the guest's ramdisk image, then regenerate it inside a chroot.

    The original image is never restored automatically: after a failed
    rebuild both the image the tool left behind and `<image>.bak` remain.
    """

    def __init__(
        self,
        logger: logging.Logger,
        runner: CommandRunner,
        resolver: MountResolver,
        target_root: Union[str, Path],
        *,
        initramfs_tool: Optional[str] = None,
        uname_release: Callable[[], str] = lambda: os.uname().release,
    ):
        self.logger = logger
        self.runner = runner
        self.resolver = resolver
        self.target_root = Path(target_root)
        self.initramfs_tool = initramfs_tool
        self._uname_release = uname_release

    def default_kernel_version(self, boot_dir: Optional[Union[str, Path]] = None) -> str:
        """
        The running kernel, unless the guest has no image for it; then the
        newest kernel under <target>/lib/modules.
        """
        boot = Path(boot_dir) if boot_dir else self.target_root / "boot"
        running = self._uname_release()
        if find_boot_image(boot, running) is not None:
            return running

        installed = guest_kernel_versions(self.target_root)
        if installed:
            self.logger.info(
                "Running kernel %s has no ramdisk in %s; using newest guest kernel %s", running, boot, installed[0]
            )
            return installed[0]
        return running

    def select_tool(self, candidates: Sequence[str] = TOOL_NAMES) -> str:
        if self.initramfs_tool:
            return self.initramfs_tool
        for name in candidates:
            if guest_has_tool(self.target_root, name):
                return name
        if self.runner.dry_run:
            return candidates[0]
        raise RebuildError(
            msg=f"No initramfs tool found in guest {self.target_root}",
            context={"searched": list(candidates), "dirs": list(GUEST_BIN_DIRS)},
        )

    def guest_path(self, host_path: Path) -> str:
        """host_path as seen from inside the chroot; /boot/<name> if it lies outside the target."""
        root = os.path.realpath(self.target_root)
        real = os.path.realpath(host_path)
        if os.path.commonpath([root, real]) != root:
            self.logger.warning(
                "⚠️  %s is outside %s; the guest tool will write /boot/%s", host_path, self.target_root, host_path.name
            )
            return f"/boot/{host_path.name}"
        return "/" + os.path.relpath(real, root)

    def rebuild(self, kernel_version: str, boot_dir: Union[str, Path]) -> RebuildResult:
        boot = Path(boot_dir)
        log = self.logger

        image = find_boot_image(boot, kernel_version)
        if image is None:
            raise NotFoundError(
                msg=f"No ramdisk image for kernel {kernel_version} in {boot}",
                context={
                    "kernel_version": kernel_version,
                    "boot_dir": str(boot),
                    "tried": [p.format(kver=kernel_version) for p in IMAGE_PATTERNS],
                },
            )

        backup = image.with_name(image.name + ".bak")
        size_before = image.stat().st_size

        if self.runner.dry_run:
            log.info("DRY-RUN: would back up %s -> %s", image, backup)
        else:
            verified_copy(log, image, backup)

        tool = self.select_tool()
        cmd = initramfs_command(tool, kernel_version, self.guest_path(image))
        result = RebuildResult(
            kernel_version=kernel_version,
            image=str(image),
            backup=str(backup),
            tool=tool,
            command=cmd,
            size_before=size_before,
            dry_run=self.runner.dry_run,
        )

        with ChrootBinds(log, self.runner, self.resolver, self.target_root):
            cp = self.runner.chroot(self.target_root, cmd)

        if cp.returncode != 0:
            raise RebuildError(
                msg=f"{tool} failed for {kernel_version} (rc={cp.returncode}): {U.tail(cp.stderr or cp.stdout or '', 400)}",
                context={"image": str(image), "backup": str(backup), "command": U.pretty_cmd(cmd), "rc": cp.returncode},
            )

        if self.runner.dry_run:
            result.size_after = size_before
            return result

        try:
            size_after = image.stat().st_size
        except FileNotFoundError as e:
            raise RebuildError(
                msg=f"Ramdisk image missing after rebuild: {image}",
                cause=e,
                context={"image": str(image), "backup": str(backup)},
            ) from e
        if size_after == 0:
            raise RebuildError(msg=f"Ramdisk image is empty after rebuild: {image}", context={"image": str(image)})

        result.size_after = size_after
        log.info("Rebuilt %s with %s (%d -> %d bytes)", image, tool, size_before, size_after)
        return result
