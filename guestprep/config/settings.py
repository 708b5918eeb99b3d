# SPDX-License-Identifier: LGPL-3.0-or-later
# guestprep/config/settings.py
from __future__ import annotations

import argparse
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..boot.bootline import BootlineConfig
from ..core.exceptions import ConfigError
from ..mounts.mount_table import PROC_MOUNTS

DEFAULT_TARGET_ROOT = Path("/mnt/guestprep")

COMMANDS: Tuple[str, ...] = (
    "prepare",
    "mount-root",
    "mount-all",
    "rebuild-initramfs",
    "reconfigure-bootloader",
    "release-binds",
    "restore-bootloader",
)


def _as_list(v: Any) -> List[str]:
    if v is None:
        return []
    if isinstance(v, str):
        return shlex.split(v)
    return [str(x) for x in v]


@dataclass(frozen=True)
class PrepSettings:
    """Everything one run needs, resolved once from CLI + config and passed down explicitly."""
    cmd: str = "prepare"
    target_root: Path = DEFAULT_TARGET_ROOT
    mounts_file: Path = PROC_MOUNTS
    fstab_path: Optional[Path] = None
    boot_dir: Optional[Path] = None
    root_device: Optional[str] = None
    root_uuid: Optional[str] = None
    kernel_version: Optional[str] = None
    bootline: BootlineConfig = field(default_factory=BootlineConfig)
    initramfs_tool: Optional[str] = None
    grub_mkconfig: Optional[Tuple[str, ...]] = None
    include_noauto: bool = False
    strict_mounts: bool = False
    skip_initramfs: bool = False
    skip_bootloader: bool = False
    dry_run: bool = False
    lock_file: Optional[Path] = None
    report: Optional[Path] = None
    command_timeout: Optional[int] = None

    @property
    def fstab(self) -> Path:
        return self.fstab_path or self.target_root / "etc" / "fstab"

    @property
    def boot(self) -> Path:
        return self.boot_dir or self.target_root / "boot"

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "PrepSettings":
        g = lambda name, default=None: getattr(args, name, default)  # noqa: E731

        cmd = (g("cmd") or "prepare").strip().lower()
        if cmd not in COMMANDS:
            raise ConfigError(msg=f"Unknown cmd: {cmd}", context={"cmd": cmd, "valid": list(COMMANDS)})

        target = Path(g("target_root") or DEFAULT_TARGET_ROOT)
        if not target.is_absolute():
            raise ConfigError(msg=f"target_root must be absolute: {target}", context={"target_root": str(target)})

        strip = g("strip_params")
        bootline = BootlineConfig(
            console_device=str(g("console_device") or "ttyS0"),
            baud_rate=_as_int(g("baud_rate"), 115200, "baud_rate"),
            early_console_device=g("early_console_device"),
            boot_delay_seconds=_as_int(g("boot_delay"), 300, "boot_delay"),
            strip_params=tuple(_as_list(strip)) if strip is not None else ("rhgb", "quiet"),
            cmdline_key=str(g("cmdline_key") or "GRUB_CMDLINE_LINUX"),
        )

        mkconfig = _as_list(g("grub_mkconfig"))
        opt_path = lambda v: Path(v) if v else None  # noqa: E731

        return cls(
            cmd=cmd,
            target_root=target,
            mounts_file=Path(g("mounts_file") or PROC_MOUNTS),
            fstab_path=opt_path(g("fstab")),
            boot_dir=opt_path(g("boot_dir")),
            root_device=g("root_device"),
            root_uuid=g("root_uuid"),
            kernel_version=g("kernel_version"),
            bootline=bootline,
            initramfs_tool=g("initramfs_tool"),
            grub_mkconfig=tuple(mkconfig) if mkconfig else None,
            include_noauto=bool(g("include_noauto", False)),
            strict_mounts=bool(g("strict_mounts", False)),
            skip_initramfs=bool(g("skip_initramfs", False)),
            skip_bootloader=bool(g("skip_bootloader", False)),
            dry_run=bool(g("dry_run", False)),
            lock_file=opt_path(g("lock_file")),
            report=opt_path(g("report")),
            command_timeout=_as_int(g("command_timeout"), None, "command_timeout"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cmd": self.cmd,
            "target_root": str(self.target_root),
            "mounts_file": str(self.mounts_file),
            "fstab": str(self.fstab),
            "boot_dir": str(self.boot),
            "root_device": self.root_device,
            "root_uuid": self.root_uuid,
            "kernel_version": self.kernel_version,
            "bootline": self.bootline.to_dict(),
            "initramfs_tool": self.initramfs_tool,
            "grub_mkconfig": list(self.grub_mkconfig) if self.grub_mkconfig else None,
            "include_noauto": self.include_noauto,
            "strict_mounts": self.strict_mounts,
            "skip_initramfs": self.skip_initramfs,
            "skip_bootloader": self.skip_bootloader,
            "dry_run": self.dry_run,
            "lock_file": str(self.lock_file) if self.lock_file else None,
            "report": str(self.report) if self.report else None,
        }


def _as_int(v: Any, default: Optional[int], name: str) -> Optional[int]:
    if v is None or v == "":
        return default
    try:
        n = int(v)
    except (TypeError, ValueError) as e:
        raise ConfigError(msg=f"{name} must be an integer, got {v!r}", cause=e, context={name: v}) from e
    if n < 0:
        raise ConfigError(msg=f"{name} must not be negative, got {n}", context={name: n})
    return n
