# SPDX-License-Identifier: LGPL-3.0-or-later
# guestprep/boot/grub.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from ..core.exceptions import FileIOError, GenerationError, NotFoundError
from ..core.file_ops import atomic_write, latest_backup, restore_from_backup, timestamped_backup_path, verified_copy
from ..core.utils import CommandRunner, U
from ..mounts.binds import ChrootBinds
from ..mounts.resolver import MountResolver
from .bootline import BootlineConfig, count_marker, has_marker, inject_cmdline
from .initramfs import guest_has_tool

GRUB_DEFAULTS = "etc/default/grub"

# Generated outputs checked after regeneration, relative to the target root
GRUB_CFG_CANDIDATES = ("boot/grub2/grub.cfg", "boot/grub/grub.cfg", "boot/efi/EFI/grub.cfg")
GRUBENV_CANDIDATES = ("boot/grub2/grubenv", "boot/grub/grubenv")
BLS_DIRS = ("boot/loader/entries", "boot/efi/loader/entries")

GENERATORS: Sequence[List[str]] = (
    ["update-grub"],
    ["grub2-mkconfig", "-o", "/boot/grub2/grub.cfg"],
    ["grub-mkconfig", "-o", "/boot/grub/grub.cfg"],
)


class BootloaderState(str, Enum):
    NOT_CONFIGURED = "not_configured"
    BACKED_UP = "backed_up"
    LINE_INJECTED = "line_injected"
    CHROOT_BOUND = "chroot_bound"
    REGENERATED = "regenerated"


@dataclass
class BootloaderResult:
    state: BootloaderState = BootloaderState.NOT_CONFIGURED
    defaults_file: str = ""
    backup: str = ""
    injected: bool = False
    generator: List[str] = field(default_factory=list)
    verified_in: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "defaults_file": self.defaults_file,
            "backup": self.backup,
            "injected": self.injected,
            "generator": U.pretty_cmd(self.generator) if self.generator else "",
            "verified_in": self.verified_in,
        }


class BootloaderReconfigurator:
    """
    Serial-console boot line for the guest's grub, then a regenerated grub.cfg.

      NOT_CONFIGURED -> BACKED_UP -> LINE_INJECTED -> CHROOT_BOUND -> REGENERATED

    Anything short of REGENERATED raises; the state reached is kept on
    `self.result` for the run report.
    """

    def __init__(
        self,
        logger: logging.Logger,
        runner: CommandRunner,
        resolver: MountResolver,
        target_root: Union[str, Path],
        bootline: BootlineConfig,
        *,
        grub_mkconfig: Optional[Sequence[str]] = None,
    ):
        self.logger = logger
        self.runner = runner
        self.resolver = resolver
        self.target_root = Path(target_root)
        self.bootline = bootline
        self.grub_mkconfig = list(grub_mkconfig) if grub_mkconfig else None
        self.defaults_path = self.target_root / GRUB_DEFAULTS
        self.result = BootloaderResult(defaults_file=str(self.defaults_path))

    def _advance(self, state: BootloaderState) -> None:
        self.logger.debug("Bootloader: %s -> %s", self.result.state.value, state.value)
        self.result.state = state

    # -----------------------
    # steps
    # -----------------------

    def backup(self) -> Path:
        src = self.defaults_path
        if not src.is_file():
            raise NotFoundError(msg=f"grub defaults not found: {src}", context={"path": str(src)})

        dst = timestamped_backup_path(src)
        if self.runner.dry_run:
            self.logger.info("DRY-RUN: would back up %s -> %s", src, dst)
        else:
            verified_copy(self.logger, src, dst)
        self.result.backup = str(dst)
        self._advance(BootloaderState.BACKED_UP)
        return dst

    def inject(self) -> bool:
        """Returns True if the file was rewritten, False if the marker was already there."""
        path = self.defaults_path
        marker = self.bootline.marker
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise FileIOError(msg=f"Cannot read {path}: {e.strerror or e}", cause=e, context={"path": str(path)}) from e

        if has_marker(text, marker):
            self.logger.info("Boot line already carries %s; %s left unchanged", marker, path)
            self._advance(BootloaderState.LINE_INJECTED)
            return False

        new_text = inject_cmdline(text, self.bootline)
        if self.runner.dry_run:
            self.logger.info("DRY-RUN: would add %s to %s", " ".join(self.bootline.fragments()), path)
            self._advance(BootloaderState.LINE_INJECTED)
            return True

        try:
            with atomic_write(path) as tmp:
                tmp.write_text(new_text, encoding="utf-8")
            reread = path.read_text(encoding="utf-8")
        except OSError as e:
            raise FileIOError(msg=f"Cannot rewrite {path}: {e.strerror or e}", cause=e, context={"path": str(path)}) from e

        n = count_marker(reread, marker)
        if n != 1:
            raise FileIOError(
                msg=f"{path}: expected {marker} exactly once after rewrite, found {n}",
                context={"path": str(path), "marker": marker, "count": n, "backup": self.result.backup},
            )

        self.result.injected = True
        self.logger.info("Boot line updated in %s: %s", path, " ".join(self.bootline.fragments()))
        self._advance(BootloaderState.LINE_INJECTED)
        return True

    def select_generator(self) -> List[str]:
        if self.grub_mkconfig:
            return list(self.grub_mkconfig)
        for cmd in GENERATORS:
            if guest_has_tool(self.target_root, cmd[0]):
                return list(cmd)
        if self.runner.dry_run:
            return list(GENERATORS[0])
        raise GenerationError(
            msg=f"No grub config generator found in guest {self.target_root}",
            context={"searched": [c[0] for c in GENERATORS]},
        )

    def regenerate(self) -> None:
        cmd = self.select_generator()
        self.result.generator = cmd

        with ChrootBinds(self.logger, self.runner, self.resolver, self.target_root):
            self._advance(BootloaderState.CHROOT_BOUND)
            cp = self.runner.chroot(self.target_root, cmd)

        if cp.returncode != 0:
            raise GenerationError(
                msg=f"{cmd[0]} failed (rc={cp.returncode}): {U.tail(cp.stderr or cp.stdout or '', 400)}",
                context={"command": U.pretty_cmd(cmd), "rc": cp.returncode, "backup": self.result.backup},
            )

        if not self.runner.dry_run:
            found = self.find_marker_in_generated()
            if found is None:
                raise GenerationError(
                    msg=f"{cmd[0]} succeeded but {self.bootline.marker} is not in any generated boot config",
                    context={"marker": self.bootline.marker, "checked": self._generated_files()},
                )
            self.result.verified_in = str(found)

        self._advance(BootloaderState.REGENERATED)
        self.logger.info("Boot config regenerated with %s", U.pretty_cmd(cmd))

    def _generated_files(self) -> List[str]:
        files = [self.target_root / p for p in GRUB_CFG_CANDIDATES + GRUBENV_CANDIDATES]
        for d in BLS_DIRS:
            bls = self.target_root / d
            if bls.is_dir():
                files.extend(sorted(bls.glob("*.conf")))
        return [str(p) for p in files if p.is_file()]

    def find_marker_in_generated(self) -> Optional[Path]:
        for name in self._generated_files():
            p = Path(name)
            try:
                text = p.read_text(encoding="utf-8", errors="replace")
            except OSError as e:
                self.logger.debug("Cannot read %s: %s", p, e)
                continue
            if has_marker(text, self.bootline.marker):
                return p
        return None

    # -----------------------
    # entry points
    # -----------------------

    def run(self) -> BootloaderResult:
        self.backup()
        self.inject()
        self.regenerate()
        return self.result

    def restore_latest_backup(self) -> Path:
        """Put the most recent grub.bak.guestprep.* back over etc/default/grub."""
        bak = latest_backup(self.defaults_path)
        if bak is None:
            raise NotFoundError(
                msg=f"No backup of {self.defaults_path} to restore",
                context={"path": str(self.defaults_path)},
            )
        if self.runner.dry_run:
            self.logger.info("DRY-RUN: would restore %s from %s", self.defaults_path, bak)
            return bak
        restore_from_backup(self.logger, bak, self.defaults_path)
        return bak
