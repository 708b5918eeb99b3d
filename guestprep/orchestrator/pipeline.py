# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# guestprep/orchestrator/pipeline.py
from __future__ import annotations

import contextlib
import logging
from typing import Callable, Optional

from ..boot.grub import BootloaderReconfigurator
from ..boot.initramfs import BootImageRebuilder
from ..config.settings import PrepSettings
from ..core.exceptions import ExitCode, GuestPrepError, MountError
from ..core.lock import RunLock
from ..core.logger import Log
from ..core.logging_utils import log_step
from ..core.privilege import ensure_elevated
from ..core.utils import CommandRunner, U
from ..mounts.binds import CHROOT_BINDS, release_binds
from ..mounts.executor import MountExecutor
from ..mounts.fstab import parse_fstab
from ..mounts.mount_table import MountTable
from ..mounts.resolver import MountResolver
from .report import RunReport, print_summary, write_report


class PrepPipeline:
    """
    Runs one `cmd` against the target tree.

    Order for `prepare`: root mount (verified) -> every secondary mount ->
    ramdisk rebuild -> bootloader. Fatal errors propagate as GuestPrepError
    after the report has been written; partial secondary mounts only change
    the exit code when strict_mounts is set.
    """

    def __init__(
        self,
        logger: logging.Logger,
        settings: PrepSettings,
        *,
        runner: Optional[CommandRunner] = None,
        table: Optional[MountTable] = None,
        privilege_check: Callable[..., None] = ensure_elevated,
    ):
        self.logger = logger
        self.settings = settings
        self.runner = runner or CommandRunner(logger, dry_run=settings.dry_run, timeout=settings.command_timeout)
        self.table = table or MountTable(settings.mounts_file)
        self.resolver = MountResolver(logger, self.runner, self.table)
        self.privilege_check = privilege_check
        self.report = RunReport(cmd=settings.cmd, target_root=str(settings.target_root), dry_run=self.runner.dry_run)
        self.exit_code = ExitCode.OK

    # -----------------------
    # steps
    # -----------------------

    def mount_root(self) -> None:
        s = self.settings
        with log_step(self.logger, "Mount guest root", target=str(s.target_root)):
            source = self.resolver.resolve_root_source(root_device=s.root_device, root_uuid=s.root_uuid)
            self.report.root_source = source
            outcome = self.resolver.mount_root(source, s.target_root)
            self.report.root_outcome = outcome.value
            self.report.root_ids = self.resolver.partition_identifiers(source)

    def mount_secondary(self) -> None:
        s = self.settings
        with log_step(self.logger, "Mount secondary filesystems", fstab=str(s.fstab)):
            plan = parse_fstab(s.fstab, include_noauto=s.include_noauto)
            Log.trace(self.logger, "fstab plan: %d entries", len(plan))
            report = MountExecutor(self.logger, self.runner, self.resolver).apply(plan, s.target_root)
            self.report.mounts = report

        if not report.ok and s.strict_mounts:
            self.exit_code = ExitCode.PARTIAL_MOUNTS

    def rebuild_initramfs(self) -> None:
        s = self.settings
        rebuilder = BootImageRebuilder(
            self.logger, self.runner, self.resolver, s.target_root, initramfs_tool=s.initramfs_tool
        )
        kver = s.kernel_version or rebuilder.default_kernel_version(s.boot)
        with log_step(self.logger, "Rebuild ramdisk image", kernel=kver):
            self.report.rebuild = rebuilder.rebuild(kver, s.boot)

    def _reconfigurator(self) -> BootloaderReconfigurator:
        s = self.settings
        return BootloaderReconfigurator(
            self.logger,
            self.runner,
            self.resolver,
            s.target_root,
            s.bootline,
            grub_mkconfig=s.grub_mkconfig,
        )

    def reconfigure_bootloader(self) -> None:
        recon = self._reconfigurator()
        self.report.bootloader = recon.result
        with log_step(self.logger, "Reconfigure bootloader", marker=self.settings.bootline.marker):
            recon.run()

    def restore_bootloader(self) -> None:
        with log_step(self.logger, "Restore grub defaults"):
            self.report.restored_from = str(self._reconfigurator().restore_latest_backup())

    def release_binds(self) -> None:
        with log_step(self.logger, "Release chroot binds", target=str(self.settings.target_root)):
            leftovers = release_binds(self.logger, self.runner, self.resolver, self.settings.target_root, CHROOT_BINDS)
            self.report.released_leftovers = leftovers
            if leftovers:
                raise MountError(msg=f"Binds still mounted: {', '.join(leftovers)}", context={"leftovers": leftovers})

    # -----------------------
    # driver
    # -----------------------

    def _steps(self):
        s = self.settings
        cmd = s.cmd
        if cmd == "mount-root":
            return [self.mount_root]
        if cmd == "mount-all":
            return [self.mount_root, self.mount_secondary]
        if cmd == "rebuild-initramfs":
            return [self.rebuild_initramfs]
        if cmd == "reconfigure-bootloader":
            return [self.reconfigure_bootloader]
        if cmd == "release-binds":
            return [self.release_binds]
        if cmd == "restore-bootloader":
            return [self.restore_bootloader]

        steps = [self.mount_root, self.mount_secondary]
        if not s.skip_initramfs:
            steps.append(self.rebuild_initramfs)
        if not s.skip_bootloader:
            steps.append(self.reconfigure_bootloader)
        return steps

    def run(self) -> int:
        s = self.settings
        self.privilege_check(self.logger)

        Log.banner(self.logger, f"guestprep {s.cmd}")
        self.logger.debug("Settings: %s", U.json_dump(s.to_dict()))
        if self.runner.dry_run:
            self.logger.info("DRY-RUN: nothing in %s will be changed", s.target_root)

        lock = RunLock(self.logger, s.lock_file) if s.lock_file else contextlib.nullcontext()
        try:
            with lock:
                for step in self._steps():
                    step()
        except GuestPrepError as e:
            self.report.error = e.to_dict()
            self.report.exit_code = e.code
            raise
        else:
            self.report.exit_code = self.exit_code
            if self.exit_code == ExitCode.PARTIAL_MOUNTS:
                Log.warn(self.logger, "Secondary mounts incomplete (strict mode)")
            else:
                Log.ok(self.logger, f"{s.cmd} finished")
            return self.exit_code
        finally:
            self.report.finished = U.now_ts()
            if s.report:
                write_report(self.logger, self.report, s.report)
            print_summary(self.report)
