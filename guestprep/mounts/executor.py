# SPDX-License-Identifier: LGPL-3.0-or-later
# guestprep/mounts/executor.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Union

from ..core.logger import Log
from ..core.utils import CommandRunner, U
from .models import MountEntry, MountOutcome, MountPlan, MountReport, MountResult
from .resolver import MountResolver

# Options that mount(8) handles itself or that only matter to fstab consumers
_DROP_OPTIONS = {"defaults", "auto", "noauto", "nofail", "bind", "rbind", "_netdev", "users", "user", "owner"}


def mount_command(entry: MountEntry, full_target: Path) -> List[str]:
    opts = [o for o in entry.options if o not in _DROP_OPTIONS and not o.startswith("x-") and not o.startswith("comment=")]

    if entry.is_bind:
        flag = "--rbind" if "rbind" in entry.options else "--bind"
        cmd = ["mount", flag]
        if opts:
            cmd += ["-o", ",".join(opts)]
        return cmd + [entry.source, str(full_target)]

    cmd = ["mount"]
    if entry.fs_type and entry.fs_type not in ("auto", "none"):
        cmd += ["-t", entry.fs_type]
    if opts:
        cmd += ["-o", ",".join(opts)]
    return cmd + [entry.source, str(full_target)]


class MountExecutor:
    """
    Applies a MountPlan under a target root, one entry at a time.

    Continue-on-error: every entry produces exactly one MountResult and a
    failure never stops the loop. Whether a partial result is acceptable is
    the caller's decision.
    """

    def __init__(self, logger: logging.Logger, runner: CommandRunner, resolver: MountResolver):
        self.logger = logger
        self.runner = runner
        self.resolver = resolver

    def apply(self, plan: MountPlan, target_root: Union[str, Path]) -> MountReport:
        root = Path(target_root)
        report = MountReport(target_root=str(root))
        for entry in plan:
            result = self.apply_one(entry, root)
            report.results.append(result)

        n_fail = len(report.failed)
        if n_fail:
            self.logger.warning(
                "⚠️  Secondary mounts: %d/%d failed: %s",
                n_fail,
                len(report.results),
                ", ".join(r.entry.target_relative_path for r in report.failed),
            )
        else:
            self.logger.info(
                "Secondary mounts: %d mounted, %d already mounted",
                report.count(MountOutcome.MOUNTED),
                report.count(MountOutcome.ALREADY_MOUNTED),
            )
        return report

    def apply_one(self, entry: MountEntry, target_root: Path) -> MountResult:
        log = Log.bind(self.logger, mountpoint=entry.target_relative_path)
        try:
            full_target = entry.full_target(target_root)
        except ValueError as e:
            detail = f"mount point escapes target: {e}"
            log.warning("⚠️  %s: %s", entry.source, detail)
            return MountResult(entry, MountOutcome.FAILED, detail)

        try:
            if self.resolver.is_mounted(entry.source, full_target):
                log.info("%s already mounted at %s", entry.source, full_target)
                return MountResult(entry, MountOutcome.ALREADY_MOUNTED, "")

            cmd = mount_command(entry, full_target)

            if self.runner.dry_run:
                self.runner.run(cmd)
                return MountResult(entry, MountOutcome.MOUNTED, "dry-run")

            U.ensure_dir(full_target)
            cp = self.runner.run(cmd)
            if cp.returncode != 0:
                detail = f"rc={cp.returncode}: {U.tail(cp.stderr or cp.stdout or '', 400)}"
                log.warning("⚠️  mount %s at %s failed: %s", entry.source, full_target, detail)
                return MountResult(entry, MountOutcome.FAILED, detail)

            if not self.resolver.is_mounted(entry.source, full_target):
                detail = "mount exited 0 but the mount table does not show it"
                log.warning("⚠️  %s at %s: %s", entry.source, full_target, detail)
                return MountResult(entry, MountOutcome.FAILED, detail)

        except OSError as e:
            detail = f"{type(e).__name__}: {e.strerror or e}"
            log.warning("⚠️  %s at %s: %s", entry.source, full_target, detail)
            return MountResult(entry, MountOutcome.FAILED, detail)

        log.info("Mounted %s at %s (%s)", entry.source, full_target, entry.fs_type)
        return MountResult(entry, MountOutcome.MOUNTED, "")
