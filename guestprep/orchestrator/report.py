# SPDX-License-Identifier: LGPL-3.0-or-later
# guestprep/orchestrator/report.py
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table

from ..boot.grub import BootloaderResult
from ..boot.initramfs import RebuildResult
from ..core.file_ops import atomic_write
from ..core.utils import U
from ..mounts.models import MountOutcome, MountReport

_OUTCOME_STYLE = {
    MountOutcome.MOUNTED: "green",
    MountOutcome.ALREADY_MOUNTED: "cyan",
    MountOutcome.FAILED: "bold red",
}


@dataclass
class RunReport:
    cmd: str
    target_root: str
    started: str = field(default_factory=U.now_ts)
    finished: str = ""
    dry_run: bool = False
    root_source: str = ""
    root_outcome: str = ""
    root_ids: Dict[str, str] = field(default_factory=dict)
    mounts: Optional[MountReport] = None
    rebuild: Optional[RebuildResult] = None
    bootloader: Optional[BootloaderResult] = None
    released_leftovers: List[str] = field(default_factory=list)
    restored_from: str = ""
    exit_code: int = 0
    error: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cmd": self.cmd,
            "target_root": self.target_root,
            "started": self.started,
            "finished": self.finished,
            "dry_run": self.dry_run,
            "root": {"source": self.root_source, "outcome": self.root_outcome, "ids": self.root_ids},
            "mounts": self.mounts.to_dict() if self.mounts else None,
            "rebuild": self.rebuild.to_dict() if self.rebuild else None,
            "bootloader": self.bootloader.to_dict() if self.bootloader else None,
            "released_leftovers": self.released_leftovers,
            "restored_from": self.restored_from,
            "exit_code": self.exit_code,
            "error": self.error,
        }


def write_report(logger: logging.Logger, report: RunReport, path: Path) -> None:
    path = Path(path)
    with atomic_write(path) as tmp:
        tmp.write_text(json.dumps(report.to_dict(), indent=2, sort_keys=True, default=str) + "\n", encoding="utf-8")
    logger.info("Report written: %s", path)


def mount_table(report: MountReport) -> Table:
    table = Table(title=f"Mounts under {report.target_root}", expand=False)
    table.add_column("Source", style="white")
    table.add_column("Mount point", style="cyan")
    table.add_column("Type")
    table.add_column("Outcome")
    table.add_column("Detail", overflow="fold")
    for r in report.results:
        style = _OUTCOME_STYLE.get(r.outcome, "")
        table.add_row(
            r.entry.source,
            r.entry.target_relative_path,
            r.entry.fs_type,
            f"[{style}]{r.outcome.value}[/]" if style else r.outcome.value,
            r.detail,
        )
    return table


def print_summary(report: RunReport, *, console: Optional[Console] = None) -> None:
    """Human summary on stderr; nothing is printed when stderr is not a terminal unless forced."""
    con = console or Console(stderr=True)
    if console is None and not con.is_terminal and not os.environ.get("GUESTPREP_FORCE_SUMMARY"):
        return

    if report.root_source:
        con.print(f"[bold]Root[/] {report.root_source} -> {report.target_root} ([cyan]{report.root_outcome}[/])")
    if report.mounts is not None and report.mounts.results:
        con.print(mount_table(report.mounts))
    if report.rebuild is not None:
        con.print(f"[bold]Ramdisk[/] {report.rebuild.image} rebuilt with {report.rebuild.tool} (backup {report.rebuild.backup})")
    if report.bootloader is not None:
        b = report.bootloader
        con.print(f"[bold]Bootloader[/] state={b.state.value} injected={b.injected} backup={b.backup or '-'}")
    if report.error:
        con.print(f"[bold red]Error[/] {report.error.get('message', '')}")
