# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# guestprep/cli/args/groups.py
from __future__ import annotations

import argparse

from ...config.settings import COMMANDS, DEFAULT_TARGET_ROOT
from ...mounts.mount_table import PROC_MOUNTS


def _add_global_config_logging(p: argparse.ArgumentParser) -> None:
    # ------------------------------------------------------------------
    # Global config/logging (two-phase parse relies on these)
    # ------------------------------------------------------------------
    from ... import __version__

    g = p.add_argument_group("Config and logging")
    g.add_argument(
        "--config",
        action="append",
        default=[],
        help="YAML/JSON config file (repeatable; later overrides earlier).",
    )
    g.add_argument("--dump-config", action="store_true", help="Print merged config and exit.")
    g.add_argument("--dump-args", action="store_true", help="Print final parsed args and exit.")
    g.add_argument("--version", action="version", version=__version__)
    g.add_argument("-v", "--verbose", action="count", default=0, help="Verbosity: -v, -vv, -vvv")
    g.add_argument("-q", "--quiet", action="count", default=0, help="Only warnings (-q) or errors (-qq).")
    g.add_argument("--log-file", dest="log_file", default=None, help="Append-only log file (full timestamps).")
    g.add_argument("--json-logs", dest="json_logs", action="store_true", help="Emit logs as NDJSON.")
    g.add_argument("--report", dest="report", default=None, help="Write a JSON run report to this path.")


def _add_project_control(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--cmd",
        dest="cmd",
        default="prepare",
        choices=list(COMMANDS),
        help="Operation (also YAML `cmd:`).",
    )


def _add_global_operation_flags(p: argparse.ArgumentParser) -> None:
    g = p.add_argument_group("Operation")
    g.add_argument("--dry-run", dest="dry_run", action="store_true", help="Log what would run; change nothing.")
    g.add_argument("--lock-file", dest="lock_file", default=None, help="Hold an exclusive flock on this file.")
    g.add_argument(
        "--command-timeout",
        dest="command_timeout",
        type=int,
        default=None,
        help="Seconds before a read-only query (blkid and the like) is killed; mutating commands never time out (default: none).",
    )


def _add_target_tree(p: argparse.ArgumentParser) -> None:
    g = p.add_argument_group("Target tree")
    g.add_argument(
        "--target-root",
        dest="target_root",
        default=str(DEFAULT_TARGET_ROOT),
        help="Where the guest root filesystem is mounted.",
    )
    g.add_argument("--root-device", dest="root_device", default=None, help="Guest root block device.")
    g.add_argument("--root-uuid", dest="root_uuid", default=None, help="Guest root filesystem UUID.")
    g.add_argument("--fstab", dest="fstab", default=None, help="fstab to plan from (default: <target>/etc/fstab).")
    g.add_argument("--mounts-file", dest="mounts_file", default=str(PROC_MOUNTS), help="Live mount table.")
    g.add_argument("--include-noauto", dest="include_noauto", action="store_true", help="Also mount noauto entries.")
    g.add_argument(
        "--strict-mounts",
        dest="strict_mounts",
        action="store_true",
        help="Exit 3 when any secondary mount failed.",
    )


def _add_ramdisk_knobs(p: argparse.ArgumentParser) -> None:
    g = p.add_argument_group("Ramdisk")
    g.add_argument("--kernel-version", dest="kernel_version", default=None, help="Kernel whose ramdisk to rebuild.")
    g.add_argument("--boot-dir", dest="boot_dir", default=None, help="Guest boot directory (default: <target>/boot).")
    g.add_argument(
        "--initramfs-tool",
        dest="initramfs_tool",
        default=None,
        choices=["update-initramfs", "dracut", "mkinitrd", "mkinitcpio"],
        help="Use this tool instead of probing the guest.",
    )
    g.add_argument("--skip-initramfs", dest="skip_initramfs", action="store_true", help="prepare: skip the rebuild.")


def _add_bootline_knobs(p: argparse.ArgumentParser) -> None:
    g = p.add_argument_group("Boot line")
    g.add_argument("--console-device", dest="console_device", default="ttyS0")
    g.add_argument("--baud-rate", dest="baud_rate", type=int, default=115200)
    g.add_argument("--early-console-device", dest="early_console_device", default=None, help="Default: console device.")
    g.add_argument("--boot-delay", dest="boot_delay", type=int, default=300, help="rootdelay= in seconds (0 = omit).")
    g.add_argument(
        "--strip-param",
        dest="strip_params",
        action="append",
        default=None,
        help="Kernel parameter to remove (repeatable; default: rhgb quiet).",
    )
    g.add_argument("--cmdline-key", dest="cmdline_key", default="GRUB_CMDLINE_LINUX")
    g.add_argument(
        "--grub-mkconfig",
        dest="grub_mkconfig",
        default=None,
        help="Generator command to run in the chroot instead of probing the guest.",
    )
    g.add_argument("--skip-bootloader", dest="skip_bootloader", action="store_true", help="prepare: skip grub.")
