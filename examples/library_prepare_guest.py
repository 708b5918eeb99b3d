#!/usr/bin/env python3
# SPDX-License-Identifier: LGPL-3.0-or-later
"""
Example: prepare a guest tree using the guestprep library.

This example demonstrates:
- Mounting the guest root (by filesystem UUID) and its fstab filesystems
- Rebuilding the ramdisk for the guest's newest kernel
- Adding a serial console to the grub boot line
- Reading the per-mount results

Usage:
    sudo python library_prepare_guest.py <root-fs-uuid> [target-dir]
"""

import sys
from pathlib import Path

from guestprep import GuestPrepError, PrepPipeline, PrepSettings
from guestprep.boot import BootlineConfig
from guestprep.core.logger import Log


def prepare(root_uuid: str, target: str = "/mnt/guestprep") -> int:
    logger = Log.setup(verbose=1)

    settings = PrepSettings(
        target_root=Path(target),
        root_uuid=root_uuid,
        bootline=BootlineConfig(console_device="ttyS0", baud_rate=115200, boot_delay_seconds=120),
        report=Path(target).parent / "guestprep-report.json",
    )

    pipeline = PrepPipeline(logger, settings)
    try:
        rc = pipeline.run()
    except GuestPrepError as e:
        logger.error("Preparation failed: %s", e.user_message(include_context=True))
        return e.code

    mounts = pipeline.report.mounts
    if mounts is not None:
        for r in mounts.results:
            logger.info("  %-24s %-10s %s", r.entry.target_relative_path, r.outcome.value, r.detail)
    return rc


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(2)
    sys.exit(prepare(*sys.argv[1:3]))
