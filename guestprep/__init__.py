# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# guestprep/__init__.py
"""
guestprep - prepare a mounted guest tree for a serial-console boot

Mounts the guest root and its fstab filesystems under a target directory,
rebuilds the ramdisk image and rewrites the grub boot line, all inside a
chroot with the host's /dev, /proc and /sys bound in.

Usage as a library:

    from guestprep import PrepPipeline, PrepSettings
    from guestprep.core.logger import Log

    logger = Log.setup(verbose=1)
    settings = PrepSettings(target_root=Path("/mnt/guestprep"), root_uuid="...")
    rc = PrepPipeline(logger, settings).run()
"""

__version__ = "0.1.0"

from .config.settings import PrepSettings
from .core.exceptions import ExitCode, GuestPrepError
from .orchestrator.pipeline import PrepPipeline

__all__ = ["__version__", "PrepSettings", "PrepPipeline", "GuestPrepError", "ExitCode"]
