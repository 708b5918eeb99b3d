# SPDX-License-Identifier: LGPL-3.0-or-later
# guestprep/boot/__init__.py
from .bootline import BootlineConfig, inject_cmdline
from .grub import BootloaderReconfigurator, BootloaderResult, BootloaderState
from .initramfs import BootImageRebuilder, RebuildResult

__all__ = [
    "BootlineConfig",
    "inject_cmdline",
    "BootloaderReconfigurator",
    "BootloaderResult",
    "BootloaderState",
    "BootImageRebuilder",
    "RebuildResult",
]
