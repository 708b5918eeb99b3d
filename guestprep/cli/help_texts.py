# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# guestprep/cli/help_texts.py
from __future__ import annotations

# Pure help text for the argparse epilog; keep it copy/paste runnable.

YAML_EXAMPLE = r"""# guestprep configuration (YAML)
#
# Run:
#   sudo ./guestprep.py --config prep.yaml
#
# Merge several files (later overrides earlier), CLI flags override both:
#   sudo ./guestprep.py --config base.yaml --config site.yaml --boot-delay 60
#
# cmd: prepare                # prepare | mount-root | mount-all | rebuild-initramfs
#                             # | reconfigure-bootloader | release-binds | restore-bootloader
# target_root: /mnt/guestprep
# root_uuid: 0b5c7b1e-...     # or root_device: /dev/vdb2 ; default: whatever is mounted at /
# kernel_version: 6.8.0-45-generic
#
# console_device: ttyS0
# baud_rate: 115200
# early_console_device: ttyS0
# boot_delay: 300
# strip_params: [rhgb, quiet]
#
# initramfs_tool: dracut      # pin instead of probing the guest
# grub_mkconfig: "grub2-mkconfig -o /boot/grub2/grub.cfg"
#
# include_noauto: false
# strict_mounts: true         # exit 3 if any secondary mount failed
# lock_file: /run/guestprep.lock
# report: ./guestprep-report.json
# log_file: /var/log/guestprep.log
"""

FEATURE_SUMMARY = r"""  • Mounts the guest root at the target tree, verified against /proc/self/mounts
  • Mounts every secondary filesystem from the guest fstab (swap excluded), continue-on-error
  • Backs up and regenerates the ramdisk image inside a chroot (/dev, /proc, /sys bound)
  • Adds serial console + boot delay to GRUB_CMDLINE_LINUX and regenerates grub.cfg
  • Idempotent: re-running never double-mounts or duplicates kernel parameters
  • Exit codes: 77 not root, 10 resolve, 11 not found, 12 mount, 13 file I/O,
    14 ramdisk, 15 grub, 16 lock, 2 config, 3 partial mounts (--strict-mounts)
"""
