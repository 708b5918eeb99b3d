# SPDX-License-Identifier: LGPL-3.0-or-later
# guestprep/core/__init__.py
from .exceptions import GuestPrepError, ExitCode
from .privilege import ensure_elevated

__all__ = ["GuestPrepError", "ExitCode", "ensure_elevated"]
