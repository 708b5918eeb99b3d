# SPDX-License-Identifier: LGPL-3.0-or-later
# guestprep/config/__init__.py
from .config_loader import Config
from .settings import COMMANDS, PrepSettings

__all__ = ["Config", "COMMANDS", "PrepSettings"]
