# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# guestprep/cli/args/__init__.py
"""Argument parsing for the guestprep CLI."""
from __future__ import annotations

from .builder import HelpFormatter, _build_epilog
from .parser import _build_preparser, _load_merged_config, build_parser, parse_args_with_config
from .validators import validate_args

__all__ = [
    "HelpFormatter",
    "_build_epilog",
    "_build_preparser",
    "_load_merged_config",
    "build_parser",
    "parse_args_with_config",
    "validate_args",
]
