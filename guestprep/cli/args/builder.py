# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# guestprep/cli/args/builder.py
from __future__ import annotations

import argparse

from ...core.logger import c
from ..help_texts import FEATURE_SUMMARY, YAML_EXAMPLE


class HelpFormatter(argparse.RawDescriptionHelpFormatter, argparse.ArgumentDefaultsHelpFormatter):
    """Raw epilog plus default values in option help."""


def _build_epilog() -> str:
    return (
        c("YAML example:\n", "cyan", ["bold"])
        + c(YAML_EXAMPLE, "cyan")
        + "\n"
        + c("Feature summary:\n", "cyan", ["bold"])
        + c(FEATURE_SUMMARY, "cyan")
    )
