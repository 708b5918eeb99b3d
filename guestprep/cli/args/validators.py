# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# guestprep/cli/args/validators.py
from __future__ import annotations

import argparse
import os
from typing import Any, Dict

from ...config.settings import COMMANDS
from ...core.exceptions import ConfigError


def _merged_get(args: argparse.Namespace, conf: Dict[str, Any], key: str, default: Any = None) -> Any:
    v = getattr(args, key, None)
    if v is not None:
        return v
    return conf.get(key, default)


def _validate_cmd(args: argparse.Namespace, conf: Dict[str, Any]) -> None:
    # a YAML `cmd:` bypasses argparse choices
    cmd = str(_merged_get(args, conf, "cmd", "prepare")).strip().lower()
    if cmd not in COMMANDS:
        raise ConfigError(msg=f"Unknown cmd: {cmd}", context={"valid": ", ".join(COMMANDS)})


def _validate_root_selection(args: argparse.Namespace, conf: Dict[str, Any]) -> None:
    if _merged_get(args, conf, "root_device") and _merged_get(args, conf, "root_uuid"):
        raise ConfigError(msg="root_device and root_uuid are mutually exclusive")


def _validate_paths(args: argparse.Namespace, conf: Dict[str, Any]) -> None:
    target = _merged_get(args, conf, "target_root")
    if not target:
        return
    if not os.path.isabs(str(target)):
        raise ConfigError(msg=f"target_root must be an absolute path: {target}")
    if os.path.normpath(str(target)) == "/":
        raise ConfigError(msg="target_root must not be /")


def _validate_numbers(args: argparse.Namespace, conf: Dict[str, Any]) -> None:
    for key in ("baud_rate", "boot_delay", "command_timeout"):
        v = _merged_get(args, conf, key)
        if v is None:
            continue
        if not isinstance(v, int) or isinstance(v, bool) or v < 0:
            raise ConfigError(msg=f"{key} must be a non-negative integer, got {v!r}")


def validate_args(args: argparse.Namespace, conf: Dict[str, Any]) -> None:
    _validate_cmd(args, conf)
    _validate_root_selection(args, conf)
    _validate_paths(args, conf)
    _validate_numbers(args, conf)
