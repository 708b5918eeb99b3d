# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# guestprep/config/config_loader.py
from __future__ import annotations

import argparse
import glob
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List

import yaml

from ..core.exceptions import ConfigError

_YAML_SUFFIXES = (".yaml", ".yml")


class Config:
    """
    YAML/JSON configuration files, merged in order (later files win).

    Keys use the argparse `dest` spelling; dashes are accepted and normalized
    to underscores so `target-root:` and `target_root:` mean the same thing.
    """

    @staticmethod
    def expand_configs(logger: logging.Logger, paths: List[str]) -> List[Path]:
        """Expand ~, environment variables and globs; a pattern that matches nothing is an error."""
        out: List[Path] = []
        for raw in paths:
            spec = os.path.expandvars(os.path.expanduser(str(raw)))
            if glob.has_magic(spec):
                hits = sorted(glob.glob(spec))
                if not hits:
                    raise ConfigError(msg=f"Config pattern matched no files: {raw}", context={"pattern": spec})
                logger.debug("Config glob %s -> %d file(s)", raw, len(hits))
                out.extend(Path(h) for h in hits)
            else:
                out.append(Path(spec))
        return out

    @staticmethod
    def load_file(logger: logging.Logger, path: Path) -> Dict[str, Any]:
        p = Path(path)
        if not p.is_file():
            raise ConfigError(msg=f"Config file not found: {p}", context={"path": str(p)})
        try:
            text = p.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(msg=f"Cannot read config {p}: {e.strerror or e}", cause=e, context={"path": str(p)}) from e

        try:
            if p.suffix.lower() == ".json":
                data = json.loads(text) if text.strip() else {}
            else:
                data = yaml.safe_load(text)
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigError(msg=f"Cannot parse config {p}: {e}", cause=e, context={"path": str(p)}) from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError(
                msg=f"Config {p} must be a mapping at top level, got {type(data).__name__}",
                context={"path": str(p)},
            )
        logger.debug("Loaded config %s (%d keys)", p, len(data))
        return Config.normalize_keys(data)

    @staticmethod
    def normalize_keys(data: Dict[str, Any]) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for k, v in data.items():
            key = str(k).replace("-", "_")
            out[key] = Config.normalize_keys(v) if isinstance(v, dict) else v
        return out

    @staticmethod
    def merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge: nested mappings merge, everything else is replaced."""
        out = dict(base)
        for k, v in override.items():
            if isinstance(v, dict) and isinstance(out.get(k), dict):
                out[k] = Config.merge(out[k], v)
            else:
                out[k] = v
        return out

    @staticmethod
    def load_many(logger: logging.Logger, paths: List[Path]) -> Dict[str, Any]:
        conf: Dict[str, Any] = {}
        for p in paths:
            conf = Config.merge(conf, Config.load_file(logger, p))
        if paths:
            logger.info("Config: merged %d file(s)", len(paths))
        return conf

    @staticmethod
    def apply_as_defaults(logger: logging.Logger, parser: argparse.ArgumentParser, conf: Dict[str, Any]) -> None:
        """Feed config values to the parser as defaults so explicit CLI flags still win."""
        known = {a.dest for a in parser._actions}
        defaults: Dict[str, Any] = {}
        for k, v in conf.items():
            if k in known:
                defaults[k] = v
            else:
                logger.warning("⚠️  Config: unknown key %r ignored", k)
        if defaults:
            parser.set_defaults(**defaults)
            logger.debug("Config: applied defaults for %s", ", ".join(sorted(defaults)))
