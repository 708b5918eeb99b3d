# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
from __future__ import annotations

import argparse
import logging
import sys
from typing import Any, Dict, Optional, Sequence, Tuple

from ...config.config_loader import Config
from ...core.logger import Log, c
from ...core.utils import U
from .builder import HelpFormatter, _build_epilog
from .groups import (
    _add_bootline_knobs,
    _add_global_config_logging,
    _add_global_operation_flags,
    _add_project_control,
    _add_ramdisk_knobs,
    _add_target_tree,
)
from .validators import validate_args


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="guestprep",
        description=c("guestprep: mount a guest tree and prepare it for a serial-console boot", "green", ["bold"]),
        formatter_class=HelpFormatter,
        epilog=_build_epilog(),
    )

    _add_global_config_logging(p)
    _add_project_control(p)
    _add_global_operation_flags(p)
    _add_target_tree(p)
    _add_ramdisk_knobs(p)
    _add_bootline_knobs(p)
    return p


def _build_preparser() -> argparse.ArgumentParser:
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("--config", action="append", default=[])
    pre.add_argument("-v", "--verbose", action="count", default=0)
    pre.add_argument("-q", "--quiet", action="count", default=0)
    pre.add_argument("--log-file", dest="log_file", default=None)
    pre.add_argument("--json-logs", dest="json_logs", action="store_true")
    pre.add_argument("--dump-config", action="store_true")
    pre.add_argument("--dump-args", action="store_true")
    return pre


def _load_merged_config(logger: logging.Logger, cfgs: Sequence[str]) -> Dict[str, Any]:
    if not cfgs:
        return {}
    expanded = Config.expand_configs(logger, list(cfgs))
    return Config.load_many(logger, expanded)


def parse_args_with_config(
    argv: Optional[Sequence[str]] = None,
    logger: Optional[logging.Logger] = None,
) -> Tuple[argparse.Namespace, Dict[str, Any], logging.Logger]:
    """
    Flow:
      Phase 0: parse only the flags needed to find config and set up logging
      Phase 1: load + merge config files
      Phase 2: apply config as parser defaults
      Phase 3: full parse (CLI wins over config)
      Phase 4: validate
    """
    if argv is None:
        argv = sys.argv[1:]
    argv = list(argv)

    parser = build_parser()

    pre = _build_preparser()
    args0, _rest = pre.parse_known_args(argv)

    own_logger = logger is None
    if logger is None:
        logger = Log.setup(
            args0.verbose,
            args0.log_file,
            quiet=args0.quiet,
            json_logs=args0.json_logs,
        )

    conf = _load_merged_config(logger, args0.config or [])

    if args0.dump_config:
        print(U.json_dump(conf))
        raise SystemExit(0)

    Config.apply_as_defaults(logger, parser, conf)

    args = parser.parse_args(argv)

    # logging keys may come from config; phase 0 only saw the CLI
    log_keys = ("verbose", "quiet", "log_file", "json_logs")
    if own_logger and any(getattr(args, k) != getattr(args0, k) for k in log_keys):
        logger = Log.setup(args.verbose, args.log_file, quiet=args.quiet, json_logs=args.json_logs)

    if args0.dump_args:
        print(U.json_dump(vars(args)))
        raise SystemExit(0)

    validate_args(args, conf)
    return args, conf, logger
