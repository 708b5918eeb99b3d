# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# guestprep/__main__.py
from __future__ import annotations

import logging
import sys
import traceback
from typing import Optional, Sequence

from .cli.args.parser import parse_args_with_config
from .config.settings import PrepSettings
from .core.exceptions import ExitCode, GuestPrepError, format_exception_for_cli
from .orchestrator.pipeline import PrepPipeline


def _print_stderr(msg: str) -> None:
    print(msg, file=sys.stderr)


def _safe_log(logger: Optional[logging.Logger], level: str, msg: str) -> None:
    if logger is None:
        _print_stderr(msg)
        return
    getattr(logger, level)(msg)


def run(argv: Optional[Sequence[str]] = None) -> int:
    logger: Optional[logging.Logger] = None
    verbose = 0

    # Phase 1: parse
    try:
        args, _conf, logger = parse_args_with_config(argv)
        verbose = int(getattr(args, "verbose", 0) or 0)
        settings = PrepSettings.from_args(args)
    except GuestPrepError as e:
        _safe_log(logger, "error", f"💥 {format_exception_for_cli(e, verbose=verbose)}")
        return e.code
    except KeyboardInterrupt:
        _safe_log(logger, "warning", "Interrupted by user (Ctrl+C).")
        return ExitCode.INTERRUPTED

    # Phase 2: run pipeline
    try:
        return PrepPipeline(logger, settings).run()
    except GuestPrepError as e:
        _safe_log(logger, "error", f"💥 {format_exception_for_cli(e, verbose=verbose)}")
        return e.code
    except KeyboardInterrupt:
        _safe_log(logger, "warning", "Interrupted by user (Ctrl+C).")
        return ExitCode.INTERRUPTED
    except Exception as e:
        _safe_log(logger, "error", f"💥 UNHANDLED {type(e).__name__}: {e}")
        _safe_log(logger, "debug", traceback.format_exc())
        return ExitCode.GENERIC


def main() -> None:
    raise SystemExit(run())


if __name__ == "__main__":
    main()
