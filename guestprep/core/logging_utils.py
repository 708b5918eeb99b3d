# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
"""
Shared logging helpers for pipeline steps.
"""
from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Any, Generator


@contextmanager
def log_step(logger: logging.Logger, description: str, **ctx: Any) -> Generator[None, None, None]:
    """
    Context manager for logging and timing a pipeline step.

    Logs the start of the step, runs the block, then logs completion with
    elapsed time. On exception, logs the failure and re-raises.

    Example:
        with log_step(logger, "Mount root", target=str(target)):
            resolver.mount_root(source, target)
    """
    extra = {"ctx": ctx} if ctx else None
    t0 = time.monotonic()
    logger.info("➡️  %s ...", description, extra=extra)
    try:
        yield
    except Exception as e:
        logger.error("💥 %s failed (%.2fs): %s", description, time.monotonic() - t0, e, extra=extra)
        raise
    logger.info("✅ %s done (%.2fs)", description, time.monotonic() - t0, extra=extra)
