# SPDX-License-Identifier: LGPL-3.0-or-later
# guestprep/core/privilege.py
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Callable, Optional

from .exceptions import NotPrivilegedError

CAP_SYS_ADMIN = 21

_PROC_STATUS = Path("/proc/self/status")


def _effective_caps(status_path: Path) -> int:
    try:
        for line in status_path.read_text(encoding="utf-8").splitlines():
            if line.startswith("CapEff:"):
                return int(line.split(":", 1)[1].strip(), 16)
    except (OSError, ValueError):
        pass
    return 0


def has_cap_sys_admin(status_path: Path = _PROC_STATUS) -> bool:
    return bool(_effective_caps(status_path) & (1 << CAP_SYS_ADMIN))


def ensure_elevated(
    logger: Optional[logging.Logger] = None,
    *,
    geteuid: Callable[[], int] = os.geteuid,
    status_path: Path = _PROC_STATUS,
) -> None:
    """
    Refuse to continue unless the process may mount filesystems.

    Root (euid 0) passes; so does a process holding CAP_SYS_ADMIN, which is
    what mount(2) actually checks (e.g. inside a user namespace).
    """
    euid = geteuid()
    if euid == 0:
        return
    if has_cap_sys_admin(status_path):
        if logger is not None:
            logger.debug("Not root (euid=%s) but CAP_SYS_ADMIN is effective; continuing", euid)
        return

    err = NotPrivilegedError(
        msg="This operation requires root (or CAP_SYS_ADMIN). Re-run with sudo.",
        context={"euid": euid},
    )
    if logger is not None:
        logger.error("%s", err.user_message(include_context=True))
    raise err
