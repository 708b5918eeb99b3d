# SPDX-License-Identifier: LGPL-3.0-or-later
# guestprep/core/exceptions.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


def _safe_int(x: Any, default: int = 1) -> int:
    try:
        return int(x)
    except (TypeError, ValueError):
        return default


def _clamp_exit_code(code: int) -> int:
    # Exit codes are 0..255; anything else collapses to a generic failure.
    if code < 0:
        return 1
    if code > 255:
        return 255
    return code


def _one_line(s: str, limit: int = 600) -> str:
    s = (s or "").strip().replace("\r", " ").replace("\n", " ")
    s = " ".join(s.split())
    return s if len(s) <= limit else (s[: limit - 3] + "...")


def _format_context_compact(ctx: Dict[str, Any]) -> str:
    return ", ".join(f"{k}={ctx.get(k)!r}" for k in sorted(ctx.keys()))


class ExitCode:
    OK = 0
    GENERIC = 1
    CONFIG = 2
    PARTIAL_MOUNTS = 3
    RESOLUTION = 10
    NOT_FOUND = 11
    MOUNT = 12
    FILE_IO = 13
    REBUILD = 14
    GENERATION = 15
    LOCK = 16
    NOT_PRIVILEGED = 77
    INTERRUPTED = 130


@dataclass(eq=False)
class GuestPrepError(Exception):
    """
    Base project error with:
      - stable fields for reporting/JSON
      - readable __str__ (what users see)
      - an exit code per error class, so callers can branch on failure kind
    """
    msg: str = "error"
    code: int = ExitCode.GENERIC
    cause: Optional[BaseException] = None
    context: Optional[Dict[str, Any]] = None

    default_code = ExitCode.GENERIC

    def __post_init__(self) -> None:
        if self.code == ExitCode.GENERIC and self.default_code != ExitCode.GENERIC:
            self.code = self.default_code
        self.code = _clamp_exit_code(_safe_int(self.code, default=1))
        self.msg = _one_line(self.msg) or self.__class__.__name__
        if self.context is None:
            self.context = {}
        super().__init__(self.msg)
        self.args = (self.msg,)

    def with_context(self, **ctx: Any) -> "GuestPrepError":
        assert self.context is not None
        self.context.update(ctx)
        return self

    def user_message(self, *, include_context: bool = False, include_cause: bool = False) -> str:
        """
        Human-friendly message for CLI output/logs.
        """
        parts = [self.msg or self.__class__.__name__]

        if include_context and self.context:
            parts.append(f"[{_one_line(_format_context_compact(self.context))}]")

        if include_cause and self.cause is not None:
            parts.append(f"(cause: {type(self.cause).__name__}: {_one_line(str(self.cause))})")

        return " ".join(parts)

    def __str__(self) -> str:
        return self.user_message()

    def to_dict(self, *, include_cause: bool = True) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "type": self.__class__.__name__,
            "code": self.code,
            "message": self.msg,
            "context": {k: str(v) for k, v in (self.context or {}).items()},
        }
        if include_cause and self.cause is not None:
            d["cause"] = {"type": type(self.cause).__name__, "message": _one_line(str(self.cause))}
        return d


class NotPrivilegedError(GuestPrepError):
    """Caller cannot mount filesystems or touch device files."""
    default_code = ExitCode.NOT_PRIVILEGED


class ResolutionError(GuestPrepError):
    """A required source device or filesystem could not be determined."""
    default_code = ExitCode.RESOLUTION


class NotFoundError(GuestPrepError):
    """An expected input file (fstab, boot image, grub defaults) is absent."""
    default_code = ExitCode.NOT_FOUND


class MountError(GuestPrepError):
    """A mount was attempted but the mount table does not show it."""
    default_code = ExitCode.MOUNT


class FileIOError(GuestPrepError):
    """A backup copy or a rewritten file failed verification."""
    default_code = ExitCode.FILE_IO


class RebuildError(GuestPrepError):
    """The ramdisk regeneration tool failed."""
    default_code = ExitCode.REBUILD


class GenerationError(GuestPrepError):
    """The bootloader configuration generator failed."""
    default_code = ExitCode.GENERATION


class LockError(GuestPrepError):
    default_code = ExitCode.LOCK


class ConfigError(GuestPrepError):
    default_code = ExitCode.CONFIG


def format_exception_for_cli(e: BaseException, *, verbose: int = 0) -> str:
    """
    One-liner output for CLI.

    verbose=0: message + context (paths are what make failures diagnosable)
    verbose>=2: message + context + cause
    """
    if isinstance(e, GuestPrepError):
        return e.user_message(include_context=True, include_cause=(verbose >= 2))

    if verbose >= 2:
        return f"{type(e).__name__}: {_one_line(str(e))}"
    return _one_line(str(e)) or type(e).__name__
