# SPDX-License-Identifier: LGPL-3.0-or-later
# guestprep/core/logger.py
"""
Logging for guestprep.

Two sinks:
  - stderr: short timestamps, level emoji, colour on a TTY
  - --log-file: append-only audit trail, full date with milliseconds,
    always at DEBUG or lower, never coloured

Call sites attach structured fields with ``extra={"ctx": {...}}``; both
formatters render them (key=value on text sinks, a ``ctx`` object in NDJSON).
"""
from __future__ import annotations

import datetime as _dt
import json
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from termcolor import colored as _colored

TRACE = 5
if not hasattr(logging, "TRACE"):
    logging.TRACE = TRACE  # type: ignore[attr-defined]
    logging.addLevelName(TRACE, "TRACE")


def _logger_trace(self: logging.Logger, msg: str, *args, **kwargs) -> None:
    if self.isEnabledFor(TRACE):
        self._log(TRACE, msg, args, **kwargs)


if not hasattr(logging.Logger, "trace"):
    logging.Logger.trace = _logger_trace  # type: ignore[attr-defined]

# levelname -> (emoji, colour)
_LEVELS = {
    "TRACE": ("🧬", "cyan"),
    "DEBUG": ("🔍", "blue"),
    "INFO": ("✅", "green"),
    "WARNING": ("⚠️", "yellow"),
    "ERROR": ("💥", "red"),
    "CRITICAL": ("🧨", "red"),
}


def _stderr_is_tty() -> bool:
    try:
        return bool(sys.stderr.isatty())
    except (AttributeError, ValueError):
        return False


def _stderr_takes_unicode() -> bool:
    enc = getattr(sys.stderr, "encoding", None) or "utf-8"
    try:
        "✅".encode(enc)
    except (LookupError, UnicodeEncodeError):
        return False
    return True


def c(
    text: str,
    color: Optional[str] = None,
    attrs: Optional[List[str]] = None,
    *,
    enable: bool = True,
) -> str:
    """Colorize text if enabled."""
    if not enable or not color:
        return text
    return _colored(text, color=color, attrs=attrs or [])


def _short(v: Any, limit: int = 240) -> str:
    s = str(v).replace("\n", "\\n").replace("\r", "\\r")
    return s if len(s) <= limit else s[: limit - 1] + "…"


def _ctx_of(record: logging.LogRecord) -> Mapping[str, Any]:
    ctx = getattr(record, "ctx", None)
    return ctx if isinstance(ctx, Mapping) else {}


class ContextLoggerAdapter(logging.LoggerAdapter):
    """
    Carries a fixed ctx dict into every record; a call-site
    ``extra={"ctx": ...}`` is merged on top.
    """

    def __init__(self, logger: Any, ctx: Optional[Mapping[str, Any]] = None):
        super().__init__(logger, {"ctx": dict(ctx or {})})

    def process(self, msg: Any, kwargs: Dict[str, Any]) -> Tuple[Any, Dict[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        extra["ctx"] = {**self.extra["ctx"], **dict(extra.get("ctx") or {})}
        kwargs["extra"] = extra
        return msg, kwargs

    def trace(self, msg: Any, *args: Any, **kwargs: Any) -> None:
        self.log(TRACE, msg, *args, **kwargs)

    def bind(self, **ctx: Any) -> "ContextLoggerAdapter":
        return ContextLoggerAdapter(self.logger, {**self.extra["ctx"], **ctx})


@dataclass(frozen=True)
class LogStyle:
    color: bool = True
    full_date: bool = False
    millis: bool = False
    source: bool = False  # module:line
    pid: bool = False
    name: bool = False
    utc: bool = False
    unicode: bool = True


class EmojiFormatter(logging.Formatter):
    def __init__(self, style: LogStyle):
        super().__init__()
        self._style = style

    def _stamp(self, created: float) -> str:
        tz = _dt.timezone.utc if self._style.utc else None
        dt = _dt.datetime.fromtimestamp(created, tz=tz)
        s = dt.strftime("%Y-%m-%d %H:%M:%S" if self._style.full_date else "%H:%M:%S")
        if self._style.millis:
            s += f".{dt.microsecond // 1000:03d}"
        return s

    def _tags(self, record: logging.LogRecord) -> str:
        tags: List[str] = []
        if self._style.pid:
            tags.append(f"pid={os.getpid()}")
        if self._style.name:
            tags.append(record.name)
        if self._style.source:
            tags.append(f"{record.module}:{record.lineno}")
        return f" [{' '.join(tags)}]" if tags else ""

    def format(self, record: logging.LogRecord) -> str:
        emoji, colour = _LEVELS.get(record.levelname, ("•", None))
        if not self._style.unicode:
            emoji = "·"
        tinted = self._style.color and _stderr_is_tty()

        level = c(f"{record.levelname:<8}", colour, enable=tinted)
        msg = record.getMessage()
        if record.levelno >= logging.WARNING:
            msg = c(msg, colour, ["bold"], enable=tinted)

        ctx = _ctx_of(record)
        fields = "".join(f" {k}={_short(ctx[k])}" for k in sorted(ctx, key=str))

        line = f"{self._stamp(record.created)} {emoji} {level}{self._tags(record)} {msg}{fields}"
        if record.exc_info:
            tb = "\n".join("  " + ln for ln in self.formatException(record.exc_info).splitlines())
            line += "\n" + c(tb, "red", enable=tinted)
        return line


class JsonFormatter(logging.Formatter):
    """One JSON object per line: ts, level, logger, msg, pid, module, lineno, ctx, traceback."""

    def __init__(self, *, utc: bool = True):
        super().__init__()
        self._utc = bool(utc)

    def format(self, record: logging.LogRecord) -> str:
        tz = _dt.timezone.utc if self._utc else None
        obj: Dict[str, Any] = {
            "ts": _dt.datetime.fromtimestamp(record.created, tz=tz).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "pid": os.getpid(),
            "module": record.module,
            "lineno": record.lineno,
        }
        ctx = _ctx_of(record)
        if ctx:
            obj["ctx"] = {str(k): _short(v) for k, v in ctx.items()}
        if record.exc_info:
            obj["exc_type"] = record.exc_info[0].__name__ if record.exc_info[0] else "Exception"
            obj["traceback"] = self.formatException(record.exc_info)
        return json.dumps(obj, ensure_ascii=False, default=str)


def _extra(ctx: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    return {"ctx": ctx} if ctx else None


class Log:
    @staticmethod
    def level_for(verbose: int, quiet: int) -> int:
        """
        -q WARNING, -qq ERROR, default and -v INFO, -vv DEBUG, -vvv TRACE.
        Quiet wins when both are given.
        """
        if quiet:
            return logging.ERROR if quiet >= 2 else logging.WARNING
        if verbose >= 3:
            return TRACE
        if verbose == 2:
            return logging.DEBUG
        return logging.INFO

    @staticmethod
    def bind(logger: Any, **ctx: Any) -> ContextLoggerAdapter:
        if isinstance(logger, ContextLoggerAdapter):
            return logger.bind(**ctx)
        return ContextLoggerAdapter(logger, ctx)

    @staticmethod
    def banner(logger: logging.Logger, title: str, *, char: str = "─") -> None:
        t = f" {title.strip()} "
        side = char * max(8, (72 - len(t)) // 2)
        logger.info((side + t + side)[:72])

    @staticmethod
    def step(logger: logging.Logger, msg: str, **ctx: Any) -> None:
        logger.info("➡️  %s", msg, extra=_extra(ctx))

    @staticmethod
    def ok(logger: logging.Logger, msg: str, **ctx: Any) -> None:
        logger.info("✅ %s", msg, extra=_extra(ctx))

    @staticmethod
    def warn(logger: logging.Logger, msg: str, **ctx: Any) -> None:
        logger.warning("⚠️  %s", msg, extra=_extra(ctx))

    @staticmethod
    def trace(logger: logging.Logger, msg: str, *args: Any, **ctx: Any) -> None:
        logger.trace(msg, *args, extra=_extra(ctx))  # type: ignore[attr-defined]

    @staticmethod
    def setup(
        verbose: int = 0,
        log_file: Optional[str] = None,
        *,
        quiet: int = 0,
        color: bool = True,
        utc: bool = False,
        logger_name: str = "guestprep",
        json_logs: bool = False,
    ) -> logging.Logger:
        """Configure and return the project logger. Safe to call again; handlers are replaced."""
        logger = logging.getLogger(logger_name)
        logger.propagate = False
        level = Log.level_for(verbose, quiet)
        unicode = _stderr_takes_unicode()

        for h in list(logger.handlers):
            logger.removeHandler(h)
            h.close()

        console = logging.StreamHandler(stream=sys.stderr)
        console.setLevel(level)
        if json_logs:
            console.setFormatter(JsonFormatter(utc=utc))
        else:
            console.setFormatter(
                EmojiFormatter(
                    LogStyle(
                        color=color,
                        millis=verbose >= 3,
                        source=verbose >= 3,
                        pid=verbose >= 2,
                        utc=utc,
                        unicode=unicode,
                    )
                )
            )
        logger.addHandler(console)

        if log_file:
            fp = Path(log_file).expanduser().resolve()
            fp.parent.mkdir(parents=True, exist_ok=True)
            audit = logging.FileHandler(fp, mode="a", encoding="utf-8")
            audit.setLevel(min(level, logging.DEBUG))
            if json_logs:
                audit.setFormatter(JsonFormatter(utc=utc))
            else:
                audit.setFormatter(
                    EmojiFormatter(
                        LogStyle(
                            color=False,
                            full_date=True,
                            millis=True,
                            source=True,
                            pid=True,
                            name=True,
                            utc=utc,
                            unicode=unicode,
                        )
                    )
                )
            logger.addHandler(audit)
            level = min(level, logging.DEBUG)

        logger.setLevel(level)
        logger.debug("Logger initialized (level=%s, pid=%s)", logging.getLevelName(level), os.getpid())
        return logger
