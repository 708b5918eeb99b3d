# SPDX-License-Identifier: LGPL-3.0-or-later
# guestprep/boot/bootline.py
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

# Fragments we own; an existing value for these keys is replaced, not duplicated.
# console= is deliberately absent: several consoles on one command line is legal.
_REPLACED_KEYS = ("earlyprintk", "rootdelay")


@dataclass(frozen=True)
class BootlineConfig:
    """Kernel command-line fragments injected into the guest's grub defaults."""
    console_device: str = "ttyS0"
    baud_rate: int = 115200
    early_console_device: Optional[str] = None
    boot_delay_seconds: int = 300
    strip_params: Tuple[str, ...] = ("rhgb", "quiet")
    cmdline_key: str = "GRUB_CMDLINE_LINUX"

    @property
    def marker(self) -> str:
        return f"console={self.console_device}"

    def fragments(self) -> List[str]:
        frags: List[str] = []
        baud = f",{self.baud_rate}" if self.baud_rate else ""
        if self.console_device:
            frags.append(f"console={self.console_device}{baud}")
        early = self.early_console_device if self.early_console_device is not None else self.console_device
        if early:
            frags.append(f"earlyprintk={early}{baud}")
        if self.boot_delay_seconds:
            frags.append(f"rootdelay={int(self.boot_delay_seconds)}")
        return frags

    def to_dict(self) -> Dict[str, Any]:
        return {
            "console_device": self.console_device,
            "baud_rate": self.baud_rate,
            "early_console_device": self.early_console_device,
            "boot_delay_seconds": self.boot_delay_seconds,
            "strip_params": list(self.strip_params),
            "cmdline_key": self.cmdline_key,
            "fragments": self.fragments(),
        }


def _marker_re(marker: str) -> "re.Pattern[str]":
    # console=ttyS0 must not match console=ttyS01
    return re.compile(rf"(?<![\w-]){re.escape(marker)}(?![\w])")


def strip_comment(line: str) -> str:
    """Drop a shell comment: `#` at the start of a word, outside quotes."""
    quote = None
    prev = " "
    for i, ch in enumerate(line):
        if quote:
            if ch == quote:
                quote = None
        elif ch in ("'", '"'):
            quote = ch
        elif ch == "#" and prev.isspace():
            return line[:i]
        prev = ch
    return line


def count_marker(text: str, marker: str) -> int:
    """Occurrences of marker outside comments."""
    pat = _marker_re(marker)
    return sum(len(pat.findall(strip_comment(line))) for line in text.splitlines())


def has_marker(text: str, marker: str) -> bool:
    return count_marker(text, marker) > 0


def _cmdline_re(key: str) -> "re.Pattern[str]":
    # groups: lhs, quote, quoted value, bare value, trailing comment
    return re.compile(
        rf"^(\s*(?:export\s+)?{re.escape(key)})=(?:([\"'])(.*?)\2|(\S*))(\s+#.*)?\s*$"
    )


def _filter_tokens(tokens: List[str], cfg: BootlineConfig) -> List[str]:
    strip = set(cfg.strip_params)
    out: List[str] = []
    for t in tokens:
        key = t.split("=", 1)[0]
        if t in strip or key in _REPLACED_KEYS:
            continue
        out.append(t)
    return out


def inject_cmdline(text: str, cfg: BootlineConfig) -> str:
    """
    Append the configured fragments to the last `<cmdline_key>=` assignment
    (the one the shell-sourced defaults file actually honours). A missing
    assignment is appended as a new line.
    """
    pat = _cmdline_re(cfg.cmdline_key)
    lines = text.splitlines()

    idx = None
    for i, line in enumerate(lines):
        if pat.match(line):
            idx = i

    if idx is None:
        new_line = f'{cfg.cmdline_key}="{" ".join(cfg.fragments())}"'
        body = text if (not text or text.endswith("\n")) else text + "\n"
        return body + new_line + "\n"

    m = pat.match(lines[idx])
    assert m is not None
    lhs = m.group(1)
    quote = m.group(2) or '"'
    value = m.group(3) if m.group(2) else (m.group(4) or "")

    tokens = _filter_tokens(value.split(), cfg) + cfg.fragments()
    comment = (m.group(5) or "").rstrip()
    lines[idx] = f"{lhs}={quote}{' '.join(tokens)}{quote}{comment}"

    out = "\n".join(lines)
    return out + "\n" if text.endswith("\n") or not text else out
