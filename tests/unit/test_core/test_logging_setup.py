# SPDX-License-Identifier: LGPL-3.0-or-later
from __future__ import annotations

import json
import logging
import re

import pytest

from guestprep.core.logger import TRACE, Log
from guestprep.core.logging_utils import log_step


@pytest.fixture
def fresh_name(request):
    name = f"guestprep.test.{request.node.name}"
    yield name
    lg = logging.getLogger(name)
    for h in list(lg.handlers):
        lg.removeHandler(h)
        h.close()


@pytest.mark.unit
class TestLogSetup:
    def test_file_sink_has_full_timestamps(self, tmp_path, fresh_name):
        log_file = tmp_path / "logs" / "guestprep.log"
        logger = Log.setup(0, str(log_file), logger_name=fresh_name)
        logger.info("mounted %s", "/mnt/guestprep")
        logger.debug("debug goes to file only")
        for h in logger.handlers:
            h.flush()

        lines = log_file.read_text(encoding="utf-8").splitlines()
        assert any("mounted /mnt/guestprep" in ln for ln in lines)
        assert any("debug goes to file only" in ln for ln in lines)
        for ln in lines:
            assert re.match(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\.\d{3} ", ln), ln

    def test_file_sink_appends(self, tmp_path, fresh_name):
        log_file = tmp_path / "guestprep.log"
        log_file.write_text("earlier run\n", encoding="utf-8")
        logger = Log.setup(0, str(log_file), logger_name=fresh_name)
        logger.warning("again")
        for h in logger.handlers:
            h.flush()
        text = log_file.read_text(encoding="utf-8")
        assert text.startswith("earlier run\n")
        assert "again" in text

    def test_json_logs(self, tmp_path, fresh_name):
        log_file = tmp_path / "guestprep.ndjson"
        logger = Log.setup(0, str(log_file), logger_name=fresh_name, json_logs=True)
        Log.step(logger, "Mount guest root", target="/mnt/guestprep")
        for h in logger.handlers:
            h.flush()
        recs = [json.loads(ln) for ln in log_file.read_text(encoding="utf-8").splitlines()]
        step = next(r for r in recs if "Mount guest root" in r["msg"])
        assert step["ctx"] == {"target": "/mnt/guestprep"}
        assert step["level"] == "INFO"

    def test_bound_context_merges(self, tmp_path, fresh_name):
        log_file = tmp_path / "guestprep.ndjson"
        logger = Log.setup(0, str(log_file), logger_name=fresh_name, json_logs=True)
        log = Log.bind(Log.bind(logger, target="/mnt/guestprep"), mountpoint="/boot")
        log.info("mounted", extra={"ctx": {"fs": "ext4"}})
        for h in logger.handlers:
            h.flush()
        recs = [json.loads(ln) for ln in log_file.read_text(encoding="utf-8").splitlines()]
        rec = next(r for r in recs if r["msg"] == "mounted")
        assert rec["ctx"] == {"target": "/mnt/guestprep", "mountpoint": "/boot", "fs": "ext4"}

    def test_levels(self, fresh_name):
        assert Log.setup(3, logger_name=fresh_name).level == TRACE
        assert Log.setup(2, logger_name=fresh_name).level == logging.DEBUG
        assert Log.setup(0, quiet=1, logger_name=fresh_name).level == logging.WARNING


@pytest.mark.unit
class TestLogStep:
    def test_success(self, logger):
        with log_step(logger, "Rebuild ramdisk image"):
            pass
        msgs = logger.messages("info")
        assert msgs[0].startswith("➡️  Rebuild ramdisk image")
        assert msgs[-1].startswith("✅ Rebuild ramdisk image done")

    def test_failure_reraised(self, logger):
        with pytest.raises(ValueError):
            with log_step(logger, "Reconfigure bootloader"):
                raise ValueError("grub-mkconfig rc=1")
        assert "grub-mkconfig rc=1" in logger.messages("error")[0]
