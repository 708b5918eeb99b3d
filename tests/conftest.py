# SPDX-License-Identifier: LGPL-3.0-or-later
import os
import sys
from pathlib import Path

import pytest

_THIS_DIR = Path(__file__).resolve().parent
_REPO_ROOT = _THIS_DIR.parent

if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))
if str(_THIS_DIR) not in sys.path:
    sys.path.insert(0, str(_THIS_DIR))

os.environ.setdefault("PYTHONPATH", str(_REPO_ROOT))

from fakes.fake_logger import FakeLogger  # noqa: E402
from fakes.fake_runner import FakeRunner  # noqa: E402


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests with no host side effects")


@pytest.fixture
def logger():
    return FakeLogger()


@pytest.fixture
def mounts_file(tmp_path):
    p = tmp_path / "mounts"
    p.write_text("/dev/vda1 / ext4 rw,relatime 0 0\nproc /proc proc rw 0 0\n", encoding="utf-8")
    return p


@pytest.fixture
def runner(mounts_file):
    return FakeRunner(mounts_file)


@pytest.fixture
def target(tmp_path):
    t = tmp_path / "target"
    t.mkdir()
    return Path(os.path.realpath(t))
