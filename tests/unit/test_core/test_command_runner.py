# SPDX-License-Identifier: LGPL-3.0-or-later
import hashlib
import subprocess
import unittest
import tempfile
from pathlib import Path
from unittest.mock import patch

from fakes.fake_logger import FakeLogger

from guestprep.core.utils import CommandRunner, U


class TestCommandRunner(unittest.TestCase):
    def test_dry_run_skips_mutations(self):
        log = FakeLogger()
        r = CommandRunner(log, dry_run=True)
        with patch("guestprep.core.utils.subprocess.run") as run:
            cp = r.run(["mount", "/dev/vdb2", "/mnt/guestprep"])
        run.assert_not_called()
        self.assertEqual(cp.returncode, 0)
        self.assertTrue(any("DRY-RUN" in m for m in log.messages("info")))

    def test_dry_run_still_queries(self):
        r = CommandRunner(FakeLogger(), dry_run=True)
        with patch("guestprep.core.utils.subprocess.run") as run:
            run.return_value.returncode = 0
            r.run(["blkid", "-U", "abc"], mutating=False)
        run.assert_called_once()

    def test_missing_binary_is_rc_127(self):
        r = CommandRunner(FakeLogger())
        cp = r.run(["guestprep-no-such-binary-xyz"])
        self.assertEqual(cp.returncode, 127)

    def test_query_timeout_is_rc_124(self):
        r = CommandRunner(FakeLogger(), timeout=5)
        with patch("guestprep.core.utils.subprocess.run") as run:
            run.side_effect = subprocess.TimeoutExpired(["blkid"], 5)
            cp = r.run(["blkid", "-o", "export", "/dev/vdb2"], mutating=False)
        self.assertEqual(cp.returncode, 124)
        self.assertEqual(run.call_args.kwargs["timeout"], 5)

    def test_mutating_commands_never_time_out(self):
        r = CommandRunner(FakeLogger(), timeout=5)
        with patch("guestprep.core.utils.subprocess.run") as run:
            run.return_value.returncode = 0
            r.run(["mount", "/dev/vdb2", "/mnt/guestprep"])
        self.assertIsNone(run.call_args.kwargs["timeout"])

    def test_chroot_prefix(self):
        r = CommandRunner(FakeLogger(), dry_run=True)
        cp = r.chroot(Path("/mnt/guestprep"), ["update-grub"])
        self.assertEqual(cp.args, ["chroot", "/mnt/guestprep", "update-grub"])


class TestUtils(unittest.TestCase):
    def test_sha256_file(self):
        with tempfile.TemporaryDirectory() as td:
            p = Path(td) / "blob"
            p.write_bytes(b"guestprep" * 1000)
            self.assertEqual(U.sha256_file(p), hashlib.sha256(b"guestprep" * 1000).hexdigest())

    def test_pretty_cmd(self):
        self.assertEqual(U.pretty_cmd(["mount", "-o", "ro", "/a b"]), "mount -o ro '/a b'")

    def test_tail(self):
        self.assertEqual(U.tail("  short  "), "short")
        self.assertEqual(U.tail("x" * 10, 4), "...xxxx")


if __name__ == "__main__":
    unittest.main()
