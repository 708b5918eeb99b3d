# SPDX-License-Identifier: LGPL-3.0-or-later
"""End-to-end pipeline runs over a fake guest tree and a fake mount table."""
from __future__ import annotations

import json
import re

import pytest
from fakes.fake_runner import FakeRunner

from guestprep.config.settings import PrepSettings
from guestprep.core.exceptions import ExitCode, LockError, NotFoundError, NotPrivilegedError
from guestprep.core.lock import RunLock
from guestprep.orchestrator.pipeline import PrepPipeline

KVER = "6.1.0-13-amd64"


def _tool(root, name):
    p = root / "usr/sbin" / name
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text("#!/bin/sh\n", encoding="utf-8")
    p.chmod(0o755)


def _grub_hook(root, _cmd):
    text = (root / "etc/default/grub").read_text(encoding="utf-8")
    m = re.search(r'^GRUB_CMDLINE_LINUX="(.*)"', text, re.M)
    out = root / "boot/grub/grub.cfg"
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(f"linux /vmlinuz {m.group(1)}\n", encoding="utf-8")


def _initrd_hook(root, _cmd):
    (root / "boot" / f"initrd.img-{KVER}").write_bytes(b"new ramdisk")


@pytest.fixture
def guest(target):
    (target / "etc/default").mkdir(parents=True)
    (target / "etc/fstab").write_text(
        "UUID=root / ext4 defaults 0 1\nUUID=abc /data xfs defaults 0 2\n/dev/vda3 none swap sw 0 0\n",
        encoding="utf-8",
    )
    (target / "etc/default/grub").write_text('GRUB_CMDLINE_LINUX="rhgb quiet"\n', encoding="utf-8")
    (target / "boot").mkdir()
    (target / "boot" / f"initrd.img-{KVER}").write_bytes(b"old ramdisk")
    _tool(target, "update-initramfs")
    _tool(target, "update-grub")
    return target


@pytest.fixture
def root_dev(tmp_path):
    dev = tmp_path / "vdb2"
    dev.write_bytes(b"")
    return str(dev)


@pytest.fixture
def hooked_runner(runner):
    runner.chroot_hooks["update-grub"] = _grub_hook
    runner.chroot_hooks["update-initramfs"] = _initrd_hook
    return runner


def _settings(target, mounts_file, root_dev, **kw):
    return PrepSettings(
        target_root=target,
        mounts_file=mounts_file,
        root_device=root_dev,
        kernel_version=KVER,
        **kw,
    )


def _pipeline(logger, settings, runner, privileged=True):
    def check(_logger):
        if not privileged:
            raise NotPrivilegedError(msg="need root", context={"euid": 1000})

    return PrepPipeline(logger, settings, runner=runner, privilege_check=check)


@pytest.mark.unit
class TestPrepare:
    def test_full_prepare(self, logger, hooked_runner, mounts_file, guest, root_dev, tmp_path):
        report_path = tmp_path / "report.json"
        s = _settings(guest, mounts_file, root_dev, report=report_path)

        rc = _pipeline(logger, s, hooked_runner).run()

        assert rc == ExitCode.OK
        data = json.loads(report_path.read_text(encoding="utf-8"))
        assert data["root"]["outcome"] == "mounted"
        assert [r["entry"]["target"] for r in data["mounts"]["results"]] == ["/data"]
        assert data["rebuild"]["backup"].endswith(f"initrd.img-{KVER}.bak")
        assert data["bootloader"]["state"] == "regenerated"
        assert data["exit_code"] == 0
        assert data["error"] is None

        assert (guest / "boot" / f"initrd.img-{KVER}.bak").read_bytes() == b"old ramdisk"
        assert "console=ttyS0,115200" in (guest / "etc/default/grub").read_text(encoding="utf-8")

    def test_step_order(self, logger, hooked_runner, mounts_file, guest, root_dev):
        _pipeline(logger, _settings(guest, mounts_file, root_dev), hooked_runner).run()
        mounts = [c for c in hooked_runner.calls if c[0] == "mount" and "--bind" not in c]
        assert [c[-1] for c in mounts] == [str(guest), str(guest / "data")]
        assert [c[0] for c in hooked_runner.chroot_calls] == ["update-initramfs", "update-grub"]

    def test_second_prepare_is_idempotent(self, logger, hooked_runner, mounts_file, guest, root_dev):
        s = _settings(guest, mounts_file, root_dev)
        _pipeline(logger, s, hooked_runner).run()
        p = _pipeline(logger, s, hooked_runner)
        assert p.run() == ExitCode.OK

        assert p.report.root_outcome == "already_mounted"
        assert [r.outcome.value for r in p.report.mounts.results] == ["already_mounted"]
        text = (guest / "etc/default/grub").read_text(encoding="utf-8")
        assert text.count("console=ttyS0") == 1
        assert p.report.bootloader.injected is False

    def test_partial_mounts_lenient_by_default(self, logger, hooked_runner, mounts_file, guest, root_dev):
        hooked_runner.fail_mount.add(str(guest / "data"))
        p = _pipeline(logger, _settings(guest, mounts_file, root_dev), hooked_runner)
        assert p.run() == ExitCode.OK
        assert not p.report.mounts.ok
        assert p.report.bootloader.state.value == "regenerated"

    def test_partial_mounts_strict(self, logger, hooked_runner, mounts_file, guest, root_dev):
        hooked_runner.fail_mount.add(str(guest / "data"))
        p = _pipeline(logger, _settings(guest, mounts_file, root_dev, strict_mounts=True), hooked_runner)
        assert p.run() == ExitCode.PARTIAL_MOUNTS
        # boot steps still ran
        assert p.report.rebuild is not None

    def test_missing_fstab_is_fatal(self, logger, hooked_runner, mounts_file, guest, root_dev, tmp_path):
        (guest / "etc/fstab").unlink()
        report_path = tmp_path / "report.json"
        p = _pipeline(logger, _settings(guest, mounts_file, root_dev, report=report_path), hooked_runner)

        with pytest.raises(NotFoundError):
            p.run()

        data = json.loads(report_path.read_text(encoding="utf-8"))
        assert data["exit_code"] == ExitCode.NOT_FOUND
        assert data["error"]["type"] == "NotFoundError"
        assert hooked_runner.chroot_calls == []

    def test_skip_flags(self, logger, hooked_runner, mounts_file, guest, root_dev):
        s = _settings(guest, mounts_file, root_dev, skip_initramfs=True, skip_bootloader=True)
        _pipeline(logger, s, hooked_runner).run()
        assert hooked_runner.chroot_calls == []


@pytest.mark.unit
class TestCommands:
    def test_unprivileged_does_nothing(self, logger, hooked_runner, mounts_file, guest, root_dev):
        p = _pipeline(logger, _settings(guest, mounts_file, root_dev), hooked_runner, privileged=False)
        with pytest.raises(NotPrivilegedError) as ei:
            p.run()
        assert ei.value.code == ExitCode.NOT_PRIVILEGED
        assert hooked_runner.calls == []

    def test_mount_root_only(self, logger, hooked_runner, mounts_file, guest, root_dev):
        s = _settings(guest, mounts_file, root_dev, cmd="mount-root")
        _pipeline(logger, s, hooked_runner).run()
        assert [c[-1] for c in hooked_runner.mount_calls()] == [str(guest)]

    def test_release_binds(self, logger, hooked_runner, mounts_file, guest, root_dev):
        for name in ("dev", "proc", "sys"):
            hooked_runner.add_mount(f"/{name}", guest / name, "none")
        s = _settings(guest, mounts_file, root_dev, cmd="release-binds")
        p = _pipeline(logger, s, hooked_runner)
        assert p.run() == ExitCode.OK
        assert p.report.released_leftovers == []
        assert p.table.mounts_under(guest) == []

    def test_restore_bootloader(self, logger, hooked_runner, mounts_file, guest, root_dev):
        original = (guest / "etc/default/grub").read_text(encoding="utf-8")
        _pipeline(logger, _settings(guest, mounts_file, root_dev, cmd="reconfigure-bootloader"), hooked_runner).run()
        _pipeline(logger, _settings(guest, mounts_file, root_dev, cmd="restore-bootloader"), hooked_runner).run()
        assert (guest / "etc/default/grub").read_text(encoding="utf-8") == original

    def test_lock_held(self, logger, hooked_runner, mounts_file, guest, root_dev, tmp_path):
        lock_path = tmp_path / "guestprep.lock"
        s = _settings(guest, mounts_file, root_dev, lock_file=lock_path)
        with RunLock(logger, lock_path):
            with pytest.raises(LockError) as ei:
                _pipeline(logger, s, hooked_runner).run()
        assert ei.value.code == ExitCode.LOCK
        assert hooked_runner.calls == []

    def test_dry_run_prepare(self, logger, mounts_file, guest, root_dev):
        runner = FakeRunner(mounts_file, dry_run=True)
        before = (guest / "etc/default/grub").read_bytes()
        rc = _pipeline(logger, _settings(guest, mounts_file, root_dev, dry_run=True), runner).run()
        assert rc == ExitCode.OK
        assert (guest / "etc/default/grub").read_bytes() == before
        assert runner.chroot_calls == []
        assert not (guest / "boot" / f"initrd.img-{KVER}.bak").exists()
