# SPDX-License-Identifier: LGPL-3.0-or-later
"""Bootloader reconfiguration against a fake guest tree."""
from __future__ import annotations

import re

import pytest

from guestprep.boot.bootline import BootlineConfig, count_marker
from guestprep.boot.grub import BootloaderReconfigurator, BootloaderState
from guestprep.core.exceptions import ExitCode, GenerationError, NotFoundError
from guestprep.core.file_ops import list_backups
from guestprep.mounts.mount_table import MountTable
from guestprep.mounts.resolver import MountResolver

ORIGINAL = 'GRUB_TIMEOUT=5\nGRUB_CMDLINE_LINUX="rhgb quiet"\n'


def _install_tool(target, name, subdir="usr/sbin"):
    p = target / subdir / name
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text("#!/bin/sh\n", encoding="utf-8")
    p.chmod(0o755)


def _fake_mkconfig(out_rel):
    # Renders the defaults file's command line into a grub.cfg, like grub-mkconfig would.
    def hook(root, _cmd):
        defaults = (root / "etc/default/grub").read_text(encoding="utf-8")
        m = re.search(r'^GRUB_CMDLINE_LINUX="(.*)"', defaults, re.M)
        cfg = root / out_rel
        cfg.parent.mkdir(parents=True, exist_ok=True)
        cfg.write_text(f"linux /vmlinuz root=/dev/vda1 ro {m.group(1) if m else ''}\n", encoding="utf-8")
    return hook


@pytest.fixture
def guest(target):
    (target / "etc/default").mkdir(parents=True)
    (target / "etc/default/grub").write_text(ORIGINAL, encoding="utf-8")
    _install_tool(target, "update-grub")
    return target


@pytest.fixture
def runner_with_grub(runner):
    runner.chroot_hooks["update-grub"] = _fake_mkconfig("boot/grub/grub.cfg")
    return runner


def _recon(logger, runner, mounts_file, target, **kw):
    resolver = MountResolver(logger, runner, MountTable(mounts_file))
    return BootloaderReconfigurator(logger, runner, resolver, target, kw.pop("bootline", BootlineConfig()), **kw)


@pytest.mark.unit
class TestReconfigure:
    def test_full_run(self, logger, runner_with_grub, mounts_file, guest):
        recon = _recon(logger, runner_with_grub, mounts_file, guest)
        result = recon.run()

        assert result.state is BootloaderState.REGENERATED
        assert result.injected
        assert result.generator == ["update-grub"]
        assert result.verified_in.endswith("boot/grub/grub.cfg")

        text = (guest / "etc/default/grub").read_text(encoding="utf-8")
        assert 'GRUB_CMDLINE_LINUX="console=ttyS0,115200 earlyprintk=ttyS0,115200 rootdelay=300"' in text
        assert "rhgb" not in text

        backups = list_backups(guest / "etc/default/grub")
        assert len(backups) == 1
        assert backups[0].read_text(encoding="utf-8") == ORIGINAL
        assert backups[0].name.startswith("grub.bak.guestprep.")

    def test_binds_released_after_run(self, logger, runner_with_grub, mounts_file, guest):
        recon = _recon(logger, runner_with_grub, mounts_file, guest)
        recon.run()
        assert recon.resolver.table.mounts_under(guest) == []
        assert runner_with_grub.chroot_calls == [["update-grub"]]

    def test_repeated_runs_keep_marker_once(self, logger, runner_with_grub, mounts_file, guest):
        for _ in range(3):
            _recon(logger, runner_with_grub, mounts_file, guest).run()
        text = (guest / "etc/default/grub").read_text(encoding="utf-8")
        assert count_marker(text, "console=ttyS0") == 1

    def test_marker_present_leaves_file_identical(self, logger, runner_with_grub, mounts_file, guest):
        path = guest / "etc/default/grub"
        path.write_text('GRUB_CMDLINE_LINUX="quiet console=ttyS0,115200"\n', encoding="utf-8")
        before = path.read_bytes()

        result = _recon(logger, runner_with_grub, mounts_file, guest).run()

        assert path.read_bytes() == before
        assert result.injected is False
        assert result.state is BootloaderState.REGENERATED

    def test_commented_out_marker_still_injects(self, logger, runner_with_grub, mounts_file, guest):
        defaults = guest / "etc/default/grub"
        defaults.write_text('# GRUB_CMDLINE_LINUX="console=ttyS0"\n' + ORIGINAL, encoding="utf-8")

        result = _recon(logger, runner_with_grub, mounts_file, guest).run()

        assert result.state == BootloaderState.REGENERATED
        assert result.injected
        text = defaults.read_text(encoding="utf-8")
        assert text.startswith('# GRUB_CMDLINE_LINUX="console=ttyS0"\n')
        assert count_marker(text, "console=ttyS0") == 1

    def test_missing_defaults(self, logger, runner, mounts_file, target):
        with pytest.raises(NotFoundError):
            _recon(logger, runner, mounts_file, target).run()
        assert runner.chroot_calls == []

    def test_generator_failure(self, logger, runner, mounts_file, guest):
        runner.chroot_rc["update-grub"] = 1
        recon = _recon(logger, runner, mounts_file, guest)
        with pytest.raises(GenerationError) as ei:
            recon.run()
        assert ei.value.code == ExitCode.GENERATION
        assert recon.result.state is BootloaderState.CHROOT_BOUND
        assert recon.resolver.table.mounts_under(guest) == []

    def test_generated_config_must_carry_marker(self, logger, runner, mounts_file, guest):
        # generator "succeeds" but writes nothing
        recon = _recon(logger, runner, mounts_file, guest)
        with pytest.raises(GenerationError, match="not in any generated"):
            recon.run()

    def test_bls_entry_counts(self, logger, runner, mounts_file, guest):
        def hook(root, _cmd):
            d = root / "boot/loader/entries"
            d.mkdir(parents=True, exist_ok=True)
            (d / "abc-6.1.conf").write_text("options root=UUID=x console=ttyS0,115200\n", encoding="utf-8")

        runner.chroot_hooks["update-grub"] = hook
        result = _recon(logger, runner, mounts_file, guest).run()
        assert result.verified_in.endswith("abc-6.1.conf")

    def test_no_generator_in_guest(self, logger, runner, mounts_file, guest):
        (guest / "usr/sbin/update-grub").unlink()
        with pytest.raises(GenerationError, match="No grub config generator"):
            _recon(logger, runner, mounts_file, guest).run()

    def test_generator_ladder_order(self, logger, runner, mounts_file, guest):
        (guest / "usr/sbin/update-grub").unlink()
        _install_tool(guest, "grub-mkconfig")
        _install_tool(guest, "grub2-mkconfig")
        runner.chroot_hooks["grub2-mkconfig"] = _fake_mkconfig("boot/grub2/grub.cfg")
        result = _recon(logger, runner, mounts_file, guest).run()
        assert result.generator == ["grub2-mkconfig", "-o", "/boot/grub2/grub.cfg"]

    def test_pinned_generator(self, logger, runner, mounts_file, guest):
        runner.chroot_hooks["grub-mkconfig"] = _fake_mkconfig("boot/grub/grub.cfg")
        recon = _recon(logger, runner, mounts_file, guest, grub_mkconfig=["grub-mkconfig", "-o", "/boot/grub/grub.cfg"])
        recon.run()
        assert runner.chroot_calls == [["grub-mkconfig", "-o", "/boot/grub/grub.cfg"]]

    def test_dry_run_touches_nothing(self, logger, runner, mounts_file, guest):
        runner.dry_run = True
        result = _recon(logger, runner, mounts_file, guest).run()
        assert result.state is BootloaderState.REGENERATED
        assert (guest / "etc/default/grub").read_text(encoding="utf-8") == ORIGINAL
        assert list_backups(guest / "etc/default/grub") == []


@pytest.mark.unit
class TestRestore:
    def test_restore_latest(self, logger, runner_with_grub, mounts_file, guest):
        recon = _recon(logger, runner_with_grub, mounts_file, guest)
        recon.run()
        assert (guest / "etc/default/grub").read_text(encoding="utf-8") != ORIGINAL

        bak = _recon(logger, runner_with_grub, mounts_file, guest).restore_latest_backup()

        assert (guest / "etc/default/grub").read_text(encoding="utf-8") == ORIGINAL
        assert bak.exists()

    def test_no_backup(self, logger, runner, mounts_file, guest):
        with pytest.raises(NotFoundError):
            _recon(logger, runner, mounts_file, guest).restore_latest_backup()
