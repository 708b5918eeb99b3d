# SPDX-License-Identifier: LGPL-3.0-or-later
from __future__ import annotations

import os
import subprocess
from pathlib import Path


def _escape(s):
    return s.replace("\\", "\\134").replace(" ", "\\040").replace("\t", "\\011")


class FakeRunner:
    '''
    Stand-in for CommandRunner that never execs anything.

    mount/umount edit a mounts file in proc format, so MountTable sees the
    effect exactly as it would see the kernel's. chroot calls are recorded and
    can run a side-effect hook (e.g. write the regenerated grub.cfg).
    '''

    def __init__(self, mounts_file, *, dry_run=False):
        self.mounts_file = Path(mounts_file)
        if not self.mounts_file.exists():
            self.mounts_file.write_text("", encoding="utf-8")
        self.dry_run = dry_run
        self.calls = []
        self.chroot_calls = []

        self.fail_mount = set()      # realpath targets whose mount exits non-zero
        self.silent_mount = set()    # realpath targets whose mount exits 0 but does nothing
        self.chroot_rc = {}          # tool name -> rc
        self.chroot_hooks = {}       # tool name -> callable(root, cmd)
        self.blkid = {}              # device -> {"UUID": ...}

    # -----------------------
    # helpers
    # -----------------------

    def mount_calls(self):
        return [c for c in self.calls if c and c[0] == "mount"]

    def add_mount(self, source, target, fs_type="ext4", options="rw"):
        target = os.path.realpath(str(target))
        with open(self.mounts_file, "a", encoding="utf-8") as f:
            f.write(f"{_escape(source)} {_escape(target)} {fs_type} {options} 0 0\n")

    def _remove_mount(self, target):
        target = _escape(os.path.realpath(str(target)))
        lines = self.mounts_file.read_text(encoding="utf-8").splitlines()
        for i in range(len(lines) - 1, -1, -1):
            fields = lines[i].split()
            if len(fields) > 1 and fields[1] == target:
                del lines[i]
                self.mounts_file.write_text("".join(l + "\n" for l in lines), encoding="utf-8")
                return True
        return False

    @staticmethod
    def _cp(cmd, rc=0, stdout="", stderr=""):
        return subprocess.CompletedProcess(cmd, rc, stdout=stdout, stderr=stderr)

    # -----------------------
    # CommandRunner interface
    # -----------------------

    def run(self, cmd, *, mutating=True):
        cmd = [str(x) for x in cmd]
        self.calls.append(cmd)
        if self.dry_run and mutating:
            return self._cp(cmd)

        prog = cmd[0]
        if prog == "mount":
            return self._mount(cmd)
        if prog == "umount":
            target = cmd[-1]
            if self._remove_mount(target):
                return self._cp(cmd)
            return self._cp(cmd, 32, stderr=f"umount: {target}: not mounted.")
        if prog == "blkid":
            return self._blkid(cmd)
        if prog == "chroot":
            return self._chroot(cmd)
        return self._cp(cmd, 127, stderr=f"{prog}: not faked")

    def chroot(self, root, cmd):
        return self.run(["chroot", str(root), *cmd])

    def _mount(self, cmd):
        source, target = cmd[-2], cmd[-1]
        real = os.path.realpath(target)
        if real in self.fail_mount:
            return self._cp(cmd, 32, stderr=f"mount: {target}: special device {source} does not exist.")
        if real in self.silent_mount:
            return self._cp(cmd)
        fs_type = "none"
        if "-t" in cmd:
            fs_type = cmd[cmd.index("-t") + 1]
        elif not ("--bind" in cmd or "--rbind" in cmd):
            fs_type = "ext4"
        self.add_mount(source, real, fs_type)
        return self._cp(cmd)

    def _blkid(self, cmd):
        if "-o" in cmd:
            ids = self.blkid.get(cmd[-1])
            if not ids:
                return self._cp(cmd, 2)
            return self._cp(cmd, stdout="".join(f"{k}={v}\n" for k, v in ids.items()))
        if "-U" in cmd:
            want = cmd[-1]
            for dev, ids in self.blkid.items():
                if ids.get("UUID") == want:
                    return self._cp(cmd, stdout=dev + "\n")
        return self._cp(cmd, 2)

    def _chroot(self, cmd):
        root, inner = cmd[1], cmd[2:]
        self.chroot_calls.append(inner)
        tool = inner[0] if inner else ""
        rc = self.chroot_rc.get(tool, 0)
        hook = self.chroot_hooks.get(tool)
        if hook is not None and rc == 0:
            hook(Path(root), inner)
        return self._cp(cmd, rc, stderr="" if rc == 0 else f"{tool}: failed")
