"""Running the VMM inside the jailer and preparing its chroot."""

from __future__ import annotations

import dataclasses
import os
import posixpath
import sys
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from firecracker_sdk.command_builder import Command
from firecracker_sdk.handlers import (
    CREATE_LOG_FILES_HANDLER_NAME,
    LINK_FILES_TO_ROOTFS_HANDLER_NAME,
    Handler,
    Handlers,
    HandlersAdapter,
)

# Chroot base directory the jailer uses when none is given.
DEFAULT_JAILER_PATH = "/srv/jailer"
DEFAULT_JAILER_BIN = "jailer"
ROOTFS_FOLDER_NAME = "root"
DEFAULT_SOCKET_PATH = "/run/firecracker.socket"

NUMA_CPULIST_PATH = "/sys/devices/system/node/node{node}/cpulist"


class MissingJailerConfigError(ValueError):
    """Jailer logic was entered without a jailer configuration."""

    def __init__(self) -> None:
        super().__init__("jailer config was not set for use")


class RequiredHandlerMissingError(LookupError):
    """A handler that must be present is missing from the init list."""

    def __init__(self) -> None:
        super().__init__("required handler is missing from FcInit's list")


@dataclass
class JailerConfig:
    """Settings needed to run the VMM under the jailer."""

    gid: Optional[int] = None
    uid: Optional[int] = None
    id: str = ""
    numa_node: Optional[int] = None
    exec_file: str = ""
    jailer_binary: str = ""
    chroot_base_dir: str = ""
    daemonize: bool = False
    chroot_strategy: Optional[HandlersAdapter] = None
    stdout: Any = None
    stderr: Any = None
    stdin: Any = None


def get_numa_cpuset(node: int) -> str:
    """The CPU list assigned to a NUMA node, or "" if it cannot be read."""
    try:
        with open(NUMA_CPULIST_PATH.format(node=node), encoding="utf-8") as handle:
            cpus = handle.read()
    except OSError:
        return ""
    return cpus[:-1] if cpus.endswith("\n") else cpus


@dataclass(frozen=True)
class JailerCommandBuilder:
    """Immutable builder for the jailer command line."""

    binary: str = DEFAULT_JAILER_BIN
    id: str = ""
    uid: int = 0
    gid: int = 0
    exec_file: str = ""
    node: int = 0
    chroot_base_dir: str = ""
    net_ns: str = ""
    daemonize: bool = False
    firecracker_args: tuple[str, ...] = ()
    stdin: Any = None
    stdout: Any = None
    stderr: Any = None

    @property
    def bin(self) -> str:
        return self.binary

    def with_bin(self, bin: str) -> "JailerCommandBuilder":
        return dataclasses.replace(self, binary=bin)

    def with_id(self, id: str) -> "JailerCommandBuilder":
        return dataclasses.replace(self, id=id)

    def with_uid(self, uid: int) -> "JailerCommandBuilder":
        return dataclasses.replace(self, uid=uid)

    def with_gid(self, gid: int) -> "JailerCommandBuilder":
        return dataclasses.replace(self, gid=gid)

    def with_exec_file(self, path: str) -> "JailerCommandBuilder":
        return dataclasses.replace(self, exec_file=path)

    def with_numa_node(self, node: int) -> "JailerCommandBuilder":
        return dataclasses.replace(self, node=node)

    def with_chroot_base_dir(self, path: str) -> "JailerCommandBuilder":
        return dataclasses.replace(self, chroot_base_dir=path)

    def with_net_ns(self, path: str) -> "JailerCommandBuilder":
        return dataclasses.replace(self, net_ns=path)

    def with_daemonize(self, daemonize: bool) -> "JailerCommandBuilder":
        return dataclasses.replace(self, daemonize=daemonize)

    def with_stdin(self, stdin: Any) -> "JailerCommandBuilder":
        return dataclasses.replace(self, stdin=stdin)

    def with_stdout(self, stdout: Any) -> "JailerCommandBuilder":
        return dataclasses.replace(self, stdout=stdout)

    def with_stderr(self, stderr: Any) -> "JailerCommandBuilder":
        return dataclasses.replace(self, stderr=stderr)

    def with_firecracker_args(self, *args: str) -> "JailerCommandBuilder":
        """Arguments passed through the jailer to the VMM, after ``--``."""
        return dataclasses.replace(self, firecracker_args=tuple(args))

    def args(self) -> list[str]:
        """The jailer's arguments, without the binary."""
        result = [
            "--id", self.id,
            "--uid", str(self.uid),
            "--gid", str(self.gid),
            "--exec-file", self.exec_file,
        ]
        cpulist = get_numa_cpuset(self.node)
        if cpulist:
            result += ["--cgroup", f"cpuset.mems={self.node}"]
            result += ["--cgroup", f"cpuset.cpus={cpulist}"]
        if self.chroot_base_dir:
            result += ["--chroot-base-dir", self.chroot_base_dir]
        if self.net_ns:
            result += ["--netns", self.net_ns]
        if self.daemonize:
            result.append("--daemonize")
        if self.firecracker_args:
            result.append("--")
            result.extend(self.firecracker_args)
        return result

    def build(self) -> Command:
        return Command(
            args=[self.bin, *self.args()],
            stdin=self.stdin,
            stdout=self.stdout,
            stderr=self.stderr,
        )


def _join_under(base: str, path: str) -> str:
    return posixpath.normpath(posixpath.join(base, path.lstrip("/")))


def _jail(machine: Any, cfg: Any, firecracker_args: Sequence[str] = ()) -> None:
    """Prepare ``machine`` to start the VMM through the jailer.

    Sets ``machine.cmd``, rewrites ``cfg.socket_path`` to its location on the
    host and lets the chroot strategy adapt ``machine.handlers``.
    ``firecracker_args`` precede the ``--api-sock`` argument given to the VMM.
    """
    jailer_cfg = cfg.jailer_cfg
    workspace = posixpath.join(
        jailer_cfg.chroot_base_dir or DEFAULT_JAILER_PATH,
        posixpath.basename(jailer_cfg.exec_file),
        jailer_cfg.id,
        ROOTFS_FOLDER_NAME,
    )
    machine_socket_path = cfg.socket_path or DEFAULT_SOCKET_PATH
    cfg.socket_path = _join_under(workspace, machine_socket_path)

    stdout = jailer_cfg.stdout if jailer_cfg.stdout is not None else sys.stdout
    stderr = jailer_cfg.stderr if jailer_cfg.stderr is not None else sys.stderr

    fc_args = [*firecracker_args, "--api-sock", machine_socket_path]

    builder = (
        JailerCommandBuilder()
        .with_id(jailer_cfg.id)
        .with_uid(jailer_cfg.uid)
        .with_gid(jailer_cfg.gid)
        .with_numa_node(jailer_cfg.numa_node)
        .with_exec_file(jailer_cfg.exec_file)
        .with_chroot_base_dir(jailer_cfg.chroot_base_dir)
        .with_daemonize(jailer_cfg.daemonize)
        .with_firecracker_args(*fc_args)
        .with_stdout(stdout)
        .with_stderr(stderr)
    )
    if jailer_cfg.jailer_binary:
        builder = builder.with_bin(jailer_cfg.jailer_binary)
    if getattr(cfg, "net_ns", ""):
        builder = builder.with_net_ns(cfg.net_ns)
    if jailer_cfg.stdin is not None:
        builder = builder.with_stdin(jailer_cfg.stdin)

    machine.cmd = builder.build()
    jailer_cfg.chroot_strategy.adapt_handlers(machine.handlers)


def link_files_handler(kernel_image_file_name: str) -> Handler:
    """A handler that hard-links the kernel, initrd, drives and fifos into the chroot."""

    def link_files(machine: Any) -> None:
        cfg = machine.cfg
        jailer_cfg = getattr(cfg, "jailer_cfg", None)
        if jailer_cfg is None:
            raise MissingJailerConfigError()

        rootfs = os.path.join(
            jailer_cfg.chroot_base_dir,
            os.path.basename(jailer_cfg.exec_file),
            jailer_cfg.id,
            ROOTFS_FOLDER_NAME,
        )

        os.link(cfg.kernel_image_path, os.path.join(rootfs, kernel_image_file_name))

        initrd_file_name = ""
        if cfg.initrd_path:
            initrd_file_name = os.path.basename(cfg.initrd_path)
            os.link(cfg.initrd_path, os.path.join(rootfs, initrd_file_name))

        for drive in cfg.drives or ():
            host_path = drive.path_on_host or ""
            drive_file_name = os.path.basename(host_path)
            os.link(host_path, os.path.join(rootfs, drive_file_name))
            drive.path_on_host = drive_file_name

        cfg.kernel_image_path = kernel_image_file_name
        if cfg.initrd_path:
            cfg.initrd_path = initrd_file_name

        for attr in ("log_fifo", "metrics_fifo"):
            fifo_path = getattr(cfg, attr, "")
            if not fifo_path:
                continue
            file_name = os.path.basename(fifo_path)
            target = os.path.join(rootfs, file_name)
            os.link(fifo_path, target)
            os.chown(target, jailer_cfg.uid, jailer_cfg.gid)
            # the jailed VMM sees paths relative to its chroot
            setattr(cfg, attr, file_name)

    return Handler(LINK_FILES_TO_ROOTFS_HANDLER_NAME, link_files)


@dataclass(frozen=True)
class NaiveChrootStrategy(HandlersAdapter):
    """Hard-links every needed file into the chroot."""

    kernel_image_path: str = ""
    rootfs: str = ""

    def adapt_handlers(self, handlers: Handlers) -> None:
        """Insert the link-files handler after the log-files handler."""
        if not handlers.fc_init.has(CREATE_LOG_FILES_HANDLER_NAME):
            raise RequiredHandlerMissingError()
        handlers.fc_init = handlers.fc_init.append_after(
            CREATE_LOG_FILES_HANDLER_NAME,
            link_files_handler(os.path.basename(self.kernel_image_path)),
        )