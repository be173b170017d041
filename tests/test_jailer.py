import io
import os
import sys
from types import SimpleNamespace

import pytest

from firecracker_sdk import jailer
from firecracker_sdk.drives import Drive
from firecracker_sdk.handlers import (
    CREATE_LOG_FILES_HANDLER_NAME,
    DEFAULT_FC_INIT_HANDLER_LIST,
    LINK_FILES_TO_ROOTFS_HANDLER_NAME,
    Handler,
    HandlerList,
    Handlers,
)
from firecracker_sdk.jailer import (
    JailerCommandBuilder,
    JailerConfig,
    MissingJailerConfigError,
    NaiveChrootStrategy,
    RequiredHandlerMissingError,
    get_numa_cpuset,
    link_files_handler,
)


@pytest.fixture
def numa(tmp_path, monkeypatch):
    node_dir = tmp_path / "node0"
    node_dir.mkdir()
    (node_dir / "cpulist").write_text("0-3\n")
    monkeypatch.setattr(jailer, "NUMA_CPULIST_PATH", str(tmp_path / "node{node}" / "cpulist"))
    return tmp_path


CGROUP = ["--cgroup", "cpuset.mems=0", "--cgroup", "cpuset.cpus=0-3"]
REQUIRED = [
    "--id", "my-test-id", "--uid", "123", "--gid", "100",
    "--exec-file", "/path/to/firecracker",
]


def _cfg(**kwargs):
    base = dict(
        id="my-test-id",
        uid=123,
        gid=100,
        numa_node=0,
        chroot_strategy=NaiveChrootStrategy("kernel-image-path"),
        exec_file="/path/to/firecracker",
    )
    base.update(kwargs)
    return JailerConfig(**base)


BUILDER_CASES = [
    ("required fields", _cfg(), "", ["jailer", *REQUIRED, *CGROUP]),
    ("other jailer binary name", _cfg(jailer_binary="imprisoner"), "",
     ["imprisoner", *REQUIRED, *CGROUP]),
    ("optional fields", _cfg(chroot_base_dir="/tmp", jailer_binary="/path/to/the/jailer"),
     "/path/to/netns",
     ["/path/to/the/jailer", *REQUIRED, *CGROUP, "--chroot-base-dir", "/tmp",
      "--netns", "/path/to/netns"]),
]


@pytest.mark.parametrize("name,cfg,netns,expected", BUILDER_CASES, ids=[c[0] for c in BUILDER_CASES])
def test_jailer_builder(numa, name, cfg, netns, expected):
    b = (
        JailerCommandBuilder()
        .with_id(cfg.id)
        .with_uid(cfg.uid)
        .with_gid(cfg.gid)
        .with_numa_node(cfg.numa_node)
        .with_exec_file(cfg.exec_file)
    )
    if cfg.jailer_binary:
        b = b.with_bin(cfg.jailer_binary)
    if cfg.chroot_base_dir:
        b = b.with_chroot_base_dir(cfg.chroot_base_dir)
    if netns:
        b = b.with_net_ns(netns)
    assert b.build().args == expected


def test_builder_without_numa_info_omits_cgroup(tmp_path, monkeypatch):
    monkeypatch.setattr(jailer, "NUMA_CPULIST_PATH", str(tmp_path / "missing{node}"))
    b = JailerCommandBuilder().with_id("x").with_exec_file("/fc")
    assert b.args() == ["--id", "x", "--uid", "0", "--gid", "0", "--exec-file", "/fc"]


def test_builder_daemonize_and_firecracker_args(tmp_path, monkeypatch):
    monkeypatch.setattr(jailer, "NUMA_CPULIST_PATH", str(tmp_path / "missing{node}"))
    b = (
        JailerCommandBuilder()
        .with_id("x")
        .with_exec_file("/fc")
        .with_daemonize(True)
        .with_firecracker_args("--a", "b")
    )
    assert b.args()[-4:] == ["--daemonize", "--", "--a", "b"]


def test_builder_is_immutable():
    b = JailerCommandBuilder()
    b.with_id("changed").with_bin("other")
    assert b.id == ""
    assert b.bin == "jailer"


def test_builder_passes_streams():
    out, err, inp = io.StringIO(), io.StringIO(), io.StringIO()
    cmd = JailerCommandBuilder().with_stdout(out).with_stderr(err).with_stdin(inp).build()
    assert cmd.stdout is out
    assert cmd.stderr is err
    assert cmd.stdin is inp


def test_get_numa_cpuset_trims_newline(numa):
    assert get_numa_cpuset(0) == "0-3"
    assert get_numa_cpuset(7) == ""


JAIL_TAIL = ["--", "--no-seccomp", "--api-sock"]
JAIL_CASES = [
    ("required fields", _cfg(), "", "",
     ["jailer", *REQUIRED, *CGROUP, *JAIL_TAIL, "/run/firecracker.socket"],
     "/srv/jailer/firecracker/my-test-id/root/run/firecracker.socket"),
    ("other jailer binary name", _cfg(jailer_binary="imprisoner"), "", "",
     ["imprisoner", *REQUIRED, *CGROUP, *JAIL_TAIL, "/run/firecracker.socket"],
     "/srv/jailer/firecracker/my-test-id/root/run/firecracker.socket"),
    ("optional fields", _cfg(chroot_base_dir="/tmp", jailer_binary="/path/to/the/jailer"),
     "/path/to/netns", "",
     ["/path/to/the/jailer", *REQUIRED, *CGROUP, "--chroot-base-dir", "/tmp",
      "--netns", "/path/to/netns", *JAIL_TAIL, "/run/firecracker.socket"],
     "/tmp/firecracker/my-test-id/root/run/firecracker.socket"),
    ("custom socket path", _cfg(), "", "api.sock",
     ["jailer", *REQUIRED, *CGROUP, *JAIL_TAIL, "api.sock"],
     "/srv/jailer/firecracker/my-test-id/root/api.sock"),
]


@pytest.mark.parametrize(
    "name,jcfg,netns,socket_path,expected_args,expected_sock",
    JAIL_CASES,
    ids=[c[0] for c in JAIL_CASES],
)
def test_jail(numa, name, jcfg, netns, socket_path, expected_args, expected_sock):
    machine = SimpleNamespace(cmd=None, handlers=Handlers(fc_init=DEFAULT_FC_INIT_HANDLER_LIST))
    cfg = SimpleNamespace(vm_id="vmid", jailer_cfg=jcfg, net_ns=netns, socket_path=socket_path)
    jailer._jail(machine, cfg, ["--no-seccomp"])

    assert machine.cmd.args == expected_args
    assert cfg.socket_path == expected_sock
    assert machine.handlers.fc_init.has(LINK_FILES_TO_ROOTFS_HANDLER_NAME)
    assert machine.cmd.stdout is sys.stdout
    assert machine.cmd.stderr is sys.stderr


def test_adapt_handlers_places_link_after_log_files():
    handlers = Handlers(fc_init=DEFAULT_FC_INIT_HANDLER_LIST)
    NaiveChrootStrategy("/some/vmlinux").adapt_handlers(handlers)
    names = [h.name for h in handlers.fc_init]
    idx = names.index(CREATE_LOG_FILES_HANDLER_NAME)
    assert names[idx + 1] == LINK_FILES_TO_ROOTFS_HANDLER_NAME
    assert len(handlers.fc_init) == len(DEFAULT_FC_INIT_HANDLER_LIST) + 1


def test_adapt_handlers_requires_log_files_handler():
    handlers = Handlers(fc_init=HandlerList().append(Handler("other")))
    with pytest.raises(RequiredHandlerMissingError):
        NaiveChrootStrategy("vmlinux").adapt_handlers(handlers)


def test_link_files_handler_without_jailer_config():
    machine = SimpleNamespace(cfg=SimpleNamespace(jailer_cfg=None))
    with pytest.raises(MissingJailerConfigError):
        link_files_handler("vmlinux").fn(machine)


def test_link_files_handler_links_everything(tmp_path):
    src = tmp_path / "src"
    src.mkdir()
    for name in ("kernel.bin", "initrd.img", "root.ext4", "fc.log"):
        (src / name).write_text(name)
    rootfs = tmp_path / "base" / "firecracker" / "vm1" / "root"
    rootfs.mkdir(parents=True)

    drive = Drive(drive_id="root_drive", path_on_host=str(src / "root.ext4"))
    cfg = SimpleNamespace(
        jailer_cfg=JailerConfig(
            id="vm1",
            uid=os.getuid(),
            gid=os.getgid(),
            exec_file="/usr/bin/firecracker",
            chroot_base_dir=str(tmp_path / "base"),
        ),
        kernel_image_path=str(src / "kernel.bin"),
        initrd_path=str(src / "initrd.img"),
        drives=[drive],
        log_fifo=str(src / "fc.log"),
        metrics_fifo="",
    )
    link_files_handler("vmlinux").fn(SimpleNamespace(cfg=cfg))

    assert os.path.samefile(rootfs / "vmlinux", src / "kernel.bin")
    assert os.path.samefile(rootfs / "initrd.img", src / "initrd.img")
    assert os.path.samefile(rootfs / "root.ext4", src / "root.ext4")
    assert os.path.samefile(rootfs / "fc.log", src / "fc.log")
    assert cfg.kernel_image_path == "vmlinux"
    assert cfg.initrd_path == "initrd.img"
    assert drive.path_on_host == "root.ext4"
    assert cfg.log_fifo == "fc.log"
    assert cfg.metrics_fifo == ""