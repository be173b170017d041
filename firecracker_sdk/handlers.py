"""Named, ordered steps that validate and initialise a microVM.

A handler's function receives the machine being set up. The machine must
provide ``cfg`` (its configuration), ``logger`` and ``cleanup_funcs``, and
the operations the built-in handlers call, such as ``start_vmm()`` or
``attach_drives(*drives)``.
"""

from __future__ import annotations

import abc
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Optional

_log = logging.getLogger(__name__)

START_VMM_HANDLER_NAME = "fcinit.StartVMM"
BOOTSTRAP_LOGGING_HANDLER_NAME = "fcinit.BootstrapLogging"
CREATE_LOG_FILES_HANDLER_NAME = "fcinit.CreateLogFilesHandler"
CREATE_MACHINE_HANDLER_NAME = "fcinit.CreateMachine"
CREATE_BOOT_SOURCE_HANDLER_NAME = "fcinit.CreateBootSource"
ATTACH_DRIVES_HANDLER_NAME = "fcinit.AttachDrives"
CREATE_NETWORK_INTERFACES_HANDLER_NAME = "fcinit.CreateNetworkInterfaces"
ADD_VSOCKS_HANDLER_NAME = "fcinit.AddVsocks"
SET_METADATA_HANDLER_NAME = "fcinit.SetMetadata"
CONFIG_MMDS_HANDLER_NAME = "fcinit.ConfigMmds"
LINK_FILES_TO_ROOTFS_HANDLER_NAME = "fcinit.LinkFilesToRootFS"
SETUP_NETWORK_HANDLER_NAME = "fcinit.SetupNetwork"
SETUP_KERNEL_ARGS_HANDLER_NAME = "fcinit.SetupKernelArgs"
CREATE_BALLOON_HANDLER_NAME = "fcint.CreateBalloon"

VALIDATE_CFG_HANDLER_NAME = "validate.Cfg"
VALIDATE_JAILER_CFG_HANDLER_NAME = "validate.JailerCfg"
VALIDATE_NETWORK_CFG_HANDLER_NAME = "validate.NetworkCfg"

HandlerFn = Callable[[Any], None]


def _logger_for(machine: Any) -> Any:
    return getattr(machine, "logger", None) or _log


@dataclass(frozen=True)
class Handler:
    """A named step run against a machine during initialisation."""

    name: str
    fn: Optional[HandlerFn] = None


class HandlersAdapter(abc.ABC):
    """Something that rewrites a set of handlers in place."""

    @abc.abstractmethod
    def adapt_handlers(self, handlers: "Handlers") -> None:
        """Modify ``handlers``; raise if that is not possible."""


@dataclass(frozen=True)
class HandlerList:
    """Immutable ordered list of handlers; every change returns a new list."""

    handlers: tuple[Handler, ...] = ()

    def prepend(self, *handlers: Handler) -> "HandlerList":
        return HandlerList(tuple(handlers) + self.handlers)

    def append(self, *handlers: Handler) -> "HandlerList":
        return HandlerList(self.handlers + tuple(handlers))

    def append_after(self, name: str, handler: Handler) -> "HandlerList":
        """Insert ``handler`` after every handler called ``name``."""
        result: list[Handler] = []
        for existing in self.handlers:
            result.append(existing)
            if existing.name == name:
                result.append(handler)
        return HandlerList(tuple(result))

    def __len__(self) -> int:
        return len(self.handlers)

    def __iter__(self) -> Iterator[Handler]:
        return iter(self.handlers)

    def __getitem__(self, index: int) -> Handler:
        return self.handlers[index]

    def has(self, name: str) -> bool:
        return any(h.name == name for h in self.handlers)

    def swap(self, handler: Handler) -> "HandlerList":
        """Replace every handler with the same name as ``handler``."""
        return HandlerList(tuple(handler if h.name == handler.name else h for h in self.handlers))

    def swappend(self, handler: Handler) -> "HandlerList":
        """Swap if a handler of that name exists, append otherwise."""
        if self.has(handler.name):
            return self.swap(handler)
        return self.append(handler)

    def remove(self, name: str) -> "HandlerList":
        return HandlerList(tuple(h for h in self.handlers if h.name != name))

    def clear(self) -> "HandlerList":
        return HandlerList()

    def run(self, machine: Any) -> None:
        """Run each handler in order, stopping at the first that raises."""
        logger = _logger_for(machine)
        for handler in self.handlers:
            logger.debug("Running handler %s", handler.name)
            try:
                if handler.fn is not None:
                    handler.fn(machine)
            except Exception as err:
                logger.warning("Failed handler %r: %s", handler.name, err)
                raise


@dataclass
class Handlers:
    """The validation and initialisation handler lists of a machine."""

    validation: HandlerList = field(default_factory=HandlerList)
    fc_init: HandlerList = field(default_factory=HandlerList)

    def run(self, machine: Any) -> None:
        """Run validation (unless disabled) followed by initialisation."""
        combined = HandlerList()
        if not getattr(machine.cfg, "disable_validation", False):
            combined = combined.append(*self.validation)
        combined = combined.append(*self.fc_init)
        combined.run(machine)


def _validate_cfg(machine: Any) -> None:
    machine.cfg.validate()


def _validate_jailer_cfg(machine: Any) -> None:
    cfg = machine.cfg
    jailer = getattr(cfg, "jailer_cfg", None)
    if jailer is None:
        return

    has_root = bool(getattr(cfg, "initrd_path", "")) or any(
        bool(drive.is_root_device) for drive in (getattr(cfg, "drives", None) or ())
    )
    if not has_root:
        raise ValueError("A root drive must be present in the drive list")
    if jailer.chroot_strategy is None:
        raise ValueError("ChrootStrategy cannot be nil")
    if not jailer.exec_file:
        raise ValueError("exec file must be specified when using jailer mode")
    if not jailer.id:
        raise ValueError("id must be specified when using jailer mode")
    if jailer.gid is None:
        raise ValueError("GID must be specified when using jailer mode")
    if jailer.uid is None:
        raise ValueError("UID must be specified when using jailer mode")
    if jailer.numa_node is None:
        raise ValueError("NUMA node must be specified when using jailer mode")


def _validate_network_cfg(machine: Any) -> None:
    machine.cfg.validate_network()


def _create_fifo_or_file(machine: Any, fifo: str, path: str) -> None:
    if fifo:
        os.mkfifo(fifo, 0o700)

        def remove_fifo() -> None:
            try:
                os.remove(fifo)
            except FileNotFoundError:
                pass

        machine.cleanup_funcs.append(remove_fifo)
    elif path:
        fd = os.open(path, os.O_RDWR | os.O_CREAT | os.O_APPEND, 0o600)
        os.close(fd)


def _create_log_files(machine: Any) -> None:
    cfg = machine.cfg
    logger = _logger_for(machine)
    _create_fifo_or_file(machine, cfg.metrics_fifo, cfg.metrics_path)
    _create_fifo_or_file(machine, cfg.log_fifo, cfg.log_path)

    writer = getattr(cfg, "fifo_log_writer", None)
    if writer is not None:
        try:
            machine.capture_fifo_to_file(logger, cfg.log_fifo, writer)
        except Exception as err:  # the VM can still run without captured logs
            logger.warning("capture_fifo_to_file() returned %s. Continuing anyway.", err)

    logger.debug("Created metrics and logging fifos.")


def _bootstrap_logging(machine: Any) -> None:
    machine.setup_logging()
    machine.setup_metrics()
    _logger_for(machine).debug("setup logging: success")


CONFIG_VALIDATION_HANDLER = Handler(VALIDATE_CFG_HANDLER_NAME, _validate_cfg)
JAILER_CONFIG_VALIDATION_HANDLER = Handler(VALIDATE_JAILER_CFG_HANDLER_NAME, _validate_jailer_cfg)
NETWORK_CONFIG_VALIDATION_HANDLER = Handler(VALIDATE_NETWORK_CFG_HANDLER_NAME, _validate_network_cfg)

START_VMM_HANDLER = Handler(START_VMM_HANDLER_NAME, lambda m: m.start_vmm())
CREATE_LOG_FILES_HANDLER = Handler(CREATE_LOG_FILES_HANDLER_NAME, _create_log_files)
BOOTSTRAP_LOGGING_HANDLER = Handler(BOOTSTRAP_LOGGING_HANDLER_NAME, _bootstrap_logging)
CREATE_MACHINE_HANDLER = Handler(CREATE_MACHINE_HANDLER_NAME, lambda m: m.create_machine())
CREATE_BOOT_SOURCE_HANDLER = Handler(
    CREATE_BOOT_SOURCE_HANDLER_NAME,
    lambda m: m.create_boot_source(m.cfg.kernel_image_path, m.cfg.initrd_path, m.cfg.kernel_args),
)
ATTACH_DRIVES_HANDLER = Handler(
    ATTACH_DRIVES_HANDLER_NAME, lambda m: m.attach_drives(*(m.cfg.drives or ()))
)
CREATE_NETWORK_INTERFACES_HANDLER = Handler(
    CREATE_NETWORK_INTERFACES_HANDLER_NAME,
    lambda m: m.create_network_interfaces(*(m.cfg.network_interfaces or ())),
)
SETUP_NETWORK_HANDLER = Handler(SETUP_NETWORK_HANDLER_NAME, lambda m: m.setup_network())
SETUP_KERNEL_ARGS_HANDLER = Handler(SETUP_KERNEL_ARGS_HANDLER_NAME, lambda m: m.setup_kernel_args())
ADD_VSOCKS_HANDLER = Handler(
    ADD_VSOCKS_HANDLER_NAME, lambda m: m.add_vsocks(*(m.cfg.vsock_devices or ()))
)
CONFIG_MMDS_HANDLER = Handler(
    CONFIG_MMDS_HANDLER_NAME,
    lambda m: m.set_mmds_config(m.cfg.mmds_address, m.cfg.network_interfaces),
)


def new_set_metadata_handler(metadata: Any) -> Handler:
    """A handler that puts ``metadata`` into the VMM's metadata store."""
    return Handler(SET_METADATA_HANDLER_NAME, lambda m: m.set_metadata(metadata))


def new_create_balloon_handler(
    amount_mib: int, deflate_on_oom: bool, stats_polling_interval: int
) -> Handler:
    """A handler that adds a memory balloon to the VMM."""
    return Handler(
        CREATE_BALLOON_HANDLER_NAME,
        lambda m: m.create_balloon(amount_mib, deflate_on_oom, stats_polling_interval),
    )


DEFAULT_FC_INIT_HANDLER_LIST = HandlerList().append(
    SETUP_NETWORK_HANDLER,
    SETUP_KERNEL_ARGS_HANDLER,
    START_VMM_HANDLER,
    CREATE_LOG_FILES_HANDLER,
    BOOTSTRAP_LOGGING_HANDLER,
    CREATE_MACHINE_HANDLER,
    CREATE_BOOT_SOURCE_HANDLER,
    ATTACH_DRIVES_HANDLER,
    CREATE_NETWORK_INTERFACES_HANDLER,
    ADD_VSOCKS_HANDLER,
    CONFIG_MMDS_HANDLER,
)

DEFAULT_VALIDATION_HANDLER_LIST = HandlerList().append(NETWORK_CONFIG_VALIDATION_HANDLER)


def default_handlers() -> Handlers:
    """A fresh ``Handlers`` holding the default validation and init lists."""
    return Handlers(validation=DEFAULT_VALIDATION_HANDLER_LIST, fc_init=DEFAULT_FC_INIT_HANDLER_LIST)