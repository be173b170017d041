"""Low-level link operations behind the tap redirect setup, and in-memory stand-ins."""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, TypeVar

from firecracker_sdk.cni.cniutil import LinkNotFoundError

T = TypeVar("T")


def _make_handle(major: int, minor: int) -> int:
    return ((major & 0xFFFF) << 16) | (minor & 0xFFFF)


def root_filter_handle() -> int:
    """The u32 filter handle for the root of a qdisc."""
    return _make_handle(0xFFFF, 0)


class QdiscNotFoundError(LookupError):
    """The expected ingress qdisc is not attached to the device."""

    def __init__(self, device: str = "") -> None:
        self.device = device
        super().__init__(f'did not find expected Qdisc on device "{device}"')


class FilterNotFoundError(LookupError):
    """The expected redirect filter is not attached to the device."""

    def __init__(self, device: str = "") -> None:
        self.device = device
        super().__init__(f'did not find expected filter on device "{device}"')


@dataclass
class LinkAttrs:
    """Attributes of a network device."""

    name: str = ""
    hardware_addr: str = ""
    mtu: int = 0
    index: int = 0


class NetlinkOps(abc.ABC):
    """Operations needed to set up a tap whose traffic is redirected via a u32 tc filter."""

    @abc.abstractmethod
    def create_tap(self, name: str, mtu: int, owner_uid: int, owner_gid: int) -> Any:
        """Create a single-queue tap device, set it up with ``mtu`` and return it."""

    @abc.abstractmethod
    def add_ingress_qdisc(self, link: Any) -> None:
        """Attach an ingress qdisc to ``link``."""

    @abc.abstractmethod
    def get_ingress_qdisc(self, link: Any) -> Any:
        """Return the ingress qdisc of ``link``; raise QdiscNotFoundError if absent."""

    @abc.abstractmethod
    def remove_ingress_qdisc(self, link: Any) -> None:
        """Remove the ingress qdisc of ``link``; raise QdiscNotFoundError if absent."""

    @abc.abstractmethod
    def add_redirect_filter(self, source_link: Any, target_link: Any) -> None:
        """Redirect ingress traffic of ``source_link`` to the egress of ``target_link``."""

    @abc.abstractmethod
    def get_redirect_filter(self, source_link: Any, target_link: Any) -> Any:
        """Return the redirect filter; raise FilterNotFoundError if absent."""

    @abc.abstractmethod
    def get_link(self, name: str) -> Any:
        """Return the device called ``name``; raise LinkNotFoundError if absent."""

    @abc.abstractmethod
    def remove_link(self, name: str) -> None:
        """Delete the device called ``name``; raise LinkNotFoundError if absent."""


@dataclass
class MockLink:
    """A device that only carries attributes."""

    attrs: LinkAttrs = field(default_factory=LinkAttrs)


@dataclass
class MockNetNS:
    """A network namespace that runs callbacks in the current namespace."""

    mock_path: str = ""

    @property
    def path(self) -> str:
        return self.mock_path

    def do(self, fn: Callable[[Any], T]) -> T:
        """Call ``fn`` without switching namespace and return its result."""
        return fn(None)


def _raise_if(err: Optional[BaseException]) -> None:
    if err is not None:
        raise err


def _name_of(link: Optional[MockLink]) -> Optional[str]:
    return None if link is None else link.attrs.name


@dataclass
class MockNetlinkOps(NetlinkOps):
    """NetlinkOps that touches nothing and raises only the errors it is given."""

    created_tap: Optional[MockLink] = None
    redirect_iface: Optional[MockLink] = None
    add_ingress_qdisc_err: Optional[BaseException] = None
    get_ingress_qdisc_err: Optional[BaseException] = None
    remove_ingress_qdisc_err: Optional[BaseException] = None
    remove_ingress_qdisc_calls: list = field(default_factory=list)
    add_redirect_filter_err: Optional[BaseException] = None
    get_redirect_filter_err: Optional[BaseException] = None
    create_tap_err: Optional[BaseException] = None
    remove_link_err: Optional[BaseException] = None
    remove_link_calls: list = field(default_factory=list)
    get_link_err: Optional[BaseException] = None

    def create_tap(self, name: str, mtu: int, owner_uid: int, owner_gid: int) -> Optional[MockLink]:
        _raise_if(self.create_tap_err)
        return self.created_tap

    def add_ingress_qdisc(self, link: Any) -> None:
        _raise_if(self.add_ingress_qdisc_err)

    def get_ingress_qdisc(self, link: Any) -> None:
        _raise_if(self.get_ingress_qdisc_err)
        return None

    def remove_ingress_qdisc(self, link: Any) -> None:
        self.remove_ingress_qdisc_calls.append(link)
        _raise_if(self.remove_ingress_qdisc_err)

    def add_redirect_filter(self, source_link: Any, target_link: Any) -> None:
        _raise_if(self.add_redirect_filter_err)

    def get_redirect_filter(self, source_link: Any, target_link: Any) -> None:
        _raise_if(self.get_redirect_filter_err)
        return None

    def get_link(self, name: str) -> MockLink:
        """The redirect device or the tap, matched by name."""
        _raise_if(self.get_link_err)
        if name == _name_of(self.redirect_iface):
            return self.redirect_iface  # type: ignore[return-value]
        if name == _name_of(self.created_tap):
            return self.created_tap  # type: ignore[return-value]
        raise LinkNotFoundError()

    def remove_link(self, name: str) -> None:
        _raise_if(self.remove_link_err)
        self.remove_link_calls.append(name)
        if name in (_name_of(self.redirect_iface), _name_of(self.created_tap)):
            return
        raise LinkNotFoundError()