"""Helpers for picking the VM and tap interfaces out of a CNI result."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from typing import Optional, Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPInterface = Union[ipaddress.IPv4Interface, ipaddress.IPv6Interface]
IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


@dataclass
class Interface:
    name: str
    mac: str = ""
    sandbox: str = ""


@dataclass
class IPConfig:
    """An address assigned to the interface at index ``interface``."""

    address: IPInterface
    gateway: Optional[IPAddress] = None
    interface: Optional[int] = None


@dataclass
class Route:
    dst: IPNetwork
    gw: Optional[IPAddress] = None


@dataclass
class DNS:
    nameservers: list[str] = field(default_factory=list)
    domain: str = ""
    search: list[str] = field(default_factory=list)
    options: list[str] = field(default_factory=list)


@dataclass
class Result:
    cni_version: str = "1.0.0"
    interfaces: list[Interface] = field(default_factory=list)
    ips: list[IPConfig] = field(default_factory=list)
    routes: list[Route] = field(default_factory=list)
    dns: DNS = field(default_factory=DNS)


class LinkNotFoundError(LookupError):
    """No network device with the expected name was found."""

    def __init__(self, device: str = "") -> None:
        self.device = device
        super().__init__(f'did not find expected network device with name "{device}"')


def interface_ips(result: Result, iface_name: str, sandbox: str) -> list[IPConfig]:
    """IPs of the interface with the given name and sandbox."""
    found = []
    for ip in result.ips:
        if ip.interface is None:
            continue
        iface = result.interfaces[ip.interface]
        if iface.name == iface_name and iface.sandbox == sandbox:
            found.append(ip)
    return found


def filter_by_sandbox(sandbox: str, *ifaces: Interface) -> tuple[list[Interface], list[Interface]]:
    """Split interfaces into those in ``sandbox`` and all others."""
    inside: list[Interface] = []
    outside: list[Interface] = []
    for iface in ifaces:
        (inside if iface.sandbox == sandbox else outside).append(iface)
    return inside, outside


def ifaces_with_name(name: str, *ifaces: Interface) -> list[Interface]:
    return [iface for iface in ifaces if iface.name == name]


def vm_tap_pair(result: Result, vm_id: str) -> tuple[Interface, Interface]:
    """Return the VM pseudo-interface and the matching tap interface."""
    vm_ifaces, others = filter_by_sandbox(vm_id, *result.interfaces)
    if len(vm_ifaces) > 1:
        raise ValueError(
            f'expected to find at most 1 interface in sandbox "{vm_id}", '
            f"but instead found {len(vm_ifaces)}"
        )
    if not vm_ifaces:
        raise LinkNotFoundError(f"pseudo-device for {vm_id}")
    vm_iface = vm_ifaces[0]

    # The tap device shares the VM interface's name but lives in a netns sandbox.
    tap_name = vm_iface.name
    tap_ifaces = ifaces_with_name(tap_name, *others)
    if len(tap_ifaces) > 1:
        raise ValueError(
            f'expected to find at most 1 interface with name "{tap_name}", '
            f"but instead found {len(tap_ifaces)}"
        )
    if not tap_ifaces:
        raise LinkNotFoundError(tap_name)
    return vm_iface, tap_ifaces[0]