"""Turning a CNI result into network settings for a VM.

The CNI result must hold a tap device interface and a pseudo-interface with
the same name whose sandbox is the VM id given to CNI. The IP tied to that
pseudo-interface is the one the VM should configure statically.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from firecracker_sdk.cni.cniutil import IPConfig, Result, Route, interface_ips, vm_tap_pair
from firecracker_sdk.cni.netlink import NetlinkOps


@dataclass
class StaticNetworkConf:
    """Settings a VM needs for its networking; ``vm_*`` fields apply inside the VM."""

    tap_name: str = ""
    net_ns_path: str = ""
    vm_if_name: str = ""
    vm_mac_addr: str = ""
    vm_mtu: int = 0
    vm_ip_config: Optional[IPConfig] = None
    vm_routes: list[Route] = field(default_factory=list)
    vm_nameservers: list[str] = field(default_factory=list)
    vm_domain: str = ""
    vm_search_domains: list[str] = field(default_factory=list)
    vm_resolver_options: list[str] = field(default_factory=list)

    def ip_boot_param(self) -> str:
        """The value for the kernel's ``ip=`` boot parameter.

        Only the address, gateway, netmask, device and up to two nameservers
        can be expressed; everything else is ignored.
        """
        if self.vm_ip_config is None:
            raise ValueError("no IP configuration for the VM")
        address = self.vm_ip_config.address
        client_ip = str(address.ip)
        server_ip = ""
        gateway = self.vm_ip_config.gateway
        default_gateway = "" if gateway is None else str(gateway)
        subnet_mask = ".".join(str(b) for b in address.netmask.packed[:4])
        dhcp_hostname = ""
        device = self.vm_if_name
        autoconfiguration = "off"
        nameservers = (list(self.vm_nameservers[:2]) + ["", ""])[:2]
        ntp_server = ""
        return ":".join(
            [
                client_ip,
                server_ip,
                default_gateway,
                subnet_mask,
                dhcp_hostname,
                device,
                autoconfiguration,
                nameservers[0],
                nameservers[1],
                ntp_server,
            ]
        )


def mtu_of(iface_name: str, net_ns: Any, netlink_ops: NetlinkOps) -> int:
    """The MTU of the device ``iface_name`` inside ``net_ns``."""

    def lookup(_: Any) -> int:
        try:
            link = netlink_ops.get_link(iface_name)
        except Exception as err:
            raise RuntimeError(
                f'failed to find device "{iface_name}" in netns "{net_ns.path}": {err}'
            ) from err
        return link.attrs.mtu

    try:
        return net_ns.do(lookup)
    except Exception as err:
        raise RuntimeError(f"failed to find MTU: {err}") from err


def static_network_conf_from(
    result: Result,
    container_id: str,
    get_netns: Callable[[str], Any],
    netlink_ops: NetlinkOps,
) -> StaticNetworkConf:
    """Build a ``StaticNetworkConf`` from a CNI result for the VM ``container_id``.

    ``get_netns`` opens the network namespace at a path; ``netlink_ops`` looks
    up devices inside it.
    """
    vm_iface, tap_iface = vm_tap_pair(result, container_id)

    vm_ips = interface_ips(result, vm_iface.name, vm_iface.sandbox)
    if len(vm_ips) != 1:
        raise ValueError(
            f'expected to find 1 IP for vm interface "{vm_iface.name}", '
            f"but instead found {vm_ips!r}"
        )

    try:
        net_ns = get_netns(tap_iface.sandbox)
    except Exception as err:
        raise RuntimeError(f'failed to find netns at path "{tap_iface.sandbox}": {err}') from err

    tap_mtu = mtu_of(tap_iface.name, net_ns, netlink_ops)

    return StaticNetworkConf(
        tap_name=tap_iface.name,
        net_ns_path=tap_iface.sandbox,
        vm_mac_addr=vm_iface.mac,
        vm_mtu=tap_mtu,
        vm_ip_config=vm_ips[0],
        vm_routes=list(result.routes),
        vm_nameservers=list(result.dns.nameservers),
        vm_domain=result.dns.domain,
        vm_search_domains=list(result.dns.search),
        vm_resolver_options=list(result.dns.options),
    )