"""Host addresses a device might use to reach the proxy."""

from __future__ import annotations

import ipaddress
import socket
from collections.abc import Iterable
from dataclasses import dataclass

import psutil

# Host loopback as seen from the stock Android emulator and from Genymotion.
EMULATOR_HOST_ALIASES = ("10.0.2.2", "10.0.3.2")

# Docker bridges and per-container veth pairs are never reachable from a device.
_EXCLUDED_EXACT = {"docker0"}
_EXCLUDED_PREFIXES = ("br-", "veth")


@dataclass(frozen=True)
class InterfaceAddress:
    """One address bound to a local network interface."""

    name: str
    address: str
    family: str  # "IPv4" | "IPv6" | other
    internal: bool


def _is_excluded_interface(name: str) -> bool:
    return name in _EXCLUDED_EXACT or name.startswith(_EXCLUDED_PREFIXES)


def local_interfaces() -> list[InterfaceAddress]:
    """Enumerate host interface addresses via psutil."""
    result: list[InterfaceAddress] = []
    for name, addrs in psutil.net_if_addrs().items():
        for addr in addrs:
            if addr.family == socket.AF_INET:
                family = "IPv4"
            elif addr.family == socket.AF_INET6:
                family = "IPv6"
            else:
                continue
            try:
                internal = ipaddress.ip_address(addr.address.split("%")[0]).is_loopback
            except ValueError:
                continue
            result.append(
                InterfaceAddress(name=name, address=addr.address, family=family, internal=internal)
            )
    return result


def candidate_addresses(interfaces: Iterable[InterfaceAddress] | None = None) -> list[str]:
    """Emulator aliases first, then every external IPv4 address of the host.

    The companion app only supports IPv4, and loopback is unreachable from a
    real device, so both are dropped along with container bridge interfaces.
    """
    if interfaces is None:
        interfaces = local_interfaces()

    addresses = list(EMULATOR_HOST_ALIASES)
    for iface in interfaces:
        if iface.internal or iface.family != "IPv4":
            continue
        if _is_excluded_interface(iface.name):
            continue
        addresses.append(iface.address)
    return addresses
