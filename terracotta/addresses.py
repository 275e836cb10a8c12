"""Discovery of the local addresses used for LAN game announcements."""

from __future__ import annotations

import functools
import ipaddress
import socket
from typing import Iterable, Union

import psutil

from .logs import log

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

_VIRTUAL_NETWORK = ipaddress.ip_network("10.144.144.0/24")
_V4_LOCALHOST = ipaddress.IPv4Address("127.0.0.1")
_V4_UNSPECIFIED = ipaddress.IPv4Address("0.0.0.0")
_V6_LOCALHOST = ipaddress.IPv6Address("::1")
_V6_UNSPECIFIED = ipaddress.IPv6Address("::")


def _keep(address: IPAddress) -> bool:
    if address.version == 4:
        return (
            address not in _VIRTUAL_NETWORK
            and address != _V4_LOCALHOST
            and address != _V4_UNSPECIFIED
        )
    return address != _V6_LOCALHOST and address != _V6_UNSPECIFIED


def filter_addresses(addresses: Iterable[IPAddress | str]) -> list[IPAddress]:
    """Drop loopback, unspecified and virtual-network addresses, add both
    unspecified addresses and return the result in descending order
    (IPv6 before IPv4)."""
    kept = [
        address
        for address in map(ipaddress.ip_address, addresses)
        if _keep(address)
    ]
    kept.extend((_V4_UNSPECIFIED, _V6_UNSPECIFIED))
    kept.sort(key=lambda address: (address.version, int(address)), reverse=True)
    return kept


@functools.cache
def local_addresses() -> tuple[IPAddress, ...]:
    """Addresses of this machine's interfaces, filtered; computed once."""
    found: list[IPAddress] = []
    try:
        interfaces = psutil.net_if_addrs()
    except OSError:
        interfaces = {}

    for entries in interfaces.values():
        for entry in entries:
            if entry.family not in (socket.AF_INET, socket.AF_INET6):
                continue
            try:
                found.append(ipaddress.ip_address(entry.address.split("%", 1)[0]))
            except ValueError:
                continue

    result = tuple(filter_addresses(found))
    log("UI", f"Local IP Addresses: {[str(address) for address in result]}")
    return result