import ipaddress
import socket
from types import SimpleNamespace
from unittest import mock

import pytest

from terracotta.addresses import filter_addresses, local_addresses

ip = ipaddress.ip_address


def test_filter_orders_and_adds_unspecified():
    result = filter_addresses(
        [ip("192.168.1.5"), ip("10.144.144.3"), ip("127.0.0.1"), ip("::1"), ip("fe80::1")]
    )
    assert result == [ip("fe80::1"), ip("::"), ip("192.168.1.5"), ip("0.0.0.0")]


def test_filter_accepts_strings():
    result = filter_addresses(["192.168.0.1"])
    assert ip("192.168.0.1") in result
    assert ip("0.0.0.0") in result and ip("::") in result


def test_virtual_network_only_excludes_its_own_subnet():
    result = filter_addresses(["10.144.144.200", "10.144.145.1"])
    assert ip("10.144.144.200") not in result
    assert ip("10.144.145.1") in result


def test_empty_input_gives_only_unspecified():
    assert filter_addresses([]) == [ip("::"), ip("0.0.0.0")]


def test_input_unspecified_not_duplicated():
    result = filter_addresses(["0.0.0.0", "::"])
    assert result.count(ip("0.0.0.0")) == 1
    assert result.count(ip("::")) == 1


def test_sorted_descending_v6_first():
    result = filter_addresses(["1.2.3.4", "9.9.9.9", "2001:db8::1", "192.168.3.3"])
    versions = [a.version for a in result]
    assert versions == sorted(versions, reverse=True)
    v4 = [int(a) for a in result if a.version == 4]
    assert v4 == sorted(v4, reverse=True)


def test_invalid_address_raises():
    with pytest.raises(ValueError):
        filter_addresses(["not-an-address"])


def test_local_addresses_reads_interfaces():
    fake = {
        "eth0": [
            SimpleNamespace(family=socket.AF_INET, address="192.168.0.2"),
            SimpleNamespace(family=socket.AF_INET6, address="fe80::1%eth0"),
            SimpleNamespace(family=-1, address="00:00:00:00:00:00"),
        ],
        "lo": [SimpleNamespace(family=socket.AF_INET, address="127.0.0.1")],
    }
    local_addresses.cache_clear()
    try:
        with mock.patch("terracotta.addresses.psutil.net_if_addrs", return_value=fake):
            result = local_addresses()
    finally:
        local_addresses.cache_clear()
    assert set(result) == {ip("192.168.0.2"), ip("fe80::1"), ip("0.0.0.0"), ip("::")}
    assert result[0].version == 6