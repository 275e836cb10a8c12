"""Listens for LAN game announcements and tracks the advertised ports."""

from __future__ import annotations

import re
import socket
import struct
import threading
import time
from typing import Callable, Iterable

from .addresses import IPAddress
from .logs import log

ANNOUNCE_PORT = 4445
V4_GROUP = "224.0.2.60"
V6_GROUP = "ff75:230::60"
EXPIRY = 5.0
_POLL = 0.5
_BUFFER = 8192
_PORT_PATTERN = re.compile(r"\+?[0-9]+")

MotdFilter = Callable[[str], bool]


def _between(text: str, opening: str, closing: str) -> str | None:
    begin = text.find(opening)
    end = text.find(closing)
    if begin < 0 or end < 0 or end - begin < len(opening) + 1:
        return None
    return text[begin + len(opening):end]


def parse_announcement(data: bytes | str, motd_filter: MotdFilter) -> int | None:
    """The port advertised by an announcement, or None when it is malformed
    or its MOTD is rejected by ``motd_filter``."""
    text = data.decode("utf-8", errors="replace") if isinstance(data, bytes) else data

    motd = _between(text, "[MOTD]", "[/MOTD]")
    if motd is None or not motd_filter(motd):
        return None

    port_text = _between(text, "[AD]", "[/AD]")
    if port_text is None or not _PORT_PATTERN.fullmatch(port_text):
        return None
    port = int(port_text)
    return port if port <= 65535 else None


class PortTable:
    """Recently announced ports, oldest announcement first."""

    def __init__(self, expiry: float = EXPIRY) -> None:
        self._expiry = expiry
        self._entries: dict[int, float] = {}

    def seen(self, port: int, now: float) -> bool:
        """Record an announcement; True when the port was not known."""
        existed = self._entries.pop(port, None) is not None
        self._entries[port] = now
        return not existed

    def expire(self, now: float) -> bool:
        """Forget stale ports; True when any were removed."""
        stale = [port for port, at in self._entries.items() if now - at >= self._expiry]
        for port in stale:
            del self._entries[port]
        return bool(stale)

    def ports(self) -> list[int]:
        return list(self._entries)


def _open_socket(address: IPAddress) -> socket.socket:
    if address.version == 4:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((str(address), ANNOUNCE_PORT))
            membership = socket.inet_aton(V4_GROUP) + socket.inet_aton("0.0.0.0")
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, membership)
            sock.settimeout(_POLL)
        except OSError:
            sock.close()
            raise
        return sock

    sock = socket.socket(socket.AF_INET6, socket.SOCK_DGRAM)
    try:
        sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 1)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((str(address), ANNOUNCE_PORT, 0, 0))
        membership = socket.inet_pton(socket.AF_INET6, V6_GROUP) + struct.pack("@I", 0)
        sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_JOIN_GROUP, membership)
        sock.settimeout(_POLL)
    except OSError:
        sock.close()
        raise
    return sock


class Scanning:
    """Background scanner of LAN game announcements."""

    def __init__(self, motd_filter: MotdFilter, addresses: Iterable[IPAddress]) -> None:
        self._filter = motd_filter
        self._addresses = list(addresses)
        self._ports: list[int] = []
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name="scanner", daemon=True)
        self._thread.start()

    @property
    def is_running(self) -> bool:
        return self._thread.is_alive()

    def get_ports(self) -> list[int]:
        """Ports currently announced on the LAN, oldest first."""
        with self._lock:
            return list(self._ports)

    def close(self) -> None:
        """Stop scanning and wait for the scanner to finish."""
        self._stop.set()
        self._thread.join()

    def __enter__(self) -> Scanning:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _run(self) -> None:
        try:
            self._scan()
        except OSError as err:
            log("Server Scanner", f"Cannot scan: {err}")

    def _scan(self) -> None:
        sockets: list[tuple[socket.socket, IPAddress]] = []
        for address in self._addresses:
            try:
                sockets.append((_open_socket(address), address))
            except OSError:
                continue
        log(
            "Server Scanner",
            f"Starting server scanner at IP: {[str(address) for _, address in sockets]}",
        )

        table = PortTable()
        try:
            while not self._stop.wait(_POLL):
                dirty = table.expire(time.monotonic())

                for sock, _ in sockets:
                    try:
                        payload, _ = sock.recvfrom(_BUFFER)
                    except OSError:
                        continue
                    port = parse_announcement(payload, self._filter)
                    if port is None:
                        continue
                    dirty = table.seen(port, time.monotonic()) or dirty
                    break

                if dirty:
                    ports = table.ports()
                    with self._lock:
                        self._ports = ports
                    listed = ", ".join(str(port) for port in ports)
                    log("Server Scanner", f"Updating server list to [{listed}]")
        finally:
            for sock, _ in sockets:
                sock.close()