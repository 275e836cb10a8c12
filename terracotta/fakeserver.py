"""Broadcasts a LAN game announcement so local clients see a remote world."""

from __future__ import annotations

import socket
import threading
from typing import Iterable

from .addresses import IPAddress, local_addresses
from .logs import log

ANNOUNCE_PORT = 4445
V4_TARGET = ("224.0.2.60", ANNOUNCE_PORT)
V6_TARGET = ("ff75:230::60", ANNOUNCE_PORT)
_INTERVAL = 1.0


def build_message(motd: str, port: int) -> str:
    """The announcement text advertising ``port`` with ``motd``."""
    return f"[MOTD]{motd}[/MOTD][AD]{port}[/AD]"


def _open_socket(address: IPAddress) -> tuple[socket.socket, tuple]:
    if address.version == 4:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.bind((str(address), 0))
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, 4)
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_LOOP, 1)
        except OSError:
            sock.close()
            raise
        return sock, V4_TARGET

    sock = socket.socket(socket.AF_INET6, socket.SOCK_DGRAM)
    try:
        sock.bind((str(address), 0))
        sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_MULTICAST_LOOP, 1)
    except OSError:
        sock.close()
        raise
    return sock, V6_TARGET


class FakeServer:
    """Background broadcaster of a LAN announcement, once a second."""

    def __init__(self, motd: str, addresses: Iterable[IPAddress]) -> None:
        self.motd = motd
        self._addresses = list(addresses)
        self._lock = threading.Lock()
        self._message = ""
        self._stopping = False
        self._wake = threading.Event()
        self._thread = threading.Thread(target=self._run, name="fake-server", daemon=True)
        self._thread.start()

    @property
    def message(self) -> str:
        """The text currently being broadcast; empty while paused."""
        with self._lock:
            return self._message

    @property
    def is_running(self) -> bool:
        return self._thread.is_alive()

    def set_port(self, port: int) -> None:
        """Start (or change) advertising a world on ``port``."""
        if not 1 <= port <= 65535:
            raise ValueError(f"port out of range: {port}")
        log("Fake Server", f"Faking server with PORT={port}, MOTD={self.motd}")
        with self._lock:
            self._message = build_message(self.motd, port)
        self._wake.set()

    def stop_broadcast(self) -> None:
        """Pause broadcasting until the next ``set_port``."""
        log("Fake Server", "Paused")
        with self._lock:
            self._message = ""
        self._wake.set()

    def close(self) -> None:
        """Stop the broadcaster and wait for it to finish."""
        self._stopping = True
        self._wake.set()
        self._thread.join()

    def __enter__(self) -> FakeServer:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _run(self) -> None:
        sockets = []
        for address in self._addresses:
            try:
                sockets.append(_open_socket(address))
            except OSError:
                continue
        try:
            while True:
                self._wake.wait(_INTERVAL)
                self._wake.clear()
                if self._stopping:
                    break
                payload = self.message.encode("utf-8")
                if not payload:
                    continue
                for sock, target in sockets:
                    try:
                        sock.sendto(payload, target)
                    except OSError:
                        pass
        finally:
            for sock, _ in sockets:
                sock.close()
            log("Fake Server", "Stopped")


def create(motd: str) -> FakeServer:
    """A broadcaster on every local address."""
    return FakeServer(motd, local_addresses())