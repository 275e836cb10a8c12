"""Room codes: generation, parsing and the network they describe."""

from __future__ import annotations

import functools
import secrets
import socket
from dataclasses import dataclass

from . import fakeserver
from .easytier import Easytier, EasytierFactory, default_factory

MOTD = "§6§l陶瓦联机大厅（请保持陶瓦运行并关闭其他代理软件）"
LOCAL_PORT = 35781
HOST_ADDRESS = "10.144.144.1"

CHARS = "0123456789ABCDEFGHJKLMNPQRSTUVWXYZ"
_BASE = len(CHARS)
_NAME_LENGTH = 15
_SECRET_LENGTH = 10
_DIGITS = _NAME_LENGTH + _SECRET_LENGTH
_CODE_LENGTH = _DIGITS + 4
_ALIASES = {"I": "1", "O": "0"}

PEERS = (
    "tcp://public.easytier.top:11010",
    "tcp://8.138.6.53:11010",
    "tcp://119.23.65.180:11010",
    "tcp://ah.nkbpal.cn:11010",
    "tcp://gz.minebg.top:11010",
    "tcp://39.108.52.138:11010",
    "tcp://turn.hb.629957.xyz:11010",
    "tcp://turn.sc.629957.xyz:11010",
    "tcp://8.148.29.206:11010",
    "tcp://turn.js.629957.xyz:11012",
    "tcp://103.194.107.246:11010",
    "tcp://sh.993555.xyz:11010",
    "tcp://et.993555.xyz:11010",
    "tcp://turn.bj.629957.xyz:11010",
    "tcp://et.sh.suhoan.cn:11010",
    "tcp://96.9.229.212:11010",
    "tcp://et-hk.clickor.click:11010",
    "tcp://47.113.227.73:11010",
    "tcp://et.01130328.xyz:11010",
    "tcp://et.ie12vps.xyz:11010",
    "tcp://103.40.14.90:35971",
    "tcp://154.9.255.133:11010",
    "tcp://47.103.35.100:11010",
    "tcp://et.gbc.moe:11011",
    "tcp://116.206.178.250:11010",
)
OPTIONS = (
    "--no-tun",
    "--compression=zstd",
    "--multi-thread",
    "--latency-first",
    "--enable-kcp-proxy",
)


def lookup_char(char: str) -> int | None:
    """The digit value of a code character; I and O stand for 1 and 0."""
    index = CHARS.find(_ALIASES.get(char, char))
    return index if index >= 0 and len(char) == 1 else None


def _ascii_upper(text: str) -> str:
    return "".join(c.upper() if c.isascii() else c for c in text)


def _format_code(digits: list[int]) -> str:
    text = "".join(CHARS[d] for d in digits)
    return "-".join(text[i:i + 5] for i in range(0, _DIGITS, 5))


def _decode_window(window: str) -> list[int] | None:
    digits: list[int] = []
    for group in range(5):
        chunk = window[group * 6:group * 6 + 5]
        values = [lookup_char(c) for c in chunk]
        if None in values:
            return None
        digits.extend(values)
        if group != 4 and window[group * 6 + 5] != "-":
            return None
    if sum(digits[:-1]) % _BASE != digits[-1]:
        return None
    return digits


@functools.cache
def ipv6_only_default() -> bool:
    """Whether IPv6 sockets on this system refuse IPv4 traffic by default."""
    try:
        with socket.socket(socket.AF_INET6, socket.SOCK_DGRAM) as sock:
            return bool(sock.getsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY))
    except OSError:
        return False


@dataclass(frozen=True)
class Room:
    """A room identified by its code; the code also carries the host's port."""

    name: str
    secret: str
    code: str
    port: int
    host: bool

    @classmethod
    def create(cls, port: int) -> Room:
        """A new random room hosting the game on ``port``."""
        if not 0 <= port <= 0xFFFF:
            raise ValueError(f"port out of range: {port}")

        value = int.from_bytes(secrets.token_bytes(_NAME_LENGTH), "big")
        value = value // 65536 * 65536 + port

        digits: list[int] = []
        for _ in range(_DIGITS - 1):
            value, digit = divmod(value, _BASE)
            digits.append(digit)
        if value:
            raise RuntimeError(f"Cannot generate code: There's {value} remained.")
        digits.append(sum(digits) % _BASE)

        text = "".join(CHARS[d] for d in digits)
        return cls(
            name=text[:_NAME_LENGTH],
            secret=text[_NAME_LENGTH:],
            code=_format_code(digits),
            port=port,
            host=True,
        )

    @classmethod
    def parse(cls, code: str) -> Room:
        """The first valid room code found in ``code``, as a guest room."""
        text = _ascii_upper(code)
        if len(text) < _CODE_LENGTH:
            raise ValueError("Not enough data.")

        for start in range(len(text) - _CODE_LENGTH + 1):
            digits = _decode_window(text[start:start + _CODE_LENGTH])
            if digits is None:
                continue
            plain = "".join(CHARS[d] for d in digits)
            value = sum(d * _BASE**i for i, d in enumerate(digits))
            return cls(
                name=plain[:_NAME_LENGTH],
                secret=plain[_NAME_LENGTH:],
                code=_format_code(digits),
                port=value % 65536,
                host=False,
            )

        raise ValueError("No Room code found.")

    def easytier_args(self, only_v6: bool) -> list[str]:
        """Command-line arguments for the core joining this room's network."""
        args = [
            "--network-name",
            f"terracotta-mc-{self.name.lower()}",
            "--network-secret",
            self.secret.lower(),
        ]
        for peer in PEERS:
            args += ["-p", peer]
        args += OPTIONS

        if self.host:
            args += ["--ipv4", HOST_ADDRESS]
        else:
            args += ["-d", f"--port-forward=tcp://[::0]:{LOCAL_PORT}/{HOST_ADDRESS}:{self.port}"]

        if only_v6:
            args.append(f"--port-forward=tcp://0.0.0.0:{LOCAL_PORT}/{HOST_ADDRESS}:{self.port}")
        return args

    def start(
        self, factory: EasytierFactory | None = None
    ) -> tuple[Easytier, fakeserver.FakeServer | None]:
        """Start the core; a guest also gets a local announcement of the room."""
        factory = factory if factory is not None else default_factory()
        easytier = factory.create(self.easytier_args(ipv6_only_default()))
        if self.host:
            return easytier, None
        server = fakeserver.create(MOTD)
        server.set_port(LOCAL_PORT)
        return easytier, server