"""A per-user lock file that elects one running instance and publishes its port."""

from __future__ import annotations

import enum
import os
import tempfile
import time
from pathlib import Path
from typing import BinaryIO

from .logs import log

if os.name == "nt":
    import msvcrt
else:
    import fcntl

LOCK_NAME = "terracotta.lock"
_GUARD_OFFSET = 2
_ATTEMPTS = 10
_RETRY_DELAY = 1.0


def default_lock_path() -> Path:
    """The lock file shared by every instance on this machine."""
    return Path(tempfile.gettempdir()) / LOCK_NAME


class LockState(enum.Enum):
    """The role this instance plays after trying the lock."""

    SINGLE = "single"
    SECONDARY = "secondary"
    UNKNOWN = "unknown"


def _open(path: Path) -> BinaryIO:
    fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o666)
    return os.fdopen(fd, "r+b", buffering=0)


def _read_port(handle: BinaryIO) -> bytes:
    try:
        handle.seek(0)
        return handle.read(2) or b""
    except OSError:
        return b""


class InstanceLock:
    """The lock file; ``acquire`` decides whether this instance is the primary one."""

    def __init__(self, path: str | os.PathLike | None = None) -> None:
        self.path = Path(path) if path is not None else default_lock_path()
        self.state: LockState | None = None
        self.port: int | None = None
        self._file: BinaryIO | None = None
        self._published = False

    def acquire(self) -> LockState:
        """Take the lock, or read the port published by the instance holding it."""
        if self.state is not None:
            raise RuntimeError("the lock has already been acquired")
        self.state = self._acquire_nt() if os.name == "nt" else self._acquire_posix()
        return self.state

    def set_port(self, port: int) -> None:
        """Publish the primary instance's web port to later instances."""
        if self.state is not LockState.SINGLE or self._file is None or self._published:
            raise RuntimeError("only a freshly acquired single instance can publish a port")
        if not 0 <= port <= 0xFFFF:
            raise ValueError(f"port out of range: {port}")

        handle = self._file
        try:
            handle.seek(0)
            handle.write(port.to_bytes(2, "big"))
            os.fsync(handle.fileno())
        except OSError:
            pass
        self._published = True

        if os.name == "nt":
            log("Lock", "Releasing global mutex lock. Turning into holders.")
        else:
            try:
                fcntl.flock(handle, fcntl.LOCK_SH)
            except OSError:
                pass

    def close(self) -> None:
        """Release the lock file."""
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self) -> InstanceLock:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _joined(self, data: bytes) -> LockState:
        if len(data) == 2:
            self.port = int.from_bytes(data, "big")
            log("Lock", f"Successfully join the global mutex, port = {self.port}")
            return LockState.SECONDARY
        log("Lock", "Global mutex is broken.")
        return LockState.UNKNOWN

    def _acquire_posix(self) -> LockState:
        handle = _open(self.path)
        try:
            fcntl.flock(handle, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError:
            try:
                fcntl.flock(handle, fcntl.LOCK_SH)
            except OSError:
                pass
            with handle:
                return self._joined(_read_port(handle))

        handle.truncate(0)
        self._file = handle
        return LockState.SINGLE

    def _acquire_nt(self) -> LockState:
        handle = _open(self.path)
        try:
            handle.seek(_GUARD_OFFSET)
            msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)
        except OSError:
            pass
        else:
            handle.truncate(0)
            self._file = handle
            log("Lock", "Successfully hold the global mutex.")
            return LockState.SINGLE

        with handle:
            for remaining in reversed(range(_ATTEMPTS)):
                data = _read_port(handle)
                if len(data) == 2:
                    return self._joined(data)
                log("Lock", f"Cannot join the global mutex, cas = {remaining}")
                time.sleep(_RETRY_DELAY)

        log("Lock", "Having waited for 10s for the global mutx, which is still locked.")
        return LockState.UNKNOWN