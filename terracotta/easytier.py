"""Launching and supervising the EasyTier virtual-network core."""

from __future__ import annotations

import functools
import os
import shutil
import subprocess
import threading
from collections import deque
from pathlib import Path
from typing import IO, Iterable, Sequence

from .logs import log

LOG_LINES = 500
EXECUTABLE_ENV = "TERRACOTTA_EASYTIER"
EXECUTABLE_NAMES = ("easytier-core", "easytier-core.exe")
_SEPARATOR = "---------------"


def format_exit_log(lines: Iterable[str]) -> str:
    """The report logged once the core has exited, holding its last output."""
    return "\n".join(["Easytier has exit. Here's the logs:", _SEPARATOR, *lines, _SEPARATOR])


class Easytier:
    """A running core process whose output is kept for the exit report."""

    def __init__(self, process: subprocess.Popen) -> None:
        self._process = process
        self._lines: deque[str] = deque(maxlen=LOG_LINES)
        self._lock = threading.Lock()
        self._pumps = [
            threading.Thread(target=self._pump, args=(stream,), daemon=True)
            for stream in (process.stdout, process.stderr)
            if stream is not None
        ]
        for pump in self._pumps:
            pump.start()
        self._monitor = threading.Thread(target=self._watch, name="easytier-monitor", daemon=True)
        self._monitor.start()

    @property
    def logs(self) -> list[str]:
        """The most recent output lines, oldest first."""
        with self._lock:
            return list(self._lines)

    def kill(self) -> None:
        """Terminate the process; errors are ignored."""
        try:
            self._process.kill()
        except OSError:
            pass

    def is_alive(self) -> bool:
        try:
            return self._process.poll() is None
        except OSError:
            return False

    def wait(self, timeout: float | None = None) -> int:
        """Wait for the process to exit and its exit report to be written."""
        code = self._process.wait(timeout)
        self._monitor.join(timeout)
        return code

    def __enter__(self) -> Easytier:
        return self

    def __exit__(self, *exc_info) -> None:
        self.kill()

    def _pump(self, stream: IO[str]) -> None:
        with stream:
            for line in stream:
                with self._lock:
                    self._lines.append(line.rstrip("\r\n"))

    def _watch(self) -> None:
        try:
            self._process.wait()
        except OSError:
            pass
        for pump in self._pumps:
            pump.join()
        log("Easytier Core", format_exit_log(self.logs))


class EasytierFactory:
    """Starts core processes from one executable."""

    def __init__(self, executable: str | os.PathLike) -> None:
        self.executable = Path(executable)

    def create(self, args: Sequence[str]) -> Easytier:
        """Start the core with ``args``."""
        args = list(args)
        log("Easytier", f"Starting easytier: {args}")
        process = subprocess.Popen(
            [str(self.executable), *args],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
        return Easytier(process)


def _ensure_executable(path: Path) -> None:
    if os.name == "posix" and not os.access(path, os.X_OK):
        os.chmod(path, path.stat().st_mode | 0o100)


@functools.cache
def default_factory() -> EasytierFactory:
    """A factory for the installed core, found through the environment
    variable ``TERRACOTTA_EASYTIER`` or on the search path."""
    configured = os.environ.get(EXECUTABLE_ENV)
    if configured:
        path = Path(configured)
        if not path.is_file():
            raise FileNotFoundError(f"{EXECUTABLE_ENV} does not name a file: {configured}")
    else:
        found = next(filter(None, map(shutil.which, EXECUTABLE_NAMES)), None)
        if found is None:
            raise FileNotFoundError("easytier-core executable not found")
        path = Path(found)

    _ensure_executable(path)
    log("Easytier", f"Using easytier at {path}")
    return EasytierFactory(path)