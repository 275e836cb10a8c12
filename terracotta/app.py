"""Command-line entry point: elects the primary instance and runs the web interface."""

from __future__ import annotations

import os
import sys
import tempfile
import webbrowser
from datetime import datetime
from pathlib import Path
from typing import Sequence

from .easytier import default_factory
from .lock import InstanceLock, LockState
from .logs import log
from .server import DEFAULT_TIMEOUT, App, serve

DEBUG_ENV = "TERRACOTTA_DEBUG"
WEB_ENV = "TERRACOTTA_WEB"
DEBUG_PORT = 8080
DEBUG_TIMEOUT = 20.0
REDIRECT_ON = "--redirect-std=yes"
REDIRECT_OFF = "--redirect-std=no"

# Files that replace the standard streams stay open for the whole process.
_redirected: list = []


def logging_file_path(now: datetime | None = None) -> Path:
    """Where this run's log is written; the name is the start time."""
    now = now if now is not None else datetime.now()
    home = os.environ.get("HOME")
    if sys.platform == "darwin" and home:
        base = Path(home)
    else:
        base = Path(tempfile.gettempdir())
    return base / "terracotta-log" / f"{now:%Y-%m-%d-%H-%M-%S}.log"


def should_redirect(argv: Sequence[str], debug: bool) -> bool:
    """Whether output goes to the log file: an explicit flag wins, unless both
    are given; otherwise debug runs keep the console."""
    enable = REDIRECT_ON in argv
    disable = REDIRECT_OFF in argv
    disabled = disable if enable != disable else debug
    return not disabled


def redirect_std(path: str | os.PathLike) -> bool:
    """Send standard output and error to ``path``; False when it cannot be created."""
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(path, "wb")
    except OSError:
        return False

    log("UI", f"Logs will be saved to {path}. There will be not information on the console.")
    for stream in (sys.stdout, sys.stderr):
        try:
            stream.flush()
        except (OSError, ValueError, AttributeError):
            pass
    os.dup2(handle.fileno(), 1)
    os.dup2(handle.fileno(), 2)
    _redirected.append(handle)
    return True


def _is_debug() -> bool:
    return os.environ.get(DEBUG_ENV, "").lower() in ("1", "yes", "true")


def _static_dir() -> Path:
    configured = os.environ.get(WEB_ENV)
    if configured:
        return Path(configured)
    return Path(__file__).resolve().parent / "web"


def _run_server(argv: Sequence[str], debug: bool, lock: InstanceLock | None) -> None:
    log_path = logging_file_path()
    if should_redirect(argv, debug):
        redirect_std(log_path)
    else:
        log("UI", "Log redirection is disabled.")

    factory = default_factory()
    app = App(
        factory=factory,
        static_dir=_static_dir(),
        log_file=log_path,
        timeout=DEBUG_TIMEOUT if debug else DEFAULT_TIMEOUT,
    )

    def on_ready(port: int) -> None:
        if not debug:
            webbrowser.open(f"http://127.0.0.1:{port}/")
        if lock is not None and port != 0:
            lock.set_port(port)

    serve(app, DEBUG_PORT if debug else 0, on_ready)


def main(argv: Sequence[str] | None = None) -> int:
    """Run the application; returns the process exit status."""
    argv = list(sys.argv[1:] if argv is None else argv)
    debug = _is_debug()

    with InstanceLock() as lock:
        state = lock.acquire()
        try:
            if state is LockState.SINGLE:
                log("UI", "Running in server mode.")
                _run_server(argv, debug, lock)
            elif state is LockState.SECONDARY:
                log("UI", f"Running in secondary mode, port={lock.port}.")
                webbrowser.open(f"http://127.0.0.1:{lock.port}/")
            else:
                log("UI", "Cannot determin application mode. Fallback to server mode.")
                _run_server(argv, debug, None)
        except FileNotFoundError as err:
            log("UI", f"Cannot start: {err}")
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())