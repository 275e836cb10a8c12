"""The local web interface and the state machine behind it."""

from __future__ import annotations

import enum
import json
import mimetypes
import os
import threading
import time
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Callable
from urllib.parse import parse_qs, unquote, urlsplit

from .addresses import local_addresses
from .code import LOCAL_PORT, MOTD, Room
from .easytier import Easytier, EasytierFactory, default_factory
from .fakeserver import FakeServer
from .logs import log
from .scanning import Scanning

DEFAULT_TIMEOUT = 600.0
MAIN_PAGE = "_.html"
_TICK = 0.2


class AppState(enum.Enum):
    """What the application is currently doing."""

    WAITING = "waiting"
    SCANNING = "scanning"
    HOSTING = "hosting"
    GUESTING = "guesting"


class App:
    """The shared application state, driven by web requests and by ``tick``."""

    def __init__(
        self,
        factory: EasytierFactory | None = None,
        static_dir: str | os.PathLike | None = None,
        log_file: str | os.PathLike | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.static_dir = Path(static_dir) if static_dir is not None else None
        self.log_file = Path(log_file) if log_file is not None else None
        self.timeout = timeout
        self._factory = factory
        self._lock = threading.Lock()
        self._index = 0
        self._state = AppState.WAITING
        self._begin = time.monotonic()
        self._scanner: Scanning | None = None
        self._easytier: Easytier | None = None
        self._entry: FakeServer | None = None
        self._room: Room | None = None

    def snapshot(self) -> dict:
        """The state as reported to the web interface."""
        with self._lock:
            self._touch()
            result: dict = {"state": self._state.value, "index": self._index}
            if self._state is AppState.HOSTING and self._room is not None:
                result["room"] = self._room.code
            elif self._state is AppState.GUESTING:
                result["url"] = f"127.0.0.1:{LOCAL_PORT}"
            return result

    def set_waiting(self) -> None:
        """Drop whatever is running and wait."""
        log("UI", "Setting Server to state IDE.")
        with self._lock:
            self._touch()
            self._switch(AppState.WAITING)

    def set_scanning(self) -> None:
        """Look for a LAN world to host."""
        log("UI", "Setting Server to state SCANNING.")
        with self._lock:
            self._touch()
            scanner = Scanning(lambda motd: motd != MOTD, local_addresses())
            self._switch(AppState.SCANNING, scanner=scanner)

    def set_guesting(self, code: str) -> None:
        """Join the room named by ``code``; ValueError when there is none."""
        room = Room.parse(code)
        log("UI", f"Setting Server to state GUESTING, room = {room.code}.")
        with self._lock:
            self._touch()
            easytier, entry = room.start(self._get_factory())
            self._switch(AppState.GUESTING, easytier=easytier, entry=entry, room=room)

    def tick(self) -> bool:
        """Advance the state machine; True when the server should shut down."""
        with self._lock:
            state = self._state
            if state in (AppState.WAITING, AppState.SCANNING):
                if time.monotonic() - self._begin >= self.timeout:
                    log(
                        "UI",
                        f"Server has been in IDE state for {self.timeout:g}s. Shutting down.",
                    )
                    return True

            if state is AppState.SCANNING and self._scanner is not None:
                ports = self._scanner.get_ports()
                if ports:
                    room = Room.create(ports[0])
                    log(
                        "UI",
                        f"Setting Server to state HOSTING, port = {ports[0]}, room = {room.code}.",
                    )
                    easytier, _ = room.start(self._get_factory())
                    self._switch(AppState.HOSTING, easytier=easytier, room=room)
            elif state in (AppState.HOSTING, AppState.GUESTING):
                if self._easytier is None or not self._easytier.is_alive():
                    log("UI", "Easytier has been dead.")
                    self._switch(AppState.WAITING)
            return False

    def close(self) -> None:
        """Stop everything the current state runs."""
        with self._lock:
            self._release(self._scanner, self._easytier, self._entry)
            self._scanner = self._easytier = self._entry = None

    def _get_factory(self) -> EasytierFactory:
        if self._factory is None:
            self._factory = default_factory()
        return self._factory

    def _touch(self) -> None:
        if self._state in (AppState.WAITING, AppState.SCANNING):
            self._begin = time.monotonic()

    def _switch(
        self,
        state: AppState,
        *,
        scanner: Scanning | None = None,
        easytier: Easytier | None = None,
        entry: FakeServer | None = None,
        room: Room | None = None,
    ) -> None:
        previous = (self._scanner, self._easytier, self._entry)
        self._index += 1
        self._state = state
        self._begin = time.monotonic()
        self._scanner, self._easytier, self._entry, self._room = scanner, easytier, entry, room
        self._release(*previous)

    @staticmethod
    def _release(
        scanner: Scanning | None, easytier: Easytier | None, entry: FakeServer | None
    ) -> None:
        if scanner is not None:
            scanner.close()
        if easytier is not None:
            easytier.kill()
        if entry is not None:
            entry.close()


def _static_file(root: Path | None, url_path: str) -> tuple[bytes, str] | None:
    if root is None:
        return None
    segments = [unquote(segment) for segment in url_path.split("/") if segment]
    if any(s.startswith(".") or "/" in s or "\\" in s for s in segments):
        return None
    target = root.joinpath(*(segments or [MAIN_PAGE]))
    if not target.is_file():
        return None
    content_type = mimetypes.guess_type(target.name)[0] or "application/octet-stream"
    return target.read_bytes(), content_type


def make_handler(app: App) -> type[BaseHTTPRequestHandler]:
    """A request handler class serving ``app``'s web interface."""

    class Handler(BaseHTTPRequestHandler):
        server_version = "terracotta"

        def do_GET(self) -> None:
            try:
                self._dispatch()
            except Exception as err:
                log("UI", f"Request {self.path} failed: {err}")
                self._send(500)

        def _dispatch(self) -> None:
            url = urlsplit(self.path)
            route = url.path
            if route == "/state":
                body = json.dumps(app.snapshot(), ensure_ascii=False).encode("utf-8")
                self._send(200, body, "application/json")
            elif route == "/state/ide":
                app.set_waiting()
                self._send(200)
            elif route == "/state/scanning":
                app.set_scanning()
                self._send(200)
            elif route == "/state/guesting":
                rooms = parse_qs(url.query, keep_blank_values=True).get("room")
                if not rooms:
                    self._send(400)
                    return
                try:
                    app.set_guesting(rooms[0])
                except ValueError:
                    self._send(400)
                    return
                self._send(200)
            elif route == "/log":
                if app.log_file is None:
                    self._send(500)
                    return
                try:
                    body = app.log_file.read_bytes()
                except OSError:
                    self._send(500)
                    return
                self._send(200, body, "text/plain; charset=utf-8")
            else:
                found = _static_file(app.static_dir, route)
                if found is None:
                    self._send(404)
                else:
                    self._send(200, *found)

        def _send(self, status: int, body: bytes = b"", content_type: str | None = None) -> None:
            self.send_response(status)
            if content_type is not None:
                self.send_header("Content-Type", content_type)
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def log_request(self, code="-", size="-") -> None:
            # Only server failures are worth reporting; ordinary requests stay quiet.
            if isinstance(code, HTTPStatus):
                code = code.value
            if isinstance(code, int) and code >= 500:
                self.log_message('"%s" %s %s', self.requestline, str(code), str(size))

        def log_message(self, format: str, *args) -> None:
            log("UI", f"{self.address_string()} {format % args}")

    return Handler


def serve(
    app: App, port: int = 0, on_ready: Callable[[int], None] | None = None
) -> int:
    """Serve ``app`` on 127.0.0.1 until it has been idle too long; returns the port."""
    httpd = ThreadingHTTPServer(("127.0.0.1", port), make_handler(app))
    httpd.daemon_threads = True
    stopped = threading.Event()

    def supervise() -> None:
        while not stopped.wait(_TICK):
            if app.tick():
                httpd.shutdown()
                return

    with httpd:
        bound = httpd.server_address[1]
        if on_ready is not None:
            on_ready(bound)
        supervisor = threading.Thread(target=supervise, name="supervisor", daemon=True)
        supervisor.start()
        try:
            httpd.serve_forever(poll_interval=_TICK)
        finally:
            stopped.set()
            supervisor.join()
    app.close()
    return bound