import json
import threading
import time
import urllib.error
import urllib.request
from http.server import ThreadingHTTPServer

import pytest

from terracotta.code import LOCAL_PORT, Room
from terracotta.easytier import EasytierFactory
from terracotta.server import App, AppState, make_handler, serve

_OPENER = urllib.request.build_opener(urllib.request.ProxyHandler({}))


def _factory(tmp_path, body):
    script = tmp_path / "core.sh"
    script.write_text(f"#!/bin/sh\n{body}\n")
    script.chmod(0o755)
    return EasytierFactory(script)


def _get(url):
    try:
        with _OPENER.open(url, timeout=5) as response:
            return response.status, response.headers.get("Content-Type"), response.read()
    except urllib.error.HTTPError as err:
        return err.code, err.headers.get("Content-Type"), err.read()


@pytest.fixture
def app(tmp_path):
    application = App(factory=_factory(tmp_path, "exec sleep 30"), timeout=600)
    yield application
    application.close()


@pytest.fixture
def running(tmp_path):
    static = tmp_path / "web"
    static.mkdir()
    (static / "_.html").write_bytes(b"<html>main</html>")
    (static / "app.js").write_bytes(b"let x = 1;")
    (tmp_path / "outside.txt").write_bytes(b"hidden")
    log_file = tmp_path / "run.log"
    log_file.write_text("line one\n")
    application = App(
        factory=_factory(tmp_path, "exec sleep 30"),
        static_dir=static,
        log_file=log_file,
        timeout=600,
    )
    httpd = ThreadingHTTPServer(("127.0.0.1", 0), make_handler(application))
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    yield application, f"http://127.0.0.1:{httpd.server_address[1]}"
    httpd.shutdown()
    httpd.server_close()
    application.close()


def test_initial_snapshot(app):
    assert app.snapshot() == {"state": "waiting", "index": 0}


def test_set_waiting_bumps_index(app):
    app.set_waiting()
    app.set_waiting()
    assert app.snapshot() == {"state": AppState.WAITING.value, "index": 2}


def test_idle_timeout_requests_shutdown(tmp_path):
    application = App(factory=_factory(tmp_path, "exit 0"), timeout=0)
    assert application.tick() is True


def test_tick_stays_up_before_timeout(app):
    assert app.tick() is False
    assert app.snapshot()["state"] == "waiting"


def test_snapshot_resets_idle_timer(tmp_path):
    application = App(factory=_factory(tmp_path, "exit 0"), timeout=0.3)
    time.sleep(0.4)
    application.snapshot()
    assert application.tick() is False


def test_invalid_guest_code_is_rejected(app):
    with pytest.raises(ValueError):
        app.set_guesting("not a room code")
    assert app.snapshot() == {"state": "waiting", "index": 0}


def test_guesting_snapshot(app):
    app.set_guesting(Room.create(25565).code)
    assert app.snapshot() == {
        "state": "guesting",
        "index": 1,
        "url": f"127.0.0.1:{LOCAL_PORT}",
    }
    assert app.tick() is False


def test_dead_core_returns_to_waiting(tmp_path):
    application = App(factory=_factory(tmp_path, "exit 0"), timeout=600)
    try:
        application.set_guesting(Room.create(25565).code)
        deadline = time.monotonic() + 10
        while application.snapshot()["state"] != "waiting" and time.monotonic() < deadline:
            application.tick()
            time.sleep(0.1)
        assert application.snapshot() == {"state": "waiting", "index": 2}
    finally:
        application.close()


def test_scanning_state(app):
    app.set_scanning()
    assert app.snapshot() == {"state": "scanning", "index": 1}
    assert app.tick() is False
    app.set_waiting()
    assert app.snapshot() == {"state": "waiting", "index": 2}


def test_scanning_times_out(tmp_path):
    application = App(factory=_factory(tmp_path, "exit 0"), timeout=0)
    try:
        application.set_scanning()
        assert application.tick() is True
    finally:
        application.close()


def test_http_state(running):
    _, base = running
    status, content_type, body = _get(f"{base}/state")
    assert status == 200
    assert content_type == "application/json"
    assert json.loads(body) == {"state": "waiting", "index": 0}


def test_http_state_ide(running):
    application, base = running
    status, _, _ = _get(f"{base}/state/ide")
    assert status == 200
    assert application.snapshot()["index"] == 1


def test_http_main_page(running):
    _, base = running
    status, content_type, body = _get(f"{base}/")
    assert status == 200
    assert content_type.startswith("text/html")
    assert body == b"<html>main</html>"


def test_http_static_file(running):
    _, base = running
    status, _, body = _get(f"{base}/app.js")
    assert status == 200
    assert body == b"let x = 1;"


@pytest.mark.parametrize("path", ["/missing.html", "/../outside.txt", "/%2E%2E/outside.txt", "/.hidden"])
def test_http_static_not_found(running, path):
    _, base = running
    status, _, _ = _get(f"{base}{path}")
    assert status == 404


@pytest.mark.parametrize("query", ["", "?room=", "?room=bad-code"])
def test_http_guesting_bad_request(running, query):
    application, base = running
    status, _, _ = _get(f"{base}/state/guesting{query}")
    assert status == 400
    assert application.snapshot()["index"] == 0


def test_http_guesting(running):
    application, base = running
    code = Room.create(25565).code
    status, _, _ = _get(f"{base}/state/guesting?room={code}")
    assert status == 200
    assert application.snapshot()["state"] == "guesting"


def test_http_log(running):
    _, base = running
    status, _, body = _get(f"{base}/log")
    assert status == 200
    assert body == b"line one\n"


def test_serve_stops_when_idle(tmp_path):
    application = App(factory=_factory(tmp_path, "exit 0"), timeout=0.5)
    ready = threading.Event()
    ports = []
    results = []

    def on_ready(port):
        ports.append(port)
        ready.set()

    thread = threading.Thread(
        target=lambda: results.append(serve(application, 0, on_ready)), daemon=True
    )
    thread.start()
    assert ready.wait(5)

    status, _, body = _get(f"http://127.0.0.1:{ports[0]}/state")
    assert status == 200
    assert json.loads(body)["state"] == "waiting"

    thread.join(10)
    assert not thread.is_alive()
    assert results == ports