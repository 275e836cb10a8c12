import fcntl
import tempfile
from pathlib import Path

import pytest

from terracotta.lock import InstanceLock, LockState, default_lock_path


@pytest.fixture
def lock_path(tmp_path):
    return tmp_path / "terracotta.lock"


def test_default_lock_path_is_in_temp_dir():
    assert default_lock_path() == Path(tempfile.gettempdir()) / "terracotta.lock"


def test_first_instance_is_single_and_truncates(lock_path):
    lock_path.write_bytes(b"stale data")
    with InstanceLock(lock_path) as primary:
        assert primary.acquire() is LockState.SINGLE
        assert lock_path.read_bytes() == b""
        assert primary.port is None


def test_lock_file_is_created(lock_path):
    with InstanceLock(lock_path) as primary:
        assert primary.acquire() is LockState.SINGLE
        assert lock_path.is_file()


def test_published_port_is_read_by_secondary(lock_path):
    with InstanceLock(lock_path) as primary:
        assert primary.acquire() is LockState.SINGLE
        primary.set_port(25565)
        assert lock_path.read_bytes() == b"\x63\xdd"

        with InstanceLock(lock_path) as secondary:
            assert secondary.acquire() is LockState.SECONDARY
            assert secondary.port == 25565


@pytest.mark.parametrize("port", [0, 1, 255, 256, 8080, 65535])
def test_port_round_trip(lock_path, port):
    with InstanceLock(lock_path) as primary:
        primary.acquire()
        primary.set_port(port)
        with InstanceLock(lock_path) as secondary:
            assert secondary.acquire() is LockState.SECONDARY
            assert secondary.port == port


def test_broken_lock_file_is_unknown(lock_path):
    lock_path.write_bytes(b"\x01")
    with open(lock_path, "rb") as holder:
        fcntl.flock(holder, fcntl.LOCK_SH)
        with InstanceLock(lock_path) as instance:
            assert instance.acquire() is LockState.UNKNOWN
            assert instance.port is None


def test_released_lock_can_be_taken_again(lock_path):
    first = InstanceLock(lock_path)
    assert first.acquire() is LockState.SINGLE
    first.close()
    with InstanceLock(lock_path) as second:
        assert second.acquire() is LockState.SINGLE


def test_set_port_requires_acquired_single(lock_path):
    with InstanceLock(lock_path) as instance:
        with pytest.raises(RuntimeError):
            instance.set_port(8080)


def test_set_port_on_secondary_is_rejected(lock_path):
    with InstanceLock(lock_path) as primary:
        primary.acquire()
        primary.set_port(8080)
        with InstanceLock(lock_path) as secondary:
            assert secondary.acquire() is LockState.SECONDARY
            with pytest.raises(RuntimeError):
                secondary.set_port(8081)


def test_set_port_only_once(lock_path):
    with InstanceLock(lock_path) as primary:
        primary.acquire()
        primary.set_port(8080)
        with pytest.raises(RuntimeError):
            primary.set_port(8081)


def test_set_port_out_of_range(lock_path):
    with InstanceLock(lock_path) as primary:
        primary.acquire()
        with pytest.raises(ValueError):
            primary.set_port(70000)


def test_acquire_twice_is_rejected(lock_path):
    with InstanceLock(lock_path) as primary:
        primary.acquire()
        with pytest.raises(RuntimeError):
            primary.acquire()