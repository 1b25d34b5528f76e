"""Local PID-file run lock"""

import os

import pytest

from fsmoctl.errors import AlreadyRunning
from fsmoctl.core.runlock import RunLock


def test_acquire_writes_pid_and_release_removes(tmp_path):
    path = tmp_path / "run" / "fsmoctl.lock"
    with RunLock(path):
        assert path.read_text().strip() == str(os.getpid())
    assert not path.exists()


def test_live_holder_blocks(tmp_path):
    path = tmp_path / "fsmoctl.lock"
    path.write_text(f"{os.getppid()}\n")

    with pytest.raises(AlreadyRunning) as excinfo:
        RunLock(path).acquire()
    assert excinfo.value.pid == os.getppid()
    assert path.read_text().strip() == str(os.getppid())


def test_stale_lock_is_cleared(tmp_path, monkeypatch):
    path = tmp_path / "fsmoctl.lock"
    path.write_text("999999\n")
    monkeypatch.setattr("fsmoctl.core.runlock.psutil.pid_exists", lambda pid: False)

    lock = RunLock(path)
    lock.acquire()
    assert lock.acquired
    assert path.read_text().strip() == str(os.getpid())
    lock.release()


def test_garbage_lock_file_is_stale(tmp_path):
    path = tmp_path / "fsmoctl.lock"
    path.write_text("not a pid\n")
    with RunLock(path) as lock:
        assert lock.acquired


def test_release_keeps_foreign_lock(tmp_path):
    path = tmp_path / "fsmoctl.lock"
    lock = RunLock(path)
    lock.acquire()
    path.write_text("12345\n")

    lock.release()
    assert path.read_text() == "12345\n"
    assert not lock.acquired
