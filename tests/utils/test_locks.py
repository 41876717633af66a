"""
Tests for the single-flight batch lock.
"""
import os

import pytest

from filestorage.storage.exceptions import SyncAlreadyRunningError
from filestorage.utils.locks import file_lock


def test_lock_file_exists_while_held(tmp_path):
    lock_path = tmp_path / "sync.lock"

    with file_lock(lock_path):
        assert lock_path.exists()
        assert lock_path.read_text() == str(os.getpid())

    assert not lock_path.exists()


def test_second_holder_is_rejected(tmp_path):
    lock_path = tmp_path / "sync.lock"

    with file_lock(lock_path):
        with pytest.raises(SyncAlreadyRunningError):
            with file_lock(lock_path, timeout=0):
                pass

    # Released: can be taken again
    with file_lock(lock_path):
        pass


def test_lock_released_on_exception(tmp_path):
    lock_path = tmp_path / "sync.lock"

    with pytest.raises(RuntimeError):
        with file_lock(lock_path):
            raise RuntimeError("batch crashed")

    assert not lock_path.exists()


def test_stale_lock_with_garbage_is_taken_over(tmp_path):
    lock_path = tmp_path / "sync.lock"
    lock_path.write_text("not-a-pid")

    with file_lock(lock_path):
        assert lock_path.read_text() == str(os.getpid())


def test_stale_lock_from_dead_process_is_taken_over(tmp_path, monkeypatch):
    lock_path = tmp_path / "sync.lock"
    lock_path.write_text("999999")

    def fake_kill(pid, signal):
        raise ProcessLookupError(3, "No such process")

    monkeypatch.setattr(os, "kill", fake_kill)

    with file_lock(lock_path):
        assert lock_path.read_text() == str(os.getpid())


def test_lock_creates_parent_directory(tmp_path):
    lock_path = tmp_path / "nested" / "dir" / "sync.lock"

    with file_lock(lock_path):
        assert lock_path.exists()


def test_acquire_leaves_only_the_lock_file(tmp_path):
    lock_path = tmp_path / "sync.lock"

    with file_lock(lock_path):
        assert [p.name for p in tmp_path.iterdir()] == ["sync.lock"]

    assert list(tmp_path.iterdir()) == []


def test_release_keeps_a_lock_taken_over_by_another_process(tmp_path):
    lock_path = tmp_path / "sync.lock"

    with file_lock(lock_path):
        lock_path.unlink()
        lock_path.write_text("424242")

    assert lock_path.read_text() == "424242"
