"""Tests for etch.lib.locking module."""

import fcntl
import pytest

from etch.lib.locking import LockTimeout, file_lock


class TestFileLock:

    def test_lock_and_release(self, tmp_path):
        path = tmp_path / "plan.md"
        path.write_text("x")

        with file_lock(path):
            pass

        # Released: a non-blocking lock from another descriptor succeeds
        with open(path) as f:
            fcntl.flock(f, fcntl.LOCK_EX | fcntl.LOCK_NB)
            fcntl.flock(f, fcntl.LOCK_UN)

    def test_times_out_when_held(self, tmp_path):
        path = tmp_path / "plan.md"
        path.write_text("x")

        with open(path) as holder:
            fcntl.flock(holder, fcntl.LOCK_EX)
            with pytest.raises(LockTimeout, match="plan.md"):
                with file_lock(path, timeout=0.2):
                    pass

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            with file_lock(tmp_path / "missing.md"):
                pass
