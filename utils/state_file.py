"""Locked, atomic JSON persistence for session state."""

from __future__ import annotations

import errno
import json
import os
import tempfile
import time
from contextlib import contextmanager
from typing import Any, Iterator

import fcntl

E_STATE_LOCKED = "E_STATE_LOCKED"
E_JSON_CORRUPT = "E_JSON_CORRUPT"

_TRANSIENT_REPLACE_ERRNOS = {errno.EACCES, errno.EBUSY, errno.EPERM}


class StateFileLockError(RuntimeError):
    """Raised when the state-file lock cannot be acquired in time."""

    code = E_STATE_LOCKED


class StateFileCorruptError(ValueError):
    """Raised when a state file exists but does not hold valid JSON."""

    code = E_JSON_CORRUPT


@contextmanager
def state_file_lock(
    target_path: str,
    *,
    timeout_seconds: float = 2.0,
    poll_seconds: float = 0.05,
) -> Iterator[None]:
    """Hold an exclusive advisory lock on `<target_path>.lock` for the duration of the block."""

    lock_path = f"{target_path}.lock"
    os.makedirs(os.path.dirname(lock_path) or ".", exist_ok=True)
    deadline = time.monotonic() + max(0.05, float(timeout_seconds))
    poll = max(0.01, float(poll_seconds))

    with open(lock_path, "a+b") as handle:
        while True:
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError as exc:
                if time.monotonic() >= deadline:
                    raise StateFileLockError(f"{E_STATE_LOCKED}: state lock timeout path={target_path}") from exc
                time.sleep(poll)
        try:
            yield
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


def atomic_write_json(path: str, payload: Any, *, indent: int = 2, replace_retries: int = 5) -> None:
    """Write JSON to a sibling temp file, fsync it, then swap it into place."""

    state_dir = os.path.dirname(path) or "."
    os.makedirs(state_dir, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(prefix=f"{os.path.basename(path)}.", suffix=".tmp", dir=state_dir, text=True)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=indent)
            f.flush()
            os.fsync(f.fileno())
        for attempt in range(replace_retries + 1):
            try:
                os.replace(tmp_path, path)
                break
            except OSError as exc:
                if exc.errno not in _TRANSIENT_REPLACE_ERRNOS or attempt >= replace_retries:
                    raise
                time.sleep(0.03 * (1.5**attempt))
    except BaseException:
        try:
            os.remove(tmp_path)
        except OSError:
            pass
        raise


def write_json_atomic_locked(path: str, payload: Any, *, timeout_seconds: float = 2.0) -> None:
    with state_file_lock(path, timeout_seconds=timeout_seconds):
        atomic_write_json(path, payload)


def read_json_locked(path: str, *, timeout_seconds: float = 2.0) -> Any | None:
    """Return the parsed payload, or None when the file does not exist yet."""

    with state_file_lock(path, timeout_seconds=timeout_seconds):
        try:
            with open(path, "r", encoding="utf-8-sig") as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except json.JSONDecodeError as exc:
            raise StateFileCorruptError(f"{E_JSON_CORRUPT}: {path}: {exc}") from exc
