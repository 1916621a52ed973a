"""Locked, atomically-written JSON state file used as the snapshot store."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from contextlib import contextmanager
from typing import Any, Iterator

from quota.errors import StateStoreError

try:  # pragma: no cover - platform specific
    import msvcrt
except ImportError:  # pragma: no cover - platform specific
    msvcrt = None  # type: ignore[assignment]

try:  # pragma: no cover - platform specific
    import fcntl
except ImportError:  # pragma: no cover - platform specific
    fcntl = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)

E_STATE_LOCKED = "E_STATE_LOCKED"
E_JSON_CORRUPT = "E_JSON_CORRUPT"


class StateFileLockError(StateStoreError):
    """Raised when the state-file lock cannot be acquired in time."""

    code = E_STATE_LOCKED


def _ensure_lock_byte(handle: Any) -> None:
    handle.seek(0, os.SEEK_END)
    if handle.tell() == 0:
        handle.write(b"0")
        handle.flush()
    handle.seek(0)


def _try_lock(handle: Any) -> None:
    if os.name == "nt" and msvcrt is not None:  # pragma: no cover - windows-only runtime path
        handle.seek(0)
        try:
            msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)
            return
        except OSError as exc:
            raise BlockingIOError(str(exc)) from exc
    if fcntl is not None:  # pragma: no cover - unix-only runtime path
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            return
        except OSError as exc:
            raise BlockingIOError(str(exc)) from exc


def _unlock(handle: Any) -> None:
    if os.name == "nt" and msvcrt is not None:  # pragma: no cover - windows-only runtime path
        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
        return
    if fcntl is not None:  # pragma: no cover - unix-only runtime path
        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


@contextmanager
def state_file_lock(
    target_path: str,
    *,
    timeout_seconds: float = 2.0,
    poll_seconds: float = 0.05,
) -> Iterator[None]:
    """Acquire an inter-process lock for a state file using `<state>.lock`."""

    lock_path = f"{str(target_path)}.lock"
    os.makedirs(os.path.dirname(lock_path) or ".", exist_ok=True)
    deadline = time.monotonic() + max(0.05, float(timeout_seconds))
    poll = max(0.01, float(poll_seconds))

    handle = open(lock_path, "a+b")
    locked = False
    try:
        _ensure_lock_byte(handle)
        while True:
            try:
                _try_lock(handle)
                locked = True
                break
            except BlockingIOError as exc:
                if time.monotonic() >= deadline:
                    raise StateFileLockError(f"{E_STATE_LOCKED}: state lock timeout path={target_path}") from exc
                time.sleep(poll)
        yield
    finally:
        if locked:
            try:
                _unlock(handle)
            except OSError:
                pass
        handle.close()


def atomic_write_json(path: str, payload: Any, *, indent: int = 2) -> None:
    """Write JSON atomically via temp file + replace in the same directory."""

    abs_path = str(path)
    state_dir = os.path.dirname(abs_path) or "."
    os.makedirs(state_dir, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(prefix=f"{os.path.basename(abs_path)}.", suffix=".tmp", dir=state_dir, text=True)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=indent)
            f.flush()
            try:
                os.fsync(f.fileno())
            except OSError:
                pass
        os.replace(tmp_path, abs_path)
    except BaseException:
        try:
            os.remove(tmp_path)
        except OSError:
            pass
        raise


def _read_json(path: str) -> Any:
    try:
        with open(path, "r", encoding="utf-8-sig") as f:
            return json.load(f)
    except FileNotFoundError:
        return None
    except json.JSONDecodeError as exc:
        raise StateStoreError(f"{E_JSON_CORRUPT}: state file is not valid JSON path={path}: {exc}") from exc


class JsonFileStateStore:
    """Key/value store of JSON blobs kept in a single locked file.

    Reads of a missing file or key return None. Writes are read-modify-write
    under the file lock so other keys in the file survive.
    """

    def __init__(self, path: str, *, timeout_seconds: float = 2.0, poll_seconds: float = 0.05) -> None:
        self.path = str(path)
        self._timeout_seconds = timeout_seconds
        self._poll_seconds = poll_seconds

    def _lock(self) -> Any:
        return state_file_lock(self.path, timeout_seconds=self._timeout_seconds, poll_seconds=self._poll_seconds)

    def get(self, key: str) -> Any | None:
        with self._lock():
            data = _read_json(self.path)
        if data is None:
            return None
        if not isinstance(data, dict):
            raise StateStoreError(f"{E_JSON_CORRUPT}: state file root must be an object path={self.path}")
        return data.get(key)

    def put(self, key: str, value: Any) -> None:
        try:
            with self._lock():
                data = _read_json(self.path)
                if data is None:
                    data = {}
                elif not isinstance(data, dict):
                    raise StateStoreError(f"{E_JSON_CORRUPT}: state file root must be an object path={self.path}")
                data[key] = value
                atomic_write_json(self.path, data)
        except OSError as exc:
            raise StateStoreError(f"Failed to write state file path={self.path}: {exc}") from exc
        logger.debug("STATE_WRITE key=%s path=%s", key, self.path)
