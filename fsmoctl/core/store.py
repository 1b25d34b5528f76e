"""
fsmoctl Shared State Store

Key/value view of the replicated SYSVOL tree. Keys are slash separated paths
relative to the shared root; values are the full text of one record file.

Writes are whole-record replacements. `put_atomic` takes the value the caller
last read and refuses to replace anything else, which turns every table
update into a compare-and-swap. On the file backend a conditional write holds
an exclusive flock on a hidden sidecar file for the whole compare and write,
creates absent records with os.link so an existing file is never clobbered,
and re-reads the record afterwards. Records are written to a temp file first,
so readers never observe a torn record. Replication between nodes is external and
asynchronous; the compare step only protects against writers that share this
node's view of the tree.
"""

import fcntl
import logging
import os
import threading
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from prometheus_client import Counter

from ..errors import StorageUnavailable, WriteConflict

logger = logging.getLogger(__name__)

# Metrics
STORE_OPERATIONS = Counter('fsmoctl_store_operations_total', 'Shared store operations', ['operation'])
STORE_CONFLICTS = Counter('fsmoctl_store_conflicts_total', 'Compare-and-swap conflicts in the shared store')

# Sentinel for "no expectation about the previous value"
ANY = object()


class SharedStateStore(ABC):
    """Storage seam for all shared records"""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the record text or None when absent"""
        pass

    @abstractmethod
    def put_atomic(self, key: str, value: str, expected_previous=ANY) -> None:
        """Replace a record.

        expected_previous: ANY to overwrite unconditionally, None to require
        that the record is absent, or the exact text last read.
        Raises WriteConflict when the current value differs.
        """
        pass

    @abstractmethod
    def delete(self, key: str, expected_previous=ANY) -> bool:
        """Remove a record; returns False when it was already absent"""
        pass

    @abstractmethod
    def append(self, key: str, line: str) -> None:
        """Append one line to a log-style record"""
        pass

    @abstractmethod
    def list_keys(self, prefix: str = "") -> List[str]:
        pass

    @abstractmethod
    def ensure_layout(self, directories: Iterable[str]) -> List[str]:
        """Create the directory tree, returning the directories created"""
        pass

    def describe(self) -> str:
        return self.__class__.__name__

    @staticmethod
    def _check_expected(key: str, expected_previous, current: Optional[str]):
        if expected_previous is ANY:
            return
        if expected_previous != current:
            STORE_CONFLICTS.inc()
            raise WriteConflict(key, expected_previous, current)


class FileStateStore(SharedStateStore):
    """Store backed by a replicated filesystem tree (SYSVOL)"""

    def __init__(self, root: Path):
        self.root = Path(root)
        self._lock = threading.Lock()

    def describe(self) -> str:
        return str(self.root)

    def _path(self, key: str) -> Path:
        parts = [part for part in key.split("/") if part]
        if not parts or any(part in (".", "..") for part in parts):
            raise StorageUnavailable(f"Invalid store key: {key!r}", key)
        return self.root.joinpath(*parts)

    def _read(self, path: Path, key: str) -> Optional[str]:
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageUnavailable(f"Cannot read {path}: {e}", key)

    def get(self, key: str) -> Optional[str]:
        STORE_OPERATIONS.labels(operation="get").inc()
        return self._read(self._path(key), key)

    @contextmanager
    def _guard(self, path: Path, key: str):
        """Exclusive flock shared by every store instance and process on this host"""
        guard_path = path.with_name(f".{path.name}.guard")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(guard_path, os.O_RDWR | os.O_CREAT, 0o644)
        except OSError as e:
            raise StorageUnavailable(f"Cannot open guard {guard_path}: {e}", key)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
            yield
        finally:
            # Closing the descriptor drops the flock
            os.close(fd)

    def _commit(self, path: Path, key: str, value: str, exclusive: bool):
        temp_path = path.with_name(f".{path.name}.{os.getpid()}.{uuid.uuid4().hex[:8]}.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, "w", encoding="utf-8") as f:
                f.write(value)
                f.flush()
                os.fsync(f.fileno())
            if exclusive:
                os.link(temp_path, path)
            else:
                os.replace(temp_path, path)
        except FileExistsError:
            STORE_CONFLICTS.inc()
            raise WriteConflict(key, None, self._read(path, key))
        except OSError as e:
            raise StorageUnavailable(f"Cannot write {path}: {e}", key)
        finally:
            if temp_path.exists():
                temp_path.unlink()

    def put_atomic(self, key: str, value: str, expected_previous=ANY) -> None:
        STORE_OPERATIONS.labels(operation="put").inc()
        path = self._path(key)

        if expected_previous is ANY:
            with self._lock:
                self._commit(path, key, value, exclusive=False)
            logger.debug(f"Wrote {key} ({len(value)} bytes)")
            return

        with self._lock, self._guard(path, key):
            self._check_expected(key, expected_previous, self._read(path, key))
            self._commit(path, key, value, exclusive=expected_previous is None)
            # A writer that bypassed the guard may have replaced the record meanwhile
            written = self._read(path, key)
            if written != value:
                STORE_CONFLICTS.inc()
                raise WriteConflict(key, expected_previous, written)

        logger.debug(f"Wrote {key} ({len(value)} bytes)")

    def delete(self, key: str, expected_previous=ANY) -> bool:
        STORE_OPERATIONS.labels(operation="delete").inc()
        path = self._path(key)
        with self._lock, self._guard(path, key):
            current = self._read(path, key)
            if current is None:
                return False
            self._check_expected(key, expected_previous, current)
            try:
                path.unlink()
            except FileNotFoundError:
                return False
            except OSError as e:
                raise StorageUnavailable(f"Cannot delete {path}: {e}", key)
        return True

    def append(self, key: str, line: str) -> None:
        STORE_OPERATIONS.labels(operation="append").inc()
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "a", encoding="utf-8") as f:
                f.write(line.rstrip("\n") + "\n")
        except OSError as e:
            raise StorageUnavailable(f"Cannot append to {path}: {e}", key)

    def list_keys(self, prefix: str = "") -> List[str]:
        STORE_OPERATIONS.labels(operation="list").inc()
        if not self.root.exists():
            return []
        keys = []
        try:
            for path in self.root.rglob("*"):
                # Temp files and guards are hidden
                if not path.is_file() or path.name.startswith("."):
                    continue
                key = path.relative_to(self.root).as_posix()
                if key.startswith(prefix):
                    keys.append(key)
        except OSError as e:
            raise StorageUnavailable(f"Cannot list {self.root}: {e}")
        return sorted(keys)

    def ensure_layout(self, directories: Iterable[str]) -> List[str]:
        created = []
        for directory in directories:
            path = self._path(directory)
            if path.is_dir():
                continue
            logger.info(f"Creating directory: {path}")
            try:
                path.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StorageUnavailable(f"Failed to create directory {path}: {e}", directory)
            created.append(directory)
        return created


class MemoryStateStore(SharedStateStore):
    """Process-local store; compare-and-swap is exact under a mutex"""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})
        self._directories: set = set()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        STORE_OPERATIONS.labels(operation="get").inc()
        with self._lock:
            return self._data.get(key)

    def put_atomic(self, key: str, value: str, expected_previous=ANY) -> None:
        STORE_OPERATIONS.labels(operation="put").inc()
        with self._lock:
            self._check_expected(key, expected_previous, self._data.get(key))
            self._data[key] = value

    def delete(self, key: str, expected_previous=ANY) -> bool:
        STORE_OPERATIONS.labels(operation="delete").inc()
        with self._lock:
            if key not in self._data:
                return False
            self._check_expected(key, expected_previous, self._data[key])
            del self._data[key]
            return True

    def append(self, key: str, line: str) -> None:
        STORE_OPERATIONS.labels(operation="append").inc()
        with self._lock:
            self._data[key] = self._data.get(key, "") + line.rstrip("\n") + "\n"

    def list_keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            return sorted(key for key in self._data if key.startswith(prefix))

    def ensure_layout(self, directories: Iterable[str]) -> List[str]:
        created = [d for d in directories if d not in self._directories]
        self._directories.update(created)
        return created


def update_record(
    store: SharedStateStore,
    key: str,
    mutate: Callable[[Optional[str]], Optional[str]],
    attempts: int = 5,
) -> Optional[str]:
    """Read-modify-write a whole record with compare-and-swap retries.

    mutate receives the current text (None when absent) and returns the new
    text, or None to leave the record untouched. Returns the text written.
    """
    for attempt in range(1, attempts + 1):
        current = store.get(key)
        updated = mutate(current)
        if updated is None or updated == current:
            return None
        try:
            store.put_atomic(key, updated, expected_previous=current)
            return updated
        except WriteConflict:
            logger.debug(f"Write conflict on {key}, retrying ({attempt}/{attempts})")
    raise StorageUnavailable(f"Gave up updating {key} after {attempts} conflicting writes", key)
