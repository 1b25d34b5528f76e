"""
Local run lock

Prevents two fsmoctl cycles from overlapping on one node. The lock file holds
the PID of the running process; a lock whose process is gone is stale and is
cleared automatically.
"""

import logging
import os
from pathlib import Path
from typing import Optional

import psutil

from ..errors import AlreadyRunning, StorageUnavailable

logger = logging.getLogger(__name__)


class RunLock:
    """PID file lock with liveness check"""

    def __init__(self, path: Path):
        self.path = Path(path)
        self.pid = os.getpid()
        self.acquired = False

    def holder_pid(self) -> Optional[int]:
        try:
            content = self.path.read_text().strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Cannot read lock file {self.path}: {e}")
            return None
        try:
            return int(content)
        except ValueError:
            return None

    def _holder_alive(self, pid: Optional[int]) -> bool:
        if pid is None or pid == self.pid:
            return False
        return psutil.pid_exists(pid)

    def acquire(self):
        pid = self.holder_pid()
        if self._holder_alive(pid):
            raise AlreadyRunning(pid)
        if self.path.exists():
            logger.info("Removing stale lock file")
            try:
                self.path.unlink()
            except FileNotFoundError:
                pass

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            # Lost a race against another starting instance
            raise AlreadyRunning(self.holder_pid() or -1)
        except OSError as e:
            raise StorageUnavailable(f"Cannot create lock file {self.path}: {e}")
        with os.fdopen(fd, "w") as f:
            f.write(f"{self.pid}\n")
        self.acquired = True
        logger.debug(f"Acquired run lock {self.path}")

    def release(self):
        if not self.acquired:
            return
        if self.holder_pid() == self.pid:
            try:
                self.path.unlink()
            except FileNotFoundError:
                pass
        self.acquired = False

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
