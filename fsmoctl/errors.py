"""
fsmoctl error taxonomy

Every failure the orchestration cycle can hit is expressed as a subclass of
FsmoError so callers can catch the whole family at the cycle boundary while
still telling directory, storage and local-service problems apart.
"""

from typing import Optional


class FsmoError(Exception):
    """Base exception for fsmoctl"""
    pass


class ConfigError(FsmoError):
    """Configuration file could not be loaded or validated"""
    pass


class StorageUnavailable(FsmoError):
    """Shared state store is not readable or writable"""

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message)
        self.key = key


class WriteConflict(FsmoError):
    """Compare-and-swap write found a different previous value"""

    def __init__(self, key: str, expected: Optional[str], actual: Optional[str]):
        super().__init__(f"Concurrent modification of {key}")
        self.key = key
        self.expected = expected
        self.actual = actual


class DirectoryUnreachable(FsmoError):
    """Role query or directory command failed or timed out"""

    def __init__(self, message: str, returncode: Optional[int] = None):
        super().__init__(message)
        self.returncode = returncode


class SeizureFailed(FsmoError):
    """The directory refused or failed a forced role seizure"""

    def __init__(self, role: str, message: str):
        super().__init__(f"Seizure of {role} failed: {message}")
        self.role = role


class LockContention(FsmoError):
    """Another node holds a valid seizure lock for the role"""

    def __init__(self, role: str, holder: str, age_seconds: float = 0.0):
        super().__init__(f"Seizure lock for {role} held by {holder} ({age_seconds:.0f}s old)")
        self.role = role
        self.holder = holder
        self.age_seconds = age_seconds


class ServiceControlError(FsmoError):
    """A local service manager command failed"""

    def __init__(self, service: str, action: str, message: str = ""):
        super().__init__(f"{action} {service} failed{': ' + message if message else ''}")
        self.service = service
        self.action = action


class ConfigApplyFailed(FsmoError):
    """A role configurer could not reconfigure its local services"""

    def __init__(self, role: str, failures: list):
        super().__init__(f"Applying {role} configuration failed: {'; '.join(failures)}")
        self.role = role
        self.failures = failures


class AlreadyRunning(FsmoError):
    """Another live fsmoctl process holds the local run lock"""

    def __init__(self, pid: int):
        super().__init__(f"Another instance is running (PID: {pid})")
        self.pid = pid
