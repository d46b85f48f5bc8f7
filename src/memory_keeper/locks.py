"""
Run locks for consolidation.

At most one consolidation run may be active per corpus, and the lock is held
until the last pair is processed. Pick the lock that matches the deployment:
- InProcessRunLock: a single process
- FileRunLock: several processes on one host
- RedisRunLock: several hosts

Every lock hands out a per-instance owner token: ``release`` by an instance
that does not hold the lock is a no-op, and ``renew`` reports whether the
instance still owns it. The engine renews between pairs.

Lock names follow ``consolidation:{corpus_id}``.
"""

import json
import logging
import os
import re
import threading
import time
import uuid
from pathlib import Path
from typing import Dict, Optional, Protocol, Union

from typing_extensions import runtime_checkable

from memory_keeper.errors import LockError

try:
    import fcntl
except ImportError:
    fcntl = None  # type: ignore

try:
    import redis
except ImportError:
    redis = None  # type: ignore

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TTL_SECONDS = 300.0


def consolidation_lock_name(corpus_id: str) -> str:
    return f"consolidation:{corpus_id}"


@runtime_checkable
class RunLock(Protocol):
    name: str

    def acquire(self, blocking: bool = False, timeout: Optional[float] = None) -> bool:
        """Try to take the lock. Returns False if it is held elsewhere."""
        ...

    def renew(self) -> bool:
        """Keep holding the lock. Returns False if this instance no longer owns it."""
        ...

    def release(self) -> None:
        ...


class _LockContextMixin:
    def __enter__(self):
        if not self.acquire():
            raise LockError(f"Lock {self.name} is held by another run", context={"lock": self.name})
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False


_registry_guard = threading.Lock()
_in_process_locks: Dict[str, threading.Lock] = {}
_in_process_owners: Dict[str, str] = {}


class InProcessRunLock(_LockContextMixin):
    """
    Named lock shared by every instance with the same name in this process.

    Example:
        >>> first, second = InProcessRunLock("consolidation:p"), InProcessRunLock("consolidation:p")
        >>> first.acquire(), second.acquire()
        (True, False)
    """

    def __init__(self, name: str = "consolidation:default"):
        self.name = name
        with _registry_guard:
            self._lock = _in_process_locks.setdefault(name, threading.Lock())
        self._token: Optional[str] = None

    def acquire(self, blocking: bool = False, timeout: Optional[float] = None) -> bool:
        if not blocking:
            acquired = self._lock.acquire(blocking=False)
        else:
            acquired = self._lock.acquire(timeout=-1 if timeout is None else timeout)

        if acquired:
            token = uuid.uuid4().hex
            with _registry_guard:
                _in_process_owners[self.name] = token
            self._token = token
        return acquired

    def renew(self) -> bool:
        with _registry_guard:
            return self._token is not None and _in_process_owners.get(self.name) == self._token

    def release(self) -> None:
        if self._token is None:
            return
        with _registry_guard:
            owned = _in_process_owners.get(self.name) == self._token
            if owned:
                del _in_process_owners[self.name]
        self._token = None
        if owned:
            self._lock.release()

    def locked(self) -> bool:
        return self._lock.locked()


class FileRunLock(_LockContextMixin):
    """
    Exclusive ``flock`` on a per-name lock file, held for the whole run.

    The kernel drops the lock when the holder's process exits, so a crashed
    run never blocks the next one and a live holder is never taken over,
    however long it runs. The file is never deleted; while locked it records
    the holder's pid and start time for diagnostics.
    """

    def __init__(
        self,
        directory: Union[str, Path],
        name: str = "consolidation:default",
        poll_interval: float = 0.1,
    ):
        if fcntl is None:
            raise LockError(
                "FileRunLock needs fcntl (POSIX); use InProcessRunLock or RedisRunLock",
                context={"lock": name},
            )
        self.name = name
        self.path = Path(directory) / f"{re.sub(r'[^A-Za-z0-9_.-]', '_', name)}.lock"
        self.poll_interval = poll_interval
        self._fd: Optional[int] = None
        self._token: Optional[str] = None

    def read_holder(self) -> Optional[dict]:
        """Holder details written by the current owner, or None if unset or unreadable."""
        try:
            text = self.path.read_text()
        except FileNotFoundError:
            return None
        try:
            return json.loads(text) if text.strip() else None
        except ValueError:
            return None

    def _try_acquire(self) -> bool:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_CREAT | os.O_RDWR, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            return False
        except OSError:
            os.close(fd)
            raise

        token = uuid.uuid4().hex
        holder = {"pid": os.getpid(), "acquired_at": time.time(), "token": token, "name": self.name}
        try:
            os.ftruncate(fd, 0)
            os.write(fd, json.dumps(holder).encode("utf-8"))
        except OSError:
            os.close(fd)
            raise

        self._fd = fd
        self._token = token
        return True

    def acquire(self, blocking: bool = False, timeout: Optional[float] = None) -> bool:
        if self._fd is not None:
            return False

        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            if self._try_acquire():
                logger.debug(f"Acquired file lock {self.path}")
                return True
            if not blocking or (deadline is not None and time.monotonic() >= deadline):
                logger.debug(f"File lock {self.path} held by {self.read_holder()}")
                return False
            time.sleep(self.poll_interval)

    def renew(self) -> bool:
        return self._fd is not None

    def release(self) -> None:
        if self._fd is None:
            return
        fd, self._fd, self._token = self._fd, None, None
        try:
            os.ftruncate(fd, 0)
            fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)


# Delete the key only if it still holds our token.
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""

# Extend the TTL only if the key still holds our token.
_RENEW_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("pexpire", KEYS[1], ARGV[2])
else
    return 0
end
"""


class RedisRunLock(_LockContextMixin):
    """
    ``SET NX PX`` lock with a random token and compare-and-delete release.

    The TTL bounds how long a crashed run can block others; a live run keeps
    the key by calling ``renew`` (compare-and-``PEXPIRE``) between pairs.
    """

    def __init__(
        self,
        client,
        name: str = "consolidation:default",
        ttl_ms: int = int(DEFAULT_LOCK_TTL_SECONDS * 1000),
        key_prefix: str = "memory-keeper:lock:",
        poll_interval: float = 0.1,
    ):
        """
        Args:
            client: redis.Redis client
            name: Lock name
            ttl_ms: Expiry of the lock key in milliseconds, reset by each renew
            key_prefix: Prefix for Redis keys
            poll_interval: Seconds between attempts when blocking
        """
        self.client = client
        self.name = name
        self.key = f"{key_prefix}{name}"
        self.ttl_ms = ttl_ms
        self.poll_interval = poll_interval
        self._token: Optional[str] = None

    @classmethod
    def from_url(cls, url: str, name: str = "consolidation:default", **kwargs) -> "RedisRunLock":
        if redis is None:
            raise ImportError(
                "redis package is required for RedisRunLock. "
                "Install with: pip install memory-keeper[redis]"
            )
        return cls(redis.Redis.from_url(url, decode_responses=True), name=name, **kwargs)

    def acquire(self, blocking: bool = False, timeout: Optional[float] = None) -> bool:
        token = uuid.uuid4().hex
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            if self.client.set(self.key, token, nx=True, px=self.ttl_ms):
                self._token = token
                logger.debug(f"Acquired redis lock {self.key}")
                return True
            if not blocking or (deadline is not None and time.monotonic() >= deadline):
                return False
            time.sleep(self.poll_interval)

    def renew(self) -> bool:
        if self._token is None:
            return False
        renewed = bool(self.client.eval(_RENEW_SCRIPT, 1, self.key, self._token, self.ttl_ms))
        if not renewed:
            logger.warning(f"Redis lock {self.key} is no longer held by this run")
        return renewed

    def release(self) -> None:
        if self._token is None:
            return
        released = self.client.eval(_RELEASE_SCRIPT, 1, self.key, self._token)
        if not released:
            logger.warning(f"Redis lock {self.key} expired before release")
        self._token = None
