from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from .target import TargetConnection, TargetConnectionError

"""Shared target connection cache.

Keyed by (organization_id, reference). Entries are created lazily, checked with
ping() on reuse and replaced when the ping fails. Concurrent acquisitions of
the same key build at most one connection.
"""

__all__ = [
    "ConnectionResolver",
    "ConnectionCache",
]

logger = logging.getLogger(__name__)

ConnectionResolver = Callable[[str, str], TargetConnection]


class ConnectionCache:
    def __init__(self, resolver: ConnectionResolver) -> None:
        self._resolver = resolver
        self._connections: dict[tuple[str, str], TargetConnection] = {}
        self._key_locks: dict[tuple[str, str], threading.Lock] = {}
        self._lock = threading.Lock()

    def _key_lock(self, key: tuple[str, str]) -> threading.Lock:
        with self._lock:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._key_locks[key] = lock
            return lock

    def get(self, organization_id: str, reference: str) -> TargetConnection:
        """Return a live connection for the key, creating or replacing it as needed.

        Raises:
            ConnectionNotFoundError: the resolver does not know the reference
            TargetConnectionError: the connection could not be established
        """
        key = (organization_id, reference)
        with self._key_lock(key):
            conn = self._connections.get(key)
            if conn is not None:
                try:
                    conn.ping()
                    return conn
                except TargetConnectionError as e:
                    logger.warning("cached connection for %s/%s failed liveness check: %s", organization_id, reference, e)
                    self._discard(key, conn)

            conn = self._resolver(organization_id, reference)
            self._connections[key] = conn
            return conn

    __call__ = get

    def invalidate(self, organization_id: str, reference: str) -> None:
        key = (organization_id, reference)
        with self._key_lock(key):
            conn = self._connections.get(key)
            if conn is not None:
                self._discard(key, conn)

    def _discard(self, key: tuple[str, str], conn: TargetConnection) -> None:
        self._connections.pop(key, None)
        try:
            conn.close()
        except TargetConnectionError as e:
            logger.debug("close failed for discarded connection %s: %s", key, e)

    def close_all(self) -> None:
        with self._lock:
            items = list(self._connections.items())
            self._connections.clear()
        for key, conn in items:
            try:
                conn.close()
            except TargetConnectionError as e:
                logger.debug("close failed for %s: %s", key, e)

    def __len__(self) -> int:
        return len(self._connections)
