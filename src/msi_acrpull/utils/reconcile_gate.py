"""
Per-binding single-flight gate.

kopf serializes handlers for one object, but the refresh daemon of that
object runs alongside them. Every reconciliation goes through this gate so
that at most one reconciliation per binding is in flight, while different
bindings proceed in parallel.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class ReconcileGate:
    """Hands out one asyncio lock per (namespace, name) key."""

    def __init__(self) -> None:
        self._locks: dict[tuple[str, str], _KeyLock] = {}

    @asynccontextmanager
    async def hold(self, namespace: str, name: str) -> AsyncIterator[None]:
        """Hold the lock of a binding for the duration of the block."""
        key = (namespace, name)
        entry = self._locks.setdefault(key, _KeyLock())
        entry.users += 1
        try:
            if entry.lock.locked():
                logger.debug(f"Waiting for in-flight reconciliation of {namespace}/{name}")
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            # Drop idle entries so deleted bindings do not leak locks
            if entry.users == 0 and self._locks.get(key) is entry:
                del self._locks[key]

    def is_busy(self, namespace: str, name: str) -> bool:
        entry = self._locks.get((namespace, name))
        return entry is not None and entry.lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
