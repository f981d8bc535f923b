"""
The live set of request identities the bridge listens for.

One writer (registration) publishes changes; any number of readers wait
for them. A change is a wake-up, not a queue: readers only ever see the
latest set, so a burst of registrations collapses into one resubscription.
"""

import asyncio
import threading
from typing import Iterable

from loguru import logger


class SubscriptionManager:
    """owns the identity set and notifies readers when it grows"""

    def __init__(self, initial: Iterable[str] = ()):
        self._lock = threading.Lock()
        self._identities = frozenset(initial)
        self._version = 0
        self._waiters: list[tuple[asyncio.AbstractEventLoop, asyncio.Future]] = []

    @classmethod
    def from_store(cls, store) -> "SubscriptionManager":
        """populate the set with every known service and wallet identity"""
        identities = set(store.list_all_service_request_identities())
        identities.update(store.list_all_user_request_identities())
        logger.info(f"nwc loaded {len(identities)} request identities")
        return cls(identities)

    @property
    def version(self) -> int:
        """number of changes published so far"""
        return self._version

    def snapshot(self) -> frozenset:
        return self._identities

    def register(self, pubkey: str) -> bool:
        """
        add pubkey to the set

        Returns True and wakes readers if pubkey was new, otherwise does
        nothing and returns False.
        """
        with self._lock:
            if pubkey in self._identities:
                return False
            self._identities = self._identities | {pubkey}
            self._version += 1
            waiters, self._waiters = self._waiters, []

        logger.debug(f"nwc identity registered: {pubkey}")
        for loop, future in waiters:
            if not loop.is_closed():
                loop.call_soon_threadsafe(_wake, future)
        return True

    def receiver(self) -> "IdentityReceiver":
        return IdentityReceiver(self)

    def _current(self) -> tuple[int, frozenset]:
        with self._lock:
            return self._version, self._identities

    def _wait_after(self, seen: int):
        """return a future resolved on the next change, or None if already changed"""
        with self._lock:
            if self._version != seen:
                return None
            future = asyncio.get_running_loop().create_future()
            self._waiters.append((asyncio.get_running_loop(), future))
            return future


def _wake(future: asyncio.Future):
    if not future.done():
        future.set_result(None)


class IdentityReceiver:
    """a reader's view of the identity set, remembering the last version it saw"""

    def __init__(self, manager: SubscriptionManager):
        self._manager = manager
        self._seen = manager.version

    def borrow_and_update(self) -> frozenset:
        """return the latest set and mark it as seen"""
        self._seen, identities = self._manager._current()
        return identities

    def has_changed(self) -> bool:
        return self._manager.version != self._seen

    async def changed(self):
        """wait until the set differs from the last one seen, then mark it seen"""
        while True:
            future = self._manager._wait_after(self._seen)
            if future is None:
                self._seen = self._manager.version
                return
            await future
