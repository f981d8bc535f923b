"""
The bridging engine: keep one subscription per identity set alive and
spawn a handler for every NWC event that matches it.
"""

import asyncio
import time
from typing import Callable, Optional

from loguru import logger

from .connections import DEFAULT_SERVICE_RELAY
from .dedupe import DedupeCache
from .errors import BridgeError, HandlerTimeout, RelayUnavailable, StoreUnavailable, UnknownIdentity
from .event import Event
from .nip47 import REQUEST_KIND, RESPONSE_KIND
from .relay import RelayPool
from .subscriptions import IdentityReceiver, SubscriptionManager


def build_filters(identities, since: Optional[int] = None) -> list[dict]:
    """one filter for events addressed to our identities, one for events they author"""
    ids = sorted(identities)
    since = int(time.time()) if since is None else since
    kinds = [REQUEST_KIND, RESPONSE_KIND]
    return [
        {"kinds": kinds, "#p": ids, "since": since},
        {"kinds": kinds, "authors": ids, "since": since},
    ]


class BridgeEngine:
    """
    Runs epochs until stopped. An epoch connects to the relays, subscribes
    to the current identity set and dispatches events until the set changes
    or a relay drops, then everything is torn down and rebuilt.
    """

    def __init__(self, store, subscriptions: SubscriptionManager,
                 request_forwarder, response_forwarder,
                 default_relay: str = DEFAULT_SERVICE_RELAY,
                 handler_timeout: float = 30.0,
                 reconnect_delay: float = 5.0,
                 pool_factory: Callable = RelayPool,
                 dedupe: Optional[DedupeCache] = None):
        self.store = store
        self.subscriptions = subscriptions
        self.request_forwarder = request_forwarder
        self.response_forwarder = response_forwarder
        self.default_relay = default_relay
        self.handler_timeout = handler_timeout
        self.reconnect_delay = reconnect_delay
        self.pool_factory = pool_factory
        self.dedupe = dedupe or DedupeCache()
        self.epochs = 0
        self._tasks: set[asyncio.Task] = set()
        self._stop_event = asyncio.Event()

    def relay_urls(self) -> list[str]:
        """every relay a user connection lives on, plus the service relay"""
        urls = self.store.list_all_user_relay_urls()
        if self.default_relay not in urls:
            urls.append(self.default_relay)
        return urls

    async def run(self):
        receiver = self.subscriptions.receiver()
        self._stop_event.clear()
        try:
            while not self._stop_event.is_set():
                try:
                    await self._run_epoch(receiver)
                except (RelayUnavailable, StoreUnavailable) as e:
                    logger.error(f"nwc epoch failed: {e}, retrying in {self.reconnect_delay}s")
                    await self._wait_stopped(self.reconnect_delay)
                except Exception:
                    logger.exception(f"nwc unexpected epoch failure, retrying in {self.reconnect_delay}s")
                    await self._wait_stopped(self.reconnect_delay)
        finally:
            if self._tasks:
                await asyncio.gather(*self._tasks, return_exceptions=True)
        logger.info("nwc engine stopped")

    def stop(self):
        self._stop_event.set()

    async def _wait_stopped(self, timeout: float):
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout)
        except asyncio.TimeoutError:
            pass

    async def _run_epoch(self, receiver: IdentityReceiver):
        identities = receiver.borrow_and_update()
        if not identities:
            logger.info("nwc no identities registered, waiting")
            await self._until_changed(receiver)
            return

        urls = await asyncio.to_thread(self.relay_urls)
        pool = self.pool_factory(urls)
        try:
            await pool.connect()
            await pool.subscribe(build_filters(identities))
            self.epochs += 1
            logger.info(f"nwc listening for {len(identities)} identities on {urls}")
            await self._listen(pool, receiver)
        finally:
            await pool.close()

    async def _until_changed(self, receiver: IdentityReceiver):
        changed = asyncio.ensure_future(receiver.changed())
        stopped = asyncio.ensure_future(self._stop_event.wait())
        try:
            await asyncio.wait({changed, stopped}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            changed.cancel()
            stopped.cancel()

    async def _listen(self, pool, receiver: IdentityReceiver):
        changed = asyncio.ensure_future(receiver.changed())
        stopped = asyncio.ensure_future(self._stop_event.wait())
        next_event = None
        try:
            while True:
                next_event = asyncio.ensure_future(pool.next_event())
                done, _ = await asyncio.wait(
                    {next_event, changed, stopped},
                    return_when=asyncio.FIRST_COMPLETED)

                if next_event in done:
                    # raises RelayUnavailable when a relay dropped
                    url, event = next_event.result()
                    self._dispatch(url, event, pool)

                if changed in done:
                    logger.info("nwc identity set changed, resubscribing")
                    return
                if stopped in done:
                    return
        finally:
            for future in (changed, stopped, next_event):
                if future is not None and not future.done():
                    future.cancel()

    def _dispatch(self, url: str, event: Event, pool):
        try:
            valid_id = event.id == event.compute_id()
        except (ValueError, TypeError) as e:
            logger.debug(f"nwc dropping unserializable event from {url}: {e}")
            return
        if not valid_id:
            logger.debug(f"nwc dropping event with bad id from {url}")
            return
        if self.dedupe.check_and_mark(event.id):
            return

        if event.kind == REQUEST_KIND:
            handler = self.request_forwarder
        elif event.kind == RESPONSE_KIND:
            handler = self.response_forwarder
        else:
            logger.warning(f"nwc received event with unexpected kind {event.kind} from {url}")
            return

        task = asyncio.create_task(self._handle(handler, event, pool))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _handle(self, handler, event: Event, pool):
        try:
            await asyncio.wait_for(handler.handle(event, pool), self.handler_timeout)
        except asyncio.TimeoutError:
            error = HandlerTimeout(f"gave up after {self.handler_timeout}s")
            logger.warning(f"nwc event {event.id} kind {event.kind} from {event.pubkey}: {error}")
        except UnknownIdentity as e:
            logger.debug(f"nwc event {event.id} kind {event.kind} from {event.pubkey}: {e}")
        except BridgeError as e:
            logger.warning(f"nwc event {event.id} kind {event.kind} from {event.pubkey}: {e}")
        except Exception:
            logger.exception(f"nwc unexpected error handling event {event.id}")
