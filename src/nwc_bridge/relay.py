"""Defines classes for interacting with relays"""

import asyncio
import json
import uuid
from typing import Optional

import websockets
from loguru import logger

from .errors import MalformedEvent, RelayUnavailable
from .event import Event


def normalize_relay_url(url: str) -> str:
    return url.strip().rstrip('/')


class Relay:
    """connect to a relay, subscribe to filters, and publish events"""

    def __init__(self, uri: str, inbox: Optional[asyncio.Queue] = None):
        self.uri = uri
        self.ws = None
        self.subscriptions = {}
        self._inbox = inbox if inbox is not None else asyncio.Queue()
        self._listener: Optional[asyncio.Task] = None
        self._running = False

    @property
    def connected(self) -> bool:
        return self._running

    async def connect(self):
        """open the websocket and start listening"""
        self.ws = await websockets.connect(self.uri)
        self._running = True
        self._listener = asyncio.create_task(self.listen())
        logger.info(f"nwc connected to {self.uri}")

    async def close(self):
        """close websocket connection"""
        self._running = False
        if self._listener:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning(f"nwc listener for {self.uri} failed: {e!r}")
            self._listener = None
        if self.ws:
            try:
                await self.ws.close()
            except websockets.exceptions.WebSocketException as e:
                logger.debug(f"nwc error closing {self.uri}: {e}")
            self.ws = None

    async def listen(self):
        """Listen for messages from the relay until the connection closes"""
        try:
            async for message in self.ws:
                await self.on_message(message)
        except (websockets.exceptions.WebSocketException, OSError) as e:
            logger.warning(f"nwc relay {self.uri} connection closed: {e}")
        finally:
            self._running = False
            # wake the consumer so it notices the relay is gone
            await self._inbox.put((self.uri, None))

    async def on_message(self, message):
        try:
            if isinstance(message, bytes):
                message = message.decode('utf-8')
            data = json.loads(message)
        except (ValueError, RecursionError) as e:
            # UnicodeDecodeError and JSONDecodeError are ValueErrors
            logger.debug(f"nwc dropping unreadable frame from {self.uri}: {e!r}")
            return
        if not isinstance(data, list) or not data:
            return

        if data[0] == "EVENT" and len(data) >= 3:
            try:
                event = Event.from_JSON(data[2])
            except MalformedEvent as e:
                logger.debug(f"nwc dropping malformed event from {self.uri}: {e}")
                return
            await self._inbox.put((self.uri, event))
        elif data[0] == "OK":
            logger.debug(f"nwc OK received from {self.uri}: {data}")
        elif data[0] == "EOSE":
            pass
        elif data[0] == "CLOSED":
            logger.warning(f"nwc CLOSED received from {self.uri}: {data}")
        elif data[0] == "NOTICE":
            logger.info(f"nwc notice from {self.uri}: {data[1:]}")

    async def subscribe(self, filters: list[dict]) -> str:
        """subscribe to a list of filters"""
        sub_id = uuid.uuid4().hex
        await self.ws.send(json.dumps(["REQ", sub_id, *filters]))

        self.subscriptions[sub_id] = filters
        logger.info(f"nwc subscription {sub_id[:8]} on {self.uri}: {filters}")
        return sub_id

    async def publish(self, event: Event):
        """send an event to the relay"""
        try:
            await self.ws.send(json.dumps(["EVENT", event.event_data()]))
        except websockets.exceptions.WebSocketException as e:
            raise RelayUnavailable(f"cannot publish to {self.uri}: {e}") from e


class RelayPool:
    """
    A set of relays feeding one inbox.

    next_event() yields events from any relay and raises RelayUnavailable
    as soon as one connected relay drops, so the caller can rebuild the pool.
    """

    def __init__(self, urls):
        self._inbox: asyncio.Queue = asyncio.Queue()
        self._relays: dict[str, Relay] = {}
        for url in urls:
            url = normalize_relay_url(url)
            if url not in self._relays:
                self._relays[url] = Relay(url, inbox=self._inbox)

    @property
    def urls(self) -> list[str]:
        return list(self._relays)

    def connected_urls(self) -> list[str]:
        return [url for url, relay in self._relays.items() if relay.connected]

    async def connect(self):
        """connect to every relay, at least one has to succeed"""
        results = await asyncio.gather(
            *(relay.connect() for relay in self._relays.values()),
            return_exceptions=True)

        for url, result in zip(self._relays, results):
            if isinstance(result, BaseException):
                logger.warning(f"nwc failed to connect to {url}: {result}")

        if not self.connected_urls():
            raise RelayUnavailable(f"could not connect to any of {self.urls}")

    async def subscribe(self, filters: list[dict]):
        for relay in self._relays.values():
            if not relay.connected:
                continue
            try:
                await relay.subscribe(filters)
            except websockets.exceptions.WebSocketException as e:
                raise RelayUnavailable(f"cannot subscribe on {relay.uri}: {e}") from e

    async def next_event(self) -> tuple[str, Event]:
        url, event = await self._inbox.get()
        if event is None:
            raise RelayUnavailable(f"relay {url} disconnected")
        return url, event

    async def send_event_to(self, url: str, event: Event):
        """publish event on url, through a short-lived connection if it isn't in the pool"""
        url = normalize_relay_url(url)
        relay = self._relays.get(url)
        if relay and relay.connected:
            await relay.publish(event)
            return

        try:
            async with websockets.connect(url) as ws:
                await ws.send(json.dumps(["EVENT", event.event_data()]))
        except (OSError, websockets.exceptions.WebSocketException) as e:
            raise RelayUnavailable(f"cannot publish to {url}: {e}") from e

    async def close(self):
        results = await asyncio.gather(
            *(relay.close() for relay in self._relays.values()),
            return_exceptions=True)
        for url, result in zip(self._relays, results):
            if isinstance(result, Exception):
                logger.warning(f"nwc error closing {url}: {result!r}")
