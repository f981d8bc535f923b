"""
Shared pytest fixtures for nwc_bridge tests.

Nothing here touches the network: relays are replaced by FakeRelayPool,
which records what the bridge subscribes to and publishes and lets tests
push inbound events.
"""
import asyncio
import json

import pytest

from nwc_bridge import nip04
from nwc_bridge.errors import RelayUnavailable
from nwc_bridge.event import Event
from nwc_bridge.keys import generate_keypair
from nwc_bridge.nip47 import (NIP47URI, REQUEST_KIND, NIP47Response, URIOptions,
                              build_response_event)
from nwc_bridge.store import ConnectionStore

WALLET_RELAY = "wss://wallet.example.com"


class FakeRelayPool:
    """stands in for nwc_bridge.relay.RelayPool"""

    def __init__(self, urls=()):
        self.urls = list(urls)
        self.subscriptions = []
        self.published = []
        self.connected = False
        self.closed = False
        self._inbox = asyncio.Queue()

    async def connect(self):
        self.connected = True

    async def subscribe(self, filters):
        self.subscriptions.append(filters)

    async def next_event(self):
        item = await self._inbox.get()
        if item is None:
            raise RelayUnavailable("fake relay dropped")
        return item

    async def send_event_to(self, url, event):
        self.published.append((url, event))

    async def close(self):
        self.closed = True

    def push(self, event, url=WALLET_RELAY):
        self._inbox.put_nowait((url, event))

    def drop(self):
        self._inbox.put_nowait(None)


class ScriptedWebSocket:
    """a websocket that yields frames, then stays open until closed"""

    def __init__(self, frames=()):
        self.frames = list(frames)
        self.sent = []
        self._closed = asyncio.Event()

    async def send(self, message):
        self.sent.append(json.loads(message))

    async def close(self):
        self._closed.set()

    def __aiter__(self):
        return self._frames()

    async def _frames(self):
        for frame in self.frames:
            yield frame
        await self._closed.wait()


class FakeRelayPoolFactory:
    """pool_factory that keeps every pool it built, one per epoch"""

    def __init__(self):
        self.pools = []

    def __call__(self, urls):
        pool = FakeRelayPool(urls)
        self.pools.append(pool)
        return pool

    @property
    def published(self):
        return [item for pool in self.pools for item in pool.published]


@pytest.fixture
def relay_pool():
    return FakeRelayPool([WALLET_RELAY])


@pytest.fixture
def pool_factory():
    return FakeRelayPoolFactory()


@pytest.fixture
def scripted_websocket(monkeypatch):
    """make websockets.connect hand out a ScriptedWebSocket playing frames"""
    def install(frames):
        ws = ScriptedWebSocket(frames)

        async def connect(uri):
            return ws

        monkeypatch.setattr("nwc_bridge.relay.websockets.connect", connect)
        return ws
    return install


@pytest.fixture
def store(tmp_path):
    """a ConnectionStore on a fresh sqlite file"""
    store = ConnectionStore(str(tmp_path / "db.sqlite"), pool_size=4)
    yield store
    store.close()


@pytest.fixture
def owner_pubkey():
    return generate_keypair()[1]


@pytest.fixture
def wallet_keys():
    """(secret, pubkey) of the user's real wallet service"""
    return generate_keypair()


@pytest.fixture
def wallet_uri(wallet_keys):
    """the connection uri the user's wallet handed out"""
    app_secret, _ = generate_keypair()
    return NIP47URI.construct_wallet_connect_url(URIOptions(
        relay_url=WALLET_RELAY,
        secret=app_secret,
        wallet_pubkey=wallet_keys[1]))


@pytest.fixture
def service_request():
    """
    build the event an external service sends when it uses uri:
    encrypted with the uri secret for the uri pubkey and signed with the secret
    """
    def build(uri, method="pay_invoice", params=None, secret=None):
        options = NIP47URI.parse_wallet_connect_url(uri)
        if params is None:
            params = {"invoice": "lnbc1testinvoice"} if method == "pay_invoice" else {}
        content = nip04.encrypt(
            secret_key=options.secret,
            pubkey_hex=options.wallet_pubkey,
            data=json.dumps({"method": method, "params": params}))
        event = Event(content=content, tags=[["p", options.wallet_pubkey]],
                      kind=REQUEST_KIND)
        return event.sign(secret or options.secret)
    return build


@pytest.fixture
def wallet_reply(wallet_keys):
    """build the wallet's signed response to a forwarded request"""
    def build(forwarded, result=None, secret=None):
        response = NIP47Response(
            result_type="pay_invoice",
            result=result or {"preimage": "ab" * 32})
        return build_response_event(
            response,
            secret=secret or wallet_keys[0],
            encryption_pubkey=forwarded.pubkey,
            recipient_pubkey=forwarded.pubkey,
            referenced_event_id=forwarded.id)
    return build


@pytest.fixture
def eventually():
    """poll predicate until it holds or timeout passes"""
    async def wait(predicate, timeout=2.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.01)
    return wait


def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests with no io beyond a temp sqlite file"
    )
    config.addinivalue_line(
        "markers", "integration: Tests driving the engine against a fake relay pool"
    )
