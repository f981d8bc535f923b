"""Tests for relay message handling and the relay pool, without a network."""
import asyncio
import json

import pytest

from nwc_bridge.errors import RelayUnavailable
from nwc_bridge.event import Event
from nwc_bridge.keys import generate_keypair
from nwc_bridge.relay import Relay, RelayPool, normalize_relay_url


class FakeWebSocket:
    def __init__(self):
        self.sent = []

    async def send(self, message):
        self.sent.append(json.loads(message))

    async def close(self):
        pass


def signed_event():
    secret, _ = generate_keypair()
    return Event(content="x", kind=23194, tags=[]).sign(secret)


@pytest.mark.unit
class TestRelay:
    """Test message parsing and outbound frames."""

    @pytest.mark.asyncio
    async def test_event_message_reaches_inbox(self):
        inbox = asyncio.Queue()
        relay = Relay("wss://r.example.com", inbox=inbox)
        event = signed_event()

        await relay.on_message(json.dumps(["EVENT", "sub", event.event_data()]))

        url, received = inbox.get_nowait()
        assert url == "wss://r.example.com"
        assert received.id == event.id

    @pytest.mark.asyncio
    @pytest.mark.parametrize("message", [
        "not json",
        json.dumps({"EVENT": 1}),
        json.dumps(["EVENT", "sub", {"id": "missing fields"}]),
        json.dumps(["OK", "id", True, ""]),
        json.dumps(["EOSE", "sub"]),
        json.dumps(["CLOSED", "sub", "error: bye"]),
        json.dumps(["NOTICE", "hello"]),
    ])
    async def test_other_messages_are_not_queued(self, message):
        inbox = asyncio.Queue()
        relay = Relay("wss://r.example.com", inbox=inbox)
        await relay.on_message(message)
        assert inbox.empty()

    @pytest.mark.asyncio
    async def test_subscribe_and_publish_frames(self):
        relay = Relay("wss://r.example.com")
        relay.ws = FakeWebSocket()
        event = signed_event()

        sub_id = await relay.subscribe([{"kinds": [23194]}, {"kinds": [23195]}])
        await relay.publish(event)

        assert relay.ws.sent[0] == ["REQ", sub_id, {"kinds": [23194]}, {"kinds": [23195]}]
        assert relay.ws.sent[1] == ["EVENT", event.event_data()]
        assert relay.subscriptions[sub_id] == [{"kinds": [23194]}, {"kinds": [23195]}]


@pytest.mark.unit
class TestRelayResilience:
    """Test that hostile frames never escape the listener."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("frame", [b"\xff\xfe", "[" * 100000, json.dumps(["EVENT", "s", []])])
    async def test_unreadable_frame_is_dropped(self, scripted_websocket, frame):
        inbox = asyncio.Queue()
        relay = Relay("wss://r.example.com", inbox=inbox)
        event = signed_event()
        scripted_websocket([frame, json.dumps(["EVENT", "s", event.event_data()])])

        await relay.connect()
        url, received = await asyncio.wait_for(inbox.get(), 1)
        assert received.id == event.id
        assert relay.connected

        await relay.close()
        assert not relay.connected

    @pytest.mark.asyncio
    async def test_close_survives_a_failed_listener(self):
        relay = Relay("wss://r.example.com")
        relay.ws = FakeWebSocket()

        async def listen():
            raise RuntimeError("listener bug")

        relay._listener = asyncio.create_task(listen())
        await asyncio.sleep(0)
        assert relay._listener.done()

        await relay.close()
        assert relay._listener is None

    @pytest.mark.asyncio
    async def test_pool_close_survives_relay_errors(self, monkeypatch):
        async def broken_close(self):
            raise RuntimeError("close failed")

        monkeypatch.setattr(Relay, "close", broken_close)
        pool = RelayPool(["wss://a.example.com", "wss://b.example.com"])
        await pool.close()


@pytest.mark.unit
class TestRelayPool:
    """Test pool bookkeeping."""

    def test_urls_are_normalized_and_unique(self):
        pool = RelayPool(["wss://a.example.com/", "wss://a.example.com", "wss://b.example.com"])
        assert pool.urls == ["wss://a.example.com", "wss://b.example.com"]
        assert normalize_relay_url(" wss://a.example.com/ ") == "wss://a.example.com"

    @pytest.mark.asyncio
    async def test_connect_needs_one_relay(self, monkeypatch):
        async def fail(self):
            raise OSError("refused")

        monkeypatch.setattr(Relay, "connect", fail)
        pool = RelayPool(["wss://a.example.com"])
        with pytest.raises(RelayUnavailable):
            await pool.connect()

    @pytest.mark.asyncio
    async def test_connect_tolerates_partial_failure(self, monkeypatch):
        async def connect(self):
            if "bad" in self.uri:
                raise OSError("refused")
            self.ws = FakeWebSocket()
            self._running = True

        monkeypatch.setattr(Relay, "connect", connect)
        pool = RelayPool(["wss://good.example.com", "wss://bad.example.com"])
        await pool.connect()
        assert pool.connected_urls() == ["wss://good.example.com"]

        await pool.subscribe([{"kinds": [23194]}])
        good = pool._relays["wss://good.example.com"]
        assert good.ws.sent[0][0] == "REQ"

        event = signed_event()
        await pool.send_event_to("wss://good.example.com/", event)
        assert good.ws.sent[1] == ["EVENT", event.event_data()]

    @pytest.mark.asyncio
    async def test_next_event_raises_when_relay_drops(self):
        pool = RelayPool(["wss://a.example.com"])
        event = signed_event()
        await pool._inbox.put(("wss://a.example.com", event))
        await pool._inbox.put(("wss://a.example.com", None))

        url, received = await pool.next_event()
        assert received.id == event.id
        with pytest.raises(RelayUnavailable):
            await pool.next_event()
