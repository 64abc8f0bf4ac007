"""Pytest configuration and shared fixtures."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from websockets.exceptions import ConnectionClosedError

from lgtv_automation.config import Settings
from lgtv_automation.models.tv import ConnectionState, TVConfiguration
from lgtv_automation.services.key_store import JsonFileKeyStore
from lgtv_automation.services.power_events import PowerEventHub
from lgtv_automation.state_managers import DebounceTracker

_CLOSE = object()
_DROP = object()


class FakeTVWebSocket:
    """In-memory stand-in for a websockets client connection to a webOS TV.

    Registration is answered according to `register_reply`; requests and
    subscriptions get a `returnValue: true` response merged with any payload
    configured for their URI in `responses`.
    """

    def __init__(
        self,
        client_key: str = "issued-key",
        register_reply: str | None = "registered",
        auto_respond: bool = True,
        responses: dict[str, dict] | None = None,
    ):
        self.client_key = client_key
        self.register_reply = register_reply
        self.auto_respond = auto_respond
        self.responses = responses or {}
        self.sent: list[dict] = []
        self.closed = False
        self._incoming: asyncio.Queue = asyncio.Queue()

    async def send(self, text: str) -> None:
        message = json.loads(text)
        self.sent.append(message)

        if message["type"] == "register":
            self._reply_to_register(message["id"])
        elif self.auto_respond:
            uri = message["uri"].removeprefix("ssap://")
            payload = {"returnValue": True, **self.responses.get(uri, {})}
            self.push({"type": "response", "id": message["id"], "payload": payload})

    def _reply_to_register(self, message_id: str) -> None:
        if self.register_reply == "prompt":
            self.push({"type": "response", "id": message_id, "payload": {"pairingType": "PROMPT", "returnValue": True}})
            self.push({"type": "registered", "id": message_id, "payload": {"client-key": self.client_key}})
        elif self.register_reply == "registered":
            self.push({"type": "registered", "id": message_id, "payload": {"client-key": self.client_key}})
        elif self.register_reply == "error":
            self.push({"type": "error", "id": message_id, "error": "403 access denied", "payload": {}})

    def push(self, message: dict) -> None:
        self._incoming.put_nowait(json.dumps(message))

    def push_raw(self, text: str) -> None:
        self._incoming.put_nowait(text)

    def drop(self) -> None:
        """Simulate the TV vanishing from the network."""
        self._incoming.put_nowait(_DROP)

    def finish(self) -> None:
        """Simulate the TV closing the socket cleanly."""
        self._incoming.put_nowait(_CLOSE)

    async def close(self) -> None:
        self.closed = True
        self._incoming.put_nowait(_CLOSE)

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        item = await self._incoming.get()
        if item is _CLOSE:
            raise StopAsyncIteration
        if item is _DROP:
            raise ConnectionClosedError(None, None)
        return item

    def sent_uris(self) -> list[str]:
        return [m["uri"] for m in self.sent if "uri" in m]


async def drain(rounds: int = 5) -> None:
    """Let background tasks process queued frames."""
    for _ in range(rounds):
        await asyncio.sleep(0.01)


@pytest.fixture
def settings(tmp_path):
    """Settings with test values and no delays."""
    return Settings(
        _env_file=None,
        data_dir=tmp_path,
        connect_timeout=1.0,
        ping_interval=None,
        wake_settle_delay=3.0,
        debounce_window=10.0,
        auto_connect_attempts=3,
        auto_connect_backoff=2.0,
    )


@pytest.fixture
def tv_configuration():
    return TVConfiguration(
        name="Living Room",
        ip_address="192.168.1.100",
        mac_address="AA:BB:CC:DD:EE:FF",
        preferred_input="HDMI_1",
    )


@pytest.fixture
def key_store(tmp_path):
    return JsonFileKeyStore(tmp_path / "client_keys.json")


@pytest.fixture
def fake_websocket():
    return FakeTVWebSocket()


@pytest.fixture
def make_websocket():
    """Factory for FakeTVWebSocket with custom behavior."""
    return FakeTVWebSocket


@pytest.fixture
def drain_tasks():
    return drain


@pytest.fixture
def mock_client():
    """Mock WebOSClient; connect() flips connection_state to connected."""
    client = MagicMock()
    client.connection_state = ConnectionState.disconnected()

    async def connect(configuration, callback):
        client.connection_state = ConnectionState.connected()
        await callback(client.connection_state)

    async def disconnect():
        client.connection_state = ConnectionState.disconnected()

    client.connect = AsyncMock(side_effect=connect)
    client.disconnect = AsyncMock(side_effect=disconnect)
    client.send_command = AsyncMock(return_value="req_1")
    client.request = AsyncMock(return_value={"returnValue": True})
    return client


@pytest.fixture
def mock_wol():
    wol = MagicMock()
    wol.send_wake_packet = AsyncMock()
    return wol


@pytest.fixture
def mock_config_store(tv_configuration):
    store = MagicMock()
    store.load.return_value = tv_configuration
    return store


@pytest.fixture
def mock_key_store():
    store = MagicMock()
    store.load_key.return_value = None
    return store


@pytest.fixture
def power_hub():
    return PowerEventHub()


@pytest.fixture
def clock():
    """Controllable monotonic clock; advance with clock.advance(seconds)."""

    class Clock:
        now = 1000.0

        def __call__(self) -> float:
            return self.now

        def advance(self, seconds: float) -> None:
            self.now += seconds

    return Clock()


@pytest.fixture
def debounce(clock):
    return DebounceTracker(clock=clock)


@pytest.fixture
def mock_sleep():
    return AsyncMock()
