"""Protocol definitions for dependency injection.

The orchestrator only sees these interfaces, so platform integrations
(keychains, sleep notifications, global key capture) can be swapped in and
tests can use mocks.
"""

from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, Protocol

from lgtv_automation.models.tv import ConnectionState, TVConfiguration
from lgtv_automation.models.webos import WebOSCommand
from lgtv_automation.services.power_events import PowerEvent, PowerEventCallback, Subscription


class MediaKey(str, Enum):
    """Volume keys captured from the host keyboard."""

    VOLUME_UP = "volumeUp"
    VOLUME_DOWN = "volumeDown"
    MUTE = "mute"


class WebOSClientProtocol(Protocol):
    """Interface of the webOS protocol client used by the orchestrator."""

    @property
    def connection_state(self) -> ConnectionState: ...

    async def connect(
        self,
        configuration: TVConfiguration,
        state_change_callback: Callable[[ConnectionState], Any],
    ) -> None: ...

    async def disconnect(self) -> None: ...

    async def send_command(self, command: WebOSCommand) -> str: ...

    async def request(self, command: WebOSCommand, timeout: float | None = None) -> dict[str, Any]: ...

    def set_capability_callback(self, callback: Callable[..., Any] | None) -> None: ...

    def set_input_change_callback(self, callback: Callable[..., Any] | None) -> None: ...

    def set_volume_change_callback(self, callback: Callable[..., Any] | None) -> None: ...

    def set_input_list_callback(self, callback: Callable[..., Any] | None) -> None: ...

    def set_sound_output_change_callback(self, callback: Callable[..., Any] | None) -> None: ...

    def set_diagnostic_callback(self, callback: Callable[[str, dict[str, Any]], Any] | None) -> None: ...


class WOLServiceProtocol(Protocol):
    async def send_wake_packet(self, mac_address: str) -> None: ...


class KeyStoreProtocol(Protocol):
    """Secure key-value store for pairing keys, keyed by TV address."""

    def save_key(self, address: str, key: str) -> None: ...

    def load_key(self, address: str) -> str | None: ...

    def delete_key(self, address: str) -> None: ...


class ConfigurationStoreProtocol(Protocol):
    def save(self, config: TVConfiguration) -> None: ...

    def load(self) -> TVConfiguration | None: ...

    def clear(self) -> None: ...


class PowerEventSourceProtocol(Protocol):
    """Host power-lifecycle source; each event fires once per occurrence."""

    def subscribe(self, event: PowerEvent, callback: PowerEventCallback) -> Subscription: ...


class AccessibilityCheckerProtocol(Protocol):
    def has_permission(self) -> bool: ...


class MediaKeySourceProtocol(Protocol):
    """Global volume-key capture."""

    async def start_capture(self, handler: Callable[[MediaKey], Awaitable[None]]) -> None: ...

    async def stop_capture(self) -> None: ...


class DiagnosticSinkProtocol(Protocol):
    enabled: bool
    verbose: bool

    def log(self, level: str, category: str, message: str, metadata: dict[str, str] | None = None) -> None: ...

    def capture_payload(self, message_type: str, payload: dict[str, Any]) -> None: ...
