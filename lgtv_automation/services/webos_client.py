"""webOS SSAP WebSocket client for LG TV control.

One client owns at most one session to one TV. A session is opened over
TLS on the secure port first and falls back once to plaintext. The TV
pushes unsolicited updates on the same socket, so a background receive task
decodes every frame and turns recognized payload fields into typed events.
All state lives on the event loop; the receive task never touches another
thread.
"""

import asyncio
import inspect
import itertools
import json
import ssl
import time
from collections.abc import Callable
from typing import Any, NoReturn

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from lgtv_automation.config import Settings, get_settings
from lgtv_automation.exceptions import (
    CommandFailedException,
    ConnectionClosedException,
    HandshakeTimeoutException,
    KeyStoreException,
    LGTVException,
    NotConnectedException,
    TransportFailureException,
)
from lgtv_automation.logging_config import get_logger, log_with_context
from lgtv_automation.models.tv import ConnectionState, TVCapabilities, TVConfiguration, TVInputType, TVSoundOutput
from lgtv_automation.models.webos import (
    CapabilitiesChanged,
    InputChanged,
    InputListChanged,
    SoundOutputChanged,
    VolumeChanged,
    WebOSCommand,
    WebOSMessage,
    build_register_message,
)
from lgtv_automation.protocols import KeyStoreProtocol

logger = get_logger(__name__)

Callback = Callable[..., Any]

# Failures that make the client try the next transport
_TRANSPORT_ERRORS = (TransportFailureException, OSError, WebSocketException, TimeoutError)
# disconnect() fails a pending registration with ConnectionClosedException
_CONNECT_ERRORS = (*_TRANSPORT_ERRORS, ConnectionClosedException)


def _create_ssl_context() -> ssl.SSLContext:
    """Create SSL context for the TV's self-signed certificate."""
    ssl_context = ssl.create_default_context()
    ssl_context.check_hostname = False
    ssl_context.verify_mode = ssl.CERT_NONE
    return ssl_context


class WebOSClient:
    """Client for one LG webOS TV session."""

    def __init__(self, key_store: KeyStoreProtocol, settings: Settings | None = None):
        self._settings = settings or get_settings()
        self._key_store = key_store

        self._websocket: Any = None
        self._receive_task: asyncio.Task | None = None
        self._bootstrap_task: asyncio.Task | None = None

        self._state = ConnectionState.disconnected()
        self._configuration: TVConfiguration | None = None
        self._handshake_completed = False
        self._uses_ssl = False
        self._message_ids = itertools.count(1)
        # Bumped by disconnect() so an in-flight connect() knows it was superseded
        self._session_generation = 0

        self._register_id: str | None = None
        self._registration: asyncio.Future | None = None
        self._pending: dict[str, asyncio.Future] = {}

        self._capabilities = TVCapabilities()
        self._sound_output = TVSoundOutput.UNKNOWN

        self._state_change_callback: Callback | None = None
        self._capability_callback: Callback | None = None
        self._input_change_callback: Callback | None = None
        self._volume_change_callback: Callback | None = None
        self._input_list_callback: Callback | None = None
        self._sound_output_change_callback: Callback | None = None
        self._diagnostic_callback: Callback | None = None

    @property
    def connection_state(self) -> ConnectionState:
        return self._state

    @property
    def is_ready(self) -> bool:
        """True when commands will be accepted."""
        return self._state.is_connected and self._handshake_completed

    @property
    def uses_ssl(self) -> bool:
        return self._uses_ssl

    @property
    def sound_output(self) -> TVSoundOutput:
        return self._sound_output

    @property
    def pending_request_count(self) -> int:
        return len(self._pending)

    # Callback registration

    def set_capability_callback(self, callback: Callback | None) -> None:
        self._capability_callback = callback

    def set_input_change_callback(self, callback: Callback | None) -> None:
        self._input_change_callback = callback

    def set_volume_change_callback(self, callback: Callback | None) -> None:
        self._volume_change_callback = callback

    def set_input_list_callback(self, callback: Callback | None) -> None:
        self._input_list_callback = callback

    def set_sound_output_change_callback(self, callback: Callback | None) -> None:
        self._sound_output_change_callback = callback

    def set_diagnostic_callback(self, callback: Callback | None) -> None:
        """Receive every decoded message as (message_type, raw_message)."""
        self._diagnostic_callback = callback

    # Connection lifecycle

    async def connect(self, configuration: TVConfiguration, state_change_callback: Callback | None = None) -> None:
        """Open and register a session, trying TLS first and plaintext second.

        A call while a session is connecting or connected is ignored.

        Raises:
            TransportFailureException: If both transports fail
            HandshakeTimeoutException: If the last attempt timed out
            ConnectionClosedException: If disconnect() ran while connecting; no fallback is tried
        """
        if self._state.is_transitioning or self._state.is_connected:
            log_with_context(
                logger,
                "warning",
                "Already connected or connecting, ignoring connect",
                tv_ip=configuration.ip_address,
                state=self._state.status.value,
                event_type="tv_connect_ignored",
            )
            return

        self._configuration = configuration
        self._state_change_callback = state_change_callback
        self._capabilities = TVCapabilities()
        self._sound_output = TVSoundOutput.UNKNOWN

        log_with_context(
            logger,
            "info",
            f"Connecting to {configuration.name}",
            tv_ip=configuration.ip_address,
            event_type="tv_connecting",
        )
        await self._set_state(ConnectionState.connecting())
        generation = self._session_generation

        last_error: BaseException | None = None
        last_transport = ""
        started = time.monotonic()

        for use_ssl in (True, False):
            transport = "wss" if use_ssl else "ws"
            attempt_started = time.monotonic()
            try:
                client_key = await asyncio.wait_for(
                    self._open_session(configuration, use_ssl, generation),
                    timeout=self._settings.connect_timeout,
                )
            except _CONNECT_ERRORS as e:
                if generation != self._session_generation:
                    self._raise_connect_aborted(configuration, transport, e)
                last_error = e
                last_transport = transport
                log_with_context(
                    logger,
                    "warning" if use_ssl else "error",
                    f"{transport} connection failed" + (", trying plaintext" if use_ssl else ""),
                    tv_ip=configuration.ip_address,
                    transport=transport,
                    elapsed=round(time.monotonic() - attempt_started, 3),
                    error=str(e) or type(e).__name__,
                    error_type=type(e).__name__,
                    event_type="tv_transport_failed",
                )
                await self._teardown_transport()
                continue

            if generation != self._session_generation:
                self._raise_connect_aborted(configuration, transport, None)

            self._uses_ssl = use_ssl
            self._capabilities.uses_ssl = use_ssl
            self._handshake_completed = True
            await self._set_state(ConnectionState.connected())
            log_with_context(
                logger,
                "info",
                f"Connected to {configuration.name} via {transport}",
                tv_ip=configuration.ip_address,
                transport=transport,
                elapsed=round(time.monotonic() - started, 3),
                event_type="tv_connected",
            )

            if client_key:
                self._persist_client_key(configuration.ip_address, client_key)

            self._bootstrap_task = asyncio.create_task(self._bootstrap())
            return

        await self._set_state(ConnectionState.disconnected())

        details = {
            "tv_ip": configuration.ip_address,
            "transport": last_transport,
            "elapsed": round(time.monotonic() - started, 3),
            "error": str(last_error) or type(last_error).__name__,
        }
        if isinstance(last_error, TimeoutError | HandshakeTimeoutException):
            raise HandshakeTimeoutException(
                f"Failed to connect to TV: handshake timed out after {self._settings.connect_timeout}s",
                details=details,
            ) from last_error
        raise TransportFailureException(f"Failed to connect to TV: {details['error']}", details=details) from last_error

    def _raise_connect_aborted(self, configuration: TVConfiguration, transport: str, cause: BaseException | None) -> NoReturn:
        """Stop a connect() that disconnect() superseded; the state was already published."""
        log_with_context(
            logger,
            "info",
            "Connect aborted by disconnect",
            tv_ip=configuration.ip_address,
            transport=transport,
            event_type="tv_connect_aborted",
        )
        raise ConnectionClosedException(
            "Connect aborted by disconnect",
            details={"tv_ip": configuration.ip_address, "transport": transport, "reason": "disconnect"},
        ) from cause

    async def _open_session(self, configuration: TVConfiguration, use_ssl: bool, generation: int) -> str | None:
        """Open one transport and register; returns the client key the TV issued, if any."""
        port = self._settings.secure_port if use_ssl else self._settings.plain_port
        scheme = "wss" if use_ssl else "ws"
        host = f"[{configuration.ip_address}]" if ":" in configuration.ip_address else configuration.ip_address
        url = f"{scheme}://{host}:{port}/"

        kwargs: dict[str, Any] = {
            "open_timeout": None,  # Bounded by connect_timeout around the whole attempt
            "ping_interval": self._settings.ping_interval,
            "close_timeout": 5,
            "max_size": None,
        }
        if use_ssl:
            kwargs["ssl"] = _create_ssl_context()

        log_with_context(logger, "debug", "Opening WebSocket", url=url, transport=scheme, event_type="tv_ws_open")
        websocket = await websockets.connect(url, **kwargs)
        if generation != self._session_generation:
            await websocket.close()
            raise ConnectionClosedException("Connect aborted by disconnect", details={"tv_ip": configuration.ip_address})
        self._websocket = websocket

        self._registration = asyncio.get_running_loop().create_future()
        self._receive_task = asyncio.create_task(self._receive_loop(self._websocket))

        return await self._register(configuration)

    async def _register(self, configuration: TVConfiguration) -> str | None:
        client_key = None
        try:
            client_key = self._key_store.load_key(configuration.ip_address)
        except (KeyStoreException, OSError) as e:
            log_with_context(
                logger,
                "warning",
                "Could not load pairing key, pairing prompt may appear",
                tv_ip=configuration.ip_address,
                error=str(e),
                event_type="tv_key_load_failed",
            )
        if client_key:
            log_with_context(logger, "debug", "Found existing pairing key", tv_ip=configuration.ip_address, event_type="tv_key_found")

        self._register_id = f"register_{next(self._message_ids)}"
        await self._send_json(build_register_message(self._register_id, client_key))

        assert self._registration is not None
        payload: dict[str, Any] = await self._registration
        new_key = payload.get("client-key")
        if isinstance(new_key, str) and new_key and new_key != client_key:
            return new_key
        return None

    def _persist_client_key(self, address: str, client_key: str) -> None:
        try:
            self._key_store.save_key(address, client_key)
        except (KeyStoreException, OSError) as e:
            log_with_context(
                logger,
                "error",
                "Failed to save pairing key",
                tv_ip=address,
                error=str(e),
                event_type="tv_key_save_failed",
            )

    async def _bootstrap(self) -> None:
        """Populate input, volume and sound output state right after registration."""
        subscriptions = (
            WebOSCommand.subscribe_foreground_app(),
            WebOSCommand.subscribe_volume(),
            WebOSCommand.subscribe_sound_output(),
        )
        queries = (WebOSCommand.get_foreground_app(), WebOSCommand.get_input_list())

        for command in subscriptions:
            try:
                await self.send_command(command)
            except LGTVException as e:
                log_with_context(logger, "warning", "Bootstrap subscription failed", command=str(command), error=e.message, event_type="tv_bootstrap_failed")

        results = await asyncio.gather(*(self.request(command) for command in queries), return_exceptions=True)
        for command, result in zip(queries, results, strict=True):
            if isinstance(result, BaseException):
                log_with_context(
                    logger,
                    "warning",
                    "Bootstrap query failed",
                    command=str(command),
                    error=str(result),
                    error_type=type(result).__name__,
                    event_type="tv_bootstrap_failed",
                )

    async def disconnect(self) -> None:
        """Close the session, failing every pending request. No-op when disconnected."""
        if self._state.is_disconnected:
            return

        log_with_context(logger, "info", "Disconnecting from TV", tv_ip=self._tv_ip, event_type="tv_disconnecting")

        self._session_generation += 1
        self._handshake_completed = False
        await self._teardown_transport()
        self._fail_pending(ConnectionClosedException(details={"tv_ip": self._tv_ip, "reason": "disconnect"}))
        await self._set_state(ConnectionState.disconnected())

        log_with_context(logger, "info", "Disconnected from TV", tv_ip=self._tv_ip, event_type="tv_disconnected")

    async def _teardown_transport(self) -> None:
        current = asyncio.current_task()
        for task in (self._bootstrap_task, self._receive_task):
            if task is None or task is current or task.done():
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._bootstrap_task = None
        self._receive_task = None

        websocket, self._websocket = self._websocket, None
        if websocket is not None:
            try:
                await websocket.close()
            except (OSError, WebSocketException) as e:
                log_with_context(logger, "debug", "Error closing WebSocket", error=str(e), event_type="tv_ws_close_error")

        if self._registration is not None and not self._registration.done():
            self._registration.set_exception(
                ConnectionClosedException("Connection closed during registration", details={"tv_ip": self._tv_ip})
            )
        self._registration = None
        self._register_id = None

    def _fail_pending(self, error: LGTVException) -> None:
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(error)

    async def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        self._state = state
        await self._invoke(self._state_change_callback, state)

    @property
    def _tv_ip(self) -> str | None:
        return self._configuration.ip_address if self._configuration else None

    # Outbound

    async def send_command(self, command: WebOSCommand) -> str:
        """Send a fire-and-forget command.

        Returns:
            The message identifier attached to the request

        Raises:
            NotConnectedException: If no registered session is live
            TransportFailureException: If the frame could not be written
        """
        if not self.is_ready:
            raise NotConnectedException(details={"command": str(command), "state": self._state.status.value})

        message_id = f"req_{next(self._message_ids)}"
        log_with_context(logger, "debug", f"Sending command: {command}", message_id=message_id, uri=command.uri, event_type="tv_command")
        await self._send_json(command.to_message(message_id))
        return message_id

    async def request(self, command: WebOSCommand, timeout: float | None = None) -> dict[str, Any]:
        """Send a command and wait for its correlated response payload.

        Raises:
            NotConnectedException: If no registered session is live
            ConnectionClosedException: If the session drops before the response
            CommandFailedException: If the TV answers with an error
            HandshakeTimeoutException: If no response arrives within the timeout
        """
        if not self.is_ready:
            raise NotConnectedException(details={"command": str(command), "state": self._state.status.value})

        message_id = f"req_{next(self._message_ids)}"
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[message_id] = future
        try:
            await self._send_json(command.to_message(message_id))
            return await asyncio.wait_for(future, timeout=timeout or self._settings.connect_timeout)
        except TimeoutError:
            raise HandshakeTimeoutException(
                f"No response to {command} within timeout",
                details={"tv_ip": self._tv_ip, "command": str(command), "message_id": message_id},
            ) from None
        finally:
            self._pending.pop(message_id, None)

    async def _send_json(self, message: dict[str, Any]) -> None:
        if self._websocket is None:
            raise TransportFailureException("WebSocket is not open", details={"tv_ip": self._tv_ip})
        try:
            await self._websocket.send(json.dumps(message))
        except (ConnectionClosed, OSError) as e:
            raise TransportFailureException(
                f"Failed to send message: {e}",
                details={"tv_ip": self._tv_ip, "message_id": message.get("id")},
            ) from e

    # Inbound

    async def _receive_loop(self, websocket: Any) -> None:
        cause: BaseException
        try:
            async for frame in websocket:
                await self._handle_frame(frame)
            cause = ConnectionClosedException("Connection closed by TV", details={"tv_ip": self._tv_ip})
        except asyncio.CancelledError:
            raise
        except (ConnectionClosed, OSError, WebSocketException) as e:
            cause = e

        if websocket is not self._websocket:
            return
        await self._handle_receive_failure(cause)

    async def _handle_receive_failure(self, cause: BaseException) -> None:
        log_with_context(
            logger,
            "error",
            "Error receiving message",
            tv_ip=self._tv_ip,
            error=str(cause),
            error_type=type(cause).__name__,
            event_type="tv_receive_failed",
        )

        if self._registration is not None and not self._registration.done():
            self._registration.set_exception(
                TransportFailureException(f"Connection lost during registration: {cause}", details={"tv_ip": self._tv_ip})
            )
            return

        was_connected = self._state.is_connected
        self._handshake_completed = False
        await self._teardown_transport()
        self._fail_pending(ConnectionClosedException(details={"tv_ip": self._tv_ip, "reason": str(cause)}))
        if was_connected:
            await self._set_state(ConnectionState.error(cause))

    async def _handle_frame(self, frame: str | bytes) -> None:
        message = WebOSMessage.parse(frame)
        if message is None:
            log_with_context(logger, "warning", "Failed to decode message", frame=str(frame)[:200], event_type="tv_decode_failed")
            return

        await self._invoke(self._diagnostic_callback, message.type, message.raw)
        log_with_context(logger, "debug", f"Received message: {message.type}", message_id=message.id, event_type="tv_message")

        if message.kind == "registered":
            self._resolve_registration(message)
        elif message.kind == "response":
            if message.id is not None and message.id == self._register_id:
                self._handle_registration_response(message)
                return
            self._resolve_pending(message)
            await self._dispatch_payload(message)
        elif message.kind == "push":
            await self._dispatch_payload(message)
        elif message.kind == "error":
            self._handle_error(message)
        else:
            log_with_context(logger, "debug", f"Unhandled message type: {message.type}", event_type="tv_message_unhandled")

    def _resolve_registration(self, message: WebOSMessage) -> None:
        log_with_context(logger, "info", "Successfully registered with TV", tv_ip=self._tv_ip, event_type="tv_registered")
        if self._registration is not None and not self._registration.done():
            self._registration.set_result(message.payload)

    def _handle_registration_response(self, message: WebOSMessage) -> None:
        if message.payload.get("pairingType") == "PROMPT":
            log_with_context(
                logger,
                "info",
                "Accept the pairing prompt on the TV",
                tv_ip=self._tv_ip,
                event_type="tv_pairing_prompt",
            )
        elif not message.return_value:
            self._fail_registration(message)

    def _fail_registration(self, message: WebOSMessage) -> None:
        if self._registration is not None and not self._registration.done():
            self._registration.set_exception(
                TransportFailureException(f"Registration rejected: {message.error}", details={"tv_ip": self._tv_ip})
            )

    def _resolve_pending(self, message: WebOSMessage) -> None:
        if message.id is None:
            return
        future = self._pending.get(message.id)
        if future is None or future.done():
            return
        if message.return_value:
            future.set_result(message.payload)
        else:
            future.set_exception(
                CommandFailedException(
                    f"Command failed: {message.error}",
                    details={"tv_ip": self._tv_ip, "message_id": message.id},
                )
            )

    def _handle_error(self, message: WebOSMessage) -> None:
        log_with_context(
            logger,
            "warning",
            f"TV returned error: {message.error}",
            tv_ip=self._tv_ip,
            message_id=message.id,
            event_type="tv_error_message",
        )
        if message.id is not None and message.id == self._register_id:
            self._fail_registration(message)
            return
        future = self._pending.get(message.id or "")
        if future is not None and not future.done():
            future.set_exception(
                CommandFailedException(
                    f"Command failed: {message.error}",
                    details={"tv_ip": self._tv_ip, "message_id": message.id},
                )
            )

    async def _dispatch_payload(self, message: WebOSMessage) -> None:
        """Turn recognized payload fields into typed events.

        Several fields may be present in one envelope; each is handled.
        """
        payload = message.payload
        if not payload:
            return

        volume_event = _parse_volume(payload)
        if volume_event is not None:
            log_with_context(logger, "debug", f"Volume update: {volume_event.volume}, muted: {volume_event.muted}", event_type="tv_volume")
            await self._invoke(self._volume_change_callback, volume_event)

        app_id = payload.get("appId")
        if isinstance(app_id, str) and app_id:
            input_type = TVInputType.from_app_id(app_id)
            if input_type is not None:
                log_with_context(logger, "debug", f"Current input from appId: {app_id} -> {input_type.display_name}", event_type="tv_input")
                await self._invoke(self._input_change_callback, InputChanged(input=input_type, app_id=app_id))

        source = payload.get("inputSource")
        if isinstance(source, str):
            input_type = TVInputType.from_input_source(source)
            if input_type is not None:
                await self._invoke(self._input_change_callback, InputChanged(input=input_type))

        devices = payload.get("devices")
        if isinstance(devices, list):
            icons = {
                device["id"]: device["icon"]
                for device in devices
                if isinstance(device, dict) and isinstance(device.get("id"), str) and isinstance(device.get("icon"), str)
            }
            if icons:
                self._capabilities.input_icons = icons
                await self._invoke(self._input_list_callback, InputListChanged(icons=icons))
                await self._invoke(self._capability_callback, CapabilitiesChanged(capabilities=self._capabilities.model_copy(deep=True)))

        sound_output = payload.get("soundOutput")
        if isinstance(sound_output, str):
            await self._update_sound_output(TVSoundOutput.from_api_value(sound_output))

    async def _update_sound_output(self, output: TVSoundOutput) -> None:
        # An "unknown" push after a known output is treated as spurious
        if output is TVSoundOutput.UNKNOWN and self._sound_output is not TVSoundOutput.UNKNOWN:
            log_with_context(
                logger,
                "debug",
                "Ignoring unknown sound output push",
                previous=self._sound_output.value,
                event_type="tv_sound_output_ignored",
            )
            return
        self._sound_output = output
        await self._invoke(self._sound_output_change_callback, SoundOutputChanged(output=output))

    async def _invoke(self, callback: Callback | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            log_with_context(
                logger,
                "error",
                "Callback raised",
                callback=getattr(callback, "__name__", repr(callback)),
                error=str(e),
                error_type=type(e).__name__,
                event_type="tv_callback_error",
            )


def _parse_volume(payload: dict[str, Any]) -> VolumeChanged | None:
    """Extract volume/mute from either the flat or the volumeStatus payload shape."""
    status = payload.get("volumeStatus")
    if isinstance(status, dict) and isinstance(status.get("volume"), int):
        return VolumeChanged(volume=status["volume"], muted=bool(status.get("muteStatus", False)))

    volume = payload.get("volume")
    if isinstance(volume, int) and not isinstance(volume, bool):
        muted = payload.get("muted", payload.get("mute", False))
        return VolumeChanged(volume=volume, muted=bool(muted))
    return None
