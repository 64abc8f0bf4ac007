"""Automation orchestrator: ties host power events to TV actions.

The orchestrator owns the saved TV configuration, the tracked TV state and
the wake/sleep sequences. Collaborators are injected so tests can replace
the network and platform layers with mocks.
"""

import asyncio
from collections.abc import Awaitable, Callable

from lgtv_automation.config import Settings, get_settings
from lgtv_automation.exceptions import ConnectionClosedException, LGTVException, TVNotConfiguredException
from lgtv_automation.logging_config import get_logger, log_with_context
from lgtv_automation.models.tv import ConnectionState, TVConfiguration, TVInputType, TVSoundOutput, TVStatus
from lgtv_automation.models.webos import (
    CapabilitiesChanged,
    InputChanged,
    InputListChanged,
    SoundOutputChanged,
    VolumeChanged,
    WebOSCommand,
)
from lgtv_automation.protocols import (
    AccessibilityCheckerProtocol,
    ConfigurationStoreProtocol,
    DiagnosticSinkProtocol,
    KeyStoreProtocol,
    MediaKey,
    MediaKeySourceProtocol,
    PowerEventSourceProtocol,
    WebOSClientProtocol,
    WOLServiceProtocol,
)
from lgtv_automation.services.power_events import PowerEvent, Subscription
from lgtv_automation.state_managers import DebounceTracker, TVStateManager

logger = get_logger(__name__)

WAKE_SEQUENCE = "wake"
SLEEP_SEQUENCE = "sleep"


class TVAutomationOrchestrator:
    """Coordinates the webOS client, Wake-on-LAN and host power events."""

    def __init__(
        self,
        client: WebOSClientProtocol,
        wol_service: WOLServiceProtocol,
        config_store: ConfigurationStoreProtocol,
        key_store: KeyStoreProtocol,
        power_events: PowerEventSourceProtocol,
        settings: Settings | None = None,
        diagnostics: DiagnosticSinkProtocol | None = None,
        accessibility: AccessibilityCheckerProtocol | None = None,
        media_keys: MediaKeySourceProtocol | None = None,
        state: TVStateManager | None = None,
        debounce: DebounceTracker | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._client = client
        self._wol = wol_service
        self._config_store = config_store
        self._key_store = key_store
        self._power_events = power_events
        self._settings = settings or get_settings()
        self._diagnostics = diagnostics
        self._accessibility = accessibility
        self._media_keys = media_keys
        self.state = state or TVStateManager()
        self._debounce = debounce or DebounceTracker()
        self._sleep = sleep

        self._configuration: TVConfiguration | None = None
        self._subscriptions: list[Subscription] = []
        self._diagnostic_task: asyncio.Task | None = None
        self._media_key_control_enabled = False
        self._media_key_capturing = False
        self._started = False

    @property
    def configuration(self) -> TVConfiguration | None:
        return self._configuration

    @property
    def connection_state(self) -> ConnectionState:
        return self._client.connection_state

    @property
    def media_key_control_enabled(self) -> bool:
        return self._media_key_control_enabled

    # Lifecycle

    async def start(self) -> None:
        """Load the configuration, subscribe to host events and arm diagnostics."""
        if self._started:
            return
        self._started = True

        await self.state.initialize()
        await self._debounce.initialize()
        self._load_configuration()
        self._register_client_callbacks()

        self._subscriptions = [
            self._power_events.subscribe(PowerEvent.WAKE, self.handle_host_wake),
            self._power_events.subscribe(PowerEvent.SCREEN_WAKE, self.handle_host_wake),
            self._power_events.subscribe(PowerEvent.SLEEP, self.handle_host_sleep),
            self._power_events.subscribe(PowerEvent.SCREEN_SLEEP, self._handle_screen_sleep),
        ]

        if self._diagnostics is not None and self._diagnostics.enabled and self._diagnostics.verbose:
            self._diagnostic_task = asyncio.create_task(self._diagnostic_loop())
            log_with_context(
                logger,
                "info",
                "Diagnostic snapshots armed",
                interval=self._settings.diagnostic_interval,
                event_type="diagnostics_armed",
            )

        log_with_context(
            logger,
            "info",
            "Automation started",
            configured=self._configuration is not None,
            event_type="automation_started",
        )

    async def shutdown(self) -> None:
        """Dispose subscriptions, cancel timers, stop key capture and disconnect."""
        for subscription in self._subscriptions:
            subscription.dispose()
        self._subscriptions = []

        if self._diagnostic_task is not None:
            self._diagnostic_task.cancel()
            try:
                await self._diagnostic_task
            except asyncio.CancelledError:
                pass
            self._diagnostic_task = None

        self._media_key_control_enabled = False
        await self._update_media_key_capture()

        try:
            await self._client.disconnect()
        except LGTVException as e:
            log_with_context(logger, "warning", "Disconnect during shutdown failed", error=e.message, event_type="automation_shutdown_error")

        await self.state.cleanup()
        await self._debounce.cleanup()
        self._started = False

        log_with_context(logger, "info", "Automation stopped", event_type="automation_stopped")

    def _load_configuration(self) -> None:
        try:
            self._configuration = self._config_store.load()
        except LGTVException as e:
            log_with_context(
                logger,
                "error",
                "Failed to load configuration",
                error=e.message,
                error_code=e.code,
                event_type="config_load_failed",
            )
            return

        if self._configuration is not None:
            log_with_context(
                logger,
                "info",
                f"Loaded configuration for {self._configuration.name}",
                tv_ip=self._configuration.ip_address,
                event_type="config_loaded",
            )

    def _register_client_callbacks(self) -> None:
        self._client.set_capability_callback(self._on_capabilities)
        self._client.set_input_change_callback(self._on_input_change)
        self._client.set_volume_change_callback(self._on_volume_change)
        self._client.set_input_list_callback(self._on_input_list)
        self._client.set_sound_output_change_callback(self._on_sound_output_change)
        if self._diagnostics is not None and self._diagnostics.enabled:
            self._client.set_diagnostic_callback(self._diagnostics.capture_payload)

    # Configuration

    def save_configuration(self, configuration: TVConfiguration) -> None:
        """Persist a configuration and make it current.

        Raises:
            ConfigurationException: If the store cannot write it
        """
        self._config_store.save(configuration)
        self._configuration = configuration
        log_with_context(
            logger,
            "info",
            f"Configuration saved for {configuration.name}",
            tv_ip=configuration.ip_address,
            event_type="config_saved",
        )

    def clear_configuration(self) -> None:
        """Forget the configuration and its pairing key."""
        previous = self._configuration
        self._config_store.clear()
        self._configuration = None
        if previous is not None:
            self._key_store.delete_key(previous.ip_address)
        log_with_context(logger, "info", "Configuration cleared", event_type="config_cleared")

    def _require_configuration(self) -> TVConfiguration:
        if self._configuration is None:
            raise TVNotConfiguredException()
        return self._configuration

    # Connection

    async def connect(self) -> None:
        """Connect to the configured TV.

        Raises:
            TVNotConfiguredException: If no configuration is saved
            TransportFailureException: If both transports fail
            ConnectionClosedException: If disconnect() ran while connecting
        """
        configuration = self._require_configuration()
        await self._client.connect(configuration, self._on_connection_state)

    async def disconnect(self) -> None:
        await self._client.disconnect()
        await self.state.set_connection_state(ConnectionState.disconnected())

    async def auto_connect_on_startup(self) -> bool:
        """Connect on launch with retries; never raises.

        Returns:
            True if a connection was established
        """
        configuration = self._configuration
        if configuration is None or not configuration.auto_connect_on_launch:
            return False

        attempts = self._settings.auto_connect_attempts
        log_with_context(logger, "info", "Auto-connecting to TV on startup", tv_ip=configuration.ip_address, event_type="auto_connect_start")

        for attempt in range(1, attempts + 1):
            try:
                await self.connect()
            except ConnectionClosedException:
                # A host event dropped the session mid-connect and owns reconnecting
                log_with_context(logger, "info", "Auto-connect superseded by disconnect", attempt=attempt, event_type="auto_connect_superseded")
                return False
            except LGTVException as e:
                log_with_context(
                    logger,
                    "warning",
                    f"Auto-connect attempt {attempt} failed",
                    attempt=attempt,
                    max_attempts=attempts,
                    error=e.message,
                    error_code=e.code,
                    event_type="auto_connect_retry",
                )
                if attempt < attempts:
                    await self._sleep(attempt * self._settings.auto_connect_backoff)
                continue

            log_with_context(logger, "info", f"Auto-connect successful on attempt {attempt}", attempt=attempt, event_type="auto_connect_success")
            return True

        log_with_context(logger, "error", f"Auto-connect failed after {attempts} attempts", event_type="auto_connect_failed")
        return False

    async def status(self) -> TVStatus:
        return await self.state.snapshot()

    # Commands

    async def wake(self) -> None:
        """Send the Wake-on-LAN packet for the configured TV.

        Raises:
            TVNotConfiguredException: If no configuration is saved
            InvalidAddressException: If the saved MAC address is malformed
            NetworkException: If the broadcast fails
        """
        configuration = self._require_configuration()
        log_with_context(logger, "info", f"Sending WOL to {configuration.name}", mac_address=configuration.mac_address, event_type="tv_wake")
        await self._wol.send_wake_packet(configuration.mac_address)

    async def power_off(self) -> None:
        await self._client.send_command(WebOSCommand.power_off())

    async def screen_on(self) -> None:
        await self._client.send_command(WebOSCommand.screen_on())

    async def screen_off(self) -> None:
        await self._client.send_command(WebOSCommand.screen_off())

    async def volume_up(self) -> None:
        await self._client.send_command(WebOSCommand.volume_up())

    async def volume_down(self) -> None:
        await self._client.send_command(WebOSCommand.volume_down())

    async def set_volume(self, level: int) -> int:
        """Set an absolute volume, clamped to 0..100.

        Returns:
            The level actually sent
        """
        clamped = max(0, min(100, level))
        await self._client.send_command(WebOSCommand.set_volume(clamped))
        snapshot = await self.state.snapshot()
        await self.state.set_volume(clamped, snapshot.is_muted)
        return clamped

    async def toggle_mute(self) -> bool:
        """Flip mute based on the last known state.

        Returns:
            The new mute flag
        """
        snapshot = await self.state.snapshot()
        command = WebOSCommand.unmute() if snapshot.is_muted else WebOSCommand.mute()
        await self._client.send_command(command)
        await self.state.set_volume(snapshot.volume, not snapshot.is_muted)
        return not snapshot.is_muted

    async def switch_input(self, input_type: TVInputType) -> None:
        await self._client.send_command(WebOSCommand.set_input(input_type.value))
        await self.state.set_current_input(input_type)

    async def set_sound_output(self, output: TVSoundOutput) -> None:
        await self._client.send_command(WebOSCommand.set_sound_output(output))

    async def set_pc_mode(self, input_type: TVInputType, enabled: bool) -> None:
        """Relabel an input so the TV applies (or drops) its PC picture mode."""
        icon = "pc" if enabled else "hdmi"
        label = "PC" if enabled else input_type.display_name
        await self._client.send_command(WebOSCommand.set_device_info(input_type.value, icon, label))
        log_with_context(
            logger,
            "info",
            f"Set PC mode {'enabled' if enabled else 'disabled'} for {input_type.value}",
            input=input_type.value,
            enabled=enabled,
            event_type="tv_pc_mode",
        )

    # Host power events

    async def handle_host_wake(self) -> None:
        """Wake sequence: WOL, settle, connect, then best-effort screen/input/PC mode."""
        configuration = self._configuration
        if configuration is None or not configuration.wake_with_host:
            return

        allowed, elapsed = await self._debounce.try_begin(WAKE_SEQUENCE, self._settings.debounce_window)
        if not allowed:
            log_with_context(
                logger,
                "info",
                f"Skipping wake sequence, last run {elapsed:.1f}s ago",
                elapsed=round(elapsed or 0.0, 3),
                event_type="wake_debounced",
            )
            self._diag("info", "automation", "Wake sequence debounced", {"elapsed": f"{elapsed:.1f}"})
            return

        log_with_context(logger, "info", "Host woke, waking TV", tv_ip=configuration.ip_address, event_type="wake_sequence_start")
        self._diag("info", "automation", "Wake sequence started")

        if not self._client.connection_state.is_disconnected:
            try:
                await self._client.disconnect()
            except LGTVException as e:
                log_with_context(logger, "warning", "Failed to drop stale session", error=e.message, event_type="wake_sequence_step_failed")

        try:
            await self.wake()
        except LGTVException as e:
            self._log_step_failure("wake_packet", e, fatal=True)
            return

        await self._sleep(self._settings.wake_settle_delay)

        try:
            await self.connect()
        except LGTVException as e:
            self._log_step_failure("connect", e, fatal=True)
            return

        try:
            await self.screen_on()
        except LGTVException as e:
            self._log_step_failure("screen_on", e)

        preferred = configuration.preferred_input_type
        if configuration.switch_input_on_wake:
            try:
                await self.switch_input(preferred)
            except LGTVException as e:
                self._log_step_failure("switch_input", e)

        if configuration.enable_pc_mode:
            capabilities = await self.state.get_capabilities()
            if capabilities is not None and capabilities.is_pc_mode(preferred.value):
                log_with_context(logger, "debug", f"{preferred.value} already in PC mode", event_type="tv_pc_mode_present")
            else:
                log_with_context(logger, "info", f"Setting PC mode for {preferred.value}", event_type="tv_pc_mode_setting")
                try:
                    await self.set_pc_mode(preferred, True)
                except LGTVException as e:
                    self._log_step_failure("pc_mode", e)

        log_with_context(logger, "info", "Wake sequence complete", event_type="wake_sequence_complete")

    async def handle_host_sleep(self) -> None:
        """Sleep sequence: power off unless the TV is showing another input."""
        configuration = self._configuration
        if configuration is None or not configuration.sleep_with_host:
            return

        allowed, elapsed = await self._debounce.try_begin(SLEEP_SEQUENCE, self._settings.debounce_window)
        if not allowed:
            log_with_context(
                logger,
                "info",
                f"Skipping sleep sequence, last run {elapsed:.1f}s ago",
                elapsed=round(elapsed or 0.0, 3),
                event_type="sleep_debounced",
            )
            self._diag("info", "automation", "Sleep sequence debounced", {"elapsed": f"{elapsed:.1f}"})
            return

        current_input = await self.state.get_current_input()
        if current_input is not None and current_input is not configuration.preferred_input_type:
            log_with_context(
                logger,
                "info",
                f"Skipping TV sleep, TV is on {current_input.display_name} (preferred: {configuration.preferred_input})",
                current_input=current_input.value,
                preferred_input=configuration.preferred_input,
                event_type="sleep_sequence_skipped",
            )
            await self._disconnect_quietly()
            return

        log_with_context(logger, "info", "Host sleeping, turning off TV", tv_ip=configuration.ip_address, event_type="sleep_sequence_start")
        self._diag("info", "automation", "Sleep sequence started")
        try:
            await self.power_off()
        except LGTVException as e:
            self._log_step_failure("power_off", e)

        await self._disconnect_quietly()

    async def _handle_screen_sleep(self) -> None:
        log_with_context(logger, "info", "Host display slept", event_type="screen_sleep")

    async def _disconnect_quietly(self) -> None:
        try:
            await self.disconnect()
        except LGTVException as e:
            log_with_context(logger, "warning", "Disconnect failed", error=e.message, event_type="tv_disconnect_failed")

    def _log_step_failure(self, step: str, error: LGTVException, fatal: bool = False) -> None:
        log_with_context(
            logger,
            "error" if fatal else "warning",
            f"Sequence step '{step}' failed" + (", aborting" if fatal else ""),
            step=step,
            error=error.message,
            error_code=error.code,
            details=error.details,
            event_type="sequence_step_failed",
        )
        self._diag("error" if fatal else "warning", "automation", f"{step} failed: {error.message}")

    # Client callbacks

    async def _on_connection_state(self, state: ConnectionState) -> None:
        await self.state.set_connection_state(state)
        log_with_context(logger, "info", f"Connection state: {state}", state=state.status.value, event_type="connection_state")
        self._diag("error" if state.has_error else "info", "connection", f"State changed to {state}")
        await self._update_media_key_capture()

    async def _on_capabilities(self, event: CapabilitiesChanged) -> None:
        await self.state.set_capabilities(event.capabilities)

    async def _on_input_change(self, event: InputChanged) -> None:
        await self.state.set_current_input(event.input)

    async def _on_volume_change(self, event: VolumeChanged) -> None:
        await self.state.set_volume(event.volume, event.muted)

    async def _on_input_list(self, event: InputListChanged) -> None:
        configuration = self._configuration
        if configuration is None:
            return
        icon = event.icons.get(configuration.preferred_input, "")
        if "pc" in icon.lower():
            log_with_context(logger, "info", f"TV input {configuration.preferred_input} is in PC mode", event_type="tv_pc_mode_present")

    async def _on_sound_output_change(self, event: SoundOutputChanged) -> None:
        await self.state.set_sound_output(event.output)

    # Media keys

    async def set_media_key_control(self, enabled: bool) -> bool:
        """Enable or disable volume-key bridging.

        Enabling without the accessibility permission turns the feature off
        instead of failing.

        Returns:
            Whether media key control ended up enabled
        """
        if enabled and self._accessibility is not None and not self._accessibility.has_permission():
            log_with_context(
                logger,
                "warning",
                "Accessibility permission missing, media key control disabled",
                event_type="media_keys_permission_missing",
            )
            self._diag("warning", "media_keys", "Accessibility permission missing")
            enabled = False

        self._media_key_control_enabled = enabled
        await self._update_media_key_capture()
        return enabled

    async def _update_media_key_capture(self) -> None:
        if self._media_keys is None:
            return

        should_capture = self._media_key_control_enabled and self._client.connection_state.is_connected
        if should_capture == self._media_key_capturing:
            return

        try:
            if should_capture:
                await self._media_keys.start_capture(self.handle_media_key)
            else:
                await self._media_keys.stop_capture()
        except Exception as e:
            # Platform adapters raise their own error types
            log_with_context(
                logger,
                "error",
                f"Failed to {'start' if should_capture else 'stop'} media key capture",
                error=str(e),
                error_type=type(e).__name__,
                event_type="media_keys_capture_failed",
            )
            return
        self._media_key_capturing = should_capture

    async def handle_media_key(self, key: MediaKey) -> None:
        if not self._client.connection_state.is_connected:
            return

        try:
            if key is MediaKey.VOLUME_UP:
                await self.volume_up()
            elif key is MediaKey.VOLUME_DOWN:
                await self.volume_down()
            elif key is MediaKey.MUTE:
                await self.toggle_mute()
        except LGTVException as e:
            log_with_context(
                logger,
                "error",
                "Failed to handle media key",
                key=key.value,
                error=e.message,
                event_type="media_key_failed",
            )

    # Diagnostics

    async def _diagnostic_loop(self) -> None:
        while True:
            await asyncio.sleep(self._settings.diagnostic_interval)
            await self.run_diagnostic_snapshot()

    async def run_diagnostic_snapshot(self) -> None:
        """Re-issue the bootstrap queries so fresh payloads reach the diagnostic sink."""
        if not self._client.connection_state.is_connected:
            self._diag("info", "diagnostics", "Snapshot skipped, not connected")
            return

        for command in (
            WebOSCommand.get_foreground_app(),
            WebOSCommand.get_input_list(),
            WebOSCommand.get_sound_output(),
            WebOSCommand.get_volume(),
        ):
            try:
                await self._client.send_command(command)
            except LGTVException as e:
                self._diag("warning", "diagnostics", f"Snapshot query {command} failed: {e.message}")

    def _diag(self, level: str, category: str, message: str, metadata: dict[str, str] | None = None) -> None:
        if self._diagnostics is not None:
            self._diagnostics.log(level, category, message, metadata)
