"""Unit tests for the automation orchestrator."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from lgtv_automation.core.orchestrator import TVAutomationOrchestrator
from lgtv_automation.exceptions import (
    ConnectionClosedException,
    NetworkException,
    NotConnectedException,
    TransportFailureException,
    TVNotConfiguredException,
)
from lgtv_automation.models.tv import ConnectionState, TVCapabilities, TVInputType, TVSoundOutput
from lgtv_automation.models.webos import InputChanged, SoundOutputChanged, VolumeChanged, WebOSCommand
from lgtv_automation.protocols import MediaKey
from lgtv_automation.services.power_events import PowerEvent


@pytest.fixture
def orchestrator(mock_client, mock_wol, mock_config_store, mock_key_store, power_hub, settings, debounce, mock_sleep):
    return TVAutomationOrchestrator(
        client=mock_client,
        wol_service=mock_wol,
        config_store=mock_config_store,
        key_store=mock_key_store,
        power_events=power_hub,
        settings=settings,
        debounce=debounce,
        sleep=mock_sleep,
    )


def sent(mock_client) -> list[WebOSCommand]:
    return [c.args[0] for c in mock_client.send_command.await_args_list]


# Wake sequence


@pytest.mark.asyncio
async def test_wake_sequence_order(orchestrator, mock_client, mock_wol, mock_sleep):
    """Test wake packet, settle delay, connect, then screen on."""
    order = []
    mock_wol.send_wake_packet.side_effect = lambda mac: order.append("wol")
    mock_sleep.side_effect = lambda seconds: order.append(("sleep", seconds))
    connect = mock_client.connect.side_effect

    async def tracking_connect(configuration, callback):
        order.append("connect")
        await connect(configuration, callback)

    mock_client.connect.side_effect = tracking_connect

    await orchestrator.start()
    await orchestrator.handle_host_wake()

    assert order == ["wol", ("sleep", 3.0), "connect"]
    mock_wol.send_wake_packet.assert_awaited_once_with("AA:BB:CC:DD:EE:FF")
    assert sent(mock_client) == [WebOSCommand.screen_on()]


@pytest.mark.asyncio
async def test_wake_sequence_disconnects_stale_session(orchestrator, mock_client):
    """Test a live session is dropped before waking."""
    mock_client.connection_state = ConnectionState.error(OSError("gone"))

    await orchestrator.start()
    await orchestrator.handle_host_wake()

    mock_client.disconnect.assert_awaited()
    mock_client.connect.assert_awaited_once()


@pytest.mark.asyncio
async def test_wake_debounced_within_window(orchestrator, mock_wol, clock):
    """Test a second wake within the window sends no second packet."""
    await orchestrator.start()

    await orchestrator.handle_host_wake()
    clock.advance(5)
    await orchestrator.handle_host_wake()

    assert mock_wol.send_wake_packet.await_count == 1


@pytest.mark.asyncio
async def test_wake_runs_again_after_window(orchestrator, mock_wol, clock):
    """Test a wake after the window sends another packet."""
    await orchestrator.start()

    await orchestrator.handle_host_wake()
    clock.advance(11)
    await orchestrator.handle_host_wake()

    assert mock_wol.send_wake_packet.await_count == 2


@pytest.mark.asyncio
async def test_concurrent_wake_triggers_run_once(orchestrator, mock_wol):
    """Test overlapping wake and screen-wake events produce one sequence."""
    await orchestrator.start()

    await asyncio.gather(orchestrator.handle_host_wake(), orchestrator.handle_host_wake())

    assert mock_wol.send_wake_packet.await_count == 1


@pytest.mark.asyncio
async def test_wake_aborts_when_packet_fails(orchestrator, mock_client, mock_wol):
    """Test a wake packet failure stops the sequence."""
    mock_wol.send_wake_packet.side_effect = NetworkException("Network unreachable")

    await orchestrator.start()
    await orchestrator.handle_host_wake()

    mock_client.connect.assert_not_awaited()
    mock_client.send_command.assert_not_awaited()


@pytest.mark.asyncio
async def test_wake_aborts_when_connect_fails(orchestrator, mock_client):
    """Test a connect failure stops the sequence."""
    mock_client.connect.side_effect = TransportFailureException("refused")

    await orchestrator.start()
    await orchestrator.handle_host_wake()

    mock_client.send_command.assert_not_awaited()


@pytest.mark.asyncio
async def test_wake_steps_after_connect_are_best_effort(orchestrator, mock_client, mock_config_store, tv_configuration):
    """Test screen-on failure does not prevent input switch or PC mode."""
    mock_config_store.load.return_value = tv_configuration.model_copy(
        update={"switch_input_on_wake": True, "enable_pc_mode": True, "preferred_input": "HDMI_2"}
    )

    async def send_command(command):
        if command == WebOSCommand.screen_on():
            raise NotConnectedException()
        return "req"

    mock_client.send_command.side_effect = send_command

    await orchestrator.start()
    await orchestrator.handle_host_wake()

    commands = sent(mock_client)
    assert commands[0] == WebOSCommand.screen_on()
    assert WebOSCommand.set_input("HDMI_2") in commands
    assert WebOSCommand.set_device_info("HDMI_2", "pc", "PC") in commands
    assert await orchestrator.state.get_current_input() is TVInputType.HDMI_2


@pytest.mark.asyncio
async def test_wake_skips_pc_mode_when_already_set(orchestrator, mock_client, mock_config_store, tv_configuration):
    """Test PC mode is not re-sent when the input icon already says pc."""
    mock_config_store.load.return_value = tv_configuration.model_copy(update={"enable_pc_mode": True})

    await orchestrator.start()
    await orchestrator.state.set_capabilities(TVCapabilities(input_icons={"HDMI_1": "pc.png"}))
    await orchestrator.handle_host_wake()

    assert sent(mock_client) == [WebOSCommand.screen_on()]


@pytest.mark.asyncio
async def test_wake_disabled_by_configuration(orchestrator, mock_wol, mock_config_store, tv_configuration):
    """Test wake_with_host off ignores host wake."""
    mock_config_store.load.return_value = tv_configuration.model_copy(update={"wake_with_host": False})

    await orchestrator.start()
    await orchestrator.handle_host_wake()

    mock_wol.send_wake_packet.assert_not_awaited()


@pytest.mark.asyncio
async def test_wake_without_configuration(orchestrator, mock_wol, mock_config_store):
    """Test host wake without a saved TV is a no-op."""
    mock_config_store.load.return_value = None

    await orchestrator.start()
    await orchestrator.handle_host_wake()

    mock_wol.send_wake_packet.assert_not_awaited()


# Sleep sequence


@pytest.mark.asyncio
async def test_sleep_skips_power_off_on_other_input(orchestrator, mock_client):
    """Test the TV stays on when it shows a different input."""
    await orchestrator.start()
    await orchestrator.state.set_current_input(TVInputType.HDMI_3)

    await orchestrator.handle_host_sleep()

    assert WebOSCommand.power_off() not in sent(mock_client)
    mock_client.disconnect.assert_awaited()


@pytest.mark.asyncio
async def test_sleep_with_unknown_input_powers_off(orchestrator, mock_client):
    """Test an unknown current input proceeds with power off."""
    await orchestrator.start()

    await orchestrator.handle_host_sleep()

    assert sent(mock_client) == [WebOSCommand.power_off()]
    mock_client.disconnect.assert_awaited()


@pytest.mark.asyncio
async def test_sleep_on_preferred_input_powers_off(orchestrator, mock_client):
    await orchestrator.start()
    await orchestrator.state.set_current_input(TVInputType.HDMI_1)

    await orchestrator.handle_host_sleep()

    assert sent(mock_client) == [WebOSCommand.power_off()]


@pytest.mark.asyncio
async def test_sleep_disconnects_even_if_power_off_fails(orchestrator, mock_client):
    """Test power-off failure is logged and disconnect still happens."""
    mock_client.send_command.side_effect = NotConnectedException()

    await orchestrator.start()
    await orchestrator.handle_host_sleep()

    mock_client.disconnect.assert_awaited()


@pytest.mark.asyncio
async def test_sleep_debounced(orchestrator, mock_client, clock):
    await orchestrator.start()

    await orchestrator.handle_host_sleep()
    clock.advance(3)
    await orchestrator.handle_host_sleep()

    assert sent(mock_client).count(WebOSCommand.power_off()) == 1


@pytest.mark.asyncio
async def test_sleep_and_wake_debounce_independently(orchestrator, mock_client, mock_wol):
    """Test a sleep right after a wake is not suppressed."""
    await orchestrator.start()

    await orchestrator.handle_host_wake()
    await orchestrator.handle_host_sleep()

    assert mock_wol.send_wake_packet.await_count == 1
    assert WebOSCommand.power_off() in sent(mock_client)


# Auto-connect


@pytest.mark.asyncio
async def test_auto_connect_three_failures(orchestrator, mock_client, mock_sleep):
    """Test three failed attempts with attempt x 2s backoff and no raise."""
    mock_client.connect.side_effect = TransportFailureException("refused")

    await orchestrator.start()
    connected = await orchestrator.auto_connect_on_startup()

    assert connected is False
    assert mock_client.connect.await_count == 3
    assert [c.args[0] for c in mock_sleep.await_args_list] == [2.0, 4.0]


@pytest.mark.asyncio
async def test_auto_connect_stops_at_first_success(orchestrator, mock_client, mock_sleep):
    connect = mock_client.connect.side_effect
    attempts = []

    async def flaky_connect(configuration, callback):
        attempts.append(configuration)
        if len(attempts) == 1:
            raise TransportFailureException("refused")
        await connect(configuration, callback)

    mock_client.connect.side_effect = flaky_connect

    await orchestrator.start()
    connected = await orchestrator.auto_connect_on_startup()

    assert connected is True
    assert len(attempts) == 2
    mock_sleep.assert_awaited_once_with(2.0)


@pytest.mark.asyncio
async def test_auto_connect_stops_when_superseded(orchestrator, mock_client, mock_sleep):
    """Test an attempt aborted by disconnect ends the retry loop without raising."""
    mock_client.connect.side_effect = ConnectionClosedException("Connect aborted by disconnect")

    await orchestrator.start()
    connected = await orchestrator.auto_connect_on_startup()

    assert connected is False
    assert mock_client.connect.await_count == 1
    mock_sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_auto_connect_disabled(orchestrator, mock_client, mock_config_store, tv_configuration):
    mock_config_store.load.return_value = tv_configuration.model_copy(update={"auto_connect_on_launch": False})

    await orchestrator.start()

    assert await orchestrator.auto_connect_on_startup() is False
    mock_client.connect.assert_not_awaited()


# Commands and configuration


@pytest.mark.asyncio
async def test_connect_requires_configuration(orchestrator, mock_config_store):
    mock_config_store.load.return_value = None
    await orchestrator.start()

    with pytest.raises(TVNotConfiguredException):
        await orchestrator.connect()
    with pytest.raises(TVNotConfiguredException):
        await orchestrator.wake()


@pytest.mark.asyncio
async def test_set_volume_clamps(orchestrator, mock_client):
    await orchestrator.start()

    assert await orchestrator.set_volume(150) == 100
    assert await orchestrator.set_volume(-5) == 0

    assert sent(mock_client) == [WebOSCommand.set_volume(100), WebOSCommand.set_volume(0)]
    assert (await orchestrator.status()).volume == 0


@pytest.mark.asyncio
async def test_toggle_mute_follows_known_state(orchestrator, mock_client):
    await orchestrator.start()

    assert await orchestrator.toggle_mute() is True
    assert await orchestrator.toggle_mute() is False

    assert sent(mock_client) == [WebOSCommand.mute(), WebOSCommand.unmute()]


@pytest.mark.asyncio
async def test_set_sound_output(orchestrator, mock_client):
    await orchestrator.start()

    await orchestrator.set_sound_output(TVSoundOutput.EXTERNAL_ARC)

    assert sent(mock_client) == [WebOSCommand.set_sound_output(TVSoundOutput.EXTERNAL_ARC)]
    assert sent(mock_client)[0].payload == {"output": "external_arc"}


@pytest.mark.asyncio
async def test_set_pc_mode_disable_restores_label(orchestrator, mock_client):
    await orchestrator.start()

    await orchestrator.set_pc_mode(TVInputType.HDMI_2, enabled=False)

    assert sent(mock_client) == [WebOSCommand.set_device_info("HDMI_2", "hdmi", "HDMI 2")]


@pytest.mark.asyncio
async def test_save_and_clear_configuration(orchestrator, mock_config_store, mock_key_store, tv_configuration):
    """Test clearing forgets the configuration and its pairing key."""
    mock_config_store.load.return_value = None
    await orchestrator.start()

    orchestrator.save_configuration(tv_configuration)
    assert orchestrator.configuration == tv_configuration
    mock_config_store.save.assert_called_once_with(tv_configuration)

    orchestrator.clear_configuration()
    assert orchestrator.configuration is None
    mock_config_store.clear.assert_called_once()
    mock_key_store.delete_key.assert_called_once_with("192.168.1.100")


# Client callbacks


@pytest.mark.asyncio
async def test_client_events_update_state(orchestrator, mock_client):
    """Test typed client events land in the state manager."""
    await orchestrator.start()

    volume_cb = mock_client.set_volume_change_callback.call_args[0][0]
    input_cb = mock_client.set_input_change_callback.call_args[0][0]
    sound_cb = mock_client.set_sound_output_change_callback.call_args[0][0]

    await volume_cb(VolumeChanged(volume=33, muted=True))
    await input_cb(InputChanged(input=TVInputType.DISPLAY_PORT_1))
    await sound_cb(SoundOutputChanged(output=TVSoundOutput.HEADPHONE))

    status = await orchestrator.status()
    assert status.volume == 33
    assert status.is_muted is True
    assert status.current_input is TVInputType.DISPLAY_PORT_1
    assert status.sound_output is TVSoundOutput.HEADPHONE


# Host power events


@pytest.mark.asyncio
async def test_power_hub_drives_sequences(orchestrator, power_hub, mock_wol, mock_client):
    """Test hub events reach the wake and sleep handlers."""
    await orchestrator.start()

    await asyncio.gather(*power_hub.emit(PowerEvent.WAKE))
    await asyncio.gather(*power_hub.emit(PowerEvent.SLEEP))

    mock_wol.send_wake_packet.assert_awaited_once()
    assert WebOSCommand.power_off() in sent(mock_client)


@pytest.mark.asyncio
async def test_screen_sleep_is_only_logged(orchestrator, power_hub, mock_client):
    await orchestrator.start()

    await asyncio.gather(*power_hub.emit(PowerEvent.SCREEN_SLEEP))

    mock_client.send_command.assert_not_awaited()
    mock_client.disconnect.assert_not_awaited()


@pytest.mark.asyncio
async def test_shutdown_disposes_subscriptions(orchestrator, power_hub, mock_client):
    await orchestrator.start()
    assert power_hub.subscriber_count(PowerEvent.WAKE) == 1

    await orchestrator.shutdown()

    assert all(power_hub.subscriber_count(event) == 0 for event in PowerEvent)
    mock_client.disconnect.assert_awaited()


# Media keys


def _media_orchestrator(base: TVAutomationOrchestrator, has_permission: bool):
    accessibility = MagicMock()
    accessibility.has_permission.return_value = has_permission
    media_keys = MagicMock()
    media_keys.start_capture = AsyncMock()
    media_keys.stop_capture = AsyncMock()
    base._accessibility = accessibility
    base._media_keys = media_keys
    return base, media_keys


@pytest.mark.asyncio
async def test_media_keys_disabled_without_permission(orchestrator):
    """Test missing accessibility permission self-disables the feature."""
    orchestrator, media_keys = _media_orchestrator(orchestrator, has_permission=False)
    await orchestrator.start()
    await orchestrator.connect()

    assert await orchestrator.set_media_key_control(True) is False
    assert orchestrator.media_key_control_enabled is False
    media_keys.start_capture.assert_not_awaited()


@pytest.mark.asyncio
async def test_media_key_capture_follows_connection(orchestrator, mock_client):
    """Test capture starts once connected and stops on disconnect."""
    orchestrator, media_keys = _media_orchestrator(orchestrator, has_permission=True)
    await orchestrator.start()

    assert await orchestrator.set_media_key_control(True) is True
    media_keys.start_capture.assert_not_awaited()

    await orchestrator.connect()
    media_keys.start_capture.assert_awaited_once_with(orchestrator.handle_media_key)

    callback = mock_client.connect.await_args.args[1]
    mock_client.connection_state = ConnectionState.disconnected()
    await callback(mock_client.connection_state)
    media_keys.stop_capture.assert_awaited_once()


@pytest.mark.asyncio
async def test_handle_media_key_maps_commands(orchestrator, mock_client):
    await orchestrator.start()
    await orchestrator.connect()

    await orchestrator.handle_media_key(MediaKey.VOLUME_UP)
    await orchestrator.handle_media_key(MediaKey.VOLUME_DOWN)
    await orchestrator.handle_media_key(MediaKey.MUTE)

    assert sent(mock_client) == [WebOSCommand.volume_up(), WebOSCommand.volume_down(), WebOSCommand.mute()]


@pytest.mark.asyncio
async def test_handle_media_key_ignored_when_disconnected(orchestrator, mock_client):
    await orchestrator.start()

    await orchestrator.handle_media_key(MediaKey.VOLUME_UP)

    mock_client.send_command.assert_not_awaited()


# Diagnostics


@pytest.mark.asyncio
async def test_diagnostic_snapshot_when_connected(orchestrator, mock_client):
    await orchestrator.start()
    await orchestrator.connect()

    await orchestrator.run_diagnostic_snapshot()

    assert sent(mock_client) == [
        WebOSCommand.get_foreground_app(),
        WebOSCommand.get_input_list(),
        WebOSCommand.get_sound_output(),
        WebOSCommand.get_volume(),
    ]


@pytest.mark.asyncio
async def test_diagnostic_snapshot_skipped_when_disconnected(orchestrator, mock_client):
    sink = MagicMock()
    sink.enabled = True
    sink.verbose = False
    orchestrator._diagnostics = sink
    await orchestrator.start()

    await orchestrator.run_diagnostic_snapshot()

    mock_client.send_command.assert_not_awaited()
    sink.log.assert_any_call("info", "diagnostics", "Snapshot skipped, not connected", None)


@pytest.mark.asyncio
async def test_diagnostic_timer_armed_only_when_verbose(orchestrator, mock_client):
    sink = MagicMock()
    sink.enabled = True
    sink.verbose = True
    orchestrator._diagnostics = sink

    await orchestrator.start()
    assert orchestrator._diagnostic_task is not None
    mock_client.set_diagnostic_callback.assert_called_once_with(sink.capture_payload)

    await orchestrator.shutdown()
    assert orchestrator._diagnostic_task is None
