"""Command-line entry point for the LGTV automation daemon and one-shot actions."""

import argparse
import asyncio
import json
import signal

from pydantic import ValidationError

from lgtv_automation import __version__
from lgtv_automation.config import Settings, get_settings
from lgtv_automation.core.lifespan import lifespan
from lgtv_automation.exceptions import LGTVException
from lgtv_automation.logging_config import get_logger, log_with_context, setup_logging
from lgtv_automation.models.tv import TVConfiguration, TVInputType
from lgtv_automation.services.config_store import JsonConfigurationStore
from lgtv_automation.services.power_events import PowerEventHub

logger = get_logger(__name__)

# Time given to the post-connect queries before `status` prints
STATUS_SETTLE_SECONDS = 1.0


def _print_json(data: object) -> None:
    print(json.dumps(data, indent=2, sort_keys=True, default=str))


async def _run(settings: Settings) -> int:
    hub = PowerEventHub()
    loop = asyncio.get_running_loop()
    stop = asyncio.Event()

    async with lifespan(settings, hub) as orchestrator:
        hub.install_signal_handlers(loop)
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, stop.set)
        try:
            await orchestrator.auto_connect_on_startup()
            log_with_context(logger, "info", "Waiting for host power events", event_type="daemon_ready")
            await stop.wait()
        finally:
            for signum in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(signum)
            hub.remove_signal_handlers(loop)
    return 0


async def _wake(settings: Settings) -> int:
    async with lifespan(settings) as orchestrator:
        await orchestrator.wake()
    return 0


async def _power_off(settings: Settings) -> int:
    async with lifespan(settings) as orchestrator:
        await orchestrator.connect()
        await orchestrator.power_off()
    return 0


async def _status(settings: Settings) -> int:
    async with lifespan(settings) as orchestrator:
        await orchestrator.connect()
        await asyncio.sleep(STATUS_SETTLE_SECONDS)
        status = await orchestrator.status()
        _print_json(status.model_dump(mode="json"))
    return 0


async def _clear(settings: Settings) -> int:
    async with lifespan(settings) as orchestrator:
        orchestrator.clear_configuration()
    return 0


def cmd_run(args: argparse.Namespace, settings: Settings) -> int:
    return asyncio.run(_run(settings))


def cmd_wake(args: argparse.Namespace, settings: Settings) -> int:
    return asyncio.run(_wake(settings))


def cmd_power_off(args: argparse.Namespace, settings: Settings) -> int:
    return asyncio.run(_power_off(settings))


def cmd_status(args: argparse.Namespace, settings: Settings) -> int:
    return asyncio.run(_status(settings))


def cmd_clear(args: argparse.Namespace, settings: Settings) -> int:
    return asyncio.run(_clear(settings))


def cmd_configure(args: argparse.Namespace, settings: Settings) -> int:
    try:
        configuration = TVConfiguration(
            name=args.name,
            ip_address=args.ip,
            mac_address=args.mac,
            preferred_input=args.input,
            auto_connect_on_launch=args.auto_connect,
            wake_with_host=args.wake_with_host,
            sleep_with_host=args.sleep_with_host,
            switch_input_on_wake=args.switch_input_on_wake,
            enable_pc_mode=args.pc_mode,
        )
    except ValidationError as e:
        log_with_context(logger, "error", f"Invalid configuration: {e}", event_type="config_invalid")
        return 2

    JsonConfigurationStore(settings.configuration_path).save(configuration)
    _print_json(configuration.model_dump(mode="json"))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="lgtv-automation", description="Wake, sleep and control an LG webOS TV with this host")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    run_cmd = sub.add_parser("run", help="Run the automation daemon (SIGUSR1 = host sleep, SIGUSR2 = host wake)")
    run_cmd.set_defaults(func=cmd_run)

    wake_cmd = sub.add_parser("wake", help="Send the Wake-on-LAN packet")
    wake_cmd.set_defaults(func=cmd_wake)

    off_cmd = sub.add_parser("power-off", help="Connect and turn the TV off")
    off_cmd.set_defaults(func=cmd_power_off)

    status_cmd = sub.add_parser("status", help="Connect and print TV state as JSON")
    status_cmd.set_defaults(func=cmd_status)

    conf_cmd = sub.add_parser("configure", help="Save the TV configuration")
    conf_cmd.add_argument("--name", required=True)
    conf_cmd.add_argument("--ip", required=True, help="TV IP address")
    conf_cmd.add_argument("--mac", required=True, help="TV MAC address, any common delimiter")
    conf_cmd.add_argument("--input", default=TVInputType.HDMI_1.value, help="Input this host is connected to")
    conf_cmd.add_argument("--no-auto-connect", dest="auto_connect", action="store_false")
    conf_cmd.add_argument("--no-wake-with-host", dest="wake_with_host", action="store_false")
    conf_cmd.add_argument("--no-sleep-with-host", dest="sleep_with_host", action="store_false")
    conf_cmd.add_argument("--switch-input-on-wake", action="store_true")
    conf_cmd.add_argument("--pc-mode", action="store_true")
    conf_cmd.set_defaults(func=cmd_configure)

    clear_cmd = sub.add_parser("clear", help="Forget the TV configuration and pairing key")
    clear_cmd.set_defaults(func=cmd_clear)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    setup_logging(settings.log_level, settings.log_dir)

    try:
        return int(args.func(args, settings))
    except LGTVException as e:
        log_with_context(
            logger,
            "error",
            e.message,
            error_code=e.code,
            details=e.details,
            event_type="command_failed",
        )
        return 1
