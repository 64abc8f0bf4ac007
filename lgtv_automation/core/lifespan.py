"""Automation lifespan management."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from lgtv_automation import __version__
from lgtv_automation.config import Settings, get_settings
from lgtv_automation.core.orchestrator import TVAutomationOrchestrator
from lgtv_automation.logging_config import get_logger, log_with_context
from lgtv_automation.services.config_store import JsonConfigurationStore
from lgtv_automation.services.diagnostics import LoggingDiagnosticSink
from lgtv_automation.services.key_store import JsonFileKeyStore
from lgtv_automation.services.power_events import PowerEventHub
from lgtv_automation.services.webos_client import WebOSClient
from lgtv_automation.services.wol_service import WOLService

logger = get_logger(__name__)


def build_orchestrator(settings: Settings, power_events: PowerEventHub | None = None) -> TVAutomationOrchestrator:
    """Wire the default collaborators from settings."""
    key_store = JsonFileKeyStore(settings.key_store_path)
    return TVAutomationOrchestrator(
        client=WebOSClient(key_store, settings),
        wol_service=WOLService(),
        config_store=JsonConfigurationStore(settings.configuration_path),
        key_store=key_store,
        power_events=power_events or PowerEventHub(),
        settings=settings,
        diagnostics=LoggingDiagnosticSink(enabled=settings.diagnostics_enabled, verbose=settings.diagnostics_verbose),
    )


@asynccontextmanager
async def lifespan(
    settings: Settings | None = None,
    power_events: PowerEventHub | None = None,
) -> AsyncIterator[TVAutomationOrchestrator]:
    """Start the orchestrator for the duration of the block.

    Exceptions raised inside the block are logged and re-raised after
    shutdown has run.
    """
    settings = settings or get_settings()

    log_with_context(
        logger,
        "info",
        "Starting LGTV Automation",
        version=__version__,
        data_dir=str(settings.data_dir),
        event_type="app_startup",
    )

    orchestrator = build_orchestrator(settings, power_events)
    await orchestrator.start()

    try:
        yield orchestrator
    except Exception as e:
        # Log the error for observability
        log_with_context(
            logger,
            "error",
            "Application error during lifespan",
            error=str(e),
            error_type=type(e).__name__,
            event_type="app_error",
        )
        raise
    finally:
        # Cleanup always runs, even if exception was raised
        log_with_context(
            logger,
            "info",
            "Shutting down LGTV Automation",
            event_type="app_shutdown",
        )
        await orchestrator.shutdown()
