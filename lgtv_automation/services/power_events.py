"""Host power-lifecycle event hub.

Platform adapters (or POSIX signals from an OS sleep hook) call emit();
subscribers get a Subscription handle they dispose on shutdown.
"""

import asyncio
import inspect
import signal
from collections.abc import Awaitable, Callable
from enum import Enum

from lgtv_automation.logging_config import get_logger, log_with_context

logger = get_logger(__name__)

PowerEventCallback = Callable[[], Awaitable[None] | None]


class PowerEvent(str, Enum):
    SLEEP = "sleep"
    WAKE = "wake"
    SCREEN_SLEEP = "screen_sleep"
    SCREEN_WAKE = "screen_wake"


# SIGUSR1/SIGUSR2 let a systemd-sleep or pm-utils hook drive the daemon
SIGNAL_EVENTS = {
    signal.SIGUSR1: PowerEvent.SLEEP,
    signal.SIGUSR2: PowerEvent.WAKE,
}


class Subscription:
    """Handle returned by PowerEventHub.subscribe; dispose() is idempotent."""

    def __init__(self, hub: "PowerEventHub", event: PowerEvent, callback: PowerEventCallback):
        self._hub = hub
        self.event = event
        self.callback = callback
        self.active = True

    def dispose(self) -> None:
        if self.active:
            self.active = False
            self._hub._remove(self)


class PowerEventHub:
    """Fan host sleep/wake events out to subscribers on the event loop."""

    def __init__(self):
        self._subscriptions: dict[PowerEvent, list[Subscription]] = {event: [] for event in PowerEvent}
        self._tasks: set[asyncio.Task] = set()

    def subscribe(self, event: PowerEvent, callback: PowerEventCallback) -> Subscription:
        subscription = Subscription(self, event, callback)
        self._subscriptions[event].append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        subscribers = self._subscriptions[subscription.event]
        if subscription in subscribers:
            subscribers.remove(subscription)

    def subscriber_count(self, event: PowerEvent) -> int:
        return len(self._subscriptions[event])

    def emit(self, event: PowerEvent) -> list[asyncio.Task]:
        """Dispatch an event to every subscriber.

        Must be called from the event loop thread. Coroutine callbacks are
        scheduled as tasks, which are returned so callers may await them.
        """
        log_with_context(logger, "info", f"Host power event: {event.value}", power_event=event.value, event_type="power_event")

        tasks = []
        for subscription in list(self._subscriptions[event]):
            try:
                result = subscription.callback()
            except Exception as e:
                log_with_context(
                    logger,
                    "error",
                    "Power event callback failed",
                    power_event=event.value,
                    error=str(e),
                    error_type=type(e).__name__,
                    event_type="power_event_callback_error",
                )
                continue

            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
                tasks.append(task)
        return tasks

    def install_signal_handlers(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Route SIGUSR1 (sleep) and SIGUSR2 (wake) to emit()."""
        loop = loop or asyncio.get_running_loop()
        for signum, event in SIGNAL_EVENTS.items():
            loop.add_signal_handler(signum, self.emit, event)

    def remove_signal_handlers(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        loop = loop or asyncio.get_running_loop()
        for signum in SIGNAL_EVENTS:
            loop.remove_signal_handler(signum)
