"""State managers for handling automation-wide mutable state.

This module provides task-safe state management using asyncio.Lock
for async operations. All state managers inherit from StateManager ABC.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from collections.abc import Callable

from lgtv_automation.models.tv import (
    ConnectionState,
    TVCapabilities,
    TVInputType,
    TVSoundOutput,
    TVStatus,
)


class StateManager(ABC):
    """Base class for all state managers.

    State managers provide task-safe access to mutable automation state.
    All subclasses must implement lifecycle methods.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the state manager (called during startup)."""
        pass

    @abstractmethod
    async def cleanup(self) -> None:
        """Cleanup resources (called during shutdown)."""
        pass


class TVStateManager(StateManager):
    """Tracks the last known TV state as reported by the webOS client.

    Values are best effort: they reflect the most recent push or response,
    and are reset on shutdown.
    """

    def __init__(self):
        """Initialize the TV state manager."""
        self._lock = asyncio.Lock()
        self._reset()

    def _reset(self) -> None:
        self._connection_state = ConnectionState.disconnected()
        self._capabilities: TVCapabilities | None = None
        self._volume = 0
        self._muted = False
        self._current_input: TVInputType | None = None
        self._sound_output = TVSoundOutput.UNKNOWN

    async def initialize(self) -> None:
        """Initialize the TV state manager."""
        # No initialization needed for now
        pass

    async def cleanup(self) -> None:
        """Cleanup resources."""
        async with self._lock:
            self._reset()

    async def get_connection_state(self) -> ConnectionState:
        async with self._lock:
            return self._connection_state

    async def set_connection_state(self, state: ConnectionState) -> None:
        async with self._lock:
            self._connection_state = state

    async def get_capabilities(self) -> TVCapabilities | None:
        async with self._lock:
            return self._capabilities

    async def set_capabilities(self, capabilities: TVCapabilities) -> None:
        async with self._lock:
            self._capabilities = capabilities

    async def get_current_input(self) -> TVInputType | None:
        async with self._lock:
            return self._current_input

    async def set_current_input(self, input_type: TVInputType | None) -> None:
        async with self._lock:
            self._current_input = input_type

    async def set_volume(self, volume: int, muted: bool) -> None:
        """Record a volume report.

        Args:
            volume: Reported volume level
            muted: Reported mute flag
        """
        async with self._lock:
            self._volume = volume
            self._muted = muted

    async def get_sound_output(self) -> TVSoundOutput:
        async with self._lock:
            return self._sound_output

    async def set_sound_output(self, output: TVSoundOutput) -> None:
        async with self._lock:
            self._sound_output = output

    async def snapshot(self) -> TVStatus:
        """Get a consistent copy of everything tracked.

        Returns:
            TVStatus built under the lock
        """
        async with self._lock:
            return TVStatus(
                connection=self._connection_state.status,
                volume=self._volume,
                is_muted=self._muted,
                current_input=self._current_input,
                sound_output=self._sound_output,
                capabilities=self._capabilities.model_copy(deep=True) if self._capabilities else None,
            )


class DebounceTracker(StateManager):
    """Per-sequence debounce for wake and sleep automation.

    try_begin() checks and records in one step, so two concurrent triggers
    cannot both pass.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        """Initialize the debounce tracker.

        Args:
            clock: Monotonic time source in seconds
        """
        self._clock = clock
        self._last_run: dict[str, float] = {}
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Initialize the debounce tracker."""
        pass

    async def cleanup(self) -> None:
        """Forget every recorded run."""
        async with self._lock:
            self._last_run.clear()

    async def try_begin(self, name: str, window: float) -> tuple[bool, float | None]:
        """Record a run of `name` unless one started less than `window` seconds ago.

        Returns:
            (allowed, seconds since the previous run or None if there was none)
        """
        async with self._lock:
            now = self._clock()
            last = self._last_run.get(name)
            elapsed = None if last is None else now - last
            if elapsed is not None and elapsed < window:
                return False, elapsed
            self._last_run[name] = now
            return True, elapsed
