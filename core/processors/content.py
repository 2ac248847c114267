"""
Deep-Check Content Injection Monitor

Side channel that watches the editor's document length. Text that appears
without a recent keystroke or paste was inserted by something other than
the keyboard: autotypers, drag-drop, or clipboard writes that bypass the
paste event.

The monitor is a sampling heuristic: detection delay is bounded by the
sampling interval. Hosts may call ``sample`` from a timer or from every
content-change notification; ``poll`` runs the timer loop on asyncio.
"""

import asyncio
import logging
from typing import Callable, Optional

from core.config import DetectorConfig
from core.schemas.events import ContentInjectionSignal


logger = logging.getLogger(__name__)


class ContentInjectionMonitor:
    """Detects document growth that no input event accounts for."""

    def __init__(self, config: Optional[DetectorConfig] = None) -> None:
        self.config = config or DetectorConfig()
        self._previous_length: Optional[int] = None
        self._last_input_ts: Optional[float] = None

    def note_input(self, timestamp: float) -> None:
        """Record a keystroke, paste or drop that may explain new content."""
        if self._last_input_ts is None or timestamp > self._last_input_ts:
            self._last_input_ts = timestamp

    def sample(self, length: int, timestamp: float) -> Optional[ContentInjectionSignal]:
        """
        Compare the current document length with the previous sample.

        Returns:
            ContentInjectionSignal when the document grew by more than the
            threshold with no input inside the quiet window, None otherwise
        """
        previous = self._previous_length
        self._previous_length = length
        if previous is None:
            return None

        growth = length - previous
        if growth <= self.config.content_growth_threshold:
            return None

        if (
            self._last_input_ts is not None
            and timestamp - self._last_input_ts < self.config.input_quiet_window_ms
        ):
            return None

        logger.info(f"Content grew by {growth} chars without matching input")
        return ContentInjectionSignal(length=growth, source="programmatic", timestamp=timestamp)

    async def poll(
        self,
        read_length: Callable[[], int],
        clock: Callable[[], float],
        emit: Callable[[ContentInjectionSignal], None],
        stop: asyncio.Event,
    ) -> None:
        """
        Sample ``read_length`` every poll interval until ``stop`` is set.

        Args:
            read_length: Returns the current document length
            clock: Returns the current time in milliseconds
            emit: Receives detected injection signals
            stop: Ends the loop when set
        """
        interval = self.config.content_poll_interval_ms / 1000.0
        while not stop.is_set():
            signal = self.sample(read_length(), clock())
            if signal is not None:
                emit(signal)
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue

    def reset(self) -> None:
        self._previous_length = None
        self._last_input_ts = None
