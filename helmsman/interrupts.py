"""Cooperative keyboard-interrupt handling."""

import asyncio
import signal
import time
from typing import Callable

from helmsman.logging import get_logger
from helmsman.session_state import SessionState

log = get_logger(__name__)

DEBOUNCE_SECONDS = 0.1
EXIT_CONFIRM_SECONDS = 1.0


class InterruptController:
    """Turns SIGINT into a cancellation flag polled by the control loop.

    Signals inside the debounce window collapse into one. The first signal
    clears the processing flag and sets ``cancelled`` so pending waits wake
    up; another one at least a second later exits.
    """

    def __init__(
        self,
        state: SessionState,
        on_exit: Callable[[], None] | None = None,
        on_notice: Callable[[str], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.state = state
        self._on_exit = on_exit
        self._on_notice = on_notice
        self._clock = clock
        self._last_signal: float | None = None
        self._last_raw_signal: float | None = None
        self._warning_shown = False
        self._installed_loop: asyncio.AbstractEventLoop | None = None
        self.cancelled = asyncio.Event()

    def is_cancelled(self) -> bool:
        return not self.state.is_processing

    def begin(self) -> None:
        self.state.is_processing = True
        self._warning_shown = False
        self.cancelled.clear()

    def end(self) -> None:
        self.state.is_processing = False

    def handle_signal(self) -> None:
        now = self._clock()
        last_raw = self._last_raw_signal
        self._last_raw_signal = now
        if last_raw is not None and now - last_raw < DEBOUNCE_SECONDS:
            return

        if self._warning_shown:
            elapsed = now - self._last_signal if self._last_signal is not None else 0.0
            if elapsed >= EXIT_CONFIRM_SECONDS:
                log.info("Exit requested by interrupt")
                self.cancelled.set()
                if self._on_exit:
                    self._on_exit()
                return
            if self.state.is_processing and self._on_notice:
                remaining = EXIT_CONFIRM_SECONDS - elapsed
                self._on_notice(f"[!] Please wait {remaining:.1f}s before pressing Ctrl+C again to exit")
            return

        if self.state.is_processing:
            self.state.stop_processing()
            self.cancelled.set()
            log.info("Processing interrupted")
            if self._on_notice:
                self._on_notice(
                    "[*] Process interrupted. Press Ctrl+C again (after 1 second) to exit or wait for prompt"
                )
        self._last_signal = now
        self._warning_shown = True

    def install(self, loop: asyncio.AbstractEventLoop | None = None) -> bool:
        """Register the SIGINT handler on the event loop, where supported."""
        loop = loop or asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, self.handle_signal)
        except (NotImplementedError, RuntimeError):
            log.debug("Signal handlers unsupported on this platform")
            return False
        self._installed_loop = loop
        return True

    def uninstall(self) -> None:
        if self._installed_loop is not None:
            self._installed_loop.remove_signal_handler(signal.SIGINT)
            self._installed_loop = None
