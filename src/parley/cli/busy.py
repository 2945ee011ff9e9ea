"""Single busy indicator shown while a prompt turn is in progress."""

from __future__ import annotations

import logging
import threading
from typing import Callable

from . import renderer

logger = logging.getLogger(__name__)

# Runs on the presentation thread; must return once the event is set.
Presenter = Callable[[str, threading.Event], None]


def rich_presenter(label: str, stop: threading.Event) -> None:
    """Hold a Rich status spinner until ``stop`` is set."""
    with renderer.busy_status(label):
        stop.wait()


class _Presentation:
    def __init__(self, label: str, presenter: Presenter) -> None:
        self.label = label
        self.stop = threading.Event()
        self.released = threading.Event()
        self._presenter = presenter
        self.thread = threading.Thread(target=self._run, name="parley-busy", daemon=True)

    def _run(self) -> None:
        try:
            self._presenter(self.label, self.stop)
        except Exception:
            logger.warning("Busy indicator '%s' failed", self.label, exc_info=True)
        finally:
            # Acknowledge: the terminal is free from here on.
            self.released.set()


class BusyIndicator:
    """Owns the one background "activity in progress" presentation.

    ``show`` and ``hide`` may be called from any thread. Starting a new
    indicator first stops the current one and waits until its thread has
    released the terminal, so at most one presentation is ever alive. A
    presentation that does not release in time is kept as lingering, and no
    new one starts until it has.
    """

    def __init__(self, presenter: Presenter | None = None, stop_timeout: float = 2.0) -> None:
        self._presenter = presenter or rich_presenter
        self._stop_timeout = stop_timeout
        self._lock = threading.Lock()
        self._current: _Presentation | None = None
        self._lingering: _Presentation | None = None

    @property
    def active(self) -> bool:
        return self._current is not None

    @property
    def label(self) -> str | None:
        current = self._current
        return current.label if current else None

    def show(self, label: str) -> None:
        with self._lock:
            self._stop_current()
            lingering = self._lingering
            if lingering is not None:
                if not lingering.released.is_set():
                    logger.warning(
                        "Busy indicator '%s' still holds the terminal, not showing '%s'", lingering.label, label
                    )
                    return
                lingering.thread.join(timeout=self._stop_timeout)
                self._lingering = None
            presentation = _Presentation(label, self._presenter)
            self._current = presentation
            presentation.thread.start()
            logger.debug("Busy indicator shown: %s", label)

    def hide(self) -> None:
        with self._lock:
            self._stop_current()

    def _stop_current(self) -> None:
        current = self._current
        if current is None:
            return
        self._current = None
        current.stop.set()
        if not current.released.wait(self._stop_timeout):
            logger.warning("Busy indicator '%s' did not stop within %.1fs", current.label, self._stop_timeout)
            self._lingering = current
            return
        current.thread.join(timeout=self._stop_timeout)
        logger.debug("Busy indicator hidden: %s", current.label)
