"""
Cooperative cancellation for benchmark runs.
"""

from __future__ import annotations

import logging
import signal
import threading
from contextlib import contextmanager
from typing import Generator

logger = logging.getLogger(__name__)


class CancellationToken:
    """Set-once flag polled by the benchmark loop between trials.

    Once set it stays set for the rest of the run.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()


@contextmanager
def cancel_on_interrupt(token: CancellationToken) -> Generator[CancellationToken, None, None]:
    """Translate SIGINT into ``token.cancel()`` for the duration of the block.

    The in-flight trial is allowed to finish. A second SIGINT raises
    ``KeyboardInterrupt`` as usual. The previous handler is restored on exit.
    Outside the main thread signals cannot be installed and the token is only
    cancellable programmatically.
    """
    if threading.current_thread() is not threading.main_thread():
        yield token
        return

    def handler(signum, frame):
        if token.is_set():
            raise KeyboardInterrupt
        logger.info("Interrupt received, stopping after the current trial")
        token.cancel()

    previous = signal.signal(signal.SIGINT, handler)
    try:
        yield token
    finally:
        signal.signal(signal.SIGINT, previous)
