"""Base class for DNS-SD announcer backends."""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable

from ..config import Config

logger = logging.getLogger(__name__)


class Announcer(ABC):
    """Announces configured services from a dedicated worker thread.

    Subclasses register services in announce() and run all provider
    callbacks on one background thread. terminate() only signals that
    thread; it never waits for it.
    """

    thread_name = "dns-sd"

    def __init__(self):
        self._thread: threading.Thread | None = None

    @abstractmethod
    def announce(self, config: Config) -> None:
        """Register all configured services and start the worker thread."""
        pass

    @abstractmethod
    def terminate(self) -> None:
        """Ask the worker thread to withdraw all services and exit."""
        pass

    @property
    def active(self) -> bool:
        """Whether the worker thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the worker thread to finish.

        Returns:
            True if no worker is running any more.
        """
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def _start_worker(self, target: Callable[..., None], *args: Any) -> None:
        self._thread = threading.Thread(
            target=target, args=args, name=self.thread_name, daemon=True
        )
        self._thread.start()
        logger.debug(f"Started {self.thread_name} worker thread")
