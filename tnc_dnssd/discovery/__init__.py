"""DNS-SD announcement of the AGWPE and KISS TCP services."""

import logging
import sys

from ..config import Config
from ..services import service_count
from .base import Announcer
from .daemon import DaemonSocketAnnouncer
from .managed import ManagedClientAnnouncer
from .providers import ClientProvider, DaemonProvider

logger = logging.getLogger(__name__)


def select_backend(preference: str = "auto", platform: str | None = None) -> str:
    """Pick the announcer backend for this platform.

    Args:
        preference: "daemon", "client", or "auto" to decide by platform.
        platform: Platform string; defaults to sys.platform.

    Returns:
        "daemon" on macOS (where the system runs a DNS-SD daemon),
        "client" elsewhere, unless a backend was named explicitly.
    """
    if preference != "auto":
        return preference

    platform = platform or sys.platform
    return "daemon" if platform == "darwin" else "client"


def create_announcer(
    backend: str, provider: DaemonProvider | ClientProvider | None = None
) -> Announcer:
    """Create an announcer, using the zeroconf provider unless one is given."""
    if backend == "daemon":
        if provider is None:
            from .zeroconf_provider import ZeroconfDaemon

            provider = ZeroconfDaemon()
        if not isinstance(provider, DaemonProvider):
            raise TypeError(
                f"The daemon backend requires a DaemonProvider, got {type(provider).__name__}"
            )
        return DaemonSocketAnnouncer(provider)

    if backend == "client":
        if provider is None:
            from .zeroconf_provider import ZeroconfClientProvider

            provider = ZeroconfClientProvider()
        if not isinstance(provider, ClientProvider):
            raise TypeError(
                f"The client backend requires a ClientProvider, got {type(provider).__name__}"
            )
        return ManagedClientAnnouncer(provider)

    raise ValueError(f"Unknown DNS-SD backend: {backend}")


class DiscoveryManager:
    """Entry point for announcing services via DNS-SD.

    announce() and terminate() never raise and never block on the network;
    outcomes are only reported through logging.
    """

    def __init__(self, announcer: Announcer | None = None):
        """Initialize the discovery manager.

        Args:
            announcer: Backend to use. If None, one is created on the first
                announce() from the configured backend preference.
        """
        self._announcer = announcer

    @property
    def announcer(self) -> Announcer | None:
        return self._announcer

    @property
    def active(self) -> bool:
        return self._announcer is not None and self._announcer.active

    def announce(self, config: Config) -> None:
        """Announce all configured services."""
        if not config.dns_sd.enabled:
            logger.debug("DNS-SD disabled")
            return

        # If there are no services to announce, we're done
        if service_count(config) == 0:
            return

        if self.active:
            logger.warning("DNS-SD announcement already running")
            return

        if self._announcer is None:
            backend = select_backend(config.dns_sd.backend)
            self._announcer = create_announcer(backend)
            logger.debug(f"Using DNS-SD backend: {backend}")

        self._announcer.announce(config)

    def terminate(self) -> None:
        """Withdraw all services; the worker thread exits on its own."""
        if self._announcer is None:
            return
        self._announcer.terminate()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the worker thread to finish after terminate()."""
        if self._announcer is None:
            return True
        return self._announcer.join(timeout)


__all__ = [
    "Announcer",
    "DaemonSocketAnnouncer",
    "DiscoveryManager",
    "ManagedClientAnnouncer",
    "create_announcer",
    "select_backend",
]
