"""Service descriptors for the AGWPE and KISS TCP services to be announced.

Builds one named descriptor per configured TCP endpoint. The gateway (AGWPE)
service always occupies slot 0; KISS TCP services follow in configuration
order.
"""

import enum
import logging
import socket
from dataclasses import dataclass
from typing import Iterator

from .config import MAX_DNS_SD_SERVICES, NO_CHANNEL, Config

logger = logging.getLogger(__name__)

SERVICE_BASE_NAME = "Dire Wolf"
MAX_SERVICE_NAME_LENGTH = 128
MAX_HOSTNAME_LENGTH = 50


class ServiceKind(enum.Enum):
    """Kind of announced service, fixing its DNS-SD type and display label."""

    GATEWAY = ("_agwpe._tcp", "AGWPE")
    FRAMED_DATA = ("_kiss-tnc._tcp", "KISS TCP")

    def __init__(self, service_type: str, label: str):
        self.service_type = service_type
        self.label = label

    @classmethod
    def from_service_type(cls, service_type: str) -> "ServiceKind | None":
        """Match a (possibly dot-terminated) service type string."""
        for kind in cls:
            if service_type.startswith(kind.service_type):
                return kind
        return None


@dataclass
class ServiceDescriptor:
    """One announceable TCP endpoint."""

    port: int  # 0 means not configured
    channel: int  # NO_CHANNEL for the gateway and all-channel KISS ports
    name: str  # Display name; rewritten during collision recovery
    kind: ServiceKind

    @property
    def service_type(self) -> str:
        return self.kind.service_type

    @property
    def label(self) -> str:
        return self.kind.label


class ServiceTable:
    """Fixed-capacity, ordered collection of service descriptors.

    Slot 0 is reserved for the gateway service. The table is owned by
    exactly one announcer worker, which releases it once on exit.
    """

    def __init__(self, capacity: int = MAX_DNS_SD_SERVICES):
        self.capacity = capacity
        self._slots: list[ServiceDescriptor | None] = [None] * capacity
        self._released = False

    def set(self, index: int, descriptor: ServiceDescriptor) -> None:
        if not 0 <= index < self.capacity:
            raise IndexError(f"Service slot {index} out of range (capacity {self.capacity})")
        self._slots[index] = descriptor

    def slots(self) -> Iterator[tuple[int, ServiceDescriptor]]:
        """Yield (index, descriptor) for every configured slot."""
        for index, descriptor in enumerate(self._slots):
            if descriptor is not None and descriptor.port != 0:
                yield index, descriptor

    def __iter__(self) -> Iterator[ServiceDescriptor]:
        for _, descriptor in self.slots():
            yield descriptor

    def __len__(self) -> int:
        return sum(1 for _ in self.slots())

    def __getitem__(self, index: int) -> ServiceDescriptor | None:
        return self._slots[index]

    @property
    def names(self) -> list[str]:
        return [descriptor.name for descriptor in self]

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        """Drop all descriptors. Must be called exactly once."""
        if self._released:
            raise RuntimeError("Service table released twice")
        self._released = True
        self._slots = [None] * self.capacity
        logger.debug("Released service descriptors")


def service_count(config: Config) -> int:
    """Count the services that are configured and will thus be announced."""
    count = 0

    if config.agwpe.port != 0:
        count += 1

    for kiss_port in config.kiss.ports:
        if kiss_port.port != 0:
            count += 1

    return count


def local_hostname() -> str:
    """Short local hostname, or an empty string if it cannot be determined."""
    try:
        hostname = socket.gethostname()
    except OSError as e:
        logger.debug(f"Unable to determine hostname: {e}")
        return ""

    # On some systems an FQDN is returned; remove the domain part
    return hostname[:MAX_HOSTNAME_LENGTH].split(".", 1)[0]


def make_service_name(basename: str, hostname: str, channel: int) -> str:
    """Create a full display name, e.g. "Dire Wolf channel 2 on myhost".

    Args:
        basename: Base service name. Defaults to SERVICE_BASE_NAME if empty.
        hostname: Host name if available, else empty string.
        channel: Radio channel, or NO_CHANNEL when not tied to one.

    Returns:
        The name, truncated to MAX_SERVICE_NAME_LENGTH characters.
    """
    name = basename or SERVICE_BASE_NAME

    if channel != NO_CHANNEL:
        name += f" channel {channel}"

    if hostname:
        name += f" on {hostname}"

    return name[:MAX_SERVICE_NAME_LENGTH]


def build_services(config: Config, hostname: str | None = None) -> ServiceTable:
    """Build descriptors for every configured AGWPE and KISS TCP service.

    Args:
        config: Loaded configuration.
        hostname: Host name to embed in the names. Looked up if None.

    Returns:
        A ServiceTable; empty if nothing is configured.
    """
    if hostname is None:
        hostname = local_hostname()

    basename = config.dns_sd.name
    table = ServiceTable()

    if config.agwpe.port != 0:
        table.set(
            0,
            ServiceDescriptor(
                port=config.agwpe.port,
                channel=NO_CHANNEL,
                name=make_service_name(basename, hostname, NO_CHANNEL),
                kind=ServiceKind.GATEWAY,
            ),
        )

    index = 1
    for kiss_port in config.kiss.ports:
        if kiss_port.port == 0:
            continue
        table.set(
            index,
            ServiceDescriptor(
                port=kiss_port.port,
                channel=kiss_port.channel,
                name=make_service_name(basename, hostname, kiss_port.channel),
                kind=ServiceKind.FRAMED_DATA,
            ),
        )
        index += 1

    return table
