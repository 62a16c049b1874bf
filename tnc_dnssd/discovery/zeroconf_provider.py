"""DNS-SD providers backed by python-zeroconf.

Zeroconf runs its own responder on a private event loop thread. These
adapters present it through the two provider contracts in providers.py:

* ZeroconfDaemon stands in for a system daemon. A shared Zeroconf instance
  plays the daemon; every registration gets a socket pair whose read end
  becomes readable when the registration outcome is known.
* ZeroconfClientProvider drives a SimplePoll, a client that reports
  Running once its Zeroconf instance is up, and entry groups that publish
  all of their services in one go.

Only IPv4 is announced.
"""

import asyncio
import concurrent.futures
import logging
import socket
from collections import deque
from typing import Any

from zeroconf import (
    InterfaceChoice,
    IPVersion,
    NonUniqueNameException,
    ServiceInfo,
    Zeroconf,
)

from ..services import local_hostname
from .providers import (
    AVAHI_ERR_BAD_STATE,
    AVAHI_ERR_FAILURE,
    AVAHI_OK,
    ERR_NAME_CONFLICT,
    ERR_NO_ERROR,
    ERR_SERVICE_NOT_RUNNING,
    ERR_UNKNOWN,
    INTERFACE_ANY,
    PROTO_INET,
    Client,
    ClientCallback,
    ClientProvider,
    ClientState,
    DaemonProvider,
    EntryGroup,
    GroupCallback,
    GroupState,
    NameCollision,
    Poll,
    ProviderError,
    RegisterCallback,
    Registration,
    SimplePoll,
)

logger = logging.getLogger(__name__)

DEFAULT_DOMAIN = "local."
NAME_LOOKUP_TIMEOUT = 5.0


def get_local_ip() -> str:
    """Get the local IPv4 address (best guess)."""
    try:
        return socket.gethostbyname(socket.gethostname())
    except OSError:
        pass

    try:
        # Connecting a UDP socket sends nothing, it just picks the route
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("8.8.8.8", 80))
            return s.getsockname()[0]
    except OSError:
        return "127.0.0.1"


def build_service_info(
    name: str,
    service_type: str,
    port: int,
    domain: str | None = None,
    host: str | None = None,
    address: str | None = None,
) -> ServiceInfo:
    """Create zeroconf service info for one service without a TXT record."""
    type_name = f"{service_type}.{domain or DEFAULT_DOMAIN}"
    server = host or f"{local_hostname() or 'localhost'}.local."

    return ServiceInfo(
        type_name,
        f"{name}.{type_name}",
        addresses=[socket.inet_aton(address or get_local_ip())],
        port=port,
        server=server,
    )


def _new_zeroconf() -> Zeroconf:
    return Zeroconf(interfaces=InterfaceChoice.All, ip_version=IPVersion.V4Only)


class ZeroconfRegistration(Registration):
    """One service registered through ZeroconfDaemon."""

    def __init__(
        self,
        info: ServiceInfo,
        service_type: str,
        callback: RegisterCallback,
        context: Any,
    ):
        self.info = info
        self.service_type = service_type
        self.callback = callback
        self.context = context
        self.registered = False
        self.future: concurrent.futures.Future | None = None
        self.closed = False
        self._results: deque[tuple[int, str]] = deque()
        self._reader, self._writer = socket.socketpair()

    def fileno(self) -> int:
        return self._reader.fileno()

    def complete(self, error_code: int) -> None:
        """Queue a registration outcome and wake the event thread."""
        if self.closed:
            return
        self.registered = error_code == ERR_NO_ERROR
        self._results.append((error_code, self.info.get_name()))
        self._writer.send(b"\x00")

    def drain(self) -> list[tuple[int, str]]:
        data = self._reader.recv(1024)
        if not data:
            raise ConnectionError("registration socket closed")
        results = []
        while self._results:
            results.append(self._results.popleft())
        return results

    def close(self) -> None:
        self.closed = True
        self._reader.close()
        self._writer.close()


def _check_registration(registration: Registration) -> None:
    if not isinstance(registration, ZeroconfRegistration):
        raise TypeError(
            f"Expected a ZeroconfRegistration, got {type(registration).__name__}"
        )


class ZeroconfDaemon(DaemonProvider):
    """Daemon-socket provider on top of a shared Zeroconf instance."""

    def __init__(self, address: str | None = None):
        """Initialize the provider.

        Args:
            address: IPv4 address to announce. Detected if None.
        """
        self._address = address
        self._zeroconf: Zeroconf | None = None
        self._registrations: set[ZeroconfRegistration] = set()

    def _get_zeroconf(self) -> Zeroconf:
        if self._zeroconf is None:
            try:
                self._zeroconf = _new_zeroconf()
            except OSError as e:
                raise ProviderError(ERR_SERVICE_NOT_RUNNING, str(e)) from e
        return self._zeroconf

    def register(
        self,
        name: str,
        service_type: str,
        port: int,
        callback: RegisterCallback,
        context: Any = None,
        interface: int = INTERFACE_ANY,
        domain: str | None = None,
    ) -> Registration:
        zeroconf = self._get_zeroconf()

        try:
            info = build_service_info(
                name, service_type, port, domain=domain, address=self._address
            )
            registration = ZeroconfRegistration(info, service_type, callback, context)
        except (OSError, ValueError) as e:
            raise ProviderError(ERR_UNKNOWN, str(e)) from e

        self._registrations.add(registration)
        registration.future = asyncio.run_coroutine_threadsafe(
            self._async_register(zeroconf, registration), zeroconf.loop
        )
        return registration

    async def _async_register(
        self, zeroconf: Zeroconf, registration: ZeroconfRegistration
    ) -> None:
        """Register on the zeroconf loop, renaming on conflict like a daemon."""
        try:
            broadcast = await zeroconf.async_register_service(
                registration.info, allow_name_change=True
            )
            await broadcast
        except NonUniqueNameException:
            registration.complete(ERR_NAME_CONFLICT)
        except Exception as e:
            logger.debug(f"Registration of '{registration.info.name}' failed: {e}")
            registration.complete(ERR_UNKNOWN)
        else:
            registration.complete(ERR_NO_ERROR)

    def process_result(self, registration: Registration) -> int:
        _check_registration(registration)
        try:
            results = registration.drain()
        except OSError as e:
            logger.debug(f"Registration socket error: {e}")
            return ERR_SERVICE_NOT_RUNNING

        for error_code, name in results:
            registration.callback(
                registration,
                0,
                error_code,
                name,
                registration.service_type,
                DEFAULT_DOMAIN,
                registration.context,
            )
        return ERR_NO_ERROR

    def deallocate(self, registration: Registration) -> None:
        _check_registration(registration)
        if registration.future is not None:
            registration.future.cancel()

        if registration.registered and self._zeroconf is not None:
            try:
                self._zeroconf.unregister_service(registration.info)
            except Exception as e:
                logger.debug(f"Service unregister: {e}")

        registration.close()
        self._registrations.discard(registration)

        # The shared instance lives as long as its registrations
        if not self._registrations and self._zeroconf is not None:
            self._zeroconf.close()
            self._zeroconf = None


class ZeroconfEntryGroup(EntryGroup):
    """Entry group that registers its services on the zeroconf loop."""

    def __init__(self, client: "ZeroconfClient", callback: GroupCallback):
        self.client = client
        self._callback = callback
        self._entries: list[ServiceInfo] = []
        self._registered: list[ServiceInfo] = []
        self._future: concurrent.futures.Future | None = None
        self._generation = 0

    def _post(self, state: GroupState) -> None:
        self.client.poll.post(self._callback, self, state)

    def add_service(
        self,
        name: str,
        service_type: str,
        port: int,
        interface: int = INTERFACE_ANY,
        protocol: int = PROTO_INET,
        domain: str | None = None,
        host: str | None = None,
    ) -> None:
        if protocol != PROTO_INET:
            raise ProviderError(AVAHI_ERR_FAILURE, "Only IPv4 is supported")

        try:
            info = build_service_info(
                name, service_type, port, domain=domain, host=host,
                address=self.client.address,
            )
        except (OSError, ValueError) as e:
            raise ProviderError(AVAHI_ERR_FAILURE, str(e)) from e

        key = info.name.lower()
        if any(entry.name.lower() == key for entry in self._entries):
            raise NameCollision()
        if self._registered_locally(info.name):
            raise NameCollision()

        self._entries.append(info)

    def _registered_locally(self, name: str) -> bool:
        """Look the name up in the registry on the zeroconf loop, which owns it."""
        zeroconf = self.client.zeroconf

        async def lookup() -> bool:
            return zeroconf.registry.async_get_info_name(name) is not None

        future = asyncio.run_coroutine_threadsafe(lookup(), zeroconf.loop)
        try:
            return future.result(NAME_LOOKUP_TIMEOUT)
        except concurrent.futures.TimeoutError as e:
            future.cancel()
            raise ProviderError(AVAHI_ERR_FAILURE, "Registry lookup timed out") from e

    def commit(self) -> None:
        if self._future is not None and not self._future.done():
            raise ProviderError(AVAHI_ERR_BAD_STATE)

        self._generation += 1
        self._post(GroupState.REGISTERING)
        self._future = asyncio.run_coroutine_threadsafe(
            self._async_register(list(self._entries), self._generation),
            self.client.zeroconf.loop,
        )

    async def _async_register(self, entries: list[ServiceInfo], generation: int) -> None:
        """Register every entry; the first conflict fails the whole group."""
        zeroconf = self.client.zeroconf
        try:
            for info in entries:
                broadcast = await zeroconf.async_register_service(info)
                self._registered.append(info)
                await broadcast
        except NonUniqueNameException:
            state = GroupState.COLLISION
        except Exception as e:
            logger.debug(f"Entry group registration failed: {e}")
            self.client.errno = AVAHI_ERR_FAILURE
            state = GroupState.FAILURE
        else:
            state = GroupState.ESTABLISHED

        # Outcomes of a commit that has since been reset are dropped
        if generation == self._generation:
            self._post(state)

    def reset(self) -> None:
        self._withdraw()
        self._post(GroupState.UNCOMMITTED)

    def _withdraw(self) -> None:
        self._generation += 1
        if self._future is not None:
            self._future.cancel()
            self._future = None

        for info in self._registered:
            try:
                self.client.zeroconf.unregister_service(info)
            except Exception as e:
                logger.debug(f"Service unregister: {e}")

        self._registered.clear()
        self._entries.clear()

    def is_empty(self) -> bool:
        return not self._entries

    def free(self) -> None:
        self._withdraw()


class ZeroconfClient(Client):
    """Client owning one Zeroconf instance."""

    def __init__(self, poll: SimplePoll, callback: ClientCallback, address: str | None = None):
        self.poll = poll
        self.address = address
        self.errno = AVAHI_OK
        self._callback = callback

        try:
            self.zeroconf = _new_zeroconf()
        except OSError as e:
            raise ProviderError(AVAHI_ERR_FAILURE, str(e)) from e

        # The responder is ready as soon as the instance exists
        self.poll.post(self._callback, self, ClientState.RUNNING)

    def new_entry_group(self, callback: GroupCallback) -> EntryGroup:
        return ZeroconfEntryGroup(self, callback)

    def free(self) -> None:
        self.zeroconf.close()


class ZeroconfClientProvider(ClientProvider):
    """Managed-client provider on top of python-zeroconf."""

    def __init__(self, address: str | None = None):
        """Initialize the provider.

        Args:
            address: IPv4 address to announce. Detected if None.
        """
        self._address = address

    def new_poll(self) -> Poll:
        return SimplePoll()

    def new_client(self, poll: Poll, callback: ClientCallback) -> Client:
        if not isinstance(poll, SimplePoll):
            raise ProviderError(AVAHI_ERR_BAD_STATE, "Poll object not created by this provider")
        return ZeroconfClient(poll, callback, address=self._address)
