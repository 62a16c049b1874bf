"""Contracts for the DNS-SD providers the announcers talk to.

Two provider models are supported:

* The daemon-socket model: each registration is submitted to a discovery
  daemon and gets its own readiness socket. The daemon resolves name
  conflicts itself and reports the outcome, with the actually registered
  name, through a completion callback.
* The managed-client model: a client object bound to a poll loop reports
  its own state, and services are published as one entry group whose
  state is reported separately. Name collisions are surfaced either
  synchronously when adding a service or asynchronously for the group.
"""

import enum
import queue
import re
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable

# Daemon-socket error codes
ERR_NO_ERROR = 0
ERR_UNKNOWN = -65537
ERR_NAME_CONFLICT = -65548
ERR_SERVICE_NOT_RUNNING = -65563

# Managed-client error codes
AVAHI_OK = 0
AVAHI_ERR_FAILURE = -1
AVAHI_ERR_BAD_STATE = -2
AVAHI_ERR_COLLISION = -8

_ERROR_MESSAGES = {
    AVAHI_OK: "OK",
    AVAHI_ERR_FAILURE: "Operation failed",
    AVAHI_ERR_BAD_STATE: "Bad state",
    AVAHI_ERR_COLLISION: "Local name collision",
}

INTERFACE_ANY = 0
PROTO_INET = 0  # IPv4 only; the announced services listen on IPv4

DNS_LABEL_MAX = 63

_ALTERNATIVE_SUFFIX = re.compile(r" #(\d+)$")


def strerror(code: int) -> str:
    """Human-readable message for a managed-client error code."""
    return _ERROR_MESSAGES.get(code, f"Unknown error {code}")


class ProviderError(Exception):
    """A DNS-SD provider call failed."""

    def __init__(self, code: int, message: str | None = None):
        self.code = code
        self.message = message or strerror(code)
        super().__init__(f"{self.message} ({code})")


class NameCollision(ProviderError):
    """The requested service name is already in use."""

    def __init__(self, message: str | None = None):
        super().__init__(AVAHI_ERR_COLLISION, message)


class ClientState(enum.Enum):
    CONNECTING = "connecting"
    REGISTERING = "registering"
    RUNNING = "running"
    COLLISION = "collision"
    FAILURE = "failure"


class GroupState(enum.Enum):
    UNCOMMITTED = "uncommitted"
    REGISTERING = "registering"
    ESTABLISHED = "established"
    COLLISION = "collision"
    FAILURE = "failure"


def alternative_service_name(name: str) -> str:
    """Derive a new service name after a collision.

    "Dire Wolf" becomes "Dire Wolf #2", and "Dire Wolf #2" becomes
    "Dire Wolf #3". The base is shortened if the result would not fit in
    a single DNS label.
    """
    match = _ALTERNATIVE_SUFFIX.search(name)
    if match:
        base = name[: match.start()]
        number = int(match.group(1)) + 1
    else:
        base = name
        number = 2

    suffix = f" #{number}"
    return base[: DNS_LABEL_MAX - len(suffix)] + suffix


# Daemon-socket model

class Registration(ABC):
    """Handle for one live service registration with the daemon."""

    @abstractmethod
    def fileno(self) -> int:
        """Socket that becomes readable when the daemon has events for us."""


# (handle, flags, error_code, name, service_type, domain, context)
RegisterCallback = Callable[["Registration", int, int, str, str, str, Any], None]


class DaemonProvider(ABC):
    """Daemon-socket registration API."""

    @abstractmethod
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
        """Submit an asynchronous registration request.

        Raises:
            ProviderError: If the request could not be submitted.
        """

    @abstractmethod
    def process_result(self, registration: Registration) -> int:
        """Dispatch pending daemon events, invoking completion callbacks.

        Returns:
            ERR_NO_ERROR, or the daemon error code.
        """

    @abstractmethod
    def deallocate(self, registration: Registration) -> None:
        """Remove the registration and release its socket."""


# Managed-client model

class Poll(ABC):
    """Event loop that delivers client and entry group callbacks."""

    @abstractmethod
    def loop(self) -> None:
        """Run callbacks until quit() is called."""

    @abstractmethod
    def quit(self) -> None:
        """Ask loop() to return. Safe to call from any thread."""

    def free(self) -> None:
        pass


class SimplePoll(Poll):
    """Queue-driven poll loop.

    Callbacks posted from any thread run on the thread inside loop(). Once
    quit() is called no further callbacks are dispatched.
    """

    def __init__(self):
        self._queue: queue.Queue[tuple[Callable[..., None], tuple] | None] = queue.Queue()
        self._quit = threading.Event()

    def post(self, callback: Callable[..., None], *args: Any) -> None:
        self._queue.put((callback, args))

    def loop(self) -> None:
        while not self._quit.is_set():
            item = self._queue.get()
            if item is None or self._quit.is_set():
                continue
            callback, args = item
            callback(*args)

    def quit(self) -> None:
        self._quit.set()
        self._queue.put(None)


class EntryGroup(ABC):
    """A set of services published, or withdrawn, together."""

    client: "Client"

    @abstractmethod
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
        """Add one service to the uncommitted group.

        Raises:
            NameCollision: If the name is already taken.
            ProviderError: For any other failure.
        """

    @abstractmethod
    def commit(self) -> None:
        """Publish every service in the group."""

    @abstractmethod
    def reset(self) -> None:
        """Withdraw all services and return to the uncommitted state."""

    @abstractmethod
    def is_empty(self) -> bool:
        pass

    @abstractmethod
    def free(self) -> None:
        pass


GroupCallback = Callable[[EntryGroup, GroupState], None]


class Client(ABC):
    """Connection to the discovery service."""

    errno: int = AVAHI_OK

    @abstractmethod
    def new_entry_group(self, callback: GroupCallback) -> EntryGroup:
        """Create an entry group reporting its state to callback.

        Raises:
            ProviderError: If the group cannot be created.
        """

    @abstractmethod
    def free(self) -> None:
        pass


ClientCallback = Callable[[Client, ClientState], None]


class ClientProvider(ABC):
    """Managed-client API."""

    @abstractmethod
    def new_poll(self) -> Poll:
        """Create the poll object. Raises ProviderError on failure."""

    @abstractmethod
    def new_client(self, poll: Poll, callback: ClientCallback) -> Client:
        """Create a client; its first state change is delivered via poll.

        Raises:
            ProviderError: If the client cannot be created.
        """

    def alternative_service_name(self, name: str) -> str:
        return alternative_service_name(name)
