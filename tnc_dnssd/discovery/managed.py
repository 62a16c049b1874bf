"""Announce services as one entry group through a managed discovery client.

All services are published together in a single entry group, so success
or failure applies to the group as a whole. The client and the entry group
each report state changes through their own callback; both are modelled
as explicit state machines below. All callbacks run on the worker thread
that drives the provider's poll loop.
"""

import logging

from ..config import Config
from ..services import ServiceDescriptor, ServiceTable, build_services
from .base import Announcer
from .providers import (
    PROTO_INET,
    Client,
    ClientProvider,
    ClientState,
    EntryGroup,
    GroupState,
    NameCollision,
    Poll,
    ProviderError,
    strerror,
)

logger = logging.getLogger(__name__)


class ClientStateMachine:
    """Reacts to state changes of the discovery client.

    Connecting -> Running -> (Registering | Collision | Failure). Services are
    (re)published each time the client reaches Running.
    """

    def __init__(self, announcer: "ManagedClientAnnouncer"):
        self._announcer = announcer
        self.state: ClientState | None = None
        self._handlers = {
            ClientState.CONNECTING: self._on_connecting,
            ClientState.RUNNING: self._on_running,
            ClientState.REGISTERING: self._on_host_name_change,
            ClientState.COLLISION: self._on_host_name_change,
            ClientState.FAILURE: self._on_failure,
        }

    def __call__(self, client: Client, state: ClientState) -> None:
        # May be called before the announcer has stored the client, so the
        # client passed in is the one to use.
        logger.debug(f"Client state: {state.value}")
        self.state = state
        self._handlers[state](client)

    def _on_connecting(self, client: Client) -> None:
        pass

    def _on_running(self, client: Client) -> None:
        # The server has registered its host name, so it's time to
        # create our services
        self._announcer.create_services(client)

    def _on_host_name_change(self, client: Client) -> None:
        # Drop our services and wait for Running with the new host name.
        # Naming is unaffected; service collisions are reported by the group.
        self._announcer.reset_group()

    def _on_failure(self, client: Client) -> None:
        logger.error(f"Client failure: {strerror(client.errno)}")
        self._announcer.terminate()


class GroupStateMachine:
    """Reacts to state changes of the entry group holding our services.

    Uncommitted -> Registering -> (Established | Collision | Failure).
    """

    def __init__(self, announcer: "ManagedClientAnnouncer"):
        self._announcer = announcer
        self.state: GroupState | None = None
        self._handlers = {
            GroupState.UNCOMMITTED: self._on_pending,
            GroupState.REGISTERING: self._on_pending,
            GroupState.ESTABLISHED: self._on_established,
            GroupState.COLLISION: self._on_collision,
            GroupState.FAILURE: self._on_failure,
        }

    def __call__(self, group: EntryGroup, state: GroupState) -> None:
        # May be called while the group is being created
        self._announcer.adopt_group(group)
        logger.debug(f"Entry group state: {state.value}")
        self.state = state
        self._handlers[state](group)

    def _on_pending(self, group: EntryGroup) -> None:
        pass

    def _on_established(self, group: EntryGroup) -> None:
        logger.info("Successfully registered all services.")

    def _on_collision(self, group: EntryGroup) -> None:
        # We are not told which name collided, so rename all of them to be
        # sure we catch the offending one, then recreate the group
        logger.info("Service name collision, renaming services")
        self._announcer.rename_all_services()
        self._announcer.create_services(group.client)

    def _on_failure(self, group: EntryGroup) -> None:
        logger.error(f"Entry group failure: {strerror(group.client.errno)}")
        self._announcer.terminate()


class ManagedClientAnnouncer(Announcer):
    """Announcer for managed-client providers."""

    thread_name = "dns-sd-client"

    def __init__(self, provider: ClientProvider):
        """Initialize the announcer.

        Args:
            provider: Managed-client API to announce through.
        """
        super().__init__()
        self._provider = provider
        self._services: ServiceTable | None = None
        self._poll: Poll | None = None
        self._client: Client | None = None
        self._group: EntryGroup | None = None
        self.client_state = ClientStateMachine(self)
        self.group_state = GroupStateMachine(self)

    @property
    def services(self) -> ServiceTable | None:
        return self._services

    def announce(self, config: Config) -> None:
        services = build_services(config)
        if len(services) == 0:
            services.release()
            return

        self._services = services

        try:
            self._poll = self._provider.new_poll()
        except ProviderError as e:
            logger.error(f"Failed to create poll object: {e}")
            self._cleanup()
            return

        try:
            self._client = self._provider.new_client(self._poll, self.client_state)
        except ProviderError as e:
            logger.error(f"Failed to create client: {e}")
            self._cleanup()
            return

        self._start_worker(self._mainloop, self._poll)

    def terminate(self) -> None:
        """Stop the poll loop; the worker thread then cleans up."""
        poll = self._poll
        if poll is not None:
            poll.quit()

    def adopt_group(self, group: EntryGroup) -> None:
        if self._group is None:
            self._group = group

    def reset_group(self) -> None:
        if self._group is not None:
            self._group.reset()

    def rename_all_services(self) -> None:
        """Give every service a new name after an unattributed collision."""
        for descriptor in self._services or ():
            previous = descriptor.name
            descriptor.name = self._provider.alternative_service_name(previous)
            logger.info(f"Renaming '{previous}' to '{descriptor.name}'")

    def create_services(self, client: Client) -> None:
        """Add every service to the entry group and commit it.

        The group is created on first use and reset when it still holds
        entries from an earlier attempt. Any failure other than a name
        collision ends the announcement.
        """
        if self._group is None:
            try:
                self._group = client.new_entry_group(self.group_state)
            except ProviderError as e:
                logger.error(f"Failed to create entry group: {e}")
                self.terminate()
                return
        elif not self._group.is_empty():
            self._group.reset()

        if not self._group.is_empty():
            return

        for descriptor in self._services or ():
            try:
                self._create_service(self._group, descriptor)
            except ProviderError:
                self.terminate()
                return

        # Publish all services in the group
        try:
            self._group.commit()
        except ProviderError as e:
            logger.error(f"Failed to commit entry group: {e}")
            self.terminate()

    def _create_service(self, group: EntryGroup, descriptor: ServiceDescriptor) -> None:
        """Add one service, renaming it until its name no longer collides."""
        logger.info(
            f"Announcing {descriptor.label} on port {descriptor.port} "
            f"as '{descriptor.name}'"
        )

        while True:
            try:
                group.add_service(
                    name=descriptor.name,
                    service_type=descriptor.service_type,
                    port=descriptor.port,
                    protocol=PROTO_INET,
                )
                return
            except NameCollision:
                previous = descriptor.name
                descriptor.name = self._provider.alternative_service_name(previous)
                logger.info(
                    f"Service name collision, renaming '{previous}' to '{descriptor.name}'"
                )
            except ProviderError as e:
                logger.error(f"Failed to add {descriptor.label} service: {e}")
                raise

    def _mainloop(self, poll: Poll) -> None:
        """Worker thread: run the poll loop, then release everything."""
        try:
            poll.loop()
        except ProviderError as e:
            logger.error(f"Poll loop failed: {e}")
        finally:
            self._cleanup()

    def _cleanup(self) -> None:
        """Release provider objects and descriptors.

        The group holds a reference to the client, and the client to the
        poll object, so they are freed in that order.
        """
        if self._group is not None:
            self._group.free()
            self._group = None

        if self._client is not None:
            self._client.free()
            self._client = None

        if self._poll is not None:
            self._poll.free()
            self._poll = None

        if self._services is not None:
            self._services.release()
            self._services = None

        logger.debug("Released DNS-SD client resources")
