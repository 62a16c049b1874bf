"""Announce services through a discovery daemon, one socket per service.

Each service is registered separately with the daemon. The daemon resolves
name conflicts on its own and reports the outcome through a completion
callback, which is invoked when events are dispatched for that service's
socket. One worker thread waits on every service socket plus a stop
socket, so terminate() can wake it from any thread.
"""

import logging
import select
import socket
from dataclasses import dataclass

from ..config import Config
from ..services import ServiceDescriptor, ServiceKind, ServiceTable, build_services
from .base import Announcer
from .providers import ERR_NO_ERROR, DaemonProvider, ProviderError, Registration

logger = logging.getLogger(__name__)

# We don't really want select() to time out, hence the very large number
SELECT_TIMEOUT = 100000000


@dataclass
class ServiceRegistration:
    """A descriptor with its live daemon registration."""

    descriptor: ServiceDescriptor
    handle: Registration
    fd: int = -1


class DaemonSocketAnnouncer(Announcer):
    """Announcer for daemon-socket providers."""

    thread_name = "dns-sd-events"

    def __init__(self, provider: DaemonProvider):
        """Initialize the announcer.

        Args:
            provider: Daemon-socket registration API to announce through.
        """
        super().__init__()
        self._provider = provider
        self._stop_writer: socket.socket | None = None

    def announce(self, config: Config) -> None:
        services = build_services(config)
        if len(services) == 0:
            services.release()
            return

        registrations = []
        for descriptor in services:
            try:
                handle = self._provider.register(
                    name=descriptor.name,
                    service_type=descriptor.service_type,
                    port=descriptor.port,
                    callback=self._registration_callback,
                    context=descriptor,
                )
            except ProviderError as e:
                logger.error(f"Failed to announce '{descriptor.name}': {e.code}")
                continue

            registrations.append(ServiceRegistration(descriptor, handle))
            logger.info(
                f"Announcing {descriptor.label} on port {descriptor.port} "
                f"as '{descriptor.name}'"
            )

        # Socket pair to allow for a graceful exit
        try:
            stop_reader, stop_writer = socket.socketpair()
        except OSError as e:
            logger.error(f"Failed to create stop signal: {e}")
            self._release(services, registrations)
            return

        self._stop_writer = stop_writer
        self._start_worker(
            self._process_events, services, registrations, stop_reader, stop_writer
        )

    def terminate(self) -> None:
        """Wake the event thread so that it withdraws all services and exits."""
        stop_writer, self._stop_writer = self._stop_writer, None
        if stop_writer is None:
            return

        try:
            stop_writer.send(b"\x01")
        except OSError as e:
            # The event thread already exited and closed the socket
            logger.debug(f"Stop signal not delivered: {e}")

    def _registration_callback(
        self,
        handle: Registration,
        flags: int,
        error_code: int,
        name: str,
        service_type: str,
        domain: str,
        context: ServiceDescriptor,
    ) -> None:
        """Report the outcome of one registration.

        Invoked on the event thread each time the daemon completes a
        registration. The name may differ from the one we asked for if
        the daemon resolved a conflict on our behalf.
        """
        kind = ServiceKind.from_service_type(service_type)
        label = kind.label if kind else service_type

        if error_code == ERR_NO_ERROR:
            logger.info(f"Successfully registered {label} service '{name}'")
            if context is not None:
                context.name = name
        else:
            logger.error(f"Failed to register {label} service '{name}': {error_code}")

    def _process_events(
        self,
        services: ServiceTable,
        registrations: list[ServiceRegistration],
        stop_reader: socket.socket,
        stop_writer: socket.socket,
    ) -> None:
        """Event thread: dispatch daemon events until told to stop."""
        for registration in registrations:
            registration.fd = registration.handle.fileno()

        stop_fd = stop_reader.fileno()
        stop_now = False

        try:
            while not stop_now:
                readfds = [stop_fd] + [r.fd for r in registrations if r.fd >= 0]

                try:
                    readable, _, _ = select.select(readfds, [], [], SELECT_TIMEOUT)
                except InterruptedError:
                    continue
                except OSError as e:
                    logger.error(f"select() failed: {e}")
                    break

                # If the stop socket was written to, it's time to exit
                if stop_fd in readable:
                    stop_now = True
                    break

                for registration in registrations:
                    if registration.fd < 0 or registration.fd not in readable:
                        continue
                    err = self._provider.process_result(registration.handle)
                    if err != ERR_NO_ERROR:
                        logger.error(
                            f"Error from the API: {err} for '{registration.descriptor.name}'"
                        )
                        stop_now = True  # but continue to process remaining sockets
        finally:
            self._release(services, registrations)
            stop_reader.close()
            stop_writer.close()
            logger.debug("Event thread stopped")

    def _release(
        self, services: ServiceTable, registrations: list[ServiceRegistration]
    ) -> None:
        """Deallocate every registration, then the descriptors."""
        for registration in registrations:
            try:
                self._provider.deallocate(registration.handle)
            except ProviderError as e:
                logger.error(
                    f"Failed to remove '{registration.descriptor.name}': {e.code}"
                )
        registrations.clear()
        services.release()
