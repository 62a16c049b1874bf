"""Tests for building service descriptors."""

import pytest
from unittest.mock import patch

from tnc_dnssd.config import (
    AGWPEConfig,
    Config,
    DNSSDConfig,
    KissConfig,
    KissPortConfig,
    MAX_KISS_TCP_PORTS,
)
from tnc_dnssd.services import (
    MAX_SERVICE_NAME_LENGTH,
    NO_CHANNEL,
    ServiceKind,
    ServiceTable,
    build_services,
    local_hostname,
    make_service_name,
    service_count,
)


def make_config(agwpe_port=8000, kiss=((8001, 0),), name=""):
    return Config(
        agwpe=AGWPEConfig(port=agwpe_port),
        kiss=KissConfig(ports=[KissPortConfig(port=p, channel=c) for p, c in kiss]),
        dns_sd=DNSSDConfig(name=name),
    )


class TestServiceCount:
    """Tests for counting configured services."""

    def test_nothing_configured(self):
        """Test a config with every port disabled."""
        assert service_count(make_config(agwpe_port=0, kiss=())) == 0

    def test_unused_kiss_slots_skipped(self):
        """Test port 0 KISS entries are not counted."""
        config = make_config(kiss=((8001, 0), (0, 1), (8003, 2)))

        assert service_count(config) == 3

    def test_full_table(self):
        """Test the maximum number of services."""
        kiss = [(9000 + i, i) for i in range(MAX_KISS_TCP_PORTS)]

        assert service_count(make_config(kiss=kiss)) == MAX_KISS_TCP_PORTS + 1


class TestServiceNames:
    """Tests for display name synthesis."""

    def test_gateway_default_name(self):
        """Test the product name is used without a base name."""
        assert make_service_name("", "node1", NO_CHANNEL) == "Dire Wolf on node1"

    def test_channel_and_host(self):
        """Test the channel and hostname suffixes."""
        assert make_service_name("Lab TNC", "node1", 2) == "Lab TNC channel 2 on node1"

    def test_no_hostname(self):
        """Test the hostname suffix is omitted when unknown."""
        assert make_service_name("Lab TNC", "", 2) == "Lab TNC channel 2"

    def test_channel_zero_included(self):
        """Test channel 0 is still shown."""
        assert make_service_name("", "", 0) == "Dire Wolf channel 0"

    def test_truncated(self):
        """Test overlong names are truncated, not rejected."""
        name = make_service_name("x" * 200, "node1", 3)

        assert len(name) == MAX_SERVICE_NAME_LENGTH
        assert name == "x" * MAX_SERVICE_NAME_LENGTH

    def test_deterministic(self):
        """Test the same inputs give the same name."""
        assert make_service_name("A", "b", 1) == make_service_name("A", "b", 1)


class TestLocalHostname:
    """Tests for hostname lookup."""

    def test_domain_stripped(self):
        """Test an FQDN is reduced to the short name."""
        with patch("tnc_dnssd.services.socket.gethostname", return_value="node1.example.org"):
            assert local_hostname() == "node1"

    def test_lookup_failure(self):
        """Test a failing lookup yields an empty hostname."""
        with patch("tnc_dnssd.services.socket.gethostname", side_effect=OSError("no name")):
            assert local_hostname() == ""

    def test_long_hostname_truncated(self):
        """Test the hostname is limited to 50 characters."""
        with patch("tnc_dnssd.services.socket.gethostname", return_value="h" * 80):
            assert local_hostname() == "h" * 50


class TestBuildServices:
    """Tests for building the descriptor table."""

    def test_gateway_only(self):
        """Test a config with just the gateway port."""
        services = build_services(make_config(kiss=()), hostname="node1")

        descriptors = list(services)
        assert len(descriptors) == 1
        assert descriptors[0].name == "Dire Wolf on node1"
        assert descriptors[0].kind is ServiceKind.GATEWAY
        assert descriptors[0].channel == NO_CHANNEL
        assert descriptors[0].port == 8000
        assert services[0] is descriptors[0]

    def test_single_kiss_port(self):
        """Test one KISS port with a configured base name."""
        config = make_config(agwpe_port=0, kiss=((8001, 2),), name="Lab TNC")

        services = build_services(config, hostname="node1")

        descriptors = list(services)
        assert len(descriptors) == 1
        assert descriptors[0].name == "Lab TNC channel 2 on node1"
        assert descriptors[0].kind is ServiceKind.FRAMED_DATA
        assert descriptors[0].service_type == "_kiss-tnc._tcp"
        assert descriptors[0].label == "KISS TCP"
        assert services[0] is None

    def test_all_channel_kiss_port(self):
        """Test a KISS port on channel -1 is named without a channel."""
        config = make_config(agwpe_port=0, kiss=((8001, NO_CHANNEL),), name="Lab TNC")

        services = build_services(config, hostname="node1")

        descriptors = list(services)
        assert descriptors[0].name == "Lab TNC on node1"
        assert descriptors[0].kind is ServiceKind.FRAMED_DATA
        assert descriptors[0].channel == NO_CHANNEL

    def test_hostname_lookup_failure(self):
        """Test names fall back to no hostname suffix."""
        config = make_config(agwpe_port=0, kiss=((8001, 2),), name="Lab TNC")

        with patch("tnc_dnssd.services.socket.gethostname", side_effect=OSError):
            services = build_services(config)

        assert services.names == ["Lab TNC channel 2"]

    def test_mixed(self):
        """Test gateway first, then KISS ports in order, skipping unused slots."""
        config = make_config(kiss=((8001, 0), (0, 5), (8003, 1)))

        services = build_services(config, hostname="node1")

        assert len(services) == 3
        assert [d.port for d in services] == [8000, 8001, 8003]
        assert services.names == [
            "Dire Wolf on node1",
            "Dire Wolf channel 0 on node1",
            "Dire Wolf channel 1 on node1",
        ]

    def test_names_bounded_and_channel_scoped(self):
        """Test every name is non-empty and only KISS names carry a channel."""
        kiss = [(9000 + i, i) for i in range(MAX_KISS_TCP_PORTS)]
        services = build_services(make_config(kiss=kiss, name="N" * 150), hostname="node1")

        assert len(services) == MAX_KISS_TCP_PORTS + 1
        for descriptor in services:
            assert 0 < len(descriptor.name) <= MAX_SERVICE_NAME_LENGTH

        services = build_services(make_config(kiss=kiss), hostname="node1")
        for descriptor in services:
            if descriptor.kind is ServiceKind.FRAMED_DATA:
                assert f"channel {descriptor.channel}" in descriptor.name
            else:
                assert "channel" not in descriptor.name

    def test_nothing_to_announce(self):
        """Test an empty table for an empty config."""
        services = build_services(make_config(agwpe_port=0, kiss=()), hostname="node1")

        assert len(services) == 0
        assert list(services) == []


class TestServiceKind:
    """Tests for service kind lookup."""

    @pytest.mark.parametrize("service_type,expected", [
        ("_agwpe._tcp", ServiceKind.GATEWAY),
        ("_agwpe._tcp.", ServiceKind.GATEWAY),
        ("_kiss-tnc._tcp.local.", ServiceKind.FRAMED_DATA),
        ("_http._tcp", None),
    ])
    def test_from_service_type(self, service_type, expected):
        """Test matching returned service types to kinds."""
        assert ServiceKind.from_service_type(service_type) is expected


class TestServiceTable:
    """Tests for the descriptor table."""

    def test_release_once(self):
        """Test releasing twice is an error."""
        table = build_services(make_config(), hostname="node1")

        table.release()

        assert table.released
        assert len(table) == 0
        with pytest.raises(RuntimeError):
            table.release()

    def test_slot_out_of_range(self):
        """Test the capacity is fixed."""
        table = ServiceTable(capacity=2)

        with pytest.raises(IndexError):
            table.set(2, next(iter(build_services(make_config(), hostname=""))))
