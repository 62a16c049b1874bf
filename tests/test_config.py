"""Tests for configuration loading."""

import pytest

from tnc_dnssd.config import (
    MAX_DNS_SD_SERVICES,
    MAX_KISS_TCP_PORTS,
    Config,
    KissPortConfig,
    load_config,
)


class TestDefaults:
    """Tests for the default configuration."""

    def test_default_config(self):
        """Test defaults when no file is given."""
        config = load_config(None)

        assert config.agwpe.port == 8000
        assert config.kiss.ports == [KissPortConfig(port=8001, channel=0)]
        assert config.dns_sd.enabled is True
        assert config.dns_sd.name == ""
        assert config.dns_sd.backend == "auto"

    def test_missing_file_uses_defaults(self, tmp_path):
        """Test a nonexistent path falls back to defaults."""
        config = load_config(tmp_path / "missing.yaml")

        assert config == Config()

    def test_capacity(self):
        """Test one gateway slot plus one per KISS port."""
        assert MAX_DNS_SD_SERVICES == MAX_KISS_TCP_PORTS + 1


class TestLoadYaml:
    """Tests for loading YAML files."""

    def test_full_file(self, tmp_path):
        """Test every section is parsed."""
        path = tmp_path / "config.yaml"
        path.write_text(
            """
agwpe:
  port: 0
kiss:
  ports:
    - port: 8001
      channel: 2
    - port: 8002
dns_sd:
  enabled: true
  name: Lab TNC
  backend: client
"""
        )

        config = load_config(path)

        assert config.agwpe.port == 0
        assert config.kiss.ports == [
            KissPortConfig(port=8001, channel=2),
            KissPortConfig(port=8002, channel=0),
        ]
        assert config.dns_sd.name == "Lab TNC"
        assert config.dns_sd.backend == "client"

    def test_empty_file(self, tmp_path):
        """Test an empty file yields defaults."""
        path = tmp_path / "config.yaml"
        path.write_text("")

        assert load_config(path) == Config()

    def test_empty_kiss_ports(self, tmp_path):
        """Test an explicit empty list disables KISS services."""
        path = tmp_path / "config.yaml"
        path.write_text("kiss:\n  ports: []\n")

        config = load_config(path)

        assert config.kiss.ports == []

    def test_null_name_keeps_default(self, tmp_path):
        """Test a null name is treated as unset."""
        path = tmp_path / "config.yaml"
        path.write_text("dns_sd:\n  name:\n")

        assert load_config(path).dns_sd.name == ""


class TestValidation:
    """Tests for configuration validation."""

    def test_too_many_kiss_ports(self, tmp_path):
        """Test more KISS ports than slots is rejected."""
        ports = "".join(
            f"    - port: {9000 + i}\n" for i in range(MAX_KISS_TCP_PORTS + 1)
        )
        path = tmp_path / "config.yaml"
        path.write_text(f"kiss:\n  ports:\n{ports}")

        with pytest.raises(ValueError, match="Too many KISS TCP ports"):
            load_config(path)

    def test_invalid_port(self, tmp_path):
        """Test an out-of-range port is rejected."""
        path = tmp_path / "config.yaml"
        path.write_text("agwpe:\n  port: 70000\n")

        with pytest.raises(ValueError, match="Invalid TCP port"):
            load_config(path)

    def test_negative_channel(self, tmp_path):
        """Test a channel below -1 is rejected."""
        path = tmp_path / "config.yaml"
        path.write_text("kiss:\n  ports:\n    - port: 8001\n      channel: -2\n")

        with pytest.raises(ValueError, match="Invalid channel"):
            load_config(path)

    def test_all_channel_kiss_port(self, tmp_path):
        """Test channel -1 is accepted for a KISS port serving every channel."""
        path = tmp_path / "config.yaml"
        path.write_text("kiss:\n  ports:\n    - port: 8001\n      channel: -1\n")

        config = load_config(path)

        assert config.kiss.ports == [KissPortConfig(port=8001, channel=-1)]

    def test_unknown_backend(self, tmp_path):
        """Test an unknown backend is rejected."""
        path = tmp_path / "config.yaml"
        path.write_text("dns_sd:\n  backend: bonjour\n")

        with pytest.raises(ValueError, match="Unknown DNS-SD backend"):
            load_config(path)


class TestEnvOverrides:
    """Tests for environment variable overrides."""

    def test_overrides(self, monkeypatch):
        """Test TNC_DNSSD_ variables override the file."""
        monkeypatch.setenv("TNC_DNSSD_AGWPE_PORT", "8100")
        monkeypatch.setenv("TNC_DNSSD_DNS_SD_NAME", "Shack")
        monkeypatch.setenv("TNC_DNSSD_DNS_SD_BACKEND", "DAEMON")

        config = load_config(None)

        assert config.agwpe.port == 8100
        assert config.dns_sd.name == "Shack"
        assert config.dns_sd.backend == "daemon"

    @pytest.mark.parametrize("value,expected", [
        ("false", False),
        ("0", False),
        ("yes", True),
    ])
    def test_enabled_override(self, monkeypatch, value, expected):
        """Test boolean parsing of TNC_DNSSD_DNS_SD_ENABLED."""
        monkeypatch.setenv("TNC_DNSSD_DNS_SD_ENABLED", value)

        assert load_config(None).dns_sd.enabled is expected
