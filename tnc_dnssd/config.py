"""Configuration loading for tnc-dnssd."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# One gateway (AGWPE) service plus one service per KISS TCP port
MAX_KISS_TCP_PORTS = 16
MAX_DNS_SD_SERVICES = 1 + MAX_KISS_TCP_PORTS

BACKENDS = ("auto", "daemon", "client")

# A KISS port on channel -1 serves every channel and is announced without one
NO_CHANNEL = -1


@dataclass
class AGWPEConfig:
    port: int = 8000  # 0 disables the gateway service


@dataclass
class KissPortConfig:
    port: int
    channel: int = 0


@dataclass
class KissConfig:
    ports: list[KissPortConfig] = field(
        default_factory=lambda: [KissPortConfig(port=8001, channel=0)]
    )


@dataclass
class DNSSDConfig:
    """Configuration for DNS-SD service announcement."""

    enabled: bool = True
    name: str = ""  # Base display name; empty means the product default
    backend: str = "auto"  # "auto", "daemon" or "client"


@dataclass
class Config:
    agwpe: AGWPEConfig = field(default_factory=AGWPEConfig)
    kiss: KissConfig = field(default_factory=KissConfig)
    dns_sd: DNSSDConfig = field(default_factory=DNSSDConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with TNC_DNSSD_ prefix."""
    return os.environ.get(f"TNC_DNSSD_{key}", default)


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    if port := _get_env("AGWPE_PORT"):
        config.agwpe.port = int(port)

    if enabled := _get_env("DNS_SD_ENABLED"):
        config.dns_sd.enabled = enabled.lower() in ("true", "1", "yes")
    if name := _get_env("DNS_SD_NAME"):
        config.dns_sd.name = name
    if backend := _get_env("DNS_SD_BACKEND"):
        config.dns_sd.backend = backend.lower()

    return config


def _parse_kiss_ports(data: list) -> list[KissPortConfig]:
    """Parse KISS TCP port configurations."""
    ports = []
    for port_data in data:
        ports.append(
            KissPortConfig(
                port=port_data["port"],
                channel=port_data.get("channel", 0),
            )
        )
    return ports


def _validate(config: Config) -> None:
    """Reject configurations the announcer cannot represent."""
    if len(config.kiss.ports) > MAX_KISS_TCP_PORTS:
        raise ValueError(
            f"Too many KISS TCP ports: {len(config.kiss.ports)} "
            f"(maximum {MAX_KISS_TCP_PORTS})"
        )

    ports = [config.agwpe.port] + [p.port for p in config.kiss.ports]
    for port in ports:
        if not 0 <= port <= 65535:
            raise ValueError(f"Invalid TCP port: {port}")

    for kiss_port in config.kiss.ports:
        if kiss_port.channel < NO_CHANNEL:
            raise ValueError(
                f"Invalid channel {kiss_port.channel} for KISS port {kiss_port.port}"
            )

    if config.dns_sd.backend not in BACKENDS:
        raise ValueError(
            f"Unknown DNS-SD backend '{config.dns_sd.backend}' "
            f"(expected one of: {', '.join(BACKENDS)})"
        )


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded and validated Config object.

    Raises:
        ValueError: If the configuration is out of range.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            # Parse AGWPE config
            if "agwpe" in data:
                config.agwpe = AGWPEConfig(
                    port=data["agwpe"].get("port", config.agwpe.port)
                )

            # Parse KISS config; an explicit empty list disables all KISS services
            if "kiss" in data:
                kiss_data = data["kiss"] or {}
                ports = config.kiss.ports
                if "ports" in kiss_data:
                    ports = _parse_kiss_ports(kiss_data["ports"] or [])

                config.kiss = KissConfig(ports=ports)

            # Parse DNS-SD config
            if "dns_sd" in data:
                dns_sd_data = data["dns_sd"]
                config.dns_sd = DNSSDConfig(
                    enabled=dns_sd_data.get("enabled", config.dns_sd.enabled),
                    name=dns_sd_data.get("name") or config.dns_sd.name,
                    backend=dns_sd_data.get("backend", config.dns_sd.backend),
                )

    # Apply environment variable overrides
    config = _apply_env_overrides(config)

    _validate(config)

    return config
