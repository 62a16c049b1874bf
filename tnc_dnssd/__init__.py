"""tnc-dnssd - DNS-SD announcement of AGWPE and KISS TCP services."""

__version__ = "0.1.0"
