"""Redis-based service discovery for Prometheus."""

__version__ = "0.3.0"
