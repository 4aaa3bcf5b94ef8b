"""Error types raised by prometheus-sd.

Backend failures are not wrapped: they surface as the redis-py exceptions
(``redis.exceptions.ConnectionError``, ``TimeoutError``, ``ResponseError``).
"""


class PrometheusSDError(Exception):
    """Base class for all prometheus-sd errors."""


class ConfigError(PrometheusSDError):
    """Invalid configuration value."""


class NoSuchService(PrometheusSDError):
    def __init__(self, service: str):
        self.service = service
        super().__init__(f"No such service registered: '{service}'")


class NoSuchHost(PrometheusSDError):
    def __init__(self, service: str, host: str):
        self.service = service
        self.host = host
        super().__init__(f"No host starting with '{host}' registered for {service}")


class SerializationError(PrometheusSDError):
    """The discovered services could not be encoded as JSON."""

    def __init__(self, source: Exception):
        self.source = source
        super().__init__(f"Problem exporting service JSON: {source}")


class ExportError(PrometheusSDError):
    """The service file could not be written."""

    def __init__(self, path: str, source: OSError):
        self.path = path
        self.source = source
        super().__init__(f"Problem exporting service file {path}: {source}")
