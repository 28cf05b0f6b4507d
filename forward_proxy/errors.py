from typing import Optional


class ProxyError(Exception):
    """Base class for every error raised by the forwarding proxy."""


class ConfigurationError(ProxyError):
    """The proxy cannot be constructed from the given configuration."""


class AuthConfigurationError(ConfigurationError):
    """Credentials are required but user or password did not resolve."""


class TransportError(ProxyError):
    """
    The upstream could not be reached or the exchange broke off.

    Carries the request method, the configured path prefix and the upstream
    origin so error handlers further down the pipeline can report them.
    """

    def __init__(
        self,
        message: str,
        *,
        method: str,
        path: str,
        upstream: str,
        target_url: Optional[str] = None,
    ):
        super().__init__(message)
        self.method = method
        self.path = path
        self.upstream = upstream
        self.target_url = target_url


class UpstreamTimeoutError(TransportError):
    """The upstream did not answer within the configured timeout."""
