"""Single-origin forwarding proxy for local development servers."""

from .config import ProxyConfig, load_environment, resolve
from .errors import (
    AuthConfigurationError,
    ConfigurationError,
    ProxyError,
    TransportError,
    UpstreamTimeoutError,
)
from .proxy import ForwardingProxy, create_proxy_router

__all__ = [
    "AuthConfigurationError",
    "ConfigurationError",
    "ForwardingProxy",
    "ProxyConfig",
    "ProxyError",
    "TransportError",
    "UpstreamTimeoutError",
    "create_proxy_router",
    "load_environment",
    "resolve",
]
