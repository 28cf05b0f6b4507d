from .environment import load_environment
from .resolver import (
    AuthConfig,
    BasicCredentials,
    EffectiveConfig,
    ProxyConfig,
    resolve,
)

__all__ = [
    "AuthConfig",
    "BasicCredentials",
    "EffectiveConfig",
    "ProxyConfig",
    "load_environment",
    "resolve",
]
