from .forwarding import ForwardingProxy, compose_path
from .route import create_proxy_router, default_error_continuation

__all__ = [
    "ForwardingProxy",
    "compose_path",
    "create_proxy_router",
    "default_error_continuation",
]
