from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import Response

from ..errors import TransportError, UpstreamTimeoutError
from ..utils.exception_logging import format_exception_message
from .forwarding import ErrorContinuation, ForwardingProxy

PROXY_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"]


async def default_error_continuation(error: TransportError) -> Response:
    """
    Hand a relay failure to FastAPI's exception handling.

    Timeouts become 504, every other transport failure 502. Applications
    that register their own handler for ``HTTPException`` decide the body.
    """
    cause = error.__cause__ if error.__cause__ is not None else error
    if isinstance(error, UpstreamTimeoutError):
        raise HTTPException(
            status_code=504,
            detail=f"Gateway timeout - {error.upstream} did not answer",
        )
    raise HTTPException(
        status_code=502,
        detail=f"Bad gateway - cannot reach {error.upstream}: {format_exception_message(cause)}",
    )


def create_proxy_router(
    proxy: ForwardingProxy,
    prefix: str = "",
    on_error: Optional[ErrorContinuation] = None,
) -> APIRouter:
    """Catch-all router forwarding everything below ``prefix`` to ``proxy``."""
    router = APIRouter(prefix=prefix)
    continuation = on_error or default_error_continuation

    @router.api_route("/{path:path}", methods=PROXY_METHODS, include_in_schema=False)
    async def proxy_all(request: Request, path: str):
        return await proxy.handle(request, continuation, mount_prefix=prefix)

    return router
