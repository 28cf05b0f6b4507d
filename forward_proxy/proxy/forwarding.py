import logging
from typing import AsyncIterator, Awaitable, Callable, Mapping, Optional, Union

import anyio
import httpx
from opentelemetry import trace
from starlette.requests import ClientDisconnect, Request
from starlette.responses import Response, StreamingResponse

from ..config import EffectiveConfig, ProxyConfig, load_environment, resolve
from ..errors import ConfigurationError, TransportError, UpstreamTimeoutError
from ..session import SessionState
from ..utils import mask_secret
from ..utils.exception_logging import log_exception_with_details

tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

# Hop-by-hop headers that should NOT be forwarded (RFC 2616), plus host,
# which httpx derives from the upstream URL
HOP_BY_HOP_HEADERS = {
    b"connection",
    b"keep-alive",
    b"proxy-authenticate",
    b"proxy-authorization",
    b"te",
    b"trailers",
    b"transfer-encoding",
    b"upgrade",
}
REQUEST_EXCLUDED_HEADERS = HOP_BY_HOP_HEADERS | {b"host"}

# nginx convention for a request the caller abandoned
CLIENT_CLOSED_REQUEST = 499

ErrorContinuation = Callable[[TransportError], Awaitable[Response]]


def compose_path(config_path: str, inbound_path: str, raw_query: str = "") -> str:
    """
    Prefix the inbound path with the configured path.

    Plain concatenation: duplicate or missing slashes are passed through as
    they are. The query string is appended byte for byte, never re-encoded.
    """
    resolved = f"{config_path}{inbound_path}"
    if raw_query:
        resolved += "?" + raw_query
    return resolved


def inbound_path(request: Request, mount_prefix: str = "") -> str:
    """Undecoded request path, relative to the mount point of the proxy."""
    raw_path = request.scope.get("raw_path")
    if raw_path:
        # some servers leave the query string inside raw_path
        path = raw_path.split(b"?", 1)[0].decode("latin-1")
    else:
        path = request.scope.get("path", "/")
    if mount_prefix and path.startswith(mount_prefix):
        path = path[len(mount_prefix):]
    return path


def raw_query(request: Request) -> str:
    return request.scope.get("query_string", b"").decode("latin-1")


def forward_headers(request: Request) -> httpx.Headers:
    """Inbound headers minus hop-by-hop headers, duplicates preserved."""
    return httpx.Headers(
        [
            (name, value)
            for name, value in request.headers.raw
            if name.lower() not in REQUEST_EXCLUDED_HEADERS
        ]
    )


def _has_body(request: Request) -> bool:
    return "content-length" in request.headers or "transfer-encoding" in request.headers


async def _stream_body(request: Request, body_done: anyio.Event) -> AsyncIterator[bytes]:
    try:
        async for chunk in request.stream():
            yield chunk
    finally:
        body_done.set()


async def _cancel_on_disconnect(
    request: Request, body_done: anyio.Event, cancel_scope: anyio.CancelScope
) -> None:
    """
    Cancel ``cancel_scope`` once the caller disconnects.

    Only listens after the request body is consumed, since until then
    ``receive`` carries the body chunks.
    """
    await body_done.wait()
    while True:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            cancel_scope.cancel()
            return


class ForwardingProxy:
    """
    Forwards every request it handles to one upstream origin.

    Configuration is resolved once here; a bad configuration raises
    ``ConfigurationError`` and no proxy exists. A single ``httpx.AsyncClient``
    and its cookie jar live as long as the proxy and are shared by all
    concurrent relays.
    """

    def __init__(
        self,
        config: Union[ProxyConfig, Mapping, None],
        environment: Optional[Mapping[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if environment is None:
            environment = load_environment()
        self.config: EffectiveConfig = resolve(config, environment)

        try:
            base = httpx.URL(self.config.base_url)
        except httpx.InvalidURL as exc:
            raise ConfigurationError(
                f"configuration.baseUrl is not a valid URL: {exc}"
            ) from exc
        if base.scheme not in ("http", "https") or not base.host:
            raise ConfigurationError(
                f"configuration.baseUrl must be an http(s) origin, got {self.config.base_url!r}"
            )

        self.session = SessionState()
        auth = self.config.auth
        self._timeout = httpx.Timeout(self.config.timeout)
        self._client = httpx.AsyncClient(
            auth=httpx.BasicAuth(auth.user, auth.password) if auth else None,
            verify=self.config.secure,
            cookies=self.session.jar,
            timeout=self._timeout,
            follow_redirects=False,
            transport=transport,
        )

        if self.config.debug:
            logger.info(f"Registering proxy for {self._describe()}")

    def _describe(self) -> str:
        password = self.config.auth.password if self.config.auth else None
        return mask_secret(f"{self.config.base_url}{self.config.path}", password)

    def upstream_url(self, request: Request, mount_prefix: str = "") -> str:
        return self.config.base_url + compose_path(
            self.config.path, inbound_path(request, mount_prefix), raw_query(request)
        )

    async def handle(
        self,
        request: Request,
        next_: ErrorContinuation,
        mount_prefix: str = "",
    ) -> Response:
        """
        Relay one request. Returns the streamed upstream response, whatever
        its status, or the result of ``next_`` when the upstream cannot be
        reached.
        """
        target_url = self.upstream_url(request, mount_prefix)

        with tracer.start_as_current_span("proxy_request") as span:
            span.set_attribute("proxy.method", request.method)
            span.set_attribute("proxy.target_url", target_url)

            if self.config.debug:
                logger.info(f"{request.method} {request.url} -> {target_url}")

            body_done = anyio.Event()
            if _has_body(request):
                content = _stream_body(request, body_done)
            else:
                content = None
                body_done.set()

            outbound = httpx.Request(
                request.method,
                target_url,
                headers=forward_headers(request),
                content=content,
                extensions={"timeout": self._timeout.as_dict()},
            )
            self.session.attach(outbound)

            upstream = None
            failure = None
            async with anyio.create_task_group() as task_group:
                task_group.start_soon(
                    _cancel_on_disconnect, request, body_done, task_group.cancel_scope
                )
                try:
                    upstream = await self._client.send(outbound, stream=True)
                except httpx.TransportError as exc:
                    failure = exc
                except ClientDisconnect:
                    # caller went away while its body was being uploaded
                    pass
                finally:
                    task_group.cancel_scope.cancel()

            if failure is not None:
                span.set_attribute("proxy.error", type(failure).__name__)
                return await self._translate(failure, request, target_url, next_)
            if upstream is None:
                span.set_attribute("proxy.error", "client_disconnected")
                logger.info(
                    f"[Proxy] {request.method} {target_url} abandoned, caller disconnected"
                )
                return Response(status_code=CLIENT_CLOSED_REQUEST)

            span.set_attribute("proxy.status_code", upstream.status_code)

        response = StreamingResponse(
            self._relay_body(upstream, request.method, target_url),
            status_code=upstream.status_code,
        )
        response.raw_headers = [
            (name.lower(), value)
            for name, value in upstream.headers.raw
            if name.lower() not in HOP_BY_HOP_HEADERS
        ]
        return response

    async def _relay_body(
        self, upstream: httpx.Response, method: str, target_url: str
    ) -> AsyncIterator[bytes]:
        # Raw bytes: content-encoding is relayed untouched. The upstream is
        # closed on every exit, including a caller disconnecting mid-stream.
        try:
            async for chunk in upstream.aiter_raw():
                yield chunk
        except httpx.TransportError as exc:
            log_exception_with_details(
                logger, f"[Proxy] {method} {target_url} broke off mid-stream:", exc
            )
            raise
        finally:
            # the caller may be gone and this task cancelled; close regardless
            with anyio.CancelScope(shield=True):
                await upstream.aclose()

    async def _translate(
        self,
        exc: httpx.TransportError,
        request: Request,
        target_url: str,
        next_: ErrorContinuation,
    ) -> Response:
        error_type = (
            UpstreamTimeoutError
            if isinstance(exc, httpx.TimeoutException)
            else TransportError
        )
        error = error_type(
            str(exc) or type(exc).__name__,
            method=request.method,
            path=self.config.path,
            upstream=self.config.base_url,
            target_url=target_url,
        )
        error.__cause__ = exc
        log_exception_with_details(
            logger,
            f"[Proxy] {request.method} {self.config.path} via {self._describe()}:",
            exc,
        )
        return await next_(error)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "ForwardingProxy":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
