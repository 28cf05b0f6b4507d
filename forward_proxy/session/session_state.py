import threading
from http.cookiejar import CookieJar
from typing import Optional

import httpx


class SessionState:
    """
    Cookie jar shared by every relay of one proxy instance.

    The jar is created once and never replaced. The proxy's HTTP client is
    built on top of ``jar`` so upstream ``Set-Cookie`` headers land here as
    soon as response headers arrive. ``CookieJar`` serialises its own reads
    and writes; ``_lock`` additionally keeps the inbound/jar header swap in
    ``attach`` atomic. Concurrent relays see last-writer-wins state.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self.jar = CookieJar()
        self.cookies = httpx.Cookies(self.jar)

    def attach(self, request: httpx.Request) -> None:
        """
        Set the ``Cookie`` header of an outbound request from the jar.

        Matching jar cookies replace whatever the inbound caller sent; with no
        match the caller's own header is forwarded untouched.
        """
        inbound = request.headers.pop("cookie", None)
        with self._lock:
            self.cookies.set_cookie_header(request)
        if inbound is not None and "cookie" not in request.headers:
            request.headers["cookie"] = inbound

    def store(self, response: httpx.Response) -> None:
        with self._lock:
            self.cookies.extract_cookies(response)

    def cookie_header(self, url: str) -> Optional[str]:
        request = httpx.Request("GET", url)
        with self._lock:
            self.cookies.set_cookie_header(request)
        return request.headers.get("cookie")

    def clear(self) -> None:
        with self._lock:
            self.jar.clear()

    def __len__(self) -> int:
        return len(self.jar)
