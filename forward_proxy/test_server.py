import httpx
import pytest
from fastapi.testclient import TestClient

from forward_proxy.errors import ConfigurationError
from forward_proxy.server import FilteringSpanExporter, create_app


def _upstream(request):
    return httpx.Response(
        200,
        headers={"x-upstream-path": request.url.path},
        stream=httpx.ByteStream(b"from upstream"),
    )


def test_app_configured_from_environment():
    app = create_app(
        environment={"HTTP_PROXY_BASE_URL": "http://api.local"},
        transport=httpx.MockTransport(_upstream),
    )

    with TestClient(app) as client:
        response = client.get("/odata/Products")

    assert response.status_code == 200
    assert response.text == "from upstream"
    # default path "/" is prepended verbatim
    assert response.headers["x-upstream-path"] == "//odata/Products"


def test_explicit_config():
    app = create_app(
        config={"baseUrl": "http://api.local", "path": "/v2"},
        environment={},
        transport=httpx.MockTransport(_upstream),
    )

    with TestClient(app) as client:
        response = client.get("/items")

    assert response.headers["x-upstream-path"] == "/v2/items"


def test_missing_origin_prevents_startup():
    with pytest.raises(ConfigurationError):
        create_app(environment={})


def test_metrics_endpoint_is_not_forwarded():
    app = create_app(
        config={"baseUrl": "http://api.local"},
        environment={},
        transport=httpx.MockTransport(_upstream),
    )

    with TestClient(app) as client:
        response = client.get("/metrics")

    assert response.status_code == 200
    assert "x-upstream-path" not in response.headers


def test_proxy_closed_on_shutdown():
    app = create_app(
        config={"baseUrl": "http://api.local"},
        environment={},
        transport=httpx.MockTransport(_upstream),
    )

    with TestClient(app):
        assert not app.state.proxy._client.is_closed

    assert app.state.proxy._client.is_closed


class _Span:
    def __init__(self, attributes):
        self.attributes = attributes


class _Exporter:
    def __init__(self):
        self.exported = []

    def export(self, spans):
        self.exported.extend(spans)
        return "exported"


def test_filtering_exporter_drops_body_spans():
    exporter = _Exporter()
    keep = _Span({"http.route": "/{path:path}"})
    drop = _Span({"asgi.event.type": "http.response.body"})

    result = FilteringSpanExporter(exporter).export([keep, drop])

    assert result == "exported"
    assert exporter.exported == [keep]
