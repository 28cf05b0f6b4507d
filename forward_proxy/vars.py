import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "forward-proxy")

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")

# .env file consulted for HTTP_PROXY_* variables; process variables win
PROXY_DOTENV_PATH = os.getenv("PROXY_DOTENV_PATH", ".env")
PROXY_ROUTE_PREFIX = os.getenv("PROXY_ROUTE_PREFIX", "").rstrip("/")
PROXY_DEBUG = os.getenv("PROXY_DEBUG", "false").lower() == "true"
