import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from ..errors import AuthConfigurationError, ConfigurationError

ENV_BASE_URL = "HTTP_PROXY_BASE_URL"
ENV_AUTH_USER = "HTTP_PROXY_AUTH_USER"
ENV_AUTH_PASS = "HTTP_PROXY_AUTH_PASS"
ENV_IS_SECURE = "HTTP_PROXY_IS_SECURE"

DEFAULT_PATH = "/"
DEFAULT_SECURE = True

# Whole-value references only: "${env.NAME}" or "env:NAME"
_ENV_REFERENCE = re.compile(r"^(?:\$\{env\.([^}]+)\}|env:(.+))$")


class AuthConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    user: Optional[str] = None
    pass_: Optional[str] = Field(default=None, alias="pass")


class ProxyConfig(BaseModel):
    """Raw configuration block, as parsed by the host from its config file."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    base_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("base_url", "baseUrl", "host")
    )
    path: Optional[str] = None
    secure: Optional[Union[bool, str]] = None
    auth: Optional[AuthConfig] = None
    debug: Optional[Union[bool, str]] = None
    timeout: Optional[Union[float, str]] = None
    auth_required: bool = Field(
        default=False, validation_alias=AliasChoices("auth_required", "authRequired")
    )


@dataclass(frozen=True)
class BasicCredentials:
    user: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class EffectiveConfig:
    base_url: str
    path: str = DEFAULT_PATH
    secure: bool = DEFAULT_SECURE
    auth: Optional[BasicCredentials] = None
    debug: bool = False
    timeout: Optional[float] = None


def env_reference(value: Any) -> Optional[str]:
    """Return the variable name if ``value`` is an environment reference."""
    if not isinstance(value, str):
        return None
    match = _ENV_REFERENCE.match(value)
    if not match:
        return None
    return match.group(1) or match.group(2)


def resolve_value(
    raw: Any, environment: Mapping[str, str], fallback_var: Optional[str] = None
) -> Any:
    """
    Resolve one configuration value.

    An environment reference wins and yields the variable's value, or None
    when the variable is unset. Otherwise the literal is used. Whatever is
    still undefined falls back to ``fallback_var``.
    """
    name = env_reference(raw)
    value = environment.get(name) if name is not None else raw
    if value is None and fallback_var:
        value = environment.get(fallback_var)
    return value


def parse_flag(value: Union[bool, str, None], default: bool) -> bool:
    """
    A bool is used as-is and ``None`` yields ``default``. A string is
    ``True`` only when it is exactly ``"true"``; anything else, ``"false"``
    included, is ``False`` so string configuration can switch a flag off.
    """
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return value == "true"


def _parse_timeout(value: Union[float, str, None]) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        timeout = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(
            f"configuration.timeout is not a number: {value!r}"
        ) from exc
    if timeout <= 0:
        raise ConfigurationError(f"configuration.timeout must be positive: {value!r}")
    return timeout


def _resolve_auth(
    raw: Optional[AuthConfig], environment: Mapping[str, str]
) -> Optional[BasicCredentials]:
    user = resolve_value(raw.user if raw else None, environment, ENV_AUTH_USER)
    password = resolve_value(raw.pass_ if raw else None, environment, ENV_AUTH_PASS)
    # a half specified pair would produce a malformed Basic header
    if not user or not password:
        return None
    return BasicCredentials(user=user, password=password)


def resolve(
    raw: Union[ProxyConfig, Mapping[str, Any], None],
    environment: Mapping[str, str],
) -> EffectiveConfig:
    """
    Derive the effective configuration from the raw block and an explicit
    environment mapping.

    Raises:
        ConfigurationError: no origin resolved, or a value is malformed.
        AuthConfigurationError: ``auth_required`` is set but no complete
            user/password pair resolved.
    """
    if not isinstance(raw, ProxyConfig):
        try:
            raw = ProxyConfig.model_validate(dict(raw or {}))
        except ValidationError as exc:
            raise ConfigurationError(f"invalid proxy configuration: {exc}") from exc

    base_url = resolve_value(raw.base_url, environment, ENV_BASE_URL)
    if not base_url:
        raise ConfigurationError(
            f"configuration.baseUrl is required (or set {ENV_BASE_URL})"
        )

    path = resolve_value(raw.path, environment)
    auth = _resolve_auth(raw.auth, environment)
    if raw.auth_required and auth is None:
        raise AuthConfigurationError(
            f"configuration.auth requires both user and pass "
            f"(or {ENV_AUTH_USER} and {ENV_AUTH_PASS})"
        )

    return EffectiveConfig(
        base_url=base_url,
        path=DEFAULT_PATH if path is None else path,
        secure=parse_flag(
            resolve_value(raw.secure, environment, ENV_IS_SECURE), DEFAULT_SECURE
        ),
        auth=auth,
        debug=parse_flag(resolve_value(raw.debug, environment), False),
        timeout=_parse_timeout(resolve_value(raw.timeout, environment)),
    )
