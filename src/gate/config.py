"""
Configuration loader for gate.

Loads the YAML config document, validates required fields, fills in defaults.
Config is loaded once at startup and immutable during runtime.
"""
from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, replace
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

import yaml

from .digest import config_digest
from .logs import log_json


__all__ = [
    "ConfigError",
    "ConfigReadError",
    "ConfigParseError",
    "ConfigValidationError",
    "MissingFieldError",
    "SSLConfig",
    "AuthSessionConfig",
    "AuthInfoConfig",
    "AuthConfig",
    "ProxyRoute",
    "PathConfig",
    "GateConfig",
    "load_raw_document",
    "validate_config",
    "load_config",
    "get_config",
    "reset_config_cache",
]

DEFAULT_CONFIG_PATH = Path("config.yml")
DEFAULT_HTDOCS = "."

GITHUB_SERVICE = "github"
GITHUB_ENDPOINT = "https://github.com"
GITHUB_API_ENDPOINT = "https://api.github.com"

# Numbers and dates stay as their source text; every scalar in the schema is a
# string except strip_path.
_TEXT_TAGS = {
    "tag:yaml.org,2002:int",
    "tag:yaml.org,2002:float",
    "tag:yaml.org,2002:timestamp",
}


class _ConfigLoader(yaml.SafeLoader):
    pass


_ConfigLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag not in _TEXT_TAGS]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


class ConfigError(ValueError):
    pass


class ConfigReadError(ConfigError):
    pass


class ConfigParseError(ConfigError):
    pass


class ConfigValidationError(ConfigError):
    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field


class MissingFieldError(ConfigValidationError):
    def __init__(self, field: str) -> None:
        super().__init__(field, f"{field} config is required")


@dataclass(frozen=True)
class SSLConfig:
    cert: str = ""
    key: str = ""


@dataclass(frozen=True)
class AuthSessionConfig:
    key: str
    cookie_domain: str = ""


@dataclass(frozen=True)
class AuthInfoConfig:
    service: str
    client_id: str
    client_secret: str
    redirect_url: str
    endpoint: str = ""
    api_endpoint: str = ""


@dataclass(frozen=True)
class AuthConfig:
    session: AuthSessionConfig
    info: AuthInfoConfig


@dataclass(frozen=True)
class ProxyRoute:
    path: str
    dest: str
    strip_path: bool = False
    host: str = ""


@dataclass(frozen=True)
class PathConfig:
    login: str = ""
    logout: str = ""
    callback: str = ""
    error: str = ""


@dataclass(frozen=True)
class GateConfig:
    """Immutable gate configuration."""

    addr: str
    ssl: SSLConfig
    auth: AuthConfig
    proxies: tuple[ProxyRoute, ...]
    restrictions: tuple[str, ...]
    paths: PathConfig
    htdocs: str

    # Digest of the validated fields (for audit)
    config_digest: str


def load_raw_document(path: Path) -> Mapping[str, Any]:
    """
    Read a config file and deserialize it.

    Raises:
        ConfigReadError: If the file cannot be opened or read.
        ConfigParseError: If the file is not well-formed YAML or its root
            is not a mapping.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigReadError(f"cannot read config {path}: {exc}") from exc

    try:
        data = yaml.load(text, Loader=_ConfigLoader)
    except yaml.YAMLError as exc:
        raise ConfigParseError(f"config {path} contains invalid YAML: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ConfigParseError(f"config {path} must contain a mapping at the root")
    return data


def validate_config(raw: Mapping[str, Any]) -> GateConfig:
    """
    Validate a raw config document and apply defaults.

    Required fields are checked first, in document order, and the first
    missing one is reported. The input mapping is never modified.
    """
    auth = _section(raw, "auth")
    session = _section(auth, "session", "auth")
    info = _section(auth, "info", "auth")

    # Required fields
    addr = _require_str(raw, "address")
    session_key = _require_str(session, "key", "auth.session")
    service = _require_str(info, "service", "auth.info")
    client_id = _require_str(info, "client_id", "auth.info")
    client_secret = _require_str(info, "client_secret", "auth.info")
    redirect_url = _require_str(info, "redirect_url", "auth.info")

    htdocs = _optional_str(raw, "htdocs") or DEFAULT_HTDOCS

    endpoint = _optional_str(info, "endpoint", "auth.info")
    api_endpoint = _optional_str(info, "api_endpoint", "auth.info")
    if service == GITHUB_SERVICE and not endpoint:
        endpoint = GITHUB_ENDPOINT
    if service == GITHUB_SERVICE and not api_endpoint:
        api_endpoint = GITHUB_API_ENDPOINT

    ssl = _section(raw, "ssl")
    paths = _section(raw, "paths")

    config = GateConfig(
        addr=addr,
        ssl=SSLConfig(
            cert=_optional_str(ssl, "cert", "ssl"),
            key=_optional_str(ssl, "key", "ssl"),
        ),
        auth=AuthConfig(
            session=AuthSessionConfig(
                key=session_key,
                cookie_domain=_optional_str(session, "cookie_domain", "auth.session"),
            ),
            info=AuthInfoConfig(
                service=service,
                client_id=client_id,
                client_secret=client_secret,
                redirect_url=redirect_url,
                endpoint=endpoint,
                api_endpoint=api_endpoint,
            ),
        ),
        proxies=_parse_proxies(raw.get("proxy")),
        restrictions=_parse_restrictions(raw.get("restrictions")),
        paths=PathConfig(
            login=_optional_str(paths, "login", "paths"),
            logout=_optional_str(paths, "logout", "paths"),
            callback=_optional_str(paths, "callback", "paths"),
            error=_optional_str(paths, "error", "paths"),
        ),
        htdocs=htdocs,
        config_digest="",
    )
    fields = asdict(config)
    del fields["config_digest"]
    return replace(config, config_digest=config_digest(fields))


def load_config(path: Path | None = None) -> GateConfig:
    """
    Load and validate the gate configuration.

    Args:
        path: Path to the YAML document. Defaults to $GATE_CONFIG, then
            config.yml in the working directory.

    Returns:
        Immutable GateConfig.

    Raises:
        ConfigError: If the file cannot be read, parsed or validated.
    """
    config_path = path or _resolve_config_path()
    raw = load_raw_document(config_path)
    config = validate_config(raw)
    log_json(
        logging.INFO,
        "config.loaded",
        path=str(config_path),
        config_digest=config.config_digest,
        routes=len(config.proxies),
        restrictions=len(config.restrictions),
        service=config.auth.info.service,
    )
    return config


def _resolve_config_path() -> Path:
    """Resolve config path from ENV or default."""
    env_path = os.environ.get("GATE_CONFIG")
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


@lru_cache(maxsize=1)
def get_config() -> GateConfig:
    """
    Get cached gate configuration.

    Loads once at first call, immutable thereafter.
    """
    return load_config()


def reset_config_cache() -> None:
    """Reset config cache. Only for testing."""
    get_config.cache_clear()


def _dotted(prefix: str, key: str) -> str:
    return f"{prefix}.{key}" if prefix else key


def _section(parent: Mapping[str, Any], key: str, prefix: str = "") -> Mapping[str, Any]:
    value = parent.get(key)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        field = _dotted(prefix, key)
        raise ConfigValidationError(field, f"{field} must be a mapping")
    return value


def _optional_str(section: Mapping[str, Any], key: str, prefix: str = "") -> str:
    value = section.get(key)
    if value is None:
        return ""
    text = _scalar_text(value)
    if text is None:
        field = _dotted(prefix, key)
        raise ConfigValidationError(field, f"{field} must be a scalar")
    return text


def _require_str(section: Mapping[str, Any], key: str, prefix: str = "") -> str:
    value = _optional_str(section, key, prefix)
    if value == "":
        raise MissingFieldError(_dotted(prefix, key))
    return value


def _scalar_text(value: object) -> str | None:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return None


def _parse_restrictions(value: object) -> tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, list):
        raise ConfigValidationError("restrictions", "restrictions must be a list")
    items = [_scalar_text(item) for item in value]
    if any(item is None for item in items):
        raise ConfigValidationError("restrictions", "restrictions must be a list of scalars")
    return tuple(items)


def _parse_proxies(value: object) -> tuple[ProxyRoute, ...]:
    if value is None:
        return ()
    if not isinstance(value, list):
        raise ConfigValidationError("proxy", "proxy must be a list")
    routes = []
    for i, entry in enumerate(value):
        prefix = f"proxy[{i}]"
        if not isinstance(entry, Mapping):
            raise ConfigValidationError(prefix, f"{prefix} must be a mapping")
        strip_path = entry.get("strip_path", False)
        if strip_path is None:
            strip_path = False
        if not isinstance(strip_path, bool):
            raise ConfigValidationError(
                f"{prefix}.strip_path", f"{prefix}.strip_path must be boolean"
            )
        routes.append(
            ProxyRoute(
                path=_require_str(entry, "path", prefix),
                dest=_require_str(entry, "dest", prefix),
                strip_path=strip_path,
                host=_optional_str(entry, "host", prefix),
            )
        )
    return tuple(routes)
