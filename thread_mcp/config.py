"""
Configuration for thread-mcp.

A ServerConfig is built once by the entry point (CLI or MCP server) and
passed to ThreadKeeper. Values come from, in increasing priority:
built-in defaults, an optional TOML file, and THREAD_MCP_* environment
variables. Tool parameters may override some values per call; see the
resolve_* methods.
"""

import ipaddress
import json
import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional
from urllib.parse import urlparse

import tomli_w

from .errors import ValidationError
from .types import (
    FORMAT_MARKDOWN,
    OUTPUT_FORMATS,
    SOURCE_LOCAL,
    STORAGE_SOURCES,
)

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "thread-mcp.toml"
CONFIG_VERSION = 1
DEFAULT_STORAGE_DIR = Path.home() / ".thread-mcp"
DEFAULT_REMOTE_TIMEOUT = 30.0

ENV_CONFIG = "THREAD_MCP_CONFIG"
ENV_STORAGE_DIR = "THREAD_MCP_STORAGE_DIR"
ENV_FORMAT = "THREAD_MCP_FORMAT"
ENV_DEFAULT_SOURCE = "THREAD_MCP_DEFAULT_SOURCE"
ENV_REMOTE_URL = "THREAD_MCP_REMOTE_URL"
ENV_API_KEY = "THREAD_MCP_API_KEY"
ENV_REMOTE_HEADERS = "THREAD_MCP_REMOTE_HEADERS"

# Storage directories that tool callers may not point the store at
BLOCKED_DIR_PREFIXES = (
    "/etc", "/var", "/bin", "/sbin", "/usr/bin", "/usr/sbin", "/usr/lib",
    "/usr/local/bin", "/usr/local/sbin", "/proc", "/sys", "/dev", "/boot",
    "/lib", "/lib64",
)
BLOCKED_PATH_SEGMENTS = (".ssh", ".gnupg", ".aws", ".config/systemd")

BLOCKED_HOSTNAMES = frozenset({"localhost", "metadata.google.internal"})
BLOCKED_HOST_SUFFIXES = (".local", ".internal")


@dataclass
class ProviderConfig:
    """Configuration for a single enrichment provider."""
    name: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class ServerConfig:
    """Complete server configuration."""
    storage_dir: Path = DEFAULT_STORAGE_DIR
    format: str = FORMAT_MARKDOWN
    default_source: str = SOURCE_LOCAL
    remote_url: Optional[str] = None
    api_key: Optional[str] = None
    remote_headers: dict[str, str] = field(default_factory=dict)
    remote_timeout: float = DEFAULT_REMOTE_TIMEOUT

    # Enrichment providers; "sampling" asks the MCP client's model
    summarization: ProviderConfig = field(default_factory=lambda: ProviderConfig("sampling"))
    tagging: ProviderConfig = field(default_factory=lambda: ProviderConfig("sampling"))

    def resolve_storage_dir(self, param: Optional[str]) -> Path:
        """Tool-supplied directory (validated) or the configured one."""
        if param is not None:
            validate_storage_dir(param)
            return Path(param).expanduser()
        return Path(self.storage_dir).expanduser()

    def resolve_format(self, param: Optional[str]) -> str:
        if param in OUTPUT_FORMATS:
            return param
        return self.format

    def resolve_source(self, param: Optional[str]) -> str:
        if param in STORAGE_SOURCES:
            return param
        return self.default_source

    def resolve_remote_url(self, param: Optional[str]) -> Optional[str]:
        """Tool-supplied URL (validated) or the configured one."""
        if param is not None:
            validate_remote_url(param)
            return param
        return self.remote_url

    def resolve_api_key(self, param: Optional[str]) -> Optional[str]:
        return param if param is not None else self.api_key

    def resolve_headers(self, param: Optional[Mapping[str, str]]) -> dict[str, str]:
        """Configured headers with tool-supplied headers taking precedence."""
        merged = dict(self.remote_headers)
        if param:
            merged.update(param)
        return merged


def validate_storage_dir(directory: str) -> None:
    """Reject system and credential directories."""
    resolved = str(Path(directory).expanduser().resolve())

    for prefix in BLOCKED_DIR_PREFIXES:
        if resolved == prefix or resolved.startswith(prefix + "/"):
            raise ValidationError(f"Storage directory '{directory}' is not allowed: system directory")

    for segment in BLOCKED_PATH_SEGMENTS:
        if f"/{segment}/" in resolved or resolved.endswith(f"/{segment}"):
            raise ValidationError(f"Storage directory '{directory}' is not allowed: sensitive directory")


def _is_private_address(host: str) -> bool:
    try:
        addr = ipaddress.ip_address(host)
    except ValueError:
        return False
    return (
        addr.is_private or addr.is_loopback or addr.is_link_local
        or addr.is_unspecified or addr.is_reserved
    )


def validate_remote_url(url: str) -> None:
    """Reject non-HTTP URLs and URLs pointing at private or internal hosts."""
    try:
        parsed = urlparse(url)
    except ValueError:
        raise ValidationError(f"Invalid remote URL: '{url}'")

    if parsed.scheme not in ("http", "https"):
        raise ValidationError(
            f"Invalid remote URL scheme '{parsed.scheme}:' (only http: and https: are allowed)"
        )

    host = (parsed.hostname or "").lower()
    if not host:
        raise ValidationError(f"Invalid remote URL: '{url}'")

    if _is_private_address(host):
        raise ValidationError(f"Remote URL '{url}' points to a private/reserved IP address")

    if host in BLOCKED_HOSTNAMES or host.endswith(BLOCKED_HOST_SUFFIXES):
        raise ValidationError(f"Remote URL '{url}' points to a blocked hostname")


def parse_headers(headers_json: Optional[str]) -> dict[str, str]:
    """Parse a JSON object of header names to values. Invalid input yields {}."""
    if not headers_json:
        return {}
    try:
        parsed = json.loads(headers_json)
    except json.JSONDecodeError:
        logger.warning("Ignoring %s: not valid JSON", ENV_REMOTE_HEADERS)
        return {}
    if not isinstance(parsed, dict):
        logger.warning("Ignoring %s: expected a JSON object", ENV_REMOTE_HEADERS)
        return {}
    return {str(k): str(v) for k, v in parsed.items()}


def default_config_path(env: Optional[Mapping[str, str]] = None) -> Path:
    env = os.environ if env is None else env
    override = env.get(ENV_CONFIG)
    if override:
        return Path(override).expanduser()
    return DEFAULT_STORAGE_DIR / CONFIG_FILENAME


def _parse_provider(section: dict, default: str) -> ProviderConfig:
    return ProviderConfig(
        name=section.get("name", default),
        params={k: v for k, v in section.items() if k != "name"},
    )


def _apply_file(config: ServerConfig, data: dict) -> None:
    version = data.get("config", {}).get("version", CONFIG_VERSION)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    storage = data.get("storage", {})
    if "dir" in storage:
        config.storage_dir = Path(storage["dir"]).expanduser()
    if storage.get("format") in OUTPUT_FORMATS:
        config.format = storage["format"]
    if storage.get("default_source") in STORAGE_SOURCES:
        config.default_source = storage["default_source"]

    remote = data.get("remote", {})
    if remote.get("url"):
        config.remote_url = remote["url"]
    if remote.get("api_key"):
        config.api_key = remote["api_key"]
    if isinstance(remote.get("headers"), dict):
        config.remote_headers = {str(k): str(v) for k, v in remote["headers"].items()}
    if "timeout" in remote:
        config.remote_timeout = float(remote["timeout"])

    if "summarization" in data:
        config.summarization = _parse_provider(data["summarization"], "sampling")
    if "tagging" in data:
        config.tagging = _parse_provider(data["tagging"], "sampling")


def _apply_env(config: ServerConfig, env: Mapping[str, str]) -> None:
    if env.get(ENV_STORAGE_DIR):
        config.storage_dir = Path(env[ENV_STORAGE_DIR]).expanduser()
    if env.get(ENV_FORMAT) in OUTPUT_FORMATS:
        config.format = env[ENV_FORMAT]
    if env.get(ENV_DEFAULT_SOURCE) in STORAGE_SOURCES:
        config.default_source = env[ENV_DEFAULT_SOURCE]
    if env.get(ENV_REMOTE_URL):
        config.remote_url = env[ENV_REMOTE_URL]
    if env.get(ENV_API_KEY):
        config.api_key = env[ENV_API_KEY]
    if env.get(ENV_REMOTE_HEADERS):
        config.remote_headers = parse_headers(env[ENV_REMOTE_HEADERS])


def load_config(
    config_path: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> ServerConfig:
    """
    Build the server configuration.

    Args:
        config_path: TOML file to read (default: THREAD_MCP_CONFIG or
            ~/.thread-mcp/thread-mcp.toml). A missing file is not an error.
        env: Environment mapping (default: os.environ)

    Raises:
        ValueError: If the config file is from a newer version
        tomllib.TOMLDecodeError: If the config file is not valid TOML
    """
    env = os.environ if env is None else env
    path = config_path if config_path is not None else default_config_path(env)

    config = ServerConfig()
    if path.exists():
        with open(path, "rb") as f:
            _apply_file(config, tomllib.load(f))
        logger.debug("Loaded config from %s", path)
    _apply_env(config, env)
    return config


def save_config(config: ServerConfig, config_path: Path) -> None:
    """Write configuration as TOML, creating the parent directory."""
    config_path.parent.mkdir(parents=True, exist_ok=True)

    def provider_to_dict(p: ProviderConfig) -> dict:
        d = {"name": p.name}
        d.update(p.params)
        return d

    remote: dict[str, Any] = {"timeout": config.remote_timeout}
    if config.remote_url:
        remote["url"] = config.remote_url
    if config.api_key:
        remote["api_key"] = config.api_key
    if config.remote_headers:
        remote["headers"] = dict(config.remote_headers)

    data = {
        "config": {"version": CONFIG_VERSION},
        "storage": {
            "dir": str(config.storage_dir),
            "format": config.format,
            "default_source": config.default_source,
        },
        "remote": remote,
        "summarization": provider_to_dict(config.summarization),
        "tagging": provider_to_dict(config.tagging),
    }

    with open(config_path, "wb") as f:
        tomli_w.dump(data, f)
