"""Environment-driven configuration and the provider credential file."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

import yaml
from dotenv import load_dotenv

from .errors import ConfigurationError, CredentialsError


@dataclass(frozen=True)
class AppConfig:
    """Application-wide configuration values."""

    creds_file: Path
    log_level: str
    max_concurrency: int
    workers: int
    default_ttl: int
    spf_cache: str
    spf_live: bool
    timeout: float
    populate: bool


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Return a boolean parsed from a string."""
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _parse_int(name: str, default: str, minimum: int = 0) -> int:
    """Read an integer environment variable with a lower bound."""
    raw = os.getenv(name, default)
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ConfigurationError(f"{name} must be at least {minimum}, got {value}")
    return value


def load_config() -> AppConfig:
    """Load configuration values from the environment (and .env)."""
    load_dotenv()
    try:
        timeout = float(os.getenv("ZONECTL_TIMEOUT", "0"))
    except ValueError as exc:
        raise ConfigurationError("ZONECTL_TIMEOUT must be a number of seconds.") from exc
    return AppConfig(
        creds_file=Path(os.getenv("ZONECTL_CREDS_FILE", "creds.json")),
        log_level=os.getenv("ZONECTL_LOG_LEVEL", "INFO"),
        max_concurrency=_parse_int("ZONECTL_MAX_CONCURRENCY", "4", minimum=1),
        workers=_parse_int("ZONECTL_WORKERS", "8", minimum=1),
        default_ttl=_parse_int("ZONECTL_DEFAULT_TTL", "300", minimum=1),
        spf_cache=os.getenv("ZONECTL_SPF_CACHE", ""),
        spf_live=_parse_bool(os.getenv("ZONECTL_SPF_LIVE"), default=True),
        timeout=timeout,
        populate=_parse_bool(os.getenv("ZONECTL_POPULATE"), default=True),
    )


def _substitute(value: Any) -> str:
    """Replace ``$VAR`` values with the environment variable's value."""
    text = "" if value is None else str(value)
    if text.startswith("$") and len(text) > 1:
        name = text[1:]
        if name not in os.environ:
            raise CredentialsError(f"environment variable {name} referenced by credentials is not set")
        return os.environ[name]
    return text


def load_credentials(path: Path | str) -> Dict[str, Dict[str, str]]:
    """Read ``name -> {key: value}`` provider credentials from JSON or YAML.

    Every entry must name its provider type in ``TYPE``.
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"cannot read credentials file {path}: {exc}") from exc
    try:
        data = json.loads(text) if path.suffix == ".json" else yaml.safe_load(text)
    except (ValueError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"cannot parse credentials file {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"credentials file {path} must contain a mapping")

    credentials: Dict[str, Dict[str, str]] = {}
    for name, entry in data.items():
        if not isinstance(entry, dict):
            raise ConfigurationError(f"credentials entry {name!r} must be a mapping")
        values = {str(key): _substitute(value) for key, value in entry.items()}
        if not values.get("TYPE"):
            raise CredentialsError(f"{name}: credentials entry missing TYPE field")
        credentials[str(name)] = values
    return credentials
