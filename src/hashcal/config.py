"""hashcal configuration loading and validation.

Reads ``hashcal.toml``, resolves ``${VAR}`` references from the environment,
and returns a validated :class:`HashcalConfig` dataclass.

Example::

    [hashcal]
    timezone = "Europe/Berlin"

    [hashcal.logging]
    level = "DEBUG"
    format = "json"

    [hashcal.persistence]
    debounce_ms = 500

    [hashcal.codec]
    kdf_iterations = 210000
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from hashcal.core.codec import DEFAULT_KDF_ITERATIONS
from hashcal.core.errors import HashcalError
from hashcal.core.timezones import is_valid_zone

CONFIG_FILENAME = "hashcal.toml"
ENV_CONFIG_PATH = "HASHCAL_CONFIG"

DEFAULT_DEBOUNCE_MS = 500
MIN_KDF_ITERATIONS = 1_000

# ${VAR_NAME} references; names are letters, digits and underscores.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class ConfigError(HashcalError):
    """Raised when configuration is missing, malformed, or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from [hashcal.logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_file: str | None = None


@dataclass
class PersistenceConfig:
    """Debounce settings from [hashcal.persistence]."""

    debounce_ms: int = DEFAULT_DEBOUNCE_MS


@dataclass
class CodecConfig:
    """Key-derivation settings from [hashcal.codec].

    Changing ``kdf_iterations`` makes previously encrypted links unreadable;
    the iteration count is not stored in the token.
    """

    kdf_iterations: int = DEFAULT_KDF_ITERATIONS


@dataclass
class HashcalConfig:
    """Parsed and validated configuration."""

    timezone: str = "UTC"
    local_zone: str | None = None
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    codec: CodecConfig = field(default_factory=CodecConfig)

    @property
    def effective_local_zone(self) -> str:
        return self.local_zone or self.timezone


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    if isinstance(value, str):
        return _resolve_string(value)

    return value


def _resolve_string(s: str) -> str:
    """Replace all ``${VAR_NAME}`` occurrences in *s* with env var values.

    Collects all missing variable names and reports them in a single error.
    """
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {vars_str} (original: {s!r})"
        )

    return result


def _section(parent: dict[str, Any], name: str, path: str) -> dict[str, Any]:
    value = parent.get(name, {})
    if not isinstance(value, dict):
        raise ConfigError(f"[{path}] must be a table")
    return value


def _parse_int(value: Any, name: str, *, minimum: int) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be an integer")
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from exc
    if parsed < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {parsed}")
    return parsed


def _parse_zone(value: Any, name: str) -> str:
    if not isinstance(value, str) or not is_valid_zone(value.strip()):
        raise ConfigError(f"{name} must be a valid IANA timezone, got {value!r}")
    return value.strip()


def parse_config(data: dict[str, Any]) -> HashcalConfig:
    """Validate an already-parsed TOML mapping."""
    data = resolve_env_vars(data)
    root = _section(data, "hashcal", "hashcal")

    timezone = _parse_zone(root.get("timezone", "UTC"), "hashcal.timezone")
    local_zone_raw = root.get("local_zone")
    local_zone = (
        _parse_zone(local_zone_raw, "hashcal.local_zone") if local_zone_raw is not None else None
    )

    # --- [hashcal.logging] ---
    logging_section = _section(root, "logging", "hashcal.logging")
    log_level = str(logging_section.get("level", "INFO")).upper()
    log_format = str(logging_section.get("format", "text")).lower()
    if log_format not in ("text", "json"):
        raise ConfigError(
            f"Invalid hashcal.logging.format: {log_format!r}. Must be 'text' or 'json'."
        )
    log_file = logging_section.get("log_file")

    # --- [hashcal.persistence] ---
    persistence_section = _section(root, "persistence", "hashcal.persistence")
    debounce_ms = _parse_int(
        persistence_section.get("debounce_ms", DEFAULT_DEBOUNCE_MS),
        "hashcal.persistence.debounce_ms",
        minimum=0,
    )

    # --- [hashcal.codec] ---
    codec_section = _section(root, "codec", "hashcal.codec")
    kdf_iterations = _parse_int(
        codec_section.get("kdf_iterations", DEFAULT_KDF_ITERATIONS),
        "hashcal.codec.kdf_iterations",
        minimum=MIN_KDF_ITERATIONS,
    )

    return HashcalConfig(
        timezone=timezone,
        local_zone=local_zone,
        logging=LoggingConfig(
            level=log_level,
            format=log_format,
            log_file=str(log_file) if log_file else None,
        ),
        persistence=PersistenceConfig(debounce_ms=debounce_ms),
        codec=CodecConfig(kdf_iterations=kdf_iterations),
    )


def load_config(path: Path | None = None) -> HashcalConfig:
    """Load and validate configuration.

    Parameters
    ----------
    path:
        A ``hashcal.toml`` file or a directory containing one.  When None,
        ``$HASHCAL_CONFIG`` is consulted, then ``./hashcal.toml``; if neither
        exists the defaults are returned.

    Raises
    ------
    ConfigError
        If an explicitly requested file is missing, contains invalid TOML,
        or holds invalid values.
    """
    explicit = path is not None or ENV_CONFIG_PATH in os.environ
    if path is None:
        path = Path(os.environ.get(ENV_CONFIG_PATH, CONFIG_FILENAME))
    if path.is_dir():
        path = path / CONFIG_FILENAME

    if not path.exists():
        if explicit:
            raise ConfigError(f"Config file not found: {path}")
        return HashcalConfig()

    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc

    return parse_config(data)
