"""
AR.IO client configuration.

Values come from explicit arguments, environment variables (``ARIO_*``) or
a YAML file. The default network registry process id lives here and is
injected into facades, never read by them directly.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

import yaml

from ario.core import constants
from ario.core.exceptions import InvalidConfigurationError
from ario.core.models import RetryPolicy

logger = logging.getLogger(__name__)


def _parse_env(environ: Mapping[str, str], name: str, parser: Callable[[str], Any]) -> Any:
    raw = environ.get(name, "").strip()
    if not raw:
        return None
    try:
        return parser(raw)
    except ValueError as exc:
        raise InvalidConfigurationError(
            f"{name} has an invalid value: {raw!r}",
            details={"env_var": name},
        ) from exc


@dataclass(frozen=True)
class ClientConfig:
    """Endpoints, default process id and retry policy for a client session."""

    process_id: str = constants.DEFAULT_PROCESS_ID
    cu_url: str = constants.DEFAULT_CU_URL
    mu_url: str = constants.DEFAULT_MU_URL
    cache_url: str = constants.DEFAULT_CACHE_URL
    gateway_url: str = constants.DEFAULT_GATEWAY_URL
    retry_policy: RetryPolicy = field(
        default_factory=lambda: RetryPolicy(
            max_retries=constants.DEFAULT_MAX_RETRIES,
            initial_delay=constants.DEFAULT_INITIAL_DELAY,
            backoff_multiplier=constants.DEFAULT_BACKOFF_MULTIPLIER,
        )
    )
    http_timeout: float = constants.DEFAULT_HTTP_TIMEOUT
    log_level: str = "WARNING"

    def __post_init__(self) -> None:
        if not self.process_id:
            raise InvalidConfigurationError("process_id must not be empty")
        for name in ("cu_url", "mu_url", "cache_url", "gateway_url"):
            value = getattr(self, name)
            if not value or not value.startswith(("http://", "https://")):
                raise InvalidConfigurationError(f"{name} must be an http(s) URL, got {value!r}")
        if self.http_timeout <= 0:
            raise InvalidConfigurationError("http_timeout must be positive")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ClientConfig":
        """Build a config from ``ARIO_*`` environment variables over the defaults."""
        env = os.environ if environ is None else environ
        base = cls()
        retry = base.retry_policy
        max_retries = _parse_env(env, "ARIO_MAX_RETRIES", int)
        initial_delay = _parse_env(env, "ARIO_INITIAL_DELAY", float)
        multiplier = _parse_env(env, "ARIO_BACKOFF_MULTIPLIER", float)
        retry_policy = RetryPolicy(
            max_retries=retry.max_retries if max_retries is None else max_retries,
            initial_delay=retry.initial_delay if initial_delay is None else initial_delay,
            backoff_multiplier=retry.backoff_multiplier if multiplier is None else multiplier,
        )
        config = base.merged(
            process_id=env.get("ARIO_PROCESS_ID", "").strip() or None,
            cu_url=env.get("ARIO_CU_URL", "").strip() or None,
            mu_url=env.get("ARIO_MU_URL", "").strip() or None,
            cache_url=env.get("ARIO_CACHE_URL", "").strip() or None,
            gateway_url=env.get("ARIO_GATEWAY_URL", "").strip() or None,
            http_timeout=_parse_env(env, "ARIO_HTTP_TIMEOUT", float),
            log_level=env.get("ARIO_LOG_LEVEL", "").strip().upper() or None,
            retry_policy=retry_policy,
        )
        logger.debug(
            "Loaded client configuration from environment",
            extra={"event": "config.loaded", "process_id": config.process_id},
        )
        return config

    @classmethod
    def from_yaml(cls, path: Path | str) -> "ClientConfig":
        """Build a config from a YAML mapping using the field names as keys."""
        config_path = Path(path).expanduser()
        try:
            with config_path.open("r", encoding="utf-8") as handle:
                data = yaml.safe_load(handle) or {}
        except OSError as exc:
            raise InvalidConfigurationError(f"Cannot read config file {config_path}: {exc}") from exc
        except yaml.YAMLError as exc:
            raise InvalidConfigurationError(f"Invalid YAML in {config_path}: {exc}") from exc
        if not isinstance(data, dict):
            raise InvalidConfigurationError(f"Config file {config_path} must contain a mapping")

        retry_raw = data.pop("retry_policy", None) or {}
        unknown = set(data) - {f for f in cls.__dataclass_fields__ if f != "retry_policy"}
        if unknown:
            raise InvalidConfigurationError(
                f"Unknown config keys in {config_path}: {', '.join(sorted(unknown))}"
            )
        try:
            retry_policy = RetryPolicy(**retry_raw)
        except TypeError as exc:
            raise InvalidConfigurationError(f"Invalid retry_policy in {config_path}: {exc}") from exc
        return cls().merged(retry_policy=retry_policy, **data)

    def merged(self, **overrides: Any) -> "ClientConfig":
        """Return a copy with every non-None override applied."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **changes)
