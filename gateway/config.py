"""Configuration management for the account gateway."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml

BACKENDS = ("sqlite", "supabase")


@dataclass(frozen=True)
class RateLimitPolicy:
    """Sliding-window settings applied to registration attempts."""

    window_ms: int
    max_requests: int

    def __post_init__(self) -> None:
        if self.window_ms <= 0:
            raise ValueError("Rate limit window must be a positive number of milliseconds")
        if self.max_requests <= 0:
            raise ValueError("Rate limit max_requests must be a positive integer")

    @staticmethod
    def from_dict(data: Mapping[str, object]) -> "RateLimitPolicy":
        preset_name = data.get("policy")
        base = POLICY_PRESETS[DEFAULT_POLICY]
        if preset_name is not None:
            base = resolve_policy(str(preset_name))
        return RateLimitPolicy(
            window_ms=int(data.get("window_ms", base.window_ms)),  # type: ignore[arg-type]
            max_requests=int(data.get("max_requests", base.max_requests)),  # type: ignore[arg-type]
        )


POLICY_PRESETS: Dict[str, RateLimitPolicy] = {
    "standard": RateLimitPolicy(window_ms=5 * 60 * 1000, max_requests=20),
    "relaxed": RateLimitPolicy(window_ms=15 * 60 * 1000, max_requests=100),
}
DEFAULT_POLICY = "standard"


def resolve_policy(name: str) -> RateLimitPolicy:
    try:
        return POLICY_PRESETS[name.strip().lower()]
    except KeyError as exc:
        known = ", ".join(sorted(POLICY_PRESETS))
        raise ValueError(f"Unknown rate limit policy '{name}' (expected one of: {known})") from exc


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the local SQLite backend."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "gateway.sqlite3").resolve(strict=False)


@dataclass(frozen=True)
class GatewaySettings:
    """Runtime configuration for the gateway and its collaborators."""

    backend: str = "sqlite"
    database_path: Path = field(default_factory=lambda: resolve_database_path(None))
    supabase_url: Optional[str] = None
    supabase_anon_key: Optional[str] = None
    supabase_service_key: Optional[str] = None
    rate_limit: RateLimitPolicy = field(default_factory=lambda: POLICY_PRESETS[DEFAULT_POLICY])
    request_timeout: float = 10.0
    upstream_timeout: float = 5.0

    def __post_init__(self) -> None:
        if self.backend not in BACKENDS:
            raise ValueError(f"Unsupported backend '{self.backend}' (expected one of: {', '.join(BACKENDS)})")
        if self.request_timeout <= 0 or self.upstream_timeout <= 0:
            raise ValueError("Timeouts must be positive")
        if self.backend == "supabase" and (not self.supabase_url or not self.supabase_anon_key):
            raise ValueError("Supabase URL or Key is missing")

    @property
    def service_key(self) -> Optional[str]:
        return self.supabase_service_key or self.supabase_anon_key

    @staticmethod
    def from_dict(data: Mapping[str, object], base_path: Path | None = None) -> "GatewaySettings":
        """Create :class:`GatewaySettings` from raw dictionary data."""

        raw_db_path = data.get("database_path")
        if raw_db_path:
            candidate = Path(str(raw_db_path)).expanduser()
            if not candidate.is_absolute() and base_path is not None:
                candidate = base_path / candidate
            database_path = candidate.resolve(strict=False)
        else:
            database_path = resolve_database_path(None)

        rate_limit_raw = data.get("rate_limit") or {}
        if not isinstance(rate_limit_raw, Mapping):
            raise ValueError("'rate_limit' must be a mapping")

        def _optional(key: str) -> Optional[str]:
            value = data.get(key)
            return str(value) if value is not None else None

        return GatewaySettings(
            backend=str(data.get("backend", "sqlite")).strip().lower(),
            database_path=database_path,
            supabase_url=_optional("supabase_url"),
            supabase_anon_key=_optional("supabase_anon_key"),
            supabase_service_key=_optional("supabase_service_key"),
            rate_limit=RateLimitPolicy.from_dict(rate_limit_raw),
            request_timeout=float(data.get("request_timeout", 10.0)),  # type: ignore[arg-type]
            upstream_timeout=float(data.get("upstream_timeout", 5.0)),  # type: ignore[arg-type]
        )


_ENV_KEYS = {
    "GATEWAY_BACKEND": "backend",
    "GATEWAY_DB_PATH": "database_path",
    "SUPABASE_URL": "supabase_url",
    "SUPABASE_ANON_KEY": "supabase_anon_key",
    "SUPABASE_SERVICE_ROLE_KEY": "supabase_service_key",
    "GATEWAY_REQUEST_TIMEOUT": "request_timeout",
    "GATEWAY_UPSTREAM_TIMEOUT": "upstream_timeout",
}

_RATE_LIMIT_ENV_KEYS = {
    "GATEWAY_RATE_LIMIT_POLICY": "policy",
    "GATEWAY_RATE_LIMIT_WINDOW_MS": "window_ms",
    "GATEWAY_RATE_LIMIT_MAX_REQUESTS": "max_requests",
}


def _load_yaml(config_path: Path) -> Dict[str, object]:
    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ValueError("Configuration file must contain a mapping at the top level")
    return raw


def load_settings(
    config_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> GatewaySettings:
    """Load settings from an optional YAML file overlaid with environment variables."""

    env = os.environ if environ is None else environ
    if config_path is None and env.get("GATEWAY_CONFIG"):
        config_path = Path(env["GATEWAY_CONFIG"]).expanduser()

    data: Dict[str, object] = {}
    base_path: Path | None = None
    if config_path is not None:
        data = _load_yaml(config_path)
        base_path = config_path.resolve(strict=False).parent

    for env_key, setting in _ENV_KEYS.items():
        value = env.get(env_key)
        if value:
            data[setting] = value

    rate_limit = dict(data.get("rate_limit") or {})  # type: ignore[call-overload]
    for env_key, setting in _RATE_LIMIT_ENV_KEYS.items():
        value = env.get(env_key)
        if value:
            rate_limit[setting] = value
    data["rate_limit"] = rate_limit

    return GatewaySettings.from_dict(data, base_path=base_path)


__all__ = [
    "BACKENDS",
    "DEFAULT_POLICY",
    "GatewaySettings",
    "POLICY_PRESETS",
    "RateLimitPolicy",
    "load_settings",
    "resolve_database_path",
    "resolve_policy",
]
