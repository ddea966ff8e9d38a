# service/config_schema.py
from __future__ import annotations

import copy
import json
import logging
import os
from typing import Any

import yaml

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised when the service config is invalid."""


_INTERVAL_FIELDS = ("weeks", "days", "hours", "minutes", "seconds", "jitter", "timezone", "start_date", "end_date")

DEFAULT_CONFIG: dict[str, Any] = {
    "timezone": "UTC",
    "executor_workers": 2,
    "api": {"enabled": True, "host": "127.0.0.1", "port": 8080},
    "discovery": {
        "trigger": {"interval": {"minutes": 5}},
        "run_on_start": True,
        "misfire_grace_time": 60,
        "kwargs": {},
    },
}


def load_config(path: str | None = None) -> dict[str, Any]:
    """
    Load the service configuration and fill in defaults.

    Resolution order:
      1) Explicit `path` argument (if provided)
      2) os.environ['CONFIG_PATH'] (if set)
      3) DEFAULT_CONFIG (5-minute interval, API on localhost:8080)

    Sections missing from a file fall back to their defaults key by key.
    """
    resolved_path = path or os.environ.get("CONFIG_PATH")
    if not resolved_path:
        logger.info("CONFIG_PATH not provided; using built-in default config.")
        raw: dict[str, Any] = {}
    else:
        raw = _read_any(resolved_path)

    return _apply_defaults(raw)


def validate(cfg: dict[str, Any]) -> None:
    """
    Validate the configuration. Raise ConfigError on any problem.
    No prints, no sys.exit().
    """
    if not isinstance(cfg, dict):
        raise ConfigError("Config must be a dict.")

    tz = cfg.get("timezone")
    if tz is not None and not isinstance(tz, str):
        raise ConfigError("'timezone' must be a string if provided.")
    _to_int(cfg.get("executor_workers", 2), field="executor_workers", allow_zero=False)

    api = cfg.get("api", {})
    if not isinstance(api, dict):
        raise ConfigError("'api' must be an object.")
    _to_bool(api.get("enabled", True), field="api.enabled")
    if not isinstance(api.get("host", ""), str):
        raise ConfigError("'api.host' must be a string.")
    port = _to_int(api.get("port", 8080), field="api.port", allow_zero=True)
    if port > 65535:
        raise ConfigError(f"'api.port' must be <= 65535 (got {port}).")

    disc = cfg.get("discovery")
    if not isinstance(disc, dict):
        raise ConfigError("Missing required 'discovery' object.")

    trigger = disc.get("trigger")
    if not isinstance(trigger, dict):
        raise ConfigError("'discovery.trigger' must be an object.")
    extra = sorted(set(trigger) - {"interval"})
    if extra:
        raise ConfigError(f"'discovery.trigger' supports only 'interval' (got {extra}).")
    _validate_interval(trigger.get("interval"))

    _to_bool(disc.get("run_on_start", True), field="discovery.run_on_start")
    if disc.get("misfire_grace_time") is not None:
        _to_int(disc["misfire_grace_time"], field="discovery.misfire_grace_time", allow_zero=True)
    if not isinstance(disc.get("kwargs", {}), dict):
        raise ConfigError("'discovery.kwargs' must be an object.")


def discovery_kwargs(cfg: dict[str, Any]) -> dict[str, Any]:
    return dict((cfg.get("discovery") or {}).get("kwargs") or {})


# ---- Internals ---------------------------------------------------------------


def _apply_defaults(raw: dict[str, Any]) -> dict[str, Any]:
    if not isinstance(raw, dict):
        raise ConfigError("Top-level config must be an object.")

    cfg = copy.deepcopy(DEFAULT_CONFIG)
    for key, value in raw.items():
        if key in ("api", "discovery") and isinstance(value, dict):
            cfg[key].update(value)
        else:
            cfg[key] = value

    tz = cfg.get("timezone")
    if not isinstance(tz, str) or not tz.strip():
        cfg["timezone"] = os.environ.get("TZ", "UTC")

    api = cfg["api"]
    if isinstance(api, dict):
        if "enabled" in api:
            api["enabled"] = _to_bool(api["enabled"], field="api.enabled")
        if "port" in api:
            api["port"] = _to_int(api["port"], field="api.port", allow_zero=True)

    disc = cfg["discovery"]
    if isinstance(disc, dict):
        if "run_on_start" in disc:
            disc["run_on_start"] = _to_bool(disc["run_on_start"], field="discovery.run_on_start")
        if disc.get("misfire_grace_time") is not None:
            disc["misfire_grace_time"] = _to_int(
                disc["misfire_grace_time"], field="discovery.misfire_grace_time", allow_zero=True
            )
    return cfg


def _validate_interval(spec: Any) -> None:
    if not isinstance(spec, dict):
        raise ConfigError("'discovery.trigger.interval' must be an object of time fields.")
    unknown = sorted(set(spec) - set(_INTERVAL_FIELDS))
    if unknown:
        raise ConfigError(f"'discovery.trigger.interval' has unknown field(s): {unknown}")
    total = 0
    for k in ("weeks", "days", "hours", "minutes", "seconds"):
        if k in spec:
            total += _to_int(spec[k], field=f"interval.{k}", allow_zero=True)
    if total == 0:
        raise ConfigError("'discovery.trigger.interval' must be greater than 0.")


def _to_bool(value: Any, *, field: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        v = value.strip().lower()
        if v in {"1", "true", "yes", "on"}:
            return True
        if v in {"0", "false", "no", "off"}:
            return False
    raise ConfigError(f"'{field}' must be a boolean (or boolean-like string).")


def _to_int(value: Any, *, field: str, allow_zero: bool) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"'{field}' must be an integer.")
    try:
        iv = int(value)
    except (TypeError, ValueError) as err:
        raise ConfigError(f"'{field}' must be an integer.") from err
    if iv < 0 or (iv == 0 and not allow_zero):
        raise ConfigError(f"'{field}' must be >= {'0' if allow_zero else '1'} (got {iv}).")
    return iv


def _read_any(path: str) -> dict[str, Any]:
    lower = path.lower()
    try:
        with open(path, encoding="utf-8") as f:
            text = f.read()
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read config file: {path}: {e}") from e

    if lower.endswith((".yml", ".yaml")):
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
        if data is None:
            data = {}
    else:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Top-level config in {path} must be a mapping/object.")
    return data
