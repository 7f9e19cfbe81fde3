"""Pool and backend configuration loaded from claimenv.yaml.

Example::

    backend:
      lock:
        type: redis            # or: memory
        url: redis://localhost:6379
      secrets:
        type: gcp-secret-manager   # or: memory
        project: my-project
    pools:
      shopify:
        ttl: 24h
        keys: [SHOPIFY_API_KEY, SHOPIFY_API_SECRET, APP_URL]
        slots:
          - name: app-alpha
          - name: app-beta
"""

import re
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Optional

import yaml

from .config import Config
from .errors import ConfigError, PoolNotFoundError

CONFIG_FILE_NAME = "claimenv.yaml"

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_DURATION_UNITS = {"ms": 0.001, "s": 1, "m": 60, "h": 3600}

# Upper bound on a pool TTL; keeps expires_at = now + ttl representable
MAX_TTL = timedelta(days=3650)


def parse_duration(value: Any) -> timedelta:
    """
    Parse a TTL value.

    Accepts a number of seconds or a duration string made of
    number+unit parts ("90s", "30m", "24h", "1h30m").

    Raises:
        ConfigError: If the value cannot be parsed
    """
    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise ConfigError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return _seconds_to_timedelta(value, value)
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"invalid duration: {value!r}")

    text = value.strip()
    if text.isdigit():
        return _seconds_to_timedelta(int(text), value)

    position = 0
    seconds = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            break
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    if position != len(text):
        raise ConfigError(f"invalid duration: {value!r}")
    return _seconds_to_timedelta(seconds, value)


def _seconds_to_timedelta(seconds, raw: Any) -> timedelta:
    try:
        return timedelta(seconds=seconds)
    except (OverflowError, ValueError):
        raise ConfigError(f"invalid duration: {raw!r} is out of range") from None


def derive_secret_name(slot_name: str, key: str) -> str:
    """
    Secret name for one key of one slot.

    Convention: {slot-name}-{kebab-case-key}, e.g.
    "app-alpha" + "SHOPIFY_API_SECRET" -> "app-alpha-shopify-api-secret".
    """
    return f"{slot_name}-{key.replace('_', '-').lower()}"


@dataclass(frozen=True)
class SlotConfig:
    name: str


@dataclass(frozen=True)
class PoolConfig:
    """
    A named group of interchangeable slots.

    Invariants:
    - at least one slot, slot names unique and non-empty
    - at least one key
    - ttl > 0
    """

    name: str
    slots: tuple[SlotConfig, ...]
    keys: tuple[str, ...]
    ttl: timedelta

    def slot_names(self) -> list[str]:
        """Ordered slot names; claim() scans them in this order."""
        return [slot.name for slot in self.slots]

    def secrets_for_slot(self, slot_name: str) -> dict[str, str]:
        """Map of env var key -> derived secret name for slot_name."""
        return {key: derive_secret_name(slot_name, key) for key in self.keys}


@dataclass(frozen=True)
class LockBackendConfig:
    type: str
    url: Optional[str] = None
    prefix: Optional[str] = None


@dataclass(frozen=True)
class SecretBackendConfig:
    type: str
    project: Optional[str] = None


@dataclass(frozen=True)
class ClaimenvConfig:
    lock: LockBackendConfig
    secrets: SecretBackendConfig
    pools: dict[str, PoolConfig] = field(default_factory=dict)

    def pool(self, name: str) -> PoolConfig:
        """
        Look up a pool by name.

        Raises:
            PoolNotFoundError: If the pool is not configured
        """
        try:
            return self.pools[name]
        except KeyError:
            raise PoolNotFoundError(name) from None


def _parse_pool(name: str, data: Any) -> PoolConfig:
    if not isinstance(data, dict):
        raise ConfigError(f"pool '{name}': expected a mapping")

    raw_slots = data.get("slots") or []
    if not isinstance(raw_slots, list) or not raw_slots:
        raise ConfigError(f"pool '{name}': at least one slot is required")

    slots = []
    seen = set()
    for index, raw_slot in enumerate(raw_slots):
        slot_name = raw_slot.get("name") if isinstance(raw_slot, dict) else raw_slot
        if not isinstance(slot_name, str) or not slot_name.strip():
            raise ConfigError(f"pool '{name}': slot {index}: name is required")
        if slot_name in seen:
            raise ConfigError(f"pool '{name}': duplicate slot name '{slot_name}'")
        seen.add(slot_name)
        slots.append(SlotConfig(name=slot_name))

    keys = data.get("keys") or []
    if isinstance(keys, str):
        keys = [k.strip() for k in keys.split(",") if k.strip()]
    if not isinstance(keys, list) or not keys:
        raise ConfigError(f"pool '{name}': at least one key is required")
    if not all(isinstance(k, str) and k for k in keys):
        raise ConfigError(f"pool '{name}': keys must be non-empty strings")

    if "ttl" not in data:
        raise ConfigError(f"pool '{name}': ttl is required")
    ttl = parse_duration(data["ttl"])
    if ttl <= timedelta(0):
        raise ConfigError(f"pool '{name}': ttl must be > 0")
    if ttl > MAX_TTL:
        raise ConfigError(f"pool '{name}': ttl must be at most {MAX_TTL.days} days")

    return PoolConfig(name=name, slots=tuple(slots), keys=tuple(keys), ttl=ttl)


def _mapping(value: Any, path: str) -> dict:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{path}: expected a mapping, got {type(value).__name__}")
    return value


def parse_config(data: Any) -> ClaimenvConfig:
    """
    Build and validate a ClaimenvConfig from parsed YAML.

    Raises:
        ConfigError: On any structural or validation problem
    """
    if not isinstance(data, dict):
        raise ConfigError(f"invalid config structure: expected a mapping, got {type(data).__name__}")

    backend = _mapping(data.get("backend"), "backend")
    lock = _mapping(backend.get("lock"), "backend.lock")
    secrets = _mapping(backend.get("secrets"), "backend.secrets")

    if not lock.get("type"):
        raise ConfigError("backend.lock.type is required")
    if not secrets.get("type"):
        raise ConfigError("backend.secrets.type is required")

    pools = data.get("pools") or {}
    if not isinstance(pools, dict) or not pools:
        raise ConfigError("at least one pool must be defined")

    return ClaimenvConfig(
        lock=LockBackendConfig(
            type=lock["type"],
            url=lock.get("url"),
            prefix=lock.get("prefix"),
        ),
        secrets=SecretBackendConfig(
            type=secrets["type"],
            project=secrets.get("project"),
        ),
        pools={name: _parse_pool(name, pool) for name, pool in pools.items()},
    )


def find_config_path(explicit: Optional[str] = None) -> Path:
    """
    Resolve the config file location.

    Order: explicit path, Config.CONFIG_PATH (CLAIMENV_CONFIG), ./claimenv.yaml,
    ~/.config/claimenv/claimenv.yaml.

    Raises:
        ConfigError: If no candidate exists
    """
    if explicit:
        return Path(explicit)
    if Config.CONFIG_PATH:
        return Path(Config.CONFIG_PATH)

    candidates = [Path.cwd() / CONFIG_FILE_NAME, Path.home() / ".config" / "claimenv" / CONFIG_FILE_NAME]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    raise ConfigError(
        "no config file found (looked for "
        + ", ".join(str(c) for c in candidates)
        + "); pass --config or set CLAIMENV_CONFIG"
    )


def load_config(path) -> ClaimenvConfig:
    """
    Load config from a YAML file.

    Raises:
        ConfigError: If the file is missing, malformed or invalid
    """
    config_file = Path(path)
    if not config_file.exists():
        raise ConfigError(f"config file not found: {config_file}")

    try:
        with open(config_file) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"failed to parse config {config_file}: {e}") from e

    return parse_config(data)
