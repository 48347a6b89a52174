from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from .errors import ConfigError


DEFAULT_ENV_PREFIX = "ethclient"

# Names become prometheus label values; keep them short.
NAME_LEN_LIMIT = 32

_REQUIRED_ENV_FIELDS = ("rpc_url", "rpc_name", "failover_rpc_url", "failover_rpc_name")
_OPTIONAL_ENV_FIELDS = ("enable_prometheus",)


def _check_name(field: str, value: str) -> None:
    if len(value) >= NAME_LEN_LIMIT:
        raise ConfigError(f"invalid {field}: {value!r} (must be shorter than {NAME_LEN_LIMIT} chars)")


def _check_url(field: str, value: str) -> None:
    if not value.strip():
        raise ConfigError(f"invalid {field}: must not be empty")


class FailoverConfig(BaseModel):
    """
    Connection settings for the primary and failover RPC endpoints.

    URLs are only checked for being non-empty; reachability is discovered when dialing.
    """

    model_config = ConfigDict(frozen=True)

    rpc_url: str
    rpc_name: str
    failover_rpc_url: str
    failover_rpc_name: str
    enable_prometheus: bool = True

    @field_validator("rpc_url", "failover_rpc_url")
    @classmethod
    def _validate_url(cls, v: str, info) -> str:
        _check_url(info.field_name, v)
        return v

    @field_validator("rpc_name", "failover_rpc_name")
    @classmethod
    def _validate_name(cls, v: str, info) -> str:
        _check_name(info.field_name, v)
        return v

    def ensure_valid(self) -> None:
        """Re-check invariants (instances built via model_construct skip validators)."""
        _check_url("rpc_url", self.rpc_url)
        _check_url("failover_rpc_url", self.failover_rpc_url)
        _check_name("rpc_name", self.rpc_name)
        _check_name("failover_rpc_name", self.failover_rpc_name)


def _env_keys(prefix: str, field: str) -> tuple[str, str]:
    # PREFIX_RPC_URL first, then the unsplit PREFIX_RPCURL form older deployments use
    return f"{prefix}_{field}".upper(), f"{prefix}_{field.replace('_', '')}".upper()


def _lookup(env: Mapping[str, str], prefix: str, field: str) -> Optional[str]:
    for key in _env_keys(prefix, field):
        if key in env:
            return env[key]
    return None


def _validate(raw: Mapping[str, Any], source: str) -> FailoverConfig:
    try:
        return FailoverConfig.model_validate(dict(raw))
    except ValidationError as e:
        raise ConfigError(f"invalid failover rpc config from {source}: {e}") from e


def config_from_env(
    prefix: str = DEFAULT_ENV_PREFIX,
    environ: Optional[Mapping[str, str]] = None,
) -> FailoverConfig:
    """
    Build config from environment variables, e.g. with the default prefix:
      ETHCLIENT_RPC_URL, ETHCLIENT_RPC_NAME,
      ETHCLIENT_FAILOVER_RPC_URL, ETHCLIENT_FAILOVER_RPC_NAME  (required)
      ETHCLIENT_ENABLE_PROMETHEUS                              (optional, default true)

    The unsplit names (ETHCLIENT_RPCURL, ETHCLIENT_FAILOVERRPCNAME,
    ETHCLIENT_ENABLEPROMETHEUS, ...) are read too; the split form wins.
    The flag takes any pydantic bool spelling (true/false, t/f, 1/0, yes/no, on/off).
    """
    env = os.environ if environ is None else environ

    raw: dict[str, Any] = {}
    missing: list[str] = []
    for field in _REQUIRED_ENV_FIELDS:
        value = _lookup(env, prefix, field)
        if value is None:
            missing.append(_env_keys(prefix, field)[0])
            continue
        raw[field] = value

    if missing:
        raise ConfigError(f"required key(s) missing from environment: {', '.join(missing)}")

    for field in _OPTIONAL_ENV_FIELDS:
        value = _lookup(env, prefix, field)
        if value is not None and value.strip():
            raw[field] = value.strip()

    return _validate(raw, f"env prefix {prefix!r}")


def load_failover_config(path: Path) -> FailoverConfig:
    if not path.exists():
        raise FileNotFoundError(f"Config not found: {path}")
    data = yaml.safe_load(path.read_text())
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid YAML structure in {path}")
    return _validate(data, str(path))
