"""Shared configuration loader for evtc."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import urlparse

import yaml


class ConfigurationError(RuntimeError):
    """Raised when configuration is invalid."""


DEFAULT_CONFIG_PATH = Path.home() / ".evtc.yaml"
DEFAULT_CHAIN_URL = "http://127.0.0.1:8888"
DEFAULT_WALLET_URL = "http://127.0.0.1:9999"
DEFAULT_TIMEOUT = 30.0
DEFAULT_READ_RETRIES = 2


@dataclass(frozen=True)
class ClientConfig:
    """Connection details for the chain (evtd) and wallet (evtwd) services.

    Instances are passed explicitly into the RPC clients and the transaction
    pipeline so several configurations can coexist in one process.
    """

    chain_url: str = DEFAULT_CHAIN_URL
    wallet_url: str = DEFAULT_WALLET_URL
    timeout: float = DEFAULT_TIMEOUT
    read_retries: int = DEFAULT_READ_RETRIES


def _load_config_file(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigurationError(f"Config file not found: {path}")
        return {}

    try:
        loaded = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - delegated to PyYAML
        raise ConfigurationError(f"Invalid YAML in config file {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ConfigurationError(f"Expected {path} to contain a YAML mapping")
    return loaded


def _section(file_config: dict[str, Any], name: str, path: Path) -> dict[str, Any]:
    section = file_config.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"Expected '{name}' to be a mapping in {path}")
    return section


def _coerce_timeout(raw: Any, *, source: str) -> float | None:
    if raw is None:
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid timeout in {source}: {raw}") from exc
    if value <= 0:
        raise ConfigurationError(f"Timeout in {source} must be positive: {raw}")
    return value


def _coerce_retries(raw: Any, *, source: str) -> int | None:
    if raw is None:
        return None
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid retry count in {source}: {raw}") from exc
    if value < 0:
        raise ConfigurationError(f"Retry count in {source} must not be negative: {raw}")
    return value


def _first_value(*values: Any, default: Any = None) -> Any:
    for value in values:
        if value is not None:
            return value
    return default


def _normalize_url(raw: str, *, source: str) -> str:
    parsed = urlparse(raw)
    if parsed.scheme not in {"http", "https"} or not parsed.hostname:
        raise ConfigurationError(f"Invalid service URL in {source}: {raw}")
    return raw.rstrip("/")


def load_client_config(
    *,
    config_path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> ClientConfig:
    """Load service configuration from overrides, environment, and optional YAML.

    Precedence is overrides > environment > YAML file > built-in defaults. The
    YAML file may contain ``chain: {url}``, ``wallet: {url}`` and
    ``rpc: {timeout, read_retries}`` sections.
    """

    env_map = os.environ if env is None else env
    path = Path(config_path).expanduser() if config_path is not None else DEFAULT_CONFIG_PATH

    file_config = _load_config_file(path, required=config_path is not None)
    chain_section = _section(file_config, "chain", path)
    wallet_section = _section(file_config, "wallet", path)
    rpc_section = _section(file_config, "rpc", path)

    override_map = {key: value for key, value in (overrides or {}).items() if value is not None}

    chain_url = _first_value(
        override_map.get("chain_url"),
        env_map.get("EVTC_URL"),
        chain_section.get("url"),
        default=DEFAULT_CHAIN_URL,
    )
    wallet_url = _first_value(
        override_map.get("wallet_url"),
        env_map.get("EVTC_WALLET_URL"),
        wallet_section.get("url"),
        default=DEFAULT_WALLET_URL,
    )
    timeout = _first_value(
        _coerce_timeout(override_map.get("timeout"), source="overrides"),
        _coerce_timeout(env_map.get("EVTC_TIMEOUT"), source="environment"),
        _coerce_timeout(rpc_section.get("timeout"), source=f"{path} rpc.timeout"),
        default=DEFAULT_TIMEOUT,
    )
    read_retries = _first_value(
        _coerce_retries(override_map.get("read_retries"), source="overrides"),
        _coerce_retries(env_map.get("EVTC_READ_RETRIES"), source="environment"),
        _coerce_retries(rpc_section.get("read_retries"), source=f"{path} rpc.read_retries"),
        default=DEFAULT_READ_RETRIES,
    )

    return ClientConfig(
        chain_url=_normalize_url(str(chain_url), source="chain url"),
        wallet_url=_normalize_url(str(wallet_url), source="wallet url"),
        timeout=timeout,
        read_retries=read_retries,
    )
