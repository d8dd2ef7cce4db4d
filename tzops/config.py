"""
Engine configuration.

``EngineConfig`` is immutable. Build it directly, from a JSON-like
document (``from_dict``, validated against ``CONFIG_SCHEMA``), or from
environment variables (``from_env``).
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

import jsonschema  # type: ignore[import-untyped]

from tzops.errors import ConfigError

DEFAULT_FEE_HARD_CAP = Decimal(100)
DEFAULT_RETRY_DELAY = 0.25
DEFAULT_INJECTION_TIMEOUT = 30.0
DEFAULT_REQUEST_TIMEOUT = 30.0

ENV_PREFIX = "TZOPS_"

CONFIG_SCHEMA: dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "additionalProperties": False,
    "required": ["node_urls"],
    "properties": {
        "node_urls": {
            "type": "array",
            "minItems": 1,
            "items": {"type": "string", "pattern": "^https?://"},
        },
        "network": {"type": "string", "minLength": 1},
        "fee_hard_cap": {"type": ["number", "string"]},
        "retry_delay": {"type": "number", "minimum": 0},
        "injection_timeout": {"type": "number", "exclusiveMinimum": 0},
        "request_timeout": {"type": "number", "exclusiveMinimum": 0},
    },
}


@dataclass(frozen=True)
class EngineConfig:
    """Settings shared by every call of an ``OperationService``.

    Attributes:
        node_urls: Node base URLs, tried round robin.
        network: Network name. ``"mainnet"`` selects mainnet services.
        fee_hard_cap: Largest fee accepted, in tez.
        retry_delay: Seconds between attempts on transport failure.
        injection_timeout: Ceiling in seconds on the injection call.
        request_timeout: Per-request HTTP timeout in seconds.
    """

    node_urls: tuple[str, ...]
    network: str = "mainnet"
    fee_hard_cap: Decimal = DEFAULT_FEE_HARD_CAP
    retry_delay: float = DEFAULT_RETRY_DELAY
    injection_timeout: float = DEFAULT_INJECTION_TIMEOUT
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT

    def __post_init__(self) -> None:
        if not self.node_urls:
            raise ConfigError("at least one node URL is required")
        if self.fee_hard_cap <= 0:
            raise ConfigError(f"fee_hard_cap must be positive, got {self.fee_hard_cap}")

    @property
    def is_mainnet(self) -> bool:
        return self.network == "mainnet"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> EngineConfig:
        """Validate ``data`` against ``CONFIG_SCHEMA`` and build a config.

        Raises:
            ConfigError: If ``data`` does not match the schema.
        """
        try:
            jsonschema.validate(instance=dict(data), schema=CONFIG_SCHEMA)
        except jsonschema.ValidationError as exc:
            raise ConfigError(f"invalid configuration: {exc.message}") from exc

        kwargs: dict[str, Any] = {"node_urls": tuple(data["node_urls"])}
        if "network" in data:
            kwargs["network"] = data["network"]
        if "fee_hard_cap" in data:
            kwargs["fee_hard_cap"] = _decimal(data["fee_hard_cap"])
        for key in ("retry_delay", "injection_timeout", "request_timeout"):
            if key in data:
                kwargs[key] = float(data[key])
        return cls(**kwargs)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> EngineConfig:
        """Build a config from ``TZOPS_*`` environment variables.

        ``TZOPS_NODE_URLS`` is a comma separated list and is required.
        """
        env = os.environ if environ is None else environ
        urls = [u.strip() for u in env.get(f"{ENV_PREFIX}NODE_URLS", "").split(",") if u.strip()]
        data: dict[str, Any] = {"node_urls": urls}
        if f"{ENV_PREFIX}NETWORK" in env:
            data["network"] = env[f"{ENV_PREFIX}NETWORK"]
        if f"{ENV_PREFIX}FEE_HARD_CAP" in env:
            data["fee_hard_cap"] = env[f"{ENV_PREFIX}FEE_HARD_CAP"]
        for key in ("retry_delay", "injection_timeout", "request_timeout"):
            name = f"{ENV_PREFIX}{key.upper()}"
            if name in env:
                data[key] = _float(name, env[name])
        return cls.from_dict(data)


def _decimal(value: Any) -> Decimal:
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        raise ConfigError(f"fee_hard_cap is not a number: {value!r}") from None
    if not result.is_finite():
        raise ConfigError(f"fee_hard_cap is not a number: {value!r}")
    return result


def _float(name: str, value: str) -> float:
    try:
        return float(value)
    except ValueError:
        raise ConfigError(f"{name} is not a number: {value!r}") from None
