"""
farmescrow/core/config.py

Immutable ledger configuration.

One LedgerConfig is built at process start (from the environment, a YAML
file, or explicit arguments) and injected into every component. Nothing in
FarmEscrow reads ambient global state after that point.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from farmescrow.core.crypto import Ed25519KeyManager, is_valid_account_id
from farmescrow.core.exceptions import ConfigurationError, ValidationError


NETWORKS: Dict[str, Dict[str, str]] = {
    "testnet": {
        "horizon_url": "https://horizon-testnet.stellar.org",
        "network_passphrase": "Test SDF Network ; September 2015",
    },
    "public": {
        "horizon_url": "https://horizon.stellar.org",
        "network_passphrase": "Public Global Stellar Network ; September 2015",
    },
}

_ENV_KEYS = {
    "network":             "STELLAR_NETWORK",
    "horizon_url":         "STELLAR_HORIZON_URL",
    "network_passphrase":  "STELLAR_NETWORK_PASSPHRASE",
    "platform_public_key": "STELLAR_PLATFORM_PUBLIC_KEY",
    "platform_secret_key": "STELLAR_PLATFORM_SECRET_KEY",
    "request_timeout":     "STELLAR_REQUEST_TIMEOUT",
    "transaction_timeout": "STELLAR_TX_TIMEOUT",
}


@dataclass(frozen=True)
class LedgerConfig:
    """
    Network selection and platform identity.

    Args:
        network:             "testnet", "public", or a custom name (which then
                             requires horizon_url and network_passphrase).
        horizon_url:         Horizon base URL.
        network_passphrase:  Passphrase mixed into every transaction hash.
        platform_public_key: Sponsor account funding escrows.
        platform_secret_key: Signing seed for the sponsor. Never printed.
        request_timeout:     Seconds allowed per Horizon request.
        transaction_timeout: Seconds a built transaction stays valid.
        min_base_fee:        Floor for the per-operation fee, in stroops.
    """

    network: str = "testnet"
    horizon_url: str = ""
    network_passphrase: str = ""
    platform_public_key: Optional[str] = None
    platform_secret_key: Optional[str] = field(default=None, repr=False)
    request_timeout: float = 30.0
    transaction_timeout: int = 180
    min_base_fee: int = 100

    def __post_init__(self) -> None:
        preset = NETWORKS.get(self.network, {})
        if not self.horizon_url:
            if not preset:
                raise ConfigurationError(
                    f"Unknown network {self.network!r}: horizon_url is required",
                    {"network": self.network},
                )
            object.__setattr__(self, "horizon_url", preset["horizon_url"])
        if not self.network_passphrase:
            if not preset:
                raise ConfigurationError(
                    f"Unknown network {self.network!r}: network_passphrase is required",
                    {"network": self.network},
                )
            object.__setattr__(self, "network_passphrase", preset["network_passphrase"])
        object.__setattr__(self, "horizon_url", self.horizon_url.rstrip("/"))

        if self.request_timeout <= 0:
            raise ConfigurationError("request_timeout must be positive")
        if self.transaction_timeout <= 0:
            raise ConfigurationError("transaction_timeout must be positive")
        if self.min_base_fee < 100:
            raise ConfigurationError("min_base_fee cannot be below the ledger minimum of 100")

        self._validate_platform_keys()

    def _validate_platform_keys(self) -> None:
        if self.platform_public_key and not is_valid_account_id(self.platform_public_key):
            raise ConfigurationError("platform_public_key is not a valid ledger address")
        if not self.platform_secret_key:
            return
        try:
            key = Ed25519KeyManager.from_secret(self.platform_secret_key, "platform_secret_key")
        except ValidationError as exc:
            raise ConfigurationError(exc.message) from exc
        if self.platform_public_key is None:
            object.__setattr__(self, "platform_public_key", key.public_key)
        elif not key.proves_ownership(self.platform_public_key):
            raise ConfigurationError(
                "platform_secret_key does not control platform_public_key"
            )

    # ── Construction ──────────────────────────────────────────

    @classmethod
    def for_network(cls, network: str, **overrides: Any) -> "LedgerConfig":
        return cls(network=network, **overrides)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "LedgerConfig":
        known = set(cls.__dataclass_fields__)
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(unknown)}")
        values = dict(data)
        for name, caster in (
            ("request_timeout", float),
            ("transaction_timeout", int),
            ("min_base_fee", int),
        ):
            if name in values:
                try:
                    values[name] = caster(values[name])
                except (TypeError, ValueError) as exc:
                    raise ConfigurationError(f"{name} is not a number") from exc
        return cls(**values)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "LedgerConfig":
        """Build from STELLAR_* environment variables."""
        return cls.from_mapping(_env_values(environ))

    @classmethod
    def from_yaml(cls, config_file: Path) -> "LedgerConfig":
        """Load configuration from a YAML file."""
        return cls.from_mapping(_yaml_values(config_file))

    @classmethod
    def load(
        cls,
        config_file: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
        **overrides: Any,
    ) -> "LedgerConfig":
        """
        Layered load: environment, then YAML file, then explicit overrides.
        Later layers win; None overrides are ignored.
        """
        values: Dict[str, Any] = _env_values(environ)
        if config_file is not None:
            values.update(_yaml_values(config_file))
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls.from_mapping(values)

    # ── Access ────────────────────────────────────────────────

    def platform_key_manager(self) -> Ed25519KeyManager:
        """
        Build a fresh key manager for the platform account.
        Callers drop it when their operation returns.
        """
        if not self.platform_secret_key:
            raise ConfigurationError("platform_secret_key is not configured")
        return Ed25519KeyManager.from_secret(self.platform_secret_key, "platform_secret_key")


def _env_values(environ: Optional[Mapping[str, str]]) -> Dict[str, Any]:
    environ = os.environ if environ is None else environ
    return {name: environ[var] for name, var in _ENV_KEYS.items() if environ.get(var)}


def _yaml_values(config_file: Path) -> Dict[str, Any]:
    try:
        with open(config_file, "r") as f:
            data = yaml.safe_load(f) or {}
    except OSError as exc:
        raise ConfigurationError(f"Cannot read {config_file}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"{config_file} is not valid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"{config_file} must contain a mapping")
    return data
