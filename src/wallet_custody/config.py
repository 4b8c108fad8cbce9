"""Configuration system for wallet custody.

Loads service config from ``.wallet-custody/config.yaml``, supports
environment variable expansion, and collects per-chain RPC overrides from
``RPC_URL_<CHAIN_ID>`` variables.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from wallet_custody.errors import ConfigError


# ---------------------------------------------------------------------------
# Environment-variable expansion helper
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)\}")


def _expand_env_vars(value: str) -> str:
    """Replace ``${VAR_NAME}`` placeholders with their environment values.

    If the variable is not set the placeholder is left as-is so that
    validation can catch it later.
    """

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))

    return _ENV_VAR_RE.sub(_replace, value)


def _expand_env_recursive(obj: object) -> object:
    """Walk an arbitrary nested structure and expand env vars in strings."""
    if isinstance(obj, str):
        return _expand_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _expand_env_recursive(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env_recursive(item) for item in obj]
    return obj


def _is_unexpanded(value: str) -> bool:
    return bool(_ENV_VAR_RE.search(value))


# ---------------------------------------------------------------------------
# Pydantic v2 models
# ---------------------------------------------------------------------------


class VaultConfig(BaseModel):
    """Key-share vault settings."""

    encryption_key: str = "${ENCRYPTION_KEY}"

    @field_validator("encryption_key")
    @classmethod
    def _check_key(cls, value: str) -> str:
        if _is_unexpanded(value):
            return value  # reported by require_secrets()
        if len(value) < 32:
            raise ValueError("encryption_key must be at least 32 characters long")
        return value


class CustodyServiceConfig(BaseModel):
    """Connection settings for the external key-custody service."""

    base_url: str = "https://app.dynamicauth.com/api/v0"
    environment_id: str = "${CUSTODY_ENVIRONMENT_ID}"
    api_token: str = "${CUSTODY_API_TOKEN}"
    timeout_seconds: float = 30.0
    log_sdk_debug: bool = False  # log full (sanitized) custody responses


class ProvisioningConfig(BaseModel):
    """Re-query behaviour after the custody service reports an existing account."""

    requery_attempts: int = 3
    requery_delay_seconds: float = 0.25


class SolanaConfig(BaseModel):
    confirm_timeout_seconds: float = 45.0
    confirm_poll_seconds: float = 1.5


class CustodyConfig(BaseModel):
    """Root configuration object for the custody service."""

    name: str = "wallet-custody"
    database_path: str = ".wallet-custody/custody.db"
    vault: VaultConfig = Field(default_factory=VaultConfig)
    custody: CustodyServiceConfig = Field(default_factory=CustodyServiceConfig)
    default_chains: dict[str, str] = Field(
        default_factory=lambda: {"evm": "421614", "solana": "devnet"}
    )
    rpc: dict[str, str] = Field(default_factory=dict)  # chain id -> RPC URL
    use_local_blockchain: bool = False
    provisioning: ProvisioningConfig = Field(default_factory=ProvisioningConfig)
    solana: SolanaConfig = Field(default_factory=SolanaConfig)

    def require_secrets(self) -> None:
        """Raise :class:`ConfigError` if a required secret is still a placeholder."""
        missing = [
            label
            for label, value in (
                ("vault.encryption_key", self.vault.encryption_key),
                ("custody.environment_id", self.custody.environment_id),
                ("custody.api_token", self.custody.api_token),
            )
            if not value or _is_unexpanded(value)
        ]
        if missing:
            raise ConfigError(
                f"Missing required settings: {', '.join(missing)}. "
                "Set the referenced environment variables or edit config.yaml."
            )

    def rpc_url_for(self, chain_id: int | str) -> Optional[str]:
        """Return the configured RPC override for *chain_id*, if any.

        Config file entries win over ``RPC_URL_<CHAIN_ID>`` environment
        variables.
        """
        key = str(chain_id)
        if key in self.rpc:
            return self.rpc[key]
        return rpc_overrides_from_env().get(key)


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------

_RPC_ENV_PREFIX = "RPC_URL_"


def rpc_overrides_from_env(environ: Optional[dict[str, str]] = None) -> dict[str, str]:
    """Collect ``RPC_URL_<CHAIN_ID>`` variables into a chain id -> URL map.

    ``RPC_URL_421614`` maps chain ``421614``; ``RPC_URL_MAINNET_BETA`` maps the
    Solana ``mainnet-beta`` cluster (underscores become dashes, lower-cased).
    """
    env = os.environ if environ is None else environ
    overrides: dict[str, str] = {}
    for name, value in env.items():
        if not name.startswith(_RPC_ENV_PREFIX) or not value:
            continue
        suffix = name[len(_RPC_ENV_PREFIX):]
        if not suffix:
            continue
        overrides[suffix.lower().replace("_", "-")] = value
    return overrides


def get_root_dir(base: Path | None = None) -> Path:
    """Return the ``.wallet-custody/`` root directory (no auto-create)."""
    if base is None:
        base = Path.cwd()
    return base / ".wallet-custody"


def default_config_path(base: Path | None = None) -> Path:
    return get_root_dir(base) / "config.yaml"


def load_config(path: Path) -> CustodyConfig:
    """Load and validate a custody configuration from a YAML file.

    Environment variable placeholders (``${VAR}``) are expanded before
    validation.
    """
    if not path.exists():
        raise ConfigError(
            f"No configuration found at {path}. Run 'wallet-custody init' first."
        )
    raw_text = path.read_text(encoding="utf-8")
    raw_data = yaml.safe_load(raw_text) or {}
    expanded = _expand_env_recursive(raw_data)
    try:
        return CustodyConfig.model_validate(expanded)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration in {path}: {exc}") from exc


def save_config(config: CustodyConfig, path: Path) -> None:
    """Serialize a :class:`CustodyConfig` to a YAML file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(mode="python", exclude_none=True)
    with open(path, "w", encoding="utf-8") as fh:
        yaml.dump(data, fh, default_flow_style=False, sort_keys=False)
