"""Configuration management for istory-gate."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


class SecretsConfig(BaseSettings):
    """Shared bearer secrets, one per protected route family."""

    model_config = SettingsConfigDict(env_prefix="")

    # Scheduled jobs (reward distribution)
    cron_secret: Optional[SecretStr] = None

    # Administrative endpoints
    admin_secret: Optional[SecretStr] = None

    @model_validator(mode="after")
    def validate_distinct(self) -> "SecretsConfig":
        if self.cron_secret and self.admin_secret:
            if self.cron_secret.get_secret_value() == self.admin_secret.get_secret_value():
                raise ValueError("cron_secret and admin_secret must differ")
        return self


class RPCConfig(BaseSettings):
    """JSON-RPC timeouts."""

    model_config = SettingsConfigDict(env_prefix="RPC_")

    # Per request to a single endpoint (seconds)
    timeout_seconds: float = 5.0

    # Whole verification across all fallback endpoints (seconds)
    verification_timeout_seconds: float = 15.0

    @field_validator("timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v < 0.5:
            raise ValueError("timeout_seconds must be at least 0.5")
        if v > 30:
            raise ValueError("timeout_seconds must be at most 30")
        return v

    @model_validator(mode="after")
    def validate_budget(self) -> "RPCConfig":
        if self.verification_timeout_seconds < self.timeout_seconds:
            raise ValueError("verification_timeout_seconds must be >= timeout_seconds")
        return self


class NetworkSettings(BaseModel):
    """One logical network as written in config.toml."""

    chain_id: int
    rpc_urls: list[str]
    required_confirmations: int = 3

    @field_validator("rpc_urls")
    @classmethod
    def validate_rpc_urls(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("rpc_urls must list at least one endpoint")
        for url in v:
            if not url.startswith(("http://", "https://")):
                raise ValueError(f"Unsupported RPC URL scheme: {url}")
        return v

    @field_validator("required_confirmations")
    @classmethod
    def validate_confirmations(cls, v: int) -> int:
        if v < 0:
            raise ValueError("required_confirmations must be >= 0")
        return v


DEFAULT_NETWORKS: dict[str, NetworkSettings] = {
    "base-sepolia": NetworkSettings(
        chain_id=84532,
        rpc_urls=["https://sepolia.base.org"],
        required_confirmations=3,
    ),
    "sepolia": NetworkSettings(
        chain_id=11155111,
        rpc_urls=["https://rpc.sepolia.org"],
        required_confirmations=3,
    ),
}


class ClientConfig(BaseSettings):
    """Browser wallet-connector metadata served with the client manifest."""

    model_config = SettingsConfigDict(env_prefix="CLIENT_")

    app_name: str = "IStory DApp"
    wallet_connect_project_id: Optional[str] = None


class PaywallConfig(BaseSettings):
    """What a paywalled unlock must pay."""

    model_config = SettingsConfigDict(env_prefix="PAYWALL_")

    network: str = "base-sepolia"

    # Payee address; the paywall route is disabled until set
    recipient: Optional[str] = None

    # Smallest unit (wei or token base units)
    minimum_amount: int = 0

    # ERC-20 contract address, or None for the native asset
    token: Optional[str] = None

    @field_validator("minimum_amount")
    @classmethod
    def validate_minimum_amount(cls, v: int) -> int:
        if v < 0:
            raise ValueError("minimum_amount must be >= 0")
        return v


class APIConfig(BaseSettings):
    """API server configuration."""

    model_config = SettingsConfigDict(env_prefix="API_")

    listen_host: str = "0.0.0.0"
    listen_port: int = 8080


class DatabaseConfig(BaseSettings):
    """Database configuration."""

    model_config = SettingsConfigDict(env_prefix="DB_")

    path: Path = Path("/var/lib/istory-gate/claims.db")


class Config(BaseSettings):
    """Main configuration container."""

    secrets: SecretsConfig = Field(default_factory=SecretsConfig)
    rpc: RPCConfig = Field(default_factory=RPCConfig)
    networks: dict[str, NetworkSettings] = Field(default_factory=lambda: dict(DEFAULT_NETWORKS))
    client: ClientConfig = Field(default_factory=ClientConfig)
    paywall: PaywallConfig = Field(default_factory=PaywallConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    @classmethod
    def from_toml(cls, path: Path) -> "Config":
        """Load configuration from TOML file."""
        if not path.exists():
            return cls()

        with open(path, "rb") as f:
            data = tomllib.load(f)

        networks = data.get("networks")
        return cls(
            secrets=SecretsConfig(**data.get("secrets", {})),
            rpc=RPCConfig(**data.get("rpc", {})),
            networks=(
                {name: NetworkSettings(**values) for name, values in networks.items()}
                if networks
                else dict(DEFAULT_NETWORKS)
            ),
            client=ClientConfig(**data.get("client", {})),
            paywall=PaywallConfig(**data.get("paywall", {})),
            api=APIConfig(**data.get("api", {})),
            database=DatabaseConfig(**data.get("database", {})),
        )


# Default config path
DEFAULT_CONFIG_PATH = Path("/etc/istory-gate/config.toml")


def load_config(path: Path | None = None) -> Config:
    """Load configuration from file or defaults."""
    config_path = path or DEFAULT_CONFIG_PATH
    return Config.from_toml(config_path)
