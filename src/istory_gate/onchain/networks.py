"""Process-wide registry of the EVM networks the gate knows about.

There is one authoritative entry per logical network. The server
(verify-only) and browser (sign-and-submit) views are derived from the same
entries, so they always agree on chain ids and RPC endpoints.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Iterator, Mapping

from ..errors import ConfigurationError

if TYPE_CHECKING:
    from ..config import ClientConfig, Config, NetworkSettings

logger = logging.getLogger(__name__)


class Capability(str, Enum):
    """What a consumer of a network entry may do with it."""

    VERIFY_ONLY = "verify-only"
    SIGN_AND_SUBMIT = "sign-and-submit"


@dataclass(frozen=True)
class NetworkConfig:
    """A configured chain."""

    logical_name: str
    chain_id: int
    rpc_urls: tuple[str, ...]
    required_confirmations: int
    capability: Capability = Capability.VERIFY_ONLY

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.logical_name,
            "chain_id": self.chain_id,
            "rpc_urls": list(self.rpc_urls),
            "required_confirmations": self.required_confirmations,
        }


class RegistryView:
    """Read-only, capability-tagged view over a registry."""

    def __init__(self, networks: Mapping[str, NetworkConfig], capability: Capability):
        self.capability = capability
        self._networks = MappingProxyType(
            {name: replace(net, capability=capability) for name, net in networks.items()}
        )

    def resolve(self, logical_name: str) -> NetworkConfig | None:
        """Return the network or None when it is not configured."""
        return self._networks.get(logical_name)

    def require(self, logical_name: str) -> NetworkConfig:
        network = self.resolve(logical_name)
        if network is None:
            raise ConfigurationError(f"Network not configured: {logical_name}")
        return network

    def __iter__(self) -> Iterator[NetworkConfig]:
        return iter(self._networks.values())

    def __len__(self) -> int:
        return len(self._networks)

    def __contains__(self, logical_name: object) -> bool:
        return logical_name in self._networks


class ChainConfigRegistry:
    """Immutable mapping from logical network name to NetworkConfig.

    Built once at startup and passed to every component that needs it.
    """

    def __init__(
        self,
        networks: list[NetworkConfig],
        app_name: str = "IStory DApp",
        wallet_connect_project_id: str | None = None,
    ):
        """Initialize the registry.

        Args:
            networks: Network entries; chain ids must be unique.
            app_name: Application name shown by browser wallet connectors.
            wallet_connect_project_id: WalletConnect project id for the browser.

        Raises:
            ConfigurationError: On duplicate names or chain ids, or invalid entries.
        """
        by_name: dict[str, NetworkConfig] = {}
        by_chain: dict[int, NetworkConfig] = {}

        for network in networks:
            if network.logical_name in by_name:
                raise ConfigurationError(f"Duplicate network name: {network.logical_name}")
            if network.chain_id in by_chain:
                raise ConfigurationError(
                    f"Chain id {network.chain_id} used by both "
                    f"{by_chain[network.chain_id].logical_name} and {network.logical_name}"
                )
            if not network.rpc_urls:
                raise ConfigurationError(f"Network {network.logical_name} has no RPC endpoints")
            if network.required_confirmations < 0:
                raise ConfigurationError(
                    f"Network {network.logical_name} has negative required_confirmations"
                )
            by_name[network.logical_name] = network
            by_chain[network.chain_id] = network

        self._networks = MappingProxyType(by_name)
        self._by_chain = MappingProxyType(by_chain)
        self.app_name = app_name
        self.wallet_connect_project_id = wallet_connect_project_id

        self._server = RegistryView(self._networks, Capability.VERIFY_ONLY)
        self._client = RegistryView(self._networks, Capability.SIGN_AND_SUBMIT)

    @classmethod
    def from_settings(
        cls,
        networks: Mapping[str, "NetworkSettings"],
        client: "ClientConfig | None" = None,
    ) -> "ChainConfigRegistry":
        entries = [
            NetworkConfig(
                logical_name=name,
                chain_id=settings.chain_id,
                rpc_urls=tuple(settings.rpc_urls),
                required_confirmations=settings.required_confirmations,
            )
            for name, settings in networks.items()
        ]

        if client is None:
            return cls(entries)

        if not client.wallet_connect_project_id:
            logger.warning(
                "wallet_connect_project_id is not set; WalletConnect will not work in the browser"
            )
        return cls(
            entries,
            app_name=client.app_name,
            wallet_connect_project_id=client.wallet_connect_project_id,
        )

    @classmethod
    def from_config(cls, config: "Config") -> "ChainConfigRegistry":
        """Build the registry from the application configuration."""
        return cls.from_settings(config.networks, config.client)

    def resolve(self, logical_name: str) -> NetworkConfig | None:
        return self._networks.get(logical_name)

    def by_chain_id(self, chain_id: int) -> NetworkConfig | None:
        return self._by_chain.get(chain_id)

    def for_server(self) -> RegistryView:
        """View used for verification. Carries no signing capability."""
        return self._server

    def for_client(self) -> RegistryView:
        """View handed to the browser half of the application."""
        return self._client

    def client_manifest(self) -> dict[str, Any]:
        """Network document served to the browser wallet connector."""
        return {
            "app_name": self.app_name,
            "wallet_connect_project_id": self.wallet_connect_project_id,
            "capability": self._client.capability.value,
            "chains": [network.to_dict() for network in self._client],
        }

    def __iter__(self) -> Iterator[NetworkConfig]:
        return iter(self._networks.values())

    def __len__(self) -> int:
        return len(self._networks)
