"""
Configuration management for userop-kit.

Provides centralized configuration for:
- The static network table (bundler + RPC endpoints per chain ID)
- Environment variable overrides for endpoints and kit settings
- Kit configuration and wallet-mode validation
"""
from __future__ import annotations

import dataclasses
import os
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "USEROP_KIT_"
DEFAULT_BUNDLER_URL_TEMPLATE = "https://rpc.etherspot.io/v2/{chain_id}"

SENSITIVE_CONFIG_KEYS = frozenset({
    "private_key",
    "external_account",
    "bundler_api_key",
    "bundler_api_key_format",
})


class WalletMode(str, Enum):
    """How user operations are authorised."""
    MODULAR = "modular"
    DELEGATED = "delegated"

    @classmethod
    def parse(cls, value: Any) -> "WalletMode":
        if isinstance(value, WalletMode):
            return value
        normalized = str(value).strip().lower()
        if normalized in ("delegatedeoa", "delegated_eoa"):
            return cls.DELEGATED
        try:
            return cls(normalized)
        except ValueError:
            raise ConfigurationError(
                f"Invalid wallet mode: {value}. Expected 'modular' or 'delegated'."
            ) from None


@dataclass
class NetworkConfig:
    """Endpoints for a supported network."""
    chain_id: int
    name: str
    display_name: str
    bundler_url: str
    rpc_url: str
    is_testnet: bool = False
    native_token: str = "ETH"
    explorer_url: str = ""


def _get_env(key: str, default: Any = None, prefix: str = ENV_PREFIX) -> Any:
    """Get environment variable with prefix."""
    return os.getenv(f"{prefix}{key}", default)


def _get_env_bool(key: str, default: bool = False, prefix: str = ENV_PREFIX) -> bool:
    value = _get_env(key, prefix=prefix)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _build_network_config(
    chain_id: int,
    name: str,
    display_name: str,
    default_rpc: str,
    native_token: str,
    explorer_url: str,
    is_testnet: bool = False,
) -> NetworkConfig:
    """Build a NetworkConfig with environment variable overrides."""
    bundler_url = _get_env(f"{name.upper()}_BUNDLER_URL") or DEFAULT_BUNDLER_URL_TEMPLATE.format(
        chain_id=chain_id
    )
    rpc_url = _get_env(f"{name.upper()}_RPC_URL") or default_rpc

    return NetworkConfig(
        chain_id=chain_id,
        name=name,
        display_name=display_name,
        bundler_url=bundler_url,
        rpc_url=rpc_url,
        is_testnet=is_testnet,
        native_token=native_token,
        explorer_url=explorer_url,
    )


def build_default_networks() -> Dict[int, NetworkConfig]:
    """Build the network table keyed by chain ID."""
    networks = [
        _build_network_config(
            chain_id=1,
            name="ethereum",
            display_name="Ethereum",
            default_rpc="https://eth.llamarpc.com",
            native_token="ETH",
            explorer_url="https://etherscan.io",
        ),
        _build_network_config(
            chain_id=11155111,
            name="ethereum_sepolia",
            display_name="Ethereum Sepolia",
            default_rpc="https://ethereum-sepolia-rpc.publicnode.com",
            native_token="ETH",
            explorer_url="https://sepolia.etherscan.io",
            is_testnet=True,
        ),
        _build_network_config(
            chain_id=8453,
            name="base",
            display_name="Base",
            default_rpc="https://mainnet.base.org",
            native_token="ETH",
            explorer_url="https://basescan.org",
        ),
        _build_network_config(
            chain_id=84532,
            name="base_sepolia",
            display_name="Base Sepolia",
            default_rpc="https://sepolia.base.org",
            native_token="ETH",
            explorer_url="https://sepolia.basescan.org",
            is_testnet=True,
        ),
        _build_network_config(
            chain_id=137,
            name="polygon",
            display_name="Polygon",
            default_rpc="https://polygon-rpc.com",
            native_token="POL",
            explorer_url="https://polygonscan.com",
        ),
        _build_network_config(
            chain_id=80002,
            name="polygon_amoy",
            display_name="Polygon Amoy",
            default_rpc="https://rpc-amoy.polygon.technology",
            native_token="POL",
            explorer_url="https://amoy.polygonscan.com",
            is_testnet=True,
        ),
        _build_network_config(
            chain_id=42161,
            name="arbitrum",
            display_name="Arbitrum One",
            default_rpc="https://arb1.arbitrum.io/rpc",
            native_token="ETH",
            explorer_url="https://arbiscan.io",
        ),
        _build_network_config(
            chain_id=421614,
            name="arbitrum_sepolia",
            display_name="Arbitrum Sepolia",
            default_rpc="https://sepolia-rollup.arbitrum.io/rpc",
            native_token="ETH",
            explorer_url="https://sepolia.arbiscan.io",
            is_testnet=True,
        ),
        _build_network_config(
            chain_id=10,
            name="optimism",
            display_name="Optimism",
            default_rpc="https://mainnet.optimism.io",
            native_token="ETH",
            explorer_url="https://optimistic.etherscan.io",
        ),
        _build_network_config(
            chain_id=11155420,
            name="optimism_sepolia",
            display_name="Optimism Sepolia",
            default_rpc="https://sepolia.optimism.io",
            native_token="ETH",
            explorer_url="https://sepolia-optimism.etherscan.io",
            is_testnet=True,
        ),
        _build_network_config(
            chain_id=100,
            name="gnosis",
            display_name="Gnosis",
            default_rpc="https://rpc.gnosischain.com",
            native_token="XDAI",
            explorer_url="https://gnosisscan.io",
        ),
    ]
    return {network.chain_id: network for network in networks}


# Global network table (lazily built)
_global_networks: Optional[Dict[int, NetworkConfig]] = None


def get_networks() -> Dict[int, NetworkConfig]:
    """Get the global network table."""
    global _global_networks
    if _global_networks is None:
        _global_networks = build_default_networks()
    return _global_networks


def set_networks(networks: Optional[Dict[int, NetworkConfig]]) -> None:
    """Replace the global network table. Passing None rebuilds it on next access."""
    global _global_networks
    _global_networks = networks


def get_network_config(chain_id: int) -> Optional[NetworkConfig]:
    return get_networks().get(chain_id)


def get_chain_from_id(chain_id: int) -> NetworkConfig:
    """Look up a supported network, raising ValueError for unknown chain IDs."""
    network = get_network_config(chain_id)
    if network is None:
        supported = ", ".join(str(cid) for cid in supported_chain_ids())
        raise ValueError(
            f"Unsupported chain ID: {chain_id}. Supported chain IDs: {supported}"
        )
    return network


NETWORK_NAME_TO_CHAIN_ID: Dict[str, int] = {
    "ethereum": 1,
    "ethereum_sepolia": 11155111,
    "base": 8453,
    "base_sepolia": 84532,
    "polygon": 137,
    "polygon_amoy": 80002,
    "arbitrum": 42161,
    "arbitrum_sepolia": 421614,
    "optimism": 10,
    "optimism_sepolia": 11155420,
    "gnosis": 100,
}

CHAIN_ID_TO_NETWORK_NAME: Dict[int, str] = {
    chain_id: name for name, chain_id in NETWORK_NAME_TO_CHAIN_ID.items()
}


def is_valid_chain_id(chain_id: Any) -> bool:
    return isinstance(chain_id, int) and not isinstance(chain_id, bool) and chain_id > 0


@dataclass
class KitConfig:
    """
    Configuration for a TransactionKit instance.

    Modular mode needs a wallet provider and an ``sdk_factory`` that builds
    account-abstraction clients. Delegated mode needs exactly one of
    ``private_key`` or ``external_account``.
    """
    chain_id: int
    provider: Any = None
    wallet_mode: WalletMode = WalletMode.MODULAR

    # Bundler endpoint
    bundler_api_key: Optional[str] = None
    bundler_url: Optional[str] = None
    bundler_api_key_format: Optional[str] = None
    bundler_timeout_seconds: float = 30.0

    # Delegated mode signer
    private_key: Optional[str] = None
    external_account: Any = None

    # Modular mode client factory: (provider, ClientOptions) -> AccountClient
    sdk_factory: Optional[Callable[..., Any]] = None

    debug_mode: bool = False

    def __post_init__(self) -> None:
        self.wallet_mode = WalletMode.parse(self.wallet_mode)

    @property
    def is_delegated(self) -> bool:
        return self.wallet_mode == WalletMode.DELEGATED

    def validate(self) -> None:
        """Raise ConfigurationError when the configuration cannot be used."""
        if not is_valid_chain_id(self.chain_id):
            raise ConfigurationError(
                f"Invalid chain ID: {self.chain_id!r}. Chain ID must be a positive integer."
            )

        if self.wallet_mode == WalletMode.MODULAR:
            if self.provider is None:
                raise ConfigurationError("No wallet provider configured for modular mode.")
            if self.sdk_factory is None:
                raise ConfigurationError("No SDK factory configured for modular mode.")
            return

        has_key = bool(self.private_key)
        has_account = self.external_account is not None
        if has_key and has_account:
            raise ConfigurationError(
                "Delegated mode accepts either private_key or external_account, not both."
            )
        if not has_key and not has_account:
            raise ConfigurationError(
                "Delegated mode requires either private_key or external_account."
            )

    def copy(self, **changes: Any) -> "KitConfig":
        return dataclasses.replace(self, **changes)

    def sanitized(self) -> Dict[str, Any]:
        """Config as a dict with secrets redacted."""
        data: Dict[str, Any] = {}
        for config_field in dataclasses.fields(self):
            value = getattr(self, config_field.name)
            if config_field.name in SENSITIVE_CONFIG_KEYS and value is not None:
                value = "[REDACTED]"
            elif isinstance(value, Enum):
                value = value.value
            elif config_field.name in ("provider", "sdk_factory") and value is not None:
                value = type(value).__name__
            data[config_field.name] = value
        return data

    @classmethod
    def from_env(cls, **overrides: Any) -> "KitConfig":
        """
        Build a KitConfig from USEROP_KIT_* environment variables.

        Keyword overrides win over the environment.
        """
        values: Dict[str, Any] = {}

        chain_id = _get_env("CHAIN_ID")
        if chain_id is not None:
            try:
                values["chain_id"] = int(chain_id)
            except ValueError:
                raise ConfigurationError(f"Invalid USEROP_KIT_CHAIN_ID: {chain_id}") from None

        for env_key, attr in (
            ("BUNDLER_API_KEY", "bundler_api_key"),
            ("BUNDLER_URL", "bundler_url"),
            ("BUNDLER_API_KEY_FORMAT", "bundler_api_key_format"),
            ("WALLET_MODE", "wallet_mode"),
            ("PRIVATE_KEY", "private_key"),
        ):
            value = _get_env(env_key)
            if value:
                values[attr] = value

        values["debug_mode"] = _get_env_bool("DEBUG")
        values.update(overrides)

        if "chain_id" not in values:
            raise ConfigurationError("chain_id is required (set USEROP_KIT_CHAIN_ID).")
        return cls(**values)


def supported_chain_ids() -> List[int]:
    return sorted(get_networks())
