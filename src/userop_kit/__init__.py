"""
userop-kit: build, batch, estimate and send ERC-4337 user operations.

Exports:
- TransactionKit: the chainable transaction builder
- KitProvider / ClientFactory: per-chain client lifecycle management
- KitConfig / WalletMode: configuration
- Result and state dataclasses
"""

from .bundler import BundlerConfig, resolve_bundler_url
from .config import (
    CHAIN_ID_TO_NETWORK_NAME,
    NETWORK_NAME_TO_CHAIN_ID,
    KitConfig,
    NetworkConfig,
    WalletMode,
    get_chain_from_id,
    get_network_config,
)
from .errors import (
    ClientInitializationError,
    ConfigurationError,
    ErrorType,
    TransactionKitError,
    TransactionKitValidationError,
)
from .interfaces import AccountClient, ClientOptions, SdkFactory
from .kit import TransactionKit
from .models import (
    BatchEstimateEntry,
    BatchEstimateResult,
    BatchSendEntry,
    BatchSendResult,
    ChainGroupEstimate,
    ChainGroupSend,
    Cursor,
    KitState,
    TransactionDraft,
    TransactionEstimateResult,
    TransactionSendResult,
)
from .provider import ClientFactory, DelegatedClientBuilders, KitProvider
from .utils import KitUtils

__version__ = "0.1.0"

__all__ = [
    "TransactionKit",
    "KitProvider",
    "ClientFactory",
    "DelegatedClientBuilders",
    "KitConfig",
    "NetworkConfig",
    "WalletMode",
    "get_chain_from_id",
    "get_network_config",
    "NETWORK_NAME_TO_CHAIN_ID",
    "CHAIN_ID_TO_NETWORK_NAME",
    "BundlerConfig",
    "resolve_bundler_url",
    "AccountClient",
    "ClientOptions",
    "SdkFactory",
    "ErrorType",
    "TransactionKitError",
    "ConfigurationError",
    "TransactionKitValidationError",
    "ClientInitializationError",
    "Cursor",
    "TransactionDraft",
    "TransactionEstimateResult",
    "TransactionSendResult",
    "BatchEstimateEntry",
    "BatchEstimateResult",
    "BatchSendEntry",
    "BatchSendResult",
    "ChainGroupEstimate",
    "ChainGroupSend",
    "KitState",
    "KitUtils",
]
