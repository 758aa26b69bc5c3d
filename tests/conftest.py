"""
Pytest configuration for userop-kit tests.
"""
from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add package source to path
package_src = Path(__file__).parent.parent / "src"
if str(package_src) not in sys.path:
    sys.path.insert(0, str(package_src))

from userop_kit.config import KitConfig, set_networks
from userop_kit.kit import TransactionKit

SAMPLE_WALLET_ADDRESS = "0x00000000000000000000000000000000000000aa"
SAMPLE_USER_OP_HASH = "0x" + "b" * 64


def make_account_client(
    address: str = SAMPLE_WALLET_ADDRESS,
    total_gas: int = 100_000,
    max_fee_per_gas: int = 2_000_000_000,
    user_op_hash: str = SAMPLE_USER_OP_HASH,
    address_side_effect: Optional[List[Any]] = None,
    estimate_error: Optional[Exception] = None,
    send_error: Optional[Exception] = None,
    receipt: Optional[str] = None,
) -> MagicMock:
    """Mock account-abstraction SDK client."""
    client = MagicMock()
    if address_side_effect is not None:
        client.get_counterfactual_address = AsyncMock(side_effect=address_side_effect)
    else:
        client.get_counterfactual_address = AsyncMock(return_value=address)
    client.clear_pending_ops = AsyncMock(return_value=None)
    client.add_op = AsyncMock(return_value=None)
    if estimate_error is not None:
        client.estimate = AsyncMock(side_effect=estimate_error)
    else:
        client.estimate = AsyncMock(return_value={
            "sender": address,
            "callGasLimit": 60_000,
            "maxFeePerGas": max_fee_per_gas,
            "maxPriorityFeePerGas": 1_000_000_000,
        })
    client.total_gas_estimated = AsyncMock(return_value=total_gas)
    if send_error is not None:
        client.send = AsyncMock(side_effect=send_error)
    else:
        client.send = AsyncMock(return_value=user_op_hash)
    client.get_op_receipt = AsyncMock(return_value=receipt)
    return client


class RecordingSdkFactory:
    """SDK factory that records every client it builds."""

    def __init__(self, **client_kwargs: Any):
        self.client_kwargs: Dict[str, Any] = client_kwargs
        self.calls: List[Any] = []
        self.clients: List[MagicMock] = []

    def __call__(self, provider: Any, options: Any) -> MagicMock:
        client = make_account_client(**self.client_kwargs)
        self.calls.append((provider, options))
        self.clients.append(client)
        return client

    @property
    def last_client(self) -> MagicMock:
        return self.clients[-1]


@pytest.fixture(scope="session")
def anyio_backend():
    """Use asyncio for async tests."""
    return "asyncio"


@pytest.fixture(autouse=True)
def reset_network_table():
    """Rebuild the global network table around each test."""
    set_networks(None)
    yield
    set_networks(None)


@pytest.fixture
def sample_eth_address():
    """Valid Ethereum address for testing."""
    return "0x1234567890123456789012345678901234567890"


@pytest.fixture
def sample_wallet_address():
    return SAMPLE_WALLET_ADDRESS


@pytest.fixture
def sample_user_op_hash():
    return SAMPLE_USER_OP_HASH


@pytest.fixture
def sample_tx_hash():
    """Valid transaction hash for testing."""
    return "0x" + "a" * 64


@pytest.fixture
def wallet_provider():
    """Opaque wallet provider object."""
    return object()


@pytest.fixture
def sdk_factory():
    return RecordingSdkFactory()


@pytest.fixture
def client_builder():
    """Build a standalone mock account client."""
    return make_account_client


@pytest.fixture
def kit_config(wallet_provider, sdk_factory):
    return KitConfig(chain_id=1, provider=wallet_provider, sdk_factory=sdk_factory)


@pytest.fixture
def kit(kit_config):
    return TransactionKit(kit_config)
