"""Network RPC client helpers for delegated mode."""

from __future__ import annotations

from typing import Any, Tuple

from web3 import AsyncHTTPProvider, AsyncWeb3

from ..config import NetworkConfig

# maxFeePerGas = baseFee * 1.2 + priority fee
BASE_FEE_MULTIPLIER_NUMERATOR = 12
BASE_FEE_MULTIPLIER_DENOMINATOR = 10


def build_public_client(network: NetworkConfig, timeout_seconds: float = 30.0) -> AsyncWeb3:
    return AsyncWeb3(
        AsyncHTTPProvider(network.rpc_url, request_kwargs={"timeout": timeout_seconds})
    )


async def estimate_fees_per_gas(public_client: Any) -> Tuple[int, int]:
    """Return ``(max_fee_per_gas, max_priority_fee_per_gas)`` in wei."""
    block = await public_client.eth.get_block("latest")
    base_fee = int(block.get("baseFeePerGas") or 0)
    priority_fee = int(await public_client.eth.max_priority_fee)
    max_fee = (
        base_fee * BASE_FEE_MULTIPLIER_NUMERATOR // BASE_FEE_MULTIPLIER_DENOMINATOR
        + priority_fee
    )
    return max_fee, priority_fee


async def get_account_code(public_client: Any, address: str) -> bytes:
    code = await public_client.eth.get_code(AsyncWeb3.to_checksum_address(address))
    return bytes(code or b"")
