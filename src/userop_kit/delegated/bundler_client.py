"""Minimal ERC-4337 bundler client for delegated accounts."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from ..bundler import BundlerConfig
from ..utils import to_int_quantity
from .account import DelegatedEoaAccount
from .public_client import estimate_fees_per_gas
from .user_operation import GAS_FIELDS, UserOperation


class BundlerClient:
    def __init__(self, config: BundlerConfig, public_client: Any, entry_point: str):
        self._config = config
        self._public_client = public_client
        self._entry_point = entry_point
        self._client = httpx.AsyncClient(timeout=config.timeout_seconds)

    @property
    def url(self) -> str:
        return self._config.url

    async def _rpc(self, method: str, params: List[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        response = await self._client.post(self._config.url, json=payload)
        response.raise_for_status()
        data = response.json()
        if data.get("error"):
            raise RuntimeError(f"Bundler RPC error ({method}): {data['error']}")
        return data.get("result")

    async def _draft_user_operation(
        self, account: DelegatedEoaAccount, calls: List[Dict[str, Any]]
    ) -> UserOperation:
        max_fee, priority_fee = await estimate_fees_per_gas(self._public_client)
        return UserOperation(
            sender=account.address,
            nonce=await account.get_nonce(),
            call_data=account.encode_calls(calls),
            max_fee_per_gas=max_fee,
            max_priority_fee_per_gas=priority_fee,
            signature=account.get_stub_signature(),
        )

    async def _estimate_gas(self, user_op: UserOperation) -> Dict[str, int]:
        result = await self._rpc("eth_estimateUserOperationGas", [user_op.to_rpc(), self._entry_point])
        if not isinstance(result, dict):
            raise RuntimeError("Bundler returned invalid gas estimate payload")
        return {key: to_int_quantity(value) for key, value in result.items() if value is not None}

    async def estimate_user_operation_gas(
        self, account: DelegatedEoaAccount, calls: List[Dict[str, Any]]
    ) -> Dict[str, int]:
        user_op = await self._draft_user_operation(account, calls)
        return await self._estimate_gas(user_op)

    async def prepare_user_operation(
        self, account: DelegatedEoaAccount, calls: List[Dict[str, Any]]
    ) -> UserOperation:
        """Draft a user operation and fill in its gas limits."""
        user_op = await self._draft_user_operation(account, calls)
        gas = await self._estimate_gas(user_op)
        user_op.call_gas_limit = gas.get("callGasLimit", 0)
        user_op.verification_gas_limit = gas.get("verificationGasLimit", 0)
        user_op.pre_verification_gas = gas.get("preVerificationGas", 0)
        return user_op

    async def get_user_operation_hash(self, user_op: UserOperation) -> str:
        result = await self._rpc("eth_getUserOperationHash", [user_op.to_rpc(), self._entry_point])
        if not isinstance(result, str):
            raise RuntimeError("Bundler returned invalid user op hash")
        return result

    async def send_user_operation(
        self, account: DelegatedEoaAccount, calls: List[Dict[str, Any]]
    ) -> str:
        user_op = await self.prepare_user_operation(account, calls)
        user_op_hash = await self.get_user_operation_hash(user_op)
        user_op.signature = account.sign_user_operation_hash(user_op_hash)
        result = await self._rpc("eth_sendUserOperation", [user_op.to_rpc(), self._entry_point])
        if not isinstance(result, str):
            raise RuntimeError("Bundler returned invalid user op hash")
        return result

    async def get_user_operation(self, user_op_hash: str) -> Optional[Dict[str, Any]]:
        result = await self._rpc("eth_getUserOperationByHash", [user_op_hash])
        if result is None:
            return None
        if not isinstance(result, dict):
            raise RuntimeError("Bundler returned invalid user operation payload")
        return result

    async def get_user_operation_receipt(self, user_op_hash: str) -> Optional[Dict[str, Any]]:
        result = await self._rpc("eth_getUserOperationReceipt", [user_op_hash])
        if result is None:
            return None
        if not isinstance(result, dict):
            raise RuntimeError("Bundler returned invalid receipt payload")
        return result

    async def close(self) -> None:
        await self._client.aclose()


def total_gas(gas: Dict[str, int]) -> int:
    """callGasLimit + verificationGasLimit + preVerificationGas."""
    return sum(int(gas.get(key, 0)) for key in GAS_FIELDS)


def build_bundler_client(config: BundlerConfig, public_client: Any, entry_point: str) -> BundlerClient:
    return BundlerClient(config, public_client, entry_point)
