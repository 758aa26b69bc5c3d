"""
Smart-account handle for an EOA delegated to a 7702 account implementation.

The EOA itself is the ERC-4337 sender: calls are encoded for the delegate's
``execute``/``executeBatch`` entry points and user operation hashes are
signed directly by the owner key.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from eth_account import Account
from web3 import Web3

from .entrypoint import ENTRYPOINT_GET_NONCE_ABI, ENTRYPOINT_V08
from .user_operation import encode_execute, encode_execute_batch


# 65-byte placeholder accepted by bundlers during gas estimation
STUB_SIGNATURE = (
    "0xfffffffffffffffffffffffffffffff0000000000000000000000000000000007"
    "aaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa1c"
)


def owner_account_from_key(private_key: str) -> Any:
    """eth-account LocalAccount for a hex private key."""
    return Account.from_key(private_key)


class DelegatedEoaAccount:
    """Account handle bound to one chain's public client."""

    def __init__(
        self,
        owner: Any,
        public_client: Any,
        chain_id: int,
        entry_point: str = ENTRYPOINT_V08,
    ):
        self.owner = owner
        self.public_client = public_client
        self.chain_id = chain_id
        self.entry_point = entry_point
        self.address = Web3.to_checksum_address(owner.address)

    def encode_calls(self, calls: List[Dict[str, Any]]) -> str:
        if not calls:
            raise ValueError("At least one call is required")
        if len(calls) == 1:
            call = calls[0]
            return encode_execute(call["to"], int(call.get("value") or 0), call.get("data"))
        return encode_execute_batch(calls)

    async def get_nonce(self, key: int = 0) -> int:
        contract = self.public_client.eth.contract(
            address=Web3.to_checksum_address(self.entry_point),
            abi=ENTRYPOINT_GET_NONCE_ABI,
        )
        return int(await contract.functions.getNonce(self.address, key).call())

    def get_stub_signature(self) -> str:
        return STUB_SIGNATURE

    def sign_user_operation_hash(self, user_op_hash: str) -> str:
        signed = self.owner.unsafe_sign_hash(user_op_hash)
        signature = signed.signature
        if isinstance(signature, (bytes, bytearray)):
            hex_signature = bytes(signature).hex()
            return hex_signature if hex_signature.startswith("0x") else "0x" + hex_signature
        return str(signature)

    def __repr__(self) -> str:
        return f"DelegatedEoaAccount(address={self.address!r}, chain_id={self.chain_id})"


def build_delegated_account(
    owner: Any,
    public_client: Any,
    chain_id: int,
    entry_point: Optional[str] = None,
) -> DelegatedEoaAccount:
    return DelegatedEoaAccount(
        owner=owner,
        public_client=public_client,
        chain_id=chain_id,
        entry_point=entry_point or ENTRYPOINT_V08,
    )
