"""UserOperation primitives for delegated (EntryPoint v0.8) accounts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from eth_abi import encode
from web3 import Web3

from ..utils import to_int_quantity

EXECUTE_SELECTOR = Web3.keccak(text="execute(address,uint256,bytes)")[:4]
EXECUTE_BATCH_SELECTOR = Web3.keccak(text="executeBatch((address,uint256,bytes)[])")[:4]

GAS_FIELDS = ("callGasLimit", "verificationGasLimit", "preVerificationGas")


def _to_hex_int(value: int) -> str:
    return hex(max(0, int(value)))


def _to_bytes(data: Optional[str]) -> bytes:
    if not data or data == "0x":
        return b""
    return bytes.fromhex(data[2:] if data.startswith("0x") else data)


def encode_execute(to: str, value: int, data: Optional[str]) -> str:
    """Encode execute(address,uint256,bytes) calldata."""
    encoded = encode(["address", "uint256", "bytes"], [to, int(value), _to_bytes(data)])
    return "0x" + (EXECUTE_SELECTOR + encoded).hex()


def encode_execute_batch(calls: List[Dict[str, Any]]) -> str:
    """Encode executeBatch((address,uint256,bytes)[]) calldata."""
    encoded = encode(
        ["(address,uint256,bytes)[]"],
        [[(call["to"], int(call.get("value") or 0), _to_bytes(call.get("data"))) for call in calls]],
    )
    return "0x" + (EXECUTE_BATCH_SELECTOR + encoded).hex()


@dataclass
class UserOperation:
    sender: str
    nonce: int
    call_data: str
    call_gas_limit: int = 0
    verification_gas_limit: int = 0
    pre_verification_gas: int = 0
    max_fee_per_gas: int = 0
    max_priority_fee_per_gas: int = 0
    signature: str = "0x"

    @property
    def total_gas(self) -> int:
        return self.call_gas_limit + self.verification_gas_limit + self.pre_verification_gas

    def to_rpc(self) -> Dict[str, Any]:
        return {
            "sender": self.sender,
            "nonce": _to_hex_int(self.nonce),
            "callData": self.call_data,
            "callGasLimit": _to_hex_int(self.call_gas_limit),
            "verificationGasLimit": _to_hex_int(self.verification_gas_limit),
            "preVerificationGas": _to_hex_int(self.pre_verification_gas),
            "maxFeePerGas": _to_hex_int(self.max_fee_per_gas),
            "maxPriorityFeePerGas": _to_hex_int(self.max_priority_fee_per_gas),
            "signature": self.signature,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Same fields as ``to_rpc`` with integer quantities."""
        return {
            "sender": self.sender,
            "nonce": self.nonce,
            "callData": self.call_data,
            "callGasLimit": self.call_gas_limit,
            "verificationGasLimit": self.verification_gas_limit,
            "preVerificationGas": self.pre_verification_gas,
            "maxFeePerGas": self.max_fee_per_gas,
            "maxPriorityFeePerGas": self.max_priority_fee_per_gas,
            "signature": self.signature,
        }

    @classmethod
    def from_rpc(cls, payload: Dict[str, Any]) -> "UserOperation":
        def quantity(key: str) -> int:
            value = payload.get(key)
            return 0 if value is None else to_int_quantity(value)

        return cls(
            sender=payload["sender"],
            nonce=quantity("nonce"),
            call_data=payload.get("callData", "0x"),
            call_gas_limit=quantity("callGasLimit"),
            verification_gas_limit=quantity("verificationGasLimit"),
            pre_verification_gas=quantity("preVerificationGas"),
            max_fee_per_gas=quantity("maxFeePerGas"),
            max_priority_fee_per_gas=quantity("maxPriorityFeePerGas"),
            signature=payload.get("signature", "0x"),
        )
