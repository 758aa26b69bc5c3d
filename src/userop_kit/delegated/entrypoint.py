"""EntryPoint addresses and EIP-7702 constants for delegated mode."""

from __future__ import annotations

from typing import Any, Dict, List

ENTRYPOINT_V08 = "0x4337084D9E255Ff0702461CF8895CE9E3b5Ff108"

# Account code of an EOA with an active EIP-7702 designation: 0xef0100 || delegate
DELEGATION_DESIGNATOR_PREFIX = "ef0100"

ENTRYPOINT_V08_BY_CHAIN: Dict[int, str] = {
    1: ENTRYPOINT_V08,
    11155111: ENTRYPOINT_V08,
    8453: ENTRYPOINT_V08,
    84532: ENTRYPOINT_V08,
    137: ENTRYPOINT_V08,
    80002: ENTRYPOINT_V08,
    42161: ENTRYPOINT_V08,
    421614: ENTRYPOINT_V08,
    10: ENTRYPOINT_V08,
    11155420: ENTRYPOINT_V08,
    100: ENTRYPOINT_V08,
}

ENTRYPOINT_GET_NONCE_ABI: List[Dict[str, Any]] = [
    {
        "inputs": [
            {"name": "sender", "type": "address"},
            {"name": "key", "type": "uint192"},
        ],
        "name": "getNonce",
        "outputs": [{"name": "nonce", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    }
]


def get_entrypoint_v08(chain_id: int) -> str:
    return ENTRYPOINT_V08_BY_CHAIN.get(chain_id, ENTRYPOINT_V08)


def is_delegation_designator(code: Any) -> bool:
    """True when account code is an EIP-7702 delegation designator."""
    if not code:
        return False
    if isinstance(code, (bytes, bytearray)):
        text = bytes(code).hex()
    else:
        text = str(code)
    text = text.lower()
    if text.startswith("0x"):
        text = text[2:]
    return text.startswith(DELEGATION_DESIGNATOR_PREFIX)
