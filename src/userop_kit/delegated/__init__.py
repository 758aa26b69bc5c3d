"""
Delegated (EIP-7702) wallet mode adapters.

An EOA whose code designates a 7702 account implementation acts as its own
ERC-4337 sender. These adapters provide the public RPC client, the account
handle and the bundler client the kit drives in delegated mode.
"""

from .account import DelegatedEoaAccount, build_delegated_account, owner_account_from_key
from .bundler_client import BundlerClient, build_bundler_client, total_gas
from .entrypoint import ENTRYPOINT_V08, get_entrypoint_v08, is_delegation_designator
from .public_client import build_public_client, estimate_fees_per_gas, get_account_code
from .user_operation import UserOperation, encode_execute, encode_execute_batch

__all__ = [
    "DelegatedEoaAccount",
    "build_delegated_account",
    "owner_account_from_key",
    "BundlerClient",
    "build_bundler_client",
    "total_gas",
    "ENTRYPOINT_V08",
    "get_entrypoint_v08",
    "is_delegation_designator",
    "build_public_client",
    "estimate_fees_per_gas",
    "get_account_code",
    "UserOperation",
    "encode_execute",
    "encode_execute_batch",
]
