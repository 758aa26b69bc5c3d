"""
Collaborator interfaces.

The kit never talks to a chain directly in modular mode: it drives an
account-abstraction client built by a caller-supplied factory. Delegated
mode uses the adapters in ``userop_kit.delegated`` which satisfy the
protocols declared here.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol

from .config import NetworkConfig
from .models import UserOp


@dataclass(frozen=True)
class ClientOptions:
    """Arguments handed to an SDK factory for one chain."""
    chain_id: int
    bundler_url: str
    chain: Optional[NetworkConfig] = None


class AccountClient(Protocol):
    """Account-abstraction SDK client for a single chain (modular mode)."""

    async def get_counterfactual_address(self) -> str: ...

    async def clear_pending_ops(self) -> None: ...

    async def add_op(self, op: Dict[str, Any]) -> None: ...

    async def estimate(
        self,
        *,
        paymaster_details: Optional[Dict[str, Any]] = None,
        gas_details: Optional[Dict[str, Any]] = None,
        call_gas_limit: Optional[int] = None,
    ) -> UserOp: ...

    async def total_gas_estimated(self, user_op: UserOp) -> int: ...

    async def send(self, user_op: UserOp) -> str: ...

    async def get_op_receipt(self, op_hash: str) -> Optional[str]: ...


SdkFactory = Callable[[Any, ClientOptions], AccountClient]


class DelegatedAccount(Protocol):
    """Smart-account handle for an EOA with an EIP-7702 delegation."""

    address: str

    def encode_calls(self, calls: List[Dict[str, Any]]) -> str: ...

    async def get_nonce(self) -> int: ...

    def get_stub_signature(self) -> str: ...

    def sign_user_operation_hash(self, user_op_hash: str) -> str: ...


class UserOperationBundler(Protocol):
    """Bundler submission client used in delegated mode."""

    async def estimate_user_operation_gas(
        self, account: DelegatedAccount, calls: List[Dict[str, Any]]
    ) -> Dict[str, int]: ...

    async def send_user_operation(
        self, account: DelegatedAccount, calls: List[Dict[str, Any]]
    ) -> str: ...

    async def get_user_operation(self, user_op_hash: str) -> Optional[Dict[str, Any]]: ...

    async def get_user_operation_receipt(self, user_op_hash: str) -> Optional[Dict[str, Any]]: ...

    async def close(self) -> None: ...
