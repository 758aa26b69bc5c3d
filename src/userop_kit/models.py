"""
Data model for the transaction kit: drafts, results and state snapshots.
"""
from __future__ import annotations

import copy
import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from .errors import ErrorType

# User operations are kept in their wire shape (camelCase ERC-4337 fields).
UserOp = Dict[str, Any]


class Cursor(str, Enum):
    """Position of the builder in its staging lifecycle."""
    INITIAL = "initial"
    STAGED = "staged"
    NAMED = "named"
    BATCHED = "batched"
    BATCH_SELECTED = "batch_selected"


@dataclass
class TransactionDraft:
    """A transaction being staged, named or batched."""
    chain_id: Optional[int] = None
    to: Optional[str] = None
    value: Union[int, str, None] = "0"
    data: Optional[str] = "0x"
    transaction_name: Optional[str] = None
    batch_name: Optional[str] = None

    def copy(self, **changes: Any) -> "TransactionDraft":
        return dataclasses.replace(self, **changes)

    def to_operation(self) -> Dict[str, Any]:
        """Operation payload handed to the account client."""
        return {"to": self.to, "value": str(self.value), "data": self.data}


@dataclass
class TransactionEstimateResult:
    to: Optional[str] = None
    value: Optional[str] = None
    data: Optional[str] = None
    chain_id: Optional[int] = None
    cost: Optional[int] = None
    user_op: Optional[UserOp] = None
    error_message: Optional[str] = None
    error_type: Optional[ErrorType] = None
    is_estimated_successfully: bool = False

    @classmethod
    def for_draft(cls, draft: Optional[TransactionDraft], **values: Any) -> "TransactionEstimateResult":
        if draft is not None:
            values.setdefault("to", draft.to)
            values.setdefault("value", None if draft.value is None else str(draft.value))
            values.setdefault("data", draft.data)
            values.setdefault("chain_id", draft.chain_id)
        return cls(**values)


@dataclass
class TransactionSendResult(TransactionEstimateResult):
    user_op_hash: Optional[str] = None
    is_sent_successfully: bool = False


@dataclass
class ChainGroupEstimate:
    """One user operation's worth of a batch: the members sharing a chain."""
    transactions: List[TransactionEstimateResult] = field(default_factory=list)
    total_cost: Optional[int] = None
    error_message: Optional[str] = None
    is_estimated_successfully: bool = False


@dataclass
class ChainGroupSend:
    transactions: List[TransactionSendResult] = field(default_factory=list)
    total_cost: Optional[int] = None
    user_op_hash: Optional[str] = None
    error_message: Optional[str] = None
    is_estimated_successfully: bool = False
    is_sent_successfully: bool = False


@dataclass
class BatchEstimateEntry:
    transactions: List[TransactionEstimateResult] = field(default_factory=list)
    chain_groups: Dict[int, ChainGroupEstimate] = field(default_factory=dict)
    total_cost: Optional[int] = None
    error_message: Optional[str] = None
    is_estimated_successfully: bool = False


@dataclass
class BatchSendEntry:
    """
    Send outcome of one batch.

    ``user_op_hash`` is set only when the batch spans a single chain; per-chain
    hashes live in ``chain_groups``.
    """
    transactions: List[TransactionSendResult] = field(default_factory=list)
    chain_groups: Dict[int, ChainGroupSend] = field(default_factory=dict)
    total_cost: Optional[int] = None
    user_op_hash: Optional[str] = None
    error_message: Optional[str] = None
    is_estimated_successfully: bool = False
    is_sent_successfully: bool = False


@dataclass
class BatchEstimateResult:
    batches: Dict[str, BatchEstimateEntry] = field(default_factory=dict)
    is_estimated_successfully: bool = True


@dataclass
class BatchSendResult:
    batches: Dict[str, BatchSendEntry] = field(default_factory=dict)
    is_estimated_successfully: bool = True
    is_sent_successfully: bool = True


@dataclass
class KitState:
    """Point-in-time copy of the builder state."""
    selected_transaction_name: Optional[str] = None
    selected_batch_name: Optional[str] = None
    working_transaction: Optional[TransactionDraft] = None
    named_transactions: Dict[str, TransactionDraft] = field(default_factory=dict)
    batches: Dict[str, List[TransactionDraft]] = field(default_factory=dict)
    is_estimating: bool = False
    is_sending: bool = False
    contains_sending_error: bool = False
    contains_estimating_error: bool = False
    wallet_addresses: Dict[int, str] = field(default_factory=dict)

    def snapshot(self) -> "KitState":
        return copy.deepcopy(self)
