"""
Transaction builder for ERC-4337 user operations.

A TransactionKit stages a transaction, names it, optionally groups named
transactions into batches, and estimates or sends them through the
per-chain clients managed by a KitProvider.

Usage:
    kit = TransactionKit(KitConfig(chain_id=1, provider=wallet, sdk_factory=factory))
    kit.transaction(to=recipient, chain_id=1, value="1000").name("pay")
    estimate = await kit.estimate()
    sent = await kit.send()
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .config import KitConfig, WalletMode, is_valid_chain_id
from .delegated.bundler_client import total_gas
from .delegated.entrypoint import is_delegation_designator
from .delegated.public_client import estimate_fees_per_gas, get_account_code
from .delegated.user_operation import UserOperation
from .errors import ConfigurationError, ErrorType, TransactionKitValidationError, parse_error_message
from .logging_utils import KitLogger, OperationType
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
    UserOp,
)
from .provider import KitProvider
from .utils import KitUtils, is_valid_address, parse_value, to_int_quantity

NO_TRANSACTION_TO_ESTIMATE = "No named transaction to estimate. Call name() first."
NO_TRANSACTION_TO_SEND = "No named transaction to send. Call name() first."
INVALID_VALUE_OR_DATA = "Invalid transaction: value and data must be defined."


class TransactionKit:
    """
    Chainable builder and executor for user operations.

    Staging methods (``transaction``, ``name``, ``batch``, ``add_to_batch``,
    ``update``, ``remove``) return the kit. Estimation and submission are
    coroutines returning result objects; validation and client failures are
    reported in those results rather than raised. Configuration problems and
    calls made in the wrong builder state raise.
    """

    utils = KitUtils

    # Delegated sends look up the submitted operation to report its cost
    user_op_lookup_attempts = 3
    user_op_lookup_delay_seconds = 4.0

    def __init__(self, config: KitConfig, *, kit_provider: Optional[KitProvider] = None):
        if kit_provider is None:
            kit_provider = KitProvider(config, kit_logger=KitLogger(debug_mode=config.debug_mode))
        self._provider = kit_provider
        self._kit_logger = kit_provider.kit_logger

        self._working: Optional[TransactionDraft] = None
        self._selected_transaction_name: Optional[str] = None
        self._selected_batch_name: Optional[str] = None
        self._named: Dict[str, TransactionDraft] = {}
        self._batches: Dict[str, List[TransactionDraft]] = {}

        self._is_estimating = False
        self._is_sending = False
        self._contains_estimating_error = False
        self._contains_sending_error = False
        self._wallet_addresses: Dict[int, str] = {}

        self._kit_logger.log("TransactionKit initialised", config.sanitized())

    # State

    @property
    def cursor(self) -> Cursor:
        if self._selected_batch_name is not None:
            return Cursor.BATCH_SELECTED
        if self._selected_transaction_name is not None:
            named = self._named.get(self._selected_transaction_name)
            if named is not None and named.batch_name:
                return Cursor.BATCHED
            return Cursor.NAMED
        if self._working is not None:
            return Cursor.STAGED
        return Cursor.INITIAL

    @property
    def _is_delegated(self) -> bool:
        return self._provider.get_wallet_mode() == WalletMode.DELEGATED

    def get_state(self) -> KitState:
        return KitState(
            selected_transaction_name=self._selected_transaction_name,
            selected_batch_name=self._selected_batch_name,
            working_transaction=self._working,
            named_transactions=self._named,
            batches=self._batches,
            is_estimating=self._is_estimating,
            is_sending=self._is_sending,
            contains_sending_error=self._contains_sending_error,
            contains_estimating_error=self._contains_estimating_error,
            wallet_addresses=self._wallet_addresses,
        ).snapshot()

    def reset(self) -> None:
        """Forget every draft, batch and cached client."""
        self._clear_cursor()
        self._named = {}
        self._batches = {}
        self._is_estimating = False
        self._is_sending = False
        self._contains_estimating_error = False
        self._contains_sending_error = False
        self._wallet_addresses = {}
        self._provider.clear_all_caches()
        self._kit_logger.log("reset(): all state cleared")

    def set_debug_mode(self, enabled: bool) -> None:
        self._kit_logger.set_debug_mode(enabled)

    def get_provider(self) -> Any:
        return self._provider.get_provider()

    def get_kit_provider(self) -> KitProvider:
        return self._provider

    async def get_client(self, chain_id: Optional[int] = None, force_new: bool = False) -> Any:
        return await self._provider.get_client(chain_id, force_new=force_new)

    def update_config(self, **changes: Any) -> KitConfig:
        """Reconfigure the provider; cached wallet addresses are dropped."""
        config = self._provider.update_config(**changes)
        self._wallet_addresses = {}
        return config

    async def aclose(self) -> None:
        await self._provider.aclose()

    def _clear_cursor(self) -> None:
        self._working = None
        self._selected_transaction_name = None
        self._selected_batch_name = None

    def _guard_not_batch_selected(self, method: str) -> None:
        if self._selected_batch_name is not None:
            raise TransactionKitValidationError(
                f"{method}(): batch '{self._selected_batch_name}' is selected. "
                "Only remove(), get_state() and reset() are available until the selection is cleared.",
                method=method,
            )

    @staticmethod
    def _require_name(value: Any, method: str, argument: str) -> str:
        if not isinstance(value, str) or not value.strip():
            raise TransactionKitValidationError(
                f"{method}(): {argument} is required and must be a non-empty string.",
                method=method,
            )
        return value

    def _require_provider(self) -> None:
        if self._provider.get_provider() is None:
            raise ConfigurationError("No wallet provider configured. Modular mode requires a wallet provider.")

    def _default_chain_id(self, draft: Optional[TransactionDraft] = None) -> int:
        if draft is not None and draft.chain_id is not None:
            return draft.chain_id
        return self._provider.get_chain_id()

    # Staging

    def transaction(
        self,
        *,
        to: str,
        chain_id: int,
        value: Any = "0",
        data: Optional[str] = "0x",
    ) -> "TransactionKit":
        """Stage a transaction, or edit the selected named transaction."""
        self._guard_not_batch_selected("transaction")

        if not is_valid_chain_id(chain_id):
            raise TransactionKitValidationError(
                "transaction(): chain_id is required and must be a positive integer.",
                method="transaction",
            )
        if not is_valid_address(to):
            raise TransactionKitValidationError(
                f"transaction(): 'to' must be a valid address, got {to!r}.",
                method="transaction",
            )
        if value is not None:
            try:
                value = str(parse_value(value))
            except ValueError as e:
                raise TransactionKitValidationError(f"transaction(): {e}", method="transaction") from None
        if data is not None and (not isinstance(data, str) or not data.startswith("0x")):
            raise TransactionKitValidationError(
                "transaction(): data must be a 0x-prefixed hex string.",
                method="transaction",
            )

        if self._selected_transaction_name is not None and self._working is not None:
            self._working = self._working.copy(chain_id=chain_id, to=to, value=value, data=data)
        else:
            self._working = TransactionDraft(chain_id=chain_id, to=to, value=value, data=data)

        self._kit_logger.log("transaction(): staged", self._working)
        return self

    def name(self, transaction_name: str) -> "TransactionKit":
        """
        Name the staged transaction, or select an existing named one.

        Selecting an existing name loads its stored draft into the working
        slot, discarding any unsaved staged edits.
        """
        self._guard_not_batch_selected("name")
        self._require_name(transaction_name, "name", "transaction_name")

        existing = self._named.get(transaction_name)
        if existing is not None:
            self._selected_transaction_name = transaction_name
            self._working = existing.copy()
            self._kit_logger.log(f"name(): selected '{transaction_name}'")
            return self

        if self._working is None:
            raise TransactionKitValidationError(
                "No transaction data to name. Call transaction() first.", method="name"
            )

        draft = self._working.copy(transaction_name=transaction_name, batch_name=None)
        self._named[transaction_name] = draft
        self._working = draft.copy()
        self._selected_transaction_name = transaction_name
        self._kit_logger.log(f"name(): named '{transaction_name}'", draft)
        return self

    def batch(self, batch_name: str) -> "TransactionKit":
        """Select an existing batch. Only remove(), get_state() and reset() apply to it."""
        self._require_name(batch_name, "batch", "batch_name")
        if batch_name not in self._batches:
            raise TransactionKitValidationError(
                f"Batch '{batch_name}' does not exist. Call add_to_batch() first.", method="batch"
            )
        self._working = None
        self._selected_transaction_name = None
        self._selected_batch_name = batch_name
        self._kit_logger.log(f"batch(): selected '{batch_name}'")
        return self

    def add_to_batch(self, batch_name: str) -> "TransactionKit":
        """Add the selected named transaction to ``batch_name``, creating it if needed."""
        self._guard_not_batch_selected("add_to_batch")
        self._require_name(batch_name, "add_to_batch", "batch_name")

        transaction_name = self._selected_transaction_name
        if transaction_name is None or self._working is None:
            raise TransactionKitValidationError(
                "No named transaction to add to batch. Call name() first.", method="add_to_batch"
            )

        stored = self._named.get(transaction_name)
        previous_batch = stored.batch_name if stored is not None else None
        if previous_batch and previous_batch != batch_name:
            self._remove_from_batch(previous_batch, transaction_name)

        draft = self._working.copy(transaction_name=transaction_name, batch_name=batch_name)
        self._put_in_batch(batch_name, draft)
        self._named[transaction_name] = draft.copy()
        self._working = draft.copy()
        self._kit_logger.log(f"add_to_batch(): '{transaction_name}' -> '{batch_name}'")
        return self

    def update(self) -> "TransactionKit":
        """Persist edits to the selected named transaction and its batch entry."""
        self._guard_not_batch_selected("update")
        transaction_name = self._selected_transaction_name
        if transaction_name is None or self._working is None:
            raise TransactionKitValidationError(
                "No named transaction to update. Call name() first.", method="update"
            )

        draft = self._working.copy(transaction_name=transaction_name)
        self._named[transaction_name] = draft
        if draft.batch_name:
            self._put_in_batch(draft.batch_name, draft)
        self._working = draft.copy()
        self._kit_logger.log(f"update(): updated '{transaction_name}'", draft)
        return self

    def remove(self) -> "TransactionKit":
        """Delete the selected batch (with its members) or the selected named transaction."""
        if self._selected_batch_name is not None:
            batch_name = self._selected_batch_name
            for member in self._batches.pop(batch_name, []):
                self._named.pop(member.transaction_name, None)
            self._kit_logger.log(f"remove(): removed batch '{batch_name}'")
        elif self._selected_transaction_name is not None:
            transaction_name = self._selected_transaction_name
            self._forget_transaction(transaction_name)
            self._kit_logger.log(f"remove(): removed transaction '{transaction_name}'")
        else:
            raise TransactionKitValidationError(
                "No transaction or batch selected to remove.", method="remove"
            )
        self._clear_cursor()
        return self

    def _put_in_batch(self, batch_name: str, draft: TransactionDraft) -> None:
        members = self._batches.setdefault(batch_name, [])
        for index, member in enumerate(members):
            if member.transaction_name == draft.transaction_name:
                members[index] = draft.copy()
                return
        members.append(draft.copy())

    def _remove_from_batch(self, batch_name: str, transaction_name: str) -> None:
        members = self._batches.get(batch_name)
        if members is None:
            return
        remaining = [m for m in members if m.transaction_name != transaction_name]
        if remaining:
            self._batches[batch_name] = remaining
        else:
            del self._batches[batch_name]

    def _forget_transaction(self, transaction_name: str) -> None:
        draft = self._named.pop(transaction_name, None)
        if draft is not None and draft.batch_name:
            self._remove_from_batch(draft.batch_name, transaction_name)

    def _forget_batch_members(self, batch_name: str, transaction_names: List[str]) -> None:
        for transaction_name in transaction_names:
            self._named.pop(transaction_name, None)
            self._remove_from_batch(batch_name, transaction_name)
        if self._selected_batch_name == batch_name and batch_name not in self._batches:
            self._clear_cursor()
        if (
            self._selected_transaction_name is not None
            and self._selected_transaction_name not in self._named
        ):
            self._clear_cursor()

    # Cost

    @staticmethod
    async def _compute_cost(client: Any, user_op: UserOp) -> int:
        total = await client.total_gas_estimated(user_op)
        return to_int_quantity(total) * to_int_quantity(user_op["maxFeePerGas"])

    # Single transaction

    async def estimate(
        self,
        *,
        paymaster_details: Optional[Dict[str, Any]] = None,
        gas_details: Optional[Dict[str, Any]] = None,
        call_gas_limit: Optional[int] = None,
    ) -> TransactionEstimateResult:
        """Estimate the selected named transaction."""
        if self._selected_batch_name is not None:
            raise TransactionKitValidationError(
                "Cannot estimate a batch with estimate(). Use estimate_batches() instead.",
                method="estimate",
            )
        if self._selected_transaction_name is None or self._working is None:
            self._kit_logger.warning(f"estimate(): {NO_TRANSACTION_TO_ESTIMATE}")
            return TransactionEstimateResult(
                error_type=ErrorType.VALIDATION_ERROR,
                error_message=NO_TRANSACTION_TO_ESTIMATE,
            )

        delegated = self._is_delegated
        if not delegated:
            self._require_provider()

        draft = self._working.copy()
        self._is_estimating = True
        self._contains_estimating_error = False
        try:
            if draft.value is None or draft.data is None:
                result = TransactionEstimateResult.for_draft(
                    draft,
                    error_type=ErrorType.VALIDATION_ERROR,
                    error_message=INVALID_VALUE_OR_DATA,
                )
            elif delegated:
                result = await self._estimate_delegated(
                    draft, paymaster_details, gas_details, call_gas_limit
                )
            else:
                result = await self._estimate_with_client(
                    draft, paymaster_details, gas_details, call_gas_limit
                )
        finally:
            self._is_estimating = False

        self._contains_estimating_error = not result.is_estimated_successfully
        return result

    async def _estimate_with_client(
        self,
        draft: TransactionDraft,
        paymaster_details: Optional[Dict[str, Any]],
        gas_details: Optional[Dict[str, Any]],
        call_gas_limit: Optional[int],
    ) -> TransactionEstimateResult:
        chain_id = self._default_chain_id(draft)
        async with self._kit_logger.operation_context(OperationType.ESTIMATE, chain_id) as ctx:
            try:
                client = await self._provider.get_client(chain_id, force_new=True)
                await client.clear_pending_ops()
                await client.add_op(draft.to_operation())
                user_op = await client.estimate(
                    paymaster_details=paymaster_details,
                    gas_details=gas_details,
                    call_gas_limit=call_gas_limit,
                )
                cost = await self._compute_cost(client, user_op)
            except Exception as e:
                message = parse_error_message(e, "Failed to estimate transaction")
                ctx.complete(success=False, error=message)
                self._kit_logger.error(f"estimate(): {message}", {"chain_id": chain_id})
                return TransactionEstimateResult.for_draft(
                    draft, error_type=ErrorType.ESTIMATION_ERROR, error_message=message
                )
            ctx.metadata["cost"] = cost

        return TransactionEstimateResult.for_draft(
            draft, cost=cost, user_op=user_op, is_estimated_successfully=True
        )

    async def send(
        self,
        *,
        paymaster_details: Optional[Dict[str, Any]] = None,
        user_op_overrides: Optional[Dict[str, Any]] = None,
    ) -> TransactionSendResult:
        """Estimate and submit the selected named transaction."""
        if self._selected_batch_name is not None:
            raise TransactionKitValidationError(
                "Cannot send a batch with send(). Use send_batches() instead.", method="send"
            )
        if self._selected_transaction_name is None or self._working is None:
            self._kit_logger.warning(f"send(): {NO_TRANSACTION_TO_SEND}")
            return TransactionSendResult(
                error_type=ErrorType.VALIDATION_ERROR,
                error_message=NO_TRANSACTION_TO_SEND,
            )

        delegated = self._is_delegated
        if not delegated:
            self._require_provider()

        transaction_name = self._selected_transaction_name
        draft = self._working.copy()
        self._is_sending = True
        self._contains_sending_error = False
        try:
            if draft.value is None or draft.data is None:
                result = TransactionSendResult.for_draft(
                    draft,
                    error_type=ErrorType.VALIDATION_ERROR,
                    error_message=INVALID_VALUE_OR_DATA,
                )
            elif delegated:
                result = await self._send_delegated(draft, paymaster_details, user_op_overrides)
            else:
                result = await self._send_with_client(draft, paymaster_details, user_op_overrides)
        finally:
            self._is_sending = False

        self._contains_sending_error = not result.is_sent_successfully
        if result.is_sent_successfully:
            self._forget_transaction(transaction_name)
            self._clear_cursor()
        return result

    async def _send_with_client(
        self,
        draft: TransactionDraft,
        paymaster_details: Optional[Dict[str, Any]],
        user_op_overrides: Optional[Dict[str, Any]],
    ) -> TransactionSendResult:
        chain_id = self._default_chain_id(draft)
        user_op: Optional[UserOp] = None
        cost: Optional[int] = None
        stage = "prepare"

        async with self._kit_logger.operation_context(OperationType.SEND, chain_id) as ctx:
            try:
                client = await self._provider.get_client(chain_id, force_new=True)
                await client.clear_pending_ops()
                await client.add_op(draft.to_operation())

                stage = "estimate"
                user_op = await client.estimate(paymaster_details=paymaster_details)
                if user_op_overrides:
                    user_op = {**user_op, **user_op_overrides}
                cost = await self._compute_cost(client, user_op)

                stage = "send"
                user_op_hash = await client.send(user_op)
            except Exception as e:
                message = parse_error_message(e, f"Failed to {stage} transaction")
                ctx.complete(success=False, error=message)
                self._kit_logger.error(f"send(): {stage} failed: {message}", {"chain_id": chain_id})
                estimated = stage == "send"
                return TransactionSendResult.for_draft(
                    draft,
                    cost=cost if estimated else None,
                    user_op=user_op if estimated else None,
                    error_type=ErrorType.ESTIMATION_ERROR if stage == "estimate" else ErrorType.SEND_ERROR,
                    error_message=message,
                    is_estimated_successfully=estimated,
                )
            ctx.metadata["user_op_hash"] = user_op_hash

        return TransactionSendResult.for_draft(
            draft,
            cost=cost,
            user_op=user_op,
            user_op_hash=user_op_hash,
            is_estimated_successfully=True,
            is_sent_successfully=True,
        )

    # Batches

    def _select_batch_names(self, only_batch_names: Optional[Sequence[str]], method: str) -> List[str]:
        if only_batch_names is None:
            return list(self._batches)
        if isinstance(only_batch_names, str) or not isinstance(only_batch_names, (list, tuple)):
            raise TransactionKitValidationError(
                f"{method}(): only_batch_names must be a list of batch names.", method=method
            )
        selected: List[str] = []
        for batch_name in only_batch_names:
            self._require_name(batch_name, method, "each batch name")
            if batch_name not in selected:
                selected.append(batch_name)
        return selected

    def _batch_members(self, batch_name: str) -> List[TransactionDraft]:
        return [member.copy() for member in self._batches.get(batch_name, [])]

    async def estimate_batches(
        self,
        *,
        only_batch_names: Optional[Sequence[str]] = None,
        paymaster_details: Optional[Dict[str, Any]] = None,
    ) -> BatchEstimateResult:
        """Estimate every batch (or ``only_batch_names``) concurrently, one user operation per chain in each batch."""
        if self._is_estimating:
            raise TransactionKitValidationError(
                "estimate_batches(): another estimation is already in progress.",
                method="estimate_batches",
            )
        batch_names = self._select_batch_names(only_batch_names, "estimate_batches")
        if not batch_names:
            return BatchEstimateResult(batches={}, is_estimated_successfully=True)
        if not self._is_delegated:
            self._require_provider()

        self._is_estimating = True
        self._contains_estimating_error = False
        try:
            async with self._kit_logger.operation_context(
                OperationType.ESTIMATE_BATCHES, None, batch_names=batch_names
            ):
                entries = await asyncio.gather(
                    *(self._estimate_batch(name, paymaster_details) for name in batch_names)
                )
        finally:
            self._is_estimating = False

        result = BatchEstimateResult(
            batches=dict(zip(batch_names, entries)),
            is_estimated_successfully=all(entry.is_estimated_successfully for entry in entries),
        )
        self._contains_estimating_error = not result.is_estimated_successfully
        return result

    def _group_by_chain(self, members: List[TransactionDraft]) -> Dict[int, List[TransactionDraft]]:
        groups: Dict[int, List[TransactionDraft]] = {}
        for member in members:
            groups.setdefault(self._default_chain_id(member), []).append(member)
        return groups

    @staticmethod
    def _groups_error_message(groups: List[Any], action: str) -> str:
        if len(groups) == 1:
            return groups[0].error_message
        return f"One or more chain groups failed to {action}"

    @staticmethod
    def _sum_costs(groups: List[Any]) -> Optional[int]:
        if any(group.total_cost is None for group in groups):
            return None
        return sum(group.total_cost for group in groups)

    async def _estimate_batch(
        self, batch_name: str, paymaster_details: Optional[Dict[str, Any]]
    ) -> BatchEstimateEntry:
        members = self._batch_members(batch_name)
        if not members:
            return BatchEstimateEntry(error_message=f"Batch '{batch_name}' does not exist or is empty")

        failure = self._validate_batch(members, paymaster_details=paymaster_details)
        if failure is not None:
            error_type, message = failure
            return self._failed_estimate_entry(members, error_type, message)

        chain_groups: Dict[int, ChainGroupEstimate] = {}
        for chain_id, group in self._group_by_chain(members).items():
            chain_groups[chain_id] = await self._estimate_chain_group(
                batch_name, chain_id, group, paymaster_details
            )

        groups = list(chain_groups.values())
        estimated = all(group.is_estimated_successfully for group in groups)
        return BatchEstimateEntry(
            transactions=[tx for group in groups for tx in group.transactions],
            chain_groups=chain_groups,
            total_cost=self._sum_costs(groups),
            error_message=None if estimated else self._groups_error_message(groups, "estimate"),
            is_estimated_successfully=estimated,
        )

    async def _estimate_chain_group(
        self,
        batch_name: str,
        chain_id: int,
        group: List[TransactionDraft],
        paymaster_details: Optional[Dict[str, Any]],
    ) -> ChainGroupEstimate:
        try:
            if self._is_delegated:
                designation_error = await self._designation_error(chain_id)
                if designation_error:
                    return self._failed_estimate_group(
                        group, chain_id, ErrorType.VALIDATION_ERROR, designation_error
                    )
                cost, user_op = await self._estimate_calls_delegated(
                    chain_id, [m.to_operation() for m in group]
                )
            else:
                client = await self._provider.get_client(chain_id, force_new=True)
                await client.clear_pending_ops()
                await asyncio.gather(*(client.add_op(m.to_operation()) for m in group))
                user_op = await client.estimate(paymaster_details=paymaster_details)
                cost = await self._compute_cost(client, user_op)
        except Exception as e:
            message = parse_error_message(e, f"Failed to estimate batch '{batch_name}'")
            self._kit_logger.error(
                f"estimate_batches(): batch '{batch_name}' failed on chain {chain_id}: {message}"
            )
            return self._failed_estimate_group(group, chain_id, ErrorType.ESTIMATION_ERROR, message)

        return ChainGroupEstimate(
            transactions=[
                TransactionEstimateResult.for_draft(
                    member,
                    chain_id=chain_id,
                    cost=cost,
                    user_op=dict(user_op),
                    is_estimated_successfully=True,
                )
                for member in group
            ],
            total_cost=cost,
            is_estimated_successfully=True,
        )

    @staticmethod
    def _failed_estimate_group(
        group: List[TransactionDraft], chain_id: int, error_type: ErrorType, message: str
    ) -> ChainGroupEstimate:
        return ChainGroupEstimate(
            transactions=[
                TransactionEstimateResult.for_draft(
                    member, chain_id=chain_id, error_type=error_type, error_message=message
                )
                for member in group
            ],
            error_message=message,
        )

    @staticmethod
    def _failed_estimate_entry(
        members: List[TransactionDraft], error_type: ErrorType, message: str
    ) -> BatchEstimateEntry:
        return BatchEstimateEntry(
            transactions=[
                TransactionEstimateResult.for_draft(member, error_type=error_type, error_message=message)
                for member in members
            ],
            error_message=message,
        )

    def _validate_batch(
        self, members: List[TransactionDraft], **unsupported_in_delegated: Any
    ) -> Optional[Tuple[ErrorType, str]]:
        if any(member.value is None or member.data is None for member in members):
            return ErrorType.VALIDATION_ERROR, INVALID_VALUE_OR_DATA
        if self._is_delegated:
            message = self._unsupported_options_message(**unsupported_in_delegated)
            if message:
                return ErrorType.VALIDATION_ERROR, message
        return None

    async def send_batches(
        self,
        *,
        only_batch_names: Optional[Sequence[str]] = None,
        paymaster_details: Optional[Dict[str, Any]] = None,
    ) -> BatchSendResult:
        """Send every batch (or ``only_batch_names``) concurrently, one user operation per chain in each batch."""
        if self._is_sending:
            raise TransactionKitValidationError(
                "send_batches(): another send is already in progress.", method="send_batches"
            )
        batch_names = self._select_batch_names(only_batch_names, "send_batches")
        if not batch_names:
            return BatchSendResult(batches={}, is_estimated_successfully=True, is_sent_successfully=True)
        if not self._is_delegated:
            self._require_provider()

        self._is_sending = True
        self._contains_sending_error = False
        try:
            async with self._kit_logger.operation_context(
                OperationType.SEND_BATCHES, None, batch_names=batch_names
            ):
                entries = await asyncio.gather(
                    *(self._send_batch(name, paymaster_details) for name in batch_names)
                )
        finally:
            self._is_sending = False

        result = BatchSendResult(
            batches=dict(zip(batch_names, entries)),
            is_estimated_successfully=all(entry.is_estimated_successfully for entry in entries),
            is_sent_successfully=all(entry.is_sent_successfully for entry in entries),
        )
        self._contains_sending_error = not result.is_sent_successfully
        return result

    async def _send_batch(
        self, batch_name: str, paymaster_details: Optional[Dict[str, Any]]
    ) -> BatchSendEntry:
        members = self._batch_members(batch_name)
        if not members:
            return BatchSendEntry(error_message=f"Batch '{batch_name}' does not exist or is empty")

        failure = self._validate_batch(members, paymaster_details=paymaster_details)
        if failure is not None:
            error_type, message = failure
            return self._failed_send_entry(members, error_type, message)

        chain_groups: Dict[int, ChainGroupSend] = {}
        sent_names: List[str] = []
        for chain_id, group in self._group_by_chain(members).items():
            outcome = await self._send_chain_group(batch_name, chain_id, group, paymaster_details)
            chain_groups[chain_id] = outcome
            if outcome.is_sent_successfully:
                sent_names.extend(member.transaction_name for member in group)

        # members of failed chain groups stay in the batch
        if sent_names:
            self._forget_batch_members(batch_name, sent_names)

        groups = list(chain_groups.values())
        sent = all(group.is_sent_successfully for group in groups)
        return BatchSendEntry(
            transactions=[tx for group in groups for tx in group.transactions],
            chain_groups=chain_groups,
            total_cost=self._sum_costs(groups),
            user_op_hash=groups[0].user_op_hash if len(groups) == 1 else None,
            error_message=None if sent else self._groups_error_message(groups, "send"),
            is_estimated_successfully=all(group.is_estimated_successfully for group in groups),
            is_sent_successfully=sent,
        )

    async def _send_chain_group(
        self,
        batch_name: str,
        chain_id: int,
        group: List[TransactionDraft],
        paymaster_details: Optional[Dict[str, Any]],
    ) -> ChainGroupSend:
        operations = [m.to_operation() for m in group]
        user_op: Optional[UserOp] = None
        cost: Optional[int] = None
        stage = "prepare"
        try:
            if self._is_delegated:
                designation_error = await self._designation_error(chain_id)
                if designation_error:
                    return self._failed_send_group(
                        group, chain_id, ErrorType.VALIDATION_ERROR, designation_error
                    )
                user_op_hash, cost, user_op = await self._submit_calls_delegated(chain_id, operations)
            else:
                client = await self._provider.get_client(chain_id, force_new=True)
                await client.clear_pending_ops()
                await asyncio.gather(*(client.add_op(op) for op in operations))

                stage = "estimate"
                user_op = await client.estimate(paymaster_details=paymaster_details)
                cost = await self._compute_cost(client, user_op)

                stage = "send"
                user_op_hash = await client.send(user_op)
        except Exception as e:
            message = parse_error_message(e, f"Failed to {stage} batch '{batch_name}'")
            self._kit_logger.error(
                f"send_batches(): batch '{batch_name}' {stage} failed on chain {chain_id}: {message}"
            )
            return self._failed_send_group(
                group,
                chain_id,
                ErrorType.ESTIMATION_ERROR if stage == "estimate" else ErrorType.SEND_ERROR,
                message,
                cost=cost if stage == "send" else None,
                user_op=user_op if stage == "send" else None,
                is_estimated_successfully=stage == "send",
            )

        return ChainGroupSend(
            transactions=[
                TransactionSendResult.for_draft(
                    member,
                    chain_id=chain_id,
                    cost=cost,
                    user_op=None if user_op is None else dict(user_op),
                    user_op_hash=user_op_hash,
                    is_estimated_successfully=True,
                    is_sent_successfully=True,
                )
                for member in group
            ],
            total_cost=cost,
            user_op_hash=user_op_hash,
            is_estimated_successfully=True,
            is_sent_successfully=True,
        )

    @staticmethod
    def _failed_send_group(
        group: List[TransactionDraft],
        chain_id: int,
        error_type: ErrorType,
        message: str,
        cost: Optional[int] = None,
        user_op: Optional[UserOp] = None,
        is_estimated_successfully: bool = False,
    ) -> ChainGroupSend:
        return ChainGroupSend(
            transactions=[
                TransactionSendResult.for_draft(
                    member,
                    chain_id=chain_id,
                    cost=cost,
                    user_op=None if user_op is None else dict(user_op),
                    error_type=error_type,
                    error_message=message,
                    is_estimated_successfully=is_estimated_successfully,
                )
                for member in group
            ],
            total_cost=cost,
            error_message=message,
            is_estimated_successfully=is_estimated_successfully,
        )

    @staticmethod
    def _failed_send_entry(
        members: List[TransactionDraft], error_type: ErrorType, message: str
    ) -> BatchSendEntry:
        return BatchSendEntry(
            transactions=[
                TransactionSendResult.for_draft(member, error_type=error_type, error_message=message)
                for member in members
            ],
            error_message=message,
        )

    # Wallet address and receipts

    async def get_wallet_address(self, chain_id: Optional[int] = None) -> Optional[str]:
        """Account address for a chain, memoized. Failures are logged and return None."""
        resolved = self._provider.get_chain_id() if chain_id is None else chain_id
        cached = self._wallet_addresses.get(resolved)
        if cached:
            return cached

        try:
            if self._is_delegated:
                account = await self._provider.get_delegated_account(resolved)
                address = account.address
            else:
                client = await self._provider.get_client(resolved)
                address = await client.get_counterfactual_address()
        except Exception as e:
            self._kit_logger.error(
                f"get_wallet_address(): failed to get wallet address for chain {resolved}: {e}"
            )
            return None

        if address:
            self._wallet_addresses[resolved] = address
        return address

    async def get_transaction_hash(
        self,
        user_op_hash: str,
        chain_id: int,
        timeout_seconds: float = 60.0,
        retry_interval_seconds: float = 2.0,
    ) -> Optional[str]:
        """
        Poll for the transaction hash that included ``user_op_hash``.

        Returns None if no receipt is available before the timeout. Errors
        while polling are logged and polling continues.
        """
        deadline = time.monotonic() + timeout_seconds
        transaction_hash: Optional[str] = None

        async with self._kit_logger.operation_context(OperationType.RECEIPT_POLL, chain_id):
            while transaction_hash is None and time.monotonic() < deadline:
                await asyncio.sleep(retry_interval_seconds)
                try:
                    transaction_hash = await self._fetch_transaction_hash(user_op_hash, chain_id)
                except Exception as e:
                    self._kit_logger.warning(
                        f"get_transaction_hash(): error fetching receipt for {user_op_hash}: {e}"
                    )

        if transaction_hash is None:
            self._kit_logger.warning(
                f"get_transaction_hash(): no transaction hash for {user_op_hash} "
                f"within {timeout_seconds}s"
            )
        return transaction_hash

    async def _fetch_transaction_hash(self, user_op_hash: str, chain_id: int) -> Optional[str]:
        if self._is_delegated:
            bundler = await self._provider.get_bundler_client(chain_id)
            receipt = await bundler.get_user_operation_receipt(user_op_hash)
            if not receipt:
                return None
            return (receipt.get("receipt") or {}).get("transactionHash")
        client = await self._provider.get_client(chain_id)
        return await client.get_op_receipt(user_op_hash)

    # Delegated mode

    async def is_delegate_smart_account_to_eoa(self, chain_id: Optional[int] = None) -> bool:
        """True when the EOA's code is an EIP-7702 delegation designator."""
        if not self._is_delegated:
            raise ConfigurationError(
                "is_delegate_smart_account_to_eoa() is only available in delegated wallet mode."
            )
        resolved = self._provider.get_chain_id() if chain_id is None else chain_id
        account = await self._provider.get_delegated_account(resolved)
        public_client = await self._provider.get_public_client(resolved)
        code = await get_account_code(public_client, account.address)
        designated = is_delegation_designator(code)
        self._kit_logger.log(
            "is_delegate_smart_account_to_eoa()",
            {"chain_id": resolved, "address": account.address, "designated": designated},
        )
        return designated

    async def _designation_error(self, chain_id: int) -> Optional[str]:
        if await self.is_delegate_smart_account_to_eoa(chain_id):
            return None
        return f"EOA is not delegated to a smart account on chain {chain_id}."

    @staticmethod
    def _unsupported_options_message(**options: Any) -> Optional[str]:
        unsupported = [name for name, value in options.items() if value is not None]
        if not unsupported:
            return None
        return f"{', '.join(unsupported)} not supported in delegated wallet mode."

    async def _estimate_calls_delegated(
        self, chain_id: int, calls: List[Dict[str, Any]]
    ) -> Tuple[int, UserOp]:
        account = await self._provider.get_delegated_account(chain_id)
        bundler = await self._provider.get_bundler_client(chain_id)
        public_client = await self._provider.get_public_client(chain_id)

        gas = await bundler.estimate_user_operation_gas(account, calls)
        max_fee, priority_fee = await estimate_fees_per_gas(public_client)
        user_op = {
            **gas,
            "sender": account.address,
            "maxFeePerGas": max_fee,
            "maxPriorityFeePerGas": priority_fee,
        }
        return total_gas(gas) * max_fee, user_op

    async def _submit_calls_delegated(
        self, chain_id: int, calls: List[Dict[str, Any]]
    ) -> Tuple[str, Optional[int], Optional[UserOp]]:
        account = await self._provider.get_delegated_account(chain_id)
        bundler = await self._provider.get_bundler_client(chain_id)
        user_op_hash = await bundler.send_user_operation(account, calls)
        cost, user_op = await self._lookup_user_operation(bundler, user_op_hash)
        return user_op_hash, cost, user_op

    async def _lookup_user_operation(
        self, bundler: Any, user_op_hash: str
    ) -> Tuple[Optional[int], Optional[UserOp]]:
        for attempt in range(1, self.user_op_lookup_attempts + 1):
            try:
                details = await bundler.get_user_operation(user_op_hash)
                if details:
                    user_op = UserOperation.from_rpc(details.get("userOperation", details))
                    return user_op.total_gas * user_op.max_fee_per_gas, user_op.to_dict()
            except Exception as e:
                self._kit_logger.warning(
                    f"Attempt {attempt} to look up user operation {user_op_hash} failed: {e}"
                )
            if attempt < self.user_op_lookup_attempts:
                await asyncio.sleep(self.user_op_lookup_delay_seconds)

        self._kit_logger.warning(f"Sent user operation {user_op_hash} but could not look up its cost")
        return None, None

    async def _estimate_delegated(
        self,
        draft: TransactionDraft,
        paymaster_details: Optional[Dict[str, Any]],
        gas_details: Optional[Dict[str, Any]],
        call_gas_limit: Optional[int],
    ) -> TransactionEstimateResult:
        message = self._unsupported_options_message(
            paymaster_details=paymaster_details,
            gas_details=gas_details,
            call_gas_limit=call_gas_limit,
        )
        if message:
            return TransactionEstimateResult.for_draft(
                draft, error_type=ErrorType.VALIDATION_ERROR, error_message=message
            )

        chain_id = self._default_chain_id(draft)
        async with self._kit_logger.operation_context(OperationType.ESTIMATE, chain_id) as ctx:
            try:
                designation_error = await self._designation_error(chain_id)
                if designation_error:
                    ctx.complete(success=False, error=designation_error)
                    return TransactionEstimateResult.for_draft(
                        draft, error_type=ErrorType.VALIDATION_ERROR, error_message=designation_error
                    )
                cost, user_op = await self._estimate_calls_delegated(chain_id, [draft.to_operation()])
            except Exception as e:
                message = parse_error_message(e, "Failed to estimate transaction")
                ctx.complete(success=False, error=message)
                self._kit_logger.error(f"estimate(): {message}", {"chain_id": chain_id})
                return TransactionEstimateResult.for_draft(
                    draft, error_type=ErrorType.ESTIMATION_ERROR, error_message=message
                )

        return TransactionEstimateResult.for_draft(
            draft, cost=cost, user_op=user_op, is_estimated_successfully=True
        )

    async def _send_delegated(
        self,
        draft: TransactionDraft,
        paymaster_details: Optional[Dict[str, Any]],
        user_op_overrides: Optional[Dict[str, Any]],
    ) -> TransactionSendResult:
        message = self._unsupported_options_message(
            paymaster_details=paymaster_details,
            user_op_overrides=user_op_overrides,
        )
        if message:
            return TransactionSendResult.for_draft(
                draft, error_type=ErrorType.VALIDATION_ERROR, error_message=message
            )

        chain_id = self._default_chain_id(draft)
        async with self._kit_logger.operation_context(OperationType.SEND, chain_id) as ctx:
            try:
                designation_error = await self._designation_error(chain_id)
                if designation_error:
                    ctx.complete(success=False, error=designation_error)
                    return TransactionSendResult.for_draft(
                        draft, error_type=ErrorType.VALIDATION_ERROR, error_message=designation_error
                    )
                user_op_hash, cost, user_op = await self._submit_calls_delegated(
                    chain_id, [draft.to_operation()]
                )
            except Exception as e:
                message = parse_error_message(e, "Failed to send transaction")
                ctx.complete(success=False, error=message)
                self._kit_logger.error(f"send(): {message}", {"chain_id": chain_id})
                return TransactionSendResult.for_draft(
                    draft, error_type=ErrorType.SEND_ERROR, error_message=message
                )

        return TransactionSendResult.for_draft(
            draft,
            cost=cost,
            user_op=user_op,
            user_op_hash=user_op_hash,
            is_estimated_successfully=True,
            is_sent_successfully=True,
        )
