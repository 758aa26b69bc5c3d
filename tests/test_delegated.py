"""
Tests for delegated (EIP-7702) wallet mode: adapters and kit flows.
"""
from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from web3 import Web3

from userop_kit.bundler import BundlerConfig
from userop_kit.config import KitConfig
from userop_kit.delegated.account import STUB_SIGNATURE, DelegatedEoaAccount, owner_account_from_key
from userop_kit.delegated.bundler_client import BundlerClient, total_gas
from userop_kit.delegated.entrypoint import ENTRYPOINT_V08, get_entrypoint_v08, is_delegation_designator
from userop_kit.delegated.public_client import estimate_fees_per_gas
from userop_kit.delegated.user_operation import (
    EXECUTE_BATCH_SELECTOR,
    UserOperation,
    encode_execute,
    encode_execute_batch,
)
from userop_kit.errors import ConfigurationError, ErrorType
from userop_kit.kit import TransactionKit
from userop_kit.provider import DelegatedClientBuilders, KitProvider

PRIVATE_KEY = "0x" + "11" * 32
EOA = "0xfB6916095ca1df60bB79Ce92cE3Ea74c37c5d359"
RECIPIENT = "0x1234567890123456789012345678901234567890"
DESIGNATED_CODE = bytes.fromhex("ef0100" + "63" * 20)


class _FakeEth:
    def __init__(self, base_fee, priority_fee):
        self._base_fee = base_fee
        self._priority_fee = priority_fee

    async def get_block(self, block_identifier):
        return {"baseFeePerGas": self._base_fee}

    @property
    def max_priority_fee(self):
        async def fee():
            return self._priority_fee
        return fee()


class _FakePublicClient:
    def __init__(self, base_fee=100, priority_fee=7):
        self.eth = _FakeEth(base_fee, priority_fee)


class TestEntryPoint:
    """Tests for EntryPoint constants."""

    def test_v08_address(self):
        """Should use the v0.8 EntryPoint everywhere."""
        assert get_entrypoint_v08(8453) == ENTRYPOINT_V08
        assert get_entrypoint_v08(999999) == ENTRYPOINT_V08

    @pytest.mark.parametrize("code,expected", [
        (DESIGNATED_CODE, True),
        ("0xef0100" + "ab" * 20, True),
        (b"", False),
        ("0x", False),
        ("0x6080604052", False),
        (None, False),
    ])
    def test_is_delegation_designator(self, code, expected):
        """Should detect the 0xef0100 designation prefix."""
        assert is_delegation_designator(code) is expected


class TestUserOperation:
    """Tests for delegated user operation encoding."""

    def test_encode_execute(self, sample_eth_address):
        """Should encode execute(address,uint256,bytes)."""
        call_data = encode_execute(sample_eth_address, 5, "0xabcd")
        assert call_data.startswith("0xb61d27f6")

    def test_encode_execute_batch(self, sample_eth_address):
        """Should encode executeBatch with the batch selector."""
        call_data = encode_execute_batch([
            {"to": sample_eth_address, "value": "1", "data": "0x"},
            {"to": sample_eth_address, "value": 0, "data": "0x1234"},
        ])
        assert call_data.startswith("0x" + EXECUTE_BATCH_SELECTOR.hex().removeprefix("0x"))

    def test_rpc_round_trip(self):
        """Should hex-encode quantities for RPC and parse them back."""
        user_op = UserOperation(
            sender=EOA,
            nonce=3,
            call_data="0x",
            call_gas_limit=100,
            verification_gas_limit=200,
            pre_verification_gas=50,
            max_fee_per_gas=10,
        )
        payload = user_op.to_rpc()
        assert payload["callGasLimit"] == "0x64"
        assert UserOperation.from_rpc(payload) == user_op
        assert user_op.total_gas == 350


class TestPublicClientHelpers:
    """Tests for fee estimation."""

    @pytest.mark.asyncio
    async def test_estimate_fees_per_gas(self):
        """Should add a 20% base fee buffer to the priority fee."""
        max_fee, priority_fee = await estimate_fees_per_gas(_FakePublicClient(base_fee=100, priority_fee=7))
        assert (max_fee, priority_fee) == (127, 7)


class TestDelegatedAccount:
    """Tests for DelegatedEoaAccount."""

    def test_address_and_calls(self):
        """Should use the owner address and encode single or batch calls."""
        account = DelegatedEoaAccount(owner_account_from_key(PRIVATE_KEY), MagicMock(), 1)
        assert account.address == Web3.to_checksum_address(account.owner.address)
        single = account.encode_calls([{"to": RECIPIENT, "value": "0", "data": "0x"}])
        batch = account.encode_calls([{"to": RECIPIENT, "value": "0", "data": "0x"}] * 2)
        assert single.startswith("0xb61d27f6")
        assert batch != single
        with pytest.raises(ValueError):
            account.encode_calls([])

    @pytest.mark.asyncio
    async def test_get_nonce(self):
        """Should read the nonce from the EntryPoint."""
        public_client = MagicMock()
        get_nonce = public_client.eth.contract.return_value.functions.getNonce
        get_nonce.return_value.call = AsyncMock(return_value=7)
        account = DelegatedEoaAccount(owner_account_from_key(PRIVATE_KEY), public_client, 1)

        assert await account.get_nonce() == 7
        get_nonce.assert_called_once_with(account.address, 0)

    def test_signatures(self):
        """Should provide a stub signature and sign hashes with the owner."""
        account = DelegatedEoaAccount(owner_account_from_key(PRIVATE_KEY), MagicMock(), 1)
        assert account.get_stub_signature() == STUB_SIGNATURE
        signature = account.sign_user_operation_hash("0x" + "ab" * 32)
        assert signature.startswith("0x")
        assert len(signature) == 132


class TestBundlerClient:
    """Tests for the delegated bundler JSON-RPC client."""

    @staticmethod
    def _client(handler):
        client = BundlerClient(
            BundlerConfig(chain_id=1, url="https://bundler.example"),
            _FakePublicClient(),
            ENTRYPOINT_V08,
        )
        client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return client

    @staticmethod
    def _account():
        account = MagicMock()
        account.address = EOA
        account.get_nonce = AsyncMock(return_value=1)
        account.encode_calls = MagicMock(return_value="0xb61d27f6")
        account.get_stub_signature = MagicMock(return_value=STUB_SIGNATURE)
        account.sign_user_operation_hash = MagicMock(return_value="0x" + "cd" * 65)
        return account

    @pytest.mark.asyncio
    async def test_estimate_user_operation_gas(self):
        """Should post the drafted operation and parse hex quantities."""
        requests = []

        def handler(request):
            body = json.loads(request.content)
            requests.append(body)
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": {
                "callGasLimit": "0x64",
                "verificationGasLimit": "0xc8",
                "preVerificationGas": "0x32",
            }})

        client = self._client(handler)
        gas = await client.estimate_user_operation_gas(self._account(), [{"to": RECIPIENT}])

        assert gas == {"callGasLimit": 100, "verificationGasLimit": 200, "preVerificationGas": 50}
        assert total_gas(gas) == 350
        assert requests[0]["method"] == "eth_estimateUserOperationGas"
        assert requests[0]["params"][1] == ENTRYPOINT_V08
        assert requests[0]["params"][0]["signature"] == STUB_SIGNATURE
        await client.close()

    @pytest.mark.asyncio
    async def test_send_user_operation(self):
        """Should estimate, hash, sign and send."""
        methods = []

        def handler(request):
            body = json.loads(request.content)
            methods.append(body["method"])
            results = {
                "eth_estimateUserOperationGas": {"callGasLimit": "0x1", "verificationGasLimit": "0x1", "preVerificationGas": "0x1"},
                "eth_getUserOperationHash": "0x" + "ab" * 32,
                "eth_sendUserOperation": "0x" + "ef" * 32,
            }
            if body["method"] == "eth_sendUserOperation":
                assert body["params"][0]["signature"] == "0x" + "cd" * 65
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": results[body["method"]]})

        client = self._client(handler)
        account = self._account()
        user_op_hash = await client.send_user_operation(account, [{"to": RECIPIENT}])

        assert user_op_hash == "0x" + "ef" * 32
        assert methods == ["eth_estimateUserOperationGas", "eth_getUserOperationHash", "eth_sendUserOperation"]
        account.sign_user_operation_hash.assert_called_once_with("0x" + "ab" * 32)

    @pytest.mark.asyncio
    async def test_rpc_error(self):
        """Should raise on JSON-RPC errors."""
        def handler(request):
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32602, "message": "bad"}})

        client = self._client(handler)
        with pytest.raises(RuntimeError, match="Bundler RPC error"):
            await client.get_user_operation_receipt("0x" + "ab" * 32)

    @pytest.mark.asyncio
    async def test_missing_receipt(self):
        """Should return None when the receipt is not available yet."""
        def handler(request):
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": None})

        client = self._client(handler)
        assert await client.get_user_operation_receipt("0x" + "ab" * 32) is None
        assert await client.get_user_operation("0x" + "ab" * 32) is None


@pytest.fixture
def delegated_clients():
    public_client = MagicMock()
    public_client.eth.get_code = AsyncMock(return_value=DESIGNATED_CODE)

    account = MagicMock()
    account.address = EOA

    bundler = MagicMock()
    bundler.estimate_user_operation_gas = AsyncMock(return_value={
        "callGasLimit": 100, "verificationGasLimit": 200, "preVerificationGas": 50,
    })
    bundler.send_user_operation = AsyncMock(return_value="0x" + "ef" * 32)
    bundler.get_user_operation = AsyncMock(return_value={"userOperation": {
        "sender": EOA,
        "nonce": "0x1",
        "callData": "0x",
        "callGasLimit": "0x64",
        "verificationGasLimit": "0xc8",
        "preVerificationGas": "0x32",
        "maxFeePerGas": "0xa",
        "maxPriorityFeePerGas": "0x1",
        "signature": "0x",
    }})
    bundler.get_user_operation_receipt = AsyncMock(return_value=None)
    bundler.close = AsyncMock()
    return public_client, account, bundler


@pytest.fixture
def delegated_kit(delegated_clients):
    public_client, account, bundler = delegated_clients
    builders = DelegatedClientBuilders(
        owner_account=MagicMock(return_value=MagicMock(address=EOA)),
        public_client=MagicMock(return_value=public_client),
        delegated_account=MagicMock(return_value=account),
        bundler_client=MagicMock(return_value=bundler),
    )
    config = KitConfig(chain_id=1, wallet_mode="delegated", private_key=PRIVATE_KEY)
    kit = TransactionKit(config, kit_provider=KitProvider(config, delegated_builders=builders))
    kit.user_op_lookup_delay_seconds = 0
    return kit


@pytest.fixture
def fees():
    with patch("userop_kit.kit.estimate_fees_per_gas", new=AsyncMock(return_value=(20, 2))) as mock_fees:
        yield mock_fees


class TestDelegatedKit:
    """Tests for TransactionKit in delegated mode."""

    @pytest.mark.asyncio
    async def test_is_delegated(self, delegated_kit, delegated_clients):
        """Should inspect the EOA code for the designation prefix."""
        public_client, _, _ = delegated_clients
        assert await delegated_kit.is_delegate_smart_account_to_eoa() is True
        public_client.eth.get_code.return_value = b""
        assert await delegated_kit.is_delegate_smart_account_to_eoa(1) is False

    @pytest.mark.asyncio
    async def test_is_delegated_modular_mode(self, kit):
        """Should raise in modular mode."""
        with pytest.raises(ConfigurationError, match="only available in delegated wallet mode"):
            await kit.is_delegate_smart_account_to_eoa()

    @pytest.mark.asyncio
    async def test_get_client_rejected(self, delegated_kit):
        """Should not expose modular clients."""
        with pytest.raises(ConfigurationError):
            await delegated_kit.get_client()

    @pytest.mark.asyncio
    async def test_wallet_address(self, delegated_kit):
        """Should return the EOA address."""
        assert await delegated_kit.get_wallet_address() == EOA

    @pytest.mark.asyncio
    async def test_estimate(self, delegated_kit, delegated_clients, fees):
        """Should price total gas at maxFeePerGas."""
        _, account, bundler = delegated_clients
        delegated_kit.transaction(to=RECIPIENT, chain_id=1, value="5").name("t")

        result = await delegated_kit.estimate()

        assert result.is_estimated_successfully is True
        assert result.cost == 350 * 20
        assert result.user_op["maxFeePerGas"] == 20
        bundler.estimate_user_operation_gas.assert_awaited_once_with(
            account, [{"to": RECIPIENT, "value": "5", "data": "0x"}]
        )

    @pytest.mark.asyncio
    async def test_estimate_rejects_modular_options(self, delegated_kit, delegated_clients):
        """Should reject paymaster and gas options."""
        _, _, bundler = delegated_clients
        delegated_kit.transaction(to=RECIPIENT, chain_id=1).name("t")

        result = await delegated_kit.estimate(paymaster_details={"url": "x"}, call_gas_limit=1)

        assert result.error_type is ErrorType.VALIDATION_ERROR
        assert "paymaster_details" in result.error_message
        assert "call_gas_limit" in result.error_message
        bundler.estimate_user_operation_gas.assert_not_called()

    @pytest.mark.asyncio
    async def test_estimate_requires_designation(self, delegated_kit, delegated_clients):
        """Should fail validation when the EOA is not delegated."""
        public_client, _, bundler = delegated_clients
        public_client.eth.get_code.return_value = b""
        delegated_kit.transaction(to=RECIPIENT, chain_id=1).name("t")

        result = await delegated_kit.estimate()

        assert result.error_type is ErrorType.VALIDATION_ERROR
        assert "not delegated" in result.error_message
        bundler.estimate_user_operation_gas.assert_not_called()

    @pytest.mark.asyncio
    async def test_send(self, delegated_kit, delegated_clients):
        """Should send and report the cost of the submitted operation."""
        _, _, bundler = delegated_clients
        delegated_kit.transaction(to=RECIPIENT, chain_id=1).name("t")

        result = await delegated_kit.send()

        assert result.is_sent_successfully is True
        assert result.user_op_hash == "0x" + "ef" * 32
        assert result.cost == 350 * 10
        assert result.user_op["callGasLimit"] == 100
        assert delegated_kit.get_state().named_transactions == {}

    @pytest.mark.asyncio
    async def test_send_lookup_retries(self, delegated_kit, delegated_clients):
        """Should retry the operation lookup and still report success."""
        _, _, bundler = delegated_clients
        bundler.get_user_operation = AsyncMock(return_value=None)
        delegated_kit.transaction(to=RECIPIENT, chain_id=1).name("t")

        result = await delegated_kit.send()

        assert result.is_sent_successfully is True
        assert result.cost is None
        assert bundler.get_user_operation.await_count == 3

    @pytest.mark.asyncio
    async def test_send_failure(self, delegated_kit, delegated_clients):
        """Should report bundler failures as send errors."""
        _, _, bundler = delegated_clients
        bundler.send_user_operation = AsyncMock(side_effect=RuntimeError("AA25 invalid account nonce"))
        delegated_kit.transaction(to=RECIPIENT, chain_id=1).name("t")

        result = await delegated_kit.send()

        assert result.error_type is ErrorType.SEND_ERROR
        assert result.error_message == "AA25 invalid account nonce"
        assert "t" in delegated_kit.get_state().named_transactions

    @pytest.mark.asyncio
    async def test_send_rejects_overrides(self, delegated_kit):
        """Should reject user operation overrides."""
        delegated_kit.transaction(to=RECIPIENT, chain_id=1).name("t")
        result = await delegated_kit.send(user_op_overrides={"maxFeePerGas": 1})
        assert result.error_type is ErrorType.VALIDATION_ERROR
        assert "user_op_overrides" in result.error_message

    @pytest.mark.asyncio
    async def test_batches(self, delegated_kit, delegated_clients, fees):
        """Should estimate and send each batch as one operation."""
        _, account, bundler = delegated_clients
        delegated_kit.transaction(to=RECIPIENT, chain_id=1).name("a").add_to_batch("b")
        delegated_kit.transaction(to=RECIPIENT, chain_id=1, value="1").name("c").add_to_batch("b")

        estimate = await delegated_kit.estimate_batches()
        assert estimate.batches["b"].total_cost == 350 * 20
        calls = bundler.estimate_user_operation_gas.await_args.args[1]
        assert len(calls) == 2

        sent = await delegated_kit.send_batches()
        entry = sent.batches["b"]
        assert entry.is_sent_successfully is True
        assert entry.user_op_hash == "0x" + "ef" * 32
        bundler.send_user_operation.assert_awaited_once()
        assert delegated_kit.get_state().batches == {}

    @pytest.mark.asyncio
    async def test_transaction_hash(self, delegated_kit, delegated_clients, sample_tx_hash):
        """Should read the hash from the bundler receipt."""
        _, _, bundler = delegated_clients
        bundler.get_user_operation_receipt = AsyncMock(
            side_effect=[None, {"receipt": {"transactionHash": sample_tx_hash}}]
        )

        tx_hash = await delegated_kit.get_transaction_hash(
            "0x" + "ef" * 32, 1, timeout_seconds=5, retry_interval_seconds=0.001
        )

        assert tx_hash == sample_tx_hash

    @pytest.mark.asyncio
    async def test_reset_closes_bundler(self, delegated_kit, delegated_clients):
        """Should close the cached bundler client once when the kit is reset."""
        _, _, bundler = delegated_clients
        await delegated_kit.get_kit_provider().get_bundler_client(1)

        delegated_kit.reset()
        await delegated_kit.aclose()

        bundler.close.assert_awaited_once()
