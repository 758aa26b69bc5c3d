"""
Tests for userop_kit.config.
"""
from __future__ import annotations

import pytest

from userop_kit.config import (
    CHAIN_ID_TO_NETWORK_NAME,
    KitConfig,
    WalletMode,
    build_default_networks,
    get_chain_from_id,
    get_network_config,
)
from userop_kit.errors import ConfigurationError


class TestWalletMode:
    """Tests for WalletMode parsing."""

    def test_values(self):
        """Should have correct mode values."""
        assert WalletMode.MODULAR.value == "modular"
        assert WalletMode.DELEGATED.value == "delegated"

    def test_parse_aliases(self):
        """Should accept the delegatedEoa alias."""
        assert WalletMode.parse("delegatedEoa") is WalletMode.DELEGATED
        assert WalletMode.parse("MODULAR") is WalletMode.MODULAR

    def test_parse_invalid(self):
        """Should reject unknown modes."""
        with pytest.raises(ConfigurationError, match="Invalid wallet mode"):
            WalletMode.parse("custodial")


class TestNetworkTable:
    """Tests for the network table."""

    def test_default_networks(self):
        """Should include mainnets and testnets keyed by chain ID."""
        networks = build_default_networks()
        assert networks[1].name == "ethereum"
        assert networks[84532].is_testnet is True
        assert networks[8453].bundler_url == "https://rpc.etherspot.io/v2/8453"

    def test_env_override(self, monkeypatch):
        """Should honour per-network endpoint overrides."""
        monkeypatch.setenv("USEROP_KIT_BASE_BUNDLER_URL", "https://custom-bundler")
        monkeypatch.setenv("USEROP_KIT_BASE_RPC_URL", "https://custom-rpc")
        networks = build_default_networks()
        assert networks[8453].bundler_url == "https://custom-bundler"
        assert networks[8453].rpc_url == "https://custom-rpc"

    def test_get_chain_from_id_unknown(self):
        """Should list supported chain IDs in the error."""
        with pytest.raises(ValueError, match="Unsupported chain ID: 424242"):
            get_chain_from_id(424242)

    def test_lookup(self):
        """Should look up networks by chain ID."""
        assert get_network_config(10).display_name == "Optimism"
        assert get_network_config(424242) is None
        assert CHAIN_ID_TO_NETWORK_NAME[137] == "polygon"


class TestKitConfigValidation:
    """Tests for KitConfig.validate."""

    def test_modular_valid(self):
        """Should accept a provider and SDK factory."""
        KitConfig(chain_id=1, provider=object(), sdk_factory=lambda p, o: None).validate()

    def test_modular_requires_provider(self):
        """Should reject modular mode without a provider."""
        config = KitConfig(chain_id=1, sdk_factory=lambda p, o: None)
        with pytest.raises(ConfigurationError, match="wallet provider"):
            config.validate()

    def test_modular_requires_sdk_factory(self):
        """Should reject modular mode without an SDK factory."""
        with pytest.raises(ConfigurationError, match="SDK factory"):
            KitConfig(chain_id=1, provider=object()).validate()

    @pytest.mark.parametrize("chain_id", [0, -1, "1", None, True, 1.5])
    def test_invalid_chain_id(self, chain_id):
        """Should reject non-positive or non-integer chain IDs."""
        config = KitConfig(chain_id=chain_id, provider=object(), sdk_factory=lambda p, o: None)
        with pytest.raises(ConfigurationError, match="Invalid chain ID"):
            config.validate()

    def test_delegated_requires_one_signer(self):
        """Should require exactly one of private_key or external_account."""
        with pytest.raises(ConfigurationError, match="requires either"):
            KitConfig(chain_id=1, wallet_mode="delegated").validate()
        with pytest.raises(ConfigurationError, match="not both"):
            KitConfig(
                chain_id=1,
                wallet_mode="delegated",
                private_key="0x" + "1" * 64,
                external_account=object(),
            ).validate()

    def test_delegated_valid(self):
        """Should accept delegated mode with a private key and no provider."""
        config = KitConfig(chain_id=1, wallet_mode="delegatedEoa", private_key="0x" + "1" * 64)
        config.validate()
        assert config.is_delegated is True


class TestKitConfigHelpers:
    """Tests for KitConfig helpers."""

    def test_sanitized_redacts_secrets(self):
        """Should redact keys and signer objects."""
        config = KitConfig(
            chain_id=1,
            wallet_mode="delegated",
            private_key="0xsecret",
            bundler_api_key="api-secret",
            bundler_api_key_format="?key=",
        )
        data = config.sanitized()
        assert data["private_key"] == "[REDACTED]"
        assert data["bundler_api_key"] == "[REDACTED]"
        assert data["bundler_api_key_format"] == "[REDACTED]"
        assert data["external_account"] is None
        assert data["wallet_mode"] == "delegated"
        assert "0xsecret" not in str(data)

    def test_from_env(self, monkeypatch):
        """Should read USEROP_KIT_* variables with keyword overrides winning."""
        monkeypatch.setenv("USEROP_KIT_CHAIN_ID", "137")
        monkeypatch.setenv("USEROP_KIT_BUNDLER_API_KEY", "env-key")
        monkeypatch.setenv("USEROP_KIT_DEBUG", "true")
        config = KitConfig.from_env(bundler_api_key="override")
        assert config.chain_id == 137
        assert config.bundler_api_key == "override"
        assert config.debug_mode is True
        assert config.wallet_mode is WalletMode.MODULAR

    def test_from_env_requires_chain_id(self, monkeypatch):
        """Should fail without a chain ID."""
        monkeypatch.delenv("USEROP_KIT_CHAIN_ID", raising=False)
        with pytest.raises(ConfigurationError, match="chain_id is required"):
            KitConfig.from_env()

    def test_copy(self):
        """Should copy with changes and re-parse the wallet mode."""
        config = KitConfig(chain_id=1, provider=object(), sdk_factory=lambda p, o: None)
        changed = config.copy(wallet_mode="delegated", private_key="0x" + "1" * 64)
        assert changed.wallet_mode is WalletMode.DELEGATED
        assert config.wallet_mode is WalletMode.MODULAR
