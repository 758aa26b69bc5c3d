"""
Per-chain client lifecycle management.

Provides:
- ClientFactory: builds an SDK client for a chain and resolves its
  counterfactual address with bounded retry
- KitProvider: per-chain-ID caches of clients (modular mode) or of the
  public client / delegated account / bundler client (delegated mode),
  invalidated when the wallet provider object or the wallet mode changes

Concurrent cache misses for the same chain share one in-flight build task.
``force_new`` always starts a new build. Failed builds are evicted.
"""
from __future__ import annotations

import asyncio
import dataclasses
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from .bundler import BundlerConfig, resolve_bundler_url
from .config import KitConfig, NetworkConfig, WalletMode, get_chain_from_id, get_network_config, is_valid_chain_id
from .delegated.account import build_delegated_account, owner_account_from_key
from .delegated.bundler_client import build_bundler_client
from .delegated.entrypoint import get_entrypoint_v08
from .delegated.public_client import build_public_client
from .errors import ClientInitializationError, ConfigurationError
from .interfaces import AccountClient, ClientOptions, DelegatedAccount, UserOperationBundler
from .logging_utils import KitLogger, OperationType, mask_url

ADDRESS_RESOLUTION_ATTEMPTS = 3
ADDRESS_RESOLUTION_RETRY_DELAY_SECONDS = 1.0

# Changing any of these invalidates every cached client
_REBUILD_KEYS = frozenset({
    "sdk_factory",
    "private_key",
    "external_account",
    "bundler_api_key",
    "bundler_url",
    "bundler_api_key_format",
    "bundler_timeout_seconds",
})


class ClientFactory:
    """Builds modular-mode SDK clients."""

    def __init__(
        self,
        config: KitConfig,
        kit_logger: Optional[KitLogger] = None,
        max_attempts: int = ADDRESS_RESOLUTION_ATTEMPTS,
        retry_delay_seconds: float = ADDRESS_RESOLUTION_RETRY_DELAY_SECONDS,
    ):
        self._config = config
        self._kit_logger = kit_logger or KitLogger(debug_mode=config.debug_mode)
        self.max_attempts = max_attempts
        self.retry_delay_seconds = retry_delay_seconds

    def update_config(self, config: KitConfig) -> None:
        self._config = config

    def create(
        self, chain_id: int, chain: Optional[NetworkConfig] = None, provider: Any = None
    ) -> AccountClient:
        """Instantiate a client without any network I/O."""
        provider = self._config.provider if provider is None else provider
        if self._config.sdk_factory is None:
            raise ConfigurationError("No SDK factory configured for modular mode.")
        if provider is None:
            raise ConfigurationError("No wallet provider configured for modular mode.")

        bundler_url = resolve_bundler_url(
            chain_id,
            self._config.bundler_api_key,
            self._config.bundler_url,
            self._config.bundler_api_key_format,
        )
        options = ClientOptions(
            chain_id=chain_id,
            bundler_url=bundler_url,
            chain=chain or get_network_config(chain_id),
        )
        self._kit_logger.log(
            "Creating account client",
            {"chain_id": chain_id, "bundler_url": mask_url(bundler_url)},
        )
        return self._config.sdk_factory(provider, options)

    async def build(
        self, chain_id: int, chain: Optional[NetworkConfig] = None, provider: Any = None
    ) -> AccountClient:
        """
        Create a client and resolve its counterfactual address.

        ``provider`` defaults to the configured wallet provider.

        Raises:
            ClientInitializationError: If the address cannot be resolved
                after ``max_attempts`` attempts.
        """
        async with self._kit_logger.operation_context(OperationType.CLIENT_INIT, chain_id):
            client = self.create(chain_id, chain, provider)
            for attempt in range(1, self.max_attempts + 1):
                try:
                    await client.get_counterfactual_address()
                    return client
                except Exception as e:
                    self._kit_logger.warning(
                        f"Attempt {attempt} failed to get counter factual address "
                        f"when initialising the account client: {e}",
                        {"chain_id": chain_id},
                    )
                    if attempt >= self.max_attempts:
                        raise ClientInitializationError(
                            "Failed to get counter factual address when initialising "
                            f"the account client after {self.max_attempts} attempts.",
                            chain_id=chain_id,
                            attempts=attempt,
                        ) from e
                    await asyncio.sleep(self.retry_delay_seconds)
        raise ClientInitializationError(
            "Failed to get counter factual address when initialising the account client.",
            chain_id=chain_id,
            attempts=0,
        )


@dataclass
class DelegatedClientBuilders:
    """Constructors for the delegated-mode collaborators."""
    owner_account: Callable[[str], Any] = owner_account_from_key
    public_client: Callable[[NetworkConfig, float], Any] = build_public_client
    delegated_account: Callable[..., DelegatedAccount] = build_delegated_account
    bundler_client: Callable[..., UserOperationBundler] = build_bundler_client


@dataclass
class _CacheEntry:
    task: Optional["asyncio.Future[Any]"] = None
    provider: Any = None
    resolved: bool = False


class KitProvider:
    """
    Owns the wallet configuration and the per-chain client caches.

    Features:
    - Validation at construction and on every reconfiguration
    - Per-chain caching with wallet-provider identity checks
    - De-duplicated concurrent construction
    - Bulk invalidation when the wallet mode changes
    """

    def __init__(
        self,
        config: KitConfig,
        *,
        client_factory: Optional[ClientFactory] = None,
        delegated_builders: Optional[DelegatedClientBuilders] = None,
        kit_logger: Optional[KitLogger] = None,
    ):
        config.validate()
        self._config = config
        self._kit_logger = kit_logger or KitLogger(debug_mode=config.debug_mode)
        self._factory = client_factory or ClientFactory(config, self._kit_logger)
        self._builders = delegated_builders or DelegatedClientBuilders()

        self._clients: Dict[int, _CacheEntry] = {}
        self._public_clients: Dict[int, _CacheEntry] = {}
        self._delegated_accounts: Dict[int, _CacheEntry] = {}
        self._bundler_clients: Dict[int, _CacheEntry] = {}
        self._owner_account: Any = None
        self._closing: Set["asyncio.Task[None]"] = set()

    # Configuration

    def get_config(self) -> KitConfig:
        return self._config.copy()

    def get_provider(self) -> Any:
        return self._config.provider

    def get_chain_id(self) -> int:
        return self._config.chain_id

    def get_wallet_mode(self) -> WalletMode:
        return self._config.wallet_mode

    @property
    def kit_logger(self) -> KitLogger:
        return self._kit_logger

    def update_config(self, **changes: Any) -> KitConfig:
        """
        Merge ``changes`` into the configuration and re-validate.

        A wallet-mode change (or a signer/bundler/factory change) clears every
        cache. A new provider object invalidates cached entries lazily.
        """
        known = {f.name for f in dataclasses.fields(KitConfig)}
        unknown = sorted(set(changes) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(unknown)}")

        new_config = self._config.copy(**changes)
        new_config.validate()

        mode_changed = new_config.wallet_mode != self._config.wallet_mode
        needs_rebuild = bool(_REBUILD_KEYS & set(changes))

        self._config = new_config
        self._factory.update_config(new_config)
        if "debug_mode" in changes:
            self._kit_logger.set_debug_mode(new_config.debug_mode)

        if mode_changed:
            self._kit_logger.log(
                "Wallet mode changed, clearing all caches",
                {"wallet_mode": new_config.wallet_mode.value},
            )
        if mode_changed or needs_rebuild:
            self.clear_all_caches()
        return self.get_config()

    def _resolve_chain_id(self, chain_id: Optional[int]) -> int:
        resolved = self._config.chain_id if chain_id is None else chain_id
        if not is_valid_chain_id(resolved):
            raise ConfigurationError(
                f"Invalid chain ID: {resolved!r}. Chain ID must be a positive integer."
            )
        return resolved

    def _require_delegated(self, method: str) -> None:
        if self._config.wallet_mode != WalletMode.DELEGATED:
            raise ConfigurationError(f"{method}() is only available in delegated wallet mode.")

    # Caching

    async def _get_cached(
        self,
        cache: Dict[int, _CacheEntry],
        chain_id: int,
        build: Callable[[Any], Awaitable[Any]],
        force_new: bool,
        label: str,
    ) -> Any:
        """
        Return the cached handle for ``chain_id`` or start building one.

        ``build`` receives the wallet provider snapshot that the entry records.
        """
        provider = self._config.provider
        entry = cache.get(chain_id)

        if entry is not None and not force_new:
            if entry.resolved and entry.provider is not provider:
                self._kit_logger.log(
                    f"Wallet provider changed, rebuilding {label}", {"chain_id": chain_id}
                )
                del cache[chain_id]
            else:
                return await asyncio.shield(entry.task)

        entry = _CacheEntry(provider=provider)
        cache[chain_id] = entry
        entry.task = asyncio.ensure_future(self._build_entry(cache, chain_id, entry, build))
        return await asyncio.shield(entry.task)

    async def _build_entry(
        self,
        cache: Dict[int, _CacheEntry],
        chain_id: int,
        entry: _CacheEntry,
        build: Callable[[Any], Awaitable[Any]],
    ) -> Any:
        try:
            handle = await build(entry.provider)
        except Exception:
            if cache.get(chain_id) is entry:
                del cache[chain_id]
            raise
        entry.resolved = True
        return handle

    def clear_client_cache(self) -> None:
        """Drop the modular-mode account clients only."""
        self._clients.clear()

    def clear_all_caches(self) -> None:
        """
        Drop every cached client and the owner account.

        Bundler clients (built or still building) are closed on the running
        event loop. ``aclose()`` waits for those closes to finish.
        """
        self._schedule_close(self._bundler_tasks())
        self._drop_caches()

    def _drop_caches(self) -> None:
        self._clients.clear()
        self._public_clients.clear()
        self._delegated_accounts.clear()
        self._bundler_clients.clear()
        self._owner_account = None

    def _bundler_tasks(self) -> List["asyncio.Future[Any]"]:
        return [entry.task for entry in self._bundler_clients.values() if entry.task is not None]

    def _schedule_close(self, tasks: List["asyncio.Future[Any]"]) -> None:
        if not tasks:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._kit_logger.warning(
                f"No running event loop, {len(tasks)} bundler client(s) dropped without closing"
            )
            return
        close_task = loop.create_task(self._close_bundlers(tasks))
        self._closing.add(close_task)
        close_task.add_done_callback(self._closing.discard)

    async def _close_bundlers(self, tasks: List["asyncio.Future[Any]"]) -> None:
        for task in tasks:
            try:
                handle = await task
            except Exception:
                # failed builds have nothing to close
                continue
            close = getattr(handle, "close", None)
            if close is None:
                continue
            try:
                await close()
            except Exception as e:
                self._kit_logger.warning(f"Failed to close bundler client: {e}")

    def cached_chain_ids(self) -> Dict[str, list]:
        return {
            "clients": sorted(self._clients),
            "public_clients": sorted(self._public_clients),
            "delegated_accounts": sorted(self._delegated_accounts),
            "bundler_clients": sorted(self._bundler_clients),
        }

    # Modular mode

    async def get_client(
        self,
        chain_id: Optional[int] = None,
        force_new: bool = False,
        chain: Optional[NetworkConfig] = None,
    ) -> AccountClient:
        """Get (or build) the account client for a chain."""
        if self._config.wallet_mode == WalletMode.DELEGATED:
            raise ConfigurationError(
                "get_client() is not available in delegated wallet mode. "
                "Use get_delegated_account() or get_bundler_client() instead."
            )
        resolved = self._resolve_chain_id(chain_id)
        return await self._get_cached(
            self._clients,
            resolved,
            lambda provider: self._factory.build(resolved, chain, provider),
            force_new,
            "account client",
        )

    # Delegated mode

    def get_owner_account(self) -> Any:
        self._require_delegated("get_owner_account")
        if self._owner_account is None:
            if self._config.private_key:
                self._owner_account = self._builders.owner_account(self._config.private_key)
            else:
                self._owner_account = self._config.external_account
        return self._owner_account

    async def get_public_client(self, chain_id: Optional[int] = None, force_new: bool = False) -> Any:
        resolved = self._resolve_chain_id(chain_id)

        async def build(provider: Any) -> Any:
            network = get_chain_from_id(resolved)
            return self._builders.public_client(network, self._config.bundler_timeout_seconds)

        return await self._get_cached(self._public_clients, resolved, build, force_new, "public client")

    async def get_delegated_account(
        self, chain_id: Optional[int] = None, force_new: bool = False
    ) -> DelegatedAccount:
        self._require_delegated("get_delegated_account")
        resolved = self._resolve_chain_id(chain_id)

        async def build(provider: Any) -> DelegatedAccount:
            public_client = await self.get_public_client(resolved)
            return self._builders.delegated_account(
                self.get_owner_account(),
                public_client,
                resolved,
                get_entrypoint_v08(resolved),
            )

        return await self._get_cached(
            self._delegated_accounts, resolved, build, force_new, "delegated account"
        )

    async def get_bundler_client(
        self, chain_id: Optional[int] = None, force_new: bool = False
    ) -> UserOperationBundler:
        self._require_delegated("get_bundler_client")
        resolved = self._resolve_chain_id(chain_id)

        async def build(provider: Any) -> UserOperationBundler:
            public_client = await self.get_public_client(resolved)
            bundler_config = BundlerConfig.build(
                resolved,
                self._config.bundler_api_key,
                self._config.bundler_url,
                self._config.bundler_api_key_format,
                self._config.bundler_timeout_seconds,
            )
            self._kit_logger.log(
                "Creating bundler client",
                {"chain_id": resolved, "bundler_url": mask_url(bundler_config.url)},
            )
            return self._builders.bundler_client(
                bundler_config, public_client, get_entrypoint_v08(resolved)
            )

        return await self._get_cached(
            self._bundler_clients, resolved, build, force_new, "bundler client"
        )

    async def aclose(self) -> None:
        """Close every bundler client and clear all caches."""
        tasks = self._bundler_tasks()
        self._drop_caches()
        await self._close_bundlers(tasks)
        if self._closing:
            await asyncio.gather(*list(self._closing))
