"""
WalletVault — Password-gated wallet storage.

Provides the public API of the vault:
- ``set_password`` / ``unlock`` / ``lock`` / ``change_password`` — the gate
- ``create_seed_group`` / ``derive_next`` / ``create_standalone`` /
  ``import_standalone`` / ``import_seed_group`` — wallet creation
- ``list_wallets`` / ``get_wallet`` / ``set_active_wallet`` /
  ``rename_wallet`` / ``delete_wallet`` — bookkeeping
- ``export_private_key`` / ``export_mnemonic`` / ``sign_message`` — secrets
- ``get_balance`` / ``portfolio`` — chain queries

Every secret-touching operation runs the session liveness check first and
raises ``Locked`` when the session is gone. Each mutation is persisted as
one sealed record: seed groups under their SeedGroupId, standalone wallets
under their WalletId.

Security Note:
    The master password is held in process memory while unlocked and is
    dropped on ``lock()`` or session expiry. Never log it, nor any key
    material; only log wallet ids and operations.
"""
import time
import asyncio
import logging
from decimal import Decimal
from typing import Any, Callable, Mapping, Optional, Union

from ..chains import ChainAdapter
from ..exceptions import Locked, WalletNotFound
from ..oracle import PriceOracle
from ..wallet import (
    DerivedWallet,
    LoadReport,
    Portfolio,
    PortfolioEntry,
    SeedGroup,
    StandaloneWallet,
    Wallet,
    WalletListing,
    WalletOptions,
    WalletRegistry,
    WalletView,
)
from .auth import CredentialGate, GateState, password_requirements
from .config import VaultConfig
from .key_rotation import RotationStats, restore_password, rotate_password
from .store import RecordMetadata, RecordStore

logger = logging.getLogger("crypted.vault")


class WalletVault:
    """Credential gate, encrypted record store and wallet registry in one.

    Example::

        vault = WalletVault(VaultConfig.from_env())
        await vault.init()
        await vault.set_password("Abcd1234!")
        group = await vault.create_seed_group()
        child = await vault.derive_next(group.seed_id)
    """

    def __init__(
        self,
        config: Optional[VaultConfig] = None,
        *,
        adapters: Optional[Mapping[str, type[ChainAdapter]]] = None,
        oracle: Optional[PriceOracle] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._config = config or VaultConfig.from_env()
        self._gate = CredentialGate(self._config, clock=clock)
        self._store = RecordStore(self._config)
        self._registry = WalletRegistry(adapters)
        self._oracle = oracle
        self._password: Optional[str] = None
        self.last_load: Optional[LoadReport] = None

    @property
    def config(self) -> VaultConfig:
        return self._config

    @property
    def gate(self) -> CredentialGate:
        return self._gate

    @property
    def store(self) -> RecordStore:
        return self._store

    @property
    def registry(self) -> WalletRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _options(self, options: Optional[WalletOptions]) -> WalletOptions:
        if options is None:
            return WalletOptions(
                chain_type=self._config.chain_type, network=self._config.network,
            )
        return options

    def _forget(self) -> None:
        self._password = None
        self._registry.clear()

    async def _require_unlocked(self) -> str:
        """Return the in-memory password after a session liveness check.

        Raises:
            Locked: If there is no live session.
        """
        if self._password is None:
            raise Locked()
        if not await self._gate.check_session():
            self._forget()
            raise Locked("Session expired")
        return self._password

    async def _save_seed_group(self, sid: str, password: str) -> None:
        payload = self._registry.seed_record(sid).to_payload()
        await self._store.put(
            sid, payload, password, RecordMetadata.from_payload(payload),
        )

    async def _save_standalone(self, wid: str, password: str) -> None:
        payload = self._registry.standalone_record(wid).to_payload()
        await self._store.put(
            wid, payload, password, RecordMetadata.from_payload(payload),
        )

    async def _save_active(self) -> None:
        app_config = await self._store.load_config()
        if app_config.active_wallet_id != self._registry.active_id:
            app_config.active_wallet_id = self._registry.active_id
            await self._store.save_config(app_config)

    async def _persist(self, target: Union[Wallet, SeedGroup], password: str) -> None:
        if isinstance(target, SeedGroup):
            await self._save_seed_group(target.seed_id, password)
        elif isinstance(target, DerivedWallet):
            await self._save_seed_group(target.seed_id, password)
        else:
            await self._save_standalone(target.id, password)
        await self._save_active()

    # ------------------------------------------------------------------
    # Gate
    # ------------------------------------------------------------------

    async def init(self) -> None:
        """Create the storage layout (owner-only permissions)."""
        await self._gate.init()
        await self._store.init()

    async def has_password(self) -> bool:
        return await self._gate.has_password()

    async def state(self) -> GateState:
        return await self._gate.state()

    def is_locked(self) -> bool:
        return self._password is None or self._gate.is_locked()

    @staticmethod
    def password_requirements() -> list[str]:
        return password_requirements()

    async def set_password(self, password: str) -> None:
        """Set the initial master password; the vault is left unlocked.

        Raises:
            AlreadyInitialized: If a master password already exists.
            WeakPassword: If the password does not satisfy the policy.
        """
        await self._gate.set_password(password)
        self._store.iterations = self._gate.iterations
        self._registry.clear()
        self._password = password

    async def unlock(self, password: str) -> bool:
        """Verify the password and rebuild the registry from disk.

        A wrong password leaves the current state untouched.

        Returns:
            True on success, False on a wrong password.

        Raises:
            NotInitialized: If no master password has been set.
        """
        if not await self._gate.unlock(password):
            return False
        self._store.iterations = self._gate.iterations
        self._registry.clear()
        self._password = password
        self.last_load = await self._registry.rehydrate(self._store, password)
        if self.last_load.failed:
            logger.warning(
                "%d record(s) could not be loaded: %s",
                len(self.last_load.failed), sorted(self.last_load.failed),
            )
        app_config = await self._store.load_config()
        active = app_config.active_wallet_id
        if active and active in self._registry:
            self._registry.set_active(active)
        return True

    async def lock(self) -> None:
        """Destroy the session and drop secrets from memory. Idempotent."""
        await self._gate.lock()
        self._forget()

    async def change_password(self, old_password: str, new_password: str) -> RotationStats:
        """Change the master password and re-seal every record.

        The new digest is staged in ``auth.json`` first, then the records
        are re-sealed, then the staged digest is committed. A failed
        rotation discards the staged digest; a failed commit rotates the
        records back. If the process dies after rotation but before the
        commit, unlocking with the new password completes the change.
        A crash in the middle of rotation can still leave records sealed
        under different passwords.

        Raises:
            AuthenticationFailed: If ``old_password`` is wrong.
            WeakPassword: If ``new_password`` does not satisfy the policy.
        """
        await self._gate.stage_password(old_password, new_password)
        try:
            stats = await rotate_password(self._store, old_password, new_password)
        except Exception:
            await self._gate.abort_password_change()
            raise
        try:
            await self._gate.commit_password()
        except Exception:
            logger.error("Credential update failed, restoring records")
            await restore_password(self._store, new_password, old_password)
            await self._gate.abort_password_change()
            raise
        if self._password is None:
            await self.unlock(new_password)
        self._password = new_password
        return stats

    # ------------------------------------------------------------------
    # Wallet creation
    # ------------------------------------------------------------------

    async def create_seed_group(self, options: Optional[WalletOptions] = None) -> SeedGroup:
        """Create (or import, with ``options.mnemonic``) a seed group.

        The wallet at index 0 is derived immediately.
        """
        password = await self._require_unlocked()
        group = self._registry.create_seed_group(self._options(options))
        try:
            await self._persist(group, password)
        except Exception:
            self._registry.remove(group.seed_id)
            raise
        return group

    async def import_seed_group(
        self,
        options: WalletOptions,
        derive_count: int = 1,
    ) -> SeedGroup:
        """Import a mnemonic and derive ``derive_count`` wallets (0..n-1)."""
        if derive_count < 1:
            raise ValueError("derive_count must be at least 1")
        if options.mnemonic is None:
            raise ValueError("A mnemonic is required to import a seed group")
        password = await self._require_unlocked()
        group = self._registry.create_seed_group(options)
        try:
            for _ in range(1, derive_count):
                self._registry.derive_next(group.seed_id)
            await self._persist(group, password)
        except Exception:
            self._registry.remove(group.seed_id)
            raise
        return group

    async def derive_next(self, sid: str) -> DerivedWallet:
        """Derive the next wallet of a seed group and persist the new count."""
        password = await self._require_unlocked()
        wallet = self._registry.derive_next(sid)
        try:
            await self._persist(wallet, password)
        except Exception:
            self._registry.remove(wallet.id)
            raise
        return wallet

    async def create_standalone(self, options: Optional[WalletOptions] = None) -> StandaloneWallet:
        password = await self._require_unlocked()
        wallet = self._registry.create_standalone(self._options(options))
        try:
            await self._persist(wallet, password)
        except Exception:
            self._registry.remove(wallet.id)
            raise
        return wallet

    async def import_standalone(
        self,
        private_key: str,
        options: Optional[WalletOptions] = None,
    ) -> StandaloneWallet:
        password = await self._require_unlocked()
        wallet = self._registry.import_standalone(private_key, self._options(options))
        try:
            await self._persist(wallet, password)
        except Exception:
            self._registry.remove(wallet.id)
            raise
        return wallet

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    async def list_wallets(self) -> WalletListing:
        await self._require_unlocked()
        return self._registry.list()

    async def get_wallet(self, wid: str) -> WalletView:
        await self._require_unlocked()
        return self._registry.export_wallet(wid)

    async def get_active_wallet(self) -> Optional[WalletView]:
        await self._require_unlocked()
        active = self._registry.active_id
        return self._registry.export_wallet(active) if active else None

    async def set_active_wallet(self, wid: str) -> WalletView:
        await self._require_unlocked()
        self._registry.set_active(wid)
        await self._save_active()
        return self._registry.export_wallet(wid)

    async def rename_wallet(self, wid: str, name: str) -> None:
        """Rename a wallet or a seed group."""
        password = await self._require_unlocked()
        target = self._registry.rename(wid, name)
        await self._persist(target, password)

    async def delete_wallet(self, wid: str) -> None:
        """Delete a standalone wallet, a seed group, or a seed group's last child.

        Raises:
            WalletNotFound: If the id is unknown.
            DerivationOrderError: If a derived child is not the last one.
        """
        password = await self._require_unlocked()
        state = self._registry.checkpoint()
        try:
            if self._registry.has_seed_group(wid):
                self._registry.remove(wid)
                await self._store.delete(wid)
            else:
                wallet = self._registry.get(wid)
                self._registry.remove(wid)
                if isinstance(wallet, DerivedWallet):
                    await self._save_seed_group(wallet.seed_id, password)
                else:
                    await self._store.delete(wid)
        except Exception:
            self._registry.rollback(state)
            raise
        await self._save_active()
        logger.info("Wallet deleted: id=%s", wid)

    # ------------------------------------------------------------------
    # Secrets
    # ------------------------------------------------------------------

    async def export_private_key(self, wid: str) -> str:
        await self._require_unlocked()
        wallet = self._registry.get(wid)
        logger.warning("Private key exported: id=%s", wid)
        return wallet.private_key.get_secret_value()

    async def export_mnemonic(self, sid: str) -> str:
        await self._require_unlocked()
        group = self._registry.get_seed_group(sid)
        logger.warning("Mnemonic exported: seed=%s", sid)
        return group.mnemonic.get_secret_value()

    async def sign_message(self, wid: str, message: str) -> str:
        await self._require_unlocked()
        wallet = self._registry.get(wid)
        adapter = self._registry.adapter(wallet.chain_type, wallet.network)
        return adapter.sign_message(wallet.private_key.get_secret_value(), message)

    # ------------------------------------------------------------------
    # Chain queries
    # ------------------------------------------------------------------

    async def get_balance(self, wid: Optional[str] = None) -> Decimal:
        """Balance of ``wid`` (the active wallet by default)."""
        await self._require_unlocked()
        wid = wid or self._registry.active_id
        if wid is None:
            raise WalletNotFound("No active wallet")
        wallet = self._registry.get(wid)
        adapter = self._registry.adapter(wallet.chain_type, wallet.network)
        return await adapter.get_balance(wallet.address)

    async def _entry(self, wallet: Wallet) -> PortfolioEntry:
        adapter = self._registry.adapter(wallet.chain_type, wallet.network)
        entry = PortfolioEntry(
            wallet_id=wallet.id,
            name=wallet.name,
            address=wallet.address,
            network=wallet.network,
            symbol=adapter.network_info.symbol,
        )
        entry.balance = await adapter.get_balance(wallet.address)
        if self._oracle is not None:
            entry.price = await self._oracle.get_price(entry.symbol)
            entry.value = entry.price * float(entry.balance)
        return entry

    async def portfolio(self) -> Portfolio:
        """Balances of every wallet, fetched concurrently.

        A failed lookup is reported on its entry and does not affect the
        others.
        """
        await self._require_unlocked()
        wallets = self._registry.wallets()
        results = await asyncio.gather(
            *(self._entry(w) for w in wallets), return_exceptions=True,
        )
        portfolio = Portfolio()
        for wallet, result in zip(wallets, results):
            if isinstance(result, BaseException):
                logger.error("Balance lookup failed for %s: %s", wallet.id, result)
                result = PortfolioEntry(
                    wallet_id=wallet.id,
                    name=wallet.name,
                    address=wallet.address,
                    network=wallet.network,
                    symbol="",
                    error=str(result) or type(result).__name__,
                )
            portfolio.entries.append(result)
            portfolio.total_value += result.value or 0.0
        return portfolio

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def catalog(self) -> dict[str, RecordMetadata]:
        """Record metadata; missing index entries are rebuilt when unlocked."""
        return await self._store.catalog(None if self.is_locked() else self._password)

    async def info(self) -> dict[str, Any]:
        info = await self._store.info()
        info.update({
            "state": (await self.state()).value,
            "sessionTimeout": self._config.session_timeout,
            "loadedWallets": len(self._registry),
        })
        return info

    async def close(self) -> None:
        """Close network resources held by adapters and the oracle."""
        await self._registry.close()
        if self._oracle is not None:
            await self._oracle.close()
