"""
WalletRegistry — In-memory registry of standalone wallets and HD seed groups.

Provides:
- ``create_standalone`` / ``import_standalone`` — single key pairs
- ``create_seed_group`` / ``derive_next`` — mnemonic groups with contiguous
  derivation indices (0, 1, 2, ...)
- ``list`` / ``get`` / ``remove`` / ``set_active`` — lookup and bookkeeping
- ``rehydrate`` — rebuild the registry from the record store after unlock

Every wallet (standalone or derived) is indexed globally by its WalletId;
seed groups own their derived children.

Security Note:
    Secrets are held as ``SecretStr``. Never log private keys or mnemonics;
    only log ids and counts.
"""
import hashlib
import logging
from typing import Mapping, Optional, Union

from pydantic import SecretStr, ValidationError

from ..chains import DEFAULT_ADAPTERS, ChainAdapter, KeyMaterial
from ..exceptions import (
    AlreadyExists,
    DerivationOrderError,
    IndexAlreadyDerived,
    InvalidKeyMaterial,
    SeedGroupNotFound,
    UnsupportedChain,
    WalletNotFound,
)
from .models import (
    DerivedWallet,
    LoadReport,
    SeedGroup,
    SeedGroupRecord,
    SeedGroupView,
    StandaloneRecord,
    StandaloneWallet,
    Wallet,
    WalletListing,
    WalletOptions,
    WalletView,
    utcnow,
)

logger = logging.getLogger("crypted.wallet")

SEED_ID_PREFIX = "seed_"
_SEED_ID_DOMAIN = b"crypted-seed-id:"


def wallet_id(chain_type: str, address: str) -> str:
    """Stable WalletId for an address on a chain."""
    return f"{chain_type.lower()}_{address.lower()}"


def seed_id(mnemonic: str) -> str:
    """Stable SeedGroupId fingerprint of a mnemonic."""
    normalized = " ".join(mnemonic.lower().split())
    digest = hashlib.sha256(_SEED_ID_DOMAIN + normalized.encode("utf-8"))
    return SEED_ID_PREFIX + digest.hexdigest()[:16]


def _child_name(group_name: str, index: int) -> str:
    return f"{group_name} #{index}"


class WalletRegistry:
    """Owns wallets, seed groups and the active-wallet pointer.

    Chain adapters are looked up by chain type; one adapter instance is
    kept per (chain type, network).
    """

    def __init__(
        self,
        adapters: Optional[Mapping[str, type[ChainAdapter]]] = None,
    ):
        self._adapter_classes = dict(adapters or DEFAULT_ADAPTERS)
        self._adapters: dict[tuple[str, str], ChainAdapter] = {}
        self._wallets: dict[str, Wallet] = {}
        self._seed_groups: dict[str, SeedGroup] = {}
        self._active_id: Optional[str] = None

    # ------------------------------------------------------------------
    # Adapters
    # ------------------------------------------------------------------

    def adapter(self, chain_type: str, network: str) -> ChainAdapter:
        """Return the adapter for a chain type and network.

        Raises:
            UnsupportedChain: If no adapter handles the chain or network.
        """
        key = (chain_type, network)
        if key not in self._adapters:
            cls = self._adapter_classes.get(chain_type)
            if cls is None:
                raise UnsupportedChain(f"Unsupported chain type: {chain_type}")
            self._adapters[key] = cls(network)
        return self._adapters[key]

    def supported_chains(self) -> list[dict]:
        return [
            {
                "chainType": chain_type,
                "networks": [n.model_dump(by_alias=True) for n in cls.supported_networks()],
            }
            for chain_type, cls in self._adapter_classes.items()
        ]

    async def close(self) -> None:
        for adapter in self._adapters.values():
            await adapter.close()
        self._adapters.clear()

    # ------------------------------------------------------------------
    # Internal bookkeeping
    # ------------------------------------------------------------------

    def _register(self, wallet: Wallet) -> None:
        self._wallets[wallet.id] = wallet
        if self._active_id is None:
            self._active_id = wallet.id

    def _unregister(self, wid: str) -> None:
        del self._wallets[wid]
        if self._active_id == wid:
            self._active_id = next(iter(self._wallets), None)

    def _ensure_new(self, wid: str) -> None:
        if wid in self._wallets:
            raise AlreadyExists(f"Wallet already exists: {wid}")

    def _derive(self, group: SeedGroup, index: int) -> DerivedWallet:
        if index in group.derived:
            raise IndexAlreadyDerived(
                f"Index {index} already derived for {group.seed_id}"
            )
        if index != group.next_index:
            raise IndexAlreadyDerived(
                f"Out of order derivation for {group.seed_id}: "
                f"expected index {group.next_index}, got {index}"
            )
        adapter = self.adapter(group.chain_type, group.network)
        material = adapter.import_from_mnemonic(
            group.mnemonic.get_secret_value(), index,
        )
        wid = wallet_id(group.chain_type, material.address)
        self._ensure_new(wid)
        wallet = DerivedWallet(
            id=wid,
            index=index,
            seed_id=group.seed_id,
            name=_child_name(group.name, index),
            chain_type=group.chain_type,
            network=group.network,
            address=material.address,
            public_key=material.public_key,
            private_key=material.private_key,
            derivation_path=material.derivation_path,
        )
        group.derived[index] = wallet
        self._register(wallet)
        logger.debug("Derived wallet %s at index %d of %s", wid, index, group.seed_id)
        return wallet

    def _standalone(self, material: KeyMaterial, options: WalletOptions,
                    default_name: str) -> StandaloneWallet:
        wid = wallet_id(options.chain_type, material.address)
        self._ensure_new(wid)
        wallet = StandaloneWallet(
            id=wid,
            name=options.name or default_name,
            chain_type=options.chain_type,
            network=options.network,
            address=material.address,
            public_key=material.public_key,
            private_key=material.private_key,
            created_at=options.created_at or utcnow(),
        )
        self._register(wallet)
        return wallet

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_standalone(self, options: Optional[WalletOptions] = None) -> StandaloneWallet:
        """Create a standalone wallet from a fresh key (or ``options.private_key``).

        Raises:
            AlreadyExists: If the key is already registered.
        """
        options = options or WalletOptions()
        if options.private_key is not None:
            return self.import_standalone(options.private_key.get_secret_value(), options)
        adapter = self.adapter(options.chain_type, options.network)
        fresh = adapter.generate()
        material = adapter.import_from_private_key(fresh.private_key.get_secret_value())
        wallet = self._standalone(
            material, options, f"Wallet {len(self._wallets) + 1}",
        )
        logger.info("Created standalone wallet %s", wallet.id)
        return wallet

    def import_standalone(
        self,
        private_key: str,
        options: Optional[WalletOptions] = None,
    ) -> StandaloneWallet:
        """Import a standalone wallet from a private key.

        Raises:
            AlreadyExists: If the key is already registered.
            InvalidKeyMaterial: If the key cannot be parsed.
        """
        options = options or WalletOptions()
        if not private_key:
            raise InvalidKeyMaterial("Private key is required")
        adapter = self.adapter(options.chain_type, options.network)
        material = adapter.import_from_private_key(private_key)
        wallet = self._standalone(
            material, options, f"Imported {len(self._wallets) + 1}",
        )
        logger.info("Imported standalone wallet %s", wallet.id)
        return wallet

    def create_seed_group(
        self,
        options: Optional[WalletOptions] = None,
        sid: Optional[str] = None,
    ) -> SeedGroup:
        """Create a seed group (fresh or from ``options.mnemonic``) and derive index 0.

        ``sid`` keeps the id of a persisted group; new groups are keyed by the
        mnemonic fingerprint.

        Raises:
            AlreadyExists: If the mnemonic (or its first child) is registered.
            InvalidKeyMaterial: If the mnemonic is invalid.
        """
        options = options or WalletOptions()
        adapter = self.adapter(options.chain_type, options.network)
        if options.mnemonic is not None:
            phrase = " ".join(options.mnemonic.get_secret_value().split())
            if not adapter.is_valid_mnemonic(phrase):
                raise InvalidKeyMaterial("Invalid mnemonic phrase")
        else:
            phrase = adapter.generate().mnemonic.get_secret_value()

        fingerprint = seed_id(phrase)
        sid = sid or fingerprint
        if sid in self._seed_groups or any(
            seed_id(g.mnemonic.get_secret_value()) == fingerprint
            for g in self._seed_groups.values()
        ):
            raise AlreadyExists("Seed group with this mnemonic already exists")

        group = SeedGroup(
            seed_id=sid,
            name=options.name or f"HD Wallet {len(self._seed_groups) + 1}",
            mnemonic=SecretStr(phrase),
            chain_type=options.chain_type,
            network=options.network,
            created_at=options.created_at or utcnow(),
        )
        self._seed_groups[sid] = group
        try:
            self._derive(group, 0)
        except Exception:
            del self._seed_groups[sid]
            raise
        logger.info("Created seed group %s", sid)
        return group

    def derive_next(self, sid: str) -> DerivedWallet:
        """Derive the next child of a seed group at index == derived count.

        Raises:
            SeedGroupNotFound: If the seed group is unknown.
            AlreadyExists: If the derived address is already registered.
        """
        group = self.get_seed_group(sid)
        return self._derive(group, group.next_index)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def __contains__(self, wid: object) -> bool:
        return wid in self._wallets

    def __len__(self) -> int:
        return len(self._wallets)

    def has_seed_group(self, sid: str) -> bool:
        return sid in self._seed_groups

    def get(self, wid: str) -> Wallet:
        try:
            return self._wallets[wid]
        except KeyError:
            raise WalletNotFound(f"Wallet not found: {wid}") from None

    def get_seed_group(self, sid: str) -> SeedGroup:
        try:
            return self._seed_groups[sid]
        except KeyError:
            raise SeedGroupNotFound(f"Seed group not found: {sid}") from None

    def seed_groups(self) -> list[SeedGroup]:
        return list(self._seed_groups.values())

    def wallets(self) -> list[Wallet]:
        return list(self._wallets.values())

    @property
    def active_id(self) -> Optional[str]:
        return self._active_id

    @property
    def active(self) -> Optional[Wallet]:
        return self._wallets.get(self._active_id) if self._active_id else None

    def set_active(self, wid: str) -> Wallet:
        wallet = self.get(wid)
        self._active_id = wid
        return wallet

    def _view(self, wallet: Wallet) -> WalletView:
        return WalletView(
            id=wallet.id,
            name=wallet.name,
            address=wallet.address,
            chain_type=wallet.chain_type,
            network=wallet.network,
            type=wallet.type,
            index=getattr(wallet, "index", None),
            seed_id=getattr(wallet, "seed_id", None),
            is_active=wallet.id == self._active_id,
            created_at=wallet.created_at,
        )

    def export_wallet(self, wid: str) -> WalletView:
        """Public information of a wallet, without secrets."""
        return self._view(self.get(wid))

    def derived_wallets(self, sid: str) -> list[WalletView]:
        group = self.get_seed_group(sid)
        return [self._view(group.derived[i]) for i in sorted(group.derived)]

    def list(self) -> WalletListing:
        """All wallets organised as seed groups and standalone wallets."""
        groups = [
            SeedGroupView(
                seed_id=group.seed_id,
                name=group.name,
                chain_type=group.chain_type,
                network=group.network,
                wallets=self.derived_wallets(group.seed_id),
                created_at=group.created_at,
            )
            for group in self._seed_groups.values()
        ]
        standalone = [
            self._view(w) for w in self._wallets.values()
            if isinstance(w, StandaloneWallet)
        ]
        return WalletListing(
            seed_groups=groups, standalone=standalone, total=len(self._wallets),
        )

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def rename(self, wid: str, name: str) -> Union[Wallet, SeedGroup]:
        """Rename a wallet or a seed group.

        Renaming a seed group also renames the children that still carry
        their default ``"<group> #<i>"`` name.
        """
        if not name:
            raise ValueError("Name cannot be empty")
        group = self._seed_groups.get(wid)
        if group is None:
            target = self.get(wid)
            target.name = name
            return target
        for index, child in group.derived.items():
            if child.name == _child_name(group.name, index):
                child.name = _child_name(name, index)
        group.name = name
        return group

    def remove(self, wid: str) -> None:
        """Remove a standalone wallet, a seed group, or a seed group's last child.

        Removing a seed group removes all of its children. A derived child
        may only be removed when it has the highest index above 0.

        Raises:
            WalletNotFound: If the id is unknown.
            DerivationOrderError: If removing the child would leave a gap.
        """
        group = self._seed_groups.get(wid)
        if group is not None:
            for child in list(group.derived.values()):
                self._unregister(child.id)
            group.derived.clear()
            del self._seed_groups[wid]
            logger.info("Removed seed group %s", wid)
            return

        wallet = self.get(wid)
        if isinstance(wallet, DerivedWallet):
            parent = self._seed_groups[wallet.seed_id]
            if wallet.index == 0 or wallet.index != parent.next_index - 1:
                raise DerivationOrderError(
                    f"Only the last derived wallet of {parent.seed_id} can be removed"
                )
            del parent.derived[wallet.index]
        self._unregister(wid)
        logger.info("Removed wallet %s", wid)

    def checkpoint(self) -> tuple:
        """Snapshot of the membership and active pointer, for ``rollback``."""
        groups = {
            sid: (group, dict(group.derived))
            for sid, group in self._seed_groups.items()
        }
        return dict(self._wallets), groups, self._active_id

    def rollback(self, state: tuple) -> None:
        wallets, groups, active_id = state
        self._wallets = dict(wallets)
        self._seed_groups = {}
        for sid, (group, derived) in groups.items():
            group.derived = dict(derived)
            self._seed_groups[sid] = group
        self._active_id = active_id

    def clear(self) -> None:
        self._wallets.clear()
        self._seed_groups.clear()
        self._active_id = None

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def standalone_record(self, wid: str) -> StandaloneRecord:
        wallet = self.get(wid)
        if not isinstance(wallet, StandaloneWallet):
            raise WalletNotFound(f"Not a standalone wallet: {wid}")
        return StandaloneRecord(
            id=wallet.id,
            name=wallet.name,
            chain_type=wallet.chain_type,
            network=wallet.network,
            address=wallet.address,
            private_key=wallet.private_key.get_secret_value(),
            created_at=wallet.created_at,
        )

    def seed_record(self, sid: str) -> SeedGroupRecord:
        group = self.get_seed_group(sid)
        names = {
            str(index): child.name for index, child in group.derived.items()
            if child.name != _child_name(group.name, index)
        }
        return SeedGroupRecord(
            seed_id=group.seed_id,
            name=group.name,
            mnemonic=group.mnemonic.get_secret_value(),
            chain_type=group.chain_type,
            network=group.network,
            derived_count=max(len(group.derived), 1),
            derived_names=names,
            created_at=group.created_at,
        )

    def _restore(self, record_id: str, payload: dict) -> str:
        if payload.get("type") == "hd":
            record = SeedGroupRecord.model_validate(payload)
            group = self.create_seed_group(WalletOptions(
                chain_type=record.chain_type,
                network=record.network,
                name=record.name,
                mnemonic=SecretStr(record.mnemonic),
                created_at=record.created_at,
            ), sid=record_id)
            try:
                for _ in range(1, record.derived_count):
                    self.derive_next(group.seed_id)
            except Exception:
                self.remove(group.seed_id)
                raise
            for index, child in group.derived.items():
                child.name = record.derived_names.get(str(index), child.name)
            return group.seed_id

        record = StandaloneRecord.model_validate({**payload, "type": "privatekey"})
        wallet = self.import_standalone(record.private_key, WalletOptions(
            chain_type=record.chain_type,
            network=record.network,
            name=record.name,
            created_at=record.created_at,
        ))
        return wallet.id

    async def rehydrate(self, store, password: str) -> LoadReport:
        """Rebuild the registry from every record in ``store``.

        Seed groups are re-derived from their mnemonic up to the persisted
        derived count. A record that fails to load is reported and skipped.
        """
        report = LoadReport()
        for record_id in await store.list():
            try:
                payload = await store.get(record_id, password)
                report.loaded.append(self._restore(record_id, payload))
            except (ValidationError, ValueError, TypeError, AttributeError) as err:
                logger.error("Failed to load record %s: invalid payload (%s)", record_id, err)
                report.failed[record_id] = f"Invalid record: {err}"
            except Exception as err:
                logger.error("Failed to load record %s: %s", record_id, err)
                report.failed[record_id] = str(err)
        logger.info(
            "Registry rehydrated: %d loaded, %d failed",
            len(report.loaded), len(report.failed),
        )
        return report
