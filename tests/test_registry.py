"""
Tests for the wallet registry.

Tests cover:
- Stable wallet and seed group identifiers
- HD derivation contiguity
- Standalone import, duplicates and invalid keys
- Active wallet pointer
- Removal rules (seed group cascade, last-child only)
- Rehydration from the record store, including partial failures
"""
import pytest
from pydantic import SecretStr

from crypted_vault.exceptions import (
    AlreadyExists,
    DerivationOrderError,
    IndexAlreadyDerived,
    InvalidKeyMaterial,
    SeedGroupNotFound,
    UnsupportedChain,
    WalletNotFound,
)
from crypted_vault.vault.store import RecordStore
from crypted_vault.wallet import WalletOptions, WalletRegistry, seed_id, wallet_id

from .conftest import PASSWORD, TEST_MNEMONIC

FIRST_ADDRESS = "0x9858EfFD232B4033E47d90003D41EC34EcaEda94"
PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
PRIVATE_KEY_ADDRESS = "0x2c7536E3605D9C16a7a3D7b1898e529396a65c23"


@pytest.fixture
def registry():
    return WalletRegistry()


def mnemonic_options(**kwargs):
    return WalletOptions(mnemonic=SecretStr(TEST_MNEMONIC), **kwargs)


class TestIdentifiers:

    def test_wallet_id(self):
        assert wallet_id("EVM", FIRST_ADDRESS) == "evm_" + FIRST_ADDRESS.lower()

    def test_seed_id_is_stable(self):
        assert seed_id(TEST_MNEMONIC) == seed_id("  " + TEST_MNEMONIC.upper() + "\n")
        assert seed_id(TEST_MNEMONIC).startswith("seed_")

    def test_seed_id_does_not_leak_words(self):
        sid = seed_id(TEST_MNEMONIC)
        assert "abandon" not in sid
        assert "about" not in sid


class TestSeedGroups:

    def test_create_from_mnemonic_derives_index_zero(self, registry):
        group = registry.create_seed_group(mnemonic_options(name="Main"))
        assert list(group.derived) == [0]
        child = group.derived[0]
        assert child.address == FIRST_ADDRESS
        assert child.derivation_path == "m/44'/60'/0'/0/0"
        assert child.id == wallet_id("EVM", FIRST_ADDRESS)
        assert registry.active_id == child.id

    def test_create_fresh(self, registry):
        group = registry.create_seed_group()
        assert len(group.mnemonic.get_secret_value().split()) == 12
        assert group.next_index == 1

    def test_derive_next_is_contiguous(self, registry):
        group = registry.create_seed_group(mnemonic_options())
        first = registry.derive_next(group.seed_id)
        second = registry.derive_next(group.seed_id)
        assert (first.index, second.index) == (1, 2)
        assert sorted(group.derived) == [0, 1, 2]
        addresses = {w.address for w in group.derived.values()}
        assert len(addresses) == 3

    def test_derivation_is_deterministic(self):
        a = WalletRegistry().create_seed_group(mnemonic_options())
        b = WalletRegistry().create_seed_group(mnemonic_options())
        assert a.seed_id == b.seed_id
        assert a.derived[0].address == b.derived[0].address

    def test_out_of_order_derivation(self, registry):
        group = registry.create_seed_group(mnemonic_options())
        with pytest.raises(IndexAlreadyDerived):
            registry._derive(group, 0)
        with pytest.raises(DerivationOrderError):
            registry._derive(group, 5)

    def test_duplicate_mnemonic(self, registry):
        registry.create_seed_group(mnemonic_options())
        with pytest.raises(AlreadyExists):
            registry.create_seed_group(mnemonic_options())

    def test_invalid_mnemonic(self, registry):
        with pytest.raises(InvalidKeyMaterial):
            registry.create_seed_group(
                WalletOptions(mnemonic=SecretStr("not a real mnemonic phrase"))
            )
        assert registry.seed_groups() == []

    def test_unknown_seed_group(self, registry):
        with pytest.raises(SeedGroupNotFound):
            registry.derive_next("seed_missing")

    def test_listing(self, registry):
        group = registry.create_seed_group(mnemonic_options(name="HD"))
        registry.derive_next(group.seed_id)
        registry.import_standalone(PRIVATE_KEY)
        listing = registry.list()
        assert listing.total == 3
        assert [w.index for w in listing.seed_groups[0].wallets] == [0, 1]
        assert listing.seed_groups[0].wallets[0].name == "HD #0"
        assert listing.standalone[0].address == PRIVATE_KEY_ADDRESS


class TestStandalone:

    def test_import(self, registry):
        wallet = registry.import_standalone(PRIVATE_KEY, WalletOptions(name="Cold"))
        assert wallet.address == PRIVATE_KEY_ADDRESS
        assert wallet.name == "Cold"
        assert wallet.private_key.get_secret_value() == PRIVATE_KEY

    def test_import_without_prefix(self, registry):
        wallet = registry.import_standalone(PRIVATE_KEY[2:])
        assert wallet.address == PRIVATE_KEY_ADDRESS

    def test_duplicate(self, registry):
        registry.import_standalone(PRIVATE_KEY)
        with pytest.raises(AlreadyExists):
            registry.import_standalone(PRIVATE_KEY)
        assert len(registry) == 1

    def test_invalid_key(self, registry):
        with pytest.raises(InvalidKeyMaterial):
            registry.import_standalone("0x1234")

    def test_create(self, registry):
        wallet = registry.create_standalone()
        assert wallet.address.startswith("0x")
        assert wallet.type == "privatekey"

    def test_secrets_hidden_from_repr(self, registry):
        wallet = registry.import_standalone(PRIVATE_KEY)
        assert PRIVATE_KEY not in repr(wallet)
        assert PRIVATE_KEY[2:] not in str(wallet.model_dump())

    def test_unsupported_chain(self, registry):
        with pytest.raises(UnsupportedChain):
            registry.import_standalone(PRIVATE_KEY, WalletOptions(chain_type="SOL"))
        with pytest.raises(UnsupportedChain):
            registry.import_standalone(PRIVATE_KEY, WalletOptions(network="nowhere"))


class TestActiveAndRemoval:

    def test_first_wallet_becomes_active(self, registry):
        wallet = registry.import_standalone(PRIVATE_KEY)
        registry.create_seed_group(mnemonic_options())
        assert registry.active.id == wallet.id

    def test_set_active(self, registry):
        registry.import_standalone(PRIVATE_KEY)
        group = registry.create_seed_group(mnemonic_options())
        registry.set_active(group.derived[0].id)
        assert registry.active_id == group.derived[0].id
        with pytest.raises(WalletNotFound):
            registry.set_active("evm_0xmissing")

    def test_remove_active_reassigns(self, registry):
        wallet = registry.import_standalone(PRIVATE_KEY)
        group = registry.create_seed_group(mnemonic_options())
        registry.remove(wallet.id)
        assert registry.active_id == group.derived[0].id
        registry.remove(group.seed_id)
        assert registry.active_id is None
        assert len(registry) == 0

    def test_seed_group_cascade(self, registry):
        group = registry.create_seed_group(mnemonic_options())
        child = registry.derive_next(group.seed_id)
        registry.remove(group.seed_id)
        assert child.id not in registry
        assert registry.seed_groups() == []

    def test_only_last_child_can_be_removed(self, registry):
        group = registry.create_seed_group(mnemonic_options())
        one = registry.derive_next(group.seed_id)
        two = registry.derive_next(group.seed_id)
        with pytest.raises(DerivationOrderError):
            registry.remove(one.id)
        with pytest.raises(DerivationOrderError):
            registry.remove(group.derived[0].id)
        registry.remove(two.id)
        assert group.next_index == 2
        again = registry.derive_next(group.seed_id)
        assert again.address == two.address

    def test_remove_unknown(self, registry):
        with pytest.raises(WalletNotFound):
            registry.remove("evm_0xmissing")

    def test_rename(self, registry):
        group = registry.create_seed_group(mnemonic_options())
        registry.rename(group.seed_id, "Savings")
        assert group.name == "Savings"
        with pytest.raises(ValueError):
            registry.rename(group.seed_id, "")

    def test_rename_group_renames_default_children(self, registry):
        group = registry.create_seed_group(mnemonic_options(name="Main"))
        registry.derive_next(group.seed_id)
        custom = registry.derive_next(group.seed_id)
        registry.rename(custom.id, "Trading")

        registry.rename(group.seed_id, "Savings")
        assert group.derived[0].name == "Savings #0"
        assert group.derived[1].name == "Savings #1"
        assert group.derived[2].name == "Trading"
        record = registry.seed_record(group.seed_id)
        assert record.derived_names == {"2": "Trading"}

    def test_rollback_restores_removed_wallets(self, registry):
        group = registry.create_seed_group(mnemonic_options())
        child = registry.derive_next(group.seed_id)
        state = registry.checkpoint()

        registry.remove(group.seed_id)
        assert len(registry) == 0
        registry.rollback(state)
        assert registry.has_seed_group(group.seed_id)
        assert registry.get(child.id) is child
        assert sorted(group.derived) == [0, 1]
        assert registry.active_id == group.derived[0].id


class TestRehydrate:

    @pytest.mark.asyncio
    async def test_round_trip(self, registry, config):
        store = RecordStore(config)
        group = registry.create_seed_group(mnemonic_options(name="HD"))
        registry.derive_next(group.seed_id)
        registry.rename(group.derived[1].id, "Trading")
        wallet = registry.import_standalone(PRIVATE_KEY, WalletOptions(name="Cold"))
        await store.put(group.seed_id, registry.seed_record(group.seed_id).to_payload(), PASSWORD)
        await store.put(wallet.id, registry.standalone_record(wallet.id).to_payload(), PASSWORD)

        restored = WalletRegistry()
        report = await restored.rehydrate(store, PASSWORD)
        assert report.ok
        assert sorted(report.loaded) == sorted([group.seed_id, wallet.id])

        again = restored.get_seed_group(group.seed_id)
        assert sorted(again.derived) == [0, 1]
        assert again.derived[1].address == group.derived[1].address
        assert again.derived[1].name == "Trading"
        assert again.created_at == group.created_at
        assert restored.get(wallet.id).name == "Cold"

    @pytest.mark.asyncio
    async def test_partial_failure(self, config):
        store = RecordStore(config)
        await store.put("evm_good", {
            "type": "privatekey", "id": "evm_good", "name": "Good",
            "chainType": "EVM", "network": "eth-mainnet",
            "address": PRIVATE_KEY_ADDRESS, "privateKey": PRIVATE_KEY,
        }, PASSWORD)
        await store.put("evm_other_password", {"type": "privatekey"}, "Other1234!")
        await store.put("evm_missing_fields", {"type": "privatekey"}, PASSWORD)
        await store.put("seed_bad", {
            "type": "hd", "seedId": "seed_bad", "name": "Bad", "chainType": "EVM",
            "network": "eth-mainnet", "mnemonic": "not valid", "derivedCount": 2,
        }, PASSWORD)

        registry = WalletRegistry()
        report = await registry.rehydrate(store, PASSWORD)
        assert report.loaded == [wallet_id("EVM", PRIVATE_KEY_ADDRESS)]
        assert set(report.failed) == {"evm_other_password", "evm_missing_fields", "seed_bad"}
        assert registry.seed_groups() == []

    @pytest.mark.asyncio
    async def test_legacy_seed_record_defaults(self, config):
        store = RecordStore(config)
        await store.put("seed_legacy", {
            "type": "hd", "seedId": "seed_legacy", "name": "Legacy",
            "chainType": "EVM", "network": "eth-mainnet", "mnemonic": TEST_MNEMONIC,
        }, PASSWORD)
        registry = WalletRegistry()
        report = await registry.rehydrate(store, PASSWORD)
        assert report.ok
        group = registry.seed_groups()[0]
        assert list(group.derived) == [0]
        assert group.derived[0].address == FIRST_ADDRESS
