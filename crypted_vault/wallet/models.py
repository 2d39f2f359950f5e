"""Wallet registry models.

In-memory entries hold secrets as ``SecretStr`` so they never show up in
reprs or logs. Persisted records use the camelCase field names of the
on-disk format.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, SecretStr


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WalletOptions(BaseModel):
    """Options accepted when creating or importing wallets."""

    chain_type: str = "EVM"
    network: str = "eth-mainnet"
    name: Optional[str] = None
    mnemonic: Optional[SecretStr] = None
    private_key: Optional[SecretStr] = None
    created_at: Optional[datetime] = None


class StandaloneWallet(BaseModel):
    """A single key pair that belongs to no seed group."""

    type: Literal["privatekey"] = "privatekey"
    id: str
    name: str
    chain_type: str
    network: str
    address: str
    public_key: str
    private_key: SecretStr
    created_at: datetime = Field(default_factory=utcnow)


class DerivedWallet(BaseModel):
    """A child of a seed group, reconstructable from its mnemonic and index."""

    type: Literal["derived"] = "derived"
    id: str
    index: int
    seed_id: str
    name: str
    chain_type: str
    network: str
    address: str
    public_key: str
    private_key: SecretStr
    derivation_path: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


Wallet = Union[StandaloneWallet, DerivedWallet]


class SeedGroup(BaseModel):
    """One mnemonic and its derived children keyed by index."""

    type: Literal["hd"] = "hd"
    seed_id: str
    name: str
    mnemonic: SecretStr
    chain_type: str
    network: str
    derived: dict[int, DerivedWallet] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def next_index(self) -> int:
        return len(self.derived)


# ---------------------------------------------------------------------------
# Views (no secrets)
# ---------------------------------------------------------------------------

class WalletView(BaseModel):
    id: str
    name: str
    address: str
    chain_type: str
    network: str
    type: str
    index: Optional[int] = None
    seed_id: Optional[str] = None
    is_active: bool = False
    created_at: datetime


class SeedGroupView(BaseModel):
    seed_id: str
    name: str
    chain_type: str
    network: str
    wallets: list[WalletView]
    created_at: datetime


class WalletListing(BaseModel):
    seed_groups: list[SeedGroupView] = Field(default_factory=list)
    standalone: list[WalletView] = Field(default_factory=list)
    total: int = 0


class LoadReport(BaseModel):
    """Outcome of rehydrating the registry from the record store."""

    loaded: list[str] = Field(default_factory=list)
    failed: dict[str, str] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


# ---------------------------------------------------------------------------
# Persisted records
# ---------------------------------------------------------------------------

class StandaloneRecord(BaseModel):
    """Sealed payload of a standalone wallet."""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["privatekey"] = "privatekey"
    id: str
    name: str
    chain_type: str = Field(alias="chainType")
    network: str
    address: str
    private_key: str = Field(alias="privateKey")
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class SeedGroupRecord(BaseModel):
    """Sealed payload of a seed group; children are re-derived on load."""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["hd"] = "hd"
    seed_id: str = Field(alias="seedId")
    name: str
    mnemonic: str
    chain_type: str = Field(alias="chainType")
    network: str
    derived_count: int = Field(default=1, ge=1, alias="derivedCount")
    # index (as str) -> custom name of a derived wallet
    derived_names: dict[str, str] = Field(default_factory=dict, alias="derivedNames")
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


# ---------------------------------------------------------------------------
# Portfolio
# ---------------------------------------------------------------------------

class PortfolioEntry(BaseModel):
    """Balance of one wallet; ``error`` is set when the lookup failed."""

    wallet_id: str
    name: str
    address: str
    network: str
    symbol: str
    balance: Optional[Decimal] = None
    price: Optional[float] = None
    value: Optional[float] = None
    error: Optional[str] = None


class Portfolio(BaseModel):
    entries: list[PortfolioEntry] = Field(default_factory=list)
    total_value: float = 0.0

    @property
    def failed(self) -> list[PortfolioEntry]:
        return [e for e in self.entries if e.error is not None]
