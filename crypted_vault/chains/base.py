"""Chain adapter capability interface.

The vault never inspects key material beyond storing and retrieving it;
every chain-specific operation goes through a ``ChainAdapter``.
"""
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from ..exceptions import UnsupportedChain


class NetworkInfo(BaseModel):
    """A network reachable by an adapter."""

    model_config = ConfigDict(populate_by_name=True)

    key: str
    name: str
    chain_id: int = Field(alias="chainId")
    symbol: str
    rpc_url: Optional[str] = Field(default=None, alias="rpcUrl")


class KeyMaterial(BaseModel):
    """Key material returned by an adapter."""

    address: str
    public_key: str
    private_key: Optional[SecretStr] = None
    mnemonic: Optional[SecretStr] = None
    derivation_path: Optional[str] = None


class ChainAdapter(ABC):
    """One implementation per chain family."""

    chain_type: str = "unknown"
    networks: dict[str, NetworkInfo] = {}

    def __init__(self, network: str):
        if network not in self.networks:
            raise UnsupportedChain(
                f"Unsupported network for {self.chain_type}: {network}"
            )
        self.network = network

    @property
    def network_info(self) -> NetworkInfo:
        return self.networks[self.network]

    @classmethod
    def supported_networks(cls) -> list[NetworkInfo]:
        return list(cls.networks.values())

    @abstractmethod
    def generate(self) -> KeyMaterial:
        """Generate a new key pair together with its mnemonic."""

    @abstractmethod
    def import_from_private_key(self, private_key: str) -> KeyMaterial:
        """Materialize a key pair from a private key."""

    @abstractmethod
    def import_from_mnemonic(self, mnemonic: str, index: int = 0) -> KeyMaterial:
        """Derive the key pair at ``index`` of a mnemonic."""

    @abstractmethod
    def sign_message(self, private_key: str, message: str) -> str:
        """Sign a text message, returning the hex signature."""

    @abstractmethod
    async def get_balance(self, address: str) -> Decimal:
        """Native-currency balance of ``address``."""

    @classmethod
    @abstractmethod
    def is_valid_address(cls, address: str) -> bool:
        """Validate an address for this chain."""

    @classmethod
    def is_valid_mnemonic(cls, mnemonic: str) -> bool:
        return False

    async def close(self) -> None:
        """Release network resources, if any."""
