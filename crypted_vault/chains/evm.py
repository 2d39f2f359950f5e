"""EVM chain adapter (Ethereum and compatible chains).

Keys follow BIP-39 mnemonics and the BIP-44 path ``m/44'/60'/0'/0/{index}``.
"""
import logging
from decimal import Decimal
from typing import Any, Optional

import aiohttp
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_keys import keys
from eth_utils import is_address
from mnemonic import Mnemonic
from pydantic import SecretStr

from ..exceptions import InvalidKeyMaterial
from .base import ChainAdapter, KeyMaterial, NetworkInfo

logger = logging.getLogger("crypted.chains")

Account.enable_unaudited_hdwallet_features()

ETH_DERIVATION_PATH = "m/44'/60'/0'/0/{}"
WEI_PER_ETHER = Decimal(10) ** 18

EVM_NETWORKS = {
    n.key: n for n in (
        NetworkInfo(key="eth-mainnet", name="Ethereum Mainnet", chain_id=1,
                    symbol="ETH", rpc_url="https://eth.llamarpc.com"),
        NetworkInfo(key="base-mainnet", name="Base Mainnet", chain_id=8453,
                    symbol="ETH", rpc_url="https://mainnet.base.org"),
        NetworkInfo(key="optimism-mainnet", name="Optimism Mainnet", chain_id=10,
                    symbol="ETH", rpc_url="https://mainnet.optimism.io"),
        NetworkInfo(key="sepolia", name="Ethereum Sepolia", chain_id=11155111,
                    symbol="ETH", rpc_url="https://rpc.sepolia.org"),
        NetworkInfo(key="polygon", name="Polygon", chain_id=137,
                    symbol="MATIC", rpc_url="https://polygon-rpc.com"),
        NetworkInfo(key="bsc", name="BSC", chain_id=56,
                    symbol="BNB", rpc_url="https://bsc-dataseed.binance.org"),
        NetworkInfo(key="arbitrum", name="Arbitrum One", chain_id=42161,
                    symbol="ETH", rpc_url="https://arb1.arbitrum.io/rpc"),
    )
}

_mnemo = Mnemonic("english")


def _normalize_key(private_key: str) -> str:
    private_key = private_key.strip()
    if not private_key.startswith("0x"):
        private_key = "0x" + private_key
    return private_key


def _material(account: Any, mnemonic: Optional[str] = None,
              path: Optional[str] = None) -> KeyMaterial:
    key_bytes = bytes(account.key)
    return KeyMaterial(
        address=account.address,
        public_key=keys.PrivateKey(key_bytes).public_key.to_hex(),
        private_key=SecretStr("0x" + key_bytes.hex()),
        mnemonic=SecretStr(mnemonic) if mnemonic else None,
        derivation_path=path,
    )


class EVMAdapter(ChainAdapter):
    """eth_account backed adapter; balances over JSON-RPC."""

    chain_type = "EVM"
    networks = EVM_NETWORKS

    def __init__(self, network: str = "eth-mainnet", rpc_url: Optional[str] = None):
        super().__init__(network)
        self._rpc_url = rpc_url or self.network_info.rpc_url
        self._session: Optional[aiohttp.ClientSession] = None

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def generate(self) -> KeyMaterial:
        path = ETH_DERIVATION_PATH.format(0)
        account, phrase = Account.create_with_mnemonic(account_path=path)
        return _material(account, phrase, path)

    def import_from_private_key(self, private_key: str) -> KeyMaterial:
        try:
            account = Account.from_key(_normalize_key(private_key))
        except Exception as err:
            raise InvalidKeyMaterial("Invalid private key") from err
        return _material(account)

    def import_from_mnemonic(self, mnemonic: str, index: int = 0) -> KeyMaterial:
        if index < 0:
            raise InvalidKeyMaterial(f"Invalid derivation index: {index}")
        phrase = " ".join(mnemonic.split())
        if not self.is_valid_mnemonic(phrase):
            raise InvalidKeyMaterial("Invalid mnemonic phrase")
        path = ETH_DERIVATION_PATH.format(index)
        account = Account.from_mnemonic(phrase, account_path=path)
        return _material(account, phrase, path)

    def sign_message(self, private_key: str, message: str) -> str:
        signed = Account.sign_message(
            encode_defunct(text=message), private_key=_normalize_key(private_key),
        )
        return "0x" + bytes(signed.signature).hex()

    @classmethod
    def is_valid_address(cls, address: str) -> bool:
        return is_address(address)

    @classmethod
    def is_valid_mnemonic(cls, mnemonic: str) -> bool:
        return _mnemo.check(" ".join(mnemonic.split()))

    # ------------------------------------------------------------------
    # Network
    # ------------------------------------------------------------------

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=10),
            )
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _rpc(self, method: str, params: list) -> Any:
        session = await self._get_session()
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        async with session.post(self._rpc_url, json=payload) as resp:
            resp.raise_for_status()
            data = await resp.json(content_type=None)
        if data.get("error"):
            raise RuntimeError(f"RPC error from {self.network}: {data['error']}")
        return data["result"]

    async def get_balance(self, address: str) -> Decimal:
        result = await self._rpc("eth_getBalance", [address, "latest"])
        return Decimal(int(result, 16)) / WEI_PER_ETHER
