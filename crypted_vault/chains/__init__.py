"""Chain adapters."""

from .base import ChainAdapter, KeyMaterial, NetworkInfo
from .evm import EVMAdapter

DEFAULT_ADAPTERS: dict[str, type[ChainAdapter]] = {
    EVMAdapter.chain_type: EVMAdapter,
}

__all__ = [
    "ChainAdapter",
    "KeyMaterial",
    "NetworkInfo",
    "EVMAdapter",
    "DEFAULT_ADAPTERS",
]
