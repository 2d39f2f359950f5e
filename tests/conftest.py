import pytest

from crypted_vault.vault.config import VaultConfig

PASSWORD = "Abcd1234!"
TEST_MNEMONIC = (
    "abandon abandon abandon abandon abandon abandon "
    "abandon abandon abandon abandon abandon about"
)


class FakeClock:
    """Controllable replacement for ``time.time``."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def config(tmp_path):
    """Vault config rooted in a temporary directory, with a cheap KDF."""
    return VaultConfig(
        storage_dir=tmp_path / ".crypted",
        session_timeout=60,
        kdf_iterations=1000,
    )


@pytest.fixture
def clock():
    return FakeClock()
