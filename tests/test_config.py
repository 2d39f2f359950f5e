"""
Tests for VaultConfig resolution from the environment.
"""
from pathlib import Path

import pytest
from pydantic import ValidationError

from crypted_vault.vault.config import VaultConfig, default_storage_dir


class TestStorageDir:

    def test_explicit_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("CRYPTED_STORAGE_DIR", str(tmp_path / "vault"))
        assert default_storage_dir() == tmp_path / "vault"

    def test_development(self, monkeypatch, tmp_path):
        monkeypatch.delenv("CRYPTED_STORAGE_DIR", raising=False)
        monkeypatch.setenv("CRYPTED_ENV", "development")
        monkeypatch.chdir(tmp_path)
        assert default_storage_dir() == tmp_path / "data" / ".crypted"

    def test_home(self, monkeypatch):
        monkeypatch.delenv("CRYPTED_STORAGE_DIR", raising=False)
        monkeypatch.delenv("CRYPTED_ENV", raising=False)
        assert default_storage_dir() == Path.home() / ".crypted"


class TestVaultConfig:

    def test_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("CRYPTED_STORAGE_DIR", str(tmp_path))
        monkeypatch.setenv("CRYPTED_SESSION_TIMEOUT", "120")
        monkeypatch.setenv("CRYPTED_KDF_ITERATIONS", "5000")
        config = VaultConfig.from_env(network="polygon")
        assert config.session_timeout == 120
        assert config.kdf_iterations == 5000
        assert config.network == "polygon"
        assert config.auth_file == tmp_path / "auth.json"
        assert config.wallets_dir == tmp_path / "wallets"

    def test_rejects_weak_kdf(self, tmp_path):
        with pytest.raises(ValidationError):
            VaultConfig(storage_dir=tmp_path, kdf_iterations=10)

    def test_rejects_zero_timeout(self, tmp_path):
        with pytest.raises(ValidationError):
            VaultConfig(storage_dir=tmp_path, session_timeout=0)
