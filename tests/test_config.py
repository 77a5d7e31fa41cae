"""
tests/test_config.py

LedgerConfig construction from presets, environment and YAML.
"""

import pytest

from farmescrow.core.config import NETWORKS, LedgerConfig
from farmescrow.core.crypto import Ed25519KeyManager
from farmescrow.core.exceptions import ConfigurationError


class TestPresets:

    def test_testnet_default(self):
        config = LedgerConfig()
        assert config.horizon_url == NETWORKS["testnet"]["horizon_url"]
        assert config.network_passphrase == "Test SDF Network ; September 2015"

    def test_public(self):
        config = LedgerConfig.for_network("public")
        assert config.horizon_url == "https://horizon.stellar.org"

    def test_custom_network_needs_url_and_passphrase(self):
        with pytest.raises(ConfigurationError):
            LedgerConfig(network="standalone")
        config = LedgerConfig(
            network="standalone",
            horizon_url="http://localhost:8000/",
            network_passphrase="Standalone Network ; February 2017",
        )
        assert config.horizon_url == "http://localhost:8000"

    @pytest.mark.parametrize("field,value", [
        ("request_timeout", 0),
        ("transaction_timeout", -1),
        ("min_base_fee", 99),
    ])
    def test_bad_numbers(self, field, value):
        with pytest.raises(ConfigurationError):
            LedgerConfig(**{field: value})


class TestPlatformKeys:

    def test_public_key_derived_from_secret(self):
        key = Ed25519KeyManager.generate()
        config = LedgerConfig(platform_secret_key=key.secret)
        assert config.platform_public_key == key.public_key
        assert config.platform_key_manager().public_key == key.public_key

    def test_mismatched_pair_rejected(self):
        key = Ed25519KeyManager.generate()
        other = Ed25519KeyManager.generate()
        with pytest.raises(ConfigurationError):
            LedgerConfig(platform_public_key=other.public_key, platform_secret_key=key.secret)

    def test_malformed_secret_rejected(self):
        with pytest.raises(ConfigurationError):
            LedgerConfig(platform_secret_key="SNOPE")

    def test_malformed_public_key_rejected(self):
        with pytest.raises(ConfigurationError):
            LedgerConfig(platform_public_key="GNOPE")

    def test_missing_secret(self):
        with pytest.raises(ConfigurationError):
            LedgerConfig().platform_key_manager()

    def test_secret_not_in_repr(self):
        key = Ed25519KeyManager.generate()
        assert key.secret not in repr(LedgerConfig(platform_secret_key=key.secret))


class TestLoading:

    def test_from_env(self):
        key = Ed25519KeyManager.generate()
        config = LedgerConfig.from_env({
            "STELLAR_NETWORK": "public",
            "STELLAR_PLATFORM_SECRET_KEY": key.secret,
            "STELLAR_REQUEST_TIMEOUT": "5",
            "STELLAR_TX_TIMEOUT": "60",
            "UNRELATED": "ignored",
        })
        assert config.network == "public"
        assert config.platform_public_key == key.public_key
        assert config.request_timeout == 5.0
        assert config.transaction_timeout == 60

    def test_from_env_rejects_non_numeric(self):
        with pytest.raises(ConfigurationError):
            LedgerConfig.from_env({"STELLAR_TX_TIMEOUT": "soon"})

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "farmescrow.yaml"
        path.write_text("network: public\ntransaction_timeout: 90\n")
        config = LedgerConfig.from_yaml(path)
        assert config.network == "public"
        assert config.transaction_timeout == 90

    def test_yaml_unknown_key(self, tmp_path):
        path = tmp_path / "farmescrow.yaml"
        path.write_text("network: testnet\nhorizon: nope\n")
        with pytest.raises(ConfigurationError):
            LedgerConfig.from_yaml(path)

    def test_yaml_must_be_mapping(self, tmp_path):
        path = tmp_path / "farmescrow.yaml"
        path.write_text("- testnet\n")
        with pytest.raises(ConfigurationError):
            LedgerConfig.from_yaml(path)

    def test_load_layers(self, tmp_path):
        path = tmp_path / "farmescrow.yaml"
        path.write_text("transaction_timeout: 90\n")
        config = LedgerConfig.load(
            config_file=path,
            environ={"STELLAR_NETWORK": "public", "STELLAR_TX_TIMEOUT": "30"},
            network="testnet",
            request_timeout=None,
        )
        assert config.network == "testnet"
        assert config.transaction_timeout == 90
        assert config.request_timeout == 30.0
