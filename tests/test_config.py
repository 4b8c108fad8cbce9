import pytest
import yaml

from wallet_custody.config import (
    CustodyConfig,
    default_config_path,
    load_config,
    rpc_overrides_from_env,
    save_config,
)
from wallet_custody.errors import ConfigError

from conftest import SECRET


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ("ENCRYPTION_KEY", "CUSTODY_ENVIRONMENT_ID", "CUSTODY_API_TOKEN"):
        monkeypatch.delenv(key, raising=False)


def test_defaults_round_trip(tmp_path):
    path = default_config_path(tmp_path)
    save_config(CustodyConfig(name="svc"), path)

    raw = yaml.safe_load(path.read_text())
    assert raw["vault"]["encryption_key"] == "${ENCRYPTION_KEY}"

    loaded = load_config(path)
    assert loaded.name == "svc"
    assert loaded.default_chains == {"evm": "421614", "solana": "devnet"}
    assert loaded.provisioning.requery_attempts == 3


def test_env_placeholders_expanded(tmp_path, monkeypatch):
    monkeypatch.setenv("ENCRYPTION_KEY", SECRET)
    monkeypatch.setenv("CUSTODY_ENVIRONMENT_ID", "env-123")
    monkeypatch.setenv("CUSTODY_API_TOKEN", "tok")
    path = tmp_path / "config.yaml"
    save_config(CustodyConfig(), path)

    loaded = load_config(path)

    assert loaded.vault.encryption_key == SECRET
    assert loaded.custody.environment_id == "env-123"
    loaded.require_secrets()


def test_missing_secrets_reported(tmp_path):
    path = tmp_path / "config.yaml"
    save_config(CustodyConfig(), path)

    with pytest.raises(ConfigError, match="vault.encryption_key"):
        load_config(path).require_secrets()


def test_short_encryption_key_is_invalid(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("vault:\n  encryption_key: short\n")

    with pytest.raises(ConfigError):
        load_config(path)


def test_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="init"):
        load_config(tmp_path / "nope.yaml")


def test_rpc_overrides_from_env():
    overrides = rpc_overrides_from_env(
        {
            "RPC_URL_421614": "https://arb.example",
            "RPC_URL_MAINNET_BETA": "https://sol.example",
            "RPC_URL_": "ignored",
            "OTHER": "x",
        }
    )
    assert overrides == {"421614": "https://arb.example", "mainnet-beta": "https://sol.example"}


def test_config_rpc_wins_over_env(monkeypatch):
    monkeypatch.setenv("RPC_URL_421614", "https://env.example")
    monkeypatch.setenv("RPC_URL_8453", "https://base.example")
    config = CustodyConfig(rpc={"421614": "https://file.example"})

    assert config.rpc_url_for(421614) == "https://file.example"
    assert config.rpc_url_for(8453) == "https://base.example"
    assert config.rpc_url_for(1) is None
