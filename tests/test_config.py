import pytest

from mxe_voting.addresses import DEFAULT_PROGRAM_ID
from mxe_voting.config import (
    DEVNET_CLUSTER_OFFSET,
    LOCAL_CLUSTER_OFFSET,
    LOCAL_RPC_URL,
    Network,
    config_from_env,
    make_session_config,
)
from mxe_voting.errors import ConfigError

ENV_VARS = (
    "VOTING_NETWORK",
    "SOLANA_RPC_URL",
    "VOTING_IDENTITY_PATH",
    "ARCIUM_CLUSTER_OFFSET",
    "VOTING_PROGRAM_ID",
    "VOTING_COMMITMENT",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        # restored to its original state (unset included) at teardown
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    return monkeypatch


def test_local_defaults():
    config = make_session_config()
    assert config.network is Network.LOCAL
    assert config.rpc_url == LOCAL_RPC_URL
    assert config.cluster_offset == LOCAL_CLUSTER_OFFSET
    assert config.program_id == DEFAULT_PROGRAM_ID
    assert config.commitment == "confirmed"
    assert config.identity_path.endswith("id.json")


def test_devnet_requires_rpc_url():
    with pytest.raises(ConfigError, match="SOLANA_RPC_URL"):
        make_session_config(network="devnet")


def test_devnet_uses_its_cluster_offset():
    config = make_session_config(network="DevNet", rpc_url="https://rpc.example.org")
    assert config.network is Network.DEVNET
    assert config.cluster_offset == DEVNET_CLUSTER_OFFSET


@pytest.mark.parametrize(
    "kwargs",
    [
        {"network": "mainnet"},
        {"commitment": "rooted"},
        {"cluster_offset": "abc"},
        {"cluster_offset": -1},
        {"program_id": "zz"},
        {"program_id": "00" * 31},
        {"poll_interval": -1},
        {"event_timeout": 0},
    ],
)
def test_invalid_options(kwargs):
    with pytest.raises(ConfigError):
        make_session_config(**kwargs)


def test_config_errors_are_value_errors():
    with pytest.raises(ValueError):
        make_session_config(commitment="rooted")


def test_config_from_env(clean_env):
    clean_env.setenv("VOTING_NETWORK", "devnet")
    clean_env.setenv("SOLANA_RPC_URL", "https://devnet.example.org")
    clean_env.setenv("ARCIUM_CLUSTER_OFFSET", "7")
    clean_env.setenv("VOTING_PROGRAM_ID", "ab" * 32)
    clean_env.setenv("VOTING_COMMITMENT", "finalized")
    config = config_from_env(dotenv_path="/nonexistent/.env")
    assert config.network is Network.DEVNET
    assert config.rpc_url == "https://devnet.example.org"
    assert config.cluster_offset == 7
    assert config.program_id == bytes.fromhex("ab" * 32)
    assert config.commitment == "finalized"


def test_config_from_dotenv_file(clean_env, tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("VOTING_NETWORK=devnet\nSOLANA_RPC_URL=https://from-dotenv.example.org\n")
    config = config_from_env(dotenv_path=str(env_file))
    assert config.rpc_url == "https://from-dotenv.example.org"
    assert config.cluster_offset == DEVNET_CLUSTER_OFFSET
