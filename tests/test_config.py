"""Environment configuration loading and verification."""

import pytest

from wormhole_transfer.config import load_config, read_environment, verify_config
from wormhole_transfer.constants import BASE_SEPOLIA_USDC, BASE_SEPOLIA_WORMHOLE_TOKEN_BRIDGE, BASE_USDC, BASE_WORMHOLE_TOKEN_BRIDGE
from wormhole_transfer.errors import ConfigurationError, TransferErrorKind
from wormhole_transfer.transfer import Network

APTOS_KEY = "2a" * 32


@pytest.fixture()
def environ() -> dict[str, str]:
    return {
        "BASE_RPC_URL": "https://sepolia.base.org",
        "APTOS_RPC_URL": "https://fullnode.testnet.aptoslabs.com/v1",
        "BASE_SPONSOR_PRIVATE_KEY": "0x" + "11" * 32,
        "APTOS_SPONSOR_PRIVATE_KEY": "ed25519-priv-0x" + APTOS_KEY,
        "APTOS_TOKEN_BRIDGE_ADDRESS": "0x576410486a2da45eee6c949c995670112ddf2fbeedab20350d506328eefc9d4f",
        "APTOS_USDC_COIN_TYPE": "0x" + "7e" * 32 + "::coin::T",
    }


def test_load_testnet_defaults(environ):
    """Testnet is the default and picks Base Sepolia contracts."""
    config = load_config(environ, dotenv_paths=())

    assert config.network == Network.testnet
    assert config.base_token_address == BASE_SEPOLIA_USDC
    assert config.base_token_bridge_address == BASE_SEPOLIA_WORMHOLE_TOKEN_BRIDGE
    assert config.wormholescan_api_url == "https://api.testnet.wormholescan.io"
    assert config.aptos_private_key == "0x" + APTOS_KEY


def test_load_mainnet(environ):
    """Network type is case insensitive and selects mainnet contracts."""
    environ["NETWORK_TYPE"] = "Mainnet"
    config = load_config(environ, dotenv_paths=())

    assert config.network == Network.mainnet
    assert config.base_token_address == BASE_USDC
    assert config.base_token_bridge_address == BASE_WORMHOLE_TOKEN_BRIDGE
    assert config.wormholescan_api_url == "https://api.wormholescan.io"


def test_load_overrides(environ):
    """Contract addresses and the API URL can be overridden."""
    environ["BASE_USDC_ADDRESS"] = "0x" + "44" * 20
    environ["WORMHOLESCAN_API_URL"] = "http://localhost:8000"
    config = load_config(environ, dotenv_paths=())

    assert config.base_token_address == "0x" + "44" * 20
    assert config.wormholescan_api_url == "http://localhost:8000"


def test_secrets_not_in_repr(environ):
    """Private keys never show up when the config is logged."""
    config = load_config(environ, dotenv_paths=())
    assert "11" * 32 not in repr(config)
    assert APTOS_KEY not in repr(config)


def test_missing_variables(environ):
    """Every missing variable is listed."""
    del environ["BASE_RPC_URL"]
    environ["APTOS_USDC_COIN_TYPE"] = "  "

    with pytest.raises(ConfigurationError) as exc_info:
        load_config(environ, dotenv_paths=())

    message = str(exc_info.value)
    assert "BASE_RPC_URL" in message
    assert "APTOS_USDC_COIN_TYPE" in message
    assert exc_info.value.kind == TransferErrorKind.configuration_error


def test_invalid_values(environ):
    """Malformed network, key or coin type."""
    with pytest.raises(ConfigurationError, match="Unknown network"):
        load_config({**environ, "NETWORK_TYPE": "Devnet"}, dotenv_paths=())

    with pytest.raises(ConfigurationError, match="too short"):
        load_config({**environ, "BASE_SPONSOR_PRIVATE_KEY": "0x1234"}, dotenv_paths=())

    with pytest.raises(ConfigurationError, match="APTOS_USDC_COIN_TYPE"):
        load_config({**environ, "APTOS_USDC_COIN_TYPE": "0x1::coin"}, dotenv_paths=())


def test_dotenv_precedence(tmp_path, environ):
    """Process environment wins over .env.local, which wins over .env."""
    env_file = tmp_path / ".env"
    env_local_file = tmp_path / ".env.local"
    env_file.write_text("BASE_RPC_URL=https://from-env\nAPTOS_RPC_URL=https://aptos-from-env\nNETWORK_TYPE=Mainnet\n")
    env_local_file.write_text("BASE_RPC_URL=https://from-env-local\nAPTOS_RPC_URL=https://aptos-from-env-local\n")

    del environ["BASE_RPC_URL"]
    merged = read_environment(environ, dotenv_paths=(env_local_file, env_file))

    assert merged["BASE_RPC_URL"] == "https://from-env-local"
    assert merged["APTOS_RPC_URL"] == environ["APTOS_RPC_URL"]
    assert merged["NETWORK_TYPE"] == "Mainnet"


def test_missing_dotenv_files_skipped(tmp_path, environ):
    """Absent .env files are not an error."""
    config = load_config(environ, dotenv_paths=(tmp_path / ".env.local", tmp_path / ".env"))
    assert config.base_rpc_url == environ["BASE_RPC_URL"]


def test_verify_config(environ):
    """Complete configuration passes, unset optional variables included."""
    checks = verify_config(environ, dotenv_paths=())
    by_name = {c.name: c for c in checks}

    assert all(c.passed for c in checks)
    assert by_name["BASE_SPONSOR_PRIVATE_KEY"].status == "ok"
    assert by_name["NETWORK_TYPE"].status == "missing"
    assert "11" * 32 not in by_name["BASE_SPONSOR_PRIVATE_KEY"].detail


def test_verify_config_reports_all_problems(environ):
    """Every broken variable gets its own row."""
    del environ["APTOS_RPC_URL"]
    environ["BASE_SPONSOR_PRIVATE_KEY"] = "0xabc"
    environ["APTOS_TOKEN_BRIDGE_ADDRESS"] = "0x1"
    environ["NETWORK_TYPE"] = "Devnet"

    by_name = {c.name: c for c in verify_config(environ, dotenv_paths=())}

    assert by_name["APTOS_RPC_URL"].status == "error"
    assert by_name["BASE_SPONSOR_PRIVATE_KEY"].status == "error"
    assert by_name["APTOS_TOKEN_BRIDGE_ADDRESS"].status == "warning"
    assert by_name["APTOS_TOKEN_BRIDGE_ADDRESS"].passed
    assert by_name["NETWORK_TYPE"].status == "error"
