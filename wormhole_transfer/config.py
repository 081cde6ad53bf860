"""Environment configuration.

Configuration is read once, from the process environment plus ``.env.local``
and ``.env`` files, into a frozen :py:class:`TransferConfig`. The process
environment wins over ``.env.local``, which wins over ``.env``.

Required variables:

- ``BASE_RPC_URL``: Base (or Base Sepolia) JSON-RPC endpoint
- ``APTOS_RPC_URL``: Aptos fullnode REST endpoint
- ``BASE_SPONSOR_PRIVATE_KEY``: EVM sponsor key, pays gas and holds the tokens
- ``APTOS_SPONSOR_PRIVATE_KEY``: Aptos sponsor key, pays for completion
- ``APTOS_TOKEN_BRIDGE_ADDRESS``: address of the Aptos ``token_bridge`` package
- ``APTOS_USDC_COIN_TYPE``: wrapped coin type, ``0x...::coin::T``

Optional variables:

- ``NETWORK_TYPE``: ``Testnet`` (default) or ``Mainnet``
- ``BASE_USDC_ADDRESS``, ``BASE_WORMHOLE_TOKEN_BRIDGE_ADDRESS``,
  ``BASE_WORMHOLE_CORE_ADDRESS``: override the per-network defaults
- ``WORMHOLESCAN_API_URL``: override the Wormholescan endpoint
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from dotenv import dotenv_values

from wormhole_transfer.aptos import is_valid_coin_type, parse_aptos_private_key
from wormhole_transfer.constants import (
    BASE_SEPOLIA_USDC,
    BASE_SEPOLIA_WORMHOLE_CORE,
    BASE_SEPOLIA_WORMHOLE_TOKEN_BRIDGE,
    BASE_USDC,
    BASE_WORMHOLE_CORE,
    BASE_WORMHOLE_TOKEN_BRIDGE,
)
from wormhole_transfer.errors import ConfigurationError
from wormhole_transfer.transfer import Network
from wormhole_transfer.vaa import get_wormholescan_api_url

logger = logging.getLogger(__name__)

#: Loaded in this order, earlier files win
DEFAULT_DOTENV_PATHS = (".env.local", ".env")

#: Must be set
REQUIRED_VARIABLES = (
    "BASE_RPC_URL",
    "APTOS_RPC_URL",
    "BASE_SPONSOR_PRIVATE_KEY",
    "APTOS_SPONSOR_PRIVATE_KEY",
    "APTOS_TOKEN_BRIDGE_ADDRESS",
    "APTOS_USDC_COIN_TYPE",
)

#: May be set
OPTIONAL_VARIABLES = (
    "NETWORK_TYPE",
    "BASE_USDC_ADDRESS",
    "BASE_WORMHOLE_TOKEN_BRIDGE_ADDRESS",
    "BASE_WORMHOLE_CORE_ADDRESS",
    "WORMHOLESCAN_API_URL",
)


@dataclass(slots=True, frozen=True)
class TransferConfig:
    """Everything needed to build the chain clients.

    Private keys are left out of ``repr()`` so the config can be logged.
    """

    #: Source chain JSON-RPC
    base_rpc_url: str

    #: Destination chain REST API
    aptos_rpc_url: str

    #: EVM sponsor key
    base_private_key: str = field(repr=False)

    #: Aptos sponsor key, normalised to ``0x`` + 64 hex
    aptos_private_key: str = field(repr=False)

    #: Aptos ``token_bridge`` package address
    aptos_token_bridge_address: str

    #: Wrapped coin type released on Aptos
    aptos_coin_type: str

    #: Test or main network
    network: Network

    #: ERC-20 to lock on Base
    base_token_address: str

    #: Wormhole Token Bridge on Base
    base_token_bridge_address: str

    #: Wormhole core bridge on Base
    base_core_bridge_address: str

    #: Wormholescan API
    wormholescan_api_url: str


@dataclass(slots=True, frozen=True)
class ConfigCheck:
    """One row of :py:func:`verify_config` output."""

    #: Variable name
    name: str

    #: ``ok``, ``warning``, ``error`` or ``missing``
    status: str

    #: What we found, never the secret itself
    detail: str

    @property
    def passed(self) -> bool:
        """Only errors fail the setup, unset optional variables fall back to defaults."""
        return self.status != "error"


def read_environment(
    environ: Mapping[str, str] | None = None,
    dotenv_paths: tuple[str | Path, ...] = DEFAULT_DOTENV_PATHS,
) -> dict[str, str]:
    """Merge ``.env`` files and the environment.

    :param environ:
        Defaults to :py:data:`os.environ`.

    :param dotenv_paths:
        Files to read, earlier files win. Missing files are skipped.
    """
    merged: dict[str, str] = {}
    for path in reversed(dotenv_paths):
        path = Path(path)
        if path.exists():
            logger.debug("Reading %s", path)
            merged.update({k: v for k, v in dotenv_values(path).items() if v is not None})
    merged.update(os.environ if environ is None else environ)
    return merged


def load_config(
    environ: Mapping[str, str] | None = None,
    dotenv_paths: tuple[str | Path, ...] = DEFAULT_DOTENV_PATHS,
) -> TransferConfig:
    """Read and validate the configuration.

    Fails before any chain call is made.

    :raise ConfigurationError:
        Lists every missing variable, or the first malformed one.
    """
    env = read_environment(environ, dotenv_paths)

    missing = [name for name in REQUIRED_VARIABLES if not env.get(name, "").strip()]
    if missing:
        raise ConfigurationError(f"Missing required environment variables: {', '.join(missing)}")

    try:
        network = Network.parse(env.get("NETWORK_TYPE") or "Testnet")
    except ValueError as e:
        raise ConfigurationError(str(e)) from e

    base_private_key = env["BASE_SPONSOR_PRIVATE_KEY"].strip()
    if len(base_private_key.removeprefix("0x")) < 64:
        raise ConfigurationError("BASE_SPONSOR_PRIVATE_KEY is too short, expected 64 hex characters")

    coin_type = env["APTOS_USDC_COIN_TYPE"].strip()
    if not is_valid_coin_type(coin_type):
        raise ConfigurationError(f"APTOS_USDC_COIN_TYPE must look like 0x...::coin::T, got {coin_type!r}")

    if network == Network.mainnet:
        token, token_bridge, core = BASE_USDC, BASE_WORMHOLE_TOKEN_BRIDGE, BASE_WORMHOLE_CORE
    else:
        token, token_bridge, core = BASE_SEPOLIA_USDC, BASE_SEPOLIA_WORMHOLE_TOKEN_BRIDGE, BASE_SEPOLIA_WORMHOLE_CORE

    config = TransferConfig(
        base_rpc_url=env["BASE_RPC_URL"].strip(),
        aptos_rpc_url=env["APTOS_RPC_URL"].strip(),
        base_private_key=base_private_key,
        aptos_private_key=parse_aptos_private_key(env["APTOS_SPONSOR_PRIVATE_KEY"]),
        aptos_token_bridge_address=env["APTOS_TOKEN_BRIDGE_ADDRESS"].strip(),
        aptos_coin_type=coin_type,
        network=network,
        base_token_address=env.get("BASE_USDC_ADDRESS") or token,
        base_token_bridge_address=env.get("BASE_WORMHOLE_TOKEN_BRIDGE_ADDRESS") or token_bridge,
        base_core_bridge_address=env.get("BASE_WORMHOLE_CORE_ADDRESS") or core,
        wormholescan_api_url=env.get("WORMHOLESCAN_API_URL") or get_wormholescan_api_url(network),
    )
    logger.info("Loaded configuration: %s", config)
    return config


def _check_variable(name: str, value: str | None, required: bool) -> ConfigCheck:
    if not value or not value.strip():
        if required:
            return ConfigCheck(name, "error", "Missing required variable")
        return ConfigCheck(name, "missing", "Not set, using default")

    value = value.strip()
    if "PRIVATE_KEY" in name:
        key = value.removeprefix("ed25519-priv-").removeprefix("0x")
        if len(key) < 64:
            return ConfigCheck(name, "error", f"Private key too short ({len(key)} characters)")
        return ConfigCheck(name, "ok", f"Set ({len(key)} characters)")

    if "ADDRESS" in name:
        expected_length = 66 if name.startswith("APTOS") else 42
        if not value.startswith("0x") or len(value) != expected_length:
            return ConfigCheck(name, "warning", f"{value} may be malformed, expected 0x + {expected_length - 2} hex characters")
        return ConfigCheck(name, "ok", value)

    if "COIN_TYPE" in name:
        if not is_valid_coin_type(value):
            return ConfigCheck(name, "error", f"{value} is malformed, expected 0x...::coin::T")
        return ConfigCheck(name, "ok", value)

    if name == "NETWORK_TYPE":
        try:
            Network.parse(value)
        except ValueError as e:
            return ConfigCheck(name, "error", str(e))
        return ConfigCheck(name, "ok", value)

    return ConfigCheck(name, "ok", "Set")


def verify_config(
    environ: Mapping[str, str] | None = None,
    dotenv_paths: tuple[str | Path, ...] = DEFAULT_DOTENV_PATHS,
) -> list[ConfigCheck]:
    """Check every variable without failing on the first problem.

    Used by ``wormhole-transfer verify-setup``.
    """
    env = read_environment(environ, dotenv_paths)
    checks = [_check_variable(name, env.get(name), required=True) for name in REQUIRED_VARIABLES]
    checks += [_check_variable(name, env.get(name), required=False) for name in OPTIONAL_VARIABLES]
    return checks
