"""Bundled contract ABIs.

The JSON files under ``wormhole_transfer/abi`` hold the fragments of the
ERC-20, Wormhole Token Bridge and Wormhole core contracts we call.
"""

import json
from functools import lru_cache
from pathlib import Path

from eth_typing import HexAddress
from web3 import Web3
from web3.contract import Contract

_CACHE_SIZE = 32


@lru_cache(maxsize=_CACHE_SIZE)
def get_abi_by_filename(fname: str) -> list[dict]:
    """Read a bundled ABI file.

    Results are cached in process memory.

    :param fname:
        File name under ``wormhole_transfer/abi``, e.g. ``"ERC20.json"``.
    """
    here = Path(__file__).resolve().parent
    abi_path = here / "abi" / fname
    with open(abi_path, "rt", encoding="utf-8") as f:
        return json.load(f)


def get_deployed_contract(web3: Web3, fname: str, address: HexAddress | str) -> Contract:
    """Get a contract proxy for a contract deployed at a specific address.

    :param web3:
        Web3 instance

    :param fname:
        Bundled ABI file name

    :param address:
        Contract address, any letter case
    """
    assert isinstance(web3, Web3), f"Got {type(web3)} instead of Web3"
    assert address, "get_deployed_contract() address was None"
    return web3.eth.contract(address=Web3.to_checksum_address(address), abi=get_abi_by_filename(fname))
