"""Wormhole Token Bridge constants.

Contract addresses, Wormhole chain ids and Wormholescan API endpoints
used by the Base → Aptos transfer flow.

- `Wormhole contract addresses <https://wormhole.com/docs/products/reference/contract-addresses/>`__
- `Wormhole chain ids <https://wormhole.com/docs/products/reference/chain-ids/>`__
"""

from decimal import Decimal

from eth_typing import HexAddress

#: Wormholescan API for mainnet
WORMHOLESCAN_API_URL = "https://api.wormholescan.io"

#: Wormholescan API for testnet
WORMHOLESCAN_TESTNET_API_URL = "https://api.testnet.wormholescan.io"

#: Wormhole chain id for Ethereum
WORMHOLE_CHAIN_ETHEREUM = 2

#: Wormhole chain id for Aptos
WORMHOLE_CHAIN_APTOS = 22

#: Wormhole chain id for Base.
#:
#: Base Sepolia uses the same id in the Wormhole testnet.
WORMHOLE_CHAIN_BASE = 30

#: Wormhole chain id → human readable name
WORMHOLE_CHAIN_NAMES: dict[int, str] = {
    WORMHOLE_CHAIN_ETHEREUM: "Ethereum",
    WORMHOLE_CHAIN_APTOS: "Aptos",
    WORMHOLE_CHAIN_BASE: "Base",
}

#: Destination chain names accepted in a transfer request → Wormhole chain id
DESTINATION_CHAINS: dict[str, int] = {
    "aptos": WORMHOLE_CHAIN_APTOS,
}

#: Wormhole core bridge on Base mainnet, emits ``LogMessagePublished``
BASE_WORMHOLE_CORE: HexAddress = "0xbebdb6C8ddC678FfA9f8748f85C815C556Dd8ac6"

#: Wormhole Token Bridge on Base mainnet
BASE_WORMHOLE_TOKEN_BRIDGE: HexAddress = "0x24850c6f61C438823F01B7A3BF2B89B72174Fa9d"

#: Wormhole core bridge on Base Sepolia
BASE_SEPOLIA_WORMHOLE_CORE: HexAddress = "0x79A1027a6A159502049F10906D333EC57E95F083"

#: Wormhole Token Bridge on Base Sepolia
BASE_SEPOLIA_WORMHOLE_TOKEN_BRIDGE: HexAddress = "0x86F55A04690fd7815A3D802bD587e83eA888B239"

#: Native USDC on Base mainnet
BASE_USDC: HexAddress = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"

#: Circle test USDC on Base Sepolia
BASE_SEPOLIA_USDC: HexAddress = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"

#: USDC decimals on every EVM chain we touch
USDC_DECIMALS = 6

#: Minimum native balance (ETH) the sponsor must hold before we submit anything
MIN_NATIVE_GAS_BALANCE = Decimal("0.001")

#: Allowance raised to this multiple of the transfer amount,
#: so back-to-back transfers do not race on an exact-equality allowance
APPROVE_AMOUNT_MULTIPLIER = 2

#: Gas limit for ``approve()``
DEFAULT_APPROVE_GAS = 100_000

#: Gas limit for ``transferTokens()``
DEFAULT_TRANSFER_GAS = 500_000

#: Default time to wait for a source chain receipt, seconds
DEFAULT_RECEIPT_TIMEOUT = 180.0

#: Aptos Move module and entry function completing a token bridge transfer
APTOS_COMPLETE_TRANSFER_MODULE = "complete_transfer"

#: Entry function inside :py:data:`APTOS_COMPLETE_TRANSFER_MODULE`
APTOS_COMPLETE_TRANSFER_FUNCTION = "submit_vaa_entry"

#: Length of the attestation id shown in results and logs, ``0x`` included
ATTESTATION_ID_LENGTH = 42
