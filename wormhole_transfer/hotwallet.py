"""Sponsor hot wallet for the source chain.

- Holds the sponsor private key in process memory as
  :py:class:`eth_account.signers.local.LocalAccount`
- Signs bound contract calls with a locally tracked nonce,
  see :py:meth:`HotWallet.sync_nonce` and :py:meth:`HotWallet.allocate_nonce`

Unlike a plain nonce counter the allocation is guarded by a lock, so
one wallet can sign for several transfers running in worker threads.
"""

import logging
import threading

from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_typing import HexAddress
from hexbytes import HexBytes
from web3 import Web3
from web3.contract.contract import ContractFunction

logger = logging.getLogger(__name__)


def estimate_gas_fees(web3: Web3) -> dict:
    """Suggest EIP-1559 fee parameters, or a legacy gas price on pre-London chains.

    :return:
        Gas parameters to merge into a transaction dict.
    """
    last_block = web3.eth.get_block("latest")
    base_fee = last_block.get("baseFeePerGas")
    if base_fee is None:
        return {"gasPrice": web3.eth.gas_price}

    max_priority_fee_per_gas = web3.eth.max_priority_fee
    max_fee_per_gas = max_priority_fee_per_gas + 2 * base_fee
    return {
        "maxFeePerGas": max_fee_per_gas,
        "maxPriorityFeePerGas": max_priority_fee_per_gas,
    }


class HotWallet:
    """Hot wallet signing source chain transactions.

    Example:

    .. code-block:: python

        hot_wallet = HotWallet.from_private_key(os.environ["BASE_SPONSOR_PRIVATE_KEY"])
        hot_wallet.sync_nonce(web3)

        bound_call = usdc.functions.approve(token_bridge, raw_amount)
        signed_tx = hot_wallet.sign_bound_call_with_new_nonce(bound_call, {"gas": 100_000}, fill_gas_price=True)
        tx_hash = web3.eth.send_raw_transaction(signed_tx.raw_transaction)
    """

    def __init__(self, account: LocalAccount):
        self.account = account
        self.current_nonce: int | None = None
        self._lock = threading.Lock()

    def __repr__(self):
        return f"<Hot wallet {self.account.address}>"

    @property
    def address(self) -> HexAddress:
        """Ethereum address of the wallet."""
        return self.account.address

    def sync_nonce(self, web3: Web3):
        """Initialise the current nonce from the on-chain data.

        Counts pending transactions, so a transfer broadcast by an earlier run
        does not collide with ours.
        """
        new_nonce = web3.eth.get_transaction_count(self.account.address, "pending")
        with self._lock:
            if self.current_nonce is not None and new_nonce < self.current_nonce:
                logger.warning(
                    "Nonce sync read on-chain nonce %d older than our current nonce %d, keeping ours",
                    new_nonce,
                    self.current_nonce,
                )
                return
            self.current_nonce = new_nonce
        logger.info("Synced nonce for %s to %d", self.account.address, new_nonce)

    def allocate_nonce(self) -> int:
        """Get the next free nonce and increase the counter."""
        with self._lock:
            assert self.current_nonce is not None, f"Nonce is not yet synced from the blockchain: {self}"
            nonce = self.current_nonce
            self.current_nonce += 1
            return nonce

    def sign_bound_call_with_new_nonce(
        self,
        func: ContractFunction,
        tx_params: dict | None = None,
        fill_gas_price=False,
    ):
        """Sign a bound web3.py contract call.

        :param func:
            Contract function with its arguments bound.

        :param tx_params:
            Transaction parameters like ``gas``. Giving ``gas`` skips estimation.

        :param fill_gas_price:
            Fill the EIP-1559 fee fields automatically.

        :return:
            Signed transaction. Broadcast ``raw_transaction``.
        """
        assert isinstance(func, ContractFunction)
        web3 = func.w3
        tx_params = dict(tx_params or {})
        tx_params["from"] = self.address
        tx_params.setdefault("chainId", web3.eth.chain_id)
        if fill_gas_price:
            tx_params.update(estimate_gas_fees(web3))
        tx_params["nonce"] = self.allocate_nonce()
        tx = func.build_transaction(tx_params)
        return self.account.sign_transaction(tx)

    def transact_with_contract(self, func: ContractFunction, tx_params: dict | None = None) -> HexBytes:
        """Sign and broadcast a bound contract call.

        :return:
            Transaction hash.
        """
        signed_tx = self.sign_bound_call_with_new_nonce(func, tx_params, fill_gas_price=True)
        return func.w3.eth.send_raw_transaction(signed_tx.raw_transaction)

    @staticmethod
    def from_private_key(key: str) -> "HotWallet":
        """Create a hot wallet from a private key that is passed in as a hex string.

        Remember to call :py:meth:`sync_nonce` before signing.

        Example:

        .. code-block:: python

            hot_wallet = HotWallet.from_private_key("0x...")

        :param key:
            0x prefixed hex string

        :return:
            Ready to go hot wallet account
        """
        if not key.startswith("0x"):
            key = f"0x{key}"
        account = Account.from_key(key)
        return HotWallet(account)
