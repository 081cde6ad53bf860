"""Command line entry point.

Transfer USDC from Base to Aptos over the Wormhole Token Bridge.

Configuration comes from the environment and ``.env.local`` / ``.env``,
see :py:mod:`wormhole_transfer.config`.

Usage::

    # Check configuration
    wormhole-transfer verify-setup

    # Transfer 1 USDC to the Aptos sponsor account
    wormhole-transfer transfer --amount 1.0

    # Several transfers in parallel
    wormhole-transfer transfer --amount 1.0 2.5 0.1

    # Finish a transfer whose source transaction already went through
    wormhole-transfer resume --source-tx 0x...

Exit codes: 0 on success, 1 when a transfer failed, 2 on configuration
or usage errors. ``Ctrl+C`` cancels a transfer waiting for its attestation.
"""

import argparse
import logging
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Callable

from tabulate import tabulate
from web3 import HTTPProvider, Web3

from wormhole_transfer.aptos import AptosDestinationClient
from wormhole_transfer.config import TransferConfig, load_config, verify_config
from wormhole_transfer.errors import ConfigurationError
from wormhole_transfer.evm import EvmSourceChainClient
from wormhole_transfer.hotwallet import HotWallet
from wormhole_transfer.orchestrator import TransferOrchestrator, run_transfers_parallel
from wormhole_transfer.transfer import TransferRequest, TransferResult
from wormhole_transfer.utils import setup_console_logging
from wormhole_transfer.vaa import create_wormholescan_session, fetch_vaa, get_wormholescan_explorer_url

logger = logging.getLogger(__name__)

#: Process exit codes
EXIT_SUCCESS = 0
EXIT_TRANSFER_FAILED = 1
EXIT_CONFIGURATION_ERROR = 2


def create_orchestrator(config: TransferConfig) -> TransferOrchestrator:
    """Connect to both chains and Wormholescan."""
    web3 = Web3(HTTPProvider(config.base_rpc_url))
    hot_wallet = HotWallet.from_private_key(config.base_private_key)
    hot_wallet.sync_nonce(web3)

    source = EvmSourceChainClient(
        web3,
        hot_wallet,
        token_address=config.base_token_address,
        token_bridge_address=config.base_token_bridge_address,
        core_bridge_address=config.base_core_bridge_address,
    )
    destination = AptosDestinationClient.from_private_key(
        config.aptos_rpc_url,
        config.aptos_private_key,
        token_bridge_address=config.aptos_token_bridge_address,
        coin_type=config.aptos_coin_type,
    )
    session = create_wormholescan_session(config.network, api_url=config.wormholescan_api_url)

    logger.info("Source wallet %s, destination account %s", source.address, destination.address)
    return TransferOrchestrator(source, destination, network=config.network, vaa_fetcher=partial(fetch_vaa, session))


def run_cancellable(func: Callable[[threading.Event], list[TransferResult]]) -> list[TransferResult]:
    """Run transfers in a worker thread so ``Ctrl+C`` can cancel them cleanly."""
    cancel_event = threading.Event()
    with ThreadPoolExecutor(max_workers=1, thread_name_prefix="transfer") as executor:
        future = executor.submit(func, cancel_event)
        try:
            return future.result()
        except KeyboardInterrupt:
            logger.warning("Interrupted, cancelling. Confirmed transactions are not rolled back.")
            cancel_event.set()
            return future.result()


def print_results(config: TransferConfig, results: list[TransferResult]):
    rows = []
    for result in results:
        rows.append(
            [
                "ok" if result.success else (result.error_kind.value if result.error_kind else "failed"),
                result.source_tx or "-",
                result.attestation_id or "-",
                result.destination_tx or "-",
            ]
        )
    print(tabulate(rows, headers=["Status", "Source tx", "VAA", "Destination tx"], tablefmt="simple"))

    for result in results:
        if result.source_tx:
            print(f"Wormholescan: {get_wormholescan_explorer_url(config.network, result.source_tx)}")
        if not result.success:
            print(f"\nFailed during {result.failed_phase.value if result.failed_phase else 'init'}:\n{result.error}")


def command_transfer(args: argparse.Namespace) -> int:
    config = load_config()
    transfer_requests = [TransferRequest(amount=amount, destination_chain="aptos", recipient=args.recipient, network=config.network) for amount in args.amount]
    orchestrator = create_orchestrator(config)

    if len(transfer_requests) == 1:
        results = run_cancellable(lambda cancel_event: [orchestrator.run(transfer_requests[0], cancel_event=cancel_event)])
    else:
        results = run_cancellable(lambda cancel_event: run_transfers_parallel(orchestrator, transfer_requests, cancel_event=cancel_event))

    print_results(config, results)
    return EXIT_SUCCESS if all(r.success for r in results) else EXIT_TRANSFER_FAILED


def command_resume(args: argparse.Namespace) -> int:
    config = load_config()
    orchestrator = create_orchestrator(config)
    results = run_cancellable(lambda cancel_event: [orchestrator.resume(args.source_tx, recipient=args.recipient, cancel_event=cancel_event)])
    print_results(config, results)
    return EXIT_SUCCESS if results[0].success else EXIT_TRANSFER_FAILED


def command_verify_setup(args: argparse.Namespace) -> int:
    checks = verify_config()
    print(tabulate([[c.name, c.status, c.detail] for c in checks], headers=["Variable", "Status", "Detail"], tablefmt="simple"))
    if all(c.passed for c in checks):
        print("\nSetup looks good. Make sure both sponsor wallets hold gas and the Base wallet holds USDC.")
        return EXIT_SUCCESS
    print("\nSetup incomplete, fix the errors above.")
    return EXIT_CONFIGURATION_ERROR


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="wormhole-transfer", description="Transfer USDC from Base to Aptos over Wormhole")
    subparsers = parser.add_subparsers(dest="command", required=True)

    transfer = subparsers.add_parser("transfer", help="Run one or more transfers")
    transfer.add_argument("--amount", nargs="+", required=True, help="USDC amount, e.g. 1.5. Several amounts run in parallel.")
    transfer.add_argument("--recipient", help="Aptos recipient address. Defaults to the Aptos sponsor account.")
    transfer.set_defaults(func=command_transfer)

    resume = subparsers.add_parser("resume", help="Finish a transfer from its source transaction")
    resume.add_argument("--source-tx", required=True, help="Base transaction hash of the transferTokens() call")
    resume.add_argument("--recipient", help="Aptos fee recipient. Defaults to the Aptos sponsor account.")
    resume.set_defaults(func=command_resume)

    verify = subparsers.add_parser("verify-setup", help="Check configuration")
    verify.set_defaults(func=command_verify_setup)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = create_parser().parse_args(argv)
    setup_console_logging(coloured_threads=True)

    try:
        return args.func(args)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIGURATION_ERROR
    except ValueError as e:
        print(f"Invalid request: {e}", file=sys.stderr)
        return EXIT_CONFIGURATION_ERROR


if __name__ == "__main__":
    sys.exit(main())
