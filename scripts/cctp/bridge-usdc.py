"""Bridge USDC between two CCTP V2 testnet chains.

Burns USDC on the source chain, waits for Circle's attestation
and mints on the destination chain. Works for EVM and Solana in both directions.

Environment variables
---------------------
- ``SOURCE_CHAIN``: Source chain id, e.g. ``84532`` for Base Sepolia (required).
- ``DESTINATION_CHAIN``: Destination chain id, e.g. ``103`` for Solana devnet (required).
- ``AMOUNT``: Human readable USDC amount, e.g. ``1.5`` (required).
- ``DESTINATION_ADDRESS``: Recipient, defaults to our own wallet on the destination chain.
- ``TRANSFER_TYPE``: ``fast`` (default) or ``standard``.
- ``EVM_PRIVATE_KEY``, ``SOLANA_PRIVATE_KEY``: Wallets for the chains involved.
- ``TRANSFER_STORE_PATH``: Keep transfer records in this JSON file.
- ``ATTESTATION_TIMEOUT``: Seconds to wait for Iris (default: 1200).
- ``LOG_LEVEL``: Logging level (default: ``info``).

Usage::

    SOURCE_CHAIN=84532 DESTINATION_CHAIN=421614 AMOUNT=1 \\
        EVM_PRIVATE_KEY=0x... \\
        poetry run python scripts/cctp/bridge-usdc.py

    # Base Sepolia to Solana devnet
    SOURCE_CHAIN=84532 DESTINATION_CHAIN=103 AMOUNT=0.5 \\
        EVM_PRIVATE_KEY=0x... SOLANA_PRIVATE_KEY=... \\
        poetry run python scripts/cctp/bridge-usdc.py
"""

import logging
import os

from tabulate import tabulate
from tqdm_loggable.auto import tqdm

from cctp_bridge.cctp.orchestrator import TransferRequest
from cctp_bridge.config import BridgeSettings
from cctp_bridge.utils import setup_console_logging

logger = logging.getLogger(__name__)

#: Phases shown in the progress bar
PHASES = ("burn", "waiting_for_indexing", "pending_confirmations", "complete", "mint")


def main():
    settings = BridgeSettings.from_env()
    setup_console_logging(default_log_level=settings.log_level)

    source_chain = int(os.environ["SOURCE_CHAIN"])
    destination_chain = int(os.environ["DESTINATION_CHAIN"])
    amount = os.environ.get("AMOUNT")
    assert amount, "AMOUNT environment variable required"

    orchestrator = settings.create_orchestrator()
    source = orchestrator.registry.get(source_chain)
    dest = orchestrator.registry.get(destination_chain)

    destination_address = os.environ.get("DESTINATION_ADDRESS")
    if not destination_address:
        destination_address = orchestrator.get_executor(dest).get_sender_address(dest)

    transfer_type = os.environ.get("TRANSFER_TYPE", "fast")

    print(f"Bridging {amount} USDC from {source.name} to {dest.name}")
    print(f"Recipient: {destination_address}")
    print(f"Transfer type: {transfer_type}")

    progress_bar = tqdm(total=len(PHASES), desc="CCTP bridge", unit="phase")
    current = {"phase": 0}

    def _advance_to(phase: str, attempt: int = 0):
        idx = PHASES.index(phase) if phase in PHASES else current["phase"]
        if idx > current["phase"]:
            progress_bar.update(idx - current["phase"])
            current["phase"] = idx
        progress_bar.set_description(f"CCTP {phase}")
        if attempt:
            progress_bar.set_postfix_str(f"polls: {attempt}")

    result = orchestrator.initiate_transfer(
        TransferRequest(
            source_chain=source_chain,
            destination_chain=destination_chain,
            amount=amount,
            destination_address=destination_address,
            transfer_type=transfer_type,
        )
    )
    _advance_to("waiting_for_indexing")

    orchestrator.attestation_client.wait_for_attestation(
        source_chain,
        result.burn_tx_hash,
        timeout=settings.attestation_timeout,
        poll_interval=settings.attestation_poll_interval,
        on_phase_change=_advance_to,
    )
    _advance_to("mint")

    mint_tx_hash = orchestrator.complete_transfer(transfer_id=result.transfer_id)
    progress_bar.update(1)
    progress_bar.close()

    record = orchestrator.get_transfer(result.transfer_id)
    rows = [
        ["Transfer id", record.transfer_id],
        ["Status", record.status.value],
        ["Amount (raw)", f"{record.amount:,}"],
        ["Max fee (raw)", f"{record.max_fee:,}"],
        ["Finality threshold", record.finality_threshold],
        ["Burn tx", record.burn_tx_hash],
        ["Mint tx", mint_tx_hash],
        ["Message hash", record.message_hash],
    ]
    print(tabulate(rows, tablefmt="simple"))


if __name__ == "__main__":
    main()
