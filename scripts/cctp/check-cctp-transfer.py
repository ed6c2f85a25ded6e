"""Check the status of a CCTP transfer.

Looks up the burn transaction on the source chain and the attestation
at Circle's Iris API, and upgrades the stored transfer record if it is behind.

Environment variables
---------------------
- ``SOURCE_CHAIN``: Chain id where the burn happened (required).
- ``TX_HASH``: Burn transaction hash, Solana signature, or transfer id (required).
- ``EVM_PRIVATE_KEY`` or ``SOLANA_PRIVATE_KEY``: Needed to connect to the source chain.
- ``TRANSFER_STORE_PATH``: JSON file with transfer records.
- ``LOG_LEVEL``: Logging level (default: ``info``).

Usage::

    SOURCE_CHAIN=84532 TX_HASH=0xabc... EVM_PRIVATE_KEY=0x... \\
        poetry run python scripts/cctp/check-cctp-transfer.py

    # List stored transfers
    TRANSFER_STORE_PATH=~/.cctp/transfers.json \\
        poetry run python scripts/cctp/check-cctp-transfer.py
"""

import logging
import os

from tabulate import tabulate

from cctp_bridge.config import BridgeSettings
from cctp_bridge.utils import setup_console_logging

logger = logging.getLogger(__name__)


def main():
    settings = BridgeSettings.from_env()
    setup_console_logging(default_log_level=settings.log_level)

    orchestrator = settings.create_orchestrator()

    tx_hash = os.environ.get("TX_HASH")
    if not tx_hash:
        transfers = orchestrator.list_transfers(limit=50)
        if not transfers:
            print("No stored transfers")
            return
        rows = [
            [
                t.transfer_id,
                t.created_at.isoformat(timespec="seconds"),
                t.source_chain,
                t.destination_chain,
                f"{t.amount:,}",
                t.status.value,
                t.burn_tx_hash or "-",
            ]
            for t in transfers
        ]
        print(tabulate(rows, headers=["Transfer", "Created (UTC)", "From", "To", "Amount (raw)", "Status", "Burn tx"], tablefmt="simple"))
        return

    source_chain = int(os.environ["SOURCE_CHAIN"])
    source = orchestrator.registry.get(source_chain)

    print(f"Checking {tx_hash} on {source.name}")

    report = orchestrator.get_transfer_status(source_chain, tx_hash)
    rows = [
        ["Burn tx", report.tx_hash],
        ["On-chain", report.chain_status.state.value],
        ["Confirmations", report.chain_status.confirmations if report.chain_status.confirmations is not None else "-"],
        ["Attestation", report.attestation_status],
        ["Can complete", "yes" if report.can_complete else "no"],
        ["Local status", report.status.value if report.status else "no record"],
    ]
    if report.chain_status.error:
        rows.append(["Chain error", report.chain_status.error])
    if report.record is not None:
        rows.append(["Transfer id", report.record.transfer_id])
        if report.record.failure_reason:
            rows.append(["Failure", report.record.failure_reason])

    print(tabulate(rows, tablefmt="simple"))


if __name__ == "__main__":
    main()
