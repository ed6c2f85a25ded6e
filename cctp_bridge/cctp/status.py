"""Transfer status reconciliation.

Merge what we have stored locally with what the source chain and the
attestation service say now. The stored record only ever moves forward.
"""

import logging
from dataclasses import dataclass

from cctp_bridge.chain import ChainFamily, ChainRegistry
from cctp_bridge.cctp.attestation import AttestationClient, AttestationResult
from cctp_bridge.cctp.errors import BridgeError, StaleRecordError
from cctp_bridge.cctp.executor import ChainTransactionStatus, TransactionState, TransferExecutor
from cctp_bridge.cctp.record import TransferRecord, TransferStatus, can_advance, can_complete, transition
from cctp_bridge.cctp.store import TransferStore

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class TransferStatusReport:
    """Combined view of a transfer."""

    source_chain: int

    tx_hash: str

    #: Local lifecycle status after reconciliation, ``None`` if we have no record
    status: TransferStatus | None

    chain_status: ChainTransactionStatus

    #: ``"pending"`` or ``"complete"``
    attestation_status: str

    #: Message and attestation are available and the burn is final
    can_complete: bool

    record: TransferRecord | None = None

    def to_dict(self) -> dict:
        return {
            "source_chain": self.source_chain,
            "tx_hash": self.tx_hash,
            "status": self.status.value if self.status else None,
            "chain_status": self.chain_status.state.value,
            "confirmations": self.chain_status.confirmations,
            "attestation_status": self.attestation_status,
            "can_complete": self.can_complete,
            "transfer_id": self.record.transfer_id if self.record else None,
        }


class TransferStatusReconciler:
    """Reconcile a stored transfer with the chain and the attestation service."""

    def __init__(
        self,
        store: TransferStore,
        registry: ChainRegistry,
        executors: dict[ChainFamily, TransferExecutor],
        attestation_client: AttestationClient,
    ):
        self.store = store
        self.registry = registry
        self.executors = executors
        self.attestation_client = attestation_client

    def get_transfer_status(self, source_chain: int, tx_hash: str) -> TransferStatusReport:
        """Check a transfer.

        :param tx_hash:
            Burn hash, mint hash or transfer id.
        """
        config = self.registry.get(source_chain)
        record = self.store.find_by_hash(tx_hash, source_chain=source_chain)

        burn_tx_hash = record.burn_tx_hash if record is not None and record.burn_tx_hash else tx_hash
        executor = self.executors[config.family]
        chain_status = executor.get_transaction_status(config, burn_tx_hash)

        attestation = self._get_attestation(source_chain, burn_tx_hash)

        if record is not None:
            # Attestation lookup may have written into the record
            record = self.store.get(record.transfer_id)
            record = self._upgrade(record, chain_status, attestation)

        attestation_complete = attestation.is_complete or (record is not None and record.has_attestation())

        return TransferStatusReport(
            source_chain=source_chain,
            tx_hash=burn_tx_hash,
            status=record.status if record else None,
            chain_status=chain_status,
            attestation_status="complete" if attestation_complete else "pending",
            can_complete=can_complete(chain_status.is_confirmed, attestation_complete),
            record=record,
        )

    def _get_attestation(self, source_chain: int, tx_hash: str) -> AttestationResult:
        try:
            return self.attestation_client.get_attestation(source_chain, tx_hash)
        except BridgeError as e:
            logger.warning("Attestation lookup failed for %s, reporting pending: %s", tx_hash, e)
            domain = self.registry.get(source_chain).domain
            return AttestationResult(status="pending", transaction_hash=tx_hash, source_domain=domain)

    def _target_status(self, record: TransferRecord, chain_status: ChainTransactionStatus, attestation: AttestationResult) -> TransferStatus:
        if chain_status.state == TransactionState.failed:
            return TransferStatus.failed
        if chain_status.is_confirmed:
            if attestation.is_complete or record.has_attestation():
                return TransferStatus.bridging
            return TransferStatus.confirmed
        return record.status

    def _upgrade(self, record: TransferRecord, chain_status: ChainTransactionStatus, attestation: AttestationResult) -> TransferRecord:
        """Write back monotonic upgrades only."""
        target = self._target_status(record, chain_status, attestation)

        # Nothing to do, or only moves that are not ours to make
        if target == record.status or not can_advance(record.status, target):
            return record

        # Burn must have been submitted before the chain can vouch for it
        if record.status == TransferStatus.created:
            return record

        transition(record, target, failure_reason=chain_status.error if target == TransferStatus.failed else None)

        try:
            return self.store.update(record)
        except StaleRecordError:
            logger.info("Transfer %s changed during reconciliation, using the newer copy", record.transfer_id)
            return self.store.get(record.transfer_id)
