"""Circle CCTP V2 attestation service client.

Fetch burn attestations from Circle's Iris API and cache them
in the matching :py:class:`~cctp_bridge.cctp.record.TransferRecord`.

The Iris API goes through these states for a burn transaction:

- **404** or empty ``messages``: transaction not yet indexed
- **pending_confirmations**: burn seen, waiting for finality
- **complete**: attestation signed, ready for ``receiveMessage()``

Everything except ``complete`` is reported as ``pending``, including
HTTP timeouts. Once an attestation is cached in the record, further
lookups do not touch the network.

Example::

    from cctp_bridge.cctp.attestation import AttestationClient
    from cctp_bridge.cctp.session import create_iris_session

    client = AttestationClient(create_iris_session(), store, registry)
    result = client.wait_for_attestation(84532, burn_tx_hash, timeout=600)
    print(result.message.hex(), result.attestation.hex())
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable

import requests
from hexbytes import HexBytes
from web3 import Web3

from cctp_bridge.chain import ChainFamily, ChainRegistry
from cctp_bridge.cctp.constants import CCTP_DOMAIN_NAMES, IRIS_REQUEST_TIMEOUT
from cctp_bridge.cctp.errors import AttestationServiceError, AttestationTimeout, StaleRecordError
from cctp_bridge.cctp.record import TransferRecord, TransferStatus, transition
from cctp_bridge.cctp.session import IrisSession
from cctp_bridge.cctp.store import TransferStore

logger = logging.getLogger(__name__)

#: HTTP 404 status code indicating the transaction is not yet indexed
HTTP_NOT_FOUND = 404

#: How many times a lost write-back race is retried
MAX_CACHE_ATTEMPTS = 3

#: Poll phase before Iris has indexed the burn
PHASE_WAITING_FOR_INDEXING = "waiting_for_indexing"

#: Receives ``(phase, attempt)`` on every poll
PhaseCallback = Callable[[str, int], None]


@dataclass(slots=True, frozen=True)
class AttestationResult:
    """Attestation lookup result for one burn transaction."""

    #: ``"pending"`` or ``"complete"``
    status: str

    transaction_hash: str

    source_domain: int

    #: CCTP message bytes, set when complete
    message: bytes | None = None

    #: Signed attestation, set when complete
    attestation: bytes | None = None

    #: 0x-prefixed keccak256 of the message
    message_hash: str | None = None

    #: Raw Iris status, e.g. ``pending_confirmations``. ``None`` when not indexed.
    iris_status: str | None = None

    #: Why Iris holds the transfer, e.g. ``insufficient_fee``
    delay_reason: str | None = None

    @property
    def is_complete(self) -> bool:
        return self.status == "complete"

    @property
    def phase(self) -> str:
        """Progress phase for callbacks and progress bars."""
        if self.is_complete:
            return "complete"
        return self.iris_status or PHASE_WAITING_FOR_INDEXING

    @classmethod
    def from_record(cls, record: TransferRecord, source_domain: int, transaction_hash: str) -> "AttestationResult":
        return cls(
            status="complete",
            transaction_hash=transaction_hash,
            source_domain=source_domain,
            message=record.message,
            attestation=record.attestation,
            message_hash=record.message_hash,
            iris_status="complete",
        )


def compute_message_hash(message: bytes) -> str:
    """0x-prefixed keccak256 of a CCTP message."""
    return Web3.to_hex(Web3.keccak(message))


def _is_filled(value: str | None) -> bool:
    return value is not None and value not in ("", "0x", "PENDING")


class AttestationClient:
    """Iris API client with write-back cache into transfer records.

    Safe to share between threads.
    """

    def __init__(
        self,
        session: IrisSession,
        store: TransferStore,
        registry: ChainRegistry,
        request_timeout: float = IRIS_REQUEST_TIMEOUT,
    ):
        self.session = session
        self.store = store
        self.registry = registry
        self.request_timeout = request_timeout

    def get_attestation(self, source_chain: int, tx_ref: str) -> AttestationResult:
        """One-shot attestation lookup.

        :param source_chain:
            Chain id where the burn happened.

        :param tx_ref:
            Burn transaction hash, Solana signature, or transfer id.

        :return:
            Complete result, or a pending result. Never raises for "not ready yet".

        :raise AttestationServiceError:
            Iris answered with an unexpected HTTP error.
        """
        config = self.registry.get(source_chain)
        record = self.store.find_by_hash(tx_ref, source_chain=source_chain)

        tx_hash = tx_ref
        if record is not None and record.burn_tx_hash:
            tx_hash = record.burn_tx_hash

        if config.family == ChainFamily.evm and not tx_hash.startswith("0x"):
            tx_hash = f"0x{tx_hash}"

        if record is not None and record.has_attestation():
            logger.debug("Attestation for %s served from transfer %s", tx_hash, record.transfer_id)
            return AttestationResult.from_record(record, config.domain, tx_hash)

        result = self.fetch_attestation(config.domain, tx_hash)

        if result.is_complete and record is not None:
            self._cache(record, result)

        return result

    def fetch_attestation(self, source_domain: int, tx_hash: str) -> AttestationResult:
        """Ask Iris, no caching."""
        domain_name = CCTP_DOMAIN_NAMES.get(source_domain, f"domain-{source_domain}")
        url = f"{self.session.api_url}/v2/messages/{source_domain}"

        try:
            response = self.session.get(url, params={"transactionHash": tx_hash}, timeout=self.request_timeout)
        except (requests.Timeout, requests.ConnectionError) as e:
            logger.warning("Iris request for %s on %s failed, treating as pending: %s", tx_hash, domain_name, e)
            return AttestationResult(status="pending", transaction_hash=tx_hash, source_domain=source_domain)

        if response.status_code == HTTP_NOT_FOUND:
            logger.debug("Attestation not yet indexed (404) for %s on %s", tx_hash, domain_name)
            return AttestationResult(status="pending", transaction_hash=tx_hash, source_domain=source_domain)

        if not response.ok:
            raise AttestationServiceError(f"Iris API returned HTTP {response.status_code} for {tx_hash}: {response.text[0:200]}")

        messages = response.json().get("messages") or []
        if not messages:
            return AttestationResult(status="pending", transaction_hash=tx_hash, source_domain=source_domain)

        msg = messages[0]
        iris_status = msg.get("status")
        attestation_hex = msg.get("attestation")
        message_hex = msg.get("message")

        if iris_status != "complete" or not _is_filled(attestation_hex) or not _is_filled(message_hex):
            logger.debug("Attestation status for %s on %s: %s", tx_hash, domain_name, iris_status)
            return AttestationResult(
                status="pending",
                transaction_hash=tx_hash,
                source_domain=source_domain,
                iris_status=iris_status,
                delay_reason=msg.get("delayReason"),
            )

        message = bytes(HexBytes(message_hex))
        message_hash = msg.get("messageHash") or compute_message_hash(message)

        logger.info("Attestation complete for %s on %s", tx_hash, domain_name)

        return AttestationResult(
            status="complete",
            transaction_hash=tx_hash,
            source_domain=source_domain,
            message=message,
            attestation=bytes(HexBytes(attestation_hex)),
            message_hash=message_hash,
            iris_status=iris_status,
        )

    def _cache(self, record: TransferRecord, result: AttestationResult):
        """Write the attestation into the record.

        A writer that loses the version race re-reads the record and stops
        if the other writer already cached the attestation.
        """
        for _attempt in range(MAX_CACHE_ATTEMPTS):
            if record.has_attestation():
                return

            record.message = result.message
            record.attestation = result.attestation
            record.message_hash = result.message_hash
            if record.status in (TransferStatus.pending, TransferStatus.confirmed):
                transition(record, TransferStatus.bridging)

            try:
                self.store.update(record)
                logger.info("Cached attestation in transfer %s", record.transfer_id)
                return
            except StaleRecordError:
                logger.debug("Lost attestation write race for %s, re-reading", record.transfer_id)
                record = self.store.get(record.transfer_id)

        logger.warning("Could not cache attestation for transfer %s after %d attempts", record.transfer_id, MAX_CACHE_ATTEMPTS)

    def wait_for_attestation(
        self,
        source_chain: int,
        tx_ref: str,
        timeout: float = 300.0,
        poll_interval: float = 5.0,
        on_phase_change: PhaseCallback | None = None,
    ) -> AttestationResult:
        """Poll until the attestation is complete.

        :param timeout:
            Maximum seconds to wait.

        :param poll_interval:
            Seconds between polls.

        :param on_phase_change:
            Called on every poll with ``(phase, attempt)``.

        :raise AttestationTimeout:
            Not complete within ``timeout``.
        """
        start_time = time.time()
        attempt = 0

        while True:
            elapsed = time.time() - start_time
            if elapsed >= timeout:
                raise AttestationTimeout(f"CCTP attestation not ready after {timeout}s for {tx_ref} on chain {source_chain}")

            attempt += 1
            result = self.get_attestation(source_chain, tx_ref)

            log_level = logging.INFO if attempt == 1 else logging.DEBUG
            logger.log(log_level, "Polling attestation for %s, attempt %d, elapsed %.1fs, phase %s", tx_ref, attempt, elapsed, result.phase)

            if on_phase_change is not None:
                on_phase_change(result.phase, attempt)

            if result.is_complete:
                return result

            time.sleep(poll_interval)
