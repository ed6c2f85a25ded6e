"""Cross-chain USDC transfer orchestration.

Drives a transfer through its lifecycle:

1. :py:meth:`TransferOrchestrator.initiate_transfer` validates the request
   and burns USDC on the source chain
2. :py:meth:`TransferOrchestrator.get_attestation` asks Circle's Iris API
   for the signed message
3. :py:meth:`TransferOrchestrator.complete_transfer` relays the message to the
   destination chain and mints USDC

Each step updates the :py:class:`~cctp_bridge.cctp.record.TransferRecord`.
The chain family of the source or destination chain picks the executor, so
the same code path serves EVM and Solana.

Example::

    orchestrator = TransferOrchestrator(
        registry=registry,
        store=store,
        executors={ChainFamily.evm: evm_executor, ChainFamily.solana: solana_executor},
        attestation_client=attestation_client,
    )

    result = orchestrator.initiate_transfer(
        TransferRequest(
            source_chain=84532,
            destination_chain=103,
            amount="1.5",
            destination_address="9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin",
        )
    )
    attestation = orchestrator.attestation_client.wait_for_attestation(84532, result.burn_tx_hash)
    mint_tx_hash = orchestrator.complete_transfer(transfer_id=result.transfer_id)
"""

import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Callable

from cctp_bridge.chain import ChainConfig, ChainFamily, ChainRegistry
from cctp_bridge.cctp.attestation import AttestationClient, AttestationResult, compute_message_hash
from cctp_bridge.cctp.constants import USDC_DECIMALS
from cctp_bridge.cctp.errors import (
    AttestationNotReady,
    InvalidStatusTransition,
    InvalidTransferRequest,
    StaleRecordError,
    TransferNotConfirmed,
    TransferNotFound,
    UnsupportedChain,
)
from cctp_bridge.cctp.executor import TransferExecutor
from cctp_bridge.cctp.fees import FeePolicy
from cctp_bridge.cctp.hook import HookDataGenerator, HookRegistry
from cctp_bridge.cctp.message import decode_message
from cctp_bridge.cctp.record import TransferRecord, TransferStatus, can_advance, transition
from cctp_bridge.cctp.status import TransferStatusReconciler, TransferStatusReport
from cctp_bridge.cctp.store import TransferStore

logger = logging.getLogger(__name__)

#: How many times a lost record write race is retried
MAX_UPDATE_ATTEMPTS = 5

TRANSFER_TYPES = ("fast", "standard")


@dataclass(slots=True)
class TransferRequest:
    """User request to move USDC between chains."""

    source_chain: int

    destination_chain: int

    #: Human readable USDC amount, e.g. ``"1.50"``. At most 6 decimals.
    amount: str | Decimal

    #: Recipient on the destination chain, hex for EVM, base58 for Solana
    destination_address: str

    #: ``"fast"`` or ``"standard"``
    transfer_type: str = "fast"

    #: Becomes the transfer id when given
    session_id: str | None = None

    #: Explicit hook payload, overrides the hook generator
    hook_data: bytes | None = None

    #: Caller data stored with the record
    metadata: dict = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class InitiateTransferResult:
    """Burn was submitted and confirmed."""

    transfer_id: str

    burn_tx_hash: str

    status: TransferStatus

    #: Raw USDC units
    amount: int

    max_fee: int

    finality_threshold: int

    def to_dict(self) -> dict:
        return {
            "transfer_id": self.transfer_id,
            "burn_tx_hash": self.burn_tx_hash,
            "status": self.status.value,
            "amount": self.amount,
            "max_fee": self.max_fee,
            "finality_threshold": self.finality_threshold,
        }


def parse_usdc_amount(amount: str | Decimal | int) -> int:
    """Convert a human readable USDC amount to raw units.

    :raise InvalidTransferRequest:
        Not a positive decimal with at most 6 decimal places.
    """
    try:
        value = Decimal(str(amount).strip())
    except InvalidOperation:
        raise InvalidTransferRequest(f"Amount is not a number: {amount}") from None

    if not value.is_finite() or value <= 0:
        raise InvalidTransferRequest(f"Amount must be positive, got {amount}")

    if value.as_tuple().exponent < -USDC_DECIMALS:
        raise InvalidTransferRequest(f"USDC amount can have at most {USDC_DECIMALS} decimals, got {amount}")

    return int(value.scaleb(USDC_DECIMALS))


class TransferOrchestrator:
    """Burn-attest-mint use cases."""

    def __init__(
        self,
        registry: ChainRegistry,
        store: TransferStore,
        executors: dict[ChainFamily, TransferExecutor],
        attestation_client: AttestationClient,
        fee_policy: FeePolicy | None = None,
        hook_registry: HookRegistry | None = None,
        hook_data_generator: HookDataGenerator | None = None,
    ):
        """
        :param executors:
            One executor per chain family. Transfers touching a family
            without an executor are rejected.

        :param hook_registry:
            Deployed fee-split hook contracts.

        :param hook_data_generator:
            Produces hook payloads for destinations with a deployed hook.
        """
        self.registry = registry
        self.store = store
        self.executors = executors
        self.attestation_client = attestation_client
        self.fee_policy = fee_policy or FeePolicy()
        self.hook_registry = hook_registry
        self.hook_data_generator = hook_data_generator
        self.reconciler = TransferStatusReconciler(store, registry, executors, attestation_client)

    def get_executor(self, config: ChainConfig) -> TransferExecutor:
        try:
            return self.executors[config.family]
        except KeyError:
            raise UnsupportedChain(f"No executor configured for {config.family.value} chain {config.name}") from None

    def validate_request(self, request: TransferRequest) -> int:
        """Check a transfer request.

        :return:
            Amount in raw USDC units.

        :raise InvalidTransferRequest:
            Missing fields, same chain, bad amount or unknown transfer type.

        :raise UnsupportedChain:
            Source or destination chain not configured.
        """
        missing = [name for name in ("source_chain", "destination_chain", "amount", "destination_address") if getattr(request, name) in (None, "")]
        if missing:
            raise InvalidTransferRequest(f"Missing required fields: {', '.join(missing)}")

        if request.source_chain == request.destination_chain:
            raise InvalidTransferRequest("Source and destination chains must be different")

        for chain_id in (request.source_chain, request.destination_chain):
            if not self.registry.is_supported(chain_id):
                raise UnsupportedChain(f"Unsupported chain id: {chain_id}")

        if request.transfer_type not in TRANSFER_TYPES:
            raise InvalidTransferRequest(f"Transfer type must be one of {TRANSFER_TYPES}, got {request.transfer_type}")

        return parse_usdc_amount(request.amount)

    def resolve_hook_data(self, request: TransferRequest, dest_config: ChainConfig) -> bytes | None:
        """Explicit payload wins, otherwise generate one if the destination has a hook deployed."""
        if request.hook_data:
            return request.hook_data

        if self.hook_registry is None or self.hook_data_generator is None:
            return None

        if not self.hook_registry.is_deployed(dest_config.chain_id):
            return None

        hook_data = self.hook_data_generator(dest_config.chain_id)
        logger.info("Using hook %s on %s", self.hook_registry.get_address(dest_config.chain_id), dest_config.name)
        return hook_data

    def quote_max_fee(self, chain_id: int, amount: int, transfer_type: str = "fast") -> int:
        """The ``maxFee`` a burn of ``amount`` raw units would use."""
        self.registry.get(chain_id)
        return self.fee_policy.max_fee(amount, transfer_type)

    def _update_record(self, transfer_id: str, mutate: Callable[[TransferRecord], None]) -> TransferRecord:
        """Apply ``mutate`` to the latest copy, re-read and retry on lost races."""
        for _attempt in range(MAX_UPDATE_ATTEMPTS):
            record = self.store.get(transfer_id)
            mutate(record)
            try:
                return self.store.update(record)
            except StaleRecordError:
                logger.debug("Transfer %s changed concurrently, retrying update", transfer_id)
        raise StaleRecordError(f"Could not update transfer {transfer_id} after {MAX_UPDATE_ATTEMPTS} attempts")

    def _advance(self, transfer_id: str, status: TransferStatus, **fields) -> TransferRecord:
        def _mutate(record: TransferRecord):
            for name, value in fields.items():
                setattr(record, name, value)
            # Another writer may already be further ahead
            if can_advance(record.status, status):
                transition(record, status)

        return self._update_record(transfer_id, _mutate)

    def _mark_failed(self, transfer_id: str, error: Exception):
        reason = str(error) or error.__class__.__name__

        def _mutate(record: TransferRecord):
            if not record.status.is_terminal():
                transition(record, TransferStatus.failed, failure_reason=reason)

        self._update_record(transfer_id, _mutate)
        logger.warning("Transfer %s failed: %s", transfer_id, reason)

    def initiate_transfer(self, request: TransferRequest) -> InitiateTransferResult:
        """Validate a request and burn USDC on the source chain.

        :raise InvalidTransferRequest:
            Request is invalid. No record is created.

        :raise BridgeError:
            Burn failed. The record is marked failed, except when the burn
            was submitted and its outcome is unknown.
        """
        amount = self.validate_request(request)
        source_config = self.registry.get(request.source_chain)
        dest_config = self.registry.get(request.destination_chain)
        executor = self.get_executor(source_config)

        finality_threshold = source_config.get_finality_threshold(request.transfer_type)
        max_fee = self.fee_policy.max_fee(amount, request.transfer_type)
        hook_data = self.resolve_hook_data(request, dest_config)

        record = TransferRecord(
            transfer_id=request.session_id or uuid.uuid4().hex,
            source_chain=source_config.chain_id,
            destination_chain=dest_config.chain_id,
            amount=amount,
            source_address=executor.get_sender_address(source_config),
            destination_address=request.destination_address,
            transfer_type=request.transfer_type,
            finality_threshold=finality_threshold,
            max_fee=max_fee,
            hook_data=hook_data,
            metadata=dict(request.metadata),
        )
        record = self.store.create(record)
        transfer_id = record.transfer_id

        def _on_submitted(burn_tx_hash: str):
            self._advance(transfer_id, TransferStatus.pending, burn_tx_hash=burn_tx_hash)

        try:
            burn_tx_hash = executor.execute_transfer(
                source_config=source_config,
                dest_config=dest_config,
                amount=amount,
                destination_address=request.destination_address,
                finality_threshold=finality_threshold,
                max_fee=max_fee,
                hook_data=hook_data,
                on_submitted=_on_submitted,
            )
        except TransferNotConfirmed as e:
            if self.store.get(transfer_id).burn_tx_hash is None:
                # Stuck before the burn, e.g. on the approval, nothing for the reconciler to follow
                self._mark_failed(transfer_id, e)
            else:
                logger.warning("Burn for transfer %s submitted but not confirmed: %s", transfer_id, e)
            raise
        except Exception as e:
            self._mark_failed(transfer_id, e)
            raise

        record = self._advance(transfer_id, TransferStatus.confirmed, burn_tx_hash=burn_tx_hash)
        logger.info("Transfer %s burn confirmed: %s", transfer_id, burn_tx_hash)

        return InitiateTransferResult(
            transfer_id=transfer_id,
            burn_tx_hash=burn_tx_hash,
            status=record.status,
            amount=amount,
            max_fee=max_fee,
            finality_threshold=finality_threshold,
        )

    def get_attestation(self, source_chain: int, tx_hash: str) -> AttestationResult:
        """Attestation for a burn, cached into its record once complete."""
        return self.attestation_client.get_attestation(source_chain, tx_hash)

    def _find_record(self, transfer_id: str | None, message: bytes | None) -> TransferRecord | None:
        if transfer_id is not None:
            record = self.store.find_by_hash(transfer_id)
            if record is None:
                raise TransferNotFound(f"Transfer not found: {transfer_id}")
            return record
        if message is not None:
            return self.store.find_by_message(message)
        return None

    def complete_transfer(
        self,
        transfer_id: str | None = None,
        message: bytes | None = None,
        attestation: bytes | None = None,
        destination_chain: int | None = None,
    ) -> str:
        """Mint USDC on the destination chain.

        Message and attestation come from the arguments or from the cached record.
        Completing an already completed transfer returns its mint hash
        without sending anything.

        :param transfer_id:
            Transfer id or burn hash.

        :param destination_chain:
            Needed only when there is no record and it cannot be read from the message.

        :return:
            Mint transaction hash.

        :raise AttestationNotReady:
            Message or attestation not available.

        :raise InvalidStatusTransition:
            The transfer has already failed.
        """
        record = self._find_record(transfer_id, message)

        if record is not None:
            if record.status == TransferStatus.completed:
                logger.info("Transfer %s already completed: %s", record.transfer_id, record.mint_tx_hash)
                return record.mint_tx_hash
            if record.status == TransferStatus.failed:
                raise InvalidStatusTransition(f"Transfer {record.transfer_id} has failed and cannot be completed: {record.failure_reason}")
            message = message or record.message
            attestation = attestation or record.attestation

        if message is None or attestation is None:
            raise AttestationNotReady(f"Message and attestation not available for transfer {transfer_id}")

        if destination_chain is None:
            if record is not None:
                destination_chain = record.destination_chain
            else:
                destination_chain = self.registry.by_domain(decode_message(message).destination_domain).chain_id

        dest_config = self.registry.get(destination_chain)
        executor = self.get_executor(dest_config)

        try:
            mint_tx_hash = executor.complete_transfer(message, attestation, dest_config)
        except TransferNotConfirmed as e:
            logger.warning("Mint submitted but not confirmed: %s", e)
            raise
        except Exception as e:
            if record is not None:
                self._mark_failed(record.transfer_id, e)
            raise

        if record is not None:
            self._advance(
                record.transfer_id,
                TransferStatus.completed,
                mint_tx_hash=mint_tx_hash,
                message=message,
                attestation=attestation,
                message_hash=record.message_hash or compute_message_hash(message),
            )

        logger.info("Transfer completed on %s: %s", dest_config.name, mint_tx_hash)
        return mint_tx_hash

    def get_transfer_status(self, source_chain: int, tx_hash: str) -> TransferStatusReport:
        return self.reconciler.get_transfer_status(source_chain, tx_hash)

    def get_transfer(self, transfer_id: str) -> TransferRecord:
        return self.store.get(transfer_id)

    def list_transfers(self, **filters) -> list[TransferRecord]:
        """See :py:meth:`~cctp_bridge.cctp.store.TransferStore.list` for filters."""
        return self.store.list(**filters)
