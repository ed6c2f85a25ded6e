"""Transfer record and its lifecycle state machine.

A :py:class:`TransferRecord` is the durable representation of one
burn-attest-mint transfer. Status only moves forward::

    created -> pending -> confirmed -> bridging -> completed

and ``failed`` can be entered from any non-terminal state.
Records are never deleted.
"""

import datetime
import enum
import logging
import uuid
from dataclasses import dataclass, field

from hexbytes import HexBytes

from cctp_bridge.cctp.errors import InvalidStatusTransition
from cctp_bridge.utils import native_datetime_utc_now

logger = logging.getLogger(__name__)


class TransferStatus(enum.Enum):
    """Lifecycle of a cross-chain transfer."""

    #: Record created, nothing submitted yet
    created = "created"

    #: Burn transaction submitted on the source chain
    pending = "pending"

    #: Burn transaction confirmed on the source chain
    confirmed = "confirmed"

    #: Attestation obtained, waiting for the mint on the destination chain
    bridging = "bridging"

    #: USDC minted on the destination chain
    completed = "completed"

    failed = "failed"

    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


#: Position of each non-failed status in the forward ordering
_STATUS_ORDER: dict[TransferStatus, int] = {
    TransferStatus.created: 0,
    TransferStatus.pending: 1,
    TransferStatus.confirmed: 2,
    TransferStatus.bridging: 3,
    TransferStatus.completed: 4,
}

TERMINAL_STATUSES = frozenset({TransferStatus.completed, TransferStatus.failed})


def can_advance(current: TransferStatus, new: TransferStatus) -> bool:
    """Can a record move from ``current`` to ``new``.

    - Terminal states accept nothing
    - ``failed`` is accepted from any non-terminal state
    - Otherwise the move must be forward, or stay in place
    """
    if current.is_terminal():
        return False
    if new == TransferStatus.failed:
        return True
    return _STATUS_ORDER[new] >= _STATUS_ORDER[current]


def can_complete(burn_confirmed: bool, attestation_complete: bool) -> bool:
    """Mint on the destination chain is possible only after both the burn and the attestation are final."""
    return burn_confirmed and attestation_complete


def _normalise_ref(ref: str) -> str:
    # EVM hashes may come checksummed or lowercased, base58 is case-sensitive
    return ref.lower() if ref[:2] in ("0x", "0X") else ref


@dataclass(slots=True)
class TransferRecord:
    """Durable record of a single cross-chain transfer.

    All engine-owned data lives in typed fields.
    :py:attr:`metadata` is reserved for caller-supplied data.
    """

    source_chain: int

    destination_chain: int

    #: Raw USDC units, 6 decimals
    amount: int

    source_address: str

    destination_address: str

    #: Caller supplied session id, or a random UUID
    transfer_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    status: TransferStatus = TransferStatus.created

    #: Set only after the burn transaction was accepted by the source chain
    burn_tx_hash: str | None = None

    #: Set only after the mint succeeded on the destination chain
    mint_tx_hash: str | None = None

    #: CCTP message bytes, cached from the attestation service
    message: bytes | None = None

    #: Attestation bytes, cached from the attestation service
    attestation: bytes | None = None

    #: 0x-prefixed keccak256 of :py:attr:`message`
    message_hash: str | None = None

    #: ``"fast"`` or ``"standard"``
    transfer_type: str = "fast"

    #: ``minFinalityThreshold`` used for the burn
    finality_threshold: int | None = None

    #: ``maxFee`` used for the burn, raw USDC units
    max_fee: int | None = None

    #: Hook payload forwarded to ``depositForBurnWithHook``
    hook_data: bytes | None = None

    #: Human readable failure cause, set when status is ``failed``
    failure_reason: str | None = None

    metadata: dict = field(default_factory=dict)

    created_at: datetime.datetime = field(default_factory=native_datetime_utc_now)

    updated_at: datetime.datetime = field(default_factory=native_datetime_utc_now)

    #: Optimistic concurrency counter, bumped by the store on every update
    version: int = 0

    def __repr__(self):
        return f"<Transfer {self.transfer_id} {self.source_chain}->{self.destination_chain} {self.amount} {self.status.value}>"

    def has_attestation(self) -> bool:
        """Both message and attestation are cached on this record."""
        return self.message is not None and self.attestation is not None

    def is_burn_confirmed(self) -> bool:
        return self.burn_tx_hash is not None and _STATUS_ORDER.get(self.status, -1) >= _STATUS_ORDER[TransferStatus.confirmed]

    def matches(self, ref: str) -> bool:
        """Is ``ref`` this record's id, burn hash or mint hash.

        Only 0x-prefixed hex hashes compare case-insensitively,
        base58 signatures and transfer ids are case-sensitive.
        """
        ref = _normalise_ref(ref)
        candidates = (self.transfer_id, self.burn_tx_hash, self.mint_tx_hash)
        return any(c is not None and _normalise_ref(c) == ref for c in candidates)

    def to_dict(self) -> dict:
        """Serialise for JSON storage."""
        return {
            "transfer_id": self.transfer_id,
            "source_chain": self.source_chain,
            "destination_chain": self.destination_chain,
            "amount": self.amount,
            "source_address": self.source_address,
            "destination_address": self.destination_address,
            "status": self.status.value,
            "burn_tx_hash": self.burn_tx_hash,
            "mint_tx_hash": self.mint_tx_hash,
            "message": HexBytes(self.message).to_0x_hex() if self.message is not None else None,
            "attestation": HexBytes(self.attestation).to_0x_hex() if self.attestation is not None else None,
            "message_hash": self.message_hash,
            "transfer_type": self.transfer_type,
            "finality_threshold": self.finality_threshold,
            "max_fee": self.max_fee,
            "hook_data": HexBytes(self.hook_data).to_0x_hex() if self.hook_data is not None else None,
            "failure_reason": self.failure_reason,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TransferRecord":
        def _bytes(key):
            value = data.get(key)
            return bytes(HexBytes(value)) if value is not None else None

        return cls(
            transfer_id=data["transfer_id"],
            source_chain=data["source_chain"],
            destination_chain=data["destination_chain"],
            amount=data["amount"],
            source_address=data["source_address"],
            destination_address=data["destination_address"],
            status=TransferStatus(data["status"]),
            burn_tx_hash=data.get("burn_tx_hash"),
            mint_tx_hash=data.get("mint_tx_hash"),
            message=_bytes("message"),
            attestation=_bytes("attestation"),
            message_hash=data.get("message_hash"),
            transfer_type=data.get("transfer_type", "fast"),
            finality_threshold=data.get("finality_threshold"),
            max_fee=data.get("max_fee"),
            hook_data=_bytes("hook_data"),
            failure_reason=data.get("failure_reason"),
            metadata=data.get("metadata", {}),
            created_at=datetime.datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.datetime.fromisoformat(data["updated_at"]),
            version=data.get("version", 0),
        )


def transition(record: TransferRecord, new_status: TransferStatus, *, failure_reason: str | None = None) -> TransferRecord:
    """Move a record to a new status in place.

    Staying in the same non-terminal status is a no-op.

    :param failure_reason:
        Stored when moving to ``failed``.

    :raise InvalidStatusTransition:
        Backward move, or any move out of ``completed`` or ``failed``.
    """
    if not can_advance(record.status, new_status):
        raise InvalidStatusTransition(f"Cannot move transfer {record.transfer_id} from {record.status.value} to {new_status.value}")

    if new_status == record.status:
        return record

    logger.debug("Transfer %s: %s -> %s", record.transfer_id, record.status.value, new_status.value)
    record.status = new_status
    if new_status == TransferStatus.failed:
        record.failure_reason = failure_reason
    record.updated_at = native_datetime_utc_now()
    return record
