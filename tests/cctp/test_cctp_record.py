"""Transfer lifecycle state machine and record stores."""

from pathlib import Path

import pytest

from cctp_bridge.cctp.errors import InvalidStatusTransition, StaleRecordError, TransferNotFound
from cctp_bridge.cctp.record import TransferRecord, TransferStatus, can_advance, can_complete, transition
from cctp_bridge.cctp.store import InMemoryTransferStore, JsonFileTransferStore
from tests.cctp.fakes import RECIPIENT, SENDER

FORWARD = [
    TransferStatus.created,
    TransferStatus.pending,
    TransferStatus.confirmed,
    TransferStatus.bridging,
    TransferStatus.completed,
]


def make_record(**kwargs) -> TransferRecord:
    kwargs.setdefault("source_chain", 84532)
    kwargs.setdefault("destination_chain", 421614)
    kwargs.setdefault("amount", 1_000_000)
    kwargs.setdefault("source_address", SENDER)
    kwargs.setdefault("destination_address", RECIPIENT)
    return TransferRecord(**kwargs)


def test_forward_transitions():
    """Every forward step is allowed, every backward step is not."""
    for i, current in enumerate(FORWARD[:-1]):
        for new in FORWARD[i:]:
            assert can_advance(current, new), f"{current} -> {new}"
        for new in FORWARD[:i]:
            assert not can_advance(current, new), f"{current} -> {new}"


@pytest.mark.parametrize("current", FORWARD[:-1])
def test_failed_reachable_from_non_terminal(current):
    assert can_advance(current, TransferStatus.failed)


@pytest.mark.parametrize("terminal", [TransferStatus.completed, TransferStatus.failed])
def test_terminal_states_are_final(terminal):
    for new in TransferStatus:
        assert not can_advance(terminal, new)


def test_can_complete_truth_table():
    assert can_complete(True, True)
    assert not can_complete(True, False)
    assert not can_complete(False, True)
    assert not can_complete(False, False)


def test_transition_failed_keeps_reason():
    record = make_record(status=TransferStatus.pending)
    transition(record, TransferStatus.failed, failure_reason="CCTP burn reverted")
    assert record.status == TransferStatus.failed
    assert record.failure_reason == "CCTP burn reverted"

    with pytest.raises(InvalidStatusTransition):
        transition(record, TransferStatus.pending)


def test_transition_backwards_raises():
    record = make_record(status=TransferStatus.bridging)
    with pytest.raises(InvalidStatusTransition):
        transition(record, TransferStatus.confirmed)


def test_record_matches_refs():
    record = make_record(burn_tx_hash="0xABCDEF")
    assert record.matches("0xabcdef")
    assert record.matches(record.transfer_id)
    assert not record.matches("0x1234")


def test_record_matches_base58_case_sensitive():
    """Only hex hashes ignore case, Solana signatures and session ids do not."""
    signature = "5VERv8NMvzbJMEkV8xnrLkEaWRtSz9CosKDYjCJjBRnbJLgp8uirBgmQpjKhoR4tjF3ZpRzrFmBV6UjKdiSZkQUW"
    record = make_record(transfer_id="Checkout-1", burn_tx_hash=signature)
    assert record.matches(signature)
    assert not record.matches(signature.lower())
    assert record.matches("Checkout-1")
    assert not record.matches("checkout-1")


@pytest.fixture(params=["memory", "json"])
def any_store(request, tmp_path: Path):
    if request.param == "memory":
        return InMemoryTransferStore()
    return JsonFileTransferStore(tmp_path / "transfers.json")


def test_store_create_and_get(any_store):
    record = any_store.create(make_record(transfer_id="session-1", metadata={"order": "A-1"}))
    loaded = any_store.get("session-1")
    assert loaded.transfer_id == record.transfer_id
    assert loaded.amount == 1_000_000
    assert loaded.metadata == {"order": "A-1"}
    assert loaded.status == TransferStatus.created

    with pytest.raises(ValueError):
        any_store.create(make_record(transfer_id="session-1"))

    with pytest.raises(TransferNotFound):
        any_store.get("no-such-transfer")


def test_store_update_bumps_version(any_store):
    any_store.create(make_record(transfer_id="t1"))
    record = any_store.get("t1")
    record.burn_tx_hash = "0x01"
    record.message = b"\x01\x02"
    transition(record, TransferStatus.pending)

    updated = any_store.update(record)
    assert updated.version == 1

    loaded = any_store.get("t1")
    assert loaded.version == 1
    assert loaded.status == TransferStatus.pending
    assert loaded.message == b"\x01\x02"


def test_store_rejects_stale_write(any_store):
    """Second writer holding an old copy loses."""
    any_store.create(make_record(transfer_id="t1"))
    first = any_store.get("t1")
    second = any_store.get("t1")

    first.burn_tx_hash = "0x01"
    any_store.update(first)

    second.burn_tx_hash = "0x02"
    with pytest.raises(StaleRecordError):
        any_store.update(second)

    assert any_store.get("t1").burn_tx_hash == "0x01"


def test_store_list_filters(any_store):
    any_store.create(make_record(transfer_id="a", source_chain=84532))
    any_store.create(make_record(transfer_id="b", source_chain=103, destination_chain=84532))
    any_store.create(make_record(transfer_id="c", source_chain=84532, status=TransferStatus.failed))

    assert {r.transfer_id for r in any_store.list(source_chain=84532)} == {"a", "c"}
    assert [r.transfer_id for r in any_store.list(status=TransferStatus.failed)] == ["c"]
    assert len(any_store.list(limit=2)) == 2
    assert any_store.find_by_hash("b").source_chain == 103
    assert any_store.find_by_hash("b", source_chain=84532) is None
