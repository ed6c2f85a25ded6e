"""Iris attestation client.

Tests :py:mod:`cctp_bridge.cctp.attestation` against a scripted Iris session.
"""

import pytest
import requests

from cctp_bridge.cctp.attestation import AttestationClient, AttestationResult, compute_message_hash
from cctp_bridge.cctp.errors import AttestationServiceError, AttestationTimeout
from cctp_bridge.cctp.record import TransferRecord, TransferStatus
from tests.cctp.fakes import RECIPIENT, SENDER, ScriptedIrisSession, iris_complete, iris_pending, make_burn_message, make_response

BURN_TX = "0x" + "ab" * 32


@pytest.fixture()
def message() -> bytes:
    return make_burn_message()


@pytest.fixture()
def pending_record(store) -> TransferRecord:
    """Burn confirmed, waiting for attestation."""
    return store.create(
        TransferRecord(
            source_chain=84532,
            destination_chain=421614,
            amount=1_500_000,
            source_address=SENDER,
            destination_address=RECIPIENT,
            status=TransferStatus.confirmed,
            burn_tx_hash=BURN_TX,
        )
    )


def test_not_indexed_is_pending(attestation_client, iris_session):
    """404 means Iris has not seen the burn yet."""
    iris_session.responses = [make_response(404)]
    result = attestation_client.get_attestation(84532, BURN_TX)
    assert result.status == "pending"
    assert result.phase == "waiting_for_indexing"
    assert result.source_domain == 6

    url, params = iris_session.calls[0]
    assert url == "https://iris-api-sandbox.circle.com/v2/messages/6"
    assert params == {"transactionHash": BURN_TX}


def test_empty_messages_is_pending(attestation_client, iris_session):
    iris_session.responses = [make_response(200, {"messages": []})]
    assert attestation_client.get_attestation(84532, BURN_TX).status == "pending"


def test_timeout_is_pending(attestation_client, iris_session):
    """HTTP timeout is not fatal."""
    iris_session.responses = [requests.Timeout("read timed out")]
    assert attestation_client.get_attestation(84532, BURN_TX).status == "pending"


def test_pending_confirmations(attestation_client, iris_session):
    iris_session.responses = [iris_pending(delay_reason="insufficient_fee")]
    result = attestation_client.get_attestation(84532, BURN_TX)
    assert result.status == "pending"
    assert result.iris_status == "pending_confirmations"
    assert result.delay_reason == "insufficient_fee"
    assert result.message is None


def test_server_error_raises(attestation_client, iris_session):
    iris_session.responses = [make_response(500, {"error": "boom"})]
    with pytest.raises(AttestationServiceError):
        attestation_client.get_attestation(84532, BURN_TX)


def test_evm_hash_gets_0x_prefix(attestation_client, iris_session):
    attestation_client.get_attestation(84532, "ab" * 32)
    assert iris_session.calls[0][1] == {"transactionHash": BURN_TX}


def test_complete_is_cached(attestation_client, iris_session, store, pending_record, message):
    """Complete attestation moves the record to bridging, later lookups skip HTTP."""
    iris_session.responses = [iris_complete(message)]

    result = attestation_client.get_attestation(84532, BURN_TX)
    assert result.is_complete
    assert result.message == message
    assert result.attestation == b"\x11" * 65
    assert result.message_hash == compute_message_hash(message)
    assert len(iris_session.calls) == 1

    record = store.get(pending_record.transfer_id)
    assert record.status == TransferStatus.bridging
    assert record.message == message
    assert record.attestation == b"\x11" * 65
    assert record.message_hash == result.message_hash

    again = attestation_client.get_attestation(84532, BURN_TX)
    assert again.is_complete
    assert again.message == message
    assert len(iris_session.calls) == 1

    # Transfer id works as a reference too
    by_id = attestation_client.get_attestation(84532, pending_record.transfer_id)
    assert by_id.transaction_hash == BURN_TX
    assert len(iris_session.calls) == 1


def test_lost_cache_race_keeps_first_write(attestation_client, store, pending_record, message):
    """Writer with a stale copy re-reads and finds the attestation already cached."""
    stale = store.get(pending_record.transfer_id)

    winner = store.get(pending_record.transfer_id)
    winner.message = message
    winner.attestation = b"\x22" * 65
    winner.status = TransferStatus.bridging
    store.update(winner)

    late = AttestationResult(
        status="complete",
        transaction_hash=BURN_TX,
        source_domain=6,
        message=message,
        attestation=b"\x33" * 65,
        message_hash=compute_message_hash(message),
    )
    attestation_client._cache(stale, late)

    record = store.get(pending_record.transfer_id)
    assert record.attestation == b"\x22" * 65
    assert record.version == 1


def test_wait_for_attestation_phases(store, registry, message):
    """Polls through indexing and confirmations until complete."""
    session = ScriptedIrisSession([make_response(404), iris_pending(), iris_complete(message)])
    client = AttestationClient(session, store, registry)

    phases = []
    result = client.wait_for_attestation(84532, BURN_TX, timeout=60, poll_interval=0, on_phase_change=lambda phase, attempt: phases.append((phase, attempt)))

    assert result.is_complete
    assert phases == [("waiting_for_indexing", 1), ("pending_confirmations", 2), ("complete", 3)]


def test_wait_for_attestation_timeout(attestation_client):
    with pytest.raises(AttestationTimeout):
        attestation_client.wait_for_attestation(84532, BURN_TX, timeout=0, poll_interval=0)
