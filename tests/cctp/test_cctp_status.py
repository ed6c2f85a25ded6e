"""Transfer status reconciliation."""

import pytest

from cctp_bridge.chain import ChainFamily
from cctp_bridge.cctp.attestation import AttestationClient
from cctp_bridge.cctp.executor import ChainTransactionStatus, TransactionState
from cctp_bridge.cctp.record import TransferRecord, TransferStatus
from cctp_bridge.cctp.status import TransferStatusReconciler
from tests.cctp.fakes import RECIPIENT, SENDER, FakeEVMChainClient, ScriptedIrisSession, iris_complete, make_burn_message, make_response

BURN_TX = "0x" + "cd" * 32


@pytest.fixture()
def source_client(evm_clients) -> FakeEVMChainClient:
    client = evm_clients[84532] = FakeEVMChainClient()
    client.receipts[BURN_TX] = {"status": 1, "blockNumber": 990, "fn_name": "depositForBurn"}
    return client


@pytest.fixture()
def reconciler(store, registry, evm_executor, attestation_client) -> TransferStatusReconciler:
    return TransferStatusReconciler(store, registry, {ChainFamily.evm: evm_executor}, attestation_client)


def create_record(store, status: TransferStatus) -> TransferRecord:
    return store.create(
        TransferRecord(
            source_chain=84532,
            destination_chain=421614,
            amount=1_000_000,
            source_address=SENDER,
            destination_address=RECIPIENT,
            status=status,
            burn_tx_hash=BURN_TX,
        )
    )


def test_pending_upgraded_to_confirmed(reconciler, store, source_client):
    record = create_record(store, TransferStatus.pending)

    report = reconciler.get_transfer_status(84532, BURN_TX)

    assert report.chain_status.state == TransactionState.confirmed
    assert report.chain_status.confirmations == 10
    assert report.attestation_status == "pending"
    assert not report.can_complete
    assert report.status == TransferStatus.confirmed
    assert store.get(record.transfer_id).status == TransferStatus.confirmed


def test_attested_upgraded_to_bridging(reconciler, store, source_client, iris_session):
    record = create_record(store, TransferStatus.confirmed)
    iris_session.responses = [iris_complete(make_burn_message())]

    report = reconciler.get_transfer_status(84532, record.transfer_id)

    assert report.attestation_status == "complete"
    assert report.can_complete
    assert report.status == TransferStatus.bridging
    assert report.to_dict()["transfer_id"] == record.transfer_id


def test_reverted_burn_marks_failed(reconciler, store, source_client):
    source_client.receipts[BURN_TX]["status"] = 0
    record = create_record(store, TransferStatus.pending)

    report = reconciler.get_transfer_status(84532, BURN_TX)

    assert report.chain_status.is_failed
    assert report.status == TransferStatus.failed
    assert store.get(record.transfer_id).failure_reason == "reverted"


def test_completed_is_not_downgraded(reconciler, store, source_client):
    """Stale chain view never moves a record backwards."""
    record = create_record(store, TransferStatus.completed)
    del source_client.receipts[BURN_TX]

    report = reconciler.get_transfer_status(84532, BURN_TX)

    assert report.chain_status.state == TransactionState.pending
    assert report.status == TransferStatus.completed
    assert store.get(record.transfer_id).version == 0


def test_unknown_transaction(reconciler, source_client):
    """Transactions we did not send still get a chain and attestation view."""
    report = reconciler.get_transfer_status(84532, "0x" + "ef" * 32)
    assert report.record is None
    assert report.status is None
    assert report.chain_status.state == TransactionState.pending


def test_iris_error_reported_as_pending(store, registry, evm_executor, source_client):
    session = ScriptedIrisSession([make_response(503)])
    reconciler = TransferStatusReconciler(store, registry, {ChainFamily.evm: evm_executor}, AttestationClient(session, store, registry))
    create_record(store, TransferStatus.confirmed)

    report = reconciler.get_transfer_status(84532, BURN_TX)
    assert report.attestation_status == "pending"
    assert report.status == TransferStatus.confirmed


def test_chain_transaction_status_flags():
    status = ChainTransactionStatus(tx_hash="0x01", state=TransactionState.failed, error="reverted")
    assert status.is_failed
    assert not status.is_confirmed
