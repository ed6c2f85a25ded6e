"""Solana burn and mint against an in-memory cluster."""

import base58
import pytest
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from spl.token.constants import ASSOCIATED_TOKEN_PROGRAM_ID
from spl.token.instructions import get_associated_token_address

from cctp_bridge.cctp.constants import SOLANA_DEVNET_USDC_MINT, SOLANA_MESSAGE_TRANSMITTER_PROGRAM_ID, SOLANA_TOKEN_MESSENGER_MINTER_PROGRAM_ID
from cctp_bridge.cctp.errors import InsufficientBalance, TokenAccountMissing
from cctp_bridge.cctp.message import evm_address_to_bytes32
from cctp_bridge.cctp.orchestrator import TransferRequest
from cctp_bridge.cctp.record import TransferStatus
from cctp_bridge.cctp.solana_program import DEPOSIT_FOR_BURN_DISCRIMINATOR, RECEIVE_MESSAGE_DISCRIMINATOR
from tests.cctp.fakes import BASE_SEPOLIA, RECIPIENT, SOLANA_DEVNET, iris_complete, make_burn_message, make_token_account_data

MINT = Pubkey.from_string(SOLANA_DEVNET_USDC_MINT)

TOKEN_MESSENGER_MINTER = Pubkey.from_string(SOLANA_TOKEN_MESSENGER_MINTER_PROGRAM_ID)

MESSAGE_TRANSMITTER = Pubkey.from_string(SOLANA_MESSAGE_TRANSMITTER_PROGRAM_ID)


def fund(solana_client, amount: int):
    """Give the payer a USDC token account."""
    payer = solana_client.payer.pubkey()
    ata = get_associated_token_address(payer, MINT)
    solana_client.accounts[ata] = make_token_account_data(MINT, payer, amount)


def test_solana_burn(solana_client, solana_executor, registry):
    """Event account creation and burn go out in one transaction."""
    fund(solana_client, 5_000_000)

    signature = solana_executor.execute_transfer(
        source_config=registry.get(SOLANA_DEVNET),
        dest_config=registry.get(BASE_SEPOLIA),
        amount=1_000_000,
        destination_address=RECIPIENT,
        finality_threshold=1000,
        max_fee=1_400,
    )

    assert not signature.startswith("0x")
    assert len(solana_client.sent) == 1

    instructions, signers = solana_client.sent[0]
    assert len(instructions) == 4
    assert signers[0] == solana_client.payer
    assert len(signers) == 2

    burn = instructions[-1]
    assert burn.program_id == TOKEN_MESSENGER_MINTER
    data = bytes(burn.data)
    assert data[:8] == DEPOSIT_FOR_BURN_DISCRIMINATOR
    assert int.from_bytes(data[8:16], "little") == 1_000_000
    assert int.from_bytes(data[16:20], "little") == 6
    assert data[20:52] == evm_address_to_bytes32(RECIPIENT)

    event_account = signers[1].pubkey()
    assert burn.accounts[1].pubkey == event_account
    assert burn.accounts[-1].pubkey == event_account


def test_solana_burn_without_token_account(solana_client, solana_executor, registry):
    with pytest.raises(TokenAccountMissing):
        solana_executor.execute_transfer(registry.get(SOLANA_DEVNET), registry.get(BASE_SEPOLIA), 1_000_000, RECIPIENT, 1000, 1_400)
    assert solana_client.sent == []


def test_solana_burn_insufficient_balance(solana_client, solana_executor, registry):
    fund(solana_client, 999_999)
    with pytest.raises(InsufficientBalance):
        solana_executor.execute_transfer(registry.get(SOLANA_DEVNET), registry.get(BASE_SEPOLIA), 1_000_000, RECIPIENT, 1000, 1_400)
    assert solana_client.sent == []


def test_receive_creates_missing_token_account(solana_client, solana_executor, registry):
    """Missing recipient token account is created before the mint."""
    recipient = Keypair().pubkey()
    message = make_burn_message(source_domain=6, destination_domain=5, mint_recipient=bytes(recipient))

    signature = solana_executor.complete_transfer(message, b"\x11" * 65, registry.get(SOLANA_DEVNET))

    assert len(solana_client.sent) == 2

    create_ata = solana_client.sent[0][0][0]
    assert create_ata.program_id == ASSOCIATED_TOKEN_PROGRAM_ID
    assert create_ata.accounts[1].pubkey == recipient
    assert create_ata.accounts[2].pubkey == recipient
    assert create_ata.accounts[3].pubkey == MINT

    receive = solana_client.sent[1][0][-1]
    assert receive.program_id == MESSAGE_TRANSMITTER
    assert bytes(receive.data)[:8] == RECEIVE_MESSAGE_DISCRIMINATOR
    assert receive.accounts[8].pubkey == recipient
    assert signature == base58.b58encode(bytes([2]) * 64).decode("ascii")


def test_receive_with_existing_token_account(solana_client, solana_executor, registry):
    recipient = Keypair().pubkey()
    solana_client.accounts[recipient] = make_token_account_data(MINT, Keypair().pubkey(), 0)
    message = make_burn_message(source_domain=6, destination_domain=5, mint_recipient=bytes(recipient))

    solana_executor.complete_transfer(message, b"\x11" * 65, registry.get(SOLANA_DEVNET))

    assert len(solana_client.sent) == 1
    assert solana_client.sent[0][0][-1].program_id == MESSAGE_TRANSMITTER


def test_evm_to_solana(orchestrator, evm_clients, solana_client, iris_session, store):
    """Burn on Base Sepolia, mint on Solana devnet."""
    recipient = Keypair().pubkey()

    result = orchestrator.initiate_transfer(
        TransferRequest(
            source_chain=BASE_SEPOLIA,
            destination_chain=SOLANA_DEVNET,
            amount="0.25",
            destination_address=str(recipient),
        )
    )
    burn_args = evm_clients[BASE_SEPOLIA].sent[-1][1]
    assert burn_args[1] == 5
    assert burn_args[2] == bytes(recipient)

    iris_session.responses = [iris_complete(make_burn_message(destination_domain=5, mint_recipient=bytes(recipient), amount=250_000))]
    orchestrator.get_attestation(BASE_SEPOLIA, result.burn_tx_hash)

    mint_signature = orchestrator.complete_transfer(transfer_id=result.transfer_id)

    record = store.get(result.transfer_id)
    assert record.status == TransferStatus.completed
    assert record.mint_tx_hash == mint_signature
    assert not mint_signature.startswith("0x")


def test_solana_to_evm(orchestrator, evm_clients, solana_client, iris_session, store):
    """Burn on Solana devnet, the base58 signature drives attestation, status and mint."""
    fund(solana_client, 5_000_000)

    result = orchestrator.initiate_transfer(TransferRequest(source_chain=SOLANA_DEVNET, destination_chain=BASE_SEPOLIA, amount="1", destination_address=RECIPIENT))

    signature = base58.b58encode(bytes([1]) * 64).decode("ascii")
    assert result.burn_tx_hash == signature
    assert result.status == TransferStatus.confirmed
    assert store.get(result.transfer_id).source_address == str(solana_client.payer.pubkey())

    message = make_burn_message(source_domain=5, destination_domain=6, amount=1_000_000)
    iris_session.responses = [iris_complete(message)]

    report = orchestrator.get_transfer_status(SOLANA_DEVNET, signature)
    assert report.chain_status.is_confirmed
    assert report.can_complete
    assert report.status == TransferStatus.bridging

    url, params = iris_session.calls[-1]
    assert url.endswith("/v2/messages/5")
    assert params == {"transactionHash": signature}

    mint_tx_hash = orchestrator.complete_transfer(transfer_id=signature)

    dest = evm_clients[BASE_SEPOLIA]
    assert dest.sent_fn_names == ["receiveMessage"]
    assert dest.sent[0][1] == (message, b"\x11" * 65)
    record = store.get(result.transfer_id)
    assert record.status == TransferStatus.completed
    assert record.mint_tx_hash == mint_tx_hash
    assert mint_tx_hash.startswith("0x")
