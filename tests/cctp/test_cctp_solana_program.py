"""Solana CCTP instruction encoding and PDA derivation."""

import hashlib
import struct

import pytest
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from spl.token.constants import ASSOCIATED_TOKEN_PROGRAM_ID

from cctp_bridge.cctp.solana_program import (
    DEPOSIT_FOR_BURN_DISCRIMINATOR,
    RECEIVE_MESSAGE_DISCRIMINATOR,
    TOKEN_MESSENGER_MINTER_PROGRAM,
    BurnAccounts,
    build_create_associated_token_account_instruction,
    build_deposit_for_burn_accounts,
    decode_token_account_amount,
    derive_remote_token_messenger,
    derive_token_pair,
    encode_deposit_for_burn_data,
    encode_receive_message_data,
    instruction_discriminator,
)
from tests.cctp.fakes import make_token_account_data


def test_discriminators():
    """Anchor discriminator is the sha256 prefix of the namespaced name."""
    assert DEPOSIT_FOR_BURN_DISCRIMINATOR == hashlib.sha256(b"global:deposit_for_burn").digest()[:8]
    assert RECEIVE_MESSAGE_DISCRIMINATOR == hashlib.sha256(b"global:receive_message").digest()[:8]
    assert instruction_discriminator("global", "deposit_for_burn") == DEPOSIT_FOR_BURN_DISCRIMINATOR
    assert len(RECEIVE_MESSAGE_DISCRIMINATOR) == 8


def test_discriminators_differ_by_name():
    """Different instruction names never share a discriminator."""
    names = ["deposit_for_burn", "deposit_for_burn_with_hook", "receive_message", "send_message"]
    discriminators = {instruction_discriminator("global", name) for name in names}
    assert len(discriminators) == len(names)
    assert all(len(d) == 8 for d in discriminators)
    assert instruction_discriminator("global", "receive_message") != instruction_discriminator("state", "receive_message")


def test_deposit_for_burn_layout():
    """Little-endian amount and domain, then recipient and caller."""
    recipient = b"\x00" * 12 + b"\xab" * 20
    data = encode_deposit_for_burn_data(1_500_000, 6, recipient)

    assert len(data) == 84
    assert data[:8] == DEPOSIT_FOR_BURN_DISCRIMINATOR
    assert data[8:16] == (1_500_000).to_bytes(8, "little")
    assert data[16:20] == (6).to_bytes(4, "little")
    assert data[20:52] == recipient
    assert data[52:84] == b"\x00" * 32


def test_deposit_for_burn_rejects_short_recipient():
    with pytest.raises(AssertionError):
        encode_deposit_for_burn_data(1, 6, b"\x01" * 20)


def test_receive_message_layout():
    """Both byte vectors carry a u32 little-endian length prefix."""
    message = b"\x01" * 248
    attestation = b"\x02" * 130
    data = encode_receive_message_data(message, attestation)

    assert data[:8] == RECEIVE_MESSAGE_DISCRIMINATOR
    assert struct.unpack("<I", data[8:12])[0] == 248
    assert data[12:260] == message
    assert struct.unpack("<I", data[260:264])[0] == 130
    assert data[264:] == attestation
    assert len(data) == 8 + 4 + 248 + 4 + 130


def test_domain_seed_is_big_endian():
    """PDA seeds use big-endian domains, unlike instruction data."""
    expected, _bump = Pubkey.find_program_address([b"remote_token_messenger", b"\x00\x00\x00\x06"], TOKEN_MESSENGER_MINTER_PROGRAM)
    little_endian, _bump = Pubkey.find_program_address([b"remote_token_messenger", b"\x06\x00\x00\x00"], TOKEN_MESSENGER_MINTER_PROGRAM)

    assert derive_remote_token_messenger(6) == expected
    assert derive_remote_token_messenger(6) != little_endian


def test_token_pair_depends_on_source():
    token = b"\x00" * 12 + b"\x03" * 20
    assert derive_token_pair(6, token) != derive_token_pair(3, token)
    assert derive_token_pair(6, token) == derive_token_pair(6, token)


def test_burn_account_order():
    """Payer and event account sign, the event account is repeated last."""
    payer = Keypair().pubkey()
    event = Keypair().pubkey()
    user_ata = Keypair().pubkey()
    mint = Keypair().pubkey()
    pdas = BurnAccounts.derive(mint)

    metas = build_deposit_for_burn_accounts(payer, event, user_ata, mint, pdas)

    assert len(metas) == 13
    assert metas[0].pubkey == payer and metas[0].is_signer
    assert metas[1].pubkey == event and metas[1].is_signer
    assert metas[2].pubkey == user_ata
    assert metas[4].pubkey == pdas.token_messenger
    assert metas[-1].pubkey == event
    assert not metas[-1].is_signer


def test_create_associated_token_account_instruction():
    """Account is created at the given address, not derived from the owner."""
    payer = Keypair().pubkey()
    account = Keypair().pubkey()
    mint = Keypair().pubkey()

    ix = build_create_associated_token_account_instruction(payer, account, account, mint)

    assert ix.program_id == ASSOCIATED_TOKEN_PROGRAM_ID
    assert bytes(ix.data) == b""
    assert [m.pubkey for m in ix.accounts[:4]] == [payer, account, account, mint]


def test_decode_token_account_amount():
    mint = Keypair().pubkey()
    owner = Keypair().pubkey()
    assert decode_token_account_amount(make_token_account_data(mint, owner, 1_234_567)) == 1_234_567

    with pytest.raises(ValueError):
        decode_token_account_amount(b"\x00" * 70)
