"""Solana CCTP V2 program helpers.

Pure functions to build the ``deposit_for_burn`` and ``receive_message``
instructions of Circle's Solana programs without the Anchor IDL.
Nothing here does network I/O.

- PDA derivations of the TokenMessengerMinter program
- Anchor instruction discriminators
- Instruction data payloads and account lists
- SPL token account parsing

Instruction data layouts::

    deposit_for_burn:
        0   [8]  discriminator
        8   u64  amount, little-endian
        16  u32  destination domain, little-endian
        20  [32] mint recipient
        52  [32] destination caller

    receive_message:
        0   [8]  discriminator
        8   u32  message length, little-endian
        12  [n]  message
        .   u32  attestation length, little-endian
        .   [m]  attestation
"""

import hashlib
import struct
from dataclasses import dataclass

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from spl.token.constants import ASSOCIATED_TOKEN_PROGRAM_ID, TOKEN_PROGRAM_ID

from cctp_bridge.cctp.constants import (
    ANCHOR_GLOBAL_NAMESPACE,
    SOLANA_MESSAGE_TRANSMITTER_PROGRAM_ID,
    SOLANA_TOKEN_MESSENGER_MINTER_PROGRAM_ID,
)
from cctp_bridge.cctp.message import EMPTY_BYTES32

#: TokenMessengerMinter program
TOKEN_MESSENGER_MINTER_PROGRAM = Pubkey.from_string(SOLANA_TOKEN_MESSENGER_MINTER_PROGRAM_ID)

#: MessageTransmitter program
MESSAGE_TRANSMITTER_PROGRAM = Pubkey.from_string(SOLANA_MESSAGE_TRANSMITTER_PROGRAM_ID)

#: Offset of the ``amount`` field in an SPL token account: mint (32) + owner (32)
TOKEN_ACCOUNT_AMOUNT_OFFSET = 64


def _find_pda(seeds: list[bytes], program_id: Pubkey = TOKEN_MESSENGER_MINTER_PROGRAM) -> Pubkey:
    pda, _bump = Pubkey.find_program_address(seeds, program_id)
    return pda


def _domain_seed(domain: int) -> bytes:
    # PDA seeds use big-endian domain, unlike instruction data
    return domain.to_bytes(4, "big")


def derive_token_messenger(program_id: Pubkey = TOKEN_MESSENGER_MINTER_PROGRAM) -> Pubkey:
    return _find_pda([b"token_messenger"], program_id)


def derive_remote_token_messenger(remote_domain: int, program_id: Pubkey = TOKEN_MESSENGER_MINTER_PROGRAM) -> Pubkey:
    return _find_pda([b"remote_token_messenger", _domain_seed(remote_domain)], program_id)


def derive_token_minter(program_id: Pubkey = TOKEN_MESSENGER_MINTER_PROGRAM) -> Pubkey:
    return _find_pda([b"token_minter"], program_id)


def derive_local_token(mint: Pubkey, program_id: Pubkey = TOKEN_MESSENGER_MINTER_PROGRAM) -> Pubkey:
    return _find_pda([b"local_token", bytes(mint)], program_id)


def derive_token_pair(remote_domain: int, remote_token: bytes, program_id: Pubkey = TOKEN_MESSENGER_MINTER_PROGRAM) -> Pubkey:
    """Token pair PDA linking a remote chain token to the local mint.

    :param remote_token:
        32-byte burn token from the incoming message.
    """
    assert len(remote_token) == 32, f"Remote token must be 32 bytes, got {len(remote_token)}"
    return _find_pda([b"token_pair", _domain_seed(remote_domain), remote_token], program_id)


def derive_custody(mint: Pubkey, program_id: Pubkey = TOKEN_MESSENGER_MINTER_PROGRAM) -> Pubkey:
    return _find_pda([b"custody", bytes(mint)], program_id)


def derive_event_authority(program_id: Pubkey = TOKEN_MESSENGER_MINTER_PROGRAM) -> Pubkey:
    return _find_pda([b"__event_authority"], program_id)


@dataclass(slots=True, frozen=True)
class BurnAccounts:
    """PDAs needed by ``deposit_for_burn``."""

    token_messenger: Pubkey
    token_minter: Pubkey
    local_token: Pubkey
    custody: Pubkey
    event_authority: Pubkey

    @classmethod
    def derive(cls, mint: Pubkey, program_id: Pubkey = TOKEN_MESSENGER_MINTER_PROGRAM) -> "BurnAccounts":
        return cls(
            token_messenger=derive_token_messenger(program_id),
            token_minter=derive_token_minter(program_id),
            local_token=derive_local_token(mint, program_id),
            custody=derive_custody(mint, program_id),
            event_authority=derive_event_authority(program_id),
        )


@dataclass(slots=True, frozen=True)
class ReceiveAccounts:
    """PDAs needed by ``receive_message``, depend on the message source."""

    token_messenger: Pubkey
    remote_token_messenger: Pubkey
    token_minter: Pubkey
    local_token: Pubkey
    token_pair: Pubkey
    custody: Pubkey
    event_authority: Pubkey

    @classmethod
    def derive(
        cls,
        mint: Pubkey,
        source_domain: int,
        burn_token: bytes,
        program_id: Pubkey = TOKEN_MESSENGER_MINTER_PROGRAM,
    ) -> "ReceiveAccounts":
        return cls(
            token_messenger=derive_token_messenger(program_id),
            remote_token_messenger=derive_remote_token_messenger(source_domain, program_id),
            token_minter=derive_token_minter(program_id),
            local_token=derive_local_token(mint, program_id),
            token_pair=derive_token_pair(source_domain, burn_token, program_id),
            custody=derive_custody(mint, program_id),
            event_authority=derive_event_authority(program_id),
        )


def instruction_discriminator(namespace: str, name: str) -> bytes:
    """Anchor instruction discriminator.

    First 8 bytes of ``sha256("namespace:name")``.
    """
    return hashlib.sha256(f"{namespace}:{name}".encode("utf-8")).digest()[:8]


DEPOSIT_FOR_BURN_DISCRIMINATOR = instruction_discriminator(ANCHOR_GLOBAL_NAMESPACE, "deposit_for_burn")

RECEIVE_MESSAGE_DISCRIMINATOR = instruction_discriminator(ANCHOR_GLOBAL_NAMESPACE, "receive_message")


def encode_deposit_for_burn_data(
    amount: int,
    destination_domain: int,
    mint_recipient: bytes,
    destination_caller: bytes = EMPTY_BYTES32,
) -> bytes:
    """Build ``deposit_for_burn`` instruction data, 84 bytes."""
    assert len(mint_recipient) == 32, f"Mint recipient must be 32 bytes, got {len(mint_recipient)}"
    assert len(destination_caller) == 32, f"Destination caller must be 32 bytes, got {len(destination_caller)}"
    return DEPOSIT_FOR_BURN_DISCRIMINATOR + struct.pack("<QI", amount, destination_domain) + mint_recipient + destination_caller


def encode_receive_message_data(message: bytes, attestation: bytes) -> bytes:
    """Build ``receive_message`` instruction data with u32 length prefixed byte vectors."""
    return b"".join(
        [
            RECEIVE_MESSAGE_DISCRIMINATOR,
            struct.pack("<I", len(message)),
            message,
            struct.pack("<I", len(attestation)),
            attestation,
        ]
    )


def build_deposit_for_burn_accounts(
    payer: Pubkey,
    event_account: Pubkey,
    user_token_account: Pubkey,
    mint: Pubkey,
    pdas: BurnAccounts,
    message_transmitter: Pubkey = MESSAGE_TRANSMITTER_PROGRAM,
) -> list[AccountMeta]:
    """Account list for ``deposit_for_burn``, order matters."""
    return [
        AccountMeta(pubkey=payer, is_signer=True, is_writable=True),
        AccountMeta(pubkey=event_account, is_signer=True, is_writable=True),
        AccountMeta(pubkey=user_token_account, is_signer=False, is_writable=True),
        AccountMeta(pubkey=mint, is_signer=False, is_writable=True),
        AccountMeta(pubkey=pdas.token_messenger, is_signer=False, is_writable=True),
        AccountMeta(pubkey=pdas.token_minter, is_signer=False, is_writable=True),
        AccountMeta(pubkey=pdas.local_token, is_signer=False, is_writable=True),
        AccountMeta(pubkey=pdas.custody, is_signer=False, is_writable=True),
        AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=message_transmitter, is_signer=False, is_writable=False),
        AccountMeta(pubkey=pdas.event_authority, is_signer=False, is_writable=False),
        AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=event_account, is_signer=False, is_writable=True),
    ]


def build_receive_message_accounts(
    payer: Pubkey,
    mint_recipient: Pubkey,
    pdas: ReceiveAccounts,
    message_transmitter: Pubkey = MESSAGE_TRANSMITTER_PROGRAM,
    token_messenger_minter: Pubkey = TOKEN_MESSENGER_MINTER_PROGRAM,
) -> list[AccountMeta]:
    """Account list for ``receive_message``, order matters."""
    return [
        AccountMeta(pubkey=payer, is_signer=True, is_writable=True),
        AccountMeta(pubkey=payer, is_signer=False, is_writable=False),
        AccountMeta(pubkey=message_transmitter, is_signer=False, is_writable=False),
        AccountMeta(pubkey=pdas.token_messenger, is_signer=False, is_writable=False),
        AccountMeta(pubkey=pdas.remote_token_messenger, is_signer=False, is_writable=False),
        AccountMeta(pubkey=pdas.token_minter, is_signer=False, is_writable=True),
        AccountMeta(pubkey=pdas.local_token, is_signer=False, is_writable=True),
        AccountMeta(pubkey=pdas.token_pair, is_signer=False, is_writable=False),
        AccountMeta(pubkey=mint_recipient, is_signer=False, is_writable=True),
        AccountMeta(pubkey=pdas.custody, is_signer=False, is_writable=True),
        AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=pdas.event_authority, is_signer=False, is_writable=False),
        AccountMeta(pubkey=token_messenger_minter, is_signer=False, is_writable=False),
    ]


def build_create_associated_token_account_instruction(
    payer: Pubkey,
    associated_account: Pubkey,
    owner: Pubkey,
    mint: Pubkey,
) -> Instruction:
    """Create an associated token account at an explicit address.

    :py:func:`spl.token.instructions.create_associated_token_account` always derives
    the address from the owner, here the caller picks it.
    """
    accounts = [
        AccountMeta(pubkey=payer, is_signer=True, is_writable=True),
        AccountMeta(pubkey=associated_account, is_signer=False, is_writable=True),
        AccountMeta(pubkey=owner, is_signer=False, is_writable=False),
        AccountMeta(pubkey=mint, is_signer=False, is_writable=False),
        AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(program_id=ASSOCIATED_TOKEN_PROGRAM_ID, data=b"", accounts=accounts)


def decode_token_account_amount(data: bytes) -> int:
    """Read the token balance from raw SPL token account data.

    :raise ValueError:
        Data too short to be a token account.
    """
    end = TOKEN_ACCOUNT_AMOUNT_OFFSET + 8
    if len(data) < end:
        raise ValueError(f"Token account data must be at least {end} bytes, got {len(data)}")
    return int.from_bytes(data[TOKEN_ACCOUNT_AMOUNT_OFFSET:end], "little")
