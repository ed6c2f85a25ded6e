"""CCTP V2 message codec.

Decode and encode the fixed-layout binary message relayed from the source
chain to the destination chain's MessageTransmitter, and the
``depositForBurn`` message body it carries.

Message header layout (all integers big-endian)::

    0    uint32   version
    4    uint32   sourceDomain
    8    uint32   destinationDomain
    12   uint64   nonce
    20   bytes32  sender
    52   bytes32  recipient
    84   bytes32  destinationCaller
    116  bytes    messageBody

Burn message body layout::

    0    uint32   version
    12   bytes32  burnToken
    44   bytes32  mintRecipient
    76   uint64   amount
    84   bytes32  messageSender

Also contains the address formatting rules used to build the 32-byte
``mintRecipient`` for each chain family.
"""

from dataclasses import dataclass

from eth_utils import is_address, to_canonical_address
from hexbytes import HexBytes
from solders.pubkey import Pubkey

from cctp_bridge.chain import ChainFamily
from cctp_bridge.cctp.errors import InvalidDestinationAddress, MalformedMessage

#: Length of the fixed message header
MESSAGE_HEADER_LENGTH = 116

#: Minimum length of a burn message body
BURN_BODY_MIN_LENGTH = 116

VERSION_OFFSET = 0
SOURCE_DOMAIN_OFFSET = 4
DESTINATION_DOMAIN_OFFSET = 8
NONCE_OFFSET = 12
SENDER_OFFSET = 20
RECIPIENT_OFFSET = 52
DESTINATION_CALLER_OFFSET = 84
MESSAGE_BODY_OFFSET = 116

BODY_VERSION_OFFSET = 0
BURN_TOKEN_OFFSET = 12
MINT_RECIPIENT_OFFSET = 44
AMOUNT_OFFSET = 76
MESSAGE_SENDER_OFFSET = 84

#: 32 zero bytes, "anyone can call receiveMessage()"
EMPTY_BYTES32 = b"\x00" * 32


@dataclass(slots=True, frozen=True)
class ParsedMessage:
    """Decoded CCTP message header."""

    version: int

    #: CCTP domain of the chain where the burn happened
    source_domain: int

    #: CCTP domain of the chain where the mint happens
    destination_domain: int

    #: Unique per source domain, 64-bit
    nonce: int

    sender: bytes

    recipient: bytes

    destination_caller: bytes

    #: Protocol specific body, see :py:func:`decode_burn_body`
    message_body: bytes


@dataclass(slots=True, frozen=True)
class ParsedBurnBody:
    """Decoded ``depositForBurn`` message body."""

    body_version: int

    #: Token burned on the source chain, 32-byte padded
    burn_token: bytes

    #: Receiver of the minted USDC on the destination chain
    mint_recipient: bytes

    #: Raw USDC units
    amount: int

    message_sender: bytes


def _to_bytes(data: bytes | str) -> bytes:
    if isinstance(data, str):
        try:
            return bytes(HexBytes(data))
        except ValueError as e:
            raise MalformedMessage(f"Not a hex encoded message: {data[0:20]}...") from e
    return bytes(data)


def _read_uint(data: bytes, offset: int, size: int) -> int:
    return int.from_bytes(data[offset : offset + size], "big")


def decode_message(data: bytes | str) -> ParsedMessage:
    """Decode a CCTP message.

    :param data:
        Raw message bytes, or 0x-prefixed hex as returned by the Iris API.

    :return:
        Decoded header with the unparsed body.

    :raise MalformedMessage:
        If the message is shorter than the 116 byte header.
    """
    data = _to_bytes(data)
    if len(data) < MESSAGE_HEADER_LENGTH:
        raise MalformedMessage(f"CCTP message must be at least {MESSAGE_HEADER_LENGTH} bytes, got {len(data)}")

    return ParsedMessage(
        version=_read_uint(data, VERSION_OFFSET, 4),
        source_domain=_read_uint(data, SOURCE_DOMAIN_OFFSET, 4),
        destination_domain=_read_uint(data, DESTINATION_DOMAIN_OFFSET, 4),
        nonce=_read_uint(data, NONCE_OFFSET, 8),
        sender=data[SENDER_OFFSET : SENDER_OFFSET + 32],
        recipient=data[RECIPIENT_OFFSET : RECIPIENT_OFFSET + 32],
        destination_caller=data[DESTINATION_CALLER_OFFSET : DESTINATION_CALLER_OFFSET + 32],
        message_body=data[MESSAGE_BODY_OFFSET:],
    )


def decode_burn_body(data: bytes | str) -> ParsedBurnBody:
    """Decode a ``depositForBurn`` message body.

    :raise MalformedMessage:
        If the body is shorter than 116 bytes.
    """
    data = _to_bytes(data)
    if len(data) < BURN_BODY_MIN_LENGTH:
        raise MalformedMessage(f"Burn message body must be at least {BURN_BODY_MIN_LENGTH} bytes, got {len(data)}")

    return ParsedBurnBody(
        body_version=_read_uint(data, BODY_VERSION_OFFSET, 4),
        burn_token=data[BURN_TOKEN_OFFSET : BURN_TOKEN_OFFSET + 32],
        mint_recipient=data[MINT_RECIPIENT_OFFSET : MINT_RECIPIENT_OFFSET + 32],
        amount=_read_uint(data, AMOUNT_OFFSET, 8),
        message_sender=data[MESSAGE_SENDER_OFFSET : MESSAGE_SENDER_OFFSET + 32],
    )


def _bytes32(value: bytes, name: str) -> bytes:
    assert len(value) == 32, f"{name} must be 32 bytes, got {len(value)}"
    return value


def encode_message(
    *,
    source_domain: int,
    destination_domain: int,
    nonce: int,
    sender: bytes,
    recipient: bytes,
    message_body: bytes,
    destination_caller: bytes = EMPTY_BYTES32,
    version: int = 1,
) -> bytes:
    """Encode a CCTP message header followed by its body.

    Inverse of :py:func:`decode_message`.
    Used to craft messages for simulation and tests.
    """
    return b"".join(
        [
            version.to_bytes(4, "big"),
            source_domain.to_bytes(4, "big"),
            destination_domain.to_bytes(4, "big"),
            nonce.to_bytes(8, "big"),
            _bytes32(sender, "sender"),
            _bytes32(recipient, "recipient"),
            _bytes32(destination_caller, "destination_caller"),
            message_body,
        ]
    )


def encode_burn_body(
    *,
    burn_token: bytes,
    mint_recipient: bytes,
    amount: int,
    message_sender: bytes,
    body_version: int = 1,
) -> bytes:
    """Encode a ``depositForBurn`` message body.

    Bytes 4-12 between the version and the burn token are left zero.
    """
    return b"".join(
        [
            body_version.to_bytes(4, "big"),
            b"\x00" * 8,
            _bytes32(burn_token, "burn_token"),
            _bytes32(mint_recipient, "mint_recipient"),
            amount.to_bytes(8, "big"),
            _bytes32(message_sender, "message_sender"),
        ]
    )


def evm_address_to_bytes32(address: str | bytes) -> bytes:
    """Left-pad a 20-byte EVM address to 32 bytes.

    :raise InvalidDestinationAddress:
        If the address is not a valid EVM address.
    """
    if isinstance(address, bytes):
        if len(address) != 20:
            raise InvalidDestinationAddress(f"EVM address must be 20 bytes, got {len(address)}")
        raw = address
    else:
        if not is_address(address):
            raise InvalidDestinationAddress(f"Invalid EVM destination address: {address}")
        raw = to_canonical_address(address)
    return b"\x00" * 12 + raw


def solana_address_to_bytes32(address: str | bytes) -> bytes:
    """Solana public keys are already 32 bytes, used as is.

    :raise InvalidDestinationAddress:
        If the address is not a valid base58 public key.
    """
    if isinstance(address, bytes):
        if len(address) != 32:
            raise InvalidDestinationAddress(f"Solana address must be 32 bytes, got {len(address)}")
        return address
    try:
        return bytes(Pubkey.from_string(address))
    except ValueError as e:
        raise InvalidDestinationAddress(f"Invalid Solana destination address: {address}") from e


def format_mint_recipient(address: str, family: ChainFamily) -> bytes:
    """Format a destination address as 32-byte ``mintRecipient``.

    :param address:
        Human-readable destination address, hex for EVM, base58 for Solana.

    :param family:
        Chain family of the destination chain.
    """
    if family == ChainFamily.evm:
        return evm_address_to_bytes32(address)
    elif family == ChainFamily.solana:
        return solana_address_to_bytes32(address)
    raise InvalidDestinationAddress(f"Unknown chain family {family}")


def bytes32_to_evm_address(value: bytes) -> bytes:
    """Strip the 12 byte left padding from a 32-byte EVM address."""
    assert len(value) == 32, f"Expected 32 bytes, got {len(value)}"
    return value[12:]
