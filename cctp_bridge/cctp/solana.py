"""CCTP V2 transfers on Solana.

Solana has no contract ABI to call. The ``deposit_for_burn`` and
``receive_message`` instructions are assembled by hand in
:py:mod:`cctp_bridge.cctp.solana_program` and sent as versioned transactions.

The burn creates a fresh single-use keypair for the ``MessageSent`` event
account. The account is rent-exempt and owned by the MessageTransmitter program,
and it is created in the same transaction as the burn.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable

from solana.exceptions import SolanaRpcException
from solana.rpc.api import Client
from solana.rpc.commitment import Confirmed
from solana.rpc.core import RPCException, UnconfirmedTxError
from solana.rpc.types import TxOpts
from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import CreateAccountParams, create_account
from solders.transaction import VersionedTransaction
from solders.transaction_status import TransactionConfirmationStatus
from spl.token.instructions import get_associated_token_address

from cctp_bridge.chain import ChainConfig, ChainFamily
from cctp_bridge.cctp.constants import (
    BURN_COMPUTE_UNIT_LIMIT,
    COMPUTE_UNIT_PRICE_MICRO_LAMPORTS,
    MESSAGE_SENT_EVENT_ACCOUNT_SPACE,
    RECEIVE_COMPUTE_UNIT_LIMIT,
)
from cctp_bridge.cctp.errors import InsufficientBalance, TokenAccountMissing, TransferExecutionFailed, TransferNotConfirmed
from cctp_bridge.cctp.executor import ChainTransactionStatus, SubmittedCallback, TransactionState, TransferExecutor
from cctp_bridge.cctp.message import decode_burn_body, decode_message, format_mint_recipient
from cctp_bridge.cctp.solana_program import (
    BurnAccounts,
    ReceiveAccounts,
    build_create_associated_token_account_instruction,
    build_deposit_for_burn_accounts,
    build_receive_message_accounts,
    decode_token_account_amount,
    encode_deposit_for_burn_data,
    encode_receive_message_data,
)

logger = logging.getLogger(__name__)

#: Errors raised by solana-py when the RPC rejects or loses a transaction
RPC_ERRORS = (RPCException, UnconfirmedTxError, SolanaRpcException)


class SolanaChainClient(ABC):
    """RPC access to a Solana cluster, bound to the fee payer keypair."""

    #: Pays fees and rent, owns the USDC token account
    payer: Keypair

    @abstractmethod
    def get_minimum_balance_for_rent_exemption(self, space: int) -> int:
        """Lamports needed to make an account of ``space`` bytes rent exempt."""

    @abstractmethod
    def get_account_data(self, pubkey: Pubkey) -> bytes | None:
        """Raw account data, ``None`` if the account does not exist."""

    @abstractmethod
    def send_transaction(self, instructions: list[Instruction], signers: list[Keypair]) -> str:
        """Sign and broadcast.

        The first signer pays the fees.

        :return:
            Base58 transaction signature.
        """

    @abstractmethod
    def confirm_transaction(self, signature: str):
        """Block until the transaction reaches ``confirmed`` commitment.

        :raise TransferExecutionFailed:
            The transaction landed but failed.
        """

    @abstractmethod
    def get_signature_status(self, signature: str) -> ChainTransactionStatus:
        pass


class SolanaRPCClient(SolanaChainClient):
    """Solana JSON-RPC access through :py:class:`solana.rpc.api.Client`."""

    def __init__(self, client: Client, payer: Keypair):
        self.client = client
        self.payer = payer

    def __repr__(self):
        return f"<SolanaRPCClient {self.payer.pubkey()}>"

    @classmethod
    def from_config(cls, config: ChainConfig, payer: Keypair, timeout: float = 30.0) -> "SolanaRPCClient":
        return cls(Client(config.rpc_url, commitment=Confirmed, timeout=timeout), payer)

    def get_minimum_balance_for_rent_exemption(self, space: int) -> int:
        return self.client.get_minimum_balance_for_rent_exemption(space).value

    def get_account_data(self, pubkey: Pubkey) -> bytes | None:
        account = self.client.get_account_info(pubkey, commitment=Confirmed).value
        if account is None:
            return None
        return bytes(account.data)

    def send_transaction(self, instructions: list[Instruction], signers: list[Keypair]) -> str:
        blockhash = self.client.get_latest_blockhash(commitment=Confirmed).value.blockhash
        message = MessageV0.try_compile(signers[0].pubkey(), instructions, [], blockhash)
        tx = VersionedTransaction(message, signers)
        resp = self.client.send_transaction(tx, opts=TxOpts(skip_preflight=False, preflight_commitment=Confirmed))
        return str(resp.value)

    def confirm_transaction(self, signature: str):
        resp = self.client.confirm_transaction(Signature.from_string(signature), commitment=Confirmed)
        status = resp.value[0]
        if status is not None and status.err is not None:
            raise TransferExecutionFailed(f"Transaction failed: {status.err}", tx_hash=signature)

    def get_signature_status(self, signature: str) -> ChainTransactionStatus:
        resp = self.client.get_signature_statuses([Signature.from_string(signature)], search_transaction_history=True)
        status = resp.value[0]
        if status is None:
            return ChainTransactionStatus(tx_hash=signature, state=TransactionState.pending)

        if status.err is not None:
            return ChainTransactionStatus(tx_hash=signature, state=TransactionState.failed, confirmations=status.confirmations, error=str(status.err))

        if status.confirmation_status in (TransactionConfirmationStatus.Confirmed, TransactionConfirmationStatus.Finalized):
            return ChainTransactionStatus(tx_hash=signature, state=TransactionState.confirmed, confirmations=status.confirmations)

        return ChainTransactionStatus(tx_hash=signature, state=TransactionState.pending, confirmations=status.confirmations)


#: Creates a Solana client for a chain config
SolanaClientFactory = Callable[[ChainConfig], SolanaChainClient]


def _compute_budget(units: int) -> list[Instruction]:
    return [
        set_compute_unit_limit(units),
        set_compute_unit_price(COMPUTE_UNIT_PRICE_MICRO_LAMPORTS),
    ]


class SolanaTransferExecutor(TransferExecutor):
    """Burn and mint USDC on Solana."""

    family = ChainFamily.solana

    def __init__(self, client_factory: SolanaClientFactory):
        self.client_factory = client_factory
        self._clients: dict[int, SolanaChainClient] = {}
        self._lock = threading.Lock()

    def get_client(self, config: ChainConfig) -> SolanaChainClient:
        assert config.family == ChainFamily.solana, f"Not a Solana chain: {config.name}"
        with self._lock:
            client = self._clients.get(config.chain_id)
            if client is None:
                client = self._clients[config.chain_id] = self.client_factory(config)
            return client

    def _send_and_confirm(
        self,
        client: SolanaChainClient,
        instructions: list[Instruction],
        signers: list[Keypair],
        label: str,
        on_submitted: SubmittedCallback | None = None,
    ) -> str:
        try:
            signature = client.send_transaction(instructions, signers)
        except RPC_ERRORS as e:
            raise TransferExecutionFailed(f"{label} submission failed: {e}") from e

        logger.info("%s submitted: %s", label, signature)
        if on_submitted is not None:
            on_submitted(signature)

        try:
            client.confirm_transaction(signature)
        except RPC_ERRORS as e:
            raise TransferNotConfirmed(f"{label} not yet confirmed: {e}", tx_hash=signature) from e

        logger.info("%s confirmed: %s", label, signature)
        return signature

    def execute_transfer(
        self,
        source_config: ChainConfig,
        dest_config: ChainConfig,
        amount: int,
        destination_address: str,
        finality_threshold: int,
        max_fee: int,
        hook_data: bytes | None = None,
        on_submitted: SubmittedCallback | None = None,
    ) -> str:
        assert amount > 0, f"Amount must be positive, got {amount}"
        client = self.get_client(source_config)
        payer = client.payer.pubkey()

        mint_recipient = format_mint_recipient(destination_address, dest_config.family)

        mint = Pubkey.from_string(source_config.usdc_address)
        program_id = Pubkey.from_string(source_config.token_messenger_address)
        message_transmitter = Pubkey.from_string(source_config.message_transmitter_address)
        pdas = BurnAccounts.derive(mint, program_id)
        user_token_account = get_associated_token_address(payer, mint)

        logger.info(
            "Burning %d raw USDC on %s for %s, recipient %s, finality %d, max fee %d",
            amount,
            source_config.name,
            dest_config.name,
            destination_address,
            finality_threshold,
            max_fee,
        )

        if hook_data:
            logger.warning("Hook data is not supported by the Solana burn instruction, ignored")

        try:
            account_data = client.get_account_data(user_token_account)
        except RPC_ERRORS as e:
            raise TransferExecutionFailed(f"Could not read USDC token account: {e}") from e

        if account_data is None:
            raise TokenAccountMissing(f"USDC token account {user_token_account} not found for {payer}")

        balance = decode_token_account_amount(account_data)
        if balance < amount:
            raise InsufficientBalance(required=amount, available=balance)

        event_account = Keypair()

        try:
            rent = client.get_minimum_balance_for_rent_exemption(MESSAGE_SENT_EVENT_ACCOUNT_SPACE)
        except RPC_ERRORS as e:
            raise TransferExecutionFailed(f"Could not read rent exemption: {e}") from e

        create_event_account = create_account(
            CreateAccountParams(
                from_pubkey=payer,
                to_pubkey=event_account.pubkey(),
                lamports=rent,
                space=MESSAGE_SENT_EVENT_ACCOUNT_SPACE,
                owner=message_transmitter,
            )
        )

        burn = Instruction(
            program_id=program_id,
            data=encode_deposit_for_burn_data(amount, dest_config.domain, mint_recipient),
            accounts=build_deposit_for_burn_accounts(payer, event_account.pubkey(), user_token_account, mint, pdas, message_transmitter),
        )

        instructions = _compute_budget(BURN_COMPUTE_UNIT_LIMIT) + [create_event_account, burn]
        return self._send_and_confirm(client, instructions, [client.payer, event_account], "CCTP burn", on_submitted)

    def complete_transfer(self, message: bytes, attestation: bytes, dest_config: ChainConfig) -> str:
        client = self.get_client(dest_config)
        payer = client.payer.pubkey()

        parsed = decode_message(message)
        burn = decode_burn_body(parsed.message_body)

        logger.info(
            "Receiving CCTP message on %s: source domain %d, nonce %d, amount %d",
            dest_config.name,
            parsed.source_domain,
            parsed.nonce,
            burn.amount,
        )

        mint = Pubkey.from_string(dest_config.usdc_address)
        program_id = Pubkey.from_string(dest_config.token_messenger_address)
        message_transmitter = Pubkey.from_string(dest_config.message_transmitter_address)
        pdas = ReceiveAccounts.derive(mint, parsed.source_domain, burn.burn_token, program_id)
        mint_recipient = Pubkey.from_bytes(burn.mint_recipient)

        try:
            recipient_data = client.get_account_data(mint_recipient)
        except RPC_ERRORS as e:
            raise TransferExecutionFailed(f"Could not read mint recipient account: {e}") from e

        if recipient_data is None:
            # Owner is the recipient key itself
            owner = Pubkey.from_bytes(burn.mint_recipient)
            create_ata = build_create_associated_token_account_instruction(payer, mint_recipient, owner, mint)
            self._send_and_confirm(client, [create_ata], [client.payer], "Mint recipient token account creation")

        receive = Instruction(
            program_id=message_transmitter,
            data=encode_receive_message_data(message, attestation),
            accounts=build_receive_message_accounts(payer, mint_recipient, pdas, message_transmitter, program_id),
        )
        instructions = _compute_budget(RECEIVE_COMPUTE_UNIT_LIMIT) + [receive]
        return self._send_and_confirm(client, instructions, [client.payer], "CCTP receive")

    def get_transaction_status(self, config: ChainConfig, tx_hash: str) -> ChainTransactionStatus:
        client = self.get_client(config)
        try:
            return client.get_signature_status(tx_hash)
        except RPC_ERRORS as e:
            logger.warning("Could not read signature status for %s: %s", tx_hash, e)
            return ChainTransactionStatus(tx_hash=tx_hash, state=TransactionState.pending, error=str(e))

    def get_sender_address(self, config: ChainConfig) -> str:
        return str(self.get_client(config).payer.pubkey())
