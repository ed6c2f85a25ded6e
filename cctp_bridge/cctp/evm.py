"""CCTP V2 transfers on EVM chains.

Burn with ``TokenMessengerV2.depositForBurn()`` on the source chain and mint
with ``MessageTransmitterV2.receiveMessage()`` on the destination chain.

The executor talks to the chain through :py:class:`EVMChainClient`, so
the transfer logic can be tested against an in-memory fake.
:py:class:`Web3ChainClient` is the production implementation.

Example::

    from cctp_bridge.chain import ChainRegistry
    from cctp_bridge.cctp.evm import EVMTransferExecutor, Web3ChainClient

    registry = ChainRegistry.testnet()
    executor = EVMTransferExecutor(lambda config: Web3ChainClient.from_config(config, account))

    burn_tx_hash = executor.execute_transfer(
        source_config=registry.get(84532),
        dest_config=registry.get(421614),
        amount=1_000_000,
        destination_address=account.address,
        finality_threshold=1000,
        max_fee=1_400,
    )
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from functools import lru_cache
from pathlib import Path
from typing import Callable

from eth_account.signers.local import LocalAccount
from eth_typing import HexAddress
from hexbytes import HexBytes
from web3 import HTTPProvider, Web3
from web3.contract import Contract
from web3.contract.contract import ContractFunction
from web3.exceptions import TimeExhausted, TransactionNotFound, Web3Exception
from web3.middleware import ExtraDataToPOAMiddleware

from cctp_bridge.chain import ChainConfig, ChainFamily
from cctp_bridge.cctp.errors import InsufficientBalance, TransferExecutionFailed, TransferNotConfirmed
from cctp_bridge.cctp.executor import ChainTransactionStatus, SubmittedCallback, TransactionState, TransferExecutor
from cctp_bridge.cctp.message import EMPTY_BYTES32, format_mint_recipient

logger = logging.getLogger(__name__)

#: Bundled ABI files
ABI_PATH = Path(__file__).resolve().parent.parent / "abi"

#: How long to wait for a transaction receipt, seconds
DEFAULT_RECEIPT_TIMEOUT = 180.0

#: Errors raised by web3 and its HTTP transport when a transaction cannot be sent or queried
RPC_ERRORS = (Web3Exception, ValueError, IOError)


@lru_cache(maxsize=None)
def get_abi_by_filename(fname: str) -> list[dict]:
    """Read a bundled ABI file.

    :param fname:
        E.g. ``TokenMessengerV2.json``
    """
    with (ABI_PATH / fname).open("rt", encoding="utf-8") as inp:
        return json.load(inp)["abi"]


class EVMChainClient(ABC):
    """RPC access to a single EVM chain, bound to one sending account."""

    #: Used to construct contract proxies, does not need to be connected in tests
    web3: Web3

    #: Address that owns the USDC and signs the transactions
    address: HexAddress

    def get_contract(self, address: str, abi_fname: str) -> Contract:
        return self.web3.eth.contract(address=Web3.to_checksum_address(address), abi=get_abi_by_filename(abi_fname))

    @abstractmethod
    def get_token_balance(self, token_address: str, owner: str) -> int:
        """ERC-20 balance in raw units."""

    @abstractmethod
    def get_allowance(self, token_address: str, owner: str, spender: str) -> int:
        """ERC-20 allowance in raw units."""

    @abstractmethod
    def send_transaction(self, func: ContractFunction) -> str:
        """Broadcast a contract call.

        :return:
            0x-prefixed transaction hash.
        """

    @abstractmethod
    def wait_for_receipt(self, tx_hash: str, timeout: float) -> dict:
        """Block until the transaction is mined.

        :raise web3.exceptions.TimeExhausted:
            Not mined within ``timeout`` seconds.
        """

    @abstractmethod
    def get_receipt(self, tx_hash: str) -> dict | None:
        """Receipt of a mined transaction, or ``None`` if not yet mined."""

    @abstractmethod
    def get_block_number(self) -> int:
        pass


class Web3ChainClient(EVMChainClient):
    """EVM chain access through a web3.py connection.

    Transactions are signed locally when a hot wallet account is given,
    otherwise sent with ``eth_sendTransaction`` from an unlocked account, e.g. on Anvil.
    """

    def __init__(
        self,
        web3: Web3,
        account: LocalAccount | None = None,
        sender: HexAddress | None = None,
        gas: int | None = None,
    ):
        """
        :param account:
            Hot wallet for signing.

        :param sender:
            Unlocked account when no hot wallet is given.

        :param gas:
            Fixed gas limit. Estimated when not given.
        """
        assert account is not None or sender is not None, "Either account or sender must be given"
        self.web3 = web3
        self.account = account
        self.address = account.address if account else Web3.to_checksum_address(sender)
        self.gas = gas
        self._nonce_lock = threading.Lock()
        self._next_nonce: int | None = None

    def __repr__(self):
        return f"<Web3ChainClient {self.address}>"

    @classmethod
    def from_config(cls, config: ChainConfig, account: LocalAccount, request_timeout: float = 30.0) -> "Web3ChainClient":
        """Connect to the chain RPC from the chain config."""
        web3 = Web3(HTTPProvider(config.rpc_url, request_kwargs={"timeout": request_timeout}))
        # Several testnets are PoA chains with oversized extraData
        web3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        return cls(web3, account=account)

    def get_token_balance(self, token_address: str, owner: str) -> int:
        token = self.get_contract(token_address, "ERC20.json")
        return token.functions.balanceOf(Web3.to_checksum_address(owner)).call()

    def get_allowance(self, token_address: str, owner: str, spender: str) -> int:
        token = self.get_contract(token_address, "ERC20.json")
        return token.functions.allowance(Web3.to_checksum_address(owner), Web3.to_checksum_address(spender)).call()

    def _allocate_nonce(self) -> int:
        # Sequential burns from the same account must not reuse a pending nonce
        with self._nonce_lock:
            on_chain = self.web3.eth.get_transaction_count(self.address, "pending")
            nonce = on_chain if self._next_nonce is None else max(on_chain, self._next_nonce)
            self._next_nonce = nonce + 1
            return nonce

    def send_transaction(self, func: ContractFunction) -> str:
        tx_params = {"from": self.address}
        if self.gas:
            tx_params["gas"] = self.gas

        if self.account is not None:
            tx_params["nonce"] = self._allocate_nonce()
            tx_params["chainId"] = self.web3.eth.chain_id
            try:
                tx = func.build_transaction(tx_params)
                signed = self.account.sign_transaction(tx)
                tx_hash = self.web3.eth.send_raw_transaction(signed.raw_transaction)
            except Exception:
                # Nonce never reached the mempool, re-read it from the chain next time
                with self._nonce_lock:
                    self._next_nonce = None
                raise
        else:
            tx_hash = func.transact(tx_params)

        return HexBytes(tx_hash).to_0x_hex()

    def wait_for_receipt(self, tx_hash: str, timeout: float) -> dict:
        return dict(self.web3.eth.wait_for_transaction_receipt(HexBytes(tx_hash), timeout=timeout))

    def get_receipt(self, tx_hash: str) -> dict | None:
        try:
            return dict(self.web3.eth.get_transaction_receipt(HexBytes(tx_hash)))
        except TransactionNotFound:
            return None

    def get_block_number(self) -> int:
        return self.web3.eth.block_number


#: Creates a chain client for a chain config
EVMClientFactory = Callable[[ChainConfig], EVMChainClient]


class EVMTransferExecutor(TransferExecutor):
    """Burn and mint USDC on EVM chains.

    Nothing is retried. A failed or timed out transaction raises
    :py:class:`~cctp_bridge.cctp.errors.TransferExecutionFailed`
    and the caller decides what to do.
    """

    family = ChainFamily.evm

    def __init__(self, client_factory: EVMClientFactory, receipt_timeout: float = DEFAULT_RECEIPT_TIMEOUT):
        self.client_factory = client_factory
        self.receipt_timeout = receipt_timeout
        self._clients: dict[int, EVMChainClient] = {}
        self._lock = threading.Lock()

    def get_client(self, config: ChainConfig) -> EVMChainClient:
        """Get a cached chain client."""
        assert config.family == ChainFamily.evm, f"Not an EVM chain: {config.name}"
        with self._lock:
            client = self._clients.get(config.chain_id)
            if client is None:
                client = self._clients[config.chain_id] = self.client_factory(config)
            return client

    def _submit(self, client: EVMChainClient, func: ContractFunction, label: str) -> str:
        try:
            tx_hash = client.send_transaction(func)
        except RPC_ERRORS as e:
            raise TransferExecutionFailed(f"{label} submission failed: {e}") from e
        logger.info("%s submitted: %s", label, tx_hash)
        return tx_hash

    def _wait(self, client: EVMChainClient, tx_hash: str, label: str) -> dict:
        try:
            receipt = client.wait_for_receipt(tx_hash, timeout=self.receipt_timeout)
        except TimeExhausted as e:
            raise TransferNotConfirmed(f"{label} not yet confirmed after {self.receipt_timeout}s", tx_hash=tx_hash) from e
        except RPC_ERRORS as e:
            raise TransferNotConfirmed(f"{label} confirmation failed: {e}", tx_hash=tx_hash) from e

        if receipt.get("status") != 1:
            raise TransferExecutionFailed(f"{label} reverted", tx_hash=tx_hash)

        logger.info("%s confirmed in block %s: %s", label, receipt.get("blockNumber"), tx_hash)
        return receipt

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

        logger.info(
            "Burning %d raw USDC on %s for %s, recipient %s",
            amount,
            source_config.name,
            dest_config.name,
            destination_address,
        )

        # Validation, no mutations before these pass
        mint_recipient = format_mint_recipient(destination_address, dest_config.family)

        try:
            balance = client.get_token_balance(source_config.usdc_address, client.address)
        except RPC_ERRORS as e:
            raise TransferExecutionFailed(f"Could not read USDC balance: {e}") from e

        if balance < amount:
            raise InsufficientBalance(required=amount, available=balance)

        usdc = client.get_contract(source_config.usdc_address, "ERC20.json")
        token_messenger = client.get_contract(source_config.token_messenger_address, "TokenMessengerV2.json")

        try:
            allowance = client.get_allowance(source_config.usdc_address, client.address, token_messenger.address)
        except RPC_ERRORS as e:
            raise TransferExecutionFailed(f"Could not read USDC allowance: {e}") from e

        if allowance < amount:
            approve_fn = usdc.functions.approve(token_messenger.address, amount)
            approve_hash = self._submit(client, approve_fn, "USDC approval")
            self._wait(client, approve_hash, "USDC approval")

        burn_args = (
            amount,
            dest_config.domain,
            mint_recipient,
            Web3.to_checksum_address(source_config.usdc_address),
            EMPTY_BYTES32,
            max_fee,
            finality_threshold,
        )

        if hook_data:
            burn_fn = token_messenger.functions.depositForBurnWithHook(*burn_args, hook_data)
        else:
            burn_fn = token_messenger.functions.depositForBurn(*burn_args)

        burn_tx_hash = self._submit(client, burn_fn, "CCTP burn")
        if on_submitted is not None:
            on_submitted(burn_tx_hash)

        self._wait(client, burn_tx_hash, "CCTP burn")
        return burn_tx_hash

    def complete_transfer(self, message: bytes, attestation: bytes, dest_config: ChainConfig) -> str:
        client = self.get_client(dest_config)
        message_transmitter = client.get_contract(dest_config.message_transmitter_address, "MessageTransmitterV2.json")

        logger.info("Relaying %d byte CCTP message to %s", len(message), dest_config.name)

        receive_fn = message_transmitter.functions.receiveMessage(message, attestation)
        tx_hash = self._submit(client, receive_fn, "CCTP receive")
        self._wait(client, tx_hash, "CCTP receive")
        return tx_hash

    def get_transaction_status(self, config: ChainConfig, tx_hash: str) -> ChainTransactionStatus:
        client = self.get_client(config)
        try:
            receipt = client.get_receipt(tx_hash)
            if receipt is None:
                return ChainTransactionStatus(tx_hash=tx_hash, state=TransactionState.pending)
            current_block = client.get_block_number()
        except RPC_ERRORS as e:
            logger.warning("Could not read receipt for %s on %s: %s", tx_hash, config.name, e)
            return ChainTransactionStatus(tx_hash=tx_hash, state=TransactionState.pending, error=str(e))

        confirmations = max(0, current_block - receipt["blockNumber"])
        if receipt.get("status") != 1:
            return ChainTransactionStatus(tx_hash=tx_hash, state=TransactionState.failed, confirmations=confirmations, error="reverted")

        return ChainTransactionStatus(tx_hash=tx_hash, state=TransactionState.confirmed, confirmations=confirmations)

    def get_sender_address(self, config: ChainConfig) -> str:
        return self.get_client(config).address
