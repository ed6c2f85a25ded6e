"""Chain family independent transfer executor interface.

One executor exists per :py:class:`~cctp_bridge.chain.ChainFamily`.
The orchestrator picks it once from the source or destination chain config.
"""

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable

from cctp_bridge.chain import ChainConfig, ChainFamily

#: Called with the burn transaction hash as soon as the chain accepted it,
#: before confirmation
SubmittedCallback = Callable[[str], None]


class TransactionState(enum.Enum):
    """On-chain state of a submitted transaction."""

    #: Not yet included, or not yet found by the node
    pending = "pending"

    confirmed = "confirmed"

    #: Reverted or rejected
    failed = "failed"


@dataclass(slots=True, frozen=True)
class ChainTransactionStatus:
    """On-chain status of a burn or mint transaction."""

    tx_hash: str

    state: TransactionState

    #: Blocks (or slots) on top of the including block, when known
    confirmations: int | None = None

    #: Revert reason or RPC error
    error: str | None = None

    @property
    def is_confirmed(self) -> bool:
        return self.state == TransactionState.confirmed

    @property
    def is_failed(self) -> bool:
        return self.state == TransactionState.failed


class TransferExecutor(ABC):
    """Burns USDC on a source chain and mints it on a destination chain."""

    #: Chain family this executor handles
    family: ChainFamily

    @abstractmethod
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
        """Burn USDC on the source chain.

        Validation failures are raised before any transaction is submitted.

        :param amount:
            Raw USDC units.

        :param destination_address:
            Human-readable recipient on the destination chain.

        :param on_submitted:
            Receives the burn hash once the transaction was accepted.

        :return:
            Confirmed burn transaction hash or signature.

        :raise TransferExecutionFailed:
            Submission or confirmation failed.
        """

    @abstractmethod
    def complete_transfer(self, message: bytes, attestation: bytes, dest_config: ChainConfig) -> str:
        """Relay an attested message to the destination chain and mint USDC.

        :return:
            Confirmed mint transaction hash or signature.
        """

    @abstractmethod
    def get_transaction_status(self, config: ChainConfig, tx_hash: str) -> ChainTransactionStatus:
        """Check the on-chain state of a previously submitted transaction."""

    @abstractmethod
    def get_sender_address(self, config: ChainConfig) -> str:
        """Address that pays for and signs transactions on this chain."""
