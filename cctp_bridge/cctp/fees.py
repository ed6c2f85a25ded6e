"""CCTP V2 ``maxFee`` policy.

Fast Transfers pay Circle a fee deducted from the minted amount on the
destination chain. ``depositForBurn`` takes the highest fee the sender
accepts. If it is below the current Circle fee the transfer is held
by Iris with ``delayReason`` ``insufficient_fee``.

Standard Transfers are free.
"""

import logging
from dataclasses import dataclass

from cctp_bridge.cctp.errors import InvalidTransferRequest

logger = logging.getLogger(__name__)

#: Basis point denominator
BPS = 10_000


@dataclass(slots=True, frozen=True)
class FeePolicy:
    """How much fee we allow Circle to take."""

    #: Fast Transfer fee cap, basis points of the amount
    fast_transfer_fee_bps: int = 14

    #: Standard Transfer fee cap, basis points of the amount
    standard_transfer_fee_bps: int = 0

    #: Floor for the fee, raw USDC units
    minimum_fee: int = 0

    def get_bps(self, transfer_type: str) -> int:
        if transfer_type == "fast":
            return self.fast_transfer_fee_bps
        elif transfer_type == "standard":
            return self.standard_transfer_fee_bps
        raise InvalidTransferRequest(f"Unknown transfer type: {transfer_type}")

    def max_fee(self, amount: int, transfer_type: str) -> int:
        """Calculate ``maxFee`` for a burn.

        Rounded up so small transfers still cover a non-zero fee.

        :param amount:
            Raw USDC units.

        :raise InvalidTransferRequest:
            The fee would eat the whole amount.
        """
        bps = self.get_bps(transfer_type)
        # Ceil division
        fee = max(self.minimum_fee, -(-amount * bps // BPS))
        if fee >= amount:
            raise InvalidTransferRequest(f"Amount {amount} does not cover the maximum fee {fee}")
        return fee
