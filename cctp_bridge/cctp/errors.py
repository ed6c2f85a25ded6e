"""Exception taxonomy for CCTP transfer execution.

All errors raised by the transfer engine derive from :py:class:`BridgeError`
and carry a stable machine-readable :py:attr:`BridgeError.code`
that :py:mod:`cctp_bridge.cctp.response` puts into the user-visible error envelope.

- Validation errors (:py:class:`InsufficientBalance`, :py:class:`TokenAccountMissing`,
  :py:class:`InvalidDestinationAddress`, :py:class:`InvalidTransferRequest`)
  are raised before any chain mutation
- :py:class:`TransferExecutionFailed` wraps on-chain failures during submission or confirmation
- :py:class:`AttestationTimeout` is non-fatal and callers treat it as "pending"
"""


class BridgeError(Exception):
    """Base class for all transfer engine errors."""

    #: Stable error code for API responses
    code: str = "bridge_error"

    #: Can the caller fix the situation and try again
    recoverable: bool = False


class MalformedMessage(BridgeError, ValueError):
    """CCTP message or burn body bytes could not be decoded."""

    code = "malformed_message"


class InvalidDestinationAddress(BridgeError, ValueError):
    """Destination address cannot be formatted for the destination chain family."""

    code = "invalid_destination_address"


class InvalidTransferRequest(BridgeError, ValueError):
    """Transfer request failed validation."""

    code = "invalid_request"


class UnsupportedChain(BridgeError):
    """Chain id is not configured for CCTP."""

    code = "unsupported_chain"


class InsufficientBalance(BridgeError):
    """Sender does not hold enough USDC for the burn."""

    code = "insufficient_balance"
    recoverable = True

    def __init__(self, required: int, available: int):
        super().__init__(f"Insufficient USDC balance. Required: {required}, available: {available}")
        self.required = required
        self.available = available


class TokenAccountMissing(BridgeError):
    """The sender's USDC token account does not exist on the account chain."""

    code = "token_account_missing"
    recoverable = True


class TransferExecutionFailed(BridgeError):
    """Burn, approval or mint failed on-chain.

    Never retried automatically to avoid double burns or double mints.
    """

    code = "transfer_execution_failed"

    def __init__(self, reason: str, tx_hash: str | None = None):
        message = reason if tx_hash is None else f"{reason} (tx {tx_hash})"
        super().__init__(message)
        self.reason = reason
        self.tx_hash = tx_hash


class TransferNotConfirmed(TransferExecutionFailed):
    """Transaction was submitted but its outcome is unknown.

    It may still land. The record stays pending and a later status check decides.
    """

    code = "transfer_not_confirmed"
    recoverable = True


class AttestationTimeout(BridgeError):
    """Attestation service did not answer in time.

    Equivalent to a pending attestation.
    """

    code = "attestation_timeout"
    recoverable = True


class AttestationServiceError(BridgeError):
    """Attestation service returned an unexpected error response."""

    code = "attestation_service_error"
    recoverable = True


class AttestationNotReady(BridgeError):
    """Completion was requested before message and attestation are available."""

    code = "attestation_not_ready"
    recoverable = True


class InvalidStatusTransition(BridgeError):
    """A transfer status change would violate the lifecycle ordering."""

    code = "invalid_status_transition"


class TransferNotFound(BridgeError):
    """No transfer record for the given reference."""

    code = "transfer_not_found"


class StaleRecordError(BridgeError):
    """Transfer record was modified by another writer since it was read."""

    code = "stale_record"
    recoverable = True
