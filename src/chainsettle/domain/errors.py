"""Domain-specific exceptions.

Every settlement error carries an ``ErrorKind`` and a ``retryable`` flag so
callers can tell a transient condition (re-poll later) from a terminal
rejection without matching on exception classes.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    UNSUPPORTED_CHAIN = "unsupported_chain"
    CHAIN_MISMATCH = "chain_mismatch"
    HASH_MISMATCH = "hash_mismatch"
    INVALID_STATE = "invalid_state"
    CONFIRMATION_PENDING = "confirmation_pending"
    SETTLEMENT_EVIDENCE = "settlement_evidence"
    AMOUNT_MISMATCH = "amount_mismatch"
    CHAIN_RPC = "chain_rpc"
    NUMERIC_OVERFLOW = "numeric_overflow"


class SettlementError(Exception):
    """Base class for verification and sweep failures."""

    kind: ErrorKind
    retryable: bool = False

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "retryable": self.retryable,
            "message": self.message,
            "details": {k: str(v) for k, v in self.details.items()},
        }


class PaymentNotFoundError(SettlementError):
    """Raised when a payment lookup fails."""

    kind = ErrorKind.NOT_FOUND


class UnsupportedChainError(SettlementError):
    """Raised when no deposit factory is deployed on the requested chain."""

    kind = ErrorKind.UNSUPPORTED_CHAIN

    def __init__(self, chain_id: Any, message: Optional[str] = None) -> None:
        super().__init__(
            message or f"Deposit factory not deployed on chain {chain_id}",
            chain_id=chain_id,
        )
        self.chain_id = chain_id


class ChainMismatchError(SettlementError):
    """Raised when a verification names a chain other than the payment's."""

    kind = ErrorKind.CHAIN_MISMATCH


class HashMismatchError(SettlementError):
    """Raised when a settled payment is claimed by a different transaction."""

    kind = ErrorKind.HASH_MISMATCH


class InvalidPaymentStateError(SettlementError):
    """Raised when an operation is not allowed in the payment's current status."""

    kind = ErrorKind.INVALID_STATE


class ConfirmationPendingError(SettlementError):
    """The transaction has not reached the chain's confirmation threshold yet."""

    kind = ErrorKind.CONFIRMATION_PENDING
    retryable = True

    def __init__(self, confirmations: int, required: int) -> None:
        super().__init__(
            f"Transaction has {confirmations} confirmations, {required} required",
            confirmations=confirmations,
            required=required,
        )
        self.confirmations = confirmations
        self.required = required


class SettlementEvidenceError(SettlementError):
    """The receipt reverted or carries no decodable settlement event."""

    kind = ErrorKind.SETTLEMENT_EVIDENCE


class AmountMismatchError(SettlementError):
    """Reconciled on-chain values disagree with the expected split."""

    kind = ErrorKind.AMOUNT_MISMATCH


class ChainRpcError(SettlementError):
    """Transient failure talking to a chain RPC provider."""

    kind = ErrorKind.CHAIN_RPC
    retryable = True


class NumericOverflowError(SettlementError):
    """An amount does not fit uint256 or would lose precision."""

    kind = ErrorKind.NUMERIC_OVERFLOW
