"""Error taxonomy shared by every component.

Each error carries a kind and a retryable flag so that callers decide per kind
whether to retry, skip or abort instead of inspecting message strings.
"""

from enum import Enum
from typing import Any


class ErrorKind(Enum):
    """Classification of backend failures."""

    TRANSIENT_RPC = "TRANSIENT_RPC"
    ESTIMATE_REVERT = "ESTIMATE_REVERT"
    TX_REVERT = "TX_REVERT"
    INVARIANT_VIOLATION = "INVARIANT_VIOLATION"
    NOT_FOUND = "NOT_FOUND"
    LOCK_CONTENTION = "LOCK_CONTENTION"
    TIMEOUT = "TIMEOUT"
    VALIDATION = "VALIDATION"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"


class BitredictError(Exception):
    """Backend error with classification."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind,
        retryable: bool = False,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.retryable = retryable
        self.details = details or {}


class TransientRpcError(BitredictError):
    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, ErrorKind.TRANSIENT_RPC, retryable=True, details=details)


class TxRevertError(BitredictError):
    """A transaction (or its simulation) reverted.

    ``reason`` is the known revert class when the message matched one,
    otherwise None (an unclassified revert).
    """

    def __init__(
        self,
        message: str,
        reason: str | None = None,
        retryable: bool = True,
        tx_hash: str | None = None,
    ):
        super().__init__(
            message,
            ErrorKind.TX_REVERT,
            retryable=retryable,
            details={"reason": reason, "tx_hash": tx_hash},
        )
        self.reason = reason
        self.tx_hash = tx_hash

    @property
    def classified(self) -> bool:
        return self.reason is not None


class InvariantViolation(BitredictError):
    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, ErrorKind.INVARIANT_VIOLATION, retryable=False, details=details)


class IncompleteResults(InvariantViolation):
    """A cycle resolution was attempted with NotSet results."""


class NotFoundError(BitredictError):
    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, ErrorKind.NOT_FOUND, retryable=False, details=details)


class LockContentionError(BitredictError):
    def __init__(self, job_name: str, attempts: int):
        super().__init__(
            f"Could not acquire lock for {job_name} after {attempts} attempt(s)",
            ErrorKind.LOCK_CONTENTION,
            retryable=True,
            details={"job_name": job_name, "attempts": attempts},
        )


class LockTimeoutError(BitredictError):
    def __init__(self, job_name: str, ttl_seconds: float):
        super().__init__(
            f"Job {job_name} exceeded its lock TTL of {ttl_seconds}s",
            ErrorKind.TIMEOUT,
            retryable=False,
            details={"job_name": job_name, "ttl_seconds": ttl_seconds},
        )


class DependencyNotReady(BitredictError):
    """A job dependency failed recently or did not finish within the wait."""

    def __init__(self, job_name: str, dependency: str):
        super().__init__(
            f"Dependency {dependency} not ready for {job_name}",
            ErrorKind.LOCK_CONTENTION,
            retryable=False,
            details={"job_name": job_name, "dependency": dependency},
        )


class ValidationError(BitredictError):
    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, ErrorKind.VALIDATION, retryable=False, details=details)


class InsufficientBalanceError(BitredictError):
    def __init__(self, balance_wei: int, required_wei: int):
        super().__init__(
            f"Insufficient balance: have {balance_wei} wei, need {required_wei} wei",
            ErrorKind.INSUFFICIENT_FUNDS,
            retryable=False,
            details={"balance_wei": balance_wei, "required_wei": required_wei},
        )


# Known revert strings mapped to a non-retry outcome.
NON_RETRY_REVERTS = {
    "Only guided oracle": "only_guided_oracle",
    "Event not ended yet": "event_not_ended",
    "Already settled": "already_settled",
    "Slip already evaluated": "slip_already_evaluated",
    "Cycle not resolved": "cycle_not_resolved",
}


def classify_revert(message: str, tx_hash: str | None = None) -> TxRevertError:
    """Build a TxRevertError, marking known revert strings as non-retry."""
    for needle, reason in NON_RETRY_REVERTS.items():
        if needle.lower() in message.lower():
            return TxRevertError(message, reason=reason, retryable=False, tx_hash=tx_hash)
    return TxRevertError(message, reason=None, retryable=True, tx_hash=tx_hash)


def should_alert(exc: BaseException) -> bool:
    """Whether a job-aborting error belongs in the alerts table."""
    if isinstance(exc, InvariantViolation):
        return True
    return isinstance(exc, TxRevertError) and not exc.classified
