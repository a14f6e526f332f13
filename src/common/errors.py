"""
Failure taxonomy for payroll workflows.

Collaborator clients raise their own errors (`LedgerError`, `ComputeError`);
workflows translate those into the classes below and report them through a
result object and the status board rather than raising to the caller.
"""

from __future__ import annotations

from typing import Optional


class PayrollError(RuntimeError):
    """Base error for payroll workflows. `message` is safe to show to a user."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotConnectedError(PayrollError):
    """No wallet connection or no identity (address) available."""


class ComputeNotReadyError(NotConnectedError):
    """Connected, but the confidential-compute service is not initialized."""


class InitializationFailedError(PayrollError):
    """Confidential-compute initialization failed."""


class SyncPartialFailure(PayrollError):
    """A single record could not be fetched during a sync; the record is skipped."""

    def __init__(self, record_id: str, message: str) -> None:
        super().__init__(message)
        self.record_id = record_id


class InvalidInputError(PayrollError):
    """Form input rejected before any collaborator was called."""


class EncryptionFailedError(PayrollError):
    """The compute service could not encrypt the salary."""


class SubmissionRejectedByUserError(PayrollError):
    """The signer declined the transaction."""


class SubmissionFailedError(PayrollError):
    """The ledger rejected or failed a submission for any other reason."""


class ConfirmationTimeoutError(SubmissionFailedError):
    """A submitted transaction was not confirmed within the allowed time."""


class AlreadyVerifiedError(PayrollError):
    """Another actor verified the record first. Recoverable by resync."""

    def __init__(self, record_id: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"Record {record_id} is already verified")
        self.record_id = record_id


class DecryptionFailedError(PayrollError):
    """The compute service could not produce a verifiable decryption."""


class ServiceUnavailableError(PayrollError):
    """The ledger reported itself unavailable or could not be reached."""


__all__ = [
    "PayrollError",
    "NotConnectedError",
    "ComputeNotReadyError",
    "InitializationFailedError",
    "SyncPartialFailure",
    "InvalidInputError",
    "EncryptionFailedError",
    "SubmissionRejectedByUserError",
    "SubmissionFailedError",
    "ConfirmationTimeoutError",
    "AlreadyVerifiedError",
    "DecryptionFailedError",
    "ServiceUnavailableError",
]
