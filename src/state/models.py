from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from common.coerce import parse_int_or_zero
from common.ledger import LedgerRecord


DEFAULT_DESCRIPTION = "Encrypted Payroll Record"


class PayrollRecord(BaseModel):
    """
    Local mirror of one ledger-held payroll entry.

    Fields
    - id: ledger-assigned record id (e.g. "payroll-1726000000000").
    - employee_name, description: clear text.
    - encrypted_salary_handle: opaque ciphertext reference; the ledger keys
      ciphertexts by record id, so this currently equals `id`.
    - public_hours, public_performance: clear non-negative integers.
    - timestamp: ledger creation time (seconds), immutable.
    - creator: submitter address.
    - verified / decrypted_value: the salary once revealed on the ledger.
      `decrypted_value` is None exactly when `verified` is False.

    Records are immutable; a changed ledger record arrives as a new instance
    on the next sync.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    employee_name: str
    encrypted_salary_handle: str
    public_hours: int = Field(default=0, ge=0)
    public_performance: int = Field(default=0, ge=0)
    description: str = ""
    timestamp: int = 0
    creator: str = ""
    verified: bool = False
    decrypted_value: Optional[int] = None

    @model_validator(mode="after")
    def _value_iff_verified(self) -> "PayrollRecord":
        if self.verified and self.decrypted_value is None:
            raise ValueError("verified record requires decrypted_value")
        if not self.verified and self.decrypted_value is not None:
            raise ValueError("decrypted_value is only meaningful for verified records")
        return self

    @classmethod
    def from_ledger(cls, record_id: str, raw: LedgerRecord) -> "PayrollRecord":
        decrypted: Optional[int] = None
        if raw.is_verified:
            decrypted = raw.decrypted_value if raw.decrypted_value is not None else 0
        return cls(
            id=record_id,
            employee_name=raw.name,
            encrypted_salary_handle=record_id,
            public_hours=raw.public_hours,
            public_performance=raw.public_performance,
            description=raw.description,
            timestamp=raw.timestamp,
            creator=raw.creator,
            verified=raw.is_verified,
            decrypted_value=decrypted,
        )


class SessionState(BaseModel):
    """Snapshot of wallet connectivity and confidential-compute readiness."""

    model_config = ConfigDict(frozen=True)

    connected: bool = False
    compute_ready: bool = False
    initializing: bool = False

    @model_validator(mode="after")
    def _check_invariants(self) -> "SessionState":
        if self.initializing and self.compute_ready:
            raise ValueError("cannot be initializing and ready at once")
        if self.compute_ready and not self.connected:
            raise ValueError("compute cannot be ready while disconnected")
        return self


class PayrollForm(BaseModel):
    """
    Input for creating a payroll record.

    Numeric fields accept raw user text and parse with a default of 0
    ("150000" -> 150000, "" -> 0, "-5" -> 0).
    """

    employee_name: str = ""
    salary: int = 0
    hours: int = 0
    performance: int = 0
    description: str = DEFAULT_DESCRIPTION

    @field_validator("employee_name", mode="before")
    @classmethod
    def _strip_name(cls, v: Any) -> str:
        return "" if v is None else str(v).strip()

    @field_validator("salary", "hours", "performance", mode="before")
    @classmethod
    def _parse_numbers(cls, v: Any) -> int:
        return parse_int_or_zero(v)

    @field_validator("description", mode="before")
    @classmethod
    def _default_description(cls, v: Any) -> str:
        text = "" if v is None else str(v).strip()
        return text or DEFAULT_DESCRIPTION


__all__ = ["PayrollRecord", "SessionState", "PayrollForm", "DEFAULT_DESCRIPTION"]
