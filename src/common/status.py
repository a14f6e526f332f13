from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Optional


DEFAULT_TTL_SECONDS = 3.0


class TxState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class TransactionStatus:
    """User-facing status of the last operation: idle, or a state with a message."""

    state: TxState = TxState.IDLE
    message: str = ""

    @classmethod
    def idle(cls) -> "TransactionStatus":
        return cls()

    @classmethod
    def pending(cls, message: str) -> "TransactionStatus":
        return cls(TxState.PENDING, message)

    @classmethod
    def success(cls, message: str) -> "TransactionStatus":
        return cls(TxState.SUCCESS, message)

    @classmethod
    def error(cls, message: str) -> "TransactionStatus":
        return cls(TxState.ERROR, message)

    @property
    def visible(self) -> bool:
        return self.state is not TxState.IDLE


class StatusBoard:
    """
    Holds the current `TransactionStatus` and returns it to idle after a delay.

    Every non-idle status schedules its own expiry on the running event loop.
    Setting a new status cancels the previous expiry, so an older timer never
    clears a newer message.
    """

    def __init__(self, *, ttl: float = DEFAULT_TTL_SECONDS) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be > 0")
        self._ttl = ttl
        self._current = TransactionStatus.idle()
        self._expiry: Optional[asyncio.TimerHandle] = None

    @property
    def current(self) -> TransactionStatus:
        return self._current

    def set(self, status: TransactionStatus, *, ttl: Optional[float] = None) -> None:
        self._cancel_expiry()
        self._current = status
        if not status.visible:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Outside a loop there is nothing to expire on; caller resets explicitly.
            return
        self._expiry = loop.call_later(ttl if ttl is not None else self._ttl, self._expire)

    def pending(self, message: str, *, ttl: Optional[float] = None) -> None:
        self.set(TransactionStatus.pending(message), ttl=ttl)

    def success(self, message: str, *, ttl: Optional[float] = None) -> None:
        self.set(TransactionStatus.success(message), ttl=ttl)

    def error(self, message: str, *, ttl: Optional[float] = None) -> None:
        self.set(TransactionStatus.error(message), ttl=ttl)

    def reset(self) -> None:
        self.set(TransactionStatus.idle())

    def _expire(self) -> None:
        self._expiry = None
        self._current = TransactionStatus.idle()

    def _cancel_expiry(self) -> None:
        if self._expiry is not None:
            self._expiry.cancel()
            self._expiry = None


__all__ = ["TxState", "TransactionStatus", "StatusBoard", "DEFAULT_TTL_SECONDS"]
