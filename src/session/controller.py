from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Optional

from common.errors import ComputeNotReadyError, InitializationFailedError, NotConnectedError
from common.status import StatusBoard
from state.models import SessionState


logger = logging.getLogger(__name__)


class SessionPhase(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    INITIALIZING = "initializing"
    READY = "ready"


class SessionController:
    """
    Wallet connectivity and confidential-compute readiness.

    Phases: DISCONNECTED -> CONNECTED -> INITIALIZING -> READY, falling back
    from INITIALIZING to CONNECTED when initialization fails. `ensure_ready()`
    is the only caller of `compute.initialize()` and does nothing while an
    initialization is already running, so two callers never initialize twice.

    `disconnect()` and connecting as a different account bump a generation
    counter; an initialization that finishes after either is discarded instead
    of marking the new session ready.
    """

    def __init__(self, compute: Any, *, status: Optional[StatusBoard] = None) -> None:
        self._compute = compute
        self._status = status if status is not None else StatusBoard()
        self._phase = SessionPhase.DISCONNECTED
        self._address: Optional[str] = None
        self._generation = 0

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def address(self) -> Optional[str]:
        return self._address

    @property
    def status(self) -> StatusBoard:
        return self._status

    @property
    def connected(self) -> bool:
        return self._phase is not SessionPhase.DISCONNECTED

    @property
    def ready(self) -> bool:
        return self._phase is SessionPhase.READY

    @property
    def state(self) -> SessionState:
        return SessionState(
            connected=self.connected,
            compute_ready=self.ready,
            initializing=self._phase is SessionPhase.INITIALIZING,
        )

    def connect(self, address: str) -> None:
        if not address:
            raise ValueError("address is required")
        if self._phase is SessionPhase.DISCONNECTED:
            self._address = address
            self._phase = SessionPhase.CONNECTED
            logger.info("Session connected as %s", address)
            return
        if address == self._address:
            return
        # Readiness belongs to the previous account; start over as CONNECTED.
        logger.info("Session account switched from %s to %s", self._address, address)
        self._generation += 1
        self._address = address
        self._phase = SessionPhase.CONNECTED

    def disconnect(self) -> None:
        self._generation += 1
        self._phase = SessionPhase.DISCONNECTED
        self._address = None
        logger.info("Session disconnected")

    async def ensure_ready(self) -> bool:
        """Initialize confidential compute if needed. Returns True when READY."""
        if self._phase is SessionPhase.READY:
            return True
        if self._phase is not SessionPhase.CONNECTED:
            # DISCONNECTED, or another caller is already initializing
            return False

        generation = self._generation
        self._phase = SessionPhase.INITIALIZING
        try:
            await self._compute.initialize()
        except Exception as exc:
            if generation == self._generation:
                self._phase = SessionPhase.CONNECTED
            err = InitializationFailedError("Confidential compute initialization failed")
            logger.warning("%s: %s", err.message, exc)
            self._status.error(err.message)
            return False

        if generation != self._generation:
            logger.info("Discarding initialization result from a closed session")
            return False
        self._phase = SessionPhase.READY
        return True

    def require_identity(self) -> str:
        if not self.connected or not self._address:
            raise NotConnectedError("Please connect wallet first")
        return self._address

    async def require_ready(self) -> str:
        """Return the connected address once compute is ready; raise otherwise."""
        address = self.require_identity()
        if not await self.ensure_ready():
            raise ComputeNotReadyError("Confidential compute is not ready")
        return address


__all__ = ["SessionController", "SessionPhase"]
