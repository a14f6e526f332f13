from __future__ import annotations

import asyncio

import pytest

from common.errors import ComputeNotReadyError, NotConnectedError
from common.status import StatusBoard, TxState
from session.controller import SessionController, SessionPhase

from _fakes import FakeCompute


def _session(**kwargs):
    compute = FakeCompute({})
    for k, v in kwargs.items():
        setattr(compute, k, v)
    return SessionController(compute, status=StatusBoard(ttl=5.0)), compute


def test_connect_then_ready():
    session, compute = _session()

    async def scenario():
        assert session.phase is SessionPhase.DISCONNECTED
        assert await session.ensure_ready() is False  # disconnected: nothing to do
        session.connect("0xA11CE")
        assert session.phase is SessionPhase.CONNECTED
        assert await session.ensure_ready() is True
        assert await session.ensure_ready() is True

    asyncio.run(scenario())

    assert session.phase is SessionPhase.READY
    assert session.state.compute_ready is True
    assert compute.init_calls == 1


def test_concurrent_ensure_ready_initializes_once():
    session, compute = _session()
    session.connect("0xA11CE")

    async def scenario():
        return await asyncio.gather(session.ensure_ready(), session.ensure_ready())

    first, second = asyncio.run(scenario())

    # The second caller saw INITIALIZING and returned without initializing again
    assert first is True
    assert second is False
    assert compute.init_calls == 1
    assert session.ready


def test_state_reports_initializing():
    session, _ = _session()
    session.connect("0xA11CE")
    seen = []

    async def scenario():
        task = asyncio.create_task(session.ensure_ready())
        await asyncio.sleep(0)
        seen.append(session.state)
        await task

    asyncio.run(scenario())

    assert seen[0].initializing is True
    assert seen[0].compute_ready is False
    assert session.state.initializing is False


def test_initialization_failure_returns_to_connected():
    session, compute = _session(fail_init=True)
    session.connect("0xA11CE")

    async def scenario():
        ok = await session.ensure_ready()
        return ok, session.status.current

    ok, status = asyncio.run(scenario())

    assert ok is False
    assert session.phase is SessionPhase.CONNECTED
    assert status.state is TxState.ERROR
    assert "initialization failed" in status.message


def test_disconnect_during_initialization_discards_result():
    session, _ = _session()
    session.connect("0xA11CE")

    async def scenario():
        task = asyncio.create_task(session.ensure_ready())
        await asyncio.sleep(0)
        session.disconnect()
        return await task

    assert asyncio.run(scenario()) is False
    assert session.phase is SessionPhase.DISCONNECTED
    assert session.address is None


def test_disconnect_invalidates_readiness():
    session, _ = _session()
    session.connect("0xA11CE")
    asyncio.run(session.ensure_ready())
    session.disconnect()

    assert session.ready is False
    assert session.state.connected is False
    with pytest.raises(NotConnectedError):
        session.require_identity()


def test_require_ready_errors():
    session, _ = _session(fail_init=True)

    with pytest.raises(NotConnectedError):
        asyncio.run(session.require_ready())

    session.connect("0xA11CE")
    with pytest.raises(ComputeNotReadyError):
        asyncio.run(session.require_ready())


def test_account_switch_drops_readiness():
    session, compute = _session()

    async def scenario():
        session.connect("0xA11CE")
        assert await session.ensure_ready() is True
        session.connect("0xA11CE")  # same account: nothing changes
        assert session.ready is True
        session.connect("0xB0B")
        phase_after_switch = session.phase
        assert await session.ensure_ready() is True
        return phase_after_switch

    phase_after_switch = asyncio.run(scenario())

    assert phase_after_switch is SessionPhase.CONNECTED
    assert session.address == "0xB0B"
    assert session.ready is True
    assert compute.init_calls == 2


def test_account_switch_during_initialization_discards_result():
    session, compute = _session()
    session.connect("0xA11CE")

    async def scenario():
        task = asyncio.create_task(session.ensure_ready())
        await asyncio.sleep(0)
        session.connect("0xB0B")
        return await task

    assert asyncio.run(scenario()) is False
    assert session.phase is SessionPhase.CONNECTED
    assert session.address == "0xB0B"


def test_connect_requires_address():
    session, _ = _session()
    with pytest.raises(ValueError):
        session.connect("")
