from __future__ import annotations

import asyncio

from common.errors import (
    ComputeNotReadyError,
    ConfirmationTimeoutError,
    EncryptionFailedError,
    InvalidInputError,
    NotConnectedError,
    SubmissionFailedError,
    SubmissionRejectedByUserError,
)
from common.ledger import CODE_USER_REJECTED, LedgerApiError, LedgerRejectedError
from common.status import TxState
from create.handler import CreatePayrollWorkflow, RecordIdFactory
from state.models import PayrollForm

from _fakes import ALICE, TARGET, connect_ready, make_env


def _workflow(env, **kwargs) -> CreatePayrollWorkflow:
    return CreatePayrollWorkflow(
        session=env.session,
        ledger=env.ledger,
        compute=env.compute,
        store=env.store,
        oplog=env.oplog,
        status=env.status,
        **kwargs,
    )


def _alice_form() -> PayrollForm:
    return PayrollForm(employee_name="Alice", salary="150000", hours="160", performance="8")


def test_create_then_sync_adds_one_unverified_record():
    env = make_env()
    env.ledger.seed("payroll-1")
    wf = _workflow(env)

    async def scenario():
        await connect_ready(env)
        await env.store.sync_all()
        before = len(env.store)
        result = await wf.run(_alice_form())
        return before, result, env.status.current

    before, result, status = asyncio.run(scenario())

    assert result.ok is True
    assert len(env.store) == before + 1
    rec = env.store.get(result.record_id)
    assert rec is not None
    assert rec.employee_name == "Alice"
    assert rec.public_hours == 160
    assert rec.public_performance == 8
    assert rec.verified is False
    assert rec.decrypted_value is None
    assert rec.creator == ALICE
    assert status.state is TxState.SUCCESS
    assert status.message == "Payroll created successfully!"
    assert env.oplog.entries[0].description == "Created payroll for Alice"
    assert env.oplog.entries[1].description == "Loaded 2 payroll records"


def test_salary_encrypted_for_target_and_submitter():
    env = make_env()
    wf = _workflow(env)

    async def scenario():
        await connect_ready(env)
        return await wf.run(_alice_form())

    result = asyncio.run(scenario())

    assert result.ok
    assert env.compute.encrypt_calls == [(TARGET, ALICE, 150000)]
    # Ledger receives the ciphertext, never the clear salary
    assert env.ledger.ciphertexts[result.record_id] in env.vault
    assert "150000" not in str(env.ledger.records[result.record_id])
    assert env.ledger.created[0]["proof"] == "0xinputproof"


def test_form_state_resets_after_success():
    env = make_env()
    wf = _workflow(env)
    wf.open_form()
    wf.update_form(employee_name="Carol", salary="1000", hours="10")
    wf.update_form(performance="5")

    async def scenario():
        await connect_ready(env)
        return await wf.run()

    result = asyncio.run(scenario())

    assert result.ok
    assert env.store.get(result.record_id).public_performance == 5
    assert wf.form_open is False
    assert wf.form == PayrollForm()
    assert wf.creating is False


def test_explicit_form_leaves_pending_form_alone():
    env = make_env()
    wf = _workflow(env)
    wf.open_form()
    pending = wf.update_form(employee_name="Dana", salary="2000")

    async def scenario():
        await connect_ready(env)
        return await wf.run(_alice_form())

    result = asyncio.run(scenario())

    assert result.ok
    assert env.store.get(result.record_id).employee_name == "Alice"
    assert wf.form == pending
    assert wf.form_open is True


def test_not_connected_fails_without_calls():
    env = make_env()
    wf = _workflow(env)

    async def scenario():
        result = await wf.run(_alice_form())
        return result, env.status.current

    result, status = asyncio.run(scenario())

    assert result.ok is False
    assert isinstance(result.error, NotConnectedError)
    assert status.state is TxState.ERROR
    assert status.message == "Please connect wallet first"
    assert env.compute.encrypt_calls == []


def test_compute_not_ready_is_a_not_connected_failure():
    env = make_env()
    env.compute.fail_init = True
    env.session.connect(ALICE)
    wf = _workflow(env)

    result = asyncio.run(wf.run(_alice_form()))

    assert isinstance(result.error, ComputeNotReadyError)
    assert isinstance(result.error, NotConnectedError)


def test_empty_name_rejected():
    env = make_env()
    wf = _workflow(env)

    async def scenario():
        await connect_ready(env)
        return await wf.run(PayrollForm(employee_name="   ", salary="1"))

    result = asyncio.run(scenario())

    assert isinstance(result.error, InvalidInputError)
    assert env.compute.encrypt_calls == []


def test_encryption_failure_is_terminal():
    env = make_env()
    env.compute.fail_encrypt = True
    wf = _workflow(env)

    async def scenario():
        await connect_ready(env)
        result = await wf.run(_alice_form())
        return result, env.status.current

    result, status = asyncio.run(scenario())

    assert isinstance(result.error, EncryptionFailedError)
    assert status.state is TxState.ERROR
    assert env.ledger.created == []
    assert wf.creating is False


def test_user_rejection_detected():
    env = make_env()
    env.ledger.create_error = LedgerRejectedError("signer declined", code=CODE_USER_REJECTED)
    wf = _workflow(env)

    async def scenario():
        await connect_ready(env)
        result = await wf.run(_alice_form())
        return result, env.status.current

    result, status = asyncio.run(scenario())

    assert isinstance(result.error, SubmissionRejectedByUserError)
    assert status.message == "Transaction rejected by user"


def test_wallet_action_rejected_is_user_rejection():
    env = make_env()
    env.ledger.create_error = LedgerRejectedError("user rejected transaction", code="ACTION_REJECTED")
    wf = _workflow(env)

    async def scenario():
        await connect_ready(env)
        return await wf.run(_alice_form())

    result = asyncio.run(scenario())

    assert isinstance(result.error, SubmissionRejectedByUserError)
    assert env.ledger.created == []


def test_other_submission_error():
    env = make_env()
    env.ledger.create_error = LedgerApiError("nonce too low")
    wf = _workflow(env)

    async def scenario():
        await connect_ready(env)
        return await wf.run(_alice_form())

    result = asyncio.run(scenario())

    assert isinstance(result.error, SubmissionFailedError)
    assert not isinstance(result.error, SubmissionRejectedByUserError)
    assert result.error.message == "Submission failed: nonce too low"


def test_confirmation_wait_is_bounded():
    env = make_env()
    env.ledger.hang_confirmations = True
    wf = _workflow(env, confirm_timeout=0.05)

    async def scenario():
        await connect_ready(env)
        return await wf.run(_alice_form())

    result = asyncio.run(scenario())

    assert isinstance(result.error, ConfirmationTimeoutError)
    assert isinstance(result.error, SubmissionFailedError)
    assert len(env.store) == 0  # no sync on failure


def test_record_ids_unique_within_same_millisecond():
    factory = RecordIdFactory(clock=lambda: 1726000000.5)
    first, second = factory(), factory()
    assert first == "payroll-1726000000500"
    assert second == "payroll-1726000000501"
