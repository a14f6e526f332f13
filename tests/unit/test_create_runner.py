from __future__ import annotations

import pytest

from _fakes import ALICE, TARGET, patch_runner_clients, patch_runner_env, runner_fakes


def _patch_clients(monkeypatch: pytest.MonkeyPatch, *, ledger, compute):
    from create import handler as create

    return patch_runner_clients(monkeypatch, create, ledger=ledger, compute=compute)


def test_lambda_creates_record_from_event(monkeypatch: pytest.MonkeyPatch):
    from create import handler as create

    patch_runner_env(monkeypatch)
    ledger, compute = runner_fakes()
    _patch_clients(monkeypatch, ledger=ledger, compute=compute)

    event = {"employeeName": " Alice ", "salary": "150000", "hours": "160", "performance": 8}
    out = create.lambda_handler(event, None)

    assert out["ok"] is True
    assert out["error"] is None
    assert out["record_id"].startswith("payroll-")
    assert out["records"] == 1
    assert compute.encrypt_calls == [(TARGET, ALICE, 150000)]
    assert ledger.created[0]["name"] == "Alice"
    assert ledger.created[0]["sender"] == ALICE
    body = ledger.records[out["record_id"]]
    assert body["publicValue1"] == 160
    assert body["publicValue2"] == 8
    assert body["description"] == "Encrypted Payroll Record"
    assert out["history"][0].endswith("Created payroll for Alice")


def test_missing_name_is_reported(monkeypatch: pytest.MonkeyPatch):
    from create import handler as create

    patch_runner_env(monkeypatch)
    ledger, compute = runner_fakes()
    _patch_clients(monkeypatch, ledger=ledger, compute=compute)

    out = create.run_once({"salary": "10"})

    assert out["ok"] is False
    assert out["error"] == "Employee name is required"
    assert ledger.created == []
    assert compute.encrypt_calls == []


def test_stops_when_compute_init_fails(monkeypatch: pytest.MonkeyPatch):
    from create import handler as create

    patch_runner_env(monkeypatch)
    ledger, compute = runner_fakes()
    compute.fail_init = True
    _patch_clients(monkeypatch, ledger=ledger, compute=compute)

    out = create.run_once({"employeeName": "Alice", "salary": "1"})

    assert out["ok"] is False
    assert out["error"] == "Confidential compute initialization failed"
    assert ledger.created == []


def test_user_rejection_surfaces_as_error(monkeypatch: pytest.MonkeyPatch):
    from common.ledger import LedgerRejectedError
    from create import handler as create

    patch_runner_env(monkeypatch)
    ledger, compute = runner_fakes()
    ledger.create_error = LedgerRejectedError("user rejected transaction", code="ACTION_REJECTED")
    _patch_clients(monkeypatch, ledger=ledger, compute=compute)

    out = create.run_once({"employeeName": "Alice", "salary": "1"})

    assert out["ok"] is False
    assert out["error"] == "Transaction rejected by user"


def test_form_from_event_defaults():
    from create.handler import form_from_event

    form = form_from_event(None)
    assert form.employee_name == ""
    assert form.salary == 0
    assert form.description == "Encrypted Payroll Record"
