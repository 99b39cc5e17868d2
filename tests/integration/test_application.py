"""Startup sequencing, readiness and health."""

from dataclasses import replace

import pytest

from ledger_config import DATABASE_URL_ENV
from ledger_config.schema import LedgerSettings
from ledger_kernel.db.engine import drop_tables
from ledger_kernel.domain.policy import BalanceBasis
from ledger_kernel.exceptions import ServiceNotReadyError
from ledger_services import application as application_module
from ledger_services.application import LedgerApplication, ServiceState


@pytest.fixture
def started(app_config, clock):
    started_apps = []

    def _start(config=app_config):
        app = LedgerApplication(config, clock=clock)
        app.start()
        started_apps.append(app)
        return app

    yield _start

    if started_apps and started_apps[-1].state != ServiceState.STARTING:
        drop_tables()
        started_apps[-1].stop()


def test_not_ready_before_start(app_config):
    app = LedgerApplication(app_config)
    assert app.state == ServiceState.STARTING
    assert not app.health().ready
    with pytest.raises(ServiceNotReadyError):
        app.require_ready()


def test_start_makes_ready(started, captured_logs):
    app = started()

    health = app.health()
    assert health.state == ServiceState.OK
    assert health.database is True
    assert health.ready
    app.require_ready()

    started_logs = [r for r in captured_logs() if r["message"] == "application_started"]
    assert started_logs[0]["config_id"] == "integration"
    assert started_logs[0]["balance_basis"] == "gross"


def test_second_start_is_a_noop(started, captured_logs):
    app = started()
    app.start()
    assert [r["message"] for r in captured_logs()].count("application_started") == 1


def test_policy_comes_from_config(started, app_config):
    config = replace(
        app_config,
        ledger=LedgerSettings(balance_basis="net", cash_in_hand_name="till"),
    )
    app = started(config)
    assert app.policy.balance_basis == BalanceBasis.NET
    assert app.policy.cash_in_hand_name == "till"


def test_default_config_with_env_database(started, database_url, monkeypatch):
    monkeypatch.setenv(DATABASE_URL_ENV, database_url)
    app = started(None)
    assert app.config.config_id == "retail-ledger-default"
    assert app.config.database.url == database_url


def test_lost_database_degrades(started, monkeypatch, captured_logs):
    app = started()
    monkeypatch.setattr(application_module, "ping", lambda: False)

    health = app.health()

    assert health.state == ServiceState.DEGRADED
    assert not health.ready
    with pytest.raises(ServiceNotReadyError):
        app.require_ready()
    changes = [r for r in captured_logs() if r["message"] == "health_state_changed"]
    assert changes[0]["to_state"] == "degraded"

    monkeypatch.setattr(application_module, "ping", lambda: True)
    assert app.health().ready


def test_stop_returns_to_starting(app_config, clock):
    app = LedgerApplication(app_config, clock=clock)
    app.start()
    drop_tables()
    app.stop()
    assert app.state == ServiceState.STARTING
    assert app.health().database is False
