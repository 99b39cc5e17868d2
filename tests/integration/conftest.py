"""
Fixtures for tests that drive the full application.

The application owns the engine here, so these tests do not use the
``session``/``db_engine`` fixtures; every request runs in its own
``session_scope()``.
"""

import pytest

from ledger_config.schema import DatabaseSettings, LedgerConfig
from ledger_kernel.db.engine import create_tables, drop_tables
from ledger_services.application import LedgerApplication
from ledger_services.context import RequestContext
from ledger_services.handlers import LedgerHandlers
from tests.conftest import ACTOR, OTHER_TENANT, TENANT


@pytest.fixture
def app_config(database_url) -> LedgerConfig:
    return LedgerConfig(
        config_id="integration",
        version=1,
        database=DatabaseSettings(url=database_url),
    )


@pytest.fixture
def app(app_config, clock):
    application = LedgerApplication(app_config, clock=clock)
    application.start()
    drop_tables()
    create_tables()
    yield application
    drop_tables()
    application.stop()


@pytest.fixture
def handlers(app) -> LedgerHandlers:
    return LedgerHandlers(app)


@pytest.fixture
def ctx() -> RequestContext:
    return RequestContext(tenant=TENANT, actor_id=ACTOR)


@pytest.fixture
def other_ctx() -> RequestContext:
    return RequestContext(tenant=OTHER_TENANT, actor_id="user-9")
