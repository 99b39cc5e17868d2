"""
ledger_services.application -- explicit startup sequencing and readiness.

Responsibility:
    Builds the runtime in a fixed order and exposes readiness as a query:

        configure logging -> init engine -> create schema
            -> register immutability listeners -> ready

    Until ``start()`` has completed, handlers refuse work with
    ServiceNotReadyError.  ``health()`` pings the database and reports
    ``starting``, ``ok`` or ``degraded``.

    The application is also the single place kernel services are
    constructed for a session, so every service shares one clock, policy
    and serial generator.

Usage:
    app = LedgerApplication()
    app.start()
    handlers = LedgerHandlers(app)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from sqlalchemy.orm import Session

from ledger_config import get_active_config
from ledger_config.bridges import build_ledger_policy
from ledger_config.schema import LedgerConfig
from ledger_kernel.db.engine import create_tables, init_engine_from_url, ping, reset_engine
from ledger_kernel.db.immutability import register_immutability_listeners
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.policy import DEFAULT_POLICY, LedgerPolicy
from ledger_kernel.domain.serials import SerialGenerator
from ledger_kernel.exceptions import ServiceNotReadyError
from ledger_kernel.logging_config import configure_logging, get_logger
from ledger_kernel.selectors.account_selector import AccountSelector
from ledger_kernel.services.account_store import AccountStore
from ledger_kernel.services.reconciliation_engine import BalanceReconciliationEngine
from ledger_kernel.services.transaction_ledger import TransactionLedger

logger = get_logger("services.application")


class ServiceState(str, Enum):
    STARTING = "starting"
    OK = "ok"
    DEGRADED = "degraded"


@dataclass(frozen=True)
class HealthStatus:
    state: ServiceState
    database: bool

    @property
    def ready(self) -> bool:
        return self.state == ServiceState.OK


class LedgerApplication:
    def __init__(
        self,
        config: LedgerConfig | None = None,
        clock: Clock | None = None,
        serial_generator: SerialGenerator | None = None,
    ):
        self._config = config
        self.clock = clock or SystemClock()
        self.serial_generator = serial_generator
        self.policy: LedgerPolicy = DEFAULT_POLICY
        self.state = ServiceState.STARTING

    @property
    def config(self) -> LedgerConfig | None:
        return self._config

    def start(self) -> None:
        """Run the startup sequence.  Calling it again is a no-op."""
        if self.state != ServiceState.STARTING:
            return

        config = self._config or get_active_config()
        self._config = config

        configure_logging(level=config.logging.level)
        init_engine_from_url(
            config.database.url,
            echo=config.database.echo,
            pool_size=config.database.pool_size,
            max_overflow=config.database.max_overflow,
            pool_timeout=config.database.pool_timeout,
            pool_recycle=config.database.pool_recycle,
        )
        create_tables()
        register_immutability_listeners()
        self.policy = build_ledger_policy(config)
        self.state = ServiceState.OK

        logger.info(
            "application_started",
            extra={
                "config_id": config.config_id,
                "config_version": config.version,
                "balance_basis": self.policy.balance_basis.value,
            },
        )

    def stop(self) -> None:
        reset_engine()
        self.state = ServiceState.STARTING
        logger.info("application_stopped")

    def health(self) -> HealthStatus:
        if self.state == ServiceState.STARTING:
            return HealthStatus(state=ServiceState.STARTING, database=False)

        database_ok = ping()
        new_state = ServiceState.OK if database_ok else ServiceState.DEGRADED
        if new_state != self.state:
            logger.warning(
                "health_state_changed",
                extra={"from_state": self.state.value, "to_state": new_state.value},
            )
        self.state = new_state
        return HealthStatus(state=new_state, database=database_ok)

    def require_ready(self) -> None:
        if self.state != ServiceState.OK:
            raise ServiceNotReadyError(self.state.value)

    # -- service construction ------------------------------------------------

    def account_store(self, session: Session) -> AccountStore:
        return AccountStore(session, self.clock, self.policy)

    def transaction_ledger(self, session: Session) -> TransactionLedger:
        return TransactionLedger(
            session, self.clock, self.policy, serial_generator=self.serial_generator
        )

    def engine(self, session: Session) -> BalanceReconciliationEngine:
        return BalanceReconciliationEngine(
            session, self.clock, self.policy, serial_generator=self.serial_generator
        )

    def account_selector(self, session: Session) -> AccountSelector:
        return AccountSelector(session)
