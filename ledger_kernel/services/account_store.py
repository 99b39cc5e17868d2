"""
AccountStore -- ledger, bank and cash account lifecycle.

Responsibility:
    Create, read, list, rename/update metadata and delete accounts, and
    lazily create the per-tenant cash-in-hand account.  Financial fields
    (current_balance and the aggregate counters) are never settable here;
    only the reconciliation engine moves them.

Architecture position:
    Kernel > Services -- imperative shell.

Invariants enforced:
    - Every lookup is scoped by tenant: an id that exists under another
      tenant raises TenantMismatchError, an unknown id AccountNotFoundError.
    - current_balance == opening_balance at creation.
    - Names are unique per (tenant, category), checked up front and backed
      by the uq_account_tenant_category_name constraint under races.
    - Deletion requires current_balance == opening_balance and no
      referencing transactions.

Failure modes:
    - ValidationError on blank tenant/name, unknown category, missing or
      misplaced ledger_kind, non-metadata field in an update.
    - DuplicateAccountNameError, AccountNotEmptyError, AccountReferencedError.
"""

from collections.abc import Iterable, Mapping
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from ledger_kernel.db.types import ZERO, money_from_value
from ledger_kernel.domain.dtos import AccountFilter, AccountInfo
from ledger_kernel.domain.values import AccountCategory, LedgerKind
from ledger_kernel.exceptions import (
    AccountNotEmptyError,
    AccountNotFoundError,
    AccountReferencedError,
    DuplicateAccountNameError,
    InvalidAmountError,
    TenantMismatchError,
    ValidationError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account
from ledger_kernel.models.transaction import LedgerTransaction
from ledger_kernel.services.base import BaseService

logger = get_logger("services.account_store")

METADATA_FIELDS = frozenset(
    {"name", "address", "region", "phone", "email", "bank_name", "account_number"}
)


def require_tenant(tenant: str | None) -> str:
    if tenant is None or not str(tenant).strip():
        raise ValidationError("tenant is required", field="tenant")
    return str(tenant).strip()


def coerce_account_id(account_id: UUID | str) -> UUID:
    """Accept a UUID or its string form; anything else cannot exist."""
    if isinstance(account_id, UUID):
        return account_id
    try:
        return UUID(str(account_id))
    except ValueError:
        raise AccountNotFoundError(str(account_id)) from None


class AccountStore(BaseService):
    """
    Service for account lifecycle operations.

    Returns AccountInfo DTOs.  ``lock_for_update`` / ``lock_many_for_update``
    return ORM rows and exist for the reconciliation engine.
    """

    # =========================================================================
    # Queries
    # =========================================================================

    def get_account(self, tenant: str, account_id: UUID | str) -> AccountInfo:
        """
        Get an account by id.

        Raises:
            AccountNotFoundError: If the id is unknown.
            TenantMismatchError: If the account belongs to another tenant.
        """
        return AccountInfo.from_model(self.load(tenant, account_id))

    def list_accounts(
        self,
        tenant: str,
        account_filter: AccountFilter | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> list[AccountInfo]:
        """
        List a tenant's accounts, newest first.

        Args:
            tenant: Company code.
            account_filter: Optional category / ledger kind / name search.
            page: 1-based page number.
            limit: Page size (defaults to the policy page size).

        Returns:
            AccountInfo list ordered by created_at descending.
        """
        tenant = require_tenant(tenant)
        limit, offset = self._page_bounds(page, limit)
        stmt = (
            self._filtered(select(Account), tenant, account_filter)
            .order_by(Account.created_at.desc(), Account.name.asc())
            .limit(limit)
            .offset(offset)
        )
        return [AccountInfo.from_model(a) for a in self.session.scalars(stmt)]

    def count_accounts(
        self, tenant: str, account_filter: AccountFilter | None = None
    ) -> int:
        tenant = require_tenant(tenant)
        stmt = self._filtered(select(func.count(Account.id)), tenant, account_filter)
        return self.session.execute(stmt).scalar_one()

    # =========================================================================
    # Commands
    # =========================================================================

    def create_account(
        self,
        tenant: str,
        category: AccountCategory | str,
        name: str,
        opening_balance: Decimal = ZERO,
        ledger_kind: LedgerKind | str | None = None,
        actor_id: str = "system",
        **metadata: Any,
    ) -> AccountInfo:
        """
        Create an account with current_balance = opening_balance.

        Args:
            tenant: Company code.
            category: ledger, bank or cash.
            name: Display name, unique within tenant + category.
            opening_balance: Signed opening balance; immutable afterward.
            ledger_kind: customer or supplier (ledger accounts only).
            actor_id: Creating actor.
            **metadata: address, region, phone, email, bank_name,
                account_number.

        Returns:
            AccountInfo for the new account.

        Raises:
            ValidationError: On missing or inconsistent input.
            DuplicateAccountNameError: If the name is taken.
        """
        tenant = require_tenant(tenant)
        name = self._clean_name(name)
        category = self._coerce_category(category)
        kind = self._coerce_ledger_kind(category, ledger_kind)
        try:
            opening = money_from_value(opening_balance)
        except ValueError:
            raise ValidationError(
                f"opening_balance must be a number, got {opening_balance!r}",
                field="opening_balance",
            ) from None

        if (
            category != AccountCategory.LEDGER
            and opening < ZERO
            and not self.policy.allow_negative_subsidiary_balance
        ):
            raise InvalidAmountError(
                "opening_balance", opening, f"{category.value} accounts cannot open negative"
            )

        unknown = set(metadata) - (METADATA_FIELDS - {"name"})
        if unknown:
            raise ValidationError(
                f"Unknown account fields: {', '.join(sorted(unknown))}",
                field=sorted(unknown)[0],
            )

        if self._find_by_name(tenant, category, name) is not None:
            raise DuplicateAccountNameError(tenant, category.value, name)

        now = self.clock.now()
        account = Account(
            company_code=tenant,
            name=name,
            category=category.value,
            ledger_kind=kind.value if kind else None,
            opening_balance=opening,
            current_balance=opening,
            sale_total=ZERO,
            purchase_total=ZERO,
            deposited_sale_total=ZERO,
            deposited_purchase_total=ZERO,
            created_at=now,
            updated_at=now,
            created_by=str(actor_id),
            **{k: self._clean_optional(v) for k, v in metadata.items()},
        )

        savepoint = self.session.begin_nested()
        try:
            self.session.add(account)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            raise DuplicateAccountNameError(tenant, category.value, name) from None

        logger.info(
            "account_created",
            extra={
                "account_id": str(account.id),
                "tenant": tenant,
                "category": category.value,
                "ledger_kind": kind.value if kind else None,
                "opening_balance": str(opening),
            },
        )
        return AccountInfo.from_model(account)

    def update_account_metadata(
        self,
        tenant: str,
        account_id: UUID | str,
        fields: Mapping[str, Any],
        actor_id: str = "system",
    ) -> AccountInfo:
        """
        Update non-financial fields.

        Raises:
            ValidationError: If any key is not a metadata field
                (balances, totals, category, kind, tenant are refused).
            DuplicateAccountNameError: On rename to a taken name.
        """
        unknown = set(fields) - METADATA_FIELDS
        if unknown:
            raise ValidationError(
                "Only metadata fields may be updated; refused: "
                + ", ".join(sorted(unknown)),
                field=sorted(unknown)[0],
            )

        account = self.lock_for_update(tenant, account_id)
        changes: dict[str, Any] = {}
        for key, value in fields.items():
            if key == "name":
                value = self._clean_name(value)
                if value != account.name:
                    clash = self._find_by_name(
                        account.company_code, AccountCategory(account.category), value
                    )
                    if clash is not None and clash.id != account.id:
                        raise DuplicateAccountNameError(
                            account.company_code, account.category, value
                        )
            else:
                value = self._clean_optional(value)
            if getattr(account, key) != value:
                changes[key] = value

        if changes:
            for key, value in changes.items():
                setattr(account, key, value)
            account.updated_at = self.clock.now()
            account.updated_by = str(actor_id)
            self.session.flush()
            logger.info(
                "account_metadata_updated",
                extra={"account_id": str(account.id), "fields": sorted(changes)},
            )

        return AccountInfo.from_model(account)

    def delete_account(self, tenant: str, account_id: UUID | str) -> None:
        """
        Delete an untouched account.

        Raises:
            AccountNotEmptyError: If current_balance != opening_balance.
            AccountReferencedError: If any transaction references it.
        """
        account = self.lock_for_update(tenant, account_id)

        if account.current_balance != account.opening_balance:
            raise AccountNotEmptyError(
                str(account.id), account.current_balance, account.opening_balance
            )

        referenced = self.session.execute(
            select(func.count(LedgerTransaction.id)).where(
                LedgerTransaction.account_id == account.id
            )
        ).scalar_one()
        if referenced:
            raise AccountReferencedError(str(account.id))

        self.session.delete(account)
        self.session.flush()
        logger.info(
            "account_deleted",
            extra={"account_id": str(account.id), "tenant": account.company_code},
        )

    def get_or_create_cash_in_hand(
        self, tenant: str, actor_id: str = "system"
    ) -> AccountInfo:
        """
        Return the tenant's cash-in-hand account, creating it on first use.

        Idempotent.  A concurrent creator losing the insert race re-reads the
        winner's row.
        """
        tenant = require_tenant(tenant)
        name = self.policy.cash_in_hand_name

        existing = self._find_by_name(tenant, AccountCategory.CASH, name)
        if existing is not None:
            return AccountInfo.from_model(existing)

        now = self.clock.now()
        savepoint = self.session.begin_nested()
        try:
            account = Account(
                company_code=tenant,
                name=name,
                category=AccountCategory.CASH.value,
                ledger_kind=None,
                opening_balance=ZERO,
                current_balance=ZERO,
                sale_total=ZERO,
                purchase_total=ZERO,
                deposited_sale_total=ZERO,
                deposited_purchase_total=ZERO,
                created_at=now,
                updated_at=now,
                created_by=str(actor_id),
            )
            self.session.add(account)
            self.session.flush()
            savepoint.commit()
            logger.info(
                "cash_in_hand_created",
                extra={"account_id": str(account.id), "tenant": tenant},
            )
            return AccountInfo.from_model(account)
        except IntegrityError:
            logger.debug("cash_in_hand_race_retry", extra={"tenant": tenant})
            savepoint.rollback()
            account = self._find_by_name(tenant, AccountCategory.CASH, name)
            if account is None:
                raise
            return AccountInfo.from_model(account)

    # =========================================================================
    # Engine-facing locking
    # =========================================================================

    def lock_for_update(self, tenant: str, account_id: UUID | str) -> Account:
        """Load one account row with SELECT ... FOR UPDATE."""
        return self.load(tenant, account_id, for_update=True)

    def lock_many_for_update(
        self, tenant: str, account_ids: Iterable[UUID | str]
    ) -> dict[UUID, Account]:
        """
        Lock several accounts in ascending id order.

        A fixed lock order keeps two operations that touch the same pair of
        accounts from deadlocking each other.
        """
        ids = sorted({coerce_account_id(a) for a in account_ids}, key=str)
        return {i: self.load(tenant, i, for_update=True) for i in ids}

    # =========================================================================
    # Helpers
    # =========================================================================

    def load(
        self, tenant: str, account_id: UUID | str, for_update: bool = False
    ) -> Account:
        tenant = require_tenant(tenant)
        account_id = coerce_account_id(account_id)
        stmt = select(Account).where(Account.id == account_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        account = self.session.execute(stmt).scalar_one_or_none()
        if account is None:
            raise AccountNotFoundError(str(account_id))
        if account.company_code != tenant:
            logger.warning(
                "tenant_mismatch_rejected",
                extra={"account_id": str(account_id), "tenant": tenant},
            )
            raise TenantMismatchError("Account", str(account_id), tenant)
        return account

    def _find_by_name(
        self, tenant: str, category: AccountCategory, name: str
    ) -> Account | None:
        return self.session.execute(
            select(Account).where(
                Account.company_code == tenant,
                Account.category == category.value,
                Account.name == name,
            )
        ).scalar_one_or_none()

    @staticmethod
    def _filtered(stmt, tenant: str, account_filter: AccountFilter | None):
        stmt = stmt.where(Account.company_code == tenant)
        if account_filter is None:
            return stmt
        if account_filter.category is not None:
            stmt = stmt.where(
                Account.category == AccountCategory(account_filter.category).value
            )
        if account_filter.ledger_kind is not None:
            stmt = stmt.where(
                Account.ledger_kind == LedgerKind(account_filter.ledger_kind).value
            )
        if account_filter.search and account_filter.search.strip():
            stmt = stmt.where(
                func.lower(Account.name).contains(
                    account_filter.search.strip().lower(), autoescape=True
                )
            )
        return stmt

    @staticmethod
    def _clean_name(name: str | None) -> str:
        if name is None or not str(name).strip():
            raise ValidationError("name is required", field="name")
        return str(name).strip()

    @staticmethod
    def _clean_optional(value: Any) -> str | None:
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    @staticmethod
    def _coerce_category(category: AccountCategory | str) -> AccountCategory:
        try:
            return AccountCategory(category)
        except ValueError:
            raise ValidationError(
                f"Unknown account category: {category!r}", field="category"
            ) from None

    @staticmethod
    def _coerce_ledger_kind(
        category: AccountCategory, ledger_kind: LedgerKind | str | None
    ) -> LedgerKind | None:
        if category != AccountCategory.LEDGER:
            if ledger_kind is not None:
                raise ValidationError(
                    f"{category.value} accounts have no ledger kind",
                    field="ledger_kind",
                )
            return None
        if ledger_kind is None:
            raise ValidationError(
                "ledger accounts require ledger_kind (customer or supplier)",
                field="ledger_kind",
            )
        try:
            return LedgerKind(ledger_kind)
        except ValueError:
            raise ValidationError(
                f"Unknown ledger kind: {ledger_kind!r}", field="ledger_kind"
            ) from None
