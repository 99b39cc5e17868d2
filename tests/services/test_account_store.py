"""
Tests for AccountStore.

Covers:
- Account creation and validation
- Duplicate names per tenant and category
- Listing order, filters and paging
- Metadata updates (financial fields refused)
- Deletion rules
- Cash-in-hand lazy singleton
- Tenant scoping
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_kernel.domain.dtos import AccountFilter
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
from ledger_kernel.services.account_store import AccountStore
from tests.conftest import ACTOR, OTHER_TENANT, TENANT


class TestCreateAccount:
    def test_current_balance_starts_at_opening(self, store):
        account = store.create_account(
            TENANT, "ledger", "Alice", Decimal("250"), ledger_kind="customer",
            actor_id=ACTOR, address="1 Main St", region="North", phone="555",
            email="alice@example.com",
        )
        assert account.category == AccountCategory.LEDGER
        assert account.ledger_kind == LedgerKind.CUSTOMER
        assert account.opening_balance == Decimal("250.00")
        assert account.current_balance == Decimal("250.00")
        assert account.sale_total == Decimal("0")
        assert account.address == "1 Main St"
        assert account.created_by == ACTOR

    def test_ledger_opening_balance_may_be_negative(self, store):
        account = store.create_account(
            TENANT, "ledger", "Owed", Decimal("-40"), ledger_kind="supplier"
        )
        assert account.current_balance == Decimal("-40.00")

    def test_bank_account_cannot_open_negative(self, store):
        with pytest.raises(InvalidAmountError):
            store.create_account(TENANT, "bank", "Overdrawn", Decimal("-1"))

    @pytest.mark.parametrize("name", ["", "   ", None])
    def test_name_required(self, store, name):
        with pytest.raises(ValidationError) as exc_info:
            store.create_account(TENANT, "ledger", name, ledger_kind="customer")
        assert exc_info.value.field == "name"

    def test_tenant_required(self, store):
        with pytest.raises(ValidationError) as exc_info:
            store.create_account("", "ledger", "Bob", ledger_kind="customer")
        assert exc_info.value.field == "tenant"

    def test_ledger_needs_kind(self, store):
        with pytest.raises(ValidationError):
            store.create_account(TENANT, "ledger", "Bob")

    def test_bank_has_no_kind(self, store):
        with pytest.raises(ValidationError):
            store.create_account(TENANT, "bank", "Bank", ledger_kind="customer")

    def test_unknown_category(self, store):
        with pytest.raises(ValidationError):
            store.create_account(TENANT, "savings", "Jar")

    def test_unknown_metadata_field(self, store):
        with pytest.raises(ValidationError):
            store.create_account(
                TENANT, "ledger", "Bob", ledger_kind="customer", favourite_colour="red"
            )

    def test_bad_opening_balance(self, store):
        with pytest.raises(ValidationError):
            store.create_account(
                TENANT, "ledger", "Bob", "lots", ledger_kind="customer"
            )

    def test_duplicate_name_in_same_category(self, store):
        store.create_account(TENANT, "ledger", "Bob", ledger_kind="customer")
        with pytest.raises(DuplicateAccountNameError):
            store.create_account(TENANT, "ledger", "Bob", ledger_kind="supplier")

    def test_same_name_allowed_across_categories_and_tenants(self, store):
        store.create_account(TENANT, "ledger", "Bob", ledger_kind="customer")
        store.create_account(TENANT, "bank", "Bob")
        store.create_account(OTHER_TENANT, "ledger", "Bob", ledger_kind="customer")

    def test_logs_account_created(self, store, captured_logs):
        account = store.create_account(TENANT, "cash", "Till")
        records = [r for r in captured_logs() if r["message"] == "account_created"]
        assert records[-1]["account_id"] == str(account.id)


class TestQueries:
    def test_get_account(self, store, customer):
        found = store.get_account(TENANT, customer.id)
        assert found.id == customer.id
        assert found.name == "Customer One"

    def test_get_account_by_string_id(self, store, customer):
        assert store.get_account(TENANT, str(customer.id)).id == customer.id

    def test_unknown_id(self, store):
        with pytest.raises(AccountNotFoundError):
            store.get_account(TENANT, uuid4())

    def test_malformed_id_is_not_found(self, store):
        with pytest.raises(AccountNotFoundError):
            store.get_account(TENANT, "not-a-uuid")

    def test_other_tenant_is_forbidden(self, store, customer):
        with pytest.raises(TenantMismatchError):
            store.get_account(OTHER_TENANT, customer.id)

    def test_list_newest_first(self, store, make_account):
        first = make_account(name="first")
        second = make_account(name="second")
        third = make_account(name="third")
        ids = [a.id for a in store.list_accounts(TENANT)]
        assert ids == [third.id, second.id, first.id]

    def test_list_is_tenant_scoped(self, store, make_account):
        make_account(name="mine")
        make_account(name="theirs", tenant=OTHER_TENANT)
        assert [a.name for a in store.list_accounts(TENANT)] == ["mine"]

    def test_filters(self, store, make_account):
        make_account("ledger", "customer", name="Alpha Foods")
        make_account("ledger", "supplier", name="Beta Supplies")
        make_account("bank", name="Alpha Bank")

        customers = store.list_accounts(TENANT, AccountFilter(ledger_kind=LedgerKind.CUSTOMER))
        assert [a.name for a in customers] == ["Alpha Foods"]

        banks = store.list_accounts(TENANT, AccountFilter(category="bank"))
        assert [a.name for a in banks] == ["Alpha Bank"]

        search = store.list_accounts(TENANT, AccountFilter(search="alpha"))
        assert {a.name for a in search} == {"Alpha Foods", "Alpha Bank"}
        assert store.count_accounts(TENANT, AccountFilter(search="ALPHA")) == 2

    def test_search_escapes_wildcards(self, store, make_account):
        make_account(name="100% Cotton")
        make_account(name="1000 Cotton")
        result = store.list_accounts(TENANT, AccountFilter(search="100%"))
        assert [a.name for a in result] == ["100% Cotton"]

    def test_paging(self, store, make_account):
        for i in range(5):
            make_account(name=f"acct-{i}")
        page1 = store.list_accounts(TENANT, page=1, limit=2)
        page3 = store.list_accounts(TENANT, page=3, limit=2)
        assert [a.name for a in page1] == ["acct-4", "acct-3"]
        assert [a.name for a in page3] == ["acct-0"]
        assert store.count_accounts(TENANT) == 5

    @pytest.mark.parametrize("page, limit", [(0, 10), (1, 0), (1, 201)])
    def test_bad_paging(self, store, page, limit):
        with pytest.raises(ValidationError):
            store.list_accounts(TENANT, page=page, limit=limit)


class TestUpdateMetadata:
    def test_updates_contact_fields(self, store, customer, clock):
        clock.advance(60)
        updated = store.update_account_metadata(
            TENANT, customer.id, {"phone": "555-0100", "region": " West "}, actor_id="u-2"
        )
        assert updated.phone == "555-0100"
        assert updated.region == "West"
        assert updated.current_balance == customer.current_balance

    def test_rename(self, store, customer):
        assert store.update_account_metadata(TENANT, customer.id, {"name": "Renamed"}).name == "Renamed"

    def test_rename_to_taken_name(self, store, make_account):
        make_account(name="Taken")
        other = make_account(name="Other")
        with pytest.raises(DuplicateAccountNameError):
            store.update_account_metadata(TENANT, other.id, {"name": "Taken"})

    @pytest.mark.parametrize(
        "field",
        ["current_balance", "opening_balance", "sale_total", "category", "company_code"],
    )
    def test_financial_and_structural_fields_refused(self, store, customer, field):
        with pytest.raises(ValidationError):
            store.update_account_metadata(TENANT, customer.id, {field: "1"})

    def test_other_tenant(self, store, customer):
        with pytest.raises(TenantMismatchError):
            store.update_account_metadata(OTHER_TENANT, customer.id, {"phone": "1"})


class TestDeleteAccount:
    def test_deletes_untouched_account(self, store, customer):
        store.delete_account(TENANT, customer.id)
        with pytest.raises(AccountNotFoundError):
            store.get_account(TENANT, customer.id)

    def test_nonzero_movement_conflicts(self, store, engine, customer):
        """Current balance 50 differs from opening 0."""
        engine.record_sale(customer.id, TENANT, Decimal("50"))
        with pytest.raises(AccountNotEmptyError):
            store.delete_account(TENANT, customer.id)

    def test_referenced_account_conflicts(self, store, engine, customer):
        sale = engine.record_sale(customer.id, TENANT, Decimal("50"))
        engine.record_return(customer.id, TENANT, Decimal("50"), sale.transaction.serial)
        assert store.get_account(TENANT, customer.id).current_balance == Decimal("0")
        with pytest.raises(AccountReferencedError):
            store.delete_account(TENANT, customer.id)


class TestCashInHand:
    def test_created_once(self, store):
        first = store.get_or_create_cash_in_hand(TENANT, ACTOR)
        second = store.get_or_create_cash_in_hand(TENANT, ACTOR)
        assert first.id == second.id
        assert first.name == "cashInHand"
        assert first.category == AccountCategory.CASH
        assert first.current_balance == Decimal("0")

    def test_one_per_tenant(self, store):
        ours = store.get_or_create_cash_in_hand(TENANT)
        theirs = store.get_or_create_cash_in_hand(OTHER_TENANT)
        assert ours.id != theirs.id

    def test_name_follows_policy(self, session, clock, policy):
        from dataclasses import replace

        store = AccountStore(session, clock, replace(policy, cash_in_hand_name="till"))
        assert store.get_or_create_cash_in_hand(TENANT).name == "till"
