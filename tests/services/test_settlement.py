"""
Tests for bank and cash movements.

Covers:
- Settlement mirror rows written with billing events
- Direct deposits and withdrawals on bank/cash accounts
- Insufficient funds and the negative-balance policy
"""

from dataclasses import replace
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from ledger_kernel.domain.policy import BalanceBasis
from ledger_kernel.domain.values import TransactionKind
from ledger_kernel.exceptions import (
    InsufficientFundsError,
    UnsupportedAccountError,
    ValidationError,
)
from ledger_kernel.models.transaction import LedgerTransaction
from ledger_kernel.services.reconciliation_engine import BalanceReconciliationEngine
from tests.conftest import TENANT

D = Decimal


@pytest.fixture
def funded_bank(make_account):
    return make_account(
        "bank", name="Funded Bank", opening_balance=D("1000"), bank_name="First Bank"
    )


@pytest.fixture
def net_engine(session, clock, policy):
    return BalanceReconciliationEngine(
        session, clock, replace(policy, balance_basis=BalanceBasis.NET)
    )


class TestSettledInvoices:
    def test_sale_deposit_lands_in_bank(self, engine, customer, bank):
        result = engine.record_sale(
            customer.id, TENANT, D("1000"), D("300"), settlement_account_id=bank.id
        )

        assert result.account.current_balance == D("1000.00")
        assert result.settlement_account.id == bank.id
        assert result.settlement_account.current_balance == D("300.00")

        mirror = result.settlement_transaction
        assert mirror.account_id == bank.id
        assert mirror.kind == TransactionKind.SALE
        assert mirror.total_amount == mirror.deposited_amount == D("300.00")
        assert mirror.remaining_amount == D("0")
        assert mirror.balance_change == D("300.00")
        assert mirror.linked_transaction_id == result.transaction.id

    def test_nothing_deposited_means_no_mirror(self, session, engine, customer, bank):
        result = engine.record_sale(
            customer.id, TENANT, D("100"), settlement_account_id=bank.id
        )
        assert result.settlement_transaction is None
        assert result.settlement_account.current_balance == D("0")
        count = session.execute(
            select(func.count(LedgerTransaction.id)).where(
                LedgerTransaction.account_id == bank.id
            )
        ).scalar_one()
        assert count == 0

    def test_purchase_deposit_leaves_bank(self, engine, supplier, funded_bank):
        result = engine.record_purchase(
            supplier.id, TENANT, D("500"), D("200"), settlement_account_id=funded_bank.id
        )
        assert result.settlement_account.current_balance == D("800.00")
        assert result.settlement_transaction.balance_change == D("-200.00")

    def test_purchase_without_funds_rolls_back(self, engine, supplier, bank):
        with pytest.raises(InsufficientFundsError) as exc_info:
            engine.record_purchase(
                supplier.id, TENANT, D("500"), D("200"), settlement_account_id=bank.id
            )
        assert exc_info.value.requested == D("200.00")

        assert engine.accounts.get_account(TENANT, supplier.id).current_balance == D("0")
        assert engine.ledger.count_by_account(supplier.id, TENANT) == 0
        assert engine.ledger.count_by_account(bank.id, TENANT) == 0

    def test_customer_payment_in_cash(self, engine, store, customer):
        cash = store.get_or_create_cash_in_hand(TENANT)
        engine.record_sale(customer.id, TENANT, D("400"))

        result = engine.record_payment(
            customer.id, TENANT, D("400"), settlement_account_id=cash.id
        )

        assert result.account.current_balance == D("0.00")
        assert result.settlement_account.current_balance == D("400.00")
        assert result.settlement_transaction.kind == TransactionKind.PAYMENT

    def test_supplier_payment_from_bank(self, engine, supplier, funded_bank):
        engine.record_purchase(supplier.id, TENANT, D("300"))
        result = engine.record_payment(
            supplier.id, TENANT, D("300"), settlement_account_id=funded_bank.id
        )
        assert result.account.current_balance == D("0.00")
        assert result.settlement_account.current_balance == D("700.00")

    def test_sale_refund_leaves_bank(self, engine, customer, funded_bank):
        sale = engine.record_sale(customer.id, TENANT, D("100"), D("100"))
        result = engine.record_return(
            customer.id, TENANT, D("40"), sale.transaction.serial,
            settlement_account_id=funded_bank.id,
        )
        assert result.settlement_transaction.balance_change == D("-40.00")
        assert result.settlement_account.current_balance == D("960.00")

    def test_settlement_must_be_bank_or_cash(self, engine, customer, make_account):
        other = make_account(name="Another customer")
        with pytest.raises(UnsupportedAccountError):
            engine.record_sale(
                customer.id, TENANT, D("10"), D("10"), settlement_account_id=other.id
            )

    def test_settlement_must_differ(self, engine, customer):
        with pytest.raises(ValidationError):
            engine.record_sale(
                customer.id, TENANT, D("10"), D("10"), settlement_account_id=customer.id
            )

    def test_both_accounts_reconcile(self, engine, customer, bank):
        engine.record_sale(customer.id, TENANT, D("1000"), D("300"), settlement_account_id=bank.id)
        engine.record_payment(customer.id, TENANT, D("700"), settlement_account_id=bank.id)

        assert engine.reconcile(customer.id, TENANT).ok
        bank_report = engine.reconcile(bank.id, TENANT)
        assert bank_report.ok
        assert bank_report.current_balance == D("1000.00")


class TestNetBasisRefunds:
    def test_refunded_cash_sale_is_not_credited_twice(self, net_engine, customer, funded_bank):
        sale = net_engine.record_sale(
            customer.id, TENANT, D("100"), D("100"), settlement_account_id=funded_bank.id
        )
        assert sale.account.current_balance == D("0.00")
        assert sale.settlement_account.current_balance == D("1100.00")

        result = net_engine.record_return(
            customer.id, TENANT, D("100"), sale.transaction.serial,
            settlement_account_id=funded_bank.id,
        )

        assert result.transaction.balance_change == D("0.00")
        assert result.account.current_balance == D("0.00")
        assert result.account.sale_total == D("0.00")
        assert result.settlement_account.current_balance == D("1000.00")
        assert net_engine.reconcile(customer.id, TENANT).ok
        assert net_engine.reconcile(funded_bank.id, TENANT).ok

    def test_unrefunded_return_still_reduces_receivable(self, net_engine, customer):
        sale = net_engine.record_sale(customer.id, TENANT, D("100"), D("40"))
        result = net_engine.record_return(customer.id, TENANT, D("30"), sale.transaction.serial)

        assert result.account.current_balance == D("30.00")
        assert net_engine.reconcile(customer.id, TENANT).ok

    def test_supplier_refund_into_bank(self, net_engine, supplier, funded_bank):
        purchase = net_engine.record_purchase(
            supplier.id, TENANT, D("300"), D("300"), settlement_account_id=funded_bank.id
        )
        result = net_engine.record_return(
            supplier.id, TENANT, D("100"), purchase.transaction.serial,
            settlement_account_id=funded_bank.id,
        )

        assert result.account.current_balance == D("0.00")
        assert result.account.purchase_total == D("200.00")
        assert result.settlement_account.current_balance == D("800.00")
        assert net_engine.reconcile(supplier.id, TENANT).ok

    def test_gross_basis_still_moves_ledger(self, engine, customer, funded_bank):
        sale = engine.record_sale(customer.id, TENANT, D("100"), D("100"))
        result = engine.record_return(
            customer.id, TENANT, D("100"), sale.transaction.serial,
            settlement_account_id=funded_bank.id,
        )
        assert result.account.current_balance == D("0.00")
        assert result.transaction.balance_change == D("-100.00")


class TestDirectMovements:
    def test_deposit_then_withdraw(self, engine, bank):
        engine.record_deposit(bank.id, TENANT, D("250"))
        result = engine.record_withdrawal(bank.id, TENANT, D("100"))

        assert result.account.current_balance == D("150.00")
        assert result.transaction.kind == TransactionKind.WITHDRAWAL
        assert result.transaction.serial.startswith("WDR-")
        assert result.transaction.balance_change == D("-100.00")
        assert engine.reconcile(bank.id, TENANT).ok

    def test_cash_in_hand_deposit(self, engine, store):
        cash = store.get_or_create_cash_in_hand(TENANT)
        result = engine.record_deposit(cash.id, TENANT, D("75.50"))
        assert result.account.current_balance == D("75.50")

    def test_withdrawal_beyond_balance(self, engine, bank):
        engine.record_deposit(bank.id, TENANT, D("50"))
        with pytest.raises(InsufficientFundsError) as exc_info:
            engine.record_withdrawal(bank.id, TENANT, D("50.01"))
        assert exc_info.value.balance == D("50.00")
        assert engine.accounts.get_account(TENANT, bank.id).current_balance == D("50.00")

    def test_policy_may_allow_overdraft(self, session, clock, policy, bank):
        engine = BalanceReconciliationEngine(
            session, clock, replace(policy, allow_negative_subsidiary_balance=True)
        )
        result = engine.record_withdrawal(bank.id, TENANT, D("20"))
        assert result.account.current_balance == D("-20.00")

    def test_withdrawal_from_ledger_account(self, engine, customer):
        with pytest.raises(UnsupportedAccountError):
            engine.record_withdrawal(customer.id, TENANT, D("1"))
