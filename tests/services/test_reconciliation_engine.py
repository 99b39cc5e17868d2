"""
Tests for BalanceReconciliationEngine.

Covers:
- Sales and purchases under gross and net balance basis
- Payments: FIFO, explicit targets, overpayment with full rollback
- Returns: cap against the original invoice, unreferenced returns
- Input validation and account-type checks
- reconcile(): clean accounts and detected drift
"""

from dataclasses import replace
from decimal import Decimal

import pytest
from sqlalchemy import func, select, update

from ledger_kernel.domain.dtos import TransactionMeta
from ledger_kernel.domain.policy import BalanceBasis
from ledger_kernel.domain.values import TransactionKind
from ledger_kernel.exceptions import (
    InvalidAmountError,
    OverpaymentError,
    OverReturnError,
    TenantMismatchError,
    UnsupportedAccountError,
    ValidationError,
)
from ledger_kernel.models.account import Account
from ledger_kernel.models.payment_allocation import PaymentAllocation
from ledger_kernel.models.transaction import LedgerTransaction
from ledger_kernel.services.reconciliation_engine import BalanceReconciliationEngine
from tests.conftest import OTHER_TENANT, TENANT

D = Decimal


def _row_count(session, account_id) -> int:
    return session.execute(
        select(func.count(LedgerTransaction.id)).where(
            LedgerTransaction.account_id == account_id
        )
    ).scalar_one()


class TestInvoices:
    def test_sale_moves_receivable_by_total(self, engine, customer):
        result = engine.record_sale(customer.id, TENANT, D("1000"), D("300"))

        assert result.account.current_balance == D("1000.00")
        assert result.account.sale_total == D("1000.00")
        assert result.account.deposited_sale_total == D("300.00")
        assert result.transaction.kind == TransactionKind.SALE
        assert result.transaction.balance_change == D("1000.00")
        assert result.transaction.remaining_amount == D("700.00")
        assert result.settlement_transaction is None

    def test_purchase_moves_payable(self, engine, supplier):
        result = engine.record_purchase(supplier.id, TENANT, D("500"), D("100"))

        assert result.account.current_balance == D("-500.00")
        assert result.account.purchase_total == D("500.00")
        assert result.account.deposited_purchase_total == D("100.00")
        assert result.transaction.serial.startswith("PUR-")

    def test_net_basis(self, session, clock, policy, customer):
        engine = BalanceReconciliationEngine(
            session, clock, replace(policy, balance_basis=BalanceBasis.NET)
        )
        result = engine.record_sale(customer.id, TENANT, D("1000"), D("300"))
        assert result.account.current_balance == D("700.00")
        assert engine.reconcile(customer.id, TENANT).ok

    def test_opening_balance_is_the_starting_point(self, engine, make_account):
        account = make_account(name="Old customer", opening_balance=D("250"))
        result = engine.record_sale(account.id, TENANT, D("100"))
        assert result.account.current_balance == D("350.00")

    def test_meta_is_recorded(self, engine, customer):
        meta = TransactionMeta(actor_id="clerk-7", description="counter sale", source_id="bill-9")
        result = engine.record_sale(customer.id, TENANT, D("10"), meta=meta)
        assert result.transaction.created_by == "clerk-7"
        assert result.transaction.description == "counter sale"
        assert result.transaction.source_id == "bill-9"

    def test_logs_sale_recorded(self, engine, customer, captured_logs):
        result = engine.record_sale(customer.id, TENANT, D("10"))
        records = [r for r in captured_logs() if r["message"] == "sale_recorded"]
        assert len(records) == 1
        assert records[0]["serial"] == result.transaction.serial
        assert records[0]["current_balance"] == "10.00"


class TestPayments:
    def test_payment_clears_invoice(self, engine, customer):
        sale = engine.record_sale(customer.id, TENANT, D("1000"), D("300"))
        result = engine.record_payment(
            customer.id, TENANT, D("700"), [sale.transaction.serial]
        )

        assert result.account.current_balance == D("300.00")
        assert result.account.deposited_sale_total == D("1000.00")
        assert result.transaction.total_amount == D("0")
        assert result.transaction.balance_change == D("-700.00")
        assert [(a.invoice_serial, a.amount_applied) for a in result.allocations] == [
            (sale.transaction.serial, D("700.00"))
        ]
        invoice = engine.ledger.get_by_serial(TENANT, sale.transaction.serial)
        assert invoice.remaining_amount == D("0")
        assert engine.reconcile(customer.id, TENANT).ok

    def test_overpayment_changes_nothing(self, session, engine, customer):
        sale = engine.record_sale(customer.id, TENANT, D("1000"), D("300"))

        with pytest.raises(OverpaymentError):
            engine.record_payment(customer.id, TENANT, D("1000"))

        account = engine.accounts.get_account(TENANT, customer.id)
        assert account.current_balance == D("1000.00")
        assert account.deposited_sale_total == D("300.00")
        assert engine.ledger.get_by_serial(TENANT, sale.transaction.serial).remaining_amount == D("700.00")
        assert _row_count(session, customer.id) == 1

    def test_failed_payment_keeps_earlier_invoices_untouched(self, session, engine, customer):
        first = engine.record_sale(customer.id, TENANT, D("100"))
        second = engine.record_sale(customer.id, TENANT, D("100"))

        with pytest.raises(OverpaymentError):
            engine.record_payment(customer.id, TENANT, D("250"))

        for serial in (first.transaction.serial, second.transaction.serial):
            assert engine.ledger.get_by_serial(TENANT, serial).remaining_amount == D("100.00")
        assert session.query(PaymentAllocation).count() == 0
        assert engine.reconcile(customer.id, TENANT).ok

    def test_fifo_across_invoices(self, engine, customer):
        engine.record_sale(customer.id, TENANT, D("100"))
        engine.record_sale(customer.id, TENANT, D("100"))
        result = engine.record_payment(customer.id, TENANT, D("150"))

        assert [a.amount_applied for a in result.allocations] == [D("100.00"), D("50.00")]
        assert result.account.current_balance == D("50.00")

    def test_supplier_payment_reduces_payable(self, engine, supplier):
        engine.record_purchase(supplier.id, TENANT, D("500"), D("100"))
        result = engine.record_payment(supplier.id, TENANT, D("400"))

        assert result.transaction.balance_change == D("400.00")
        assert result.account.current_balance == D("-100.00")
        assert result.account.deposited_purchase_total == D("500.00")
        assert engine.reconcile(supplier.id, TENANT).ok

    def test_payment_with_no_open_invoice(self, engine, customer):
        with pytest.raises(OverpaymentError):
            engine.record_payment(customer.id, TENANT, D("1"))

    @pytest.mark.parametrize("amount", ["0", "-5"])
    def test_non_positive_amount(self, engine, customer, amount):
        with pytest.raises(InvalidAmountError):
            engine.record_payment(customer.id, TENANT, D(amount))


class TestReturns:
    def test_over_return_rejected(self, engine, customer, captured_logs):
        sale = engine.record_sale(customer.id, TENANT, D("150"))

        with pytest.raises(OverReturnError) as exc_info:
            engine.record_return(customer.id, TENANT, D("200"), sale.transaction.serial)

        assert exc_info.value.original_total == D("150.00")
        assert engine.accounts.get_account(TENANT, customer.id).current_balance == D("150.00")
        assert any(r["message"] == "return_cap_rejected" for r in captured_logs())

    def test_cap_is_cumulative(self, engine, customer):
        sale = engine.record_sale(customer.id, TENANT, D("150"))
        serial = sale.transaction.serial

        engine.record_return(customer.id, TENANT, D("100"), serial)
        last = engine.record_return(customer.id, TENANT, D("50"), serial)
        assert last.account.current_balance == D("0.00")
        assert last.account.sale_total == D("0.00")

        with pytest.raises(OverReturnError) as exc_info:
            engine.record_return(customer.id, TENANT, D("0.01"), serial)
        assert exc_info.value.already_returned == D("150.00")

    def test_return_links_to_original(self, engine, customer):
        sale = engine.record_sale(customer.id, TENANT, D("80"))
        result = engine.record_return(customer.id, TENANT, D("30"), sale.transaction.serial)

        assert result.transaction.kind == TransactionKind.RETURN
        assert result.transaction.original_transaction_id == sale.transaction.id
        assert result.transaction.balance_change == D("-30.00")
        assert result.transaction.remaining_amount == D("-30.00")

    def test_purchase_return_on_supplier(self, engine, supplier):
        purchase = engine.record_purchase(supplier.id, TENANT, D("300"))
        result = engine.record_return(supplier.id, TENANT, D("100"), purchase.transaction.serial)

        assert result.transaction.balance_change == D("100.00")
        assert result.account.current_balance == D("-200.00")
        assert result.account.purchase_total == D("200.00")
        assert engine.reconcile(supplier.id, TENANT).ok

    def test_unreferenced_return_uses_account_invoice_kind(self, engine, customer):
        engine.record_sale(customer.id, TENANT, D("100"))
        result = engine.record_return(customer.id, TENANT, D("40"))

        assert result.transaction.original_transaction_id is None
        assert result.account.current_balance == D("60.00")
        assert result.account.sale_total == D("60.00")
        assert engine.reconcile(customer.id, TENANT).ok

    def test_returned_invoice_is_not_payable(self, session, engine, customer):
        sale = engine.record_sale(customer.id, TENANT, D("100"))
        engine.record_return(customer.id, TENANT, D("100"), sale.transaction.serial)

        with pytest.raises(OverpaymentError):
            engine.record_payment(customer.id, TENANT, D("100"))

        assert engine.accounts.get_account(TENANT, customer.id).current_balance == D("0.00")
        assert _row_count(session, customer.id) == 2
        assert session.query(PaymentAllocation).count() == 0

    def test_partial_return_limits_payment(self, engine, customer):
        sale = engine.record_sale(customer.id, TENANT, D("100"))
        serial = sale.transaction.serial
        engine.record_return(customer.id, TENANT, D("40"), serial)

        with pytest.raises(OverpaymentError):
            engine.record_payment(customer.id, TENANT, D("60.01"))

        result = engine.record_payment(customer.id, TENANT, D("60"))
        assert [(a.invoice_serial, a.amount_applied) for a in result.allocations] == [
            (serial, D("60.00"))
        ]
        assert result.account.current_balance == D("0.00")
        assert engine.reconcile(customer.id, TENANT).ok

    def test_payment_skips_returned_target(self, engine, customer):
        returned = engine.record_sale(customer.id, TENANT, D("100"))
        open_sale = engine.record_sale(customer.id, TENANT, D("50"))
        engine.record_return(customer.id, TENANT, D("100"), returned.transaction.serial)

        result = engine.record_payment(
            customer.id,
            TENANT,
            D("50"),
            [returned.transaction.serial, open_sale.transaction.serial],
        )

        assert [(a.invoice_serial, a.amount_applied) for a in result.allocations] == [
            (open_sale.transaction.serial, D("50.00"))
        ]
        assert result.account.current_balance == D("0.00")

    def test_original_on_another_account(self, engine, customer, make_account):
        other = make_account(name="Someone else")
        sale = engine.record_sale(other.id, TENANT, D("100"))
        with pytest.raises(ValidationError):
            engine.record_return(customer.id, TENANT, D("10"), sale.transaction.serial)

    def test_original_must_be_an_invoice(self, engine, customer):
        engine.record_sale(customer.id, TENANT, D("100"))
        payment = engine.record_payment(customer.id, TENANT, D("50"))
        with pytest.raises(ValidationError):
            engine.record_return(customer.id, TENANT, D("10"), payment.transaction.serial)


class TestValidation:
    @pytest.mark.parametrize(
        "total, deposited",
        [(D("-1"), D("0")), (D("100"), D("-1")), (D("100"), D("100.01"))],
    )
    def test_invalid_invoice_amounts(self, engine, customer, total, deposited):
        with pytest.raises(InvalidAmountError):
            engine.record_sale(customer.id, TENANT, total, deposited)

    def test_non_numeric_amount(self, engine, customer):
        with pytest.raises(ValidationError) as exc_info:
            engine.record_sale(customer.id, TENANT, "a lot")
        assert exc_info.value.field == "total_amount"

    def test_amounts_are_rounded_to_cents(self, engine, customer):
        result = engine.record_sale(customer.id, TENANT, D("10.005"))
        assert result.transaction.total_amount == D("10.01")

    def test_sale_on_bank_account(self, engine, bank):
        with pytest.raises(UnsupportedAccountError):
            engine.record_sale(bank.id, TENANT, D("10"))

    def test_deposit_on_ledger_account(self, engine, customer):
        with pytest.raises(UnsupportedAccountError):
            engine.record_deposit(customer.id, TENANT, D("10"))

    def test_other_tenant(self, engine, customer):
        with pytest.raises(TenantMismatchError):
            engine.record_sale(customer.id, OTHER_TENANT, D("10"))

    def test_failed_operation_leaves_no_row(self, session, engine, customer):
        with pytest.raises(OverpaymentError):
            engine.record_payment(customer.id, TENANT, D("5"))
        assert _row_count(session, customer.id) == 0


class TestReconcile:
    def test_clean_account(self, engine, customer, captured_logs):
        engine.record_sale(customer.id, TENANT, D("500"), D("100"))
        engine.record_payment(customer.id, TENANT, D("200"))
        engine.record_return(customer.id, TENANT, D("50"))

        report = engine.reconcile(customer.id, TENANT)

        assert report.ok
        assert report.transaction_count == 3
        assert report.transaction_sum == D("250.00")
        assert report.expected_balance == report.current_balance == D("250.00")
        assert any(r["message"] == "reconciliation_ok" for r in captured_logs())

    def test_empty_account(self, engine, make_account):
        account = make_account(name="Fresh", opening_balance=D("12"))
        report = engine.reconcile(account.id, TENANT)
        assert report.ok
        assert report.transaction_count == 0
        assert report.expected_balance == D("12.00")

    def test_detects_balance_drift(self, session, engine, customer, captured_logs):
        engine.record_sale(customer.id, TENANT, D("100"))
        session.execute(
            update(Account)
            .where(Account.id == customer.id)
            .values(current_balance=D("130"))
        )
        session.expire_all()

        report = engine.reconcile(customer.id, TENANT)

        assert not report.ok
        assert report.drift == D("30.00")
        drift_logs = [r for r in captured_logs() if r["message"] == "balance_drift_detected"]
        assert drift_logs[0]["drift"] == "30.00"

    def test_detects_counter_drift(self, session, engine, customer):
        engine.record_sale(customer.id, TENANT, D("100"))
        row = session.get(Account, customer.id)
        row.sale_total = D("90")
        session.flush()

        report = engine.reconcile(customer.id, TENANT)

        assert report.drift == D("0")
        assert report.counter_drift == {"sale_total": D("-10.00")}
        assert not report.ok
