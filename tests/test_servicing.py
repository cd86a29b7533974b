"""
Test suite for servicing module

Tests loan origination, payment registration and persistence of loans,
installments and receipts through the storage interface.
"""

import pytest
import threading
from decimal import Decimal
from datetime import date

from loan_servicing.currency import Money, Currency
from loan_servicing.exceptions import (
    InstallmentAlreadyPaidError, InvalidPaymentAmountError, InvalidTermsError,
    LoanHasPaymentsError, LoanNotFoundError
)
from loan_servicing.loans import AmortizationType, Frequency, InstallmentStatus, LoanStatus, LoanTerms
from loan_servicing.payments import PaymentOptions
from loan_servicing.servicing import LoanServicer
from loan_servicing.storage import InMemoryStorage


def dop(amount):
    return Money(Decimal(amount), Currency.DOP)


def weekly_terms(principal='1000.00'):
    return LoanTerms(
        principal=dop(principal),
        annual_rate_percent=Decimal('0'),
        term_count=4,
        frequency=Frequency.WEEKLY,
        start_date=date(2024, 1, 1)
    )


class FailingReceiptStorage(InMemoryStorage):
    """Storage that fails when a receipt is written"""

    def save(self, table, record_id, data):
        if table == "receipts":
            raise RuntimeError("disk full")
        super().save(table, record_id, data)


class TestLoanServicer:
    """Test loan servicing workflows"""

    def setup_method(self):
        """Set up test fixtures"""
        self.storage = InMemoryStorage()
        self.servicer = LoanServicer(self.storage, penalty_rate_percent=Decimal('5'))

    def test_originate_loan(self):
        loan = self.servicer.originate_loan("client-1", weekly_terms(), user_id="officer-1")

        assert loan.status == LoanStatus.ACTIVE
        assert len(loan.schedule) == 4
        assert len(self.storage.find("loans", {})) == 1
        assert len(self.storage.find("installments", {})) == 4

        stored = self.servicer.get_loan(loan.id)
        assert stored == loan

    def test_originate_with_interest_round_trips(self):
        terms = LoanTerms(
            principal=dop('10000'),
            annual_rate_percent=Decimal('12'),
            term_count=12,
            frequency=Frequency.MONTHLY,
            start_date=date(2024, 1, 1),
            closing_costs=dop('150')
        )
        loan = self.servicer.originate_loan("client-1", terms)

        assert self.servicer.get_loan(loan.id) == loan

    def test_invalid_terms_store_nothing(self):
        with pytest.raises(InvalidTermsError):
            self.servicer.originate_loan("client-1", weekly_terms('0'))

        assert len(self.storage.find("loans", {})) == 0
        assert len(self.storage.find("installments", {})) == 0

    def test_unknown_loan(self):
        assert self.servicer.get_loan("missing") is None

        with pytest.raises(LoanNotFoundError):
            self.servicer.register_payment("missing", 1)

    def test_register_payment(self):
        loan = self.servicer.originate_loan("client-1", weekly_terms())
        updated, receipt = self.servicer.register_payment(
            loan.id, 1, PaymentOptions(with_penalty=True), user_id="collector-1"
        )

        assert updated.installment(1).status == InstallmentStatus.PAID
        assert receipt.client_id == "client-1"
        assert receipt.data.penalty == dop('12.50')
        assert receipt.data.total_payment == dop('262.50')

        stored = self.servicer.get_loan(loan.id)
        assert stored == updated
        assert stored.total_paid == dop('262.50')

        receipts = self.servicer.get_receipts(loan.id)
        assert receipts == [receipt]

        entry = self.storage.load("installments", f"{loan.id}_1")
        assert entry["status"] == "paid"
        assert entry["paid_amount"] == "250.00"

    def test_repeated_payment_is_rejected(self):
        loan = self.servicer.originate_loan("client-1", weekly_terms())
        self.servicer.register_payment(loan.id, 1)

        with pytest.raises(InstallmentAlreadyPaidError):
            self.servicer.register_payment(loan.id, 1)

        assert len(self.servicer.get_receipts(loan.id)) == 1
        assert self.servicer.get_loan(loan.id).total_paid == dop('250.00')

    def test_loan_paid_off(self):
        loan = self.servicer.originate_loan("client-1", weekly_terms())
        for number in range(1, 5):
            loan, receipt = self.servicer.register_payment(loan.id, number)

        assert loan.status == LoanStatus.PAID
        assert receipt.data.remaining_balance.is_zero()
        assert self.servicer.get_loan(loan.id).is_paid_off
        assert [r.data.installment_number for r in self.servicer.get_receipts(loan.id)] == [1, 2, 3, 4]

    def test_register_custom_payment(self):
        loan = self.servicer.originate_loan("client-1", weekly_terms())
        updated, receipt = self.servicer.register_custom_payment(loan.id, 2, Decimal('100'))

        assert updated.installment(2).status == InstallmentStatus.PARTIAL
        assert receipt.data.is_partial_payment is True
        assert receipt.data.remaining_on_installment == dop('150.00')
        assert receipt.data.full_installment_amount == dop('250.00')

        stored_receipt = self.servicer.get_receipts(loan.id)[0]
        assert stored_receipt == receipt
        assert self.servicer.get_loan(loan.id).installment(2).paid_amount == dop('100.00')

    def test_rejected_custom_payment_stores_nothing(self):
        loan = self.servicer.originate_loan("client-1", weekly_terms())

        with pytest.raises(InvalidPaymentAmountError):
            self.servicer.register_custom_payment(loan.id, 1, '0')

        assert self.servicer.get_receipts(loan.id) == []
        assert self.servicer.get_loan(loan.id) == loan

    def test_get_client_loans(self):
        first = self.servicer.originate_loan("client-1", weekly_terms())
        second = self.servicer.originate_loan("client-1", weekly_terms('500'))
        self.servicer.originate_loan("client-2", weekly_terms())

        loans = self.servicer.get_client_loans("client-1")
        assert sorted(loan.id for loan in loans) == sorted([first.id, second.id])
        assert self.servicer.get_client_loans("client-3") == []

    def test_failed_receipt_rolls_back_loan(self):
        storage = FailingReceiptStorage()
        servicer = LoanServicer(storage)
        loan = servicer.originate_loan("client-1", weekly_terms())

        with pytest.raises(RuntimeError):
            servicer.register_payment(loan.id, 1)

        stored = servicer.get_loan(loan.id)
        assert stored == loan
        assert stored.installment(1).status == InstallmentStatus.PENDING
        assert len(storage.find("receipts", {})) == 0

    def test_concurrent_payments_of_same_installment(self):
        """Test that exactly one of several simultaneous payments succeeds"""
        loan = self.servicer.originate_loan("client-1", weekly_terms())
        successes = []
        failures = []
        start = threading.Barrier(5)

        def pay():
            start.wait()
            try:
                self.servicer.register_payment(loan.id, 1)
                successes.append(True)
            except InstallmentAlreadyPaidError:
                failures.append(True)

        threads = [threading.Thread(target=pay) for _ in range(5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        assert len(successes) == 1
        assert len(failures) == 4
        assert len(self.servicer.get_receipts(loan.id)) == 1
        assert self.servicer.get_loan(loan.id).total_paid == dop('250.00')


class TestRescheduleLoan:
    """Test replacing the terms of an unpaid loan"""

    def setup_method(self):
        """Set up test fixtures"""
        self.storage = InMemoryStorage()
        self.servicer = LoanServicer(self.storage)
        self.loan = self.servicer.originate_loan("client-1", weekly_terms())

    def test_reschedule_keeps_id_and_client(self):
        terms = LoanTerms(
            principal=dop('1200.00'),
            annual_rate_percent=Decimal('20'),
            term_count=3,
            frequency=Frequency.MONTHLY,
            start_date=date(2024, 2, 1),
            amortization_type=AmortizationType.FLAT
        )
        loan = self.servicer.reschedule_loan(self.loan.id, terms, user_id="officer-1")

        assert loan.id == self.loan.id
        assert loan.client_id == "client-1"
        assert loan.status == LoanStatus.ACTIVE
        assert loan.total_paid.is_zero()
        assert loan.total_interest == dop('240.00')
        assert [i.payment_amount for i in loan.schedule] == [dop('480.00')] * 3

        assert self.servicer.get_loan(loan.id) == loan
        assert len(self.storage.find("loans", {})) == 1
        assert len(self.storage.find("installments", {"loan_id": loan.id})) == 3
        assert self.storage.load("installments", f"{loan.id}_4") is None

    def test_reschedule_to_longer_term(self):
        terms = LoanTerms(
            principal=dop('1000.00'),
            annual_rate_percent=Decimal('0'),
            term_count=8,
            frequency=Frequency.WEEKLY,
            start_date=date(2024, 1, 1)
        )
        loan = self.servicer.reschedule_loan(self.loan.id, terms)

        assert len(loan.schedule) == 8
        assert self.servicer.get_loan(loan.id).schedule == loan.schedule

    def test_loan_with_payment_is_not_rescheduled(self):
        self.servicer.register_payment(self.loan.id, 1)

        with pytest.raises(LoanHasPaymentsError):
            self.servicer.reschedule_loan(self.loan.id, weekly_terms('2000'))

        assert self.servicer.get_loan(self.loan.id).terms == weekly_terms()

    def test_loan_with_partial_payment_is_not_rescheduled(self):
        self.servicer.register_custom_payment(self.loan.id, 2, '10')

        with pytest.raises(LoanHasPaymentsError):
            self.servicer.reschedule_loan(self.loan.id, weekly_terms('2000'))

    def test_invalid_terms_leave_loan_unchanged(self):
        with pytest.raises(InvalidTermsError):
            self.servicer.reschedule_loan(self.loan.id, weekly_terms('0'))

        assert self.servicer.get_loan(self.loan.id) == self.loan

    def test_unknown_loan(self):
        with pytest.raises(LoanNotFoundError):
            self.servicer.reschedule_loan("missing", weekly_terms())
