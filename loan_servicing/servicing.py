"""
Loan Servicing Module

Orchestrates loan origination, rescheduling and payment registration on top
of the pure amortization and payment engines: loads a loan snapshot, applies
the engine, and persists the updated loan, its installments and the new
receipt inside a single atomic storage block.
"""

from decimal import Decimal
from datetime import datetime, timezone, date
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
import threading
import uuid

from .amortization import create_loan
from .config import get_config
from .currency import Money, Currency
from .exceptions import LoanHasPaymentsError, LoanNotFoundError
from .loans import (
    AmortizationType, Frequency, Installment, InstallmentStatus, Loan, LoanStatus, LoanTerms, ReceiptData
)
from .logging_config import get_logger, log_action
from .payments import Amount, PaymentOptions, PaymentResult, apply_custom_payment, apply_payment
from .storage import StorageInterface


logger = get_logger(__name__)


@dataclass(frozen=True)
class Receipt:
    """Persisted record of a single payment event"""
    id: str
    created_at: datetime
    client_id: str
    data: ReceiptData


class LoanServicer:
    """
    Manages loans from origination through payoff
    """

    def __init__(
        self,
        storage: StorageInterface,
        penalty_rate_percent: Optional[Decimal] = None
    ):
        self.storage = storage
        self.penalty_rate_percent = penalty_rate_percent
        self._lock = threading.RLock()

        self.loans_table = "loans"
        self.installments_table = "installments"
        self.receipts_table = "receipts"

    def originate_loan(
        self,
        client_id: str,
        terms: LoanTerms,
        user_id: Optional[str] = None
    ) -> Loan:
        """
        Originate a new loan with its full schedule

        Args:
            client_id: Borrower client ID
            terms: Loan terms
            user_id: Operator originating the loan, for the log

        Returns:
            Created Loan object

        Raises:
            InvalidTermsError: If the terms cannot produce a schedule
        """
        loan = create_loan(
            loan_id=str(uuid.uuid4()),
            client_id=client_id,
            terms=terms,
            settle_final_installment=get_config().settle_final_installment
        )

        now = datetime.now(timezone.utc)
        with self.storage.atomic():
            self._save_loan(loan, created_at=now)

        log_action(
            logger, "info", "Loan originated",
            user_id=user_id, action="loan_originated", resource=f"loan:{loan.id}",
            extra={
                "client_id": client_id,
                "principal": terms.principal.to_string(),
                "annual_rate_percent": str(terms.annual_rate_percent),
                "term_count": terms.term_count,
                "frequency": terms.frequency.value,
                "amortization_type": terms.amortization_type.value,
                "total_interest": loan.total_interest.to_string()
            }
        )

        return loan

    def reschedule_loan(
        self,
        loan_id: str,
        terms: LoanTerms,
        user_id: Optional[str] = None
    ) -> Loan:
        """
        Replace the terms of a loan and rebuild its schedule

        The loan keeps its id and client and starts over as ACTIVE with
        nothing paid. Installment rows beyond the new term count are removed.

        Raises:
            LoanNotFoundError: If the loan does not exist
            LoanHasPaymentsError: If any installment is paid or partially paid
            InvalidTermsError: If the new terms cannot produce a schedule
        """
        with self._lock, self.storage.atomic():
            current = self.get_loan(loan_id)
            if not current:
                raise LoanNotFoundError(loan_id)
            if any(installment.status != InstallmentStatus.PENDING for installment in current.schedule):
                raise LoanHasPaymentsError(loan_id)

            loan = create_loan(
                loan_id=loan_id,
                client_id=current.client_id,
                terms=terms,
                settle_final_installment=get_config().settle_final_installment
            )

            for installment in current.schedule:
                if installment.number > terms.term_count:
                    self.storage.delete(self.installments_table, f"{loan_id}_{installment.number}")
            self._save_loan(loan)

        log_action(
            logger, "info", "Loan rescheduled",
            user_id=user_id, action="loan_rescheduled", resource=f"loan:{loan_id}",
            extra={
                "previous_term_count": current.terms.term_count,
                "term_count": terms.term_count,
                "amortization_type": terms.amortization_type.value,
                "total_interest": loan.total_interest.to_string()
            }
        )

        return loan

    def register_payment(
        self,
        loan_id: str,
        installment_number: int,
        options: Optional[PaymentOptions] = None,
        user_id: Optional[str] = None
    ) -> Tuple[Loan, Receipt]:
        """
        Pay an installment at its scheduled amount and persist the result

        Raises:
            LoanNotFoundError: If the loan does not exist
            InstallmentNotFoundError: If the installment does not exist
            InstallmentAlreadyPaidError: If the installment is already paid
        """
        return self._register(
            loan_id,
            lambda loan: apply_payment(
                loan, installment_number, options,
                penalty_rate_percent=self.penalty_rate_percent
            ),
            user_id
        )

    def register_custom_payment(
        self,
        loan_id: str,
        installment_number: int,
        amount: Amount,
        options: Optional[PaymentOptions] = None,
        user_id: Optional[str] = None
    ) -> Tuple[Loan, Receipt]:
        """
        Apply an operator-entered amount to an installment and persist the result

        Raises:
            LoanNotFoundError: If the loan does not exist
            InvalidPaymentAmountError: If the amount is rejected
        """
        return self._register(
            loan_id,
            lambda loan: apply_custom_payment(
                loan, installment_number, amount, options,
                penalty_rate_percent=self.penalty_rate_percent
            ),
            user_id
        )

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        """Get loan by ID"""
        loan_dict = self.storage.load(self.loans_table, loan_id)
        if loan_dict:
            return self._loan_from_dict(loan_dict)
        return None

    def get_client_loans(self, client_id: str) -> List[Loan]:
        """Get all loans for a client"""
        loans_data = self.storage.find(self.loans_table, {"client_id": client_id})
        return [self._loan_from_dict(data) for data in loans_data]

    def get_receipts(self, loan_id: str) -> List[Receipt]:
        """Get payment receipts for a loan, oldest first"""
        receipts_data = self.storage.find(self.receipts_table, {"loan_id": loan_id})
        receipts = [self._receipt_from_dict(data) for data in receipts_data]
        receipts.sort(key=lambda receipt: receipt.created_at)
        return receipts

    def _register(self, loan_id: str, apply, user_id: Optional[str]) -> Tuple[Loan, Receipt]:
        # Read-modify-write must not interleave for the same loan
        with self._lock, self.storage.atomic():
            loan = self.get_loan(loan_id)
            if not loan:
                raise LoanNotFoundError(loan_id)

            result: PaymentResult = apply(loan)

            receipt = Receipt(
                id=str(uuid.uuid4()),
                created_at=datetime.now(timezone.utc),
                client_id=loan.client_id,
                data=result.receipt
            )

            self._save_loan(result.loan)
            self._save_receipt(receipt)

        log_action(
            logger, "info", "Payment registered",
            user_id=user_id, action="payment_registered", resource=f"loan:{loan_id}",
            extra={
                "receipt_id": receipt.id,
                "installment_number": receipt.data.installment_number,
                "amount": str(receipt.data.payment_amount.amount),
                "penalty": str(receipt.data.penalty.amount),
                "remaining_balance": str(receipt.data.remaining_balance.amount),
                "loan_status": result.loan.status.value
            }
        )
        if result.loan.is_paid_off and not loan.is_paid_off:
            log_action(logger, "info", "Loan paid off", user_id=user_id,
                       action="loan_paid_off", resource=f"loan:{loan_id}")

        return result.loan, receipt

    def _save_loan(self, loan: Loan, created_at: Optional[datetime] = None) -> None:
        """Save loan and its installments to storage"""
        now = datetime.now(timezone.utc)
        existing = self.storage.load(self.loans_table, loan.id)

        loan_dict = self._loan_to_dict(loan)
        loan_dict['created_at'] = existing['created_at'] if existing else (created_at or now).isoformat()
        loan_dict['updated_at'] = now.isoformat()
        self.storage.save(self.loans_table, loan.id, loan_dict)

        for installment in loan.schedule:
            entry_id = f"{loan.id}_{installment.number}"
            self.storage.save(self.installments_table, entry_id, self._installment_to_dict(installment, loan.id))

    def _save_receipt(self, receipt: Receipt) -> None:
        """Save receipt to storage"""
        self.storage.save(self.receipts_table, receipt.id, self._receipt_to_dict(receipt))

    def _loan_to_dict(self, loan: Loan) -> Dict[str, Any]:
        """Convert loan to dictionary"""
        terms = loan.terms
        return {
            'id': loan.id,
            'client_id': loan.client_id,
            'status': loan.status.value,
            'currency': loan.currency.code,
            'total_paid': str(loan.total_paid.amount),
            'total_interest': str(loan.total_interest.amount),
            'terms': {
                'principal': str(terms.principal.amount),
                'annual_rate_percent': str(terms.annual_rate_percent),
                'term_count': terms.term_count,
                'frequency': terms.frequency.value,
                'start_date': terms.start_date.isoformat(),
                'closing_costs': str(terms.closing_costs.amount),
                'amortization_type': terms.amortization_type.value,
                'fixed_amount': str(terms.fixed_amount.amount) if terms.fixed_amount is not None else None
            }
        }

    def _loan_from_dict(self, data: Dict[str, Any]) -> Loan:
        """Convert dictionary to loan"""
        currency = Currency[data['currency']]
        terms_data = data['terms']

        terms = LoanTerms(
            principal=Money(Decimal(terms_data['principal']), currency),
            annual_rate_percent=Decimal(terms_data['annual_rate_percent']),
            term_count=terms_data['term_count'],
            frequency=Frequency(terms_data['frequency']),
            start_date=date.fromisoformat(terms_data['start_date']),
            closing_costs=Money(Decimal(terms_data['closing_costs']), currency),
            amortization_type=AmortizationType(terms_data.get('amortization_type', AmortizationType.FRENCH.value)),
            fixed_amount=Money(Decimal(terms_data['fixed_amount']), currency) if terms_data.get('fixed_amount') else None
        )

        entries = self.storage.find(self.installments_table, {"loan_id": data['id']})
        schedule = sorted(
            (self._installment_from_dict(entry, currency) for entry in entries),
            key=lambda installment: installment.number
        )

        return Loan(
            id=data['id'],
            client_id=data['client_id'],
            terms=terms,
            schedule=tuple(schedule),
            total_interest=Money(Decimal(data['total_interest']), currency),
            status=LoanStatus(data['status']),
            total_paid=Money(Decimal(data['total_paid']), currency)
        )

    def _installment_to_dict(self, installment: Installment, loan_id: str) -> Dict[str, Any]:
        """Convert installment to dictionary"""
        return {
            'loan_id': loan_id,
            'number': installment.number,
            'due_date': installment.due_date.isoformat(),
            'payment_amount': str(installment.payment_amount.amount),
            'interest_portion': str(installment.interest_portion.amount),
            'principal_portion': str(installment.principal_portion.amount),
            'balance_after': str(installment.balance_after.amount),
            'status': installment.status.value,
            'paid_amount': str(installment.paid_amount.amount),
            'paid_date': installment.paid_date.isoformat() if installment.paid_date else None
        }

    def _installment_from_dict(self, data: Dict[str, Any], currency: Currency) -> Installment:
        """Convert dictionary to installment"""
        def money(field: str) -> Money:
            return Money(Decimal(data[field]), currency)

        return Installment(
            number=data['number'],
            due_date=date.fromisoformat(data['due_date']),
            payment_amount=money('payment_amount'),
            interest_portion=money('interest_portion'),
            principal_portion=money('principal_portion'),
            balance_after=money('balance_after'),
            status=InstallmentStatus(data['status']),
            paid_amount=money('paid_amount'),
            paid_date=datetime.fromisoformat(data['paid_date']) if data.get('paid_date') else None
        )

    def _receipt_to_dict(self, receipt: Receipt) -> Dict[str, Any]:
        """Convert receipt to dictionary"""
        data = receipt.data

        def amount(value: Optional[Money]) -> Optional[str]:
            return str(value.amount) if value is not None else None

        return {
            'id': receipt.id,
            'created_at': receipt.created_at.isoformat(),
            'client_id': receipt.client_id,
            'loan_id': data.loan_id,
            'currency': data.payment_amount.currency.code,
            'installment_number': data.installment_number,
            'installment_due_date': data.installment_due_date.isoformat(),
            'payment_amount': amount(data.payment_amount),
            'penalty': amount(data.penalty),
            'with_penalty': data.with_penalty,
            'loan_principal': amount(data.loan_principal),
            'total_paid_after': amount(data.total_paid_after),
            'remaining_balance': amount(data.remaining_balance),
            'is_partial_payment': data.is_partial_payment,
            'remaining_on_installment': amount(data.remaining_on_installment),
            'full_installment_amount': amount(data.full_installment_amount)
        }

    def _receipt_from_dict(self, data: Dict[str, Any]) -> Receipt:
        """Convert dictionary to receipt"""
        currency = Currency[data['currency']]

        def money(field: str) -> Optional[Money]:
            if data.get(field) is None:
                return None
            return Money(Decimal(data[field]), currency)

        return Receipt(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            client_id=data['client_id'],
            data=ReceiptData(
                loan_id=data['loan_id'],
                installment_number=data['installment_number'],
                installment_due_date=date.fromisoformat(data['installment_due_date']),
                payment_amount=money('payment_amount'),
                penalty=money('penalty'),
                with_penalty=data['with_penalty'],
                loan_principal=money('loan_principal'),
                total_paid_after=money('total_paid_after'),
                remaining_balance=money('remaining_balance'),
                is_partial_payment=data['is_partial_payment'],
                remaining_on_installment=money('remaining_on_installment'),
                full_installment_amount=money('full_installment_amount')
            )
        )
