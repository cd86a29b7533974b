"""
Pydantic schemas for API requests and responses
"""

from decimal import Decimal
from datetime import date
from typing import List, Optional
from pydantic import BaseModel, Field

from ..amortization import ScheduleSummary, require_valid_terms, validate_terms
from ..config import get_config
from ..currency import Money, Currency, MAX_AMOUNT, decimal_from_string
from ..exceptions import InvalidPaymentAmountError, InvalidTermsError
from ..loans import AmortizationType, Frequency, Installment, Loan, LoanTerms, ReceiptData
from ..payments import PaymentOptions
from ..servicing import Receipt


class MoneyModel(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    currency: str = Field(..., description="Currency code (DOP, USD, etc.)")

    @classmethod
    def from_money(cls, money: Optional[Money]) -> Optional['MoneyModel']:
        if money is None:
            return None
        return cls(amount=str(money.amount), currency=money.currency.code)


class LoanTermsModel(BaseModel):
    principal: str = Field(..., description="Decimal amount as string")
    annual_rate_percent: str = Field(..., description="Annual rate in percent, e.g. \"12\"")
    term_count: int = Field(..., description="Number of installments")
    frequency: str = Field(..., description="daily, weekly, biweekly, monthly (or Diario, Semanal, Quincenal, Mensual)")
    start_date: date
    closing_costs: Optional[str] = None
    currency: Optional[str] = Field(None, description="Currency code, defaults to configuration")
    amortization_type: str = Field("french", description="french, interest_only, flat, fixed_profit, fixed_payment")
    fixed_amount: Optional[str] = Field(None, description="Profit (fixed_profit) or installment (fixed_payment)")

    def to_loan_terms(self) -> LoanTerms:
        """
        Convert to domain terms

        Raises:
            InvalidTermsError: With every problem found in the request
        """
        currency_code = (self.currency or get_config().default_currency).upper()
        if currency_code not in Currency.__members__:
            raise InvalidTermsError([f"Unsupported currency: {currency_code}"])
        currency = Currency[currency_code]

        principal = _parse_decimal(self.principal)
        rate = _parse_decimal(self.annual_rate_percent)
        fixed_amount = _parse_decimal(self.fixed_amount) if self.fixed_amount else None
        errors = validate_terms(
            principal, rate, self.term_count, self.frequency, self.start_date,
            self.amortization_type, fixed_amount
        )

        closing_costs = Decimal('0')
        if self.closing_costs:
            parsed = _parse_decimal(self.closing_costs)
            if parsed is None or parsed < 0:
                errors.append("Closing costs cannot be negative")
            elif parsed > MAX_AMOUNT:
                errors.append("Closing costs exceed the maximum supported amount")
            else:
                closing_costs = parsed

        if errors:
            raise InvalidTermsError(errors)

        amortization_type = AmortizationType.parse(self.amortization_type)
        try:
            terms = LoanTerms(
                principal=Money(principal, currency),
                annual_rate_percent=rate,
                term_count=self.term_count,
                frequency=Frequency.parse(self.frequency),
                start_date=self.start_date,
                closing_costs=Money(closing_costs, currency),
                amortization_type=amortization_type,
                fixed_amount=Money(fixed_amount, currency) if amortization_type.uses_fixed_amount else None
            )
        except ValueError as e:
            raise InvalidTermsError([str(e)])

        require_valid_terms(terms)
        return terms


class CreateLoanRequest(BaseModel):
    client_id: str
    terms: LoanTermsModel


class PaymentRequest(BaseModel):
    installment_number: int
    with_penalty: bool = False
    penalty_amount: Optional[str] = Field(None, description="Overrides the configured penalty rate")

    def to_options(self) -> PaymentOptions:
        penalty_override = None
        if self.penalty_amount not in (None, ""):
            penalty_override = _parse_decimal(self.penalty_amount)
            if penalty_override is None:
                raise InvalidPaymentAmountError(f"Invalid penalty amount: {self.penalty_amount}")
        return PaymentOptions(with_penalty=self.with_penalty, penalty_override=penalty_override)


class CustomPaymentRequest(PaymentRequest):
    amount: str = Field(..., description="Collected amount, penalty excluded")

    def to_amount(self) -> Decimal:
        amount = _parse_decimal(self.amount)
        if amount is None:
            raise InvalidPaymentAmountError(f"Invalid amount: {self.amount}")
        return amount


class InstallmentModel(BaseModel):
    number: int
    due_date: date
    payment_amount: MoneyModel
    interest_portion: MoneyModel
    principal_portion: MoneyModel
    balance_after: MoneyModel
    status: str
    paid_amount: MoneyModel
    paid_date: Optional[str] = None

    @classmethod
    def from_installment(cls, installment: Installment) -> 'InstallmentModel':
        return cls(
            number=installment.number,
            due_date=installment.due_date,
            payment_amount=MoneyModel.from_money(installment.payment_amount),
            interest_portion=MoneyModel.from_money(installment.interest_portion),
            principal_portion=MoneyModel.from_money(installment.principal_portion),
            balance_after=MoneyModel.from_money(installment.balance_after),
            status=installment.status.value,
            paid_amount=MoneyModel.from_money(installment.paid_amount),
            paid_date=installment.paid_date.isoformat() if installment.paid_date else None
        )


class ScheduleSummaryModel(BaseModel):
    installment_amount: MoneyModel
    total_interest: MoneyModel
    total_principal: MoneyModel
    total_payment: MoneyModel
    closing_costs: MoneyModel
    cost_of_credit: MoneyModel
    effective_rate_percent: str

    @classmethod
    def from_summary(cls, summary: ScheduleSummary) -> 'ScheduleSummaryModel':
        return cls(
            installment_amount=MoneyModel.from_money(summary.installment_amount),
            total_interest=MoneyModel.from_money(summary.total_interest),
            total_principal=MoneyModel.from_money(summary.total_principal),
            total_payment=MoneyModel.from_money(summary.total_payment),
            closing_costs=MoneyModel.from_money(summary.closing_costs),
            cost_of_credit=MoneyModel.from_money(summary.cost_of_credit),
            effective_rate_percent=str(summary.effective_rate_percent)
        )


class LoanModel(BaseModel):
    id: str
    client_id: str
    status: str
    principal: MoneyModel
    closing_costs: MoneyModel
    annual_rate_percent: str
    term_count: int
    frequency: str
    start_date: date
    amortization_type: str
    fixed_amount: Optional[MoneyModel] = None
    total_paid: MoneyModel
    total_interest: MoneyModel
    remaining_balance: MoneyModel
    schedule: List[InstallmentModel]

    @classmethod
    def from_loan(cls, loan: Loan) -> 'LoanModel':
        return cls(
            id=loan.id,
            client_id=loan.client_id,
            status=loan.status.value,
            principal=MoneyModel.from_money(loan.terms.principal),
            closing_costs=MoneyModel.from_money(loan.terms.closing_costs),
            annual_rate_percent=str(loan.terms.annual_rate_percent),
            term_count=loan.terms.term_count,
            frequency=loan.terms.frequency.value,
            start_date=loan.terms.start_date,
            amortization_type=loan.terms.amortization_type.value,
            fixed_amount=MoneyModel.from_money(loan.terms.fixed_amount),
            total_paid=MoneyModel.from_money(loan.total_paid),
            total_interest=MoneyModel.from_money(loan.total_interest),
            remaining_balance=MoneyModel.from_money(loan.remaining_balance),
            schedule=[InstallmentModel.from_installment(i) for i in loan.schedule]
        )


class ReceiptModel(BaseModel):
    id: Optional[str] = None
    created_at: Optional[str] = None
    loan_id: str
    installment_number: int
    installment_due_date: date
    payment_amount: MoneyModel
    penalty: MoneyModel
    total_payment: MoneyModel
    with_penalty: bool
    loan_principal: MoneyModel
    total_paid_after: MoneyModel
    remaining_balance: MoneyModel
    is_partial_payment: bool = False
    remaining_on_installment: Optional[MoneyModel] = None
    full_installment_amount: Optional[MoneyModel] = None

    @classmethod
    def from_receipt(cls, receipt: Receipt) -> 'ReceiptModel':
        data: ReceiptData = receipt.data
        return cls(
            id=receipt.id,
            created_at=receipt.created_at.isoformat(),
            loan_id=data.loan_id,
            installment_number=data.installment_number,
            installment_due_date=data.installment_due_date,
            payment_amount=MoneyModel.from_money(data.payment_amount),
            penalty=MoneyModel.from_money(data.penalty),
            total_payment=MoneyModel.from_money(data.total_payment),
            with_penalty=data.with_penalty,
            loan_principal=MoneyModel.from_money(data.loan_principal),
            total_paid_after=MoneyModel.from_money(data.total_paid_after),
            remaining_balance=MoneyModel.from_money(data.remaining_balance),
            is_partial_payment=data.is_partial_payment,
            remaining_on_installment=MoneyModel.from_money(data.remaining_on_installment),
            full_installment_amount=MoneyModel.from_money(data.full_installment_amount)
        )


def _parse_decimal(value: str) -> Optional[Decimal]:
    try:
        result = decimal_from_string(value)
    except ValueError:
        return None
    return result if result.is_finite() else None
