"""
Loan Module

Value objects for the loan aggregate: terms, installments, the loan itself and
the receipt data produced by a payment. All objects are immutable; the
schedule and payment engines return new instances instead of mutating.
"""

from decimal import Decimal, ROUND_HALF_UP
from datetime import datetime, date, timedelta
from dataclasses import dataclass
from typing import List, Optional, Tuple
from enum import Enum

from .config import get_config
from .currency import Money, Currency


class Frequency(Enum):
    """Payment frequency options"""
    DAILY = "daily"          # 365 payments per year
    WEEKLY = "weekly"        # 52 payments per year
    BIWEEKLY = "biweekly"    # 24 payments per year (quincenal)
    MONTHLY = "monthly"      # 12 payments per year

    @property
    def periods_per_year(self) -> int:
        """Get number of payments per year"""
        return _PERIODS_PER_YEAR[self]

    @property
    def days_per_period(self) -> int:
        """Get days between due dates"""
        return _DAYS_PER_PERIOD[self]

    @classmethod
    def parse(cls, value: str) -> 'Frequency':
        """
        Parse a frequency from its value, its name or its Spanish label

        Raises:
            ValueError: If the value is not a known frequency
        """
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower()
        for frequency in cls:
            if key in (frequency.value, frequency.name.lower()):
                return frequency
        if key in _SPANISH_LABELS:
            return _SPANISH_LABELS[key]
        raise ValueError(f"Unknown payment frequency: {value}")


_PERIODS_PER_YEAR = {
    Frequency.DAILY: 365,
    Frequency.WEEKLY: 52,
    Frequency.BIWEEKLY: 24,
    Frequency.MONTHLY: 12,
}

_DAYS_PER_PERIOD = {
    Frequency.DAILY: 1,
    Frequency.WEEKLY: 7,
    Frequency.BIWEEKLY: 15,
    Frequency.MONTHLY: 30,
}

_SPANISH_LABELS = {
    "diario": Frequency.DAILY,
    "semanal": Frequency.WEEKLY,
    "quincenal": Frequency.BIWEEKLY,
    "mensual": Frequency.MONTHLY,
}


class AmortizationType(Enum):
    """How the schedule splits payments into interest and principal"""
    FRENCH = "french"                # Equal installments, interest on the declining balance
    INTEREST_ONLY = "interest_only"  # Interest every period, principal never amortized
    FLAT = "flat"                    # Rate applied once to the financed amount
    FIXED_PROFIT = "fixed_profit"    # Agreed profit amount spread over the term
    FIXED_PAYMENT = "fixed_payment"  # Agreed installment amount, profit is what exceeds the principal

    @property
    def uses_fixed_amount(self) -> bool:
        """Whether terms must carry a fixed profit or payment amount"""
        return self in (AmortizationType.FIXED_PROFIT, AmortizationType.FIXED_PAYMENT)

    @classmethod
    def parse(cls, value: str) -> 'AmortizationType':
        """
        Parse an amortization type from its value or its name

        Raises:
            ValueError: If the value is not a known amortization type
        """
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower()
        for amortization_type in cls:
            if key == amortization_type.value:
                return amortization_type
        raise ValueError(f"Unknown amortization type: {value}")


class InstallmentStatus(Enum):
    """Installment states"""
    PENDING = "pending"
    PARTIAL = "partial"    # Only reachable through a custom payment
    PAID = "paid"


class LoanStatus(Enum):
    """Loan lifecycle states"""
    ACTIVE = "active"
    PAID = "paid"


@dataclass(frozen=True)
class LoanTerms:
    """Loan terms and conditions"""
    principal: Money
    annual_rate_percent: Decimal          # e.g. 12 for 12% a year
    term_count: int                       # Number of installments
    frequency: Frequency
    start_date: date
    closing_costs: Optional[Money] = None  # Financed together with the principal
    amortization_type: AmortizationType = AmortizationType.FRENCH
    fixed_amount: Optional[Money] = None   # Profit (FIXED_PROFIT) or installment (FIXED_PAYMENT)

    def __post_init__(self):
        if not isinstance(self.annual_rate_percent, Decimal):
            object.__setattr__(self, 'annual_rate_percent', Decimal(str(self.annual_rate_percent)))

        if self.closing_costs is None:
            object.__setattr__(self, 'closing_costs', Money.zero(self.principal.currency))

        # Validate currency consistency
        if self.closing_costs.currency != self.principal.currency:
            raise ValueError("Closing costs currency must match principal currency")
        if self.fixed_amount is not None and self.fixed_amount.currency != self.principal.currency:
            raise ValueError("Fixed amount currency must match principal currency")

    @property
    def currency(self) -> Currency:
        return self.principal.currency

    @property
    def financed_amount(self) -> Money:
        """Principal plus closing costs, the amount the schedule amortizes"""
        return self.principal + self.closing_costs

    @property
    def rate_per_period(self) -> Decimal:
        """Periodic rate as a fraction, e.g. 0.01 for 12% paid monthly"""
        return (self.annual_rate_percent / Decimal('100')) / Decimal(self.frequency.periods_per_year)


@dataclass(frozen=True)
class Installment:
    """Single scheduled payment obligation within a loan"""
    number: int
    due_date: date
    payment_amount: Money
    interest_portion: Money
    principal_portion: Money
    balance_after: Money
    status: InstallmentStatus = InstallmentStatus.PENDING
    paid_amount: Optional[Money] = None
    paid_date: Optional[datetime] = None

    def __post_init__(self):
        if self.paid_amount is None:
            object.__setattr__(self, 'paid_amount', Money.zero(self.payment_amount.currency))

        # Validate that payment equals principal + interest
        calculated_payment = self.principal_portion + self.interest_portion
        tolerance = self.payment_amount.currency.minor_unit
        if abs(calculated_payment.amount - self.payment_amount.amount) > tolerance:
            raise ValueError(f"Payment amount {self.payment_amount.to_string()} does not equal "
                             f"principal {self.principal_portion.to_string()} + "
                             f"interest {self.interest_portion.to_string()}")

    @property
    def is_paid(self) -> bool:
        return self.status == InstallmentStatus.PAID

    @property
    def outstanding(self) -> Money:
        """Amount still owed on this installment, excluding penalties"""
        return (self.payment_amount - self.paid_amount).clamp_at_zero()


@dataclass(frozen=True)
class Loan:
    """Loan aggregate with its schedule and running totals"""
    id: str
    client_id: str
    terms: LoanTerms
    schedule: Tuple[Installment, ...]
    total_interest: Money
    status: LoanStatus = LoanStatus.ACTIVE
    total_paid: Optional[Money] = None

    def __post_init__(self):
        object.__setattr__(self, 'schedule', tuple(self.schedule))
        if self.total_paid is None:
            object.__setattr__(self, 'total_paid', Money.zero(self.terms.currency))

    @property
    def currency(self) -> Currency:
        return self.terms.currency

    @property
    def is_paid_off(self) -> bool:
        return self.status == LoanStatus.PAID

    @property
    def remaining_balance(self) -> Money:
        """Financed amount plus projected interest minus everything collected"""
        return (self.terms.financed_amount + self.total_interest - self.total_paid).clamp_at_zero()

    def installment(self, number: int) -> Optional[Installment]:
        """Get installment by number"""
        for installment in self.schedule:
            if installment.number == number:
                return installment
        return None


@dataclass(frozen=True)
class ReceiptData:
    """What happened in a single payment, for the caller to persist as a Receipt"""
    loan_id: str
    installment_number: int
    installment_due_date: date
    payment_amount: Money                 # Base amount, penalty excluded
    penalty: Money
    with_penalty: bool
    loan_principal: Money
    total_paid_after: Money
    remaining_balance: Money
    is_partial_payment: bool = False
    remaining_on_installment: Optional[Money] = None
    full_installment_amount: Optional[Money] = None

    @property
    def total_payment(self) -> Money:
        """Base amount plus penalty"""
        return self.payment_amount + self.penalty


def loan_progress(loan: Loan) -> int:
    """Percentage (0-100) of installments already paid"""
    if not loan.schedule:
        return 0
    paid = sum(1 for installment in loan.schedule if installment.is_paid)
    return int((Decimal(paid) * 100 / Decimal(len(loan.schedule))).to_integral_value(rounding=ROUND_HALF_UP))


def next_installment(loan: Loan) -> Optional[Installment]:
    """First installment that is not fully paid"""
    for installment in loan.schedule:
        if not installment.is_paid:
            return installment
    return None


def overdue_installments(loan: Loan, as_of: date, grace_days: Optional[int] = None) -> List[Installment]:
    """
    Installments not fully paid whose due date has passed

    Args:
        loan: Loan to inspect
        as_of: Reference date, usually today
        grace_days: Days after the due date before an installment counts as
            overdue; defaults to config

    Returns:
        Overdue installments ordered by number
    """
    if grace_days is None:
        grace_days = get_config().grace_days
    cutoff = as_of - timedelta(days=grace_days)
    return [
        installment for installment in loan.schedule
        if not installment.is_paid and installment.due_date < cutoff
    ]
