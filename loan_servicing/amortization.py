"""
Amortization Module

Builds installment schedules from loan terms and derives the figures shown to
borrowers before they sign: total interest, cost of credit and effective rate.
Supports the French (annuity) method plus the interest-only, flat, fixed
profit and fixed payment schedules used for informal lending. Pure functions,
no I/O.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from datetime import date, timedelta
from dataclasses import dataclass
from typing import Any, Iterator, List, Optional, Sequence, Tuple
import logging

from .currency import Money, Currency, MAX_AMOUNT
from .exceptions import InvalidTermsError
from .loans import AmortizationType, Frequency, Installment, Loan, LoanStatus, LoanTerms


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScheduleSummary:
    """Totals of a schedule as presented in the loan calculator"""
    installment_amount: Money     # Payment of the first installment
    total_interest: Money
    total_principal: Money
    total_payment: Money
    closing_costs: Money
    cost_of_credit: Money         # Interest plus closing costs
    effective_rate_percent: Decimal


def annuity_payment(principal: Money, rate_per_period: Decimal, term_count: int) -> Money:
    """
    Fixed periodic payment that retires the principal in term_count periods

    Standard formula: P * r / (1 - (1 + r)^-n), or P / n without interest.
    The result is rounded once to the currency's minor unit.
    """
    if rate_per_period == Decimal('0'):
        return principal / Decimal(term_count)

    discount = Decimal('1') - (Decimal('1') + rate_per_period) ** -term_count
    return Money(principal.amount * rate_per_period / discount, principal.currency)


def build_schedule(terms: LoanTerms, settle_final_installment: bool = True) -> Tuple[Installment, ...]:
    """
    Generate the amortization schedule for loan terms

    Due dates advance a running date by the frequency's fixed number of days
    (30-day months, not calendar months). The schedule rules depend on
    terms.amortization_type:

    - FRENCH: equal installments, interest on the declining balance
    - INTEREST_ONLY: each installment is one period's interest, the
      balance never declines
    - FLAT: the rate is applied once to the financed amount and the
      total is split evenly
    - FIXED_PROFIT: terms.fixed_amount is the total profit, split evenly
    - FIXED_PAYMENT: terms.fixed_amount is the installment, the profit is
      what the installments collect beyond the financed amount

    Args:
        terms: Loan terms
        settle_final_installment: FRENCH only. When True no installment
            retires more than the outstanding balance and the last one
            retires exactly what is left, so the schedule ends at zero. When
            False the rounded payment is reused unchanged and a negative
            final balance is clamped to 0. The even-split types always
            settle the last installment.

    Returns:
        Installments ordered by number, or an empty tuple when the terms
        cannot produce a schedule
    """
    financed = terms.financed_amount
    term_count = terms.term_count
    amortization_type = terms.amortization_type

    if not financed.is_positive() or term_count <= 0:
        logger.debug("Schedule not built: financed=%s term_count=%s", financed.amount, term_count)
        return ()
    if amortization_type.uses_fixed_amount and terms.fixed_amount is None:
        logger.debug("Schedule not built: %s needs a fixed amount", amortization_type.value)
        return ()

    if amortization_type == AmortizationType.FRENCH:
        schedule = _french_schedule(terms, settle_final_installment)
    elif amortization_type == AmortizationType.INTEREST_ONLY:
        schedule = _interest_only_schedule(terms)
    elif amortization_type == AmortizationType.FLAT:
        flat_interest = financed * (terms.annual_rate_percent / Decimal('100'))
        schedule = _even_split_schedule(terms, flat_interest, (financed + flat_interest) / Decimal(term_count))
    elif amortization_type == AmortizationType.FIXED_PROFIT:
        profit = terms.fixed_amount
        schedule = _even_split_schedule(terms, profit, (financed + profit) / Decimal(term_count))
    elif amortization_type == AmortizationType.FIXED_PAYMENT:
        payment = terms.fixed_amount
        schedule = _even_split_schedule(terms, payment * Decimal(term_count) - financed, payment)
    else:
        raise ValueError(f"Unsupported amortization type: {amortization_type}")

    return tuple(schedule)


def _due_dates(terms: LoanTerms) -> Iterator[date]:
    step = timedelta(days=terms.frequency.days_per_period)
    due_date = terms.start_date
    for _ in range(terms.term_count):
        due_date = due_date + step
        yield due_date


def _french_schedule(terms: LoanTerms, settle_final_installment: bool) -> List[Installment]:
    rate_per_period = terms.rate_per_period
    payment = annuity_payment(terms.financed_amount, rate_per_period, terms.term_count)

    schedule = []
    balance = terms.financed_amount

    for number, due_date in enumerate(_due_dates(terms), start=1):
        interest = balance * rate_per_period
        principal_portion = payment - interest
        installment_payment = payment

        if settle_final_installment:
            if principal_portion > balance or number == terms.term_count:
                principal_portion = balance
                installment_payment = principal_portion + interest

        balance = (balance - principal_portion).clamp_at_zero()

        schedule.append(Installment(
            number=number,
            due_date=due_date,
            payment_amount=installment_payment,
            interest_portion=interest,
            principal_portion=principal_portion,
            balance_after=balance
        ))

    return schedule


def _interest_only_schedule(terms: LoanTerms) -> List[Installment]:
    financed = terms.financed_amount
    interest = financed * terms.rate_per_period
    no_principal = Money.zero(financed.currency)

    return [
        Installment(
            number=number,
            due_date=due_date,
            payment_amount=interest,
            interest_portion=interest,
            principal_portion=no_principal,
            balance_after=financed
        )
        for number, due_date in enumerate(_due_dates(terms), start=1)
    ]


def _even_split_schedule(terms: LoanTerms, total_interest: Money, payment: Money) -> List[Installment]:
    """
    Equal installments with a fixed interest share

    Every installment but the last pays `payment`, of which interest is
    total_interest / n (never more than is left to charge). The last
    installment collects the interest not yet charged and the whole
    remaining balance, so the schedule charges exactly total_interest and
    ends at zero.
    """
    term_count = terms.term_count
    interest_share = total_interest / Decimal(term_count)

    schedule = []
    balance = terms.financed_amount
    interest_charged = Money.zero(balance.currency)

    for number, due_date in enumerate(_due_dates(terms), start=1):
        if number == term_count:
            interest = total_interest - interest_charged
            principal_portion = balance
            installment_payment = principal_portion + interest
        else:
            principal_portion = (payment - interest_share).clamp_at_zero()
            interest = min(interest_share, total_interest - interest_charged)
            if principal_portion > balance:
                principal_portion = balance
            installment_payment = principal_portion + interest

        interest_charged = interest_charged + interest
        balance = balance - principal_portion

        schedule.append(Installment(
            number=number,
            due_date=due_date,
            payment_amount=installment_payment,
            interest_portion=interest,
            principal_portion=principal_portion,
            balance_after=balance
        ))

    return schedule


def total_interest(schedule: Sequence[Installment], currency: Optional[Currency] = None) -> Money:
    """Sum of interest portions; currency is only needed for an empty schedule"""
    if not schedule:
        if currency is None:
            raise ValueError("Currency is required to total an empty schedule")
        return Money.zero(currency)

    total = Money.zero(schedule[0].interest_portion.currency)
    for installment in schedule:
        total = total + installment.interest_portion
    return total


def summarize_schedule(terms: LoanTerms, schedule: Sequence[Installment]) -> ScheduleSummary:
    """Calculator figures for a schedule built from terms"""
    currency = terms.currency
    zero = Money.zero(currency)

    interest = total_interest(schedule, currency)
    principal = zero
    payments = zero
    for installment in schedule:
        principal = principal + installment.principal_portion
        payments = payments + installment.payment_amount

    cost_of_credit = interest + terms.closing_costs
    if terms.principal.is_positive():
        effective_rate = (cost_of_credit.amount / terms.principal.amount * Decimal("100")).quantize(
            Decimal("0.01"), rounding=ROUND_HALF_UP
        )
    else:
        effective_rate = Decimal('0.00')

    return ScheduleSummary(
        installment_amount=schedule[0].payment_amount if schedule else zero,
        total_interest=interest,
        total_principal=principal,
        total_payment=payments,
        closing_costs=terms.closing_costs,
        cost_of_credit=cost_of_credit,
        effective_rate_percent=effective_rate
    )


def validate_terms(
    principal: Any,
    annual_rate_percent: Any,
    term_count: Any,
    frequency: Any,
    start_date: Any,
    amortization_type: Any = AmortizationType.FRENCH,
    fixed_amount: Any = None
) -> List[str]:
    """
    Check raw loan terms as they arrive from a form or request

    Returns:
        Human readable problems, empty when the terms are usable
    """
    errors = []

    amount = _to_decimal(principal)
    if amount is None or amount <= 0:
        errors.append("Principal must be greater than 0")
    elif amount > MAX_AMOUNT:
        errors.append("Principal exceeds the maximum supported amount")

    rate = _to_decimal(annual_rate_percent)
    if rate is None or rate < 0:
        errors.append("Interest rate cannot be negative")
    elif rate > MAX_AMOUNT:
        errors.append("Interest rate exceeds the maximum supported value")

    count = _to_decimal(term_count)
    if count is None or count < 1 or count != count.to_integral_value():
        errors.append("Term must be at least 1 installment")

    if frequency is not None:
        try:
            Frequency.parse(frequency)
        except ValueError:
            errors.append("Invalid payment frequency")
    else:
        errors.append("Payment frequency is required")

    if not isinstance(start_date, date):
        errors.append("Start date is required")

    try:
        amortization_type = AmortizationType.parse(amortization_type)
    except ValueError:
        errors.append("Invalid amortization type")
    else:
        if amortization_type.uses_fixed_amount:
            fixed = _to_decimal(fixed_amount)
            if fixed is None or fixed <= 0:
                errors.append("Fixed amount must be greater than 0")
            elif fixed > MAX_AMOUNT:
                errors.append("Fixed amount exceeds the maximum supported amount")

    return errors


def require_valid_terms(terms: LoanTerms) -> None:
    """
    Raise when terms cannot produce a schedule

    Raises:
        InvalidTermsError: With every problem found
    """
    errors = validate_terms(
        terms.principal.amount,
        terms.annual_rate_percent,
        terms.term_count,
        terms.frequency,
        terms.start_date,
        terms.amortization_type,
        terms.fixed_amount.amount if terms.fixed_amount is not None else None
    )
    if terms.closing_costs.is_negative():
        errors.append("Closing costs cannot be negative")
    elif terms.closing_costs.amount > MAX_AMOUNT:
        errors.append("Closing costs exceed the maximum supported amount")

    if (not errors and terms.amortization_type == AmortizationType.FIXED_PAYMENT
            and terms.fixed_amount * Decimal(terms.term_count) < terms.financed_amount):
        errors.append("Fixed payment does not cover the financed amount")

    if errors:
        raise InvalidTermsError(errors)


def create_loan(loan_id: str, client_id: str, terms: LoanTerms,
                settle_final_installment: bool = True) -> Loan:
    """
    Open a loan: build its schedule and fix its total interest

    Raises:
        InvalidTermsError: If the terms are invalid
    """
    require_valid_terms(terms)
    try:
        schedule = build_schedule(terms, settle_final_installment=settle_final_installment)
    except ValueError as e:
        raise InvalidTermsError([str(e)])
    if not schedule:
        raise InvalidTermsError(["Schedule could not be built from the given terms"])

    return Loan(
        id=loan_id,
        client_id=client_id,
        terms=terms,
        schedule=schedule,
        total_interest=total_interest(schedule),
        status=LoanStatus.ACTIVE
    )


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        return None
    return result if result.is_finite() else None
