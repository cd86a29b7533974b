"""
Payment Module

Applies collected payments to loan installments. Each operation takes a loan
snapshot and returns a new loan plus the receipt data describing the payment;
the input loan is never modified. Persisting both results atomically is the
caller's job (see servicing.LoanServicer).
"""

from decimal import Decimal, InvalidOperation
from datetime import datetime, timezone
from dataclasses import dataclass, replace
from typing import Optional, Union
import logging

from .config import get_config
from .currency import Money, MAX_AMOUNT
from .exceptions import (
    InstallmentAlreadyPaidError, InstallmentNotFoundError, InvalidPaymentAmountError
)
from .loans import Installment, InstallmentStatus, Loan, LoanStatus, ReceiptData


logger = logging.getLogger(__name__)

Amount = Union[Money, Decimal, int, str]


@dataclass(frozen=True)
class PaymentOptions:
    """Penalty options chosen by the collector"""
    with_penalty: bool = False
    penalty_override: Optional[Amount] = None   # Used instead of the penalty rate when set


@dataclass(frozen=True)
class PaymentResult:
    """Updated loan and the receipt data to persist with it"""
    loan: Loan
    receipt: ReceiptData


def apply_payment(
    loan: Loan,
    installment_number: int,
    options: Optional[PaymentOptions] = None,
    penalty_rate_percent: Optional[Decimal] = None,
    paid_at: Optional[datetime] = None
) -> PaymentResult:
    """
    Pay one installment in full at its scheduled amount

    The base amount is always the installment's scheduled payment (or what is
    still outstanding on a partially paid installment), never an amount chosen
    by the caller; see apply_custom_payment for operator-entered amounts.

    Args:
        loan: Current loan snapshot
        installment_number: Installment to pay
        options: Penalty options
        penalty_rate_percent: Rate applied to the installment payment when a
            penalty is requested without an override; defaults to config
        paid_at: Payment timestamp, defaults to now (UTC)

    Returns:
        PaymentResult with the updated loan and the receipt data

    Raises:
        InstallmentNotFoundError: If the loan has no such installment
        InstallmentAlreadyPaidError: If the installment is already paid
    """
    options = options or PaymentOptions()
    installment = _payable_installment(loan, installment_number)

    base = installment.outstanding
    penalty = _penalty(loan, installment, options, penalty_rate_percent)

    paid_installment = replace(
        installment,
        status=InstallmentStatus.PAID,
        paid_amount=installment.payment_amount,
        paid_date=paid_at or datetime.now(timezone.utc)
    )

    return _settle(loan, paid_installment, base, penalty, options)


def apply_custom_payment(
    loan: Loan,
    installment_number: int,
    amount: Amount,
    options: Optional[PaymentOptions] = None,
    penalty_rate_percent: Optional[Decimal] = None,
    allow_overpayment: Optional[bool] = None,
    paid_at: Optional[datetime] = None
) -> PaymentResult:
    """
    Apply an operator-entered amount to one installment

    Amounts below what is outstanding leave the installment PARTIAL; the
    installment is PAID once its accumulated paid amount reaches the
    scheduled payment.

    Args:
        loan: Current loan snapshot
        installment_number: Installment to pay
        amount: Collected base amount, penalty excluded
        options: Penalty options
        penalty_rate_percent: See apply_payment
        allow_overpayment: Accept more than the outstanding amount;
            defaults to config
        paid_at: Payment timestamp, defaults to now (UTC)

    Raises:
        InstallmentNotFoundError: If the loan has no such installment
        InstallmentAlreadyPaidError: If the installment is already paid
        InvalidPaymentAmountError: If the amount is not positive, or exceeds
            the outstanding amount while overpayment is not allowed
    """
    options = options or PaymentOptions()
    installment = _payable_installment(loan, installment_number)

    base = _to_money(amount, loan)
    if not base.is_positive():
        raise InvalidPaymentAmountError("Payment amount must be greater than 0")

    if allow_overpayment is None:
        allow_overpayment = get_config().allow_overpayment

    outstanding = installment.outstanding
    if base > outstanding and not allow_overpayment:
        raise InvalidPaymentAmountError(
            f"Payment {base.to_string()} exceeds the {outstanding.to_string()} "
            f"outstanding on installment {installment.number}"
        )

    penalty = _penalty(loan, installment, options, penalty_rate_percent)

    paid_amount = installment.paid_amount + base
    fully_paid = paid_amount >= installment.payment_amount
    paid_installment = replace(
        installment,
        status=InstallmentStatus.PAID if fully_paid else InstallmentStatus.PARTIAL,
        paid_amount=paid_amount,
        paid_date=paid_at or datetime.now(timezone.utc)
    )

    return _settle(
        loan, paid_installment, base, penalty, options,
        is_partial_payment=base < outstanding,
        remaining_on_installment=(outstanding - base).clamp_at_zero(),
        full_installment_amount=installment.payment_amount
    )


def _payable_installment(loan: Loan, installment_number: int) -> Installment:
    installment = loan.installment(installment_number)
    if installment is None:
        raise InstallmentNotFoundError(installment_number, loan.id)
    if installment.is_paid:
        raise InstallmentAlreadyPaidError(installment_number, loan.id)
    return installment


def _penalty(
    loan: Loan,
    installment: Installment,
    options: PaymentOptions,
    penalty_rate_percent: Optional[Decimal]
) -> Money:
    if not options.with_penalty:
        return Money.zero(loan.currency)

    if options.penalty_override is not None:
        penalty = _to_money(options.penalty_override, loan)
        if penalty.is_negative():
            raise InvalidPaymentAmountError("Penalty cannot be negative")
        return penalty

    if penalty_rate_percent is None:
        penalty_rate_percent = get_config().default_penalty_rate_percent
    return installment.payment_amount * (Decimal(str(penalty_rate_percent)) / Decimal('100'))


def _settle(
    loan: Loan,
    paid_installment: Installment,
    base: Money,
    penalty: Money,
    options: PaymentOptions,
    **receipt_fields
) -> PaymentResult:
    """Swap the installment into the schedule and recompute loan totals"""
    schedule = tuple(
        paid_installment if installment.number == paid_installment.number else installment
        for installment in loan.schedule
    )

    total_paid = loan.total_paid + base + penalty
    all_paid = all(installment.is_paid for installment in schedule)

    updated_loan = replace(
        loan,
        schedule=schedule,
        total_paid=total_paid,
        status=LoanStatus.PAID if all_paid else LoanStatus.ACTIVE
    )

    receipt = ReceiptData(
        loan_id=loan.id,
        installment_number=paid_installment.number,
        installment_due_date=paid_installment.due_date,
        payment_amount=base,
        penalty=penalty,
        with_penalty=options.with_penalty,
        loan_principal=loan.terms.principal,
        total_paid_after=total_paid,
        remaining_balance=updated_loan.remaining_balance,
        **receipt_fields
    )

    logger.debug(
        "Installment %s of loan %s -> %s (base=%s penalty=%s)",
        paid_installment.number, loan.id, paid_installment.status.value,
        base.amount, penalty.amount
    )

    return PaymentResult(loan=updated_loan, receipt=receipt)


def _to_money(value: Amount, loan: Loan) -> Money:
    if isinstance(value, Money):
        if value.currency != loan.currency:
            raise InvalidPaymentAmountError(
                f"Payment currency {value.currency.code} does not match loan currency {loan.currency.code}"
            )
        money = value
    else:
        try:
            amount = Decimal(str(value))
        except InvalidOperation:
            raise InvalidPaymentAmountError(f"Invalid amount: {value!r}")
        if not amount.is_finite() or abs(amount) > MAX_AMOUNT:
            raise InvalidPaymentAmountError(f"Amount out of range: {value!r}")
        money = Money(amount, loan.currency)

    if abs(money.amount) > MAX_AMOUNT:
        raise InvalidPaymentAmountError(f"Amount out of range: {money.to_string()}")
    return money
