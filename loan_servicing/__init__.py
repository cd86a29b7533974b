"""
Loan Servicing

Amortization scheduling and installment payment engine for a multi-tenant
loan-servicing application, using Decimal money throughout.
"""

__version__ = "1.0.0"

from .amortization import build_schedule, create_loan, summarize_schedule, total_interest
from .payments import PaymentOptions, PaymentResult, apply_custom_payment, apply_payment
