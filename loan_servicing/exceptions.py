"""Exception hierarchy for loan servicing.

Every error derives from ``ValueError`` so callers that only catch
``ValueError`` keep working.
"""

from typing import List, Optional


class LoanServicingError(ValueError):
    """Base exception for all loan servicing errors."""


class InvalidTermsError(LoanServicingError):
    """Raised when loan terms cannot produce a schedule."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Invalid loan terms")


class LoanNotFoundError(LoanServicingError):
    """Raised when a loan id is unknown to the store."""

    def __init__(self, loan_id: str):
        self.loan_id = loan_id
        super().__init__(f"Loan {loan_id} not found")


class InstallmentNotFoundError(LoanServicingError):
    """Raised when a loan has no installment with the requested number."""

    def __init__(self, installment_number: int, loan_id: Optional[str] = None):
        self.installment_number = installment_number
        self.loan_id = loan_id
        super().__init__(f"Installment {installment_number} not found on loan {loan_id}")


class InstallmentAlreadyPaidError(LoanServicingError):
    """Raised when a payment targets an installment that is already paid."""

    def __init__(self, installment_number: int, loan_id: Optional[str] = None):
        self.installment_number = installment_number
        self.loan_id = loan_id
        super().__init__(f"Installment {installment_number} on loan {loan_id} is already paid")


class InvalidPaymentAmountError(LoanServicingError):
    """Raised when a custom payment amount is rejected."""


class LoanHasPaymentsError(LoanServicingError):
    """Raised when a loan with collected payments is re-termed."""

    def __init__(self, loan_id: str):
        self.loan_id = loan_id
        super().__init__(f"Loan {loan_id} has registered payments and cannot be rescheduled")
