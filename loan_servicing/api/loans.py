"""
Loan endpoints
"""

from fastapi import APIRouter, HTTPException, Depends, status

from .dependencies import ServicingSystem, get_servicing_system
from .schemas import (
    CreateLoanRequest, CustomPaymentRequest, InstallmentModel, LoanModel, LoanTermsModel,
    PaymentRequest, ReceiptModel, ScheduleSummaryModel
)
from ..amortization import build_schedule, summarize_schedule
from ..config import get_config
from ..exceptions import (
    InstallmentAlreadyPaidError, InstallmentNotFoundError,
    InvalidTermsError, LoanNotFoundError, LoanServicingError
)


router = APIRouter()


def _http_error(error: LoanServicingError) -> HTTPException:
    """Map a servicing error to its HTTP status"""
    if isinstance(error, (LoanNotFoundError, InstallmentNotFoundError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, InstallmentAlreadyPaidError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))
    if isinstance(error, InvalidTermsError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error.errors)
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))


@router.post("/schedule/preview")
async def preview_schedule(request: LoanTermsModel):
    """Build a schedule without creating a loan"""
    try:
        terms = request.to_loan_terms()
        schedule = build_schedule(terms, settle_final_installment=get_config().settle_final_installment)
        summary = summarize_schedule(terms, schedule)
    except InvalidTermsError as e:
        raise _http_error(e)
    except ValueError as e:
        raise _http_error(InvalidTermsError([str(e)]))

    if not schedule:
        raise _http_error(InvalidTermsError(["Schedule could not be built from the given terms"]))

    return {
        "schedule": [InstallmentModel.from_installment(i).model_dump(mode="json") for i in schedule],
        "summary": ScheduleSummaryModel.from_summary(summary).model_dump(mode="json")
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_loan(
    request: CreateLoanRequest,
    system: ServicingSystem = Depends(get_servicing_system)
):
    """Originate a new loan"""
    try:
        loan = system.loan_servicer.originate_loan(
            client_id=request.client_id,
            terms=request.terms.to_loan_terms()
        )
    except LoanServicingError as e:
        raise _http_error(e)

    return LoanModel.from_loan(loan).model_dump(mode="json")


@router.get("/{loan_id}")
async def get_loan(
    loan_id: str,
    system: ServicingSystem = Depends(get_servicing_system)
):
    """Get loan details with its schedule"""
    loan = system.loan_servicer.get_loan(loan_id)
    if not loan:
        raise HTTPException(status_code=404, detail="Loan not found")

    return LoanModel.from_loan(loan).model_dump(mode="json")


@router.put("/{loan_id}")
async def reschedule_loan(
    loan_id: str,
    request: LoanTermsModel,
    system: ServicingSystem = Depends(get_servicing_system)
):
    """Replace the terms of a loan that has no payments and rebuild its schedule"""
    try:
        loan = system.loan_servicer.reschedule_loan(
            loan_id=loan_id,
            terms=request.to_loan_terms()
        )
    except LoanServicingError as e:
        raise _http_error(e)

    return LoanModel.from_loan(loan).model_dump(mode="json")


@router.get("/{loan_id}/receipts")
async def get_loan_receipts(
    loan_id: str,
    system: ServicingSystem = Depends(get_servicing_system)
):
    """Get payment receipts of a loan"""
    if not system.loan_servicer.get_loan(loan_id):
        raise HTTPException(status_code=404, detail="Loan not found")

    receipts = system.loan_servicer.get_receipts(loan_id)
    return {"receipts": [ReceiptModel.from_receipt(r).model_dump(mode="json") for r in receipts]}


@router.post("/{loan_id}/payments")
async def register_payment(
    loan_id: str,
    request: PaymentRequest,
    system: ServicingSystem = Depends(get_servicing_system)
):
    """Pay an installment at its scheduled amount"""
    try:
        loan, receipt = system.loan_servicer.register_payment(
            loan_id=loan_id,
            installment_number=request.installment_number,
            options=request.to_options()
        )
    except LoanServicingError as e:
        raise _http_error(e)

    return {
        "loan": LoanModel.from_loan(loan).model_dump(mode="json"),
        "receipt": ReceiptModel.from_receipt(receipt).model_dump(mode="json")
    }


@router.post("/{loan_id}/payments/custom")
async def register_custom_payment(
    loan_id: str,
    request: CustomPaymentRequest,
    system: ServicingSystem = Depends(get_servicing_system)
):
    """Apply an operator-entered amount to an installment"""
    try:
        loan, receipt = system.loan_servicer.register_custom_payment(
            loan_id=loan_id,
            installment_number=request.installment_number,
            amount=request.to_amount(),
            options=request.to_options()
        )
    except LoanServicingError as e:
        raise _http_error(e)

    return {
        "loan": LoanModel.from_loan(loan).model_dump(mode="json"),
        "receipt": ReceiptModel.from_receipt(receipt).model_dump(mode="json")
    }
