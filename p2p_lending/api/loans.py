"""
Loan endpoints
"""

from typing import Any, Optional
from fastapi import APIRouter, Body, Depends, status

from .dependencies import get_loan_service
from .schemas import (
    CreateLoanRequest, ApproveLoanRequest, InvestLoanRequest,
    DisburseLoanRequest, loan_to_response, parse_request
)
from ..errors import ValidationError
from ..loans import LoanService, LoanState


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
def create_loan(
    request: CreateLoanRequest,
    service: LoanService = Depends(get_loan_service)
):
    """Propose a new loan"""
    loan = service.propose_loan(
        borrower_id=request.borrower_id,
        principal=request.principal_amount,
        rate=request.rate
    )
    return loan_to_response(loan)


@router.get("")
def list_loans(
    state: Optional[str] = None,
    service: LoanService = Depends(get_loan_service)
):
    """List loans, optionally filtered by lifecycle state"""
    loan_state = None
    if state:
        try:
            loan_state = LoanState(state.lower())
        except ValueError:
            raise ValidationError(f"Unknown loan state: {state}")
    
    return {"loans": [loan_to_response(loan) for loan in service.list_loans(loan_state)]}


@router.get("/{loan_id}")
def get_loan(
    loan_id: str,
    service: LoanService = Depends(get_loan_service)
):
    """Get loan details"""
    return loan_to_response(service.get_loan(loan_id))


@router.post("/{loan_id}/approve")
def approve_loan(
    loan_id: str,
    payload: Any = Body(None, description="ApproveLoanRequest"),
    service: LoanService = Depends(get_loan_service)
):
    """Approve a proposed loan"""
    loan = service.apply_request(
        loan_id, "approve",
        lambda: parse_request(ApproveLoanRequest, payload).transition_arguments()
    )
    return loan_to_response(loan)


@router.post("/{loan_id}/invest")
def invest_loan(
    loan_id: str,
    payload: Any = Body(None, description="InvestLoanRequest"),
    service: LoanService = Depends(get_loan_service)
):
    """Invest in an approved loan"""
    loan = service.apply_request(
        loan_id, "invest",
        lambda: parse_request(InvestLoanRequest, payload).transition_arguments()
    )
    return loan_to_response(loan)


@router.post("/{loan_id}/disburse")
def disburse_loan(
    loan_id: str,
    payload: Any = Body(None, description="DisburseLoanRequest"),
    service: LoanService = Depends(get_loan_service)
):
    """Disburse an invested loan"""
    loan = service.apply_request(
        loan_id, "disburse",
        lambda: parse_request(DisburseLoanRequest, payload).transition_arguments()
    )
    return loan_to_response(loan)


@router.get("/{loan_id}/roi")
def get_loan_roi(
    loan_id: str,
    service: LoanService = Depends(get_loan_service)
):
    """Current simple-interest ROI for an approved loan"""
    roi = service.loan_roi(loan_id)
    return {"loanId": loan_id, "ROI": format(roi, 'f')}
