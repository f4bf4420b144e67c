"""
Pydantic schemas for API requests and responses
"""

from decimal import Decimal
from datetime import datetime
from typing import Any, Dict, Optional, Type, TypeVar
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError
from ..loans import Loan


class CamelModel(BaseModel):
    class Config:
        populate_by_name = True


RequestModel = TypeVar("RequestModel", bound=CamelModel)


class CreateLoanRequest(CamelModel):
    borrower_id: str = Field(..., alias="borrowerId", min_length=1)
    principal_amount: Decimal = Field(..., alias="principalAmount", description="Loan principal")
    rate: Decimal = Field(..., description="Annual interest rate as a percentage, e.g. 5.5")


class ApproveLoanRequest(CamelModel):
    proof_image_url: str = Field(..., alias="proofImageUrl", min_length=1)
    field_validator_id: str = Field(..., alias="fieldValidatorId", min_length=1)
    approval_date: datetime = Field(..., alias="approvalDate")

    def transition_arguments(self) -> Dict[str, Any]:
        return {
            "proof_image_url": self.proof_image_url,
            "field_validator_id": self.field_validator_id,
            "approval_date": self.approval_date,
        }


class InvestLoanRequest(CamelModel):
    amount: Decimal
    investor_id: Optional[str] = Field(None, alias="investorId")

    def transition_arguments(self) -> Dict[str, Any]:
        return {"amount": self.amount, "investor_id": self.investor_id}


class DisburseLoanRequest(CamelModel):
    agreement_letter_url: str = Field(..., alias="agreementLetterUrl", min_length=1)
    field_officer_id: str = Field(..., alias="fieldOfficerId", min_length=1)
    disbursement_date: datetime = Field(..., alias="disbursementDate")

    def transition_arguments(self) -> Dict[str, Any]:
        return {
            "agreement_letter_url": self.agreement_letter_url,
            "field_officer_id": self.field_officer_id,
            "disbursement_date": self.disbursement_date,
        }


def parse_request(model: Type[RequestModel], payload: Any) -> RequestModel:
    """
    Validate a raw JSON body against a request model

    Transition endpoints call this only once the loan is known to be in the
    right state, so failures surface as the lending ValidationError (400)
    with the same details FastAPI reports for eagerly validated bodies.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        details = [
            {"loc": ["body", *error.get("loc", ())], "msg": error.get("msg"), "type": error.get("type")}
            for error in e.errors()
        ]
        raise ValidationError("Malformed request body", details=details)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _amount(value: Decimal) -> str:
    # Fixed-point: Decimal('5E+4') renders as "50000", never in exponent form
    return format(value, 'f')


def loan_to_response(loan: Loan) -> Dict[str, Any]:
    """Render a loan with camelCase keys and Decimal amounts as strings"""
    return {
        "id": loan.id,
        "borrowerId": loan.borrower_id,
        "principalAmount": _amount(loan.principal),
        "rate": _amount(loan.rate),
        "state": loan.state.value,
        "approvalDate": _iso(loan.approval_date),
        "proofImageUrl": loan.proof_image_url,
        "fieldValidatorId": loan.field_validator_id,
        "investedAmount": _amount(loan.invested_amount),
        "investorId": loan.investor_id,
        "agreementLetterUrl": loan.agreement_letter_url,
        "fieldOfficerId": loan.field_officer_id,
        "disbursementDate": _iso(loan.disbursement_date),
        "createdAt": _iso(loan.created_at),
        "updatedAt": _iso(loan.updated_at),
    }
