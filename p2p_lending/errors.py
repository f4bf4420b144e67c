"""
Error Types

Every failure the lending core reports carries the HTTP status it maps to,
so the API layer can render it without knowing individual error kinds.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional


class LendingError(Exception):
    """Base class for all lending errors"""
    
    status_code = 500
    code = "lending_error"
    
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
    
    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code}


class ValidationError(LendingError):
    """Malformed or semantically invalid input"""
    status_code = 400
    code = "validation_error"
    
    def __init__(self, message: str, details: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.details = details
    
    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        if self.details:
            result["details"] = self.details
        return result


class NotFoundError(LendingError):
    """Unknown loan id"""
    status_code = 404
    code = "not_found"
    
    def __init__(self, loan_id: str):
        super().__init__(f"Loan {loan_id} not found")
        self.loan_id = loan_id


class InvalidStateError(LendingError):
    """Transition attempted from the wrong state"""
    status_code = 400
    code = "invalid_state"
    
    def __init__(self, required_state: str, current_state: str):
        super().__init__(
            f"Loan must be in {required_state} state, loan is {current_state}"
        )
        self.required_state = required_state
        self.current_state = current_state
    
    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["required_state"] = self.required_state
        result["current_state"] = self.current_state
        return result


class CapacityExceededError(LendingError):
    """Investment exceeds the remaining principal"""
    status_code = 400
    code = "capacity_exceeded"
    
    def __init__(self, requested: Decimal, available: Decimal):
        super().__init__(
            f"Investment of {requested} exceeds remaining principal {available}"
        )
        self.requested = requested
        self.available = available
    
    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["requested"] = format(self.requested, 'f')
        result["available"] = format(self.available, 'f')
        return result


class PreconditionError(LendingError):
    """Operation requested before the loan supports it"""
    status_code = 422
    code = "precondition_failed"


class ConcurrentModificationError(LendingError):
    """Stored loan changed between load and save"""
    status_code = 409
    code = "concurrent_modification"
    
    def __init__(self, loan_id: str, expected_version: int,
                 actual_version: Optional[int]):
        super().__init__(
            f"Loan {loan_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )
        self.loan_id = loan_id
        self.expected_version = expected_version
        self.actual_version = actual_version
