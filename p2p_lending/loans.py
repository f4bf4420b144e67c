"""
Loan Module

Handles the peer-to-peer loan lifecycle: proposal, approval, investment and
disbursement. Transitions are strictly forward and linear:

    proposed -> approved -> invested -> disbursed

The transition functions are pure: each returns a new Loan and leaves its
input untouched, so a rejected transition never changes the stored record.
LoanService wraps them in an atomic load -> validate -> save cycle.
"""

from decimal import Decimal, InvalidOperation
from datetime import datetime, timezone
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional
from enum import Enum
import threading
import uuid

from .storage import StorageInterface, StorageRecord
from .errors import (
    LendingError, ValidationError, NotFoundError, InvalidStateError,
    CapacityExceededError, ConcurrentModificationError
)
from .logging_config import get_logger, log_action
from .roi import compute_roi


MAX_RATE = Decimal('100')


class LoanState(Enum):
    """Loan lifecycle states"""
    PROPOSED = "proposed"      # Requested by borrower
    APPROVED = "approved"      # Verified by a field validator
    INVESTED = "invested"      # Funded by an investor
    DISBURSED = "disbursed"    # Funds handed to borrower (terminal)

    def next_state(self) -> Optional['LoanState']:
        """The single legal successor, None for the terminal state"""
        index = _LIFECYCLE.index(self)
        if index + 1 < len(_LIFECYCLE):
            return _LIFECYCLE[index + 1]
        return None

    @property
    def is_terminal(self) -> bool:
        return self.next_state() is None


_LIFECYCLE = [LoanState.PROPOSED, LoanState.APPROVED, LoanState.INVESTED, LoanState.DISBURSED]


@dataclass
class Loan(StorageRecord):
    """A single peer-to-peer loan and its current lifecycle state"""
    borrower_id: str
    principal: Decimal
    rate: Decimal                               # Annual percentage, e.g. 5.5
    state: LoanState = LoanState.PROPOSED

    # Set on approval
    approval_date: Optional[datetime] = None
    proof_image_url: Optional[str] = None
    field_validator_id: Optional[str] = None

    # Set on investment
    invested_amount: Decimal = Decimal('0')
    investor_id: Optional[str] = None

    # Set on disbursement
    agreement_letter_url: Optional[str] = None
    field_officer_id: Optional[str] = None
    disbursement_date: Optional[datetime] = None

    version: int = 1

    @property
    def remaining_capacity(self) -> Decimal:
        """Principal not yet covered by investment"""
        return self.principal - self.invested_amount


def _to_decimal(value: Any, field_name: str) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a number")
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field_name} must be a number, got {value!r}")
    if not result.is_finite():
        raise ValidationError(f"{field_name} must be finite")
    return result


def _require_text(value: Optional[str], field_name: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field_name} is required")
    return str(value).strip()


def _as_utc(value: Optional[datetime], field_name: str) -> datetime:
    """Naive datetimes are taken to be UTC"""
    if value is None:
        raise ValidationError(f"{field_name} is required")
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _require_state(loan: Loan, required: LoanState) -> None:
    if loan.state != required:
        raise InvalidStateError(required.value, loan.state.value)


def propose(
    borrower_id: str,
    principal: Any,
    rate: Any,
    now: Optional[datetime] = None
) -> Loan:
    """
    Create a new loan in the proposed state

    Args:
        borrower_id: Opaque borrower identifier
        principal: Requested amount, must be positive
        rate: Annual interest rate as a percentage between 0 and 100
        now: Creation timestamp (defaults to current UTC time)

    Returns:
        New Loan, not yet persisted
    """
    borrower_id = _require_text(borrower_id, "borrowerId")
    principal = _to_decimal(principal, "principalAmount")
    rate = _to_decimal(rate, "rate")

    if principal <= 0:
        raise ValidationError("principalAmount must be greater than zero")
    if rate < 0 or rate > MAX_RATE:
        raise ValidationError(f"rate must be a percentage between 0 and {MAX_RATE}")

    now = now or datetime.now(timezone.utc)
    return Loan(
        id=str(uuid.uuid4()),
        created_at=now,
        updated_at=now,
        borrower_id=borrower_id,
        principal=principal,
        rate=rate,
        state=LoanState.PROPOSED
    )


def approve(
    loan: Loan,
    proof_image_url: str,
    field_validator_id: str,
    approval_date: datetime
) -> Loan:
    """Move a proposed loan to approved, recording who validated it and when"""
    _require_state(loan, LoanState.PROPOSED)
    return replace(
        loan,
        state=LoanState.APPROVED,
        proof_image_url=_require_text(proof_image_url, "proofImageUrl"),
        field_validator_id=_require_text(field_validator_id, "fieldValidatorId"),
        approval_date=_as_utc(approval_date, "approvalDate")
    )


def invest(loan: Loan, amount: Any, investor_id: Optional[str] = None) -> Loan:
    """
    Fund an approved loan

    The amount is added to the loan's invested total and may not exceed the
    principal still uncovered.
    """
    _require_state(loan, LoanState.APPROVED)
    amount = _to_decimal(amount, "amount")
    if amount <= 0:
        raise ValidationError("amount must be greater than zero")

    available = loan.remaining_capacity
    if amount > available:
        raise CapacityExceededError(amount, available)

    return replace(
        loan,
        state=LoanState.INVESTED,
        invested_amount=loan.invested_amount + amount,
        investor_id=investor_id.strip() if investor_id and investor_id.strip() else loan.investor_id
    )


def disburse(
    loan: Loan,
    agreement_letter_url: str,
    field_officer_id: str,
    disbursement_date: datetime
) -> Loan:
    """Move an invested loan to disbursed, recording the signed agreement"""
    _require_state(loan, LoanState.INVESTED)
    disbursement_date = _as_utc(disbursement_date, "disbursementDate")
    if loan.approval_date and disbursement_date < loan.approval_date:
        raise ValidationError("disbursementDate cannot precede approvalDate")

    return replace(
        loan,
        state=LoanState.DISBURSED,
        agreement_letter_url=_require_text(agreement_letter_url, "agreementLetterUrl"),
        field_officer_id=_require_text(field_officer_id, "fieldOfficerId"),
        disbursement_date=disbursement_date
    )


class LoanRepository:
    """
    Persistence collaborator for loans

    Stores loans as dictionaries in the given storage backend. Callers that
    need a read-modify-write to be atomic wrap it in storage.atomic().
    """

    def __init__(self, storage: StorageInterface, table: str = "loans"):
        self.storage = storage
        self.loans_table = table

    def create(self, loan: Loan) -> str:
        """Persist a new loan and return its id"""
        if self.storage.exists(self.loans_table, loan.id):
            raise ValidationError(f"Loan {loan.id} already exists")
        self.storage.save(self.loans_table, loan.id, self._loan_to_dict(loan))
        return loan.id

    def find_by_id(self, loan_id: str) -> Loan:
        """Load a loan, raising NotFoundError for unknown ids"""
        data = self.storage.load(self.loans_table, loan_id)
        if not data:
            raise NotFoundError(loan_id)
        return self._loan_from_dict(data)

    def save(self, loan: Loan) -> Loan:
        """
        Save an updated loan with an optimistic version check

        Returns:
            The stored loan, with version incremented and updated_at refreshed
        """
        existing = self.storage.load(self.loans_table, loan.id)
        if not existing:
            raise NotFoundError(loan.id)

        stored_version = existing.get('version')
        if stored_version != loan.version:
            raise ConcurrentModificationError(loan.id, loan.version, stored_version)

        saved = replace(
            loan,
            version=loan.version + 1,
            updated_at=datetime.now(timezone.utc)
        )
        self.storage.save(self.loans_table, saved.id, self._loan_to_dict(saved))
        return saved

    def list_loans(self, state: Optional[LoanState] = None) -> List[Loan]:
        """All loans, optionally filtered by state, oldest first"""
        if state:
            records = self.storage.find(self.loans_table, {"state": state.value})
        else:
            records = self.storage.load_all(self.loans_table)
        loans = [self._loan_from_dict(data) for data in records]
        loans.sort(key=lambda x: x.created_at)
        return loans

    def _loan_to_dict(self, loan: Loan) -> Dict[str, Any]:
        result = loan.to_dict()
        result['state'] = loan.state.value
        for field in ['approval_date', 'disbursement_date']:
            value = getattr(loan, field)
            result[field] = value.isoformat() if value else None
        return result

    def _loan_from_dict(self, data: Dict[str, Any]) -> Loan:
        def get_datetime(field: str) -> Optional[datetime]:
            if data.get(field):
                return datetime.fromisoformat(data[field])
            return None

        return Loan(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            borrower_id=data['borrower_id'],
            principal=Decimal(data['principal']),
            rate=Decimal(data['rate']),
            state=LoanState(data['state']),
            approval_date=get_datetime('approval_date'),
            proof_image_url=data.get('proof_image_url'),
            field_validator_id=data.get('field_validator_id'),
            invested_amount=Decimal(data.get('invested_amount') or '0'),
            investor_id=data.get('investor_id'),
            agreement_letter_url=data.get('agreement_letter_url'),
            field_officer_id=data.get('field_officer_id'),
            disbursement_date=get_datetime('disbursement_date'),
            version=data.get('version', 1)
        )


# Source state and transition function for each request-driven action
TRANSITIONS: Dict[str, Any] = {
    "approve": (LoanState.PROPOSED, approve),
    "invest": (LoanState.APPROVED, invest),
    "disburse": (LoanState.INVESTED, disburse),
}


class LoanService:
    """
    Runs loan transitions against persistent storage

    Each transition is a single load -> validate -> save executed under the
    service lock and inside storage.atomic(), so concurrent requests for the
    same loan cannot lose updates.
    """

    def __init__(
        self,
        repository: LoanRepository,
        lock: Optional[threading.RLock] = None,
        roi_precision: int = 4,
        days_per_year: int = 365
    ):
        self.repository = repository
        self._lock = lock or threading.RLock()
        self.roi_precision = roi_precision
        self.days_per_year = days_per_year
        self.logger = get_logger("p2p_lending.loans")

    def propose_loan(self, borrower_id: str, principal: Any, rate: Any) -> Loan:
        """Create and persist a new proposed loan"""
        try:
            loan = propose(borrower_id, principal, rate)
        except LendingError as e:
            self._log_rejection("propose", None, e)
            raise

        with self._lock, self.repository.storage.atomic():
            self.repository.create(loan)

        log_action(
            self.logger, "info", "Loan proposed",
            action="propose", loan_id=loan.id, to_state=loan.state.value,
            borrower_id=loan.borrower_id, principal=format(loan.principal, 'f'),
            rate=format(loan.rate, 'f')
        )
        return loan

    def get_loan(self, loan_id: str) -> Loan:
        return self.repository.find_by_id(loan_id)

    def list_loans(self, state: Optional[LoanState] = None) -> List[Loan]:
        return self.repository.list_loans(state)

    def approve_loan(
        self,
        loan_id: str,
        proof_image_url: str,
        field_validator_id: str,
        approval_date: datetime
    ) -> Loan:
        return self.apply_request(loan_id, "approve", lambda: {
            "proof_image_url": proof_image_url,
            "field_validator_id": field_validator_id,
            "approval_date": approval_date,
        })

    def invest_loan(self, loan_id: str, amount: Any, investor_id: Optional[str] = None) -> Loan:
        return self.apply_request(loan_id, "invest", lambda: {
            "amount": amount,
            "investor_id": investor_id,
        })

    def disburse_loan(
        self,
        loan_id: str,
        agreement_letter_url: str,
        field_officer_id: str,
        disbursement_date: datetime
    ) -> Loan:
        return self.apply_request(loan_id, "disburse", lambda: {
            "agreement_letter_url": agreement_letter_url,
            "field_officer_id": field_officer_id,
            "disbursement_date": disbursement_date,
        })

    def apply_request(
        self,
        loan_id: str,
        action: str,
        parse_arguments: Callable[[], Dict[str, Any]]
    ) -> Loan:
        """
        Run a named transition whose arguments are resolved lazily

        The loan is loaded and its state checked before parse_arguments is
        called, so an unknown id always reports NotFoundError and a wrong
        state always reports InvalidStateError, whatever the request body holds.

        Args:
            loan_id: Loan to transition
            action: "approve", "invest" or "disburse"
            parse_arguments: Returns keyword arguments for the transition;
                may raise ValidationError for a malformed body
        """
        if action not in TRANSITIONS:
            raise ValueError(f"Unknown loan action: {action}")
        required_state, transition = TRANSITIONS[action]

        def apply(loan: Loan) -> Loan:
            _require_state(loan, required_state)
            return transition(loan, **parse_arguments())

        return self._transition(loan_id, action, apply)

    def loan_roi(self, loan_id: str, now: Optional[datetime] = None) -> Decimal:
        """Point-in-time ROI percentage for an approved loan"""
        loan = self.repository.find_by_id(loan_id)
        return compute_roi(
            loan, now=now, precision=self.roi_precision,
            days_per_year=self.days_per_year
        )

    def _transition(self, loan_id: str, action: str, apply: Callable[[Loan], Loan]) -> Loan:
        with self._lock, self.repository.storage.atomic():
            loan = self.repository.find_by_id(loan_id)
            try:
                updated = apply(loan)
            except LendingError as e:
                self._log_rejection(action, loan_id, e, from_state=loan.state.value)
                raise
            saved = self.repository.save(updated)

        log_action(
            self.logger, "info", f"Loan {action} succeeded",
            action=action, loan_id=loan_id, from_state=loan.state.value,
            to_state=saved.state.value, version=saved.version
        )
        return saved

    def _log_rejection(self, action: str, loan_id: Optional[str], error: LendingError,
                       from_state: Optional[str] = None) -> None:
        log_action(
            self.logger, "warning", f"Loan {action} rejected: {error.message}",
            action=action, loan_id=loan_id, from_state=from_state, code=error.code
        )
