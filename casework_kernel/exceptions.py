"""
Typed Exception Hierarchy for the Casework Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

The workflow UI has to explain *which* precondition blocked an action
("payment not verified" is a different conversation from "wrong status").
Callers therefore catch by type and read structured attributes instead of
parsing messages:

    try:
        engine.approve(approval_id, actor_id, "Asha", UserRole.ACCOUNTS_TEAM)
    except AlreadyApprovedByRoleError as e:
        show(f"{e.role} has already signed off")      # structured data
        api_response(code=e.code, role=e.role)        # machine-readable

Every class carries a static ``code`` and stores its context as attributes,
so the JSON log formatter can emit ``exc_code`` and ``exc_<field>`` without
knowing the class.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    CaseworkError (base)
    |
    +-- ValidationError                  rejected before any mutation; fix input, retry
    |   +-- UnknownStageError
    |   +-- UnknownRoleError
    |   +-- InvalidAmountError
    |   +-- InvalidTransactionError
    |   +-- DuplicateCostCenterError
    |   +-- IdempotencyConflictError
    |
    +-- AuthorizationError               needs a different actor
    |   +-- UnauthorizedRoleError
    |
    +-- NotFoundError
    |   +-- ApprovalNotFoundError
    |   +-- CaseNotFoundError
    |   +-- TransactionNotFoundError
    |   +-- CostCenterNotFoundError
    |
    +-- StateError                       resource not in the required state
    |   +-- AlreadyApprovedByRoleError
    |   +-- ApprovalAlreadyResolvedError
    |   +-- ImmutabilityViolationError
    |   +-- ApprovalNotApprovedError
    |   +-- NotPendingError
    |   +-- PaymentNotVerifiedError
    |   +-- InvalidStatusError
    |
    +-- ConcurrencyError                 retry with backoff
    |   +-- OptimisticLockError
    |
    +-- AutoActionError
        +-- AutoActionFailedError
        +-- UnknownAutoActionError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                         | When Raised
----------------|------------------------------|-----------------------------------
Validation      | UNKNOWN_STAGE                | Stage not in the stage table
                | UNKNOWN_ROLE                 | Role string is not a UserRole
                | INVALID_AMOUNT               | Negative / zero / non-numeric amount
                | INVALID_TRANSACTION          | Bad type, blank reason, blank name
                | DUPLICATE_COST_CENTER        | Name already allocated in project
                | IDEMPOTENCY_CONFLICT         | Same key, different content
----------------|------------------------------|-----------------------------------
Authorization   | UNAUTHORIZED_ROLE            | Role may not act on this resource
----------------|------------------------------|-----------------------------------
Not found       | APPROVAL_NOT_FOUND           | No approval request with that id
                | CASE_NOT_FOUND               | No case with that id
                | TRANSACTION_NOT_FOUND        | No transaction in that project
                | COST_CENTER_NOT_FOUND        | No cost center in that project
----------------|------------------------------|-----------------------------------
State           | ALREADY_APPROVED_BY_ROLE     | Role already cast its vote
                | APPROVAL_ALREADY_RESOLVED    | Request is APPROVED or REJECTED
                | IMMUTABILITY_VIOLATION       | Update/delete of an append-only row
                | APPROVAL_NOT_APPROVED        | Auto-action retry on non-approved request
                | NOT_PENDING                  | Transaction already approved/rejected
                | PAYMENT_NOT_VERIFIED         | Payment gate: accounts sign-off missing
                | INVALID_STATUS               | Payment gate: case in the wrong status
----------------|------------------------------|-----------------------------------
Concurrency     | OPTIMISTIC_LOCK_CONFLICT     | Row changed under us; caller retries
----------------|------------------------------|-----------------------------------
Auto-action     | AUTO_ACTION_FAILED           | Side effect failed after approval commit
                | UNKNOWN_AUTO_ACTION          | Stage references an undefined action

===============================================================================
DESIGN DECISIONS
===============================================================================

1. Inherit from Exception, not ValueError: domain errors are catchable as
   a group without mixing in programming errors.
2. ``code`` is a class attribute: usable without instantiation, static per
   type.
3. State errors always carry the current state so the caller can decide
   whether a retry makes sense.
"""

from __future__ import annotations


class CaseworkError(Exception):
    """
    Base exception for all casework kernel errors.

    All subclasses have a ``code`` class attribute for machine-readable
    identification.
    """

    code: str = "CASEWORK_ERROR"


# Validation errors


class ValidationError(CaseworkError):
    """Malformed input, rejected before any mutation."""

    code: str = "VALIDATION_ERROR"


class UnknownStageError(ValidationError):
    """Stage is not present in the configured stage table."""

    code: str = "UNKNOWN_STAGE"

    def __init__(self, stage: str):
        self.stage = stage
        super().__init__(f"Invalid workflow stage: {stage}")


class UnknownRoleError(ValidationError):
    """Role string does not name a known UserRole."""

    code: str = "UNKNOWN_ROLE"

    def __init__(self, role: str):
        self.role = role
        super().__init__(f"Unknown role: {role!r}")


class InvalidAmountError(ValidationError):
    """Amount is negative, zero where positive is required, or not numeric."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, amount: str, reason: str):
        self.amount = amount
        self.reason = reason
        super().__init__(f"Invalid amount {amount}: {reason}")


class InvalidTransactionError(ValidationError):
    """Input to a ledger or workflow operation is malformed."""

    code: str = "INVALID_TRANSACTION"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class DuplicateCostCenterError(ValidationError):
    """A cost center with this name already exists in the project."""

    code: str = "DUPLICATE_COST_CENTER"

    def __init__(self, project_id: str, name: str):
        self.project_id = project_id
        self.name = name
        super().__init__(
            f"Cost center '{name}' already exists in project {project_id}"
        )


class IdempotencyConflictError(ValidationError):
    """
    Idempotency key was reused with different transaction content.

    A network retry must resend the same content; a different payload under
    the same key is a client bug and is never silently merged.
    """

    code: str = "IDEMPOTENCY_CONFLICT"

    def __init__(self, idempotency_key: str, transaction_id: str):
        self.idempotency_key = idempotency_key
        self.transaction_id = transaction_id
        super().__init__(
            f"Idempotency key {idempotency_key} already used by transaction "
            f"{transaction_id} with different content"
        )


# Authorization errors


class AuthorizationError(CaseworkError):
    """Actor lacks the role required for the operation."""

    code: str = "AUTHORIZATION_ERROR"


class UnauthorizedRoleError(AuthorizationError):
    """Role is not permitted to act on this resource."""

    code: str = "UNAUTHORIZED_ROLE"

    def __init__(self, role: str, allowed_roles: tuple[str, ...], resource: str):
        self.role = role
        self.allowed_roles = allowed_roles
        self.resource = resource
        super().__init__(
            f"Role '{role}' is not authorized for {resource} "
            f"(allowed: {', '.join(allowed_roles) or 'none'})"
        )


# Not-found errors


class NotFoundError(CaseworkError):
    """Referenced resource does not exist."""

    code: str = "NOT_FOUND"


class ApprovalNotFoundError(NotFoundError):
    """Approval request with given ID was not found."""

    code: str = "APPROVAL_NOT_FOUND"

    def __init__(self, approval_id: str):
        self.approval_id = approval_id
        super().__init__(f"Approval request not found: {approval_id}")


class CaseNotFoundError(NotFoundError):
    """Case with given ID was not found."""

    code: str = "CASE_NOT_FOUND"

    def __init__(self, case_id: str):
        self.case_id = case_id
        super().__init__(f"Case not found: {case_id}")


class TransactionNotFoundError(NotFoundError):
    """Ledger transaction was not found in the project."""

    code: str = "TRANSACTION_NOT_FOUND"

    def __init__(self, project_id: str, transaction_id: str):
        self.project_id = project_id
        self.transaction_id = transaction_id
        super().__init__(
            f"Transaction {transaction_id} not found in project {project_id}"
        )


class CostCenterNotFoundError(NotFoundError):
    """Cost center was not found in the project."""

    code: str = "COST_CENTER_NOT_FOUND"

    def __init__(self, project_id: str, cost_center_id: str):
        self.project_id = project_id
        self.cost_center_id = cost_center_id
        super().__init__(
            f"Cost center {cost_center_id} not found in project {project_id}"
        )


# State errors


class StateError(CaseworkError):
    """Operation attempted on a resource that is not in the required state."""

    code: str = "STATE_ERROR"


class AlreadyApprovedByRoleError(StateError):
    """
    The role has already cast its approval on this request.

    One vote per role, not per person: two people holding the same role
    share a single quorum slot.
    """

    code: str = "ALREADY_APPROVED_BY_ROLE"

    def __init__(self, approval_id: str, role: str):
        self.approval_id = approval_id
        self.role = role
        super().__init__(f"Stage already approved by role '{role}' ({approval_id})")


class ApprovalAlreadyResolvedError(StateError):
    """Approval request is terminal (APPROVED or REJECTED)."""

    code: str = "APPROVAL_ALREADY_RESOLVED"

    def __init__(self, approval_id: str, current_status: str):
        self.approval_id = approval_id
        self.current_status = current_status
        super().__init__(
            f"Approval request {approval_id} is already {current_status}"
        )


class ImmutabilityViolationError(StateError):
    """Attempt to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"{entity_type} {entity_id}: {reason}")


class ApprovalNotApprovedError(StateError):
    """Auto-actions can only be (re)run for a fully approved request."""

    code: str = "APPROVAL_NOT_APPROVED"

    def __init__(self, approval_id: str, current_status: str):
        self.approval_id = approval_id
        self.current_status = current_status
        super().__init__(
            f"Approval request {approval_id} is {current_status}, not approved"
        )


class NotPendingError(StateError):
    """Ledger transaction is no longer pending."""

    code: str = "NOT_PENDING"

    def __init__(self, transaction_id: str, current_status: str):
        self.transaction_id = transaction_id
        self.current_status = current_status
        super().__init__(
            f"Transaction {transaction_id} is {current_status}, not pending"
        )


class PaymentNotVerifiedError(StateError):
    """Payment gate: the case payment has not been verified by accounts."""

    code: str = "PAYMENT_NOT_VERIFIED"

    def __init__(self, case_id: str):
        self.case_id = case_id
        super().__init__(
            f"BLOCKED: Cannot convert case {case_id} to project - "
            "payment not verified by accountant"
        )


class InvalidStatusError(StateError):
    """Payment gate: the case is not waiting for planning."""

    code: str = "INVALID_STATUS"

    def __init__(self, case_id: str, current_status: str, required_status: str):
        self.case_id = case_id
        self.current_status = current_status
        self.required_status = required_status
        super().__init__(
            f"BLOCKED: Cannot convert case {case_id} to project - invalid "
            f"status: {current_status}. Must be {required_status}."
        )


# Concurrency errors


class ConcurrencyError(CaseworkError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


# Auto-action errors


class AutoActionError(CaseworkError):
    """Base exception for stage auto-action errors."""

    code: str = "AUTO_ACTION_ERROR"


class AutoActionFailedError(AutoActionError):
    """
    An auto-action failed after the approval was committed.

    The approval stays APPROVED.  ``cause_code`` carries the code of the
    underlying error (e.g. PAYMENT_NOT_VERIFIED) so the caller can show the
    real blocker and retry the action later without re-approving.
    """

    code: str = "AUTO_ACTION_FAILED"

    def __init__(
        self,
        approval_id: str,
        action_id: str,
        cause_code: str,
        cause_message: str,
    ):
        self.approval_id = approval_id
        self.action_id = action_id
        self.cause_code = cause_code
        self.cause_message = cause_message
        super().__init__(
            f"Auto-action '{action_id}' failed for approval {approval_id}: "
            f"[{cause_code}] {cause_message}"
        )


class UnknownAutoActionError(AutoActionError):
    """Stage references an auto-action that is not defined."""

    code: str = "UNKNOWN_AUTO_ACTION"

    def __init__(self, action_id: str):
        self.action_id = action_id
        super().__init__(f"Unknown auto-action: {action_id}")
