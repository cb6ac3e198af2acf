"""
PaymentVerificationService -- accounts sign-off on a case's advance payment.

Responsibility:
    The only path that sets ``payment_verified`` on a case.  Verification
    adds the advance to the case, moves it to ``waiting_for_planning`` (the
    state the payment gate requires), and books the advance as an approved
    credit on the case's ledger.

Architecture position:
    Services -- composes CaseMutator and CostCenterLedger.  Flushes only;
    the caller commits.

Invariants enforced:
    - Only ACCOUNTS_TEAM may verify.
    - The amount is a positive Decimal.
    - Every check (role, amount, case exists) runs before any write.
    - With an idempotency key, a retried verification returns the case
      unchanged and books nothing twice; the same key with a different
      amount raises IdempotencyConflictError.

Failure modes:
    - UnknownRoleError, UnauthorizedRoleError, InvalidAmountError,
      CaseNotFoundError, IdempotencyConflictError.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from casework_kernel.domain.activity import ActivityRecord, ActivityType, NotificationSink
from casework_kernel.domain.case import Case
from casework_kernel.domain.clock import Clock, SystemClock
from casework_kernel.domain.ledger import LedgerPolicy, TransactionDraft, TransactionType
from casework_kernel.domain.roles import UserRole, parse_role
from casework_kernel.exceptions import UnauthorizedRoleError
from casework_kernel.logging_config import LogContext, get_logger
from casework_kernel.services.activity_log import ActivityLogService
from casework_kernel.services.case_mutator import CaseMutator
from casework_services.cost_center_ledger import CostCenterLedger, parse_amount

logger = get_logger("services.payment_verification")

ADVANCE_PAYMENT_CATEGORY = "Advance Payment"
VERIFIER_ROLES: frozenset[UserRole] = frozenset({UserRole.ACCOUNTS_TEAM})


class PaymentVerificationService:
    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: LedgerPolicy | None = None,
        activity_log: ActivityLogService | None = None,
        sinks: Iterable[NotificationSink] = (),
    ):
        self._clock = clock or SystemClock()
        self._activity = activity_log or ActivityLogService(session, self._clock, sinks)
        self._cases = CaseMutator(session, self._clock)
        self._ledger = CostCenterLedger(
            session, self._clock, policy=policy, activity_log=self._activity,
        )

    def verify_payment(
        self,
        case_id: UUID,
        amount: Decimal | int | str,
        verifier_id: UUID,
        verifier_name: str,
        verifier_role: UserRole | str,
        idempotency_key: str | None = None,
    ) -> Case:
        """Mark the advance payment verified and book it as received.

        Raises:
            UnauthorizedRoleError: ``verifier_role`` is not ACCOUNTS_TEAM.
            InvalidAmountError: ``amount`` is not a positive Decimal.
            CaseNotFoundError: No such case.
        """
        role = parse_role(verifier_role)
        if role not in VERIFIER_ROLES:
            raise UnauthorizedRoleError(
                role.value,
                tuple(sorted(r.value for r in VERIFIER_ROLES)),
                f"payment verification for case {case_id}",
            )
        advance = parse_amount(amount)

        with LogContext.bind(case_id=case_id, actor_id=verifier_id):
            self._cases.get(case_id)

            replay = (
                idempotency_key is not None
                and self._ledger.find_transaction(case_id, idempotency_key) is not None
            )
            txn = self._ledger.record_transaction(
                case_id,
                TransactionDraft(
                    type=TransactionType.CREDIT,
                    category=ADVANCE_PAYMENT_CATEGORY,
                    amount=advance,
                    description="Advance payment verified by accounts",
                ),
                verifier_id,
                verifier_name,
                role,
                idempotency_key=idempotency_key,
            )
            if replay:
                logger.info(
                    "payment_verification_replayed",
                    extra={"transaction_id": str(txn.id), "idempotency_key": idempotency_key},
                )
                return self._cases.get(case_id)

            case = self._cases.mark_payment_verified(case_id, advance)
            self._activity.record(
                ActivityRecord(
                    type=ActivityType.PAYMENT_VERIFIED,
                    description=f"{verifier_name} verified advance payment of {advance}",
                    case_id=case_id,
                    project_id=case_id,
                    metadata={"amount": advance, "transaction_id": txn.id},
                    actor_id=verifier_id,
                    actor_name=verifier_name,
                )
            )
            logger.info(
                "payment_verified",
                extra={"amount": advance, "transaction_id": str(txn.id)},
            )
            return case
