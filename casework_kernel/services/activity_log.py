"""
ActivityLogService -- append-only activity log plus notification fan-out.

Responsibility:
    Persist one ``activity_log`` row per domain event and hand the same
    record to every registered ``NotificationSink`` once the row is durable.

Architecture position:
    Kernel > Services.  Leaf component: no business logic, no reads.

Invariants enforced:
    - Entries are never updated or deleted (model listeners).
    - The log row is written in the caller's transaction; it commits or rolls
      back together with the write it describes.
    - Sinks are notified only after the outermost transaction commits.
      Records written inside a transaction or savepoint that rolls back are
      never delivered.
    - A failing sink never fails the originating operation: its exception is
      logged at WARNING and discarded.

Failure modes:
    - SQLAlchemyError from the log write propagates; the caller rolls back.
"""

from __future__ import annotations

from typing import Iterable

from sqlalchemy import event
from sqlalchemy.orm import Session, SessionTransaction

from casework_kernel.domain.activity import ActivityRecord, NotificationSink
from casework_kernel.domain.clock import Clock
from casework_kernel.logging_config import get_logger
from casework_kernel.models.activity import ActivityLogModel
from casework_kernel.services.base import BaseService
from casework_kernel.utils.hashing import to_jsonable

logger = get_logger("services.activity_log")

_PENDING_KEY = "casework_pending_notifications"
_LISTENING_KEY = "casework_notification_listeners"

# (sinks, record, transaction the record was written in)
_Pending = tuple[tuple[NotificationSink, ...], ActivityRecord, SessionTransaction]


class ActivityLogService(BaseService):
    """Writes activity entries and notifies sinks after commit."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        sinks: Iterable[NotificationSink] = (),
    ):
        super().__init__(session, clock)
        self._sinks: list[NotificationSink] = list(sinks)

    def add_sink(self, sink: NotificationSink) -> None:
        self._sinks.append(sink)

    def record(self, record: ActivityRecord) -> ActivityRecord:
        """Append ``record`` and queue it for the sinks."""
        model = ActivityLogModel(
            type=record.type.value,
            case_id=record.case_id,
            project_id=record.project_id,
            description=record.description,
            details=to_jsonable(record.metadata),
            actor_id=record.actor_id,
            actor_name=record.actor_name,
            created_at=self.clock.now(),
        )
        self.session.add(model)
        self.session.flush()
        stored = model.to_dto()

        logger.info(
            "activity_recorded",
            extra={
                "activity_type": stored.type.value,
                "description": stored.description,
            },
        )

        if self._sinks:
            owner = self.session.get_nested_transaction() or self.session.get_transaction()
            _pending(self.session).append((tuple(self._sinks), stored, owner))
        return stored


def _pending(session: Session) -> list[_Pending]:
    if not session.info.get(_LISTENING_KEY):
        event.listen(session, "after_commit", _deliver_committed)
        event.listen(session, "after_soft_rollback", _discard_rolled_back)
        event.listen(session, "after_transaction_end", _forget_on_close)
        session.info[_LISTENING_KEY] = True
    return session.info.setdefault(_PENDING_KEY, [])


def _descends_from(txn: SessionTransaction | None, ancestor: SessionTransaction) -> bool:
    while txn is not None:
        if txn is ancestor:
            return True
        txn = txn.parent
    return False


def _deliver_committed(session: Session) -> None:
    # Releasing a savepoint also fires after_commit; wait for the outermost.
    if session.get_nested_transaction() is not None:
        return
    queued = session.info.pop(_PENDING_KEY, [])
    for sinks, record, _owner in queued:
        for sink in sinks:
            _deliver(sink, record)


def _discard_rolled_back(session: Session, previous_transaction: SessionTransaction) -> None:
    queued = session.info.get(_PENDING_KEY)
    if not queued:
        return
    kept = [p for p in queued if not _descends_from(p[2], previous_transaction)]
    dropped = len(queued) - len(kept)
    session.info[_PENDING_KEY] = kept
    if dropped:
        logger.info("notifications_discarded", extra={"count": dropped})


def _forget_on_close(session: Session, transaction: SessionTransaction) -> None:
    if transaction.parent is None:
        session.info.pop(_PENDING_KEY, None)


def _deliver(sink: NotificationSink, record: ActivityRecord) -> None:
    try:
        sink.deliver(record)
    except Exception:
        logger.warning(
            "notification_delivery_failed",
            extra={
                "sink": type(sink).__name__,
                "activity_type": record.type.value,
            },
            exc_info=True,
        )
