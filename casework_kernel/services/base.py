"""
BaseService -- common constructor for kernel write services.

Responsibility:
    Every kernel service receives the caller's SQLAlchemy ``Session`` and a
    ``Clock``.  Services ``flush()``; they never ``commit()`` or
    ``rollback()`` the caller's transaction.  Best-effort writes (the case
    mirrors) run inside a SAVEPOINT so their failure rolls back only
    themselves.

Architecture position:
    Kernel > Services -- imperative shell.
"""

from abc import ABC

from sqlalchemy.orm import Session

from casework_kernel.domain.clock import Clock, SystemClock


class BaseService(ABC):
    """Holds the session and clock shared by all kernel services."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()
