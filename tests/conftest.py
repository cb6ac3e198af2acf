"""
Pytest fixtures for the casework test suite.

Provides:
- A fresh file-backed SQLite database per test (savepoint-correct driver setup)
- PostgreSQL for tests marked ``postgres`` when DATABASE_URL is set
- A deterministic clock, the default stage table and ledger policy
- Service factories wired to a recording notification sink
- Captured JSON log records

Environment Variables:
- DATABASE_URL: PostgreSQL connection URL, used only by ``postgres`` tests.
"""

import json
import logging
import os
from dataclasses import dataclass
from io import StringIO
from typing import Generator
from uuid import NAMESPACE_URL, UUID, uuid5

import pytest
from sqlalchemy.orm import Session

from casework_config import get_active_config
from casework_config.bridges import build_ledger_policy, build_stage_table
from casework_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    is_postgres,
    reset_engine,
)
from casework_kernel.domain.activity import RecordingSink
from casework_kernel.domain.case import CaseStatus
from casework_kernel.domain.clock import DeterministicClock
from casework_kernel.domain.roles import InMemoryRoleDirectory, UserRole
from casework_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from casework_kernel.services.case_mutator import CaseMutator
from casework_services import (
    ApprovalWorkflowEngine,
    CostCenterLedger,
    PaymentVerificationService,
)


# =============================================================================
# Actors
# =============================================================================


@dataclass(frozen=True)
class Actor:
    id: UUID
    name: str
    role: UserRole


def actor_for(role: UserRole, n: int = 1) -> Actor:
    """Stable test actor for ``role``; ``n`` distinguishes people sharing a role."""
    return Actor(
        id=uuid5(NAMESPACE_URL, f"casework-test/{role.name}/{n}"),
        name=f"{role.value} {n}",
        role=role,
    )


@pytest.fixture
def actors() -> dict[UserRole, Actor]:
    return {role: actor_for(role) for role in UserRole}


@pytest.fixture
def make_actor():
    return actor_for


@pytest.fixture
def role_directory(actors) -> InMemoryRoleDirectory:
    return InMemoryRoleDirectory({a.id: a.role for a in actors.values()})


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture casework logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, workflow):
            workflow.initiate(...)
            logs = captured_logs()
            assert any(r["message"] == "approval_initiated" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("casework")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL (DATABASE_URL)"
    )


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def db_engine(tmp_path, request):
    """Engine for one test.

    SQLite file under ``tmp_path`` by default.  Tests marked ``postgres``
    use DATABASE_URL and are skipped without it.
    """
    if request.node.get_closest_marker("postgres"):
        url = os.environ.get("DATABASE_URL")
        if not url:
            pytest.skip("DATABASE_URL not set")
    else:
        url = f"sqlite:///{tmp_path / 'casework.db'}"

    engine = init_engine_from_url(url, pool_size=10)
    if is_postgres():
        drop_tables()
    create_tables()
    yield engine
    if is_postgres():
        drop_tables()
    reset_engine()


@pytest.fixture
def session_factory(db_engine):
    return get_session_factory()


@pytest.fixture
def session(session_factory) -> Generator[Session, None, None]:
    sess = session_factory()
    yield sess
    sess.rollback()
    sess.close()


# =============================================================================
# Configuration and clock
# =============================================================================


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock()


@pytest.fixture(scope="session")
def workflow_config():
    return get_active_config()


@pytest.fixture
def stage_table(workflow_config):
    return build_stage_table(workflow_config)


@pytest.fixture
def ledger_policy(workflow_config):
    return build_ledger_policy(workflow_config)


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def cases(session, clock) -> CaseMutator:
    return CaseMutator(session, clock)


@pytest.fixture
def workflow(session, stage_table, clock, role_directory, sink) -> ApprovalWorkflowEngine:
    return ApprovalWorkflowEngine(
        session,
        stage_table,
        clock=clock,
        role_directory=role_directory,
        sinks=[sink],
    )


@pytest.fixture
def ledger(session, clock, ledger_policy, sink) -> CostCenterLedger:
    return CostCenterLedger(session, clock, policy=ledger_policy, sinks=[sink])


@pytest.fixture
def payments(session, clock, ledger_policy, sink) -> PaymentVerificationService:
    return PaymentVerificationService(session, clock, policy=ledger_policy, sinks=[sink])


@pytest.fixture
def make_case(cases, session):
    """Open and commit a case row."""

    def _make(title: str = "Villa renovation", status: CaseStatus = CaseStatus.LEAD):
        case = cases.open_case(title, status)
        session.commit()
        return case

    return _make


@pytest.fixture
def approve_all(workflow, actors, clock):
    """Approve ``request`` with every required role, in configured order."""

    def _approve(request):
        outcome = None
        for role in request.required_roles:
            clock.tick()
            actor = actors[role]
            outcome = workflow.approve(request.id, actor.id, actor.name, role)
        return outcome

    return _approve
