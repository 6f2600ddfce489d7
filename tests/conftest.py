"""
Pytest fixtures for the back-office kernel test suite.

Provides:
- An in-memory SQLite database per test (fresh schema, no shared state)
- A seeded chart of accounts, a main branch and a trading branch
- Operators (admin and cashier) and the branch's float accounts
- Every service wired to one session and one DeterministicClock

Tests never commit; the session is rolled back and the engine disposed at
teardown.
"""

import json
import logging
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session

from backoffice_config import load_config
from backoffice_kernel.db.engine import (
    create_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from backoffice_kernel.domain.clock import DeterministicClock
from backoffice_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from backoffice_kernel.selectors import LedgerSelector, ReportAggregator
from backoffice_kernel.services import (
    AgencyBankingService,
    AuditService,
    ExpenseService,
    EzwichService,
    FloatAccountService,
    JumiaService,
    LedgerPoster,
    MomoService,
    NotificationService,
    PowerService,
    SetupService,
    TransactionRecorder,
)

# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()

ADMIN_PASSWORD = "correct-horse-battery"


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
    Capture backoffice_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, power_service):
            power_service.record_sale(...)
            logs = captured_logs()
            assert any(r["message"] == "transaction_recorded" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("backoffice_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def engine():
    """Fresh in-memory SQLite database with every table created."""
    eng = init_engine_from_url("sqlite://")
    create_tables()
    yield eng
    reset_engine()


@pytest.fixture
def session(engine) -> Generator[Session, None, None]:
    """Session for one test.  Rolled back at teardown, never committed."""
    sess = get_session()
    yield sess
    try:
        sess.rollback()
    finally:
        sess.close()


@pytest.fixture
def test_actor_id() -> UUID:
    """Provide a consistent test actor ID."""
    return TEST_ACTOR_ID


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for testing."""
    return DeterministicClock()


@pytest.fixture
def config():
    """The packaged default configuration."""
    return load_config()


# =============================================================================
# Notification capture
# =============================================================================


class RecordingNotifier:
    """SMS gateway double that keeps what it was asked to send."""

    def __init__(self):
        self.sent: list[tuple[str, str]] = []
        self.fail = False

    def send_sms(self, phone: str, message: str) -> None:
        if self.fail:
            raise ConnectionError("SMS gateway unreachable")
        self.sent.append((phone, message))


@pytest.fixture
def sms() -> RecordingNotifier:
    return RecordingNotifier()


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def auditor(session, deterministic_clock) -> AuditService:
    return AuditService(session, deterministic_clock)


@pytest.fixture
def ledger(session, deterministic_clock, config) -> LedgerPoster:
    return LedgerPoster(session, deterministic_clock, config)


@pytest.fixture
def float_service(session, deterministic_clock, ledger, auditor) -> FloatAccountService:
    return FloatAccountService(session, deterministic_clock, ledger, auditor)


@pytest.fixture
def notifications(session, sms) -> NotificationService:
    return NotificationService(session, sms)


@pytest.fixture
def recorder(
    session, deterministic_clock, float_service, ledger, notifications, auditor
) -> TransactionRecorder:
    return TransactionRecorder(
        session, deterministic_clock, float_service, ledger, notifications, auditor
    )


@pytest.fixture
def setup_service(session, deterministic_clock, config, float_service) -> SetupService:
    return SetupService(session, deterministic_clock, config, float_service)


@pytest.fixture
def power_service(session, deterministic_clock, recorder) -> PowerService:
    return PowerService(session, deterministic_clock, recorder)


@pytest.fixture
def momo_service(session, deterministic_clock, recorder) -> MomoService:
    return MomoService(session, deterministic_clock, recorder)


@pytest.fixture
def agency_service(session, deterministic_clock, recorder) -> AgencyBankingService:
    return AgencyBankingService(session, deterministic_clock, recorder)


@pytest.fixture
def ezwich_service(session, deterministic_clock, config, recorder, auditor) -> EzwichService:
    return EzwichService(session, deterministic_clock, config, recorder, auditor)


@pytest.fixture
def jumia_service(session, deterministic_clock, recorder) -> JumiaService:
    return JumiaService(session, deterministic_clock, recorder)


@pytest.fixture
def expense_service(session, deterministic_clock, recorder) -> ExpenseService:
    return ExpenseService(session, deterministic_clock, recorder)


@pytest.fixture
def ledger_selector(session) -> LedgerSelector:
    return LedgerSelector(session)


@pytest.fixture
def reports(session) -> ReportAggregator:
    return ReportAggregator(session)


# =============================================================================
# Reference data
# =============================================================================


@pytest.fixture
def chart(setup_service) -> int:
    """Seed the configured chart of accounts."""
    return setup_service.seed_chart_of_accounts()


@pytest.fixture
def main_branch(setup_service, chart):
    return setup_service.create_branch("HQ", "Head Office")


@pytest.fixture
def branch(setup_service, main_branch):
    return setup_service.create_branch("ACC", "Accra Central")


@pytest.fixture
def admin_id(setup_service, branch) -> UUID:
    return setup_service.create_operator(
        "ada", "Ada Mensah", "admin", ADMIN_PASSWORD, branch.id, phone="0241112222"
    )


@pytest.fixture
def cashier_id(setup_service, branch) -> UUID:
    return setup_service.create_operator(
        "kofi", "Kofi Boateng", "cashier", "till-pass-1", branch.id, phone="0243334444"
    )


@pytest.fixture
def floats(float_service, setup_service, branch, test_actor_id) -> dict:
    """
    The trading branch's floats, each with its own pinned GL sub-accounts.

    till   cash-in-till  5000.00  (min 1000)
    power  power/ECG    10000.00  (min 500)
    jumia  jumia/Jumia      0.00
    momo   momo/MTN      3000.00
    """
    specs = {
        "till": dict(account_type="cash-in-till", opening_balance="5000.00", min_threshold="1000.00"),
        "power": dict(account_type="power", provider="ECG", opening_balance="10000.00", min_threshold="500.00"),
        "jumia": dict(account_type="jumia", provider="Jumia"),
        "momo": dict(account_type="momo", provider="MTN", opening_balance="3000.00"),
    }
    accounts = {}
    for name, kwargs in specs.items():
        account = float_service.create_account(branch.id, actor_id=test_actor_id, **kwargs)
        setup_service.create_float_mappings(account.id, test_actor_id)
        accounts[name] = account
    return accounts

