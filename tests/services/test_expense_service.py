"""
Tests for ExpenseService.

Covers:
- Expense heads and category to GL code resolution
- Raising a claim (pending, accrued, no money moved)
- Approval (float debited, payable cleared) and its role gate
- Rejection (failed, accrual reversed)
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from backoffice_kernel.exceptions import (
    ExpenseHeadNotFoundError,
    InsufficientFloatBalanceError,
    InvalidStatusTransitionError,
    PaymentSourceNotAllowedError,
    PermissionDeniedError,
)
from backoffice_kernel.models.ledger import GLAccount
from backoffice_kernel.models.transactions import Expense


def _gl_balance(session, code: str) -> Decimal:
    return session.scalar(select(GLAccount.balance).where(GLAccount.code == code))


@pytest.fixture
def stationery(expense_service, chart, test_actor_id):
    return expense_service.create_head("Stationery", "Administrative", test_actor_id)


@pytest.fixture
def manager_id(setup_service, branch):
    return setup_service.create_operator(
        "mary", "Mary Asare", "manager", "manager-pass", branch.id, phone="0245550000"
    )


def _claim(expense_service, branch, head, actor_id, amount="400.00", source="cash", **kwargs):
    return expense_service.create_expense(branch.id, head.id, amount, source, actor_id, **kwargs)


class TestHeads:
    """Expense head catalogue."""

    def test_category_normalized(self, stationery):
        assert stationery.category == "administrative"

    def test_list_sorted(self, expense_service, stationery, test_actor_id):
        expense_service.create_head("Armed Guard", "security", test_actor_id)
        assert [h.name for h in expense_service.list_heads()] == ["Armed Guard", "Stationery"]


class TestCreateExpense:
    """Raising a claim."""

    def test_pending_and_no_money_moved(self, float_service, expense_service, branch, floats, stationery, cashier_id):
        info = _claim(expense_service, branch, stationery, cashier_id)

        assert info.status == "pending"
        assert info.movements == ()
        assert float_service.get(floats["till"].id).current_balance == Decimal("5000.00")

    def test_reference_format(self, deterministic_clock, expense_service, branch, floats, stationery, cashier_id):
        info = _claim(expense_service, branch, stationery, cashier_id)
        assert info.reference == f"EXP-2024-{str(deterministic_clock.epoch_millis())[-6:]}"

    def test_accrued_to_category_account(self, session, expense_service, branch, floats, stationery, cashier_id):
        _claim(expense_service, branch, stationery, cashier_id)

        assert _gl_balance(session, "5002") == Decimal("400.00")
        assert _gl_balance(session, "2001") == Decimal("-400.00")

    def test_head_gl_code_overrides_category(self, session, expense_service, branch, floats, cashier_id, test_actor_id):
        bank_fees = expense_service.create_head("Bank Fees", "administrative", test_actor_id, gl_account_code="5003")
        _claim(expense_service, branch, bank_fees, cashier_id, amount="12.00")
        assert _gl_balance(session, "5003") == Decimal("12.00")

    def test_alias_category_posts_as_operational(
        self, session, expense_service, branch, floats, cashier_id, test_actor_id, captured_logs
    ):
        guards = expense_service.create_head("Guards", "security", test_actor_id)
        _claim(expense_service, branch, guards, cashier_id, amount="80.00")

        assert _gl_balance(session, "5001") == Decimal("80.00")
        fallback = [r for r in captured_logs() if r["message"] == "expense_category_fallback"]
        assert fallback[0]["posted_as"] == "operational"

    def test_expense_date_defaults_to_today(self, session, expense_service, branch, floats, stationery, cashier_id):
        info = _claim(expense_service, branch, stationery, cashier_id)
        assert session.get(Expense, info.id).expense_date == date(2024, 1, 1)

    @pytest.mark.parametrize("float_name", ["power", "jumia"])
    def test_third_party_floats_cannot_pay(self, expense_service, branch, floats, stationery, cashier_id, float_name):
        with pytest.raises(PaymentSourceNotAllowedError):
            _claim(expense_service, branch, stationery, cashier_id, source=str(floats[float_name].id))

    def test_unknown_head(self, expense_service, branch, floats, cashier_id):
        with pytest.raises(ExpenseHeadNotFoundError):
            expense_service.create_expense(branch.id, uuid4(), "10.00", "cash", cashier_id)


class TestApproval:
    """Paying a claim."""

    def test_approve_cash_claim(self, session, float_service, expense_service, branch, floats, stationery, cashier_id, admin_id):
        claim = _claim(expense_service, branch, stationery, cashier_id)

        info = expense_service.approve(claim.id, admin_id, comments="OK")

        assert info.status == "completed"
        assert float_service.get(floats["till"].id).current_balance == Decimal("4600.00")
        row = session.get(Expense, claim.id)
        assert row.approved_by == admin_id
        assert row.comments == "OK"
        assert _gl_balance(session, "2001") == Decimal("0")
        assert _gl_balance(session, "1001-ACC-CASH-IN-TILL") == Decimal("-400.00")

    def test_approve_from_momo(self, float_service, expense_service, branch, floats, stationery, cashier_id, manager_id):
        claim = _claim(expense_service, branch, stationery, cashier_id, source=str(floats["momo"].id))
        expense_service.approve(claim.id, manager_id)
        assert float_service.get(floats["momo"].id).current_balance == Decimal("2600.00")

    def test_submitter_notified(self, expense_service, branch, floats, stationery, cashier_id, admin_id, sms):
        claim = _claim(expense_service, branch, stationery, cashier_id)
        expense_service.approve(claim.id, admin_id)
        assert sms.sent == [("0243334444", f"Expense {claim.reference} approved")]

    def test_cashier_cannot_approve(self, expense_service, branch, floats, stationery, cashier_id):
        claim = _claim(expense_service, branch, stationery, cashier_id)
        with pytest.raises(PermissionDeniedError):
            expense_service.approve(claim.id, cashier_id)

    def test_insufficient_balance(self, float_service, expense_service, branch, floats, stationery, cashier_id, admin_id):
        claim = _claim(expense_service, branch, stationery, cashier_id, amount="9000.00")

        with pytest.raises(InsufficientFloatBalanceError) as exc_info:
            expense_service.approve(claim.id, admin_id)
        assert str(exc_info.value) == "Insufficient float account balance for this expense."
        assert float_service.get(floats["till"].id).current_balance == Decimal("5000.00")

    def test_approve_twice(self, expense_service, branch, floats, stationery, cashier_id, admin_id):
        claim = _claim(expense_service, branch, stationery, cashier_id)
        expense_service.approve(claim.id, admin_id)
        with pytest.raises(InvalidStatusTransitionError):
            expense_service.approve(claim.id, admin_id)


class TestRejection:
    """Failing a claim."""

    def test_reject_reverses_accrual(self, session, float_service, expense_service, branch, floats, stationery, cashier_id, admin_id):
        claim = _claim(expense_service, branch, stationery, cashier_id)

        info = expense_service.reject(claim.id, admin_id, comments="No receipt")

        assert info.status == "failed"
        assert _gl_balance(session, "5002") == Decimal("0")
        assert _gl_balance(session, "2001") == Decimal("0")
        assert float_service.get(floats["till"].id).current_balance == Decimal("5000.00")

    def test_rejected_cannot_be_approved(self, expense_service, branch, floats, stationery, cashier_id, admin_id):
        claim = _claim(expense_service, branch, stationery, cashier_id)
        expense_service.reject(claim.id, admin_id)
        with pytest.raises(InvalidStatusTransitionError):
            expense_service.approve(claim.id, admin_id)

    def test_completed_cannot_be_rejected(self, expense_service, branch, floats, stationery, cashier_id, admin_id):
        claim = _claim(expense_service, branch, stationery, cashier_id)
        expense_service.approve(claim.id, admin_id)
        with pytest.raises(InvalidStatusTransitionError):
            expense_service.reject(claim.id, admin_id)
