"""
Tests for JumiaService: package receipt, POD collection and settlement.
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from backoffice_kernel.exceptions import (
    ConflictError,
    DuplicatePodCollectionError,
    FloatAccountNotFoundError,
    InsufficientFloatBalanceError,
    PackageNotFoundError,
    PackageStateError,
    ValidationError,
)
from backoffice_kernel.models.ledger import GLAccount
from backoffice_kernel.models.transactions import JumiaTransaction

TRACKING = "JUM-0001"


def _gl_balance(session, code: str) -> Decimal:
    return session.scalar(select(GLAccount.balance).where(GLAccount.code == code))


@pytest.fixture
def package(jumia_service, branch, floats, cashier_id):
    return jumia_service.receive_package(
        branch.id, TRACKING, "Efua Mensah", cashier_id, amount="150.00", customer_phone="0249990000"
    )


def _collect(jumia_service, branch_id, actor_id, **kwargs):
    params = dict(amount="150.00", fee="3.00")
    params.update(kwargs)
    return jumia_service.record_pod_collection(branch_id, TRACKING, "Efua Mensah", actor_id=actor_id, **params)


class TestPackages:
    """Package registration."""

    def test_receive(self, package):
        assert package.status == "received"
        assert package.amount == Decimal("150.00")
        assert package.delivered_at is None

    def test_duplicate_tracking_id(self, jumia_service, branch, package, cashier_id):
        with pytest.raises(ConflictError) as exc_info:
            jumia_service.receive_package(branch.id, TRACKING, "Someone Else", cashier_id)
        assert exc_info.value.status_code == 409

    def test_unknown_package(self, jumia_service, chart):
        with pytest.raises(PackageNotFoundError):
            jumia_service.get_package("JUM-MISSING")


class TestPodCollection:
    """Cash collected on delivery."""

    def test_floats_credited(self, float_service, jumia_service, branch, floats, package, cashier_id):
        info = _collect(jumia_service, branch.id, cashier_id)

        assert info.status == "completed"
        assert float_service.get(floats["till"].id).current_balance == Decimal("5153.00")
        assert float_service.get(floats["jumia"].id).current_balance == Decimal("150.00")

    def test_reference_and_package_state(self, deterministic_clock, jumia_service, branch, package, cashier_id):
        info = _collect(jumia_service, branch.id, cashier_id)

        assert info.reference == f"POD-{deterministic_clock.epoch_millis()}"
        delivered = jumia_service.get_package(TRACKING)
        assert delivered.status == "delivered"
        assert delivered.delivered_at is not None

    def test_gl_liability_on_jumia_float(self, session, jumia_service, branch, package, cashier_id):
        _collect(jumia_service, branch.id, cashier_id)

        assert _gl_balance(session, "1001-ACC-CASH-IN-TILL") == Decimal("153.00")
        assert _gl_balance(session, "2140-ACC-JUMIA") == Decimal("-150.00")
        assert _gl_balance(session, "4140-ACC-JUMIA") == Decimal("-3.00")

    def test_collected_into_payment_float(self, float_service, jumia_service, branch, floats, package, cashier_id):
        _collect(jumia_service, branch.id, cashier_id, payment_account_id=floats["momo"].id)

        assert float_service.get(floats["momo"].id).current_balance == Decimal("3153.00")
        assert float_service.get(floats["till"].id).current_balance == Decimal("5000.00")

    def test_duplicate_collection(self, jumia_service, branch, package, cashier_id):
        _collect(jumia_service, branch.id, cashier_id)
        with pytest.raises(DuplicatePodCollectionError) as exc_info:
            _collect(jumia_service, branch.id, cashier_id)
        assert exc_info.value.status_code == 409

    def test_deleted_collection_returns_package(self, recorder, float_service, jumia_service, branch, floats, package, cashier_id):
        info = _collect(jumia_service, branch.id, cashier_id)
        recorder.delete_transaction(JumiaTransaction, info.id, cashier_id)

        returned = jumia_service.get_package(TRACKING)
        assert returned.status == "received"
        assert returned.delivered_at is None
        assert float_service.get(floats["jumia"].id).current_balance == Decimal("0")

    def test_recollect_after_reversal(self, recorder, float_service, jumia_service, branch, floats, package, cashier_id):
        first = _collect(jumia_service, branch.id, cashier_id)
        recorder.reverse_transaction(JumiaTransaction, first.id, "Wrong customer", cashier_id)

        second = _collect(jumia_service, branch.id, cashier_id)

        assert second.status == "completed"
        assert jumia_service.get_package(TRACKING).status == "delivered"
        assert float_service.get(floats["jumia"].id).current_balance == Decimal("150.00")

    def test_settled_collection_cannot_be_undone(self, recorder, float_service, jumia_service, branch, floats, package, cashier_id):
        info = _collect(jumia_service, branch.id, cashier_id)
        jumia_service.record_settlement(branch.id, "150.00", "JSET-9", floats["momo"].id, cashier_id)

        with pytest.raises(PackageStateError) as exc_info:
            recorder.delete_transaction(JumiaTransaction, info.id, cashier_id)
        assert exc_info.value.status == "settled"
        assert recorder.get_transaction(JumiaTransaction, info.id).status == "completed"
        assert float_service.get(floats["jumia"].id).current_balance == Decimal("0")

    def test_unregistered_package(self, jumia_service, branch, floats, cashier_id):
        with pytest.raises(PackageNotFoundError):
            _collect(jumia_service, branch.id, cashier_id)

    def test_no_jumia_float(self, float_service, jumia_service, branch, floats, package, cashier_id, test_actor_id):
        float_service.deactivate(floats["jumia"].id, test_actor_id)
        with pytest.raises(FloatAccountNotFoundError):
            _collect(jumia_service, branch.id, cashier_id)


class TestSettlement:
    """Remitting collections to Jumia."""

    def test_settle_from_momo(self, session, float_service, jumia_service, branch, floats, package, cashier_id):
        _collect(jumia_service, branch.id, cashier_id)

        info = jumia_service.record_settlement(
            branch.id, "150.00", "JSET-001", floats["momo"].id, cashier_id
        )

        assert info.reference == "JSET-001"
        assert float_service.get(floats["jumia"].id).current_balance == Decimal("0")
        assert float_service.get(floats["momo"].id).current_balance == Decimal("2850.00")
        settled = jumia_service.get_package(TRACKING)
        assert settled.status == "settled"
        assert settled.settlement_reference == "JSET-001"
        assert _gl_balance(session, "2140-ACC-JUMIA") == Decimal("0")
        assert _gl_balance(session, "1200-ACC-MTN") == Decimal("-150.00")

    def test_reversed_settlement_returns_packages(self, recorder, float_service, jumia_service, branch, floats, package, cashier_id):
        _collect(jumia_service, branch.id, cashier_id)
        info = jumia_service.record_settlement(
            branch.id, "150.00", "JSET-002", floats["momo"].id, cashier_id
        )

        recorder.reverse_transaction(JumiaTransaction, info.id, "Remitted twice", cashier_id)

        delivered = jumia_service.get_package(TRACKING)
        assert delivered.status == "delivered"
        assert delivered.settlement_reference is None
        assert float_service.get(floats["jumia"].id).current_balance == Decimal("150.00")
        assert float_service.get(floats["momo"].id).current_balance == Decimal("3000.00")

    @pytest.mark.parametrize(
        "amount, reference, use_account",
        [(None, "JSET-1", True), ("10.00", "", True), ("10.00", "JSET-1", False)],
    )
    def test_missing_fields(self, jumia_service, branch, floats, cashier_id, amount, reference, use_account):
        account_id = floats["momo"].id if use_account else None
        with pytest.raises(ValidationError) as exc_info:
            jumia_service.record_settlement(branch.id, amount, reference, account_id, cashier_id)
        assert str(exc_info.value) == (
            "Settlement requires amount, settlement_reference, and float_account_id"
        )

    def test_cannot_pay_from_jumia_float(self, jumia_service, branch, floats, cashier_id):
        with pytest.raises(ValidationError):
            jumia_service.record_settlement(branch.id, "10.00", "JSET-2", floats["jumia"].id, cashier_id)

    def test_more_than_collected(self, float_service, jumia_service, branch, floats, package, cashier_id):
        _collect(jumia_service, branch.id, cashier_id)
        with pytest.raises(InsufficientFloatBalanceError):
            jumia_service.record_settlement(
                branch.id, "500.00", "JSET-3", floats["momo"].id, cashier_id
            )
