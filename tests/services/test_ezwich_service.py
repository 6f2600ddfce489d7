"""
Tests for EzwichService: card batch stock, card issuance and withdrawals.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from backoffice_kernel.exceptions import (
    BatchHasIssuedCardsError,
    BatchNotFoundError,
    BatchQuantityBelowIssuedError,
    DuplicateBatchCodeError,
    DuplicateCardNumberError,
    FloatAccountNotFoundError,
    InsufficientFloatBalanceError,
    MissingFieldError,
    NoAvailableBatchError,
    ValidationError,
)
from backoffice_kernel.models.ledger import GLAccount, GLTransaction
from backoffice_kernel.models.transactions import (
    EzwichCardBatch,
    EzwichCardIssuance,
    EzwichWithdrawal,
)


def _gl_balance(session, code: str) -> Decimal:
    return session.scalar(select(GLAccount.balance).where(GLAccount.code == code))


@pytest.fixture
def batch(ezwich_service, branch, floats, test_actor_id):
    """100 standard cards at 2.50 each."""
    return ezwich_service.receive_batch(
        branch.id, "EZ-2024-001", "standard", 100, test_actor_id,
        unit_cost="2.50", expiry_date=date(2026, 12, 31),
    )


def _issue(ezwich_service, branch_id, actor_id, card_number, **kwargs):
    return ezwich_service.issue_card(branch_id, card_number, "Abena Sarpong", actor_id, **kwargs)


class TestBatches:
    """Receiving and editing stock."""

    def test_receive(self, session, batch):
        assert batch.quantity_available == 100
        assert batch.status == "received"
        assert _gl_balance(session, "1300") == Decimal("250.00")
        assert _gl_balance(session, "2001") == Decimal("-250.00")

    def test_duplicate_code(self, ezwich_service, branch, batch, test_actor_id):
        with pytest.raises(DuplicateBatchCodeError) as exc_info:
            ezwich_service.receive_batch(branch.id, "EZ-2024-001", "standard", 10, test_actor_id)
        assert exc_info.value.status_code == 409
        assert str(exc_info.value) == "Batch code already exists"

    def test_non_positive_quantity(self, ezwich_service, branch, floats, test_actor_id):
        with pytest.raises(ValidationError):
            ezwich_service.receive_batch(branch.id, "EZ-2", "standard", 0, test_actor_id)

    def test_list_batches(self, ezwich_service, branch, batch, test_actor_id):
        ezwich_service.receive_batch(branch.id, "EZ-2024-002", "premium", 20, test_actor_id)
        codes = {b.batch_code for b in ezwich_service.list_batches(branch.id)}
        assert codes == {"EZ-2024-001", "EZ-2024-002"}

    def test_missing_batch(self, ezwich_service, chart):
        with pytest.raises(BatchNotFoundError) as exc_info:
            ezwich_service.get_batch(uuid4())
        assert str(exc_info.value) == "Batch not found"

    def test_update_posts_difference(self, session, ezwich_service, batch, test_actor_id):
        ezwich_service.update_batch(
            batch.id, batch_code=batch.batch_code, quantity_received=120,
            card_type="standard", actor_id=test_actor_id,
        )
        assert _gl_balance(session, "1300") == Decimal("300.00")

        # Second edit within the same clock tick
        updated = ezwich_service.update_batch(
            batch.id, batch_code=batch.batch_code, quantity_received=90,
            card_type="standard", actor_id=test_actor_id,
        )
        assert updated.quantity_received == 90
        assert _gl_balance(session, "1300") == Decimal("225.00")

    def test_cost_change_posts_value_difference(self, session, ezwich_service, branch, floats, test_actor_id):
        received = ezwich_service.receive_batch(
            branch.id, "EZ-2024-010", "standard", 10, test_actor_id, unit_cost="5.00",
        )
        ezwich_service.update_batch(
            received.id, batch_code="EZ-2024-010", quantity_received=10,
            card_type="standard", actor_id=test_actor_id, unit_cost="8.00",
        )
        assert _gl_balance(session, "1300") == Decimal("80.00")

        ezwich_service.delete_batch(received.id, test_actor_id)
        assert _gl_balance(session, "1300") == Decimal("0")
        assert _gl_balance(session, "2001") == Decimal("0")

    def test_quantity_and_cost_change_together(self, session, ezwich_service, batch, test_actor_id):
        ezwich_service.update_batch(
            batch.id, batch_code=batch.batch_code, quantity_received=80,
            card_type="standard", actor_id=test_actor_id, unit_cost="4.00",
        )
        assert _gl_balance(session, "1300") == Decimal("320.00")

    def test_unchanged_value_posts_nothing(self, session, ezwich_service, batch, test_actor_id):
        before = session.scalar(select(func.count()).select_from(GLTransaction))
        ezwich_service.update_batch(
            batch.id, batch_code=batch.batch_code, quantity_received=100,
            card_type="standard", actor_id=test_actor_id, notes="recounted",
        )
        assert session.scalar(select(func.count()).select_from(GLTransaction)) == before

    def test_update_requires_fields(self, ezwich_service, batch, test_actor_id):
        with pytest.raises(MissingFieldError) as exc_info:
            ezwich_service.update_batch(
                batch.id, batch_code="", quantity_received=10, card_type="standard",
                actor_id=test_actor_id,
            )
        assert str(exc_info.value) == "Batch code, quantity received, and card type are required"

    def test_cannot_reduce_below_issued(self, session, ezwich_service, batch, test_actor_id):
        # Simulate an older batch that has already issued most of its stock
        row = session.get(EzwichCardBatch, batch.id)
        row.quantity_issued = 60
        session.flush()

        with pytest.raises(BatchQuantityBelowIssuedError) as exc_info:
            ezwich_service.update_batch(
                batch.id, batch_code=batch.batch_code, quantity_received=50,
                card_type="standard", actor_id=test_actor_id,
            )
        assert str(exc_info.value) == "Cannot reduce quantity below issued cards (60)"
        assert ezwich_service.get_batch(batch.id).quantity_received == 100

    def test_rename_to_taken_code(self, ezwich_service, branch, batch, test_actor_id):
        ezwich_service.receive_batch(branch.id, "EZ-2024-002", "standard", 5, test_actor_id)
        with pytest.raises(DuplicateBatchCodeError):
            ezwich_service.update_batch(
                batch.id, batch_code="EZ-2024-002", quantity_received=100,
                card_type="standard", actor_id=test_actor_id,
            )

    def test_delete_unused_batch(self, session, ezwich_service, batch, test_actor_id):
        ezwich_service.delete_batch(batch.id, test_actor_id)

        assert session.get(EzwichCardBatch, batch.id) is None
        assert _gl_balance(session, "1300") == Decimal("0")

    def test_delete_batch_with_issued_cards(self, ezwich_service, branch, batch, cashier_id, test_actor_id):
        for n in range(3):
            _issue(ezwich_service, branch.id, cashier_id, f"CARD-{n}")

        with pytest.raises(BatchHasIssuedCardsError) as exc_info:
            ezwich_service.delete_batch(batch.id, test_actor_id)
        assert str(exc_info.value) == (
            "Cannot delete batch with issued cards. 3 cards have been issued from this batch."
        )


class TestIssuance:
    """Issuing cards to customers."""

    def test_issue_with_default_fee(self, session, deterministic_clock, float_service, ezwich_service, branch, floats, batch, cashier_id):
        info = _issue(ezwich_service, branch.id, cashier_id, "6201-0001", customer_phone="0247778888")

        assert info.reference == f"EZC-{deterministic_clock.epoch_millis()}"
        assert info.amount == Decimal("15.00")
        assert float_service.get(floats["till"].id).current_balance == Decimal("5015.00")
        assert ezwich_service.get_batch(batch.id).quantity_issued == 1
        assert _gl_balance(session, "4120") == Decimal("-15.00")

    def test_partner_account_receives_fee(self, float_service, ezwich_service, branch, floats, batch, cashier_id):
        _issue(ezwich_service, branch.id, cashier_id, "6201-0002", partner_account_id=floats["momo"].id, fee="20.00")

        assert float_service.get(floats["momo"].id).current_balance == Decimal("3020.00")
        assert float_service.get(floats["till"].id).current_balance == Decimal("5000.00")

    def test_free_card_moves_no_float(self, session, float_service, ezwich_service, branch, floats, batch, cashier_id):
        info = _issue(ezwich_service, branch.id, cashier_id, "6201-0003", fee="0")

        assert info.movements == ()
        assert info.gl_transaction_id is None
        assert float_service.get(floats["till"].id).current_balance == Decimal("5000.00")
        assert session.scalar(
            select(GLTransaction).where(GLTransaction.source_transaction_id == str(info.id))
        ) is None

    def test_duplicate_card_number(self, ezwich_service, branch, batch, cashier_id):
        _issue(ezwich_service, branch.id, cashier_id, "6201-0004")
        with pytest.raises(DuplicateCardNumberError):
            _issue(ezwich_service, branch.id, cashier_id, "6201-0004")

    def test_batch_depleted(self, ezwich_service, branch, floats, cashier_id, test_actor_id):
        small = ezwich_service.receive_batch(branch.id, "EZ-SMALL", "standard", 2, test_actor_id)
        _issue(ezwich_service, branch.id, cashier_id, "6201-0010")
        _issue(ezwich_service, branch.id, cashier_id, "6201-0011")

        assert ezwich_service.get_batch(small.id).status == "depleted"
        with pytest.raises(NoAvailableBatchError):
            _issue(ezwich_service, branch.id, cashier_id, "6201-0012")

    def test_issuance_linked_to_batch(self, session, ezwich_service, branch, batch, cashier_id):
        info = _issue(ezwich_service, branch.id, cashier_id, "6201-0020")

        row = session.get(EzwichCardIssuance, info.id)
        assert row.batch_id == batch.id
        assert row.card_type == "standard"

    def test_card_type_must_match(self, ezwich_service, branch, batch, cashier_id):
        with pytest.raises(NoAvailableBatchError):
            _issue(ezwich_service, branch.id, cashier_id, "6201-0030", card_type="premium")

    def test_customer_sms(self, ezwich_service, branch, batch, cashier_id, sms):
        info = _issue(ezwich_service, branch.id, cashier_id, "6201-0040", customer_phone="0247778888")
        assert sms.sent == [
            ("0247778888", f"Your E-Zwich card 6201-0040 has been issued. Ref: {info.reference}")
        ]


@pytest.fixture
def settlement(float_service, setup_service, branch, floats, test_actor_id):
    """E-Zwich settlement float holding 1000.00."""
    account = float_service.create_account(
        branch.id, actor_id=test_actor_id, account_type="e-zwich",
        provider="GhIPSS", opening_balance="1000.00",
    )
    setup_service.create_float_mappings(account.id, test_actor_id)
    return account


def _withdraw(ezwich_service, branch_id, actor_id, settlement_id, **kwargs):
    params = dict(amount="300.00", fee="6.00")
    params.update(kwargs)
    return ezwich_service.record_withdrawal(
        branch_id, "6201-9000", "Abena Sarpong", settlement_account_id=settlement_id,
        actor_id=actor_id, **params,
    )


class TestWithdrawal:
    """Cash paid out against a card."""

    def test_floats_moved(self, float_service, ezwich_service, branch, floats, settlement, cashier_id):
        info = _withdraw(ezwich_service, branch.id, cashier_id, settlement.id)

        assert info.status == "completed"
        assert info.gl_transaction_id is not None
        assert float_service.get(settlement.id).current_balance == Decimal("700.00")
        assert float_service.get(floats["till"].id).current_balance == Decimal("5006.00")

    def test_row_recorded(self, session, ezwich_service, branch, floats, settlement, cashier_id):
        info = _withdraw(ezwich_service, branch.id, cashier_id, settlement.id)

        row = session.get(EzwichWithdrawal, info.id)
        assert row.settlement_account_id == settlement.id
        assert row.cash_till_account_id == floats["till"].id
        assert row.card_number == "6201-9000"

    def test_no_fee_leaves_till(self, session, float_service, ezwich_service, branch, floats, settlement, cashier_id):
        info = _withdraw(ezwich_service, branch.id, cashier_id, settlement.id, fee="0")

        assert float_service.get(floats["till"].id).current_balance == Decimal("5000.00")
        assert session.get(EzwichWithdrawal, info.id).cash_till_account_id is None

    def test_settlement_cannot_cover(self, float_service, ezwich_service, branch, settlement, cashier_id):
        with pytest.raises(InsufficientFloatBalanceError) as exc_info:
            _withdraw(ezwich_service, branch.id, cashier_id, settlement.id, amount="1200.00")

        assert str(exc_info.value) == "Insufficient balance. Available: GHS 1000.00, Required: GHS 1200.00"
        assert float_service.get(settlement.id).current_balance == Decimal("1000.00")

    def test_settlement_account_required(self, ezwich_service, branch, floats, cashier_id):
        with pytest.raises(MissingFieldError) as exc_info:
            _withdraw(ezwich_service, branch.id, cashier_id, None)
        assert str(exc_info.value) == "Missing settlement account ID for withdrawal"

    def test_inactive_settlement_account(self, float_service, ezwich_service, branch, settlement, cashier_id, test_actor_id):
        float_service.deactivate(settlement.id, test_actor_id)
        with pytest.raises(FloatAccountNotFoundError) as exc_info:
            _withdraw(ezwich_service, branch.id, cashier_id, settlement.id)
        assert str(exc_info.value) == "Settlement account not found or inactive"

    def test_unknown_settlement_account(self, ezwich_service, branch, floats, cashier_id):
        with pytest.raises(FloatAccountNotFoundError):
            _withdraw(ezwich_service, branch.id, cashier_id, uuid4())

    def test_reverse_restores_floats(self, recorder, float_service, ezwich_service, branch, floats, settlement, cashier_id):
        info = _withdraw(ezwich_service, branch.id, cashier_id, settlement.id)

        recorder.reverse_transaction(EzwichWithdrawal, info.id, "Card declined", cashier_id)

        assert float_service.get(settlement.id).current_balance == Decimal("1000.00")
        assert float_service.get(floats["till"].id).current_balance == Decimal("5000.00")

    def test_customer_sms(self, ezwich_service, branch, floats, settlement, cashier_id, sms):
        _withdraw(ezwich_service, branch.id, cashier_id, settlement.id, customer_phone="0247778888")

        assert (
            "0247778888", "Your E-Zwich withdrawal of GHS 300.00 was successful. Card: 6201-9000"
        ) in sms.sent
