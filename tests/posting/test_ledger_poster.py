"""
Tests for LedgerPoster and AccountResolver.

Covers:
- Balanced journals and the cached GL balances they move
- Idempotency on (source_module, source_transaction_id, transaction_type)
- Role resolution order: override, pinned float mapping, branch mapping,
  main-branch mapping, float control account, configured default
- Reversal by mirror entry
- Best-effort posting
"""

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from backoffice_kernel.exceptions import (
    GLAccountNotFoundError,
    MappingNotFoundError,
    PostingRuleNotFoundError,
    UnbalancedEntryError,
)
from backoffice_kernel.models.audit import AuditLogEntry
from backoffice_kernel.models.ledger import (
    GLAccount,
    GLAccountType,
    GLMapping,
    GLTransaction,
    GLTransactionStatus,
    MappingType,
)
from backoffice_kernel.posting_rules import (
    BasePostingRule,
    LineSide,
    LineSpec,
    PostingEvent,
    PostingRuleRegistry,
)
from backoffice_kernel.posting_rules.rules import CommissionRule
from backoffice_kernel.services import LedgerPoster, PostingStatus
from backoffice_kernel.services.best_effort import post_best_effort, reverse_best_effort


def _gl_balance(session, code: str) -> Decimal:
    return session.scalar(select(GLAccount.balance).where(GLAccount.code == code))


def _journal_count(session) -> int:
    return session.scalar(select(func.count()).select_from(GLTransaction))


def _sale(branch_id, txn_id="sale-1", amount="100.00", fee="5.00", **kwargs) -> PostingEvent:
    return PostingEvent(
        source_module="power",
        transaction_type="sale",
        source_transaction_id=txn_id,
        amount=Decimal(amount),
        fee=Decimal(fee),
        branch_id=branch_id,
        reference="POWER-1",
        **kwargs,
    )


def _map(session, branch_id, code, actor_id, mapping_type="main", transaction_type="power_float"):
    account = session.scalar(select(GLAccount).where(GLAccount.code == code))
    session.add(
        GLMapping(
            branch_id=branch_id,
            transaction_type=transaction_type,
            mapping_type=mapping_type,
            gl_account_id=account.id,
            created_by_id=actor_id,
        )
    )
    session.flush()


class LopsidedRule(BasePostingRule):
    def lines_for(self, event):
        return [
            LineSpec(MappingType.EXPENSE, LineSide.DEBIT, event.amount),
            LineSpec(MappingType.ASSET, LineSide.CREDIT, event.amount - Decimal("1.00")),
        ]


class TestPosting:
    """Journal creation."""

    def test_power_sale_defaults(self, session, ledger, branch):
        result = ledger.post(_sale(branch.id))

        assert result.status == PostingStatus.POSTED
        assert result.is_success
        codes = {(l.account_code, l.debit, l.credit) for l in result.lines}
        assert codes == {
            ("1001", Decimal("105.00"), Decimal("0")),
            ("1230", Decimal("0"), Decimal("100.00")),
            ("4130", Decimal("0"), Decimal("5.00")),
        }
        txn = session.get(GLTransaction, result.gl_transaction_id)
        assert txn.is_balanced
        assert txn.entry_date == ledger.clock.today()
        assert txn.entry_metadata["reference"] == "POWER-1"

    def test_cached_balances_move(self, session, ledger, branch):
        ledger.post(_sale(branch.id))

        assert _gl_balance(session, "1001") == Decimal("105.00")
        assert _gl_balance(session, "1230") == Decimal("-100.00")
        assert _gl_balance(session, "4130") == Decimal("-5.00")

    def test_idempotent(self, session, ledger, branch):
        first = ledger.post(_sale(branch.id))
        second = ledger.post(_sale(branch.id))

        assert second.status == PostingStatus.ALREADY_POSTED
        assert second.gl_transaction_id == first.gl_transaction_id
        assert _journal_count(session) == 1
        assert _gl_balance(session, "1001") == Decimal("105.00")

    def test_same_source_different_type_is_separate(self, session, ledger, branch):
        event = PostingEvent("expenses", "pending", "exp-1", Decimal("40.00"), branch_id=branch.id)
        ledger.post(event)
        ledger.post(PostingEvent("expenses", "payment", "exp-1", Decimal("40.00"), branch_id=branch.id))
        assert _journal_count(session) == 2

    def test_zero_amount_posts_nothing(self, session, ledger, branch):
        result = ledger.post(_sale(branch.id, amount="0", fee="0"))
        assert result.status == PostingStatus.NOTHING_TO_POST
        assert not result.is_success
        assert _journal_count(session) == 0

    def test_unknown_rule(self, ledger, branch):
        with pytest.raises(PostingRuleNotFoundError):
            ledger.post(PostingEvent("power", "refund", "x", Decimal("1.00"), branch_id=branch.id))

    def test_unbalanced_rule_writes_nothing(self, session, deterministic_clock, config, branch):
        registry = PostingRuleRegistry()
        registry.register(LopsidedRule("misc", ("odd",), "commissions"))
        poster = LedgerPoster(session, deterministic_clock, config, registry=registry)

        with pytest.raises(UnbalancedEntryError) as exc_info:
            poster.post(PostingEvent("misc", "odd", "x", Decimal("10.00"), branch_id=branch.id))

        assert exc_info.value.debits == Decimal("10.00")
        assert exc_info.value.credits == Decimal("9.00")
        assert _journal_count(session) == 0
        assert _gl_balance(session, "5400") == Decimal("0")

    def test_commission(self, session, ledger, branch):
        result = ledger.post_commission(
            source_transaction_id="comm-1", amount=Decimal("12.00"), branch_id=branch.id
        )
        assert {l.account_code for l in result.lines} == {"5400", "1001"}
        assert _gl_balance(session, "5400") == Decimal("12.00")

    def test_completion_logged(self, ledger, branch, captured_logs):
        ledger.post(_sale(branch.id))
        logs = [r for r in captured_logs() if r["message"] == "gl_posting_completed"]
        assert len(logs) == 1
        assert logs[0]["line_count"] == 3
        assert logs[0]["source_ref"] == "power/sale/sale-1"


class TestAccountResolution:
    """Role -> GL account lookup order."""

    def test_override_wins(self, session, ledger, branch):
        result = ledger.post(_sale(branch.id, account_overrides={"main": "1240"}))
        assert "1240" in {l.account_code for l in result.lines}
        assert "1230" not in {l.account_code for l in result.lines}

    def test_unknown_override_writes_nothing(self, session, ledger, branch):
        with pytest.raises(GLAccountNotFoundError):
            ledger.post(_sale(branch.id, account_overrides={"main": "9999"}))
        assert _journal_count(session) == 0
        assert _gl_balance(session, "1001") == Decimal("0")

    def test_main_branch_mapping_used_as_fallback(self, session, ledger, branch, main_branch, test_actor_id):
        _map(session, main_branch.id, "1240", test_actor_id)
        result = ledger.post(_sale(branch.id))
        main_line = next(l for l in result.lines if l.role == "main")
        assert main_line.account_code == "1240"

    def test_branch_mapping_beats_main_branch(self, session, ledger, branch, main_branch, test_actor_id):
        _map(session, main_branch.id, "1240", test_actor_id)
        _map(session, branch.id, "1210", test_actor_id)
        result = ledger.post(_sale(branch.id))
        main_line = next(l for l in result.lines if l.role == "main")
        assert main_line.account_code == "1210"

    def test_pinned_float_mapping_beats_branch(self, session, ledger, branch, floats, test_actor_id):
        _map(session, branch.id, "1210", test_actor_id)
        result = ledger.post(
            _sale(
                branch.id,
                float_account_id=floats["power"].id,
                payment_float_account_id=floats["till"].id,
            )
        )
        by_role = {l.role: l.account_code for l in result.lines}
        assert by_role["main"] == "1230-ACC-ECG"
        assert by_role["fee"] == "4130-ACC-ECG"
        # payment resolves to the paying float's own main account
        assert by_role["payment"] == "1001-ACC-CASH-IN-TILL"

    def test_float_control_account(self, session, ledger, branch, float_service, test_actor_id):
        # A float without its own mappings posts to its type's control account
        momo = float_service.create_account(branch.id, "momo", test_actor_id, provider="Vodafone")
        result = ledger.post(_sale(branch.id, payment_float_account_id=momo.id))
        by_role = {l.role: l.account_code for l in result.lines}
        assert by_role["payment"] == "1200"

    def test_no_mapping_anywhere(self, session, deterministic_clock, config, branch):
        registry = PostingRuleRegistry()
        registry.register(CommissionRule("misc", ("fee",), "misc_key"))
        poster = LedgerPoster(session, deterministic_clock, config, registry=registry)

        with pytest.raises(MappingNotFoundError) as exc_info:
            poster.post(PostingEvent("misc", "fee", "x", Decimal("5.00"), branch_id=branch.id))
        assert exc_info.value.transaction_type == "misc_key"
        assert exc_info.value.mapping_type == "expense"


class TestReversal:
    """Mirror entries."""

    def test_reverse_nets_to_zero(self, session, ledger, branch):
        original = ledger.post(_sale(branch.id))
        results = ledger.reverse("power", "sale-1", "Customer refund")

        assert len(results) == 1
        mirror = session.get(GLTransaction, results[0].gl_transaction_id)
        assert mirror.source_transaction_type == "reversal_sale"
        assert mirror.description == "Reversal: POWER-1 - Customer refund"
        assert mirror.reversal_of_id == original.gl_transaction_id
        assert session.get(GLTransaction, original.gl_transaction_id).status == GLTransactionStatus.REVERSED.value
        for code in ("1001", "1230", "4130"):
            assert _gl_balance(session, code) == Decimal("0")

    def test_mirror_swaps_sides(self, session, ledger, branch):
        original = ledger.post(_sale(branch.id))
        mirror = ledger.reverse("power", "sale-1", "error")[0]
        flipped = {(l.account_code, l.credit, l.debit) for l in original.lines}
        assert {(l.account_code, l.debit, l.credit) for l in mirror.lines} == flipped

    def test_reverse_twice_is_idempotent(self, session, ledger, branch):
        ledger.post(_sale(branch.id))
        first = ledger.reverse("power", "sale-1", "error")
        second = ledger.reverse("power", "sale-1", "error")
        assert second[0].status == PostingStatus.ALREADY_POSTED
        assert second[0].gl_transaction_id == first[0].gl_transaction_id
        assert _journal_count(session) == 2

    def test_find_entry(self, ledger, branch):
        posted = ledger.post(_sale(branch.id))
        ledger.reverse("power", "sale-1", "error")

        assert ledger.find_entry("power", "sale-1", "sale").id == posted.gl_transaction_id
        assert ledger.find_entry("power", "sale-1", "reversal_sale").reversal_of_id == posted.gl_transaction_id
        assert ledger.find_entry("power", "sale-2") is None

    def test_reverse_unposted_source(self, ledger):
        assert ledger.reverse("power", "never-posted", "error") == []

    def test_reverse_one_type_only(self, session, ledger, branch):
        ledger.post(PostingEvent("expenses", "pending", "exp-1", Decimal("40.00"), branch_id=branch.id))
        ledger.post(PostingEvent("expenses", "payment", "exp-1", Decimal("40.00"), branch_id=branch.id))
        results = ledger.reverse("expenses", "exp-1", "undo payment", transaction_type="payment")
        assert [r.source_ref for r in results] == ["expenses/reversal_payment/exp-1"]


class TestCodeLookups:
    """Expense, payable and cash code helpers."""

    def test_expense_category(self, ledger, chart):
        assert ledger.expense_account_code("administrative") == "5002"

    def test_unknown_category_falls_back_with_warning(self, ledger, chart, captured_logs):
        assert ledger.expense_account_code("travel") == "5001"
        warnings = [r for r in captured_logs() if r["message"] == "expense_category_fallback"]
        assert warnings[0]["posted_as"] == "operational"

    def test_payable_and_cash(self, ledger, chart):
        assert ledger.payable_account_code() == "2001"
        assert ledger.cash_account_code() == "1001"

    def test_first_by_codes_in_order(self, ledger, chart):
        found = ledger.resolver.first_by_codes(("5200", "5002", "5001"), GLAccountType.EXPENSE)
        assert found.code == "5002"

    def test_first_by_codes_type_must_match(self, ledger, chart):
        assert ledger.resolver.first_by_codes(("5002",), GLAccountType.ASSET) is None

    def test_missing_payable(self, ledger):
        # No chart seeded
        with pytest.raises(GLAccountNotFoundError):
            ledger.payable_account_code()


class TestBestEffort:
    """post_best_effort / reverse_best_effort swallow ledger failures."""

    def test_failure_returns_none_and_audits(self, session, ledger, auditor, branch, captured_logs):
        event = _sale(branch.id, account_overrides={"main": "9999"})
        assert post_best_effort(ledger, event, auditor) is None

        audit = session.scalars(
            select(AuditLogEntry).where(AuditLogEntry.action_type == "gl_posting_failed")
        ).one()
        assert audit.status == "failure"
        assert audit.severity == "high"
        assert "9999" in audit.error_message
        assert any(r["message"] == "gl_posting_failed" for r in captured_logs())

    def test_success_passes_result_through(self, ledger, branch):
        result = post_best_effort(ledger, _sale(branch.id))
        assert result.status == PostingStatus.POSTED

    def test_reverse_best_effort_never_raises(self, ledger):
        assert reverse_best_effort(ledger, "power", "missing", "error") == []
