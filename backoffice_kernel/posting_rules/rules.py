"""
Standard posting rules for every back-office module.

Roles (MappingType) used below:
    main       the module's float control account
    liability  what the branch owes the customer, vendor or partner
    fee        fee income
    payment    the account the customer paid through (cash-in-till or a float)
    asset      inventory or funding source
    expense    expense account
    equity     opening capital
"""

from backoffice_kernel.models.ledger import MappingType as Role
from backoffice_kernel.posting_rules.base import (
    BasePostingRule,
    LineSide,
    LineSpec,
    PostingEvent,
)


class CashInRule(BasePostingRule):
    """Customer pays cash in: cash up, liability to customer up."""

    def lines_for(self, event: PostingEvent) -> list[LineSpec]:
        lines = self.pair(Role.MAIN, Role.LIABILITY, event.amount, "Cash received")
        lines += self.pair(Role.MAIN, Role.FEE, event.fee, "Transaction fee")
        return lines


class CashOutRule(BasePostingRule):
    """Customer withdraws: liability down, cash down; fee retained."""

    def lines_for(self, event: PostingEvent) -> list[LineSpec]:
        lines = self.pair(Role.LIABILITY, Role.MAIN, event.amount, "Cash paid out")
        lines += self.pair(Role.MAIN, Role.FEE, event.fee, "Transaction fee")
        return lines


class CardIssuanceRule(BasePostingRule):
    """Card fee collected through the payment account."""

    def lines_for(self, event: PostingEvent) -> list[LineSpec]:
        return self.pair(Role.PAYMENT, Role.FEE, event.amount + event.fee, "Card issuance fee")


class InventoryReceiptRule(BasePostingRule):
    """Stock received on credit (or added by an upward adjustment)."""

    def lines_for(self, event: PostingEvent) -> list[LineSpec]:
        return self.pair(Role.ASSET, Role.LIABILITY, event.amount, "Card stock received")


class InventoryRemovalRule(BasePostingRule):
    """Stock returned or written down: mirror of a receipt."""

    def lines_for(self, event: PostingEvent) -> list[LineSpec]:
        return self.pair(Role.LIABILITY, Role.ASSET, event.amount, "Card stock removed")


class PowerSaleRule(BasePostingRule):
    """
    Customer pays amount + fee; the power float gives up the units sold and
    the fee is income.
    """

    def lines_for(self, event: PostingEvent) -> list[LineSpec]:
        return [
            LineSpec(Role.PAYMENT, LineSide.DEBIT, event.amount + event.fee, "Payment received"),
            LineSpec(Role.MAIN, LineSide.CREDIT, event.amount, "Power units sold"),
            LineSpec(Role.FEE, LineSide.CREDIT, event.fee, "Power sale fee"),
        ]


class PodCollectionRule(BasePostingRule):
    """
    Cash collected on delivery is owed to the merchant until settled.
    payment is where the cash landed; liability sits on the jumia float.
    """

    def lines_for(self, event: PostingEvent) -> list[LineSpec]:
        lines = self.pair(Role.PAYMENT, Role.LIABILITY, event.amount, "POD collection")
        lines += self.pair(Role.PAYMENT, Role.FEE, event.fee, "POD fee")
        return lines


class SettlementRule(BasePostingRule):
    """Collected funds remitted to the merchant from the payment account."""

    def lines_for(self, event: PostingEvent) -> list[LineSpec]:
        return self.pair(Role.LIABILITY, Role.PAYMENT, event.amount, "Settlement")


class ExpenseAccrualRule(BasePostingRule):
    def lines_for(self, event: PostingEvent) -> list[LineSpec]:
        return self.pair(Role.EXPENSE, Role.LIABILITY, event.amount, event.description)


class ExpensePaymentRule(BasePostingRule):
    def lines_for(self, event: PostingEvent) -> list[LineSpec]:
        return self.pair(Role.LIABILITY, Role.PAYMENT, event.amount, event.description)


class CommissionRule(BasePostingRule):
    def lines_for(self, event: PostingEvent) -> list[LineSpec]:
        return self.pair(Role.EXPENSE, Role.ASSET, event.amount, "Commission")


class FloatOpeningRule(BasePostingRule):
    def lines_for(self, event: PostingEvent) -> list[LineSpec]:
        return self.pair(Role.MAIN, Role.EQUITY, event.amount, "Opening float balance")


class FloatRechargeRule(BasePostingRule):
    """Funded from another float when one is named, otherwise from the bank."""

    def lines_for(self, event: PostingEvent) -> list[LineSpec]:
        source = Role.PAYMENT if event.payment_float_account_id else Role.ASSET
        return self.pair(Role.MAIN, source, event.amount, "Float recharge")


class FloatWithdrawalRule(BasePostingRule):
    def lines_for(self, event: PostingEvent) -> list[LineSpec]:
        return self.pair(Role.EXPENSE, Role.MAIN, event.amount, "Float withdrawal")


class FloatTransferRule(BasePostingRule):
    """main is the destination float, payment the source float."""

    def lines_for(self, event: PostingEvent) -> list[LineSpec]:
        return self.pair(Role.MAIN, Role.PAYMENT, event.amount, "Float transfer")


def standard_rules() -> list[BasePostingRule]:
    """One rule instance per (module, transaction types) the back-office posts."""
    return [
        CashInRule("momo", ("cash-in",), "momo_float"),
        CashOutRule("momo", ("cash-out",), "momo_float"),
        CashInRule("agency_banking", ("deposit", "interbank"), "agency_banking_float"),
        CashOutRule("agency_banking", ("withdrawal",), "agency_banking_float"),
        CashOutRule("e_zwich", ("withdrawal",), "e_zwich_float"),
        CardIssuanceRule("e_zwich", ("card_issuance",), "e_zwich_float"),
        InventoryReceiptRule("e_zwich", ("batch_receipt", "batch_increase"), "e_zwich_inventory"),
        InventoryRemovalRule("e_zwich", ("batch_decrease", "batch_removal"), "e_zwich_inventory"),
        PowerSaleRule("power", ("sale",), "power_float"),
        PodCollectionRule("jumia", ("pod_collection",), "jumia_float"),
        SettlementRule("jumia", ("settlement",), "jumia_float"),
        ExpenseAccrualRule("expenses", ("pending",), "expenses"),
        ExpensePaymentRule("expenses", ("payment",), "expenses"),
        CommissionRule("commissions", ("commission",), "commissions"),
        FloatOpeningRule("float_operations", ("initial_balance",), "float_operations"),
        FloatRechargeRule("float_operations", ("recharge",), "float_operations"),
        FloatWithdrawalRule("float_operations", ("withdrawal",), "float_operations"),
        FloatTransferRule("float_operations", ("transfer",), "float_operations"),
        FloatTransferRule("float_transfers", ("transfer",), "float_transfers"),
    ]
