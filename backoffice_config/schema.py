"""
Back-office configuration schema.

Frozen dataclasses produced by ``backoffice_config.loader`` from the YAML
source.  Services receive a BackofficeConfig; nothing in the kernel reads
YAML or the environment directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal


@dataclass(frozen=True)
class ChartAccountDef:
    """One chart-of-accounts seed row."""

    code: str
    name: str
    account_type: str  # Asset, Liability, Equity, Revenue, Expense
    parent_code: str | None = None


@dataclass(frozen=True)
class FloatTemplateDef:
    """Float account created for every new branch."""

    account_type: str
    provider: str | None = None
    min_threshold: Decimal = Decimal("0")
    max_threshold: Decimal = Decimal("0")


@dataclass(frozen=True)
class MappingTemplateDef:
    """
    Per-account GL mappings created for a float account of a given type.

    roles pairs a mapping type with the parent code under which the
    account's own GL sub-account is opened.
    """

    float_account_type: str
    transaction_type: str
    roles: tuple[tuple[str, str], ...]


@dataclass(frozen=True)
class BackofficeConfig:
    """Fully parsed configuration.  checksum identifies the source."""

    config_id: str
    version: int
    currency: str
    main_branch_code: str
    chart_of_accounts: tuple[ChartAccountDef, ...]
    # transaction_type -> mapping_type -> GL code
    default_mappings: dict[str, dict[str, str]]
    # float account type -> GL code of its control account
    float_account_codes: dict[str, str]
    # category -> candidate GL codes, first existing wins
    expense_categories: dict[str, tuple[str, ...]]
    # category -> category it posts as
    expense_category_aliases: dict[str, str]
    expense_fallback_category: str
    accounts_payable_codes: tuple[str, ...]
    cash_codes: tuple[str, ...]
    fees: dict[str, Decimal]
    branch_floats: tuple[FloatTemplateDef, ...] = ()
    float_mapping_templates: tuple[MappingTemplateDef, ...] = ()
    checksum: str = field(default="", compare=False)

    def default_code(self, transaction_type: str, mapping_type: str) -> str | None:
        return self.default_mappings.get(transaction_type, {}).get(mapping_type)

    def expense_codes_for(self, category: str | None) -> tuple[str, tuple[str, ...]]:
        """
        Resolve an expense category to (effective_category, candidate codes).

        Aliased categories post as their target; unknown categories post as
        the fallback category.
        """
        key = (category or "").strip().lower()
        key = self.expense_category_aliases.get(key, key)
        if key not in self.expense_categories:
            key = self.expense_fallback_category
        return key, self.expense_categories[key]

    def mapping_template_for(self, float_account_type: str) -> MappingTemplateDef | None:
        for template in self.float_mapping_templates:
            if template.float_account_type == float_account_type:
                return template
        return None

    def fee(self, name: str) -> Decimal:
        return self.fees.get(name, Decimal("0"))
