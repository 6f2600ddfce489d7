"""
Configuration loader (``backoffice_config.loader``).

Loads the YAML source and parses it into ``backoffice_config.schema``
dataclasses.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* An alias or fallback naming an undefined category  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from backoffice_config.schema import (
    BackofficeConfig,
    ChartAccountDef,
    FloatTemplateDef,
    MappingTemplateDef,
)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults" / "backoffice.yaml"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load one YAML file; an empty file yields an empty dict."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _codes(value: Any) -> tuple[str, ...]:
    if isinstance(value, (list, tuple)):
        return tuple(str(v) for v in value)
    return (str(value),)


def _decimal(value: Any) -> Decimal:
    # YAML floats go through str() so 15.0 becomes Decimal("15.0"), not a binary float
    return Decimal(str(value))


def parse_chart(rows: list[dict[str, Any]]) -> tuple[ChartAccountDef, ...]:
    return tuple(
        ChartAccountDef(
            code=str(row["code"]),
            name=row["name"],
            account_type=row["type"],
            parent_code=str(row["parent"]) if row.get("parent") else None,
        )
        for row in rows
    )


def parse_branch_floats(rows: list[dict[str, Any]]) -> tuple[FloatTemplateDef, ...]:
    return tuple(
        FloatTemplateDef(
            account_type=row["account_type"],
            provider=row.get("provider"),
            min_threshold=_decimal(row.get("min_threshold", 0)),
            max_threshold=_decimal(row.get("max_threshold", 0)),
        )
        for row in rows
    )


def parse_mapping_templates(data: dict[str, Any]) -> tuple[MappingTemplateDef, ...]:
    return tuple(
        MappingTemplateDef(
            float_account_type=float_type,
            transaction_type=spec["transaction_type"],
            roles=tuple((role, str(code)) for role, code in spec["roles"].items()),
        )
        for float_type, spec in data.items()
    )


def parse_config(data: dict[str, Any]) -> BackofficeConfig:
    """Parse a raw YAML dict into a BackofficeConfig."""
    expenses = data["expense_categories"]
    categories = {
        name: _codes(codes) for name, codes in expenses["codes"].items()
    }
    aliases = {str(k): str(v) for k, v in (expenses.get("aliases") or {}).items()}
    fallback = expenses["fallback"]

    for alias, target in aliases.items():
        if target not in categories:
            raise ValueError(f"Expense alias {alias!r} targets unknown category {target!r}")
    if fallback not in categories:
        raise ValueError(f"Expense fallback {fallback!r} is not a defined category")

    return BackofficeConfig(
        config_id=data["config_id"],
        version=int(data["version"]),
        currency=data.get("currency", "GHS"),
        main_branch_code=data["main_branch_code"],
        chart_of_accounts=parse_chart(data["chart_of_accounts"]),
        default_mappings={
            txn_type: {role: str(code) for role, code in roles.items()}
            for txn_type, roles in data["default_mappings"].items()
        },
        float_account_codes={
            k: str(v) for k, v in data["float_account_codes"].items()
        },
        expense_categories=categories,
        expense_category_aliases=aliases,
        expense_fallback_category=fallback,
        accounts_payable_codes=_codes(data["accounts_payable_codes"]),
        cash_codes=_codes(data["cash_codes"]),
        fees={k: _decimal(v) for k, v in (data.get("fees") or {}).items()},
        branch_floats=parse_branch_floats(data.get("branch_floats") or []),
        float_mapping_templates=parse_mapping_templates(
            data.get("float_mapping_templates") or {}
        ),
        checksum=compute_checksum(data),
    )


def load_config(path: Path | None = None) -> BackofficeConfig:
    """Load and parse the configuration file (defaults when path is None)."""
    return parse_config(load_yaml_file(path or DEFAULT_CONFIG_PATH))


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form; identical input, identical hash."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
