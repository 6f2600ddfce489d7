"""Posting rules: business events to role-tagged journal lines."""

from backoffice_kernel.posting_rules.base import (
    BasePostingRule,
    LineSide,
    LineSpec,
    PostingEvent,
    PostingRule,
)
from backoffice_kernel.posting_rules.registry import (
    PostingRuleRegistry,
    build_default_registry,
)

__all__ = [
    "BasePostingRule",
    "LineSide",
    "LineSpec",
    "PostingEvent",
    "PostingRule",
    "PostingRuleRegistry",
    "build_default_registry",
]
