"""
Posting rule registry.

Rules are keyed by (source_module, transaction_type) and versioned; the
newest registered version is the default.
"""

from backoffice_kernel.exceptions import PostingRuleNotFoundError
from backoffice_kernel.posting_rules.base import LineSpec, PostingEvent, PostingRule

RuleKey = tuple[str, str]


class PostingRuleRegistry:
    def __init__(self):
        self._rules: dict[RuleKey, dict[int, PostingRule]] = {}
        self._default_versions: dict[RuleKey, int] = {}

    def register(self, rule: PostingRule, set_default: bool = True) -> None:
        """Register a rule under every transaction type it handles."""
        for transaction_type in rule.transaction_types:
            key = (rule.source_module, transaction_type)
            self._rules.setdefault(key, {})[rule.version] = rule
            if set_default:
                self._default_versions[key] = rule.version

    def get_rule(
        self,
        source_module: str,
        transaction_type: str,
        version: int | None = None,
    ) -> PostingRule | None:
        versions = self._rules.get((source_module, transaction_type))
        if not versions:
            return None
        if version is None:
            version = self._default_versions.get(
                (source_module, transaction_type), max(versions)
            )
        return versions.get(version)

    def require_rule(self, source_module: str, transaction_type: str) -> PostingRule:
        rule = self.get_rule(source_module, transaction_type)
        if rule is None:
            raise PostingRuleNotFoundError(source_module, transaction_type)
        return rule

    def compute_lines(self, event: PostingEvent) -> list[LineSpec]:
        """
        Raises:
            PostingRuleNotFoundError: No rule for the event's module/type.
        """
        rule = self.require_rule(event.source_module, event.transaction_type)
        return rule.compute_lines(event)

    def list_keys(self) -> list[RuleKey]:
        return sorted(self._rules)


def build_default_registry() -> PostingRuleRegistry:
    """Registry holding the standard back-office rules."""
    from backoffice_kernel.posting_rules.rules import standard_rules

    registry = PostingRuleRegistry()
    for rule in standard_rules():
        registry.register(rule)
    return registry
