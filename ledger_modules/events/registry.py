"""
Posting rule registry.

Manages registration and lookup of posting rules by event type.
"""

from ledger_modules.events.rules import (
    COGSCalculatedRule,
    InventoryAdjustedRule,
    OrderCancelledRule,
    OrderCompletedRule,
    PostingRule,
)


class PostingRuleRegistry:
    """
    Registry for posting rules.

    Rules are keyed by event type and version; lookups without a version
    use the default (by default the most recently registered one).
    """

    def __init__(self):
        self._rules: dict[str, dict[int, PostingRule]] = {}
        self._default_versions: dict[str, int] = {}

    def register(self, rule: PostingRule, set_default: bool = True) -> None:
        self._rules.setdefault(rule.event_type, {})[rule.version] = rule
        if set_default:
            self._default_versions[rule.event_type] = rule.version

    def get_rule(self, event_type: str, version: int | None = None) -> PostingRule | None:
        """
        Get a posting rule for an event type.

        Returns:
            The rule, or None when the event type is not registered.
        """
        versions = self._rules.get(event_type)
        if not versions:
            return None
        if version is None:
            version = self._default_versions.get(event_type, max(versions))
        return versions.get(version)

    def list_event_types(self) -> list[str]:
        return sorted(self._rules)


def build_default_registry() -> PostingRuleRegistry:
    """Registry with the sales and inventory rules."""
    registry = PostingRuleRegistry()
    for rule in (
        OrderCompletedRule(),
        OrderCancelledRule(),
        COGSCalculatedRule(),
        InventoryAdjustedRule(),
    ):
        registry.register(rule)
    return registry
