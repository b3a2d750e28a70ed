"""Component rule registry.

ComponentRegistry is the dispatcher's ordered table of path rules. The
resolver walks it linearly, so the order rules are registered in is the
tie-break order for components of equal priority.

The registry enforces one invariant: rule patterns must be unique. Two rules
with the same prefix would make it ambiguous which component a path belongs
to — so duplicate registration is rejected immediately.
"""

from schemas.plan import NO_OP_COMPONENT, ComponentRule

INFRASTRUCTURE_COMPONENT = "infrastructure"

DEFAULT_RULES: tuple[ComponentRule, ...] = (
    ComponentRule(pattern="deployments/scripts/", component=INFRASTRUCTURE_COMPONENT,
                  priority=100, halts_on_failure=True),
    ComponentRule(pattern="docker-compose", component=INFRASTRUCTURE_COMPONENT,
                  priority=100, halts_on_failure=True),
    ComponentRule(pattern="proxy/", component="proxy", priority=90),
    ComponentRule(pattern="deployments/service/", component="services", priority=80),
    ComponentRule(pattern="deployments/webhook/", component="webhook", priority=70),
    ComponentRule(pattern="backend/", component="backend", priority=50),
    ComponentRule(pattern="shared/", component="backend", priority=50,
                  dependencies=("user-frontend", "admin-frontend")),
    ComponentRule(pattern="frontend/user/", component="user-frontend", priority=30),
    ComponentRule(pattern="frontend/admin/", component="admin-frontend", priority=30),
    ComponentRule(pattern="frontend/landing/", component="landing-frontend", priority=20),
    ComponentRule(pattern="docs/", component=NO_OP_COMPONENT, priority=0),
    ComponentRule(pattern="README", component=NO_OP_COMPONENT, priority=0),
)


class ComponentRegistry:
    """Ordered, append-only table of ComponentRules.

    Used by ComponentResolver to evaluate a change set. Rules are kept in
    registration order; there is no removal, so the table a resolver sees
    never changes underneath it.

    Attributes:
        _rules: Internal list of rules in registration order.
        _patterns: Set of registered patterns, for the uniqueness check.
    """

    def __init__(self, rules: tuple[ComponentRule, ...] | list[ComponentRule] = ()) -> None:
        """Initialise the registry, registering any rules given in order."""
        self._rules: list[ComponentRule] = []
        self._patterns: set[str] = set()
        for rule in rules:
            self.register(rule)

    @classmethod
    def default(cls) -> "ComponentRegistry":
        """Registry holding DEFAULT_RULES."""
        return cls(DEFAULT_RULES)

    def register(self, rule: ComponentRule) -> None:
        """Append a rule to the end of the table.

        Raises:
            ValueError: If a rule with the same pattern is already registered.
                This is always a configuration error, not a recoverable
                condition.
        """
        if rule.pattern in self._patterns:
            raise ValueError(
                f"Rule pattern '{rule.pattern}' is already registered. "
                "Each pattern must map to exactly one rule."
            )
        self._patterns.add(rule.pattern)
        self._rules.append(rule)

    def get_all(self) -> list[ComponentRule]:
        """Return all rules in table order, as a copy."""
        return list(self._rules)

    def components(self) -> list[str]:
        """Distinct deployable component names, in first-registered order."""
        seen: dict[str, None] = {}
        for rule in self._rules:
            if not rule.is_no_op:
                seen.setdefault(rule.component, None)
            for dep in rule.dependencies:
                seen.setdefault(dep, None)
        return list(seen)

    def __len__(self) -> int:
        return len(self._rules)
