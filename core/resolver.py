"""Component resolver.

Turns a change set into a DeploymentPlan against the ComponentRegistry.

Resolution steps:
    1. Walk the rule table in order; a rule matches when its pattern is a
       prefix of at least one changed path.
    2. Record the matched rule's component (unless it is the "none" no-op)
       and then each of its declared dependencies. Dependencies are added
       one level only — their own rules are not consulted.
    3. Each component's priority is the highest priority among the matched
       rules that named it.
    4. Sort by descending priority; ties keep first-seen order.

Walking rules rather than paths makes the result independent of the order
the change set happens to iterate in, so the same change set always
resolves to the same plan.
"""

import logging
from dataclasses import dataclass, field

from core.registry import ComponentRegistry
from schemas.event import ChangeSet
from schemas.plan import DeploymentPlan, PlannedComponent

logger = logging.getLogger(__name__)


@dataclass
class _Candidate:
    """Mutable accumulator for one component while rules are evaluated."""
    name: str
    order: int
    priority: int
    halts_on_failure: bool = False
    triggered_by: set[str] = field(default_factory=set)


class ComponentResolver:
    """Maps changed paths to an ordered, de-duplicated deployment plan."""

    def __init__(self, registry: ComponentRegistry | None = None) -> None:
        self._registry = registry if registry is not None else ComponentRegistry.default()

    def resolve(self, changes: ChangeSet) -> DeploymentPlan:
        """Compute the deployment plan for a change set.

        Args:
            changes: De-duplicated set of changed paths.

        Returns:
            The ordered plan. Empty if no rule matched, or only no-op rules
            matched.
        """
        rules = self._registry.get_all()
        # A component halts the run if any rule in the table says so, even
        # when it was only pulled in as a dependency.
        halting = {r.component for r in rules if r.halts_on_failure}
        candidates: dict[str, _Candidate] = {}

        def note(name: str, priority: int, halts: bool, paths: set[str]) -> None:
            candidate = candidates.get(name)
            if candidate is None:
                candidate = candidates[name] = _Candidate(name, len(candidates), priority)
            candidate.priority = max(candidate.priority, priority)
            candidate.halts_on_failure = candidate.halts_on_failure or halts
            candidate.triggered_by.update(paths)

        for rule in rules:
            matched = {path for path in changes if rule.matches(path)}
            if not matched:
                continue
            logger.debug("Rule '%s' matched %d path(s).", rule.pattern, len(matched))

            if not rule.is_no_op:
                note(rule.component, rule.priority, rule.component in halting, matched)
            for dep in rule.dependencies:
                note(dep, rule.priority, dep in halting, set())

        ordered = sorted(candidates.values(), key=lambda c: (-c.priority, c.order))
        return DeploymentPlan(components=tuple(
            PlannedComponent(
                name=c.name,
                priority=c.priority,
                halts_on_failure=c.halts_on_failure,
                triggered_by=tuple(sorted(c.triggered_by)),
            )
            for c in ordered
        ))
