"""Component rule and deployment plan schemas.

ComponentRule is static configuration: the ordered rule table lives in
core/registry.py. DeploymentPlan is what the resolver computes from a change
set against that table, and what the executor walks in order.
"""

from pydantic import BaseModel, ConfigDict, Field

NO_OP_COMPONENT = "none"


class ComponentRule(BaseModel):
    """Maps a path prefix to a deployable component.

    Attributes:
        pattern: Path prefix. A changed path matches when it starts with
            this string ("backend/", "docker-compose").
        component: Component to deploy when the rule matches. The value
            "none" marks paths that never need a deploy (documentation).
        priority: Higher values deploy first.
        dependencies: Components that must also be deployed when this rule
            matches. Added one level only — a dependency's own rules are
            not consulted.
        halts_on_failure: If True, a failed deploy of this rule's component
            stops the run. Set for the infrastructure rollup, whose failure
            leaves every other deploy target in an unknown state.
    """

    model_config = ConfigDict(frozen=True)

    pattern: str = Field(min_length=1)
    component: str = Field(min_length=1)
    priority: int = 0
    dependencies: tuple[str, ...] = ()
    halts_on_failure: bool = False

    @property
    def is_no_op(self) -> bool:
        return self.component == NO_OP_COMPONENT

    def matches(self, path: str) -> bool:
        return path.startswith(self.pattern)


class PlannedComponent(BaseModel):
    """One entry of a deployment plan.

    Attributes:
        name: Component to deploy.
        priority: Highest priority among the matched rules that named it.
        halts_on_failure: True if any matched rule marks this component as
            halting.
        triggered_by: Changed paths that caused the component to be planned,
            sorted. Empty for components pulled in only as a dependency.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    priority: int
    halts_on_failure: bool = False
    triggered_by: tuple[str, ...] = ()


class DeploymentPlan(BaseModel):
    """Ordered, de-duplicated list of components to deploy for one event.

    Sorted by descending priority, ties in first-seen order. An empty plan
    is valid and means no deployment is needed.
    """

    model_config = ConfigDict(frozen=True)

    components: tuple[PlannedComponent, ...] = ()

    @property
    def names(self) -> list[str]:
        return [c.name for c in self.components]

    @property
    def is_empty(self) -> bool:
        return not self.components

    def __len__(self) -> int:
        return len(self.components)
