"""DeploymentAction abstract base class.

Defines the interface every deployment backend must implement. The executor
and runtime depend only on this interface — never on a concrete backend.
Swapping the shell script for a different mechanism (a container API, a
remote runner) means writing a new class that satisfies this interface,
with zero changes to the resolver or executor.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class ActionOutcome:
    """What a deployment action reports back after it exits.

    Attributes:
        exit_code: Process exit status. 0 means the component deployed.
        output: Combined stdout/stderr, possibly truncated.
    """

    exit_code: int
    output: str = ""

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


class DeploymentActionError(Exception):
    """Raised when an action cannot be started at all (missing script, bad cwd).

    The executor records this as a failed result; it never crashes the run.
    """


class DeploymentAction(ABC):
    """Abstract base class for everything that can deploy one component.

    The executor calls deploy() once per planned component and owns the
    timeout. Implementations must release whatever they started (kill the
    subprocess) when the call is cancelled, then let the cancellation
    propagate.

    To add a new backend, subclass DeploymentAction and implement deploy().
    """

    @abstractmethod
    async def deploy(self, component: str, environment: str, branch: str) -> ActionOutcome:
        """Deploy one component and return its exit status and output.

        Args:
            component: Component name from the deployment plan
                (e.g. "backend", "infrastructure").
            environment: Target environment resolved from the branch
                (e.g. "production").
            branch: Short branch name the push targeted.

        Returns:
            The ActionOutcome. A non-zero exit code is a normal return, not
            an exception.

        Raises:
            DeploymentActionError: If the action could not be started.
            asyncio.CancelledError: When the executor's timeout fires.
        """
        ...
