"""Result schemas.

Defines the output types for a single component deploy (DeploymentResult),
one full run over a plan (DeploymentRun), and the coordinator's answer for
one inbound event (DispatchOutcome). These are the types that cross the
runtime boundary to the HTTP layer and the CLI.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from schemas.plan import DeploymentPlan


class DeployOutcome(str, Enum):
    """How a single component deploy ended.

    Values:
        SUCCEEDED: The action exited with status 0.
        FAILED: The action exited non-zero or could not be started.
        TIMED_OUT: The action exceeded the deployment timeout and was killed.
    """

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class DispatchStatus(str, Enum):
    """Overall status of handling one inbound event.

    IGNORED and NO_CHANGES are informational — the event was valid but
    nothing needed deploying.
    """

    IGNORED = "ignored"
    NO_CHANGES = "no_changes"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class DeploymentResult(BaseModel):
    """Output of one DeploymentExecutor.execute() call.

    Attributes:
        component: Component that was deployed.
        success: True only when the action exited with status 0.
        outcome: Finer-grained result; distinguishes timeouts from failures.
        message: Captured action output on success or failure, or
            "timed out".
        exit_code: Process exit status. None if the process never exited on
            its own (timeout) or never started.
        duration_seconds: Wall-clock time measured by the executor.
    """

    model_config = ConfigDict(frozen=True)

    component: str
    success: bool
    outcome: DeployOutcome
    message: str = ""
    exit_code: int | None = None
    duration_seconds: float = 0.0


class DeploymentRun(BaseModel):
    """The aggregate for one accepted event that produced a plan.

    results may be a prefix of the plan: when a halting component fails,
    the entries after it are listed in skipped and never attempted.

    Attributes:
        branch: Short branch name the push targeted.
        environment: Environment resolved from the branch.
        plan: The plan that was executed.
        results: Results in execution order.
        halted_by: Component whose failure halted the run, if any.
        skipped: Plan entries that were not attempted because of the halt.
        run_id: Auto-generated UUID, used to correlate audit log lines.
        started_at: UTC timestamp when the first deploy started.
        finished_at: UTC timestamp when the last deploy returned.
    """

    model_config = ConfigDict(frozen=True)

    branch: str
    environment: str
    plan: DeploymentPlan
    results: list[DeploymentResult] = Field(default_factory=list)
    halted_by: str | None = None
    skipped: list[str] = Field(default_factory=list)
    run_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None

    @property
    def success(self) -> bool:
        """True iff every attempted component succeeded.

        A halted run always has at least one failed result (the halting
        component), so it is never successful.
        """
        return all(r.success for r in self.results)

    @property
    def failed_components(self) -> list[str]:
        return [r.component for r in self.results if not r.success]

    def summary(self) -> dict:
        """JSON-safe summary used as the HTTP response body."""
        return {
            "run_id": self.run_id,
            "branch": self.branch,
            "environment": self.environment,
            "success": self.success,
            "plan": self.plan.names,
            "halted_by": self.halted_by,
            "skipped": self.skipped,
            "results": [r.model_dump(mode="json") for r in self.results],
        }


class DispatchOutcome(BaseModel):
    """What DispatchRuntime.dispatch() returns for one event.

    Attributes:
        status: Overall status; maps directly to the HTTP status code.
        message: Human-readable description for the response body.
        branch: Short branch name, if one could be derived.
        run: The deployment run, present only when a plan was executed.
    """

    model_config = ConfigDict(frozen=True)

    status: DispatchStatus
    message: str
    branch: str = ""
    run: DeploymentRun | None = None

    def body(self) -> dict:
        payload = {"status": self.status.value, "message": self.message, "branch": self.branch}
        if self.run is not None:
            payload["run"] = self.run.summary()
        return payload
