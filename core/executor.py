"""Sequential deployment executor.

DeploymentExecutor is responsible for running the deployment action for each
planned component and collecting the results. It handles timeouts, timing
and fault isolation so the runtime does not have to.

Two guarantees:
- Components run strictly one at a time, in plan order. Deploys share one
  host, and parallel restarts of the proxy and the services behind it are
  not safe.
- One component failing never skips the others, unless the failed component
  is halting-tier (the infrastructure rollup). Then the remaining entries
  are reported as skipped and never attempted.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field

from audit.logger import SUCCESS
from deploy.base import DeploymentAction, DeploymentActionError
from schemas.events import DeployEvent, EventType
from schemas.plan import DeploymentPlan
from schemas.result import DeploymentResult, DeployOutcome

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 600
TIMED_OUT_MESSAGE = "timed out"


@dataclass
class PlanExecution:
    """What run_plan() hands back to the runtime.

    Attributes:
        results: One result per attempted component, in plan order.
        halted_by: Name of the halting component that failed, if any.
        skipped: Components never attempted because of the halt.
    """
    results: list[DeploymentResult] = field(default_factory=list)
    halted_by: str | None = None
    skipped: list[str] = field(default_factory=list)


class DeploymentExecutor:
    """Runs a deployment action per component with a hard timeout.

    The executor owns execution timing. It measures wall-clock time for
    each component and writes it into the DeploymentResult, so actions do
    not need to track their own timing.

    Attributes:
        action: The backend that performs one component deploy.
        timeout_seconds: Maximum time to wait for a single component before
            cancelling the action (which kills its process) and recording
            the component as timed out.
    """

    def __init__(
        self,
        action: DeploymentAction,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.action = action
        self.timeout_seconds = timeout_seconds

    async def run_plan(
        self,
        plan: DeploymentPlan,
        environment: str,
        branch: str,
        event_queue: asyncio.Queue | None = None,
    ) -> PlanExecution:
        """Deploy every planned component in order.

        Args:
            plan: The resolved plan. Walked front to back.
            environment: Target environment passed to every action call.
            branch: Branch passed to every action call.
            event_queue: Optional asyncio.Queue to emit DeployEvents into.
                The display layer reads from this queue to update live
                panels. If None, events are silently skipped.

        Returns:
            PlanExecution with the results of every attempted component.
        """
        execution = PlanExecution()
        run_start = time.perf_counter()

        for index, planned in enumerate(plan.components):
            result = await self.execute(
                planned.name, environment, branch,
                event_queue=event_queue, run_start=run_start,
            )
            execution.results.append(result)

            if not result.success and planned.halts_on_failure:
                execution.halted_by = planned.name
                execution.skipped = [c.name for c in plan.components[index + 1:]]
                logger.error(
                    "Halting component '%s' failed — skipping %d remaining component(s): %s",
                    planned.name,
                    len(execution.skipped),
                    ", ".join(execution.skipped) or "none",
                )
                for name in execution.skipped:
                    await _emit(event_queue, name, EventType.SKIPPED,
                                f"halted by {planned.name}", run_start)
                break

        return execution

    async def execute(
        self,
        component: str,
        environment: str,
        branch: str,
        event_queue: asyncio.Queue | None = None,
        run_start: float | None = None,
    ) -> DeploymentResult:
        """Deploy a single component and return its result.

        This method never raises for a deploy problem. Timeouts, non-zero
        exits and actions that cannot start all come back as a failed
        DeploymentResult.

        Args:
            component: Component to deploy.
            environment: Target environment.
            branch: Branch being deployed.
            event_queue: Queue to emit events into. None means no events.
            run_start: perf_counter() value from when the run started. Used
                to compute relative event timestamps.
        """
        start = time.perf_counter()
        run_start = start if run_start is None else run_start
        logger.info("Deploying component: %s (%s, branch %s)", component, environment, branch)
        await _emit(event_queue, component, EventType.STARTED, "deploying...", run_start)

        try:
            outcome = await asyncio.wait_for(
                self.action.deploy(component, environment, branch),
                timeout=self.timeout_seconds,
            )

        except asyncio.TimeoutError:
            elapsed = time.perf_counter() - start
            logger.error(
                "Deployment of %s timed out after %.1fs (limit: %ss).",
                component, elapsed, self.timeout_seconds,
            )
            await _emit(event_queue, component, EventType.TIMED_OUT, TIMED_OUT_MESSAGE, run_start)
            return DeploymentResult(
                component=component,
                success=False,
                outcome=DeployOutcome.TIMED_OUT,
                message=TIMED_OUT_MESSAGE,
                duration_seconds=elapsed,
            )

        except Exception as exc:
            elapsed = time.perf_counter() - start
            if isinstance(exc, DeploymentActionError):
                logger.error("Deployment of %s could not start: %s", component, exc)
            else:
                logger.exception("Deployment action for %s raised", component)
            message = str(exc) or type(exc).__name__
            await _emit(event_queue, component, EventType.FAILED, message, run_start)
            return DeploymentResult(
                component=component,
                success=False,
                outcome=DeployOutcome.FAILED,
                message=message,
                duration_seconds=elapsed,
            )

        elapsed = time.perf_counter() - start

        if outcome.succeeded:
            logger.log(SUCCESS, "Deployment of %s completed in %.1fs", component, elapsed)
            await _emit(event_queue, component, EventType.SUCCEEDED, "exit 0", run_start)
            return DeploymentResult(
                component=component,
                success=True,
                outcome=DeployOutcome.SUCCEEDED,
                message=outcome.output,
                exit_code=outcome.exit_code,
                duration_seconds=elapsed,
            )

        logger.error(
            "Deployment of %s failed with exit code %d: %s",
            component, outcome.exit_code, outcome.output or "(no output)",
        )
        await _emit(event_queue, component, EventType.FAILED, f"exit {outcome.exit_code}", run_start)
        return DeploymentResult(
            component=component,
            success=False,
            outcome=DeployOutcome.FAILED,
            message=outcome.output or f"exit code {outcome.exit_code}",
            exit_code=outcome.exit_code,
            duration_seconds=elapsed,
        )


async def _emit(
    event_queue: asyncio.Queue | None,
    component: str,
    event_type: EventType,
    message: str,
    run_start: float,
) -> None:
    if event_queue is not None:
        await event_queue.put(DeployEvent(
            component=component,
            event_type=event_type,
            message=message,
            timestamp_ms=(time.perf_counter() - run_start) * 1000,
        ))
