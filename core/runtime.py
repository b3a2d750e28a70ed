"""Dispatch runtime — the top-level pipeline orchestrator.

DispatchRuntime is the single entry point for deployment decisions. The HTTP
boundary authenticates a request and parses it into an InboundEvent, then
calls dispatch(). Each call is independent: fresh plan, fresh results.

Pipeline order inside dispatch():
    1. Extract the short branch name and change set from the event
    2. Drop events for branches outside the allow-list (status "ignored")
    3. Resolve the change set into a DeploymentPlan
    4. Drop events whose plan is empty (status "no_changes")
    5. Take the in-process run slot — reject if a run is in flight
    6. Execute the plan sequentially via DeploymentExecutor
    7. Build the DeploymentRun, log it, return a DispatchOutcome

The runtime never imports from main.py or knows about HTTP. It depends only
on core/, deploy/, integrations/ and schemas/.
"""

import asyncio
import logging
from datetime import datetime, timezone

from audit.logger import AuditLevel, log as audit_log
from core.config import Settings
from core.errors import RunInProgress
from core.executor import DeploymentExecutor
from core.resolver import ComponentResolver
from deploy.base import DeploymentAction
from deploy.script import ScriptDeploymentAction
from integrations.github import extract_changes
from schemas.event import InboundEvent
from schemas.plan import DeploymentPlan
from schemas.result import DeploymentRun, DispatchOutcome, DispatchStatus

logger = logging.getLogger(__name__)


class DispatchRuntime:
    """Orchestrates branch filtering, resolution and execution for one event.

    Holds a fixed set of pipeline components (resolver, executor) created
    once at construction time and reused across all dispatch() calls.

    At most one run executes at a time. The run slot is an asyncio.Lock
    checked without waiting: a second trigger while a run is in flight gets
    RunInProgress straight away instead of queueing behind a deploy that
    can take minutes.

    Attributes:
        settings: Branch allow-list and environment mapping.
        resolver: Maps change sets to plans.
        executor: Runs plans against the deployment action.
    """

    def __init__(
        self,
        settings: Settings,
        action: DeploymentAction | None = None,
        resolver: ComponentResolver | None = None,
    ) -> None:
        """Initialise the runtime.

        Args:
            settings: Validated dispatcher settings.
            action: Deployment backend. Defaults to the script named by
                DEPLOY_SCRIPT.
            resolver: Component resolver. Defaults to the built-in rule table.
        """
        if action is None:
            action = ScriptDeploymentAction(settings.deploy_command, settings.deploy_workdir)
        self.settings = settings
        self.resolver = resolver if resolver is not None else ComponentResolver()
        self.executor = DeploymentExecutor(action, timeout_seconds=settings.deployment_timeout)
        self._run_slot = asyncio.Lock()
        self._last_run: DeploymentRun | None = None

    @property
    def busy(self) -> bool:
        """True while a deployment run is executing."""
        return self._run_slot.locked()

    @property
    def last_run(self) -> DeploymentRun | None:
        return self._last_run

    def plan(self, event: InboundEvent) -> tuple[str, str | None, DeploymentPlan]:
        """Resolve an event without executing anything.

        Returns:
            (branch, environment, plan). environment is None when the branch
            is not in the allow-list; the plan is still computed so callers
            can show what would have been deployed.
        """
        branch, changes = extract_changes(event)
        environment = self.settings.environment_for(branch)
        return branch, environment, self.resolver.resolve(changes)

    async def dispatch(
        self,
        event: InboundEvent,
        event_queue: asyncio.Queue | None = None,
    ) -> DispatchOutcome:
        """Run the full pipeline for one authenticated event.

        Args:
            event: Parsed, signature-checked event.
            event_queue: Optional queue for DeployEvents; see
                DeploymentExecutor.run_plan().

        Returns:
            DispatchOutcome. Deploy failures are reported in it, not raised.

        Raises:
            RunInProgress: If another run is executing in this process.
        """
        branch, changes = extract_changes(event)
        logger.info(
            "Webhook for branch '%s' (repository: %s, pusher: %s)",
            branch or event.ref, event.repository or "unknown", event.pusher or "unknown",
        )

        environment = self.settings.environment_for(branch)
        if environment is None:
            logger.info("Ignored branch: %s", branch or event.ref or "(none)")
            return DispatchOutcome(
                status=DispatchStatus.IGNORED,
                message=f"Ignored branch: {branch or event.ref or '(none)'}",
                branch=branch,
            )

        plan = self.resolver.resolve(changes)
        logger.info("Changed files: %s", ", ".join(sorted(changes)) or "(none)")
        logger.info("Detected components: %s", ", ".join(plan.names) or "(none)")

        if plan.is_empty:
            logger.info("No components changed, no deployment needed")
            return DispatchOutcome(
                status=DispatchStatus.NO_CHANGES,
                message="No deployment needed",
                branch=branch,
            )

        # locked() and acquire() run with no await between them, so no other
        # request can slip in on the single event loop.
        if self._run_slot.locked():
            logger.warning("Rejected trigger for branch '%s': a deployment run is already in progress", branch)
            raise RunInProgress("A deployment run is already in progress.")

        async with self._run_slot:
            run = await self._execute(plan, environment, branch, event_queue)

        self._last_run = run
        if run.success:
            status, message = DispatchStatus.SUCCEEDED, "Deployment completed successfully"
        elif run.halted_by is not None:
            status = DispatchStatus.FAILED
            message = (
                f"Deployment halted: {run.halted_by} failed, "
                f"{len(run.skipped)} component(s) skipped"
            )
        else:
            status = DispatchStatus.FAILED
            message = f"Some deployments failed: {', '.join(run.failed_components)}"

        audit_log(
            logger,
            AuditLevel.SUCCESS if run.success else AuditLevel.ERROR,
            f"Deployment run {run.run_id} to {environment}: {message} "
            f"({len(run.results)} of {len(plan)} component(s) attempted)",
        )
        return DispatchOutcome(status=status, message=message, branch=branch, run=run)

    # ── Private helpers ───────────────────────────────────────────────────────

    async def _execute(
        self,
        plan: DeploymentPlan,
        environment: str,
        branch: str,
        event_queue: asyncio.Queue | None,
    ) -> DeploymentRun:
        started_at = datetime.now(timezone.utc)
        logger.info(
            "Starting deployment run for %s (%s): %s",
            branch, environment, ", ".join(plan.names),
        )
        execution = await self.executor.run_plan(plan, environment, branch, event_queue)
        return DeploymentRun(
            branch=branch,
            environment=environment,
            plan=plan,
            results=execution.results,
            halted_by=execution.halted_by,
            skipped=execution.skipped,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
        )
