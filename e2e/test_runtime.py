"""Tests for DispatchRuntime: branch filtering, plan outcomes and the run slot."""

import asyncio
import logging

import pytest

from audit.logger import SUCCESS
from core.config import Settings
from core.errors import RunInProgress
from core.runtime import DispatchRuntime
from deploy.base import ActionOutcome, DeploymentAction
from schemas.event import CommitChanges, InboundEvent
from schemas.result import DispatchStatus


class RecordingAction(DeploymentAction):
    def __init__(self, fail=()):
        self.fail = set(fail)
        self.calls: list[str] = []

    async def deploy(self, component, environment, branch) -> ActionOutcome:
        self.calls.append(component)
        return ActionOutcome(exit_code=1 if component in self.fail else 0)


class GatedAction(DeploymentAction):
    """Blocks inside deploy() until release is set."""

    def __init__(self):
        self.entered = asyncio.Event()
        self.release = asyncio.Event()
        self.calls = 0

    async def deploy(self, component, environment, branch) -> ActionOutcome:
        self.calls += 1
        self.entered.set()
        await self.release.wait()
        return ActionOutcome(exit_code=0)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        webhook_secret="s3cr3t",
        deploy_workdir=None,
        log_dir=tmp_path / "logs",
        lock_file=tmp_path / "dispatcher.lock",
    )


def push(branch="main", *paths):
    return InboundEvent(
        ref=f"refs/heads/{branch}",
        commits=[CommitChanges(modified=list(paths or ["backend/src/index.ts"]))],
    )


# ── Outcomes ──────────────────────────────────────────────────────────────────

class TestDispatch:
    async def test_disallowed_branch_ignored(self, settings):
        action = RecordingAction()
        runtime = DispatchRuntime(settings, action=action)
        outcome = await runtime.dispatch(push("feature/x"))
        assert outcome.status == DispatchStatus.IGNORED
        assert outcome.message == "Ignored branch: feature/x"
        assert outcome.run is None
        assert action.calls == []

    async def test_tag_push_ignored(self, settings):
        action = RecordingAction()
        runtime = DispatchRuntime(settings, action=action)
        event = InboundEvent(ref="refs/tags/v1.0", commits=[CommitChanges(modified=["backend/x"])])
        outcome = await runtime.dispatch(event)
        assert outcome.status == DispatchStatus.IGNORED
        assert action.calls == []

    async def test_docs_only_push_needs_no_deploy(self, settings):
        action = RecordingAction()
        runtime = DispatchRuntime(settings, action=action)
        outcome = await runtime.dispatch(push("main", "docs/guide.md"))
        assert outcome.status == DispatchStatus.NO_CHANGES
        assert outcome.message == "No deployment needed"
        assert action.calls == []

    async def test_successful_run(self, settings):
        action = RecordingAction()
        runtime = DispatchRuntime(settings, action=action)
        outcome = await runtime.dispatch(push("dev", "shared/types.ts"))
        assert outcome.status == DispatchStatus.SUCCEEDED
        assert outcome.branch == "dev"
        assert outcome.run.environment == "development"
        assert action.calls == ["backend", "user-frontend", "admin-frontend"]
        assert runtime.last_run is outcome.run

    async def test_failed_component_reported(self, settings):
        runtime = DispatchRuntime(settings, action=RecordingAction(fail={"backend"}))
        outcome = await runtime.dispatch(push("main", "backend/a.py", "frontend/user/b.tsx"))
        assert outcome.status == DispatchStatus.FAILED
        assert "backend" in outcome.message
        assert outcome.run.failed_components == ["backend"]
        assert len(outcome.run.results) == 2

    async def test_halted_run_message(self, settings):
        action = RecordingAction(fail={"infrastructure"})
        runtime = DispatchRuntime(settings, action=action)
        outcome = await runtime.dispatch(push("main", "docker-compose.yml", "backend/a.py"))
        assert outcome.status == DispatchStatus.FAILED
        assert outcome.message == "Deployment halted: infrastructure failed, 1 component(s) skipped"
        assert outcome.run.skipped == ["backend"]
        assert action.calls == ["infrastructure"]

    async def test_outcome_logged_at_success_or_error(self, settings, caplog):
        runtime = DispatchRuntime(settings, action=RecordingAction(fail={"proxy"}))
        with caplog.at_level(logging.INFO, logger="core.runtime"):
            await runtime.dispatch(push("main", "backend/a.py"))
            await runtime.dispatch(push("main", "proxy/nginx.conf"))
        outcomes = [r for r in caplog.records if r.getMessage().startswith("Deployment run ")]
        assert [r.levelno for r in outcomes] == [SUCCESS, logging.ERROR]

    async def test_body_includes_run_summary(self, settings):
        runtime = DispatchRuntime(settings, action=RecordingAction())
        body = (await runtime.dispatch(push("main"))).body()
        assert body["status"] == "succeeded"
        assert body["run"]["plan"] == ["backend"]
        assert body["run"]["results"][0]["outcome"] == "succeeded"

    def test_plan_without_executing(self, settings):
        action = RecordingAction()
        runtime = DispatchRuntime(settings, action=action)
        branch, environment, plan = runtime.plan(push("feature/x", "proxy/nginx.conf"))
        assert branch == "feature/x"
        assert environment is None
        assert plan.names == ["proxy"]
        assert action.calls == []


# ── Run slot ──────────────────────────────────────────────────────────────────

class TestRunSlot:
    async def test_concurrent_trigger_rejected(self, settings):
        action = GatedAction()
        runtime = DispatchRuntime(settings, action=action)

        first = asyncio.create_task(runtime.dispatch(push("main")))
        await asyncio.wait_for(action.entered.wait(), timeout=5)
        assert runtime.busy is True

        with pytest.raises(RunInProgress):
            await runtime.dispatch(push("main"))

        action.release.set()
        outcome = await first
        assert outcome.status == DispatchStatus.SUCCEEDED
        assert action.calls == 1
        assert runtime.busy is False

    async def test_ignored_event_not_blocked_by_running_deploy(self, settings):
        action = GatedAction()
        runtime = DispatchRuntime(settings, action=action)

        first = asyncio.create_task(runtime.dispatch(push("main")))
        await asyncio.wait_for(action.entered.wait(), timeout=5)

        outcome = await runtime.dispatch(push("feature/x"))
        assert outcome.status == DispatchStatus.IGNORED

        action.release.set()
        await first

    async def test_slot_freed_for_next_run(self, settings):
        runtime = DispatchRuntime(settings, action=RecordingAction())
        await runtime.dispatch(push("main"))
        outcome = await runtime.dispatch(push("main"))
        assert outcome.status == DispatchStatus.SUCCEEDED
