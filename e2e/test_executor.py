"""Tests for the sequential executor and the script deployment action.

Executor tests use stub actions. The ScriptDeploymentAction tests spawn
real bash processes from scripts written into tmp_path.
"""

import asyncio
import time

import pytest

from core.executor import TIMED_OUT_MESSAGE, DeploymentExecutor
from deploy.base import ActionOutcome, DeploymentAction, DeploymentActionError
from deploy.script import MAX_OUTPUT_CHARS, ScriptDeploymentAction
from schemas.events import EventType
from schemas.plan import DeploymentPlan, PlannedComponent
from schemas.result import DeployOutcome


def make_plan(*names, halting=()):
    return DeploymentPlan(components=tuple(
        PlannedComponent(name=n, priority=100 - i, halts_on_failure=n in halting)
        for i, n in enumerate(names)
    ))


def write_script(tmp_path, body: str):
    script = tmp_path / "deploy.sh"
    script.write_text("#!/usr/bin/env bash\n" + body + "\n")
    return script


def drain(queue: asyncio.Queue) -> list:
    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events


# ── Stub actions ──────────────────────────────────────────────────────────────

class RecordingAction(DeploymentAction):
    """Succeeds for every component except those listed in fail."""

    def __init__(self, fail=()):
        self.fail = set(fail)
        self.calls: list[tuple[str, str, str]] = []

    async def deploy(self, component, environment, branch) -> ActionOutcome:
        self.calls.append((component, environment, branch))
        if component in self.fail:
            return ActionOutcome(exit_code=3, output="boom")
        return ActionOutcome(exit_code=0, output="deployed")


class UnstartableAction(DeploymentAction):
    async def deploy(self, component, environment, branch) -> ActionOutcome:
        raise DeploymentActionError("script not found")


class CrashingAction(DeploymentAction):
    async def deploy(self, component, environment, branch) -> ActionOutcome:
        raise RuntimeError("unexpected")


class SlowAction(DeploymentAction):
    def __init__(self):
        self.cancelled = False

    async def deploy(self, component, environment, branch) -> ActionOutcome:
        try:
            await asyncio.sleep(999)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return ActionOutcome(exit_code=0)


# ── DeploymentExecutor.execute ────────────────────────────────────────────────

class TestExecute:
    async def test_success_result(self):
        executor = DeploymentExecutor(RecordingAction())
        result = await executor.execute("backend", "production", "main")
        assert result.success is True
        assert result.outcome == DeployOutcome.SUCCEEDED
        assert result.exit_code == 0
        assert result.message == "deployed"
        assert result.duration_seconds >= 0

    async def test_non_zero_exit_is_failure(self):
        executor = DeploymentExecutor(RecordingAction(fail={"backend"}))
        result = await executor.execute("backend", "production", "main")
        assert result.success is False
        assert result.outcome == DeployOutcome.FAILED
        assert result.exit_code == 3
        assert result.message == "boom"

    async def test_unstartable_action_is_failure(self):
        executor = DeploymentExecutor(UnstartableAction())
        result = await executor.execute("backend", "production", "main")
        assert result.success is False
        assert result.exit_code is None
        assert "script not found" in result.message

    async def test_unexpected_exception_is_failure(self):
        executor = DeploymentExecutor(CrashingAction())
        result = await executor.execute("backend", "production", "main")
        assert result.success is False
        assert result.message == "unexpected"

    async def test_timeout_cancels_action(self):
        action = SlowAction()
        executor = DeploymentExecutor(action, timeout_seconds=0.1)
        result = await executor.execute("backend", "production", "main")
        assert result.success is False
        assert result.outcome == DeployOutcome.TIMED_OUT
        assert result.message == TIMED_OUT_MESSAGE
        assert action.cancelled is True

    async def test_events_emitted(self):
        queue = asyncio.Queue()
        executor = DeploymentExecutor(RecordingAction())
        await executor.execute("backend", "production", "main", event_queue=queue)
        events = drain(queue)
        assert [e.event_type for e in events] == [EventType.STARTED, EventType.SUCCEEDED]
        assert all(e.component == "backend" for e in events)


# ── DeploymentExecutor.run_plan ───────────────────────────────────────────────

class TestRunPlan:
    async def test_runs_in_plan_order(self):
        action = RecordingAction()
        executor = DeploymentExecutor(action)
        execution = await executor.run_plan(make_plan("proxy", "backend", "user-frontend"), "development", "dev")
        assert [c[0] for c in action.calls] == ["proxy", "backend", "user-frontend"]
        assert all(c[1:] == ("development", "dev") for c in action.calls)
        assert [r.component for r in execution.results] == ["proxy", "backend", "user-frontend"]
        assert execution.halted_by is None
        assert execution.skipped == []

    async def test_failure_does_not_stop_others(self):
        action = RecordingAction(fail={"backend"})
        executor = DeploymentExecutor(action)
        execution = await executor.run_plan(make_plan("proxy", "backend", "user-frontend"), "production", "main")
        assert len(execution.results) == 3
        assert [r.success for r in execution.results] == [True, False, True]
        assert execution.halted_by is None

    async def test_halting_failure_skips_rest(self):
        action = RecordingAction(fail={"infrastructure"})
        executor = DeploymentExecutor(action)
        queue = asyncio.Queue()
        plan = make_plan("infrastructure", "proxy", "backend", halting={"infrastructure"})
        execution = await executor.run_plan(plan, "production", "main", event_queue=queue)

        assert [c[0] for c in action.calls] == ["infrastructure"]
        assert len(execution.results) == 1
        assert execution.halted_by == "infrastructure"
        assert execution.skipped == ["proxy", "backend"]

        skipped = [e.component for e in drain(queue) if e.event_type == EventType.SKIPPED]
        assert skipped == ["proxy", "backend"]

    async def test_halting_success_continues(self):
        action = RecordingAction()
        executor = DeploymentExecutor(action)
        plan = make_plan("infrastructure", "backend", halting={"infrastructure"})
        execution = await executor.run_plan(plan, "production", "main")
        assert len(execution.results) == 2
        assert execution.halted_by is None

    async def test_empty_plan(self):
        executor = DeploymentExecutor(RecordingAction())
        execution = await executor.run_plan(DeploymentPlan(), "production", "main")
        assert execution.results == []


# ── ScriptDeploymentAction ────────────────────────────────────────────────────

class TestScriptDeploymentAction:
    def test_empty_command_rejected(self):
        with pytest.raises(ValueError):
            ScriptDeploymentAction([])

    def test_build_args(self):
        action = ScriptDeploymentAction(["bash", "deploy.sh"])
        assert action.build_args("backend", "production", "main") == [
            "bash", "deploy.sh",
            "--component=backend", "--environment=production", "--branch=main",
        ]

    async def test_passes_flags_and_captures_output(self, tmp_path):
        script = write_script(tmp_path, 'echo "args: $*"; echo "on stderr" >&2')
        action = ScriptDeploymentAction(["bash", str(script)], workdir=tmp_path)
        outcome = await action.deploy("backend", "development", "dev")
        assert outcome.succeeded
        assert "--component=backend --environment=development --branch=dev" in outcome.output
        assert "on stderr" in outcome.output

    async def test_exit_code_reported(self, tmp_path):
        script = write_script(tmp_path, "echo failing; exit 7")
        outcome = await ScriptDeploymentAction(["bash", str(script)]).deploy("backend", "production", "main")
        assert outcome.exit_code == 7
        assert not outcome.succeeded

    async def test_extra_env_visible_to_script(self, tmp_path):
        script = write_script(tmp_path, 'echo "target=$IGNIS_TARGET"')
        action = ScriptDeploymentAction(["bash", str(script)], env={"IGNIS_TARGET": "blue"})
        outcome = await action.deploy("backend", "production", "main")
        assert "target=blue" in outcome.output

    async def test_output_truncated_to_tail(self, tmp_path):
        script = write_script(tmp_path, f"head -c {MAX_OUTPUT_CHARS * 2} /dev/zero | tr '\\0' 'a'; echo END")
        outcome = await ScriptDeploymentAction(["bash", str(script)]).deploy("backend", "production", "main")
        assert outcome.output.endswith("END")
        assert len(outcome.output) <= MAX_OUTPUT_CHARS + 1

    async def test_missing_executable_raises(self):
        action = ScriptDeploymentAction(["/nonexistent/ignis/deploy"])
        with pytest.raises(DeploymentActionError, match="Could not start"):
            await action.deploy("backend", "production", "main")

    @pytest.mark.slow
    async def test_timeout_kills_script(self, tmp_path):
        marker = tmp_path / "finished"
        script = write_script(tmp_path, f"sleep 30 & wait; touch {marker}")
        executor = DeploymentExecutor(ScriptDeploymentAction(["bash", str(script)]), timeout_seconds=0.5)

        start = time.monotonic()
        result = await executor.execute("backend", "production", "main")
        elapsed = time.monotonic() - start

        assert result.outcome == DeployOutcome.TIMED_OUT
        assert result.message == "timed out"
        assert elapsed < 10
        assert not marker.exists()
