"""Script-backed deployment action.

Runs the configured deployment command once per component:

    <command...> --component=<name> --environment=<env> --branch=<branch>

The command is whatever DEPLOY_SCRIPT says (by default
"bash /opt/ignis/deployments/scripts/deploy.sh"). It owns the real work —
git pull, image builds, container restarts. This class only launches it,
collects its combined output, and kills it if the executor gives up.

The process is started in its own session so the whole process group can
be killed on timeout. Killing only the shell would leave docker or git
children running and holding the output pipe open.
"""

import asyncio
import logging
import os
import pathlib
import signal

from deploy.base import ActionOutcome, DeploymentAction, DeploymentActionError

logger = logging.getLogger(__name__)

MAX_OUTPUT_CHARS = 4000


class ScriptDeploymentAction(DeploymentAction):
    """DeploymentAction implementation that shells out to a deploy script.

    Attributes:
        command: Argument vector prefix; per-component flags are appended.
        workdir: Directory the command runs in. None inherits ours.
        env: Extra environment variables layered over os.environ.
    """

    def __init__(
        self,
        command: list[str],
        workdir: pathlib.Path | None = None,
        env: dict[str, str] | None = None,
    ) -> None:
        if not command:
            raise ValueError("Deployment command must not be empty.")
        self.command = list(command)
        self.workdir = workdir
        self.env = env or {}

    def build_args(self, component: str, environment: str, branch: str) -> list[str]:
        return [
            *self.command,
            f"--component={component}",
            f"--environment={environment}",
            f"--branch={branch}",
        ]

    async def deploy(self, component: str, environment: str, branch: str) -> ActionOutcome:
        """Run the deploy command for one component and wait for it to exit."""
        args = self.build_args(component, environment, branch)
        logger.debug("Executing: %s", " ".join(args))

        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                cwd=self.workdir,
                env={**os.environ, **self.env},
                start_new_session=True,
            )
        except OSError as exc:
            raise DeploymentActionError(f"Could not start '{args[0]}': {exc}") from exc

        try:
            stdout, _ = await process.communicate()
        except asyncio.CancelledError:
            _kill_process_group(process)
            await process.wait()
            raise

        return ActionOutcome(exit_code=process.returncode, output=_tail(stdout))


def _kill_process_group(process: asyncio.subprocess.Process) -> None:
    """SIGKILL the process and everything it spawned."""
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    logger.warning("Killed deployment process group %d.", process.pid)


def _tail(raw: bytes | None) -> str:
    """Decode output and keep only the last MAX_OUTPUT_CHARS characters."""
    text = (raw or b"").decode("utf-8", errors="replace").strip()
    if len(text) > MAX_OUTPUT_CHARS:
        return "…" + text[-MAX_OUTPUT_CHARS:]
    return text
