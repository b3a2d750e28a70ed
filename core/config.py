"""Dispatcher settings.

All runtime configuration comes from environment variables, optionally
seeded from a .env file. Settings are read once at startup into a frozen
Settings object and passed down explicitly — no module reads os.environ
after that.

Recognised variables:
    WEBHOOK_SECRET       HMAC key for X-Signature-256. Empty means every
                         webhook is rejected.
    WEBHOOK_HOST         Bind address (default 0.0.0.0).
    WEBHOOK_PORT         Listen port (default 3333).
    DEPLOY_SCRIPT        Deployment command line. Split with shlex, then
                         --component/--environment/--branch are appended.
    DEPLOY_WORKDIR       Working directory for the deployment command.
    LOG_DIR              Directory for the daily audit log files.
    DEPLOYMENT_TIMEOUT   Seconds before a component deploy is killed.
    LOCK_FILE            Path of the single-instance lock file.
    BRANCH_ENVIRONMENTS  Comma-separated branch:environment pairs. The
                         branches listed here form the allow-list.
"""

import os
import pathlib
import shlex

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from core.errors import ConfigurationError

DEFAULT_DEPLOY_SCRIPT = "bash /opt/ignis/deployments/scripts/deploy.sh"
DEFAULT_BRANCH_ENVIRONMENTS = "main:production,dev:development,staging:staging"


class Settings(BaseModel):
    """Validated dispatcher configuration.

    Attributes:
        webhook_secret: Shared HMAC secret. Never logged.
        host: Address uvicorn binds to.
        port: Port uvicorn listens on.
        deploy_command: Argument vector for the deployment action, before
            the per-component flags are appended.
        deploy_workdir: Directory the deployment command runs in. None
            means inherit the dispatcher's working directory.
        log_dir: Where daily audit log files are written.
        deployment_timeout: Per-component wall-clock limit in seconds.
        lock_file: Location of the single-instance lock.
        branch_environments: Branch name to deployment environment. Only
            branches present here are deployed.
    """

    model_config = ConfigDict(frozen=True)

    webhook_secret: str = ""
    host: str = "0.0.0.0"
    port: int = Field(default=3333, ge=1, le=65535)
    deploy_command: list[str] = Field(
        default_factory=lambda: shlex.split(DEFAULT_DEPLOY_SCRIPT), min_length=1,
    )
    deploy_workdir: pathlib.Path | None = pathlib.Path("/opt/ignis")
    log_dir: pathlib.Path = pathlib.Path("/opt/ignis/logs/webhook")
    deployment_timeout: float = Field(default=600.0, gt=0)
    lock_file: pathlib.Path = pathlib.Path("/tmp/ignis-webhook.lock")
    branch_environments: dict[str, str] = Field(
        default_factory=lambda: parse_branch_environments(DEFAULT_BRANCH_ENVIRONMENTS)
    )

    @property
    def allowed_branches(self) -> frozenset[str]:
        return frozenset(self.branch_environments)

    def environment_for(self, branch: str) -> str | None:
        """Return the deployment environment for a branch, or None if ignored."""
        return self.branch_environments.get(branch)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "Settings":
        """Build settings from the process environment.

        Loads .env into os.environ first (without overriding variables that
        are already set), unless an explicit mapping is passed in, which
        tests use to stay hermetic.

        Raises:
            ConfigurationError: If a variable is present but invalid.
        """
        if environ is None:
            load_dotenv()
            environ = dict(os.environ)

        values: dict = {}
        if "WEBHOOK_SECRET" in environ:
            values["webhook_secret"] = environ["WEBHOOK_SECRET"]
        if environ.get("WEBHOOK_HOST"):
            values["host"] = environ["WEBHOOK_HOST"]
        if environ.get("WEBHOOK_PORT"):
            values["port"] = environ["WEBHOOK_PORT"]
        if environ.get("DEPLOY_SCRIPT"):
            try:
                values["deploy_command"] = shlex.split(environ["DEPLOY_SCRIPT"])
            except ValueError as exc:
                raise ConfigurationError(f"Invalid DEPLOY_SCRIPT: {exc}") from exc
        if "DEPLOY_WORKDIR" in environ:
            values["deploy_workdir"] = environ["DEPLOY_WORKDIR"] or None
        if environ.get("LOG_DIR"):
            values["log_dir"] = environ["LOG_DIR"]
        if environ.get("DEPLOYMENT_TIMEOUT"):
            values["deployment_timeout"] = environ["DEPLOYMENT_TIMEOUT"]
        if environ.get("LOCK_FILE"):
            values["lock_file"] = environ["LOCK_FILE"]
        if environ.get("BRANCH_ENVIRONMENTS"):
            values["branch_environments"] = parse_branch_environments(
                environ["BRANCH_ENVIRONMENTS"]
            )

        try:
            return cls(**values)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid dispatcher configuration: {exc}") from exc


def parse_branch_environments(raw: str) -> dict[str, str]:
    """Parse "main:production,dev:development" into a dict.

    A bare branch name with no colon maps to itself, so "staging" is
    shorthand for "staging:staging".

    Raises:
        ConfigurationError: If an entry has an empty branch or environment.
    """
    mapping: dict[str, str] = {}
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        branch, _, environment = entry.partition(":")
        branch = branch.strip()
        environment = environment.strip() or branch
        if not branch:
            raise ConfigurationError(f"Empty branch name in BRANCH_ENVIRONMENTS entry '{entry}'.")
        mapping[branch] = environment
    return mapping
