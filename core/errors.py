"""Dispatcher error taxonomy.

Every failure the dispatcher can hit before a deployment run starts has its
own exception type here. The HTTP boundary maps each one to a status code;
nothing below main.py knows about HTTP.

Outcomes that are not errors (ignored branch, empty plan) and per-component
deployment failures are not exceptions — they are recorded on
DispatchOutcome and DeploymentResult instead, so a failing component never
unwinds the run loop.
"""


class DispatchError(Exception):
    """Base class for dispatcher errors that abort handling of one event."""


class SignatureInvalid(DispatchError):
    """The signature header is missing, malformed, or does not match the body.

    Always terminal for the request. Senders retry non-2xx deliveries on
    their own, so the dispatcher never does.
    """


class MalformedPayload(DispatchError):
    """The request body is not a JSON object shaped like a push event.

    Includes the first bytes of the raw body so the audit log shows what
    actually arrived without having to re-read the request.
    """

    def __init__(self, message: str, raw: bytes = b""):
        super().__init__(message)
        self.raw = raw[:200]


class RunInProgress(DispatchError):
    """A deployment run is already executing in this process."""


class LockContention(DispatchError):
    """Another dispatcher process owns the run lock.

    Attributes:
        owner_pid: PID found in the lock file.
    """

    def __init__(self, owner_pid: int):
        super().__init__(f"Another dispatcher instance is running (pid {owner_pid}).")
        self.owner_pid = owner_pid


class ConfigurationError(DispatchError):
    """An environment setting could not be parsed into a valid value."""
