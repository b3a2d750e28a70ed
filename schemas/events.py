"""Deploy progress event schema.

Events are emitted by the executor during a run so the display layer can
update its live panels in real time. The executor and display layer are
deliberately decoupled — the executor works correctly whether or not
anything is listening to these events.
"""

from enum import Enum

from pydantic import BaseModel


class EventType(str, Enum):
    """The lifecycle stages a component deploy can emit events for.

    Extends str so values serialize to plain strings ("started", "failed")
    rather than "EventType.STARTED" — cleaner for logging and display output.

    Values:
        STARTED: The deployment action was launched.
        SUCCEEDED: The action exited with status 0.
        FAILED: The action exited non-zero or could not be started.
        TIMED_OUT: The action was killed at the deployment timeout.
        SKIPPED: The component was never attempted because an earlier
            halting component failed.
    """

    STARTED = "started"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    SKIPPED = "skipped"


class DeployEvent(BaseModel):
    """A single event emitted while a deployment plan runs.

    Attributes:
        component: Component the event refers to. Maps to the panel heading
            in the Rich display layout.
        event_type: Lifecycle stage this event represents.
        message: Short human-readable detail ("exit 0", "timed out").
        timestamp_ms: Milliseconds since the start of the run. Used to
            render the elapsed time shown in each panel (e.g. "[1.31s]").
    """

    component: str
    event_type: EventType
    message: str
    timestamp_ms: float
