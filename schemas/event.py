"""Inbound push event schema.

Defines the payload that enters the dispatcher. The HTTP boundary hands the
raw body and signature header to the change extractor, which validates the
JSON into these models. Everything downstream (change set, plan, run) is
derived from an InboundEvent.

The event is never persisted. It lives for one request and is discarded
once the run has been logged.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator

ChangeSet = frozenset[str]


class CommitChanges(BaseModel):
    """File changes carried by one commit in a push event.

    Push senders omit the lists entirely for some commit types (merges with
    no file changes), so every list defaults to empty.

    Attributes:
        added: Paths created by the commit.
        modified: Paths changed in place.
        removed: Paths deleted. Deletions still trigger a deploy — the
            component has to be rebuilt without the file.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    added: list[str] = Field(default_factory=list)
    modified: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)

    @field_validator("added", "modified", "removed", mode="before")
    @classmethod
    def coerce_path_list(cls, value):
        # Senders send null for some commits. Anything that is not a list
        # of strings contributes no paths instead of failing the event.
        if not isinstance(value, list):
            return []
        return [path for path in value if isinstance(path, str)]

    def paths(self) -> list[str]:
        return [*self.added, *self.modified, *self.removed]


class InboundEvent(BaseModel):
    """One validated push notification.

    Attributes:
        raw_body: Exact request bytes the signature was computed over.
        signature: Claimed signature header value, as received.
        ref: Full ref the push targeted (e.g. "refs/heads/main"). Empty if
            the sender did not include one.
        commits: Per-commit change lists, in the order the sender listed
            them.
        repository: Repository name, when present. Audit context only.
        pusher: Name of the user who pushed, when present. Audit context only.
    """

    model_config = ConfigDict(frozen=True)

    raw_body: bytes = b""
    signature: str | None = None
    ref: str = ""
    commits: list[CommitChanges] = Field(default_factory=list)
    repository: str | None = None
    pusher: str | None = None
