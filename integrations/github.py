"""Push webhook integration.

Responsible for three things:
1. Validating the HMAC signature on incoming push webhooks
2. Parsing the raw body into an InboundEvent
3. Extracting the target branch and the de-duplicated set of changed paths

The payload shape is GitHub's push event. Only the fields the dispatcher
needs are read; everything else in the body is ignored.

GitHub push event reference:
https://docs.github.com/en/webhooks/webhook-events-and-payloads#push
"""

import hashlib
import hmac
import json
import logging

from pydantic import ValidationError

from core.errors import MalformedPayload
from schemas.event import ChangeSet, CommitChanges, InboundEvent

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="
BRANCH_REF_PREFIX = "refs/heads/"


# ---------------------------------------------------------------------------
# Signature validation
# ---------------------------------------------------------------------------

def sign_body(body: bytes, secret: str) -> str:
    """Compute the signature header value for a body, as the sender does.

    Returns:
        "sha256=" followed by the lowercase hex HMAC-SHA256 digest.
    """
    digest = hmac.new(
        key=secret.encode("utf-8"),
        msg=body,
        digestmod=hashlib.sha256,
    ).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(body: bytes, header_signature: str | None, secret: str) -> bool:
    """Verify the HMAC-SHA256 signature attached to a push webhook.

    The sender signs each request with the shared webhook secret. This
    prevents arbitrary POST requests from triggering deployments.

    Verification fails closed: an empty secret rejects every request rather
    than skipping the check.

    Args:
        body:             Raw request body bytes — must be read before any
                          JSON parsing, since HMAC is computed over raw bytes.
        header_signature: Value of the signature header, "sha256=<hex>".
                          None when the header was absent.
        secret:           Shared secret from WEBHOOK_SECRET.

    Returns:
        True if the signature is valid, False otherwise.
    """
    if not secret or not header_signature:
        return False
    if not header_signature.startswith(SIGNATURE_PREFIX):
        return False

    expected = sign_body(body, secret)
    # Compare as bytes so a non-ASCII header is a mismatch, not a TypeError.
    return hmac.compare_digest(expected.encode("utf-8"), header_signature.encode("utf-8"))


# ---------------------------------------------------------------------------
# Webhook payload parser
# ---------------------------------------------------------------------------

def parse_push_payload(body: bytes, signature: str | None = None) -> InboundEvent:
    """Parse a raw push webhook body into an InboundEvent.

    Expected shape (fields not listed here are ignored):
    {
        "ref": "refs/heads/main",
        "commits": [
            {"added": [...], "modified": [...], "removed": [...]},
            ...
        ],
        "repository": {"name": "ignis", ...},
        "pusher": {"name": "octocat", ...}
    }

    A missing "ref" or "commits" is not an error — the event is simply
    ignored or produces an empty change set downstream. Commit entries that
    are not objects are skipped, and a null or non-list path list counts as
    empty, so one odd commit never blocks the deploy of the others.

    Args:
        body: Raw request bytes.
        signature: Signature header as received, kept on the event for audit.

    Returns:
        The validated InboundEvent.

    Raises:
        MalformedPayload: If the body is not valid JSON, is not a JSON
            object, or has a "ref" or "commits" of the wrong type. The
            webhook handler catches this and returns HTTP 400.
    """
    try:
        raw = json.loads(body)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedPayload(f"Invalid JSON payload: {exc}", body) from exc

    if not isinstance(raw, dict):
        raise MalformedPayload(
            f"Expected a JSON object, got {type(raw).__name__}.", body
        )

    logger.debug("Raw push payload keys: %s", list(raw.keys()))

    try:
        commits = [
            CommitChanges.model_validate(c)
            for c in raw.get("commits") or []
            if isinstance(c, dict)
        ]
        return InboundEvent(
            raw_body=body,
            signature=signature,
            ref=raw.get("ref") or "",
            commits=commits,
            repository=_nested_name(raw.get("repository")),
            pusher=_nested_name(raw.get("pusher")),
        )
    except (TypeError, ValidationError) as exc:
        raise MalformedPayload(f"Unexpected push payload shape: {exc}", body) from exc


def _nested_name(value) -> str | None:
    """Pull "name" out of {"name": ...}; tolerate bare strings and absence."""
    if isinstance(value, dict):
        name = value.get("name")
        return str(name) if name is not None else None
    if isinstance(value, str):
        return value
    return None


# ---------------------------------------------------------------------------
# Change extraction
# ---------------------------------------------------------------------------

def branch_from_ref(ref: str) -> str:
    """Strip "refs/heads/" from a ref to get the short branch name.

    Refs that are not branch heads (tags, notes) return an empty string so
    they can never match the branch allow-list.
    """
    if ref.startswith(BRANCH_REF_PREFIX):
        return ref[len(BRANCH_REF_PREFIX):]
    if ref.startswith("refs/"):
        return ""
    return ref


def extract_changes(event: InboundEvent) -> tuple[str, ChangeSet]:
    """Return the short branch name and the set of every path the push touched.

    Added, modified and removed lists from every commit are flattened into
    one set, so a file changed by several commits appears once. No commits
    means an empty set.
    """
    branch = branch_from_ref(event.ref)
    changes = frozenset(path for commit in event.commits for path in commit.paths())
    return branch, changes
