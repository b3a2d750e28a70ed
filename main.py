"""Ignis deploy dispatcher — webhook entry point.

Receives signed push webhooks, works out which components changed, and
deploys them one at a time through the deployment script.

Flow for one webhook:
    POST /webhook
        → verify X-Signature-256 against WEBHOOK_SECRET   (403 on failure)
        → parse the push payload                          (400 on failure)
        → DispatchRuntime.dispatch()
              branch not allowed    → 200 "ignored"
              no component matched  → 200 "no_changes"
              run already in flight → 409
              all components ok     → 200 "succeeded"
              any component failed  → 500 "failed" with per-component detail

    GET /health → 200 {status, timestamp, uptime}

Anything else is a 404. Unlike a background-task design, the webhook
response is only sent once the whole run has finished, so the sender's
delivery log shows the real outcome.

Run:
    python main.py          (acquires the run lock, then starts uvicorn)
"""

import logging
import sys
import time
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from audit.logger import configure_logging
from core.config import Settings
from core.errors import ConfigurationError, MalformedPayload, RunInProgress, SignatureInvalid
from core.lock import RunLock
from core.runtime import DispatchRuntime
from integrations.github import parse_push_payload, verify_signature
from schemas.result import DispatchStatus

logger = logging.getLogger(__name__)

SIGNATURE_HEADERS = ("x-signature-256", "x-hub-signature-256")

_STATUS_CODES = {
    DispatchStatus.IGNORED: 200,
    DispatchStatus.NO_CHANGES: 200,
    DispatchStatus.SUCCEEDED: 200,
    DispatchStatus.FAILED: 500,
}


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(settings: Settings, runtime: DispatchRuntime | None = None) -> FastAPI:
    """Build the FastAPI app around a settings object and runtime.

    Tests call this with hermetic settings and a runtime backed by a fake
    deployment action; serve() builds one from Settings.from_env().
    """
    runtime = runtime if runtime is not None else DispatchRuntime(settings)
    started = time.monotonic()

    app = FastAPI(title="Ignis Deploy Dispatcher", docs_url=None, redoc_url=None, openapi_url=None)
    app.state.settings = settings
    app.state.runtime = runtime

    if not settings.webhook_secret:
        logger.warning("WEBHOOK_SECRET not set — every webhook will be rejected.")

    # -----------------------------------------------------------------------
    # Health check
    # -----------------------------------------------------------------------

    @app.get("/health")
    def health():
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": round(time.monotonic() - started, 3),
        }

    # -----------------------------------------------------------------------
    # Push webhook handler
    # -----------------------------------------------------------------------

    @app.post("/webhook")
    async def webhook(request: Request):
        """Authenticate, parse and dispatch one push webhook.

        The body is read raw before anything else because the signature is
        computed over the exact bytes the sender transmitted.
        """
        body = await request.body()
        logger.info("Received webhook request: %s...", body[:100].decode("utf-8", errors="replace"))

        try:
            signature = _authenticate(request, body, settings.webhook_secret)
            event = parse_push_payload(body, signature)
        except SignatureInvalid as exc:
            logger.warning("%s. Rejecting webhook.", exc)
            raise HTTPException(status_code=403, detail=str(exc))
        except MalformedPayload as exc:
            logger.error("Malformed webhook payload: %s (body starts %r)", exc, exc.raw[:80])
            raise HTTPException(status_code=400, detail=str(exc))

        try:
            outcome = await runtime.dispatch(event)
        except RunInProgress as exc:
            raise HTTPException(status_code=409, detail=str(exc))

        return JSONResponse(status_code=_STATUS_CODES[outcome.status], content=outcome.body())

    # -----------------------------------------------------------------------
    # Everything else. Must be AFTER all route definitions
    # -----------------------------------------------------------------------

    @app.api_route(
        "/{path:path}",
        methods=["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"],
        include_in_schema=False,
    )
    async def not_found(request: Request, path: str):
        logger.info("Received request to /%s with method %s", path, request.method)
        return PlainTextResponse("Not found", status_code=404)

    # Methods outside the catch-all's list (TRACE, CONNECT) would get 405.
    @app.exception_handler(405)
    async def method_not_allowed(request: Request, exc: Exception):
        logger.info("Received request to %s with method %s", request.url.path, request.method)
        return PlainTextResponse("Not found", status_code=404)

    return app


def _authenticate(request: Request, body: bytes, secret: str) -> str:
    """Return the signature header if it matches the body.

    Raises:
        SignatureInvalid: If no signature header is present or it does not
            verify against the secret.
    """
    signature = next(
        (request.headers[name] for name in SIGNATURE_HEADERS if request.headers.get(name)),
        None,
    )
    if signature is None:
        raise SignatureInvalid("No signature provided")
    if not verify_signature(body, signature, secret):
        raise SignatureInvalid("Invalid signature")
    return signature


# ---------------------------------------------------------------------------
# Server entry point
# ---------------------------------------------------------------------------

def serve(settings: Settings) -> int:
    """Configure logging, take the run lock, and run uvicorn until stopped.

    Returns:
        Process exit status: 0 after a clean shutdown, 1 if another
        dispatcher instance already holds the lock.
    """
    log_file = configure_logging(settings.log_dir)
    logger.info(
        "Dispatcher starting on %s:%s (log: %s, lock: %s, secret: %s)",
        settings.host, settings.port, log_file.current_path, settings.lock_file,
        "set" if settings.webhook_secret else "NOT SET",
    )
    app = create_app(settings)

    lock = RunLock(settings.lock_file)
    if not lock.acquire():
        logger.error(
            "Another dispatcher instance is running (pid %s). Exiting.", lock.owner_pid()
        )
        return 1

    try:
        uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)
    finally:
        lock.release()
    logger.info("Dispatcher stopped.")
    return 0


def main() -> None:
    try:
        settings = Settings.from_env()
    except ConfigurationError as exc:
        print(exc, file=sys.stderr)
        sys.exit(2)
    sys.exit(serve(settings))


if __name__ == "__main__":
    main()
