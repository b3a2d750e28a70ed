"""Send a signed test push to a running dispatcher and print the response.

Checks /health first, then posts a push event for the given paths, signed
with WEBHOOK_SECRET exactly as the git host would sign it. Useful after a
deploy of the dispatcher itself, or when the host's delivery log shows
failures and you need to tell a bad secret from a bad route.

Usage:
    python scripts/send_webhook.py --branch dev backend/src/index.ts
    python scripts/send_webhook.py --url https://deploy.example.com --branch main docs/readme.md
"""

import json
import os
import pathlib
import sys

import click
import httpx
from dotenv import load_dotenv

sys.path.insert(0, str(pathlib.Path(__file__).resolve().parents[1]))

from integrations.github import sign_body  # noqa: E402

DEFAULT_URL = "http://127.0.0.1:3333"
TIMEOUT_SECONDS = 900


def build_payload(branch: str, paths: list[str]) -> dict:
    return {
        "ref": f"refs/heads/{branch}",
        "commits": [{"added": [], "modified": paths, "removed": []}],
        "repository": {"name": "ignis"},
        "pusher": {"name": os.environ.get("USER", "send_webhook")},
    }


@click.command(help=__doc__.splitlines()[0])
@click.argument("paths", nargs=-1, required=True)
@click.option("--branch", default="dev", show_default=True)
@click.option("--url", envvar="WEBHOOK_URL", default=DEFAULT_URL, show_default=True)
@click.option("--secret", envvar="WEBHOOK_SECRET", default="")
def main(paths: tuple[str, ...], branch: str, url: str, secret: str) -> None:
    if not secret:
        print("WEBHOOK_SECRET is not set; the dispatcher will answer 403.", file=sys.stderr)

    body = json.dumps(build_payload(branch, list(paths))).encode("utf-8")
    headers = {
        "Content-Type": "application/json",
        "X-Signature-256": sign_body(body, secret),
    }

    with httpx.Client(base_url=url, timeout=TIMEOUT_SECONDS) as client:
        try:
            health = client.get("/health", timeout=10)
        except httpx.HTTPError as exc:
            print(f"Failed to reach dispatcher at {url}: {exc}", file=sys.stderr)
            print("Start it first with: python main.py", file=sys.stderr)
            sys.exit(1)
        print(f"health: {health.status_code} {health.text}")

        print(f"Posting push for branch '{branch}' ({len(paths)} path(s)) ...")
        resp = client.post("/webhook", content=body, headers=headers)

    print(f"status: {resp.status_code}")
    try:
        print(json.dumps(resp.json(), indent=2))
    except ValueError:
        print(resp.text)
    if resp.status_code >= 400:
        sys.exit(2)


if __name__ == "__main__":
    load_dotenv()
    main()
