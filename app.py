"""
GitHub App webhook for the Octo RuboCop check
=============================================
GitHub posts check_suite / check_run deliveries to "/event_handler". For each one:
  1) Verify the X-Hub-Signature(-256) HMAC against the shared webhook secret (401 if wrong).
  2) Parse the JSON body (400 if it is not JSON).
  3) Make sure the event belongs to *this* App and that the repository name is
     something we are willing to put on a command line (400 otherwise).
  4) Sign an App JWT, trade it for an installation token (500 if GitHub refuses).
  5) Route (event, action) to the check-run lifecycle and run it as a background
     task, so GitHub gets its 200 right away. The check run's own
     in_progress -> completed transition tells users when RuboCop is done.

Events we do not act on are acknowledged with 200 so GitHub does not retry them.
There is also a "/health" endpoint for quick health checks.
"""

import json
import logging
import re
import time
import uuid
from typing import Any, Dict, Optional

import uvicorn
from fastapi import BackgroundTasks, FastAPI, Header, HTTPException, Request

from analyzers.rubocop_runner import RubocopRunner
from checks import CheckRunLifecycle
from config import load_settings, validate_settings
from errors import AuthError, ConfigurationError, OctoError, RemoteError, ValidationError
from github import GitHubClient, authenticate_installation, mint_app_jwt
from models import InstallationToken, WebhookEvent
from router import dispatch, route
from verify import pick_signature_header, verify_signature
from workspace import WorkingCopyManager

# ---------------- App / Logging ----------------
SETTINGS = load_settings()
app = FastAPI(title="Octo RuboCop", version="1.0.0")
log = logging.getLogger("webhook")
logging.basicConfig(level=SETTINGS.log_level)
BOOT_TS = time.time()

REPO_NAME_RE = re.compile(r"[A-Za-z0-9_-]+")

# ---------------- Validation ----------------


def validate_sender(event: WebhookEvent, app_id: str) -> None:
    """Reject deliveries that belong to another App or name a suspicious repository."""
    sender = event.sender_app_id
    if sender is None or sender != str(app_id):
        raise AuthError(f"event belongs to app {sender!r}, not {app_id!r}")
    repo = event.payload.get("repository")
    if repo is not None:
        name = repo.get("name") if isinstance(repo, dict) else None
        if not isinstance(name, str) or not REPO_NAME_RE.fullmatch(name):
            raise ValidationError(f"invalid repository name {name!r}")


# ---------------- Per-delivery wiring ----------------


def build_lifecycle(token: InstallationToken) -> CheckRunLifecycle:
    client = GitHubClient(token, base_url=SETTINGS.github_api, timeout=SETTINGS.http_timeout_s)
    workspace = WorkingCopyManager(
        server_url=SETTINGS.github_server_url,
        timeout_s=SETTINGS.git_timeout_s,
        author_name=SETTINGS.git_author_name,
        author_email=SETTINGS.git_author_email,
    )
    runner = RubocopRunner(rubocop_bin=SETTINGS.rubocop_bin, timeout_s=SETTINGS.rubocop_timeout_s)
    return CheckRunLifecycle(client, token, workspace, runner, check_name=SETTINGS.check_name)


def process_event(event: WebhookEvent, lifecycle: CheckRunLifecycle) -> None:
    """Background worker: run the routed handler; failures end here, logged."""
    try:
        handler = dispatch(event, lifecycle)
        log.info("delivery=%s handled by %s", event.delivery_id, handler)
    except RemoteError as e:
        log.error("delivery=%s GitHub API error (status=%s): %s", event.delivery_id, e.status_code, e)
    except OctoError as e:
        log.error("delivery=%s failed: %s", event.delivery_id, e)
    except Exception:
        log.exception("delivery=%s crashed", event.delivery_id)
    finally:
        lifecycle.close()

# ---------------- Startup / Health ----------------


@app.on_event("startup")
def _startup_check_config() -> None:
    # a malformed key or missing secret should stop the deploy, not the first delivery
    validate_settings(SETTINGS)
    log.info("octo-rubocop ready app_id=%s api=%s check=%r", SETTINGS.app_id, SETTINGS.github_api, SETTINGS.check_name)


@app.get("/health", include_in_schema=False)
def health() -> Dict[str, Any]:
    return {"ok": True, "service": "octo-rubocop", "uptime_s": int(time.time() - BOOT_TS),
            "has_secret": bool(SETTINGS.webhook_secret)}

# ---------------- Webhook ----------------


@app.post("/event_handler")
async def event_handler(
    request: Request,
    background: BackgroundTasks,
    x_github_event: Optional[str] = Header(None, alias="X-GitHub-Event"),
    x_github_delivery: Optional[str] = Header(None, alias="X-GitHub-Delivery"),
):
    body: bytes = await request.body()
    delivery = x_github_delivery or str(uuid.uuid4())

    provided = pick_signature_header(request.headers)
    if not verify_signature(body, provided, SETTINGS.webhook_secret):
        log.warning("signature mismatch delivery=%s event=%s provided_suffix=%s",
                    delivery, x_github_event, (provided or "")[-6:])
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        raise HTTPException(status_code=400, detail="Invalid JSON")
    if not isinstance(payload, dict) or not x_github_event:
        raise HTTPException(status_code=400, detail="Malformed delivery")

    event = WebhookEvent(
        event_type=x_github_event,
        action=payload.get("action"),
        raw_body=body,
        payload=payload,
        delivery_id=delivery,
    )
    log.info("delivery=%s event=%s action=%s len=%d", delivery, event.event_type, event.action, len(body))

    if event.event_type == "ping":
        return {"ok": True, "pong": True}

    handler = route(event.event_type, event.action)
    if handler is None:
        return {"ok": True, "ignored_event": event.event_type, "action": event.action}

    try:
        validate_sender(event, SETTINGS.app_id)
        installation_id = event.installation_id
    except (AuthError, ValidationError) as e:
        log.warning("delivery=%s rejected: %s", delivery, e)
        raise HTTPException(status_code=400, detail=str(e))
    if installation_id is None:
        raise HTTPException(status_code=400, detail="Missing installation id")

    try:
        assertion = mint_app_jwt(SETTINGS.app_id, SETTINGS.private_key)
        token = authenticate_installation(assertion, installation_id,
                                          base_url=SETTINGS.github_api, timeout=SETTINGS.http_timeout_s)
    except (ConfigurationError, AuthError, RemoteError) as e:
        log.error("delivery=%s token acquisition failed: %s", delivery, e)
        raise HTTPException(status_code=500, detail="Token acquisition failed")

    background.add_task(process_event, event, build_lifecycle(token))
    return {"ok": True, "event": event.event_type, "action": event.action, "handler": handler, "delivery": delivery}


if __name__ == "__main__":
    uvicorn.run(app, host=SETTINGS.host, port=SETTINGS.port)
