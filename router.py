from typing import Dict, Optional, Tuple

from models import WebhookEvent

# (event_type, action) -> CheckRunLifecycle method name
ROUTES: Dict[Tuple[str, str], str] = {
    ("check_suite", "requested"): "create_check_run",
    ("check_suite", "rerequested"): "create_check_run",
    ("check_run", "created"): "initiate_check_run",
    ("check_run", "rerequested"): "create_check_run",
    ("check_run", "requested_action"): "take_requested_action",
}


def route(event_type: str, action: Optional[str]) -> Optional[str]:
    """Name of the handler for this event, or None when the event is only acknowledged."""
    return ROUTES.get((event_type, action or ""))


def dispatch(event: WebhookEvent, lifecycle) -> Optional[str]:
    handler = route(event.event_type, event.action)
    if handler is None:
        return None
    getattr(lifecycle, handler)(event)
    return handler
