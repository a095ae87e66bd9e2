import json

from common.clock import utcnow


def log_event(event, **fields):
    payload = {
        "event": event,
        "ts": utcnow().isoformat(),
        **fields,
    }
    print(json.dumps(payload, default=str), flush=True)
