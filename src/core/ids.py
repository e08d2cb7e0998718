from __future__ import annotations

import secrets
import uuid


def new_event_id() -> str:
    return str(uuid.uuid4())


def new_trace_id() -> str:
    return str(uuid.uuid4())


def new_correlation_id() -> int:
    # 0 is reserved for unsolicited reports and failure notifications.
    return secrets.randbits(64) or 1
