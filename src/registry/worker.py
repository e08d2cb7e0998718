"""Registry transaction worker.

Turns one inbound-message envelope into the envelopes the registry emits:
forwards on success, a rejection event on RegistryError. State is loaded once
per transaction and committed, together with the event id, only after every
output was published.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from src.contracts.messages import inbound_from_payload, message_hash, outbound_to_payload
from src.contracts.streams import (
    REGISTRY_MESSAGE_INBOUND_V1,
    REGISTRY_MESSAGE_OUTBOUND_V1,
    REGISTRY_TRANSACTION_REJECTED_V1,
)
from src.core.ids import new_event_id
from src.core.models import EventEnvelope

from .errors import RegistryError
from .router import Registry
from .state import RegistryState, StateStore

logger = logging.getLogger(__name__)

SOURCE_SERVICE = "registry-service"


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class RegistryWorker:
    def __init__(self, *, registry: Registry, store: StateStore) -> None:
        self._registry = registry
        self._store = store

    def _envelope(self, *, trace_id: str, schema: str, payload: Dict[str, Any]) -> EventEnvelope:
        return EventEnvelope(
            event_id=new_event_id(),
            trace_id=trace_id,
            produced_at=_now_utc(),
            schema=schema,
            schema_version=1,
            payload=payload,
            source_service=SOURCE_SERVICE,
        )

    def handle_inbound(
        self,
        ev: EventEnvelope,
        publish: Optional[Callable[[EventEnvelope], None]] = None,
    ) -> list[EventEnvelope]:
        """Run one registry transaction for an inbound-message envelope.

        Outputs go to `publish` (when given) before anything is committed, so
        a failed publish leaves the state untouched and the retried event runs
        the same transaction again. The new state and the event id are then
        committed together; an event that was already committed is skipped.
        """

        if ev.schema != REGISTRY_MESSAGE_INBOUND_V1:
            raise ValueError(f"unexpected schema: {ev.schema}")
        msg = inbound_from_payload(ev.payload)
        if msg.destination != self._registry.address:
            raise ValueError(f"message for {msg.destination} delivered to registry {self._registry.address}")

        if self._store.was_applied(ev.event_id):
            logger.info(f"event {ev.event_id} already applied, skipping")
            return []
        state = self._store.load()
        if state is None:
            raise RuntimeError("registry state not initialised")

        new_state: Optional[RegistryState] = None
        try:
            outcome = self._registry.handle(state, msg)
        except RegistryError as e:
            logger.info(f"rejected {type(e).__name__} exit_code={e.exit_code} sender={msg.sender}: {e.message}")
            outs = [
                self._envelope(
                    trace_id=ev.trace_id,
                    schema=REGISTRY_TRANSACTION_REJECTED_V1,
                    payload={
                        "message_hash": message_hash(msg),
                        "sender": str(msg.sender),
                        "error": type(e).__name__,
                        "exit_code": e.exit_code,
                    },
                )
            ]
        else:
            if outcome.state_changed:
                new_state = outcome.state
            logger.info(f"{outcome.kind.value}: {len(outcome.messages)} forward(s) from {msg.sender}")
            outs = [
                self._envelope(trace_id=ev.trace_id, schema=REGISTRY_MESSAGE_OUTBOUND_V1, payload=outbound_to_payload(m))
                for m in outcome.messages
            ]

        if publish is not None:
            for out in outs:
                publish(out)
        self._store.commit(new_state, event_id=ev.event_id)
        return outs
