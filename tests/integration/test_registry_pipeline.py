"""Stream pipeline: inbound envelope -> RegistryWorker -> outbound streams.

Key test scenarios:
1. Every emitted envelope passes strict v1 contract validation
2. Allocate then command: forwards land on the outbound stream
3. Rejections land on the rejected stream and leave state untouched
4. Golden inbound messages replay through the same pipeline
"""

from __future__ import annotations

import json
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from src.contracts.messages import inbound_to_payload, outbound_from_payload
from src.contracts.opcodes import Opcode
from src.contracts.streams import (
    REGISTRY_MESSAGE_INBOUND_V1,
    REGISTRY_MESSAGE_OUTBOUND_V1,
    REGISTRY_TRANSACTION_REJECTED_V1,
)
from src.contracts.validation import validate_envelope_dict
from src.core.ids import new_event_id, new_trace_id
from src.core.message_bus import wire_dict_to_envelope
from src.core.models import EventEnvelope, InboundMessage
from src.registry import envelope
from src.registry.derivation import derive_address
from src.registry.router import Registry
from src.registry.state import InMemoryStateStore, RegistryState
from src.registry.worker import RegistryWorker

from tests.registry_fixtures import AUTHORITY, REGISTRY, STRANGER, inbound, make_payload, make_template


GOLDEN_DIR = Path(__file__).resolve().parents[2] / "contracts" / "golden_messages" / "v1"


class MockMessageBus:
    """Records published envelopes as wire dicts."""

    def __init__(self) -> None:
        self._published: list[tuple[str, dict[str, Any]]] = []

    def publish(self, stream: str, event: EventEnvelope) -> None:
        d = asdict(event)
        d["produced_at"] = event.produced_at.isoformat()
        self._published.append((stream, d))

    def get_published(self, stream: Optional[str] = None) -> list[tuple[str, dict]]:
        if stream is None:
            return self._published
        return [(s, e) for s, e in self._published if s == stream]

    def clear(self) -> None:
        self._published.clear()


class Pipeline:
    def __init__(self, state: RegistryState) -> None:
        self.bus = MockMessageBus()
        self.store = InMemoryStateStore(state)
        self.worker = RegistryWorker(registry=Registry(address=REGISTRY), store=self.store)

    def handle(self, ev: EventEnvelope) -> None:
        self.worker.handle_inbound(ev, publish=lambda out: self.bus.publish(out.schema, out))

    def deliver(self, msg: InboundMessage) -> None:
        self.handle(
            EventEnvelope(
                event_id=new_event_id(),
                trace_id=new_trace_id(),
                produced_at=datetime.now(timezone.utc),
                schema=REGISTRY_MESSAGE_INBOUND_V1,
                schema_version=1,
                payload=inbound_to_payload(msg),
                source_service="ledger-gateway",
            )
        )


def _pipeline(next_index: int = 0) -> Pipeline:
    return Pipeline(RegistryState(authority_address=AUTHORITY, next_index=next_index, child_code_template=make_template()))


def test_allocate_then_command_flows_to_outbound_stream() -> None:
    p = _pipeline()
    p.deliver(inbound(AUTHORITY, envelope.allocate_body(1, make_payload("init")), value=300))
    p.deliver(inbound(AUTHORITY, envelope.request_body(Opcode.DOWNWARD_CONVEY, 2, index=0, method=0x10), value=40))

    published = p.bus.get_published(REGISTRY_MESSAGE_OUTBOUND_V1)
    assert len(published) == 2
    for _, wire in published:
        validate_envelope_dict(wire)

    deploy = outbound_from_payload(published[0][1]["payload"])
    child = derive_address(0, make_template(), REGISTRY)
    assert deploy.destination == child
    assert deploy.state_init is not None
    assert deploy.value == 300

    cmd = outbound_from_payload(published[1][1]["payload"])
    assert cmd.destination == child
    assert cmd.bounce is True
    assert envelope.decode_command(cmd.body).correlation_id == 2
    assert p.store.load().next_index == 1


def test_child_report_reaches_authority_with_index() -> None:
    p = _pipeline(next_index=4)
    child = derive_address(3, make_template(), REGISTRY)
    p.deliver(inbound(child, envelope.request_body(Opcode.UPWARD_CONVEY, 0, index=3, method=0x99), value=25))

    [(_, wire)] = p.bus.get_published()
    fwd = outbound_from_payload(wire["payload"])
    assert fwd.destination == AUTHORITY
    assert fwd.bounce is False
    report = envelope.decode_report(fwd.body)
    assert report.index == 3
    assert report.correlation_id == 0
    assert fwd.value == 25


def test_rejections_are_published_and_state_is_untouched() -> None:
    p = _pipeline(next_index=2)
    before = p.store.snapshot()

    p.deliver(inbound(STRANGER, envelope.allocate_body(1)))
    p.deliver(inbound(STRANGER, envelope.request_body(Opcode.DOWNWARD_CONVEY, 1, index=0)))
    p.deliver(inbound(AUTHORITY, envelope.request_body(Opcode.DOWNWARD_CONVEY, 1, index=2)))

    assert p.bus.get_published(REGISTRY_MESSAGE_OUTBOUND_V1) == []
    rejected = p.bus.get_published(REGISTRY_TRANSACTION_REJECTED_V1)
    assert [w["payload"]["exit_code"] for _, w in rejected] == [403, 403, 401]
    for _, wire in rejected:
        validate_envelope_dict(wire)
    assert p.store.snapshot() == before


def test_golden_inbound_messages_replay_through_pipeline() -> None:
    p = _pipeline(next_index=5)
    for path in sorted(GOLDEN_DIR.glob("0*_inbound_*_valid.json")):
        p.handle(wire_dict_to_envelope(json.loads(path.read_text(encoding="utf-8"))))

    outbound = p.bus.get_published(REGISTRY_MESSAGE_OUTBOUND_V1)
    rejected = p.bus.get_published(REGISTRY_TRANSACTION_REJECTED_V1)
    # 01 comes from an unknown sender; 02 is forwarded; 03 turns into a failure notification.
    assert len(rejected) == 1
    assert len(outbound) == 2
    assert p.store.load().next_index == 5
