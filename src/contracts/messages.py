"""Ledger message <-> v1 payload conversion."""

from __future__ import annotations

import hashlib
from typing import Any, Dict

from src.core.cells import Cell, StateInit
from src.core.models import VALUE_BITS, Address, InboundMessage, OutboundMessage


def inbound_to_payload(msg: InboundMessage) -> Dict[str, Any]:
    return {
        "sender": str(msg.sender),
        "destination": str(msg.destination),
        "value": int(msg.value),
        "flags": int(msg.flags),
        "body": msg.body.to_wire(),
    }


def inbound_from_payload(p: Dict[str, Any]) -> InboundMessage:
    return InboundMessage(
        sender=Address.parse(p["sender"]),
        destination=Address.parse(p["destination"]),
        value=int(p["value"]),
        body=Cell.from_wire(p["body"]),
        flags=int(p["flags"]),
    )


def outbound_to_payload(msg: OutboundMessage) -> Dict[str, Any]:
    return {
        "destination": str(msg.destination),
        "value": int(msg.value),
        "bounce": bool(msg.bounce),
        "body": msg.body.to_wire(),
        "state_init": msg.state_init.to_wire() if msg.state_init is not None else None,
    }


def outbound_from_payload(p: Dict[str, Any]) -> OutboundMessage:
    state_init = p.get("state_init")
    return OutboundMessage(
        destination=Address.parse(p["destination"]),
        value=int(p["value"]),
        body=Cell.from_wire(p["body"]),
        bounce=bool(p["bounce"]),
        state_init=StateInit.from_wire(state_init) if state_init is not None else None,
    )


def message_hash(msg: InboundMessage) -> str:
    """Stable identity of an inbound message (addresses, flags, value, body)."""

    h = hashlib.sha256()
    h.update(str(msg.sender).encode("utf-8"))
    h.update(str(msg.destination).encode("utf-8"))
    h.update(msg.flags.to_bytes(1, "big"))
    h.update(msg.value.to_bytes(VALUE_BITS // 8, "big"))
    h.update(msg.body.hash())
    return h.hexdigest()
