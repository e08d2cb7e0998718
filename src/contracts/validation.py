from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable

from src.core.cells import Cell, StateInit
from src.core.models import Address, check_value

from . import streams


ENVELOPE_REQUIRED_KEYS = {
    "event_id",
    "trace_id",
    "produced_at",
    "schema",
    "schema_version",
    "payload",
}
ENVELOPE_OPTIONAL_KEYS = {"source_service"}


def _require_exact_keys(obj: dict[str, Any], *, required: set[str], optional: set[str] | None = None) -> None:
    optional = optional or set()
    keys = set(obj.keys())
    missing = required - keys
    extra = keys - required - optional
    if missing:
        raise ValueError(f"missing keys: {sorted(missing)}")
    if extra:
        raise ValueError(f"extra keys not allowed in v1: {sorted(extra)}")


def _require_str(d: dict[str, Any], k: str) -> str:
    v = d.get(k)
    if not isinstance(v, str) or not v.strip():
        raise ValueError(f"{k} must be non-empty string")
    return v


def _require_int(d: dict[str, Any], k: str) -> int:
    v = d.get(k)
    if not isinstance(v, int) or isinstance(v, bool):
        raise ValueError(f"{k} must be int")
    return v


def _require_bool(d: dict[str, Any], k: str) -> bool:
    v = d.get(k)
    if not isinstance(v, bool):
        raise ValueError(f"{k} must be bool")
    return v


def _require_address(d: dict[str, Any], k: str) -> Address:
    return Address.parse(_require_str(d, k))


def _require_cell(d: dict[str, Any], k: str) -> Cell:
    v = d.get(k)
    if not isinstance(v, dict):
        raise ValueError(f"{k} must be object")
    return Cell.from_wire(v)


def _parse_iso8601(s: str) -> datetime:
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except Exception as e:  # pragma: no cover
        raise ValueError(f"invalid ISO8601 timestamp: {s}") from e
    if dt.tzinfo is None:
        raise ValueError("timestamp must include timezone")
    return dt


def validate_envelope_dict(event: dict[str, Any]) -> None:
    """Strict v1 validation.

    - v1 does not allow extra fields (schema evolution uses v2 streams)
    - payload must match schema-specific rules
    """

    _require_exact_keys(event, required=ENVELOPE_REQUIRED_KEYS, optional=ENVELOPE_OPTIONAL_KEYS)
    _require_str(event, "event_id")
    _require_str(event, "trace_id")
    produced_at = _require_str(event, "produced_at")
    _parse_iso8601(produced_at)

    schema = _require_str(event, "schema")
    schema_version = _require_int(event, "schema_version")
    if schema_version != 1 or not schema.endswith(".v1"):
        raise ValueError("schema_version must be 1 and schema must end with .v1")

    payload = event.get("payload")
    if not isinstance(payload, dict):
        raise ValueError("payload must be object")
    validate_payload(schema, payload)


def validate_payload(schema: str, payload: dict[str, Any]) -> None:
    if schema == streams.REGISTRY_MESSAGE_INBOUND_V1:
        _require_exact_keys(payload, required={"sender", "destination", "value", "flags", "body"})
        _require_address(payload, "sender")
        _require_address(payload, "destination")
        check_value(_require_int(payload, "value"))
        flags = _require_int(payload, "flags")
        if not (0 <= flags <= 0xF):
            raise ValueError("flags must be 0..15")
        _require_cell(payload, "body")
        return

    if schema == streams.REGISTRY_MESSAGE_OUTBOUND_V1:
        _require_exact_keys(payload, required={"destination", "value", "bounce", "body", "state_init"})
        _require_address(payload, "destination")
        check_value(_require_int(payload, "value"))
        _require_bool(payload, "bounce")
        _require_cell(payload, "body")
        state_init = payload.get("state_init")
        if state_init is not None:
            StateInit.from_wire(state_init)
        return

    if schema == streams.REGISTRY_TRANSACTION_REJECTED_V1:
        _require_exact_keys(payload, required={"message_hash", "sender", "error", "exit_code"})
        message_hash = _require_str(payload, "message_hash")
        if len(message_hash) != 64:
            raise ValueError("message_hash must be 64 hex chars")
        _require_address(payload, "sender")
        _require_str(payload, "error")
        if _require_int(payload, "exit_code") < 0:
            raise ValueError("exit_code must be >= 0")
        return

    # For new schemas: add v2 stream, then update this mapping.
    raise ValueError(f"unknown schema: {schema}")


def validate_many(events: Iterable[dict[str, Any]]) -> None:
    for ev in events:
        validate_envelope_dict(ev)
