from __future__ import annotations

# v1 stream names (frozen semantics for v1).

REGISTRY_MESSAGE_INBOUND_V1 = "registry.message.inbound.v1"
REGISTRY_MESSAGE_OUTBOUND_V1 = "registry.message.outbound.v1"
REGISTRY_TRANSACTION_REJECTED_V1 = "registry.transaction.rejected.v1"


def dlq_stream(base_stream: str) -> str:
    return f"dlq.{base_stream}.v1"
