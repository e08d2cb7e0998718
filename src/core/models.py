from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:  # pragma: no cover
    from .cells import Cell, StateInit


# Inbound flag bits set by the host ledger.
FLAG_BOUNCED = 0x1
FLAG_BOUNCEABLE = 0x2

# Message values are 128-bit unsigned amounts.
VALUE_BITS = 128
MAX_VALUE = (1 << VALUE_BITS) - 1


def check_value(value: int) -> int:
    if not (0 <= value <= MAX_VALUE):
        raise ValueError(f"value must be within [0, 2**{VALUE_BITS})")
    return value


@dataclass(frozen=True)
class EventEnvelope:
    event_id: str
    trace_id: str
    produced_at: datetime
    schema: str
    schema_version: int
    payload: Dict[str, Any]
    source_service: Optional[str] = None


@dataclass(frozen=True, order=True)
class Address:
    workchain: int
    hash_part: bytes

    def __post_init__(self) -> None:
        if not (-128 <= self.workchain <= 127):
            raise ValueError("workchain must fit int8")
        if len(self.hash_part) != 32:
            raise ValueError("hash_part must be 32 bytes")

    def __str__(self) -> str:
        return f"{self.workchain}:{self.hash_part.hex()}"

    @classmethod
    def parse(cls, raw: str) -> "Address":
        """Parse the raw `<workchain>:<64 hex>` form."""

        wc, sep, h = str(raw).partition(":")
        if not sep:
            raise ValueError(f"invalid address: {raw!r}")
        try:
            return cls(workchain=int(wc), hash_part=bytes.fromhex(h))
        except ValueError as e:
            raise ValueError(f"invalid address: {raw!r}") from e


@dataclass(frozen=True)
class InboundMessage:
    sender: Address
    destination: Address
    value: int
    body: "Cell"
    flags: int = FLAG_BOUNCEABLE

    def __post_init__(self) -> None:
        check_value(self.value)

    @property
    def bounced(self) -> bool:
        return bool(self.flags & FLAG_BOUNCED)

    @property
    def bounceable(self) -> bool:
        return bool(self.flags & FLAG_BOUNCEABLE)


@dataclass(frozen=True)
class OutboundMessage:
    destination: Address
    value: int
    body: "Cell"
    bounce: bool = True
    state_init: Optional["StateInit"] = None

    def __post_init__(self) -> None:
        check_value(self.value)
