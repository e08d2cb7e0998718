"""Value-forwarding policy.

Decides how much of an inbound message's value travels with the forward the
registry emits for it. Each routing path is configured separately.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping


class ForwardMode(str, Enum):
    CARRY = "carry"  # forward the full inbound value
    ZERO = "zero"  # forward nothing, the registry keeps the value
    DEDUCT = "deduct"  # forward inbound value minus `fee`, floored at 0


class RoutePath(str, Enum):
    UPWARD = "upward"
    DOWNWARD = "downward"
    BOUNCE = "bounce"
    ALLOCATE = "allocate"


@dataclass(frozen=True)
class ValueForwardingPolicy:
    upward: ForwardMode = ForwardMode.CARRY
    downward: ForwardMode = ForwardMode.CARRY
    bounce: ForwardMode = ForwardMode.CARRY
    allocate: ForwardMode = ForwardMode.CARRY
    fee: int = 0

    def __post_init__(self) -> None:
        if self.fee < 0:
            raise ValueError("fee must be >= 0")

    def mode_for(self, path: RoutePath) -> ForwardMode:
        return getattr(self, path.value)

    def forward_value(self, path: RoutePath, inbound_value: int) -> int:
        """Value attached to the forward emitted on `path`.

        Deterministic and side-effect free.
        """

        if inbound_value < 0:
            raise ValueError("inbound_value must be >= 0")
        mode = self.mode_for(path)
        if mode is ForwardMode.CARRY:
            return inbound_value
        if mode is ForwardMode.ZERO:
            return 0
        return max(0, inbound_value - self.fee)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "ValueForwardingPolicy":
        data = dict(data or {})
        fee = int(data.pop("fee", 0))
        modes: dict[str, ForwardMode] = {}
        for key, raw in data.items():
            try:
                path = RoutePath(key)
            except ValueError as e:
                raise ValueError(f"unknown value_policy path: {key}") from e
            try:
                modes[path.value] = ForwardMode(str(raw))
            except ValueError as e:
                raise ValueError(f"unknown value_policy mode for {key}: {raw}") from e
        return cls(fee=fee, **modes)


DEFAULT_VALUE_POLICY = ValueForwardingPolicy()
