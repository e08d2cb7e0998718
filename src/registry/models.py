from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from src.core.models import OutboundMessage

from .state import RegistryState


class RouteKind(str, Enum):
    NOOP = "noop"
    UPWARD = "upward"
    DOWNWARD = "downward"
    BOUNCE = "bounce"
    ALLOCATE = "allocate"


@dataclass(frozen=True)
class TransactionOutcome:
    """Result of one committed registry transaction.

    `state` is the state to persist; it equals the input state unless
    `state_changed` is set.
    """

    kind: RouteKind
    messages: tuple[OutboundMessage, ...]
    state: RegistryState
    state_changed: bool = False
