"""Persisted registry state.

Layout (v1, fixed order): authority address, next_index, child code template
as the first reference. Reordering is an incompatible format change.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from typing import Optional, Protocol

from src.contracts.opcodes import INDEX_BITS, MAX_UNITS
from src.core.cells import Builder, Cell
from src.core.models import Address

logger = logging.getLogger(__name__)

STATE_LAYOUT_VERSION = 1


@dataclass(frozen=True)
class RegistryState:
    authority_address: Address
    next_index: int
    child_code_template: Cell

    def __post_init__(self) -> None:
        if not (0 <= self.next_index <= MAX_UNITS):
            raise ValueError(f"next_index must be within [0, {MAX_UNITS}]")

    @classmethod
    def initial(cls, *, authority_address: Address, child_code_template: Cell) -> "RegistryState":
        return cls(authority_address=authority_address, next_index=0, child_code_template=child_code_template)

    def is_allocated(self, index: int) -> bool:
        return 0 <= index < self.next_index

    def with_next_index(self, next_index: int) -> "RegistryState":
        if next_index < self.next_index:
            raise ValueError("next_index never decreases")
        return replace(self, next_index=next_index)

    def to_cell(self) -> Cell:
        return (
            Builder()
            .store_address(self.authority_address)
            .store_uint(self.next_index, INDEX_BITS)
            .store_ref(self.child_code_template)
            .end_cell()
        )

    @classmethod
    def from_cell(cls, cell: Cell) -> "RegistryState":
        s = cell.begin_parse()
        authority = s.load_address()
        next_index = s.load_uint(INDEX_BITS)
        template = s.load_ref()
        s.ensure_empty()
        return cls(authority_address=authority, next_index=next_index, child_code_template=template)


class StateStore(Protocol):
    """Holds the single RegistryState of one registry.

    Contract: `load()` returns the last state passed to `save()` or
    `commit()`, or None before the registry is deployed. `commit()` writes the
    state and the applied event id together: either both land or neither does.
    """

    def load(self) -> Optional[RegistryState]:
        ...

    def save(self, state: RegistryState) -> None:
        ...

    def was_applied(self, event_id: str) -> bool:
        ...

    def commit(self, state: Optional[RegistryState], *, event_id: str) -> None:
        ...


class InMemoryStateStore:
    def __init__(self, state: Optional[RegistryState] = None) -> None:
        self._cell = state.to_cell() if state is not None else None
        self._applied: set[str] = set()

    def load(self) -> Optional[RegistryState]:
        if self._cell is None:
            return None
        return RegistryState.from_cell(self._cell)

    def save(self, state: RegistryState) -> None:
        self._cell = state.to_cell()

    def was_applied(self, event_id: str) -> bool:
        return event_id in self._applied

    def commit(self, state: Optional[RegistryState], *, event_id: str) -> None:
        if state is not None:
            self._cell = state.to_cell()
        self._applied.add(event_id)

    def snapshot(self) -> Optional[Cell]:
        return self._cell


class RedisStateStore:
    def __init__(self, redis_client, *, key_prefix: str, applied_ttl_seconds: int = 7 * 24 * 3600):
        self._client = redis_client
        self._prefix = key_prefix.rstrip(":")
        self._applied_ttl_seconds = applied_ttl_seconds

    @property
    def key(self) -> str:
        return f"{self._prefix}:state:v{STATE_LAYOUT_VERSION}"

    def _applied_key(self, event_id: str) -> str:
        return f"{self._prefix}:applied:{event_id}"

    def load(self) -> Optional[RegistryState]:
        raw = self._client.get(self.key)
        if not raw:
            return None
        return RegistryState.from_cell(Cell.from_wire(json.loads(raw)))

    def save(self, state: RegistryState) -> None:
        self._client.set(self.key, json.dumps(state.to_cell().to_wire()))
        logger.info(f"registry state saved: key={self.key} next_index={state.next_index}")

    def was_applied(self, event_id: str) -> bool:
        return bool(self._client.exists(self._applied_key(event_id)))

    def commit(self, state: Optional[RegistryState], *, event_id: str) -> None:
        # MULTI/EXEC: the state write and the applied marker are one unit.
        pipe = self._client.pipeline(transaction=True)
        if state is not None:
            pipe.set(self.key, json.dumps(state.to_cell().to_wire()))
        pipe.set(self._applied_key(event_id), "1", ex=self._applied_ttl_seconds)
        pipe.execute()
        if state is not None:
            logger.info(f"registry state committed: key={self.key} next_index={state.next_index} event_id={event_id}")


def load_or_create(
    store: StateStore,
    *,
    authority_address: Address,
    child_code_template: Cell,
) -> RegistryState:
    """Deploy-time bootstrap: create the initial state if the store is empty."""

    state = store.load()
    if state is not None:
        if state.authority_address != authority_address:
            raise ValueError("stored authority differs from configured authority")
        if state.child_code_template != child_code_template:
            raise ValueError("stored child code template differs from configured template")
        return state
    state = RegistryState.initial(authority_address=authority_address, child_code_template=child_code_template)
    store.save(state)
    return state
