"""Child-unit allocation.

The only writer of `next_index`. The registry delegates the ALLOCATE opcode
to an `AllocationHandler`; `AuthorityAllocator` lets the authority deploy the
next child with the registry's code template.
"""

from __future__ import annotations

import logging
from typing import Protocol

from src.contracts.opcodes import MAX_UNITS, Opcode
from src.core.cells import Slice
from src.core.models import Address, InboundMessage, OutboundMessage

from .derivation import child_state_init
from .envelope import report_body
from .errors import CapacityExhausted, SenderMismatch
from .models import RouteKind, TransactionOutcome
from .policy import DEFAULT_VALUE_POLICY, RoutePath, ValueForwardingPolicy
from .state import RegistryState

logger = logging.getLogger(__name__)


class AllocationHandler(Protocol):
    def allocate(
        self,
        state: RegistryState,
        msg: InboundMessage,
        *,
        registry_address: Address,
        correlation_id: int,
        body: Slice,
    ) -> TransactionOutcome:
        ...


class AuthorityAllocator:
    def __init__(self, *, policy: ValueForwardingPolicy = DEFAULT_VALUE_POLICY) -> None:
        self._policy = policy

    def allocate(
        self,
        state: RegistryState,
        msg: InboundMessage,
        *,
        registry_address: Address,
        correlation_id: int,
        body: Slice,
    ) -> TransactionOutcome:
        if msg.sender != state.authority_address:
            raise SenderMismatch(f"allocate from {msg.sender}, expected authority {state.authority_address}")
        index = state.next_index
        if index >= MAX_UNITS:
            raise CapacityExhausted(f"all {MAX_UNITS} child units are allocated")

        payload = body.load_maybe_ref()
        state_init = child_state_init(index, state.child_code_template, registry_address)
        deploy = OutboundMessage(
            destination=state_init.address(registry_address.workchain),
            value=self._policy.forward_value(RoutePath.ALLOCATE, msg.value),
            body=report_body(int(Opcode.ALLOCATE), correlation_id, index, payload),
            bounce=False,
            state_init=state_init,
        )
        logger.debug(f"allocate index={index} -> {deploy.destination}")
        return TransactionOutcome(
            kind=RouteKind.ALLOCATE,
            messages=(deploy,),
            state=state.with_next_index(index + 1),
            state_changed=True,
        )
