"""Registry message router.

One call to `Registry.handle` is one atomic transaction:
- decode the inbound envelope, or route a bounce
- authenticate the sender by recomputing addresses (no lookup tables)
- emit exactly the forward(s) for the operation, or raise a RegistryError

Convey and bounce never change RegistryState. Raising leaves no trace: the
caller persists `outcome.state` only when `outcome.state_changed` is set.
"""

from __future__ import annotations

import logging
from typing import Optional

from src.contracts.opcodes import INDEX_BITS, Opcode
from src.core.cells import CellUnderflow, Slice
from src.core.models import Address, InboundMessage, OutboundMessage

from . import envelope
from .allocation import AllocationHandler, AuthorityAllocator
from .derivation import derive_address
from .errors import IndexOutOfRange, MalformedMessage, SenderMismatch, UnrecognizedOperation
from .models import RouteKind, TransactionOutcome
from .policy import DEFAULT_VALUE_POLICY, RoutePath, ValueForwardingPolicy
from .state import RegistryState

logger = logging.getLogger(__name__)


class Registry:
    def __init__(
        self,
        *,
        address: Address,
        policy: ValueForwardingPolicy = DEFAULT_VALUE_POLICY,
        allocator: Optional[AllocationHandler] = None,
        index_bits: int = INDEX_BITS,
    ) -> None:
        if index_bits != INDEX_BITS:
            raise ValueError(f"index width is fixed at {INDEX_BITS} bits, got {index_bits}")
        self.address = address
        self.policy = policy
        self._allocator = allocator if allocator is not None else AuthorityAllocator(policy=policy)

    def expected_child(self, state: RegistryState, index: int) -> Address:
        return derive_address(index, state.child_code_template, self.address)

    def handle(self, state: RegistryState, msg: InboundMessage) -> TransactionOutcome:
        if msg.body.is_empty:
            return TransactionOutcome(kind=RouteKind.NOOP, messages=(), state=state)

        # The rest of a bounced body has no defined format: never decode it.
        if msg.bounced:
            return self._on_bounce(state, msg)

        s = msg.body.begin_parse()
        try:
            head = envelope.decode_head(s)
        except CellUnderflow as e:
            raise MalformedMessage(f"truncated envelope head: {e}") from e

        op = Opcode.decode(head.opcode)
        if op is Opcode.UPWARD_CONVEY:
            return self._on_upward(state, msg, head.correlation_id, self._decode_convey(s))
        if op is Opcode.DOWNWARD_CONVEY:
            return self._on_downward(state, msg, head.correlation_id, self._decode_convey(s))
        if op is Opcode.ALLOCATE:
            return self._allocator.allocate(
                state,
                msg,
                registry_address=self.address,
                correlation_id=head.correlation_id,
                body=s,
            )
        raise UnrecognizedOperation(f"unknown opcode 0x{head.opcode:08x}")

    @staticmethod
    def _decode_convey(s: Slice) -> envelope.ConveyRequest:
        try:
            return envelope.decode_convey(s)
        except CellUnderflow as e:
            raise MalformedMessage(f"truncated convey body: {e}") from e

    def _on_upward(
        self,
        state: RegistryState,
        msg: InboundMessage,
        correlation_id: int,
        req: envelope.ConveyRequest,
    ) -> TransactionOutcome:
        if not state.is_allocated(req.index):
            raise IndexOutOfRange(f"index {req.index} not allocated (next_index={state.next_index})")
        expected = self.expected_child(state, req.index)
        if msg.sender != expected:
            raise SenderMismatch(f"index {req.index} belongs to {expected}, sender is {msg.sender}")

        out = OutboundMessage(
            destination=state.authority_address,
            value=self.policy.forward_value(RoutePath.UPWARD, msg.value),
            body=envelope.report_body(req.method, correlation_id, req.index, req.payload),
            bounce=False,
        )
        logger.debug(f"upward index={req.index} method=0x{req.method:08x} correlation_id={correlation_id}")
        return TransactionOutcome(kind=RouteKind.UPWARD, messages=(out,), state=state)

    def _on_downward(
        self,
        state: RegistryState,
        msg: InboundMessage,
        correlation_id: int,
        req: envelope.ConveyRequest,
    ) -> TransactionOutcome:
        if msg.sender != state.authority_address:
            raise SenderMismatch(f"downward convey from {msg.sender}, expected authority {state.authority_address}")
        if not state.is_allocated(req.index):
            raise IndexOutOfRange(f"index {req.index} not allocated (next_index={state.next_index})")

        out = OutboundMessage(
            destination=self.expected_child(state, req.index),
            value=self.policy.forward_value(RoutePath.DOWNWARD, msg.value),
            body=envelope.command_body(req.method, correlation_id, req.payload),
            # Non-delivery must come back to us as a bounce.
            bounce=True,
        )
        logger.debug(f"downward index={req.index} method=0x{req.method:08x} correlation_id={correlation_id}")
        return TransactionOutcome(kind=RouteKind.DOWNWARD, messages=(out,), state=state)

    def _on_bounce(self, state: RegistryState, msg: InboundMessage) -> TransactionOutcome:
        out = OutboundMessage(
            destination=state.authority_address,
            value=self.policy.forward_value(RoutePath.BOUNCE, msg.value),
            body=envelope.excesses_body(),
            bounce=False,
        )
        logger.info(f"bounce from {msg.sender}: notifying authority, value={out.value}")
        return TransactionOutcome(kind=RouteKind.BOUNCE, messages=(out,), state=state)
