"""Reference accounts for the host ledger.

The authority's and the child units' business logic live outside the
registry; these actors only do what is needed to drive the protocol end to end.
"""

from __future__ import annotations

from typing import Optional

from src.contracts.opcodes import OPCODE_BITS, Opcode
from src.core.cells import Cell, StateInit
from src.core.ids import new_correlation_id
from src.core.models import Address, InboundMessage, OutboundMessage
from src.registry import envelope
from src.registry.derivation import parse_child_data
from src.registry.router import Registry
from src.registry.state import RegistryState, StateStore

from .simulator import Ledger


class RegistryAccount:
    """Runs the registry inside the ledger. State is reloaded per message."""

    def __init__(self, registry: Registry, store: StateStore) -> None:
        self.registry = registry
        self.store = store

    def receive(self, msg: InboundMessage) -> list[OutboundMessage]:
        state = self.store.load()
        if state is None:
            raise RuntimeError("registry state not initialised")
        outcome = self.registry.handle(state, msg)
        if outcome.state_changed:
            self.store.save(outcome.state)
        return list(outcome.messages)


class AuthorityAccount:
    def __init__(self, address: Address, registry_address: Address) -> None:
        self.address = address
        self.registry_address = registry_address
        self.inbox: list[InboundMessage] = []

    def receive(self, msg: InboundMessage) -> list[OutboundMessage]:
        self.inbox.append(msg)
        return []

    def allocate(
        self, *, value: int, correlation_id: Optional[int] = None, payload: Optional[Cell] = None
    ) -> OutboundMessage:
        return OutboundMessage(
            destination=self.registry_address,
            value=value,
            body=envelope.allocate_body(_or_new(correlation_id), payload),
        )

    def command(
        self,
        *,
        index: int,
        method: int,
        correlation_id: Optional[int] = None,
        value: int,
        payload: Optional[Cell] = None,
    ) -> OutboundMessage:
        return OutboundMessage(
            destination=self.registry_address,
            value=value,
            body=envelope.request_body(
                Opcode.DOWNWARD_CONVEY, _or_new(correlation_id), index=index, method=method, payload=payload
            ),
        )

    def failure_notifications(self) -> list[InboundMessage]:
        return [m for m in self.inbox if _leading_opcode(m.body) == Opcode.EXCESSES]

    def reports(self) -> list[envelope.Report]:
        out = []
        for m in self.inbox:
            if m.bounced or m.sender != self.registry_address or _leading_opcode(m.body) == Opcode.EXCESSES:
                continue
            out.append(envelope.decode_report(m.body))
        return out


class ChildUnitAccount:
    """Echoes each command back to the authority as a report."""

    def __init__(self, address: Address, state_init: StateInit) -> None:
        self.address = address
        self.registry_address, self.index = parse_child_data(state_init.data)
        self.deployed_with: Optional[envelope.Report] = None
        self.commands: list[envelope.Command] = []

    def receive(self, msg: InboundMessage) -> list[OutboundMessage]:
        if msg.sender != self.registry_address:
            raise PermissionError(f"child {self.index} only accepts its registry, got {msg.sender}")
        if _leading_opcode(msg.body) == Opcode.ALLOCATE:
            self.deployed_with = envelope.decode_report(msg.body)
            return []
        cmd = envelope.decode_command(msg.body)
        self.commands.append(cmd)
        return [
            self.report(method=cmd.method, correlation_id=cmd.correlation_id, value=msg.value, payload=cmd.payload)
        ]

    def report(
        self,
        *,
        method: int,
        correlation_id: int = envelope.UNSOLICITED_CORRELATION_ID,
        value: int = 0,
        payload: Optional[Cell] = None,
    ) -> OutboundMessage:
        return OutboundMessage(
            destination=self.registry_address,
            value=value,
            body=envelope.request_body(
                Opcode.UPWARD_CONVEY, correlation_id, index=self.index, method=method, payload=payload
            ),
        )


def _or_new(correlation_id: Optional[int]) -> int:
    return new_correlation_id() if correlation_id is None else correlation_id


def _leading_opcode(body: Cell) -> Optional[int]:
    if body.bit_length < OPCODE_BITS:
        return None
    return body.begin_parse().load_uint(OPCODE_BITS)


def deploy_network(
    ledger: Ledger,
    *,
    registry: Registry,
    store: StateStore,
    state: RegistryState,
    authority_balance: int = 0,
) -> AuthorityAccount:
    """Deploy the registry and its authority, and teach the ledger the child code."""

    store.save(state)
    ledger.register_code(state.child_code_template, ChildUnitAccount)
    ledger.deploy(registry.address, RegistryAccount(registry, store))
    authority = AuthorityAccount(state.authority_address, registry.address)
    ledger.deploy(authority.address, authority, balance=authority_balance)
    return authority
