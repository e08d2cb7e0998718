"""End-to-end registry flows on the in-process host ledger.

Key scenarios:
1. Allocation deploys a child at its derived address
2. Authority command -> child -> report back with the same correlation id
3. Command to a child that does not exist -> bounce -> one failure notification
4. Spoofed report -> aborted transaction, value unwound to the spoofer
"""

from __future__ import annotations

from src.contracts.opcodes import Opcode
from src.core.models import Address, InboundMessage, OutboundMessage
from src.ledger.actors import AuthorityAccount, ChildUnitAccount, deploy_network
from src.ledger.simulator import Ledger
from src.registry import envelope
from src.registry.derivation import derive_address
from src.registry.router import Registry
from src.registry.state import InMemoryStateStore, RegistryState

from tests.registry_fixtures import AUTHORITY, REGISTRY, STRANGER, make_payload, make_template


class Recorder:
    def __init__(self) -> None:
        self.inbox: list[InboundMessage] = []

    def receive(self, msg: InboundMessage) -> list[OutboundMessage]:
        self.inbox.append(msg)
        return []


def _network(next_index: int = 0) -> tuple[Ledger, AuthorityAccount, InMemoryStateStore]:
    ledger = Ledger()
    store = InMemoryStateStore()
    state = RegistryState(authority_address=AUTHORITY, next_index=next_index, child_code_template=make_template())
    authority = deploy_network(
        ledger, registry=Registry(address=REGISTRY), store=store, state=state, authority_balance=10_000
    )
    return ledger, authority, store


def test_allocation_deploys_child_at_derived_address() -> None:
    ledger, authority, store = _network()
    ledger.send(AUTHORITY, authority.allocate(value=100, correlation_id=11, payload=make_payload("init")))
    ledger.run()

    child_addr = derive_address(0, make_template(), REGISTRY)
    assert ledger.exists(child_addr)
    child = ledger.account(child_addr)
    assert isinstance(child, ChildUnitAccount)
    assert child.index == 0
    assert child.deployed_with is not None
    assert child.deployed_with.correlation_id == 11
    assert store.load().next_index == 1
    assert ledger.balance(child_addr) == 100


def test_command_round_trip_preserves_correlation() -> None:
    ledger, authority, store = _network()
    ledger.send(AUTHORITY, authority.allocate(value=100, correlation_id=1))
    ledger.send(AUTHORITY, authority.allocate(value=100, correlation_id=2))
    ledger.run()
    before = store.snapshot()

    payload = make_payload("ping")
    ledger.send(AUTHORITY, authority.command(index=1, method=0x77, correlation_id=12, value=50, payload=payload))
    ledger.run()

    reports = authority.reports()
    assert len(reports) == 1
    assert reports[0].correlation_id == 12
    assert reports[0].index == 1
    assert reports[0].method == 0x77
    assert reports[0].payload == payload
    assert authority.failure_notifications() == []
    assert store.snapshot() == before


def test_unsolicited_report_uses_zero_correlation() -> None:
    ledger, authority, _ = _network()
    ledger.send(AUTHORITY, authority.allocate(value=100, correlation_id=1))
    ledger.run()

    child = ledger.account(derive_address(0, make_template(), REGISTRY))
    ledger.send(child.address, child.report(method=0x55, value=10))
    ledger.run()

    [report] = authority.reports()
    assert report.correlation_id == 0
    assert report.method == 0x55


def test_command_to_missing_child_bounces_into_one_failure_notification() -> None:
    # Indices 0..4 are counted as allocated but nothing was ever deployed.
    ledger, authority, store = _network(next_index=5)
    before = store.snapshot()

    ledger.send(AUTHORITY, authority.command(index=2, method=1, correlation_id=99, value=500))
    ledger.run()

    notes = authority.failure_notifications()
    assert len(notes) == 1
    note = notes[0]
    assert note.sender == REGISTRY
    assert note.value == 500
    s = note.body.begin_parse()
    assert s.load_uint(32) == Opcode.EXCESSES
    assert s.load_uint(64) == 0
    assert authority.reports() == []
    assert len(authority.inbox) == 1
    assert ledger.balance(AUTHORITY) == 10_000
    assert store.snapshot() == before


def test_spoofed_report_is_aborted_and_unwound() -> None:
    ledger, authority, store = _network()
    ledger.send(AUTHORITY, authority.allocate(value=100, correlation_id=1))
    ledger.run()
    before = store.snapshot()

    spoofer = Recorder()
    ledger.deploy(STRANGER, spoofer, balance=100)
    body = envelope.request_body(Opcode.UPWARD_CONVEY, 7, index=0, method=1)
    ledger.send(STRANGER, OutboundMessage(destination=REGISTRY, value=10, body=body))
    txs = ledger.run()

    aborted = [t for t in txs if t.aborted]
    assert len(aborted) == 1
    assert aborted[0].account == REGISTRY
    assert aborted[0].error.startswith("SenderMismatch")
    assert authority.reports() == []
    assert store.snapshot() == before
    assert len(spoofer.inbox) == 1
    assert spoofer.inbox[0].bounced
    assert ledger.balance(STRANGER) == 100


def test_child_code_from_other_template_is_never_deployed() -> None:
    ledger, _, _ = _network(next_index=1)
    other_code = make_template(0xBEEF)
    forged = derive_address(0, other_code, REGISTRY)

    # The ledger only instantiates code it knows, so the forged unit cannot exist.
    assert forged != derive_address(0, make_template(), REGISTRY)
    assert not ledger.exists(forged)
    assert isinstance(Address.parse(str(forged)), Address)


def test_generated_correlation_id_is_never_the_unsolicited_marker() -> None:
    ledger, authority, _ = _network()
    ledger.send(AUTHORITY, authority.allocate(value=100))
    ledger.run()
    ledger.send(AUTHORITY, authority.command(index=0, method=3, value=10))
    ledger.run()

    [report] = authority.reports()
    assert report.correlation_id != envelope.UNSOLICITED_CORRELATION_ID
