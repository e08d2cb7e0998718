from __future__ import annotations

import pytest

from src.contracts.opcodes import Opcode
from src.core.cells import Builder
from src.core.models import FLAG_BOUNCED
from src.registry import envelope
from src.registry.policy import ForwardMode, RoutePath, ValueForwardingPolicy
from src.registry.router import Registry
from src.registry.state import RegistryState

from tests.registry_fixtures import AUTHORITY, REGISTRY, STRANGER, inbound


def test_default_policy_carries_everything() -> None:
    p = ValueForwardingPolicy()
    for path in RoutePath:
        assert p.forward_value(path, 1234) == 1234


def test_zero_and_deduct_modes() -> None:
    p = ValueForwardingPolicy(upward=ForwardMode.ZERO, downward=ForwardMode.DEDUCT, fee=100)
    assert p.forward_value(RoutePath.UPWARD, 500) == 0
    assert p.forward_value(RoutePath.DOWNWARD, 500) == 400
    assert p.forward_value(RoutePath.DOWNWARD, 50) == 0
    assert p.forward_value(RoutePath.BOUNCE, 500) == 500


def test_policy_from_settings_mapping() -> None:
    p = ValueForwardingPolicy.from_mapping({"upward": "zero", "bounce": "deduct", "fee": 7})
    assert p.upward is ForwardMode.ZERO
    assert p.downward is ForwardMode.CARRY
    assert p.bounce is ForwardMode.DEDUCT
    assert p.fee == 7
    assert ValueForwardingPolicy.from_mapping(None) == ValueForwardingPolicy()


@pytest.mark.parametrize(
    "data",
    [
        {"sideways": "carry"},
        {"upward": "half"},
        {"fee": -1},
    ],
)
def test_policy_rejects_bad_config(data: dict) -> None:
    with pytest.raises(ValueError):
        ValueForwardingPolicy.from_mapping(data)


def test_router_applies_policy_per_path(state: RegistryState) -> None:
    registry = Registry(
        address=REGISTRY,
        policy=ValueForwardingPolicy(downward=ForwardMode.ZERO, bounce=ForwardMode.DEDUCT, fee=10),
    )
    body = envelope.request_body(Opcode.DOWNWARD_CONVEY, 5, index=1, method=1)
    down = registry.handle(state, inbound(AUTHORITY, body, value=500))
    assert down.messages[0].value == 0

    bounced = Builder().store_uint(0xFFFFFFFF, 32).end_cell()
    note = registry.handle(state, inbound(STRANGER, bounced, value=500, flags=FLAG_BOUNCED))
    assert note.messages[0].value == 490
