"""Child-unit address derivation.

The derived address is the only credential a child unit has. It is recomputed
from scratch for every message; there is no index -> address table anywhere.
"""

from __future__ import annotations

from src.contracts.opcodes import INDEX_BITS, MAX_UNITS
from src.core.cells import Builder, Cell, StateInit
from src.core.models import Address


def child_data(index: int, registry_address: Address) -> Cell:
    """Initial data of a child unit: (registry address, index)."""

    if not (0 <= index < MAX_UNITS):
        raise ValueError(f"index must be within [0, {MAX_UNITS})")
    return Builder().store_address(registry_address).store_uint(index, INDEX_BITS).end_cell()


def child_state_init(index: int, child_code_template: Cell, registry_address: Address) -> StateInit:
    return StateInit(code=child_code_template, data=child_data(index, registry_address))


def derive_address(index: int, child_code_template: Cell, registry_address: Address) -> Address:
    """Address a correctly deployed child with `index` must have.

    Pure and deterministic. Children live in the registry's workchain.
    """

    state_init = child_state_init(index, child_code_template, registry_address)
    return state_init.address(registry_address.workchain)


def parse_child_data(data: Cell) -> tuple[Address, int]:
    s = data.begin_parse()
    registry_address = s.load_address()
    index = s.load_uint(INDEX_BITS)
    s.ensure_empty()
    return registry_address, index
