from __future__ import annotations

import pytest

from src.core.cells import Cell
from src.registry.router import Registry
from src.registry.state import RegistryState

from tests.registry_fixtures import AUTHORITY, REGISTRY, make_template


@pytest.fixture
def template() -> Cell:
    return make_template()


@pytest.fixture
def registry() -> Registry:
    return Registry(address=REGISTRY)


@pytest.fixture
def state(template: Cell) -> RegistryState:
    # Five child units allocated: indices 0..4.
    return RegistryState(authority_address=AUTHORITY, next_index=5, child_code_template=template)
