from __future__ import annotations

from pathlib import Path

import pytest

from src.core.models import Address
from src.core.settings import load_settings
from src.registry.policy import ForwardMode
from src.registry.service import build_registry, child_code_from_settings


SETTINGS_YAML = """
env: test
redis:
  url: redis://localhost:6379/3
  stream:
    consumer_group: registry-test
registry:
  address: "0:{registry}"
  authority: "0:{authority}"
  child_code_hex: "ff00f4a4"
  index_bits: {index_bits}
  value_policy:
    downward: zero
"""


def _write(tmp_path: Path, *, index_bits: int = 50) -> Path:
    p = tmp_path / "settings.yaml"
    p.write_text(
        SETTINGS_YAML.format(registry="a1" * 32, authority="b2" * 32, index_bits=index_bits),
        encoding="utf-8",
    )
    return p


def test_load_settings_reads_registry_section(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("REGISTRY_REDIS_URL", raising=False)
    monkeypatch.delenv("REGISTRY_AUTHORITY_ADDRESS", raising=False)
    s = load_settings(_write(tmp_path))

    assert s.env == "test"
    assert s.redis_url == "redis://localhost:6379/3"
    assert s.redis_consumer_group == "registry-test"
    assert Address.parse(s.authority_address).hash_part == bytes.fromhex("b2" * 32)

    registry = build_registry(s)
    assert str(registry.address) == "0:" + "a1" * 32
    assert registry.policy.downward is ForwardMode.ZERO
    assert registry.policy.upward is ForwardMode.CARRY

    code = child_code_from_settings(s)
    assert code.bit_length == 32
    assert code.bits == 0xFF00F4A4


def test_env_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("REGISTRY_REDIS_URL", "redis://cache:6379/0")
    monkeypatch.setenv("REGISTRY_AUTHORITY_ADDRESS", "-1:" + "c3" * 32)
    s = load_settings(_write(tmp_path))
    assert s.redis_url == "redis://cache:6379/0"
    assert s.authority_address == "-1:" + "c3" * 32


def test_index_width_cannot_be_reconfigured(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        load_settings(_write(tmp_path, index_bits=32))
