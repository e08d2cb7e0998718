from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

from src.contracts.opcodes import INDEX_BITS


@dataclass(frozen=True)
class Settings:
    env: str
    redis_url: str
    redis_consumer_group: str
    registry_address: str
    authority_address: str
    child_code_hex: str
    index_bits: int = INDEX_BITS
    value_policy: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # The index width is a protocol constant, not a tunable.
        if self.index_bits != INDEX_BITS:
            raise ValueError(f"registry.index_bits must be {INDEX_BITS}, got {self.index_bits}")


def load_settings(path: str | Path = "config/settings.yaml") -> Settings:
    p = Path(path)

    # Keep imports optional at module import time (tests/tools may not need YAML).
    try:
        import yaml  # type: ignore
    except ModuleNotFoundError as e:  # pragma: no cover
        raise ModuleNotFoundError(
            "PyYAML is required to load config/settings.yaml. Install with: pip install pyyaml"
        ) from e

    data: Dict[str, Any] = yaml.safe_load(p.read_text(encoding="utf-8"))

    # Env overrides (used for compose profile isolation).
    env_redis_url = os.getenv("REGISTRY_REDIS_URL")
    env_authority = os.getenv("REGISTRY_AUTHORITY_ADDRESS")

    redis_section = data.get("redis", {})
    registry_section = data["registry"]
    return Settings(
        env=data.get("env", "dev"),
        redis_url=env_redis_url or redis_section["url"],
        redis_consumer_group=redis_section.get("stream", {}).get("consumer_group", "registry"),
        registry_address=str(registry_section["address"]),
        authority_address=env_authority or str(registry_section["authority"]),
        child_code_hex=str(registry_section["child_code_hex"]),
        index_bits=int(registry_section.get("index_bits", INDEX_BITS)),
        value_policy=dict(registry_section.get("value_policy") or {}),
    )
