"""Replay golden registry envelopes.

Without `--dry-run` every valid golden envelope is pushed onto the stream named
by its schema. With `--dry-run` nothing touches Redis: the inbound goldens run
through a local `RegistryWorker` built from settings, and the outputs of the
golden inputs listed in `EXPECTED_OUTPUTS` must match their golden envelopes.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

# Allow running from repo root without installing as a package.
sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

import redis  # type: ignore

from src.contracts.streams import REGISTRY_MESSAGE_INBOUND_V1
from src.contracts.validation import validate_envelope_dict
from src.core.message_bus import wire_dict_to_envelope
from src.core.models import Address, EventEnvelope
from src.core.settings import load_settings
from src.registry.service import build_registry, child_code_from_settings
from src.registry.state import InMemoryStateStore, RegistryState
from src.registry.worker import RegistryWorker

logger = logging.getLogger(__name__)

# Golden inbound file -> golden file holding the payload it must produce.
EXPECTED_OUTPUTS = {
    "03_inbound_bounced_valid.json": "04_outbound_failure_notification_valid.json",
}


@dataclass
class GoldenSet:
    by_stream: dict[str, list[tuple[Path, dict[str, Any]]]] = field(default_factory=dict)
    invalid: list[tuple[Path, str]] = field(default_factory=list)

    def inbound(self) -> list[tuple[Path, dict[str, Any]]]:
        return self.by_stream.get(REGISTRY_MESSAGE_INBOUND_V1, [])

    def find(self, name: str) -> Optional[dict[str, Any]]:
        for items in self.by_stream.values():
            for path, ev in items:
                if path.name == name:
                    return ev
        return None


def load_golden_set(root: Path) -> GoldenSet:
    gs = GoldenSet()
    for path in sorted(root.glob("*.json")):
        ev = json.loads(path.read_text(encoding="utf-8"))
        try:
            validate_envelope_dict(ev)
        except ValueError as e:
            gs.invalid.append((path, str(e)))
            continue
        gs.by_stream.setdefault(ev["schema"], []).append((path, ev))
    return gs


def replay_inbound(gs: GoldenSet, worker: RegistryWorker) -> dict[str, list[EventEnvelope]]:
    """Run every inbound golden through `worker`. Returns outputs per file name."""

    return {path.name: worker.handle_inbound(wire_dict_to_envelope(ev)) for path, ev in gs.inbound()}


def mismatches(gs: GoldenSet, outputs: dict[str, list[EventEnvelope]]) -> list[str]:
    problems = []
    for inbound_name, expected_name in EXPECTED_OUTPUTS.items():
        expected = gs.find(expected_name)
        produced = outputs.get(inbound_name)
        if expected is None or produced is None:
            problems.append(f"{inbound_name} -> {expected_name}: golden pair missing")
            continue
        payloads = [(out.schema, out.payload) for out in produced]
        if payloads != [(expected["schema"], expected["payload"])]:
            problems.append(f"{inbound_name} -> {expected_name}: got {payloads}")
    return problems


def local_worker(settings_path: str, next_index: int) -> RegistryWorker:
    s = load_settings(settings_path)
    state = RegistryState(
        authority_address=Address.parse(s.authority_address),
        next_index=next_index,
        child_code_template=child_code_from_settings(s),
    )
    return RegistryWorker(registry=build_registry(s), store=InMemoryStateStore(state))


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    ap = argparse.ArgumentParser(description="Replay golden registry envelopes.")
    ap.add_argument("--redis-url", default="redis://localhost:6379/0")
    ap.add_argument("--messages-dir", default=str(Path("contracts") / "golden_messages" / "v1"))
    ap.add_argument("--settings", default=str(Path("config") / "settings.yaml"))
    ap.add_argument("--next-index", type=int, default=5, help="allocated child units for the local replay")
    ap.add_argument("--dry-run", action="store_true", help="replay through a local worker instead of Redis")
    ap.add_argument("--fail-on-invalid", action="store_true")
    args = ap.parse_args()

    root = Path(args.messages_dir)
    gs = load_golden_set(root)
    if not gs.by_stream and not gs.invalid:
        raise SystemExit(f"no golden messages found under {root}")
    for path, err in gs.invalid:
        logger.info(f"invalid golden {path.name}: {err}")
    if gs.invalid and args.fail_on_invalid:
        raise SystemExit(f"{len(gs.invalid)} invalid golden message(s)")

    if args.dry_run:
        outputs = replay_inbound(gs, local_worker(args.settings, args.next_index))
        for name, outs in outputs.items():
            logger.info(f"{name}: {[out.schema for out in outs]}")
        problems = mismatches(gs, outputs)
        for p in problems:
            logger.error(p)
        if problems:
            raise SystemExit(1)
        return

    r = redis.Redis.from_url(args.redis_url, decode_responses=True)
    for stream, items in sorted(gs.by_stream.items()):
        for path, ev in items:
            r.xadd(stream, {"event": json.dumps(ev, ensure_ascii=False)})
        logger.info(f"xadd {stream} <- {len(items)} message(s)")


if __name__ == "__main__":
    main()
