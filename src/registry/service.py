from __future__ import annotations

import logging
import os

from src.contracts.streams import REGISTRY_MESSAGE_INBOUND_V1
from src.core.cells import Cell
from src.core.message_bus import RedisStreamBus
from src.core.models import Address
from src.core.settings import Settings, load_settings

from .policy import ValueForwardingPolicy
from .router import Registry
from .state import RedisStateStore, load_or_create
from .worker import RegistryWorker

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def child_code_from_settings(s: Settings) -> Cell:
    """The configured child code template as a single data cell."""

    try:
        code = bytes.fromhex(s.child_code_hex)
    except ValueError as e:
        raise ValueError("registry.child_code_hex must be hex") from e
    return Cell(bits=int.from_bytes(code, "big"), bit_length=len(code) * 8)


def build_registry(s: Settings) -> Registry:
    return Registry(
        address=Address.parse(s.registry_address),
        policy=ValueForwardingPolicy.from_mapping(s.value_policy),
        index_bits=s.index_bits,
    )


def main() -> None:
    s = load_settings()
    bus = RedisStreamBus(s.redis_url)

    registry = build_registry(s)
    store = RedisStateStore(bus.client, key_prefix=f"registry:{registry.address}")
    state = load_or_create(
        store,
        authority_address=Address.parse(s.authority_address),
        child_code_template=child_code_from_settings(s),
    )
    logger.info(f"Registry {registry.address} authority={state.authority_address} next_index={state.next_index}")

    worker = RegistryWorker(registry=registry, store=store)
    group = s.redis_consumer_group
    consumer = os.getenv("HOSTNAME", "registry-1")

    def publish(out) -> None:
        # Stream name equals schema name in v1.
        bus.publish(out.schema, out)

    def handle(ev) -> None:
        worker.handle_inbound(ev, publish=publish)

    bus.run_worker(stream=REGISTRY_MESSAGE_INBOUND_V1, group=group, consumer=consumer, handler=handle)


if __name__ == "__main__":
    main()
