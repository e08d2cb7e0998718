from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from fastapi import Depends, FastAPI, HTTPException
import uvicorn

from src.contracts.opcodes import INDEX_BITS, MAX_UNITS
from src.core.message_bus import RedisStreamBus
from src.core.settings import load_settings
from src.registry.derivation import derive_address
from src.registry.router import Registry
from src.registry.service import build_registry
from src.registry.state import RedisStateStore, StateStore


app = FastAPI(title="Registry of Trust API")


@dataclass(frozen=True)
class RegistryContext:
    registry: Registry
    store: StateStore


@lru_cache(maxsize=1)
def get_context() -> RegistryContext:
    s = load_settings()
    registry = build_registry(s)
    bus = RedisStreamBus(s.redis_url)
    return RegistryContext(registry=registry, store=RedisStateStore(bus.client, key_prefix=f"registry:{registry.address}"))


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/registry/state")
def registry_state(ctx: RegistryContext = Depends(get_context)) -> dict:
    state = ctx.store.load()
    if state is None:
        raise HTTPException(status_code=404, detail="registry not deployed")
    return {
        "registry": str(ctx.registry.address),
        "authority": str(state.authority_address),
        "next_index": state.next_index,
        "max_units": MAX_UNITS,
        "index_bits": INDEX_BITS,
        "child_code_hash": state.child_code_template.hash().hex(),
    }


@app.get("/registry/derive/{index}")
def registry_derive(index: int, ctx: RegistryContext = Depends(get_context)) -> dict:
    state = ctx.store.load()
    if state is None:
        raise HTTPException(status_code=404, detail="registry not deployed")
    if not (0 <= index < MAX_UNITS):
        raise HTTPException(status_code=422, detail=f"index must be within [0, {MAX_UNITS})")
    address = derive_address(index, state.child_code_template, ctx.registry.address)
    return {"index": index, "address": str(address), "allocated": state.is_allocated(index)}


def main() -> None:
    uvicorn.run(app, host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
