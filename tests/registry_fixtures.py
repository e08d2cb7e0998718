"""Shared addresses and builders for registry tests."""

from __future__ import annotations

from src.core.cells import Builder, Cell
from src.core.models import FLAG_BOUNCEABLE, Address, InboundMessage


REGISTRY = Address(workchain=0, hash_part=bytes.fromhex("a1" * 32))
AUTHORITY = Address(workchain=0, hash_part=bytes.fromhex("b2" * 32))
STRANGER = Address(workchain=0, hash_part=bytes.fromhex("e5" * 32))


def make_template(tag: int = 0xC0DE) -> Cell:
    return Builder().store_uint(0xFF00F4A4, 32).store_uint(tag, 16).end_cell()


def make_payload(text: str = "hello") -> Cell:
    return Builder().store_bytes(text.encode("utf-8")).end_cell()


def inbound(sender: Address, body: Cell, *, value: int = 1_000, flags: int = FLAG_BOUNCEABLE) -> InboundMessage:
    return InboundMessage(sender=sender, destination=REGISTRY, value=value, body=body, flags=flags)
