"""Body layouts of every message the registry reads or writes.

Inbound convey:
    opcode(32) | correlation_id(64) | index(50) | method(32) | ^payload?
Inbound allocate:
    opcode(32) | correlation_id(64) | ^payload?
Forward to the authority (upward):
    method(32) | correlation_id(64) | index(50) | ^payload?
Forward to a child (downward):
    method(32) | correlation_id(64) | ^payload?
Failure notification:
    EXCESSES(32) | 0(64)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from src.contracts.opcodes import (
    CORRELATION_ID_BITS,
    INDEX_BITS,
    METHOD_BITS,
    OPCODE_BITS,
    Opcode,
)
from src.core.cells import Builder, Cell, Slice

# Correlation id carried by unsolicited reports and failure notifications.
UNSOLICITED_CORRELATION_ID = 0


@dataclass(frozen=True)
class Head:
    opcode: int
    correlation_id: int


@dataclass(frozen=True)
class ConveyRequest:
    index: int
    method: int
    payload: Optional[Cell] = None


def decode_head(s: Slice) -> Head:
    opcode = s.load_uint(OPCODE_BITS)
    correlation_id = s.load_uint(CORRELATION_ID_BITS)
    return Head(opcode=opcode, correlation_id=correlation_id)


def decode_convey(s: Slice) -> ConveyRequest:
    index = s.load_uint(INDEX_BITS)
    method = s.load_uint(METHOD_BITS)
    return ConveyRequest(index=index, method=method, payload=s.load_maybe_ref())


def request_body(
    opcode: Opcode,
    correlation_id: int,
    *,
    index: int,
    method: int = 0,
    payload: Optional[Cell] = None,
) -> Cell:
    """Body of an inbound convey request addressed to the registry."""

    return (
        Builder()
        .store_uint(int(opcode), OPCODE_BITS)
        .store_uint(correlation_id, CORRELATION_ID_BITS)
        .store_uint(index, INDEX_BITS)
        .store_uint(method, METHOD_BITS)
        .store_maybe_ref(payload)
        .end_cell()
    )


def report_body(method: int, correlation_id: int, index: int, payload: Optional[Cell]) -> Cell:
    return (
        Builder()
        .store_uint(method, METHOD_BITS)
        .store_uint(correlation_id, CORRELATION_ID_BITS)
        .store_uint(index, INDEX_BITS)
        .store_maybe_ref(payload)
        .end_cell()
    )


def command_body(method: int, correlation_id: int, payload: Optional[Cell]) -> Cell:
    return (
        Builder()
        .store_uint(method, METHOD_BITS)
        .store_uint(correlation_id, CORRELATION_ID_BITS)
        .store_maybe_ref(payload)
        .end_cell()
    )


def excesses_body() -> Cell:
    return (
        Builder()
        .store_uint(int(Opcode.EXCESSES), OPCODE_BITS)
        .store_uint(UNSOLICITED_CORRELATION_ID, CORRELATION_ID_BITS)
        .end_cell()
    )


@dataclass(frozen=True)
class Report:
    method: int
    correlation_id: int
    index: int
    payload: Optional[Cell]


@dataclass(frozen=True)
class Command:
    method: int
    correlation_id: int
    payload: Optional[Cell]


def decode_report(body: Cell) -> Report:
    s = body.begin_parse()
    method = s.load_uint(METHOD_BITS)
    correlation_id = s.load_uint(CORRELATION_ID_BITS)
    index = s.load_uint(INDEX_BITS)
    return Report(method=method, correlation_id=correlation_id, index=index, payload=s.load_maybe_ref())


def decode_command(body: Cell) -> Command:
    s = body.begin_parse()
    method = s.load_uint(METHOD_BITS)
    correlation_id = s.load_uint(CORRELATION_ID_BITS)
    return Command(method=method, correlation_id=correlation_id, payload=s.load_maybe_ref())


def allocate_body(correlation_id: int, payload: Optional[Cell] = None) -> Cell:
    return (
        Builder()
        .store_uint(int(Opcode.ALLOCATE), OPCODE_BITS)
        .store_uint(correlation_id, CORRELATION_ID_BITS)
        .store_maybe_ref(payload)
        .end_cell()
    )
