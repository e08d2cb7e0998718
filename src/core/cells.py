"""Bit-exact message bodies.

A cell holds up to 1023 data bits and up to 4 references to other cells.
Envelopes are packed into cells with a `Builder` and read back with a `Slice`.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Any, Optional

from .models import Address

MAX_CELL_BITS = 1023
MAX_CELL_REFS = 4

ADDRESS_BITS = 8 + 256


class CellUnderflow(ValueError):
    pass


class CellOverflow(ValueError):
    pass


@dataclass(frozen=True)
class Cell:
    # Data bits as a big-endian unsigned integer of exactly `bit_length` bits.
    bits: int
    bit_length: int
    refs: tuple["Cell", ...] = ()

    def __post_init__(self) -> None:
        if not (0 <= self.bit_length <= MAX_CELL_BITS):
            raise CellOverflow(f"cell holds at most {MAX_CELL_BITS} bits, got {self.bit_length}")
        if len(self.refs) > MAX_CELL_REFS:
            raise CellOverflow(f"cell holds at most {MAX_CELL_REFS} refs, got {len(self.refs)}")
        if self.bits < 0 or self.bits >> self.bit_length:
            raise ValueError("bits do not fit bit_length")

    @classmethod
    def empty(cls) -> "Cell":
        return cls(bits=0, bit_length=0)

    @property
    def is_empty(self) -> bool:
        return self.bit_length == 0 and not self.refs

    def data_bytes(self) -> bytes:
        """Data bits left-aligned and padded with a completion tag."""

        if self.bit_length % 8 == 0:
            return self.bits.to_bytes(self.bit_length // 8, "big")
        pad = 8 - self.bit_length % 8
        padded = (self.bits << pad) | (1 << (pad - 1))
        return padded.to_bytes((self.bit_length + pad) // 8, "big")

    def depth(self) -> int:
        if not self.refs:
            return 0
        return 1 + max(r.depth() for r in self.refs)

    def hash(self) -> bytes:
        d1 = len(self.refs)
        d2 = (self.bit_length + 7) // 8 + self.bit_length // 8
        h = hashlib.sha256()
        h.update(bytes([d1, d2]))
        h.update(self.data_bytes())
        for r in self.refs:
            h.update(r.depth().to_bytes(2, "big"))
        for r in self.refs:
            h.update(r.hash())
        return h.digest()

    def begin_parse(self) -> "Slice":
        return Slice(self)

    def to_wire(self) -> dict[str, Any]:
        width = (self.bit_length + 3) // 4
        return {
            "bits": format(self.bits, f"0{width}x") if width else "",
            "bit_length": self.bit_length,
            "refs": [r.to_wire() for r in self.refs],
        }

    @classmethod
    def from_wire(cls, d: dict[str, Any]) -> "Cell":
        if not isinstance(d, dict):
            raise ValueError("cell must be object")
        bit_length = d.get("bit_length")
        if not isinstance(bit_length, int) or isinstance(bit_length, bool):
            raise ValueError("cell.bit_length must be int")
        raw = d.get("bits")
        if not isinstance(raw, str):
            raise ValueError("cell.bits must be hex string")
        refs = d.get("refs", [])
        if not isinstance(refs, list):
            raise ValueError("cell.refs must be list")
        try:
            bits = int(raw, 16) if raw else 0
        except ValueError as e:
            raise ValueError(f"cell.bits is not hex: {raw!r}") from e
        return cls(bits=bits, bit_length=bit_length, refs=tuple(cls.from_wire(r) for r in refs))


@dataclass(frozen=True)
class StateInit:
    """Code and initial data of an account; its hash is the account address."""

    code: Cell
    data: Cell

    def to_cell(self) -> Cell:
        # split_depth/special absent, code and data present.
        return Builder().store_uint(0b00110, 5).store_ref(self.code).store_ref(self.data).end_cell()

    def address(self, workchain: int) -> Address:
        return Address(workchain=workchain, hash_part=self.to_cell().hash())

    def to_wire(self) -> dict[str, Any]:
        return {"code": self.code.to_wire(), "data": self.data.to_wire()}

    @classmethod
    def from_wire(cls, d: dict[str, Any]) -> "StateInit":
        if not isinstance(d, dict) or set(d.keys()) != {"code", "data"}:
            raise ValueError("state_init must be object with code and data")
        return cls(code=Cell.from_wire(d["code"]), data=Cell.from_wire(d["data"]))


class Builder:
    def __init__(self) -> None:
        self._bits = 0
        self._len = 0
        self._refs: list[Cell] = []

    @property
    def bit_length(self) -> int:
        return self._len

    def _append(self, value: int, bits: int) -> "Builder":
        if self._len + bits > MAX_CELL_BITS:
            raise CellOverflow(f"cannot store {bits} more bits into {self._len}-bit builder")
        self._bits = (self._bits << bits) | value
        self._len += bits
        return self

    def store_uint(self, value: int, bits: int) -> "Builder":
        if bits < 0:
            raise ValueError("bits must be >= 0")
        if value < 0 or value >> bits:
            raise ValueError(f"value {value} does not fit uint{bits}")
        return self._append(value, bits)

    def store_int(self, value: int, bits: int) -> "Builder":
        if bits <= 0:
            raise ValueError("bits must be > 0")
        lo = -(1 << (bits - 1))
        hi = (1 << (bits - 1)) - 1
        if not (lo <= value <= hi):
            raise ValueError(f"value {value} does not fit int{bits}")
        return self._append(value & ((1 << bits) - 1), bits)

    def store_bool(self, value: bool) -> "Builder":
        return self._append(1 if value else 0, 1)

    def store_bytes(self, data: bytes) -> "Builder":
        return self.store_uint(int.from_bytes(data, "big"), len(data) * 8)

    def store_address(self, address: Address) -> "Builder":
        self.store_int(address.workchain, 8)
        return self.store_bytes(address.hash_part)

    def store_ref(self, cell: Cell) -> "Builder":
        if len(self._refs) >= MAX_CELL_REFS:
            raise CellOverflow(f"builder already holds {MAX_CELL_REFS} refs")
        self._refs.append(cell)
        return self

    def store_maybe_ref(self, cell: Optional[Cell]) -> "Builder":
        if cell is not None:
            self.store_ref(cell)
        return self

    def end_cell(self) -> Cell:
        return Cell(bits=self._bits, bit_length=self._len, refs=tuple(self._refs))


class Slice:
    def __init__(self, cell: Cell) -> None:
        self._cell = cell
        self._pos = 0
        self._ref_pos = 0

    @property
    def remaining_bits(self) -> int:
        return self._cell.bit_length - self._pos

    @property
    def remaining_refs(self) -> int:
        return len(self._cell.refs) - self._ref_pos

    def is_empty(self) -> bool:
        return self.remaining_bits == 0 and self.remaining_refs == 0

    def load_uint(self, bits: int) -> int:
        if bits > self.remaining_bits:
            raise CellUnderflow(f"need {bits} bits, {self.remaining_bits} left")
        shift = self.remaining_bits - bits
        value = (self._cell.bits >> shift) & ((1 << bits) - 1)
        self._pos += bits
        return value

    def load_int(self, bits: int) -> int:
        raw = self.load_uint(bits)
        if raw >> (bits - 1):
            raw -= 1 << bits
        return raw

    def load_bool(self) -> bool:
        return bool(self.load_uint(1))

    def load_bytes(self, n: int) -> bytes:
        return self.load_uint(n * 8).to_bytes(n, "big")

    def load_address(self) -> Address:
        workchain = self.load_int(8)
        return Address(workchain=workchain, hash_part=self.load_bytes(32))

    def load_ref(self) -> Cell:
        if self.remaining_refs <= 0:
            raise CellUnderflow("no refs left")
        ref = self._cell.refs[self._ref_pos]
        self._ref_pos += 1
        return ref

    def load_maybe_ref(self) -> Optional[Cell]:
        if self.remaining_refs <= 0:
            return None
        return self.load_ref()

    def ensure_empty(self) -> None:
        if not self.is_empty():
            raise ValueError(
                f"unexpected trailing data: {self.remaining_bits} bits, {self.remaining_refs} refs"
            )
