"""Registry wire protocol constants (v1, frozen).

Changing any width below is an incompatible protocol change: there is no
in-place upgrade path for deployed registries.
"""

from __future__ import annotations

from enum import IntEnum

OPCODE_BITS = 32
CORRELATION_ID_BITS = 64
INDEX_BITS = 50
METHOD_BITS = 32

# Highest number of child units a registry can ever allocate.
MAX_UNITS = (1 << INDEX_BITS) - 1

# Host-ledger convention: a bounced body starts with 32 set bits followed by
# at most 256 bits of the original body.
BOUNCE_PREFIX = 0xFFFFFFFF
BOUNCED_BODY_BITS = 256


class Opcode(IntEnum):
    ALLOCATE = 0x1A7B3C01
    UPWARD_CONVEY = 0x1A7B3C02
    DOWNWARD_CONVEY = 0x1A7B3C03
    # Failure notification sent to the authority when a forward bounced.
    EXCESSES = 0xD53276DB

    @classmethod
    def decode(cls, raw: int) -> "Opcode | None":
        try:
            return cls(raw)
        except ValueError:
            return None
