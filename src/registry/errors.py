"""Registry rejection taxonomy.

Every error here aborts the whole transaction: no outbound message is emitted
and the registry state is left untouched. Delivery failures are not errors;
they arrive as bounced inbound messages and are routed to the bounce handler.
"""

from __future__ import annotations


class RegistryError(Exception):
    exit_code: int = 1

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class MalformedMessage(RegistryError):
    exit_code = 9


class IndexOutOfRange(RegistryError):
    exit_code = 401


class CapacityExhausted(RegistryError):
    exit_code = 402


class SenderMismatch(RegistryError):
    exit_code = 403


class UnrecognizedOperation(RegistryError):
    exit_code = 0xFFFF
