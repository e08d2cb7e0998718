"""In-process host ledger.

Just enough of the substrate the registry rides on:
- accounts addressed by `Address`, each processing one message per transaction
- strict FIFO delivery, every message delivered at most once
- deployment from a `StateInit` whose hash matches the destination
- bounces for undeliverable bounceable messages and for aborted transactions
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from src.contracts.opcodes import BOUNCE_PREFIX, BOUNCED_BODY_BITS, OPCODE_BITS
from src.core.cells import Builder, Cell, StateInit
from src.core.models import FLAG_BOUNCEABLE, FLAG_BOUNCED, Address, InboundMessage, OutboundMessage

logger = logging.getLogger(__name__)


class Account(Protocol):
    def receive(self, msg: InboundMessage) -> list[OutboundMessage]:
        ...


AccountFactory = Callable[[Address, StateInit], Account]


class InsufficientBalance(RuntimeError):
    pass


@dataclass(frozen=True)
class TransactionRecord:
    account: Address
    inbound: InboundMessage
    outbound: tuple[OutboundMessage, ...] = ()
    aborted: bool = False
    error: Optional[str] = None


@dataclass(frozen=True)
class Undelivered:
    sender: Address
    message: OutboundMessage
    bounced: bool


def bounced_body(original: Cell) -> Cell:
    keep = min(original.bit_length, BOUNCED_BODY_BITS)
    head = original.bits >> (original.bit_length - keep)
    return Builder().store_uint(BOUNCE_PREFIX, OPCODE_BITS).store_uint(head, keep).end_cell()


class Ledger:
    def __init__(self) -> None:
        self._accounts: dict[Address, Account] = {}
        self._balances: dict[Address, int] = {}
        self._factories: dict[bytes, AccountFactory] = {}
        self._queue: deque[tuple[Address, OutboundMessage, bool]] = deque()
        self.transactions: list[TransactionRecord] = []
        self.undelivered: list[Undelivered] = []

    def register_code(self, code: Cell, factory: AccountFactory) -> None:
        self._factories[code.hash()] = factory

    def deploy(self, address: Address, account: Account, *, balance: int = 0) -> None:
        if address in self._accounts:
            raise ValueError(f"account {address} already exists")
        self._accounts[address] = account
        self._balances[address] = balance

    def exists(self, address: Address) -> bool:
        return address in self._accounts

    def account(self, address: Address) -> Account:
        return self._accounts[address]

    def balance(self, address: Address) -> int:
        return self._balances.get(address, 0)

    def send(self, sender: Address, msg: OutboundMessage) -> None:
        """Queue a message on behalf of `sender` (debits its balance)."""

        self._debit(sender, msg.value)
        self._queue.append((sender, msg, False))

    def _debit(self, address: Address, value: int) -> None:
        if self.balance(address) < value:
            raise InsufficientBalance(f"{address} cannot send {value}")
        self._balances[address] = self.balance(address) - value

    def _credit(self, address: Address, value: int) -> None:
        self._balances[address] = self.balance(address) + value

    def _try_deploy(self, msg: OutboundMessage) -> bool:
        si = msg.state_init
        if si is None or si.address(msg.destination.workchain) != msg.destination:
            return False
        factory = self._factories.get(si.code.hash())
        if factory is None:
            return False
        self.deploy(msg.destination, factory(msg.destination, si))
        logger.debug(f"deployed {msg.destination}")
        return True

    def _bounce(self, sender: Address, original: InboundMessage) -> None:
        # A bounce carries the original value back and never bounces itself.
        back = OutboundMessage(destination=original.sender, value=original.value, body=bounced_body(original.body), bounce=False)
        self._queue.append((sender, back, True))

    def step(self) -> Optional[TransactionRecord]:
        """Deliver the oldest queued message. Returns None when idle."""

        if not self._queue:
            return None
        sender, out, bounced = self._queue.popleft()
        flags = FLAG_BOUNCED if bounced else (FLAG_BOUNCEABLE if out.bounce else 0)
        inbound = InboundMessage(sender=sender, destination=out.destination, value=out.value, body=out.body, flags=flags)

        if not self.exists(out.destination) and not self._try_deploy(out):
            self.undelivered.append(Undelivered(sender=sender, message=out, bounced=out.bounce))
            if out.bounce:
                logger.info(f"no account at {out.destination}: bouncing to {sender}")
                self._bounce(out.destination, inbound)
            else:
                logger.info(f"no account at {out.destination}: value {out.value} stranded")
            return None

        dest = out.destination
        self._credit(dest, inbound.value)
        balance_before = self.balance(dest)
        try:
            sends = list(self._accounts[dest].receive(inbound))
            total = sum(m.value for m in sends)
            if total > balance_before:
                raise InsufficientBalance(f"{dest} cannot send {total}, balance {balance_before}")
        except Exception as e:
            # Aborted transaction: no sends, the account keeps its previous state.
            rec = TransactionRecord(account=dest, inbound=inbound, aborted=True, error=f"{type(e).__name__}: {e}")
            self.transactions.append(rec)
            logger.info(f"transaction on {dest} aborted: {rec.error}")
            if inbound.bounceable and not inbound.bounced:
                self._debit(dest, inbound.value)
                self._bounce(dest, inbound)
            return rec

        for m in sends:
            self.send(dest, m)
        rec = TransactionRecord(account=dest, inbound=inbound, outbound=tuple(sends))
        self.transactions.append(rec)
        return rec

    def run(self, *, max_steps: int = 10_000) -> list[TransactionRecord]:
        """Deliver until the queue drains. Returns the transactions executed."""

        start = len(self.transactions)
        for _ in range(max_steps):
            if not self._queue:
                return self.transactions[start:]
            self.step()
        raise RuntimeError(f"ledger did not settle within {max_steps} steps")
