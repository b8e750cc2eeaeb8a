"""In-memory actor store with content-addressed state and a canonical root."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple, Type, TypeVar

from blake3 import blake3

from ..actors import InitState
from ..address import INIT_ACTOR_ADDR, Address, new_id_address
from ..encoding import decode_as, serialize
from ..errors import ActorNotFound
from ..types import Actor

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ActorEntry:
    code: str
    state: bytes
    call_seq_num: int
    balance: int

    @property
    def head(self) -> str:
        return blake3(self.state).hexdigest()

    def view(self) -> Actor:
        return Actor(code=self.code, head=self.head, call_seq_num=self.call_seq_num, balance=self.balance)


def _u64_be(value: int) -> bytes:
    if value < 0:
        raise ValueError("u64 must be non-negative")
    return int(value).to_bytes(8, "big", signed=False)


class MemoryActorStore:
    """Actors keyed by ID address; robust addresses resolve through the init actor."""

    def __init__(self) -> None:
        self.actors: Dict[Address, ActorEntry] = {}

    # --- ActorStore interface ---

    def root(self) -> str:
        """BLAKE3-256 over every actor in ID order."""
        buf = bytearray()
        for addr in sorted(self.actors, key=lambda a: a.id):
            entry = self.actors[addr]
            code = entry.code.encode("utf-8")
            buf += _u64_be(addr.id)
            buf += _u64_be(len(code))
            buf += code
            buf += bytes.fromhex(entry.head)
            buf += _u64_be(entry.call_seq_num)
            buf += entry.balance.to_bytes(16, "big", signed=False)
        return blake3(buf).hexdigest()

    def actor(self, addr: Address) -> Actor:
        id_addr = self.resolve(addr)
        if id_addr is None:
            raise ActorNotFound(f"no actor at {addr}")
        return self.actors[id_addr].view()

    def actor_state(self, addr: Address, shape: Type[T]) -> T:
        id_addr = self.resolve(addr)
        if id_addr is None:
            raise ActorNotFound(f"no actor at {addr}")
        return decode_as(self.actors[id_addr].state, shape)

    def create_actor(self, code: str, addr: Address, balance: int, state: object) -> Tuple[Actor, Address]:
        if self.resolve(addr) is not None:
            raise ValueError(f"actor already exists at {addr}")
        id_addr = addr if addr.is_id else self.register_address(addr)
        entry = ActorEntry(code=code, state=serialize(state), call_seq_num=0, balance=balance)
        self.actors[id_addr] = entry
        logger.debug(f"created actor {id_addr} ({code}) for {addr}")
        return entry.view(), id_addr

    # --- Helpers for the reference VM ---

    def resolve(self, addr: Address) -> Optional[Address]:
        if addr.is_id:
            return addr if addr in self.actors else None
        init = self.actors.get(INIT_ACTOR_ADDR)
        if init is None:
            return None
        actor_id = decode_as(init.state, InitState).address_map.get(addr)
        return new_id_address(actor_id) if actor_id is not None else None

    def register_address(self, addr: Address) -> Address:
        """Assign the next actor ID to the robust address `addr`."""
        if INIT_ACTOR_ADDR not in self.actors:
            raise ValueError(f"cannot assign an ID to {addr} without an init actor")
        init = self.get_state(INIT_ACTOR_ADDR, InitState)
        id_addr = new_id_address(init.next_id)
        init.address_map[addr] = init.next_id
        init.next_id += 1
        self.put_state(INIT_ACTOR_ADDR, init)
        return id_addr

    def get(self, id_addr: Address) -> ActorEntry:
        return self.actors[id_addr]

    def get_state(self, id_addr: Address, shape: Type[T]) -> T:
        return decode_as(self.actors[id_addr].state, shape)

    def put_state(self, id_addr: Address, state: object) -> None:
        self.actors[id_addr] = dataclasses.replace(self.actors[id_addr], state=serialize(state))

    def add_balance(self, id_addr: Address, amount: int) -> None:
        entry = self.actors[id_addr]
        self.actors[id_addr] = dataclasses.replace(entry, balance=entry.balance + amount)

    def bump_call_seq(self, id_addr: Address) -> None:
        entry = self.actors[id_addr]
        self.actors[id_addr] = dataclasses.replace(entry, call_seq_num=entry.call_seq_num + 1)

    def snapshot(self) -> Dict[Address, ActorEntry]:
        return dict(self.actors)

    def restore(self, snapshot: Dict[Address, ActorEntry]) -> None:
        self.actors = dict(snapshot)
