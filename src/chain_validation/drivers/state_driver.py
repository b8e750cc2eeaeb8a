"""Owns the implementation's actor store for the duration of one test."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple, Type, TypeVar

from ..actors import AccountState, ExecReturn, InitState, MinerInfo, MinerState
from ..address import INIT_ACTOR_ADDR, Address, Protocol, derive_actor_address, new_id_address
from ..config import (
    ACCOUNT_ACTOR_CODE,
    STORAGE_MINER_ACTOR_CODE,
    TEST_SECTOR_SIZE,
)
from ..errors import ActorNotFound, FatalFault
from ..state import ActorStore, KeyManager
from ..types import Actor

logger = logging.getLogger(__name__)

T = TypeVar("T")

SECP = Protocol.SECP256K1
BLS = Protocol.BLS

MINER_OWNER_BALANCE = 1_000_000_000


@dataclass(frozen=True)
class BuiltinMinerInfo:
    owner: Address
    owner_id: Address
    worker: Address
    worker_id: Address


def compute_init_actor_exec_return(
    from_: Address,
    originator_call_seq: int,
    new_actor_address_count: int,
    expected_new_addr: Address,
) -> ExecReturn:
    """Return value the init actor gives for an Exec from `from_`."""
    if from_.protocol == Protocol.ID:
        raise ValueError(f"cannot compute init actor address return from ID address {from_}")
    robust = derive_actor_address(from_, originator_call_seq, new_actor_address_count)
    return ExecReturn(id_address=expected_new_addr, robust_address=robust)


class StateDriver:
    def __init__(self, store: ActorStore, key_manager: KeyManager):
        self.st = store
        self.w = key_manager
        self._miner_info: Optional[BuiltinMinerInfo] = None

    def state(self) -> ActorStore:
        return self.st

    def wallet(self) -> KeyManager:
        return self.w

    def try_actor(self, addr: Address) -> Optional[Actor]:
        try:
            return self.st.actor(addr)
        except ActorNotFound:
            return None

    def require_actor(self, addr: Address) -> Actor:
        try:
            return self.st.actor(addr)
        except ActorNotFound as exc:
            raise FatalFault("actor lookup", f"no actor at {addr}") from exc

    def get_actor_state(self, addr: Address, shape: Type[T]) -> T:
        self.require_actor(addr)
        return self.st.actor_state(addr, shape)

    def resolve_address(self, addr: Address) -> Optional[Address]:
        """ID address of the actor behind `addr`, or None if no such actor exists."""
        if addr.is_id:
            return addr if self.try_actor(addr) is not None else None
        init = self.get_actor_state(INIT_ACTOR_ADDR, InitState)
        actor_id = init.address_map.get(addr)
        return new_id_address(actor_id) if actor_id is not None else None

    def new_account_actor(self, kind: Protocol, balance: int) -> Tuple[Address, Address]:
        """Create an account actor; returns its public key and ID addresses."""
        if kind == SECP:
            addr = self.w.new_secp256k1_account_address()
        elif kind == BLS:
            addr = self.w.new_bls_account_address()
        else:
            raise ValueError(f"unsupported account key type {kind!r}")

        _, id_addr = self.st.create_actor(ACCOUNT_ACTOR_CODE, addr, balance, AccountState(address=addr))
        logger.debug(f"created {kind.name} account {addr} as {id_addr} with balance {balance}")
        return addr, id_addr

    def new_miner_account_actor(self, seal_proof_type: int, period_boundary: int) -> Address:
        """Create a miner with fresh owner and worker accounts; returns the miner ID address."""
        owner, owner_id = self.new_account_actor(SECP, MINER_OWNER_BALANCE)
        worker, worker_id = self.new_account_actor(BLS, 0)

        expected_id = new_id_address(worker_id.id + 1)
        exec_ret = compute_init_actor_exec_return(owner, 0, 1, expected_id)
        miner_state = MinerState(
            info=MinerInfo(
                owner=owner_id,
                worker=worker_id,
                peer_id=b"chain-validation",
                seal_proof_type=seal_proof_type,
                sector_size=TEST_SECTOR_SIZE,
            ),
            proving_period_start=period_boundary,
        )
        _, miner_id = self.st.create_actor(STORAGE_MINER_ACTOR_CODE, exec_ret.robust_address, 0, miner_state)

        self._miner_info = BuiltinMinerInfo(owner=owner, owner_id=owner_id, worker=worker, worker_id=worker_id)
        logger.debug(f"created miner {miner_id} (owner {owner_id}, worker {worker_id})")
        return miner_id

    def builtin_miner_info(self) -> BuiltinMinerInfo:
        if self._miner_info is None:
            raise FatalFault("miner lookup", "no genesis miner has been created")
        return self._miner_info
