"""Builtin actor method numbers, state shapes, params and return values.

Only the surface the bundled scenarios touch is modelled. Implementations
under test decode their own state into these shapes when the harness asks for
`ActorStore.actor_state(addr, shape)`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, List

from .address import Address

METHOD_SEND = 0
METHOD_CONSTRUCTOR = 1


class InitMethod(IntEnum):
    CONSTRUCTOR = 1
    EXEC = 2


class MinerMethod(IntEnum):
    CONSTRUCTOR = 1
    CONTROL_ADDRESSES = 2


class MultisigMethod(IntEnum):
    CONSTRUCTOR = 1
    PROPOSE = 2
    APPROVE = 3
    CANCEL = 4


class PaymentChannelMethod(IntEnum):
    CONSTRUCTOR = 1
    UPDATE_CHANNEL_STATE = 2
    SETTLE = 3
    COLLECT = 4


# --- Singleton actors ---


@dataclass
class SystemState:
    pass


@dataclass
class InitState:
    address_map: Dict[Address, int]
    next_id: int
    network_name: str


@dataclass
class RewardState:
    this_epoch_reward: int


@dataclass
class CronEntry:
    receiver: Address
    method_num: int


@dataclass
class CronState:
    entries: List[CronEntry] = field(default_factory=list)


@dataclass
class PowerState:
    total_raw_byte_power: int = 0
    total_quality_adj_power: int = 0
    miner_count: int = 0
    claims: Dict[Address, int] = field(default_factory=dict)


@dataclass
class MarketState:
    next_id: int = 0
    last_cron: int = 0


# --- Account ---


@dataclass
class AccountState:
    address: Address


# --- Miner ---


@dataclass
class MinerInfo:
    owner: Address
    worker: Address
    peer_id: bytes
    seal_proof_type: int
    sector_size: int


@dataclass
class MinerState:
    info: MinerInfo
    pre_commit_deposits: int = 0
    locked_funds: int = 0
    proving_period_start: int = 0


@dataclass
class GetControlAddressesReturn:
    owner: Address
    worker: Address


# --- Init Exec ---


@dataclass
class ExecParams:
    code_cid: str
    constructor_params: bytes


@dataclass
class ExecReturn:
    id_address: Address
    robust_address: Address


# --- Multisig ---


@dataclass
class MultisigConstructorParams:
    signers: List[Address]
    num_approvals_threshold: int
    unlock_duration: int


@dataclass
class MultisigTransaction:
    to: Address
    value: int
    method: int
    params: bytes
    approved: List[Address] = field(default_factory=list)


@dataclass
class MultisigState:
    signers: List[Address]
    num_approvals_threshold: int
    next_txn_id: int
    initial_balance: int
    start_epoch: int
    unlock_duration: int
    pending_txns: Dict[int, MultisigTransaction] = field(default_factory=dict)

    def amount_locked(self, elapsed_epochs: int) -> int:
        if elapsed_epochs >= self.unlock_duration:
            return 0
        return self.initial_balance * (self.unlock_duration - elapsed_epochs) // self.unlock_duration


@dataclass
class ProposeParams:
    to: Address
    value: int
    method: int
    params: bytes


@dataclass
class ProposeReturn:
    txn_id: int
    applied: bool
    exit_code: int
    ret: bytes


@dataclass
class TxnIDParams:
    id: int


@dataclass
class ApproveReturn:
    applied: bool
    exit_code: int
    ret: bytes


# --- Payment channel ---


@dataclass
class PaymentChannelConstructorParams:
    from_: Address
    to: Address


@dataclass
class PaymentChannelState:
    from_: Address
    to: Address
    to_send: int = 0
    settling_at: int = 0
    min_settle_height: int = 0
