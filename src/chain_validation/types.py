"""Core types shared by the harness and the implementations it drives."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import List

from .address import Address
from .encoding import cid_of, serialize
from .errors import ExitCode

EMPTY_RETURN_VALUE = b""


class SigType(IntEnum):
    SECP256K1 = 1
    BLS = 2


@dataclass(frozen=True)
class Message:
    to: Address
    from_: Address
    nonce: int
    value: int
    method: int
    params: bytes
    gas_limit: int
    gas_fee_cap: int
    gas_premium: int

    def serialize(self) -> bytes:
        return serialize(self)

    def cid(self) -> str:
        return cid_of(self)


@dataclass(frozen=True)
class Signature:
    type: SigType
    data: bytes


@dataclass(frozen=True)
class SignedMessage:
    message: Message
    signature: Signature

    def cid(self) -> str:
        return cid_of(self)


@dataclass(frozen=True)
class MessageReceipt:
    exit_code: ExitCode
    return_value: bytes
    gas_used: int


@dataclass(frozen=True)
class ApplyMessageResult:
    msg: Message
    receipt: MessageReceipt
    penalty: int
    reward: int


@dataclass(frozen=True)
class BlockMessagesInfo:
    """Messages of one block as handed to `Applier.apply_tipset_messages`."""

    miner: Address
    bls_messages: List[Message] = field(default_factory=list)
    secp_messages: List[SignedMessage] = field(default_factory=list)


@dataclass(frozen=True)
class ApplyTipSetResult:
    receipts: List[MessageReceipt]
    state_root: str


@dataclass
class ExecutionContext:
    epoch: int
    miner: Address


@dataclass(frozen=True)
class Actor:
    """Read view of an actor as reported by the store."""

    code: str
    head: str
    call_seq_num: int
    balance: int


@dataclass(frozen=True)
class ActorState:
    """Genesis seed for one actor."""

    addr: Address
    balance: int
    code: str
    state: object


@dataclass(frozen=True)
class RewardSummary:
    treasury: int
    next_per_epoch_reward: int
    next_per_block_reward: int
