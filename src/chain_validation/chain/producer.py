"""Message construction with builder defaults and per-message overrides."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, List, Optional

from ..actors import (
    METHOD_SEND,
    ExecParams,
    InitMethod,
    MinerMethod,
    MultisigConstructorParams,
    MultisigMethod,
    PaymentChannelConstructorParams,
    ProposeParams,
    TxnIDParams,
)
from ..address import INIT_ACTOR_ADDR, Address
from ..config import MULTISIG_ACTOR_CODE, PAYMENT_CHANNEL_ACTOR_CODE
from ..encoding import serialize
from ..types import Message

logger = logging.getLogger(__name__)


class MessageKind(Enum):
    TRANSFER = "transfer"
    CREATE_PAYMENT_CHANNEL = "create_payment_channel"
    CREATE_MULTISIG = "create_multisig"
    MINER_CONTROL_ADDRESSES = "miner_control_addresses"
    CALL = "call"


class MessageProducer:
    """Builds messages and remembers every message it built, in order.

    Recognized overrides on every builder method: `value` (default 0),
    `nonce`, `gas_limit`, `gas_fee_cap` and `gas_premium`. Without an explicit
    `nonce` the producer uses its running counter for the sender and advances
    it; an explicit nonce leaves the counter alone.
    """

    def __init__(self, default_gas_fee_cap: int, default_gas_premium: int, default_gas_limit: int):
        self.default_gas_fee_cap = default_gas_fee_cap
        self.default_gas_premium = default_gas_premium
        self.default_gas_limit = default_gas_limit
        self._messages: List[Message] = []
        self._next_nonce: Dict[Address, int] = {}

    def messages(self) -> List[Message]:
        return list(self._messages)

    def _take_nonce(self, sender: Address) -> int:
        nonce = self._next_nonce.get(sender, 0)
        self._next_nonce[sender] = nonce + 1
        return nonce

    def build(
        self,
        to: Address,
        from_: Address,
        method: int,
        params: bytes,
        *,
        value: int = 0,
        nonce: Optional[int] = None,
        gas_limit: Optional[int] = None,
        gas_fee_cap: Optional[int] = None,
        gas_premium: Optional[int] = None,
    ) -> Message:
        msg = Message(
            to=to,
            from_=from_,
            nonce=self._take_nonce(from_) if nonce is None else nonce,
            value=value,
            method=int(method),
            params=params,
            gas_limit=self.default_gas_limit if gas_limit is None else gas_limit,
            gas_fee_cap=self.default_gas_fee_cap if gas_fee_cap is None else gas_fee_cap,
            gas_premium=self.default_gas_premium if gas_premium is None else gas_premium,
        )
        self._messages.append(msg)
        logger.debug(f"produced message {msg.cid()[:16]} {from_} -> {to} method {msg.method} nonce {msg.nonce}")
        return msg

    def produce(self, kind: MessageKind, from_: Address, to: Optional[Address], **options) -> Message:
        """Build a message of `kind`; kind specific arguments ride along in `options`."""
        kind = MessageKind(kind)
        if kind == MessageKind.TRANSFER:
            return self.transfer(from_, to, **options)
        if kind == MessageKind.CREATE_PAYMENT_CHANNEL:
            return self.create_payment_channel_actor(from_, to, **options)
        if kind == MessageKind.CREATE_MULTISIG:
            return self.create_multisig_actor(from_, **options)
        if kind == MessageKind.MINER_CONTROL_ADDRESSES:
            return self.miner_control_addresses(from_, to, **options)
        method = options.pop("method")
        params = options.pop("params", b"")
        return self.build(to, from_, method, params, **options)

    def transfer(self, from_: Address, to: Address, **options) -> Message:
        return self.build(to, from_, METHOD_SEND, b"", **options)

    def create_payment_channel_actor(self, from_: Address, to: Address, **options) -> Message:
        ctor = PaymentChannelConstructorParams(from_=from_, to=to)
        params = ExecParams(code_cid=PAYMENT_CHANNEL_ACTOR_CODE, constructor_params=serialize(ctor))
        return self.build(INIT_ACTOR_ADDR, from_, InitMethod.EXEC, serialize(params), **options)

    def create_multisig_actor(
        self,
        from_: Address,
        *,
        signers: List[Address],
        unlock_duration: int,
        num_approvals_threshold: int,
        **options,
    ) -> Message:
        ctor = MultisigConstructorParams(
            signers=list(signers),
            num_approvals_threshold=num_approvals_threshold,
            unlock_duration=unlock_duration,
        )
        params = ExecParams(code_cid=MULTISIG_ACTOR_CODE, constructor_params=serialize(ctor))
        return self.build(INIT_ACTOR_ADDR, from_, InitMethod.EXEC, serialize(params), **options)

    def miner_control_addresses(self, from_: Address, miner: Address, **options) -> Message:
        params = options.pop("params", None) or b""
        return self.build(miner, from_, MinerMethod.CONTROL_ADDRESSES, params, **options)

    def multisig_propose(self, from_: Address, multisig: Address, proposal: ProposeParams, **options) -> Message:
        return self.build(multisig, from_, MultisigMethod.PROPOSE, serialize(proposal), **options)

    def multisig_approve(self, from_: Address, multisig: Address, txn_id: int, **options) -> Message:
        return self.build(multisig, from_, MultisigMethod.APPROVE, serialize(TxnIDParams(id=txn_id)), **options)

    def multisig_cancel(self, from_: Address, multisig: Address, txn_id: int, **options) -> Message:
        return self.build(multisig, from_, MultisigMethod.CANCEL, serialize(TxnIDParams(id=txn_id)), **options)
