"""Reference message and tipset application.

Application of one message:

- Pre-validation: the sender must be an existing account actor, the signature
  (when given) must match, the nonce must equal the sender's call sequence
  number and the balance must cover `gas_limit * gas_fee_cap`. A message that
  fails here is never executed; its receipt carries gas_used 0 and the miner
  is penalized.
- Execution: the gas escrow is taken from the sender and its call sequence
  number advances. Any actor error reverts everything but the escrow and the
  nonce. Running out of gas charges the full gas limit.
- Settlement: unused escrow is refunded, the base fee and over-estimation are
  burned and the miner tip goes to the reward actor, which pays it out when
  the tipset is settled.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple, Type, TypeVar

from ..actors import (
    METHOD_SEND,
    AccountState,
    ApproveReturn,
    ExecParams,
    ExecReturn,
    GetControlAddressesReturn,
    InitMethod,
    MinerMethod,
    MinerState,
    MultisigConstructorParams,
    MultisigMethod,
    MultisigState,
    MultisigTransaction,
    PaymentChannelConstructorParams,
    PaymentChannelState,
    ProposeParams,
    ProposeReturn,
    RewardState,
    SystemState,
    TxnIDParams,
)
from ..address import (
    BURNT_FUNDS_ACTOR_ADDR,
    REWARD_ACTOR_ADDR,
    Address,
    Protocol,
    derive_actor_address,
)
from ..config import (
    ACCOUNT_ACTOR_CODE,
    EXEC_ALLOWED_CODES,
    EXPECTED_LEADERS_PER_EPOCH,
    INIT_ACTOR_CODE,
    MULTISIG_ACTOR_CODE,
    PAYMENT_CHANNEL_ACTOR_CODE,
    SIGNABLE_ACTOR_CODES,
    STORAGE_MINER_ACTOR_CODE,
)
from ..drivers.economics import DEFAULT_POLICY, GasPolicy
from ..encoding import decode_as, serialize
from ..errors import ExitCode
from ..types import (
    ApplyMessageResult,
    ApplyTipSetResult,
    BlockMessagesInfo,
    Message,
    MessageReceipt,
    Signature,
    SignedMessage,
)
from .keys import signature_digest, signature_type
from .store import MemoryActorStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class PriceList:
    """Gas charged for each VM operation."""

    on_chain_message_compute_base: int = 38_863
    on_chain_message_storage_base: int = 36
    on_chain_message_storage_per_byte: int = 1
    on_chain_return_value_per_byte: int = 1
    storage_gas_multi: int = 1_300
    send_base: int = 29_233
    send_transfer_funds: int = 27_500
    send_invoke_method: int = 1_000
    create_actor_compute: int = 1_108_454
    create_actor_storage: int = 76
    state_read: int = 75_242
    state_write_base: int = 84_070
    state_write_per_byte: int = 8

    def on_chain_message(self, size: int) -> int:
        storage = self.on_chain_message_storage_base + self.on_chain_message_storage_per_byte * size
        return self.on_chain_message_compute_base + storage * self.storage_gas_multi

    def on_chain_return_value(self, size: int) -> int:
        return size * self.on_chain_return_value_per_byte * self.storage_gas_multi

    def send(self, value: int, method: int) -> int:
        gas = self.send_base
        if value:
            gas += self.send_transfer_funds
        if method != METHOD_SEND:
            gas += self.send_invoke_method
        return gas

    def create_actor(self) -> int:
        return self.create_actor_compute + self.create_actor_storage * self.storage_gas_multi

    def state_write(self, size: int) -> int:
        return self.state_write_base + self.state_write_per_byte * size


class ActorError(Exception):
    def __init__(self, exit_code: ExitCode, message: str):
        super().__init__(f"{exit_code}: {message}")
        self.exit_code = exit_code


class OutOfGas(ActorError):
    def __init__(self, message: str):
        super().__init__(ExitCode.SYS_ERR_OUT_OF_GAS, message)


class GasTracker:
    def __init__(self, limit: int):
        self.limit = limit
        self.used = 0

    def charge(self, amount: int, what: str) -> None:
        if self.used + amount > self.limit:
            self.used = self.limit
            raise OutOfGas(f"not enough gas for {what}")
        self.used += amount


@dataclass
class Invocation:
    """Per-message execution context shared by nested sends."""

    epoch: int
    msg: Message
    origin: Address
    gas: GasTracker
    new_actor_count: int = 0


@dataclass
class _Tally:
    tips: int = 0
    penalties: int = 0


Handler = Callable[[Invocation, Address, Address, int, int, bytes], bytes]


# Numeric message fields are charged at a fixed width so that the inclusion
# cost does not depend on their values.
FIXED_FIELD_BYTES = 8 * 3 + 16 * 3


def message_size(msg: Message) -> int:
    return len(msg.to.to_bytes()) + len(msg.from_.to_bytes()) + len(msg.params) + FIXED_FIELD_BYTES


def _decode(params: bytes, shape: Type[T]) -> T:
    try:
        return decode_as(params, shape)
    except (TypeError, ValueError) as exc:
        raise ActorError(ExitCode.ERR_SERIALIZATION, f"cannot decode {shape.__name__}: {exc}") from exc


class ReferenceApplier:
    def __init__(self, store: MemoryActorStore, policy: GasPolicy = DEFAULT_POLICY, prices: Optional[PriceList] = None):
        self.store = store
        self.policy = policy
        self.prices = prices or PriceList()
        self._handlers: Dict[str, Handler] = {
            ACCOUNT_ACTOR_CODE: self._invoke_account,
            INIT_ACTOR_CODE: self._invoke_init,
            STORAGE_MINER_ACTOR_CODE: self._invoke_miner,
            MULTISIG_ACTOR_CODE: self._invoke_multisig,
        }

    # --- Applier interface ---

    def apply_message(self, epoch: int, msg: Message) -> ApplyMessageResult:
        return self._apply(epoch, msg, None)

    def apply_signed_message(self, epoch: int, msg: SignedMessage) -> ApplyMessageResult:
        return self._apply(epoch, msg.message, msg.signature)

    def apply_tipset_messages(self, epoch: int, blocks: List[BlockMessagesInfo]) -> ApplyTipSetResult:
        if not blocks:
            raise ValueError("cannot apply a tipset without blocks")

        seen = set()
        receipts: List[MessageReceipt] = []
        tallies: Dict[Address, _Tally] = {}
        for block in blocks:
            miner = self.store.resolve(block.miner)
            if miner is None:
                raise ValueError(f"block miner {block.miner} does not exist")
            tally = tallies.setdefault(miner, _Tally())

            entries: List[Tuple[Message, Optional[Signature]]] = [(m, None) for m in block.bls_messages]
            entries.extend((sm.message, sm.signature) for sm in block.secp_messages)
            for msg, signature in entries:
                cid = msg.cid()
                if cid in seen:
                    logger.debug(f"epoch {epoch}: skipping duplicate message {cid[:16]}")
                    continue
                seen.add(cid)
                result = self._apply(epoch, msg, signature)
                receipts.append(result.receipt)
                tally.tips += result.reward
                tally.penalties += result.penalty

        self._settle(tallies)
        return ApplyTipSetResult(receipts=receipts, state_root=self.store.root())

    # --- Message application ---

    def _apply(self, epoch: int, msg: Message, signature: Optional[Signature]) -> ApplyMessageResult:
        code, sender = self._validate_sender(msg, signature)
        if sender is None:
            penalty = self.policy.miner_penalty(msg.gas_limit)
            logger.debug(f"epoch {epoch}: message from {msg.from_} rejected with {code}, penalty {penalty}")
            return ApplyMessageResult(
                msg=msg,
                receipt=MessageReceipt(exit_code=code, return_value=b"", gas_used=0),
                penalty=penalty,
                reward=0,
            )

        store = self.store
        gas = GasTracker(msg.gas_limit)
        store.add_balance(sender, -msg.gas_limit * msg.gas_fee_cap)
        store.bump_call_seq(sender)
        checkpoint = store.snapshot()

        exit_code = ExitCode.OK
        ret = b""
        try:
            gas.charge(self.prices.on_chain_message(message_size(msg)), "message inclusion")
            origin = store.get_state(sender, AccountState).address
            inv = Invocation(epoch=epoch, msg=msg, origin=origin, gas=gas)
            ret = self._send(inv, sender, msg.to, msg.value, msg.method, msg.params)
            gas.charge(self.prices.on_chain_return_value(len(ret)), "return value")
        except ActorError as exc:
            store.restore(checkpoint)
            exit_code = exc.exit_code
            ret = b""
            logger.debug(f"epoch {epoch}: message {msg.cid()[:16]} failed: {exc}")

        out = self.policy.gas_outputs(gas.used, msg.gas_limit, msg.gas_fee_cap, msg.gas_premium)
        store.add_balance(sender, out.refund)
        store.add_balance(BURNT_FUNDS_ACTOR_ADDR, out.total_burn)
        store.add_balance(REWARD_ACTOR_ADDR, out.miner_tip)
        return ApplyMessageResult(
            msg=msg,
            receipt=MessageReceipt(exit_code=exit_code, return_value=ret, gas_used=gas.used),
            penalty=out.miner_penalty,
            reward=out.miner_tip,
        )

    def _validate_sender(
        self, msg: Message, signature: Optional[Signature]
    ) -> Tuple[Optional[ExitCode], Optional[Address]]:
        sender = self.store.resolve(msg.from_)
        if sender is None:
            return ExitCode.SYS_ERR_SENDER_INVALID, None
        entry = self.store.get(sender)
        if entry.code not in SIGNABLE_ACTOR_CODES:
            return ExitCode.SYS_ERR_SENDER_INVALID, None
        if signature is not None and not self._signature_ok(sender, msg, signature):
            return ExitCode.SYS_ERR_SENDER_INVALID, None
        if msg.nonce != entry.call_seq_num:
            return ExitCode.SYS_ERR_SENDER_STATE_INVALID, None
        if entry.balance < msg.gas_limit * msg.gas_fee_cap:
            return ExitCode.SYS_ERR_SENDER_STATE_INVALID, None
        return None, sender

    def _signature_ok(self, sender: Address, msg: Message, signature: Signature) -> bool:
        key_addr = self.store.get_state(sender, AccountState).address
        if key_addr.protocol not in (Protocol.SECP256K1, Protocol.BLS):
            return False
        if signature.type != signature_type(key_addr):
            return False
        return bytes(signature.data) == signature_digest(key_addr, msg.serialize())

    def _settle(self, tallies: Dict[Address, _Tally]) -> None:
        """Pay the block reward to the first miner, tips to every miner, burn penalties."""
        store = self.store
        reward_state = store.get_state(REWARD_ACTOR_ADDR, RewardState)
        block_reward = reward_state.this_epoch_reward // EXPECTED_LEADERS_PER_EPOCH
        for i, (miner, tally) in enumerate(tallies.items()):
            earned = (block_reward if i == 0 else 0) + tally.tips
            penalty = min(tally.penalties, earned)
            store.add_balance(REWARD_ACTOR_ADDR, -earned)
            store.add_balance(miner, earned - penalty)
            store.add_balance(BURNT_FUNDS_ACTOR_ADDR, penalty)
            logger.debug(f"settled miner {miner}: earned {earned}, penalty {penalty}")

    # --- Sends ---

    def _send(self, inv: Invocation, from_id: Address, to: Address, value: int, method: int, params: bytes) -> bytes:
        store = self.store
        inv.gas.charge(self.prices.send(value, method), "send")

        if value < 0:
            raise ActorError(ExitCode.SYS_ERR_ILLEGAL_ARGUMENT, f"negative value {value}")

        to_id = store.resolve(to)
        if to_id is None:
            to_id = self._create_implicit_account(inv, to)

        if value:
            if store.get(from_id).balance < value:
                raise ActorError(ExitCode.SYS_ERR_INSUFFICIENT_FUNDS, f"{from_id} cannot send {value}")
            store.add_balance(from_id, -value)
            store.add_balance(to_id, value)

        if method == METHOD_SEND:
            return b""

        inv.gas.charge(self.prices.state_read, "actor load")
        handler = self._handlers.get(store.get(to_id).code)
        if handler is None:
            raise ActorError(ExitCode.SYS_ERR_INVALID_METHOD, f"{to} has no method {method}")
        return handler(inv, from_id, to_id, value, method, params)

    def _create_implicit_account(self, inv: Invocation, addr: Address) -> Address:
        if addr.protocol not in (Protocol.SECP256K1, Protocol.BLS):
            raise ActorError(ExitCode.SYS_ERR_INVALID_RECEIVER, f"no actor at {addr}")
        inv.gas.charge(self.prices.create_actor(), "account creation")
        _, id_addr = self.store.create_actor(ACCOUNT_ACTOR_CODE, addr, 0, AccountState(address=addr))
        logger.debug(f"created account {id_addr} for {addr}")
        return id_addr

    def _write_state(self, inv: Invocation, id_addr: Address, state: object) -> None:
        inv.gas.charge(self.prices.state_write(len(serialize(state))), "state write")
        self.store.put_state(id_addr, state)

    # --- Actor methods ---

    def _invoke_account(self, inv: Invocation, caller: Address, to: Address, value: int, method: int, params: bytes) -> bytes:
        raise ActorError(ExitCode.SYS_ERR_INVALID_METHOD, f"account actor has no method {method}")

    def _invoke_miner(self, inv: Invocation, caller: Address, to: Address, value: int, method: int, params: bytes) -> bytes:
        if method != MinerMethod.CONTROL_ADDRESSES:
            raise ActorError(ExitCode.SYS_ERR_INVALID_METHOD, f"miner actor has no method {method}")
        info = self.store.get_state(to, MinerState).info
        return serialize(GetControlAddressesReturn(owner=info.owner, worker=info.worker))

    def _invoke_init(self, inv: Invocation, caller: Address, to: Address, value: int, method: int, params: bytes) -> bytes:
        if method != InitMethod.EXEC:
            raise ActorError(ExitCode.SYS_ERR_INVALID_METHOD, f"init actor has no method {method}")
        p = _decode(params, ExecParams)
        if p.code_cid not in EXEC_ALLOWED_CODES:
            raise ActorError(ExitCode.ERR_FORBIDDEN, f"init cannot construct {p.code_cid}")

        robust = derive_actor_address(inv.origin, inv.msg.nonce, inv.new_actor_count)
        inv.new_actor_count += 1
        inv.gas.charge(self.prices.create_actor(), "actor creation")
        _, new_id = self.store.create_actor(p.code_cid, robust, 0, SystemState())
        if value:
            self.store.add_balance(to, -value)
            self.store.add_balance(new_id, value)

        if p.code_cid == PAYMENT_CHANNEL_ACTOR_CODE:
            state = self._construct_payment_channel(p.constructor_params)
        else:
            state = self._construct_multisig(inv, value, p.constructor_params)
        self._write_state(inv, new_id, state)
        logger.debug(f"init created {p.code_cid} actor {new_id} at {robust}")
        return serialize(ExecReturn(id_address=new_id, robust_address=robust))

    def _construct_payment_channel(self, params: bytes) -> PaymentChannelState:
        p = _decode(params, PaymentChannelConstructorParams)
        ends = []
        for addr in (p.from_, p.to):
            id_addr = self.store.resolve(addr)
            if id_addr is None or self.store.get(id_addr).code != ACCOUNT_ACTOR_CODE:
                raise ActorError(ExitCode.ERR_ILLEGAL_ARGUMENT, f"payment channel end {addr} is not an account")
            ends.append(id_addr)
        return PaymentChannelState(from_=ends[0], to=ends[1])

    def _construct_multisig(self, inv: Invocation, value: int, params: bytes) -> MultisigState:
        p = _decode(params, MultisigConstructorParams)
        if not p.signers:
            raise ActorError(ExitCode.ERR_ILLEGAL_ARGUMENT, "multisig needs at least one signer")
        resolved = [self.store.resolve(s) for s in p.signers]
        if any(r is None for r in resolved):
            raise ActorError(ExitCode.ERR_ILLEGAL_ARGUMENT, "multisig signer does not exist")
        if len(set(resolved)) != len(resolved):
            raise ActorError(ExitCode.ERR_ILLEGAL_ARGUMENT, "duplicate multisig signer")
        if not 1 <= p.num_approvals_threshold <= len(p.signers):
            raise ActorError(
                ExitCode.ERR_ILLEGAL_ARGUMENT,
                f"threshold {p.num_approvals_threshold} out of range for {len(p.signers)} signer(s)",
            )
        if p.unlock_duration < 0:
            raise ActorError(ExitCode.ERR_ILLEGAL_ARGUMENT, "negative unlock duration")

        st = MultisigState(
            signers=list(p.signers),
            num_approvals_threshold=p.num_approvals_threshold,
            next_txn_id=0,
            initial_balance=0,
            start_epoch=0,
            unlock_duration=p.unlock_duration,
        )
        if p.unlock_duration > 0:
            st.initial_balance = value
            st.start_epoch = inv.epoch
        return st

    def _invoke_multisig(self, inv: Invocation, caller: Address, to: Address, value: int, method: int, params: bytes) -> bytes:
        st = self.store.get_state(to, MultisigState)
        if method == MultisigMethod.PROPOSE:
            self._require_signer(st, caller)
            p = _decode(params, ProposeParams)
            txn_id = st.next_txn_id
            st.next_txn_id += 1
            st.pending_txns[txn_id] = MultisigTransaction(
                to=p.to, value=p.value, method=p.method, params=p.params, approved=[caller],
            )
            self._write_state(inv, to, st)
            applied, code, ret = self._execute_if_approved(inv, to, txn_id)
            return serialize(ProposeReturn(txn_id=txn_id, applied=applied, exit_code=code, ret=ret))

        if method == MultisigMethod.APPROVE:
            self._require_signer(st, caller)
            txn_id = _decode(params, TxnIDParams).id
            txn = self._pending(st, txn_id)
            if caller in txn.approved:
                raise ActorError(ExitCode.ERR_FORBIDDEN, f"{caller} already approved transaction {txn_id}")
            txn.approved.append(caller)
            self._write_state(inv, to, st)
            applied, code, ret = self._execute_if_approved(inv, to, txn_id)
            return serialize(ApproveReturn(applied=applied, exit_code=code, ret=ret))

        if method == MultisigMethod.CANCEL:
            self._require_signer(st, caller)
            txn_id = _decode(params, TxnIDParams).id
            txn = self._pending(st, txn_id)
            if txn.approved[0] != caller:
                raise ActorError(ExitCode.ERR_FORBIDDEN, f"only the proposer can cancel transaction {txn_id}")
            del st.pending_txns[txn_id]
            self._write_state(inv, to, st)
            return b""

        raise ActorError(ExitCode.SYS_ERR_INVALID_METHOD, f"multisig actor has no method {method}")

    def _require_signer(self, st: MultisigState, caller: Address) -> None:
        if caller not in {self.store.resolve(s) for s in st.signers}:
            raise ActorError(ExitCode.ERR_FORBIDDEN, f"{caller} is not a signer")

    @staticmethod
    def _pending(st: MultisigState, txn_id: int) -> MultisigTransaction:
        txn = st.pending_txns.get(txn_id)
        if txn is None:
            raise ActorError(ExitCode.ERR_NOT_FOUND, f"no pending transaction {txn_id}")
        return txn

    def _execute_if_approved(self, inv: Invocation, multisig: Address, txn_id: int) -> Tuple[bool, int, bytes]:
        st = self.store.get_state(multisig, MultisigState)
        txn = st.pending_txns[txn_id]
        if len(txn.approved) < st.num_approvals_threshold:
            return False, int(ExitCode.OK), b""

        balance = self.store.get(multisig).balance
        if balance - txn.value < st.amount_locked(inv.epoch - st.start_epoch):
            raise ActorError(ExitCode.ERR_INSUFFICIENT_FUNDS, f"transaction {txn_id} would spend locked funds")

        del st.pending_txns[txn_id]
        self._write_state(inv, multisig, st)

        checkpoint = self.store.snapshot()
        try:
            ret = self._send(inv, multisig, txn.to, txn.value, txn.method, txn.params)
        except OutOfGas:
            raise
        except ActorError as exc:
            self.store.restore(checkpoint)
            return True, int(exc.exit_code), b""
        return True, int(ExitCode.OK), ret
