"""Economic model of message and tipset application.

Given the messages of a tipset, grouped into blocks, and the receipts the
implementation returned, this module computes what every party should have
paid or earned and checks the post-application balances against it.

Message classes:

- penalized: the message was rejected before execution (unknown or non-account
  sender, wrong call sequence number, balance below `gas_limit * gas_fee_cap`).
  Sender and receiver are untouched; the block miner is penalized
  `base_fee * gas_limit`, which is burned.
- executed: the sender pays the base fee burn, the over-estimation burn and
  the miner tip; the value moves only when the message succeeded. A message
  that ran out of gas reports `gas_used == gas_limit`.

Settlement draws one per-block reward from the treasury per tipset and pays
it to the tipset miner together with the tips of its block, less the
penalties of its block (capped at what it earned). The capped penalty is
burned.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from ..actors import METHOD_SEND, RewardState
from ..address import BURNT_FUNDS_ACTOR_ADDR, REWARD_ACTOR_ADDR, Address
from ..comparator import Comparison, ConformanceMismatch, Divergence
from ..config import BASE_FEE, EXPECTED_LEADERS_PER_EPOCH, GAS_OVERUSE_DENOM, GAS_OVERUSE_NUM
from ..errors import ConfigurationError, ExitCode
from ..types import Message, MessageReceipt, RewardSummary

if TYPE_CHECKING:
    from .state_driver import StateDriver

logger = logging.getLogger(__name__)

PENALIZED_EXIT_CODES = frozenset({
    ExitCode.SYS_ERR_SENDER_INVALID,
    ExitCode.SYS_ERR_SENDER_STATE_INVALID,
})


class Outcome(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    PENALIZED = "penalized"


def classify(receipt: MessageReceipt) -> Outcome:
    if receipt.exit_code in PENALIZED_EXIT_CODES:
        return Outcome.PENALIZED
    if receipt.exit_code == ExitCode.OK:
        return Outcome.SUCCEEDED
    return Outcome.FAILED


@dataclass(frozen=True)
class GasOutputs:
    base_fee_burn: int
    over_estimation_burn: int
    miner_penalty: int
    miner_tip: int
    refund: int
    gas_refund: int
    gas_burned: int

    @property
    def total_burn(self) -> int:
        return self.base_fee_burn + self.over_estimation_burn


@dataclass(frozen=True)
class GasPolicy:
    """Versioned fee and penalty rules.

    The policy is an input of the model rather than something inferred from
    scenario literals; bump `version` whenever the arithmetic changes.
    """

    version: str = "base-fee/1"
    base_fee: int = BASE_FEE
    overuse_num: int = GAS_OVERUSE_NUM
    overuse_denom: int = GAS_OVERUSE_DENOM

    def miner_penalty(self, gas_limit: int) -> int:
        """Penalty for including a message that could not be executed."""
        return self.base_fee * gas_limit

    def overestimation_burn(self, gas_used: int, gas_limit: int) -> Tuple[int, int]:
        """Split the unused gas into (refunded, burned) gas units."""
        if gas_used == 0:
            return 0, gas_limit
        over = gas_limit - (self.overuse_num * gas_used) // self.overuse_denom
        if over < 0:
            return gas_limit - gas_used, 0
        over = min(over, gas_used)
        gas_to_burn = over * (gas_limit - gas_used) // gas_used
        return gas_limit - gas_used - gas_to_burn, gas_to_burn

    def gas_outputs(self, gas_used: int, gas_limit: int, fee_cap: int, premium: int) -> GasOutputs:
        base_fee_to_pay = self.base_fee
        miner_penalty = 0
        if self.base_fee > fee_cap:
            base_fee_to_pay = fee_cap
            miner_penalty = (self.base_fee - fee_cap) * gas_used

        tip_per_gas = premium
        if base_fee_to_pay + tip_per_gas > fee_cap:
            tip_per_gas = fee_cap - base_fee_to_pay
        miner_tip = tip_per_gas * gas_limit

        gas_refund, gas_burned = self.overestimation_burn(gas_used, gas_limit)
        over_estimation_burn = 0
        if gas_burned:
            over_estimation_burn = base_fee_to_pay * gas_burned
            miner_penalty += (self.base_fee - base_fee_to_pay) * gas_burned

        base_fee_burn = base_fee_to_pay * gas_used
        refund = gas_limit * fee_cap - base_fee_burn - miner_tip - over_estimation_burn
        return GasOutputs(
            base_fee_burn=base_fee_burn,
            over_estimation_burn=over_estimation_burn,
            miner_penalty=miner_penalty,
            miner_tip=miner_tip,
            refund=refund,
            gas_refund=gas_refund,
            gas_burned=gas_burned,
        )

    def gas_burn(self, gas_limit: int, gas_used: int, fee_cap: Optional[int] = None) -> int:
        fee_cap = self.base_fee if fee_cap is None else fee_cap
        return self.gas_outputs(gas_used, gas_limit, fee_cap, 0).total_burn

    def message_cost(
        self,
        gas_limit: int,
        gas_premium: int,
        transferred: int,
        receipt: MessageReceipt,
        fee_cap: Optional[int] = None,
    ) -> int:
        """Total debit of the sender of an executed message."""
        fee_cap = self.base_fee + gas_premium if fee_cap is None else fee_cap
        out = self.gas_outputs(receipt.gas_used, gas_limit, fee_cap, gas_premium)
        return transferred + out.total_burn + out.miner_tip


DEFAULT_POLICY = GasPolicy()


def get_burn(gas_limit: int, gas_used: int, policy: GasPolicy = DEFAULT_POLICY) -> int:
    return policy.gas_burn(gas_limit, gas_used)


def get_miner_penalty(gas_limit: int, policy: GasPolicy = DEFAULT_POLICY) -> int:
    return policy.miner_penalty(gas_limit)


def calc_message_cost(
    gas_limit: int,
    gas_premium: int,
    transferred: int,
    receipt: MessageReceipt,
    policy: GasPolicy = DEFAULT_POLICY,
) -> int:
    return policy.message_cost(gas_limit, gas_premium, transferred, receipt)


# --- Per-message and per-tipset expectations ---


@dataclass(frozen=True)
class MessageEconomics:
    message: Message
    receipt: MessageReceipt
    miner: Address
    outcome: Outcome
    miner_tip: int
    gas_burn: int
    penalty: int
    value_moved: int

    @property
    def executed(self) -> bool:
        return self.outcome != Outcome.PENALIZED

    @property
    def sender_debit(self) -> int:
        if not self.executed:
            return 0
        return self.miner_tip + self.gas_burn + self.value_moved


def message_economics(
    policy: GasPolicy, miner: Address, msg: Message, receipt: MessageReceipt
) -> MessageEconomics:
    outcome = classify(receipt)
    if outcome == Outcome.PENALIZED:
        return MessageEconomics(
            message=msg,
            receipt=receipt,
            miner=miner,
            outcome=outcome,
            miner_tip=0,
            gas_burn=0,
            penalty=policy.miner_penalty(msg.gas_limit),
            value_moved=0,
        )
    out = policy.gas_outputs(receipt.gas_used, msg.gas_limit, msg.gas_fee_cap, msg.gas_premium)
    return MessageEconomics(
        message=msg,
        receipt=receipt,
        miner=miner,
        outcome=outcome,
        miner_tip=out.miner_tip,
        gas_burn=out.total_burn,
        penalty=out.miner_penalty,
        value_moved=msg.value if outcome == Outcome.SUCCEEDED else 0,
    )


@dataclass(frozen=True)
class MinerSettlement:
    miner: Address
    block_reward: int
    tips: int
    penalties: int

    @property
    def penalty_charged(self) -> int:
        return min(self.penalties, self.block_reward + self.tips)

    @property
    def credit(self) -> int:
        return self.block_reward + self.tips - self.penalty_charged


@dataclass(frozen=True)
class TipSetEconomics:
    rewards_before: RewardSummary
    messages: Tuple[MessageEconomics, ...]
    settlements: Tuple[MinerSettlement, ...]

    @property
    def block_reward(self) -> int:
        return self.rewards_before.next_per_block_reward

    @property
    def total_tips(self) -> int:
        return sum(m.miner_tip for m in self.messages)

    @property
    def total_penalties(self) -> int:
        return sum(s.penalty_charged for s in self.settlements)

    @property
    def total_gas_burn(self) -> int:
        return sum(m.gas_burn for m in self.messages)

    @property
    def burnt_transfers(self) -> int:
        return sum(m.value_moved for m in self.messages if m.message.to == BURNT_FUNDS_ACTOR_ADDR)

    @property
    def expected_treasury(self) -> int:
        return self.rewards_before.treasury - self.block_reward

    @property
    def burn_delta(self) -> int:
        return self.total_penalties + self.total_gas_burn + self.burnt_transfers


def unique_messages(
    blocks: Sequence[Tuple[Address, Sequence[Message]]]
) -> List[Tuple[Address, Message]]:
    """Messages in application order, dropping repeats of an already seen message."""
    seen = set()
    out = []
    for miner, messages in blocks:
        for msg in messages:
            cid = msg.cid()
            if cid in seen:
                logger.debug(f"skipping duplicate message {cid[:16]} in block by {miner}")
                continue
            seen.add(cid)
            out.append((miner, msg))
    return out


def compute_tipset_economics(
    policy: GasPolicy,
    blocks: Sequence[Tuple[Address, Sequence[Message]]],
    receipts: Sequence[MessageReceipt],
    rewards_before: RewardSummary,
) -> TipSetEconomics:
    """Expected charges, rewards and penalties for one applied tipset."""
    if not blocks:
        raise ConfigurationError("cannot compute economics for a tipset without blocks")

    applied = unique_messages(blocks)
    if len(applied) != len(receipts):
        raise ConformanceMismatch([Divergence(
            field="receipt_count",
            expected=len(applied),
            actual=len(receipts),
            details="one receipt per unique message in block order",
        )])

    per_message = tuple(
        message_economics(policy, miner, msg, receipt)
        for (miner, msg), receipt in zip(applied, receipts)
    )

    tipset_miner = blocks[0][0]
    order: List[Address] = []
    tips: Dict[Address, int] = {}
    penalties: Dict[Address, int] = {}
    for miner, _ in blocks:
        if miner not in tips:
            order.append(miner)
            tips[miner] = 0
            penalties[miner] = 0
    for m in per_message:
        tips[m.miner] += m.miner_tip
        penalties[m.miner] += m.penalty

    settlements = tuple(
        MinerSettlement(
            miner=miner,
            block_reward=rewards_before.next_per_block_reward if miner == tipset_miner else 0,
            tips=tips[miner],
            penalties=penalties[miner],
        )
        for miner in order
    )
    return TipSetEconomics(rewards_before=rewards_before, messages=per_message, settlements=settlements)


# --- Observations and verification ---


def reward_summary(driver: "StateDriver") -> RewardSummary:
    rst = driver.get_actor_state(REWARD_ACTOR_ADDR, RewardState)
    return RewardSummary(
        treasury=driver.require_actor(REWARD_ACTOR_ADDR).balance,
        next_per_epoch_reward=rst.this_epoch_reward,
        next_per_block_reward=rst.this_epoch_reward // EXPECTED_LEADERS_PER_EPOCH,
    )


@dataclass(frozen=True)
class AccountSnapshot:
    balance: int
    call_seq_num: int
    exists: bool


@dataclass(frozen=True)
class ChainSnapshot:
    rewards: RewardSummary
    accounts: Dict[Address, AccountSnapshot]


def _snapshot_accounts(driver: "StateDriver", addresses: Iterable[Address]) -> Dict[Address, AccountSnapshot]:
    out = {}
    for addr in addresses:
        actor = driver.try_actor(addr)
        if actor is None:
            out[addr] = AccountSnapshot(balance=0, call_seq_num=0, exists=False)
        else:
            out[addr] = AccountSnapshot(balance=actor.balance, call_seq_num=actor.call_seq_num, exists=True)
    return out


class EconomicValidator:
    """Checks observed state against `TipSetEconomics` through a state driver."""

    def __init__(self, driver: "StateDriver", policy: GasPolicy = DEFAULT_POLICY):
        self.driver = driver
        self.policy = policy

    def check_tipset(self, blocks: Sequence[Tuple[Address, Sequence[Message]]]) -> None:
        if not blocks:
            raise ConfigurationError("a tipset needs at least one block")
        for miner, _ in blocks:
            if self.driver.try_actor(miner) is None:
                raise ConfigurationError(f"block miner {miner} is not an actor in the state tree")

    @staticmethod
    def involved_addresses(blocks: Sequence[Tuple[Address, Sequence[Message]]]) -> List[Address]:
        addrs = [REWARD_ACTOR_ADDR, BURNT_FUNDS_ACTOR_ADDR]
        for miner, messages in blocks:
            addrs.append(miner)
            for msg in messages:
                addrs.append(msg.from_)
                addrs.append(msg.to)
        return list(dict.fromkeys(addrs))

    def snapshot(self, addresses: Iterable[Address]) -> ChainSnapshot:
        return ChainSnapshot(
            rewards=reward_summary(self.driver),
            accounts=_snapshot_accounts(self.driver, addresses),
        )

    def expected_changes(
        self, econ: TipSetEconomics
    ) -> Tuple[Dict[Address, int], Dict[Address, int], Set[Address]]:
        """Expected balance and call sequence number changes keyed by raw address.

        The third item holds receivers whose balance is not modelled: a
        successful method call may pass value on through internal sends, so
        only plain sends and reverted calls pin the receiver's balance. Reward
        actor, burnt funds and block miners are always checked.
        """
        balance: Dict[Address, int] = {}
        call_seq: Dict[Address, int] = {}
        unchecked: Set[Address] = set()

        def credit(addr: Address, amount: int) -> None:
            balance[addr] = balance.get(addr, 0) + amount

        settled = {REWARD_ACTOR_ADDR, BURNT_FUNDS_ACTOR_ADDR}
        settled.update(self._identity(s.miner) for s in econ.settlements)

        credit(REWARD_ACTOR_ADDR, -econ.block_reward)
        credit(BURNT_FUNDS_ACTOR_ADDR, econ.total_penalties + econ.total_gas_burn)
        for s in econ.settlements:
            credit(s.miner, s.credit)
        for m in econ.messages:
            msg = m.message
            if not m.executed:
                credit(msg.from_, 0)
                credit(msg.to, 0)
                call_seq.setdefault(msg.from_, 0)
                continue
            credit(msg.from_, -m.sender_debit)
            call_seq[msg.from_] = call_seq.get(msg.from_, 0) + 1
            if (
                msg.method == METHOD_SEND
                or m.outcome != Outcome.SUCCEEDED
                or self._identity(msg.to) in settled
            ):
                credit(msg.to, m.value_moved)
            else:
                unchecked.add(msg.to)
        return balance, call_seq, unchecked

    def _identity(self, addr: Address) -> Address:
        return self.driver.resolve_address(addr) or addr

    def verify(self, econ: TipSetEconomics, before: ChainSnapshot, after: ChainSnapshot) -> List[Divergence]:
        cmp = Comparison()

        cmp.equal(
            "treasury",
            before.rewards.treasury - before.rewards.next_per_block_reward,
            after.rewards.treasury,
            "treasury must drop by exactly one per-block reward per tipset",
        )

        for m in econ.messages:
            if m.receipt.exit_code == ExitCode.SYS_ERR_OUT_OF_GAS:
                cmp.equal(
                    f"gas_used {m.message.cid()[:16]}",
                    m.message.gas_limit,
                    m.receipt.gas_used,
                    "out of gas messages are charged their full gas limit",
                )

        balance_deltas, seq_deltas, unchecked = self.expected_changes(econ)

        # Several raw addresses (ID and public key forms) may name one actor.
        groups: Dict[Address, List[Address]] = {}
        for addr in set(balance_deltas) | set(seq_deltas):
            identity = self.driver.resolve_address(addr)
            if identity is None:
                continue
            groups.setdefault(identity, []).append(addr)

        for identity, raws in sorted(groups.items(), key=lambda kv: kv[0].to_bytes()):
            rep = next((a for a in raws if before.accounts.get(a, _MISSING).exists), raws[0])
            prev = before.accounts.get(rep, _MISSING)
            now = after.accounts.get(rep, _MISSING)
            label = _label(identity, econ)
            if not any(a in unchecked for a in raws):
                expected_balance = prev.balance + sum(balance_deltas.get(a, 0) for a in raws)
                cmp.equal(f"{label} {identity} balance", expected_balance, now.balance)
            if prev.exists:
                expected_seq = prev.call_seq_num + sum(seq_deltas.get(a, 0) for a in raws)
                cmp.equal(f"{label} {identity} call_seq_num", expected_seq, now.call_seq_num)

        if cmp.has_divergences:
            logger.warning(f"tipset economics diverged in {len(cmp.divergences)} place(s)")
        return cmp.divergences


_MISSING = AccountSnapshot(balance=0, call_seq_num=0, exists=False)


def _label(identity: Address, econ: TipSetEconomics) -> str:
    if identity == REWARD_ACTOR_ADDR:
        return "reward actor"
    if identity == BURNT_FUNDS_ACTOR_ADDR:
        return "burnt funds"
    if any(s.miner == identity for s in econ.settlements):
        return "miner"
    return "actor"


def validate_rewards(
    prev_rewards: RewardSummary,
    new_rewards: RewardSummary,
    old_miner_balance: int,
    new_miner_balance: int,
    gas_reward: int,
    gas_penalty: int,
) -> None:
    """Miner earned the block reward plus `gas_reward` minus `gas_penalty`; treasury paid one reward."""
    reward = prev_rewards.next_per_block_reward - gas_penalty + gas_reward
    cmp = Comparison()
    cmp.equal("miner balance", old_miner_balance + reward, new_miner_balance)
    cmp.equal("treasury", prev_rewards.treasury - prev_rewards.next_per_block_reward, new_rewards.treasury)
    cmp.raise_for_divergences()
