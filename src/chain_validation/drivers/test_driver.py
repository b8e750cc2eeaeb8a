"""Test driver: one per scenario, bound to a fresh store, applier and key manager.

Build drivers through `TestDriverBuilder`; the builder holds the genesis
actors and message defaults, and every `build(name)` starts from a clean
state produced by the implementation's factories.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional

from ..actors import ExecReturn, MultisigConstructorParams, MultisigState, MultisigTransaction
from ..address import Address
from ..chain.producer import MessageProducer
from ..chain.validator import Validator
from ..comparator import Comparison, ConformanceMismatch, Divergence, compare_receipt
from ..config import (
    DEFAULT_GAS_FEE_CAP,
    DEFAULT_GAS_LIMIT,
    DEFAULT_GAS_PREMIUM,
    TEST_SEAL_PROOF_TYPE,
)
from ..errors import ConfigurationError, ExitCode
from ..harness_config import HarnessSettings
from ..state import Factories, ValidationConfig
from ..tracker import StateTracker
from ..types import (
    EMPTY_RETURN_VALUE,
    ActorState,
    ApplyMessageResult,
    ExecutionContext,
    Message,
    MessageReceipt,
    RewardSummary,
    SignedMessage,
)
from .economics import DEFAULT_POLICY, GasPolicy, reward_summary
from .genesis import REQUIRED_ACTORS
from .state_driver import StateDriver, compute_init_actor_exec_return

logger = logging.getLogger(__name__)


class TestDriverBuilder:
    __test__ = False

    def __init__(self, factory: Factories):
        self.factory = factory
        self.actor_states: List[ActorState] = []
        self.default_gas_limit = DEFAULT_GAS_LIMIT
        self.default_gas_fee_cap = DEFAULT_GAS_FEE_CAP
        self.default_gas_premium = DEFAULT_GAS_PREMIUM
        self.policy = DEFAULT_POLICY
        self.settings = HarnessSettings()

    def with_actor_state(self, *states: ActorState) -> "TestDriverBuilder":
        self.actor_states.extend(states)
        return self

    def with_default_gas_limit(self, limit: int) -> "TestDriverBuilder":
        self.default_gas_limit = limit
        return self

    def with_default_gas_fee_cap(self, fee_cap: int) -> "TestDriverBuilder":
        self.default_gas_fee_cap = fee_cap
        return self

    def with_default_gas_premium(self, premium: int) -> "TestDriverBuilder":
        self.default_gas_premium = premium
        return self

    def with_policy(self, policy: GasPolicy) -> "TestDriverBuilder":
        self.policy = policy
        return self

    def with_settings(self, settings: HarnessSettings) -> "TestDriverBuilder":
        self.settings = settings
        return self

    def _check_actor_states(self) -> None:
        seen = set()
        for st in self.actor_states:
            if st.addr in seen:
                raise ConfigurationError(f"duplicate genesis actor address {st.addr}")
            seen.add(st.addr)
        missing = [str(addr) for addr in REQUIRED_ACTORS if addr not in seen]
        if missing:
            raise ConfigurationError(f"genesis is missing required actor(s): {', '.join(missing)}")

    def build(self, name: str) -> "TestDriver":
        self._check_actor_states()

        store, applier = self.factory.new_state_and_applier()
        sd = StateDriver(store, self.factory.new_key_manager())
        for st in self.actor_states:
            store.create_actor(st.code, st.addr, st.balance, st.state)

        miner = sd.new_miner_account_actor(TEST_SEAL_PROOF_TYPE, 0)
        td = TestDriver(
            name=name,
            state_driver=sd,
            producer=MessageProducer(
                self.default_gas_fee_cap, self.default_gas_premium, self.default_gas_limit
            ),
            validator=Validator(applier),
            exe_ctx=ExecutionContext(epoch=1, miner=miner),
            config=ValidationConfig.from_env(self.factory.new_validation_config()),
            tracker=StateTracker.open(name, self.settings.fixture_dir, record=self.settings.record),
            policy=self.policy,
        )
        logger.debug(f"built test driver {name} with {len(self.actor_states)} genesis actor(s), miner {miner}")
        return td


class TestDriver(StateDriver):
    __test__ = False

    def __init__(
        self,
        name: str,
        state_driver: StateDriver,
        producer: MessageProducer,
        validator: Validator,
        exe_ctx: ExecutionContext,
        config: ValidationConfig,
        tracker: StateTracker,
        policy: GasPolicy = DEFAULT_POLICY,
    ):
        super().__init__(state_driver.st, state_driver.w)
        self._miner_info = state_driver._miner_info
        self.name = name
        self.message_producer = producer
        self.validator = validator
        self.exe_ctx = exe_ctx
        self.config = config
        self.state_tracker = tracker
        self.policy = policy

    def complete(self) -> None:
        """Finish the scenario; persists tracked results when recording."""
        if self.state_tracker.recording:
            self.state_tracker.record()

    def __enter__(self) -> "TestDriver":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            logger.debug(f"{self.name}: completing after {exc_type.__name__}")
        self.complete()

    # --- Message application ---

    def sign_message(self, msg: Message) -> SignedMessage:
        return SignedMessage(message=msg, signature=self.w.sign(msg.from_, msg.serialize()))

    def apply_message(self, msg: Message) -> ApplyMessageResult:
        result = self.validator.apply_message(self.exe_ctx.epoch, msg)
        self.state_tracker.track_result(result.receipt, self.st.root())
        return result

    def apply_ok(self, msg: Message) -> ApplyMessageResult:
        return self.apply_expect(msg, EMPTY_RETURN_VALUE)

    def apply_expect(self, msg: Message, retval: bytes) -> ApplyMessageResult:
        return self._apply_expect_code_and_return(msg, ExitCode.OK, retval)

    def apply_failure(self, msg: Message, code: ExitCode) -> ApplyMessageResult:
        return self._apply_expect_code_and_return(msg, code, EMPTY_RETURN_VALUE)

    def _apply_expect_code_and_return(self, msg: Message, code: ExitCode, retval: bytes) -> ApplyMessageResult:
        result = self.apply_message(msg)
        self._validate(result, code, retval)
        return result

    def apply_signed(self, msg: Message) -> ApplyMessageResult:
        result = self.validator.apply_signed_message(self.exe_ctx.epoch, self.sign_message(msg))
        self.state_tracker.track_result(result.receipt, self.st.root())
        return result

    def apply_signed_ok(self, msg: Message) -> ApplyMessageResult:
        return self.apply_signed_expect(msg, EMPTY_RETURN_VALUE)

    def apply_signed_expect(self, msg: Message, retval: bytes) -> ApplyMessageResult:
        return self._apply_signed_expect_code_and_return(msg, ExitCode.OK, retval)

    def apply_signed_failure(self, msg: Message, code: ExitCode) -> ApplyMessageResult:
        return self._apply_signed_expect_code_and_return(msg, code, EMPTY_RETURN_VALUE)

    def _apply_signed_expect_code_and_return(self, msg: Message, code: ExitCode, retval: bytes) -> ApplyMessageResult:
        result = self.apply_signed(msg)
        self._validate(result, code, retval)
        return result

    # --- Result validation ---

    def result_divergences(self, receipt: MessageReceipt, code: ExitCode, retval: bytes) -> List[Divergence]:
        return compare_receipt(
            receipt,
            code,
            retval,
            check_exit_code=self.config.validate_exit_code(),
            check_return_value=self.config.validate_return_value(),
        )

    def check_tracked(self, receipt: MessageReceipt, state_root: str) -> List[Divergence]:
        """Compare gas used and state root with the next recorded expectation."""
        cmp = Comparison()
        if self.state_tracker.recording:
            return cmp.divergences
        if self.config.validate_gas():
            expected_gas = self.state_tracker.next_expected_gas()
            if expected_gas is None:
                logger.warning(f"{self.name}: no expected gas recorded for receipt {receipt} (not a failure)")
            else:
                cmp.equal("gas_used", expected_gas, receipt.gas_used)
        if self.config.validate_state_root():
            expected_root = self.state_tracker.next_expected_state_root()
            if expected_root is None:
                logger.warning(f"{self.name}: no expected state root recorded (not a failure)")
            else:
                cmp.equal("state_root", expected_root, state_root)
        return cmp.divergences

    def track_and_check(self, receipt: MessageReceipt, state_root: str) -> List[Divergence]:
        self.state_tracker.track_result(receipt, state_root)
        return self.check_tracked(receipt, state_root)

    def _validate(self, result: ApplyMessageResult, code: ExitCode, retval: bytes) -> None:
        divergences = self.result_divergences(result.receipt, code, retval)
        divergences.extend(self.check_tracked(result.receipt, self.st.root()))
        if divergences:
            raise ConformanceMismatch(divergences)

    # --- Assertions ---

    def assert_no_actor(self, addr: Address) -> None:
        actor = self.try_actor(addr)
        if actor is not None:
            raise ConformanceMismatch([Divergence("actor", None, actor, f"expected no actor at {addr}")])

    def get_balance(self, addr: Address) -> int:
        return self.require_actor(addr).balance

    def get_head(self, addr: Address) -> str:
        return self.require_actor(addr).head

    def assert_balance(self, addr: Address, expected: int) -> None:
        actual = self.get_balance(addr)
        cmp = Comparison()
        cmp.equal(f"balance {addr}", expected, actual)
        cmp.raise_for_divergences()

    def assert_actor_change(
        self,
        addr: Address,
        prev_balance: int,
        gas_limit: int,
        gas_premium: int,
        transferred: int,
        receipt: MessageReceipt,
        call_seq_num: int,
    ) -> None:
        actor = self.require_actor(addr)
        expected = prev_balance - self.calc_message_cost(gas_limit, gas_premium, transferred, receipt)
        cmp = Comparison()
        cmp.equal(f"balance {addr}", expected, actor.balance)
        cmp.equal(f"call_seq_num {addr}", call_seq_num, actor.call_seq_num)
        cmp.raise_for_divergences()

    def assert_head(self, addr: Address, expected: str) -> None:
        cmp = Comparison()
        cmp.equal(f"head {addr}", expected, self.get_head(addr))
        cmp.raise_for_divergences()

    def assert_balance_callback(self, addr: Address, check: Callable[[int], bool]) -> None:
        balance = self.get_balance(addr)
        cmp = Comparison()
        cmp.true(f"balance {addr}", check(balance), f"balance {balance} rejected by callback")
        cmp.raise_for_divergences()

    def assert_multisig_transaction(self, multisig: Address, txn_id: int, txn: MultisigTransaction) -> None:
        st = self.get_actor_state(multisig, MultisigState)
        cmp = Comparison()
        actual = st.pending_txns.get(txn_id)
        cmp.true(f"multisig {multisig} txn {txn_id}", actual is not None, "transaction not pending")
        if actual is not None:
            cmp.equal(f"multisig {multisig} txn {txn_id}", txn, actual)
        cmp.raise_for_divergences()

    def assert_multisig_contains_transaction(self, multisig: Address, txn_id: int, contains: bool) -> None:
        st = self.get_actor_state(multisig, MultisigState)
        cmp = Comparison()
        cmp.equal(f"multisig {multisig} has txn {txn_id}", contains, txn_id in st.pending_txns)
        cmp.raise_for_divergences()

    def assert_multisig_state(self, multisig: Address, expected: MultisigState) -> None:
        st = self.get_actor_state(multisig, MultisigState)
        cmp = Comparison()
        cmp.equal("initial_balance", expected.initial_balance, st.initial_balance)
        cmp.equal("next_txn_id", expected.next_txn_id, st.next_txn_id)
        cmp.equal("num_approvals_threshold", expected.num_approvals_threshold, st.num_approvals_threshold)
        cmp.equal("start_epoch", expected.start_epoch, st.start_epoch)
        cmp.equal("unlock_duration", expected.unlock_duration, st.unlock_duration)
        for signer in expected.signers:
            cmp.true(f"signer {signer}", signer in st.signers, f"signers are {st.signers}")
        cmp.raise_for_divergences()

    # --- Helpers ---

    def compute_init_actor_exec_return(
        self,
        from_: Address,
        originator_call_seq: int,
        new_actor_address_count: int,
        expected_new_addr: Address,
    ) -> ExecReturn:
        return compute_init_actor_exec_return(from_, originator_call_seq, new_actor_address_count, expected_new_addr)

    def must_create_and_verify_multisig_actor(
        self,
        nonce: int,
        value: int,
        multisig: Address,
        from_: Address,
        params: MultisigConstructorParams,
        code: ExitCode,
        retval: bytes,
    ) -> None:
        msg = self.message_producer.create_multisig_actor(
            from_,
            signers=params.signers,
            unlock_duration=params.unlock_duration,
            num_approvals_threshold=params.num_approvals_threshold,
            nonce=nonce,
            value=value,
        )
        self._apply_expect_code_and_return(msg, code, retval)

        initial_balance = 0
        start_epoch = 0
        if params.unlock_duration > 0:
            initial_balance = value
            start_epoch = self.exe_ctx.epoch
        self.assert_multisig_state(multisig, MultisigState(
            signers=params.signers,
            num_approvals_threshold=params.num_approvals_threshold,
            next_txn_id=0,
            initial_balance=initial_balance,
            start_epoch=start_epoch,
            unlock_duration=params.unlock_duration,
        ))
        self.assert_balance(multisig, value)

    def get_reward_summary(self) -> RewardSummary:
        return reward_summary(self)

    def calc_message_cost(
        self,
        gas_limit: int,
        gas_premium: int,
        transferred: int,
        receipt: MessageReceipt,
        gas_fee_cap: Optional[int] = None,
    ) -> int:
        fee_cap = self.message_producer.default_gas_fee_cap if gas_fee_cap is None else gas_fee_cap
        return self.policy.message_cost(gas_limit, gas_premium, transferred, receipt, fee_cap=fee_cap)
