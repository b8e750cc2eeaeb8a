"""Block and tipset builders with per-message expectations."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Sequence, Tuple

from ..address import Address
from ..comparator import ConformanceMismatch, Divergence
from ..errors import ExitCode
from ..types import (
    EMPTY_RETURN_VALUE,
    ApplyTipSetResult,
    BlockMessagesInfo,
    Message,
    SignedMessage,
)
from .economics import EconomicValidator, compute_tipset_economics

if TYPE_CHECKING:
    from .test_driver import TestDriver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExpectedMessage:
    message: Message
    exit_code: ExitCode
    return_value: bytes


class BlockBuilder:
    """Messages of one block; BLS messages are applied before SECP messages."""

    def __init__(self, td: "TestDriver", miner: Address):
        self.td = td
        self.miner = miner
        self.bls: List[ExpectedMessage] = []
        self.secp: List[Tuple[SignedMessage, ExpectedMessage]] = []

    def with_bls_message_ok(self, msg: Message) -> "BlockBuilder":
        return self.with_bls_message_and_ret(msg, EMPTY_RETURN_VALUE)

    def with_bls_message_and_code(self, msg: Message, code: ExitCode) -> "BlockBuilder":
        self.bls.append(ExpectedMessage(msg, code, EMPTY_RETURN_VALUE))
        return self

    def with_bls_message_and_ret(self, msg: Message, ret: bytes) -> "BlockBuilder":
        self.bls.append(ExpectedMessage(msg, ExitCode.OK, ret))
        return self

    def with_secp_message_ok(self, msg: Message) -> "BlockBuilder":
        return self.with_secp_message_and_ret(msg, EMPTY_RETURN_VALUE)

    def with_secp_message_and_code(self, msg: Message, code: ExitCode) -> "BlockBuilder":
        self.secp.append((self.td.sign_message(msg), ExpectedMessage(msg, code, EMPTY_RETURN_VALUE)))
        return self

    def with_secp_message_and_ret(self, msg: Message, ret: bytes) -> "BlockBuilder":
        self.secp.append((self.td.sign_message(msg), ExpectedMessage(msg, ExitCode.OK, ret)))
        return self

    def expectations(self) -> List[ExpectedMessage]:
        return self.bls + [expected for _, expected in self.secp]

    def messages(self) -> List[Message]:
        return [e.message for e in self.expectations()]

    def build(self) -> BlockMessagesInfo:
        return BlockMessagesInfo(
            miner=self.miner,
            bls_messages=[e.message for e in self.bls],
            secp_messages=[signed for signed, _ in self.secp],
        )

    def clear(self) -> None:
        self.bls = []
        self.secp = []


class TipSetMessageBuilder:
    """Applies blocks as one tipset and validates receipts and economics."""

    def __init__(self, td: "TestDriver"):
        self.td = td
        self.bbs: List[BlockBuilder] = []

    def with_block_builder(self, bb: BlockBuilder) -> "TipSetMessageBuilder":
        self.bbs.append(bb)
        return self

    def _blocks(self) -> List[Tuple[Address, Sequence[Message]]]:
        return [(bb.miner, bb.messages()) for bb in self.bbs]

    def _unique_expectations(self) -> List[ExpectedMessage]:
        seen = set()
        out = []
        for bb in self.bbs:
            for expected in bb.expectations():
                cid = expected.message.cid()
                if cid in seen:
                    continue
                seen.add(cid)
                out.append(expected)
        return out

    def apply(self) -> ApplyTipSetResult:
        """Apply the blocks without checking receipts, economics or tracked results."""
        epoch = self.td.exe_ctx.epoch
        econ = EconomicValidator(self.td, self.td.policy)
        econ.check_tipset(self._blocks())
        return self.td.validator.apply_tipset_messages(epoch, [bb.build() for bb in self.bbs])

    def apply_and_validate(self) -> ApplyTipSetResult:
        blocks = self._blocks()
        econ = EconomicValidator(self.td, self.td.policy)
        econ.check_tipset(blocks)

        involved = econ.involved_addresses(blocks)
        before = econ.snapshot(involved)
        result = self.td.validator.apply_tipset_messages(
            self.td.exe_ctx.epoch, [bb.build() for bb in self.bbs]
        )
        after = econ.snapshot(involved)

        divergences: List[Divergence] = []
        expectations = self._unique_expectations()
        if len(expectations) != len(result.receipts):
            raise ConformanceMismatch([Divergence(
                field="receipt_count",
                expected=len(expectations),
                actual=len(result.receipts),
                details="one receipt per unique message in block order",
            )])
        for i, (expected, receipt) in enumerate(zip(expectations, result.receipts)):
            for d in self.td.result_divergences(receipt, expected.exit_code, expected.return_value):
                d.field = f"receipt[{i}].{d.field}"
                divergences.append(d)
            divergences.extend(self.td.track_and_check(receipt, result.state_root))

        tipset = compute_tipset_economics(self.td.policy, blocks, result.receipts, before.rewards)
        divergences.extend(econ.verify(tipset, before, after))

        if divergences:
            raise ConformanceMismatch(divergences)
        logger.debug(
            f"tipset at epoch {self.td.exe_ctx.epoch}: {len(result.receipts)} receipt(s), "
            f"reward {tipset.block_reward}, tips {tipset.total_tips}, penalties {tipset.total_penalties}"
        )
        return result

    def clear(self) -> None:
        self.bbs = []
