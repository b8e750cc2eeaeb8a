"""Pass-through to the implementation's message application entrypoints."""

from __future__ import annotations

import logging
from typing import List

from ..errors import FatalFault
from ..state import Applier
from ..types import (
    ApplyMessageResult,
    ApplyTipSetResult,
    BlockMessagesInfo,
    Message,
    SignedMessage,
)

logger = logging.getLogger(__name__)


class Validator:
    """Invokes the applier and turns implementation crashes into fatal faults.

    A semantic failure comes back as an exit code in the receipt. Anything the
    applier raises instead is a fault in the implementation and ends the
    current test; it is never retried.
    """

    def __init__(self, applier: Applier):
        self.applier = applier

    def apply_message(self, epoch: int, msg: Message) -> ApplyMessageResult:
        try:
            result = self.applier.apply_message(epoch, msg)
        except Exception as exc:
            logger.error(f"apply_message crashed at epoch {epoch}: {exc!r}")
            raise FatalFault("apply_message", repr(exc)) from exc
        logger.debug(f"epoch {epoch} message {msg.cid()[:16]}: {result.receipt}")
        return result

    def apply_signed_message(self, epoch: int, msg: SignedMessage) -> ApplyMessageResult:
        try:
            result = self.applier.apply_signed_message(epoch, msg)
        except Exception as exc:
            logger.error(f"apply_signed_message crashed at epoch {epoch}: {exc!r}")
            raise FatalFault("apply_signed_message", repr(exc)) from exc
        logger.debug(f"epoch {epoch} signed message {msg.cid()[:16]}: {result.receipt}")
        return result

    def apply_tipset_messages(
        self, epoch: int, blocks: List[BlockMessagesInfo]
    ) -> ApplyTipSetResult:
        try:
            result = self.applier.apply_tipset_messages(epoch, blocks)
        except Exception as exc:
            logger.error(f"apply_tipset_messages crashed at epoch {epoch}: {exc!r}")
            raise FatalFault("apply_tipset_messages", repr(exc)) from exc
        logger.debug(f"epoch {epoch} tipset of {len(blocks)} block(s): {len(result.receipts)} receipt(s)")
        return result
