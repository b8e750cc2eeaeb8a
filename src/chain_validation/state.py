"""Interface an implementation under test plugs into the harness.

An implementation supplies a `Factories` object. Each test asks it for a fresh
actor store with its applier, a key manager and a validation config; nothing
is shared between tests.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List, Optional, Protocol, Tuple, Type, TypeVar

from .address import Address
from .types import (
    Actor,
    ApplyMessageResult,
    ApplyTipSetResult,
    BlockMessagesInfo,
    Message,
    Signature,
    SignedMessage,
)

T = TypeVar("T")


class ActorStore(Protocol):
    def root(self) -> str:
        """State root of the current actor tree."""
        ...

    def actor(self, addr: Address) -> Actor:
        """Look up an actor by ID or robust address; raises `ActorNotFound`."""
        ...

    def actor_state(self, addr: Address, shape: Type[T]) -> T:
        """Decode the state of the actor at `addr` into `shape`."""
        ...

    def create_actor(
        self, code: str, addr: Address, balance: int, state: object
    ) -> Tuple[Actor, Address]:
        """Create an actor and return it with its ID address.

        Robust addresses are assigned an ID through the init actor. Creating
        an actor at an address that already holds one is an error.
        """
        ...


class Applier(Protocol):
    def apply_message(self, epoch: int, msg: Message) -> ApplyMessageResult:
        ...

    def apply_signed_message(self, epoch: int, msg: SignedMessage) -> ApplyMessageResult:
        ...

    def apply_tipset_messages(
        self, epoch: int, blocks: List[BlockMessagesInfo]
    ) -> ApplyTipSetResult:
        ...


class KeyManager(Protocol):
    def new_secp256k1_account_address(self) -> Address:
        ...

    def new_bls_account_address(self) -> Address:
        ...

    def sign(self, addr: Address, data: bytes) -> Signature:
        """Sign `data` for `addr`; raises `UnknownKey` for foreign addresses."""
        ...


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.lower() in ("true", "1", "yes")


@dataclass
class ValidationConfig:
    """Which receipt fields the harness asserts for an implementation.

    Implementations that do not yet reproduce every figure exactly switch the
    corresponding check off instead of failing every scenario.
    """

    exit_code: bool = True
    return_value: bool = True
    gas: bool = True
    state_root: bool = True

    def validate_exit_code(self) -> bool:
        return self.exit_code

    def validate_return_value(self) -> bool:
        return self.return_value

    def validate_gas(self) -> bool:
        return self.gas

    def validate_state_root(self) -> bool:
        return self.state_root

    @classmethod
    def from_env(cls, base: Optional["ValidationConfig"] = None) -> "ValidationConfig":
        """Apply VALIDATE_* environment overrides on top of `base`."""
        base = base or cls()
        return cls(
            exit_code=_env_flag("VALIDATE_EXIT_CODE", base.exit_code),
            return_value=_env_flag("VALIDATE_RETURN_VALUE", base.return_value),
            gas=_env_flag("VALIDATE_GAS", base.gas),
            state_root=_env_flag("VALIDATE_STATE_ROOT", base.state_root),
        )


class Factories(Protocol):
    def new_state_and_applier(self) -> Tuple[ActorStore, Applier]:
        ...

    def new_key_manager(self) -> KeyManager:
        ...

    def new_validation_config(self) -> ValidationConfig:
        ...
