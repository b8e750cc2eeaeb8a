"""Exit codes and harness exceptions."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


class ExitCode(IntEnum):
    OK = 0

    # System errors, raised by the VM outside of actor code
    SYS_ERR_SENDER_INVALID = 1
    SYS_ERR_SENDER_STATE_INVALID = 2
    SYS_ERR_INVALID_METHOD = 3
    SYS_ERR_RESERVED1 = 4
    SYS_ERR_INVALID_RECEIVER = 5
    SYS_ERR_INSUFFICIENT_FUNDS = 6
    SYS_ERR_OUT_OF_GAS = 7
    SYS_ERR_FORBIDDEN = 8
    SYS_ERR_ILLEGAL_ACTOR = 9
    SYS_ERR_ILLEGAL_ARGUMENT = 10
    SYS_ERR_SERIALIZATION = 11
    SYS_ERR_RESERVED3 = 12
    SYS_ERR_RESERVED4 = 13
    SYS_ERR_RESERVED5 = 14
    SYS_ERR_RESERVED6 = 15

    # Actor errors
    ERR_ILLEGAL_ARGUMENT = 16
    ERR_NOT_FOUND = 17
    ERR_FORBIDDEN = 18
    ERR_INSUFFICIENT_FUNDS = 19
    ERR_ILLEGAL_STATE = 20
    ERR_SERIALIZATION = 21

    @property
    def is_success(self) -> bool:
        return self == ExitCode.OK

    def __str__(self) -> str:
        return f"{self.name}({int(self)})"


class HarnessError(Exception):
    """Base class for errors raised by the harness itself."""


class ConfigurationError(HarnessError):
    """Invalid builder or tipset configuration, detected before anything is applied."""


@dataclass(eq=False)
class FatalFault(HarnessError):
    """The implementation under test crashed or the store is unusable."""

    operation: str
    message: str

    def __str__(self) -> str:
        return f"fatal fault during {self.operation}: {self.message}"


class ActorNotFound(HarnessError, LookupError):
    """Raised by actor stores when no actor exists at an address."""


class UnknownKey(HarnessError, LookupError):
    """Raised by key managers asked to sign for an address they do not hold."""
