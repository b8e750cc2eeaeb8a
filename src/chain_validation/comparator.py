"""
Expected-vs-actual comparison for conformance checks.
"""

from dataclasses import dataclass, field
from typing import Any, List, Optional

from .errors import ExitCode
from .types import MessageReceipt


@dataclass
class Divergence:
    """One field where the implementation disagrees with the model."""
    field: str
    expected: Any
    actual: Any
    details: Optional[str] = None

    def __str__(self) -> str:
        text = f"{self.field}: expected {self.expected!r}, actual {self.actual!r}"
        if self.details:
            text += f" ({self.details})"
        return text


@dataclass(eq=False)
class ConformanceMismatch(AssertionError):
    """Raised when one or more checks disagree; fails the current test only."""
    divergences: List[Divergence] = field(default_factory=list)

    def __str__(self) -> str:
        lines = [f"{len(self.divergences)} divergence(s):"]
        lines.extend(f"  - {d}" for d in self.divergences)
        return "\n".join(lines)


class Comparison:
    """Collects divergences and raises them together."""

    def __init__(self) -> None:
        self.divergences: List[Divergence] = []

    def equal(self, field: str, expected: Any, actual: Any, details: Optional[str] = None) -> None:
        if expected != actual:
            self.divergences.append(Divergence(field, expected, actual, details))

    def true(self, field: str, condition: bool, details: Optional[str] = None) -> None:
        if not condition:
            self.divergences.append(Divergence(field, True, False, details))

    def extend(self, divergences: List[Divergence]) -> None:
        self.divergences.extend(divergences)

    @property
    def has_divergences(self) -> bool:
        return len(self.divergences) > 0

    def raise_for_divergences(self) -> None:
        if self.divergences:
            raise ConformanceMismatch(list(self.divergences))


def assert_equal(field: str, expected: Any, actual: Any, details: Optional[str] = None) -> None:
    cmp = Comparison()
    cmp.equal(field, expected, actual, details)
    cmp.raise_for_divergences()


def _format_code(code: int) -> str:
    try:
        return str(ExitCode(code))
    except ValueError:
        return str(int(code))


def compare_receipt(
    receipt: MessageReceipt,
    exit_code: ExitCode,
    return_value: bytes,
    *,
    check_exit_code: bool = True,
    check_return_value: bool = True,
) -> List[Divergence]:
    """Compare a receipt against the expected exit code and return value."""
    divergences = []

    if check_exit_code and receipt.exit_code != exit_code:
        divergences.append(Divergence(
            field="exit_code",
            expected=exit_code,
            actual=receipt.exit_code,
            details=f"Expected ExitCode: {exit_code} Actual ExitCode: {_format_code(receipt.exit_code)}",
        ))

    if check_return_value and bytes(receipt.return_value) != bytes(return_value):
        divergences.append(Divergence(
            field="return_value",
            expected=bytes(return_value).hex(),
            actual=bytes(receipt.return_value).hex(),
        ))

    return divergences
