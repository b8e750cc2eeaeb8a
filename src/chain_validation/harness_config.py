"""
Configuration management for the conformance harness.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

DEFAULT_FIXTURE_DIR = "fixtures/tracker"
DEFAULT_REPORT_DIR = "results"
DEFAULT_FACTORY = "chain_validation.reference.factories:ReferenceFactories"


def _truthy(value: Optional[str]) -> bool:
    return (value or "").lower() in ("true", "1", "yes")


@dataclass
class HarnessSettings:
    """Settings shared by every test driver built in one run."""
    # Implementation under test, as "module:attribute"
    factory: str = DEFAULT_FACTORY

    # Paths
    fixture_dir: Path = Path(DEFAULT_FIXTURE_DIR)
    report_dir: Path = Path(DEFAULT_REPORT_DIR)

    # Execution settings
    record: bool = False
    stop_on_first_failure: bool = False
    verbose: bool = False

    @classmethod
    def from_env(cls) -> "HarnessSettings":
        """Load settings from environment variables."""
        settings = cls()

        settings.factory = os.environ.get("CHAIN_VALIDATION_FACTORY", DEFAULT_FACTORY)

        # Load paths
        settings.fixture_dir = Path(
            os.environ.get("CHAIN_VALIDATION_FIXTURES", DEFAULT_FIXTURE_DIR)
        )
        settings.report_dir = Path(
            os.environ.get("CHAIN_VALIDATION_REPORTS", DEFAULT_REPORT_DIR)
        )

        # Load settings
        settings.record = _truthy(os.environ.get("CHAIN_VALIDATION_RECORD"))
        settings.verbose = _truthy(os.environ.get("VERBOSE"))
        settings.stop_on_first_failure = _truthy(os.environ.get("STOP_ON_FIRST_FAILURE"))

        return settings
