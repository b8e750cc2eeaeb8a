"""Pytest hooks and fixtures shared by the harness tests."""

from __future__ import annotations

from pathlib import Path
from typing import Iterator

import pytest

from chain_validation.drivers.test_driver import TestDriver, TestDriverBuilder
from chain_validation.harness_config import HarnessSettings
from chain_validation.reference.factories import ReferenceFactories
from chain_validation.suites.utils import default_builder

FIXTURE_DIR = Path(__file__).parent / "fixtures"


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--record",
        action="store_true",
        default=False,
        help="Record tracker expectations instead of checking them",
    )


@pytest.fixture
def factory() -> ReferenceFactories:
    return ReferenceFactories()


@pytest.fixture
def settings(request: pytest.FixtureRequest) -> HarnessSettings:
    """Scenario settings; tracker baselines live next to the tests."""
    return HarnessSettings(
        fixture_dir=FIXTURE_DIR,
        record=request.config.getoption("--record"),
    )


@pytest.fixture
def scratch_settings(tmp_path: Path) -> HarnessSettings:
    """Settings whose tracker files go to a throwaway directory."""
    return HarnessSettings(fixture_dir=tmp_path / "fixtures", report_dir=tmp_path / "results")


@pytest.fixture
def builder(factory: ReferenceFactories, scratch_settings: HarnessSettings) -> TestDriverBuilder:
    return default_builder(factory, scratch_settings)


@pytest.fixture
def td(builder: TestDriverBuilder, request: pytest.FixtureRequest) -> Iterator[TestDriver]:
    with builder.build(request.node.name) as driver:
        yield driver
