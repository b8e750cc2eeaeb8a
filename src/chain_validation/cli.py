"""
Chain validation runner.

Runs the registered scenario suites against an implementation's factories.
"""

import importlib
import inspect
import logging
import sys
import time
from collections import OrderedDict
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import click

from .comparator import ConformanceMismatch
from .errors import ConfigurationError, HarnessError
from .harness_config import HarnessSettings
from .reporter import ReportGenerator, ScenarioResult, SuiteResult, ValidationReport
from .state import Factories
from .suites.registry import Scenario, all_scenarios, select

logger = logging.getLogger(__name__)


def load_factory(ref: str) -> Factories:
    """Resolve "module:attribute"; classes are instantiated with no arguments."""
    module_name, sep, attr = ref.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigurationError(f"factory must be given as module:attribute, got {ref!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigurationError(f"cannot import factory module {module_name!r}: {exc}") from exc
    try:
        target = getattr(module, attr)
    except AttributeError as exc:
        raise ConfigurationError(f"module {module_name!r} has no attribute {attr!r}") from exc
    return target() if inspect.isclass(target) else target


def run_scenario(scenario: Scenario, factory: Factories, settings: HarnessSettings) -> ScenarioResult:
    """Run one scenario; mismatches and harness errors fail it, nothing else is caught."""
    start_time = time.time()
    divergences = []
    error = None
    try:
        scenario.run(factory, settings)
    except ConformanceMismatch as exc:
        divergences = list(exc.divergences)
    except HarnessError as exc:
        logger.error(f"{scenario.qualified_name}: {exc}")
        error = str(exc)

    return ScenarioResult(
        scenario_name=scenario.name,
        suite_name=scenario.suite,
        passed=not divergences and error is None,
        execution_time_ms=(time.time() - start_time) * 1000,
        divergences=divergences,
        error=error,
    )


def run_suites(
    scenarios: List[Scenario], factory: Factories, settings: HarnessSettings
) -> Tuple[List[SuiteResult], float]:
    start_time = time.time()
    by_suite: Dict[str, List[Scenario]] = OrderedDict()
    for s in scenarios:
        by_suite.setdefault(s.suite, []).append(s)

    suite_results = []
    stopped = False
    for suite_name, members in by_suite.items():
        logger.info(f"Running suite: {suite_name}")
        suite_start = time.time()
        results = []
        for s in members:
            if stopped:
                break
            result = run_scenario(s, factory, settings)
            results.append(result)

            status = "PASS" if result.passed else "FAIL"
            logger.info(f"  [{status}] {result.scenario_name}")
            for div in result.divergences:
                logger.info(f"      {div}")

            if not result.passed and settings.stop_on_first_failure:
                stopped = True

        passed = sum(1 for r in results if r.passed)
        suite_results.append(SuiteResult(
            suite_name=suite_name,
            total_tests=len(results),
            passed_tests=passed,
            failed_tests=len(results) - passed,
            skipped_tests=len(members) - len(results),
            execution_time_ms=(time.time() - suite_start) * 1000,
            scenario_results=results,
        ))

    return suite_results, (time.time() - start_time) * 1000


@click.group()
def main() -> None:
    """Chain validation conformance harness."""


@main.command()
@click.option(
    "--factory",
    default=None,
    help="Implementation factories as module:attribute",
)
@click.option(
    "--suite",
    "suites",
    multiple=True,
    help="Suite to run (repeatable); all suites when omitted",
)
@click.option(
    "--fixtures",
    default=None,
    help="Directory holding the recorded tracker expectations",
)
@click.option(
    "--record",
    is_flag=True,
    help="Record new tracker expectations instead of checking them",
)
@click.option(
    "--report-dir",
    default=None,
    help="Directory to write reports",
)
@click.option(
    "--verbose",
    is_flag=True,
    help="Enable verbose output",
)
@click.option(
    "--stop-on-failure",
    is_flag=True,
    help="Stop on first scenario failure",
)
def run(
    factory: Optional[str],
    suites: Tuple[str, ...],
    fixtures: Optional[str],
    record: bool,
    report_dir: Optional[str],
    verbose: bool,
    stop_on_failure: bool,
) -> None:
    """Run scenario suites against an implementation."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    # Load settings from environment, then override with CLI args
    settings = HarnessSettings.from_env()
    if factory:
        settings.factory = factory
    if fixtures:
        settings.fixture_dir = Path(fixtures)
    if record:
        settings.record = True
    if report_dir:
        settings.report_dir = Path(report_dir)
    if verbose:
        settings.verbose = True
    if stop_on_failure:
        settings.stop_on_first_failure = True
    if settings.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        factories = load_factory(settings.factory)
        scenarios = select(suites)
    except (ConfigurationError, KeyError) as exc:
        logger.error(str(exc))
        sys.exit(1)

    logger.info(f"Running {len(scenarios)} scenario(s) against {settings.factory}")
    suite_results, elapsed_ms = run_suites(scenarios, factories, settings)

    reporter = ReportGenerator(str(settings.report_dir))
    report: ValidationReport = reporter.generate_report(
        suite_results=suite_results,
        factory=settings.factory,
        recorded=settings.record,
        execution_time_ms=elapsed_ms,
    )
    reporter.write_json_report(report)
    reporter.write_summary(report)
    reporter.print_summary(report)

    sys.exit(0 if report.total_failed == 0 else 1)


@main.command(name="list")
def list_scenarios() -> None:
    """List registered scenarios."""
    for s in all_scenarios():
        click.echo(s.qualified_name)


if __name__ == "__main__":
    main()
