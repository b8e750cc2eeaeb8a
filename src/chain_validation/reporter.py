"""
Report generation for scenario run results.
"""

import json
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import click

from .comparator import Divergence


@dataclass
class ScenarioResult:
    """Result of a single scenario."""
    scenario_name: str
    suite_name: str
    passed: bool
    execution_time_ms: float
    divergences: List[Divergence] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class SuiteResult:
    """Result of a scenario suite."""
    suite_name: str
    total_tests: int
    passed_tests: int
    failed_tests: int
    skipped_tests: int
    execution_time_ms: float
    scenario_results: List[ScenarioResult]

    @property
    def pass_rate(self) -> float:
        if self.total_tests == 0:
            return 0.0
        return self.passed_tests / self.total_tests * 100


@dataclass
class ValidationReport:
    """Complete report of one run."""
    timestamp: str
    factory: str
    recorded: bool
    total_suites: int
    total_tests: int
    total_passed: int
    total_failed: int
    total_divergences: int
    execution_time_ms: float
    suite_results: List[SuiteResult]


class ReportGenerator:
    """Generates run reports."""

    def __init__(self, result_dir: str):
        self.result_dir = result_dir
        os.makedirs(result_dir, exist_ok=True)

    def generate_report(
        self,
        suite_results: List[SuiteResult],
        factory: str,
        recorded: bool,
        execution_time_ms: float,
    ) -> ValidationReport:
        """
        Aggregate suite results into a report.

        Args:
            suite_results: Results from all suites that ran
            factory: The implementation factory, as "module:attribute"
            recorded: Whether tracker baselines were recorded instead of checked
            execution_time_ms: Total execution time

        Returns:
            ValidationReport object
        """
        total_divergences = sum(
            len(r.divergences) for s in suite_results for r in s.scenario_results
        )
        return ValidationReport(
            timestamp=datetime.now(timezone.utc).isoformat(),
            factory=factory,
            recorded=recorded,
            total_suites=len(suite_results),
            total_tests=sum(s.total_tests for s in suite_results),
            total_passed=sum(s.passed_tests for s in suite_results),
            total_failed=sum(s.failed_tests for s in suite_results),
            total_divergences=total_divergences,
            execution_time_ms=execution_time_ms,
            suite_results=suite_results,
        )

    def write_json_report(
        self,
        report: ValidationReport,
        filename: str = "chain-validation-report.json",
    ) -> str:
        """Write report as JSON; returns the path written."""
        path = os.path.join(self.result_dir, filename)
        with open(path, "w") as f:
            json.dump(self._report_to_dict(report), f, indent=2)
        return path

    def write_summary(
        self,
        report: ValidationReport,
        filename: str = "chain-validation-summary.txt",
    ) -> str:
        """Write human-readable summary; returns the path written."""
        path = os.path.join(self.result_dir, filename)
        with open(path, "w") as f:
            f.write("\n".join(self.summary_lines(report)))
        return path

    def summary_lines(self, report: ValidationReport) -> List[str]:
        lines = [
            "=" * 60,
            "Chain Validation Report",
            "=" * 60,
            f"Timestamp: {report.timestamp}",
            f"Factory:   {report.factory}",
            f"Mode:      {'record' if report.recorded else 'playback'}",
            "",
            "Results:",
            f"  Total Tests:  {report.total_tests}",
            f"  Passed:       {report.total_passed}",
            f"  Failed:       {report.total_failed}",
            f"  Divergences:  {report.total_divergences}",
            f"  Pass Rate:    {report.total_passed / max(report.total_tests, 1) * 100:.1f}%",
            f"  Duration:     {report.execution_time_ms:.2f}ms",
            "",
            "Suite Results:",
        ]
        for suite in report.suite_results:
            status = "PASS" if suite.failed_tests == 0 else "FAIL"
            lines.append(
                f"  [{status}] {suite.suite_name}: "
                f"{suite.passed_tests}/{suite.total_tests} "
                f"({suite.pass_rate:.1f}%)"
            )

        failures = [r for s in report.suite_results for r in s.scenario_results if not r.passed]
        if failures:
            lines.append("")
            lines.append("Failures:")
            for result in failures:
                lines.append(f"  - {result.suite_name}/{result.scenario_name}:")
                if result.error:
                    lines.append(f"      {result.error}")
                for div in result.divergences:
                    lines.append(f"      {div}")

        lines.append("")
        lines.append("=" * 60)
        return lines

    def print_summary(self, report: ValidationReport) -> None:
        """Print summary to the console."""
        click.echo("\n" + "=" * 60)
        click.echo("Chain Validation Results")
        click.echo("=" * 60)
        click.echo(f"Factory: {report.factory}")
        click.echo()
        click.echo(f"Total:       {report.total_tests}")
        click.echo(f"Passed:      {report.total_passed}")
        click.echo(f"Failed:      {report.total_failed}")
        click.echo(f"Divergences: {report.total_divergences}")
        click.echo(f"Pass Rate:   {report.total_passed / max(report.total_tests, 1) * 100:.1f}%")
        click.echo()

        failures = [r for s in report.suite_results for r in s.scenario_results if not r.passed]
        if failures:
            click.echo("FAILURES:")
            for result in failures[:10]:
                click.echo(f"  - {result.suite_name}/{result.scenario_name}")
            if len(failures) > 10:
                click.echo(f"  ... and {len(failures) - 10} more")

        status = "PASSED" if report.total_failed == 0 else "FAILED"
        click.echo()
        click.echo(f"Overall: {status}")
        click.echo("=" * 60)

    def _report_to_dict(self, report: ValidationReport) -> Dict[str, Any]:
        """Convert report to a dictionary for JSON serialization."""
        return {
            "timestamp": report.timestamp,
            "factory": report.factory,
            "recorded": report.recorded,
            "total_suites": report.total_suites,
            "total_tests": report.total_tests,
            "total_passed": report.total_passed,
            "total_failed": report.total_failed,
            "total_divergences": report.total_divergences,
            "execution_time_ms": report.execution_time_ms,
            "suite_results": [
                {
                    "suite_name": s.suite_name,
                    "total_tests": s.total_tests,
                    "passed_tests": s.passed_tests,
                    "failed_tests": s.failed_tests,
                    "skipped_tests": s.skipped_tests,
                    "execution_time_ms": s.execution_time_ms,
                    "pass_rate": s.pass_rate,
                    "scenarios": [
                        {
                            "name": r.scenario_name,
                            "passed": r.passed,
                            "execution_time_ms": r.execution_time_ms,
                            "error": r.error,
                            "divergences": [
                                {
                                    "field": d.field,
                                    "expected": str(d.expected),
                                    "actual": str(d.actual),
                                    "details": d.details,
                                }
                                for d in r.divergences
                            ],
                        }
                        for r in s.scenario_results
                    ],
                }
                for s in report.suite_results
            ],
        }
