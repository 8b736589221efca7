"""Step execution and reporting shared by all operations scripts.

An operation is a linear sequence of steps, each one an external call
(Azure SDK, az CLI, dotnet). The runner wraps every step in the same
failure handling:

- the exception message is logged with the step name
- a StepResult is recorded with status and duration
- critical failures abort the operation with StepFailedError
- non-critical failures are recorded and the operation continues

In what-if mode no step is executed; each one is recorded as it would run.
"""

import json
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

from flightops.core.errors import FlightOpsError, OperationTimeoutError, StepFailedError
from flightops.core.logging import get_logger, new_correlation_id, current_environment
from flightops.models.operations import OperationReport, StepResult, StepStatus

logger = get_logger(__name__)

class OperationRunner:
    """Runs and records the steps of one operation."""

    def __init__(
        self,
        operation: str,
        environment: str,
        what_if: bool = False,
        echo: Callable[[str], None] = print
    ):
        self.what_if = what_if
        self.echo = echo
        self.report = OperationReport(
            operation=operation,
            environment=str(getattr(environment, "value", environment)),
            correlation_id=new_correlation_id(),
            what_if=what_if
        )
        current_environment.set(self.report.environment)

    @property
    def environment(self) -> str:
        return self.report.environment

    @property
    def is_production(self) -> bool:
        return self.report.environment == "prod"

    def run_step(
        self,
        name: str,
        func: Callable[..., Any],
        *args,
        critical: bool = True,
        **kwargs
    ) -> Any:
        """Run one external call and record its outcome.

        Returns the call's result, or None when it was not executed
        (what-if mode) or failed without being critical.
        """
        if self.what_if:
            self._record(name, StepStatus.WHAT_IF, detail="not executed", critical=critical)
            self.echo(f"  ? What if: {name}")
            return None

        self.echo(f"  > {name}...")
        start_time = time.monotonic()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            duration = time.monotonic() - start_time
            logger.error(
                f"Step failed: {name}",
                error=e,
                step=name,
                critical=critical,
                duration_seconds=round(duration, 2)
            )
            self._record(name, StepStatus.FAILED, duration=duration, error=str(e), critical=critical)
            self.echo(f"  x {name} failed: {e}")
            if critical:
                raise StepFailedError(name, e) from e
            return None

        duration = time.monotonic() - start_time
        logger.info(f"Step completed: {name}", step=name, duration_seconds=round(duration, 2))
        self._record(name, StepStatus.SUCCEEDED, duration=duration, critical=critical)
        self.echo(f"  + {name} ({duration:.1f}s)")
        return result

    def check(self, name: str, func: Callable[..., Any], *args, **kwargs) -> bool:
        """Run a non-critical step and return a success flag."""
        if self.what_if:
            self.run_step(name, func, *args, critical=False, **kwargs)
            return True

        before = len(self.report.failed_steps)
        self.run_step(name, func, *args, critical=False, **kwargs)
        return len(self.report.failed_steps) == before

    def skip(self, name: str, reason: str):
        """Record a step that was deliberately not run."""
        self._record(name, StepStatus.SKIPPED, detail=reason)
        self.echo(f"  - {name} skipped: {reason}")

    def fail(self, name: str, message: str, critical: bool = False):
        """Record a failed check that did not raise (e.g. a missed objective)."""
        logger.error(f"Check failed: {name}", step=name, reason=message)
        self._record(name, StepStatus.FAILED, error=message, critical=critical)
        self.echo(f"  x {name}: {message}")
        if critical:
            raise StepFailedError(name, FlightOpsError(message))

    def note(self, message: str):
        """Print an informational line without recording a step."""
        self.echo(f"    {message}")

    def set_output(self, key: str, value: Any):
        self.report.outputs[key] = value

    def finish(self, error: Optional[Exception] = None) -> OperationReport:
        self.report.finished_at = datetime.now(timezone.utc)
        if error is not None:
            self.report.error = str(error)
        return self.report

    def _record(
        self,
        name: str,
        status: StepStatus,
        duration: float = 0.0,
        detail: Optional[str] = None,
        error: Optional[str] = None,
        critical: bool = True
    ):
        self.report.steps.append(StepResult(
            name=name,
            status=status,
            duration_seconds=round(duration, 3),
            detail=detail,
            error=error,
            critical=critical
        ))

def run_operation(
    operation: str,
    environment: str,
    func: Callable[..., Any],
    *args,
    what_if: bool = False,
    echo: Callable[[str], None] = print,
    **kwargs
) -> OperationReport:
    """Run func(runner, ...) and return the finished report.

    Failures are logged and turned into a failed report; they never
    propagate to the caller.
    """
    runner = OperationRunner(operation, environment, what_if=what_if, echo=echo)
    echo(f"{operation} [{runner.environment}]{' (what-if)' if what_if else ''}")
    logger.info(f"Operation started: {operation}", operation=operation, what_if=what_if)

    try:
        func(runner, *args, **kwargs)
    except StepFailedError as e:
        return runner.finish(e)
    except Exception as e:
        logger.error(f"Operation failed: {operation}", error=e, operation=operation)
        return runner.finish(e)

    report = runner.finish()
    logger.info(
        f"Operation finished: {operation}",
        operation=operation,
        succeeded=report.succeeded,
        duration_seconds=round(report.duration_seconds, 2)
    )
    return report

def wait_until(
    predicate: Callable[[], Any],
    timeout: float,
    interval: float,
    description: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic
) -> Any:
    """Poll predicate until it returns a truthy value."""
    deadline = clock() + timeout
    attempt = 0
    while True:
        attempt += 1
        value = predicate()
        if value:
            return value
        if clock() >= deadline:
            raise OperationTimeoutError(
                f"Timed out after {timeout:.0f}s waiting for {description}"
            )
        logger.debug(f"Waiting for {description}", attempt=attempt, interval=interval)
        sleep(interval)

def format_report(report: OperationReport) -> str:
    """Render a report as human-readable text."""
    counts = {status: 0 for status in StepStatus}
    for step in report.steps:
        counts[step.status] += 1

    lines = [
        "",
        "=" * 60,
        f"{report.operation} - {report.environment}",
        "=" * 60,
    ]
    for step in report.steps:
        marker = {
            StepStatus.SUCCEEDED: "[ OK ]",
            StepStatus.FAILED: "[FAIL]",
            StepStatus.SKIPPED: "[SKIP]",
            StepStatus.WHAT_IF: "[ ?? ]",
        }[step.status]
        line = f"{marker} {step.name}"
        if step.status == StepStatus.SUCCEEDED:
            line += f" ({step.duration_seconds:.1f}s)"
        if step.error:
            line += f" - {step.error}"
        elif step.detail and step.status != StepStatus.SUCCEEDED:
            line += f" - {step.detail}"
        lines.append(line)

    lines.append("-" * 60)
    lines.append(
        f"Succeeded: {counts[StepStatus.SUCCEEDED]}  Failed: {counts[StepStatus.FAILED]}  "
        f"Skipped: {counts[StepStatus.SKIPPED]}  What-if: {counts[StepStatus.WHAT_IF]}  "
        f"Duration: {report.duration_seconds:.1f}s"
    )

    if report.succeeded:
        lines.append(f"RESULT: {report.operation} completed successfully")
    else:
        if report.error:
            lines.append(f"ERROR: {report.error}")
        if report.environment == "prod":
            lines.extend([
                "!" * 60,
                f"!!! PRODUCTION FAILURE: {report.operation}",
                f"!!! Correlation ID: {report.correlation_id}",
                "!!! Investigate immediately before retrying.",
                "!" * 60,
            ])
        else:
            lines.append(f"RESULT: {report.operation} FAILED")
    return "\n".join(lines)

def write_report(report: OperationReport, directory: str, prefix: Optional[str] = None) -> Path:
    """Write a report as JSON and return its path."""
    path = Path(directory)
    path.mkdir(parents=True, exist_ok=True)
    stamp = report.started_at.strftime("%Y%m%d_%H%M%S")
    target = path / f"{prefix or report.operation}-{report.environment}-{stamp}.json"
    target.write_text(json.dumps(report.model_dump(mode="json"), indent=2))
    return target

def emit_report(report: OperationReport, echo: Callable[[str], None] = print) -> int:
    """Print a report and return the process exit code."""
    echo(format_report(report))
    return report.exit_code
