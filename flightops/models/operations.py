# flightops/models/operations.py
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

class StepStatus(str, Enum):
    """Outcome of a single step."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    WHAT_IF = "what_if"

class StepResult(BaseModel):
    """Record of one external call made by an operation."""
    name: str
    status: StepStatus
    duration_seconds: float = 0.0
    detail: Optional[str] = None
    error: Optional[str] = None
    critical: bool = True

class OperationReport(BaseModel):
    """Summary of an operation run."""
    operation: str
    environment: str
    correlation_id: str
    what_if: bool = False
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    steps: List[StepResult] = Field(default_factory=list)
    outputs: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None

    @property
    def failed_steps(self) -> List[StepResult]:
        return [step for step in self.steps if step.status == StepStatus.FAILED]

    @property
    def succeeded(self) -> bool:
        return self.error is None and not self.failed_steps

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1

    @property
    def duration_seconds(self) -> float:
        end = self.finished_at or datetime.now(timezone.utc)
        return (end - self.started_at).total_seconds()
