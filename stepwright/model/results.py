"""Playback result models: per-step outcomes and the run summary."""

from __future__ import annotations

from typing import Any, Literal

from stepwright.model.steps import AstModel

StepStatus = Literal["passed", "failed", "skipped"]


class StepError(AstModel):
    message: str
    error_class: str = ""
    error_code: str = ""
    fingerprint: str = ""

    @classmethod
    def from_failure(cls, failure: dict[str, str]) -> "StepError":
        return cls(
            message=failure.get("message", ""),
            error_class=failure.get("error_class", ""),
            error_code=failure.get("error_code", ""),
            fingerprint=failure.get("fingerprint", ""),
        )


class ApiResponseInfo(AstModel):
    status: int
    headers: dict[str, str] = {}
    body: Any = None
    response_time: float = 0


class StepResult(AstModel):
    step_id: str
    index: int
    status: StepStatus
    duration: float
    error: StepError | None = None
    screenshot_path: str | None = None
    api_response: ApiResponseInfo | None = None


class DomSnapshot(AstModel):
    """DOM captured by a snapshotDom step during playback."""

    step_id: str
    index: int
    label: str
    snapshot: dict[str, Any]
    screenshot_path: str | None = None


class ExecutionSummary(AstModel):
    total_steps: int
    passed: int
    failed: int
    skipped: int
    duration: float
    success: bool


class PlaybackResult(AstModel):
    scenario_id: str
    state: str
    step_results: list[StepResult]
    summary: ExecutionSummary
    start_time: float
    end_time: float
    success: bool
    snapshots: list[DomSnapshot] = []

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def summarize(results: list[StepResult], *, duration: float, completed: bool) -> ExecutionSummary:
    passed = sum(1 for result in results if result.status == "passed")
    failed = sum(1 for result in results if result.status == "failed")
    skipped = sum(1 for result in results if result.status == "skipped")
    return ExecutionSummary(
        total_steps=len(results),
        passed=passed,
        failed=failed,
        skipped=skipped,
        duration=duration,
        success=failed == 0 and completed,
    )
