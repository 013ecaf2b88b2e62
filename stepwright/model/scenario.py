"""Scenario document model plus load/save helpers."""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Union

from pydantic import ConfigDict, Field, ValidationError, field_validator

from stepwright.contracts import AST_SCHEMA_VERSION, SUPPORTED_AST_MAJOR_VERSIONS
from stepwright.errors import ScenarioValidationError
from stepwright.model.steps import Step, AstModel, format_validation_error


class Viewport(AstModel):
    width: int = Field(gt=0)
    height: int = Field(gt=0)
    device_scale_factor: float | None = None
    is_mobile: bool | None = None
    has_touch: bool | None = None
    is_landscape: bool | None = None


class RecordingMeta(AstModel):
    model_config = ConfigDict(extra="ignore")

    recorded_at: str
    url: str
    viewport: Viewport
    user_agent: str | None = None
    ast_schema_version: str = AST_SCHEMA_VERSION
    tags: list[str] | None = None

    @field_validator("ast_schema_version")
    @classmethod
    def _check_version(cls, value: str) -> str:
        if not is_compatible_version(value):
            raise ValueError(f"unsupported astSchemaVersion: {value}")
        return value


class Scenario(AstModel):
    id: str
    name: str | None = None
    description: str | None = None
    meta: RecordingMeta
    steps: list[Step]
    setup: list[Step] | None = None
    teardown: list[Step] | None = None
    variables: dict[str, Union[str, int, float, bool]] | None = None


def is_compatible_version(version: str) -> bool:
    major = str(version).split(".", 1)[0]
    try:
        return int(major) in SUPPORTED_AST_MAJOR_VERSIONS
    except ValueError:
        return False


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def new_scenario_id() -> str:
    return f"scenario-{uuid.uuid4().hex[:12]}"


def normalize_step_ids(steps: list[Any]) -> list[Any]:
    """Assign `step-N` ids (1-based) to steps missing one."""
    normalized = []
    for index, step in enumerate(steps):
        if step.id:
            normalized.append(step)
        else:
            normalized.append(step.model_copy(update={"id": f"step-{index + 1}"}))
    return normalized


def build_scenario(
    *,
    steps: list[Any],
    url: str,
    viewport: dict[str, int] | None = None,
    name: str | None = None,
    scenario_id: str | None = None,
    recorded_at: str | None = None,
    user_agent: str | None = None,
) -> Scenario:
    viewport = viewport or {"width": 1280, "height": 720}
    return Scenario(
        id=scenario_id or new_scenario_id(),
        name=name,
        meta=RecordingMeta(
            recorded_at=recorded_at or utc_now_iso(),
            url=url,
            viewport=Viewport(width=viewport["width"], height=viewport["height"]),
            user_agent=user_agent,
        ),
        steps=normalize_step_ids(steps),
    )


def parse_scenario(payload: Any) -> Scenario:
    if not isinstance(payload, dict):
        raise ScenarioValidationError("scenario must be object")
    try:
        return Scenario.model_validate(payload)
    except ValidationError as exc:
        raise ScenarioValidationError(f"invalid scenario: {format_validation_error(exc)}") from exc


def dump_scenario(scenario: Scenario) -> dict[str, Any]:
    return scenario.model_dump(mode="json", by_alias=True, exclude_none=True)


def load_scenario(path: Path) -> Scenario:
    """Load and validate a scenario document from disk."""
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ScenarioValidationError(f"scenario file is not valid JSON: {path}") from exc
    return parse_scenario(raw)


def save_scenario(scenario: Scenario, path: Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(dump_scenario(scenario), indent=2), encoding="utf-8")
    return path
