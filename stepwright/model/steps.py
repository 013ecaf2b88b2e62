"""AST step models: one frozen pydantic model per step type, discriminated on `type`."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PositiveInt,
    TypeAdapter,
    ValidationError,
    model_validator,
)
from pydantic.alias_generators import to_camel

from stepwright.errors import ScenarioValidationError
from stepwright.model.selectors import SelectorInput

Modifier = Literal["Alt", "Control", "Meta", "Shift"]
HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


class AstModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        populate_by_name=True,
        alias_generator=to_camel,
    )


class Point(AstModel):
    x: float
    y: float


class ScrollPosition(AstModel):
    x: float | None = None
    y: float | None = None


class BaseStep(AstModel):
    id: str | None = None
    description: str | None = None
    timeout: PositiveInt | None = None
    optional: bool | None = None


class NavigateStep(BaseStep):
    type: Literal["navigate"] = "navigate"
    url: Annotated[str, Field(min_length=1)]
    wait_until: Literal["load", "domcontentloaded", "networkidle0", "networkidle2"] | None = None


class ClickStep(BaseStep):
    type: Literal["click"] = "click"
    selector: SelectorInput
    button: Literal["left", "right", "middle"] | None = None
    click_count: PositiveInt | None = None
    modifiers: list[Modifier] | None = None
    position: Point | None = None


class TypeStep(BaseStep):
    type: Literal["type"] = "type"
    selector: SelectorInput
    value: str
    clear: bool | None = None
    delay: Annotated[float, Field(ge=0)] | None = None
    sensitive: bool | None = None


class KeypressStep(BaseStep):
    type: Literal["keypress"] = "keypress"
    key: Annotated[str, Field(min_length=1)]
    selector: SelectorInput | None = None
    modifiers: list[Modifier] | None = None


class WaitStep(BaseStep):
    type: Literal["wait"] = "wait"
    strategy: Literal["time", "selector", "navigation", "networkIdle", "domStable"]
    duration: Annotated[float, Field(ge=0)] | None = None
    selector: SelectorInput | None = None
    state: Literal["visible", "hidden", "attached", "detached"] | None = None
    stability_threshold: PositiveInt | None = None

    @model_validator(mode="after")
    def _check_strategy_fields(self) -> "WaitStep":
        if self.strategy == "selector" and self.selector is None:
            raise ValueError("wait strategy 'selector' requires a selector")
        return self


class HoverStep(BaseStep):
    type: Literal["hover"] = "hover"
    selector: SelectorInput
    position: Point | None = None


class ScrollStep(BaseStep):
    type: Literal["scroll"] = "scroll"
    selector: SelectorInput | None = None
    position: ScrollPosition | None = None
    behavior: Literal["auto", "smooth"] | None = None


class SelectStep(BaseStep):
    type: Literal["select"] = "select"
    selector: SelectorInput
    values: Union[str, list[str]]

    def value_list(self) -> list[str]:
        if isinstance(self.values, str):
            return [self.values]
        return list(self.values)


class ApiMatch(AstModel):
    url: Annotated[str, Field(min_length=1)]
    method: HttpMethod | None = None
    url_is_regex: bool | None = None


class StatusRange(AstModel):
    min: int
    max: int

    @model_validator(mode="after")
    def _check_bounds(self) -> "StatusRange":
        if self.min > self.max:
            raise ValueError("status range min must be <= max")
        return self


class ApiExpectation(AstModel):
    status: Union[int, StatusRange, None] = None
    json_path: dict[str, Any] | None = None
    headers: dict[str, str] | None = None
    response_time: Annotated[float, Field(gt=0)] | None = None


class AssertApiStep(BaseStep):
    type: Literal["assertApi"] = "assertApi"
    match: ApiMatch
    expect: ApiExpectation | None = None
    wait_for: bool | None = None


class VisibleAssertion(AstModel):
    type: Literal["visible"] = "visible"


class HiddenAssertion(AstModel):
    type: Literal["hidden"] = "hidden"


class ExistsAssertion(AstModel):
    type: Literal["exists"] = "exists"


class NotExistsAssertion(AstModel):
    type: Literal["notExists"] = "notExists"


class TextAssertion(AstModel):
    type: Literal["text"] = "text"
    value: str
    contains: bool | None = None


class AttributeAssertion(AstModel):
    type: Literal["attribute"] = "attribute"
    name: Annotated[str, Field(min_length=1)]
    value: str | None = None


class CountAssertion(AstModel):
    type: Literal["count"] = "count"
    value: Annotated[int, Field(ge=0)]
    operator: Literal["eq", "gt", "gte", "lt", "lte"] | None = None


ElementAssertion = Annotated[
    Union[
        VisibleAssertion,
        HiddenAssertion,
        ExistsAssertion,
        NotExistsAssertion,
        TextAssertion,
        AttributeAssertion,
        CountAssertion,
    ],
    Field(discriminator="type"),
]


class AssertElementStep(BaseStep):
    type: Literal["assertElement"] = "assertElement"
    selector: SelectorInput
    assertion: ElementAssertion


class SnapshotDomStep(BaseStep):
    type: Literal["snapshotDom"] = "snapshotDom"
    label: Annotated[str, Field(min_length=1)]
    computed_styles: list[str] | None = None
    full_page: bool | None = None
    include_screenshot: bool | None = None


Step = Annotated[
    Union[
        NavigateStep,
        ClickStep,
        TypeStep,
        KeypressStep,
        WaitStep,
        HoverStep,
        ScrollStep,
        SelectStep,
        AssertApiStep,
        AssertElementStep,
        SnapshotDomStep,
    ],
    Field(discriminator="type"),
]

_STEP_ADAPTER: TypeAdapter[Any] = TypeAdapter(Step)
_STEP_LIST_ADAPTER: TypeAdapter[Any] = TypeAdapter(list[Step])


def format_validation_error(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()))
        parts.append(f"{location}: {error.get('msg', 'invalid')}" if location else error.get("msg", "invalid"))
    return "; ".join(parts)


def parse_step(payload: Any) -> BaseStep:
    """Validate one step payload (camelCase or snake_case keys)."""
    try:
        return _STEP_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        raise ScenarioValidationError(f"invalid step: {format_validation_error(exc)}") from exc


def parse_steps(payload: Any) -> list[BaseStep]:
    if not isinstance(payload, list):
        raise ScenarioValidationError("steps must be a list")
    try:
        return _STEP_LIST_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        raise ScenarioValidationError(f"invalid steps: {format_validation_error(exc)}") from exc


def step_selector(step: BaseStep) -> SelectorInput | None:
    return getattr(step, "selector", None)
