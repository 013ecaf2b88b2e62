"""Selector model shared by recorded steps and the playback driver."""

from __future__ import annotations

from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, model_validator

SelectorStrategy = Literal["testId", "role", "css", "xpath"]


class Selector(BaseModel):
    """Strategy-tagged selector; role selectors also carry role and accessible name."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    strategy: SelectorStrategy
    value: str
    role: str | None = None
    name: str | None = None

    @model_validator(mode="after")
    def _check_role_fields(self) -> "Selector":
        if not self.value:
            raise ValueError("selector value must be non-empty")
        if self.strategy != "role" and (self.role is not None or self.name is not None):
            raise ValueError("role/name are only valid for role selectors")
        return self

    @property
    def effective_role(self) -> str:
        return self.role or self.value


SelectorInput = Union[str, Selector]


def test_id_selector(value: str) -> Selector:
    return Selector(strategy="testId", value=value)


def role_selector(role: str, name: str | None = None) -> Selector:
    if name:
        return Selector(strategy="role", value=f'{role}[name="{_quote(name)}"]', role=role, name=name)
    return Selector(strategy="role", value=role, role=role)


def css_selector(value: str) -> Selector:
    return Selector(strategy="css", value=value)


def xpath_selector(value: str) -> Selector:
    return Selector(strategy="xpath", value=value)


def _quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def to_query_string(selector: SelectorInput, test_id_attribute: str = "data-testid") -> str:
    """Convert a selector into a selector string the automation driver understands."""
    if isinstance(selector, str):
        return selector
    if selector.strategy == "testId":
        return f'[{test_id_attribute}="{_quote(selector.value)}"]'
    if selector.strategy == "role":
        if selector.name:
            return f'role={selector.effective_role}[name="{_quote(selector.name)}"]'
        return f"role={selector.effective_role}"
    if selector.strategy == "xpath":
        return f"xpath={selector.value}"
    return selector.value


def selector_key(selector: SelectorInput | None) -> str:
    """Stable identity string used to compare selectors for equality."""
    if selector is None:
        return ""
    if isinstance(selector, str):
        return f"css:{selector}"
    return f"{selector.strategy}:{selector.value}:{selector.role or ''}:{selector.name or ''}"


def describe_selector(selector: SelectorInput | None) -> str:
    if selector is None:
        return ""
    return to_query_string(selector)
