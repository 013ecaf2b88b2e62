"""Serializable element descriptors captured by the injected page script."""

from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

MAX_PARENT_DEPTH = 3
MAX_XPATH_DEPTH = 10
MAX_TEXT_LENGTH = 100

ATTRIBUTE_WHITELIST = (
    "name",
    "type",
    "placeholder",
    "title",
    "alt",
    "href",
    "src",
    "value",
    "aria-describedby",
    "data-cy",
    "data-test",
    "data-automation-id",
)

IMPLICIT_ROLES = {
    "a": "link",
    "article": "article",
    "aside": "complementary",
    "button": "button",
    "footer": "contentinfo",
    "form": "form",
    "h1": "heading",
    "h2": "heading",
    "h3": "heading",
    "h4": "heading",
    "h5": "heading",
    "h6": "heading",
    "header": "banner",
    "img": "img",
    "li": "listitem",
    "main": "main",
    "nav": "navigation",
    "ol": "list",
    "option": "option",
    "progress": "progressbar",
    "section": "region",
    "select": "combobox",
    "table": "table",
    "td": "cell",
    "textarea": "textbox",
    "th": "columnheader",
    "tr": "row",
    "ul": "list",
}

INPUT_ROLES = {
    "button": "button",
    "checkbox": "checkbox",
    "email": "textbox",
    "number": "spinbutton",
    "password": "textbox",
    "radio": "radio",
    "range": "slider",
    "search": "searchbox",
    "submit": "button",
    "tel": "textbox",
    "text": "textbox",
    "url": "textbox",
}

DYNAMIC_CLASS_PATTERNS = (
    re.compile(r"^[a-z]{1,3}[A-Z]"),
    re.compile(r"^_[a-z0-9]+$"),
    re.compile(r"^css-[a-z0-9]+$"),
    re.compile(r"^sc-[a-zA-Z]+$"),
    re.compile(r"^jsx-[a-z0-9]+$"),
    re.compile(r"^svelte-[a-z0-9]+$"),
    re.compile(r"^[a-f0-9]{8,}$"),
)


class PageSelectorCandidate(BaseModel):
    """Selector candidate evaluated inside the page, with its DOM uniqueness flag."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    strategy: str
    selector: str
    score: int = 0
    is_unique: bool = False
    is_readable: bool = True


class ElementInfo(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore",
    )

    tag_name: str
    id: str | None = None
    test_id: str | None = None
    role: str | None = None
    aria_label: str | None = None
    text_content: str | None = None
    class_names: list[str] = Field(default_factory=list)
    attributes: dict[str, str] = Field(default_factory=dict)
    sibling_index: int = 0
    sibling_count: int = 1
    parent: "ElementInfo | None" = None
    xpath: str | None = None
    selector_candidates: list[PageSelectorCandidate] | None = None

    @property
    def tag(self) -> str:
        return self.tag_name.lower()

    def resolved_role(self) -> str | None:
        if self.role:
            return self.role
        return implicit_role(self.tag, self.attributes.get("type"))


def implicit_role(tag_name: str, input_type: str | None = None) -> str | None:
    tag = tag_name.lower()
    if tag == "input":
        return INPUT_ROLES.get((input_type or "text").lower(), "textbox")
    return IMPLICIT_ROLES.get(tag)


def is_dynamic_class_name(class_name: str) -> bool:
    """Whether a class name looks generated (CSS-in-JS, hashed, framework-scoped)."""
    return any(pattern.search(class_name) for pattern in DYNAMIC_CLASS_PATTERNS)


def stable_class_names(class_names: list[str], limit: int = 2) -> list[str]:
    stable = [name for name in class_names if name and not is_dynamic_class_name(name) and len(name) < 40]
    return stable[:limit]


def truncate_text(text: str | None) -> str | None:
    if text is None:
        return None
    text = text.strip()
    if not text:
        return None
    if len(text) > MAX_TEXT_LENGTH:
        return f"{text[:MAX_TEXT_LENGTH]}..."
    return text


def parse_element_info(payload: Any) -> ElementInfo | None:
    if isinstance(payload, ElementInfo):
        return payload
    if not isinstance(payload, dict) or not payload.get("tagName", payload.get("tag_name")):
        return None
    return ElementInfo.model_validate(payload)
