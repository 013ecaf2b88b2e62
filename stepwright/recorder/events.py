"""Raw, semantically typed DOM interaction events."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union
from uuid import uuid4

from stepwright.recorder.element_info import ElementInfo


def new_event_id() -> str:
    return f"evt-{uuid4().hex[:12]}"


@dataclass(frozen=True)
class ModifierKeys:
    alt: bool = False
    ctrl: bool = False
    meta: bool = False
    shift: bool = False

    def as_list(self) -> list[str]:
        """Playwright modifier names in Alt, Control, Meta, Shift order."""
        result = []
        if self.alt:
            result.append("Alt")
        if self.ctrl:
            result.append("Control")
        if self.meta:
            result.append("Meta")
        if self.shift:
            result.append("Shift")
        return result


@dataclass(frozen=True)
class MouseEvent:
    type: str
    target: ElementInfo
    url: str
    timestamp: float
    button: int = 0
    x: float = 0
    y: float = 0
    modifiers: ModifierKeys = field(default_factory=ModifierKeys)
    id: str = field(default_factory=new_event_id)


@dataclass(frozen=True)
class InputEvent:
    type: str
    target: ElementInfo
    url: str
    timestamp: float
    value: str = ""
    previous_value: str | None = None
    input_type: str | None = None
    is_sensitive: bool = False
    id: str = field(default_factory=new_event_id)


@dataclass(frozen=True)
class KeyboardEvent:
    type: str
    target: ElementInfo
    url: str
    timestamp: float
    key: str = ""
    code: str = ""
    modifiers: ModifierKeys = field(default_factory=ModifierKeys)
    id: str = field(default_factory=new_event_id)


@dataclass(frozen=True)
class ScrollEvent:
    target: ElementInfo
    url: str
    timestamp: float
    x: float = 0
    y: float = 0
    delta_x: float = 0
    delta_y: float = 0
    id: str = field(default_factory=new_event_id)
    type: str = "scroll"


@dataclass(frozen=True)
class SelectEvent:
    target: ElementInfo
    url: str
    timestamp: float
    values: tuple[str, ...] = ()
    option_texts: tuple[str, ...] = ()
    id: str = field(default_factory=new_event_id)
    type: str = "select"


@dataclass(frozen=True)
class NavigationEvent:
    url: str
    to_url: str
    timestamp: float
    from_url: str | None = None
    navigation_type: str = "push"
    target: ElementInfo | None = None
    id: str = field(default_factory=new_event_id)
    type: str = "navigation"


RawEvent = Union[MouseEvent, InputEvent, KeyboardEvent, ScrollEvent, SelectEvent, NavigationEvent]
