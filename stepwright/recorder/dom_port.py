"""DOM observation port: the surface the mutation tracker needs from a live document."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol, Sequence

from stepwright.errors import InvalidSelectorError

logger = logging.getLogger("stepwright.recorder.dom_port")

ELEMENT_NODE = 1
DOM_BINDING_NAME = "__stepwrightDom"


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class ViewportSize:
    width: float
    height: float


class DomNode(Protocol):
    node_type: int

    @property
    def parent_element(self) -> "DomElement | None": ...


class DomElement(DomNode, Protocol):
    tag_name: str

    @property
    def class_names(self) -> Sequence[str]: ...

    def text_content(self) -> str: ...

    def is_connected(self) -> bool: ...

    def bounding_box(self) -> Rect | None: ...

    def get_attribute(self, name: str) -> str | None: ...

    def matches(self, selector: str) -> bool:
        """Raise InvalidSelectorError when the selector cannot be parsed."""
        ...


@dataclass(frozen=True)
class MutationRecord:
    type: str
    target: Any
    added_nodes: tuple[Any, ...] = ()


MutationCallback = Callable[[list[MutationRecord]], None]


class DomObservationPort(Protocol):
    def observe(self, callback: MutationCallback) -> None: ...

    def disconnect(self) -> None: ...

    def viewport(self) -> ViewportSize: ...


@dataclass(eq=False)
class MirroredElement:
    """Last known state of a page element, as reported by the injected observer."""

    node_id: int
    tag_name: str
    node_type: int = ELEMENT_NODE
    attributes: dict[str, str] = field(default_factory=dict)
    classes: list[str] = field(default_factory=list)
    text: str = ""
    rect: Rect | None = None
    connected: bool = True
    ignore_matches: dict[str, Any] = field(default_factory=dict)
    parent: "MirroredElement | None" = None

    @property
    def parent_element(self) -> "MirroredElement | None":
        return self.parent

    @property
    def class_names(self) -> list[str]:
        return list(self.classes)

    def text_content(self) -> str:
        return self.text

    def is_connected(self) -> bool:
        return self.connected

    def bounding_box(self) -> Rect | None:
        return self.rect

    def get_attribute(self, name: str) -> str | None:
        return self.attributes.get(name)

    def matches(self, selector: str) -> bool:
        result = self.ignore_matches.get(selector, False)
        if result == "invalid":
            raise InvalidSelectorError(f"invalid selector: {selector}")
        return bool(result)


class PageDomPort:
    """Observation port fed by the injected page script through a Playwright binding.

    The page posts batches of mutation records with serialized node snapshots;
    the port keeps one mirror object per page node id so element identity is
    stable across batches. Removed nodes are marked disconnected.
    """

    def __init__(self, viewport: ViewportSize | None = None):
        self._callback: MutationCallback | None = None
        self._nodes: dict[int, MirroredElement] = {}
        self._viewport = viewport or ViewportSize(width=1280, height=720)

    async def install(self, context: Any) -> None:
        """Expose the mutation binding on a Playwright BrowserContext or Page."""
        await context.expose_binding(DOM_BINDING_NAME, self._on_binding)

    def observe(self, callback: MutationCallback) -> None:
        self._callback = callback

    def disconnect(self) -> None:
        self._callback = None
        self._nodes.clear()

    def viewport(self) -> ViewportSize:
        return self._viewport

    def _on_binding(self, _source: object, payload: Any) -> None:
        if not isinstance(payload, dict):
            return
        self.ingest(payload)

    def ingest(self, payload: dict[str, Any]) -> None:
        viewport = payload.get("viewport")
        if isinstance(viewport, dict):
            try:
                self._viewport = ViewportSize(
                    width=float(viewport.get("width", 0)),
                    height=float(viewport.get("height", 0)),
                )
            except (TypeError, ValueError):
                logger.debug("Ignoring malformed viewport payload: %s", viewport)
        for removed in payload.get("removed", []) or []:
            node = self._nodes.get(_node_id(removed))
            if node is not None:
                node.connected = False
        if self._callback is None:
            return
        records: list[MutationRecord] = []
        for raw in payload.get("records", []) or []:
            if not isinstance(raw, dict):
                continue
            record_type = str(raw.get("type", ""))
            target = self._mirror(raw.get("target"))
            added = tuple(
                node
                for node in (self._mirror(item) for item in raw.get("addedNodes", []) or [])
                if node is not None
            )
            records.append(MutationRecord(type=record_type, target=target, added_nodes=added))
        if records:
            self._callback(records)

    def _mirror(self, snapshot: Any) -> MirroredElement | None:
        if not isinstance(snapshot, dict):
            return None
        node_id = _node_id(snapshot)
        node = self._nodes.get(node_id)
        if node is None:
            node = MirroredElement(node_id=node_id, tag_name="")
            self._nodes[node_id] = node
        node.node_type = int(snapshot.get("nodeType", ELEMENT_NODE))
        node.tag_name = str(snapshot.get("tagName", "") or "").lower()
        attributes = snapshot.get("attributes")
        if isinstance(attributes, dict):
            node.attributes = {str(key): str(value) for key, value in attributes.items()}
        classes = snapshot.get("classNames")
        if isinstance(classes, list):
            node.classes = [str(item) for item in classes]
        node.text = str(snapshot.get("text", "") or "")
        rect = snapshot.get("rect")
        if isinstance(rect, dict):
            node.rect = Rect(
                x=float(rect.get("x", 0)),
                y=float(rect.get("y", 0)),
                width=float(rect.get("width", 0)),
                height=float(rect.get("height", 0)),
            )
        node.connected = bool(snapshot.get("connected", True))
        matches = snapshot.get("ignoreMatches")
        if isinstance(matches, dict):
            node.ignore_matches = dict(matches)
        if "parent" in snapshot:
            node.parent = self._mirror(snapshot.get("parent"))
        return node


def _node_id(snapshot: Any) -> int:
    if isinstance(snapshot, dict):
        snapshot = snapshot.get("nodeId")
    try:
        return int(snapshot)
    except (TypeError, ValueError):
        return -1
