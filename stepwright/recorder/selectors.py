"""Selector candidate ranking for captured elements."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable

from stepwright.model.selectors import (
    Selector,
    css_selector,
    role_selector,
    test_id_selector,
    to_query_string,
    xpath_selector,
)
from stepwright.recorder.element_info import ElementInfo, stable_class_names

logger = logging.getLogger("stepwright.recorder.selectors")

STRATEGY_PRIORITIES = {
    "testId": 100,
    "ariaLabel": 90,
    "role": 85,
    "id": 75,
    "name": 70,
    "class": 50,
    "css": 30,
    "xpath": 10,
}

GENERIC_ROLES = frozenset(
    {"generic", "group", "region", "main", "complementary", "contentinfo", "banner", "article", "section"}
)
HASH_LIKE_ID = re.compile(r"^[0-9a-f]{8,}$", re.IGNORECASE)
NUMERIC_ID = re.compile(r"^\d+$")
SIMPLE_ID = re.compile(r"^[A-Za-z][\w-]*$")
MAX_ROLE_TEXT = 50
READABLE_LENGTH = 80

CountMatches = Callable[[str], int]


@dataclass(frozen=True)
class SelectorCandidate:
    strategy: str
    selector: Selector
    score: int
    is_unique: bool
    is_readable: bool

    @property
    def query(self) -> str:
        return to_query_string(self.selector)


def _quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _is_stable_id(element_id: str) -> bool:
    return not HASH_LIKE_ID.match(element_id) and not NUMERIC_ID.match(element_id)


def _generate(info: ElementInfo, test_id_attribute: str) -> list[tuple[str, Selector]]:
    generated: list[tuple[str, Selector]] = []
    tag = info.tag
    role = info.resolved_role()

    test_id = info.test_id or info.attributes.get(test_id_attribute)
    if test_id:
        generated.append(("testId", test_id_selector(test_id)))

    if info.aria_label:
        if role:
            generated.append(("ariaLabel", role_selector(role, info.aria_label)))
        else:
            generated.append(("ariaLabel", css_selector(f'[aria-label="{_quote(info.aria_label)}"]')))

    if role and info.text_content and not (role in GENERIC_ROLES and not info.aria_label):
        text = info.text_content.strip()[:MAX_ROLE_TEXT]
        if text:
            generated.append(("role", role_selector(role, text)))

    if info.id and _is_stable_id(info.id):
        if SIMPLE_ID.match(info.id):
            generated.append(("id", css_selector(f"#{info.id}")))
        else:
            generated.append(("id", css_selector(f'[id="{_quote(info.id)}"]')))

    name = info.attributes.get("name")
    if name:
        generated.append(("name", css_selector(f'{tag}[name="{_quote(name)}"]')))

    classes = stable_class_names(info.class_names)
    if classes:
        generated.append(("class", css_selector(f"{tag}.{'.'.join(classes)}")))

    if info.sibling_count > 1:
        generated.append(("css", css_selector(f"{tag}:nth-of-type({info.sibling_index + 1})")))

    if info.xpath:
        generated.append(("xpath", xpath_selector(info.xpath)))

    return generated


def _page_uniqueness(info: ElementInfo) -> dict[str, bool]:
    flags: dict[str, bool] = {}
    for candidate in info.selector_candidates or []:
        flags.setdefault(candidate.strategy, candidate.is_unique)
    return flags


def _heuristic_unique(strategy: str, selector: Selector) -> bool:
    if strategy in {"testId", "id", "xpath"}:
        return True
    if selector.strategy == "role":
        return bool(selector.name)
    return False


def rank_candidates(
    info: ElementInfo,
    *,
    count_matches: CountMatches | None = None,
    test_id_attribute: str = "data-testid",
) -> list[SelectorCandidate]:
    """Every applicable selector for the element, highest priority first."""
    page_flags = _page_uniqueness(info)
    candidates = []
    for strategy, selector in _generate(info, test_id_attribute):
        query = to_query_string(selector, test_id_attribute)
        if strategy == "xpath":
            is_unique = True
        elif count_matches is not None:
            try:
                is_unique = count_matches(query) == 1
            except Exception as exc:
                logger.debug("Uniqueness check failed for %s: %s", query, exc)
                is_unique = False
        elif strategy in page_flags:
            is_unique = page_flags[strategy]
        else:
            is_unique = _heuristic_unique(strategy, selector)
        candidates.append(
            SelectorCandidate(
                strategy=strategy,
                selector=selector,
                score=STRATEGY_PRIORITIES[strategy],
                is_unique=is_unique,
                is_readable=len(query) < READABLE_LENGTH,
            )
        )
    candidates.sort(key=lambda candidate: candidate.score, reverse=True)
    return candidates


def get_best_selector(
    info: ElementInfo | None,
    *,
    require_unique: bool = False,
    count_matches: CountMatches | None = None,
    test_id_attribute: str = "data-testid",
) -> Selector | None:
    """Highest-priority selector for the element, or None when nothing applies."""
    if info is None:
        return None
    for candidate in rank_candidates(info, count_matches=count_matches, test_id_attribute=test_id_attribute):
        if require_unique and not candidate.is_unique and candidate.strategy != "xpath":
            continue
        return candidate.selector
    return None
