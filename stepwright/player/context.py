"""Per-run execution context handed to every step executor."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urljoin, urlparse

from stepwright.model.selectors import SelectorInput, to_query_string
from stepwright.model.steps import BaseStep
from stepwright.network.calls import ApiCallLog
from stepwright.player.driver import AutomationDriver
from stepwright.settings import PlayerOptions

_VARIABLE = re.compile(r"\$\{(\w+)\}")


def substitute_variables(value: str, variables: dict[str, Any]) -> str:
    """Replace `${name}` with its variable value; unknown names are left in place."""

    def _replace(match: re.Match[str]) -> str:
        name = match.group(1)
        if name in variables:
            return str(variables[name])
        return match.group(0)

    return _VARIABLE.sub(_replace, value)


@dataclass
class ExecutionContext:
    driver: AutomationDriver
    options: PlayerOptions = field(default_factory=PlayerOptions)
    variables: dict[str, Any] = field(default_factory=dict)
    api_log: ApiCallLog = field(default_factory=ApiCallLog)
    test_id_attribute: str = "data-testid"
    screenshot_dir: Path | None = None

    def substitute(self, value: str) -> str:
        return substitute_variables(value, self.variables)

    def resolve_url(self, url: str) -> str:
        """Substitute variables, then join relative URLs onto the configured base URL."""
        url = self.substitute(url)
        if self.options.base_url and not urlparse(url).scheme:
            return urljoin(self.options.base_url, url)
        return url

    def query(self, selector: SelectorInput) -> str:
        return to_query_string(selector, self.test_id_attribute)

    def timeout_for(self, step: BaseStep) -> int:
        return step.timeout or self.options.default_timeout_ms

    def scaled(self, duration_ms: float) -> float:
        speed = self.options.speed if self.options.speed > 0 else 1.0
        return duration_ms / speed
