"""Deterministic step failure taxonomy and fingerprint utilities."""

from __future__ import annotations

import hashlib

from stepwright.contracts import ERROR_SCHEMA_V1
from stepwright.errors import StepExecutionError


def build_failure(
    *,
    error_class: str,
    error_code: str,
    step_id: str,
    url: str,
    message: str,
    selector: str = "",
) -> dict[str, str]:
    """Build a stable failure payload for step results and persisted reports."""
    fingerprint_input = "|".join(
        [
            error_class,
            error_code,
            step_id or "",
            selector or "",
            url or "",
        ]
    )
    fingerprint = hashlib.sha256(fingerprint_input.encode("utf-8")).hexdigest()
    return {
        "error_schema_version": ERROR_SCHEMA_V1,
        "error_class": error_class,
        "error_code": error_code,
        "step_id": step_id,
        "selector": selector or "",
        "url": url or "",
        "message": message,
        "fingerprint": fingerprint,
    }


def classify_failure(
    *,
    error: Exception,
    step_id: str,
    step_type: str = "",
    selector: str = "",
    url: str = "",
) -> dict[str, str]:
    """Classify a step execution exception into the versioned error taxonomy."""
    message = str(error) or error.__class__.__name__

    if isinstance(error, StepExecutionError):
        return build_failure(
            error_class=error.error_class,
            error_code=error.error_code,
            step_id=step_id,
            selector=selector,
            url=url,
            message=message,
        )

    lower = message.lower()

    if "target page, context or browser has been closed" in lower or "browser has disconnected" in lower:
        return build_failure(
            error_class="driver_disconnected",
            error_code="DRIVER_DISCONNECTED",
            step_id=step_id,
            selector=selector,
            url=url,
            message=message,
        )

    if "strict mode" in lower:
        return build_failure(
            error_class="selector_ambiguous",
            error_code="SEL_AMBIGUOUS",
            step_id=step_id,
            selector=selector,
            url=url,
            message=message,
        )
    if "not found" in lower or "waiting for selector" in lower or "waiting for locator" in lower:
        return build_failure(
            error_class="selector_not_found",
            error_code="SEL_NOT_FOUND",
            step_id=step_id,
            selector=selector,
            url=url,
            message=message,
        )

    if "timeout" in lower:
        return build_failure(
            error_class="timeout",
            error_code="TIMEOUT_OPERATION",
            step_id=step_id,
            selector=selector,
            url=url,
            message=message,
        )

    if "net::" in lower:
        return build_failure(
            error_class="navigation_failed",
            error_code="NAV_NETWORK_ERROR",
            step_id=step_id,
            selector=selector,
            url=url,
            message=message,
        )

    default_code = "ACT_STEP_FAILED"
    if step_type == "click":
        default_code = "ACT_CLICK_FAILED"
    elif step_type == "type":
        default_code = "ACT_TYPE_FAILED"
    elif step_type == "navigate":
        default_code = "NAV_FAILED"
    elif step_type in {"assertApi", "assertElement"}:
        default_code = "ASSERT_FAILED"

    return build_failure(
        error_class="interaction_failed",
        error_code=default_code,
        step_id=step_id,
        selector=selector,
        url=url,
        message=message,
    )
