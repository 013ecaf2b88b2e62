"""Exception hierarchy for recording, scenario loading and playback."""


class StepwrightError(Exception):
    """Base error type for all stepwright failures."""


class ScenarioValidationError(StepwrightError, ValueError):
    """Scenario document or step payload does not match the AST schema."""


class InvalidSelectorError(StepwrightError, ValueError):
    """Selector syntax could not be evaluated against the DOM."""


class PlayerStateError(StepwrightError):
    """Operation is not allowed in the current player state."""


class SessionConflictError(StepwrightError):
    """A recording session is already active for the requested key."""


class StepExecutionError(StepwrightError):
    """Step execution failure carrying stable taxonomy class/code fields."""

    def __init__(self, message: str, *, error_class: str, error_code: str):
        super().__init__(message)
        self.error_class = error_class
        self.error_code = error_code


class ElementNotFoundError(StepExecutionError):
    """Raised when a selector resolves to no element in the live session."""

    def __init__(self, selector: str, message: str | None = None):
        super().__init__(
            message or f"element not found: {selector}",
            error_class="selector_not_found",
            error_code="SEL_NOT_FOUND",
        )
        self.selector = selector


class StepTimeoutError(StepExecutionError):
    """Raised when a driver wait exceeds the step timeout."""

    def __init__(self, message: str = "step timeout"):
        super().__init__(
            message,
            error_class="timeout",
            error_code="TIMEOUT_OPERATION",
        )


class AssertionMismatchError(StepExecutionError):
    """Raised when an assertion step observes a different value than expected."""

    def __init__(self, message: str, *, error_code: str = "ASSERT_MISMATCH"):
        super().__init__(
            message,
            error_class="assertion_failed",
            error_code=error_code,
        )


class UnsupportedStepError(StepExecutionError):
    """Raised when no executor is registered for a step type."""

    def __init__(self, step_type: str):
        super().__init__(
            f"no executor registered for step type: {step_type}",
            error_class="unsupported_step",
            error_code="STEP_UNSUPPORTED",
        )
        self.step_type = step_type


class DriverDisconnectedError(StepExecutionError):
    """Raised when the automation driver lost its browser/page."""

    def __init__(self, message: str = "automation driver disconnected"):
        super().__init__(
            message,
            error_class="driver_disconnected",
            error_code="DRIVER_DISCONNECTED",
        )
