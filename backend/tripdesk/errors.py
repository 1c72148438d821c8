"""Error taxonomy for the trip engine.

Every error carries a specific cause and at least one actionable
alternative so that tool callers never see a bare failure.
"""


class TripEngineError(Exception):
    """Base class for engine errors."""

    code = "engine_error"

    def __init__(self, message: str, *, alternatives: list[str] | None = None):
        super().__init__(message)
        self.message = message
        self.alternatives = alternatives or []

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "cause": self.message,
            "alternatives": self.alternatives,
        }


class ValidationError(TripEngineError):
    """Malformed input, reported with field-level detail."""

    code = "validation_error"

    def __init__(self, field_errors: dict[str, str], *, alternatives: list[str] | None = None):
        summary = "; ".join(f"{field}: {msg}" for field, msg in field_errors.items())
        super().__init__(
            f"Invalid input: {summary}",
            alternatives=alternatives or ["Correct the listed fields and retry"],
        )
        self.field_errors = field_errors

    def to_dict(self) -> dict:
        return {**super().to_dict(), "fields": self.field_errors}


class NotFoundError(TripEngineError):
    """Nothing matched after every resolution stage, or an id does not exist."""

    code = "not_found"

    def __init__(
        self,
        message: str,
        *,
        suggestions: list[dict] | None = None,
        alternatives: list[str] | None = None,
    ):
        super().__init__(message, alternatives=alternatives)
        self.suggestions = suggestions or []

    def to_dict(self) -> dict:
        return {**super().to_dict(), "suggestions": self.suggestions}


class ConsistencyError(TripEngineError):
    """Normalized and embedded assignment records diverge. Never fatal."""

    code = "consistency_warning"

    def __init__(self, message: str, *, diff: dict | None = None):
        super().__init__(
            message,
            alternatives=["Run reconcile with repair for this trip to rebuild the embedded client list"],
        )
        self.diff = diff or {}

    def to_dict(self) -> dict:
        return {**super().to_dict(), "diff": self.diff}


class ComplexityError(TripEngineError):
    """Query exceeds what a matching stage will process."""

    code = "query_too_complex"

    def __init__(self, message: str, *, limit: int):
        super().__init__(message, alternatives=["Use fewer, more specific search terms"])
        self.limit = limit


class StageTimeoutError(TripEngineError):
    """A bounded stage ran past its time or batch budget.

    Callers return the partial result gathered so far.
    """

    code = "stage_timeout"

    def __init__(self, stage: str, budget_ms: float, elapsed_ms: float):
        super().__init__(
            f"{stage} exceeded its {budget_ms:.0f}ms budget after {elapsed_ms:.0f}ms",
            alternatives=["Retry the operation to continue from where it stopped"],
        )
        self.stage = stage
        self.budget_ms = budget_ms
        self.elapsed_ms = elapsed_ms
