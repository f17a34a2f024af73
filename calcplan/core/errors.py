"""Exception hierarchy for the plan compiler."""

from __future__ import annotations


class CalcPlanError(Exception):
    """Base class for every recoverable compiler failure."""


class ModelOutputError(CalcPlanError):
    """Raised when a model response does not carry a usable JSON object."""


class PlanValidationError(CalcPlanError):
    """Raised when a raw plan cannot be turned into a valid Plan."""

    def __init__(
        self,
        message: str,
        errors: list[str] | None = None,
        rejected_tables: list[tuple[str, str]] | None = None,
    ):
        self.errors = errors or []
        self.rejected_tables = rejected_tables or []
        super().__init__(self._compose(message))

    def _compose(self, message: str) -> str:
        parts = [message]
        if self.rejected_tables:
            listed = ", ".join(f"{talent}:{table!r}" for talent, table in self.rejected_tables[:8])
            parts.append(f"rejected tables (not in allowed list): {listed}")
        if self.errors:
            parts.append("; ".join(self.errors[:6]))
        return " | ".join(parts)


class RenderError(CalcPlanError):
    """Raised when a validated plan cannot be rendered (a compiler defect)."""


class SandboxError(CalcPlanError):
    """Base class for failures reported by the sandbox validator."""


class ScriptSyntaxError(SandboxError):
    """Script text does not match the script grammar."""

    def __init__(self, message: str, position: int | None = None):
        self.position = position
        suffix = f" (at offset {position})" if position is not None else ""
        super().__init__(f"{message}{suffix}")


class EvaluationError(SandboxError):
    """Raised by the interpreter when evaluation cannot proceed."""


class StaticCheckError(SandboxError):
    """Static pass failed: malformed text, module-scope reference or broken export contract."""


class RuntimeCheckError(SandboxError):
    """Runtime pass failed: an entry point raised when invoked with stand-in values."""
