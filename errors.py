"""Exception hierarchy for the sugarscape rule engine."""
from __future__ import annotations

from typing import Any


class SugarscapeError(Exception):
    """Base for all sugarscape errors."""


class ConfigurationError(SugarscapeError, ValueError):
    """Model or rule parameters are invalid."""


class InvariantError(SugarscapeError):
    """A population or ledger invariant was broken at runtime."""


class DecisionError(SugarscapeError):
    """A decision provider failed or returned an unusable decision."""

    def __init__(self, message: str, *, rule: str | None = None, agent_id: int | None = None,
                 field: str | None = None, value: Any = None):
        self.message = message
        self.rule = rule
        self.agent_id = agent_id
        self.field = field
        self.value = value
        super().__init__(message)

    def bind(self, rule: str, agent_id: int) -> DecisionError:
        if self.rule is None:
            self.rule = rule
        if self.agent_id is None:
            self.agent_id = agent_id
        return self

    def __str__(self):
        parts = [self.message, f"rule={self.rule}", f"agent_id={self.agent_id}"]
        if self.field is not None:
            parts.append(f"field={self.field}")
            parts.append(f"value={self.value!r}")
        return " | ".join(parts)


class DecisionAPIError(DecisionError):
    """The provider raised, or does not implement the requested rule."""


class DecisionSchemaError(DecisionError):
    """The response is not a decision object: wrong shape, missing or unknown fields."""


class DecisionValidationError(DecisionError):
    """The response is well formed but a field value is wrong or inconsistent."""
