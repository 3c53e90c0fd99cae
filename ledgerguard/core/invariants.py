"""Invariant violations and the strict/permissive checker.

Strict mode raises on the first violation so bugs surface during development
and tests. Permissive mode records the violation, logs it and lets the
request continue.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable

from ledgerguard.config import get_settings

logger = logging.getLogger(__name__)


class InvariantViolationError(Exception):
    """A named invariant does not hold."""

    def __init__(
        self,
        invariant: str,
        message: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(f"INVARIANT VIOLATION [{invariant}]: {message}")
        self.invariant = invariant
        self.message = message
        self.context = context or {}
        self.detected_at = datetime.now(timezone.utc)

    def to_dict(self) -> dict[str, Any]:
        return {
            "invariant": self.invariant,
            "message": self.message,
            "context": self.context,
            "detected_at": self.detected_at.isoformat(),
        }


class InvariantMode(str, Enum):
    """How the checker reacts to a violation."""

    STRICT = "strict"
    PERMISSIVE = "permissive"


def default_invariant_mode() -> InvariantMode:
    """Mode from configuration."""
    if get_settings().strict_invariants:
        return InvariantMode.STRICT
    return InvariantMode.PERMISSIVE


@dataclass
class InvariantChecker:
    """Evaluates inline invariant conditions according to its mode."""

    mode: InvariantMode = field(default_factory=default_invariant_mode)
    violations: list[InvariantViolationError] = field(default_factory=list)

    @property
    def strict(self) -> bool:
        return self.mode == InvariantMode.STRICT

    def report(self, violation: InvariantViolationError) -> InvariantViolationError:
        """Raise in strict mode, record and log otherwise."""
        if self.strict:
            raise violation

        self.violations.append(violation)
        logger.error(
            "Invariant violation %s: %s context=%s",
            violation.invariant,
            violation.message,
            violation.context,
        )
        return violation

    def check_invariant(
        self,
        condition: bool,
        invariant: str,
        get_message: Callable[[], str],
        context: dict[str, Any] | None = None,
    ) -> InvariantViolationError | None:
        """Check a condition.

        The message is built lazily, only when the condition fails.

        Returns:
            The recorded violation in permissive mode, None when the
            condition holds.
        """
        if condition:
            return None
        return self.report(InvariantViolationError(invariant, get_message(), context))

    async def check_invariant_async(
        self,
        condition_fn: Callable[[], Awaitable[bool]],
        invariant: str,
        get_message: Callable[[], str],
        context: dict[str, Any] | None = None,
    ) -> InvariantViolationError | None:
        """Async variant; a condition that raises counts as a violation."""
        try:
            condition = await condition_fn()
        except InvariantViolationError:
            raise
        except Exception as e:
            return self.check_invariant(
                False,
                invariant,
                lambda: f"Condition check failed: {e}",
                context,
            )
        return self.check_invariant(condition, invariant, get_message, context)
