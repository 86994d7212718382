"""Exception hierarchy shared by the engine, scheduler and API layers."""
from __future__ import annotations

from typing import Iterable, List, Optional


class BitlabError(Exception):
    """Base class for all bitlab errors."""


class ValidationError(BitlabError):
    """One or more pre-flight requirements are not met.

    ``errors`` holds every violation; ``str(exc)`` is a one-line summary.
    """

    def __init__(self, errors: Iterable[str], warnings: Optional[Iterable[str]] = None) -> None:
        self.errors: List[str] = list(errors)
        self.warnings: List[str] = list(warnings or [])
        summary = "; ".join(self.errors) if self.errors else "Validation failed"
        super().__init__(summary)


class RuntimeUnavailable(BitlabError):
    """A language backend cannot be prepared (missing VM, unreachable server)."""


class OperationNotPermitted(BitlabError):
    """The operation is disabled or excluded by the run's policy."""

    def __init__(self, operation: str, reason: str) -> None:
        self.operation = operation
        self.reason = reason
        super().__init__(f"{operation}: {reason}")


class BudgetExhausted(BitlabError):
    """The next operation costs more than the remaining budget."""

    def __init__(self, operation: str, cost: int, budget: int) -> None:
        self.operation = operation
        self.cost = cost
        self.budget = budget
        super().__init__(f"{operation} costs {cost}, only {budget} remaining")


class AbortedByUser(BitlabError):
    """Cooperative cancellation was requested."""


class UnhandledRuntimeError(BitlabError):
    """A strategy or operation failed in a way the engine cannot recover from."""


class JobNotFoundError(BitlabError):
    """Requested job ID does not exist."""


class BatchNotFoundError(BitlabError):
    """Requested batch ID does not exist."""


class InvalidTransitionError(BitlabError):
    """The requested lifecycle change is not allowed from the current state."""


class PersistenceError(BitlabError):
    """A job or result flush could not be written."""
