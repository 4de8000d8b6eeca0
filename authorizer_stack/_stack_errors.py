"""Exception hierarchy for the authorizer stack planner.

Configuration and planning failures are terminal for a single invocation;
callers catch :class:`StackError` when they only need to report and exit.

Examples
--------
>>> str(ConfigError([("clientID", "must not be empty")]))
'invalid stack configuration: clientID: must not be empty'
"""

from __future__ import annotations

from collections.abc import Iterable


class StackError(Exception):
    """Base error for authorizer stack planning."""


class ConfigError(StackError):
    """Raised when raw inputs cannot be resolved into a configuration.

    Parameters
    ----------
    violations
        ``(field, reason)`` pairs, in the order they were detected.

    Attributes
    ----------
    violations : tuple[tuple[str, str], ...]
        Every violated field with its reason.
    field, reason : str
        The first violation, for callers that report a single failure.

    Examples
    --------
    >>> err = ConfigError([("reloadInterval", "unparseable duration 'x'")])
    >>> err.field
    'reloadInterval'
    """

    def __init__(self, violations: Iterable[tuple[str, str]]) -> None:
        self.violations = tuple(violations)
        if not self.violations:
            msg = "ConfigError requires at least one violation"
            raise ValueError(msg)
        self.field, self.reason = self.violations[0]
        details = "; ".join(f"{name}: {why}" for name, why in self.violations)
        super().__init__(f"invalid stack configuration: {details}")

    def fields(self) -> tuple[str, ...]:
        """Return the names of all violated fields."""
        return tuple(name for name, _ in self.violations)


class PlanError(StackError):
    """Raised when a topology sub-decision cannot be resolved.

    Parameters
    ----------
    decision
        Name of the sub-decision that failed (for example ``"trigger"``).
    reason
        Human-readable description of the inconsistency.
    """

    def __init__(self, decision: str, reason: str) -> None:
        self.decision = decision
        self.reason = reason
        super().__init__(f"cannot plan {decision}: {reason}")


class RendererCommandError(StackError):
    """Raised when the external renderer command fails."""
