"""Exception hierarchy for iamrecon.

Library code raises these; the CLI catches ``IamReconError`` and turns it
into a readable message and a non-zero exit code.
"""

from __future__ import annotations


class IamReconError(Exception):
    """Base class for every error raised by iamrecon."""


class DeclarationError(IamReconError):
    """A declaration file failed schema or semantic validation."""

    def __init__(self, message: str, issues: list | None = None):
        super().__init__(message)
        self.issues = issues or []

    def __str__(self) -> str:
        base = super().__str__()
        if not self.issues:
            return base
        lines = [base] + [f"  - {issue}" for issue in self.issues]
        return "\n".join(lines)


class VariableError(IamReconError):
    """A variable is undefined, unset, or of the wrong type."""


class DependencyCycleError(IamReconError):
    """The resource graph contains a reference cycle."""

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__("Dependency cycle: " + " -> ".join(cycle + cycle[:1]))


class BackendError(IamReconError):
    """A control-plane call failed."""

    def __init__(self, message: str, code: str = ""):
        super().__init__(message)
        self.code = code


class StateError(IamReconError):
    """The local state file is unreadable or inconsistent."""
