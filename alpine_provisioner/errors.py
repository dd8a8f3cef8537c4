from __future__ import annotations

from typing import Iterable, List


class ProvisionerError(Exception):
    """Base class for all provisioner errors."""


class ValidationError(ProvisionerError):
    """Declarations are unusable. Raised before any backend call.

    Carries every violation found so the operator can fix them in one pass.
    """

    def __init__(self, violations: Iterable[str]) -> None:
        self.violations: List[str] = list(violations)
        lines = "\n".join(f"  - {v}" for v in self.violations)
        super().__init__(f"{len(self.violations)} declaration problem(s):\n{lines}")


class PlanError(ProvisionerError):
    """Internal invariant broken while building a plan (e.g. a cycle survived validation)."""


class BackendConfigError(ProvisionerError):
    """A backend is missing or cannot be used the way the engine requires."""


class BackendFailure(ProvisionerError):
    """A single backend query or apply failed.

    `reason` is the backend's raw failure text, reported verbatim.
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class TimeoutFailure(BackendFailure):
    """A backend call exceeded its timeout."""
