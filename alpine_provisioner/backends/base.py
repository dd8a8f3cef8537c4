"""Backend interfaces.

A backend answers two questions for the kinds it owns:
- query: what is the current value? (read-only, bounded by a timeout)
- apply: perform exactly the step an Action names (bounded by a timeout)

Failures surface as BackendFailure / TimeoutFailure so the engine can record
them per action. Backends never decide ordering, retries or dependencies.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING, Dict, Iterator, List, Protocol, Sequence, Tuple

from ..errors import BackendConfigError, BackendFailure, TimeoutFailure, ValidationError
from ..lib.command import CommandError, CommandTimeout
from ..resources import Resource, ResourceKind

if TYPE_CHECKING:
    from ..inspector import Observation
    from ..planner import Action


class Backend(Protocol):
    name: str
    kinds: Tuple[ResourceKind, ...]

    # Must be True: the inspector refuses backends whose queries may mutate state.
    read_only_query: bool

    def query(self, resource: Resource, *, timeout: float) -> "Observation":
        """Return the observed state of one resource."""

    def apply(self, action: "Action", *, timeout: float) -> None:
        """Apply one action. Raise BackendFailure (or TimeoutFailure) on failure."""


@contextmanager
def command_failures() -> Iterator[None]:
    """Translate command runner errors into backend failures."""
    try:
        yield
    except CommandTimeout as e:
        raise TimeoutFailure(str(e)) from e
    except CommandError as e:
        raise BackendFailure(e.result.stderr.strip() or str(e)) from e
    except FileNotFoundError as e:
        # The tool itself is not installed.
        raise BackendFailure(f"command not found: {e.filename}") from e


class BackendRegistry:
    """Map (kind, provider) pairs to backends."""

    def __init__(self) -> None:
        self._backends: Dict[Tuple[ResourceKind, str], Backend] = {}

    def register(self, kind: ResourceKind, provider: str, backend: Backend) -> "BackendRegistry":
        kind = ResourceKind(kind)
        if kind not in tuple(getattr(backend, "kinds", ())):
            raise BackendConfigError(f"backend {backend.name} does not handle {kind.value} resources")
        self._backends[(kind, provider)] = backend
        return self

    def backends(self) -> List[Backend]:
        unique: Dict[int, Backend] = {}
        for b in self._backends.values():
            unique.setdefault(id(b), b)
        return list(unique.values())

    def for_resource(self, resource: Resource) -> Backend:
        try:
            return self._backends[(resource.kind, resource.provider)]
        except KeyError:
            raise BackendConfigError(
                f"no backend for {resource.kind.value} provider {resource.provider!r} ({resource.identifier})"
            ) from None

    def require_read_only_queries(self) -> None:
        offenders = [b.name for b in self.backends() if getattr(b, "read_only_query", False) is not True]
        if offenders:
            raise BackendConfigError(
                "backends cannot guarantee read-only inspection: " + ", ".join(sorted(offenders))
            )

    def validate(self, resources: Sequence[Resource]) -> None:
        """Fail before any backend call if some resource has no backend."""
        missing = [
            f"{r.kind.value} {r.identifier!r}: no backend for provider {r.provider!r}"
            for r in resources
            if (r.kind, r.provider) not in self._backends
        ]
        if missing:
            raise ValidationError(missing)
