"""State inspection.

Reads the current value of each resource through its backend. Inspection is
strictly read-only, and a backend that cannot tell gives an explicit Unknown
rather than a guess. The planner treats Unknown as "not converged".
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Sequence

from .errors import BackendFailure, TimeoutFailure
from .resources import Resource, ResourceKind

if TYPE_CHECKING:
    from .backends.base import BackendRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Observation:
    """Snapshot of one resource at plan time. Never mutated after capture.

    value by kind:
      package        installed version string, or None when absent
      service        True when enabled in the runlevel
      repository     True when enabled
      file           sha256:<hex> of the current content, or None when missing
      firewall-rule  True/False for rules, the policy string for defaults
    """

    kind: ResourceKind
    identifier: str
    value: Any = None
    known: bool = True
    detail: str = ""
    upgradable: bool = False

    @classmethod
    def of(cls, resource: Resource, value: Any, *, upgradable: bool = False, detail: str = "") -> "Observation":
        return cls(
            kind=resource.kind,
            identifier=resource.identifier,
            value=value,
            upgradable=upgradable,
            detail=detail,
        )

    @classmethod
    def unknown(cls, resource: Resource, detail: str) -> "Observation":
        return cls(kind=resource.kind, identifier=resource.identifier, known=False, detail=detail)


class StateInspector:
    """Query backends for the observed state of resources."""

    def __init__(
        self,
        registry: "BackendRegistry",
        *,
        timeout: float = 60.0,
        concurrency: int = 1,
    ) -> None:
        registry.require_read_only_queries()
        self._registry = registry
        self._timeout = timeout
        self._concurrency = max(1, concurrency)

    def inspect(self, resource: Resource) -> Observation:
        backend = self._registry.for_resource(resource)
        try:
            obs = backend.query(resource, timeout=self._timeout)
        except TimeoutFailure as e:
            logger.warning("Inspect %s timed out: %s", resource.key, e.reason)
            return Observation.unknown(resource, f"timeout: {e.reason}")
        except (BackendFailure, OSError) as e:
            logger.warning("Inspect %s failed: %s", resource.key, e)
            return Observation.unknown(resource, str(e))

        if not isinstance(obs, Observation) or obs.identifier != resource.identifier or obs.kind != resource.kind:
            logger.warning("Backend %s returned an unusable observation for %s", backend.name, resource.key)
            return Observation.unknown(resource, "backend returned an unusable observation")

        logger.debug("Observed %s = %r (known=%s)", resource.key, obs.value, obs.known)
        return obs

    def inspect_all(self, resources: Sequence[Resource]) -> Dict[str, Observation]:
        """Inspect every resource, `concurrency` at a time. Keyed by resource key, in input order."""
        if self._concurrency == 1 or len(resources) <= 1:
            return {r.key: self.inspect(r) for r in resources}

        with ThreadPoolExecutor(max_workers=self._concurrency) as pool:
            observed = list(pool.map(self.inspect, resources))
        return {r.key: o for r, o in zip(resources, observed)}
