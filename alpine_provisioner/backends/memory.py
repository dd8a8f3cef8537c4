"""
In memory backend.

Used for tests and local simulations. It behaves like a tiny machine whose
state is a dict keyed by resource key ("package:git" -> "2.43.0-r0").

Features
- Serves every kind, so one instance can back a whole registry
- Applies actions into internal state, so a second run sees the result
- Can inject apply failures, timeouts, query errors and delays
- Records apply calls and peak parallelism for assertions
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Set, Tuple

from ..errors import BackendFailure, TimeoutFailure
from ..inspector import Observation
from ..planner import Action, ActionType
from ..resources import Resource, ResourceKind, firewall_default_direction


@dataclass
class InMemoryBackend:
    """
    state
    Resource key to observed value. Missing keys read as "absent"/"disabled".

    upgradable
    Resource keys whose package has a newer version available.

    fail
    Resource keys whose apply raises BackendFailure(reason).

    time_out
    Resource keys whose apply raises TimeoutFailure.

    unknown
    Resource keys whose query raises BackendFailure (inspected as Unknown).

    delay
    Seconds each apply sleeps, to exercise concurrency.
    """

    state: Dict[str, Any] = field(default_factory=dict)
    upgradable: Set[str] = field(default_factory=set)
    fail: Dict[str, str] = field(default_factory=dict)
    time_out: Set[str] = field(default_factory=set)
    unknown: Set[str] = field(default_factory=set)
    delay: float = 0.0
    name: str = "memory"
    kinds: Tuple[ResourceKind, ...] = tuple(ResourceKind)
    read_only_query: bool = True

    applied: List[str] = field(default_factory=list)
    events: List[str] = field(default_factory=list)
    queries: int = 0
    peak_parallel: int = 0
    _running: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def query(self, resource: Resource, *, timeout: float) -> Observation:
        with self._lock:
            self.queries += 1
        key = resource.key
        if key in self.unknown:
            raise BackendFailure(f"cannot determine state of {key}")

        value = self.state.get(key)
        kind = resource.kind
        if kind in (ResourceKind.service, ResourceKind.repository):
            value = bool(value)
        elif kind is ResourceKind.firewall_rule and firewall_default_direction(resource.identifier) is None:
            value = bool(value)
        return Observation.of(resource, value, upgradable=key in self.upgradable)

    def apply(self, action: Action, *, timeout: float) -> None:
        key = action.key
        with self._lock:
            self._running += 1
            self.peak_parallel = max(self.peak_parallel, self._running)
            self.events.append(f"start {key}")
        try:
            if self.delay:
                time.sleep(self.delay)
            if key in self.time_out:
                raise TimeoutFailure(f"{key} timed out after {timeout:g}s")
            if key in self.fail:
                raise BackendFailure(self.fail[key])
            self._mutate(action)
            with self._lock:
                self.applied.append(action.idempotency_key)
        finally:
            with self._lock:
                self._running -= 1
                self.events.append(f"end {key}")

    def _mutate(self, action: Action) -> None:
        key = action.key
        t = action.type
        with self._lock:
            if t in (ActionType.install, ActionType.upgrade):
                target = action.target
                version = action.resource.option("version")
                if version is None:
                    version = "1.0-r0" if target in ("present", "latest") else target.lstrip("=<>~")
                self.state[key] = version
                self.upgradable.discard(key)
            elif t is ActionType.remove:
                self.state.pop(key, None)
            elif t is ActionType.enable:
                self.state[key] = True
            elif t is ActionType.disable:
                self.state[key] = False
            elif t is ActionType.write:
                self.state[key] = action.target
            else:
                raise BackendFailure(f"nothing to apply for {t.value}")
