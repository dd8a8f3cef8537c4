"""Deterministic plan builder.

Diffs declared Resources against Observations and emits exactly one Action per
resource, no-ops included, in dependency order. For a fixed declaration set and
fixed observations the output is always the same: independent resources keep
their declaration order.

Unknown observations never produce a no-op. They push toward convergence:
packages install, files write, toggles move to the desired side.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Mapping, Sequence, Tuple

from .errors import PlanError
from .graph import kahn_order
from .inspector import Observation
from .resources import Resource, ResourceKind, firewall_default_direction
from .versions import satisfies

logger = logging.getLogger(__name__)


class ActionType(str, Enum):
    noop = "no-op"
    install = "install"
    upgrade = "upgrade"
    remove = "remove"
    enable = "enable"
    disable = "disable"
    write = "write"


@dataclass(frozen=True)
class Action:
    type: ActionType
    resource: Resource
    target: str
    reason: str = ""

    @property
    def key(self) -> str:
        return self.resource.key

    @property
    def depends_on(self) -> Tuple[str, ...]:
        return self.resource.depends_on

    @property
    def idempotency_key(self) -> str:
        return f"{self.resource.kind.value}:{self.resource.identifier}:{self.target}"

    @property
    def is_noop(self) -> bool:
        return self.type is ActionType.noop

    def describe(self) -> str:
        return f"{self.type.value} {self.resource.kind.value} {self.resource.identifier}"


@dataclass(frozen=True)
class Plan:
    actions: Tuple[Action, ...]

    @property
    def changes(self) -> Tuple[Action, ...]:
        return tuple(a for a in self.actions if not a.is_noop)

    @property
    def is_noop(self) -> bool:
        return not self.changes

    def keys(self) -> List[str]:
        return [a.key for a in self.actions]


def _toggle(desired: str, observed: bool, on: str = "enabled") -> Tuple[ActionType, str]:
    want = desired == on
    if observed == want:
        return ActionType.noop, "already " + desired
    if want:
        return ActionType.enable, "off -> on"
    return ActionType.disable, "on -> off"


def _package_action(resource: Resource, obs: Observation) -> Tuple[ActionType, str]:
    desired = resource.desired
    if not obs.known:
        if desired == "absent":
            return ActionType.remove, f"unknown -> absent ({obs.detail})"
        return ActionType.install, f"unknown -> {desired} ({obs.detail})"

    installed = obs.value
    if desired == "absent":
        if installed is None:
            return ActionType.noop, "already absent"
        return ActionType.remove, f"{installed} -> absent"
    if installed is None:
        return ActionType.install, f"absent -> {desired}"
    if desired == "present":
        return ActionType.noop, f"installed {installed}"
    if desired == "latest":
        if obs.upgradable:
            return ActionType.upgrade, f"{installed} -> latest"
        return ActionType.noop, f"{installed} is latest"
    try:
        ok = satisfies(str(installed), desired)
    except ValueError:
        # Unparseable installed version: converge on the declared constraint.
        ok = False
    if ok:
        return ActionType.noop, f"{installed} satisfies {desired}"
    return ActionType.upgrade, f"{installed} -> {desired}"


def _file_action(resource: Resource, obs: Observation) -> Tuple[ActionType, str]:
    if resource.desired == "absent":
        if obs.known and obs.value is None:
            return ActionType.noop, "already absent"
        return ActionType.remove, "present -> absent" if obs.known else f"unknown -> absent ({obs.detail})"
    if not obs.known:
        return ActionType.write, f"unknown -> {resource.desired[:15]} ({obs.detail})"
    if obs.value == resource.desired:
        return ActionType.noop, "content matches"
    if obs.value is None:
        return ActionType.write, "missing -> written"
    return ActionType.write, "content differs"


def _firewall_action(resource: Resource, obs: Observation) -> Tuple[ActionType, str]:
    if firewall_default_direction(resource.identifier) is not None:
        if obs.known and obs.value == resource.desired:
            return ActionType.noop, "already " + resource.desired
        current = obs.value if obs.known else "unknown"
        return ActionType.write, f"{current} -> {resource.desired}"
    if not obs.known:
        if resource.desired == "present":
            return ActionType.enable, f"unknown -> present ({obs.detail})"
        return ActionType.disable, f"unknown -> absent ({obs.detail})"
    return _toggle(resource.desired, bool(obs.value), on="present")


def classify(resource: Resource, obs: Observation) -> Tuple[ActionType, str]:
    """Derive the action type (and a short transition text) for one resource."""
    kind = resource.kind
    if kind is ResourceKind.package:
        return _package_action(resource, obs)
    if kind is ResourceKind.file:
        return _file_action(resource, obs)
    if kind is ResourceKind.firewall_rule:
        return _firewall_action(resource, obs)

    # service, repository
    if not obs.known:
        if resource.desired == "enabled":
            return ActionType.enable, f"unknown -> enabled ({obs.detail})"
        return ActionType.disable, f"unknown -> disabled ({obs.detail})"
    return _toggle(resource.desired, bool(obs.value))


def build_plan(resources: Sequence[Resource], observations: Mapping[str, Observation]) -> Plan:
    """Build the plan for one run.

    Raises PlanError when a dependency cycle or a dangling reference is found.
    Model loading rejects both already; this check stays so a hand-built
    resource list can never yield an arbitrary order.
    """

    actions: Dict[str, Action] = {}
    seen_idempotency: Dict[str, str] = {}
    order_keys: List[str] = []

    for resource in sorted(resources, key=lambda r: r.index):
        obs = observations.get(resource.key)
        if obs is None:
            obs = Observation.unknown(resource, "not inspected")
        action_type, reason = classify(resource, obs)
        action = Action(type=action_type, resource=resource, target=resource.desired, reason=reason)

        if action.idempotency_key in seen_idempotency or resource.key in actions:
            logger.debug("Dropping duplicate action %s", action.idempotency_key)
            continue
        seen_idempotency[action.idempotency_key] = resource.key
        actions[resource.key] = action
        order_keys.append(resource.key)

    dangling = [
        f"{key} -> {dep}" for key in order_keys for dep in actions[key].depends_on if dep not in actions
    ]
    if dangling:
        raise PlanError("dependencies outside the plan: " + ", ".join(dangling))

    ordered, stuck = kahn_order(order_keys, {k: actions[k].depends_on for k in order_keys})
    if stuck:
        raise PlanError("dependency cycle between: " + ", ".join(stuck))

    plan = Plan(actions=tuple(actions[k] for k in ordered))
    logger.info("Plan built: %d action(s), %d change(s)", len(plan.actions), len(plan.changes))
    for a in plan.changes:
        logger.info("  %s (%s)", a.describe(), a.reason)
    return plan

