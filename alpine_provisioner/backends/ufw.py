from __future__ import annotations

import logging
import re
from typing import Dict, List

from ..errors import BackendFailure
from ..inspector import Observation
from ..lib.command import run_cmd
from ..planner import Action, ActionType
from ..resources import Resource, ResourceKind, firewall_default_direction
from .base import command_failures

logger = logging.getLogger(__name__)

# "Default: deny (incoming), allow (outgoing), disabled (routed)"
_DEFAULT_RE = re.compile(r"(\w+) \((incoming|outgoing|routed)\)")


def parse_defaults(status_verbose: str) -> Dict[str, str]:
    for line in status_verbose.splitlines():
        if line.strip().lower().startswith("default:"):
            return {direction: policy for policy, direction in _DEFAULT_RE.findall(line)}
    return {}


def parse_added_rules(show_added: str) -> List[str]:
    """`ufw show added` prints one ``ufw <rule>`` line per rule."""
    rules: List[str] = []
    for line in show_added.splitlines():
        s = line.strip()
        if s.startswith("ufw "):
            rules.append(" ".join(s.split()[1:]))
    return rules


class UfwBackend:
    """Firewall defaults and rules through ufw.

    Identifiers are either ``default <direction>`` (desired: allow|deny|reject)
    or a rule spec as typed after ``ufw`` (e.g. ``allow 22/tcp``).
    """

    name = "ufw"
    kinds = (ResourceKind.firewall_rule,)
    read_only_query = True

    def __init__(self, *, binary: str = "ufw") -> None:
        self._binary = binary

    def query(self, resource: Resource, *, timeout: float) -> Observation:
        direction = firewall_default_direction(resource.identifier)
        if direction is not None:
            with command_failures():
                r = run_cmd([self._binary, "status", "verbose"], timeout=timeout)
            defaults = parse_defaults(r.stdout)
            if direction not in defaults:
                # Inactive ufw prints no defaults; let the planner converge.
                return Observation.unknown(resource, "ufw reported no default policy")
            return Observation.of(resource, defaults[direction])

        with command_failures():
            r = run_cmd([self._binary, "show", "added"], timeout=timeout)
        wanted = " ".join(resource.identifier.split())
        return Observation.of(resource, wanted in parse_added_rules(r.stdout))

    def apply(self, action: Action, *, timeout: float) -> None:
        res = action.resource
        direction = firewall_default_direction(res.identifier)
        rule = res.identifier.split()

        if action.type is ActionType.write and direction is not None:
            argv = [self._binary, "default", action.target, direction]
        elif action.type is ActionType.enable and direction is None:
            argv = [self._binary, *rule]
        elif action.type is ActionType.disable and direction is None:
            argv = [self._binary, "delete", *rule]
        else:
            raise BackendFailure(f"ufw cannot {action.type.value} {res.identifier!r}")

        with command_failures():
            run_cmd(argv, timeout=timeout)
        logger.info("ufw %s %s done", action.type.value, res.identifier)
