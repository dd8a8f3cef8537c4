from __future__ import annotations

import logging

from ..errors import BackendFailure
from ..inspector import Observation
from ..lib.command import run_cmd
from ..planner import Action, ActionType
from ..resources import Resource, ResourceKind
from .base import command_failures

logger = logging.getLogger(__name__)


def _enabled_in(service: str, listing: str) -> bool:
    """`rc-update show <runlevel>` prints lines like ``   sshd | default``."""
    for line in listing.splitlines():
        name = line.split("|", 1)[0].strip()
        if name == service:
            return True
    return False


class OpenRCBackend:
    """OpenRC services: enabled means present in the resource's runlevel.

    Options: `runlevel` (default "default"), `start` (also start on enable).
    """

    name = "openrc"
    kinds = (ResourceKind.service,)
    read_only_query = True

    def __init__(self, *, rc_update: str = "rc-update", rc_service: str = "rc-service") -> None:
        self._rc_update = rc_update
        self._rc_service = rc_service

    def query(self, resource: Resource, *, timeout: float) -> Observation:
        runlevel = str(resource.option("runlevel") or "default")
        with command_failures():
            r = run_cmd([self._rc_update, "show", runlevel], timeout=timeout)
        return Observation.of(resource, _enabled_in(resource.identifier, r.stdout))

    def apply(self, action: Action, *, timeout: float) -> None:
        res = action.resource
        runlevel = str(res.option("runlevel") or "default")
        if action.type is ActionType.enable:
            with command_failures():
                run_cmd([self._rc_update, "add", res.identifier, runlevel], timeout=timeout)
                if res.option("start", False):
                    run_cmd([self._rc_service, res.identifier, "start"], timeout=timeout)
        elif action.type is ActionType.disable:
            with command_failures():
                run_cmd([self._rc_update, "del", res.identifier, runlevel], timeout=timeout)
        else:
            raise BackendFailure(f"cannot {action.type.value} a service")
        logger.info("service %s %sd in runlevel %s", res.identifier, action.type.value, runlevel)
