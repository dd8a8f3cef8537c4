from __future__ import annotations

import logging
from typing import Dict

from ..errors import BackendFailure
from ..inspector import Observation
from ..lib.command import run_cmd
from ..planner import Action, ActionType
from ..resources import Resource, ResourceKind
from .base import command_failures

logger = logging.getLogger(__name__)


def _columns(stdout: str) -> Dict[str, str]:
    """Parse two-column, tab-separated flatpak output into a dict."""
    out: Dict[str, str] = {}
    for line in stdout.splitlines():
        parts = line.split("\t")
        if parts and parts[0].strip():
            out[parts[0].strip()] = parts[1].strip() if len(parts) > 1 else ""
    return out


class FlatpakBackend:
    """Flatpak applications (package kind) and remotes (repository kind).

    Applications install system-wide from `remote` unless the resource sets its
    own `remote` option. Remotes use the identifier as the remote name and the
    `url` option as the .flatpakrepo location.
    """

    name = "flatpak"
    kinds = (ResourceKind.package, ResourceKind.repository)
    read_only_query = True

    def __init__(self, *, remote: str = "flathub", binary: str = "flatpak") -> None:
        self._remote = remote
        self._binary = binary

    def query(self, resource: Resource, *, timeout: float) -> Observation:
        if resource.kind is ResourceKind.package:
            with command_failures():
                r = run_cmd(
                    [self._binary, "list", "--app", "--columns=application,version"],
                    timeout=timeout,
                )
            apps = _columns(r.stdout)
            if resource.identifier not in apps:
                return Observation.of(resource, None)
            upgradable = False
            if resource.desired == "latest":
                with command_failures():
                    u = run_cmd(
                        [self._binary, "remote-ls", "--updates", "--app", "--columns=application"],
                        timeout=timeout,
                    )
                upgradable = resource.identifier in _columns(u.stdout)
            # Apps without a version string are still installed.
            return Observation.of(resource, apps[resource.identifier] or "installed", upgradable=upgradable)

        if resource.kind is ResourceKind.repository:
            with command_failures():
                r = run_cmd([self._binary, "remotes", "--columns=name,url"], timeout=timeout)
            return Observation.of(resource, resource.identifier in _columns(r.stdout))

        raise BackendFailure(f"flatpak cannot inspect {resource.kind.value} resources")

    def apply(self, action: Action, *, timeout: float) -> None:
        res = action.resource
        t = action.type
        if res.kind is ResourceKind.package:
            remote = str(res.option("remote") or self._remote)
            if t is ActionType.install:
                argv = [self._binary, "install", "-y", "--noninteractive", remote, res.identifier]
            elif t is ActionType.upgrade:
                argv = [self._binary, "update", "-y", "--noninteractive", res.identifier]
            elif t is ActionType.remove:
                argv = [self._binary, "uninstall", "-y", "--noninteractive", res.identifier]
            else:
                raise BackendFailure(f"flatpak cannot {t.value} an application")
        elif res.kind is ResourceKind.repository:
            if t is ActionType.enable:
                argv = [self._binary, "remote-add", "--if-not-exists", res.identifier, str(res.option("url"))]
            elif t is ActionType.disable:
                argv = [self._binary, "remote-delete", "--force", res.identifier]
            else:
                raise BackendFailure(f"flatpak cannot {t.value} a remote")
        else:
            raise BackendFailure(f"flatpak cannot apply to {res.kind.value} resources")

        with command_failures():
            run_cmd(argv, timeout=timeout)
        logger.info("flatpak %s %s done", t.value, res.identifier)
