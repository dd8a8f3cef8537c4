from __future__ import annotations

import logging
from typing import List, Optional

from ..errors import BackendFailure
from ..inspector import Observation
from ..lib.command import run_cmd
from ..planner import Action, ActionType
from ..resources import PACKAGE_STATES, Resource, ResourceKind
from .base import command_failures

logger = logging.getLogger(__name__)


def _installed_version(name: str, listing: str) -> Optional[str]:
    """Pick the version of `name` out of `apk list` output.

    Lines look like: ``git-2.43.0-r0 x86_64 {git} (GPL-2.0-only) [installed]``.
    The package name is matched exactly so `git` does not match `git-lfs`.
    """

    prefix = name + "-"
    for line in listing.splitlines():
        token = line.split(" ", 1)[0].strip()
        if not token.startswith(prefix):
            continue
        version = token[len(prefix):]
        # Version always starts with a digit; `git-lfs-3.4` would leave `lfs-3.4`.
        if version[:1].isdigit():
            return version
    return None


def package_spec(name: str, desired: str) -> str:
    """`git` + `>=2.40` -> `git>=2.40`. Plain states install by name."""
    if desired in PACKAGE_STATES:
        return name
    return name + desired


class ApkBackend:
    """Alpine packages through apk.

    root
    Target root; anything but "/" is passed as --root so a mounted system
    can be provisioned from the outside.
    """

    name = "apk"
    kinds = (ResourceKind.package,)
    read_only_query = True

    def __init__(self, *, root: str = "/", binary: str = "apk") -> None:
        self._root = root
        self._binary = binary

    def _argv(self, *args: str) -> List[str]:
        argv = [self._binary]
        if self._root not in ("", "/"):
            argv += ["--root", self._root]
        return [*argv, *args]

    def query(self, resource: Resource, *, timeout: float) -> Observation:
        if resource.kind is not ResourceKind.package:
            raise BackendFailure(f"apk cannot inspect {resource.kind.value} resources")

        name = resource.identifier
        with command_failures():
            listed = run_cmd(self._argv("list", "--installed", name), timeout=timeout)
        version = _installed_version(name, listed.stdout)

        upgradable = False
        if version is not None and resource.desired == "latest":
            with command_failures():
                upg = run_cmd(self._argv("list", "--upgradable", name), timeout=timeout)
            upgradable = _installed_version(name, upg.stdout) is not None

        return Observation.of(resource, version, upgradable=upgradable)

    def apply(self, action: Action, *, timeout: float) -> None:
        name = action.resource.identifier
        if action.type is ActionType.install:
            argv = self._argv("add", "--no-cache", package_spec(name, action.target))
        elif action.type is ActionType.upgrade:
            argv = self._argv("add", "--no-cache", "--upgrade", package_spec(name, action.target))
        elif action.type is ActionType.remove:
            argv = self._argv("del", name)
        else:
            raise BackendFailure(f"apk cannot {action.type.value} a package")

        with command_failures():
            run_cmd(argv, timeout=timeout)
        logger.info("apk %s %s done", action.type.value, name)
