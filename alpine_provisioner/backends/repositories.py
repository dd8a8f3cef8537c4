from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import List

from ..errors import BackendFailure
from ..inspector import Observation
from ..lib.command import run_cmd
from ..planner import Action, ActionType
from ..resources import Resource, ResourceKind
from .base import command_failures

logger = logging.getLogger(__name__)

REPOSITORIES_FILE = "etc/apk/repositories"


def _is_active(line: str, url: str) -> bool:
    return line.strip() == url


def _is_commented(line: str, url: str) -> bool:
    s = line.strip()
    return s.startswith("#") and s.lstrip("#").strip() == url


class ApkRepositoryBackend:
    """apk repository lines in <root>/etc/apk/repositories.

    The identifier names the repository (e.g. "community"); the `url` option is
    the exact repository line. Enabling uncomments an existing line or appends
    one; disabling comments it out so the line stays visible to operators.
    After a change, `apk update` refreshes the index unless `update: false`.
    """

    name = "apk-repositories"
    kinds = (ResourceKind.repository,)
    read_only_query = True

    def __init__(self, *, root: str = "/", apk_binary: str = "apk") -> None:
        self._path = Path(root) / REPOSITORIES_FILE
        self._root = root
        self._apk = apk_binary

    def _read_lines(self) -> List[str]:
        if not self._path.exists():
            return []
        return self._path.read_text(encoding="utf-8").splitlines()

    def _url(self, resource: Resource) -> str:
        url = str(resource.option("url") or "").strip()
        if not url:
            raise BackendFailure(f"repository {resource.identifier!r} has no url")
        return url

    def query(self, resource: Resource, *, timeout: float) -> Observation:
        url = self._url(resource)
        lines = self._read_lines()
        return Observation.of(resource, any(_is_active(line, url) for line in lines))

    def apply(self, action: Action, *, timeout: float) -> None:
        url = self._url(action.resource)
        lines = self._read_lines()

        if action.type is ActionType.enable:
            if any(_is_commented(line, url) for line in lines):
                lines = [url if _is_commented(line, url) else line for line in lines]
            elif not any(_is_active(line, url) for line in lines):
                lines.append(url)
        elif action.type is ActionType.disable:
            lines = ["#" + line.strip() if _is_active(line, url) else line for line in lines]
        else:
            raise BackendFailure(f"cannot {action.type.value} an apk repository")

        self._write_lines(lines)
        logger.info("apk repository %s %sd (%s)", action.resource.identifier, action.type.value, url)

        if action.resource.option("update", True):
            argv = [self._apk]
            if self._root not in ("", "/"):
                argv += ["--root", self._root]
            with command_failures():
                run_cmd([*argv, "update"], timeout=timeout)

    def _write_lines(self, lines: List[str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=str(self._path.parent), prefix=".repositories.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write("\n".join(lines) + "\n")
            os.replace(tmp, self._path)
        except OSError:
            Path(tmp).unlink(missing_ok=True)
            raise
