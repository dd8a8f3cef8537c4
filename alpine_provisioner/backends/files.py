from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from pathlib import Path

from ..errors import BackendFailure
from ..inspector import Observation
from ..planner import Action, ActionType
from ..resources import Resource, ResourceKind, file_mode

logger = logging.getLogger(__name__)


class FileBackend:
    """Whole-file content under a target root, compared by sha256."""

    name = "file"
    kinds = (ResourceKind.file,)
    read_only_query = True

    def __init__(self, *, root: str = "/") -> None:
        self._root = Path(root)

    def path_for(self, resource: Resource) -> Path:
        return self._root / resource.identifier.lstrip("/")

    def query(self, resource: Resource, *, timeout: float) -> Observation:
        p = self.path_for(resource)
        if not p.exists():
            return Observation.of(resource, None)
        if not p.is_file():
            raise BackendFailure(f"{p} exists and is not a regular file")
        digest = hashlib.sha256(p.read_bytes()).hexdigest()
        return Observation.of(resource, "sha256:" + digest)

    def apply(self, action: Action, *, timeout: float) -> None:
        p = self.path_for(action.resource)
        if action.type is ActionType.remove:
            p.unlink(missing_ok=True)
            logger.info("Removed %s", p)
            return
        if action.type is not ActionType.write:
            raise BackendFailure(f"cannot {action.type.value} a file")

        content = action.resource.option("content")
        if content is None:
            raise BackendFailure(f"no content declared for {action.resource.identifier}")
        try:
            mode = file_mode(action.resource.option("mode"))
        except ValueError as e:
            raise BackendFailure(str(e)) from e

        p.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=str(p.parent), prefix=f".{p.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                f.write(str(content))
            os.chmod(tmp, mode)
            os.replace(tmp, p)
        except OSError:
            Path(tmp).unlink(missing_ok=True)
            raise
        logger.info("Wrote %s", p)
