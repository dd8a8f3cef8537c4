from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .logging_utils import DEFAULT_LOG_PATH


@dataclass(frozen=True)
class ProvisionerConfig:
    """Settings for a run, read from an optional YAML file.

    Every property has a default so an empty mapping is a valid config.
    """

    raw: Dict[str, Any] = field(default_factory=dict)

    def _section(self, name: str) -> Dict[str, Any]:
        return self.raw.get(name) or {}

    @property
    def root(self) -> str:
        return str(self.raw.get("root") or "/")

    @property
    def log_path(self) -> str:
        return str(self.raw.get("log_path") or DEFAULT_LOG_PATH)

    @property
    def concurrency(self) -> int:
        return max(1, int(self._section("execution").get("concurrency") or 1))

    @property
    def timeout(self) -> float:
        return float(self._section("execution").get("timeout") or 300.0)

    @property
    def query_timeout(self) -> float:
        return float(self._section("execution").get("query_timeout") or 60.0)

    @property
    def stop_on_first_failure(self) -> bool:
        return bool(self._section("execution").get("stop_on_first_failure", False))

    @property
    def flatpak_remote(self) -> str:
        return str(self._section("flatpak").get("remote") or "flathub")

    def binary(self, name: str) -> str:
        """Path of an external tool, overridable under `binaries:`."""
        return str(self._section("binaries").get(name) or name)


def load_config(path: Optional[str]) -> ProvisionerConfig:
    if path is None:
        return ProvisionerConfig()

    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(path)

    if p.suffix.lower() not in {".yaml", ".yml"}:
        raise ValueError("provisioner config must be YAML")

    raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError("provisioner config must contain a mapping/object")

    return ProvisionerConfig(raw=raw)
