from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List

import yaml

from .errors import ValidationError

logger = logging.getLogger(__name__)


def _detect_format(path: Path) -> str:
    ext = path.suffix.lower().lstrip(".")
    if ext in {"json", "yaml", "yml"}:
        return ext
    # Default to YAML for unknown extensions; YAML is a superset of JSON.
    return "yaml"


def read_document(path: str) -> Dict[str, Any]:
    p = Path(path)
    if not p.exists():
        raise ValidationError([f"declaration file not found: {path}"])

    text = p.read_text(encoding="utf-8")
    try:
        if _detect_format(p) == "json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text) or {}
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ValidationError([f"{path}: cannot parse: {e}"]) from e

    if not isinstance(data, dict):
        raise ValidationError([f"{path}: document must be a mapping/dict, got {type(data).__name__}"])
    return data


def expand_document(data: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Flatten `groups:` and `resources:` into a single declaration list.

    Groups come first, in document order, then the individual resources. Each
    group item becomes one declaration carrying the group's shared keys and
    options; an item may itself be a mapping that overrides them.
    """

    problems: List[str] = []
    out: List[Dict[str, Any]] = []

    groups = data.get("groups") or []
    if not isinstance(groups, list):
        problems.append("groups must be a list")
        groups = []

    for gidx, group in enumerate(groups):
        if not isinstance(group, dict):
            problems.append(f"group #{gidx + 1}: must be a mapping")
            continue
        name = group.get("name") or f"#{gidx + 1}"
        items = group.get("items") or []
        if not isinstance(items, list):
            problems.append(f"group {name}: items must be a list")
            continue

        shared = {k: v for k, v in group.items() if k not in {"name", "items"}}
        for item in items:
            decl = dict(shared)
            if isinstance(item, dict):
                decl.update(item)
            else:
                decl["identifier"] = str(item)
            out.append(decl)

    resources = data.get("resources") or []
    if not isinstance(resources, list):
        problems.append("resources must be a list")
        resources = []
    out.extend(resources)

    if problems:
        raise ValidationError(problems)
    return out


def load_declarations(path: str) -> List[Dict[str, Any]]:
    data = read_document(path)
    decls = expand_document(data)
    logger.info("Loaded %d declaration(s) from %s", len(decls), path)
    return decls
