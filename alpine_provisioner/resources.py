"""Resource model: typed descriptions of desired state.

A Resource says what a part of the machine should look like, never how to get
there. Backends and the planner decide the how.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .errors import ValidationError
from .graph import kahn_order
from .versions import is_constraint


class ResourceKind(str, Enum):
    package = "package"
    service = "service"
    repository = "repository"
    file = "file"
    firewall_rule = "firewall-rule"


DEFAULT_PROVIDERS: Dict[ResourceKind, str] = {
    ResourceKind.package: "apk",
    ResourceKind.service: "openrc",
    ResourceKind.repository: "apk",
    ResourceKind.file: "file",
    ResourceKind.firewall_rule: "ufw",
}

PACKAGE_STATES = ("present", "absent", "latest")
TOGGLE_STATES = ("enabled", "disabled")
RULE_STATES = ("present", "absent")
FIREWALL_POLICIES = ("allow", "deny", "reject")
FIREWALL_DIRECTIONS = ("incoming", "outgoing", "routed")

DEFAULT_FILE_MODE = 0o644

_HASH_RE = re.compile(r"^sha256:[0-9a-f]{64}$")

# Declaration keys with a meaning of their own; anything else becomes an option.
_RESERVED_KEYS = {"kind", "identifier", "desired", "depends_on", "provider", "optional", "description", "content"}


@dataclass(frozen=True)
class Resource:
    kind: ResourceKind
    identifier: str
    desired: str
    depends_on: Tuple[str, ...] = ()
    provider: str = ""
    options: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    optional: bool = False
    description: str = ""
    index: int = 0

    @property
    def key(self) -> str:
        return resource_key(self.kind, self.identifier)

    def option(self, name: str, default: Any = None) -> Any:
        return self.options.get(name, default)


def resource_key(kind: Union[ResourceKind, str], identifier: str) -> str:
    return f"{ResourceKind(kind).value}:{identifier}"


def content_hash(content: str) -> str:
    return "sha256:" + hashlib.sha256(content.encode("utf-8")).hexdigest()


def firewall_default_direction(identifier: str) -> Optional[str]:
    """Return the direction for `default <direction>` identifiers, else None."""
    parts = identifier.split()
    if len(parts) == 2 and parts[0] == "default":
        return parts[1]
    return None


def file_mode(value: Any) -> int:
    """Parse a file `mode` option into permission bits.

    Strings and ints are both read as octal digits, so an unquoted YAML
    `mode: 644` means 0o644. Raises ValueError for anything else.
    """

    if value is None:
        return DEFAULT_FILE_MODE
    if isinstance(value, bool):
        raise ValueError(f"invalid file mode {value!r}")
    text = str(value).strip()
    if text.lower().startswith("0o"):
        text = text[2:]
    try:
        mode = int(text, 8)
    except ValueError:
        raise ValueError(f"invalid file mode {value!r}") from None
    if not 0 <= mode <= 0o7777:
        raise ValueError(f"file mode {value!r} out of range")
    return mode


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value]


def _normalize_desired(kind: ResourceKind, raw: Dict[str, Any]) -> Any:
    desired = raw.get("desired")
    if kind is ResourceKind.file and desired is None and "content" in raw:
        return content_hash(str(raw["content"]))
    if isinstance(desired, bool):
        if kind in (ResourceKind.service, ResourceKind.repository):
            return "enabled" if desired else "disabled"
        return "present" if desired else "absent"
    if desired is None and kind is ResourceKind.package:
        return "present"
    return desired


def _check_desired(kind: ResourceKind, identifier: str, desired: Any, raw: Dict[str, Any]) -> List[str]:
    where = f"{kind.value} {identifier!r}"
    if not isinstance(desired, str) or not desired:
        return [f"{where}: desired value missing"]

    if kind is ResourceKind.package:
        if desired not in PACKAGE_STATES and not is_constraint(desired):
            return [f"{where}: desired must be present, absent, latest or a version constraint, got {desired!r}"]
    elif kind is ResourceKind.service:
        if desired not in TOGGLE_STATES:
            return [f"{where}: desired must be enabled or disabled, got {desired!r}"]
    elif kind is ResourceKind.repository:
        if desired not in TOGGLE_STATES:
            return [f"{where}: desired must be enabled or disabled, got {desired!r}"]
        provider = raw.get("provider") or DEFAULT_PROVIDERS[kind]
        if provider == "apk" and not raw.get("url"):
            # apk repositories are found by their url line, enabled or not.
            return [f"{where}: url is required for an apk repository"]
        if desired == "enabled" and not raw.get("url"):
            return [f"{where}: url is required to enable a repository"]
    elif kind is ResourceKind.file:
        if not identifier.startswith("/"):
            return [f"{where}: file identifiers must be absolute paths"]
        if desired != "absent" and not _HASH_RE.match(desired):
            return [f"{where}: desired must be sha256:<hex> or absent, got {desired!r}"]
        if desired != "absent" and "content" not in raw:
            return [f"{where}: content is required to write a file"]
        if "content" in raw and desired != content_hash(str(raw["content"])):
            return [f"{where}: desired hash does not match content"]
        if "mode" in raw:
            try:
                file_mode(raw["mode"])
            except ValueError as e:
                return [f"{where}: {e}"]
    elif kind is ResourceKind.firewall_rule:
        direction = firewall_default_direction(identifier)
        if direction is not None:
            if direction not in FIREWALL_DIRECTIONS:
                return [f"{where}: unknown direction {direction!r}"]
            if desired not in FIREWALL_POLICIES:
                return [f"{where}: default policy must be allow, deny or reject, got {desired!r}"]
        elif desired not in RULE_STATES:
            return [f"{where}: desired must be present or absent, got {desired!r}"]
    return []


def _resolve_refs(
    owner: str,
    refs: Sequence[str],
    by_key: Dict[str, int],
    by_identifier: Dict[str, List[str]],
) -> Tuple[List[str], List[str]]:
    resolved: List[str] = []
    problems: List[str] = []
    for ref in refs:
        if ref in by_key:
            resolved.append(ref)
            continue
        matches = by_identifier.get(ref) or []
        if len(matches) == 1:
            resolved.append(matches[0])
        elif len(matches) > 1:
            problems.append(f"{owner}: dependency {ref!r} is ambiguous ({', '.join(matches)}); use kind:identifier")
        else:
            problems.append(f"{owner}: depends on undeclared resource {ref!r}")
    return resolved, problems


def load_resources(declarations: Iterable[Mapping[str, Any]]) -> List[Resource]:
    """Validate declarations and build Resources in declaration order.

    Raises ValidationError listing every problem found, not just the first.
    """

    violations: List[str] = []
    staged: List[Dict[str, Any]] = []
    by_key: Dict[str, int] = {}
    by_identifier: Dict[str, List[str]] = {}

    for idx, raw in enumerate(declarations):
        if not isinstance(raw, Mapping):
            violations.append(f"declaration #{idx + 1}: must be a mapping")
            continue
        raw = dict(raw)
        try:
            kind = ResourceKind(str(raw.get("kind")))
        except ValueError:
            violations.append(f"declaration #{idx + 1}: unknown kind {raw.get('kind')!r}")
            continue
        identifier = str(raw.get("identifier") or "").strip()
        if not identifier:
            violations.append(f"declaration #{idx + 1}: identifier missing")
            continue

        key = resource_key(kind, identifier)
        if key in by_key:
            violations.append(f"{kind.value} {identifier!r}: declared more than once")
            continue

        desired = _normalize_desired(kind, raw)
        violations.extend(_check_desired(kind, identifier, desired, raw))

        by_key[key] = idx
        by_identifier.setdefault(identifier, []).append(key)
        staged.append({"kind": kind, "identifier": identifier, "desired": desired, "raw": raw})

    resources: List[Resource] = []
    deps_by_key: Dict[str, List[str]] = {}
    for position, item in enumerate(staged):
        kind, identifier, raw = item["kind"], item["identifier"], item["raw"]
        key = resource_key(kind, identifier)
        deps, problems = _resolve_refs(
            f"{kind.value} {identifier!r}", _as_list(raw.get("depends_on")), by_key, by_identifier
        )
        violations.extend(problems)
        deps_by_key[key] = deps

        options = {k: v for k, v in raw.items() if k not in _RESERVED_KEYS}
        if "content" in raw:
            options["content"] = str(raw["content"])

        resources.append(
            Resource(
                kind=kind,
                identifier=identifier,
                desired=str(item["desired"]),
                depends_on=tuple(dict.fromkeys(deps)),
                provider=str(raw.get("provider") or DEFAULT_PROVIDERS[kind]),
                options=MappingProxyType(options),
                optional=bool(raw.get("optional", False)),
                description=str(raw.get("description") or ""),
                index=position,
            )
        )

    _, stuck = kahn_order([r.key for r in resources], deps_by_key)
    if stuck:
        violations.append("dependency cycle between: " + ", ".join(stuck))

    if violations:
        raise ValidationError(violations)
    return resources


def select_optional(
    resources: Sequence[Resource],
    include: Union[str, Iterable[str], None] = None,
) -> List[Resource]:
    """Keep mandatory resources and the optional ones the operator asked for.

    `include` holds keys or bare identifiers. The wildcard "*", alone or as
    one of the entries, selects them all. This replaces interactive yes/no
    prompting: answers are collected before the engine runs and turned into
    presence or absence of resources here.
    """

    wanted: Optional[set] = set(_as_list(include))
    if "*" in wanted:
        wanted = None

    kept = [
        r
        for r in resources
        if not r.optional or wanted is None or r.key in wanted or r.identifier in wanted
    ]

    kept_keys = {r.key for r in kept}
    violations = [
        f"{r.kind.value} {r.identifier!r}: depends on optional resource {dep!r} which was not selected"
        for r in kept
        for dep in r.depends_on
        if dep not in kept_keys
    ]
    if violations:
        raise ValidationError(violations)

    return [replace(r, index=i) for i, r in enumerate(kept)]
