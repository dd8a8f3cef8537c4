"""apk-style version ordering and constraint checks (pure, no I/O).

Version grammar handled: ``1.2.3a_rc1_p2-r0``
- dotted numeric components
- optional single trailing letter
- suffixes: _alpha, _beta, _pre, _rc sort before the plain release; _cvs, _svn,
  _git, _hg, _p sort after it
- optional -rN package release
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import total_ordering
from typing import Tuple

_SUFFIX_RANK = {
    "alpha": 0,
    "beta": 1,
    "pre": 2,
    "rc": 3,
    "cvs": 5,
    "svn": 6,
    "git": 7,
    "hg": 8,
    "p": 9,
}
_NO_SUFFIX = (4, 0)

_VERSION_RE = re.compile(
    r"^(?P<nums>\d+(?:\.\d+)*)(?P<letter>[a-z]?)(?P<suffixes>(?:_[a-z]+\d*)*)(?:-r(?P<rel>\d+))?$"
)
_SUFFIX_RE = re.compile(r"_([a-z]+)(\d*)")
_CONSTRAINT_RE = re.compile(r"^(>=|<=|=|>|<|~)\s*(\S+)$")

CONSTRAINT_OPS = (">=", "<=", "=", ">", "<", "~")


@total_ordering
@dataclass(frozen=True)
class ApkVersion:
    text: str
    key: Tuple

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ApkVersion):
            return NotImplemented
        return self.key == other.key

    def __lt__(self, other: "ApkVersion") -> bool:
        return _compare_keys(self.key, other.key) < 0

    def __hash__(self) -> int:
        return hash(self.key)


def _compare_keys(a: Tuple, b: Tuple) -> int:
    a_nums, a_letter, a_suf, a_rel = a
    b_nums, b_letter, b_suf, b_rel = b
    if a_nums != b_nums:
        return -1 if a_nums < b_nums else 1
    if a_letter != b_letter:
        return -1 if a_letter < b_letter else 1
    width = max(len(a_suf), len(b_suf))
    a_pad = a_suf + (_NO_SUFFIX,) * (width - len(a_suf))
    b_pad = b_suf + (_NO_SUFFIX,) * (width - len(b_suf))
    if a_pad != b_pad:
        return -1 if a_pad < b_pad else 1
    if a_rel != b_rel:
        return -1 if a_rel < b_rel else 1
    return 0


def parse_version(text: str) -> ApkVersion:
    m = _VERSION_RE.match(text.strip())
    if not m:
        raise ValueError(f"not an apk version: {text!r}")
    nums = tuple(int(n) for n in m.group("nums").split("."))
    suffixes = []
    for name, num in _SUFFIX_RE.findall(m.group("suffixes") or ""):
        if name not in _SUFFIX_RANK:
            raise ValueError(f"unknown version suffix _{name} in {text!r}")
        suffixes.append((_SUFFIX_RANK[name], int(num or 0)))
    rel = int(m.group("rel") or 0)
    return ApkVersion(text=text, key=(nums, m.group("letter"), tuple(suffixes), rel))


def parse_constraint(text: str) -> Tuple[str, ApkVersion]:
    """Split ``>=2.40`` into (op, version). Raises ValueError when malformed."""
    m = _CONSTRAINT_RE.match(text.strip())
    if not m:
        raise ValueError(f"not a version constraint: {text!r}")
    return m.group(1), parse_version(m.group(2))


def is_constraint(text: str) -> bool:
    try:
        parse_constraint(text)
    except ValueError:
        return False
    return True


def satisfies(installed: str, constraint: str) -> bool:
    op, wanted = parse_constraint(constraint)
    if op == "~":
        # Fuzzy match: every component given in the constraint must match.
        prefix = wanted.text
        return installed == prefix or installed.startswith(prefix + ".") or installed.startswith(prefix + "-")
    have = parse_version(installed)
    if op == "=":
        return have == wanted
    if op == ">=":
        return have >= wanted
    if op == "<=":
        return have <= wanted
    if op == ">":
        return have > wanted
    return have < wanted
