"""Dependency graph helpers (pure).

Kahn's algorithm with a deterministic tie-break: among the nodes that are ready
at any moment, the one declared first goes first.
"""

from __future__ import annotations

import heapq
from typing import Dict, List, Mapping, Sequence, Tuple


def kahn_order(
    keys: Sequence[str],
    depends_on: Mapping[str, Sequence[str]],
) -> Tuple[List[str], List[str]]:
    """Topologically sort `keys`.

    `keys` gives declaration order. `depends_on` maps a key to the keys that must
    come before it; references outside `keys` are ignored here (callers check them).

    Returns (ordered, stuck). `stuck` is non-empty only when a cycle exists and
    lists the nodes that could never be released, in declaration order.
    """

    index: Dict[str, int] = {k: i for i, k in enumerate(keys)}
    in_degree: Dict[str, int] = {k: 0 for k in keys}
    dependents: Dict[str, List[str]] = {k: [] for k in keys}

    for k in keys:
        for dep in dict.fromkeys(depends_on.get(k) or ()):
            if dep not in index:
                continue
            in_degree[k] += 1
            dependents[dep].append(k)

    ready = [(index[k], k) for k in keys if in_degree[k] == 0]
    heapq.heapify(ready)

    ordered: List[str] = []
    while ready:
        _, node = heapq.heappop(ready)
        ordered.append(node)
        for succ in dependents[node]:
            in_degree[succ] -= 1
            if in_degree[succ] == 0:
                heapq.heappush(ready, (index[succ], succ))

    stuck = [k for k in keys if in_degree[k] > 0]
    return ordered, stuck
