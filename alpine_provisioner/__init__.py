"""Alpine provisioner (declarative, idempotent).

Core design goals:
- Declared desired state, never imperative steps
- Read-only inspection before any change
- Deterministic plans in dependency order
- Per-action outcomes; a failure never aborts unrelated work
- Centralized logging
"""

__all__ = []
