from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Tuple

import yaml

from .executor import ActionState, RunResult, SkipReason


@dataclass(frozen=True)
class ActionLine:
    key: str
    action: str
    kind: str
    identifier: str
    state: str
    reason: str = ""
    detail: str = ""
    dry_run: bool = False
    duration: float | None = None


@dataclass(frozen=True)
class Failure:
    key: str
    action: str
    reason: str
    timed_out: bool = False


@dataclass(frozen=True)
class Report:
    applied: int
    skipped: int
    failed: int
    skipped_by_reason: Dict[str, int] = field(default_factory=dict)
    failures: Tuple[Failure, ...] = ()
    actions: Tuple[ActionLine, ...] = ()
    dry_run: bool = False

    @property
    def total(self) -> int:
        return self.applied + self.skipped + self.failed

    @property
    def converged(self) -> bool:
        """True when nothing failed and nothing was left undone."""
        if self.failed:
            return False
        return all(
            self.skipped_by_reason.get(r.value, 0) == 0
            for r in (SkipReason.dependency_failed, SkipReason.cancelled, SkipReason.run_stopped)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "converged": self.converged,
            "dry_run": self.dry_run,
            "totals": {
                "applied": self.applied,
                "skipped": self.skipped,
                "failed": self.failed,
                "skipped_by_reason": dict(self.skipped_by_reason),
            },
            "failures": [
                {"key": f.key, "action": f.action, "reason": f.reason, "timed_out": f.timed_out}
                for f in self.failures
            ],
            "actions": [
                {
                    "key": a.key,
                    "action": a.action,
                    "state": a.state,
                    "reason": a.reason,
                    "detail": a.detail,
                    "dry_run": a.dry_run,
                    "duration": a.duration,
                }
                for a in self.actions
            ],
        }


def summarize(run: RunResult) -> Report:
    """Aggregate a RunResult. Pure: same input, same Report."""

    applied = skipped = failed = 0
    by_reason: Dict[str, int] = {}
    failures: List[Failure] = []
    lines: List[ActionLine] = []
    dry_run = False

    for r in run:
        a = r.action
        if r.state is ActionState.applied:
            applied += 1
        elif r.state is ActionState.skipped:
            skipped += 1
            reason = r.skip_reason.value if r.skip_reason else "unspecified"
            by_reason[reason] = by_reason.get(reason, 0) + 1
        elif r.state is ActionState.failed:
            failed += 1
            failures.append(
                Failure(key=a.idempotency_key, action=a.describe(), reason=r.failure, timed_out=r.timed_out)
            )
        dry_run = dry_run or r.dry_run

        lines.append(
            ActionLine(
                key=a.idempotency_key,
                action=a.type.value,
                kind=a.resource.kind.value,
                identifier=a.resource.identifier,
                state=r.label(),
                reason=a.reason,
                detail=r.failure,
                dry_run=r.dry_run,
                duration=r.duration,
            )
        )

    return Report(
        applied=applied,
        skipped=skipped,
        failed=failed,
        skipped_by_reason=by_reason,
        failures=tuple(failures),
        actions=tuple(lines),
        dry_run=dry_run,
    )


def render_text(report: Report) -> str:
    out: List[str] = []
    for a in report.actions:
        line = f"{a.state:<30} {a.action:<8} {a.kind:<14} {a.identifier}"
        if a.detail and not a.state.startswith("failed"):
            line += f"  [{a.detail}]"
        out.append(line)

    if report.failures:
        out.append("")
        out.append("Failures:")
        for f in report.failures:
            out.append(f"  {f.key}: {'timeout: ' if f.timed_out else ''}{f.reason}")

    out.append("")
    reasons = ", ".join(f"{k}={v}" for k, v in sorted(report.skipped_by_reason.items()))
    out.append(
        f"applied={report.applied} skipped={report.skipped}"
        + (f" ({reasons})" if reasons else "")
        + f" failed={report.failed}"
        + (" [dry run]" if report.dry_run else "")
    )
    out.append("converged" if report.converged else "NOT converged")
    return "\n".join(out) + "\n"


def save_report(path: str, report: Report) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)

    if p.suffix.lower() in {".yaml", ".yml"}:
        p.write_text(yaml.safe_dump(report.to_dict(), sort_keys=False), encoding="utf-8")
    else:
        p.write_text(json.dumps(report.to_dict(), indent=2, sort_keys=True) + "\n", encoding="utf-8")
