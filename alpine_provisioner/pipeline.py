from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from .backends.base import BackendRegistry
from .executor import ExecutionPolicy, Executor, RunResult
from .inspector import Observation, StateInspector
from .planner import Plan, build_plan
from .report import Report, summarize
from .resources import Resource, load_resources, select_optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlannedRun:
    resources: List[Resource]
    observations: Dict[str, Observation]
    plan: Plan


@dataclass(frozen=True)
class ConvergeResult:
    resources: List[Resource]
    observations: Dict[str, Observation]
    plan: Plan
    run: RunResult
    report: Report


def plan_run(
    declarations: Iterable[Mapping[str, Any]],
    registry: BackendRegistry,
    *,
    include: Union[str, Sequence[str], None] = None,
    query_timeout: float = 60.0,
    concurrency: int = 1,
) -> PlannedRun:
    """Validate, inspect and plan. Applies nothing.

    Validation (declarations, optional selection, backend mapping, read-only
    inspection) completes before the first backend call.
    """

    resources = select_optional(load_resources(declarations), include)
    registry.validate(resources)
    inspector = StateInspector(registry, timeout=query_timeout, concurrency=concurrency)

    logger.info("Inspecting %d resource(s)", len(resources))
    observations = inspector.inspect_all(resources)
    unknown = [k for k, o in observations.items() if not o.known]
    if unknown:
        logger.warning("State unknown for %d resource(s): %s", len(unknown), ", ".join(unknown))

    plan = build_plan(resources, observations)
    return PlannedRun(resources=resources, observations=observations, plan=plan)


def converge(
    declarations: Iterable[Mapping[str, Any]],
    registry: BackendRegistry,
    *,
    policy: Optional[ExecutionPolicy] = None,
    include: Union[str, Sequence[str], None] = None,
    query_timeout: float = 60.0,
    cancel: Optional[threading.Event] = None,
) -> ConvergeResult:
    """Run one Inspector -> Plan -> Executor -> Report cycle.

    A retry policy, if wanted, re-runs this whole function; nothing inside retries.
    """

    policy = policy or ExecutionPolicy()
    planned = plan_run(
        declarations,
        registry,
        include=include,
        query_timeout=query_timeout,
        concurrency=policy.concurrency,
    )

    run = Executor(registry).apply(planned.plan, policy, cancel=cancel)
    report = summarize(run)

    logger.info(
        "Run finished: applied=%d skipped=%d failed=%d converged=%s",
        report.applied,
        report.skipped,
        report.failed,
        report.converged,
    )
    return ConvergeResult(
        resources=planned.resources,
        observations=planned.observations,
        plan=planned.plan,
        run=run,
        report=report,
    )
