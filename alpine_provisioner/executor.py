"""Plan execution.

Applies a Plan through backends and records one terminal state per action:

    pending -> applied
            -> skipped(already-satisfied | dependency-failed | cancelled | run-stopped)
            -> failed(reason)

Scheduling
- An action starts only after all its dependencies reached a terminal state.
- Independent actions run in parallel, at most `policy.concurrency` at a time.
  Submission follows plan order so runs stay reproducible.
- A failed dependency makes its dependents skipped(dependency-failed); they are
  never attempted. The skip propagates transitively.
- Cancellation and stop-on-first-failure stop new submissions only. In-flight
  actions always run to completion (or to their timeout) so nothing is left
  half-applied in an unknown state.
- Nothing is retried within a run.
"""

from __future__ import annotations

import logging
import subprocess
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple

from .backends.base import BackendRegistry
from .errors import BackendFailure, PlanError, TimeoutFailure
from .planner import Action, Plan

logger = logging.getLogger(__name__)

# How often the scheduler wakes up to look at the cancellation flag.
_POLL_SECONDS = 0.1


class ActionState(str, Enum):
    pending = "pending"
    applied = "applied"
    skipped = "skipped"
    failed = "failed"


class SkipReason(str, Enum):
    already_satisfied = "already-satisfied"
    dependency_failed = "dependency-failed"
    cancelled = "cancelled"
    run_stopped = "run-stopped"


@dataclass(frozen=True)
class ExecutionPolicy:
    """
    stop_on_first_failure
    False keeps converging everything not downstream of a failure.

    dry_run
    Plan and report as if every change succeeded; no backend apply is called.

    concurrency
    Upper bound on actions running at the same time.

    timeout
    Seconds each backend apply may take before it counts as failed(timeout).
    """

    stop_on_first_failure: bool = False
    dry_run: bool = False
    concurrency: int = 1
    timeout: float = 300.0


@dataclass(frozen=True)
class ActionResult:
    action: Action
    state: ActionState = ActionState.pending
    skip_reason: Optional[SkipReason] = None
    failure: str = ""
    timed_out: bool = False
    dry_run: bool = False
    started_at: Optional[float] = None
    finished_at: Optional[float] = None

    @property
    def terminal(self) -> bool:
        return self.state is not ActionState.pending

    @property
    def duration(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return self.finished_at - self.started_at

    @property
    def blocks_dependents(self) -> bool:
        return self.state is ActionState.failed or self.skip_reason is SkipReason.dependency_failed

    def label(self) -> str:
        if self.state is ActionState.skipped and self.skip_reason is not None:
            return f"skipped({self.skip_reason.value})"
        if self.state is ActionState.failed:
            return "failed(timeout)" if self.timed_out else f"failed({self.failure})"
        return self.state.value


class RunResult:
    """Per-action outcomes of one run, keyed by idempotency key, in plan order.

    Only the executor writes entries, and each key is written to a terminal
    state once. After `complete()` the result is read-only.
    """

    def __init__(self, actions: List[Action]) -> None:
        self._entries: Dict[str, ActionResult] = {a.idempotency_key: ActionResult(action=a) for a in actions}
        self._lock = threading.Lock()
        self._complete = False

    def record(self, key: str, **changes) -> ActionResult:
        with self._lock:
            if self._complete:
                raise RuntimeError("run result is complete and read-only")
            current = self._entries[key]
            if current.terminal:
                raise RuntimeError(f"{key} already reached {current.label()}")
            updated = replace(current, **changes)
            self._entries[key] = updated
            return updated

    def complete(self) -> "RunResult":
        with self._lock:
            self._complete = True
        return self

    @property
    def is_complete(self) -> bool:
        return self._complete

    def get(self, key: str) -> ActionResult:
        with self._lock:
            return self._entries[key]

    def results(self) -> List[ActionResult]:
        with self._lock:
            return list(self._entries.values())

    def __iter__(self) -> Iterator[ActionResult]:
        return iter(self.results())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries


class Executor:
    def __init__(self, registry: BackendRegistry) -> None:
        self._registry = registry

    def apply(
        self,
        plan: Plan,
        policy: ExecutionPolicy | None = None,
        cancel: threading.Event | None = None,
    ) -> RunResult:
        policy = policy or ExecutionPolicy()
        cancel = cancel or threading.Event()

        actions = self._unique_actions(plan)
        run = RunResult(actions)

        # resource key -> idempotency key, for dependency lookups
        by_resource = {a.key: a.idempotency_key for a in actions}
        for a in actions:
            missing = [d for d in a.depends_on if d not in by_resource]
            if missing:
                raise PlanError(f"{a.key} depends on actions missing from the plan: {', '.join(missing)}")

        if not policy.dry_run:
            # Fail on unmapped backends before touching anything.
            for a in actions:
                if not a.is_noop:
                    self._registry.for_resource(a.resource)

        waiting: List[Action] = list(actions)
        in_flight: Dict[Future, Action] = {}
        halted: Optional[SkipReason] = None

        logger.info(
            "Applying %d action(s) (dry_run=%s concurrency=%d stop_on_first_failure=%s)",
            len(actions),
            policy.dry_run,
            policy.concurrency,
            policy.stop_on_first_failure,
        )

        with ThreadPoolExecutor(max_workers=max(1, policy.concurrency)) as pool:
            while True:
                if halted is None and cancel.is_set():
                    halted = SkipReason.cancelled
                    logger.warning("Run cancelled; waiting for %d in-flight action(s)", len(in_flight))

                waiting = self._dispatch(run, waiting, in_flight, by_resource, pool, policy, halted)

                if not in_flight:
                    break

                done, _ = wait(list(in_flight), timeout=_POLL_SECONDS, return_when=FIRST_COMPLETED)
                for fut in done:
                    action = in_flight.pop(fut)
                    state, failure, timed_out = fut.result()
                    result = run.record(
                        action.idempotency_key,
                        state=state,
                        failure=failure,
                        timed_out=timed_out,
                        finished_at=time.time(),
                    )
                    self._log_result(result)
                    if state is ActionState.failed and policy.stop_on_first_failure and halted is None:
                        halted = SkipReason.run_stopped
                        logger.warning("Stopping after first failure (%s)", action.describe())

        if waiting:
            raise PlanError("actions left unscheduled: " + ", ".join(a.key for a in waiting))

        return run.complete()

    def _unique_actions(self, plan: Plan) -> List[Action]:
        seen: Dict[str, Action] = {}
        for a in plan.actions:
            if a.idempotency_key in seen:
                logger.debug("Ignoring duplicate plan entry %s", a.idempotency_key)
                continue
            seen[a.idempotency_key] = a
        return list(seen.values())

    def _dispatch(
        self,
        run: RunResult,
        waiting: List[Action],
        in_flight: Dict[Future, Action],
        by_resource: Dict[str, str],
        pool: ThreadPoolExecutor,
        policy: ExecutionPolicy,
        halted: Optional[SkipReason],
    ) -> List[Action]:
        """Settle or start every waiting action whose dependencies are terminal.

        Loops until nothing changes, since settling one action (a skip, a no-op)
        may release its dependents in the same pass. Returns the still-waiting list.
        """

        progressed = True
        while progressed:
            progressed = False
            still: List[Action] = []
            for action in waiting:
                deps = [run.get(by_resource[d]) for d in action.depends_on]
                if not all(d.terminal for d in deps):
                    still.append(action)
                    continue

                key = action.idempotency_key
                blocked = next((d for d in deps if d.blocks_dependents), None)
                inherited = next(
                    (d.skip_reason for d in deps if d.skip_reason in (SkipReason.cancelled, SkipReason.run_stopped)),
                    None,
                )

                if blocked is not None:
                    result = run.record(
                        key,
                        state=ActionState.skipped,
                        skip_reason=SkipReason.dependency_failed,
                        failure=f"dependency {blocked.action.key} {blocked.label()}",
                    )
                elif halted is not None or inherited is not None:
                    result = run.record(key, state=ActionState.skipped, skip_reason=halted or inherited)
                elif action.is_noop:
                    result = run.record(key, state=ActionState.skipped, skip_reason=SkipReason.already_satisfied)
                elif policy.dry_run:
                    result = run.record(key, state=ActionState.applied, dry_run=True)
                elif len(in_flight) < max(1, policy.concurrency):
                    run.record(key, started_at=time.time())
                    logger.info("Start %s (%s)", action.describe(), action.reason)
                    in_flight[pool.submit(self._run_one, action, policy.timeout)] = action
                    progressed = True
                    continue
                else:
                    still.append(action)
                    continue

                self._log_result(result)
                progressed = True
            waiting = still
        return waiting

    def _run_one(self, action: Action, timeout: float) -> Tuple[ActionState, str, bool]:
        backend = self._registry.for_resource(action.resource)
        try:
            backend.apply(action, timeout=timeout)
        except TimeoutFailure as e:
            return ActionState.failed, e.reason, True
        except (subprocess.TimeoutExpired, TimeoutError) as e:
            return ActionState.failed, str(e) or "timed out", True
        except BackendFailure as e:
            return ActionState.failed, e.reason, False
        except OSError as e:
            return ActionState.failed, str(e), False
        return ActionState.applied, "", False

    def _log_result(self, result: ActionResult) -> None:
        if result.state is ActionState.failed:
            logger.warning("%s -> %s", result.action.describe(), result.label())
        else:
            logger.info("%s -> %s%s", result.action.describe(), result.label(), " (dry run)" if result.dry_run else "")
