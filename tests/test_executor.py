import threading

import pytest

from alpine_provisioner.backends import InMemoryBackend, memory_registry
from alpine_provisioner.backends.base import BackendRegistry
from alpine_provisioner.errors import BackendConfigError, PlanError, ValidationError
from alpine_provisioner.executor import ActionState, ExecutionPolicy, Executor, RunResult, SkipReason
from alpine_provisioner.pipeline import converge, plan_run
from alpine_provisioner.planner import Action, ActionType, Plan
from alpine_provisioner.resources import load_resources


def pkg(name, **extra):
    return {"kind": "package", "identifier": name, **extra}


def community(**extra):
    return {"kind": "repository", "identifier": "community", "desired": "enabled", "url": "http://x", **extra}


def states(result):
    return {r.action.key: r.label() for r in result.run}


def test_git_scenario_is_idempotent():
    backend = InMemoryBackend()
    registry = memory_registry(backend)

    first = converge([pkg("git")], registry)
    assert states(first) == {"package:git": "applied"}
    assert first.report.converged
    assert backend.applied == ["package:git:present"]

    second = converge([pkg("git")], registry)
    assert states(second) == {"package:git": "skipped(already-satisfied)"}
    assert second.plan.is_noop
    assert backend.applied == ["package:git:present"]


def test_community_before_nmap():
    backend = InMemoryBackend()
    result = converge([pkg("nmap", depends_on="community"), community()], memory_registry(backend))

    assert result.report.applied == 2
    assert backend.events == [
        "start repository:community",
        "end repository:community",
        "start package:nmap",
        "end package:nmap",
    ]


def test_failed_dependency_skips_dependents_only():
    backend = InMemoryBackend(fail={"repository:community": "ERROR: unable to fetch index"})
    result = converge(
        [
            community(),
            pkg("nmap", depends_on="community"),
            {"kind": "service", "identifier": "nmapd", "desired": "enabled", "depends_on": "nmap"},
            pkg("vim"),
        ],
        memory_registry(backend),
    )

    assert states(result) == {
        "repository:community": "failed(ERROR: unable to fetch index)",
        "package:nmap": "skipped(dependency-failed)",
        "service:nmapd": "skipped(dependency-failed)",
        "package:vim": "applied",
    }
    assert backend.applied == ["package:vim:present"]
    assert not result.report.converged
    assert result.report.failures[0].reason == "ERROR: unable to fetch index"


def test_cycle_rejected_before_any_backend_call():
    backend = InMemoryBackend()
    with pytest.raises(ValidationError, match="cycle"):
        converge([pkg("a", depends_on="b"), pkg("b", depends_on="a")], memory_registry(backend))
    assert backend.queries == 0
    assert backend.applied == []


def test_unmapped_provider_rejected_before_any_backend_call():
    backend = InMemoryBackend()
    registry = BackendRegistry().register("package", "apk", backend)
    with pytest.raises(ValidationError, match="no backend for provider 'snap'"):
        converge([pkg("git"), pkg("code", provider="snap")], registry)
    assert backend.queries == 0


def test_dry_run_applies_nothing():
    backend = InMemoryBackend(state={"package:vim": "9.1-r0"})
    registry = memory_registry(backend)
    result = converge([pkg("git"), pkg("vim"), community()], registry, policy=ExecutionPolicy(dry_run=True))

    assert backend.applied == []
    assert backend.events == []
    assert states(result) == {
        "package:git": "applied",
        "package:vim": "skipped(already-satisfied)",
        "repository:community": "applied",
    }
    assert result.report.dry_run
    assert result.report.converged

    # Nothing changed, so the real plan is the same as the dry one.
    assert plan_run([pkg("git"), pkg("vim"), community()], registry).plan == result.plan


def test_unknown_state_forces_convergence():
    backend = InMemoryBackend(state={"package:git": "2.43.0-r0"}, unknown={"package:git"})
    result = converge([pkg("git")], memory_registry(backend))

    assert result.plan.actions[0].type is ActionType.install
    assert states(result) == {"package:git": "applied"}


def test_timeout_is_a_failure():
    backend = InMemoryBackend(time_out={"package:texlive"})
    result = converge(
        [pkg("texlive"), pkg("texlive-doc", depends_on="texlive")],
        memory_registry(backend),
        policy=ExecutionPolicy(timeout=5),
    )

    assert states(result) == {
        "package:texlive": "failed(timeout)",
        "package:texlive-doc": "skipped(dependency-failed)",
    }
    assert result.report.failures[0].timed_out


def test_stop_on_first_failure():
    backend = InMemoryBackend(fail={"package:a": "boom"})
    result = converge(
        [pkg("a"), pkg("b"), pkg("c")],
        memory_registry(backend),
        policy=ExecutionPolicy(stop_on_first_failure=True),
    )

    assert states(result) == {
        "package:a": "failed(boom)",
        "package:b": "skipped(run-stopped)",
        "package:c": "skipped(run-stopped)",
    }
    assert not result.report.converged


def test_keep_going_by_default():
    backend = InMemoryBackend(fail={"package:a": "boom"})
    result = converge([pkg("a"), pkg("b"), pkg("c")], memory_registry(backend))
    assert result.report.applied == 2
    assert result.report.failed == 1


def test_cancelled_before_start():
    backend = InMemoryBackend()
    cancel = threading.Event()
    cancel.set()

    result = converge([pkg("a"), pkg("b", depends_on="a")], memory_registry(backend), cancel=cancel)

    assert states(result) == {"package:a": "skipped(cancelled)", "package:b": "skipped(cancelled)"}
    assert backend.applied == []
    assert result.report.skipped_by_reason == {"cancelled": 2}
    assert not result.report.converged


def test_cancel_lets_in_flight_actions_finish():
    backend = InMemoryBackend(delay=0.2)
    cancel = threading.Event()
    apply = backend.apply

    def cancel_then_apply(action, *, timeout):
        cancel.set()
        apply(action, timeout=timeout)

    backend.apply = cancel_then_apply
    result = converge([pkg("a"), pkg("b", depends_on="a")], memory_registry(backend), cancel=cancel)

    assert states(result) == {"package:a": "applied", "package:b": "skipped(cancelled)"}
    assert backend.applied == ["package:a:present"]


def test_concurrency_is_bounded():
    backend = InMemoryBackend(delay=0.2)
    decls = [pkg(f"p{i}") for i in range(6)]
    result = converge(decls, memory_registry(backend), policy=ExecutionPolicy(concurrency=2))

    assert result.report.applied == 6
    assert backend.peak_parallel == 2


def test_serial_by_default():
    backend = InMemoryBackend(delay=0.05)
    converge([pkg(f"p{i}") for i in range(3)], memory_registry(backend))
    assert backend.peak_parallel == 1


def test_dependents_wait_even_with_free_workers():
    backend = InMemoryBackend(delay=0.1)
    converge(
        [community(), pkg("nmap", depends_on="community"), pkg("vim")],
        memory_registry(backend),
        policy=ExecutionPolicy(concurrency=4),
    )
    assert backend.events.index("end repository:community") < backend.events.index("start package:nmap")


def plan_for(backend, decls):
    return plan_run(decls, memory_registry(backend)).plan


def test_duplicate_plan_entries_run_once():
    backend = InMemoryBackend()
    plan = plan_for(backend, [pkg("git")])
    doubled = Plan(actions=plan.actions + plan.actions)

    run = Executor(memory_registry(backend)).apply(doubled)

    assert len(run) == 1
    assert backend.applied == ["package:git:present"]


def test_run_result_is_read_only_after_completion():
    backend = InMemoryBackend()
    run = Executor(memory_registry(backend)).apply(plan_for(backend, [pkg("git")]))

    assert run.is_complete
    with pytest.raises(RuntimeError):
        run.record("package:git:present", state=ActionState.failed)


def test_terminal_state_is_written_once():
    (git,) = load_resources([pkg("git")])
    action = Action(type=ActionType.install, resource=git, target="present")
    run = RunResult([action])
    run.record(action.idempotency_key, state=ActionState.skipped, skip_reason=SkipReason.cancelled)
    with pytest.raises(RuntimeError, match="already reached"):
        run.record(action.idempotency_key, state=ActionState.applied)


def test_missing_dependency_in_plan_is_rejected():
    backend = InMemoryBackend()
    plan = plan_for(backend, [community(), pkg("nmap", depends_on="community")])
    only_nmap = Plan(actions=plan.actions[1:])

    with pytest.raises(PlanError, match="missing from the plan"):
        Executor(memory_registry(backend)).apply(only_nmap)


def test_unmapped_backend_fails_before_any_apply():
    backend = InMemoryBackend()
    plan = plan_for(backend, [pkg("git"), community()])
    registry = BackendRegistry().register("package", "apk", backend)

    with pytest.raises(BackendConfigError):
        Executor(registry).apply(plan)
    assert backend.applied == []
