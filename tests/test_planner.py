import pytest

from alpine_provisioner.errors import PlanError
from alpine_provisioner.inspector import Observation
from alpine_provisioner.planner import Action, ActionType, build_plan, classify
from alpine_provisioner.resources import Resource, ResourceKind, content_hash, load_resources


def resource(kind, identifier, desired, **kw):
    return Resource(kind=ResourceKind(kind), identifier=identifier, desired=desired, **kw)


def seen(res, value, **kw):
    return Observation.of(res, value, **kw)


def test_package_transitions():
    git = resource("package", "git", "present")
    assert classify(git, seen(git, None))[0] is ActionType.install
    assert classify(git, seen(git, "2.43.0-r0"))[0] is ActionType.noop

    gone = resource("package", "telnet", "absent")
    assert classify(gone, seen(gone, "1.0"))[0] is ActionType.remove
    assert classify(gone, seen(gone, None))[0] is ActionType.noop

    newest = resource("package", "curl", "latest")
    assert classify(newest, seen(newest, "8.5.0-r0", upgradable=True))[0] is ActionType.upgrade
    assert classify(newest, seen(newest, "8.5.0-r0"))[0] is ActionType.noop


def test_version_constraint_transitions():
    git = resource("package", "git", ">=2.40")
    assert classify(git, seen(git, "2.39.0-r0"))[0] is ActionType.upgrade
    assert classify(git, seen(git, "2.43.0-r0"))[0] is ActionType.noop
    assert classify(git, seen(git, "weird"))[0] is ActionType.upgrade
    assert classify(git, seen(git, None))[0] is ActionType.install


def test_toggle_transitions():
    sshd = resource("service", "sshd", "enabled")
    assert classify(sshd, seen(sshd, False))[0] is ActionType.enable
    assert classify(sshd, seen(sshd, True))[0] is ActionType.noop

    repo = resource("repository", "testing", "disabled")
    assert classify(repo, seen(repo, True))[0] is ActionType.disable
    assert classify(repo, seen(repo, False))[0] is ActionType.noop


def test_file_and_firewall_transitions():
    motd = resource("file", "/etc/motd", content_hash("hi"))
    assert classify(motd, seen(motd, None))[0] is ActionType.write
    assert classify(motd, seen(motd, content_hash("bye")))[0] is ActionType.write
    assert classify(motd, seen(motd, content_hash("hi")))[0] is ActionType.noop

    incoming = resource("firewall-rule", "default incoming", "deny")
    assert classify(incoming, seen(incoming, "allow"))[0] is ActionType.write
    assert classify(incoming, seen(incoming, "deny"))[0] is ActionType.noop

    ssh = resource("firewall-rule", "allow 22/tcp", "present")
    assert classify(ssh, seen(ssh, False))[0] is ActionType.enable
    assert classify(ssh, seen(ssh, True))[0] is ActionType.noop


def test_unknown_never_yields_noop():
    cases = [
        (resource("package", "git", "present"), ActionType.install),
        (resource("package", "telnet", "absent"), ActionType.remove),
        (resource("service", "sshd", "enabled"), ActionType.enable),
        (resource("repository", "edge", "disabled"), ActionType.disable),
        (resource("file", "/etc/motd", content_hash("hi")), ActionType.write),
        (resource("file", "/etc/old", "absent"), ActionType.remove),
        (resource("firewall-rule", "default incoming", "deny"), ActionType.write),
        (resource("firewall-rule", "allow 22/tcp", "present"), ActionType.enable),
    ]
    for res, expected in cases:
        action_type, reason = classify(res, Observation.unknown(res, "backend down"))
        assert action_type is expected, res.key
        assert "backend down" in reason or action_type is ActionType.write


def community_nmap():
    return load_resources(
        [
            {"kind": "package", "identifier": "nmap", "depends_on": "community"},
            {"kind": "repository", "identifier": "community", "desired": "enabled", "url": "http://x"},
        ]
    )


def test_dependencies_order_the_plan():
    resources = community_nmap()
    obs = {r.key: seen(r, None if r.kind is ResourceKind.package else False) for r in resources}

    plan = build_plan(resources, obs)

    assert plan.keys() == ["repository:community", "package:nmap"]
    assert [a.type for a in plan.actions] == [ActionType.enable, ActionType.install]


def test_plan_is_deterministic():
    resources = load_resources([{"kind": "package", "identifier": n} for n in ["b", "a", "c", "d"]])
    obs = {r.key: seen(r, None) for r in resources}

    first = build_plan(resources, obs)
    for _ in range(5):
        again = build_plan(list(reversed(resources)), dict(reversed(list(obs.items()))))
        assert again == first
    assert first.keys() == ["package:b", "package:a", "package:c", "package:d"]


def test_one_action_per_resource_including_noops():
    resources = community_nmap()
    obs = {
        "repository:community": seen(resources[1], True),
        "package:nmap": seen(resources[0], "7.94-r0"),
    }
    plan = build_plan(resources, obs)
    assert len(plan.actions) == 2
    assert plan.is_noop
    assert plan.changes == ()


def test_missing_observation_is_unknown():
    (git,) = load_resources([{"kind": "package", "identifier": "git"}])
    plan = build_plan([git], {})
    assert plan.actions[0].type is ActionType.install
    assert "not inspected" in plan.actions[0].reason


def test_cycle_in_hand_built_resources_raises():
    a = resource("package", "a", "present", depends_on=("package:b",), index=0)
    b = resource("package", "b", "present", depends_on=("package:a",), index=1)
    with pytest.raises(PlanError, match="cycle"):
        build_plan([a, b], {})


def test_dangling_dependency_raises():
    a = resource("package", "a", "present", depends_on=("package:ghost",))
    with pytest.raises(PlanError, match="outside the plan"):
        build_plan([a], {})


def test_idempotency_key():
    git = resource("package", "git", ">=2.40")
    action = Action(type=ActionType.upgrade, resource=git, target=">=2.40")
    assert action.idempotency_key == "package:git:>=2.40"
    assert action.describe() == "upgrade package git"
