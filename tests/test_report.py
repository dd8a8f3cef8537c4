import json

import yaml

from alpine_provisioner.backends import InMemoryBackend, memory_registry
from alpine_provisioner.pipeline import converge
from alpine_provisioner.report import render_text, save_report, summarize


def run_with_failure():
    backend = InMemoryBackend(
        state={"package:vim": "9.1-r0"},
        fail={"repository:community": "ERROR: unable to fetch index"},
    )
    return converge(
        [
            {"kind": "repository", "identifier": "community", "desired": "enabled", "url": "http://x"},
            {"kind": "package", "identifier": "nmap", "depends_on": "community"},
            {"kind": "package", "identifier": "vim"},
            {"kind": "package", "identifier": "git"},
        ],
        memory_registry(backend),
    )


def test_summary_counts():
    report = run_with_failure().report

    assert (report.applied, report.skipped, report.failed) == (1, 2, 1)
    assert report.total == 4
    assert report.skipped_by_reason == {"dependency-failed": 1, "already-satisfied": 1}
    assert report.failures[0].key == "repository:community:enabled"
    assert not report.converged


def test_summarize_is_pure():
    result = run_with_failure()
    assert summarize(result.run) == summarize(result.run) == result.report


def test_render_text():
    text = render_text(run_with_failure().report)

    assert "failed(ERROR: unable to fetch index)" in text
    assert "skipped(dependency-failed)" in text
    assert "[dependency repository:community failed(ERROR: unable to fetch index)]" in text
    assert "Failures:\n  repository:community:enabled: ERROR: unable to fetch index" in text
    assert text.rstrip().endswith("NOT converged")


def test_save_report_by_extension(tmp_path):
    report = run_with_failure().report

    save_report(str(tmp_path / "out" / "report.json"), report)
    save_report(str(tmp_path / "report.yaml"), report)

    as_json = json.loads((tmp_path / "out" / "report.json").read_text(encoding="utf-8"))
    as_yaml = yaml.safe_load((tmp_path / "report.yaml").read_text(encoding="utf-8"))
    assert as_json == as_yaml == report.to_dict()
    assert as_json["totals"]["failed"] == 1
