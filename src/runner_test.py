# runner_test.py
from __future__ import annotations

import os
import threading
import time
from pathlib import Path

import pytest

from ruleflow.dag import DAGBuilder
from ruleflow.dsl import Workflow, expand, temp
from ruleflow.errors import JobFailure
from ruleflow.runner import BLOCKED, CANCELLED, FAILED, OK, PLANNED, UP_TO_DATE, execute, outdated_jobs
from ruleflow.ui.console import Console


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return tmp_path


def _touch_outputs(job):
    for out in job.output:
        Path(out).parent.mkdir(parents=True, exist_ok=True)
        Path(out).write_text(job.name)


def _set_mtime(path, t):
    os.utime(path, (t, t))


def _pipeline(samples=("A", "B")) -> Workflow:
    wf = Workflow()
    wf.rule("all", input=expand("counts/{sample}.txt", sample=list(samples)))
    wf.rule("map", input="raw/{sample}.fq", output="mapped/{sample}.bam", shell="map {input} > {output}")
    wf.rule("count", input="mapped/{sample}.bam", output="counts/{sample}.txt", shell="count {input} > {output}")
    return wf


def _raw(workdir, *samples):
    (workdir / "raw").mkdir(exist_ok=True)
    for s in samples:
        (workdir / "raw" / f"{s}.fq").write_text("ACGT\n")


def _graph(wf, targets=()):
    return DAGBuilder(wf.registry, wf.config).plan(targets)


def test_runs_jobs_in_dependency_order(workdir):
    _raw(workdir, "A", "B")
    seen = []
    lock = threading.Lock()

    def run_fn(job):
        with lock:
            seen.append(job.rule.name + ":" + ",".join(job.wildcards.values()))
        _touch_outputs(job)

    result = execute(_graph(_pipeline()), cores=2, run_fn=run_fn)

    assert result.success
    assert seen.index("map:A") < seen.index("count:A")
    assert seen.index("map:B") < seen.index("count:B")
    assert result.statuses["all"] == OK
    assert Path("counts/A.txt").exists()


def test_rerun_without_changes_executes_nothing(workdir):
    _raw(workdir, "A")
    wf = _pipeline(["A"])
    execute(_graph(wf), run_fn=_touch_outputs)

    calls = []
    result = execute(_graph(wf), run_fn=lambda job: calls.append(job.name))

    # only the output-less aggregation rule runs again
    assert [c for c in calls if c != "all"] == []
    assert result.statuses["count[sample=A]"] == UP_TO_DATE
    assert result.statuses["map[sample=A]"] == UP_TO_DATE


def test_newer_input_makes_downstream_outdated(workdir):
    _raw(workdir, "A")
    wf = _pipeline(["A"])
    execute(_graph(wf), run_fn=_touch_outputs)

    now = time.time()
    _set_mtime("mapped/A.bam", now - 100)
    _set_mtime("counts/A.txt", now - 100)
    _set_mtime("raw/A.fq", now)

    reasons = outdated_jobs(_graph(wf))
    names = {k[0]: r for k, r in reasons.items()}
    assert names["map"].startswith("input newer")
    assert names["count"] == "updated input"


def test_force_reruns_named_target(workdir):
    _raw(workdir, "A")
    wf = _pipeline(["A"])
    execute(_graph(wf), run_fn=_touch_outputs)

    ran = []

    def run_fn(job):
        ran.append(job.rule.name)
        _touch_outputs(job)

    execute(_graph(wf, ["counts/A.txt"]), force={"counts/A.txt"}, run_fn=run_fn)
    assert ran == ["count"]

    ran.clear()
    execute(_graph(wf, ["counts/A.txt"]), force="all", run_fn=run_fn)
    assert ran == ["map", "count"]


def test_dry_run_has_no_side_effects(workdir):
    _raw(workdir, "A", "B")
    before = sorted(p.relative_to(workdir) for p in workdir.rglob("*"))

    def boom(job):
        raise AssertionError("dry run must not execute")

    result = execute(_graph(_pipeline()), dry_run=True, run_fn=boom)

    assert sorted(p.relative_to(workdir) for p in workdir.rglob("*")) == before
    assert result.statuses["map[sample=A]"] == PLANNED
    assert result.commands.index("map raw/A.fq > mapped/A.bam") < result.commands.index(
        "count mapped/A.bam > counts/A.txt"
    )


def test_failure_blocks_dependents_but_not_independent_jobs(workdir):
    _raw(workdir, "A", "B")

    def run_fn(job):
        if job.name == "map[sample=A]":
            raise JobFailure(job.name, job.shell, 2, "disk full")
        _touch_outputs(job)

    result = execute(_graph(_pipeline()), cores=1, keep_going=True, run_fn=run_fn)

    assert not result.success
    assert result.statuses["map[sample=A]"] == FAILED
    assert result.statuses["count[sample=A]"] == BLOCKED
    assert result.statuses["all"] == BLOCKED
    assert result.statuses["count[sample=B]"] == OK
    assert "exit=2" in result.errors["map[sample=A]"]


def test_failure_without_keep_going_stops_dispatch(workdir):
    _raw(workdir, "A", "B")

    def run_fn(job):
        if job.rule.name == "map":
            raise JobFailure(job.name, job.shell, 1)
        _touch_outputs(job)

    result = execute(_graph(_pipeline()), cores=1, run_fn=run_fn)

    assert result.statuses["map[sample=A]"] == FAILED
    assert CANCELLED in result.statuses.values() or result.statuses["map[sample=B]"] == FAILED
    assert not Path("counts/B.txt").exists()


def test_missing_output_is_a_failure(workdir):
    _raw(workdir, "A")
    result = execute(_graph(_pipeline(["A"]), ["mapped/A.bam"]), run_fn=lambda job: None)
    assert result.statuses["map[sample=A]"] == FAILED
    assert "did not create" in result.errors["map[sample=A]"]


def test_cores_budget_limits_concurrency(workdir):
    _raw(workdir, "A", "B", "C", "D")
    active = []
    peak = []
    lock = threading.Lock()

    def run_fn(job):
        with lock:
            active.append(job.name)
            peak.append(len(active))
        time.sleep(0.05)
        _touch_outputs(job)
        with lock:
            active.remove(job.name)

    result = execute(_graph(_pipeline("ABCD"), expand("mapped/{s}.bam", s=list("ABCD"))), cores=2, run_fn=run_fn)
    assert result.success
    assert max(peak) <= 2


def test_temp_output_removed_after_consumers(workdir):
    _raw(workdir, "A")
    wf = Workflow()
    wf.rule("all", input="counts/A.txt")
    wf.rule("map", input="raw/{s}.fq", output=temp("mapped/{s}.sam"))
    wf.rule("count", input="mapped/{s}.sam", output="counts/{s}.txt")

    result = execute(_graph(wf), run_fn=_touch_outputs)

    assert result.success
    assert not Path("mapped/A.sam").exists()
    assert Path("counts/A.txt").exists()

    # deleted temp output does not force a rebuild
    reasons = outdated_jobs(_graph(wf))
    assert {k[0] for k in reasons} == {"all"}

def test_temp_output_removed_when_consumer_is_up_to_date(workdir):
    _raw(workdir, "A")
    wf = Workflow()
    wf.rule("all", input="counts/A.txt")
    wf.rule("map", input="raw/{s}.fq", output=temp("mapped/{s}.sam"))
    wf.rule("count", input="mapped/{s}.sam", output="counts/{s}.txt")

    assert execute(_graph(wf), notemp=True, run_fn=_touch_outputs).success
    assert Path("mapped/A.sam").exists()

    ran = []
    result = execute(_graph(wf), run_fn=lambda job: ran.append(job.name) or _touch_outputs(job))

    assert ran == ["all"]
    assert result.statuses["count[s=A]"] == UP_TO_DATE
    assert not Path("mapped/A.sam").exists()


def test_up_to_date_jobs_keep_status_after_failure(workdir):
    _raw(workdir, "A", "B")
    wf = _pipeline()
    assert execute(_graph(wf, ["mapped/A.bam"]), run_fn=_touch_outputs).success

    def run_fn(job):
        if job.name == "map[sample=B]":
            raise JobFailure(job.name, job.shell, 1)
        _touch_outputs(job)

    result = execute(_graph(wf), cores=1, run_fn=run_fn)

    assert result.statuses["map[sample=B]"] == FAILED
    assert result.statuses["map[sample=A]"] == UP_TO_DATE
    assert result.statuses["count[sample=B]"] == BLOCKED



def test_real_shell_commands(workdir):
    _raw(workdir, "A")
    wf = Workflow()
    wf.rule("copy", input="raw/{s}.fq", output="copy/{s}.fq", shell="cat {input} > {output}")
    wf.rule("fail", input="copy/{s}.fq", output="bad/{s}.txt", shell="exit 3")

    ok = execute(_graph(wf, ["copy/A.fq"]))
    assert ok.statuses["copy[s=A]"] == OK
    assert Path("copy/A.fq").read_text() == "ACGT\n"

    bad = execute(_graph(wf, ["bad/A.txt"]))
    assert bad.statuses["fail[s=A]"] == FAILED
    assert "exit=3" in bad.errors["fail[s=A]"]


def test_debug_lines_report_staleness(workdir, monkeypatch, capsys):
    _raw(workdir, "A")
    monkeypatch.setattr("ruleflow.ui.console._console", Console(debug=True))
    execute(_graph(_pipeline(["A"])), dry_run=True)

    err = capsys.readouterr().err
    assert "[DEBUG] map[sample=A]: missing output mapped/A.bam" in err
    assert "[DEBUG] mapped/A.bam: rule map" in err
