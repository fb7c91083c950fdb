# cli_test.py
from __future__ import annotations

import textwrap
from pathlib import Path

import pytest
from click.testing import CliRunner

from ruleflow.cli import cli, expand_config_args

WORKFLOW = textwrap.dedent(
    """
    from ruleflow import config_value, expand

    config = workflow.configfile("config.yaml")

    workflow.rule("all", input=expand("out/{sample}.txt", sample=config["samples"]))
    workflow.rule(
        "greet",
        input="raw/{sample}.txt",
        output="out/{sample}.txt",
        params={"greeting": config_value("greeting", default="hello")},
        shell="echo {params.greeting} > {output} && cat {input} >> {output}",
    )
    """
)


@pytest.fixture
def project(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    Path("ruleflow_workflow.py").write_text(WORKFLOW)
    Path("config.yaml").write_text("samples: [A, B]\n")
    Path("raw").mkdir()
    for s in "AB":
        Path(f"raw/{s}.txt").write_text(f"{s}\n")
    return tmp_path


def test_expand_config_args():
    assert expand_config_args(["--config", "a=1", "b=2", "--", "t.txt"]) == [
        "--config", "a=1", "--config", "b=2", "t.txt",
    ]
    assert expand_config_args(["-n", "--config", "a=1", "-p"]) == ["-n", "--config", "a=1", "-p"]


def test_run_builds_targets(project):
    result = CliRunner().invoke(cli, ["run", "-j", "2", "--config", "greeting=hi", "--"])
    assert result.exit_code == 0, result.output
    assert Path("out/A.txt").read_text() == "hi\nA\n"
    assert "SUCCESS" in result.output


def test_dry_run_prints_commands(project):
    result = CliRunner().invoke(cli, ["run", "-n", "-p", "out/B.txt"])
    assert result.exit_code == 0, result.output
    assert "echo hello > out/B.txt" in result.output
    assert "1 of 1 job(s) would run." in result.output
    assert not Path("out").exists()


def test_second_run_is_up_to_date(project):
    runner = CliRunner()
    assert runner.invoke(cli, ["run"]).exit_code == 0
    result = runner.invoke(cli, ["run", "-n"])
    assert "1 of 3 job(s) would run." in result.output


def test_missing_rule_exit_code(project):
    result = CliRunner().invoke(cli, ["run", "out/C.txt"])
    assert result.exit_code == 1
    assert "NoRuleToMakeTarget" in result.output


def test_failed_job_exit_code(project):
    Path("ruleflow_workflow.py").write_text('workflow.rule("boom", output="x.txt", shell="exit 5")\n')
    result = CliRunner().invoke(cli, ["run"])
    assert result.exit_code == 1
    assert "FAILED" in result.output


def test_list_and_dag(project):
    runner = CliRunner()
    listed = runner.invoke(cli, ["list"])
    assert listed.exit_code == 0
    assert "greet: out/{sample}.txt" in listed.output

    dot = runner.invoke(cli, ["dag", "out/A.txt"])
    assert dot.exit_code == 0
    assert dot.output.startswith("digraph ruleflow {")


def test_missing_workflow_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    result = CliRunner().invoke(cli, ["run"])
    assert result.exit_code == 1
    assert "No workflow file found" in result.output
