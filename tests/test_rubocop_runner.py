import json
import subprocess

import pytest

from analyzers import rubocop_runner
from analyzers.rubocop_runner import RubocopInvocationError, RubocopRunner, parse_report
from errors import ToolError
from models import AnalysisMode

RUBOCOP_JSON = {
    "metadata": {"rubocop_version": "1.64.1", "ruby_engine": "ruby", "ruby_version": "3.3.0"},
    "files": [
        {
            "path": "app/models/user.rb",
            "offenses": [
                {
                    "severity": "convention",
                    "message": "Style/StringLiterals: Prefer single-quoted strings.",
                    "cop_name": "Style/StringLiterals",
                    "corrected": False,
                    "correctable": True,
                    "location": {"start_line": 4, "start_column": 11, "last_line": 4,
                                 "last_column": 17, "length": 7, "line": 4, "column": 11},
                },
                {
                    "severity": "convention",
                    "message": "Metrics/MethodLength: Method has too many lines. [12/10]",
                    "cop_name": "Metrics/MethodLength",
                    "corrected": False,
                    "correctable": False,
                    "location": {"start_line": 8, "start_column": 3, "last_line": 21,
                                 "last_column": 5, "length": 300, "line": 8, "column": 3},
                },
            ],
        },
        {"path": "./config.ru", "offenses": []},
    ],
    "summary": {"offense_count": 2, "target_file_count": 2, "inspected_file_count": 2},
}


def test_parse_report_maps_locations():
    report = parse_report(json.dumps(RUBOCOP_JSON))
    assert report.offense_count == 2
    assert report.tool_version == "1.64.1"
    assert [f.path for f in report.files] == ["app/models/user.rb", "config.ru"]
    first, second = report.files[0].offenses
    assert (first.start_line, first.end_line, first.start_column, first.end_column) == (4, 4, 11, 17)
    assert first.cop_name == "Style/StringLiterals"
    assert (second.start_line, second.end_line) == (8, 21)


@pytest.mark.parametrize("stdout", ["", "not json", "[]", json.dumps({"files": []})])
def test_unusable_output_is_a_tool_error(stdout):
    with pytest.raises(ToolError):
        parse_report(stdout)


@pytest.fixture
def fake_rubocop(monkeypatch):
    monkeypatch.setattr(rubocop_runner.shutil, "which", lambda name: f"/usr/bin/{name}")
    seen = {}

    def install(returncode=1, stdout=json.dumps(RUBOCOP_JSON), stderr="", raise_timeout=False):
        def _run(cmd, cwd, text, capture_output, check, timeout):
            seen.update(cmd=cmd, cwd=cwd, timeout=timeout)
            if raise_timeout:
                raise subprocess.TimeoutExpired(cmd, timeout)
            return subprocess.CompletedProcess(cmd, returncode, stdout, stderr)

        monkeypatch.setattr(rubocop_runner.subprocess, "run", _run)
        return seen

    return install


def test_report_mode_command(fake_rubocop, tmp_path):
    seen = fake_rubocop()
    report = RubocopRunner(timeout_s=30).run(str(tmp_path))
    assert seen["cmd"] == ["/usr/bin/rubocop", "--format", "json", "--force-exclusion", "."]
    assert seen["cwd"] == str(tmp_path) and seen["timeout"] == 30
    assert report.offense_count == 2


def test_autocorrect_mode_adds_flag(fake_rubocop, tmp_path):
    seen = fake_rubocop(returncode=0)
    RubocopRunner(rubocop_bin="bundle-rubocop").run(str(tmp_path), AnalysisMode.AUTOCORRECT)
    assert seen["cmd"][0] == "/usr/bin/bundle-rubocop"
    assert "--autocorrect" in seen["cmd"]


def test_abnormal_exit_raises(fake_rubocop, tmp_path):
    fake_rubocop(returncode=2, stdout="", stderr="Error: unrecognized cop Foo/Bar")
    with pytest.raises(RubocopInvocationError) as ei:
        RubocopRunner().run(str(tmp_path))
    assert ei.value.exit_code == 2 and not ei.value.timed_out
    assert "Foo/Bar" in str(ei.value)


def test_timeout_is_flagged(fake_rubocop, tmp_path):
    fake_rubocop(raise_timeout=True)
    with pytest.raises(ToolError) as ei:
        RubocopRunner(timeout_s=1).run(str(tmp_path))
    assert ei.value.timed_out is True


def test_missing_binary(monkeypatch, tmp_path):
    monkeypatch.setattr(rubocop_runner.shutil, "which", lambda name: None)
    with pytest.raises(RubocopInvocationError) as ei:
        RubocopRunner().run(str(tmp_path))
    assert ei.value.exit_code == 127
