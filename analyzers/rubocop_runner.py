from __future__ import annotations

import json
import logging
import os
import shlex
import shutil
import subprocess
from typing import Any, Dict, Iterable, List, Optional

from errors import ToolError
from models import AnalysisMode, AnalysisReport, FileOffenses, Offense

log = logging.getLogger("webhook.rubocop")

# --------------------------------- Public API ---------------------------------


class RubocopInvocationError(ToolError):
    def __init__(self, exit_code: int, cmd: List[str], stdout: str, stderr: str, timed_out: bool = False):
        self.exit_code = exit_code
        self.cmd = cmd
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(_fmt_rubocop_error(cmd, exit_code, stderr), timed_out=timed_out)


class RubocopRunner:
    """Runs RuboCop inside a working copy and returns a typed AnalysisReport."""

    def __init__(self, rubocop_bin: Optional[str] = None, timeout_s: int = 300):
        self.rubocop_bin = rubocop_bin
        self.timeout_s = timeout_s

    def build_command(self, mode: AnalysisMode = AnalysisMode.REPORT) -> List[str]:
        cmd = [_ensure_rubocop_available(self.rubocop_bin), "--format", "json", "--force-exclusion"]
        if mode == AnalysisMode.AUTOCORRECT:
            cmd.append("--autocorrect")
        return cmd

    def run(self, target_path: str, mode: AnalysisMode = AnalysisMode.REPORT) -> AnalysisReport:
        cmd = self.build_command(mode)
        log.info("rubocop mode=%s root=%s", mode.value, target_path)
        try:
            proc = subprocess.run(
                [*cmd, "."],
                cwd=target_path,
                text=True,
                capture_output=True,
                check=False,
                timeout=self.timeout_s,
            )
        except subprocess.TimeoutExpired as e:
            raise RubocopInvocationError(
                exit_code=124,
                cmd=cmd,
                stdout=_text(e.stdout),
                stderr=f"RuboCop timed out after {self.timeout_s}s: {_text(e.stderr)}",
                timed_out=True,
            )

        # 0 = clean; 1 = offenses found; 2 = abnormal termination
        if proc.returncode >= 2:
            raise RubocopInvocationError(proc.returncode, cmd, proc.stdout or "", proc.stderr or "")

        report = parse_report(proc.stdout)
        log.info("rubocop done offenses=%d files=%d version=%s",
                 report.offense_count, report.inspected_file_count, report.tool_version)
        return report


def parse_report(stdout: str) -> AnalysisReport:
    """Turn ``rubocop --format json`` output into an AnalysisReport."""
    data = _parse_json_or_raise(stdout)
    summary = data.get("summary") or {}
    metadata = data.get("metadata") or {}
    files = list(_normalize_files(data.get("files") or []))
    try:
        offense_count = int(summary["offense_count"])
    except (KeyError, TypeError, ValueError):
        raise RubocopInvocationError(65, ["rubocop", "--format", "json"], (stdout or "")[:800],
                                     "RuboCop JSON has no summary.offense_count")
    return AnalysisReport(
        offense_count=offense_count,
        target_file_count=int(summary.get("target_file_count") or 0),
        inspected_file_count=int(summary.get("inspected_file_count") or 0),
        tool_version=str(metadata.get("rubocop_version") or "unknown"),
        files=files,
    )

# --------------------------------- Internals ----------------------------------


def _ensure_rubocop_available(configured: Optional[str]) -> str:
    """Return the RuboCop executable path or raise."""
    name = configured or os.getenv("RUBOCOP_BIN") or "rubocop"
    exe = shutil.which(name)
    if not exe:
        raise RubocopInvocationError(
            exit_code=127,
            cmd=[name, "--version"],
            stdout="",
            stderr=(
                "RuboCop CLI not found. Install with `gem install rubocop`, "
                "or point to the binary via RUBOCOP_BIN."
            ),
        )
    return exe


def _parse_json_or_raise(stdout: str) -> Dict[str, Any]:
    try:
        data = json.loads(stdout or "")
    except json.JSONDecodeError as e:
        sample = (stdout or "").strip()[:800]
        raise RubocopInvocationError(exit_code=65, cmd=["rubocop", "--format", "json"], stdout=sample, stderr=str(e))
    if not isinstance(data, dict):
        raise RubocopInvocationError(65, ["rubocop", "--format", "json"], str(data)[:800], "expected a JSON object")
    return data


def _normalize_files(files: Iterable[Dict[str, Any]]) -> Iterable[FileOffenses]:
    for f in files:
        offenses = []
        for o in f.get("offenses") or []:
            loc = o.get("location") or {}
            start_line = int(loc.get("start_line") or loc.get("line") or 1)
            start_column = int(loc.get("start_column") or loc.get("column") or 1)
            offenses.append(Offense(
                start_line=start_line,
                end_line=int(loc.get("last_line") or start_line),
                start_column=start_column,
                end_column=int(loc.get("last_column") or start_column),
                message=o.get("message") or "",
                cop_name=o.get("cop_name"),
            ))
        yield FileOffenses(path=_strip_dot_slash(f.get("path") or ""), offenses=offenses)


def _strip_dot_slash(path: str) -> str:
    return path[2:] if path.startswith("./") else path


def _text(v: Any) -> str:
    if isinstance(v, bytes):
        return v.decode("utf-8", "replace")
    return v or ""


def _fmt_rubocop_error(cmd: List[str], code: int, stderr: str) -> str:
    return (
        f"RuboCop failed (exit={code}).\n"
        f"Command: {shlex.join(cmd)}\n"
        f"STDERR (truncated):\n{(stderr or '').strip()[:800]}"
    )
