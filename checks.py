"""
Check-run lifecycle: queued -> in_progress -> completed, plus the "Fix this"
remediation flow offered on completed runs.

Every instance is built for one delivery and carries that delivery's
installation client and token; nothing here touches process-wide state.
"""

import logging
import time
from typing import Any, Dict, List, Optional

from errors import ToolError
from models import (
    AnalysisMode,
    AnalysisReport,
    AnalysisRunner,
    Annotation,
    CheckRun,
    CheckStatus,
    Conclusion,
    FixOutcome,
    InstallationToken,
    WebhookEvent,
)
from workspace import GitCommandError, WorkingCopyManager

log = logging.getLogger("webhook.checks")

FIX_ACTION_ID = "fix_rubocop_notices"
FIX_ACTION = {
    "label": "Fix this",
    "description": "Automatically fix all linter notices.",
    "identifier": FIX_ACTION_ID,
}
FIX_COMMIT_MESSAGE = "Automatically fix Octo RuboCop notices."
MAX_ANNOTATIONS_PER_REQUEST = 50


def _now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def build_annotations(report: AnalysisReport) -> List[Annotation]:
    """One notice-level annotation per offense, positions copied verbatim, titled by cop."""
    return [
        Annotation(
            path=f.path,
            start_line=o.start_line,
            end_line=o.end_line,
            start_column=o.start_column,
            end_column=o.end_column,
            message=o.message,
            title=o.cop_name,
        )
        for f in report.files
        for o in f.offenses
    ]


def conclusion_for(report: AnalysisReport) -> Conclusion:
    return Conclusion.SUCCESS if report.offense_count == 0 else Conclusion.NEUTRAL


def summarize_report(report: AnalysisReport, check_name: str) -> Dict[str, str]:
    summary = (
        f"{check_name} summary\n"
        f"- Offense count: {report.offense_count}\n"
        f"- File count: {report.target_file_count}\n"
        f"- Target file count: {report.inspected_file_count}"
    )
    return {"summary": summary, "text": f"{check_name} version: {report.tool_version}"}


class CheckRunLifecycle:
    def __init__(
        self,
        client,
        token: InstallationToken,
        workspace: WorkingCopyManager,
        runner: AnalysisRunner,
        check_name: str = "Octo RuboCop",
    ):
        self.client = client
        self.token = token
        self.workspace = workspace
        self.runner = runner
        self.check_name = check_name

    def close(self) -> None:
        """Release the installation client's HTTP connections once the delivery is done."""
        self.client.close()

    # ---------- queued ----------

    def create_check_run(self, event: WebhookEvent) -> int:
        """Ask GitHub for a new queued check run on the event's head commit."""
        source = event.payload.get("check_run") or event.payload["check_suite"]
        full_name = event.repository["full_name"]
        return self.client.create_check_run(full_name, source["head_sha"], self.check_name)

    # ---------- in_progress -> completed ----------

    def initiate_check_run(self, event: WebhookEvent) -> Optional[Conclusion]:
        cr = CheckRun.from_event(event)
        if cr.status == CheckStatus.COMPLETED:
            log.info("check run id=%s already completed; not restarting", cr.id)
            return None

        self.client.update_check_run(cr.repository_full_name, cr.id, {
            "name": self.check_name,
            "status": CheckStatus.IN_PROGRESS.value,
            "started_at": _now_iso(),
        })

        try:
            with self.workspace.materialize(cr.repository_full_name, event.repository["name"],
                                            self.token.token, cr.head_sha, event.delivery_id) as wc:
                report = self.runner.run(str(wc.path), AnalysisMode.REPORT)
        except ToolError as e:
            conclusion = Conclusion.TIMED_OUT if e.timed_out else Conclusion.FAILURE
            log.error("analysis failed check_run=%s conclusion=%s: %s", cr.id, conclusion.value, e)
            self._complete(cr, conclusion, {
                "summary": f"{self.check_name} could not analyse {cr.head_sha[:7]}.",
                "text": str(e)[:4000],
            }, [], actions=[])
            return conclusion
        except Exception as e:
            log.exception("analysis crashed check_run=%s", cr.id)
            self._complete(cr, Conclusion.FAILURE, {
                "summary": f"{self.check_name} crashed while analysing {cr.head_sha[:7]}.",
                "text": f"{type(e).__name__}: {e}"[:4000],
            }, [], actions=[])
            return Conclusion.FAILURE

        conclusion = conclusion_for(report)
        annotations = build_annotations(report) if conclusion != Conclusion.SUCCESS else []
        self._complete(cr, conclusion, summarize_report(report, self.check_name), annotations, actions=[FIX_ACTION])
        log.info("check run id=%s completed conclusion=%s annotations=%d", cr.id, conclusion.value, len(annotations))
        return conclusion

    def _complete(self, cr: CheckRun, conclusion: Conclusion, output: Dict[str, str],
                  annotations: List[Annotation], actions: List[Dict[str, Any]]) -> None:
        rendered = [a.to_github() for a in annotations]
        base_output = {"title": self.check_name, **output}
        payload: Dict[str, Any] = {
            "name": self.check_name,
            "status": CheckStatus.COMPLETED.value,
            "conclusion": conclusion.value,
            "completed_at": _now_iso(),
            "output": {**base_output, "annotations": rendered[:MAX_ANNOTATIONS_PER_REQUEST]},
        }
        if actions:
            payload["actions"] = actions
        self.client.update_check_run(cr.repository_full_name, cr.id, payload)
        # GitHub caps annotations per request; later batches append to the same output
        rest = rendered[MAX_ANNOTATIONS_PER_REQUEST:]
        while rest:
            batch, rest = rest[:MAX_ANNOTATIONS_PER_REQUEST], rest[MAX_ANNOTATIONS_PER_REQUEST:]
            self.client.update_check_run(cr.repository_full_name, cr.id,
                                         {"output": {**base_output, "annotations": batch}})

    # ---------- requested_action ----------

    def take_requested_action(self, event: WebhookEvent) -> FixOutcome:
        identifier = (event.payload.get("requested_action") or {}).get("identifier")
        if identifier != FIX_ACTION_ID:
            log.info("ignoring requested action %r", identifier)
            return FixOutcome.IGNORED

        cr = CheckRun.from_event(event)
        if not cr.head_branch:
            log.warning("check run id=%s has no head branch; cannot push fixes", cr.id)
            return FixOutcome.IGNORED

        full_name = cr.repository_full_name
        with self.workspace.materialize(full_name, event.repository["name"],
                                        self.token.token, cr.head_branch, event.delivery_id) as wc:
            self.runner.run(str(wc.path), AnalysisMode.AUTOCORRECT)
            if not wc.has_changes():
                log.info("no autocorrectable offenses repo=%s branch=%s", full_name, cr.head_branch)
                return FixOutcome.NO_CHANGES
            sha = wc.commit_all(FIX_COMMIT_MESSAGE)
            try:
                wc.push(self.workspace.remote_url(full_name, self.token.token), cr.head_branch)
            except GitCommandError as e:
                log.error("push failed repo=%s branch=%s: %s", full_name, cr.head_branch, e)
                return FixOutcome.PUSH_FAILED
        log.info("pushed autocorrect commit %s to %s:%s", sha[:7], full_name, cr.head_branch)
        return FixOutcome.PUSHED
