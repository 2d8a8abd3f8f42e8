from __future__ import annotations

import logging
import os
import re
import subprocess
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Mapping, Optional, Sequence
from urllib.parse import quote

from errors import ToolError

log = logging.getLogger("webhook.workspace")

_SAFE_COMPONENT = re.compile(r"[^A-Za-z0-9_.-]+")
_URL_CREDENTIALS = re.compile(r"(https?://)[^/@\s]+@")


class GitCommandError(ToolError):
    def __init__(self, cmd: Sequence[str], returncode: int, stderr: str = "", timed_out: bool = False):
        self.cmd = _redact(cmd)
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(
            f"git failed (exit={returncode}): {' '.join(self.cmd)}\n{(stderr or '').strip()[:800]}",
            timed_out=timed_out,
        )


class NothingToCommit(GitCommandError):
    def __init__(self, cmd: Sequence[str]):
        super().__init__(cmd, 1, "nothing to commit, working tree clean")


def _redact(args: Sequence[str]) -> List[str]:
    return [_URL_CREDENTIALS.sub(r"\1***@", str(a)) for a in args]


def build_git_env(env: Optional[Mapping[str, str]] = None) -> dict:
    e = dict(os.environ if env is None else env)
    e.setdefault("GIT_TERMINAL_PROMPT", "0")
    e.setdefault("GIT_CONFIG_NOSYSTEM", "1")
    return e


def authenticated_remote(server_url: str, full_name: str, token: str) -> str:
    """https://x-access-token:<token>@github.com/<owner>/<repo>.git"""
    host = server_url.rstrip("/").split("://", 1)[-1]
    return f"https://x-access-token:{quote(token, safe='')}@{host}/{full_name}.git"


def _check_ref(ref: str) -> str:
    # a leading dash would be parsed by git as an option
    if not ref or ref.startswith("-"):
        raise GitCommandError(["git", "checkout", ref], 128, f"refusing suspicious ref {ref!r}")
    return ref


class WorkingCopy:
    """A local clone plus the handful of git verbs the check-run flows need."""

    def __init__(self, path: Path, timeout_s: int = 120,
                 author_name: str = "Octo RuboCop",
                 author_email: str = "octo-rubocop[bot]@users.noreply.github.com"):
        self.path = Path(path)
        self.timeout_s = timeout_s
        self.author_name = author_name
        self.author_email = author_email

    def _git(self, *args: str, cwd: Optional[Path] = None) -> subprocess.CompletedProcess:
        cmd = ["git", "-c", "core.hooksPath=/dev/null", *args]
        log.debug("git %s", " ".join(_redact(args)))
        try:
            proc = subprocess.run(
                cmd,
                cwd=str(cwd or self.path),
                text=True,
                capture_output=True,
                check=False,
                timeout=self.timeout_s,
                env=build_git_env(),
            )
        except subprocess.TimeoutExpired as e:
            raise GitCommandError(cmd, 124, f"timed out after {self.timeout_s}s: {e.stderr or ''}", timed_out=True)
        except OSError as e:
            raise GitCommandError(cmd, 127, f"git not runnable: {e}")
        if proc.returncode != 0:
            raise GitCommandError(cmd, proc.returncode, proc.stderr or "")
        return proc

    def clone(self, remote_url: str) -> "WorkingCopy":
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._git("clone", "--quiet", "--no-tags", "--", remote_url, str(self.path), cwd=self.path.parent)
        return self

    def checkout(self, ref: str) -> None:
        # trailing "--" pins ref as a revision when a path shares its name
        self._git("checkout", "--quiet", _check_ref(ref), "--")

    def has_changes(self) -> bool:
        return bool(self._git("status", "--porcelain").stdout.strip())

    def commit_all(self, message: str) -> str:
        """Stage everything and commit. Raises NothingToCommit on a clean tree."""
        if not self.has_changes():
            raise NothingToCommit(["git", "commit", "-m", message])
        self._git("add", "--all")
        self._git(
            "-c", f"user.name={self.author_name}",
            "-c", f"user.email={self.author_email}",
            "commit", "--quiet", "-m", message,
        )
        return self._git("rev-parse", "HEAD").stdout.strip()

    def push(self, remote: str, branch: str) -> None:
        self._git("push", "--quiet", remote, f"HEAD:refs/heads/{_check_ref(branch)}")


class WorkingCopyManager:
    """Materialises disposable clones, one scratch directory per delivery."""

    def __init__(self, server_url: str = "https://github.com", timeout_s: int = 120,
                 author_name: str = "Octo RuboCop",
                 author_email: str = "octo-rubocop[bot]@users.noreply.github.com",
                 scratch_root: Optional[str] = None):
        self.server_url = server_url
        self.timeout_s = timeout_s
        self.author_name = author_name
        self.author_email = author_email
        self.scratch_root = scratch_root

    def remote_url(self, full_name: str, token: str) -> str:
        return authenticated_remote(self.server_url, full_name, token)

    @contextmanager
    def materialize(self, full_name: str, repo_name: str, token: str, ref: str,
                    delivery_id: str = "") -> Iterator[WorkingCopy]:
        """Clone ``full_name`` and check out ``ref``; the directory is removed on exit."""
        prefix = f"octo_{_SAFE_COMPONENT.sub('_', delivery_id)[:64]}_" if delivery_id else "octo_"
        with tempfile.TemporaryDirectory(prefix=prefix, dir=self.scratch_root) as td:
            wc = WorkingCopy(Path(td) / repo_name, timeout_s=self.timeout_s,
                             author_name=self.author_name, author_email=self.author_email)
            log.info("cloning repo=%s ref=%s into %s", full_name, ref, wc.path)
            wc.clone(self.remote_url(full_name, token))
            wc.checkout(ref)
            yield wc
