from __future__ import annotations

import hashlib
import stat
import sys
import textwrap
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from paf.config import AgentSettings, Settings  # noqa: E402
from paf.tools.vcs import GitRepository, head_revision, run_git  # noqa: E402

AGENT_PREAMBLE = f"""#!{sys.executable}
import json
import os
import subprocess
import sys
from pathlib import Path

ARGS = sys.argv[1:]
PROMPT = ARGS[ARGS.index("-p") + 1]
MODEL = ARGS[ARGS.index("--model") + 1]
WORKSPACE = Path.cwd()
RESPONSE = WORKSPACE / ".paf-response.md"


def git(*args):
    subprocess.run(["git", *args], cwd=WORKSPACE, check=True, capture_output=True)

"""


class RepoUnderTest(GitRepository):
    """Repository wrapper with the inspection helpers tests assert against."""

    @classmethod
    def initialise(cls, root: Path, *, commit: bool = True) -> "RepoUnderTest":
        """Initialise a repository at ``root`` with a local identity and one commit."""

        root.mkdir(parents=True, exist_ok=True)
        run_git(["init"], cwd=root)
        run_git(["config", "user.email", "friend@example.com"], cwd=root)
        run_git(["config", "user.name", "Phone a Friend"], cwd=root)
        run_git(["config", "commit.gpgsign", "false"], cwd=root)
        if commit:
            run_git(["add", "."], cwd=root)
            run_git(["commit", "--allow-empty", "-m", "Initial commit"], cwd=root)
        return cls(root)

    def head(self) -> str:
        return head_revision(self.root)

    def has_branch(self, name: str) -> bool:
        probe = self.git("show-ref", "--verify", "--quiet", f"refs/heads/{name}", check=False)
        return probe.returncode == 0

    def worktree_paths(self) -> List[Path]:
        result = self.git("worktree", "list", "--porcelain")
        return [
            Path(line[len("worktree "):].strip()).resolve()
            for line in result.stdout.splitlines()
            if line.startswith("worktree ")
        ]


@pytest.fixture()
def git_repo(tmp_path: Path) -> RepoUnderTest:
    """Create a repository with one committed README."""

    repo_root = tmp_path / "repo"
    repo_root.mkdir()
    (repo_root / "README.md").write_text("# Test\n", encoding="utf-8")
    return RepoUnderTest.initialise(repo_root)


@pytest.fixture()
def make_repo(tmp_path: Path) -> Callable[..., RepoUnderTest]:
    def factory(name: str, *, commit: bool = True) -> RepoUnderTest:
        return RepoUnderTest.initialise(tmp_path / name, commit=commit)

    return factory


@pytest.fixture()
def non_repo(tmp_path: Path) -> Path:
    path = tmp_path / "plain-dir"
    path.mkdir()
    return path


@dataclass(slots=True)
class FakeAgent:
    """Executable stand-in for the agent CLI plus settings pointing at it."""

    path: Path
    settings: Settings

    def with_timeout(self, seconds: float) -> Settings:
        agent = self.settings.agent.model_copy(update={"timeout": seconds, "terminate_grace": 1.0})
        return self.settings.model_copy(update={"agent": agent})


@pytest.fixture()
def make_agent(tmp_path: Path) -> Callable[[str], FakeAgent]:
    """Write a Python script that behaves like the agent CLI.

    The body runs with ``PROMPT``, ``MODEL``, ``WORKSPACE``, ``RESPONSE`` and a
    ``git`` helper already defined.
    """

    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    counter = {"value": 0}

    def factory(body: str) -> FakeAgent:
        counter["value"] += 1
        script = bin_dir / f"fake-agent-{counter['value']}"
        script.write_text(AGENT_PREAMBLE + textwrap.dedent(body).lstrip(), encoding="utf-8")
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        settings = Settings(agent=AgentSettings(command=str(script)))
        return FakeAgent(path=script, settings=settings)

    return factory


def tree_digest(root: Path) -> str:
    """Hash every file outside ``.git`` so mutations of the tree are detectable."""

    digest = hashlib.sha256()
    for path in sorted(root.rglob("*")):
        relative = path.relative_to(root)
        if relative.parts and relative.parts[0] == ".git":
            continue
        digest.update(relative.as_posix().encode("utf-8"))
        if path.is_file() and not path.is_symlink():
            digest.update(path.read_bytes())
    return digest.hexdigest()


@pytest.fixture()
def digest_tree() -> Callable[[Path], str]:
    return tree_digest


@pytest.fixture(autouse=True)
def _isolated_git_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    # Agent scripts commit inside worktrees; keep host git config out of it.
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Phone a Friend")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "friend@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Phone a Friend")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "friend@example.com")
    monkeypatch.delenv("GIT_DIR", raising=False)
    monkeypatch.delenv("GIT_WORK_TREE", raising=False)
    monkeypatch.delenv("GIT_INDEX_FILE", raising=False)
