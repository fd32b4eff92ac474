from __future__ import annotations

import shutil
from pathlib import Path

import allure
from conftest import commit_file, configure_identity, finish_task, git

from task_fanout.orchestrator.errors import (
    BranchInUseElsewhere,
    RebaseConflict,
    WorkspaceMissing,
)
from task_fanout.orchestrator.git import branch_exists
from task_fanout.orchestrator.lifecycle import TaskLifecycleController
from task_fanout.orchestrator.models import TaskStatus
from task_fanout.orchestrator.repository import TaskRepository

pytestmark = [
    allure.epic("Integration"),
    allure.feature("Rebase and Fast-Forward"),
]


def _tree(repo: Path, ref: str = "main") -> list[str]:
    return git(repo, "ls-tree", "-r", "--name-only", ref).splitlines()


def test_check_commits_rebases_and_fast_forwards_finished_task(
    lifecycle: TaskLifecycleController,
    repository: TaskRepository,
    git_repo: Path,
) -> None:
    task = lifecycle.spawn("fix-auth", "Fix the login redirect loop.").task
    finish_task(task, {"auth.py": "REDIRECT_LIMIT = 3\n"})

    summary = lifecycle.check()

    assert (summary.checked, summary.completed, summary.merged) == (1, 1, 1)
    assert summary.failures == []
    assert "auth.py" in _tree(git_repo)
    assert ".task-fanout" not in " ".join(_tree(git_repo))
    assert git(git_repo, "log", "-1", "--format=%B", "main") == (
        "fix: fix-auth\n\nCompleted by task-fanout"
    )
    assert (git_repo / "auth.py").read_text("utf-8") == "REDIRECT_LIMIT = 3\n"
    assert git(git_repo, "status", "--porcelain") == ""
    assert not task.workspace_path.exists()
    assert not branch_exists(git_repo, task.branch)
    merged = repository.get_task(task.task_id)
    assert merged is not None
    assert merged.status is TaskStatus.MERGED
    assert merged.merged_at is not None


def test_same_slug_tasks_merge_independently(
    lifecycle: TaskLifecycleController,
    git_repo: Path,
) -> None:
    first = lifecycle.spawn("fix-ui", "Header spacing").task
    second = lifecycle.spawn("fix-ui", "Footer spacing").task
    finish_task(first, {"header.css": "h1 { margin: 0; }\n"})
    finish_task(second, {"footer.css": "footer { margin: 0; }\n"})

    first_result = lifecycle.merge(first.short_id)
    second_result = lifecycle.merge(second.short_id)

    assert first_result.success
    assert second_result.success
    assert {"header.css", "footer.css"} <= set(_tree(git_repo))
    subjects = git(git_repo, "log", "--format=%s", "main").splitlines()
    assert subjects[:2] == ["fix: fix-ui", "fix: fix-ui"]
    assert git(git_repo, "rev-list", "--merges", "--count", "main") == "0"


def test_base_checked_out_in_secondary_worktree_is_updated_in_place(
    lifecycle: TaskLifecycleController,
    git_repo: Path,
    tmp_path: Path,
) -> None:
    git(git_repo, "branch", "develop")
    develop_checkout = tmp_path / "develop"
    git(git_repo, "worktree", "add", str(develop_checkout), "develop")
    main_before = git(git_repo, "rev-parse", "main")
    task = lifecycle.spawn("fix-api", "desc", base_branch="develop").task
    finish_task(task, {"api.py": "VERSION = 2\n"})

    result = lifecycle.merge("fix-api")

    assert result.success, result.error
    assert result.base_location is not None
    assert result.base_location.resolve() == develop_checkout.resolve()
    assert (develop_checkout / "api.py").read_text("utf-8") == "VERSION = 2\n"
    assert git(develop_checkout, "status", "--porcelain") == ""
    assert git(git_repo, "rev-parse", "main") == main_before
    assert "api.py" in _tree(git_repo, "develop")


def test_rebase_conflict_leaves_task_retryable(
    lifecycle: TaskLifecycleController,
    repository: TaskRepository,
    git_repo: Path,
) -> None:
    task = lifecycle.spawn("fix-readme", "desc").task
    commit_file(task.workspace_path, "README.md", "# task version\n", "task edit")
    main_before = commit_file(git_repo, "README.md", "# main version\n", "main edit")
    branch_before = git(git_repo, "rev-parse", task.branch)
    finish_task(task)

    result = lifecycle.merge(task.short_id)

    assert not result.success
    assert isinstance(result.error, RebaseConflict)
    assert result.error.remediation is not None
    assert result.error.remediation.endswith(f"task-fanout merge {task.short_id}")
    assert result.task.status is TaskStatus.ACTIVE
    assert git(git_repo, "rev-parse", "main") == main_before
    assert git(git_repo, "rev-parse", task.branch) == branch_before
    assert task.workspace_path.is_dir()
    assert git(task.workspace_path, "status", "--porcelain") == ""
    stored = repository.get_task(task.task_id)
    assert stored is not None
    assert stored.status is TaskStatus.ACTIVE


def test_local_files_at_base_checkout_survive_integration(
    lifecycle: TaskLifecycleController,
    git_repo: Path,
) -> None:
    task = lifecycle.spawn("fix-editor", "desc").task
    local_settings = git_repo / ".vscode" / "settings.json"
    local_settings.parent.mkdir()
    local_settings.write_text('{"mine": true}\n', "utf-8")
    finish_task(
        task,
        {
            ".vscode/settings.json": '{"task": true}\n',
            "editor.py": "TAB = 4\n",
        },
    )

    result = lifecycle.merge(task.short_id)

    assert result.success, result.error
    assert local_settings.read_text("utf-8") == '{"mine": true}\n'
    tree = _tree(git_repo)
    assert "editor.py" in tree
    assert ".vscode/settings.json" not in tree


def test_tracked_local_files_keep_base_history(
    lifecycle: TaskLifecycleController,
    git_repo: Path,
) -> None:
    commit_file(git_repo, ".vscode/settings.json", '{"base": true}\n', "editor settings")
    task = lifecycle.spawn("fix-editor", "desc").task
    (task.workspace_path / "settings.local.json").write_text('{"task": true}\n', "utf-8")
    git(task.workspace_path, "add", "-f", "settings.local.json")
    git(task.workspace_path, "commit", "-m", "assistant commit")
    finish_task(
        task,
        {
            ".vscode/settings.json": '{"task": true}\n',
            "editor.py": "TAB = 4\n",
        },
    )

    result = lifecycle.merge(task.short_id)

    assert result.success, result.error
    assert any(step.startswith("reverted local files") for step in result.steps)
    tree = _tree(git_repo)
    assert "editor.py" in tree
    assert "settings.local.json" not in tree
    assert git(git_repo, "show", "main:.vscode/settings.json") == '{"base": true}'
    assert (git_repo / ".vscode" / "settings.json").read_text("utf-8") == '{"base": true}\n'
    assert git(git_repo, "status", "--porcelain") == ""


def test_legacy_marker_survives_failed_integration(
    lifecycle: TaskLifecycleController,
    git_repo: Path,
) -> None:
    task = lifecycle.spawn("fix-readme", "desc").task
    commit_file(task.workspace_path, "README.md", "# task version\n", "task edit")
    commit_file(git_repo, "README.md", "# main version\n", "main edit")
    (task.workspace_path / ".task_complete").write_text("done\n", "utf-8")

    first = lifecycle.check()
    second = lifecycle.check()

    assert (first.completed, first.merged) == (1, 0)
    assert (second.completed, second.merged) == (1, 0)
    assert isinstance(second.failures[0].error, RebaseConflict)
    assert (task.workspace_path / ".task_complete").is_file()
    assert git(task.workspace_path, "status", "--porcelain") == ""


def test_dirty_base_checkout_blocks_fast_forward_without_side_effects(
    lifecycle: TaskLifecycleController,
    repository: TaskRepository,
    git_repo: Path,
) -> None:
    task = lifecycle.spawn("fix-auth", "desc").task
    finish_task(task, {"auth.py": "x = 1\n"})
    (git_repo / "README.md").write_text("# work in progress\n", "utf-8")
    main_before = git(git_repo, "rev-parse", "main")

    blocked = lifecycle.merge(task.short_id)

    assert not blocked.success
    assert isinstance(blocked.error, BranchInUseElsewhere)
    assert "README.md" in str(blocked.error)
    assert git(git_repo, "rev-parse", "main") == main_before
    assert (git_repo / "README.md").read_text("utf-8") == "# work in progress\n"
    assert task.workspace_path.is_dir()
    assert blocked.task.status is TaskStatus.ACTIVE

    git(git_repo, "checkout", "--", "README.md")
    retried = lifecycle.merge(task.short_id)

    assert retried.success, retried.error
    assert "auth.py" in _tree(git_repo)
    stored = repository.get_task(task.task_id)
    assert stored is not None
    assert stored.status is TaskStatus.MERGED


def test_missing_workspace_is_reported_with_kill_remediation(
    lifecycle: TaskLifecycleController,
    git_repo: Path,
) -> None:
    task = lifecycle.spawn("fix-auth", "desc").task
    shutil.rmtree(task.workspace_path)
    main_before = git(git_repo, "rev-parse", "main")

    result = lifecycle.merge(task.short_id)

    assert not result.success
    assert isinstance(result.error, WorkspaceMissing)
    assert f"task-fanout kill {task.short_id}" in (result.error.remediation or "")
    assert git(git_repo, "rev-parse", "main") == main_before


def _with_origin(git_repo: Path, tmp_path: Path) -> Path:
    """Attach a bare origin and return a second clone that can push to it."""

    origin = tmp_path / "origin.git"
    git(tmp_path, "clone", "--bare", str(git_repo), str(origin))
    git(git_repo, "remote", "add", "origin", str(origin))
    git(git_repo, "fetch", "origin")
    teammate = tmp_path / "teammate"
    git(tmp_path, "clone", str(origin), str(teammate))
    configure_identity(teammate)
    return teammate


def test_integration_rebases_onto_newer_upstream(
    lifecycle: TaskLifecycleController,
    git_repo: Path,
    tmp_path: Path,
) -> None:
    teammate = _with_origin(git_repo, tmp_path)
    task = lifecycle.spawn("fix-auth", "desc").task
    upstream = commit_file(teammate, "upstream.txt", "from teammate\n")
    git(teammate, "push", "origin", "main")
    finish_task(task, {"auth.py": "x = 1\n"})

    result = lifecycle.merge(task.short_id)

    assert result.success, result.error
    assert any("upstream" in step for step in result.steps)
    assert {"auth.py", "upstream.txt"} <= set(_tree(git_repo))
    assert git(git_repo, "merge-base", "--is-ancestor", upstream, "main") == ""


def test_diverged_upstream_falls_back_to_local_base(
    lifecycle: TaskLifecycleController,
    git_repo: Path,
    tmp_path: Path,
) -> None:
    teammate = _with_origin(git_repo, tmp_path)
    commit_file(teammate, "upstream.txt", "from teammate\n")
    git(teammate, "push", "origin", "main")
    commit_file(git_repo, "local.txt", "local only\n")
    task = lifecycle.spawn("fix-auth", "desc").task
    finish_task(task, {"auth.py": "x = 1\n"})

    result = lifecycle.merge(task.short_id)

    assert result.success, result.error
    tree = _tree(git_repo)
    assert {"auth.py", "local.txt"} <= set(tree)
    assert "upstream.txt" not in tree
