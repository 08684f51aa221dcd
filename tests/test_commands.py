"""Tests for etch.cli and etch.commands."""

import json
from subprocess import CompletedProcess
from unittest.mock import patch
import pytest

from etch.cli import main
from etch.lib.models import Status
from etch.lib.parser import parse_plan_file
from etch.lib.progress import parse_session_file

from conftest import BILLING_PLAN, SIMPLE_PLAN, add_plan, add_session


@pytest.fixture
def auth(auth_project, monkeypatch):
    monkeypatch.chdir(auth_project)
    return auth_project


def _plan(root, slug="auth-system"):
    return parse_plan_file(root / ".etch" / "plans" / f"{slug}.md")


def _session(root, number=1, task_id="1.2", slug="auth-system"):
    path = root / ".etch" / "progress" / f"{slug}--task-{task_id}--{number:03d}.md"
    return parse_session_file(path, slug)


class TestProgressStart:

    def test_creates_session(self, auth, capsys):
        assert main(["progress", "start", "auth-system", "1.2"]) == 0

        assert "Task 1.2 started (session 001)" in capsys.readouterr().out
        assert _plan(auth).task_by_id("1.2").status == Status.IN_PROGRESS
        assert _session(auth).status == "in_progress"

    def test_reuses_latest_session(self, auth, capsys):
        main(["progress", "start", "1.2"])
        main(["progress", "start", "1.2"])
        assert "session 001" in capsys.readouterr().out.splitlines()[-1]
        assert not (auth / ".etch" / "progress" / "auth-system--task-1.2--002.md").exists()

    def test_missing_task_id_is_usage_error(self, auth, capsys):
        assert main(["progress", "start"]) == 2
        assert "task ID is required" in capsys.readouterr().err

    def test_too_many_arguments(self, auth):
        assert main(["progress", "start", "a", "b", "c"]) == 2


class TestProgressCriteria:

    def test_exact_match_preferred(self, auth, capsys):
        main(["progress", "start", "1.2"])
        assert main(["progress", "criteria", "1.2", "--check", "Endpoint returns new token"]) == 0

        criteria = {c.description: c.is_met for c in _plan(auth).task_by_id("1.2").criteria}
        assert criteria["Endpoint returns new token"] is True
        assert criteria["Endpoint returns new token and refresh"] is False
        assert _session(auth).met_criteria() == {"Endpoint returns new token"}

    def test_substring_fallback(self, auth, capsys):
        main(["progress", "start", "1.2"])
        assert main(["progress", "criteria", "1.2", "--check", "AND REFRESH"]) == 0

        out = capsys.readouterr().out
        assert "(matched: Endpoint returns new token and refresh)" in out
        criteria = {c.description: c.is_met for c in _plan(auth).task_by_id("1.2").criteria}
        assert criteria["Endpoint returns new token and refresh"] is True
        assert criteria["Endpoint returns new token"] is False

    def test_several_checks_with_one_unmatched(self, auth, capsys):
        code = main(["progress", "criteria", "1.2",
                     "--check", "Old token is revoked", "--check", "Rate limited"])
        out = capsys.readouterr().out
        assert code == 1
        assert "✗ Rate limited (no match)" in out
        assert "Checked 1/2 criteria for Task 1.2" in out
        assert _plan(auth).task_by_id("1.2").criteria[2].is_met


class TestProgressLifecycle:

    def test_update_appends_change(self, auth, capsys):
        main(["progress", "start", "1.2"])
        assert main(["progress", "update", "1.2", "-m", "Added refresh view"]) == 0
        [entry] = _session(auth).changes_made
        assert entry.endswith("Added refresh view")
        assert entry.startswith("[")

    def test_update_without_session(self, auth, capsys):
        assert main(["progress", "update", "1.2", "-m", "x"]) == 1
        assert "etch progress start 1.2" in capsys.readouterr().err

    def test_done_warns_about_unchecked(self, auth, capsys):
        main(["progress", "start", "1.2"])
        main(["progress", "criteria", "1.2", "--check", "Old token is revoked"])
        assert main(["progress", "done", "1.2"]) == 0

        out = capsys.readouterr().out
        assert "Task 1.2 completed" in out
        assert "Warning: 2 unchecked acceptance criteria:" in out
        assert _plan(auth).task_by_id("1.2").status == Status.COMPLETED
        assert _session(auth).status == "completed"

    def test_block_records_reason(self, auth, capsys):
        main(["progress", "start", "1.2"])
        assert main(["progress", "block", "1.2", "--reason", "Waiting on API keys"]) == 0
        session = _session(auth)
        assert session.status == "blocked"
        assert session.blockers == "- Waiting on API keys"
        assert _plan(auth).task_by_id("1.2").status == Status.BLOCKED

    def test_fail(self, auth, capsys):
        main(["progress", "start", "1.2"])
        assert main(["progress", "fail", "1.2", "--reason", "Design rejected"]) == 0
        assert _session(auth).status == "failed"
        assert "Task 1.2 failed: Design rejected" in capsys.readouterr().out


class TestStatus:

    def test_summary(self, auth, capsys):
        add_plan(auth, "billing", BILLING_PLAN)
        assert main(["status"]) == 0
        out = capsys.readouterr().out
        assert out.index("Billing") < out.index("Auth System")
        assert "📋 [1] Billing" in out
        assert "slug: auth-system" in out

    def test_detailed_single_plan(self, auth, capsys):
        add_session(auth, "auth-system", "1.2", "partial", decisions="Rotate tokens.")
        assert main(["status", "auth-system"]) == 0
        out = capsys.readouterr().out
        assert "(1 sessions, last: partial)" in out
        assert "Notes: Rotate tokens." in out
        assert "Waiting on: 1.2" in out
        assert "[x] Token table exists" in out

    def test_json_reconciles(self, auth, capsys):
        add_session(auth, "auth-system", "1.2", "completed")
        assert main(["status", "--json"]) == 0
        [plan] = json.loads(capsys.readouterr().out)
        assert plan["features"][0]["tasks"][1]["status"] == "completed"
        assert _plan(auth).task_by_id("1.2").status == Status.COMPLETED

    def test_unknown_slug(self, auth, capsys):
        assert main(["status", "nope"]) == 1


class TestList:

    def test_active_only_by_default(self, auth, capsys):
        add_plan(auth, "docs", SIMPLE_PLAN.replace("[completed]", "[pending]"))
        assert main(["list"]) == 0
        out = capsys.readouterr().out
        assert "auth-system" in out
        assert "docs" not in out.split("inactive")[0]
        assert "1 inactive plan(s) hidden" in out

    def test_all(self, auth, capsys):
        add_plan(auth, "docs", SIMPLE_PLAN.replace("[completed]", "[pending]"))
        main(["list", "--all"])
        out = capsys.readouterr().out
        assert "auth-system" in out
        assert "docs" in out


    def test_does_not_modify_plans(self, auth, capsys):
        add_session(auth, "auth-system", "1.2", "completed")
        path = auth / ".etch" / "plans" / "auth-system.md"
        before = path.read_text()

        assert main(["list"]) == 0

        assert path.read_text() == before
        assert "2/3" in capsys.readouterr().out


class TestPriority:

    def test_set_and_unset(self, auth, capsys):
        assert main(["priority", "-p", "auth-system", "--set", "3"]) == 0
        assert _plan(auth).priority == 3
        assert "[3] Auth System" in capsys.readouterr().out

        assert main(["priority", "-p", "auth-system", "--unset"]) == 0
        assert _plan(auth).priority == 0

    def test_set_requires_plan(self, auth, capsys):
        assert main(["priority", "--set", "1"]) == 2

    def test_invalid_value(self, auth, capsys):
        assert main(["priority", "-p", "auth-system", "--set", "0"]) == 2

    def test_unknown_plan(self, auth, capsys):
        assert main(["priority", "-p", "nope", "--set", "1"]) == 1


class TestContext:

    def test_auto_selects_task(self, auth, capsys):
        assert main(["context"]) == 0
        out = capsys.readouterr().out
        assert "Context assembled for Task 1.2 – Refresh endpoint (session 001)" in out
        assert (auth / ".etch" / "context" / "auth-system--task-1.2--001.md").exists()

    def test_feature_and_task_exclusive(self, auth, capsys):
        assert main(["context", "-t", "1.2", "-f", "1"]) == 2

    def test_nothing_to_do(self, project, monkeypatch, capsys):
        add_plan(project, "p", "# Plan: P\n### Task 1: Go [completed]\n")
        monkeypatch.chdir(project)
        assert main(["context"]) == 0
        assert "Nothing to do" in capsys.readouterr().out

    def test_plan_picker(self, auth, monkeypatch, capsys):
        add_plan(auth, "docs", SIMPLE_PLAN)
        monkeypatch.setattr("builtins.input", lambda _: "2")
        assert main(["context"]) == 0
        assert "Task 1.2 – Write guides" in capsys.readouterr().out


class TestDelete:

    def test_removes_plan_and_related_files(self, auth, capsys):
        main(["context", "-t", "1.2"])
        assert main(["delete", "auth-system", "-y"]) == 0
        assert not (auth / ".etch" / "plans" / "auth-system.md").exists()
        assert list((auth / ".etch" / "progress").iterdir()) == []
        assert list((auth / ".etch" / "context").iterdir()) == []

    def test_cancelled(self, auth, monkeypatch, capsys):
        monkeypatch.setattr("builtins.input", lambda _: "n")
        assert main(["delete", "auth-system"]) == 0
        assert "Cancelled." in capsys.readouterr().out
        assert (auth / ".etch" / "plans" / "auth-system.md").exists()

    def test_unknown_plan(self, auth):
        assert main(["delete", "nope", "-y"]) == 1


class TestOpen:

    def _plan_path(self, root):
        return str(root.resolve() / ".etch" / "plans" / "auth-system.md")

    def test_runs_editor(self, auth, monkeypatch):
        monkeypatch.setenv("EDITOR", "nano")
        with patch("etch.commands.open.subprocess.run", return_value=CompletedProcess([], 0)) as run:
            assert main(["open", "auth-system"]) == 0
        run.assert_called_once_with(["nano", self._plan_path(auth)])

    def test_defaults_to_vi(self, auth, monkeypatch):
        monkeypatch.delenv("EDITOR", raising=False)
        with patch("etch.commands.open.subprocess.run", return_value=CompletedProcess([], 3)) as run:
            assert main(["open", "auth-system"]) == 3
        run.assert_called_once_with(["vi", self._plan_path(auth)])

    def test_missing_editor(self, auth, monkeypatch, capsys):
        monkeypatch.setenv("EDITOR", "no-such-editor")
        with patch("etch.commands.open.subprocess.run", side_effect=FileNotFoundError("no-such-editor")):
            assert main(["open", "auth-system"]) == 2
        assert "editor not found" in capsys.readouterr().err

    def test_unknown_plan(self, auth):
        assert main(["open", "nope"]) == 1


class TestCli:

    def test_not_a_project(self, tmp_path, monkeypatch, capsys):
        monkeypatch.chdir(tmp_path)
        assert main(["status"]) == 1
        assert "not an etch project" in capsys.readouterr().err
