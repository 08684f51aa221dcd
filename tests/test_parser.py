"""Tests for etch.lib.parser module."""

import pytest

from etch.lib.errors import EtchError, ParseError
from etch.lib.models import Status
from etch.lib.parser import parse_plan, parse_plan_file, parse_task_heading, split_list, TASK_HEADING_RE

from conftest import AUTH_PLAN, BILLING_PLAN, SIMPLE_PLAN, add_plan


class TestPlanLevel:
    """Title, priority and overview."""

    def test_title_and_overview(self):
        plan = parse_plan(AUTH_PLAN)
        assert plan.title == "Auth System"
        assert plan.overview.startswith("Token-based authentication for the API.")
        assert plan.priority == 0

    def test_priority(self):
        plan = parse_plan(BILLING_PLAN)
        assert plan.priority == 1
        assert plan.overview == "Charge customers monthly."

    def test_missing_title_raises(self):
        with pytest.raises(ParseError, match="no '# Plan:' heading"):
            parse_plan("## Overview\n\nNo title here.\n")

    def test_parse_error_category(self):
        with pytest.raises(EtchError) as exc_info:
            parse_plan("")
        assert exc_info.value.category == "parse"

    def test_priority_inside_task_is_not_plan_priority(self):
        text = (
            "# Plan: Quiet\n"
            "\n"
            "### Task 1: Something\n"
            "**Priority:** 5\n"
        )
        plan = parse_plan(text)
        assert plan.priority == 0
        assert "**Priority:** 5" in plan.task_by_id("1.1").description

    def test_unknown_section_is_swallowed(self):
        text = SIMPLE_PLAN + "\n## Notes\n\nScratch text.\n"
        plan = parse_plan(text)
        assert "Scratch" not in plan.task_by_id("1.3").description


class TestFeatures:

    def test_single_feature_is_implicit(self):
        plan = parse_plan(SIMPLE_PLAN)
        assert plan.is_single_feature
        feature = plan.features[0]
        assert feature.number == 1
        assert feature.title == "Docs Refresh"
        assert [t.full_id for t in feature.tasks] == ["1.1", "1.2", "1.3"]

    def test_multi_feature(self):
        plan = parse_plan(BILLING_PLAN)
        assert [f.number for f in plan.features] == [1, 2]
        assert plan.features[0].title == "Invoices"
        assert plan.features[0].overview == "Invoice generation."
        assert plan.features[1].overview == ""

    def test_text_before_first_task_is_feature_overview(self):
        text = (
            "# Plan: P\n"
            "## Feature 1: First\n"
            "Some intro.\n"
            "### Task 1.1: Go\n"
        )
        plan = parse_plan(text)
        assert plan.features[0].overview == "Some intro."
        assert plan.task_by_id("1.1").description == ""


class TestTasks:

    def test_metadata(self):
        plan = parse_plan(AUTH_PLAN)
        task = plan.task_by_id("1.2")
        assert task.title == "Refresh endpoint"
        assert task.status == Status.PENDING
        assert task.complexity == "medium"
        assert task.files == ["auth/views.py"]
        assert task.depends_on == ["Task 1.1"]
        assert task.description == "Add POST /auth/refresh."

    def test_criteria(self):
        task = parse_plan(AUTH_PLAN).task_by_id("1.1")
        assert [(c.description, c.is_met) for c in task.criteria] == [
            ("Token table exists", True),
            ("Tokens expire", False),
        ]

    def test_multiline_comment(self):
        task = parse_plan(AUTH_PLAN).task_by_id("1.2")
        assert task.comments == ["Use rotating refresh tokens.\nOld ones must be revoked."]
        assert "Old ones" not in task.description

    def test_suffix_and_status(self):
        task = parse_plan(BILLING_PLAN).task_by_id("2.1b")
        assert task.suffix == "b"
        assert task.task_number == 1
        assert task.status == Status.IN_PROGRESS

    def test_missing_status_tag_defaults_to_pending(self):
        task = parse_plan(BILLING_PLAN).task_by_id("2.1")
        assert task.status == Status.PENDING
        assert task.title == "Stripe client"

    def test_unknown_status_tag_defaults_to_pending(self):
        plan = parse_plan("# Plan: P\n### Task 1: Foo [someday]\n")
        task = plan.task_by_id("1.1")
        assert task.status == Status.PENDING
        assert task.title == "Foo"

    def test_code_fence_is_verbatim(self):
        plan = parse_plan(BILLING_PLAN)
        task = plan.task_by_id("2.1")
        assert "## not a heading" in task.description
        assert "### Task 9.9: not a task" in task.description
        assert plan.task_by_id("9.9") is None
        assert task.files == ["billing/stripe.py"]
        assert task.depends_on == ["Task 1.3", "external approval"]

    def test_separator_not_in_description(self):
        task = parse_plan(BILLING_PLAN).task_by_id("1.3")
        assert "---" not in task.description


class TestHelpers:

    @pytest.mark.parametrize("heading,expected", [
        ("### Task 3: Publish", (1, 3, "", "Publish", Status.PENDING)),
        ("### Task 2.4: Build [completed]", (2, 4, "", "Build", Status.COMPLETED)),
        ("### Task 1.3b: Insert [blocked]", (1, 3, "b", "Insert", Status.BLOCKED)),
    ])
    def test_parse_task_heading(self, heading, expected):
        assert parse_task_heading(TASK_HEADING_RE.match(heading)) == expected

    def test_split_list_drops_empty(self):
        assert split_list("a.py, , b.py,") == ["a.py", "b.py"]


class TestParsePlanFile:

    def test_sets_slug_and_path(self, project):
        path = add_plan(project, "docs-refresh", SIMPLE_PLAN)
        plan = parse_plan_file(path)
        assert plan.slug == "docs-refresh"
        assert plan.file_path == str(path)

    def test_missing_file_is_io_error(self, project):
        with pytest.raises(EtchError) as exc_info:
            parse_plan_file(project / "nope.md")
        assert exc_info.value.category == "io"

    def test_invalid_utf8_is_parse_error(self, project):
        path = project / ".etch" / "plans" / "broken.md"
        path.write_bytes(b"# Plan: Broken\n\xff\xfe\n")
        with pytest.raises(EtchError) as exc_info:
            parse_plan_file(path)
        assert exc_info.value.category == "parse"
