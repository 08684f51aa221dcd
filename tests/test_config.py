"""Tests for etch.lib.config module."""

import logging
import pytest

from etch.lib.config import (
    DEFAULT_COMPLEXITY_GUIDE,
    EtchConfig,
    context_dir,
    find_project_root,
    load_config,
    plans_dir,
    progress_dir,
)
from etch.lib.errors import EtchError


def _write_config(root, text):
    (root / ".etch" / "config.yaml").write_text(text)


class TestFindProjectRoot:

    def test_walks_up(self, project):
        nested = project / "src" / "pkg"
        nested.mkdir(parents=True)
        assert find_project_root(nested) == project.resolve()

    def test_not_a_project(self, tmp_path):
        with pytest.raises(EtchError) as exc_info:
            find_project_root(tmp_path)
        assert exc_info.value.category == "project"
        assert ".etch/plans/" in exc_info.value.hint


class TestPaths:

    def test_layout(self, tmp_path):
        assert plans_dir(tmp_path) == tmp_path / ".etch" / "plans"
        assert progress_dir(tmp_path) == tmp_path / ".etch" / "progress"
        assert context_dir(tmp_path) == tmp_path / ".etch" / "context"


class TestLoadConfig:

    def test_defaults_without_file(self, project):
        assert load_config(project).complexity_guide == DEFAULT_COMPLEXITY_GUIDE

    def test_reads_values(self, project):
        _write_config(project, "defaults:\n  complexity_guide: keep it small\n")
        assert load_config(project).complexity_guide == "keep it small"

    def test_missing_keys_use_defaults(self, project):
        _write_config(project, "defaults: {}\n")
        assert load_config(project).complexity_guide == DEFAULT_COMPLEXITY_GUIDE

    def test_empty_file(self, project):
        _write_config(project, "")
        assert load_config(project) == EtchConfig()

    def test_malformed_yaml(self, project):
        _write_config(project, "defaults: [unclosed\n")
        with pytest.raises(EtchError) as exc_info:
            load_config(project)
        assert exc_info.value.category == "config"
        assert "config.yaml" in exc_info.value.hint

    def test_invalid_utf8(self, project):
        (project / ".etch" / "config.yaml").write_bytes(b"defaults:\n  complexity_guide: caf\xe9\n")
        with pytest.raises(EtchError) as exc_info:
            load_config(project)
        assert exc_info.value.category == "config"

    def test_not_a_mapping(self, project):
        _write_config(project, "- just\n- a list\n")
        with pytest.raises(EtchError, match="must contain a mapping"):
            load_config(project)

    def test_unknown_sections_warn(self, project, caplog):
        _write_config(project, "defaults:\n  complexity_guide: g\napi:\n  model: m\n")
        with caplog.at_level(logging.WARNING):
            load_config(project)
        assert "Ignoring unknown config sections" in caplog.text
        assert "api" in caplog.text
