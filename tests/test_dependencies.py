import os
from pathlib import Path

from buildserver.config import ProjectSpec
from buildserver.dependencies import DependencyPreparer, LinkStatus


def _project(**overrides) -> ProjectSpec:
    values = {"name": "site", "path": "apps/site", "node_modules_dir": "shared/node_modules"}
    values.update(overrides)
    return ProjectSpec(**values)


def test_project_without_shared_dependencies_is_skipped(tmp_path: Path):
    outcome = DependencyPreparer().ensure_linked(_project(node_modules_dir=None), tmp_path)

    assert outcome.status is LinkStatus.SKIPPED
    assert not outcome.is_warning


def test_link_is_created_to_shared_directory(tmp_path: Path):
    shared = tmp_path / "shared" / "node_modules"
    shared.mkdir(parents=True)
    (shared / "left-pad.js").write_text("module.exports = 1;")
    (tmp_path / "apps" / "site").mkdir(parents=True)

    outcome = DependencyPreparer().ensure_linked(_project(), tmp_path)

    link = tmp_path / "apps" / "site" / "node_modules"
    assert outcome.status is LinkStatus.LINKED
    assert link.is_symlink()
    assert link.resolve() == shared.resolve()
    assert (link / "left-pad.js").exists()


def test_existing_entry_is_left_untouched(tmp_path: Path):
    (tmp_path / "shared" / "node_modules").mkdir(parents=True)
    existing = tmp_path / "apps" / "site" / "node_modules"
    existing.mkdir(parents=True)

    outcome = DependencyPreparer().ensure_linked(_project(), tmp_path)

    assert outcome.status is LinkStatus.PRESENT
    assert existing.is_dir() and not existing.is_symlink()


def test_missing_target_is_a_warning(tmp_path: Path):
    (tmp_path / "apps" / "site").mkdir(parents=True)

    outcome = DependencyPreparer().ensure_linked(_project(), tmp_path)

    assert outcome.status is LinkStatus.MISSING_TARGET
    assert outcome.is_warning
    assert outcome.message.startswith("Warning: Target node_modules not found")
    assert not os.path.lexists(tmp_path / "apps" / "site" / "node_modules")


def test_symlink_failure_is_a_warning(monkeypatch, tmp_path: Path):
    (tmp_path / "shared" / "node_modules").mkdir(parents=True)
    (tmp_path / "apps" / "site").mkdir(parents=True)

    def _deny(*_, **__):
        raise PermissionError("symlinks need elevated rights")

    monkeypatch.setattr("buildserver.dependencies.os.symlink", _deny)

    outcome = DependencyPreparer().ensure_linked(_project(), tmp_path)

    assert outcome.status is LinkStatus.FAILED
    assert "elevated rights" in outcome.message


def test_leading_separators_stay_under_root(tmp_path: Path):
    shared = tmp_path / "shared" / "node_modules"
    shared.mkdir(parents=True)
    (tmp_path / "apps" / "site").mkdir(parents=True)

    project = _project(path="/apps/site", node_modules_dir="\\shared/node_modules")
    outcome = DependencyPreparer().ensure_linked(project, tmp_path)

    assert outcome.status is LinkStatus.LINKED
    assert (tmp_path / "apps" / "site" / "node_modules").is_symlink()
