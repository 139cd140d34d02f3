import shutil
from pathlib import Path

from buildserver.config import ProjectSpec
from buildserver.staging import ArtifactStager, StageStatus


def _build_output(root: Path, path: str, files: dict) -> None:
    dist = root / path / "dist"
    for relative, content in files.items():
        target = dist / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content)


def test_dist_is_copied_under_group_and_name(tmp_path: Path):
    root, output = tmp_path / "src", tmp_path / "out"
    _build_output(root, "apps/site", {"index.html": "<h1>new</h1>", "assets/app.js": "run()"})
    stale = output / "web" / "site" / "index.html"
    stale.parent.mkdir(parents=True)
    stale.write_text("<h1>old</h1>")
    project = ProjectSpec(name="site", path="apps/site", group="web")

    outcome = ArtifactStager().stage(project, root, output)

    assert outcome.status is StageStatus.COPIED
    assert outcome.destination == output / "web" / "site"
    assert stale.read_text() == "<h1>new</h1>"
    assert (output / "web" / "site" / "assets" / "app.js").read_text() == "run()"


def test_project_without_group_lands_at_output_root(tmp_path: Path):
    root, output = tmp_path / "src", tmp_path / "out"
    _build_output(root, "admin", {"index.html": "admin"})

    outcome = ArtifactStager().stage(ProjectSpec(name="admin", path="admin"), root, output)

    assert outcome.status is StageStatus.COPIED
    assert (output / "admin" / "index.html").read_text() == "admin"


def test_missing_dist_is_skipped_with_warning(tmp_path: Path):
    root, output = tmp_path / "src", tmp_path / "out"
    (root / "apps" / "site").mkdir(parents=True)

    outcome = ArtifactStager().stage(ProjectSpec(name="site", path="apps/site", group="web"), root, output)

    assert outcome.status is StageStatus.SKIPPED
    assert any(message.startswith("Warning: Dist directory not found") for message in outcome.messages)
    assert not (output / "web" / "site").exists()


def test_missing_project_directory_is_reported(tmp_path: Path):
    outcome = ArtifactStager().stage(ProjectSpec(name="ghost", path="ghost"), tmp_path / "src", tmp_path / "out")

    assert outcome.status is StageStatus.SKIPPED
    assert outcome.messages[0].startswith("Warning: Project path not found")


def test_custom_dist_dir_is_used(tmp_path: Path):
    root, output = tmp_path / "src", tmp_path / "out"
    build = root / "docs" / "build"
    build.mkdir(parents=True)
    (build / "index.html").write_text("docs")

    project = ProjectSpec(name="docs", path="docs", dist_dir="build")
    outcome = ArtifactStager().stage(project, root, output)

    assert outcome.status is StageStatus.COPIED
    assert (output / "docs" / "index.html").exists()


def test_copy_errors_are_collected(monkeypatch, tmp_path: Path):
    root, output = tmp_path / "src", tmp_path / "out"
    _build_output(root, "apps/site", {"index.html": "x"})

    def _partial_copy(*_, **__):
        raise shutil.Error([("index.html", "out/index.html", "file is locked")])

    monkeypatch.setattr("buildserver.staging.shutil.copytree", _partial_copy)

    outcome = ArtifactStager().stage(ProjectSpec(name="site", path="apps/site"), root, output)

    assert outcome.status is StageStatus.FAILED
    errors = [message for message in outcome.messages if message.startswith("Error")]
    assert len(errors) == 1
    assert "file is locked" in errors[0]
