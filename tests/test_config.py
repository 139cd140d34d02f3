import json
from pathlib import Path

import pytest

from buildserver.config import DEFAULT_BUILD_CMD, ProjectSpec, Settings, load_config, save_config
from buildserver.exceptions import ConfigError


def _write(path: Path, payload) -> Path:
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def test_legacy_keys_and_camel_case_projects(tmp_path: Path):
    config = _write(
        tmp_path / "config.json",
        {
            "svnRoot": str(tmp_path / "svn"),
            "outputDir": str(tmp_path / "publish"),
            "nvmRoot": str(tmp_path / "nvm"),
            "projects": [
                {
                    "name": "site",
                    "path": "apps/site",
                    "group": "web",
                    "nodeModulesDir": "shared/node_modules",
                    "buildCmd": "yarn build",
                    "distDir": "build",
                    "isPublish": False,
                    "nodeVersion": "16.20.2",
                }
            ],
        },
    )

    settings = load_config(config)

    assert settings.root_dir == tmp_path / "svn"
    assert settings.output_dir == tmp_path / "publish"
    assert settings.tool_root == tmp_path / "nvm"
    project = settings.projects[0]
    assert project.node_modules_dir == "shared/node_modules"
    assert project.build_cmd == "yarn build"
    assert project.dist_dir == "build"
    assert project.is_publish is False
    assert project.node_version == "16.20.2"
    assert settings.publish_projects() == []


def test_relative_paths_resolve_against_config_directory(tmp_path: Path):
    config_dir = tmp_path / "conf"
    config_dir.mkdir()
    config = _write(config_dir / "buildserver.json", {"root_dir": "../src", "data_dir": "state"})

    settings = load_config(config)

    assert settings.root_dir == config_dir.resolve() / "../src"
    assert settings.data_dir == config_dir.resolve() / "state"
    assert settings.logs_dir == config_dir.resolve() / "state" / "logs"


def test_project_defaults_are_filled_in():
    project = ProjectSpec(name="site", path="site", buildCmd=None, distDir="", group=" ")

    assert project.build_cmd == DEFAULT_BUILD_CMD
    assert project.dist_dir == "dist"
    assert project.group is None
    assert project.is_publish is True
    assert project.destination(Path("/out")) == Path("/out/site")


def test_project_paths_ignore_leading_separators(tmp_path: Path):
    project = ProjectSpec(name="site", path="/apps/site", group="web")

    assert project.dist_path(tmp_path) == tmp_path / "apps" / "site" / "dist"
    assert project.destination(tmp_path / "out") == tmp_path / "out" / "web" / "site"


def test_empty_build_command_is_rejected(tmp_path: Path):
    config = _write(tmp_path / "c.json", {"projects": [{"name": "site", "path": "site", "buildCmd": "  "}]})

    with pytest.raises(ConfigError):
        load_config(config)


def test_duplicate_project_names_are_rejected(tmp_path: Path):
    config = _write(
        tmp_path / "c.json",
        {"projects": [{"name": "site", "path": "a"}, {"name": "site", "path": "b"}]},
    )

    with pytest.raises(ConfigError, match="duplicate project name"):
        load_config(config)


@pytest.mark.parametrize("content", ["{not json", "[1, 2]"])
def test_malformed_files_raise_config_error(tmp_path: Path, content: str):
    config = tmp_path / "c.json"
    config.write_text(content, encoding="utf-8")

    with pytest.raises(ConfigError):
        load_config(config)


def test_missing_file_raises_config_error(tmp_path: Path):
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "absent.json")


def test_saved_config_loads_back(tmp_path: Path):
    settings = Settings(
        root_dir=tmp_path / "src",
        output_dir=tmp_path / "out",
        data_dir=tmp_path / "var",
        max_workers=2,
        projects=[ProjectSpec(name="site", path="site", node_version="18.17.0")],
    )
    target = tmp_path / "saved" / "buildserver.json"

    save_config(settings, target)
    loaded = load_config(target)

    assert loaded.max_workers == 2
    assert loaded.projects == settings.projects
    assert loaded.root_dir == tmp_path / "src"


def test_database_path_defaults_under_data_dir(tmp_path: Path):
    settings = Settings(data_dir=tmp_path / "var")

    assert settings.resolve_database_path() == tmp_path / "var" / "builds.db"
    assert (tmp_path / "var").is_dir()


def test_environment_overrides(monkeypatch, tmp_path: Path):
    monkeypatch.setenv("BUILDSERVER_MAX_WORKERS", "7")
    monkeypatch.setenv("BUILDSERVER_OUTPUT_DIR", str(tmp_path / "env-out"))

    settings = load_config()

    assert settings.max_workers == 7
    assert settings.output_dir == tmp_path / "env-out"
