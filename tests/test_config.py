"""Tests for build configuration loading."""

import json

import pytest
from pydantic import ValidationError

from solbuild.config import DEFAULT_CACHE_PATH, BuildRequest, load_build_request
from solbuild.kernel.errors import ConfigError
from solbuild.kernel.remappings import Remapping
from solbuild.kernel.versions import CompilerVersion


def _write_config(root, data):
    (root / "solbuild.json").write_text(json.dumps(data), encoding="utf-8")


class TestDefaults:

    def test_no_files(self, project_root):
        request = load_build_request(project_root)
        assert request.project_root == project_root.resolve()
        assert request.source_roots == ["contracts"]
        assert request.compiler_version == "auto"
        assert request.pinned_version is None
        assert request.cache_file == project_root.resolve() / DEFAULT_CACHE_PATH
        assert request.artifacts_path is None
        assert request.mtime_fast_path is False
        assert request.remappings == []

    def test_settings_defaults(self, project_root):
        settings = load_build_request(project_root).settings.to_input()
        assert settings["optimizer"] == {"enabled": False, "runs": 200}
        assert "outputSelection" in settings


class TestConfigFile:

    def test_values_loaded(self, project_root):
        _write_config(project_root, {
            "source_roots": ["src"],
            "compiler_version": "0.8.19",
            "settings": {"optimizer": {"enabled": True, "runs": 10000}, "evmVersion": "paris"},
            "artifacts_dir": "out",
            "max_concurrency": 2,
        })
        request = load_build_request(project_root)
        assert request.source_roots == ["src"]
        assert request.pinned_version == CompilerVersion.parse("0.8.19")
        assert request.settings.to_input()["evmVersion"] == "paris"
        assert request.artifacts_path == project_root.resolve() / "out"
        assert request.max_concurrency == 2

    def test_remappings_file_appended_after_config(self, project_root):
        _write_config(project_root, {"remappings": ["@a/=lib/a/"]})
        (project_root / "remappings.txt").write_text("# deps\n@b/=lib/b/\n\n", encoding="utf-8")
        request = load_build_request(project_root)
        assert [str(r) for r in request.remappings] == ["@a/=lib/a/", "@b/=lib/b/"]

    def test_invalid_json(self, project_root):
        (project_root / "solbuild.json").write_text("{nope", encoding="utf-8")
        with pytest.raises(ConfigError, match="Invalid JSON"):
            load_build_request(project_root)

    def test_top_level_must_be_object(self, project_root):
        (project_root / "solbuild.json").write_text("[]", encoding="utf-8")
        with pytest.raises(ConfigError, match="object"):
            load_build_request(project_root)

    def test_project_root_not_configurable(self, project_root):
        _write_config(project_root, {"project_root": "/elsewhere"})
        with pytest.raises(ConfigError, match="project_root"):
            load_build_request(project_root)

    @pytest.mark.parametrize("data", [
        {"unknown_key": 1},
        {"max_concurrency": 0},
        {"job_timeout": -1},
        {"compiler_version": "latest"},
        {"artifact_format": "truffle"},
        {"source_roots": []},
        {"remappings": ["no-equals-sign"]},
        {"settings": {"optimizer": {"runs": -5}}},
    ])
    def test_invalid_values(self, project_root, data):
        _write_config(project_root, data)
        with pytest.raises(ConfigError):
            load_build_request(project_root)

    def test_root_must_be_directory(self, tmp_path):
        with pytest.raises(ConfigError, match="not a directory"):
            load_build_request(tmp_path / "missing")


class TestOverrides:

    def test_overrides_win(self, project_root):
        _write_config(project_root, {"max_concurrency": 2, "force": False})
        request = load_build_request(project_root, {"max_concurrency": 8, "force": True})
        assert request.max_concurrency == 8
        assert request.force is True

    def test_none_overrides_ignored(self, project_root):
        _write_config(project_root, {"max_concurrency": 2, "artifact_format": "minimal"})
        request = load_build_request(project_root, {"max_concurrency": None, "artifact_format": None})
        assert request.max_concurrency == 2
        assert request.artifact_format == "minimal"

    def test_invalid_override(self, project_root):
        with pytest.raises(ConfigError):
            load_build_request(project_root, {"compiler_version": "0.8"})


class TestBuildRequest:

    def test_remapping_strings_parsed(self, tmp_path):
        request = BuildRequest(project_root=tmp_path, remappings=["ctx:@x/=lib/x/"])
        assert request.remappings == [Remapping(context="ctx", prefix="@x/", target="lib/x/")]

    def test_extra_fields_rejected(self, tmp_path):
        with pytest.raises(ValidationError):
            BuildRequest(project_root=tmp_path, bogus=True)
