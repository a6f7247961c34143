"""Tests for GeneratorConfig loading and validation."""

import json
from pathlib import Path

import pytest

from analyzers.diagnostics import ConfigurationFailure
from config import DEFAULT_IGNORE_DIRS, GeneratorConfig


class TestDefaults:
    def test_defaults(self) -> None:
        config = GeneratorConfig()
        assert config.title == "API Documentation"
        assert config.cache_backend == "memory"
        assert config.ignore_dirs == DEFAULT_IGNORE_DIRS
        assert config.middleware_security["auth"] == "bearerAuth"

    def test_to_dict_sorts_ignore_dirs(self) -> None:
        data = GeneratorConfig(ignore_dirs={"b", "a"}).to_dict()
        assert data["ignore_dirs"] == ["a", "b"]
        json.dumps(data)


class TestFromFile:
    def test_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "scanner.yaml"
        path.write_text("title: Billing\nflatten: true\nignore_dirs: [vendor]\ncache_ttl: 60\n", encoding="utf-8")
        config = GeneratorConfig.from_file(str(path))
        assert config.title == "Billing"
        assert config.flatten is True
        assert config.ignore_dirs == {"vendor"}
        assert config.cache_ttl == 60

    def test_json(self, tmp_path: Path) -> None:
        path = tmp_path / "scanner.json"
        path.write_text(json.dumps({"version": "2.0.0", "default_security": ["bearerAuth"]}), encoding="utf-8")
        config = GeneratorConfig.from_file(str(path))
        assert config.version == "2.0.0"
        assert config.default_security == ["bearerAuth"]

    def test_unknown_keys(self, tmp_path: Path) -> None:
        path = tmp_path / "scanner.json"
        path.write_text(json.dumps({"title": "x", "colour": "red"}), encoding="utf-8")
        with pytest.raises(ConfigurationFailure, match="Unknown config keys: colour"):
            GeneratorConfig.from_file(str(path))

    @pytest.mark.parametrize("name,text", [
        ("list.yaml", "- a\n- b\n"),
        ("broken.json", "{"),
    ])
    def test_malformed(self, tmp_path: Path, name, text) -> None:
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        with pytest.raises(ConfigurationFailure):
            GeneratorConfig.from_file(str(path))

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationFailure) as info:
            GeneratorConfig.from_file(str(tmp_path / "nope.yaml"))
        assert info.value.path == str(tmp_path / "nope.yaml")


class TestFromEnv:
    def test_environment(self, monkeypatch, tmp_path: Path) -> None:
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("SCANNER_TITLE", "Env API")
        monkeypatch.setenv("SCANNER_SERVER_URL", "https://api.example.com")
        monkeypatch.setenv("SCANNER_CACHE_BACKEND", "none")
        monkeypatch.setenv("SCANNER_FLATTEN", "TRUE")
        monkeypatch.setenv("SCANNER_CACHE_TTL", "30")
        config = GeneratorConfig.from_env()
        assert config.title == "Env API"
        assert config.servers == [{"url": "https://api.example.com"}]
        assert config.cache_backend == "none"
        assert config.flatten is True
        assert config.cache_ttl == 30

    def test_invalid_number(self, monkeypatch, tmp_path: Path) -> None:
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("SCANNER_MAX_FILE_SIZE", "big")
        with pytest.raises(ConfigurationFailure):
            GeneratorConfig.from_env()


class TestValidate:
    def test_valid_config_returns_itself(self, tmp_path: Path) -> None:
        config = GeneratorConfig(source_root=str(tmp_path))
        assert config.validate() is config

    @pytest.mark.parametrize("overrides", [
        {"cache_backend": "redis"},
        {"max_file_size_mb": 0},
        {"cache_ttl": -1},
        {"any_methods": ["GET", "FETCH"]},
        {"any_methods": []},
        {"security_schemes": {"key": {"in": "header"}}},
    ])
    def test_invalid_values(self, overrides) -> None:
        with pytest.raises(ConfigurationFailure):
            GeneratorConfig(**overrides).validate()

    def test_missing_source_root(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationFailure, match="Source root does not exist"):
            GeneratorConfig(source_root=str(tmp_path / "missing")).validate()
