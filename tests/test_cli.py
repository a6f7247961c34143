"""Command-line tests: argument parsing and end-to-end runs of main()."""

import json
from pathlib import Path

import pytest
import yaml

import main as cli

from tests.conftest import write_tree


def run(*argv: str) -> int:
    with pytest.raises(SystemExit) as info:
        cli.main(list(argv))
    return info.value.code


class TestParser:
    def test_defaults(self) -> None:
        args = cli.build_parser().parse_args(["./app"])
        assert args.target == "./app"
        assert args.cache is None
        assert args.export is None
        assert args.flatten is False
        assert args.log_level == "INFO"

    def test_repeatable_options(self) -> None:
        args = cli.build_parser().parse_args([
            "./app", "--export", "postman", "--export", "yaml:api.yaml",
            "--server", "https://a", "--server", "https://b", "--cache", "sqlite", "-q",
        ])
        assert args.export == ["postman", "yaml:api.yaml"]
        assert args.server == ["https://a", "https://b"]
        assert args.cache == "sqlite"
        assert args.quiet is True

    def test_invalid_cache_backend(self) -> None:
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["./app", "--cache", "redis"])

    @pytest.mark.parametrize("option,service,expected", [
        ("postman:out/api.json", None, ("postman", "out/api.json")),
        ("yaml", "billing", ("yaml", "billing-openapi.yaml")),
        ("Insomnia", None, ("insomnia", "api-insomnia.json")),
    ])
    def test_parse_export(self, option, service, expected) -> None:
        assert cli.parse_export(option, service) == expected


class TestBuildConfig:
    def test_cli_overrides(self, sample_app, monkeypatch, tmp_path: Path) -> None:
        monkeypatch.chdir(tmp_path)
        args = cli.build_parser().parse_args([
            str(sample_app), "--title", "Shop", "--api-version", "3.1.0", "--server", "https://shop",
            "--cache", "none", "--flatten", "--no-decorator-routes",
        ])
        config = cli.build_config(args, str(sample_app))
        assert config.source_root == str(sample_app)
        assert (config.title, config.version) == ("Shop", "3.1.0")
        assert config.servers == [{"url": "https://shop"}]
        assert config.cache_backend == "none"
        assert config.flatten is True
        assert config.decorator_routes is False


class TestMain:
    @pytest.fixture(autouse=True)
    def workdir(self, monkeypatch, tmp_path: Path) -> Path:
        monkeypatch.chdir(tmp_path)
        return tmp_path

    def test_writes_document_and_exports(self, sample_app, workdir) -> None:
        code = run(str(sample_app), "-q", "--cache", "none", "-o", "openapi.yaml",
                   "--export", "postman", "--export", "json:out/api.json", "-s", "shop")
        assert code == 0

        document = yaml.safe_load((workdir / "openapi.yaml").read_text(encoding="utf-8"))
        assert list(document["paths"]) == ["/items/{id}", "/users/{user_id}", "/users"]
        assert json.loads((workdir / "out" / "api.json").read_text(encoding="utf-8")) == document
        collection = json.loads((workdir / "shop-postman.json").read_text(encoding="utf-8"))
        assert len(collection["item"]) == 4

    def test_route_and_security_files(self, sample_app, workdir) -> None:
        (workdir / "routes.yaml").write_text(
            "- {method: GET, path: /status, handler: 'app.views:show_item', middleware: [api_key]}\n",
            encoding="utf-8")
        (workdir / "security.yaml").write_text("apiKeyAuth: {type: apiKey, in: query, name: key}\n",
                                               encoding="utf-8")
        code = run(str(sample_app), "-q", "--cache", "none", "--no-decorator-routes",
                   "--routes", "routes.yaml", "--auth", "security.yaml", "-o", "openapi.json")
        assert code == 0

        document = json.loads((workdir / "openapi.json").read_text(encoding="utf-8"))
        assert list(document["paths"]) == ["/status"]
        assert document["paths"]["/status"]["get"]["security"] == [{"apiKeyAuth": []}]
        assert document["components"]["securitySchemes"]["apiKeyAuth"]["in"] == "query"

    def test_fail_on_error(self, sample_app) -> None:
        write_tree(sample_app, {"app/broken.py": "def broken(:\n"})
        assert run(str(sample_app), "-q", "--cache", "none") == 0
        assert run(str(sample_app), "-q", "--cache", "none", "--fail-on-error") == 1

    def test_missing_target(self, workdir) -> None:
        assert run(str(workdir / "missing"), "-q") == 1

    def test_configuration_error(self, sample_app, workdir) -> None:
        (workdir / "scanner.json").write_text(json.dumps({"colour": "red"}), encoding="utf-8")
        assert run(str(sample_app), "-q", "--config", "scanner.json") == 2

    def test_unsupported_export(self, sample_app) -> None:
        assert run(str(sample_app), "-q", "--cache", "none", "--export", "pdf") == 2

    def test_report_renders(self, sample_app, capsys) -> None:
        assert run(str(sample_app), "--cache", "none", "-v") == 0
        output = capsys.readouterr().out
        assert "Build Summary" in output
        assert "Documented Operations" in output
