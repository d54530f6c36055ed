from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict

import pytest
from click.testing import CliRunner

from peerkeeper.__version__ import __version__
from peerkeeper.cli import cli, main


def _json_output(output: str) -> Dict[str, Any]:
    """Decode the JSON document printed by a ``--json`` command."""
    return json.loads(output[output.index("{") : output.rindex("}") + 1])


@pytest.fixture
def project(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Working directory with a cache-free config, templates and a package.json."""
    monkeypatch.chdir(tmp_path)
    (tmp_path / "peerkeeper.toml").write_text(
        "[peerkeeper]\npersist_cache = false\n", encoding="utf-8"
    )
    (tmp_path / "templates.json").write_text(
        json.dumps(
            {
                "templates": [
                    {"id": "base", "packages": {"lodash": "^4.17.20"}},
                    {
                        "id": "utils",
                        "packages": {"lodash": "^4.17.21"},
                        "devPackages": {"typescript": "^5.0.0"},
                    },
                ]
            }
        ),
        encoding="utf-8",
    )
    (tmp_path / "package.json").write_text(
        json.dumps({"name": "app", "dependencies": {"lodash": "^4.17.21"}}),
        encoding="utf-8",
    )
    return tmp_path


@pytest.mark.unit
class TestCliGroup:
    def test_version(self) -> None:
        result = CliRunner().invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert f"peerkeeper {__version__}" in result.output

    def test_help_lists_commands(self) -> None:
        result = CliRunner().invoke(cli, ["--help"])

        assert result.exit_code == 0
        assert "merge" in result.output
        assert "analyze" in result.output

    def test_invalid_config_exits_one(self, project: Path) -> None:
        """Test a config file with an unknown key stops the CLI."""
        (project / "bad.toml").write_text("[peerkeeper]\ncolour = true\n", encoding="utf-8")

        result = CliRunner().invoke(cli, ["--config", "bad.toml", "merge", "templates.json"])

        assert result.exit_code == 1
        assert "Unknown configuration keys" in result.output


@pytest.mark.unit
class TestMergeCommand:
    """Tests for the merge subcommand."""

    def test_offline_json(self, project: Path) -> None:
        result = CliRunner().invoke(
            cli, ["merge", "templates.json", "--offline", "--no-peer-analysis", "--json"]
        )

        assert result.exit_code == 0
        data = _json_output(result.stdout)
        assert data["success"] is True
        assert data["dependencies"] == {"lodash": "^4.17.21"}
        assert data["devDependencies"] == {"typescript": "^5.0.0"}
        assert data["summary"]["total_templates"] == 2
        assert data["peer_analysis"] is None

    def test_strategy_option(self, project: Path) -> None:
        result = CliRunner().invoke(
            cli,
            ["merge", "templates.json", "-s", "lowest", "--offline", "--no-peer-analysis", "--json"],
        )

        assert result.exit_code == 0
        data = _json_output(result.stdout)
        assert data["summary"]["strategy"] == "lowest"
        assert data["dependencies"] == {"lodash": "^4.17.20"}

    def test_table_output(self, project: Path) -> None:
        result = CliRunner().invoke(
            cli, ["--no-color", "merge", "templates.json", "--offline", "--no-peer-analysis"]
        )

        assert result.exit_code == 0
        assert "Merge complete" in result.output

    def test_invalid_strategy(self, project: Path) -> None:
        result = CliRunner().invoke(cli, ["merge", "templates.json", "--strategy", "newest"])

        assert result.exit_code == 2

    def test_missing_templates_file(self, project: Path) -> None:
        result = CliRunner().invoke(cli, ["merge", "missing.json"])

        assert result.exit_code == 2

    def test_malformed_templates_exits_one(self, project: Path) -> None:
        (project / "broken.json").write_text('{"templates": [{"packages": {}}]}', encoding="utf-8")

        result = CliRunner().invoke(cli, ["merge", "broken.json", "--offline"])

        assert result.exit_code == 1
        assert "id" in result.output


@pytest.mark.unit
class TestAnalyzeCommand:
    def test_offline_json(self, project: Path) -> None:
        result = CliRunner().invoke(cli, ["analyze", "package.json", "--offline", "--json"])

        assert result.exit_code == 0
        data = _json_output(result.stdout)
        assert data["success"] is True
        assert data["conflicts"] == []
        assert data["edge_cases"]["offline_packages"] == ["lodash"]

    def test_defaults_to_package_json(self, project: Path) -> None:
        result = CliRunner().invoke(cli, ["analyze", "--offline", "--json"])

        assert result.exit_code == 0

    def test_rejects_non_manifest(self, project: Path) -> None:
        (project / "list.json").write_text("[]", encoding="utf-8")

        result = CliRunner().invoke(cli, ["analyze", "list.json", "--offline"])

        assert result.exit_code == 1


@pytest.mark.unit
class TestMain:
    """Tests for the exit code mapping of main()."""

    def test_usage_error_returns_two(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("sys.argv", ["peerkeeper", "no-such-command"])

        assert main() == 2

    def test_version_returns_zero(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("sys.argv", ["peerkeeper", "--version"])

        assert main() == 0
