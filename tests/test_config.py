from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from peerkeeper.config import (
    AnalyzerConfig,
    MergerConfig,
    PeerKeeperConfig,
    ResolverConfig,
    _parse_section,
    _pyproject_has_peerkeeper_section,
    _read_toml,
    discover_config_file,
    load_config,
)
from peerkeeper.exceptions import ConfigError


@pytest.mark.unit
class TestComponentConfig:
    """Tests for ResolverConfig, AnalyzerConfig and MergerConfig validation."""

    def test_resolver_defaults(self) -> None:
        config = ResolverConfig()

        assert config.registry_url == "https://registry.npmjs.org/"
        assert config.backend == "http"
        assert config.retries == 3
        assert config.offline is False
        assert config.fallback_to_cache is True
        assert config.skip_malformed is True

    def test_registry_url_gets_trailing_slash(self) -> None:
        assert ResolverConfig(registry_url="https://npm.example.com").registry_url == (
            "https://npm.example.com/"
        )

    def test_auth_token_hidden_from_repr(self) -> None:
        assert "secret" not in repr(ResolverConfig(auth_token="secret"))

    @pytest.mark.parametrize(
        "kwargs,option",
        [
            ({"registry_url": ""}, "registry_url"),
            ({"backend": "yarn"}, "backend"),
            ({"timeout": 0}, "timeout"),
            ({"retries": 0}, "retries"),
            ({"retry_delay": -1}, "retry_delay"),
            ({"kill_grace_period": -0.5}, "kill_grace_period"),
        ],
    )
    def test_resolver_rejects(self, kwargs, option: str) -> None:
        with pytest.raises(ConfigError) as exc_info:
            ResolverConfig(**kwargs)

        assert exc_info.value.option == option

    @pytest.mark.parametrize(
        "kwargs",
        [{"batch_size": 0}, {"batch_delay": -1}, {"analysis_timeout": 0}],
    )
    def test_analyzer_rejects(self, kwargs) -> None:
        with pytest.raises(ConfigError):
            AnalyzerConfig(**kwargs)

    def test_merger_defaults(self) -> None:
        config = MergerConfig()

        assert config.strategy == "smart"
        assert config.enable_peer_analysis is True
        assert config.analyzer.analysis_timeout is None


@pytest.mark.unit
class TestPeerKeeperConfig:
    """Tests for building component configuration from file options."""

    def test_empty_config_gives_defaults(self) -> None:
        merger = PeerKeeperConfig().to_merger_config()

        assert merger == MergerConfig()

    def test_options_are_routed_to_components(self) -> None:
        config = PeerKeeperConfig(
            options={"strategy": "highest", "retries": 5, "batch_size": 2, "offline": True}
        )

        merger = config.to_merger_config()

        assert merger.strategy == "highest"
        assert merger.analyzer.batch_size == 2
        assert merger.analyzer.resolver.retries == 5
        assert merger.analyzer.resolver.offline is True

    def test_overrides_win_and_none_falls_through(self) -> None:
        """Test CLI overrides beat file values and unset flags keep them."""
        config = PeerKeeperConfig(options={"strategy": "highest", "offline": True})

        merger = config.to_merger_config(strategy="lowest", offline=None)

        assert merger.strategy == "lowest"
        assert merger.analyzer.resolver.offline is True

    def test_unknown_override(self) -> None:
        with pytest.raises(ConfigError, match="Unknown configuration keys: colour"):
            PeerKeeperConfig().to_merger_config(colour=True)

    def test_invalid_value_carries_source_path(self) -> None:
        config = PeerKeeperConfig(options={"retries": 0}, source_path=Path("peerkeeper.toml"))

        with pytest.raises(ConfigError) as exc_info:
            config.to_merger_config()

        assert exc_info.value.config_path == "peerkeeper.toml"

    def test_to_log_dict_masks_token(self) -> None:
        config = PeerKeeperConfig(options={"auth_token": "secret", "strategy": "smart"})

        assert config.to_log_dict() == {"auth_token": "***", "strategy": "smart"}


@pytest.mark.unit
class TestDiscoverConfigFile:
    """Tests for discover_config_file function."""

    def test_explicit_path_priority(self, tmp_path: Path) -> None:
        config_file = tmp_path / "custom.toml"
        config_file.write_text("[peerkeeper]\n", encoding="utf-8")
        (tmp_path / "peerkeeper.toml").write_text("[peerkeeper]\n", encoding="utf-8")

        with patch("peerkeeper.config.Path.cwd", return_value=tmp_path):
            result = discover_config_file(config_file)

        assert result == config_file.resolve()

    def test_explicit_path_not_found(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="not found"):
            discover_config_file(tmp_path / "nonexistent.toml")

    def test_peerkeeper_toml_before_pyproject(self, tmp_path: Path) -> None:
        (tmp_path / "peerkeeper.toml").write_text("[peerkeeper]\n", encoding="utf-8")
        (tmp_path / "pyproject.toml").write_text("[tool.peerkeeper]\n", encoding="utf-8")

        with patch("peerkeeper.config.Path.cwd", return_value=tmp_path):
            assert discover_config_file() == tmp_path / "peerkeeper.toml"

    def test_pyproject_with_section(self, tmp_path: Path) -> None:
        (tmp_path / "pyproject.toml").write_text(
            '[tool.peerkeeper]\nstrategy = "highest"\n', encoding="utf-8"
        )

        with patch("peerkeeper.config.Path.cwd", return_value=tmp_path):
            assert discover_config_file() == tmp_path / "pyproject.toml"

    def test_pyproject_without_section_ignored(self, tmp_path: Path) -> None:
        (tmp_path / "pyproject.toml").write_text("[tool.black]\n", encoding="utf-8")

        with patch("peerkeeper.config.Path.cwd", return_value=tmp_path):
            assert discover_config_file() is None


@pytest.mark.unit
class TestTomlReading:
    def test_pyproject_section_check_tolerates_bad_toml(self, tmp_path: Path) -> None:
        path = tmp_path / "pyproject.toml"
        path.write_text("[tool.peerkeeper\n", encoding="utf-8")

        assert _pyproject_has_peerkeeper_section(path) is False

    def test_read_toml(self, tmp_path: Path) -> None:
        path = tmp_path / "peerkeeper.toml"
        path.write_text('[peerkeeper]\nstrategy = "manual"\n', encoding="utf-8")

        assert _read_toml(path) == {"peerkeeper": {"strategy": "manual"}}

    def test_read_toml_invalid(self, tmp_path: Path) -> None:
        path = tmp_path / "peerkeeper.toml"
        path.write_text("strategy = ", encoding="utf-8")

        with pytest.raises(ConfigError, match="Invalid TOML"):
            _read_toml(path)

    def test_read_toml_missing(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="Cannot read"):
            _read_toml(tmp_path / "missing.toml")


@pytest.mark.unit
class TestParseSection:
    """Tests for _parse_section type checking."""

    def test_accepts_known_options(self) -> None:
        config = _parse_section(
            {"strategy": "highest", "timeout": 10, "retry_delay": 0.5, "offline": False},
            config_path="peerkeeper.toml",
        )

        assert config.options == {
            "strategy": "highest",
            "timeout": 10,
            "retry_delay": 0.5,
            "offline": False,
        }

    def test_unknown_keys(self) -> None:
        with pytest.raises(ConfigError, match="Unknown configuration keys: check_conflicts"):
            _parse_section({"check_conflicts": True}, config_path="peerkeeper.toml")

    @pytest.mark.parametrize(
        "section,option",
        [
            ({"retries": True}, "retries"),
            ({"timeout": "30"}, "timeout"),
            ({"retries": 2.5}, "retries"),
            ({"offline": "yes"}, "offline"),
        ],
    )
    def test_wrong_types(self, section, option: str) -> None:
        """Test booleans never pass as numbers and strings never as flags."""
        with pytest.raises(ConfigError) as exc_info:
            _parse_section(section, config_path="peerkeeper.toml")

        assert exc_info.value.option == option


@pytest.mark.unit
class TestLoadConfig:
    """Tests for load_config function."""

    def test_defaults_when_no_file(self, tmp_path: Path) -> None:
        with patch("peerkeeper.config.Path.cwd", return_value=tmp_path):
            config = load_config()

        assert config.options == {}
        assert config.source_path is None

    def test_loads_peerkeeper_toml(self, tmp_path: Path) -> None:
        path = tmp_path / "peerkeeper.toml"
        path.write_text(
            '[peerkeeper]\nstrategy = "highest"\nretries = 5\nbackend = "npm"\n',
            encoding="utf-8",
        )

        with patch("peerkeeper.config.Path.cwd", return_value=tmp_path):
            config = load_config()

        assert config.source_path == path
        assert config.to_merger_config().analyzer.resolver.backend == "npm"
        assert config.get("retries") == 5

    def test_loads_pyproject_toml(self, tmp_path: Path) -> None:
        (tmp_path / "pyproject.toml").write_text(
            "[tool.peerkeeper]\nenable_peer_analysis = false\n", encoding="utf-8"
        )

        with patch("peerkeeper.config.Path.cwd", return_value=tmp_path):
            config = load_config()

        assert config.to_merger_config().enable_peer_analysis is False

    def test_empty_section(self, tmp_path: Path) -> None:
        path = tmp_path / "peerkeeper.toml"
        path.write_text("[other]\nkey = 1\n", encoding="utf-8")

        config = load_config(path)

        assert config.options == {}
        assert config.source_path == path.resolve()

    def test_out_of_range_value_fails_fast(self, tmp_path: Path) -> None:
        path = tmp_path / "peerkeeper.toml"
        path.write_text('[peerkeeper]\nstrategy = "newest"\n', encoding="utf-8")

        with pytest.raises(ConfigError) as exc_info:
            load_config(path)

        assert exc_info.value.option == "strategy"
