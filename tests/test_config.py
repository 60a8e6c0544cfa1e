import os
import tempfile

import pytest
import yaml

from ezlens.config import CONFIG_ENV_VAR, Config, ImportSettings, load_config


class TestConfig:
    def test_default_config(self, config):
        """Verify defaults are loaded when no file is given."""
        assert config["storage"]["path"] == "ezlens.duckdb"
        assert config["import"]["batch_size"] == 5000
        assert config["import"]["progress_every"] == 10000
        assert config["import"]["max_failure_samples"] == 100
        assert config["server"]["host"] == "127.0.0.1"
        assert config["server"]["port"] == 8080
        assert config["server"]["debug"] is False
        assert config["logging"]["level"] == "INFO"

    def test_load_from_yaml(self):
        """Write a temp YAML with overrides, verify merge."""
        override = {
            "server": {"port": 9000, "debug": True},
            "import": {"batch_size": 250},
        }
        with tempfile.NamedTemporaryFile(
            mode="w", suffix=".yaml", delete=False
        ) as f:
            yaml.dump(override, f)
            temp_path = f.name

        try:
            cfg = Config(temp_path)
            assert cfg["server"]["port"] == 9000
            assert cfg["server"]["debug"] is True
            assert cfg["server"]["host"] == "127.0.0.1"  # default preserved
            assert cfg["import"]["batch_size"] == 250
            assert cfg["import"]["progress_every"] == 10000  # default preserved
        finally:
            os.unlink(temp_path)

    def test_missing_file_uses_defaults(self):
        cfg = Config("/nonexistent/path/config.yaml")
        assert cfg["server"]["port"] == 8080
        assert cfg["storage"]["path"] == "ezlens.duckdb"

    def test_invalid_yaml_uses_defaults(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("server: [unclosed\n")
        cfg = Config(str(path))
        assert cfg["server"]["port"] == 8080

    def test_deep_merge(self):
        """Verify nested override works (e.g., override only server.port)."""
        base = {"server": {"host": "localhost", "port": 8080, "debug": False}}
        override = {"server": {"port": 9090}}
        result = Config._deep_merge(base, override)
        assert result["server"]["port"] == 9090
        assert result["server"]["host"] == "localhost"
        assert result["server"]["debug"] is False

    def test_defaults_not_mutated(self, tmp_path):
        path = tmp_path / "c.yaml"
        path.write_text(yaml.dump({"storage": {"path": "other.duckdb"}}))
        Config(str(path))
        assert Config.DEFAULTS["storage"]["path"] == "ezlens.duckdb"

    def test_get_method(self, config):
        assert config.get("server")["port"] == 8080
        assert config.get("nonexistent") is None
        assert config.get("nonexistent", "fallback") == "fallback"

    def test_null_section_falls_back_to_defaults(self, tmp_path):
        path = tmp_path / "c.yaml"
        path.write_text("import:\n")
        cfg = Config(str(path))
        assert cfg["import"] is None
        assert ImportSettings.from_config(cfg) == ImportSettings()


class TestLoadConfig:
    def test_explicit_path(self, tmp_path):
        path = tmp_path / "explicit.yaml"
        path.write_text(yaml.dump({"server": {"port": 7000}}))
        assert load_config(str(path))["server"]["port"] == 7000

    def test_env_var(self, tmp_path, monkeypatch):
        path = tmp_path / "env.yaml"
        path.write_text(yaml.dump({"storage": {"path": "from-env.duckdb"}}))
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))
        assert load_config()["storage"]["path"] == "from-env.duckdb"

    def test_falls_back_to_cwd_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        monkeypatch.chdir(tmp_path)
        (tmp_path / "config.yaml").write_text(yaml.dump({"logging": {"level": "DEBUG"}}))
        assert load_config()["logging"]["level"] == "DEBUG"


class TestImportSettings:
    def test_from_defaults(self, config):
        settings = ImportSettings.from_config(config)
        assert settings == ImportSettings(5000, 10000, 100)

    def test_from_yaml_override(self, tmp_path):
        path = tmp_path / "c.yaml"
        path.write_text(yaml.dump({"import": {"batch_size": 10}}))
        settings = ImportSettings.from_config(Config(str(path)))
        assert settings.batch_size == 10
        assert settings.progress_every == 10000

    @pytest.mark.parametrize("kwargs", [
        {"batch_size": 0},
        {"progress_every": -1},
        {"max_failure_samples": -5},
    ])
    def test_rejects_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            ImportSettings(**kwargs)
