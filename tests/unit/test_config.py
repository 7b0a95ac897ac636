"""Unit tests for configuration loading."""

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from setupdeck.core.config import SetupDeckConfig, get_config, load_config, reload_config, set_config


pytestmark = pytest.mark.unit


class TestSetupDeckConfig:
    """Test defaults, validation and precedence."""

    def test_defaults(self, temp_dir):
        """Test default execution settings."""
        config = SetupDeckConfig()

        assert config.max_parallel == 1
        assert config.unit_timeout is None
        assert config.mark_queued is False
        assert config.validate_preconditions is True
        assert config.persist_state is False
        assert config.auto_execute == []
        assert config.data_dir == temp_dir / "xdg-data" / "setupdeck"
        assert config.logs_dir == config.data_dir / "logs"
        assert config.effective_state_file == config.data_dir / "state.json"

    def test_log_level_normalized(self):
        """Test that log levels are upper-cased and validated."""
        assert SetupDeckConfig(log_level="debug").log_level == "DEBUG"
        with pytest.raises(ValidationError):
            SetupDeckConfig(log_level="chatty")

    @pytest.mark.parametrize("value", [0, 17])
    def test_max_parallel_bounds(self, value):
        """Test the lane count range."""
        with pytest.raises(ValidationError):
            SetupDeckConfig(max_parallel=value)

    def test_environment_variables(self, monkeypatch):
        """Test SETUPDECK_ prefixed environment settings."""
        monkeypatch.setenv("SETUPDECK_MAX_PARALLEL", "4")
        monkeypatch.setenv("SETUPDECK_SKIP_CONFIRMATION", "true")

        config = SetupDeckConfig()

        assert config.max_parallel == 4
        assert config.skip_confirmation is True

    def test_state_file_override(self, temp_dir):
        """Test an explicit state file."""
        config = SetupDeckConfig(state_file=temp_dir / "custom.json")

        assert config.effective_state_file == temp_dir / "custom.json"

    def test_ensure_directories(self, temp_dir):
        """Test data and logs directories are created."""
        config = SetupDeckConfig(data_dir=temp_dir / "deck")
        config.ensure_directories()

        assert (temp_dir / "deck" / "logs").is_dir()


class TestLoadConfig:
    """Test the YAML config file layer."""

    def test_missing_file_uses_defaults(self):
        """Test that the default config file is optional."""
        assert load_config().skip_confirmation is False

    def test_default_config_file(self, temp_dir):
        """Test reading ~/.config/setupdeck/config.yaml."""
        config_dir = temp_dir / "xdg-config" / "setupdeck"
        config_dir.mkdir(parents=True)
        (config_dir / "config.yaml").write_text(yaml.safe_dump({
            "skip_confirmation": True,
            "auto_execute": ["dns", "firewall"],
        }))

        config = load_config()

        assert config.skip_confirmation is True
        assert config.auto_execute == ["dns", "firewall"]

    def test_overrides_beat_file(self, temp_dir):
        """Test that explicit overrides win and None overrides are ignored."""
        path = temp_dir / "deck.yaml"
        path.write_text(yaml.safe_dump({"max_parallel": 2, "save_logs": True}))

        config = load_config(path, max_parallel=8, save_logs=None)

        assert config.max_parallel == 8
        assert config.save_logs is True

    def test_non_mapping_file_rejected(self, temp_dir):
        """Test a config file that is a list."""
        path = temp_dir / "deck.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ValueError):
            load_config(path)

    def test_global_config(self, temp_dir):
        """Test the global config accessors."""
        custom = SetupDeckConfig(data_dir=temp_dir / "custom")

        assert set_config(custom) is custom
        assert get_config() is custom
        assert reload_config() is not custom
        assert get_config().data_dir == Path(temp_dir / "xdg-data" / "setupdeck")
