"""Essential configuration tests."""

from pathlib import Path

import pydantic
import pytest

from discpipe.config import DiscPipeConfig, create_sample_config, load_config


class TestConfigBasics:
    """Test essential configuration functionality."""

    def test_default_config(self):
        config = DiscPipeConfig()

        assert config.rip_method == "mkv"
        assert config.makemkv_con == "makemkvcon"
        assert config.min_length == 600
        assert config.max_length == 99999
        assert config.max_concurrent_transcodes == 1
        assert config.skip_transcode is False
        assert config.ai_api_key is None

    def test_paths_are_expanded(self):
        config = DiscPipeConfig(raw_dir="~/rips")
        assert config.raw_dir == (Path.home() / "rips").resolve()

    def test_default_paths_are_expanded(self, monkeypatch, tmp_path):
        monkeypatch.setenv("HOME", str(tmp_path))
        config = DiscPipeConfig()
        for path in (config.raw_dir, config.transcode_dir, config.completed_dir, config.log_dir):
            assert path.is_absolute()
            assert "~" not in str(path)
        assert config.completed_dir == (tmp_path / "media" / "completed").resolve()

    def test_derived_paths(self, config):
        assert config.database_path == config.log_dir / "discpipe.db"
        assert config.lock_dir == config.log_dir / "locks"

    def test_directory_creation(self, config):
        config.ensure_directories()
        for path in (config.raw_dir, config.transcode_dir, config.completed_dir, config.log_dir):
            assert path.is_dir()

    @pytest.mark.parametrize("method", ["mkv", "backup", "BACKUP_DVD"])
    def test_rip_methods(self, method):
        assert DiscPipeConfig(rip_method=method).rip_method == method.lower()

    def test_unknown_rip_method(self):
        with pytest.raises(pydantic.ValidationError):
            DiscPipeConfig(rip_method="dd")

    def test_concurrency_must_be_positive(self):
        with pytest.raises(pydantic.ValidationError):
            DiscPipeConfig(max_concurrent_transcodes=0)


class TestCredentials:
    def test_keys_from_environment(self, monkeypatch):
        monkeypatch.setenv("DISCPIPE_AI_API_KEY", "env-ai")
        monkeypatch.setenv("OMDB_API_KEY", "env-omdb")
        monkeypatch.setenv("TMDB_API_KEY", "env-tmdb")
        config = DiscPipeConfig()
        assert config.ai_api_key == "env-ai"
        assert config.omdb_api_key == "env-omdb"
        assert config.tmdb_api_key == "env-tmdb"

    def test_environment_key_reaches_snapshot(self, monkeypatch):
        monkeypatch.setenv("DISCPIPE_AI_API_KEY", "env-ai")
        assert DiscPipeConfig().snapshot().ai_api_key == "env-ai"

    def test_file_value_wins_over_environment(self, monkeypatch):
        monkeypatch.setenv("DISCPIPE_AI_API_KEY", "env-ai")
        assert DiscPipeConfig(ai_api_key="file-ai").ai_api_key == "file-ai"


class TestSnapshot:
    def test_snapshot_is_frozen(self, config):
        snapshot = config.snapshot()
        with pytest.raises(pydantic.ValidationError):
            snapshot.min_length = 10

    def test_snapshot_ignores_later_changes(self, config):
        snapshot = config.snapshot()
        config.min_length = 10
        assert snapshot.min_length == 600


class TestLoadConfig:
    def test_load_from_file(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text(
            f'completed_dir = "{tmp_path / "library"}"\n'
            'rip_method = "backup"\n'
            "main_feature = true\n"
            'ai_api_key = "k"\n',
        )
        config = load_config(path)
        assert config.completed_dir == tmp_path / "library"
        assert config.rip_method == "backup"
        assert config.main_feature is True

    def test_defaults_without_file(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HOME", str(tmp_path))
        assert load_config().rip_method == "mkv"

    def test_invalid_toml(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text("rip_method = \n")
        with pytest.raises(ValueError):
            load_config(path)

    def test_sample_config_loads(self, tmp_path):
        path = tmp_path / "nested" / "config.toml"
        create_sample_config(path)
        config = load_config(path)
        assert config.ai_api_key == "your_api_key_here"
        assert config.hb_preset_bd == "HQ 1080p30 Surround"
