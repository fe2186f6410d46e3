"""
Tests for ConfigManager and the CacheConfig model.
"""

import configparser
from datetime import timedelta

import pytest

from imgcache.exceptions import ConfigurationError
from imgcache.media.downloader import DEFAULT_USER_AGENT
from imgcache.models.config import CacheConfig
from imgcache.storage.config_manager import ConfigManager


@pytest.fixture
def config_file(tmp_path):
    return tmp_path / "imgcache" / "config.ini"


def _write_ini(path, **values):
    path.parent.mkdir(parents=True, exist_ok=True)
    parser = configparser.ConfigParser(interpolation=None)
    parser["DEFAULT"] = {k: str(v) for k, v in values.items()}
    with open(path, "w", encoding="utf-8") as f:
        parser.write(f)


class TestLoad:
    def test_missing_file_uses_defaults(self, config_file):
        config = ConfigManager(config_file).load_config()

        assert config.ttl == timedelta(minutes=5)
        assert config.cleanup_interval == timedelta(minutes=15)
        assert config.user_agent == DEFAULT_USER_AGENT
        assert config.cache_path == config_file.parent / "images"
        assert config.job_db_path == config_file.parent / "jobs.sqlite"

    def test_saved_config_round_trips(self, config_file, tmp_path):
        manager = ConfigManager(config_file)
        manager.save_new_config(
            {"cache_dir": str(tmp_path / "imgs"), "ttl_minutes": 30, "json_logs": True}
        )

        config = ConfigManager(config_file).load_config()

        assert config.cache_path == tmp_path / "imgs"
        assert config.ttl_minutes == 30
        assert config.json_logs is True
        assert config.max_workers == 8

    def test_cli_options_override_file(self, config_file):
        _write_ini(config_file, ttl_minutes=10)

        config = ConfigManager(config_file).load_config({"ttl_minutes": 2.5})

        assert config.ttl_minutes == 2.5

    def test_short_cleanup_interval_is_rejected(self, config_file):
        _write_ini(config_file, cleanup_interval_minutes=5)

        with pytest.raises(ConfigurationError, match="15 minutes"):
            ConfigManager(config_file).load_config()

    def test_non_numeric_value_is_rejected(self, config_file):
        _write_ini(config_file, max_workers="lots")

        with pytest.raises(ConfigurationError, match="Invalid value"):
            ConfigManager(config_file).load_config()

    def test_malformed_file_is_rejected(self, config_file):
        config_file.parent.mkdir(parents=True)
        config_file.write_text("this is not = [an ini file", encoding="utf-8")

        with pytest.raises(ConfigurationError):
            ConfigManager(config_file).load_config()


class TestMigration:
    def test_missing_keys_are_added_to_file(self, config_file):
        _write_ini(config_file, ttl_minutes=7)

        ConfigManager(config_file).load_config()

        raw = ConfigManager(config_file).read_raw()
        assert raw["ttl_minutes"] == "7"
        assert set(raw) == CacheConfig.get_ini_keys()
        assert raw["json_logs"] == "false"


class TestModel:
    @pytest.mark.parametrize(
        "field, value",
        [
            ("ttl_minutes", 0),
            ("max_workers", 0),
            ("max_workers", 33),
            ("decode_workers", 17),
            ("download_attempts", 0),
            ("poll_seconds", -1),
        ],
    )
    def test_out_of_range_values_are_rejected(self, field, value):
        with pytest.raises(ValueError):
            CacheConfig(config_path="/tmp", **{field: value})

    def test_assignment_is_validated(self):
        config = CacheConfig(config_path="/tmp")
        with pytest.raises(ValueError):
            config.cleanup_interval_minutes = 1
