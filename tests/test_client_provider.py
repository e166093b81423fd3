"""
Tests for the Temporal connection settings.
"""
import pathlib

import pytest

from minesweeper_api import client_provider
from minesweeper_api.client_provider import (
    DEFAULT_TASK_QUEUE,
    get_config_file_path,
    get_connect_config,
    get_task_queue,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ('TEMPORAL_PROFILE', 'TEMPORAL_ADDRESS', 'TEMPORAL_NAMESPACE',
                 'MINESWEEPER_TASK_QUEUE', 'XDG_CONFIG_HOME'):
        monkeypatch.delenv(name, raising=False)


class TestConnectConfig:
    """Which server and namespace the client connects to."""

    def test_defaults(self) -> None:
        assert get_connect_config() == {'target_host': 'localhost:7233', 'namespace': 'default'}

    def test_address_and_namespace_from_env(self, monkeypatch) -> None:
        monkeypatch.setenv('TEMPORAL_ADDRESS', 'temporal.internal:7233')
        monkeypatch.setenv('TEMPORAL_NAMESPACE', 'minesweeper')
        assert get_connect_config() == {'target_host': 'temporal.internal:7233', 'namespace': 'minesweeper'}

    def test_profile_from_config_file(self, monkeypatch, tmp_path) -> None:
        config_file = tmp_path / 'temporal.toml'
        config_file.write_text(
            '[profile.staging]\n'
            'address = "staging.example.com:7233"\n'
            'namespace = "games"\n'
        )
        monkeypatch.setenv('TEMPORAL_PROFILE', 'staging')
        monkeypatch.setattr(client_provider, 'get_config_file_path', lambda: config_file)

        config = get_connect_config()
        assert config['target_host'] == 'staging.example.com:7233'
        assert config['namespace'] == 'games'

    def test_profile_without_config_file_falls_back_to_env(self, monkeypatch, tmp_path) -> None:
        monkeypatch.setenv('TEMPORAL_PROFILE', 'staging')
        monkeypatch.setenv('TEMPORAL_ADDRESS', 'temporal.internal:7233')
        monkeypatch.setattr(client_provider, 'get_config_file_path', lambda: tmp_path / 'missing.toml')
        assert get_connect_config()['target_host'] == 'temporal.internal:7233'


class TestSettings:
    def test_task_queue(self, monkeypatch) -> None:
        assert get_task_queue() == DEFAULT_TASK_QUEUE
        monkeypatch.setenv('MINESWEEPER_TASK_QUEUE', 'games-eu')
        assert get_task_queue() == 'games-eu'

    def test_config_file_follows_xdg_config_home(self, monkeypatch, tmp_path) -> None:
        monkeypatch.setattr(client_provider.platform, 'system', lambda: 'Linux')
        monkeypatch.setenv('XDG_CONFIG_HOME', str(tmp_path))
        assert get_config_file_path() == tmp_path / 'temporalio/temporal.toml'

    def test_config_file_default_location(self, monkeypatch, tmp_path) -> None:
        monkeypatch.setattr(client_provider.platform, 'system', lambda: 'Linux')
        monkeypatch.setattr(pathlib.Path, 'home', classmethod(lambda cls: tmp_path))
        assert get_config_file_path() == tmp_path / '.config/temporalio/temporal.toml'
