"""Tests for settings loading, persistence and change notification."""

import pytest
import yaml

from livepreview.config import (
    AutoRefreshPreview,
    ConfigurationChangeEvent,
    Settings,
    SettingsStore,
)


def test_from_yaml_reads_nested_section(tmp_path):
    path = tmp_path / 'settings.yaml'
    path.write_text(
        "livePreview:\n"
        "  port: 5600\n"
        "  host: 0.0.0.0\n"
        "  auto_refresh_preview: onSave\n"
        "  port_forwards:\n"
        "    '5600': 443\n"
        "  unknown_key: 1\n",
        encoding='utf-8',
    )

    settings = Settings.from_yaml(path)

    assert settings.port == 5600
    assert settings.host == '0.0.0.0'
    assert settings.auto_refresh_preview is AutoRefreshPreview.ON_SAVE
    assert settings.port_forwards == {5600: 443}


def test_invalid_policy_is_rejected():
    with pytest.raises(ValueError):
        Settings(auto_refresh_preview='sometimes')


def test_environment_fallback(monkeypatch):
    monkeypatch.setenv('LIVE_PREVIEW_HOST', '0.0.0.0')
    monkeypatch.setenv('LIVE_PREVIEW_PORT', '4100')

    settings = Settings()

    assert settings.host == '0.0.0.0'
    assert settings.port == 4100
    assert Settings(port=4200).port == 4200


def test_update_persists_and_notifies(tmp_path):
    path = tmp_path / 'settings.yaml'
    store = SettingsStore(Settings(port=4000), path)
    events = []
    store.on_did_change_configuration(events.append)

    store.update('auto_refresh_preview', AutoRefreshPreview.OFF)

    assert store.settings.auto_refresh_preview is AutoRefreshPreview.OFF
    assert len(events) == 1
    assert events[0].affects_configuration('livePreview')
    assert events[0].affects_configuration('livePreview.auto_refresh_preview')
    assert not events[0].affects_configuration('livePreview.port')
    saved = yaml.safe_load(path.read_text(encoding='utf-8'))
    assert saved['livePreview']['auto_refresh_preview'] == 'off'


def test_update_with_same_value_is_silent(tmp_path):
    store = SettingsStore(Settings(port=4000), tmp_path / 'settings.yaml')
    events = []
    store.on_did_change_configuration(events.append)

    store.update('port', 4000)

    assert events == []


def test_update_unknown_setting_raises(tmp_path):
    store = SettingsStore(Settings(port=4000))
    with pytest.raises(KeyError):
        store.update('colour', 'blue')


def test_reload_picks_up_file_changes(tmp_path):
    path = tmp_path / 'settings.yaml'
    store = SettingsStore(Settings(port=4000), path)
    store.settings.to_yaml(path)
    events = []
    store.on_did_change_configuration(events.append)

    assert store.reload() is False
    path.write_text("livePreview:\n  port: 4000\n  serve_root: site\n", encoding='utf-8')
    assert store.reload() is True

    assert store.settings.serve_root == 'site'
    assert events[-1].affects_configuration('livePreview.serve_root')


def test_reload_keeps_settings_on_broken_file(tmp_path):
    path = tmp_path / 'settings.yaml'
    store = SettingsStore(Settings(port=4000), path)
    path.write_text("livePreview:\n  auto_refresh_preview: never\n", encoding='utf-8')

    assert store.reload() is False
    assert store.settings.port == 4000


def test_change_event_outside_section():
    event = ConfigurationChangeEvent(frozenset({'port'}))
    assert not event.affects_configuration('otherExtension')
    assert not ConfigurationChangeEvent().affects_configuration('livePreview')
