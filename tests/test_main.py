"""Tests for the command line entry point."""

from livepreview.config import AutoRefreshPreview, Settings
from livepreview.main import DEFAULT_CONFIG_NAME, PreviewRunner, build_parser, main


def test_parser_defaults():
    args = build_parser().parse_args([])
    assert args.root == '.'
    assert args.port is None
    assert args.auto_refresh is None


def test_flags_override_settings_file(tmp_path):
    config = tmp_path / 'preview.yaml'
    Settings(port=5000, host='0.0.0.0', debounce_ms=50).to_yaml(config)
    args = build_parser().parse_args([str(tmp_path), '--config', str(config), '--port', '6000',
                                      '--auto-refresh', 'onSave'])

    runner = PreviewRunner(args)
    settings = runner.settings_store.settings

    assert settings.port == 6000
    assert settings.host == '0.0.0.0'
    assert settings.debounce_ms == 50
    assert settings.auto_refresh_preview is AutoRefreshPreview.ON_SAVE
    runner.settings_store.dispose()


def test_default_config_lives_in_workspace(tmp_path):
    runner = PreviewRunner(build_parser().parse_args([str(tmp_path)]))
    assert runner.settings_store.path == tmp_path.resolve() / DEFAULT_CONFIG_NAME
    runner.settings_store.dispose()


def test_invalid_config_exits_with_2(tmp_path):
    config = tmp_path / 'bad.yaml'
    config.write_text('livePreview:\n  auto_refresh_preview: sometimes\n', encoding='utf-8')
    assert main([str(tmp_path), '--config', str(config)]) == 2
