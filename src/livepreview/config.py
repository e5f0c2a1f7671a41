"""Configuration for the live preview server.

Settings are a dataclass loaded from a YAML file with environment fallbacks,
held by a `SettingsStore` that persists updates and notifies subscribers
when the configuration changes.
"""

import logging
import os
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional

import yaml
from dotenv import load_dotenv

from .events import Disposable, EventEmitter

load_dotenv()

logger = logging.getLogger(__name__)

SETTINGS_SECTION_ID = 'livePreview'
DEFAULT_HOST = '127.0.0.1'
DEFAULT_HTTP_PORT = 3000
DONT_SHOW_AGAIN = "Don't show again"
# Consecutive ports tried by a listener before giving up
MAX_PORT_ATTEMPTS = 10

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class AutoRefreshPreview(str, Enum):
    """When connected browsers should reload."""

    OFF = 'off'
    ON_SAVE = 'onSave'
    ON_ANY_CHANGE = 'onAnyChange'


@dataclass
class Settings:
    """Configuration for the live preview server"""

    # Server Settings
    port: int = None
    host: str = None
    # Workspace-relative directory served as the document root
    serve_root: str = ''

    # Reload Settings
    auto_refresh_preview: AutoRefreshPreview = AutoRefreshPreview.ON_ANY_CHANGE
    show_server_status_popups: bool = True
    debounce_ms: int = 400
    watch_exclude: List[str] = None

    # Remote development: host and ports advertised instead of the local ones
    external_host: Optional[str] = None
    port_forwards: Dict[int, int] = None

    def __post_init__(self):
        if self.host is None:
            self.host = os.getenv('LIVE_PREVIEW_HOST') or DEFAULT_HOST
        if self.port is None:
            self.port = int(os.getenv('LIVE_PREVIEW_PORT') or DEFAULT_HTTP_PORT)
        if self.external_host is None:
            self.external_host = os.getenv('LIVE_PREVIEW_EXTERNAL_HOST') or None
        if self.watch_exclude is None:
            self.watch_exclude = ['.git', 'node_modules', '__pycache__']
        if self.port_forwards is None:
            self.port_forwards = {}
        else:
            self.port_forwards = {int(k): int(v) for k, v in self.port_forwards.items()}
        # Raises ValueError for unknown policies
        self.auto_refresh_preview = AutoRefreshPreview(self.auto_refresh_preview)
        self.port = int(self.port)
        self.serve_root = self.serve_root or ''

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'Settings':
        """Build settings from a plain mapping, optionally nested under `livePreview`."""
        data = dict(data or {})
        if isinstance(data.get(SETTINGS_SECTION_ID), dict):
            data = dict(data[SETTINGS_SECTION_ID])
        known = {f.name for f in fields(cls)}
        for key in list(data):
            if key not in known:
                logger.warning("Ignoring unknown setting '%s'", key)
                del data[key]
        return cls(**data)

    @classmethod
    def from_yaml(cls, path: Path) -> 'Settings':
        """Load configuration from YAML file"""
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
        return cls.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        data = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, list):
                value = list(value)
            elif isinstance(value, dict):
                value = dict(value)
            data[f.name] = value
        return data

    def to_yaml(self, path: Path):
        """Save configuration to YAML file under the `livePreview` section"""
        with open(path, 'w', encoding='utf-8') as f:
            yaml.safe_dump({SETTINGS_SECTION_ID: self.to_dict()}, f, default_flow_style=False)


@dataclass(frozen=True)
class ConfigurationChangeEvent:
    changed: FrozenSet[str] = field(default_factory=frozenset)

    def affects_configuration(self, section: str) -> bool:
        if section == SETTINGS_SECTION_ID:
            return bool(self.changed)
        prefix = SETTINGS_SECTION_ID + '.'
        return section.startswith(prefix) and section[len(prefix):] in self.changed


class SettingsStore(Disposable):
    """Holds the live settings and persists changes to `path` when given.

    Readers must go through `settings` every time they need a value; the
    object is replaced on reload.
    """

    def __init__(self, settings: Optional[Settings] = None, path: Optional[Path] = None):
        super().__init__()
        self.path = Path(path) if path else None
        if settings is None:
            settings = Settings.from_yaml(self.path) if self.path and self.path.is_file() else Settings()
        self._settings = settings

        self._on_did_change_configuration = self._register(
            EventEmitter[ConfigurationChangeEvent]('configuration'))
        self.on_did_change_configuration = self._on_did_change_configuration.event

    @property
    def settings(self) -> Settings:
        return self._settings

    def update(self, name: str, value: Any) -> None:
        """Change a single setting, persist it and notify subscribers."""
        if name not in {f.name for f in fields(Settings)}:
            raise KeyError(f"Unknown setting: {name}")
        self._apply(replace(self._settings, **{name: value}))
        if self.path:
            try:
                self._settings.to_yaml(self.path)
            except OSError as e:
                logger.error(f"Failed to persist settings to {self.path}: {e}")

    def reload(self) -> bool:
        """Re-read the settings file; returns True when anything changed."""
        if not self.path or not self.path.is_file():
            return False
        try:
            new_settings = Settings.from_yaml(self.path)
        except (OSError, ValueError, TypeError, yaml.YAMLError) as e:
            logger.warning(f"Keeping previous settings, could not read {self.path}: {e}")
            return False
        return self._apply(new_settings)

    def _apply(self, new_settings: Settings) -> bool:
        old = self._settings.to_dict()
        new = new_settings.to_dict()
        changed = frozenset(k for k in new if old.get(k) != new[k])
        self._settings = new_settings
        if changed:
            logger.info("Configuration changed: %s", ', '.join(sorted(changed)))
            self._on_did_change_configuration.fire(ConfigurationChangeEvent(changed))
        return bool(changed)


def setup_logging(logs_dir: Optional[Path] = None, level: int = logging.INFO) -> None:
    """Setup console logging and, when `logs_dir` is given, a rotating log file."""
    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    handlers: List[logging.Handler] = [console_handler]

    if logs_dir:
        logs_dir = Path(logs_dir)
        logs_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            logs_dir / 'live-preview.log',
            maxBytes=5 * 1024 * 1024,  # 5MB
            backupCount=5,
            encoding='utf-8'
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    # aiohttp access logs are noisy at INFO
    logging.getLogger('aiohttp.access').setLevel(logging.WARNING)
