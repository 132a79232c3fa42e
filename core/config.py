"""
Configuration management for Gemini Chat Exporter
Settings are read from config/settings.json and layered over built-in defaults
"""
import copy
import json
from pathlib import Path
from typing import Dict, Any, Optional, List
from .exceptions import ConfigurationError

DEFAULT_SETTINGS: Dict[str, Any] = {
    "gemini": {
        "base_url": "https://gemini.google.com/u",
        "scope_selector": "0",
        "app_path": "app",
        "auto_run_param": "autoRun"
    },
    "batch": {
        "download_wait_budget": 15.0,
        "settle_delay": 3.0,
        "inter_job_delay": 2.0,
        "close_worker_after_job": False
    },
    "download": {
        "base_path": "./downloads",
        "poll_interval": 0.2,
        "conflict_policy": "uniquify",
        "inter_download_delay": 0.5,
        "timeout": 120,
        "chunk_size": 65536,
        "user_agent": "Gemini-Chat-Exporter/1.0"
    },
    "storage": {
        "temp_dir": "./downloads/.temp",
        "progress_file": "export_progress.json"
    },
    "browser": {
        "headless": False,
        "user_data_dir": "./browser_profile",
        "signal_binding": "exportSignal",
        "navigation_timeout": 60
    },
    "extraction": {
        "scroll_delay": 2.0,
        "max_scroll_attempts": 60,
        "max_stable_scrolls": 4,
        "mouseover_delay": 0.5,
        "thoughts_expand_delay": 0.3,
        "container_timeout": 30
    },
    "logging": {
        "level": "INFO",
        "file": None
    }
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class Config:
    """Configuration manager backed by a JSON settings file"""

    def __init__(self, config_dir: str = "config"):
        self.config_dir = Path(config_dir)
        self._settings: Dict[str, Any] = {}
        self.load_configs()

    def load_configs(self):
        """Load settings.json on top of the defaults"""
        settings_file = self.config_dir / "settings.json"
        overrides: Dict[str, Any] = {}
        if settings_file.exists():
            try:
                with open(settings_file, 'r', encoding='utf-8') as f:
                    overrides = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"Invalid JSON in config file {settings_file}: {e}")
            except OSError as e:
                raise ConfigurationError(f"Error loading configuration: {e}")
            if not isinstance(overrides, dict):
                raise ConfigurationError(f"Settings file must contain a JSON object: {settings_file}")

        self._settings = _merge(DEFAULT_SETTINGS, overrides)

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by dotted key path"""
        keys = key.split('.')
        value = self._settings

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    # Target site
    @property
    def base_url(self) -> str:
        return self.get('gemini.base_url')

    @property
    def scope_selector(self) -> str:
        return str(self.get('gemini.scope_selector', '0'))

    @property
    def app_path(self) -> str:
        return self.get('gemini.app_path', 'app')

    @property
    def auto_run_param(self) -> str:
        return self.get('gemini.auto_run_param', 'autoRun')

    # Batch timing
    @property
    def download_wait_budget(self) -> float:
        return float(self.get('batch.download_wait_budget', 15.0))

    @property
    def settle_delay(self) -> float:
        return float(self.get('batch.settle_delay', 3.0))

    @property
    def inter_job_delay(self) -> float:
        return float(self.get('batch.inter_job_delay', 2.0))

    @property
    def close_worker_after_job(self) -> bool:
        return bool(self.get('batch.close_worker_after_job', False))

    # Download settings
    @property
    def download_path(self) -> str:
        return self.get('download.base_path', './downloads')

    @property
    def poll_interval(self) -> float:
        return float(self.get('download.poll_interval', 0.2))

    @property
    def conflict_policy(self) -> str:
        return self.get('download.conflict_policy', 'uniquify')

    @property
    def inter_download_delay(self) -> float:
        return float(self.get('download.inter_download_delay', 0.5))

    @property
    def download_timeout(self) -> int:
        return self.get('download.timeout', 120)

    @property
    def chunk_size(self) -> int:
        return self.get('download.chunk_size', 65536)

    @property
    def user_agent(self) -> str:
        return self.get('download.user_agent', 'Gemini-Chat-Exporter/1.0')

    # Storage
    @property
    def temp_dir(self) -> str:
        return self.get('storage.temp_dir', './downloads/.temp')

    @property
    def progress_file(self) -> str:
        return self.get('storage.progress_file', 'export_progress.json')

    # Browser
    @property
    def headless(self) -> bool:
        return bool(self.get('browser.headless', False))

    @property
    def user_data_dir(self) -> str:
        return self.get('browser.user_data_dir', './browser_profile')

    @property
    def signal_binding(self) -> str:
        return self.get('browser.signal_binding', 'exportSignal')

    # Logging settings
    @property
    def log_level(self) -> str:
        return self.get('logging.level', 'INFO')

    @property
    def log_file(self) -> Optional[str]:
        return self.get('logging.file')

    def create_directories(self):
        """Create necessary directories"""
        Path(self.download_path).mkdir(parents=True, exist_ok=True)
        Path(self.temp_dir).mkdir(parents=True, exist_ok=True)

        log_file = self.log_file
        if log_file:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)

    def validate_config(self) -> List[str]:
        """Validate configuration settings and return list of issues"""
        issues = []

        if not self.base_url:
            issues.append("Gemini base URL is required")

        if self.download_wait_budget < 0:
            issues.append("Download wait budget cannot be negative")

        if self.settle_delay < 0 or self.inter_job_delay < 0:
            issues.append("Batch delays cannot be negative")

        if self.poll_interval <= 0:
            issues.append("Download poll interval must be positive")

        if self.conflict_policy not in ('uniquify', 'overwrite'):
            issues.append(f"Unsupported conflict policy: {self.conflict_policy}")

        if self.chunk_size <= 0:
            issues.append("Chunk size must be positive")

        return issues

    def update_setting(self, key: str, value: Any):
        """Update a setting value in memory"""
        keys = key.split('.')
        config_dict = self._settings

        for k in keys[:-1]:
            if k not in config_dict:
                config_dict[k] = {}
            config_dict = config_dict[k]

        config_dict[keys[-1]] = value

    def save_settings(self):
        """Save settings to file"""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        settings_file = self.config_dir / "settings.json"
        with open(settings_file, 'w', encoding='utf-8') as f:
            json.dump(self._settings, f, indent=2)

    def get_config_summary(self) -> Dict[str, Any]:
        """Get configuration summary for logging/debugging"""
        return {
            'gemini': {
                'base_url': self.base_url,
                'scope_selector': self.scope_selector
            },
            'batch': {
                'download_wait_budget': self.download_wait_budget,
                'settle_delay': self.settle_delay,
                'inter_job_delay': self.inter_job_delay,
                'close_worker_after_job': self.close_worker_after_job
            },
            'download': {
                'path': self.download_path,
                'poll_interval': self.poll_interval,
                'conflict_policy': self.conflict_policy
            },
            'logging': {
                'level': self.log_level,
                'file_enabled': bool(self.log_file)
            }
        }


# Global config instance
config = Config()
