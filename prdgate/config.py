"""
Configuration loading for prdgate.

Implements cascading configuration:
1. Built-in defaults
2. Global defaults (~/.prd/config.yaml)
3. Project config (.prd/config.yaml) - committed with the project
4. Local overrides (.prd/config.local.yaml) - personal, not committed

Files are YAML. A project config may set `inherit: false` to ignore the
global file. Invalid values are configuration errors: they abort the
command instead of being silently dropped, because the gate's verdicts
depend on them.
"""
import copy
import os
from pathlib import Path
from typing import Any, Optional

import yaml

from .errors import ConfigurationError


# Hard upper bound of the check history
HISTORY_LIMIT = 100

DEFAULTS = {
    'logging': {
        'level': 'warning',
        'destinations': ['file'],
    },
    'validators': {
        'min_section_chars': 20,
        'placeholder_markers': ['<!-- Fill in'],
    },
    'history': {
        'enabled': True,
        'max_entries': HISTORY_LIMIT,
    },
    'stats': {
        'top_n': 5,
        'trend_days': 7,
    },
    'confirmation': {
        'auto_confirm': False,
        'auto_signature': 'automation',
    },
    'rules': {
        'file': None,
    },
}

# section -> field -> (type, constraint)
SCHEMA = {
    'logging': {
        'level': (str, {'debug', 'info', 'warning', 'error'}),
        'destinations': (list, {'file', 'stderr'}),
        'file': (str, None),
    },
    'validators': {
        'min_section_chars': (int, None),
        'placeholder_markers': (list, None),
    },
    'history': {
        'enabled': (bool, None),
        'max_entries': (int, None),
    },
    'stats': {
        'top_n': (int, None),
        'trend_days': (int, None),
    },
    'confirmation': {
        'auto_confirm': (bool, None),
        'auto_signature': (str, None),
    },
    'rules': {
        'file': (str, None),
    },
}

AUTO_CONFIRM_ENV = 'PRDGATE_AUTO_CONFIRM'


def load_yaml(path: Path) -> dict:
    """
    Load one YAML config file.

    Args:
        path: File to read

    Returns:
        Parsed mapping ({} when the file does not exist or is empty)

    Raises:
        ConfigurationError: If the file is unreadable or not a mapping
    """
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding='utf-8'))
    except (OSError, UnicodeDecodeError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Could not load {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must contain a mapping, got {type(data).__name__}")
    return data


def deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base (in place). Non-dict values replace."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def global_config_path() -> Path:
    return Path.home() / '.prd' / 'config.yaml'


def project_config_path(project_dir: str) -> Path:
    return Path(project_dir) / '.prd' / 'config.yaml'


def local_config_path(project_dir: str) -> Path:
    return Path(project_dir) / '.prd' / 'config.local.yaml'


class GateConfig:
    """
    Merged configuration for one command invocation.

    Loaded once per command and passed down; nothing re-reads config files
    mid-command.
    """

    def __init__(self, project_dir: Optional[str] = None, overrides: Optional[dict] = None):
        self.project_dir = project_dir
        self.sources: list[str] = []
        self._config = self._load_cascade()
        if overrides:
            deep_merge(self._config, overrides)
        self._validate()

    def _load_cascade(self) -> dict:
        config = copy.deepcopy(DEFAULTS)

        global_file = global_config_path()
        global_config = load_yaml(global_file)
        if global_config:
            deep_merge(config, global_config)
            self.sources.append(str(global_file))

        if self.project_dir is None:
            return config

        project_file = project_config_path(self.project_dir)
        project_config = load_yaml(project_file)
        if project_config:
            if not project_config.get('inherit', True):
                config = copy.deepcopy(DEFAULTS)
            deep_merge(config, project_config)
            self.sources.append(str(project_file))

        local_file = local_config_path(self.project_dir)
        local_config = load_yaml(local_file)
        if local_config:
            deep_merge(config, local_config)
            self.sources.append(str(local_file))

        return config

    def _validate(self) -> None:
        for section, fields in SCHEMA.items():
            values = self._config.get(section)
            if not isinstance(values, dict):
                raise ConfigurationError(f"Config section '{section}' must be a mapping")
            for name, (expected, allowed) in fields.items():
                value = values.get(name)
                if value is None:
                    continue
                # bool is an int subclass; reject it for numeric fields
                if expected is int and isinstance(value, bool):
                    raise ConfigurationError(f"Config '{section}.{name}' must be int")
                if not isinstance(value, expected):
                    raise ConfigurationError(
                        f"Config '{section}.{name}' must be {expected.__name__}, "
                        f"got {type(value).__name__}"
                    )
                if allowed is None:
                    continue
                items = value if isinstance(value, list) else [value]
                bad = [item for item in items if item not in allowed]
                if bad:
                    raise ConfigurationError(
                        f"Config '{section}.{name}' must be one of: {', '.join(sorted(allowed))}"
                    )

        for section, name in (('history', 'max_entries'), ('stats', 'top_n'),
                              ('stats', 'trend_days')):
            if self._config[section][name] < 1:
                raise ConfigurationError(f"Config '{section}.{name}' must be >= 1")
        if self._config['history']['max_entries'] > HISTORY_LIMIT:
            raise ConfigurationError(f"Config 'history.max_entries' must be <= {HISTORY_LIMIT}")
        if self._config['validators']['min_section_chars'] < 0:
            raise ConfigurationError("Config 'validators.min_section_chars' must be >= 0")

    def get(self, section: str, key: str, default: Any = None) -> Any:
        return self._config.get(section, {}).get(key, default)

    def section(self, name: str) -> dict:
        return dict(self._config.get(name, {}))

    @property
    def logging(self) -> dict:
        return self.section('logging')

    @property
    def min_section_chars(self) -> int:
        return self.get('validators', 'min_section_chars')

    @property
    def placeholder_markers(self) -> tuple:
        return tuple(self.get('validators', 'placeholder_markers') or ())

    @property
    def history_enabled(self) -> bool:
        return bool(self.get('history', 'enabled'))

    @property
    def history_max_entries(self) -> int:
        return self.get('history', 'max_entries')

    @property
    def auto_confirm(self) -> bool:
        """Automatic confirmation is opt-in only: env var or explicit config."""
        if os.environ.get(AUTO_CONFIRM_ENV) == '1':
            return True
        return bool(self.get('confirmation', 'auto_confirm'))

    @property
    def auto_signature(self) -> str:
        return self.get('confirmation', 'auto_signature')

    @property
    def rules_file(self) -> Optional[str]:
        return self.get('rules', 'file')

    def to_dict(self) -> dict:
        return copy.deepcopy(self._config)
