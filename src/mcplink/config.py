"""Settings resolution for mcplink.

A setting is looked up in the environment (``MCPLINK_<NAME>``, with a ``.env``
file loaded through python-dotenv), then in the optional user config module
``~/.mcplink/config.py``, then falls back to the built-in default.
"""

import importlib.util
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "MCPLINK_"

DEFAULTS = {
    'client_name': "mcplink",
    'client_version': None,  # Filled from the package version
    'request_timeout': 30.0,
}

_FLOAT_SETTINGS = {'request_timeout'}

_CONFIG_NOT_FOUND = object()
_user_config = None
_dotenv_loaded = False


def config_path():
    return Path.home() / ".mcplink" / "config.py"


def _load_user_config(path):
    """Execute the user config file; _CONFIG_NOT_FOUND if missing or broken."""
    if not path.is_file():
        return _CONFIG_NOT_FOUND

    spec = importlib.util.spec_from_file_location("mcplink_user_config", path)
    if spec is None or spec.loader is None:
        print(f"Warning: Cannot import user config from {path}", file=sys.stderr)
        return _CONFIG_NOT_FOUND

    module = importlib.util.module_from_spec(spec)
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        print(f"Warning: Failed to load user config from {path}: {e}", file=sys.stderr)
        return _CONFIG_NOT_FOUND
    return module


def get_user_config():
    """The user config module, loaded on first use; None when there is none."""
    global _user_config

    if _user_config is None:
        _user_config = _load_user_config(config_path())
    return None if _user_config is _CONFIG_NOT_FOUND else _user_config


def reset():
    """Forget cached user config and .env state (used by tests)."""
    global _user_config, _dotenv_loaded
    _user_config = None
    _dotenv_loaded = False


def _coerce(name, value):
    if name in _FLOAT_SETTINGS and value is not None:
        try:
            return float(value)
        except (TypeError, ValueError):
            raise ValueError(f"Setting {name!r} must be a number, got {value!r}")
    return value


def get_setting(name):
    """Resolve a setting: environment, then user config, then default."""
    global _dotenv_loaded

    if name not in DEFAULTS:
        raise KeyError(f"Unknown setting: {name}")

    if not _dotenv_loaded:
        load_dotenv()
        _dotenv_loaded = True

    env_value = os.environ.get(ENV_PREFIX + name.upper())
    if env_value:
        return _coerce(name, env_value)

    user_config = get_user_config()
    if user_config is not None and getattr(user_config, name, None) is not None:
        return _coerce(name, getattr(user_config, name))

    if name == 'client_version':
        from . import __version__
        return __version__
    return DEFAULTS[name]
