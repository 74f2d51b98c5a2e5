"""
Settings shim.

The repo's canonical config lives in `config/`:
  - `config/public_config.py` (non-sensitive defaults)
  - `config/secret_config.py` (secrets loaded from env / `.env.secrets`)
  - `config/settings.py` exposes `get_settings()`

Only entrypoints (CLI, worker factory) should call `get_settings()`; library
code receives plain values through constructors.
"""

from __future__ import annotations

from config.settings import ConfigError as ConfigError
from config.settings import Settings as Settings
from config.settings import get_settings as get_settings
from config.settings import validate_settings as validate_settings
from config.settings import get_safe_config_report as get_safe_config_report
