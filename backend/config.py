"""
Loopguard — Central Configuration

Supports optional config.json override for user-customizable settings.
Set LOOPGUARD_CONFIG to point at a different file.
"""
import json
import logging
import os
from pathlib import Path

logger = logging.getLogger("loopguard.config")

# ──────────────────────────── Paths ────────────────────────────
PROJECT_ROOT = Path(__file__).parent.parent
BACKEND_DIR = Path(__file__).parent
CONFIG_PATH = Path(os.environ.get("LOOPGUARD_CONFIG", PROJECT_ROOT / "config.json"))


# ──────────────────────────── User Config Override ────────────────────────────
def load_user_config(path: Path = CONFIG_PATH) -> dict:
    """Read config.json. Missing or malformed files yield an empty dict."""
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Ignoring unreadable config file {path}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Ignoring config file {path}: top level must be an object")
        return {}
    return data


_user_config = load_user_config()


def _cfg(key: str, default):
    """Get a config value, preferring user override from config.json."""
    return _user_config.get(key, default)


def _section(key: str) -> dict:
    """Get a config object, falling back to {} if it is missing or not a dict."""
    value = _cfg(key, {})
    return value if isinstance(value, dict) else {}


# ──────────────────────────── Resilience Defaults ────────────────────────────
RESILIENCE_DEFAULTS = {
    "max_retries": 3,
    "base_delay_ms": 1000,
    "max_delay_ms": 30000,
    "circuit_breaker_threshold": 5,
    "circuit_reset_delay_ms": 60000,
    "requests_per_minute": 50,
    "requests_per_hour": 1000,
    "verbose": False,
}

_resilience_cfg = _section("resilience")
RESILIENCE = {key: _resilience_cfg.get(key, default) for key, default in RESILIENCE_DEFAULTS.items()}

# ──────────────────────────── Timeouts ────────────────────────────
# "timeouts": {"claude.*": 120, "default": 30}
TIMEOUTS = _section("timeouts")
DEFAULT_TIMEOUT_SEC = 30
