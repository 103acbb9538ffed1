# codestream/config.py
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

import commentjson
from dotenv import load_dotenv

load_dotenv()

LOG_LEVEL = os.getenv("CODESTREAM_LOG_LEVEL", "DEBUG").upper()

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.DEBUG),
    format="%(asctime)s | %(levelname)s | %(name)s\n%(message)s\n"
)

logger = logging.getLogger("codestream")

# --- Configuration ---
PROJECT_ID = os.getenv("GOOGLE_CLOUD_PROJECT", "your-project-id")
REGION = os.getenv("GOOGLE_CLOUD_REGION", "us-central1")
DEFAULT_MODEL = os.getenv("CODESTREAM_DEFAULT_MODEL", "gemini-2.5-flash")
CONFIG_PATH = os.getenv("CODESTREAM_CONFIG_PATH")


@dataclass(frozen=True)
class Settings:
    """
    Tunables for a generation session.
    Defaults mirror the production app config; a JSON-with-comments file can override any of them.
    """

    default_model: str = DEFAULT_MODEL
    max_tokens: int = 8192
    temperature: float = 0.7
    llm_timeout: float = 300.0

    # truncation recovery
    enable_truncation_recovery: bool = True
    truncation_recovery_max_tokens: int = 4000
    max_repairs: int = 5

    # extraction
    lookback_chars: int = 64
    entry_point_name: str = "App.jsx"
    component_dir: str = "components/"
    host_modules: List[str] = field(default_factory=lambda: ["react", "react-dom"])
    alias_prefixes: List[str] = field(default_factory=lambda: ["@/"])
    brace_tolerance: int = 3

    # conversation history
    history_ttl_seconds: int = 24 * 3600
    history_max_tokens: int = 8000
    history_max_edits: int = 8

    vertex_project: str = PROJECT_ID
    vertex_region: str = REGION


# longest marker token is "</explanation>"; the look-back must cover it
MIN_LOOKBACK_CHARS = len("</explanation>")


def _check_value(name: str, value: Any, default: Any) -> Any:
    if isinstance(default, bool):
        if not isinstance(value, bool):
            raise ValueError(f"Config key '{name}' must be a boolean, got {value!r}")
        return value
    if isinstance(default, (int, float)):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"Config key '{name}' must be a number, got {value!r}")
        if isinstance(default, int) and not isinstance(value, int):
            raise ValueError(f"Config key '{name}' must be an integer, got {value!r}")
        if value < 0:
            raise ValueError(f"Config key '{name}' must not be negative, got {value!r}")
        return type(default)(value)
    if isinstance(default, list):
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise ValueError(f"Config key '{name}' must be a list of strings, got {value!r}")
        return list(value)
    if not isinstance(value, str):
        raise ValueError(f"Config key '{name}' must be a string, got {value!r}")
    return value


def settings_from_dict(data: Dict[str, Any], base: Optional[Settings] = None) -> Settings:
    """
    Apply overrides from a plain dict on top of `base` (or the defaults).
    Fails fast on unknown keys and on values of the wrong type.
    """
    base = base or Settings()
    known = {f.name: getattr(base, f.name) for f in fields(Settings)}

    unknown = sorted(k for k in data if k not in known)
    if unknown:
        raise ValueError(f"Unknown config key(s): {unknown}")

    overrides = {k: _check_value(k, v, known[k]) for k, v in data.items()}
    settings = replace(base, **overrides)

    if settings.lookback_chars < MIN_LOOKBACK_CHARS:
        raise ValueError(
            f"lookback_chars must be at least {MIN_LOOKBACK_CHARS}, got {settings.lookback_chars}"
        )
    return settings


def load_settings(path: str | os.PathLike | None = None) -> Settings:
    """
    Load settings from a JSON-with-comments file.
    Uses CODESTREAM_CONFIG_PATH when no path is given; no path at all means defaults.
    """
    cfg_path = path or CONFIG_PATH
    if not cfg_path:
        return Settings()

    cfg_path = Path(cfg_path)
    if not cfg_path.exists():
        raise FileNotFoundError(f"codestream config file not found at '{cfg_path}'. ")

    with cfg_path.open("r", encoding="utf-8") as f:
        data = commentjson.load(f)

    if not isinstance(data, dict):
        raise ValueError(f"codestream config at '{cfg_path}' must be a JSON object")

    settings = settings_from_dict(data)
    logger.info(f"[CONFIG] Loaded settings from {cfg_path}")
    return settings
