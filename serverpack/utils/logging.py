from __future__ import annotations

import logging
import os
from typing import Mapping, Optional

LOG_FORMAT = "%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%dT%H:%M:%S"
LEVEL_ENV_VARS = ("SERVERPACK_LOG_LEVEL", "LOG_LEVEL")
DEBUG_ENV_VAR = "SERVERPACK_DEBUG"
# Transport loggers that report every connection at INFO/DEBUG.
NOISY_LOGGERS = ("urllib3", "requests")


def parse_level(value: Optional[str]) -> Optional[int]:
    """Turn ``"debug"``, ``"WARNING"`` or ``"10"`` into a level; ``None`` if unknown."""
    text = str(value or "").strip()
    if not text:
        return None
    if text.isdigit():
        return int(text)
    level = logging.getLevelName(text.upper())
    return level if isinstance(level, int) else None


def level_from_env(env: Optional[Mapping[str, str]] = None) -> Optional[int]:
    """Return the level requested through the environment, if any."""
    source = os.environ if env is None else env
    for var in LEVEL_ENV_VARS:
        level = parse_level(source.get(var))
        if level is not None:
            return level
    if str(source.get(DEBUG_ENV_VAR) or "").strip().lower() in {"1", "true", "yes", "on"}:
        return logging.DEBUG
    return None


def configure_root(
    default_level: int = logging.INFO,
    env: Optional[Mapping[str, str]] = None,
) -> int:
    """
    Configure the root logger and return the effective level.

    The thread name is part of the format so lines from the build worker
    stand apart from request handlers. Environment overrides:
      - SERVERPACK_LOG_LEVEL / LOG_LEVEL: explicit log level
      - SERVERPACK_DEBUG: truthy -> DEBUG
    Transport loggers stay at WARNING unless DEBUG is in effect.
    """
    effective = level_from_env(env)
    if effective is None:
        effective = default_level

    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=effective, format=LOG_FORMAT, datefmt=LOG_DATEFMT)
    root.setLevel(effective)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if effective <= logging.DEBUG else logging.WARNING)
    return effective


def format_megabytes(size_bytes: int) -> str:
    """Return ``size_bytes`` formatted as ``"X.XX MB"``."""
    return f"{size_bytes / (1024 * 1024):.2f} MB"
