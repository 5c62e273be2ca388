from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from dotenv import dotenv_values

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _flag(raw: str) -> bool:
    return raw.strip().lower() in _TRUE_VALUES


def _log_level(raw: str) -> int:
    raw = raw.strip()
    if raw.isdigit():
        return int(raw)
    level = logging.getLevelName(raw.upper())
    return level if isinstance(level, int) else logging.WARNING


@dataclass(frozen=True)
class KinSettings:
    relations_path: Path
    require_relations: bool
    allow_define: bool
    strict: bool
    log_level: int
    env_file: Optional[Path]


def load_settings(env_path: str | Path = ".env") -> KinSettings:
    """Load settings from .env (if present) overlaid by the real environment."""
    env_file = Path(env_path)
    file_values: Dict[str, Optional[str]] = dotenv_values(env_file) if env_file.exists() else {}

    def read(key: str, default: str) -> str:
        value = os.environ.get(key, file_values.get(key))
        return default if value is None else value

    return KinSettings(
        relations_path=Path(read("KIN_RELATIONS_PATH", "relations.txt")),
        require_relations=_flag(read("KIN_REQUIRE_RELATIONS", "0")),
        allow_define=_flag(read("KIN_ALLOW_DEFINE", "0")),
        strict=_flag(read("KIN_STRICT", "1")),
        log_level=_log_level(read("KIN_LOG_LEVEL", "WARNING")),
        env_file=env_file if env_file.exists() else None,
    )
