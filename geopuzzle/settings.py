from __future__ import annotations

import os
from dataclasses import dataclass


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in {"1", "true", "yes"}


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e


@dataclass(frozen=True, slots=True)
class GameSettings:
    # Hints granted per session for standard modes.
    hint_allotment: int = 3
    # Guided mode is aimed at beginners and gets a bigger allotment.
    guided_hint_allotment: int = 5
    # Refuse the built-in fallback catalog when the CSV is missing.
    strict_catalog: bool = False
    log_level: str = "INFO"


def settings_from_env() -> GameSettings:
    return GameSettings(
        hint_allotment=max(0, _env_int("GEOPUZZLE_HINT_ALLOTMENT", 3)),
        guided_hint_allotment=max(0, _env_int("GEOPUZZLE_GUIDED_HINT_ALLOTMENT", 5)),
        strict_catalog=_env_flag("GEOPUZZLE_STRICT_CATALOG"),
        log_level=os.environ.get("GEOPUZZLE_LOG_LEVEL", "INFO").strip().upper() or "INFO",
    )
