from __future__ import annotations

import os
from dataclasses import dataclass

LOG_LEVELS = ("critical", "error", "warning", "info", "debug")


@dataclass(frozen=True)
class Settings:

    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "info"
    timeline_width: int = 60
    timeline_value_width: int = 8

    @classmethod
    def from_env(cls) -> "Settings":
        host = os.getenv("HOST", "0.0.0.0").strip()
        port = int(os.getenv("PORT", "8080"))
        log_level = os.getenv("LOG_LEVEL", "info").strip().lower()
        timeline_width = int(os.getenv("TIMELINE_WIDTH", "60"))
        value_width = int(os.getenv("TIMELINE_VALUE_WIDTH", "8"))

        if not 0 < port < 65536:
            raise ValueError(f"PORT must be between 1 and 65535, got {port}")
        if log_level not in LOG_LEVELS:
            raise ValueError(
                f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}, got {log_level!r}"
            )
        if timeline_width < 10:
            raise ValueError("TIMELINE_WIDTH must be at least 10")
        if value_width < 1:
            raise ValueError("TIMELINE_VALUE_WIDTH must be positive")

        return cls(
            host=host,
            port=port,
            log_level=log_level,
            timeline_width=timeline_width,
            timeline_value_width=value_width,
        )
