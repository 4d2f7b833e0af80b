"""Configuration helpers for the battle royale runtime."""

from __future__ import annotations

import os
from dataclasses import dataclass

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def env_bool(name: str, *, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    return default


def env_int(name: str, *, default: int | None = None) -> int | None:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def env_float(name: str, *, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value >= 0 else default


@dataclass(frozen=True)
class EngineTiming:
    """Delays in seconds; all zero makes a run complete immediately."""

    admission_spacing: float = 1.0
    pre_round_delay: float = 3.0
    round_duration: float = 4.5
    final_pass_pause: float = 1.0
    live_update_interval: float = 1.0

    @classmethod
    def immediate(cls) -> EngineTiming:
        return cls(0.0, 0.0, 0.0, 0.0, 0.0)


def read_engine_timing() -> EngineTiming:
    defaults = EngineTiming()
    return EngineTiming(
        admission_spacing=env_float(
            "ROYALE_ADMISSION_SPACING", default=defaults.admission_spacing
        ),
        pre_round_delay=env_float(
            "ROYALE_PRE_ROUND_DELAY", default=defaults.pre_round_delay
        ),
        round_duration=env_float(
            "ROYALE_ROUND_DURATION", default=defaults.round_duration
        ),
        final_pass_pause=env_float(
            "ROYALE_FINAL_PASS_PAUSE", default=defaults.final_pass_pause
        ),
        live_update_interval=env_float(
            "ROYALE_LIVE_UPDATE_INTERVAL", default=defaults.live_update_interval
        ),
    )


@dataclass(slots=True)
class RoyaleConfig:
    discord_token: str
    table_name: str
    aws_region: str
    server_seed: str | None
    timing: EngineTiming
    shadow_mode: bool
    guild_id: int | None

    @classmethod
    def load(cls) -> RoyaleConfig:
        missing: list[str] = []

        def need(name: str) -> str:
            value = os.getenv(name)
            if not value:
                missing.append(name)
                return ""
            return value

        discord_token = need("DISCORD_TOKEN")
        table_name = need("ROYALE_TABLE_NAME")

        if missing:
            raise RuntimeError("Missing env vars: " + ", ".join(sorted(set(missing))))

        return cls(
            discord_token=discord_token,
            table_name=table_name,
            aws_region=os.getenv("AWS_REGION", "us-east-1"),
            server_seed=os.getenv("SERVER_SEED") or None,
            timing=read_engine_timing(),
            shadow_mode=env_bool("ROYALE_SHADOW_MODE", default=False),
            guild_id=env_int("ROYALE_GUILD_ID"),
        )


__all__ = [
    "EngineTiming",
    "RoyaleConfig",
    "env_bool",
    "env_float",
    "env_int",
    "read_engine_timing",
]
