"""Pipeline settings — all read from environment with safe defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass

from ...constants import (
    DEFAULT_COMPETITOR_QUOTA,
    DEFAULT_DISCOVERY_BUFFER,
    THRESHOLD_SANITY_CEILING,
)


def _env_float(key: str, default: float) -> float:
    try:
        return float(os.getenv(key, str(default)))
    except ValueError:
        return default


def _env_int(key: str, default: int) -> int:
    try:
        return int(os.getenv(key, str(default)))
    except ValueError:
        return default


@dataclass(frozen=True)
class PipelineSettings:
    """Tunable knobs for a shipping analysis run.

    ``quota + discovery_buffer`` candidates are requested up front so that
    verification losses rarely force a supplemental discovery call.
    """

    competitor_quota: int = DEFAULT_COMPETITOR_QUOTA
    discovery_buffer: int = DEFAULT_DISCOVERY_BUFFER
    batch_size: int = 3
    inter_batch_delay: float = 2.0
    per_item_delay: float = 0.5
    verify_timeout: float = 10.0
    analysis_timeout: float = 10 * 60.0
    request_deadline: float = 5 * 60.0
    threshold_ceiling: int = THRESHOLD_SANITY_CEILING

    @property
    def discovery_count(self) -> int:
        return self.competitor_quota + self.discovery_buffer

    @classmethod
    def from_env(cls) -> "PipelineSettings":
        return cls(
            competitor_quota=max(1, _env_int("ANALYSIS_COMPETITOR_QUOTA", DEFAULT_COMPETITOR_QUOTA)),
            discovery_buffer=max(0, _env_int("ANALYSIS_DISCOVERY_BUFFER", DEFAULT_DISCOVERY_BUFFER)),
            batch_size=max(1, _env_int("ANALYSIS_BATCH_SIZE", 3)),
            inter_batch_delay=_env_float("ANALYSIS_INTER_BATCH_DELAY", 2.0),
            per_item_delay=_env_float("ANALYSIS_PER_ITEM_DELAY", 0.5),
            verify_timeout=_env_float("ANALYSIS_VERIFY_TIMEOUT", 10.0),
            analysis_timeout=_env_float("ANALYSIS_TIMEOUT_SECONDS", 10 * 60.0),
            request_deadline=_env_float("ANALYSIS_REQUEST_DEADLINE", 5 * 60.0),
            threshold_ceiling=_env_int("ANALYSIS_THRESHOLD_CEILING", THRESHOLD_SANITY_CEILING),
        )
