"""
Timing Utilities for Latency Instrumentation

Logs execution times of pipeline stages and collaborator calls in the
shipping analysis pipeline.
"""

import time
from contextlib import asynccontextmanager
from typing import Optional


def log_timing(stage: str, action: str, duration_ms: Optional[float] = None):
    """Log a timing event in standard format."""
    if duration_ms is not None:
        print(f"[TIMING] {stage}: {action} — duration={duration_ms:.0f}ms")
    else:
        print(f"[TIMING] {stage}: {action}")


@asynccontextmanager
async def async_timer(stage: str, action: str = "STAGE"):
    """Async context manager for timing a pipeline stage."""
    log_timing(stage, f"{action} START")
    start = time.perf_counter()
    try:
        yield
    finally:
        duration_ms = (time.perf_counter() - start) * 1000
        log_timing(stage, f"{action} END", duration_ms)


class StepTimer:
    """
    Utility class for timing multiple steps within a run.

    Usage:
        timer = StepTimer("pipeline")
        async with timer.async_step("verification"):
            await verify()
        timer.summary()
    """

    def __init__(self, name: str):
        self.name = name
        self.steps: dict[str, float] = {}
        self.start_time = time.perf_counter()

    @asynccontextmanager
    async def async_step(self, step_name: str):
        """Time a single async step."""
        start = time.perf_counter()
        try:
            yield
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            self.steps[step_name] = duration_ms
            log_timing(self.name, step_name, duration_ms)

    def summary(self) -> float:
        """Log summary of all steps."""
        total_ms = (time.perf_counter() - self.start_time) * 1000
        log_timing(self.name, "TOTAL", total_ms)
        return total_ms
