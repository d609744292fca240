"""Batched Extraction Executor.

Runs structured extraction + enrichment over verified competitors in bounded,
rate-limited batches. Batches and items are processed strictly one at a time;
``BatchPolicy`` carries the backpressure knobs so tests can zero them out.

A single competitor's failure never aborts the batch or the run: it is
recorded on that competitor (``extracted=None``, ``extraction_error=reason``)
and processing continues. Output length always equals input length and
ordering is preserved.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Sequence, TypeVar

from ...schemas.analysis_schema import Competitor
from .collaborators.interfaces import ProfileEnricher, StructuredExtractor
from .errors import ExtractionError
from .urls import normalize_url

logger = logging.getLogger(__name__)

T = TypeVar("T")

ItemCallback = Callable[[int, int, Competitor], Optional[Awaitable[Any]]]
Sleep = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class BatchPolicy:
    """Backpressure policy for the external extraction service."""

    batch_size: int = 3
    inter_batch_delay: float = 2.0
    per_item_delay: float = 0.5

    def __post_init__(self):
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")

    @classmethod
    def immediate(cls, batch_size: int = 3) -> "BatchPolicy":
        """Zero-delay policy (tests, local runs)."""
        return cls(batch_size=batch_size, inter_batch_delay=0.0, per_item_delay=0.0)

    def batches(self, items: Sequence[T]) -> List[List[T]]:
        """Consecutive chunks of at most ``batch_size`` items."""
        return [list(items[i:i + self.batch_size]) for i in range(0, len(items), self.batch_size)]


def _failure_reason(exc: BaseException) -> str:
    message = str(exc).strip()
    if isinstance(exc, ExtractionError) and message:
        return message
    return f"{type(exc).__name__}: {message}" if message else type(exc).__name__


async def extract_competitor(
    competitor: Competitor,
    *,
    extractor: StructuredExtractor,
    enricher: ProfileEnricher,
) -> Competitor:
    """Extract + enrich one competitor. Never raises (except cancellation)."""
    url = normalize_url(competitor.website)
    try:
        raw = await extractor.extract(url)
        if not raw:
            raise ExtractionError("No structured data returned")
        enriched = await enricher.enrich(url, raw, competitor.name)
    except Exception as exc:
        reason = _failure_reason(exc)
        print(f"❌ [EXTRACT] Skipping {competitor.website}: {reason}")
        return competitor.model_copy(update={"extracted": None, "threshold": None, "extraction_error": reason})

    return competitor.model_copy(update={"extracted": enriched or raw, "extraction_error": None})


async def extract_all(
    candidates: Sequence[Competitor],
    *,
    extractor: StructuredExtractor,
    enricher: ProfileEnricher,
    policy: Optional[BatchPolicy] = None,
    on_item_done: Optional[ItemCallback] = None,
    sleep: Sleep = asyncio.sleep,
) -> List[Competitor]:
    """Run extraction over *candidates* in sequential batches.

    Parameters
    ----------
    candidates:
        Verified competitors, in discovery order.
    extractor / enricher:
        External collaborators (see ``collaborators.interfaces``).
    policy:
        Batch size and delays. Defaults to ``BatchPolicy()``.
    on_item_done:
        Called as ``on_item_done(completed, total, competitor)`` after every
        item, success or failure. May be sync or async.
    sleep:
        Injected for tests.
    """
    policy = policy or BatchPolicy()
    total = len(candidates)
    results: List[Competitor] = []
    batches = policy.batches(candidates)

    print(f"🚀 [EXTRACT] Processing {total} competitors in {len(batches)} batches of {policy.batch_size}")

    for batch_index, batch in enumerate(batches):
        if batch_index > 0 and policy.inter_batch_delay > 0:
            print(f"⏸️ [EXTRACT] Waiting {policy.inter_batch_delay:.1f}s between batches...")
            await sleep(policy.inter_batch_delay)

        print(f"🎯 [EXTRACT] Batch {batch_index + 1}/{len(batches)} ({len(batch)} competitors)")

        for competitor in batch:
            print(f"📊 [EXTRACT] [{len(results) + 1}/{total}] {competitor.name} ({competitor.website})")
            outcome = await extract_competitor(competitor, extractor=extractor, enricher=enricher)
            results.append(outcome)

            if on_item_done is not None:
                pending = on_item_done(len(results), total, outcome)
                if inspect.isawaitable(pending):
                    await pending

            if policy.per_item_delay > 0:
                await sleep(policy.per_item_delay)

    failed = sum(1 for item in results if item.extraction_error)
    logger.info("Extraction finished: %d ok, %d failed", total - failed, failed)
    return results
