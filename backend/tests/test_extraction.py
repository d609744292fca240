"""Batched extraction executor — ordering, containment and rate limiting."""

import asyncio
import os
import sys

# Ensure the backend package is importable
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest

from app.agents.shipping_analysis.extraction import BatchPolicy, extract_all, extract_competitor
from app.schemas.analysis_schema import Competitor
from pipeline_fakes import FakeEnricher, FakeExtractor


def _competitors(count):
    return [
        Competitor(name=f"Comp {i}", website=f"comp{i}.com", verified=True)
        for i in range(1, count + 1)
    ]


class SleepRecorder:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


class TestBatchPolicy:
    def test_batches_are_consecutive_chunks(self):
        policy = BatchPolicy(batch_size=3)
        assert policy.batches([1, 2, 3, 4, 5, 6, 7]) == [[1, 2, 3], [4, 5, 6], [7]]

    def test_empty_input(self):
        assert BatchPolicy().batches([]) == []

    def test_invalid_batch_size(self):
        with pytest.raises(ValueError):
            BatchPolicy(batch_size=0)


class TestExtractAll:
    def test_partial_failure_keeps_length_and_order(self):
        extractor = FakeExtractor(failing={"comp2.com", "comp4.com"})
        results = asyncio.run(
            extract_all(
                _competitors(5),
                extractor=extractor,
                enricher=FakeEnricher(),
                policy=BatchPolicy.immediate(),
            )
        )

        assert [c.website for c in results] == [f"comp{i}.com" for i in range(1, 6)]
        assert [c.extraction_error is not None for c in results] == [False, True, False, True, False]
        assert results[1].extracted is None
        assert results[1].threshold is None
        assert "comp2.com" in results[1].extraction_error
        assert results[0].extracted["target_audience"] == "Snack lovers"
        # Every candidate was attempted despite the failures
        assert extractor.calls == [f"comp{i}.com" for i in range(1, 6)]

    def test_sleeps_between_batches_and_items(self):
        sleep = SleepRecorder()
        asyncio.run(
            extract_all(
                _competitors(7),
                extractor=FakeExtractor(),
                enricher=FakeEnricher(),
                policy=BatchPolicy(batch_size=3, inter_batch_delay=2.0, per_item_delay=0.5),
                sleep=sleep,
            )
        )

        assert sleep.calls.count(2.0) == 2  # before batches 2 and 3
        assert sleep.calls.count(0.5) == 7  # after every item
        # No inter-batch delay before the first batch
        assert sleep.calls[0] == 0.5

    def test_progress_callback_after_every_item(self):
        seen = []

        async def on_item_done(completed, total, competitor):
            seen.append((completed, total, competitor.website, competitor.extraction_error is None))

        asyncio.run(
            extract_all(
                _competitors(4),
                extractor=FakeExtractor(failing={"comp3.com"}),
                enricher=FakeEnricher(),
                policy=BatchPolicy.immediate(batch_size=2),
                on_item_done=on_item_done,
            )
        )

        assert seen == [
            (1, 4, "comp1.com", True),
            (2, 4, "comp2.com", True),
            (3, 4, "comp3.com", False),
            (4, 4, "comp4.com", True),
        ]

    def test_empty_input_returns_empty(self):
        results = asyncio.run(
            extract_all([], extractor=FakeExtractor(), enricher=FakeEnricher(), policy=BatchPolicy.immediate())
        )
        assert results == []


class TestExtractCompetitor:
    def test_enricher_failure_is_recorded(self):
        class BrokenEnricher:
            async def enrich(self, url, partial, name):
                raise RuntimeError("enrichment exploded")

        result = asyncio.run(
            extract_competitor(_competitors(1)[0], extractor=FakeExtractor(), enricher=BrokenEnricher())
        )

        assert result.extracted is None
        assert result.extraction_error == "RuntimeError: enrichment exploded"

    def test_empty_extraction_is_a_failure(self):
        extractor = FakeExtractor(data={"comp1.com": {}})
        result = asyncio.run(
            extract_competitor(_competitors(1)[0], extractor=extractor, enricher=FakeEnricher())
        )
        assert result.extraction_error == "No structured data returned"

    def test_extractor_receives_full_url(self):
        urls = []

        class RecordingExtractor:
            async def extract(self, url):
                urls.append(url)
                return {"business_name": "Comp"}

        asyncio.run(
            extract_competitor(_competitors(1)[0], extractor=RecordingExtractor(), enricher=FakeEnricher())
        )
        assert urls == ["https://comp1.com"]
