"""In-memory collaborators shared by the pipeline and route tests."""

import asyncio
import copy
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from app.agents.shipping_analysis.config import PipelineSettings
from app.agents.shipping_analysis.errors import ExtractionError, SynthesisError
from app.agents.shipping_analysis.pipeline import ShippingAnalysisPipeline
from app.agents.shipping_analysis.progress import ProgressChannel
from app.agents.shipping_analysis.timeout_guard import AnalysisTimeoutGuard
from app.agents.shipping_analysis.urls import bare_domain
from app.schemas.analysis_schema import CompetitorCandidate


def make_candidates(count, prefix="comp", start=1):
    return [
        CompetitorCandidate(name=f"{prefix.title()} {i}", website=f"{prefix}{i}.com", products="jerky")
        for i in range(start, start + count)
    ]


def shipping_payload(threshold_amount, policy="Free shipping over the threshold", name="Store"):
    return {
        "business_name": name,
        "business_description": f"{name} sells snacks",
        "products": ["jerky", "meat sticks"],
        "shipping_incentives": [
            {
                "policy": policy,
                "threshold_amount": threshold_amount,
                "delivery_timeframe": "3-5 days",
            }
        ],
    }


class FakeDiscoverer:
    """Returns one queued batch per call."""

    def __init__(self, *batches):
        self._batches = [list(batch) for batch in batches]
        self.calls = []

    async def discover(self, profile, *, excluding, count):
        self.calls.append({"profile": profile, "excluding": list(excluding), "count": count})
        if not self._batches:
            return []
        return self._batches.pop(0)


class FakeExtractor:
    def __init__(self, data=None, failing=(), default_amount="$50", delay=0.0):
        self.data = data or {}
        self.delay = delay
        self.failing = set(failing)
        self.default_amount = default_amount
        self.calls = []

    async def extract(self, url):
        domain = bare_domain(url)
        self.calls.append(domain)
        if self.delay:
            await asyncio.sleep(self.delay)
        if domain in self.failing:
            raise ExtractionError(f"Firecrawl failed for {domain}")
        if domain in self.data:
            return copy.deepcopy(self.data[domain])
        return shipping_payload(self.default_amount, name=domain)


class FakeEnricher:
    def __init__(self):
        self.calls = []

    async def enrich(self, url, partial, name):
        self.calls.append(name)
        merged = dict(partial)
        merged.setdefault("target_audience", "Snack lovers")
        return merged


class FakeSynthesizer:
    def __init__(self, fail=()):
        self.fail = set(fail)
        self.contexts = []

    async def synthesize(self, kind, context):
        self.contexts.append((kind, context))
        if kind in self.fail:
            raise SynthesisError(f"{kind} unavailable")
        return f"{kind} for {context.website_url}"


class FakePersister:
    def __init__(self, fail=False):
        self.fail = fail
        self.saved = []
        self.failures = []

    async def persist(self, result, user_id):
        if self.fail:
            raise RuntimeError("database is down")
        self.saved.append((result, user_id))

    async def record_failure(self, website_url, *, session_id, user_id, error):
        self.failures.append((website_url, session_id, user_id, error))


class RecordingSink:
    def __init__(self, alive=True):
        self.alive = alive
        self.events = []
        self.closed = False

    def write(self, event):
        if not self.alive:
            return False
        self.events.append(event)
        return True

    def close(self):
        self.closed = True


class StaticVerifier:
    """Reachable unless the domain is listed as dead."""

    def __init__(self, dead=()):
        self.dead = set(dead)
        self.calls = []

    async def __call__(self, domain):
        self.calls.append(domain)
        return domain not in self.dead


async def no_sleep(seconds):
    return None


def build_pipeline(
    *,
    discoverer=None,
    extractor=None,
    enricher=None,
    synthesizer=None,
    persister=None,
    verify=None,
    channel=None,
    guard=None,
    quota=10,
    buffer=5,
    request_deadline=300.0,
):
    settings = PipelineSettings(
        competitor_quota=quota,
        discovery_buffer=buffer,
        inter_batch_delay=0.0,
        per_item_delay=0.0,
        request_deadline=request_deadline,
    )
    return ShippingAnalysisPipeline(
        discoverer=discoverer or FakeDiscoverer(make_candidates(quota + buffer)),
        extractor=extractor or FakeExtractor(),
        enricher=enricher or FakeEnricher(),
        synthesizer=synthesizer or FakeSynthesizer(),
        persister=persister,
        channel=channel or ProgressChannel(),
        guard=guard or AnalysisTimeoutGuard(60.0),
        settings=settings,
        verify=verify or StaticVerifier(),
        sleep=no_sleep,
    )
