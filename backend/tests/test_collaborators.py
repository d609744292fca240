"""OpenAI / Firecrawl collaborators with the network stubbed out."""

import asyncio
import os
import sys

# Ensure the backend package is importable
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import httpx
import pytest

from app.agents.shipping_analysis import PipelineSettings, build_default_pipeline
from app.agents.shipping_analysis.collaborators import discovery, enrichment, synthesis
from app.agents.shipping_analysis.collaborators.discovery import (
    OpenAICompetitorDiscoverer,
    ParsedCandidates,
    ParseError,
    parse_candidates,
)
from app.agents.shipping_analysis.collaborators.enrichment import OpenAIProfileEnricher, merge_enrichment
from app.agents.shipping_analysis.collaborators.firecrawl import (
    FIRECRAWL_SCRAPE_URL,
    FirecrawlExtractor,
    fallback_incentives,
    refine_shipping,
)
from app.agents.shipping_analysis.collaborators.interfaces import BusinessProfile, SynthesisContext
from app.agents.shipping_analysis.collaborators.synthesis import OpenAINarrativeSynthesizer
from app.agents.shipping_analysis.errors import ExtractionError, SynthesisError
from app.agents.shipping_analysis.http_client import get_client


def _stub(return_value=None, error=None):
    """Async replacement for the OpenAI helpers that records its calls."""
    calls = []

    async def fake(**kwargs):
        calls.append(kwargs)
        if error is not None:
            raise error
        return return_value

    fake.calls = calls
    return fake


# ===================================================================== #
#  Discovery                                                              #
# ===================================================================== #

class TestParseCandidates:
    def test_normalizes_and_deduplicates(self):
        raw = {
            "competitors": [
                {"name": "Jerky Co", "website": "https://www.jerkyco.com/", "products": "beef jerky", "confidence": "high"},
                {"name": "Jerky Co again", "website": "jerkyco.com"},
                {"name": "", "website": "meatsticks.com"},
                {"name": "No site"},
                {"name": "Bad", "website": "localhost"},
                "not a dict",
            ]
        }
        parsed = parse_candidates(raw)

        assert isinstance(parsed, ParsedCandidates)
        assert [(c.name, c.website) for c in parsed.candidates] == [
            ("Jerky Co", "jerkyco.com"),
            ("meatsticks.com", "meatsticks.com"),
        ]
        assert parsed.candidates[0].confidence == "high"
        assert parsed.dropped == 4

    def test_excluded_domains_are_dropped(self):
        raw = [{"name": "Shop", "website": "shop.com"}, {"name": "Other", "website": "other.com"}]
        parsed = parse_candidates(raw, excluding=["https://www.shop.com"])
        assert [c.website for c in parsed.candidates] == ["other.com"]

    def test_unusable_reply(self):
        assert isinstance(parse_candidates({"results": []}), ParseError)
        assert isinstance(parse_candidates("sure, here are some competitors"), ParseError)


class TestOpenAICompetitorDiscoverer:
    def test_discover_passes_exclusions_to_prompt(self, monkeypatch):
        fake = _stub({"competitors": [{"name": "Other", "website": "other.com"}]})
        monkeypatch.setattr(discovery, "call_openai_chat_async", fake)

        profile = BusinessProfile(website_url="https://shop.com", data={"business_name": "Shop"})
        found = asyncio.run(
            OpenAICompetitorDiscoverer().discover(profile, excluding=["shop.com", "dead.com"], count=15)
        )

        assert [c.website for c in found] == ["other.com"]
        prompt = fake.calls[0]["messages"][0]["content"]
        assert "exactly 15 direct competitors" in prompt
        assert "dead.com" in prompt
        assert "Primary Business: Shop" in prompt

    def test_no_reply_means_no_candidates(self, monkeypatch):
        monkeypatch.setattr(discovery, "call_openai_chat_async", _stub(None))
        profile = BusinessProfile(website_url="https://shop.com")
        assert asyncio.run(OpenAICompetitorDiscoverer().discover(profile, excluding=[], count=5)) == []

    def test_missing_key_means_no_candidates(self, monkeypatch):
        monkeypatch.setattr(discovery, "call_openai_chat_async", _stub(error=EnvironmentError("OPENAI_API_KEY not set")))
        profile = BusinessProfile(website_url="https://shop.com")
        assert asyncio.run(OpenAICompetitorDiscoverer().discover(profile, excluding=[], count=5)) == []

    def test_zero_count_skips_the_model(self, monkeypatch):
        fake = _stub({"competitors": []})
        monkeypatch.setattr(discovery, "call_openai_chat_async", fake)
        profile = BusinessProfile(website_url="https://shop.com")
        assert asyncio.run(OpenAICompetitorDiscoverer().discover(profile, excluding=[], count=0)) == []
        assert fake.calls == []


# ===================================================================== #
#  Enrichment                                                             #
# ===================================================================== #

class TestEnrichment:
    def test_merge_only_fills_gaps(self):
        partial = {"business_name": "Shop", "target_audience": "Hikers", "price_range": "N/A", "key_features": []}
        extra = {"target_audience": "Everyone", "price_range": "$10-$30", "key_features": ["Keto"], "business_name": "X"}

        merged = merge_enrichment(partial, extra)

        assert merged["target_audience"] == "Hikers"
        assert merged["price_range"] == "$10-$30"
        assert merged["key_features"] == ["Keto"]
        assert merged["business_name"] == "Shop"
        assert partial["price_range"] == "N/A"

    def test_enricher_keeps_input_on_failure(self, monkeypatch):
        monkeypatch.setattr(enrichment, "call_openai_chat_async", _stub(error=RuntimeError("rate limited")))
        partial = {"business_name": "Shop"}
        result = asyncio.run(OpenAIProfileEnricher().enrich("https://shop.com", partial, "Shop"))
        assert result == partial

    def test_enricher_merges_reply(self, monkeypatch):
        monkeypatch.setattr(enrichment, "call_openai_chat_async", _stub({"return_policy": "30 days"}))
        result = asyncio.run(OpenAIProfileEnricher().enrich("https://shop.com", {"business_name": "Shop"}, "Shop"))
        assert result == {"business_name": "Shop", "return_policy": "30 days"}

    def test_empty_partial_is_returned_untouched(self, monkeypatch):
        fake = _stub({"return_policy": "30 days"})
        monkeypatch.setattr(enrichment, "call_openai_chat_async", fake)
        assert asyncio.run(OpenAIProfileEnricher().enrich("https://shop.com", {}, "Shop")) == {}
        assert fake.calls == []


# ===================================================================== #
#  Firecrawl                                                              #
# ===================================================================== #

class TestShippingRefinement:
    def test_fallback_requires_free_shipping_claim(self):
        assert fallback_incentives({"has_free_shipping": False}, has_text=True) == []

    def test_fallback_with_text_assumes_unconditional(self):
        info = {"has_free_shipping": True, "general_shipping_policy": "Ships free"}
        [incentive] = fallback_incentives(info, has_text=True)
        assert incentive["policy"] == "Ships free"
        assert incentive["threshold_amount"] == "0"

    def test_fallback_without_text_is_unknown(self):
        [incentive] = fallback_incentives({"has_free_shipping": True}, has_text=False)
        assert incentive["threshold_amount"] == "N/A"

    def test_refiner_result_is_attached(self):
        async def refiner(info):
            return {"shipping_incentives": [{"policy": "Free over $40", "threshold_amount": "$40"}]}

        data = {"shipping_info": {"has_free_shipping": True, "shipping_thresholds": "Free over $40"}}
        result = asyncio.run(refine_shipping(data, refiner))
        assert result["shipping_incentives"] == [{"policy": "Free over $40", "threshold_amount": "$40"}]

    def test_refiner_failure_uses_fallback(self):
        async def refiner(info):
            raise RuntimeError("model unavailable")

        data = {"shipping_info": {"has_free_shipping": True, "general_shipping_policy": "Free shipping always"}}
        result = asyncio.run(refine_shipping(data, refiner))
        assert result["shipping_incentives"][0]["threshold_amount"] == "0"

    def test_no_shipping_info_is_left_alone(self):
        async def refiner(info):
            raise AssertionError("should not be called")

        data = {"business_name": "Shop"}
        assert asyncio.run(refine_shipping(data, refiner)) == {"business_name": "Shop"}


class TestFirecrawlExtractor:
    def _extract(self, handler, url="shop.com"):
        async def scenario():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                extractor = FirecrawlExtractor(api_key="fc-test", client=client, refiner=None)
                return await extractor.extract(url)

        return asyncio.run(scenario())

    def test_success(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(
                200,
                json={"success": True, "data": {"extract": {"business_name": "Shop", "shipping_info": {}}}},
            )

        data = self._extract(handler)

        assert data["business_name"] == "Shop"
        assert str(requests[0].url) == FIRECRAWL_SCRAPE_URL
        assert requests[0].headers["authorization"] == "Bearer fc-test"
        assert b'"url":"https://shop.com"' in requests[0].content.replace(b" ", b"")

    def test_http_error_status(self):
        with pytest.raises(ExtractionError, match="HTTP 429"):
            self._extract(lambda request: httpx.Response(429, text="slow down"))

    def test_unsuccessful_body(self):
        with pytest.raises(ExtractionError, match="blocked"):
            self._extract(lambda request: httpx.Response(200, json={"success": False, "error": "blocked"}))

    def test_empty_extract(self):
        with pytest.raises(ExtractionError, match="No structured data"):
            self._extract(lambda request: httpx.Response(200, json={"success": True, "data": {"extract": {}}}))

    def test_network_failure(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ExtractionError, match="request failed"):
            self._extract(handler)

    def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("FIRECRAWL_API_KEY", raising=False)

        async def scenario():
            async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200))) as client:
                return await FirecrawlExtractor(client=client, refiner=None).extract("shop.com")

        with pytest.raises(ExtractionError, match="API key"):
            asyncio.run(scenario())

    def test_shared_client_is_reused_across_calls(self):
        handed_out = []

        def handler(request):
            return httpx.Response(200, json={"success": True, "data": {"extract": {"business_name": "Shop"}}})

        async def scenario():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                async def factory():
                    handed_out.append(client)
                    return client

                extractor = FirecrawlExtractor(api_key="fc-test", client_factory=factory, refiner=None)
                await extractor.extract("shop.com")
                await extractor.extract("other.com")
                return client.is_closed

        assert asyncio.run(scenario()) is False
        assert len(handed_out) == 2
        assert handed_out[0] is handed_out[1]

    def test_default_pipeline_uses_pooled_client(self):
        pipeline = build_default_pipeline(settings=PipelineSettings())
        assert pipeline.extractor._client_factory is get_client


# ===================================================================== #
#  Synthesis                                                              #
# ===================================================================== #

class TestNarrativeSynthesizer:
    def _context(self):
        return SynthesisContext(website_url="https://shop.com", primary_data={"business_name": "Shop"})

    def test_returns_model_text(self, monkeypatch):
        fake = _stub("## Analysis")
        monkeypatch.setattr(synthesis, "call_openai_text_async", fake)

        text = asyncio.run(OpenAINarrativeSynthesizer().synthesize("analysis", self._context()))

        assert text == "## Analysis"
        assert fake.calls[0]["max_completion_tokens"] == 2000

    def test_empty_reply_raises(self, monkeypatch):
        monkeypatch.setattr(synthesis, "call_openai_text_async", _stub(None))
        with pytest.raises(SynthesisError):
            asyncio.run(OpenAINarrativeSynthesizer().synthesize("recommendations", self._context()))

    def test_unknown_kind(self):
        with pytest.raises(SynthesisError):
            asyncio.run(OpenAINarrativeSynthesizer().synthesize("poem", self._context()))
