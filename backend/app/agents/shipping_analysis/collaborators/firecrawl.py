"""Firecrawl structured extraction.

One ``/v1/scrape`` call per URL with an ``extract`` prompt + JSON schema,
followed by a refinement step that condenses the loose ``shipping_info``
text into a ``shipping_incentives`` list the threshold extractor can read.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from ....services.openai_client import call_openai_chat_async
from ..errors import ExtractionError
from ..http_client import Timeouts
from ..urls import normalize_url
from .interfaces import StructuredData

logger = logging.getLogger(__name__)

FIRECRAWL_SCRAPE_URL = "https://api.firecrawl.dev/v1/scrape"

ShippingRefiner = Callable[[Dict[str, Any]], Awaitable[Optional[Dict[str, Any]]]]
ClientFactory = Callable[[], Awaitable[httpx.AsyncClient]]


EXTRACT_PROMPT = """Extract comprehensive business intelligence and shipping information from this website:

**SHIPPING INFORMATION:**
- Detect any form of free or discounted shipping, even if the phrase "free shipping" is not explicitly used.
- Identify conditions under which free or reduced-cost shipping is offered (minimum order amounts, regional restrictions, promotional periods, membership tiers, product eligibility).
- Include any notes about regional shipping limits (continental U.S. only, no Alaska/Hawaii, domestic only).
- Pull any general shipping policy or FAQ that mentions delivery rules, timing, or restrictions.
- Include the exact phrases or snippets of text where shipping terms are mentioned.

**BUSINESS INTELLIGENCE:**
- Mission statement, company values, or "about us" information
- Target audience or customer segments they serve
- Unique selling points and key differentiators
- Product categories, main offerings, and key features
- Price ranges for products (if visible)
- Current promotions, sales, or special offers
- Return policy, customer service and international shipping details
- Company description and business summary

Search all parts of the website, including homepage banners, promotional sections, footers, policy pages, FAQs, about us, cart/checkout modals, and pop-ups."""

_STRING = {"type": "string"}
_STRING_LIST = {"type": "array", "items": {"type": "string"}}

EXTRACT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "shipping_info": {
            "type": "object",
            "properties": {
                "has_free_shipping": {"type": "boolean"},
                "free_shipping_conditions": _STRING,
                "shipping_thresholds": _STRING,
                "regional_shipping_notes": _STRING,
                "shipping_incentives": _STRING,
                "general_shipping_policy": _STRING,
                "raw_shipping_snippets": _STRING_LIST,
            },
            "required": ["has_free_shipping", "general_shipping_policy"],
        },
        "business_name": _STRING,
        "business_description": _STRING,
        "business_summary": _STRING,
        "mission_statement": _STRING,
        "target_audience": _STRING,
        "unique_selling_points": _STRING_LIST,
        "price_range": _STRING,
        "key_features": _STRING_LIST,
        "promotional_content": _STRING_LIST,
        "return_policy": _STRING,
        "customer_service_details": _STRING,
        "international_shipping": _STRING,
        "products": _STRING_LIST,
        "product_categories": _STRING_LIST,
    },
    "required": ["shipping_info", "business_description", "business_summary"],
}


# ===================================================================== #
#  Shipping refinement                                                    #
# ===================================================================== #

def shipping_text(shipping_info: Dict[str, Any]) -> str:
    """All free-text shipping fields joined with `` | ``."""
    parts = [
        shipping_info.get("free_shipping_conditions"),
        shipping_info.get("shipping_thresholds"),
        shipping_info.get("shipping_incentives"),
        shipping_info.get("general_shipping_policy"),
        *(shipping_info.get("raw_shipping_snippets") or []),
    ]
    return " | ".join(str(p).strip() for p in parts if p and str(p).strip())


def fallback_incentives(shipping_info: Dict[str, Any], *, has_text: bool) -> List[Dict[str, str]]:
    """Deterministic incentive used when refinement is impossible or fails.

    Only produced when the site claims free shipping at all. With supporting
    text the offer is assumed unconditional; without it the amount is unknown.
    """
    if not shipping_info.get("has_free_shipping"):
        return []
    if has_text:
        return [{
            "policy": shipping_info.get("general_shipping_policy") or "Free shipping available",
            "free_shipping_tier": shipping_info.get("free_shipping_conditions") or "Based on policy",
            "threshold_amount": "0",
            "delivery_timeframe": "Not specified",
        }]
    return [{
        "policy": "Free shipping available",
        "free_shipping_tier": "Details not specified",
        "threshold_amount": "N/A",
        "delivery_timeframe": "Not specified",
    }]


def _refinement_messages(shipping_info: Dict[str, Any]) -> List[Dict[str, str]]:
    def _field(key: str) -> str:
        return shipping_info.get(key) or "N/A"

    snippets = " | ".join(shipping_info.get("raw_shipping_snippets") or []) or "N/A"
    return [
        {
            "role": "system",
            "content": (
                "You are an expert at analyzing shipping policies. Given shipping information "
                "from a website, extract structured data for the PRIMARY shipping policy."
            ),
        },
        {
            "role": "user",
            "content": f"""Analyze this shipping information and extract the PRIMARY shipping policy:

Has Free Shipping: {shipping_info.get('has_free_shipping')}
Conditions: {_field('free_shipping_conditions')}
Thresholds: {_field('shipping_thresholds')}
Regional Notes: {_field('regional_shipping_notes')}
Incentives: {_field('shipping_incentives')}
General Policy: {_field('general_shipping_policy')}
Raw Snippets: {snippets}

Return JSON with this structure:
{{
  "shipping_incentives": [
    {{
      "policy": "exact text of primary shipping policy",
      "free_shipping_tier": "when free shipping applies",
      "threshold_amount": "dollar amount or '0' for completely free or 'N/A' for calculated",
      "delivery_timeframe": "delivery time if mentioned"
    }}
  ]
}}

Focus on the most prominent shipping offer.""",
        },
    ]


async def openai_shipping_refiner(shipping_info: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    return await call_openai_chat_async(
        messages=_refinement_messages(shipping_info),
        max_completion_tokens=800,
        temperature=0.0,
    )


async def refine_shipping(data: StructuredData, refiner: ShippingRefiner) -> StructuredData:
    """Attach ``shipping_incentives`` to *data* in place and return it."""
    shipping_info = data.get("shipping_info")
    if not isinstance(shipping_info, dict):
        print("⚠️ [FIRECRAWL] No shipping_info in extraction")
        return data

    text = shipping_text(shipping_info)
    if not text:
        incentives = fallback_incentives(shipping_info, has_text=False)
        if incentives:
            data["shipping_incentives"] = incentives
        return data

    try:
        refined = await refiner(shipping_info)
    except Exception as exc:
        logger.warning("Shipping refinement failed: %s", exc)
        refined = None

    incentives = (refined or {}).get("shipping_incentives")
    if isinstance(incentives, list) and incentives:
        data["shipping_incentives"] = [item for item in incentives if isinstance(item, dict)]
    else:
        fallback = fallback_incentives(shipping_info, has_text=True)
        if fallback:
            data["shipping_incentives"] = fallback
    return data


# ===================================================================== #
#  Extractor                                                              #
# ===================================================================== #

def get_firecrawl_key() -> str:
    key = os.getenv("FIRECRAWL_API_KEY", "").strip()
    if not key:
        print("⚠️  [FIRECRAWL] API key missing (FIRECRAWL_API_KEY)")
        raise ExtractionError("Firecrawl API key not available")
    return key


class FirecrawlExtractor:
    """``StructuredExtractor`` backed by Firecrawl's scrape+extract endpoint.

    Pass ``client`` for a fixed client, or ``client_factory`` to borrow the
    process-wide pooled client per call. With neither, each call opens and
    closes its own client.
    """

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        client_factory: Optional[ClientFactory] = None,
        refiner: Optional[ShippingRefiner] = openai_shipping_refiner,
        timeout: float = Timeouts.FIRECRAWL,
        wait_for_ms: int = 3000,
    ):
        self._api_key = api_key
        self._client = client
        self._client_factory = client_factory
        self._refiner = refiner
        self.timeout = timeout
        self.wait_for_ms = wait_for_ms

    def _payload(self, url: str) -> Dict[str, Any]:
        return {
            "url": url,
            "formats": ["extract"],
            "waitFor": self.wait_for_ms,
            "onlyMainContent": False,
            "extract": {"prompt": EXTRACT_PROMPT, "schema": EXTRACT_SCHEMA},
        }

    async def _post(self, client: httpx.AsyncClient, url: str) -> httpx.Response:
        api_key = self._api_key or get_firecrawl_key()
        return await client.post(
            FIRECRAWL_SCRAPE_URL,
            headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
            json=self._payload(url),
            timeout=self.timeout,
        )

    async def extract(self, url: str) -> StructuredData:
        url = normalize_url(url)
        print(f"🔥 [FIRECRAWL] Extracting {url}")

        try:
            client = self._client
            if client is None and self._client_factory is not None:
                client = await self._client_factory()
            if client is not None:
                response = await self._post(client, url)
            else:
                async with httpx.AsyncClient() as client:
                    response = await self._post(client, url)
        except httpx.TimeoutException as exc:
            raise ExtractionError(f"Firecrawl timeout for {url}") from exc
        except httpx.HTTPError as exc:
            raise ExtractionError(f"Firecrawl request failed: {exc}") from exc

        if response.status_code != 200:
            raise ExtractionError(f"Firecrawl HTTP {response.status_code}: {response.text[:200]}")

        try:
            body = response.json()
        except ValueError as exc:
            raise ExtractionError("Firecrawl returned invalid JSON") from exc

        if not body.get("success"):
            raise ExtractionError(f"Firecrawl failed: {body.get('error') or 'unknown error'}")

        data = (body.get("data") or {}).get("extract")
        if not isinstance(data, dict) or not data:
            raise ExtractionError("No structured data returned")

        if self._refiner is not None:
            data = await refine_shipping(data, self._refiner)
        return data
