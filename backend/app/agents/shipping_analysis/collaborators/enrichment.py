"""Business profile enrichment.

Backfills business fields the scrape missed using the model's background
knowledge of the brand. Extracted values always win; the enricher only fills
gaps and returns its input unchanged on any failure.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Mapping, Optional

from ....services.openai_client import call_openai_chat_async
from .interfaces import StructuredData

logger = logging.getLogger(__name__)

ENRICHABLE_FIELDS: tuple[str, ...] = (
    "mission_statement",
    "target_audience",
    "unique_selling_points",
    "price_range",
    "key_features",
    "promotional_content",
    "return_policy",
    "customer_service_details",
    "international_shipping",
)


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip() or value.strip().upper() == "N/A"
    if isinstance(value, (list, dict)):
        return not value
    return False


def merge_enrichment(partial: Mapping[str, Any], enrichment: Optional[Mapping[str, Any]]) -> StructuredData:
    """Copy of *partial* with empty enrichable fields filled from *enrichment*."""
    merged: StructuredData = dict(partial)
    if not enrichment:
        return merged
    for key in ENRICHABLE_FIELDS:
        candidate = enrichment.get(key)
        if _is_missing(merged.get(key)) and not _is_missing(candidate):
            merged[key] = candidate
    return merged


def _enrichment_prompt(name: str, url: str, partial: Mapping[str, Any]) -> str:
    return f"""Based on your knowledge of {name} ({url}) and this existing data:
{json.dumps(partial, indent=2, default=str)[:6000]}

Fill in missing information about:
- Mission statement or company values
- Target audience and customer segments
- Unique selling points and competitive advantages
- Typical price range for their products
- Key features or benefits they emphasize
- Return policy details
- Customer service approach or contact methods
- International shipping capabilities

Provide response in this JSON format:
{{
  "mission_statement": "...",
  "target_audience": "...",
  "unique_selling_points": ["..."],
  "price_range": "...",
  "key_features": ["..."],
  "return_policy": "...",
  "customer_service_details": "...",
  "international_shipping": "...",
  "promotional_content": ["..."]
}}

Only include fields where you have confident knowledge. If uncertain about any field, omit it."""


class OpenAIProfileEnricher:
    """``ProfileEnricher`` backed by a JSON-mode chat completion."""

    def __init__(self, *, max_tokens: int = 1000, temperature: float = 0.1):
        self.max_tokens = max_tokens
        self.temperature = temperature

    async def enrich(self, url: str, partial: StructuredData, name: str) -> StructuredData:
        if not partial:
            return partial
        if all(not _is_missing(partial.get(key)) for key in ENRICHABLE_FIELDS):
            return dict(partial)

        try:
            enrichment = await call_openai_chat_async(
                messages=[{"role": "user", "content": _enrichment_prompt(name, url, partial)}],
                max_completion_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except Exception as exc:
            logger.warning("Enrichment failed for %s: %s", name, exc)
            return dict(partial)

        if enrichment is None:
            print(f"⚠️ [ENRICH] No enrichment for {name}, keeping extracted data")
            return dict(partial)

        print(f"✓ [ENRICH] Enhanced business intelligence for {name}")
        return merge_enrichment(partial, enrichment)
