"""LLM-backed competitor discovery.

The model's reply is untrusted text. ``parse_candidates`` is the only place
that coerces it into ``CompetitorCandidate`` records; anything it cannot make
sense of becomes a ``ParseError`` and the caller falls back to an empty list.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from ....schemas.analysis_schema import CompetitorCandidate
from ....services.openai_client import call_openai_chat_async
from ..timing import log_timing
from ..urls import bare_domain
from .interfaces import BusinessProfile

logger = logging.getLogger(__name__)


@dataclass
class ParsedCandidates:
    candidates: List[CompetitorCandidate]
    dropped: int = 0


@dataclass
class ParseError:
    reason: str
    raw: Any = field(default=None, repr=False)


ParseResult = Union[ParsedCandidates, ParseError]


def parse_candidates(raw: Any, *, excluding: Sequence[str] = ()) -> ParseResult:
    """Coerce a discovery reply into candidates.

    Accepts ``{"competitors": [...]}`` or a bare list. Entries without a
    usable website, duplicates (by bare domain) and excluded domains are
    dropped; websites are reduced to their bare domain.
    """
    if isinstance(raw, dict):
        entries = raw.get("competitors")
    else:
        entries = raw

    if not isinstance(entries, list):
        return ParseError(reason="response has no 'competitors' list", raw=raw)

    seen = {bare_domain(domain) for domain in excluding if domain}
    candidates: List[CompetitorCandidate] = []
    dropped = 0

    for entry in entries:
        if not isinstance(entry, dict):
            dropped += 1
            continue

        domain = bare_domain(str(entry.get("website") or ""))
        name = str(entry.get("name") or "").strip()
        if not domain or "." not in domain or domain in seen:
            dropped += 1
            continue

        seen.add(domain)
        confidence = entry.get("confidence")
        candidates.append(
            CompetitorCandidate(
                name=name or domain,
                website=domain,
                products=str(entry.get("products") or "").strip(),
                confidence=str(confidence).strip() if confidence else None,
            )
        )

    return ParsedCandidates(candidates=candidates, dropped=dropped)


def _discovery_prompt(profile: BusinessProfile, count: int, excluding: Sequence[str]) -> str:
    avoid = ""
    if excluding:
        avoid = (
            "\nDo NOT suggest any of these domains (already considered or unreachable): "
            f"{', '.join(excluding)}\n"
        )

    return f"""Based on this detailed business information:
{profile.describe()}

Identify exactly {count} direct competitors in the same industry/market. Focus on businesses that:
1. Sell similar products or services to the primary business
2. Target similar customer segments and demographics
3. Operate in similar market segments or price ranges
4. Are legitimate, established businesses with active websites
5. Are direct competitors, not suppliers or complementary businesses
{avoid}
IMPORTANT for website URLs:
- Provide the most accurate, complete domain name you know
- Double-check brand names vs domain names (many brands have different domains)
- Be specific about full domain names, not generic terms

Provide response in this exact JSON format:
{{
  "competitors": [
    {{
      "name": "Exact Company Name",
      "website": "exactdomain.com",
      "products": "Specific description of their main products that compete with the primary business",
      "confidence": "high|medium|low - your confidence in the domain accuracy"
    }}
  ]
}}

Include only the domain (no https://, no www) for website field."""


class OpenAICompetitorDiscoverer:
    """``CompetitorDiscoverer`` backed by a JSON-mode chat completion."""

    def __init__(self, *, temperature: float = 0.1, max_tokens: int = 2000, model: Optional[str] = None):
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.model = model

    async def discover(
        self,
        profile: BusinessProfile,
        *,
        excluding: Sequence[str],
        count: int,
    ) -> List[CompetitorCandidate]:
        if count <= 0:
            return []

        messages: List[Dict[str, str]] = [
            {"role": "user", "content": _discovery_prompt(profile, count, excluding)},
        ]
        try:
            raw = await call_openai_chat_async(
                messages=messages,
                max_completion_tokens=self.max_tokens,
                temperature=self.temperature,
                model=self.model,
            )
        except EnvironmentError as exc:
            print(f"❌ [DISCOVERY] {exc}")
            return []

        if raw is None:
            print("❌ [DISCOVERY] No response from discovery model")
            return []

        parsed = parse_candidates(raw, excluding=excluding)
        if isinstance(parsed, ParseError):
            logger.warning("Discovery reply rejected: %s", parsed.reason)
            return []

        log_timing("discovery", f"{len(parsed.candidates)} candidates ({parsed.dropped} dropped)")
        return parsed.candidates
