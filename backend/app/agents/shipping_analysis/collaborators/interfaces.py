"""Narrow contracts the pipeline consumes.

Concrete implementations live next to this module (OpenAI, Firecrawl,
SQLAlchemy). Tests substitute plain fakes that satisfy the same protocols.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Protocol, Sequence

from ....schemas.analysis_schema import AnalysisResult, CompetitorCandidate, Competitor

StructuredData = Dict[str, Any]
SynthesisKind = Literal["analysis", "recommendations"]


@dataclass
class BusinessProfile:
    """Discovery context: the primary site and what extraction found on it."""

    website_url: str
    data: Optional[StructuredData] = None

    def describe(self) -> str:
        data = self.data or {}

        def _join(key: str) -> str:
            value = data.get(key)
            if isinstance(value, list):
                return ", ".join(str(item) for item in value) or "N/A"
            return str(value or "N/A")

        return (
            f"Primary Business: {_join('business_name')}\n"
            f"Website: {self.website_url}\n"
            f"Description: {_join('business_description')}\n"
            f"Products: {_join('products')}\n"
            f"Product Categories: {_join('product_categories')}\n"
            f"Target Audience: {_join('target_audience')}\n"
            f"Mission: {_join('mission_statement')}"
        )


@dataclass
class SynthesisContext:
    """Everything the narrative collaborator may draw on."""

    website_url: str
    primary_data: Optional[StructuredData]
    competitors: List[Competitor] = field(default_factory=list)
    analysis: str = ""


class CompetitorDiscoverer(Protocol):
    async def discover(
        self,
        profile: BusinessProfile,
        *,
        excluding: Sequence[str],
        count: int,
    ) -> List[CompetitorCandidate]: ...


class StructuredExtractor(Protocol):
    async def extract(self, url: str) -> StructuredData:
        """Return structured shipping/business fields or raise ExtractionError."""
        ...


class ProfileEnricher(Protocol):
    async def enrich(self, url: str, partial: StructuredData, name: str) -> StructuredData:
        """Backfill missing business fields. Never raises."""
        ...


class NarrativeSynthesizer(Protocol):
    async def synthesize(self, kind: SynthesisKind, context: SynthesisContext) -> str: ...


class AnalysisPersister(Protocol):
    async def persist(self, result: AnalysisResult, user_id: Optional[str]) -> None: ...

    async def record_failure(
        self,
        website_url: str,
        *,
        session_id: Optional[str],
        user_id: Optional[str],
        error: str,
    ) -> None: ...
