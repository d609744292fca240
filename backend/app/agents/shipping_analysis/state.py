from typing import Any, Optional, TypedDict

from ...schemas.analysis_schema import (
    AggregateMetrics,
    AnalysisResult,
    Competitor,
    CompetitorCandidate,
    PrimarySite,
)


class ShippingAnalysisState(TypedDict, total=False):
    # Request
    website_url: str  # normalized, scheme included
    user_id: Optional[str]
    session_id: Optional[str]

    # Discovery (populated by discovery node)
    primary_site: PrimarySite
    primary_data: Optional[dict[str, Any]]
    candidates: list[CompetitorCandidate]
    seen_domains: list[str]  # primary + every candidate ever offered

    # Verification -> extraction -> intelligence (same list, refined per stage)
    competitors: list[Competitor]
    aggregate_metrics: AggregateMetrics

    # Synthesis
    narrative: str
    recommendations: str

    # Final Output (populated by complete node)
    result: AnalysisResult

    # Metadata
    processing_errors: list[str]
