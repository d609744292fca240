"""Pydantic schemas for shipping competitor analysis records and events."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AnalysisRequest(BaseModel):
    """Caller input for a single analysis run."""

    website_url: str = Field(..., min_length=1, description="Site to analyze; https:// is assumed when no scheme")
    user_id: Optional[str] = Field(default=None, description="Owner; enables the per-user timeout guard")
    session_id: Optional[str] = Field(default=None, description="Correlates the run with its progress stream")


class CompetitorCandidate(BaseModel):
    """A competitor surfaced by discovery, not yet verified reachable."""

    name: str
    website: str = Field(..., description="Bare domain, no scheme")
    products: str = ""
    confidence: Optional[str] = None


class PrimarySite(BaseModel):
    """The analyzed business. Same shape as a competitor minus ``verified``."""

    name: str
    website: str
    products_summary: str = ""
    extracted: Optional[Dict[str, Any]] = None
    threshold: Optional[int] = Field(default=None, ge=0)
    threshold_kind: str = "unknown"
    extraction_error: Optional[str] = None
    shipping_summary: str = ""


class Competitor(PrimarySite):
    """A discovered competitor, mutated stage by stage during a run."""

    verified: bool = False

    @classmethod
    def from_candidate(cls, candidate: CompetitorCandidate, *, verified: bool) -> "Competitor":
        return cls(
            name=candidate.name,
            website=candidate.website,
            products_summary=candidate.products,
            verified=verified,
        )


class AggregateMetrics(BaseModel):
    """Threshold statistics over competitors with a known threshold."""

    mean_threshold: Optional[float] = None
    median_threshold: Optional[float] = None
    threshold_count: int = 0
    free_shipping_count: int = 0
    thresholds: List[int] = Field(default_factory=list)


class AnalysisResult(BaseModel):
    """Output of a completed run. Never mutated after creation."""

    website_url: str
    session_id: Optional[str] = None
    primary_site: PrimarySite
    competitors: List[Competitor] = Field(default_factory=list)
    aggregate_metrics: AggregateMetrics
    narrative: str
    recommendations: str
    analysis_date: datetime = Field(default_factory=_utcnow)

    model_config = {"frozen": True}


class AnalysisSession(BaseModel):
    """Progress bookkeeping for one subscribed session."""

    session_id: str
    stage: str = "connected"
    progress_percent: int = Field(default=0, ge=0, le=100)
    completed_stages: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)


class ProgressEvent(BaseModel):
    """A single frame on the progress stream. Never stored."""

    type: Literal["connected", "progress", "complete"]
    stage: str = ""
    message: str = ""
    progress: int = Field(default=0, ge=0, le=100)
    completed_stages: List[str] = Field(default_factory=list)
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class AnalysisResponse(BaseModel):
    """Response body of ``POST /analyze``."""

    success: bool
    message: str
    session_id: Optional[str] = None
    result: Optional[AnalysisResult] = None


class AnalysisHistoryRecord(BaseModel):
    """Single persisted analysis — returned by the history endpoints."""

    id: str
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    website_url: str
    analysis_type: str
    status: Literal["completed", "failed"]
    competitor_count: int = 0
    primary_threshold: Optional[int] = None
    average_threshold: Optional[float] = None
    median_threshold: Optional[float] = None
    result: Optional[Dict[str, Any]] = None
    created_at: datetime

    class Config:
        from_attributes = True


class AnalysisHistoryListResponse(BaseModel):
    """Paginated history for one user."""

    history: List[AnalysisHistoryRecord] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 10
    total_pages: int = 0
