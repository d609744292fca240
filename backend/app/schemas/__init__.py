# Schemas package
from .analysis_schema import (
    AggregateMetrics,
    AnalysisHistoryListResponse,
    AnalysisHistoryRecord,
    AnalysisRequest,
    AnalysisResponse,
    AnalysisResult,
    AnalysisSession,
    Competitor,
    CompetitorCandidate,
    PrimarySite,
    ProgressEvent,
)

__all__ = [
    "AnalysisRequest",
    "AnalysisResponse",
    "AnalysisResult",
    "AnalysisSession",
    "AnalysisHistoryListResponse",
    "AnalysisHistoryRecord",
    "AggregateMetrics",
    "Competitor",
    "CompetitorCandidate",
    "PrimarySite",
    "ProgressEvent",
]
