"""Shipping competitor analysis agent.

``build_default_pipeline()`` wires the production collaborators (OpenAI,
Firecrawl, SQLAlchemy) into a ``ShippingAnalysisPipeline``.
"""

from typing import Optional

from .collaborators import (
    FirecrawlExtractor,
    OpenAICompetitorDiscoverer,
    OpenAINarrativeSynthesizer,
    OpenAIProfileEnricher,
    SqlAlchemyAnalysisPersister,
)
from .config import PipelineSettings
from .errors import PrimarySiteError, ShippingAnalysisError
from .http_client import get_client
from .pipeline import ShippingAnalysisPipeline
from .progress import ProgressChannel, QueueSink
from .timeout_guard import AnalysisTimeoutGuard


def build_default_pipeline(
    *,
    settings: Optional[PipelineSettings] = None,
    channel: Optional[ProgressChannel] = None,
) -> ShippingAnalysisPipeline:
    settings = settings or PipelineSettings.from_env()
    return ShippingAnalysisPipeline(
        discoverer=OpenAICompetitorDiscoverer(),
        extractor=FirecrawlExtractor(client_factory=get_client),
        enricher=OpenAIProfileEnricher(),
        synthesizer=OpenAINarrativeSynthesizer(),
        persister=SqlAlchemyAnalysisPersister(),
        channel=channel or ProgressChannel(),
        guard=AnalysisTimeoutGuard(settings.analysis_timeout),
        settings=settings,
    )


__all__ = [
    "AnalysisTimeoutGuard",
    "PipelineSettings",
    "PrimarySiteError",
    "ProgressChannel",
    "QueueSink",
    "ShippingAnalysisError",
    "ShippingAnalysisPipeline",
    "build_default_pipeline",
]
