from .discovery import OpenAICompetitorDiscoverer, ParseError, ParsedCandidates, parse_candidates
from .enrichment import OpenAIProfileEnricher, merge_enrichment
from .firecrawl import FirecrawlExtractor
from .interfaces import (
    AnalysisPersister,
    BusinessProfile,
    CompetitorDiscoverer,
    NarrativeSynthesizer,
    ProfileEnricher,
    StructuredData,
    StructuredExtractor,
    SynthesisContext,
)
from .persistence import SqlAlchemyAnalysisPersister
from .synthesis import OpenAINarrativeSynthesizer

__all__ = [
    "AnalysisPersister",
    "BusinessProfile",
    "CompetitorDiscoverer",
    "FirecrawlExtractor",
    "NarrativeSynthesizer",
    "OpenAICompetitorDiscoverer",
    "OpenAINarrativeSynthesizer",
    "OpenAIProfileEnricher",
    "ParseError",
    "ParsedCandidates",
    "ProfileEnricher",
    "SqlAlchemyAnalysisPersister",
    "StructuredData",
    "StructuredExtractor",
    "SynthesisContext",
    "merge_enrichment",
    "parse_candidates",
]
