"""Exception hierarchy for the shipping analysis agent.

Only ``PrimarySiteError`` is allowed to escape a pipeline run. Everything
else is absorbed by the stage that raised it and recorded on the affected
record (``Competitor.extraction_error``) or replaced by a fallback string.
"""

from __future__ import annotations


class ShippingAnalysisError(Exception):
    """Base class for all shipping analysis failures."""


class PrimarySiteError(ShippingAnalysisError):
    """The analyzed site itself could not be reached or profiled. Fatal."""

    def __init__(self, website_url: str, reason: str):
        self.website_url = website_url
        self.reason = reason
        super().__init__(f"Unable to analyze {website_url}: {reason}")


class ExtractionError(ShippingAnalysisError):
    """Structured extraction failed for a single URL."""


class SynthesisError(ShippingAnalysisError):
    """Narrative or recommendation generation failed."""
