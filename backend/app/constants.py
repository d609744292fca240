"""Centralized constants shared across the shipping analysis agent and routes.

This module is the SINGLE SOURCE OF TRUTH for pipeline stage identifiers,
progress schedule, and the fixed strings shown when a collaborator fails.
Mirrored in the frontend progress tracker (stage ids + labels).
"""

from __future__ import annotations

# ── Pipeline stages ─────────────────────────────────────────────────────
# Ordered. `completed_stages` on progress events is always a prefix of this.

STAGE_DISCOVERY = "discovery"
STAGE_VERIFICATION = "verification"
STAGE_EXTRACTION = "extraction"
STAGE_INTELLIGENCE = "intelligence"
STAGE_SYNTHESIS = "synthesis"
STAGE_COMPLETE = "complete"
STAGE_FAILED = "failed"

PIPELINE_STAGES: list[str] = [
    STAGE_DISCOVERY,
    STAGE_VERIFICATION,
    STAGE_EXTRACTION,
    STAGE_INTELLIGENCE,
    STAGE_SYNTHESIS,
]

# Human labels shown by the progress tracker.
STAGE_LABELS: dict[str, str] = {
    STAGE_DISCOVERY: "Discovering Competitors",
    STAGE_VERIFICATION: "Verifying URLs",
    STAGE_EXTRACTION: "Extracting Shipping Data",
    STAGE_INTELLIGENCE: "Business Intelligence Analysis",
    STAGE_SYNTHESIS: "Synthesizing Report",
    STAGE_COMPLETE: "Analysis Complete",
    STAGE_FAILED: "Analysis Failed",
}

# ── Progress schedule (percent) ─────────────────────────────────────────
# Extraction interpolates between START and END per analyzed competitor.

PROGRESS_DISCOVERY = 5
PROGRESS_VERIFICATION = 15
PROGRESS_EXTRACTION_START = 25
PROGRESS_EXTRACTION_END = 70
PROGRESS_INTELLIGENCE = 75
PROGRESS_SYNTHESIS = 85
PROGRESS_COMPLETE = 100

# ── Competitor quota ────────────────────────────────────────────────────
DEFAULT_COMPETITOR_QUOTA: int = 10
DEFAULT_DISCOVERY_BUFFER: int = 5  # 15 requested to fill 10

# ── Shipping thresholds ─────────────────────────────────────────────────
# Extracted dollar amounts above this are treated as extraction noise.
THRESHOLD_SANITY_CEILING: int = 500

# ── Fallback text ───────────────────────────────────────────────────────
ANALYSIS_UNAVAILABLE = (
    "Business analysis is temporarily unavailable. "
    "Shipping threshold comparisons below are unaffected."
)
RECOMMENDATIONS_UNAVAILABLE = (
    "Strategic recommendations are temporarily unavailable. "
    "Please re-run the analysis later."
)
NO_SHIPPING_DATA = "No shipping data found"

ANALYSIS_TYPE = "shipping-competitor-analysis"

# Browser UA for reachability probes; many storefronts reject bare clients.
PROBE_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)
