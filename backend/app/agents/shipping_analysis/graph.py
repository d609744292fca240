from __future__ import annotations

from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict

from langgraph.graph import END, START, StateGraph

from ...constants import (
    STAGE_COMPLETE,
    STAGE_DISCOVERY,
    STAGE_EXTRACTION,
    STAGE_INTELLIGENCE,
    STAGE_SYNTHESIS,
    STAGE_VERIFICATION,
)
from .state import ShippingAnalysisState
from .timing import async_timer, log_timing

if TYPE_CHECKING:
    from .pipeline import ShippingAnalysisPipeline


Node = Callable[[ShippingAnalysisState], Awaitable[Dict[str, Any]]]


def _timed(stage: str, node: Node) -> Node:
    async def run(state: ShippingAnalysisState) -> Dict[str, Any]:
        async with async_timer(stage, "NODE"):
            return await node(state)
    return run


def create_shipping_analysis_graph(pipeline: "ShippingAnalysisPipeline") -> StateGraph:
    """
    Create the shipping analysis pipeline graph.

    Structure:
    START -> discovery -> verification -> extraction
          -> intelligence -> synthesis -> complete -> END

    Strictly sequential: every stage depends on the one before it, and the
    extraction stage rate-limits itself against the scraping service.
    Node names double as the stage ids reported in ``completed_stages``.
    """
    log_timing("graph", "Creating shipping analysis graph")

    graph = StateGraph(ShippingAnalysisState)

    graph.add_node(STAGE_DISCOVERY, _timed(STAGE_DISCOVERY, pipeline.discovery_node))
    graph.add_node(STAGE_VERIFICATION, _timed(STAGE_VERIFICATION, pipeline.verification_node))
    graph.add_node(STAGE_EXTRACTION, _timed(STAGE_EXTRACTION, pipeline.extraction_node))
    graph.add_node(STAGE_INTELLIGENCE, _timed(STAGE_INTELLIGENCE, pipeline.intelligence_node))
    graph.add_node(STAGE_SYNTHESIS, _timed(STAGE_SYNTHESIS, pipeline.synthesis_node))
    graph.add_node(STAGE_COMPLETE, _timed(STAGE_COMPLETE, pipeline.complete_node))

    graph.add_edge(START, STAGE_DISCOVERY)
    graph.add_edge(STAGE_DISCOVERY, STAGE_VERIFICATION)
    graph.add_edge(STAGE_VERIFICATION, STAGE_EXTRACTION)
    graph.add_edge(STAGE_EXTRACTION, STAGE_INTELLIGENCE)
    graph.add_edge(STAGE_INTELLIGENCE, STAGE_SYNTHESIS)
    graph.add_edge(STAGE_SYNTHESIS, STAGE_COMPLETE)
    graph.add_edge(STAGE_COMPLETE, END)

    return graph
