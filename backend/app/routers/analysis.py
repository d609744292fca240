"""
Shipping Analysis Router

Endpoints:
  POST /analyze                                — Run a shipping competitor analysis
  GET  /analysis-progress?session_id=          — Server-sent progress stream
  GET  /analysis-history?user_id=              — Paginated history for a user
  GET  /analysis-history/session/{session_id}  — Latest stored result for a session
  GET  /analysis-history/active                — Users with an analysis in flight
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
import time
from typing import Optional, Set

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.orm import Session

from ..agents.shipping_analysis import ShippingAnalysisPipeline, build_default_pipeline
from ..agents.shipping_analysis.collaborators.persistence import get_by_session, list_history, to_record
from ..agents.shipping_analysis.errors import PrimarySiteError
from ..agents.shipping_analysis.progress import QueueSink
from ..database import get_db
from ..schemas.analysis_schema import (
    AnalysisHistoryListResponse,
    AnalysisHistoryRecord,
    AnalysisRequest,
    AnalysisResponse,
    AnalysisResult,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    tags=["Shipping Analysis"],
    responses={
        500: {"description": "Internal server error during analysis"}
    }
)

# Runs outlive the request that started them when the caller deadline passes.
_running: Set["asyncio.Task[AnalysisResult]"] = set()

_pipeline: Optional[ShippingAnalysisPipeline] = None


def get_pipeline() -> ShippingAnalysisPipeline:
    """Process-wide pipeline. Overridden in tests."""
    global _pipeline
    if _pipeline is None:
        _pipeline = build_default_pipeline()
    return _pipeline


# ── Helpers ──────────────────────────────────────────────────────────────

def _friendly_error(exc: Exception) -> tuple[str, str]:
    """Map a failure to (error, details) safe to show an end user."""
    details = str(exc) or type(exc).__name__
    lowered = details.lower()

    if "timeout" in lowered or "timed out" in lowered:
        return "Website analysis timed out", "The site took too long to respond. Please try again."
    if "firecrawl" in lowered or "structured data" in lowered:
        return (
            "Website analysis error",
            "Unable to analyze website content. The site may be blocking automated access.",
        )
    if "network" in lowered or "connect" in lowered:
        return (
            "Network connection error",
            "Unable to connect to analysis services. Please check your connection and try again.",
        )
    if "json" in lowered or "unexpected token" in lowered:
        return "Data parsing error - please try again", "The analysis service returned invalid data. This may be temporary."
    return "Shipping competitor analysis failed", details


def _sse(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


# ── Analysis ─────────────────────────────────────────────────────────────

@router.post(
    "/analyze",
    response_model=AnalysisResponse,
    status_code=status.HTTP_200_OK,
    summary="Analyze Shipping Competitors",
    response_description="Competitor shipping thresholds, metrics, analysis and recommendations",
)
async def analyze(
    request: AnalysisRequest,
    pipeline: ShippingAnalysisPipeline = Depends(get_pipeline),
):
    """
    Run the full analysis pipeline for ``website_url``.

    If the run exceeds the request deadline the HTTP wait is abandoned with a
    202; the run keeps going and its result lands in the history store.
    """
    start_time = time.perf_counter()
    print(f"[TIMING] analyze_endpoint: START — {request.website_url}")

    if not request.website_url.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Website URL is required")

    task = asyncio.create_task(
        pipeline.start_analysis(
            request.website_url,
            user_id=request.user_id,
            session_id=request.session_id,
        )
    )
    _running.add(task)
    task.add_done_callback(_running.discard)

    try:
        result = await asyncio.wait_for(asyncio.shield(task), timeout=pipeline.settings.request_deadline)

    except asyncio.TimeoutError:
        print(f"[TIMING] analyze_endpoint: DEADLINE after {(time.perf_counter() - start_time) * 1000:.0f}ms")
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content=AnalysisResponse(
                success=True,
                message="Analysis is still running. Results will be available in your analysis history.",
                session_id=request.session_id,
            ).model_dump(mode="json"),
        )

    except PrimarySiteError as exc:
        error, details = _friendly_error(exc)
        print(f"[TIMING] analyze_endpoint: ERROR — {str(exc)[:100]}")
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"success": False, "error": error, "details": details},
        )

    except Exception as exc:
        logger.exception("Analysis failed for %s", request.website_url)
        error, details = _friendly_error(exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "error": error, "details": details},
        )

    total_duration = (time.perf_counter() - start_time) * 1000
    print(f"[TIMING] analyze_endpoint: END — duration={total_duration:.0f}ms")

    return AnalysisResponse(
        success=True,
        message=f"Analysis complete with {len(result.competitors)} competitors",
        session_id=request.session_id,
        result=result,
    )


@router.get(
    "/analysis-progress",
    summary="Analysis Progress Stream",
    response_description="text/event-stream of progress events",
)
async def analysis_progress(
    session_id: Optional[str] = Query(default=None),
    pipeline: ShippingAnalysisPipeline = Depends(get_pipeline),
):
    """Subscribe to a session's progress. The stream ends on ``complete``."""
    if not session_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Session ID required")

    channel = pipeline.channel
    sink = channel.open(session_id, QueueSink())

    async def _events():
        try:
            async for event in sink.stream():
                yield _sse(event.model_dump(mode="json", exclude_none=True))
        finally:
            channel.disconnect(session_id, sink)

    return StreamingResponse(
        _events(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )


# ── History ──────────────────────────────────────────────────────────────

@router.get(
    "/analysis-history",
    response_model=AnalysisHistoryListResponse,
    summary="Analysis History",
)
async def analysis_history(
    user_id: Optional[str] = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
):
    if not user_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User ID is required")

    rows, total = list_history(db, user_id, page=page, limit=limit)
    return AnalysisHistoryListResponse(
        history=[to_record(row) for row in rows],
        total=total,
        page=page,
        limit=limit,
        total_pages=math.ceil(total / limit) if total else 0,
    )


@router.get(
    "/analysis-history/active",
    summary="Active Analyses",
)
async def active_analyses(pipeline: ShippingAnalysisPipeline = Depends(get_pipeline)):
    """Users whose analysis timeout guard is still armed."""
    return {
        "count": pipeline.guard.active_count(),
        "user_ids": pipeline.guard.active_keys(),
        "sessions": pipeline.channel.active_sessions(),
    }


@router.get(
    "/analysis-history/session/{session_id}",
    response_model=AnalysisHistoryRecord,
    summary="Analysis by Session",
)
async def analysis_for_session(session_id: str, db: Session = Depends(get_db)):
    """Lets a caller that hit the request deadline collect the result later."""
    row = get_by_session(db, session_id)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Analysis not found")
    return to_record(row)
