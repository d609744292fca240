"""SQLAlchemy-backed analysis history.

Writes run on a worker thread so the event loop never blocks on the DB.
Callers treat every failure here as log-only.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from sqlalchemy.orm import Session

from ....constants import ANALYSIS_TYPE
from ....models.analysis_history import AnalysisHistory
from ....schemas.analysis_schema import AnalysisHistoryRecord, AnalysisResult

logger = logging.getLogger(__name__)


def history_row(result: AnalysisResult, user_id: Optional[str]) -> AnalysisHistory:
    metrics = result.aggregate_metrics
    return AnalysisHistory(
        user_id=user_id,
        session_id=result.session_id,
        website_url=result.website_url,
        analysis_type=ANALYSIS_TYPE,
        status="completed",
        competitor_count=len(result.competitors),
        primary_threshold=result.primary_site.threshold,
        average_threshold=metrics.mean_threshold,
        median_threshold=metrics.median_threshold,
        result_json=result.model_dump_json(),
    )


def to_record(row: AnalysisHistory) -> AnalysisHistoryRecord:
    """Convert an AnalysisHistory ORM instance to its response model."""
    return AnalysisHistoryRecord(
        id=str(row.id),
        user_id=row.user_id,
        session_id=row.session_id,
        website_url=row.website_url,
        analysis_type=row.analysis_type,
        status=row.status or "completed",
        competitor_count=row.competitor_count or 0,
        primary_threshold=row.primary_threshold,
        average_threshold=row.average_threshold,
        median_threshold=row.median_threshold,
        result=json.loads(row.result_json) if row.result_json else None,
        created_at=row.created_at or datetime.utcnow(),
    )


def list_history(db: Session, user_id: str, *, page: int = 1, limit: int = 10) -> Tuple[List[AnalysisHistory], int]:
    """One page of a user's history, newest first, plus the total count."""
    query = db.query(AnalysisHistory).filter(AnalysisHistory.user_id == user_id)
    total = query.count()
    rows = (
        query.order_by(AnalysisHistory.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total


def get_by_session(db: Session, session_id: str) -> Optional[AnalysisHistory]:
    return (
        db.query(AnalysisHistory)
        .filter(AnalysisHistory.session_id == session_id)
        .order_by(AnalysisHistory.created_at.desc())
        .first()
    )


class SqlAlchemyAnalysisPersister:
    """``AnalysisPersister`` writing one ``AnalysisHistory`` row per run."""

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        if session_factory is None:
            from ....database import SessionLocal

            session_factory = SessionLocal
        self._session_factory = session_factory

    def _add(self, row: AnalysisHistory) -> None:
        db = self._session_factory()
        try:
            db.add(row)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    async def persist(self, result: AnalysisResult, user_id: Optional[str]) -> None:
        await asyncio.to_thread(self._add, history_row(result, user_id))
        print(f"💾 [HISTORY] Saved analysis for {result.website_url}")

    async def record_failure(
        self,
        website_url: str,
        *,
        session_id: Optional[str],
        user_id: Optional[str],
        error: str,
    ) -> None:
        row = AnalysisHistory(
            user_id=user_id,
            session_id=session_id,
            website_url=website_url,
            analysis_type=ANALYSIS_TYPE,
            status="failed",
            competitor_count=0,
            result_json=json.dumps({"error": error}),
        )
        await asyncio.to_thread(self._add, row)
        logger.info("Recorded failed analysis for %s", website_url)
