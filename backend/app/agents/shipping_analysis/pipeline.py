"""Pipeline Orchestrator.

Drives one analysis run through
``discovery -> verification -> extraction -> intelligence -> synthesis -> complete``
as a compiled LangGraph, publishing progress after every transition.

Failure policy
--------------
- Primary site cannot be extracted  -> ``PrimarySiteError`` (fatal, run aborts)
- Competitor unreachable            -> dropped during verification
- Competitor extraction fails       -> kept with ``extraction_error`` set
- Synthesis fails                   -> fixed fallback text
- Persistence fails                 -> logged only
- Progress subscriber gone          -> channel teardown, invisible here
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from ...constants import (
    ANALYSIS_UNAVAILABLE,
    NO_SHIPPING_DATA,
    PIPELINE_STAGES,
    PROGRESS_COMPLETE,
    PROGRESS_DISCOVERY,
    PROGRESS_EXTRACTION_END,
    PROGRESS_EXTRACTION_START,
    PROGRESS_INTELLIGENCE,
    PROGRESS_SYNTHESIS,
    PROGRESS_VERIFICATION,
    RECOMMENDATIONS_UNAVAILABLE,
    STAGE_COMPLETE,
    STAGE_DISCOVERY,
    STAGE_EXTRACTION,
    STAGE_INTELLIGENCE,
    STAGE_LABELS,
    STAGE_SYNTHESIS,
    STAGE_VERIFICATION,
)
from ...schemas.analysis_schema import (
    AnalysisResult,
    Competitor,
    CompetitorCandidate,
    PrimarySite,
    ProgressEvent,
)
from .collaborators.interfaces import (
    AnalysisPersister,
    BusinessProfile,
    CompetitorDiscoverer,
    NarrativeSynthesizer,
    ProfileEnricher,
    StructuredExtractor,
    SynthesisContext,
    SynthesisKind,
)
from .config import PipelineSettings
from .errors import PrimarySiteError
from .extraction import BatchPolicy, extract_all
from .graph import create_shipping_analysis_graph
from .http_client import get_client
from .progress import ProgressChannel
from .state import ShippingAnalysisState
from .thresholds import KIND_UNKNOWN, classify_threshold, compute_aggregate_metrics, summarize_shipping
from .timeout_guard import AnalysisTimeoutGuard
from .timing import StepTimer, log_timing
from .urls import bare_domain, normalize_url
from .verifier import verify_url_accessible

logger = logging.getLogger(__name__)

Verify = Callable[[str], Awaitable[bool]]
Sleep = Callable[[float], Awaitable[Any]]


def _completed_before(stage: str) -> List[str]:
    return PIPELINE_STAGES[: PIPELINE_STAGES.index(stage)]


def _products_summary(data: Optional[Dict[str, Any]]) -> str:
    products = (data or {}).get("products")
    if isinstance(products, list):
        return ", ".join(str(p) for p in products)
    return str(products or "")


def apply_threshold(site: PrimarySite, *, ceiling: int) -> PrimarySite:
    """Copy of *site* with threshold, kind and summary derived from ``extracted``."""
    if not site.extracted:
        return site.model_copy(update={
            "threshold": None,
            "threshold_kind": KIND_UNKNOWN,
            "shipping_summary": NO_SHIPPING_DATA,
        })
    classified = classify_threshold(site.extracted, ceiling=ceiling)
    return site.model_copy(update={
        "threshold": classified.amount,
        "threshold_kind": classified.kind,
        "shipping_summary": summarize_shipping(site.extracted),
    })


class ShippingAnalysisPipeline:
    """One instance per process; ``start_analysis`` is safe to run concurrently.

    Collaborators are injected so tests can run the full state machine with
    in-memory fakes.
    """

    def __init__(
        self,
        *,
        discoverer: CompetitorDiscoverer,
        extractor: StructuredExtractor,
        enricher: ProfileEnricher,
        synthesizer: NarrativeSynthesizer,
        persister: Optional[AnalysisPersister] = None,
        channel: Optional[ProgressChannel] = None,
        guard: Optional[AnalysisTimeoutGuard] = None,
        settings: Optional[PipelineSettings] = None,
        verify: Optional[Verify] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.settings = settings or PipelineSettings()
        self.discoverer = discoverer
        self.extractor = extractor
        self.enricher = enricher
        self.synthesizer = synthesizer
        self.persister = persister
        self.channel = channel or ProgressChannel()
        self.guard = guard or AnalysisTimeoutGuard(self.settings.analysis_timeout)
        self._verify = verify or self._default_verify
        self._sleep = sleep
        self.graph = create_shipping_analysis_graph(self).compile()

    async def _default_verify(self, domain: str) -> bool:
        client = await get_client()
        return await verify_url_accessible(domain, client=client, timeout=self.settings.verify_timeout)

    # ------------------------------------------------------------------ #
    #  Progress                                                           #
    # ------------------------------------------------------------------ #

    def _publish(
        self,
        state: ShippingAnalysisState,
        stage: str,
        progress: int,
        message: str,
        completed: Sequence[str],
    ) -> None:
        self.channel.publish(
            state.get("session_id"),
            ProgressEvent(
                type="progress",
                stage=STAGE_LABELS[stage],
                message=message,
                progress=progress,
                completed_stages=list(completed),
            ),
        )

    # ------------------------------------------------------------------ #
    #  Collaborator wrappers                                              #
    # ------------------------------------------------------------------ #

    async def _discover(
        self,
        profile: BusinessProfile,
        *,
        excluding: Sequence[str],
        count: int,
    ) -> List[CompetitorCandidate]:
        try:
            candidates = await self.discoverer.discover(profile, excluding=list(excluding), count=count)
        except Exception as exc:
            print(f"❌ [PIPELINE] Competitor discovery failed: {exc}")
            return []
        excluded = {bare_domain(domain) for domain in excluding}
        return [c for c in candidates if bare_domain(c.website) not in excluded]

    async def _is_reachable(self, domain: str) -> bool:
        try:
            return await self._verify(domain)
        except Exception as exc:
            logger.debug("Verifier raised for %s: %s", domain, exc)
            return False

    async def _synthesize(self, kind: SynthesisKind, context: SynthesisContext, fallback: str) -> str:
        try:
            text = await self.synthesizer.synthesize(kind, context)
        except Exception as exc:
            print(f"⚠️ [PIPELINE] {kind} synthesis failed, using fallback: {exc}")
            return fallback
        return text or fallback

    # ------------------------------------------------------------------ #
    #  Nodes                                                              #
    # ------------------------------------------------------------------ #

    async def discovery_node(self, state: ShippingAnalysisState) -> Dict[str, Any]:
        """Profile the primary site, then ask for ``quota + buffer`` candidates."""
        website_url = state["website_url"]
        self._publish(
            state, STAGE_DISCOVERY, PROGRESS_DISCOVERY,
            "Analyzing your website and discovering competitors...",
            _completed_before(STAGE_DISCOVERY),
        )

        try:
            raw = await self.extractor.extract(website_url)
        except Exception as exc:
            raise PrimarySiteError(website_url, str(exc) or type(exc).__name__) from exc
        if not raw:
            raise PrimarySiteError(website_url, "No structured data returned")

        name = str(raw.get("business_name") or "").strip()
        try:
            primary_data = await self.enricher.enrich(website_url, raw, name or "Primary Business")
        except Exception as exc:
            logger.warning("Primary enrichment failed: %s", exc)
            primary_data = raw
        primary_data = primary_data or raw

        domain = bare_domain(website_url)
        primary_site = PrimarySite(
            name=name or domain,
            website=domain,
            products_summary=_products_summary(primary_data),
            extracted=primary_data,
        )

        profile = BusinessProfile(website_url=website_url, data=primary_data)
        candidates = await self._discover(
            profile,
            excluding=[domain],
            count=self.settings.discovery_count,
        )
        print(f"📋 [PIPELINE] Discovery suggested {len(candidates)} competitors")

        return {
            "primary_site": primary_site,
            "primary_data": primary_data,
            "candidates": candidates,
            "seen_domains": [domain] + [bare_domain(c.website) for c in candidates],
        }

    async def verification_node(self, state: ShippingAnalysisState) -> Dict[str, Any]:
        """Keep the first ``quota`` reachable candidates, backfilling once if short."""
        quota = self.settings.competitor_quota
        self._publish(
            state, STAGE_VERIFICATION, PROGRESS_VERIFICATION,
            "Verifying competitor websites are reachable...",
            _completed_before(STAGE_VERIFICATION),
        )

        verified: List[Competitor] = []
        failed: List[str] = []

        async def _verify_pool(pool: Sequence[CompetitorCandidate]) -> None:
            for candidate in pool:
                if len(verified) >= quota:
                    return
                if await self._is_reachable(candidate.website):
                    verified.append(Competitor.from_candidate(candidate, verified=True))
                    print(f"✅ [PIPELINE] {candidate.name} verified ({len(verified)}/{quota})")
                else:
                    failed.append(candidate.website)

        await _verify_pool(state.get("candidates", []))

        seen = list(state.get("seen_domains", []))
        if len(verified) < quota:
            print(f"⚠️ [PIPELINE] Only {len(verified)}/{quota} verified, requesting more candidates...")
            supplement = await self._discover(
                BusinessProfile(website_url=state["website_url"], data=state.get("primary_data")),
                excluding=seen,
                count=quota,
            )
            seen.extend(bare_domain(c.website) for c in supplement)
            await _verify_pool(supplement)

        if len(verified) < quota:
            logger.info("Proceeding with %d/%d competitors", len(verified), quota)

        errors = list(state.get("processing_errors", []))
        if failed:
            errors.append(f"Verification: {len(failed)} unreachable ({', '.join(failed)})")

        return {"competitors": verified, "seen_domains": seen, "processing_errors": errors}

    async def extraction_node(self, state: ShippingAnalysisState) -> Dict[str, Any]:
        competitors = state.get("competitors", [])
        completed = _completed_before(STAGE_EXTRACTION)
        span = PROGRESS_EXTRACTION_END - PROGRESS_EXTRACTION_START

        self._publish(
            state, STAGE_EXTRACTION, PROGRESS_EXTRACTION_START,
            f"Extracting shipping data from {len(competitors)} competitors...",
            completed,
        )

        def _on_item_done(done: int, total: int, competitor: Competitor) -> None:
            status = "analyzed" if competitor.extraction_error is None else "skipped"
            self._publish(
                state, STAGE_EXTRACTION,
                PROGRESS_EXTRACTION_START + int(done / total * span),
                f"{competitor.name} {status} ({done}/{total})",
                completed,
            )

        settings = self.settings
        analyzed = await extract_all(
            competitors,
            extractor=self.extractor,
            enricher=self.enricher,
            policy=BatchPolicy(
                batch_size=settings.batch_size,
                inter_batch_delay=settings.inter_batch_delay,
                per_item_delay=settings.per_item_delay,
            ),
            on_item_done=_on_item_done,
            sleep=self._sleep,
        )

        errors = list(state.get("processing_errors", []))
        errors.extend(
            f"Extraction: {c.website}: {c.extraction_error}" for c in analyzed if c.extraction_error
        )
        return {"competitors": analyzed, "processing_errors": errors}

    async def intelligence_node(self, state: ShippingAnalysisState) -> Dict[str, Any]:
        """Normalize thresholds and compute aggregate metrics. No I/O."""
        self._publish(
            state, STAGE_INTELLIGENCE, PROGRESS_INTELLIGENCE,
            "Comparing shipping thresholds across competitors...",
            _completed_before(STAGE_INTELLIGENCE),
        )
        ceiling = self.settings.threshold_ceiling
        competitors = [apply_threshold(c, ceiling=ceiling) for c in state.get("competitors", [])]
        primary_site = apply_threshold(state["primary_site"], ceiling=ceiling)
        metrics = compute_aggregate_metrics(c.threshold for c in competitors)

        log_timing(
            "intelligence",
            f"{metrics.threshold_count}/{len(competitors)} thresholds, "
            f"mean={metrics.mean_threshold} median={metrics.median_threshold}",
        )
        return {"competitors": competitors, "primary_site": primary_site, "aggregate_metrics": metrics}

    async def synthesis_node(self, state: ShippingAnalysisState) -> Dict[str, Any]:
        self._publish(
            state, STAGE_SYNTHESIS, PROGRESS_SYNTHESIS,
            "Generating competitive analysis and recommendations...",
            _completed_before(STAGE_SYNTHESIS),
        )
        context = SynthesisContext(
            website_url=state["website_url"],
            primary_data=state.get("primary_data"),
            competitors=list(state.get("competitors", [])),
        )
        narrative = await self._synthesize("analysis", context, ANALYSIS_UNAVAILABLE)
        context.analysis = narrative
        recommendations = await self._synthesize("recommendations", context, RECOMMENDATIONS_UNAVAILABLE)
        return {"narrative": narrative, "recommendations": recommendations}

    async def complete_node(self, state: ShippingAnalysisState) -> Dict[str, Any]:
        session_id = state.get("session_id")
        result = AnalysisResult(
            website_url=state["website_url"],
            session_id=session_id,
            primary_site=state["primary_site"],
            competitors=list(state.get("competitors", [])),
            aggregate_metrics=state["aggregate_metrics"],
            narrative=state.get("narrative") or ANALYSIS_UNAVAILABLE,
            recommendations=state.get("recommendations") or RECOMMENDATIONS_UNAVAILABLE,
        )

        if self.persister is not None:
            try:
                await self.persister.persist(result, state.get("user_id"))
            except Exception:
                logger.exception("Failed to persist analysis for %s", result.website_url)

        self._publish(
            state, STAGE_COMPLETE, PROGRESS_COMPLETE,
            "Analysis complete! Your competitive report is ready.",
            PIPELINE_STAGES,
        )
        self.channel.close(session_id, result.model_dump(mode="json"))
        return {"result": result}

    # ------------------------------------------------------------------ #
    #  Entry point                                                        #
    # ------------------------------------------------------------------ #

    def _timeout_callback(self, user_id: str, session_id: Optional[str]) -> Callable[[], None]:
        def _on_timeout() -> None:
            logger.warning("Analysis for user %s exceeded %.0fs", user_id, self.guard.deadline)
            self.channel.close(session_id, error="Analysis timed out. Results will be saved when it finishes.")
        return _on_timeout

    async def _record_failure(self, website_url: str, user_id: Optional[str], session_id: Optional[str], error: str) -> None:
        if self.persister is None:
            return
        try:
            await self.persister.record_failure(website_url, session_id=session_id, user_id=user_id, error=error)
        except Exception:
            logger.exception("Failed to record failed analysis for %s", website_url)

    async def start_analysis(
        self,
        website_url: str,
        *,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> AnalysisResult:
        """Run the full pipeline and return the immutable result.

        Raises
        ------
        ValueError
            *website_url* is empty.
        PrimarySiteError
            The analyzed site itself could not be profiled.
        """
        url = normalize_url(website_url)
        if not url:
            raise ValueError("website_url is required")

        timer = StepTimer("pipeline")
        print(f"🚀 [PIPELINE] Starting shipping analysis for {url}")

        if user_id:
            self.guard.start(user_id, self._timeout_callback(user_id, session_id))

        initial_state: ShippingAnalysisState = {
            "website_url": url,
            "user_id": user_id,
            "session_id": session_id,
            "processing_errors": [],
        }

        try:
            async with timer.async_step("graph"):
                final_state = await self.graph.ainvoke(initial_state)
            result: AnalysisResult = final_state["result"]
            print(f"🎯 [PIPELINE] Completed with {len(result.competitors)} competitors")
            return result

        except PrimarySiteError as exc:
            print(f"❌ [PIPELINE] Fatal: {exc}")
            self.channel.close(session_id, error=str(exc))
            await self._record_failure(url, user_id, session_id, str(exc))
            raise

        except Exception as exc:
            logger.exception("Shipping analysis failed for %s", url)
            self.channel.close(session_id, error=f"Analysis failed: {exc}")
            await self._record_failure(url, user_id, session_id, str(exc))
            raise

        finally:
            if user_id:
                self.guard.stop(user_id)
            timer.summary()
