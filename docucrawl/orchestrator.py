"""
Job Orchestrator
================
Top-level state machine that takes a job from ``queued`` to ``completed``.

    queued → analyzing_code → analyzing_prd → discovering →
    planning_journeys → crawling → analyzing_screens → generating_docs →
    completed

``failed`` is reachable from any non-terminal stage.  Each transition is
persisted in a single store update together with a progress snapshot,
so anyone polling the job sees a valid, monotonically advancing stage.
There is no automatic stage retry.

Responsibilities:
    1. ``create_job()``: cheap credit check; no job exists when it fails.
    2. ``run()``: execute every stage in order, fail the job on the first
       uncaught error.
    3. Scrub credentials once the crawl stage ends (success or not) and on
       any failure.
    4. Reconcile and charge the actual cost, then record the quality score
       and ``flagged_for_review`` once the final stage succeeded.

``JobRunner`` runs several jobs concurrently; each job owns its own
browser session.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

from .auth import AuthenticationHandler, detect_app_name, find_login_page
from .budget import BudgetController, format_cost_cents
from .collaborators import DomScreenAnalyzer, RouteJourneyPlanner
from .discovery import DiscoverySweep, filter_journeys, summarize
from .engine import CrawlEngine, CrawlRequest
from .errors import AuthenticationError, BudgetExhaustedError, CollaboratorError, DocuCrawlError, NavigationError
from .models import (
    CostEstimate, CrawlResult, DiscoveryResult, Job, JobInput, JobProgress,
    JobStatus, MessageType, ProgressMessage, ScreenStatus, utcnow,
)
from .navigation import NavigationDiscovery
from .schemas import CrawlPlan, Journey, JourneyPlan, PRDSummary, ScreenAnalysisReport, parse_response

if TYPE_CHECKING:
    from .collaborators import CodeAnalyzer, DocumentAssembler, JourneyPlanner, PrdAnalyzer, ScreenAnalyzer
    from .content_store import ContentStore
    from .driver import DriverFactory
    from .run_config import RunConfig
    from .store import JobStore

logger = logging.getLogger(__name__)

STAGE_LABELS = {
    JobStatus.QUEUED: "Queued",
    JobStatus.ANALYZING_CODE: "Analyzing code",
    JobStatus.ANALYZING_PRD: "Analyzing product description",
    JobStatus.DISCOVERING: "Discovering routes",
    JobStatus.PLANNING_JOURNEYS: "Planning journeys",
    JobStatus.CRAWLING: "Crawling",
    JobStatus.ANALYZING_SCREENS: "Analyzing screens",
    JobStatus.GENERATING_DOCS: "Generating documentation",
    JobStatus.COMPLETED: "Completed",
    JobStatus.FAILED: "Failed",
}


@dataclass
class _RunContext:
    """Data handed from one stage to the next within a single run."""

    t_start: float = field(default_factory=time.monotonic)
    crawl_plan: CrawlPlan = field(default_factory=CrawlPlan)
    prd: Optional[PRDSummary] = None
    discovery: List[DiscoveryResult] = field(default_factory=list)
    journeys: List[Journey] = field(default_factory=list)
    additional: List[Journey] = field(default_factory=list)
    estimate: Optional[CostEstimate] = None
    crawl: Optional[CrawlResult] = None
    report: Optional[ScreenAnalysisReport] = None
    docs_url: str = ""


class JobOrchestrator:
    """Runs jobs through the pipeline.

    Usage::

        orchestrator = JobOrchestrator(store, content_store, driver_factory, config,
                                       planner=PlanFileJourneyPlanner("plan.json"),
                                       assembler=DocxAssembler("docs"))
        job = await orchestrator.create_job("user-1", JobInput(app_url="https://app.example.com"))
        job = await orchestrator.run(job.id)
    """

    def __init__(
        self,
        store: "JobStore",
        content_store: "ContentStore",
        driver_factory: "DriverFactory",
        config: "RunConfig",
        *,
        code_analyzer: Optional["CodeAnalyzer"] = None,
        prd_analyzer: Optional["PrdAnalyzer"] = None,
        planner: Optional["JourneyPlanner"] = None,
        screen_analyzer: Optional["ScreenAnalyzer"] = None,
        assembler: Optional["DocumentAssembler"] = None,
    ):
        self.store = store
        self.content_store = content_store
        self.driver_factory = driver_factory
        self.config = config
        self.code_analyzer = code_analyzer
        self.prd_analyzer = prd_analyzer
        self.planner = planner or RouteJourneyPlanner()
        self.screen_analyzer = screen_analyzer or DomScreenAnalyzer(config.analysis_concurrency)
        self.assembler = assembler
        self.budget = BudgetController(
            store,
            config.cost_model(),
            screens_per_journey=config.screens_per_journey,
            max_journeys=config.max_journeys,
        )

    # ------------------------------------------------------------------
    # Job creation / status
    # ------------------------------------------------------------------

    async def create_job(self, owner_id: str, job_input: JobInput) -> Job:
        """Insert a ``queued`` job after a credit check.

        Raises:
            BudgetExhaustedError: the owner has no credits; nothing is created.
        """
        check = await self.budget.check_credits(owner_id)
        if not check.has_credits:
            logger.warning(f"[ORCHESTRATOR] Rejecting job for {owner_id}: no credits left")
            raise BudgetExhaustedError(f"No credits remaining ({format_cost_cents(check.credits)})")

        job = Job(
            owner_id=owner_id,
            app_url=job_input.app_url,
            login_url=job_input.login_url,
            credentials=job_input.credentials,
            repo_ref=job_input.repo_ref,
            product_description=job_input.product_description,
            app_name=job_input.app_name,
            max_screens=job_input.max_screens or self.config.max_screens,
            credits_snapshot_cents=check.credits,
        )
        await self.store.create_job(job)
        await self._message(job.id, MessageType.INFO, f"Job queued for {job.app_url}")
        logger.info(f"[ORCHESTRATOR] Job {job.id[:8]} queued ({job.app_url})")
        return job

    async def status(self, job_id: str, recent: int = 10) -> Dict[str, Any]:
        """Current stage, progress counters and the latest progress messages."""
        job = await self.store.get_job(job_id)
        messages = await self.store.list_progress(job_id, limit=recent)
        return {
            "id": job.id,
            "status": job.status.value,
            "progress": {
                "screens_found": job.progress.screens_found,
                "screens_crawled": job.progress.screens_crawled,
                "current_step": job.progress.current_step,
            },
            "error": job.error,
            "messages": [{"type": m.type.value, "message": m.message} for m in messages],
        }

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def run(self, job_id: str) -> Job:
        """Run every stage; return the job in its terminal state."""
        job = await self.store.get_job(job_id)
        if job.status is not JobStatus.QUEUED:
            raise ValueError(f"Job {job_id} is {job.status.value}; only queued jobs can run")

        ctx = _RunContext()
        stages = [
            (JobStatus.ANALYZING_CODE, self._analyze_code),
            (JobStatus.ANALYZING_PRD, self._analyze_prd),
            (JobStatus.DISCOVERING, self._discover),
            (JobStatus.PLANNING_JOURNEYS, self._plan_journeys),
            (JobStatus.CRAWLING, self._crawl),
            (JobStatus.ANALYZING_SCREENS, self._analyze_screens),
            (JobStatus.GENERATING_DOCS, self._generate_docs),
        ]
        await self.store.update_job(job_id, started_at=utcnow())
        try:
            for status, stage in stages:
                await self._advance(job_id, status)
                await stage(job_id, ctx)
            await self._complete(job_id, ctx)
        except Exception as exc:
            await self._fail(job_id, exc)
        return await self.store.get_job(job_id)

    async def _advance(self, job_id: str, status: JobStatus) -> None:
        job = await self.store.get_job(job_id)
        if job.status.is_terminal or status.rank <= job.status.rank:
            raise RuntimeError(f"Illegal transition {job.status.value} → {status.value}")
        progress = JobProgress(
            screens_found=job.progress.screens_found,
            screens_crawled=job.progress.screens_crawled,
            current_step=STAGE_LABELS[status],
        )
        await self.store.update_job(job_id, status=status, progress=progress)
        await self._message(job_id, MessageType.INFO, f"{STAGE_LABELS[status]}...")
        logger.info(f"[ORCHESTRATOR] Job {job_id[:8]} → {status.value}")

    async def _fail(self, job_id: str, exc: Exception) -> None:
        message = str(exc) or type(exc).__name__
        if isinstance(exc, DocuCrawlError):
            logger.error(f"[ORCHESTRATOR] Job {job_id[:8]} failed: {message}")
        else:
            logger.exception(f"[ORCHESTRATOR] Job {job_id[:8]} failed with an unexpected error")
        await self.store.update_job(job_id, status=JobStatus.FAILED, error=message, completed_at=utcnow())
        await self.store.scrub_credentials(job_id)
        await self._message(job_id, MessageType.ERROR, f"Job failed: {message}")

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _analyze_code(self, job_id: str, ctx: _RunContext) -> None:
        job = await self.store.get_job(job_id)
        if not (job.repo_ref and self.code_analyzer):
            summary = "No repository provided — routes will be discovered in the browser"
        else:
            try:
                raw = await self.code_analyzer.analyze(job.repo_ref)
            except CollaboratorError as exc:
                logger.warning(f"[ORCHESTRATOR] Code analysis unavailable: {exc}")
                summary = f"Code analysis unavailable ({exc}) — routes will be discovered in the browser"
            else:
                ctx.crawl_plan = parse_response(raw, CrawlPlan)
                summary = self._code_summary(ctx.crawl_plan)
        await self.store.update_job(job_id, code_analysis_summary=summary)
        await self._message(job_id, MessageType.INFO, summary)

    @staticmethod
    def _code_summary(plan: CrawlPlan) -> str:
        kinds = Counter(r.type for r in plan.routes)
        breakdown = ", ".join(f"{n} {k}" for k, n in kinds.most_common())
        forms = sum(1 for r in plan.routes if r.fields)
        text = f"Found {len(plan.routes)} routes ({plan.framework})"
        if breakdown:
            text += f": {breakdown}"
        if forms:
            text += f"; {forms} with forms"
        return text

    async def _analyze_prd(self, job_id: str, ctx: _RunContext) -> None:
        job = await self.store.get_job(job_id)
        if not (job.product_description and self.prd_analyzer):
            return
        try:
            raw = await self.prd_analyzer.summarize(job.product_description, job.app_name)
        except CollaboratorError as exc:
            logger.warning(f"[ORCHESTRATOR] PRD analysis unavailable: {exc}")
            summary = f"Product analysis unavailable ({exc})"
        else:
            ctx.prd = parse_response(raw, PRDSummary)
            summary = f"Product: {ctx.prd.product_name or job.app_name or 'unnamed'}"
            if ctx.prd.product_purpose:
                summary += f" — {ctx.prd.product_purpose}"
            if ctx.prd.main_features:
                summary += f" ({len(ctx.prd.main_features)} features)"
        await self.store.update_job(job_id, prd_analysis_summary=summary)
        await self._message(job_id, MessageType.INFO, summary)

    async def _discover(self, job_id: str, ctx: _RunContext) -> None:
        job = await self.store.get_job(job_id)
        async with self.driver_factory() as driver:
            auth: Optional[AuthenticationHandler] = None
            creds = job.credentials
            if creds is not None and creds.is_complete:
                login_url = job.login_url
                if not login_url:
                    login_url = await find_login_page(driver, job.app_url, timeout_ms=self.config.page_timeout_ms)
                    if not login_url:
                        raise AuthenticationError("Credentials were supplied but no login page could be found")
                    await self.store.update_job(job_id, login_url=login_url)
                auth = AuthenticationHandler(login_url, creds, config=self.config)
                await auth.login(driver)

            if not job.app_name or not ctx.crawl_plan.routes:
                try:
                    await driver.goto(job.app_url, timeout_ms=self.config.page_timeout_ms)
                    await driver.settle(self.config.network_idle_timeout_ms, self.config.settle_delay_s)
                except NavigationError as exc:
                    logger.warning(f"[ORCHESTRATOR] App URL did not load: {exc}")

            if not job.app_name:
                app_name = await detect_app_name(driver, job.product_description)
                await self.store.update_job(job_id, app_name=app_name)
                logger.info(f"[ORCHESTRATOR] App name: {app_name!r}")

            if not ctx.crawl_plan.routes:
                routes = await NavigationDiscovery(job.app_url).discover(driver)
                ctx.crawl_plan = CrawlPlan(
                    routes=routes, framework=ctx.crawl_plan.framework, auth_method=ctx.crawl_plan.auth_method,
                )
                await self._message(job_id, MessageType.INFO, f"Found {len(routes)} navigation targets in the app")

            sweep = DiscoverySweep(
                self.content_store, self.config,
                is_login_redirect=auth.is_session_expired if auth else None,
            )
            ctx.discovery = await sweep.run(
                driver, job_id, job.app_url, ctx.crawl_plan.routes,
                on_progress=lambda text: self._message(job_id, MessageType.INFO, text),
            )

        await self.store.update_job(job_id, discovery_data=[r.to_dict() for r in ctx.discovery])
        await self._message(job_id, MessageType.INFO, summarize(ctx.discovery))

    async def _plan_journeys(self, job_id: str, ctx: _RunContext) -> None:
        job = await self.store.get_job(job_id)
        max_count = self.config.max_journeys or 20
        raw = await self.planner.plan(ctx.crawl_plan, ctx.prd, ctx.discovery, max_count)
        plan = parse_response(raw, JourneyPlan)

        journeys = filter_journeys(plan.journeys, ctx.discovery)
        check = await self.budget.check_credits(job.owner_id)
        budget_plan = self.budget.trim_plan(journeys, check.credits)
        if not budget_plan.selected:
            raise BudgetExhaustedError(
                f"{format_cost_cents(check.credits)} does not cover a single journey "
                f"({format_cost_cents(self.budget.estimate(1))} minimum)"
            )

        ctx.journeys = budget_plan.selected
        ctx.additional = budget_plan.additional + list(plan.additional)
        ctx.estimate = budget_plan.estimate
        await self.store.update_job(
            job_id,
            estimated_cost_cents=ctx.estimate.estimated_cost_cents,
            credits_snapshot_cents=check.credits,
            journeys=[j.model_dump() for j in ctx.journeys],
            additional_journeys=[j.model_dump() for j in ctx.additional],
        )
        text = (
            f"Planned {len(ctx.journeys)} journeys "
            f"(estimated {format_cost_cents(ctx.estimate.estimated_cost_cents)})"
        )
        if ctx.estimate.features_cut_for_budget:
            text += f"; {ctx.estimate.features_cut_for_budget} more available with additional credits"
        await self._message(job_id, MessageType.INFO, text)

    async def _crawl(self, job_id: str, ctx: _RunContext) -> None:
        job = await self.store.get_job(job_id)
        engine = CrawlEngine(self.store, self.content_store, self.driver_factory, self.config)

        async def _on_progress(progress: JobProgress) -> None:
            await self.store.update_job(job_id, progress=progress)

        engine.set_progress_callback(_on_progress)
        request = CrawlRequest(
            job_id=job_id,
            base_url=job.app_url,
            journeys=ctx.journeys,
            login_url=job.login_url,
            credentials=job.credentials,
            crawl_plan=ctx.crawl_plan,
            max_screens=job.max_screens,
        )
        try:
            ctx.crawl = await engine.run(request)
        finally:
            await self.store.scrub_credentials(job_id)

        captured = len(ctx.crawl.screens)
        text = f"Crawl complete: {captured} screens from {ctx.crawl.journeys_crawled} journeys"
        if ctx.crawl.errors:
            text += f", {len(ctx.crawl.errors)} steps failed"
        await self._message(job_id, MessageType.INFO, text)
        if captured < self.config.min_screens:
            raise DocuCrawlError(
                f"Only {captured} screens captured, need at least {self.config.min_screens}"
            )

    async def _analyze_screens(self, job_id: str, ctx: _RunContext) -> None:
        screens = await self.store.list_screens(job_id)
        raw = await self.screen_analyzer.analyze(job_id, screens)
        ctx.report = parse_response(raw, ScreenAnalysisReport)
        by_id = {a.screen_id: a for a in ctx.report.analyses}
        for screen in screens:
            analysis = by_id.get(screen.id)
            if analysis is None:
                continue
            await self.store.update_screen(
                screen.id,
                status=ScreenStatus.ANALYZED,
                confidence=analysis.confidence,
                analysis=analysis.model_dump(),
            )
        await self._message(
            job_id, MessageType.INFO,
            f"Analyzed {len(by_id)}/{len(screens)} screens "
            f"(average confidence {ctx.report.avg_confidence:.1f})",
        )

    async def _generate_docs(self, job_id: str, ctx: _RunContext) -> None:
        if self.assembler is None:
            logger.info("[ORCHESTRATOR] No document assembler configured — skipping")
            return
        job = await self.store.get_job(job_id)
        screens = await self.store.list_screens(job_id)
        assembly = await self.assembler.assemble(job, screens, ctx.journeys)
        ctx.docs_url = assembly.docs_url
        await self._message(job_id, MessageType.INFO, f"Documentation assembled ({assembly.sections} sections)")

    async def _complete(self, job_id: str, ctx: _RunContext) -> None:
        job = await self.store.get_job(job_id)
        screens = await self.store.list_screens(job_id)
        actual = self.budget.reconcile(ctx.estimate, ctx.crawl.journeys_crawled, len(screens))
        await self.budget.charge(job.owner_id, actual)

        report = ctx.report
        result = {
            "docs_url": ctx.docs_url,
            "total_screens": len(screens),
            "avg_confidence": report.avg_confidence,
            "duration_seconds": round(time.monotonic() - ctx.t_start),
            "journeys_documented": ctx.crawl.journeys_crawled,
            "journeys_total": len(ctx.journeys),
            "estimated_cost_cents": ctx.estimate.estimated_cost_cents,
            "actual_cost_cents": actual,
            "additional_journeys": [{"id": j.id, "title": j.title} for j in ctx.additional],
            "crawl_errors": [
                {"journey_id": e.journey_id, "step_index": e.step_index, "action": e.action, "error": e.error}
                for e in ctx.crawl.errors
            ],
        }
        await self.store.update_job(
            job_id,
            status=JobStatus.COMPLETED,
            completed_at=utcnow(),
            result=result,
            actual_cost_cents=actual,
            quality_score=report.quality_score,
            flagged_for_review=report.flagged_for_review,
            progress=JobProgress(
                screens_found=job.progress.screens_found,
                screens_crawled=len(screens),
                current_step=STAGE_LABELS[JobStatus.COMPLETED],
            ),
        )
        await self._message(
            job_id, MessageType.COMPLETE,
            f"Documentation ready: {len(screens)} screens, quality {report.quality_score:.0f}"
            + (" (flagged for review)" if report.flagged_for_review else ""),
        )
        logger.info(
            f"[ORCHESTRATOR] Job {job_id[:8]} completed — {len(screens)} screens, "
            f"charged {format_cost_cents(actual)}"
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _message(self, job_id: str, type_: MessageType, message: str) -> None:
        await self.store.add_progress(ProgressMessage(job_id=job_id, type=type_, message=message))


class JobRunner:
    """Runs several jobs concurrently, each with its own browser session."""

    def __init__(self, orchestrator: JobOrchestrator, max_concurrent: int = 2):
        self.orchestrator = orchestrator
        self.max_concurrent = max_concurrent

    async def run_many(self, job_ids: Sequence[str]) -> List[Job]:
        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def _one(job_id: str) -> Job:
            async with semaphore:
                return await self.orchestrator.run(job_id)

        return list(await asyncio.gather(*(_one(j) for j in job_ids)))
