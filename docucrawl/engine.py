"""
Crawl Engine
============
Drives one browser session through a job's journeys and persists the
screens it captures.

Execution model (single session, strictly sequential):
    1. Authenticate when credentials are supplied (fatal on failure).
    2. For each journey in ascending priority, for each step in order:
         a. resolve target: explicit route → navigate (falling back to
            navigation discovery); ``use_navigation`` → interact in place
         b. settle
         c. session-expiry check → re-authenticate once, retry step once
         d. capture page / modal / tab / dropdown / drawer
         e. extract cleaned DOM
         f. dedup against screens already kept in this job
         g. entity resolution for data-creating steps
         h. upload + persist + progress message
         i. stop everything once the screen cap is reached
    3. Step-level failures are recorded as ``CrawlError`` entries and the
       loop moves on; only authentication failures abort the crawl.

The session is acquired with ``async with`` and therefore released on
every exit path, including the cap stop and unexpected exceptions.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional

from .auth import AuthenticationHandler, find_login_page
from .budget import sort_journeys
from .dedup import DedupFilter
from .dom import clean_dom, health_issue
from .entities import EntityResolver
from .errors import AuthenticationError, NavigationError, SessionExpiredError, StepExecutionError, UploadError
from .models import (
    CrawlError, CrawlResult, Credentials, JobProgress, MessageType,
    ProgressMessage, Screen, ScreenType,
)
from .navigation import NavigationDiscovery
from .urls import fill_entity_placeholder, has_entity_placeholder, join_url, route_matches, route_path, slugify

if TYPE_CHECKING:
    from .content_store import ContentStore
    from .driver import AutomationDriver, DriverFactory
    from .run_config import RunConfig
    from .schemas import Capture, CrawlPlan, Journey, Step
    from .store import JobStore

logger = logging.getLogger(__name__)

_SCREEN_TYPES = {
    "page": ScreenType.PAGE,
    "modal": ScreenType.MODAL,
    "tab": ScreenType.TAB,
    "drawer": ScreenType.DRAWER,
    "dropdown": ScreenType.PAGE,
}

_TRIGGER_INSTRUCTIONS = {
    "modal": 'Click the "{name}" button',
    "tab": 'Click the "{name}" tab',
    "dropdown": 'Click the "{name}" dropdown',
    "drawer": 'Click the "{name}" button',
}

# Compound interactions are executed one act at a time
_ACT_SPLIT_RE = re.compile(r"\s*(?:;|\.\s+|,?\s+and\s+then\s+|,?\s+then\s+)\s*", re.IGNORECASE)
_QUOTED_RE = re.compile(r'("[^"]*")')


def split_acts(instruction: str) -> List[str]:
    """Split a compound instruction into single acts; quoted text is never split.

    ``'Type "Q3. Launch" into the name field, then click Save'``
    → ``['Type "Q3. Launch" into the name field', 'click Save']``
    """
    acts = [""]
    for part in _QUOTED_RE.split(instruction):
        if part.startswith('"') and part.endswith('"') and len(part) >= 2:
            acts[-1] += part
            continue
        pieces = _ACT_SPLIT_RE.split(part)
        acts[-1] += pieces[0]
        acts.extend(pieces[1:])
    return [a.strip(" .") for a in acts if a.strip(" .")]


class _SessionBounce(Exception):
    """Internal: the step landed on the login page."""


@dataclass
class CrawlRequest:
    job_id: str
    base_url: str
    journeys: List["Journey"]
    login_url: Optional[str] = None
    credentials: Optional[Credentials] = None
    crawl_plan: Optional["CrawlPlan"] = None
    max_screens: int = 50


@dataclass
class _CrawlState:
    request: CrawlRequest
    dedup: DedupFilter
    next_index: int
    resolver: EntityResolver = field(default_factory=EntityResolver)
    persisted: int = 0
    planned: int = 0

    @property
    def cap_reached(self) -> bool:
        return self.persisted >= self.request.max_screens


class CrawlEngine:
    """Journey executor for one job at a time.

    Usage::

        engine = CrawlEngine(store, content_store, driver_factory, config)
        engine.set_progress_callback(on_progress)
        result = await engine.run(CrawlRequest(job_id, base_url, journeys))
    """

    def __init__(
        self,
        store: "JobStore",
        content_store: "ContentStore",
        driver_factory: "DriverFactory",
        config: "RunConfig",
    ):
        self.store = store
        self.content_store = content_store
        self.driver_factory = driver_factory
        self.config = config
        self._progress_callback: Optional[Callable[[JobProgress], Awaitable[Any]]] = None

    def set_progress_callback(self, callback: Callable[[JobProgress], Awaitable[Any]]) -> None:
        """Called with a ``JobProgress`` snapshot after every step."""
        self._progress_callback = callback

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(self, request: CrawlRequest) -> CrawlResult:
        t_start = time.monotonic()
        result = CrawlResult()
        state = _CrawlState(
            request=request,
            dedup=DedupFilter(self.config.dedup_threshold, self.config.shingle_size),
            next_index=await self.store.count_screens(request.job_id),
        )
        journeys = sort_journeys(request.journeys)
        state.planned = min(
            request.max_screens,
            sum(len(step.capture) for j in journeys for step in j.steps),
        )
        navigation = NavigationDiscovery(request.base_url)

        logger.info(
            f"[CRAWL] Starting job {request.job_id[:8]}: {len(journeys)} journeys, "
            f"cap {request.max_screens} screens"
        )

        async with self.driver_factory() as driver:
            auth = await self._authenticate(driver, request)
            if auth is None:
                await self._open_landing(driver, request.base_url)

            for journey in journeys:
                if state.cap_reached:
                    break
                await self._message(request.job_id, MessageType.INFO, f"Crawling journey: {journey.title}")
                logger.info(f"[CRAWL] Journey {journey.id!r} (priority {journey.priority})")

                for index, step in enumerate(journey.steps):
                    if state.cap_reached:
                        break
                    await self._run_step(driver, auth, navigation, journey, index, step, state, result)
                    await self._report(state, f"{journey.title}: {step.action}")
                result.journeys_crawled += 1

            if state.cap_reached:
                result.stopped_at_cap = True
                logger.info(f"[CRAWL] Screen cap reached ({request.max_screens}) — stopping")
                await self._message(
                    request.job_id, MessageType.INFO,
                    f"Reached the limit of {request.max_screens} screens",
                )

        result.total_duration_ms = int((time.monotonic() - t_start) * 1000)
        logger.info(
            f"[CRAWL] Done: {len(result.screens)} screens, {len(result.errors)} step errors, "
            f"{result.total_duration_ms / 1000:.1f}s"
        )
        return result

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def _authenticate(
        self, driver: "AutomationDriver", request: CrawlRequest
    ) -> Optional[AuthenticationHandler]:
        creds = request.credentials
        if creds is None or not creds.is_complete:
            if request.login_url:
                logger.warning("[AUTH] Login URL given without complete credentials — crawling anonymously")
            return None

        login_url = request.login_url
        if not login_url:
            login_url = await find_login_page(driver, request.base_url, timeout_ms=self.config.page_timeout_ms)
            if not login_url:
                raise AuthenticationError("Credentials were supplied but no login page could be found")

        auth = AuthenticationHandler(login_url, creds, config=self.config)
        await auth.login(driver)
        await self._message(request.job_id, MessageType.INFO, "Logged in successfully")
        return auth

    async def _open_landing(self, driver: "AutomationDriver", base_url: str) -> None:
        try:
            await driver.goto(base_url, timeout_ms=self.config.page_timeout_ms)
            await driver.settle(self.config.network_idle_timeout_ms, self.config.settle_delay_s)
        except NavigationError as exc:
            logger.warning(f"[CRAWL] Landing page did not load: {exc}")

    # ------------------------------------------------------------------
    # Step execution with recovery
    # ------------------------------------------------------------------

    async def _run_step(
        self,
        driver: "AutomationDriver",
        auth: Optional[AuthenticationHandler],
        navigation: NavigationDiscovery,
        journey: "Journey",
        index: int,
        step: "Step",
        state: _CrawlState,
        result: CrawlResult,
    ) -> None:
        retried = False
        while True:
            try:
                await self._execute_step(driver, auth, navigation, journey, index, step, state, result)
                return
            except _SessionBounce:
                if retried:
                    raise SessionExpiredError(
                        f"Session expired again while retrying step {index} of journey {journey.id!r}"
                    )
                retried = True
                # AuthenticationError from here is fatal for the crawl
                await auth.reauthenticate(driver)
            except AuthenticationError:
                raise
            except StepExecutionError as exc:
                await self._record_error(state, result, journey, index, step, str(exc))
                return
            except Exception as exc:
                logger.exception(f"[CRAWL] Unexpected error in step {index} of {journey.id!r}")
                await self._record_error(state, result, journey, index, step, f"{type(exc).__name__}: {exc}")
                return

    async def _record_error(
        self, state: _CrawlState, result: CrawlResult,
        journey: "Journey", index: int, step: "Step", message: str,
    ) -> None:
        logger.error(f"[CRAWL] Step {index} of {journey.id!r} failed ({step.action}): {message}")
        result.errors.append(CrawlError(journey_id=journey.id, step_index=index, action=step.action, error=message))
        await self._message(state.request.job_id, MessageType.ERROR, f"Step failed: {step.action} — {message}")

    async def _execute_step(
        self,
        driver: "AutomationDriver",
        auth: Optional[AuthenticationHandler],
        navigation: NavigationDiscovery,
        journey: "Journey",
        index: int,
        step: "Step",
        state: _CrawlState,
        result: CrawlResult,
    ) -> None:
        request = state.request
        before_url = driver.url
        before_html = await driver.content() if step.creates_data else ""

        # ── a. Resolve target ───────────────────────────────────────
        if step.uses_navigation:
            if step.interaction:
                await self._interact(driver, step.interaction, state)
            elif not await navigation.navigate(driver, step.action):
                raise StepExecutionError(f"No navigation element matches {step.action!r}")
        else:
            route = self._resolve_route(step.target_route, state)
            url = join_url(request.base_url, route)
            try:
                await driver.goto(url, timeout_ms=self.config.page_timeout_ms)
            except NavigationError as exc:
                logger.warning(f"[CRAWL] {exc} — trying navigation fallback")
                if not await navigation.navigate(driver, route):
                    raise

        # ── b. Settle ───────────────────────────────────────────────
        await driver.settle(self.config.network_idle_timeout_ms, self.config.settle_delay_s)

        # ── c. Session expiry ───────────────────────────────────────
        if auth is not None and auth.is_session_expired(driver.url):
            raise _SessionBounce()

        if not step.uses_navigation and step.interaction:
            if step.creates_data:
                # Baseline is the target page itself, before the data-creating act
                before_url, before_html = driver.url, await driver.content()
            await self._interact(driver, step.interaction, state)
            await driver.settle(self.config.network_idle_timeout_ms, self.config.settle_delay_s)
            if auth is not None and auth.is_session_expired(driver.url):
                raise _SessionBounce()

        html = await driver.content()
        issue = health_issue(driver.url, html)
        if issue:
            raise StepExecutionError(f"{issue} at {driver.url}")

        # ── g. Entity resolution (before captures so screens carry it) ─
        entity_id = None
        if step.creates_data:
            entity_id = state.resolver.resolve(before_url, before_html, driver.url, html)
            if entity_id is None:
                raise StepExecutionError("Step creates data but no new record id was found")

        # ── d-h. Captures ──────────────────────────────────────────
        for capture in step.captures:
            if state.cap_reached:
                return
            await self._capture(driver, journey, index, step, capture, entity_id, state, result)

    def _resolve_route(self, route: str, state: _CrawlState) -> str:
        if not has_entity_placeholder(route):
            return route
        entity_id = state.resolver.last_created_id
        if entity_id is None:
            raise StepExecutionError(f"Route {route!r} needs a created record but none exists yet")
        return fill_entity_placeholder(route, entity_id)

    async def _interact(self, driver: "AutomationDriver", instruction: str, state: _CrawlState) -> None:
        if has_entity_placeholder(instruction):
            entity_id = state.resolver.last_created_id
            if entity_id is None:
                raise StepExecutionError("Interaction needs a created record but none exists yet")
            instruction = fill_entity_placeholder(instruction, entity_id)

        for act in split_acts(instruction):
            outcome = await driver.drive(act, {"timeout_ms": self.config.page_timeout_ms // 2})
            if not outcome.success:
                raise StepExecutionError(f"Interaction failed ({act}): {outcome.error or 'no effect'}")
            await driver.wait(self.config.trigger_delay_s)

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    async def _capture(
        self,
        driver: "AutomationDriver",
        journey: "Journey",
        index: int,
        step: "Step",
        capture: "Capture",
        entity_id: Optional[str],
        state: _CrawlState,
        result: CrawlResult,
    ) -> None:
        restore_url = driver.url
        if capture.kind != "page":
            instruction = _TRIGGER_INSTRUCTIONS[capture.kind].format(name=capture.name)
            outcome = await driver.drive(instruction)
            if not outcome.success:
                raise StepExecutionError(
                    f"Could not open {capture.kind} {capture.name!r}: {outcome.error or 'not found'}"
                )
            await driver.wait(self.config.trigger_delay_s)

        try:
            url = driver.url
            dom = clean_dom(await driver.content(), self.config.dom_max_tokens)
            if state.dedup.is_duplicate(dom):
                logger.info(f"[SKIP] {capture.label} at {url[:70]} — duplicate content")
                return
            shot = await driver.screenshot()
        finally:
            if capture.kind != "page":
                await self._restore(driver, capture, restore_url)

        order_index = state.next_index
        label = f"{order_index:03d}-{slugify(journey.id)}-{capture.label}"
        screen = Screen(
            job_id=state.request.job_id,
            url=url,
            route_path=route_path(url),
            order_index=order_index,
            nav_path=f"{journey.title} > {step.action}",
            screenshot_url=await self._upload(state.request.job_id, label, shot),
            screenshot_label=capture.label,
            dom_html=dom,
            code_context=self._code_context(state.request.crawl_plan, url),
            screen_type=_SCREEN_TYPES[capture.kind],
            journey_id=journey.id,
            journey_step=index,
            created_entity_id=entity_id,
        )
        await self.store.insert_screen(screen)
        state.next_index += 1
        state.persisted += 1
        state.dedup.remember(dom, label)
        result.screens.append(screen)
        logger.info(f"[OK] #{order_index} {capture.label} at {url[:70]}")
        await self._message(
            state.request.job_id, MessageType.SCREENSHOT,
            f"Captured: {journey.title} — {capture.label}", screen.screenshot_url or None,
        )

    async def _restore(self, driver: "AutomationDriver", capture: "Capture", restore_url: str) -> None:
        if capture.kind in ("modal", "dropdown", "drawer"):
            await driver.drive("Press the Escape key")
            await driver.wait(self.config.trigger_delay_s / 2)
        if driver.url != restore_url:
            try:
                await driver.goto(restore_url, timeout_ms=self.config.page_timeout_ms)
                await driver.settle(self.config.network_idle_timeout_ms, self.config.settle_delay_s)
            except NavigationError as exc:
                logger.warning(f"[CRAWL] Could not restore {restore_url[:70]} after {capture.label}: {exc}")

    async def _upload(self, job_id: str, label: str, shot: bytes) -> str:
        """Upload with one retry; an empty reference when both attempts fail."""
        for attempt in (1, 2):
            try:
                return await self.content_store.upload(job_id, label, shot)
            except UploadError as exc:
                logger.warning(f"[CRAWL] Upload attempt {attempt} failed for {label}: {exc}")
                if attempt == 1:
                    await asyncio.sleep(self.config.upload_retry_delay_s)
        return ""

    @staticmethod
    def _code_context(plan: Optional["CrawlPlan"], url: str) -> Optional[Dict[str, Any]]:
        if plan is None:
            return None
        path = route_path(url)
        for route in plan.routes:
            if route_matches(route.path, path):
                return route.model_dump()
        return None

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    async def _message(
        self, job_id: str, type_: MessageType, message: str, screenshot_url: Optional[str] = None
    ) -> None:
        await self.store.add_progress(
            ProgressMessage(job_id=job_id, type=type_, message=message, screenshot_url=screenshot_url)
        )

    async def _report(self, state: _CrawlState, current_step: str) -> None:
        if self._progress_callback is None:
            return
        await self._progress_callback(
            JobProgress(
                screens_found=state.planned,
                screens_crawled=state.persisted,
                current_step=current_step,
            )
        )
