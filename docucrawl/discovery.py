"""
Pre-Crawl Discovery
===================
Cheap accessibility sweep run before journey planning.

Visits every statically known route once (no natural-language driven
interaction), records whether it loaded without error and whether it
exposes forms or tables, and uploads one screenshot per route.  The
results filter the journey plan so the crawl engine never spends agent
work on a dead route.

Routes with dynamic segments (``/projects/[id]``) cannot be visited
without an entity and are left out of the sweep.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Callable, List, Optional, Sequence

from .dom import page_signals
from .errors import NavigationError, UploadError
from .models import DiscoveryResult
from .urls import join_url, route_matches

if TYPE_CHECKING:
    from .content_store import ContentStore
    from .driver import AutomationDriver
    from .run_config import RunConfig
    from .schemas import Journey, RouteInfo

logger = logging.getLogger(__name__)

_DYNAMIC_RE = re.compile(r"\[[^\]]+\]|/:[A-Za-z_]|\{[^}]+\}")


def is_dynamic_route(path: str) -> bool:
    return bool(_DYNAMIC_RE.search(path))


class DiscoverySweep:
    """Visit each known route once and record its health.

    Usage::

        sweep = DiscoverySweep(content_store, config)
        results = await sweep.run(driver, job_id, app_url, crawl_plan.routes)
        journeys = filter_journeys(journeys, results)
    """

    def __init__(
        self,
        content_store: "ContentStore",
        config: "RunConfig",
        *,
        is_login_redirect: Optional[Callable[[str], bool]] = None,
    ):
        self.content_store = content_store
        self.config = config
        self.is_login_redirect = is_login_redirect

    async def run(
        self,
        driver: "AutomationDriver",
        job_id: str,
        app_url: str,
        routes: Sequence["RouteInfo"],
        on_progress: Optional[Callable[[str], object]] = None,
    ) -> List[DiscoveryResult]:
        static = [r for r in routes if not is_dynamic_route(r.path)]
        if not static:
            logger.info("[DISCOVERY] No static routes to visit — skipping sweep")
            return []

        logger.info(f"[DISCOVERY] Visiting {len(static)} routes...")
        results: List[DiscoveryResult] = []
        for i, route in enumerate(static, 1):
            result = await self._visit(driver, job_id, app_url, route.path)
            results.append(result)
            if result.is_accessible:
                status = "accessible"
                status += ", has form" if result.has_form else ""
                status += ", has table" if result.has_table else ""
            else:
                status = "ERROR" if result.has_error else "inaccessible"
            logger.info(f"[DISCOVERY] [{i}/{len(static)}] {route.path} → {status} | {result.page_title!r}")
            if on_progress is not None:
                await on_progress(f"Discovered {route.path}: {status}")

        accessible = sum(1 for r in results if r.is_accessible)
        errors = sum(1 for r in results if r.has_error)
        logger.info(
            f"[DISCOVERY] Complete: {accessible} accessible, {errors} errors "
            f"out of {len(results)} routes"
        )
        return results

    async def _visit(self, driver: "AutomationDriver", job_id: str, app_url: str, path: str) -> DiscoveryResult:
        url = join_url(app_url, path)
        result = DiscoveryResult(route=path, actual_url=url)
        try:
            await driver.goto(url, timeout_ms=self.config.discovery_timeout_ms)
            await driver.settle(self.config.network_idle_timeout_ms, self.config.settle_delay_s)
            result.actual_url = driver.url
            signals = page_signals(await driver.content(), await driver.title())
            shot = await driver.screenshot()
        except NavigationError as exc:
            logger.warning(f"[DISCOVERY] Failed to visit {path}: {exc}")
            result.has_error = True
            return result
        except Exception as exc:
            logger.warning(f"[DISCOVERY] Error while inspecting {path}: {type(exc).__name__}: {exc}")
            result.has_error = True
            result.is_accessible = False
            return result

        result.page_title = signals.title
        result.has_form = signals.has_form
        result.has_table = signals.has_table
        result.has_error = signals.has_error
        result.nav_elements = signals.nav_labels
        redirected = bool(self.is_login_redirect and self.is_login_redirect(driver.url))
        result.is_accessible = not signals.has_error and not redirected

        label = "discovery-" + (re.sub(r"[^a-zA-Z0-9]+", "-", path).strip("-") or "root")
        try:
            result.screenshot_url = await self.content_store.upload(job_id, label, shot)
        except UploadError as exc:
            logger.warning(f"[DISCOVERY] Screenshot upload failed for {path}: {exc}")
        return result


def filter_journeys(journeys: Sequence["Journey"], results: Sequence[DiscoveryResult]) -> List["Journey"]:
    """Drop journeys with any explicit step route the sweep saw as dead."""
    dead = [r.route for r in results if r.has_error or not r.is_accessible]
    if not dead:
        return list(journeys)
    kept = []
    for journey in journeys:
        bad = [route for route in journey.routes if any(route_matches(d, route) for d in dead)]
        if bad:
            logger.info(f"[DISCOVERY] Dropping journey {journey.id!r} — inaccessible route(s) {bad}")
            continue
        kept.append(journey)
    return kept


def summarize(results: Sequence[DiscoveryResult]) -> str:
    """Caller-visible one-paragraph summary of the sweep."""
    if not results:
        return "No routes to discover — navigation will be discovered in the browser"
    accessible = [r for r in results if r.is_accessible]
    forms = sum(1 for r in accessible if r.has_form)
    tables = sum(1 for r in accessible if r.has_table)
    errors = [r.route for r in results if r.has_error]
    text = (
        f"Discovery complete: {len(accessible)}/{len(results)} routes accessible "
        f"({forms} with forms, {tables} with tables)"
    )
    if errors:
        shown = ", ".join(errors[:5]) + ("..." if len(errors) > 5 else "")
        text += f". Errors on: {shown}"
    return text
