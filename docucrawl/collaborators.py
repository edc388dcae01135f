"""
Collaborators
=============
Interfaces of the external collaborators the orchestrator calls between
crawl stages, plus small default implementations that let a job run
end-to-end without any hosted service.

| Interface           | Default                                           |
|---------------------|---------------------------------------------------|
| ``CodeAnalyzer``    | ``RouteFileCodeAnalyzer``: routes JSON file       |
| ``PrdAnalyzer``     | ``DescriptionPrdAnalyzer``: product description   |
| ``JourneyPlanner``  | ``PlanFileJourneyPlanner`` / ``RouteJourneyPlanner`` |
| ``ScreenAnalyzer``  | ``DomScreenAnalyzer``: DOM heuristics             |
| ``DocumentAssembler`` | ``docx_exporter.DocxAssembler``                 |

Every payload read from text goes through ``schemas.parse_response``.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional, Protocol, Sequence

from bs4 import BeautifulSoup

from .discovery import is_dynamic_route
from .errors import CollaboratorError
from .schemas import (
    CrawlPlan, Journey, JourneyPlan, PRDSummary, RouteInfo, ScreenAnalysis,
    ScreenAnalysisReport, Step, parse_response,
)

if TYPE_CHECKING:
    from .models import DiscoveryResult, Job, Screen

logger = logging.getLogger(__name__)

CONFIDENCE_THRESHOLD = 4
QUALITY_SCORE_MIN = 60


# ---------------------------------------------------------------------------
# Interfaces
# ---------------------------------------------------------------------------

class CodeAnalyzer(Protocol):

    async def analyze(self, repo_ref: str) -> CrawlPlan: ...


class PrdAnalyzer(Protocol):

    async def summarize(self, product_description: str, app_name: Optional[str] = None) -> PRDSummary: ...


class JourneyPlanner(Protocol):

    async def plan(
        self,
        crawl_plan: CrawlPlan,
        prd: Optional[PRDSummary],
        discovery: Sequence["DiscoveryResult"],
        max_count: int,
    ) -> JourneyPlan: ...


class ScreenAnalyzer(Protocol):

    async def analyze(self, job_id: str, screens: Sequence["Screen"]) -> ScreenAnalysisReport: ...


@dataclass
class AssemblyResult:
    docs_url: str
    sections: int = 0


class DocumentAssembler(Protocol):

    async def assemble(
        self, job: "Job", screens: Sequence["Screen"], journeys: Sequence[Journey]
    ) -> AssemblyResult: ...


# ---------------------------------------------------------------------------
# Code analysis
# ---------------------------------------------------------------------------

async def _read_text(path: Path) -> str:
    loop = asyncio.get_event_loop()
    try:
        return await loop.run_in_executor(None, lambda: path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise CollaboratorError(f"Could not read {path}: {exc}") from exc


class RouteFileCodeAnalyzer:
    """Reads a route plan JSON file (``repo_ref`` is its path, or a directory
    holding ``routes.json``)."""

    async def analyze(self, repo_ref: str) -> CrawlPlan:
        path = Path(repo_ref)
        if path.is_dir():
            path = path / "routes.json"
        plan = parse_response(await _read_text(path), CrawlPlan)
        logger.info(f"[CODE] {len(plan.routes)} routes ({plan.framework}) from {path}")
        return plan


# ---------------------------------------------------------------------------
# PRD summary
# ---------------------------------------------------------------------------

_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")


class DescriptionPrdAnalyzer:
    """Derives a ``PRDSummary`` from the caller's product description."""

    async def summarize(self, product_description: str, app_name: Optional[str] = None) -> PRDSummary:
        sentences = [s.strip() for s in _SENTENCE_RE.split(product_description.strip()) if s.strip()]
        name = app_name or ""
        if not name:
            m = re.match(r"^([A-Z][A-Za-z]+(?:\s[A-Z][A-Za-z]+)*)", product_description.strip())
            name = m.group(1) if m else ""
        return PRDSummary(
            product_name=name,
            product_purpose=sentences[0] if sentences else "",
            main_features=[{"name": s[:60], "description": s} for s in sentences[1:]],
        )


# ---------------------------------------------------------------------------
# Journey planning
# ---------------------------------------------------------------------------

class PlanFileJourneyPlanner:
    """Serves a journey plan written by hand (or by an earlier planning run)."""

    def __init__(self, path: str):
        self.path = Path(path)

    async def plan(self, crawl_plan, prd, discovery, max_count: int) -> JourneyPlan:
        plan = parse_response(await _read_text(self.path), JourneyPlan)
        if len(plan.journeys) > max_count:
            overflow = plan.journeys[max_count:]
            plan = JourneyPlan(journeys=plan.journeys[:max_count], additional=overflow + plan.additional)
        return plan


# Route kinds in the order they make good documentation
_TYPE_PRIORITY = {"dashboard": 1, "list": 2, "detail": 3, "form": 3, "create": 3, "settings": 4}


class RouteJourneyPlanner:
    """One read-only journey per accessible static route.

    Dashboards first, then lists, forms and settings.  Known modals of a
    route become extra captures.
    """

    async def plan(self, crawl_plan, prd, discovery, max_count: int) -> JourneyPlan:
        broken = {d.route for d in discovery if d.has_error or not d.is_accessible}
        seen = set()
        journeys: List[Journey] = []
        for route in crawl_plan.routes:
            if route.path in broken or route.path in seen or is_dynamic_route(route.path):
                continue
            seen.add(route.path)
            journeys.append(self._journey_for(route, len(journeys)))
        journeys.sort(key=lambda j: j.priority)
        return JourneyPlan(journeys=journeys[:max_count], additional=journeys[max_count:])

    @staticmethod
    def _journey_for(route: RouteInfo, position: int) -> Journey:
        title = route.component or route.path.strip("/").replace("-", " ").title() or "Home"
        kind = route.type.lower()
        if route.path == "/" or "dashboard" in route.path:
            kind = "dashboard"
        captures = ["page"] + [f"modal:{m}" for m in route.modals[:2]]
        slug = re.sub(r"[^a-z0-9]+", "-", route.path.lower()).strip("-") or "home"
        return Journey(
            id=slug,
            title=title,
            description=f"Tour of {title}",
            priority=_TYPE_PRIORITY.get(kind, 5) * 100 + position,
            steps=[Step(action=f"Open {title}", target_route=route.path, capture=captures)],
        )


# ---------------------------------------------------------------------------
# Screen analysis
# ---------------------------------------------------------------------------

class DomScreenAnalyzer:
    """Heuristic analysis from the cleaned DOM, run as a bounded batch."""

    def __init__(self, concurrency: int = 3, quality_threshold: float = QUALITY_SCORE_MIN):
        self.concurrency = concurrency
        self.quality_threshold = quality_threshold

    async def analyze(self, job_id: str, screens: Sequence["Screen"]) -> ScreenAnalysisReport:
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _one(screen: "Screen") -> ScreenAnalysis:
            async with semaphore:
                return await asyncio.get_event_loop().run_in_executor(None, self._analyze_one, screen)

        analyses = list(await asyncio.gather(*(_one(s) for s in screens)))
        if not analyses:
            return ScreenAnalysisReport(quality_threshold=self.quality_threshold)
        confident = sum(1 for a in analyses if a.confidence >= CONFIDENCE_THRESHOLD)
        avg = sum(a.confidence for a in analyses) / len(analyses)
        return ScreenAnalysisReport(
            analyses=analyses,
            quality_score=round(100 * confident / len(analyses), 1),
            quality_threshold=self.quality_threshold,
            avg_confidence=round(avg, 2),
        )

    @staticmethod
    def _analyze_one(screen: "Screen") -> ScreenAnalysis:
        soup = BeautifulSoup(screen.dom_html or "", "lxml")
        heading = soup.find(["h1", "h2"])
        title = heading.get_text(" ", strip=True) if heading else ""
        fields = []
        for el in soup.select("input, select, textarea"):
            if el.get("type") in ("hidden", "submit"):
                continue
            name = el.get("aria-label") or el.get("placeholder") or el.get("name") or ""
            fields.append({"name": name, "type": el.get("type") or el.name})
        confidence = 3.0
        confidence += 2 if title else 0
        confidence += 2 if fields or soup.select("table, [role='grid']") else 0
        confidence += 1 if screen.screenshot_url else 0
        confidence += 1 if screen.code_context else 0
        text = soup.get_text(" ", strip=True)
        return ScreenAnalysis(
            screen_id=screen.id,
            title=title or screen.route_path,
            summary=text[:280],
            fields=fields[:50],
            confidence=min(confidence, 10),
        )
