"""
Tests for the default collaborator implementations and the DOCX assembler.
"""

import asyncio
import json

import pytest
from docx import Document

from docucrawl.collaborators import (
    DescriptionPrdAnalyzer, DomScreenAnalyzer, PlanFileJourneyPlanner, RouteFileCodeAnalyzer, RouteJourneyPlanner,
)
from docucrawl.docx_exporter import DocxAssembler
from docucrawl.errors import CollaboratorError, SchemaMismatchError
from docucrawl.models import DiscoveryResult, Job, Screen
from docucrawl.schemas import CrawlPlan, Journey, RouteInfo, Step


class TestCodeAnalyzer:

    def test_reads_routes_json_in_directory(self, tmp_path):
        (tmp_path / "routes.json").write_text(json.dumps({"routes": [{"path": "/team"}], "framework": "remix"}))
        plan = asyncio.run(RouteFileCodeAnalyzer().analyze(str(tmp_path)))
        assert [r.path for r in plan.routes] == ["/team"]

    def test_missing_file_is_collaborator_error(self, tmp_path):
        with pytest.raises(CollaboratorError):
            asyncio.run(RouteFileCodeAnalyzer().analyze(str(tmp_path / "nope.json")))

    def test_bad_shape_is_schema_error(self, tmp_path):
        path = tmp_path / "routes.json"
        path.write_text('{"routes": "all of them"}')
        with pytest.raises(SchemaMismatchError):
            asyncio.run(RouteFileCodeAnalyzer().analyze(str(path)))


class TestPrdAnalyzer:

    def test_name_and_purpose(self):
        prd = asyncio.run(DescriptionPrdAnalyzer().summarize(
            "Acme Tasks helps small teams plan work. Boards show progress. Invites add members."
        ))
        assert prd.product_name == "Acme Tasks"
        assert prd.product_purpose == "Acme Tasks helps small teams plan work."
        assert len(prd.main_features) == 2


class TestPlanners:

    def test_plan_file_overflow_becomes_additional(self, tmp_path):
        path = tmp_path / "plan.json"
        path.write_text(json.dumps([
            {"id": f"j{i}", "title": f"J{i}", "steps": [{"action": "Open", "target_route": f"/r{i}"}]}
            for i in range(4)
        ]))
        plan = asyncio.run(PlanFileJourneyPlanner(str(path)).plan(CrawlPlan(), None, [], 3))
        assert [j.id for j in plan.journeys] == ["j0", "j1", "j2"]
        assert [j.id for j in plan.additional] == ["j3"]

    def test_route_planner_orders_and_skips(self):
        crawl_plan = CrawlPlan(routes=[
            RouteInfo(path="/settings", type="settings"),
            RouteInfo(path="/", type="other"),
            RouteInfo(path="/projects", type="list", modals=["New Project"]),
            RouteInfo(path="/projects/[id]", type="detail"),
            RouteInfo(path="/broken", type="list"),
        ])
        discovery = [DiscoveryResult(route="/broken", has_error=True)]
        plan = asyncio.run(RouteJourneyPlanner().plan(crawl_plan, None, discovery, 10))
        assert [j.steps[0].target_route for j in plan.journeys] == ["/", "/projects", "/settings"]
        assert plan.journeys[1].steps[0].capture == ["page", "modal:New Project"]


class TestScreenAnalyzer:

    def _screen(self, html, **kwargs):
        return Screen(job_id="j", url="https://a.com/x", route_path="/x", order_index=0, dom_html=html, **kwargs)

    def test_report_quality(self):
        rich = self._screen("<h1>Team</h1><form><input name='email'></form>", screenshot_url="https://cdn/x.png")
        bare = self._screen("<div></div>")
        report = asyncio.run(DomScreenAnalyzer(concurrency=2).analyze("j", [rich, bare]))
        assert report.quality_score == 50
        assert report.flagged_for_review
        by_id = {a.screen_id: a for a in report.analyses}
        assert by_id[rich.id].title == "Team"
        assert by_id[rich.id].fields == [{"name": "email", "type": "input"}]

    def test_empty_batch(self):
        report = asyncio.run(DomScreenAnalyzer().analyze("j", []))
        assert report.analyses == []


class TestDocxAssembler:

    def test_one_section_per_journey_with_screens(self, tmp_path):
        job = Job(owner_id="u1", app_url="https://a.com", app_name="Acme")
        journeys = [
            Journey(id="team", title="Manage the team", steps=[Step(action="Open", target_route="/team")]),
            Journey(id="empty", title="Never crawled", steps=[]),
        ]
        screens = [Screen(
            job_id=job.id, url="https://a.com/team", route_path="/team", order_index=0,
            journey_id="team", screenshot_url="https://cdn/x.png",
            analysis={"title": "Team", "summary": "Members list", "fields": [{"name": "email", "type": "input"}]},
        )]
        result = asyncio.run(DocxAssembler(str(tmp_path), include_toc=False).assemble(job, screens, journeys))

        assert result.sections == 1
        assert result.docs_url.endswith(f"{job.id}.docx")
        doc = Document(str(tmp_path / f"{job.id}.docx"))
        headings = [p.text for p in doc.paragraphs if p.style.name.startswith("Heading")]
        assert "Manage the team" in headings
        assert "Never crawled" not in headings
