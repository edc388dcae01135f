"""
Tests for the job orchestrator.

Covers:
  1. Job creation and the credit gate
  2. The full stage sequence on a happy path
  3. Stage failures: schema mismatch, budget, authentication, too few screens
  4. Credential scrubbing on every terminal path
  5. Concurrent jobs with independent sessions
"""

import asyncio
from contextlib import asynccontextmanager

import pytest

from docucrawl.collaborators import AssemblyResult
from docucrawl.driver import ObservedElement
from docucrawl.errors import BudgetExhaustedError, CollaboratorError
from docucrawl.models import Credentials, JobInput, JobStatus, MessageType, ScreenStatus
from docucrawl.orchestrator import JobOrchestrator, JobRunner
from docucrawl.schemas import CrawlPlan, RouteInfo
from docucrawl.store import InMemoryJobStore

from conftest import BASE_URL, LOGIN_URL, FakeDriver

CREDS = Credentials(username="ada@example.com", password="s3cret!")

PIPELINE = [
    JobStatus.ANALYZING_CODE,
    JobStatus.ANALYZING_PRD,
    JobStatus.DISCOVERING,
    JobStatus.PLANNING_JOURNEYS,
    JobStatus.CRAWLING,
    JobStatus.ANALYZING_SCREENS,
    JobStatus.GENERATING_DOCS,
]


class RecordingStore(InMemoryJobStore):
    """Remembers every persisted status and every job creation."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.statuses = []
        self.created = 0

    async def create_job(self, job):
        self.created += 1
        return await super().create_job(job)

    async def update_job(self, job_id, **changes):
        if "status" in changes:
            self.statuses.append(changes["status"])
        return await super().update_job(job_id, **changes)


class StaticCodeAnalyzer:

    def __init__(self, result):
        self.result = result

    async def analyze(self, repo_ref):
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


class TextPlanner:
    """Planner answering with raw model text."""

    def __init__(self, text):
        self.text = text

    async def plan(self, crawl_plan, prd, discovery, max_count):
        return self.text


class RecordingAssembler:

    def __init__(self):
        self.calls = []

    async def assemble(self, job, screens, journeys):
        self.calls.append((job.id, len(screens), len(journeys)))
        return AssemblyResult(docs_url=f"file:///docs/{job.id}.docx", sections=len(journeys))


ROUTE_PLAN = CrawlPlan(
    routes=[RouteInfo(path="/dashboard"), RouteInfo(path="/projects", type="list"), RouteInfo(path="/team")],
    framework="nextjs",
)


def make_orchestrator(store, factory, content_store, config, **overrides):
    collaborators = {
        "code_analyzer": StaticCodeAnalyzer(ROUTE_PLAN),
        "assembler": RecordingAssembler(),
    }
    collaborators.update(overrides)
    return JobOrchestrator(store, content_store, factory, config, **collaborators)


def job_input(**overrides):
    values = dict(app_url=BASE_URL, login_url=LOGIN_URL, credentials=CREDS, repo_ref="repo")
    values.update(overrides)
    return JobInput(**values)


def create_and_run(orchestrator, owner="u1", **overrides):
    async def _go():
        job = await orchestrator.create_job(owner, job_input(**overrides))
        return await orchestrator.run(job.id)

    return asyncio.run(_go())


@pytest.fixture
def store():
    return RecordingStore()


# ====================================================================
# 1. Creation
# ====================================================================

class TestCreateJob:

    def test_queued_with_defaults(self, store, factory, content_store, config):
        orch = make_orchestrator(store, factory, content_store, config)
        job = asyncio.run(orch.create_job("u1", job_input()))
        assert job.status is JobStatus.QUEUED
        assert job.max_screens == config.max_screens
        assert job.credits_snapshot_cents == 300

    def test_max_screens_override(self, store, factory, content_store, config):
        orch = make_orchestrator(store, factory, content_store, config)
        job = asyncio.run(orch.create_job("u1", job_input(max_screens=7)))
        assert job.max_screens == 7

    def test_no_credits_creates_nothing(self, store, factory, content_store, config):
        asyncio.run(store.set_credits("broke", 0))
        orch = make_orchestrator(store, factory, content_store, config)
        with pytest.raises(BudgetExhaustedError):
            asyncio.run(orch.create_job("broke", job_input()))
        assert store.created == 0
        assert factory.opened == 0

    def test_only_queued_jobs_run(self, store, factory, content_store, config):
        orch = make_orchestrator(store, factory, content_store, config)
        job = create_and_run(orch)
        with pytest.raises(ValueError):
            asyncio.run(orch.run(job.id))


# ====================================================================
# 2. Happy path
# ====================================================================

class TestPipeline:

    def test_stages_persist_in_order(self, store, factory, content_store, config):
        job = create_and_run(make_orchestrator(store, factory, content_store, config))
        assert job.status is JobStatus.COMPLETED, job.error
        assert store.statuses == PIPELINE + [JobStatus.COMPLETED]

    def test_result_payload(self, store, factory, content_store, config):
        job = create_and_run(make_orchestrator(store, factory, content_store, config))
        assert job.result["total_screens"] == 3
        assert job.result["journeys_documented"] == 3
        assert job.result["docs_url"].endswith(".docx")
        assert job.actual_cost_cents <= job.estimated_cost_cents
        assert job.completed_at is not None
        assert job.error is None

    def test_credits_charged(self, store, factory, content_store, config):
        job = create_and_run(make_orchestrator(store, factory, content_store, config))
        assert asyncio.run(store.get_credits("u1")) == 300 - job.actual_cost_cents

    def test_quality_score_recorded(self, store, factory, content_store, config):
        job = create_and_run(make_orchestrator(store, factory, content_store, config))
        assert job.quality_score == 100
        assert job.flagged_for_review is False

    def test_screens_marked_analyzed(self, store, factory, content_store, config):
        job = create_and_run(make_orchestrator(store, factory, content_store, config))
        screens = asyncio.run(store.list_screens(job.id))
        assert all(s.status is ScreenStatus.ANALYZED and s.confidence is not None for s in screens)

    def test_app_name_detected(self, store, factory, content_store, config):
        job = create_and_run(make_orchestrator(store, factory, content_store, config))
        assert job.app_name == "Acme"

    def test_summaries_and_discovery_stored(self, store, factory, content_store, config):
        job = create_and_run(make_orchestrator(store, factory, content_store, config))
        assert job.code_analysis_summary.startswith("Found 3 routes (nextjs)")
        assert len(job.discovery_data) == 3
        assert [j["id"] for j in job.journeys][0] == "dashboard"

    def test_complete_message_last(self, store, factory, content_store, config):
        job = create_and_run(make_orchestrator(store, factory, content_store, config))
        messages = asyncio.run(store.list_progress(job.id))
        assert messages[-1].type is MessageType.COMPLETE

    def test_every_session_released(self, store, factory, content_store, config):
        create_and_run(make_orchestrator(store, factory, content_store, config))
        assert factory.opened == 2
        assert factory.closed == 2

    def test_collaborator_outage_degrades_to_navigation(self, store, factory, content_store, config):
        factory.driver.nav = [
            ObservedElement(description="Projects", href="/projects"),
            ObservedElement(description="Team", href="/team"),
        ]
        orch = make_orchestrator(
            store, factory, content_store, config,
            code_analyzer=StaticCodeAnalyzer(CollaboratorError("analysis service unreachable")),
        )
        job = create_and_run(orch)
        assert job.status is JobStatus.COMPLETED, job.error
        assert "unavailable" in job.code_analysis_summary
        assert job.result["total_screens"] == 2

    def test_status_snapshot(self, store, factory, content_store, config):
        orch = make_orchestrator(store, factory, content_store, config)
        job = create_and_run(orch)
        snapshot = asyncio.run(orch.status(job.id, recent=3))
        assert snapshot["status"] == "completed"
        assert len(snapshot["messages"]) == 3


# ====================================================================
# 3. Stage failures
# ====================================================================

class TestStageFailures:

    def test_planner_schema_mismatch_fails_job(self, store, factory, content_store, config):
        orch = make_orchestrator(
            store, factory, content_store, config,
            planner=TextPlanner("Sorry, I can only suggest journeys in prose."),
        )
        job = create_and_run(orch)
        assert job.status is JobStatus.FAILED
        assert "journey_plan@v1" in job.error
        assert store.statuses[-2:] == [JobStatus.PLANNING_JOURNEYS, JobStatus.FAILED]
        assert asyncio.run(store.list_screens(job.id)) == []

    def test_code_analysis_schema_mismatch_fails_job(self, store, factory, content_store, config):
        orch = make_orchestrator(
            store, factory, content_store, config,
            code_analyzer=StaticCodeAnalyzer({"routes": [{"component": "NoPath"}]}),
        )
        job = create_and_run(orch)
        assert job.status is JobStatus.FAILED
        assert store.statuses == [JobStatus.ANALYZING_CODE, JobStatus.FAILED]

    def test_no_affordable_journey_fails_planning(self, store, factory, content_store, config):
        asyncio.run(store.set_credits("u1", 100))
        job = create_and_run(make_orchestrator(store, factory, content_store, config))
        assert job.status is JobStatus.FAILED
        assert store.statuses[-2] is JobStatus.PLANNING_JOURNEYS
        assert "does not cover a single journey" in job.error

    def test_authentication_failure_fails_job(self, store, factory, content_store, config):
        factory.driver.accept_login = False
        job = create_and_run(make_orchestrator(store, factory, content_store, config))
        assert job.status is JobStatus.FAILED
        assert store.statuses[-2] is JobStatus.DISCOVERING
        assert factory.opened == factory.closed == 1

    def test_too_few_screens_fails_after_crawl(self, store, factory, content_store, config):
        config.min_screens = 5
        job = create_and_run(make_orchestrator(store, factory, content_store, config))
        assert job.status is JobStatus.FAILED
        assert "Only 3 screens captured" in job.error
        assert len(asyncio.run(store.list_screens(job.id))) == 3
        assert job.quality_score is None

    def test_error_message_posted(self, store, factory, content_store, config):
        factory.driver.accept_login = False
        job = create_and_run(make_orchestrator(store, factory, content_store, config))
        messages = asyncio.run(store.list_progress(job.id))
        assert messages[-1].type is MessageType.ERROR


# ====================================================================
# 4. Credentials
# ====================================================================

class TestCredentialScrub:

    def test_scrubbed_after_success(self, store, factory, content_store, config):
        job = create_and_run(make_orchestrator(store, factory, content_store, config))
        assert job.credentials is None

    def test_scrubbed_after_failure_before_crawl(self, store, factory, content_store, config):
        factory.driver.accept_login = False
        job = create_and_run(make_orchestrator(store, factory, content_store, config))
        assert job.credentials is None

    def test_scrubbed_when_crawl_fails(self, store, factory, content_store, config):
        config.min_screens = 50
        job = create_and_run(make_orchestrator(store, factory, content_store, config))
        assert job.status is JobStatus.FAILED
        assert job.credentials is None

    def test_credentials_never_serialized(self, store, factory, content_store, config):
        orch = make_orchestrator(store, factory, content_store, config)
        job = asyncio.run(orch.create_job("u1", job_input()))
        assert "s3cret!" not in str(job.to_dict())


# ====================================================================
# 5. Concurrent jobs
# ====================================================================

class FreshDriverFactory:
    """A new ``FakeDriver`` per session, as a real browser factory would."""

    def __init__(self):
        self.opened = 0
        self.closed = 0

    @asynccontextmanager
    async def __call__(self):
        self.opened += 1
        try:
            yield FakeDriver()
        finally:
            self.closed += 1


class TestJobRunner:

    def test_jobs_run_concurrently_with_own_sessions(self, store, content_store, config):
        factory = FreshDriverFactory()
        orch = make_orchestrator(store, factory, content_store, config)

        async def _go():
            a = await orch.create_job("u1", job_input())
            b = await orch.create_job("u2", job_input())
            return await JobRunner(orch, max_concurrent=2).run_many([a.id, b.id])

        jobs = asyncio.run(_go())
        assert [j.status for j in jobs] == [JobStatus.COMPLETED, JobStatus.COMPLETED]
        assert factory.opened == factory.closed == 4
