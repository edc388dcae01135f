"""
Data Model
==========
Dataclasses shared by the orchestrator, the crawl engine and the stores.

Journey / Step / route metadata arrive from collaborators and are validated
pydantic models (see ``schemas.py``); everything the core itself creates
lives here.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class JobStatus(str, Enum):
    """Pipeline stages in execution order, plus the ``failed`` terminal."""

    QUEUED = "queued"
    ANALYZING_CODE = "analyzing_code"
    ANALYZING_PRD = "analyzing_prd"
    DISCOVERING = "discovering"
    PLANNING_JOURNEYS = "planning_journeys"
    CRAWLING = "crawling"
    ANALYZING_SCREENS = "analyzing_screens"
    GENERATING_DOCS = "generating_docs"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)

    @property
    def rank(self) -> int:
        """Position in the pipeline (``failed`` has no rank: -1)."""
        if self is JobStatus.FAILED:
            return -1
        return STAGE_ORDER.index(self)


STAGE_ORDER: List[JobStatus] = [s for s in JobStatus if s is not JobStatus.FAILED]


class ScreenType(str, Enum):
    PAGE = "page"
    MODAL = "modal"
    TAB = "tab"
    DRAWER = "drawer"


class ScreenStatus(str, Enum):
    DISCOVERED = "discovered"
    CRAWLED = "crawled"
    ANALYZED = "analyzed"
    FAILED = "failed"


class MessageType(str, Enum):
    INFO = "info"
    SCREENSHOT = "screenshot"
    QUESTION = "question"
    ERROR = "error"
    COMPLETE = "complete"


# ---------------------------------------------------------------------------
# Job
# ---------------------------------------------------------------------------

@dataclass
class Credentials:
    """Login credentials.  Never logged, erased after the crawl stage."""

    username: str = ""
    password: str = ""

    @property
    def is_complete(self) -> bool:
        return bool(self.username and self.password)

    def __repr__(self) -> str:
        user_hint = f"{self.username[:3]}***" if self.username else "<none>"
        return f"Credentials(username={user_hint!r}, password=<redacted>)"


@dataclass
class JobInput:
    """What the caller supplies when creating a job."""

    app_url: str
    login_url: Optional[str] = None
    credentials: Optional[Credentials] = None
    repo_ref: Optional[str] = None
    product_description: Optional[str] = None
    app_name: Optional[str] = None
    max_screens: Optional[int] = None


@dataclass
class JobProgress:
    screens_found: int = 0
    screens_crawled: int = 0
    current_step: str = ""


@dataclass
class Job:
    owner_id: str
    app_url: str
    id: str = field(default_factory=new_id)
    status: JobStatus = JobStatus.QUEUED
    login_url: Optional[str] = None
    credentials: Optional[Credentials] = None
    repo_ref: Optional[str] = None
    product_description: Optional[str] = None
    app_name: Optional[str] = None
    max_screens: int = 50

    # ---- Budget ----
    credits_snapshot_cents: int = 0
    estimated_cost_cents: Optional[int] = None
    actual_cost_cents: Optional[int] = None

    # ---- Progress ----
    progress: JobProgress = field(default_factory=JobProgress)
    code_analysis_summary: Optional[str] = None
    prd_analysis_summary: Optional[str] = None
    discovery_data: List[Dict[str, Any]] = field(default_factory=list)
    journeys: List[Dict[str, Any]] = field(default_factory=list)
    additional_journeys: List[Dict[str, Any]] = field(default_factory=list)

    # ---- Terminal ----
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    quality_score: Optional[float] = None
    flagged_for_review: bool = False

    # ---- Timestamps ----
    created_at: str = field(default_factory=utcnow)
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        data["credentials"] = None if self.credentials is None else "<redacted>"
        return data


# ---------------------------------------------------------------------------
# Crawl artifacts
# ---------------------------------------------------------------------------

@dataclass
class Screen:
    job_id: str
    url: str
    route_path: str
    order_index: int
    id: str = field(default_factory=new_id)
    nav_path: Optional[str] = None
    screenshot_url: str = ""
    screenshot_label: str = ""
    dom_html: str = ""
    code_context: Optional[Dict[str, Any]] = None
    screen_type: ScreenType = ScreenType.PAGE
    journey_id: Optional[str] = None
    journey_step: Optional[int] = None
    created_entity_id: Optional[str] = None
    status: ScreenStatus = ScreenStatus.CRAWLED
    confidence: Optional[float] = None
    analysis: Optional[Dict[str, Any]] = None
    created_at: str = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["screen_type"] = self.screen_type.value
        data["status"] = self.status.value
        return data


@dataclass
class ProgressMessage:
    job_id: str
    type: MessageType
    message: str
    screenshot_url: Optional[str] = None
    created_at: str = field(default_factory=utcnow)


@dataclass
class CrawlError:
    journey_id: str
    step_index: int
    action: str
    error: str


@dataclass
class CrawlResult:
    screens: List[Screen] = field(default_factory=list)
    errors: List[CrawlError] = field(default_factory=list)
    total_duration_ms: int = 0
    journeys_crawled: int = 0
    stopped_at_cap: bool = False


@dataclass
class DiscoveryResult:
    route: str
    actual_url: str = ""
    page_title: str = ""
    is_accessible: bool = False
    has_form: bool = False
    has_table: bool = False
    has_error: bool = False
    nav_elements: List[str] = field(default_factory=list)
    screenshot_url: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class CostEstimate:
    journeys_planned: int
    journeys_available: int
    screens_estimated: int
    estimated_cost_cents: int
    user_credits_cents: int
    features_cut_for_budget: int = 0

    @property
    def fits(self) -> bool:
        return self.estimated_cost_cents <= self.user_credits_cents
