"""
Collaborator Schemas
====================
Versioned pydantic schemas for every payload docucrawl accepts from an
external collaborator (route planner, PRD summarizer, journey planner,
screen analyzer).

Collaborator answers usually arrive as model-generated text.  Nothing
downstream trusts a field until ``parse_response`` has validated the whole
shape; a mismatch raises ``SchemaMismatchError`` which the orchestrator
treats as a stage failure.
"""

from __future__ import annotations

import json
import re
from typing import Any, ClassVar, Dict, List, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import SchemaMismatchError

USE_NAVIGATION = "use_navigation"

_CAPTURE_KINDS = ("page", "modal", "tab", "dropdown", "drawer")
_FULL_PAGE_ALIASES = ("page", "full page", "full_page", "fullpage", "full-page")


class _Schema(BaseModel):
    """Base for boundary schemas: unknown keys are ignored, not fatal."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    schema_name: ClassVar[str] = ""
    schema_version: ClassVar[int] = 1


# ---------------------------------------------------------------------------
# Route plan (code analysis)
# ---------------------------------------------------------------------------

class RouteInfo(_Schema):
    path: str
    component: str = ""
    type: str = "other"
    fields: List[str] = Field(default_factory=list)
    modals: List[str] = Field(default_factory=list)
    permissions: List[str] = Field(default_factory=list)
    api_calls: List[str] = Field(default_factory=list, alias="apiCalls")

    @field_validator("path")
    @classmethod
    def _leading_slash(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("route path is empty")
        if v.startswith(("http://", "https://")):
            return v
        return v if v.startswith("/") else f"/{v}"


class CrawlPlan(_Schema):
    schema_name: ClassVar[str] = "crawl_plan"

    routes: List[RouteInfo] = Field(default_factory=list)
    framework: str = "unknown"
    auth_method: str = "unknown"


# ---------------------------------------------------------------------------
# PRD summary
# ---------------------------------------------------------------------------

class PRDSummary(_Schema):
    schema_name: ClassVar[str] = "prd_summary"

    product_name: str = ""
    product_purpose: str = ""
    target_users: List[str] = Field(default_factory=list)
    main_features: List[Dict[str, Any]] = Field(default_factory=list)
    key_workflows: List[Dict[str, Any]] = Field(default_factory=list)
    user_roles: List[str] = Field(default_factory=list)
    terminology: Dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Journey plan
# ---------------------------------------------------------------------------

class Capture(BaseModel):
    """One parsed capture instruction (``page`` or ``<kind>:<name>``)."""

    kind: str
    name: str = ""

    @classmethod
    def parse(cls, raw: str) -> "Capture":
        text = raw.strip()
        if text.lower() in _FULL_PAGE_ALIASES:
            return cls(kind="page")
        kind, sep, name = text.partition(":")
        kind = kind.strip().lower()
        if not sep or kind not in _CAPTURE_KINDS or not name.strip():
            raise ValueError(f"unrecognised capture {raw!r}")
        return cls(kind=kind, name=name.strip())

    @property
    def label(self) -> str:
        if self.kind == "page":
            return "page"
        slug = re.sub(r"[^a-z0-9]+", "-", self.name.lower()).strip("-")
        return f"{self.kind}-{slug}"


class Step(_Schema):
    action: str
    target_route: str = USE_NAVIGATION
    interaction: Optional[str] = None
    capture: List[str] = Field(default_factory=lambda: ["page"])
    creates_data: bool = False

    @field_validator("capture", mode="before")
    @classmethod
    def _capture_list(cls, v):
        if v is None:
            return ["page"]
        if isinstance(v, str):
            return [v]
        return v

    @field_validator("capture")
    @classmethod
    def _valid_captures(cls, v: List[str]) -> List[str]:
        for item in v:
            Capture.parse(item)
        return v

    @property
    def captures(self) -> List[Capture]:
        return [Capture.parse(c) for c in self.capture]

    @property
    def uses_navigation(self) -> bool:
        return self.target_route == USE_NAVIGATION


class Journey(_Schema):
    id: str
    title: str
    description: str = ""
    priority: int = 100
    steps: List[Step] = Field(default_factory=list)

    @property
    def creates_data(self) -> bool:
        return any(step.creates_data for step in self.steps)

    @property
    def routes(self) -> List[str]:
        return [s.target_route for s in self.steps if not s.uses_navigation]


class JourneyPlan(_Schema):
    schema_name: ClassVar[str] = "journey_plan"

    journeys: List[Journey] = Field(default_factory=list)
    additional: List[Journey] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Screen analysis
# ---------------------------------------------------------------------------

class ScreenAnalysis(_Schema):
    schema_name: ClassVar[str] = "screen_analysis"

    screen_id: str
    title: str = ""
    summary: str = ""
    fields: List[Dict[str, Any]] = Field(default_factory=list)
    confidence: float = Field(ge=0, le=10)


class ScreenAnalysisReport(_Schema):
    schema_name: ClassVar[str] = "screen_analysis_report"

    analyses: List[ScreenAnalysis] = Field(default_factory=list)
    quality_score: float = Field(default=0, ge=0, le=100)
    quality_threshold: float = 60
    avg_confidence: float = 0

    @property
    def flagged_for_review(self) -> bool:
        return self.quality_score < self.quality_threshold


# ---------------------------------------------------------------------------
# Validation entry point
# ---------------------------------------------------------------------------

M = TypeVar("M", bound=BaseModel)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def _strip_fences(text: str) -> str:
    return _FENCE_RE.sub("", text.strip())


def parse_response(raw: Union[str, bytes, dict, list, BaseModel], model: Type[M]) -> M:
    """Validate a collaborator response against ``model``.

    Accepts raw JSON text (optionally wrapped in a markdown code fence),
    an already-decoded dict, or an instance of the model.  A bare list is
    accepted for ``JourneyPlan`` and taken as its ``journeys``.

    Raises:
        SchemaMismatchError: the payload is not JSON or does not match.
    """
    name = f"{getattr(model, 'schema_name', '') or model.__name__}@v{getattr(model, 'schema_version', 1)}"
    if isinstance(raw, model):
        return raw
    data: Any = raw
    if isinstance(raw, bytes):
        data = raw.decode("utf-8", errors="replace")
    if isinstance(data, str):
        try:
            data = json.loads(_strip_fences(data))
        except json.JSONDecodeError as exc:
            raise SchemaMismatchError(name, f"invalid JSON ({exc.msg})") from exc
    if isinstance(data, list) and model is JourneyPlan:
        data = {"journeys": data}
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        where = ".".join(str(p) for p in first.get("loc", ()))
        detail = f"{where}: {first.get('msg', str(exc))}" if where else str(exc)
        raise SchemaMismatchError(name, detail) from exc
