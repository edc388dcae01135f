"""
Budget Controller
=================
Estimates, trims and reconciles the monetary cost of a job.

Responsibilities:
    1. ``estimate()``    cost in cents for N journeys.
    2. ``check_credits()`` cheap balance read used at job creation.
    3. ``trim_plan()``   highest-priority subset of journeys that fits.
    4. ``reconcile()`` / ``charge()`` actual cost at completion.

The controller is advisory before the crawl: it never interrupts a crawl
that is already running.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional, Sequence

from .models import CostEstimate

if TYPE_CHECKING:
    from .schemas import Journey
    from .store import JobStore

logger = logging.getLogger(__name__)


def format_cost_cents(cents: int) -> str:
    return f"${cents / 100:.2f}"


def sort_journeys(journeys: Sequence["Journey"]) -> List["Journey"]:
    """Ascending priority; within one priority, data-creating journeys first."""
    return sorted(journeys, key=lambda j: (j.priority, 0 if j.creates_data else 1))


@dataclass
class CostModel:
    """Per-unit costs in cents."""

    fixed_overhead: int = 65
    per_journey: int = 20
    per_screen_analysis: int = 3
    per_prose: int = 8
    cross_cutting: int = 10

    def journey_cost(self, screens_per_journey: int) -> int:
        return self.per_journey + screens_per_journey * self.per_screen_analysis + self.per_prose

    @property
    def base_cost(self) -> int:
        return self.fixed_overhead + self.cross_cutting


@dataclass
class CreditCheck:
    has_credits: bool
    credits: int


@dataclass
class BudgetPlan:
    selected: List["Journey"] = field(default_factory=list)
    additional: List["Journey"] = field(default_factory=list)
    estimate: Optional[CostEstimate] = None


class BudgetController:
    """Cost estimation and credit bookkeeping for one store of owners.

    Usage::

        budget = BudgetController(store, CostModel(), screens_per_journey=4)
        check = await budget.check_credits(owner_id)
        plan = budget.trim_plan(journeys, check.credits)
    """

    def __init__(
        self,
        store: "JobStore",
        cost_model: Optional[CostModel] = None,
        *,
        screens_per_journey: int = 4,
        max_journeys: Optional[int] = None,
    ):
        self.store = store
        self.cost_model = cost_model or CostModel()
        self.screens_per_journey = screens_per_journey
        self.max_journeys = max_journeys

    # ------------------------------------------------------------------
    # Estimation
    # ------------------------------------------------------------------

    def estimate(self, planned_journeys: int, screens_per_journey: Optional[int] = None) -> int:
        """Estimated cost in cents for ``planned_journeys`` journeys."""
        spj = self.screens_per_journey if screens_per_journey is None else screens_per_journey
        model = self.cost_model
        return model.base_cost + planned_journeys * model.journey_cost(spj)

    def max_affordable(self, credits: int, screens_per_journey: Optional[int] = None) -> int:
        """Largest journey count whose estimate fits ``credits``."""
        spj = self.screens_per_journey if screens_per_journey is None else screens_per_journey
        per_journey = self.cost_model.journey_cost(spj)
        room = credits - self.cost_model.base_cost
        if room < 0:
            return 0
        if per_journey <= 0:
            count = self.max_journeys if self.max_journeys is not None else 10_000
        else:
            count = room // per_journey
        if self.max_journeys is not None:
            count = min(count, self.max_journeys)
        return max(0, count)

    # ------------------------------------------------------------------
    # Credits
    # ------------------------------------------------------------------

    async def check_credits(self, user_id: str) -> CreditCheck:
        credits = await self.store.get_credits(user_id)
        return CreditCheck(has_credits=credits > 0, credits=credits)

    # ------------------------------------------------------------------
    # Plan trimming
    # ------------------------------------------------------------------

    def trim_plan(self, journeys: Sequence["Journey"], credits: int) -> BudgetPlan:
        """Keep the highest-priority journeys whose estimate fits ``credits``.

        Journeys that do not fit are returned as ``additional`` items the
        caller may unlock separately.
        """
        ordered = sort_journeys(journeys)
        limit = min(len(ordered), self.max_affordable(credits))
        selected, additional = ordered[:limit], ordered[limit:]
        estimate = CostEstimate(
            journeys_planned=len(selected),
            journeys_available=len(ordered),
            screens_estimated=len(selected) * self.screens_per_journey,
            estimated_cost_cents=self.estimate(len(selected)),
            user_credits_cents=credits,
            features_cut_for_budget=len(additional),
        )
        if additional:
            logger.info(
                f"[BUDGET] Trimmed plan to {len(selected)}/{len(ordered)} journeys "
                f"({format_cost_cents(estimate.estimated_cost_cents)} of "
                f"{format_cost_cents(credits)})"
            )
        else:
            logger.info(
                f"[BUDGET] All {len(selected)} journeys fit "
                f"({format_cost_cents(estimate.estimated_cost_cents)} of "
                f"{format_cost_cents(credits)})"
            )
        return BudgetPlan(selected=selected, additional=additional, estimate=estimate)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile(self, estimate: CostEstimate, journeys_crawled: int, screens_captured: int) -> int:
        """Actual cost in cents, never above the estimate."""
        model = self.cost_model
        actual = (
            model.base_cost
            + journeys_crawled * (model.per_journey + model.per_prose)
            + screens_captured * model.per_screen_analysis
        )
        return min(actual, estimate.estimated_cost_cents)

    async def charge(self, user_id: str, cents: int) -> int:
        """Deduct ``cents`` from the owner's balance (floored at zero)."""
        credits = await self.store.get_credits(user_id)
        remaining = max(0, credits - cents)
        await self.store.set_credits(user_id, remaining)
        logger.info(
            f"[BUDGET] Charged {format_cost_cents(cents)} — "
            f"{format_cost_cents(remaining)} remaining"
        )
        return remaining
