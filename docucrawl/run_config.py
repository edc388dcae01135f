"""
Unified Run Configuration
=========================
Single source of truth for every docucrawl default and runtime limit.

The orchestrator, crawl engine, discovery sweep, dedup filter and budget
controller all read from this object.  CLI flags and ``DOCUCRAWL_*``
environment variables populate it; the cost model is built *from* it.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

from .budget import CostModel

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Canonical defaults: the ONLY place these numbers live
# ---------------------------------------------------------------------------
_DEFAULTS = {
    "max_screens": 50,
    "min_screens": 2,                # fewer than this fails the crawl stage
    "viewport_width": 1280,
    "viewport_height": 800,
    "page_timeout_ms": 30_000,       # explicit-path navigation
    "discovery_timeout_ms": 45_000,  # pre-crawl sweep, per route
    "network_idle_timeout_ms": 10_000,
    "settle_delay_s": 1.0,           # used when network idle never fires
    "trigger_delay_s": 0.8,          # after opening a modal / tab / dropdown
    "login_verify_delay_s": 3.0,
    "upload_retry_delay_s": 3.0,
    "dedup_threshold": 0.95,
    "shingle_size": 5,
    "dom_max_tokens": 4000,
    "analysis_concurrency": 3,
    "screens_per_journey": 4,
    "max_journeys": 6,
    # Cost model (cents)
    "cost_fixed_overhead": 65,
    "cost_per_journey": 20,
    "cost_per_screen_analysis": 3,
    "cost_per_prose": 8,
    "cost_cross_cutting": 10,
    "default_credits_cents": 300,
    "headless": True,
    "user_agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
    ),
}


def _env(name: str, default, cast=str):
    raw = os.environ.get(f"DOCUCRAWL_{name.upper()}")
    if raw is None or raw == "":
        return default
    if cast is bool:
        return raw.strip().lower() in ("1", "true", "yes", "on")
    try:
        return cast(raw)
    except ValueError:
        logger.warning(f"[CONFIG] Ignoring invalid DOCUCRAWL_{name.upper()}={raw!r}")
        return default


@dataclass
class RunConfig:
    """
    Configuration consumed by every docucrawl subsystem.

    Populate via:
      - ``RunConfig()``                 → all defaults
      - ``RunConfig(max_screens=10)``   → override one value
      - ``RunConfig.from_env()``        → ``DOCUCRAWL_*`` environment variables
      - ``RunConfig.from_cli_args(ns)`` → argparse Namespace
    """

    # ---- Capture limits ----
    max_screens: int = _DEFAULTS["max_screens"]
    min_screens: int = _DEFAULTS["min_screens"]
    viewport_width: int = _DEFAULTS["viewport_width"]
    viewport_height: int = _DEFAULTS["viewport_height"]

    # ---- Timing ----
    page_timeout_ms: int = _DEFAULTS["page_timeout_ms"]
    discovery_timeout_ms: int = _DEFAULTS["discovery_timeout_ms"]
    network_idle_timeout_ms: int = _DEFAULTS["network_idle_timeout_ms"]
    settle_delay_s: float = _DEFAULTS["settle_delay_s"]
    trigger_delay_s: float = _DEFAULTS["trigger_delay_s"]
    login_verify_delay_s: float = _DEFAULTS["login_verify_delay_s"]
    upload_retry_delay_s: float = _DEFAULTS["upload_retry_delay_s"]

    # ---- Dedup / DOM ----
    dedup_threshold: float = _DEFAULTS["dedup_threshold"]
    shingle_size: int = _DEFAULTS["shingle_size"]
    dom_max_tokens: int = _DEFAULTS["dom_max_tokens"]

    # ---- Planning / budget ----
    analysis_concurrency: int = _DEFAULTS["analysis_concurrency"]
    screens_per_journey: int = _DEFAULTS["screens_per_journey"]
    max_journeys: Optional[int] = _DEFAULTS["max_journeys"]
    cost_fixed_overhead: int = _DEFAULTS["cost_fixed_overhead"]
    cost_per_journey: int = _DEFAULTS["cost_per_journey"]
    cost_per_screen_analysis: int = _DEFAULTS["cost_per_screen_analysis"]
    cost_per_prose: int = _DEFAULTS["cost_per_prose"]
    cost_cross_cutting: int = _DEFAULTS["cost_cross_cutting"]
    default_credits_cents: int = _DEFAULTS["default_credits_cents"]

    # ---- Browser ----
    headless: bool = _DEFAULTS["headless"]
    user_agent: str = _DEFAULTS["user_agent"]

    # -----------------------------------------------------------------------
    # Factory helpers
    # -----------------------------------------------------------------------
    @classmethod
    def from_env(cls) -> "RunConfig":
        """Build config from ``DOCUCRAWL_*`` environment variables."""
        kwargs = {}
        for name, default in _DEFAULTS.items():
            if name == "max_journeys":
                kwargs[name] = _env(name, default, int)
            elif isinstance(default, bool):
                kwargs[name] = _env(name, default, bool)
            elif isinstance(default, (int, float, str)):
                kwargs[name] = _env(name, default, type(default))
        return cls(**kwargs)

    @classmethod
    def from_cli_args(cls, args) -> "RunConfig":
        """Build config from an argparse Namespace (``__main__.py``).

        Environment values are the base; explicit flags win.
        """
        cfg = cls.from_env()
        if getattr(args, "max_screens", None) is not None:
            cfg.max_screens = args.max_screens
        if getattr(args, "min_screens", None) is not None:
            cfg.min_screens = args.min_screens
        if getattr(args, "dedup_threshold", None) is not None:
            cfg.dedup_threshold = args.dedup_threshold
        if getattr(args, "max_journeys", None) is not None:
            cfg.max_journeys = args.max_journeys
        if getattr(args, "headed", False):
            cfg.headless = False
        return cfg

    # -----------------------------------------------------------------------
    # Converters
    # -----------------------------------------------------------------------
    def cost_model(self) -> CostModel:
        """Return the ``CostModel`` used by the budget controller."""
        return CostModel(
            fixed_overhead=self.cost_fixed_overhead,
            per_journey=self.cost_per_journey,
            per_screen_analysis=self.cost_per_screen_analysis,
            per_prose=self.cost_per_prose,
            cross_cutting=self.cost_cross_cutting,
        )

    @property
    def viewport(self) -> dict:
        return {"width": self.viewport_width, "height": self.viewport_height}

    def log_summary(self) -> None:
        """Log the active configuration (one line per group)."""
        logger.info(
            f"[CONFIG] screens={self.max_screens} (min {self.min_screens}) | "
            f"viewport={self.viewport_width}x{self.viewport_height} | "
            f"headless={self.headless}"
        )
        logger.info(
            f"[CONFIG] timeouts: page={self.page_timeout_ms}ms "
            f"discovery={self.discovery_timeout_ms}ms "
            f"idle={self.network_idle_timeout_ms}ms settle={self.settle_delay_s}s"
        )
        logger.info(
            f"[CONFIG] dedup>{self.dedup_threshold} (k={self.shingle_size}) | "
            f"max_journeys={self.max_journeys} | "
            f"cost: {self.cost_fixed_overhead}+{self.cost_per_journey}/journey"
        )
