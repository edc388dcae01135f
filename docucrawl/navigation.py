"""
Navigation Discovery
====================
Degraded-mode substitute for a static route plan.

Asks the automation driver to enumerate the visible navigational elements
(sidebar, top bar, menus) of the current page and turns them into route
descriptors usable as crawl targets.  Also used as a fallback when an
explicit navigation fails, or when a step requests dynamic navigation
without an interaction of its own.

Never called when a static route plan already covers the needed path.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, List, Optional, Tuple
from urllib.parse import urlparse

from .schemas import RouteInfo
from .urls import join_url, route_matches, route_path, same_origin, slugify

if TYPE_CHECKING:
    from .driver import AutomationDriver, ObservedElement

logger = logging.getLogger(__name__)

OBSERVE_INSTRUCTION = (
    "Find all navigation links in the sidebar, top navigation bar, header, "
    "and any dropdown menus. Return each link with its text and URL."
)


class NavigationDiscovery:
    """Enumerate and follow in-app navigation targets for one application."""

    def __init__(self, base_url: str):
        self.base_url = base_url

    def _element_path(self, element: "ObservedElement") -> Optional[str]:
        """Same-app path of an element, synthesized from its label when no href."""
        href = (element.href or "").strip()
        if href and not href.startswith(("javascript:", "#", "mailto:", "tel:")):
            if href.startswith(("http://", "https://")):
                return route_path(href) if same_origin(href, self.base_url) else None
            if href.startswith("/"):
                return href.split("?", 1)[0].split("#", 1)[0]
            return route_path(join_url(self.base_url, href))
        slug = slugify(element.description)
        return f"/{slug}" if slug else None

    async def _observe(self, driver: "AutomationDriver") -> List[Tuple[str, "ObservedElement"]]:
        try:
            elements = await driver.observe(OBSERVE_INSTRUCTION)
        except Exception as exc:
            # Discovery is best-effort; a broken page yields no routes
            logger.error(f"[NAV] Navigation discovery failed: {exc}")
            return []
        pairs = []
        for element in elements:
            path = self._element_path(element)
            if path:
                pairs.append((path, element))
        return pairs

    async def discover(self, driver: "AutomationDriver") -> List[RouteInfo]:
        """Route descriptors for every distinct navigation target on the page."""
        routes: List[RouteInfo] = []
        seen = set()
        for path, element in await self._observe(driver):
            if path in seen:
                continue
            seen.add(path)
            routes.append(RouteInfo(path=path, component=element.description, type="other"))
        logger.info(f"[NAV] Discovered {len(routes)} navigation targets")
        return routes

    async def find_target(self, driver: "AutomationDriver", wanted: str) -> Optional["ObservedElement"]:
        """Best navigation element for a route path or a free-text label."""
        wanted_path = urlparse(wanted).path if "://" in wanted else wanted
        wanted_slug = slugify(wanted)
        candidates = await self._observe(driver)

        for path, element in candidates:
            if wanted_path.startswith("/") and (path == wanted_path or route_matches(wanted_path, path)):
                return element
        for path, element in candidates:
            label_slug = slugify(element.description)
            last_segment = slugify(wanted_path.rstrip("/").rsplit("/", 1)[-1])
            if label_slug and (label_slug == last_segment or label_slug == wanted_slug):
                return element
        for _, element in candidates:
            label = element.description.lower()
            if len(label) > 2 and label in wanted.lower():
                return element
        return None

    async def navigate(self, driver: "AutomationDriver", wanted: str) -> bool:
        """Click the navigation element matching ``wanted``; False when none does."""
        element = await self.find_target(driver, wanted)
        if element is None:
            logger.info(f"[NAV] No navigation element matches {wanted!r}")
            return False
        outcome = await driver.drive(f'Click the "{element.description}" {element.role}')
        if not outcome.success:
            logger.warning(f"[NAV] Could not click {element.description!r}: {outcome.error}")
        return outcome.success
