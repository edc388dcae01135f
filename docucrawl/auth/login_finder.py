"""
Login page auto-detection and app-name detection.

Used when the caller supplies credentials but no login URL, and when the
job has no app name yet.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Optional

from ..dom import count_login_inputs
from ..errors import NavigationError
from ..urls import is_auth_url, join_url

if TYPE_CHECKING:
    from ..driver import AutomationDriver

logger = logging.getLogger(__name__)

COMMON_LOGIN_PATHS = ["/login", "/sign-in", "/signin", "/auth/login", "/auth", "/account/login"]

_GENERIC_NAMES = {"", "home", "dashboard", "app", "next.js", "login", "sign in"}
_TITLE_SEPARATORS = re.compile(r"\s+[|\-–—·:]\s+")


async def _visit(driver: "AutomationDriver", url: str, timeout_ms: int) -> bool:
    try:
        await driver.goto(url, timeout_ms=timeout_ms)
    except NavigationError as exc:
        logger.debug(f"[AUTH] {url} not reachable: {exc}")
        return False
    await driver.settle(idle_timeout_ms=min(timeout_ms, 10_000))
    return True


async def find_login_page(
    driver: "AutomationDriver",
    app_url: str,
    *,
    timeout_ms: int = 30_000,
) -> Optional[str]:
    """Locate the login page of ``app_url``.

    Order: redirect to an auth path, a login form on the app URL itself,
    the common login paths, then a "sign in" link on the app URL.
    """
    logger.info("[AUTH] Auto-detecting login page...")

    if await _visit(driver, app_url, timeout_ms):
        if is_auth_url(driver.url):
            logger.info(f"[AUTH] App URL redirected to login: {driver.url}")
            return driver.url
        if count_login_inputs(await driver.content()) >= 2:
            logger.info(f"[AUTH] App URL itself is the login page: {driver.url}")
            return driver.url

    for path in COMMON_LOGIN_PATHS:
        candidate = join_url(app_url, path)
        if await _visit(driver, candidate, 10_000) and count_login_inputs(await driver.content()) >= 1:
            logger.info(f"[AUTH] Found login page at: {candidate}")
            return candidate

    if await _visit(driver, app_url, timeout_ms):
        outcome = await driver.drive("Click the sign in, log in, or login link")
        if outcome.success:
            await driver.settle()
            if is_auth_url(driver.url) or count_login_inputs(await driver.content()) >= 1:
                logger.info(f"[AUTH] Found login link: {driver.url}")
                return driver.url

    logger.warning("[AUTH] Could not find a login page")
    return None


async def detect_app_name(
    driver: "AutomationDriver",
    product_description: Optional[str] = None,
) -> str:
    """Best-effort product name: header brand, description, then page title."""
    name = ""
    brand = await driver.observe("Find the application or company name or logo in the header")
    if brand:
        raw = brand[0].description.strip()
        quoted = re.search(r"['\"]([^'\"]+)['\"]", raw)
        if quoted:
            raw = quoted.group(1)
        if len(raw) <= 30:
            name = raw

    if name.lower() in _GENERIC_NAMES and product_description:
        m = re.match(r"^([A-Z][A-Za-z]+(?:\s[A-Z][A-Za-z]+)*)", product_description.strip())
        if m:
            name = m.group(1)

    if name.lower() in _GENERIC_NAMES:
        parts = [p.strip() for p in _TITLE_SEPARATORS.split(await driver.title()) if p.strip()]
        usable = [p for p in parts if p.lower() not in _GENERIC_NAMES]
        if usable:
            name = usable[-1]

    return name or "App"
