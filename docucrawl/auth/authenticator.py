"""
Authentication Handler
======================
Logs a driver into the target application and recovers from silent
session expiry mid-crawl.

Responsibilities:
    1. ``login(driver)``: navigate to the login page, let it settle, fill
       the credential fields and submit through natural-language
       instructions, then verify success by URL change.
    2. ``is_session_expired(url)``: the app bounced us back to its login
       page (or any auth-looking path).
    3. ``reauthenticate(driver)``: a fresh ``login()`` used by the engine
       after an expiry; its failure is fatal for the crawl stage.

The field elements are resolved from their *description* ("the email or
username input field"), so the same handler works across applications
with different markup.

Security:
    - Credentials are never logged or embedded in instruction text; the
      secret value travels in the driver context only.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from ..dom import has_login_form
from ..errors import AuthenticationError, NavigationError
from ..urls import is_auth_url, same_page, strip_query

if TYPE_CHECKING:
    from ..driver import AutomationDriver
    from ..models import Credentials
    from ..run_config import RunConfig

logger = logging.getLogger(__name__)


# Natural-language instructions for the three login acts
USERNAME_INSTRUCTION = "Type the username into the email or username input field"
PASSWORD_INSTRUCTION = "Type the password into the password input field"
SUBMIT_INSTRUCTION = "Click the sign in, log in, continue, or submit button"


class AuthenticationHandler:
    """Form login plus expiry detection for one job.

    Usage::

        auth = AuthenticationHandler(login_url, credentials, config=cfg)
        await auth.login(driver)
        ...
        if auth.is_session_expired(driver.url):
            await auth.reauthenticate(driver)
    """

    def __init__(
        self,
        login_url: str,
        credentials: "Credentials",
        *,
        config: "RunConfig",
        max_attempts: int = 2,
    ):
        self.login_url = login_url
        self.credentials = credentials
        self.config = config
        self.max_attempts = max_attempts
        self.reauth_count = 0

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    async def login(self, driver: "AutomationDriver") -> None:
        """Run the login flow.

        Raises:
            AuthenticationError: every attempt failed.
        """
        logger.info(f"[AUTH] Navigating to login page: {self.login_url[:80]}")
        last_error: Optional[str] = None

        for attempt in range(1, self.max_attempts + 1):
            if attempt > 1:
                logger.info(f"[AUTH] Retrying login (attempt {attempt}/{self.max_attempts})")
            try:
                await driver.goto(self.login_url, timeout_ms=self.config.page_timeout_ms)
            except NavigationError as exc:
                last_error = str(exc)
                logger.warning(f"[AUTH] Login page unreachable: {exc}")
                continue
            await driver.settle(self.config.network_idle_timeout_ms, self.config.settle_delay_s)
            prior_url = driver.url

            # ── Fill + submit ────────────────────────────────────────
            acts = (
                (USERNAME_INSTRUCTION, {"value": self.credentials.username, "label": "username field"}),
                (PASSWORD_INSTRUCTION, {"value": self.credentials.password, "label": "password field"}),
                (SUBMIT_INSTRUCTION, {"label": "submit button"}),
            )
            failed = None
            for instruction, context in acts:
                outcome = await driver.drive(instruction, context)
                if not outcome.success:
                    failed = f"{context['label']}: {outcome.error or 'not found'}"
                    break
            if failed:
                last_error = failed
                logger.warning(f"[AUTH] Login attempt {attempt} failed — {failed}")
                continue

            # ── Verify ───────────────────────────────────────────────
            await driver.settle(self.config.network_idle_timeout_ms, self.config.settle_delay_s)
            await driver.wait(self.config.login_verify_delay_s)
            if await self._looks_logged_in(driver, prior_url):
                logger.info("[AUTH] Login succeeded")
                return
            last_error = f"still on login page after submit ({driver.url[:80]})"
            logger.warning(f"[AUTH] Login attempt {attempt} failed — {last_error}")

        raise AuthenticationError(
            f"Login failed after {self.max_attempts} attempts: {last_error or 'unknown error'}"
        )

    async def _looks_logged_in(self, driver: "AutomationDriver", prior_url: str) -> bool:
        current = driver.url
        if strip_query(current) != strip_query(prior_url) and not self.is_session_expired(current):
            return True
        if is_auth_url(current):
            return False
        return not has_login_form(await driver.content())

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    def is_session_expired(self, url: str) -> bool:
        """True when ``url`` is the login page (query and fragment ignored)
        or an auth-looking path."""
        if self.login_url and same_page(url, self.login_url):
            return True
        return is_auth_url(url)

    async def reauthenticate(self, driver: "AutomationDriver") -> None:
        self.reauth_count += 1
        logger.warning(f"[AUTH] Session expired — re-authenticating (#{self.reauth_count})")
        await self.login(driver)
