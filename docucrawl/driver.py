"""
Automation Driver
=================
The narrow interface the crawl engine, the auth handler and the discovery
sweep use to drive a browser, plus the Playwright implementation.

Interface (``AutomationDriver``):
    - ``goto(url, timeout_ms)``          explicit navigation
    - ``settle(idle_ms, fallback_s)``    wait for network quiet
    - ``drive(instruction, context)``    natural-language act → ``ActionOutcome``
    - ``observe(instruction)``           enumerate visible elements
    - ``screenshot()`` / ``content()`` / ``title()`` / ``url``

``drive()`` resolves the target element from its *description* ("the
email or username input field", "the Save button") through accessible
names, labels and placeholders, never through a selector fixed per target
application.

Sessions are per job: ``BrowserSession`` is an async context manager that
launches Chromium, yields a ``PlaywrightDriver`` and always closes the
browser on exit.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any, AsyncContextManager, Callable, Dict, List, Optional, Protocol

from playwright.async_api import Browser, BrowserContext, Locator, Page, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout

from .errors import NavigationError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------

@dataclass
class ActionOutcome:
    """Result of one ``drive()`` call."""

    success: bool
    description: str = ""
    url: str = ""
    error: Optional[str] = None


@dataclass
class ObservedElement:
    """A visible element reported by ``observe()``."""

    description: str
    href: Optional[str] = None
    role: str = "link"
    attributes: Dict[str, str] = field(default_factory=dict)


class AutomationDriver(Protocol):

    @property
    def url(self) -> str: ...

    async def goto(self, url: str, timeout_ms: int = 30_000) -> None: ...

    async def settle(self, idle_timeout_ms: int = 10_000, fallback_delay_s: float = 1.0) -> bool: ...

    async def drive(self, instruction: str, context: Optional[Dict[str, Any]] = None) -> ActionOutcome: ...

    async def observe(self, instruction: str) -> List[ObservedElement]: ...

    async def screenshot(self) -> bytes: ...

    async def content(self) -> str: ...

    async def title(self) -> str: ...

    async def wait(self, seconds: float) -> None: ...


DriverFactory = Callable[[], AsyncContextManager[AutomationDriver]]


# ---------------------------------------------------------------------------
# Natural-language instruction parsing
# ---------------------------------------------------------------------------

_FILL_RE = re.compile(
    r'^(?:type|fill(?:\s+in)?|enter)\s+(?:"(?P<text>[^"]*)"|(?P<what>.+?))\s+(?:in|into)\s+(?P<target>.+?)\.?$',
    re.IGNORECASE,
)
_FILL_WITH_RE = re.compile(
    r'^fill\s+(?:in\s+)?(?P<target>.+?)\s+with\s+"(?P<text>[^"]*)"\.?$',
    re.IGNORECASE,
)
_FILL_BARE_RE = re.compile(r"^fill\s+(?:in\s+)?(?P<target>.+?)\.?$", re.IGNORECASE)
_SELECT_RE = re.compile(
    r'^(?:select|choose)\s+"(?P<text>[^"]+)"\s+(?:from|in)\s+(?P<target>.+?)\.?$',
    re.IGNORECASE,
)
_PRESS_RE = re.compile(r"^press\s+(?:the\s+)?(?P<key>escape|enter|tab)(?:\s+key)?\.?$", re.IGNORECASE)
_CLICK_RE = re.compile(
    r"^(?:click|tap|open|press|go\s+to|navigate\s+to|switch\s+to)\s+(?:on\s+)?(?P<target>.+?)\.?$",
    re.IGNORECASE,
)

_ROLE_WORDS = {
    "button": "button",
    "link": "link",
    "tab": "tab",
    "menu item": "menuitem",
    "option": "option",
    "checkbox": "checkbox",
}
_FIELD_WORDS = ("input field", "text field", "field", "input", "box", "textbox", "dropdown", "select")


@dataclass
class Intent:
    verb: str                      # fill | select | press | click
    targets: List[str] = field(default_factory=list)
    role: Optional[str] = None
    text: Optional[str] = None


def _split_alternatives(target: str) -> List[str]:
    """``"the sign in, log in, or submit"`` → ``["sign in", "log in", "submit"]``."""
    target = re.sub(r"^(?:the|a|an)\s+", "", target.strip(), flags=re.IGNORECASE)
    parts = re.split(r"\s*,\s*(?:or\s+)?|\s+or\s+", target)
    out = []
    for part in parts:
        part = part.strip().strip("'\"").strip()
        part = re.sub(r"^(?:the|a|an)\s+", "", part, flags=re.IGNORECASE)
        if part:
            out.append(part)
    return out


def _strip_role(target: str):
    lowered = target.lower().rstrip(". ")
    for word, role in _ROLE_WORDS.items():
        if lowered.endswith(f" {word}"):
            return target[: -len(word) - 1].rstrip(), role
    for word in _FIELD_WORDS:
        if lowered.endswith(f" {word}"):
            return target[: -len(word) - 1].rstrip(), "textbox"
    return target, None


def parse_instruction(instruction: str) -> Intent:
    """Reduce a natural-language instruction to a verb, targets and a role hint."""
    text = instruction.strip()

    m = _PRESS_RE.match(text)
    if m:
        return Intent(verb="press", text=m.group("key").capitalize())

    patterns = (
        (_FILL_WITH_RE, "fill"),
        (_FILL_RE, "fill"),
        (_SELECT_RE, "select"),
        (_FILL_BARE_RE, "fill"),
    )
    for pattern, verb in patterns:
        m = pattern.match(text)
        if m:
            target, role = _strip_role(m.group("target"))
            return Intent(
                verb=verb,
                targets=_split_alternatives(target),
                role=role or "textbox",
                text=m.groupdict().get("text"),
            )

    m = _CLICK_RE.match(text)
    target = m.group("target") if m else text
    quoted = re.findall(r'"([^"]+)"', target)
    target, role = _strip_role(target)
    targets = quoted or _split_alternatives(target)
    return Intent(verb="click", targets=targets, role=role)


# ---------------------------------------------------------------------------
# Playwright implementation
# ---------------------------------------------------------------------------

_NAV_JS = """
() => {
    const out = [];
    const seen = new Set();
    const areas = document.querySelectorAll(
        'nav, [role="navigation"], aside, header, [class*="sidebar"], ' +
        '[class*="Sidebar"], [class*="side-nav"], [role="menu"]'
    );
    areas.forEach(area => {
        area.querySelectorAll('a, [role="menuitem"], [role="tab"], button').forEach(el => {
            const text = (el.innerText || el.getAttribute('aria-label') || '').trim();
            if (!text || text.length > 60) return;
            const rect = el.getBoundingClientRect();
            if (rect.width === 0 && rect.height === 0) return;
            const href = el.getAttribute('href') || el.dataset.href ||
                         el.dataset.route || el.dataset.path || null;
            const key = text + '|' + (href || '');
            if (seen.has(key)) return;
            seen.add(key);
            out.push({text, href, role: el.getAttribute('role') ||
                      (el.tagName === 'A' ? 'link' : 'button')});
        });
    });
    return out;
}
"""

_BUTTONS_JS = """
() => Array.from(document.querySelectorAll('button, [role="button"], a'))
    .filter(el => { const r = el.getBoundingClientRect(); return r.width > 0 && r.height > 0; })
    .map(el => ({text: (el.innerText || el.getAttribute('aria-label') || '').trim(),
                 href: el.getAttribute('href'), role: el.tagName === 'A' ? 'link' : 'button'}))
    .filter(e => e.text && e.text.length <= 60)
"""


class PlaywrightDriver:
    """``AutomationDriver`` over a single Playwright ``Page``."""

    def __init__(self, page: Page, *, action_timeout_ms: int = 15_000):
        self.page = page
        self.action_timeout_ms = action_timeout_ms

    @property
    def url(self) -> str:
        return self.page.url

    async def goto(self, url: str, timeout_ms: int = 30_000) -> None:
        try:
            resp = await self.page.goto(url, timeout=timeout_ms, wait_until="domcontentloaded")
        except PlaywrightTimeout as exc:
            raise NavigationError(f"Timeout after {timeout_ms}ms navigating to {url}") from exc
        except PlaywrightError as exc:
            raise NavigationError(f"Navigation to {url} failed: {exc.message}") from exc
        if resp is not None and resp.status >= 400:
            raise NavigationError(f"{url} returned HTTP {resp.status}")

    async def settle(self, idle_timeout_ms: int = 10_000, fallback_delay_s: float = 1.0) -> bool:
        try:
            await self.page.wait_for_load_state("networkidle", timeout=idle_timeout_ms)
            return True
        except PlaywrightTimeout:
            # Apps that poll continuously never go idle
            await asyncio.sleep(fallback_delay_s)
            return False

    async def wait(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    async def screenshot(self) -> bytes:
        return await self.page.screenshot(full_page=False, type="png")

    async def content(self) -> str:
        return await self.page.content()

    async def title(self) -> str:
        try:
            return await self.page.title()
        except PlaywrightError:
            return ""

    # ------------------------------------------------------------------
    # observe
    # ------------------------------------------------------------------

    async def observe(self, instruction: str) -> List[ObservedElement]:
        script = _BUTTONS_JS if "button" in instruction.lower() else _NAV_JS
        try:
            raw = await self.page.evaluate(script)
        except PlaywrightError as exc:
            logger.warning(f"[DRIVER] observe failed: {exc.message}")
            return []
        return [
            ObservedElement(description=item["text"], href=item.get("href"), role=item.get("role") or "link")
            for item in raw or []
        ]

    # ------------------------------------------------------------------
    # drive
    # ------------------------------------------------------------------

    async def drive(self, instruction: str, context: Optional[Dict[str, Any]] = None) -> ActionOutcome:
        context = context or {}
        timeout = int(context.get("timeout_ms", self.action_timeout_ms))
        intent = parse_instruction(instruction)
        # Secrets travel in the context, never in the instruction text
        value = context.get("value", intent.text)
        label = context.get("label", instruction)

        try:
            if intent.verb == "press":
                await self.page.keyboard.press(intent.text or "Escape")
                return ActionOutcome(True, label, self.page.url)

            locator = await self._resolve(intent)
            if locator is None:
                return ActionOutcome(False, label, self.page.url, f"No element matches {label!r}")

            if intent.verb == "fill":
                await locator.fill(value or "", timeout=timeout)
            elif intent.verb == "select":
                await locator.select_option(label=value, timeout=timeout)
            else:
                await locator.click(timeout=timeout)
            return ActionOutcome(True, label, self.page.url)
        except PlaywrightTimeout:
            return ActionOutcome(False, label, self.page.url, f"Timed out after {timeout}ms: {label}")
        except PlaywrightError as exc:
            return ActionOutcome(False, label, self.page.url, exc.message)

    async def _first_visible(self, locator: Locator) -> Optional[Locator]:
        try:
            count = await locator.count()
        except PlaywrightError:
            return None
        for i in range(min(count, 5)):
            candidate = locator.nth(i)
            try:
                if await candidate.is_visible():
                    return candidate
            except PlaywrightError:
                continue
        return None

    def _candidates(self, intent: Intent, target: str) -> List[Locator]:
        page = self.page
        pattern = re.compile(re.escape(target), re.IGNORECASE)
        if intent.verb in ("fill", "select"):
            keyword = target.lower().split()[-1] if target else ""
            return [
                page.get_by_label(pattern),
                page.get_by_placeholder(pattern),
                page.get_by_role("combobox" if intent.verb == "select" else "textbox", name=pattern),
                page.locator(
                    f'input[type="{keyword}" i], input[name*="{keyword}" i], '
                    f'input[id*="{keyword}" i], input[autocomplete*="{keyword}" i], '
                    f'select[name*="{keyword}" i]'
                ),
            ]
        roles = [intent.role] if intent.role and intent.role != "textbox" else []
        roles += [r for r in ("button", "link", "tab", "menuitem") if r not in roles]
        locators = [page.get_by_role(role, name=pattern) for role in roles]
        locators.append(page.get_by_text(pattern))
        return locators

    async def _resolve(self, intent: Intent) -> Optional[Locator]:
        for target in intent.targets:
            for locator in self._candidates(intent, target):
                found = await self._first_visible(locator)
                if found is not None:
                    return found
        return None


# ---------------------------------------------------------------------------
# Per-job browser session
# ---------------------------------------------------------------------------

_LAUNCH_ARGS = [
    "--disable-gpu",
    "--no-sandbox",
    "--disable-dev-shm-usage",
    "--disable-background-networking",
    "--disable-extensions",
    "--no-first-run",
]


class BrowserSession:
    """One Chromium browser, context and page owned by a single job.

    Usage::

        async with BrowserSession(config) as driver:
            await driver.goto("https://app.example.com")
    """

    def __init__(self, config):
        self.config = config
        self._playwright = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None

    async def __aenter__(self) -> PlaywrightDriver:
        self._playwright = await async_playwright().start()
        try:
            self._browser = await self._playwright.chromium.launch(
                headless=self.config.headless, args=_LAUNCH_ARGS,
            )
            self._context = await self._browser.new_context(
                user_agent=self.config.user_agent,
                viewport=self.config.viewport,
                locale="en-US",
            )
            page = await self._context.new_page()
            page.set_default_timeout(self.config.page_timeout_ms)
        except BaseException:
            await self._close()
            raise
        logger.info(
            f"[SESSION] Browser opened "
            f"({self.config.viewport_width}x{self.config.viewport_height}, "
            f"headless={self.config.headless})"
        )
        return PlaywrightDriver(page)

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self._close()
        logger.info("[SESSION] Browser closed")

    async def _close(self) -> None:
        if self._context is not None:
            try:
                await self._context.close()
            except PlaywrightError as e:
                logger.debug(f"[SESSION] context close: {e.message}")
            self._context = None
        if self._browser is not None:
            try:
                await self._browser.close()
            except PlaywrightError as e:
                logger.debug(f"[SESSION] browser close: {e.message}")
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None


def browser_session_factory(config) -> DriverFactory:
    """Factory handed to the engine / discovery: one fresh session per call."""
    return lambda: BrowserSession(config)
