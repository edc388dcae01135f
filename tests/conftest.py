"""
Shared fakes for the docucrawl test-suite.

``FakeDriver`` implements the ``AutomationDriver`` interface over a dict of
scripted pages, so the engine, the auth handler and discovery run without
a browser.
"""

import re
from contextlib import asynccontextmanager
from typing import Callable, Dict, List, Optional

import pytest

from docucrawl.auth.authenticator import PASSWORD_INSTRUCTION, SUBMIT_INSTRUCTION, USERNAME_INSTRUCTION
from docucrawl.driver import ActionOutcome, ObservedElement
from docucrawl.errors import NavigationError, UploadError
from docucrawl.run_config import RunConfig
from docucrawl.urls import join_url, route_path

BASE_URL = "https://app.example.com"
LOGIN_URL = f"{BASE_URL}/login"

LOGIN_HTML = """
<html><head><title>Sign in | Acme</title></head><body>
<form><input type="email" name="email"><input type="password" name="password">
<button>Sign in</button></form></body></html>
"""

_QUOTED_CLICK_RE = re.compile(r'^Click the "(?P<name>[^"]+)" (?P<role>\w+)$')


def page_html(path: str, extra: str = "") -> str:
    """Distinct, error-free markup for ``path``."""
    slug = re.sub(r"[^a-z0-9]+", "-", path.lower()).strip("-") or "home"
    items = " ".join(f"<li>{slug}-entry-{i}</li>" for i in range(15))
    return (
        f"<html><head><title>{slug.title()} | Acme</title></head><body>"
        f"<nav><a href='/'>Home</a></nav><h1>{slug} overview</h1><ul>{items}</ul>{extra}</body></html>"
    )


class FakeDriver:
    """Scripted browser.

    - ``pages``: path → html (default markup otherwise; ``/login`` has a form)
    - ``broken``: paths whose ``goto`` raises ``NavigationError``
    - ``expire``: path → remaining number of visits bounced to the login page
    - ``triggers``: names that open an overlay when clicked
    - ``nav``: elements reported by ``observe``; clicking a link follows its href
    - ``actions``: exact instruction → callable(driver) run on ``drive``
    """

    def __init__(self, base_url: str = BASE_URL):
        self.base_url = base_url
        self.url = "about:blank"
        self.pages: Dict[str, str] = {"/login": LOGIN_HTML}
        self.broken = set()
        self.expire: Dict[str, int] = {}
        self.triggers = set()
        self.nav: List[ObservedElement] = []
        self.actions: Dict[str, Callable[["FakeDriver"], Optional[ActionOutcome]]] = {}
        self.accept_login = True
        self.post_login_path = "/dashboard"
        self.overlay: Optional[str] = None
        self.visits: List[str] = []
        self.instructions: List[str] = []
        self.contexts: List[dict] = []

    # ---- AutomationDriver ----

    async def goto(self, url: str, timeout_ms: int = 30_000) -> None:
        path = route_path(url)
        self.visits.append(path)
        self.overlay = None
        if path in self.broken:
            raise NavigationError(f"Navigation to {url} failed: net::ERR_ABORTED")
        if self.expire.get(path, 0) > 0:
            self.expire[path] -= 1
            self.url = LOGIN_URL
            return
        self.url = url

    async def settle(self, idle_timeout_ms: int = 10_000, fallback_delay_s: float = 1.0) -> bool:
        return True

    async def drive(self, instruction: str, context: Optional[dict] = None) -> ActionOutcome:
        self.instructions.append(instruction)
        self.contexts.append(dict(context or {}))

        if instruction in self.actions:
            outcome = self.actions[instruction](self)
            return outcome or ActionOutcome(True, instruction, self.url)
        if instruction == "Press the Escape key":
            self.overlay = None
            return ActionOutcome(True, instruction, self.url)
        if instruction in (USERNAME_INSTRUCTION, PASSWORD_INSTRUCTION):
            found = 'type="password"' in await self.content()
            return ActionOutcome(found, instruction, self.url, None if found else "field not found")
        if instruction == SUBMIT_INSTRUCTION:
            if self.accept_login:
                self.url = join_url(self.base_url, self.post_login_path)
            return ActionOutcome(True, instruction, self.url)

        m = _QUOTED_CLICK_RE.match(instruction)
        if m:
            name = m.group("name")
            for element in self.nav:
                if element.description == name and element.href:
                    await self.goto(join_url(self.base_url, element.href))
                    return ActionOutcome(True, instruction, self.url)
            if name in self.triggers:
                self.overlay = name
                return ActionOutcome(True, instruction, self.url)
        return ActionOutcome(False, instruction, self.url, "element not found")

    async def observe(self, instruction: str) -> List[ObservedElement]:
        return list(self.nav)

    async def screenshot(self) -> bytes:
        return f"png:{self.url}:{self.overlay or ''}".encode()

    async def content(self) -> str:
        path = route_path(self.url)
        html = self.pages.get(path) or page_html(path)
        if self.overlay:
            dialog = " ".join(f"<label>{self.overlay.lower()}-field-{i}</label>" for i in range(10))
            html = html.replace("</body>", f"<div role='dialog'><h2>{self.overlay}</h2>{dialog}</div></body>")
        return html

    async def title(self) -> str:
        m = re.search(r"<title>([^<]*)</title>", await self.content())
        return m.group(1) if m else ""

    async def wait(self, seconds: float) -> None:
        return None


class FakeSessionFactory:
    """``DriverFactory`` handing out one ``FakeDriver``; counts releases."""

    def __init__(self, driver: FakeDriver):
        self.driver = driver
        self.opened = 0
        self.closed = 0

    def __call__(self):
        return self._session()

    @asynccontextmanager
    async def _session(self):
        self.opened += 1
        try:
            yield self.driver
        finally:
            self.closed += 1


class FakeContentStore:
    """Records uploads; the first ``fail_times`` uploads raise ``UploadError``."""

    def __init__(self, fail_times: int = 0):
        self.fail_times = fail_times
        self.uploads: List[str] = []

    async def upload(self, job_id: str, label: str, data: bytes, content_type: str = "image/png") -> str:
        if self.fail_times > 0:
            self.fail_times -= 1
            raise UploadError("storage unavailable")
        self.uploads.append(label)
        return f"https://cdn.example.com/{job_id}/{label}.png"


@pytest.fixture
def config():
    return RunConfig(
        settle_delay_s=0,
        trigger_delay_s=0,
        login_verify_delay_s=0,
        upload_retry_delay_s=0,
        min_screens=1,
    )


@pytest.fixture
def driver():
    return FakeDriver()


@pytest.fixture
def factory(driver):
    return FakeSessionFactory(driver)


@pytest.fixture
def content_store():
    return FakeContentStore()
