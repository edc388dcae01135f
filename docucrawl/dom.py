"""
DOM helpers: cleaning, page signals and health checks.

All functions work on rendered HTML strings so they can be exercised
without a browser.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional

from bs4 import BeautifulSoup

_BS_PARSER = "lxml"

# Tags that carry no documentation value and only inflate the snapshot
_STRIP_TAGS = ["script", "style", "svg", "noscript", "link", "meta"]

_CHARS_PER_TOKEN = 4

_ERROR_PHRASES = (
    "404", "not found", "error", "something went wrong",
    "access denied", "forbidden",
)

_NAV_LINK_SELECTOR = "nav a, [role='navigation'] a, aside a, .sidebar a, .nav a"


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", _BS_PARSER)


def clean_dom(html: str, max_tokens: int = 4000) -> str:
    """Strip non-content tags and truncate to roughly ``max_tokens`` tokens."""
    soup = _soup(html)
    for tag in soup(_STRIP_TAGS):
        tag.decompose()
    body = soup.body or soup
    cleaned = str(body)
    cleaned = re.sub(r">\s+<", "><", cleaned)
    cleaned = re.sub(r"\s{2,}", " ", cleaned).strip()
    max_chars = max_tokens * _CHARS_PER_TOKEN
    if len(cleaned) > max_chars:
        cleaned = cleaned[:max_chars]
    return cleaned


def visible_text(html: str) -> str:
    soup = _soup(html)
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    text = soup.get_text(separator=" ", strip=True)
    return re.sub(r" {2,}", " ", text)


# ---------------------------------------------------------------------------
# Page signals (pre-crawl discovery)
# ---------------------------------------------------------------------------

@dataclass
class PageSignals:
    title: str = ""
    has_form: bool = False
    has_table: bool = False
    has_error: bool = False
    nav_labels: List[str] = field(default_factory=list)


def page_signals(html: str, title: str = "", max_nav: int = 20) -> PageSignals:
    """Forms, tables, error indicators and nav labels of a rendered page."""
    soup = _soup(html)
    if not title and soup.title and soup.title.string:
        title = soup.title.string.strip()

    has_form = bool(soup.select("form, input, textarea, select"))
    has_table = bool(soup.select("table, [role='grid'], [role='table']"))

    body_text = (soup.body.get_text(" ", strip=True) if soup.body else "").lower()
    error_hint = any(p in body_text for p in _ERROR_PHRASES)
    title_lower = title.lower()
    is_404 = "404" in title_lower or "not found" in title_lower

    nav_labels: List[str] = []
    for a in soup.select(_NAV_LINK_SELECTOR):
        text = a.get_text(" ", strip=True)
        if text and len(text) < 50 and text not in nav_labels:
            nav_labels.append(text)

    return PageSignals(
        title=title,
        has_form=has_form,
        has_table=has_table,
        has_error=is_404 or (error_hint and not has_form and not has_table),
        nav_labels=nav_labels[:max_nav],
    )


# ---------------------------------------------------------------------------
# Health checks
# ---------------------------------------------------------------------------

def health_issue(url: str, html: str) -> Optional[str]:
    """Return a reason string when the page is a browser error or a block page."""
    if url.startswith("chrome-error://"):
        return "browser error page"
    text = visible_text(html)[:2000].lower()
    if "cloudflare" in text and any(
        marker in text
        for marker in ("blocked", "attention required", "security service", "ray id")
    ):
        return "Cloudflare security block"
    return None


def count_login_inputs(html: str) -> int:
    """Number of visible-looking credential inputs (email/user/password)."""
    soup = _soup(html)
    inputs = soup.select(
        'input[type="password"], input[type="email"], '
        'input[name*="user" i], input[name*="email" i], input[name*="login" i]'
    )
    return len([i for i in inputs if i.get("type") != "hidden"])


def has_login_form(html: str) -> bool:
    """A password field on a page that is not a content-rich dashboard."""
    soup = _soup(html)
    if not soup.select('input[type="password"]'):
        return False
    has_nav = bool(soup.select("nav, aside, .sidebar, [role='navigation']"))
    body_len = len(soup.body.get_text(" ", strip=True)) if soup.body else 0
    return not (has_nav and body_len > 2000)
