"""
URL helpers shared by the engine, the auth handler and discovery.
"""

from __future__ import annotations

import re
from typing import Optional
from urllib.parse import urljoin, urlparse

# Leading path segments that mark an authentication page
AUTH_PATH_PATTERNS = ("/login", "/sign-in", "/signin", "/sign-up", "/signup", "/auth")

# Dynamic route segments: [id], [slug], :id, {id}
_DYNAMIC_SEGMENT_RE = re.compile(r"^(?:\[[^\]]+\]|:[A-Za-z_]\w*|\{[^}]+\})$")

ENTITY_PLACEHOLDERS = ("{entity_id}", "{latest}", "{id}", "[id]", ":id")


def join_url(base_url: str, path: str) -> str:
    """Resolve a route path against the app's base URL."""
    if path.startswith(("http://", "https://")):
        return path
    base = base_url if base_url.endswith("/") else base_url + "/"
    return urljoin(base, path.lstrip("/"))


def route_path(url: str) -> str:
    parsed = urlparse(url)
    return parsed.path or "/"


def same_origin(a: str, b: str) -> bool:
    pa, pb = urlparse(a), urlparse(b)
    return (pa.scheme, pa.netloc.lower()) == (pb.scheme, pb.netloc.lower())


def is_auth_url(url: str) -> bool:
    """``/login`` and ``/auth/callback`` match; ``/authors`` and ``/oauth-apps`` do not."""
    path = urlparse(url.lower()).path.rstrip("/")
    return any(path == p or path.startswith(p + "/") for p in AUTH_PATH_PATTERNS)


def same_page(a: str, b: str) -> bool:
    """Host and path equal; scheme, query, fragment and trailing slash ignored."""
    pa, pb = urlparse(a), urlparse(b)
    return (pa.netloc.lower(), pa.path.rstrip("/")) == (pb.netloc.lower(), pb.path.rstrip("/"))


def strip_query(url: str) -> str:
    return url.split("#", 1)[0].split("?", 1)[0].rstrip("/")


def route_matches(pattern: str, path: str) -> bool:
    """``/projects/[id]`` matches ``/projects/42``; static segments must be equal."""
    p_parts = [s for s in route_path(pattern).split("/") if s]
    a_parts = [s for s in route_path(path).split("/") if s]
    if len(p_parts) != len(a_parts):
        return False
    for p, a in zip(p_parts, a_parts):
        if _DYNAMIC_SEGMENT_RE.match(p):
            continue
        if p.lower() != a.lower():
            return False
    return True


def has_entity_placeholder(text: Optional[str]) -> bool:
    return bool(text) and any(ph in text for ph in ENTITY_PLACEHOLDERS)


def fill_entity_placeholder(text: str, entity_id: str) -> str:
    for ph in ENTITY_PLACEHOLDERS:
        text = text.replace(ph, entity_id)
    return text


def slugify(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
