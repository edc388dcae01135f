"""
Entity resolution across dependent steps.

After a step that creates data, the new record's identifier is looked up
first in the resulting URL (a detail page such as ``/projects/8f3c...``),
then in the rendered list (a row that was not there before the step).
Later steps consume it through a placeholder in their route or
interaction (``/projects/{entity_id}/settings``).
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional

from bs4 import BeautifulSoup

from .urls import route_path

logger = logging.getLogger(__name__)

_ID_PATTERNS = [
    re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.I),  # uuid
    re.compile(r"^\d{1,19}$"),                                                          # numeric
    re.compile(r"^[0-9a-f]{24}$", re.I),                                               # object id
    re.compile(r"^c[a-z0-9]{20,30}$"),                                                  # cuid
    re.compile(r"^[a-z]{2,6}_[A-Za-z0-9]{6,}$"),                                        # prefixed
]

_ROW_ID_ATTRS = ("data-id", "data-row-key", "data-key", "data-record-id", "data-entity-id")
_ROW_SELECTOR = "tr, li, [role='row'], [role='listitem'], [class*='card'], [class*='row']"


def looks_like_id(segment: str) -> bool:
    return any(p.match(segment) for p in _ID_PATTERNS)


def id_from_url(url_before: str, url_after: str) -> Optional[str]:
    """Identifier segment present in ``url_after`` but not in ``url_before``."""
    before = set(s for s in route_path(url_before).split("/") if s)
    for segment in reversed([s for s in route_path(url_after).split("/") if s]):
        if segment not in before and looks_like_id(segment):
            return segment
    return None


def row_ids(html: str) -> List[str]:
    """Record identifiers exposed by list rows, in document order."""
    soup = BeautifulSoup(html or "", "lxml")
    ids: List[str] = []
    for row in soup.select(_ROW_SELECTOR):
        value = None
        for attr in _ROW_ID_ATTRS:
            if row.get(attr):
                value = row[attr]
                break
        if value is None:
            link = row.find("a", href=True)
            if link is not None:
                tail = route_path(link["href"]).rstrip("/").rsplit("/", 1)[-1]
                if looks_like_id(tail):
                    value = tail
        if value and value not in ids:
            ids.append(value)
    return ids


def new_row_id(html_before: str, html_after: str) -> Optional[str]:
    known = set(row_ids(html_before))
    fresh = [i for i in row_ids(html_after) if i not in known]
    return fresh[0] if fresh else None


class EntityResolver:
    """Tracks the most recently created entity for one crawl."""

    def __init__(self):
        self.last_created_id: Optional[str] = None

    def resolve(self, url_before: str, html_before: str, url_after: str, html_after: str) -> Optional[str]:
        entity_id = id_from_url(url_before, url_after) or new_row_id(html_before, html_after)
        if entity_id:
            self.last_created_id = entity_id
            logger.info(f"[ENTITY] Created entity id: {entity_id}")
        return entity_id
